"""Allow ``python -m sinphase``."""
from sinphase.cli import main

main()
