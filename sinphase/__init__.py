"""Stability-gated governance tagging for builds.

Verifies build artifacts, computes the sinphase stability metric, derives
the next semantic version, seals a governance manifest and issues an
annotated git tag, but only when the build clears the configured bar.
"""

__version__ = "0.1.0"
