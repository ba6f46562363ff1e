"""Artifact verification: read-only presence check over the declared ArtifactSet."""
from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Iterable, Optional, Union

from sinphase.models import ArtifactRecord, VerificationResult

logger = logging.getLogger(__name__)


def _is_readable_file(path: Path) -> bool:
    return path.is_file() and os.access(path, os.R_OK)


class ArtifactVerifier:
    """Checks that each declared build output exists and is readable.

    Usage:
        result = ArtifactVerifier(repo_root).verify(["dist/app.whl", "dist/app.tar.gz"])
        if result.missing:
            print(result.error.to_dict())
    """

    def __init__(self, base_dir: Optional[Union[str, Path]] = None):
        self.base_dir = Path(base_dir) if base_dir else Path.cwd()

    def resolve(self, declared: str) -> Path:
        path = Path(declared)
        return path if path.is_absolute() else self.base_dir / path

    def verify(self, paths: Iterable[str]) -> VerificationResult:
        """Check every declared path, in declared order.

        Never raises for missing artifacts; the result carries an
        ArtifactMissing advisory and the caller decides whether to proceed.
        """
        records = []
        for declared in paths:
            present = _is_readable_file(self.resolve(declared))
            if not present:
                logger.warning("Artifact missing or unreadable: %s", declared)
            records.append(ArtifactRecord(path=declared, present=present))

        result = VerificationResult(records=tuple(records))
        logger.info(
            "Verified %d artifact(s): %d present, %d missing",
            len(records), result.present_count, len(result.missing),
        )
        return result
