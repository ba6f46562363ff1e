"""
hashing.py - SHA256 hashing utilities for artifacts and manifests.

Single source of truth for all SHA256 computation in the tagger.

Usage:
    from sinphase.hashing import sha256_file, sha256_string, combined_hash

    # Raw hex digest of a file
    h = sha256_file(Path("dist/app.whl"))

    # Hash-of-hashes in declared order
    checksum = combined_hash([h1, h2, h3])
"""

import hashlib
from pathlib import Path
from typing import Iterable, Union


def sha256_file(path: Union[str, Path], chunk_size: int = 65536) -> str:
    """Compute SHA256 hash of a file's contents.

    Args:
        path: Path to the file to hash
        chunk_size: Read buffer size (default 64KB)

    Returns:
        Lowercase hex digest of SHA256 hash

    Raises:
        FileNotFoundError: If file doesn't exist
        IsADirectoryError: If path is a directory
    """
    path = Path(path)
    sha256 = hashlib.sha256()
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(chunk_size), b""):
            sha256.update(chunk)
    return sha256.hexdigest()


def sha256_string(content: str) -> str:
    """Compute SHA256 hash of a UTF-8 string.

    Returns:
        Lowercase hex digest of SHA256 hash
    """
    return hashlib.sha256(content.encode("utf-8")).hexdigest()


def combined_hash(digests: Iterable[str]) -> str:
    """Hash the concatenation of hex digests, in the order given.

    The order is NOT normalized: the same digests in a different order
    produce a different result. Callers pass digests in declared
    artifact order.

    Args:
        digests: Hex digest strings

    Returns:
        Lowercase hex digest of SHA256(d1 + d2 + ... + dn)
    """
    return sha256_string("".join(digests))


def fingerprint_secret(secret: Union[str, bytes]) -> str:
    """Create a safe fingerprint of a secret for logging.

    Returns:
        Fingerprint string in format "fp:sha256:<first16chars>"
    """
    if not secret:
        return "fp:sha256:empty"
    if isinstance(secret, str):
        secret = secret.encode()
    return f"fp:sha256:{hashlib.sha256(secret).hexdigest()[:16]}"


__all__ = [
    "sha256_file",
    "sha256_string",
    "combined_hash",
    "fingerprint_secret",
]
