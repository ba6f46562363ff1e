"""
signing.py - Aura seal signing for governance manifests.

The seal is produced through a small signer capability so the symmetric
default can be swapped for an asymmetric scheme without touching the rest
of the pipeline.

Supports:
- HMAC-SHA256 (shared secret, default)
- Ed25519 (via cryptography; PEM private key, or base64 public key for
  verify-only use)

Environment:
    SINPHASE_SIGNING_KEY: Path to signing key or HMAC secret
"""
from __future__ import annotations

import base64
import hashlib
import hmac
import logging
import os
from pathlib import Path
from typing import Optional, Protocol, runtime_checkable

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric.ed25519 import (
    Ed25519PrivateKey,
    Ed25519PublicKey,
)

from sinphase.hashing import fingerprint_secret

logger = logging.getLogger(__name__)

HMAC_SHA256 = "hmac-sha256"
ED25519 = "ed25519"
ALGORITHMS = (HMAC_SHA256, ED25519)

SIGNING_KEY_ENV = "SINPHASE_SIGNING_KEY"


class SignatureError(Exception):
    """Raised when a signer cannot be built or cannot sign."""
    pass


@runtime_checkable
class Signer(Protocol):
    """Capability: sign(bytes) -> tag, verify(bytes, tag) -> bool."""

    algorithm: str

    def sign(self, data: bytes) -> bytes:
        ...

    def verify(self, data: bytes, signature: bytes) -> bool:
        ...


class HmacSigner:
    """HMAC-SHA256 over a shared secret."""

    algorithm = HMAC_SHA256

    def __init__(self, key: bytes):
        if not key:
            raise SignatureError("HMAC key must not be empty")
        self._key = key

    @property
    def fingerprint(self) -> str:
        return fingerprint_secret(self._key)

    def sign(self, data: bytes) -> bytes:
        return hmac.new(self._key, data, hashlib.sha256).digest()

    def verify(self, data: bytes, signature: bytes) -> bool:
        return hmac.compare_digest(self.sign(data), signature)


class Ed25519Signer:
    """Ed25519 signatures. Built from a private key, or a public key for verify-only."""

    algorithm = ED25519

    def __init__(
        self,
        private_key: Optional[Ed25519PrivateKey] = None,
        public_key: Optional[Ed25519PublicKey] = None,
    ):
        if private_key is None and public_key is None:
            raise SignatureError("Ed25519 signer needs a private or public key")
        self._private_key = private_key
        self._public_key = public_key or private_key.public_key()

    @classmethod
    def from_pem(cls, pem_data: bytes) -> "Ed25519Signer":
        try:
            key = serialization.load_pem_private_key(pem_data, password=None)
        except (ValueError, TypeError) as e:
            raise SignatureError(f"Invalid Ed25519 private key: {e}") from e
        if not isinstance(key, Ed25519PrivateKey):
            raise SignatureError("PEM key is not an Ed25519 private key")
        return cls(private_key=key)

    @classmethod
    def from_public_b64(cls, public_key_b64: str) -> "Ed25519Signer":
        try:
            raw = base64.b64decode(public_key_b64, validate=True)
            return cls(public_key=Ed25519PublicKey.from_public_bytes(raw))
        except ValueError as e:
            raise SignatureError(f"Invalid Ed25519 public key: {e}") from e

    @property
    def public_key_b64(self) -> str:
        raw = self._public_key.public_bytes(
            serialization.Encoding.Raw,
            serialization.PublicFormat.Raw,
        )
        return base64.b64encode(raw).decode("ascii")

    @property
    def fingerprint(self) -> str:
        return fingerprint_secret(self.public_key_b64)

    def sign(self, data: bytes) -> bytes:
        if self._private_key is None:
            raise SignatureError("Ed25519 signer is verify-only (no private key)")
        return self._private_key.sign(data)

    def verify(self, data: bytes, signature: bytes) -> bool:
        try:
            self._public_key.verify(signature, data)
            return True
        except InvalidSignature:
            return False


def resolve_key(key_ref: Optional[str]) -> Optional[bytes]:
    """Resolve a key reference: an existing path is read, anything else is the key itself."""
    if not key_ref:
        key_ref = os.getenv(SIGNING_KEY_ENV, "")
    if not key_ref:
        return None
    key_path = Path(key_ref).expanduser()
    if key_path.is_file():
        return key_path.read_bytes().strip()
    return key_ref.encode()


def load_signer(algorithm: str = HMAC_SHA256, key_ref: Optional[str] = None) -> Signer:
    """Build the signer named by ``algorithm`` from a key reference.

    Raises:
        SignatureError: If no key is available or the key is unusable
    """
    if algorithm not in ALGORITHMS:
        raise SignatureError(f"Unknown algorithm: {algorithm}")

    key = resolve_key(key_ref)
    if not key:
        raise SignatureError(f"No signing key available. Set {SIGNING_KEY_ENV}")

    if algorithm == ED25519:
        if key.startswith(b"-----BEGIN"):
            signer = Ed25519Signer.from_pem(key)
        else:
            signer = Ed25519Signer.from_public_b64(key.decode("ascii", errors="replace"))
    else:
        signer = HmacSigner(key)

    logger.debug("Loaded %s signer %s", algorithm, signer.fingerprint)
    return signer


def generate_keypair(output_dir: Path, force: bool = False) -> tuple[Path, str]:
    """Generate an Ed25519 keypair for sealing.

    Writes ``private_key.pem`` (mode 0600) and ``public_key.txt`` (base64 raw).

    Returns:
        (private_key_path, public_key_b64)
    """
    private_key_path = output_dir / "private_key.pem"
    public_key_path = output_dir / "public_key.txt"
    if private_key_path.exists() and not force:
        raise SignatureError(f"Private key already exists at {private_key_path}")

    private_key = Ed25519PrivateKey.generate()
    pem_data = private_key.private_bytes(
        serialization.Encoding.PEM,
        serialization.PrivateFormat.PKCS8,
        serialization.NoEncryption(),
    )

    output_dir.mkdir(parents=True, exist_ok=True)
    with open(private_key_path, "wb") as f:
        f.write(pem_data)
    os.chmod(private_key_path, 0o600)

    public_key_b64 = Ed25519Signer(private_key=private_key).public_key_b64
    public_key_path.write_text(public_key_b64 + "\n")
    return private_key_path, public_key_b64
