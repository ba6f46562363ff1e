"""
manifest.py - Governance manifest construction and serialization.

Build order (fixed, for reproducibility):
1. Per-artifact SHA256, then entropy checksum = SHA256 of the concatenated
   digests in declared order
2. Governance vector from sinphase
3. Aura seal = signer over (entropy checksum || timestamp)
4. Flat key-value annotation text, fixed field order

Usage:
    builder = ManifestBuilder(signer, governance_ref="GOV-POLICY-001", base_dir=root)
    manifest = builder.build(tier, metric, verification)
    text = serialize(manifest)
"""
from __future__ import annotations

import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional, Union

from sinphase.hashing import combined_hash, sha256_file
from sinphase.models import (
    GovernanceManifest,
    GovernanceVector,
    ManifestBuildFailed,
    SealInvalid,
    SinphaseMetric,
    StabilityTier,
    VerificationResult,
)
from sinphase.signing import SignatureError, Signer

logger = logging.getLogger(__name__)

ROLLBACK_COST = 0.15
TIMESTAMP_FORMAT = "%Y-%m-%dT%H:%M:%SZ"

# Annotation field order is part of the downstream contract.
FIELD_ORDER = (
    "Policy-Tag",
    "Governance-Ref",
    "Entropy-Checksum",
    "Governance-Vector",
    "AuraSeal",
    "Build-Timestamp",
    "Artifact-Count",
)
VECTOR_ORDER = ("build_risk", "rollback_cost", "stability_impact")


def format_timestamp(moment: Optional[datetime] = None) -> str:
    """UTC ISO-8601 with whole seconds, e.g. 2026-10-19T08:30:00Z."""
    moment = moment or datetime.now(timezone.utc)
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc).strftime(TIMESTAMP_FORMAT)


def governance_vector(metric: SinphaseMetric) -> GovernanceVector:
    """attack_risk is the complement of stability (policy simplification, kept as-is)."""
    return GovernanceVector(
        attack_risk=round(1 - metric.value, 4),
        rollback_cost=ROLLBACK_COST,
        stability_impact=metric.value,
    )


def seal_payload(entropy_checksum: str, timestamp: str) -> bytes:
    return (entropy_checksum + timestamp).encode("utf-8")


class ManifestBuilder:
    """Hashes artifacts and assembles the signed GovernanceManifest."""

    def __init__(
        self,
        signer: Optional[Signer],
        governance_ref: str,
        base_dir: Optional[Union[str, Path]] = None,
    ):
        self.signer = signer
        self.governance_ref = governance_ref
        self.base_dir = Path(base_dir) if base_dir else Path.cwd()

    def artifact_digests(self, verification: VerificationResult) -> list[str]:
        """SHA256 of every present artifact, in declared order."""
        digests = []
        for record in verification.records:
            if not record.present:
                continue
            path = Path(record.path)
            if not path.is_absolute():
                path = self.base_dir / path
            try:
                digests.append(sha256_file(path))
            except OSError as e:
                raise ManifestBuildFailed(
                    f"Failed to hash artifact {record.path}: {e}", path=record.path,
                ) from e
        return digests

    def build(
        self,
        tier: StabilityTier,
        metric: SinphaseMetric,
        verification: VerificationResult,
        timestamp: Optional[Union[str, datetime]] = None,
    ) -> GovernanceManifest:
        """
        Raises:
            ManifestBuildFailed: On any hashing or signing failure
        """
        if self.signer is None:
            raise ManifestBuildFailed("No signer configured; cannot seal manifest")
        if not isinstance(timestamp, str):
            timestamp = format_timestamp(timestamp)

        digests = self.artifact_digests(verification)
        entropy_checksum = combined_hash(digests)

        try:
            seal = self.signer.sign(seal_payload(entropy_checksum, timestamp))
        except (SignatureError, ValueError, TypeError) as e:
            raise ManifestBuildFailed(
                f"Failed to seal manifest ({self.signer.algorithm}): {e}",
                algorithm=self.signer.algorithm,
            ) from e

        manifest = GovernanceManifest(
            policy_tag=tier,
            governance_ref=self.governance_ref,
            entropy_checksum=entropy_checksum,
            governance_vector=governance_vector(metric),
            aura_seal=seal.hex(),
            timestamp=timestamp,
            artifact_count=len(digests),
        )
        logger.info(
            "Built manifest: tier=%s artifacts=%d checksum=%s...",
            tier.value, manifest.artifact_count, entropy_checksum[:16],
        )
        return manifest


def serialize(manifest: GovernanceManifest) -> str:
    """Render the manifest as the tag annotation body."""
    vector = manifest.governance_vector.to_dict()
    values = {
        "Policy-Tag": manifest.policy_tag.value,
        "Governance-Ref": manifest.governance_ref,
        "Entropy-Checksum": manifest.entropy_checksum,
        "Governance-Vector": ", ".join(f"{k}={vector[k]:.4f}" for k in VECTOR_ORDER),
        "AuraSeal": manifest.aura_seal,
        "Build-Timestamp": manifest.timestamp,
        "Artifact-Count": str(manifest.artifact_count),
    }
    return "".join(f"{key}: {values[key]}\n" for key in FIELD_ORDER)


def parse_annotation(text: str) -> GovernanceManifest:
    """Parse an annotation produced by serialize().

    Raises:
        SealInvalid: If a field is missing or malformed
    """
    fields: dict[str, str] = {}
    for line in text.splitlines():
        key, sep, value = line.partition(": ")
        if sep and key in FIELD_ORDER:
            fields[key] = value.strip()

    missing = [k for k in FIELD_ORDER if k not in fields]
    if missing:
        raise SealInvalid(
            f"Annotation is not a governance manifest (missing {', '.join(missing)})",
            missing=missing,
        )

    try:
        vector = {}
        for part in fields["Governance-Vector"].split(","):
            name, _, number = part.strip().partition("=")
            vector[name] = float(number)
        return GovernanceManifest(
            policy_tag=StabilityTier(fields["Policy-Tag"]),
            governance_ref=fields["Governance-Ref"],
            entropy_checksum=fields["Entropy-Checksum"],
            governance_vector=GovernanceVector(
                attack_risk=vector["build_risk"],
                rollback_cost=vector["rollback_cost"],
                stability_impact=vector["stability_impact"],
            ),
            aura_seal=fields["AuraSeal"],
            timestamp=fields["Build-Timestamp"],
            artifact_count=int(fields["Artifact-Count"]),
        )
    except (KeyError, ValueError) as e:
        raise SealInvalid(f"Malformed governance annotation: {e}") from e


def verify_seal(manifest: GovernanceManifest, signer: Signer) -> bool:
    """Check the aura seal against the manifest's checksum and timestamp."""
    try:
        signature = bytes.fromhex(manifest.aura_seal)
    except ValueError:
        return False
    return signer.verify(seal_payload(manifest.entropy_checksum, manifest.timestamp), signature)
