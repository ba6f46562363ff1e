"""Tests for sinphase/manifest.py - manifest build, annotation format, seal."""
import hashlib
import hmac
from dataclasses import replace
from fractions import Fraction

import pytest

from sinphase.artifacts import ArtifactVerifier
from sinphase.manifest import (
    FIELD_ORDER,
    ManifestBuilder,
    format_timestamp,
    governance_vector,
    parse_annotation,
    serialize,
    verify_seal,
)
from sinphase.models import (
    ManifestBuildFailed,
    SealInvalid,
    SinphaseMetric,
    StabilityTier,
)
from sinphase.signing import HmacSigner, SignatureError

from conftest import FIXED_TIME, FIXED_TIMESTAMP, artifact_paths

METRIC = SinphaseMetric(exact=Fraction(9, 10), present_count=10, passed=45, total=50)


@pytest.fixture
def verification(artifact_dir):
    return ArtifactVerifier(artifact_dir).verify(artifact_paths())


@pytest.fixture
def builder(artifact_dir, signer):
    return ManifestBuilder(signer, governance_ref="GOV-TEST-001", base_dir=artifact_dir)


def expected_checksum(base_dir, paths):
    digests = [hashlib.sha256((base_dir / p).read_bytes()).hexdigest() for p in paths]
    return hashlib.sha256("".join(digests).encode()).hexdigest()


class TestBuild:

    def test_fields(self, builder, verification, artifact_dir):
        manifest = builder.build(StabilityTier.RELEASE, METRIC, verification, timestamp=FIXED_TIME)
        assert manifest.policy_tag is StabilityTier.RELEASE
        assert manifest.governance_ref == "GOV-TEST-001"
        assert manifest.timestamp == FIXED_TIMESTAMP
        assert manifest.artifact_count == 10
        assert manifest.entropy_checksum == expected_checksum(artifact_dir, artifact_paths())

    def test_seal_is_hmac_over_checksum_and_timestamp(self, builder, verification):
        manifest = builder.build(StabilityTier.RELEASE, METRIC, verification, timestamp=FIXED_TIMESTAMP)
        payload = (manifest.entropy_checksum + FIXED_TIMESTAMP).encode()
        assert manifest.aura_seal == hmac.new(b"test-secret", payload, hashlib.sha256).hexdigest()

    def test_identical_inputs_give_identical_annotation(self, builder, verification):
        a = builder.build(StabilityTier.RELEASE, METRIC, verification, timestamp=FIXED_TIME)
        b = builder.build(StabilityTier.RELEASE, METRIC, verification, timestamp=FIXED_TIME)
        assert serialize(a).encode() == serialize(b).encode()

    def test_artifact_order_changes_checksum(self, artifact_dir, builder):
        forward = ArtifactVerifier(artifact_dir).verify(artifact_paths())
        backward = ArtifactVerifier(artifact_dir).verify(list(reversed(artifact_paths())))
        a = builder.build(StabilityTier.RELEASE, METRIC, forward, timestamp=FIXED_TIME)
        b = builder.build(StabilityTier.RELEASE, METRIC, backward, timestamp=FIXED_TIME)
        assert a.entropy_checksum != b.entropy_checksum

    def test_missing_artifacts_are_skipped(self, artifact_dir, builder):
        (artifact_dir / "dist" / "artifact_9.bin").unlink()
        verification = ArtifactVerifier(artifact_dir).verify(artifact_paths())
        manifest = builder.build(StabilityTier.STABLE, METRIC, verification, timestamp=FIXED_TIME)
        assert manifest.artifact_count == 9
        assert manifest.entropy_checksum == expected_checksum(artifact_dir, artifact_paths(9))

    def test_artifact_vanishing_after_verification(self, artifact_dir, builder, verification):
        (artifact_dir / "dist" / "artifact_0.bin").unlink()
        with pytest.raises(ManifestBuildFailed) as exc:
            builder.build(StabilityTier.RELEASE, METRIC, verification, timestamp=FIXED_TIME)
        assert exc.value.context["path"] == "dist/artifact_0.bin"

    def test_signer_failure(self, artifact_dir, verification):
        class BrokenSigner:
            algorithm = "broken"

            def sign(self, data):
                raise SignatureError("hardware token unplugged")

            def verify(self, data, signature):
                return False

        builder = ManifestBuilder(BrokenSigner(), "GOV-TEST-001", artifact_dir)
        with pytest.raises(ManifestBuildFailed, match="hardware token unplugged"):
            builder.build(StabilityTier.RELEASE, METRIC, verification, timestamp=FIXED_TIME)

    def test_no_signer(self, artifact_dir, verification):
        with pytest.raises(ManifestBuildFailed):
            ManifestBuilder(None, "GOV-TEST-001", artifact_dir).build(
                StabilityTier.RELEASE, METRIC, verification,
            )


class TestGovernanceVector:

    def test_complement_of_stability(self):
        vector = governance_vector(METRIC)
        assert vector.attack_risk == 0.1
        assert vector.rollback_cost == 0.15
        assert vector.stability_impact == 0.9

    def test_rounding_is_exact_at_four_places(self):
        metric = SinphaseMetric(exact=Fraction(49, 100), present_count=7, passed=35, total=50)
        assert governance_vector(metric).attack_risk == 0.51


class TestAnnotation:

    def test_exact_layout(self, builder, verification):
        manifest = builder.build(StabilityTier.RELEASE, METRIC, verification, timestamp=FIXED_TIME)
        lines = serialize(manifest).split("\n")
        assert lines[-1] == ""
        assert [line.split(": ", 1)[0] for line in lines[:-1]] == list(FIELD_ORDER)
        assert lines[0] == "Policy-Tag: release"
        assert lines[1] == "Governance-Ref: GOV-TEST-001"
        assert lines[3] == (
            "Governance-Vector: build_risk=0.1000, rollback_cost=0.1500, stability_impact=0.9000"
        )
        assert lines[5] == f"Build-Timestamp: {FIXED_TIMESTAMP}"
        assert lines[6] == "Artifact-Count: 10"

    def test_parse_inverts_serialize(self, builder, verification):
        manifest = builder.build(StabilityTier.RELEASE, METRIC, verification, timestamp=FIXED_TIME)
        assert parse_annotation(serialize(manifest)) == manifest

    def test_parse_rejects_foreign_annotation(self):
        with pytest.raises(SealInvalid, match="missing"):
            parse_annotation("Release 1.2.3\n\nhand-written notes\n")

    def test_parse_rejects_unknown_tier(self, builder, verification):
        manifest = builder.build(StabilityTier.RELEASE, METRIC, verification, timestamp=FIXED_TIME)
        text = serialize(manifest).replace("Policy-Tag: release", "Policy-Tag: gold")
        with pytest.raises(SealInvalid, match="Malformed"):
            parse_annotation(text)


class TestVerifySeal:

    def test_valid(self, builder, verification, signer):
        manifest = builder.build(StabilityTier.RELEASE, METRIC, verification, timestamp=FIXED_TIME)
        assert verify_seal(manifest, signer)

    def test_wrong_key(self, builder, verification):
        manifest = builder.build(StabilityTier.RELEASE, METRIC, verification, timestamp=FIXED_TIME)
        assert not verify_seal(manifest, HmacSigner(b"another-secret"))

    def test_tampered_timestamp(self, builder, verification, signer):
        manifest = builder.build(StabilityTier.RELEASE, METRIC, verification, timestamp=FIXED_TIME)
        assert not verify_seal(replace(manifest, timestamp="2030-01-01T00:00:00Z"), signer)

    def test_non_hex_seal(self, builder, verification, signer):
        manifest = builder.build(StabilityTier.RELEASE, METRIC, verification, timestamp=FIXED_TIME)
        assert not verify_seal(replace(manifest, aura_seal="zz-not-hex"), signer)


def test_format_timestamp_naive_is_utc():
    assert format_timestamp(FIXED_TIME.replace(tzinfo=None)) == FIXED_TIMESTAMP
