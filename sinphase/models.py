"""Data models and error taxonomy for the governance tagger."""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum, IntEnum
from fractions import Fraction
from functools import total_ordering
from typing import Any, Optional


# ---------------------------------------------------------------------------
# Exit statuses
# ---------------------------------------------------------------------------

class ExitStatus(IntEnum):
    """Process-style status returned by every engine entry point."""
    SUCCESS = 0
    ADVISORY = 1
    FATAL = 2


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------

class SinphaseError(Exception):
    """Base error. Carries a stable code plus the numeric context behind it.

    Attributes:
        code: Stable error category used by downstream tooling
        fatal: False only for advisory conditions
        context: Values that produced the error (metric, threshold, ...)
    """

    code = "SINPHASE_ERROR"
    fatal = True

    def __init__(self, message: str, **context: Any):
        super().__init__(message)
        self.message = message
        self.context = context

    def to_dict(self) -> dict:
        """Convert to dictionary for logging/serialization."""
        return {
            "error_type": type(self).__name__,
            "code": self.code,
            "fatal": self.fatal,
            "message": self.message,
            "context": dict(self.context),
        }


class ArtifactMissing(SinphaseError):
    """One or more declared artifacts are absent or unreadable."""
    code = "ARTIFACT_MISSING"
    fatal = False

    def __init__(self, missing: list[str]):
        super().__init__(
            f"{len(missing)} declared artifact(s) missing: {', '.join(missing)}",
            missing=list(missing),
        )
        self.missing = list(missing)


class NoTestData(SinphaseError):
    """Test summary has total == 0, so no metric can be computed."""
    code = "NO_TEST_DATA"


class TestSummaryParseError(SinphaseError):
    """Test runner output had no usable summary line."""
    code = "TEST_SUMMARY_PARSE_ERROR"
    __test__ = False


class BelowThreshold(SinphaseError):
    """Computed sinphase failed the configured governance bar."""
    code = "BELOW_THRESHOLD"

    def __init__(self, metric: float, threshold: float):
        super().__init__(
            f"sinphase {metric:g} is below threshold {threshold:g}",
            metric=metric,
            threshold=threshold,
        )
        self.metric = metric
        self.threshold = threshold


class ManifestBuildFailed(SinphaseError):
    """Hashing or signing failed while building the manifest."""
    code = "MANIFEST_BUILD_FAILED"


class TagAlreadyExists(SinphaseError):
    """A tag with the computed name already exists."""
    code = "TAG_ALREADY_EXISTS"

    def __init__(self, tag_name: str):
        super().__init__(f"Tag already exists: {tag_name}", tag_name=tag_name)
        self.tag_name = tag_name


class ConfigError(SinphaseError):
    """Configuration file or override is invalid."""
    code = "CONFIG_ERROR"


class VcsError(SinphaseError):
    """The version-control backend failed."""
    code = "VCS_ERROR"


class RepositoryLocked(SinphaseError):
    """Another tagging run holds the repository lock."""
    code = "REPOSITORY_LOCKED"


class SealInvalid(SinphaseError):
    """A tag's aura seal does not verify against its manifest."""
    code = "SEAL_INVALID"


# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------

@total_ordering
class StabilityTier(Enum):
    """Discrete stability classification, ordered alpha < ... < release."""
    ALPHA = "alpha"
    BETA = "beta"
    RC = "rc"
    STABLE = "stable"
    RELEASE = "release"

    @property
    def rank(self) -> int:
        return _TIER_ORDER.index(self)

    def __lt__(self, other: "StabilityTier") -> bool:
        if not isinstance(other, StabilityTier):
            return NotImplemented
        return self.rank < other.rank


_TIER_ORDER = [
    StabilityTier.ALPHA,
    StabilityTier.BETA,
    StabilityTier.RC,
    StabilityTier.STABLE,
    StabilityTier.RELEASE,
]


class VersionBumpClass(Enum):
    MAJOR = "major"
    MINOR = "minor"
    PATCH = "patch"


class EngineState(Enum):
    IDLE = "idle"
    VERIFYING = "verifying"
    COMPUTING = "computing"
    GATED = "gated"
    TAGGING = "tagging"
    DONE = "done"
    FAILED = "failed"


# ---------------------------------------------------------------------------
# Inputs
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class TestSummary:
    """Pass/fail counts produced by an external test runner."""
    passed: int
    total: int

    __test__ = False

    def __post_init__(self) -> None:
        if self.passed < 0 or self.total < 0:
            raise ValueError(f"Test counts must be non-negative: {self.passed}/{self.total}")
        if self.passed > self.total:
            raise ValueError(f"passed ({self.passed}) exceeds total ({self.total})")

    def to_dict(self) -> dict[str, int]:
        return {"passed": self.passed, "total": self.total}


@dataclass(frozen=True)
class ArtifactRecord:
    """One declared artifact after verification."""
    path: str
    present: bool


@dataclass(frozen=True)
class VerificationResult:
    """Outcome of probing an ArtifactSet."""
    records: tuple[ArtifactRecord, ...]

    @property
    def present_count(self) -> int:
        return sum(1 for r in self.records if r.present)

    @property
    def missing(self) -> list[str]:
        return [r.path for r in self.records if not r.present]

    @property
    def error(self) -> Optional[ArtifactMissing]:
        missing = self.missing
        return ArtifactMissing(missing) if missing else None

    def to_dict(self) -> dict[str, Any]:
        return {
            "declared": len(self.records),
            "present_count": self.present_count,
            "missing": self.missing,
        }


# ---------------------------------------------------------------------------
# Derived values
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class SinphaseMetric:
    """Stability metric: exact ratio plus its 4-decimal reported value."""
    exact: Fraction
    present_count: int
    passed: int
    total: int

    @property
    def value(self) -> float:
        return float(round(self.exact, 4))

    def to_dict(self) -> dict[str, Any]:
        return {
            "sinphase": self.value,
            "present_count": self.present_count,
            "passed": self.passed,
            "total": self.total,
        }


@dataclass(frozen=True, order=True)
class SemanticVersion:
    major: int = 0
    minor: int = 0
    patch: int = 0

    def __post_init__(self) -> None:
        if min(self.major, self.minor, self.patch) < 0:
            raise ValueError(f"Version fields must be non-negative: {self}")

    def __str__(self) -> str:
        return f"{self.major}.{self.minor}.{self.patch}"


@dataclass(frozen=True)
class VersionResolution:
    """Previous version, bump decision and the resulting next version.

    bump is None when nothing changed since the previous tag; next then equals previous.
    """
    previous_tag: Optional[str]
    previous: SemanticVersion
    bump: Optional[VersionBumpClass]
    next: SemanticVersion
    changed_paths: tuple[str, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {
            "previous_tag": self.previous_tag,
            "previous": str(self.previous),
            "bump": self.bump.value if self.bump else None,
            "next": str(self.next),
            "changed_paths": len(self.changed_paths),
        }


@dataclass(frozen=True)
class GovernanceVector:
    attack_risk: float
    rollback_cost: float
    stability_impact: float

    def to_dict(self) -> dict[str, float]:
        return {
            "build_risk": self.attack_risk,
            "rollback_cost": self.rollback_cost,
            "stability_impact": self.stability_impact,
        }


@dataclass(frozen=True)
class GovernanceManifest:
    """Signed governance record embedded verbatim in the tag annotation."""
    policy_tag: StabilityTier
    governance_ref: str
    entropy_checksum: str
    governance_vector: GovernanceVector
    aura_seal: str
    timestamp: str
    artifact_count: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "policy_tag": self.policy_tag.value,
            "governance_ref": self.governance_ref,
            "entropy_checksum": self.entropy_checksum,
            "governance_vector": self.governance_vector.to_dict(),
            "aura_seal": self.aura_seal,
            "timestamp": self.timestamp,
            "artifact_count": self.artifact_count,
        }


@dataclass(frozen=True)
class Tag:
    name: str
    annotation: str
    target_commit: str

    def to_dict(self) -> dict[str, str]:
        return {"name": self.name, "target_commit": self.target_commit}


# ---------------------------------------------------------------------------
# Entry-point outcomes
# ---------------------------------------------------------------------------

@dataclass
class VerifyOutcome:
    verification: VerificationResult

    @property
    def exit_status(self) -> ExitStatus:
        return ExitStatus.ADVISORY if self.verification.missing else ExitStatus.SUCCESS

    def to_dict(self) -> dict[str, Any]:
        error = self.verification.error
        return {
            "command": "verify",
            "status": self.exit_status.name,
            "exit_status": int(self.exit_status),
            "verification": self.verification.to_dict(),
            "error": error.to_dict() if error else None,
        }


@dataclass
class MetricOutcome:
    verification: Optional[VerificationResult] = None
    summary: Optional[TestSummary] = None
    metric: Optional[SinphaseMetric] = None
    tier: Optional[StabilityTier] = None
    error: Optional[SinphaseError] = None

    @property
    def exit_status(self) -> ExitStatus:
        if self.error is not None:
            return ExitStatus.FATAL if self.error.fatal else ExitStatus.ADVISORY
        return ExitStatus.SUCCESS

    def to_dict(self) -> dict[str, Any]:
        return {
            "command": "metric",
            "status": self.exit_status.name,
            "exit_status": int(self.exit_status),
            "summary": self.summary.to_dict() if self.summary else None,
            "metric": self.metric.to_dict() if self.metric else None,
            "tier": self.tier.value if self.tier else None,
            "error": self.error.to_dict() if self.error else None,
        }


@dataclass
class InspectOutcome:
    tag_name: str
    manifest: Optional[GovernanceManifest] = None
    seal_valid: bool = False
    error: Optional[SinphaseError] = None

    @property
    def exit_status(self) -> ExitStatus:
        return ExitStatus.SUCCESS if self.seal_valid and self.error is None else ExitStatus.FATAL

    def to_dict(self) -> dict[str, Any]:
        return {
            "command": "inspect",
            "status": self.exit_status.name,
            "exit_status": int(self.exit_status),
            "tag": self.tag_name,
            "seal_valid": self.seal_valid,
            "manifest": self.manifest.to_dict() if self.manifest else None,
            "error": self.error.to_dict() if self.error else None,
        }


@dataclass
class TagOutcome:
    """Final report of a tag() run: tag name, metric and tier, or the failure."""
    state: EngineState
    verification: Optional[VerificationResult] = None
    metric: Optional[SinphaseMetric] = None
    tier: Optional[StabilityTier] = None
    version: Optional[VersionResolution] = None
    manifest: Optional[GovernanceManifest] = None
    tag: Optional[Tag] = None
    dry_run: bool = False
    error: Optional[SinphaseError] = None
    warnings: list[str] = field(default_factory=list)

    @property
    def tag_name(self) -> Optional[str]:
        return self.tag.name if self.tag else None

    @property
    def exit_status(self) -> ExitStatus:
        if self.error is not None and self.error.fatal:
            return ExitStatus.FATAL
        if self.warnings:
            return ExitStatus.ADVISORY
        return ExitStatus.SUCCESS

    def to_dict(self) -> dict[str, Any]:
        return {
            "command": "tag",
            "state": self.state.value,
            "status": self.exit_status.name,
            "exit_status": int(self.exit_status),
            "dry_run": self.dry_run,
            "tag": self.tag_name,
            "sinphase": self.metric.value if self.metric else None,
            "tier": self.tier.value if self.tier else None,
            "version": self.version.to_dict() if self.version else None,
            "manifest": self.manifest.to_dict() if self.manifest else None,
            "verification": self.verification.to_dict() if self.verification else None,
            "error": self.error.to_dict() if self.error else None,
            "warnings": list(self.warnings),
        }
