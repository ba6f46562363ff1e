"""TagEngine - the single orchestrating entry point.

States: IDLE -> VERIFYING -> COMPUTING -> GATED -> TAGGING -> DONE,
with FAILED reachable from any state.

A tag is evidence of a stability claim: it is never created when sinphase
is below the configured threshold, and never overwritten. No stage is
retried; every failure is reported once and the run ends.

Usage:
    engine = TagEngine(config, GitBackend(root), load_signer("hmac-sha256", key))
    outcome = engine.tag()
    print(outcome.tag_name, outcome.exit_status)
"""
from __future__ import annotations

import logging
from datetime import datetime, timezone
from fractions import Fraction
from typing import Callable, Optional

from sinphase.artifacts import ArtifactVerifier
from sinphase.classifier import classify
from sinphase.config import TaggerConfig
from sinphase.manifest import ManifestBuilder, parse_annotation, serialize, verify_seal
from sinphase.metric import MetricCalculator, SubprocessTestRunner, TestRunner
from sinphase.models import (
    BelowThreshold,
    EngineState,
    InspectOutcome,
    MetricOutcome,
    SealInvalid,
    SinphaseError,
    Tag,
    TagAlreadyExists,
    TagOutcome,
    TestSummary,
    VerificationResult,
    VerifyOutcome,
)
from sinphase.signing import Signer
from sinphase.vcs import VcsBackend
from sinphase.version import VersionResolver

logger = logging.getLogger(__name__)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class TagEngine:
    """Verifies, measures, gates and tags one build per invocation."""

    def __init__(
        self,
        config: TaggerConfig,
        backend: VcsBackend,
        signer: Optional[Signer] = None,
        runner: Optional[TestRunner] = None,
        clock: Callable[[], datetime] = _utc_now,
    ):
        self.config = config
        self.backend = backend
        self.signer = signer
        if runner is None and config.test_command:
            runner = SubprocessTestRunner(
                config.test_command, cwd=config.base_dir, timeout=config.test_timeout,
            )
        self.clock = clock

        self.verifier = ArtifactVerifier(config.base_dir)
        self.calculator = MetricCalculator(runner)
        self.resolver = VersionResolver(
            backend,
            public_patterns=config.public_interface_patterns,
            core_patterns=config.core_implementation_patterns,
        )
        self.builder = ManifestBuilder(signer, config.governance_ref, config.base_dir)

        self.state = EngineState.IDLE
        self.failure: Optional[SinphaseError] = None

    def _enter(self, state: EngineState) -> None:
        logger.debug("TagEngine %s -> %s", self.state.value, state.value)
        self.state = state

    def _fail(self, error: SinphaseError) -> None:
        self.failure = error
        self._enter(EngineState.FAILED)
        log = logger.error if error.fatal else logger.warning
        log("%s: %s", error.code, error.message)

    def _reset(self) -> None:
        self.state = EngineState.IDLE
        self.failure = None

    def _verify(self) -> VerificationResult:
        self._enter(EngineState.VERIFYING)
        return self.verifier.verify(self.config.artifacts)

    # -----------------------------------------------------------------
    # Entry points
    # -----------------------------------------------------------------

    def verify(self) -> VerifyOutcome:
        """Check the declared artifacts. Missing artifacts are advisory."""
        self._reset()
        outcome = VerifyOutcome(verification=self._verify())
        self._enter(EngineState.DONE)
        return outcome

    def compute_metric(self, summary: Optional[TestSummary] = None) -> MetricOutcome:
        """Verify, then compute sinphase and its tier. Nothing is written."""
        self._reset()
        outcome = MetricOutcome(verification=self._verify())
        self._enter(EngineState.COMPUTING)
        try:
            outcome.summary = self.calculator.summary(summary)
            outcome.metric = self.calculator.compute(outcome.verification.present_count, outcome.summary)
        except SinphaseError as e:
            outcome.error = e
            self._fail(e)
            return outcome

        outcome.tier = classify(outcome.metric)
        self._enter(EngineState.DONE)
        logger.info("sinphase=%.4f tier=%s", outcome.metric.value, outcome.tier.value)
        return outcome

    def tag(self, summary: Optional[TestSummary] = None, dry_run: bool = False) -> TagOutcome:
        """Run the full pipeline and issue the annotated tag if the gate passes."""
        self._reset()
        outcome = TagOutcome(state=self.state, dry_run=dry_run)

        def failed(error: SinphaseError) -> TagOutcome:
            self._fail(error)
            outcome.error = error
            outcome.state = self.state
            return outcome

        # Verifying: advisory unless the caller made artifacts a precondition
        outcome.verification = self._verify()
        missing = outcome.verification.error
        if missing is not None:
            if self.config.require_artifacts:
                missing.fatal = True
                return failed(missing)
            outcome.warnings.append(missing.message)
            logger.warning("%s (continuing, verification is advisory)", missing.message)

        # Computing
        self._enter(EngineState.COMPUTING)
        try:
            run_summary = self.calculator.summary(summary)
            outcome.metric = self.calculator.compute(outcome.verification.present_count, run_summary)
            outcome.tier = classify(outcome.metric)
            outcome.version = self.resolver.resolve()
            outcome.manifest = self.builder.build(
                outcome.tier, outcome.metric, outcome.verification, timestamp=self.clock(),
            )
        except SinphaseError as e:
            return failed(e)

        # Gated: on the exact ratio, never the rounded report value
        self._enter(EngineState.GATED)
        if outcome.metric.exact < Fraction(str(self.config.threshold)):
            return failed(BelowThreshold(float(outcome.metric.exact), self.config.threshold))

        # An unchanged tree keeps its version; it already carries a governance tag
        if outcome.version.bump is None:
            return failed(TagAlreadyExists(outcome.version.previous_tag))

        name = self.config.tag_name(outcome.version.next, outcome.tier)
        annotation = serialize(outcome.manifest)

        if dry_run:
            outcome.tag = Tag(name=name, annotation=annotation, target_commit="")
            self._enter(EngineState.DONE)
            outcome.state = self.state
            logger.info("Dry run: would create tag %s", name)
            return outcome

        # Tagging: the only write in the pipeline
        self._enter(EngineState.TAGGING)
        try:
            target = self.backend.head_commit()
            self.backend.create_annotated_tag(name, annotation, target)
        except SinphaseError as e:
            return failed(e)

        outcome.tag = Tag(name=name, annotation=annotation, target_commit=target)
        self._enter(EngineState.DONE)
        outcome.state = self.state
        logger.info(
            "Tagged %s at %s (sinphase=%.4f, tier=%s)",
            name, target[:12], outcome.metric.value, outcome.tier.value,
        )
        return outcome

    def inspect_tag(self, name: str) -> InspectOutcome:
        """Read an existing tag's manifest and verify its aura seal."""
        outcome = InspectOutcome(tag_name=name)
        if self.signer is None:
            outcome.error = SealInvalid("No signer configured; cannot verify seal", tag_name=name)
            return outcome
        try:
            outcome.manifest = parse_annotation(self.backend.read_tag_annotation(name))
        except SinphaseError as e:
            outcome.error = e
            return outcome

        outcome.seal_valid = verify_seal(outcome.manifest, self.signer)
        if not outcome.seal_valid:
            outcome.error = SealInvalid(
                f"Aura seal on {name} does not verify ({self.signer.algorithm})", tag_name=name,
            )
            logger.error(outcome.error.message)
        return outcome
