"""Stability metric computation and the test-runner fallback.

sinphase = (present_count * passed) / (total * 10)

The ratio is kept exact (Fraction); the reported value is rounded to four
decimal places so threshold decisions are stable.
"""
from __future__ import annotations

import logging
import re
import shlex
import subprocess
from fractions import Fraction
from pathlib import Path
from typing import Optional, Protocol, Sequence, Union, runtime_checkable

from sinphase.models import NoTestData, SinphaseMetric, TestSummary, TestSummaryParseError

logger = logging.getLogger(__name__)

SCALE = 10

# "==== 45 passed, 5 failed, 2 skipped in 1.23s ====" or the -q form without rules
_PYTEST_SUMMARY = re.compile(r"^=*\s*(?P<body>.+?) in \d+(?:\.\d+)?s\b")
_PYTEST_COUNT = re.compile(r"^(\d+) (\w+)$")
_PYTEST_OUTCOMES = {
    "passed", "failed", "error", "errors", "skipped", "xfailed", "xpassed",
    "deselected", "warning", "warnings", "rerun",
}
# Explicit contract line for runners that are not pytest
_EXPLICIT_SUMMARY = re.compile(r"^SINPHASE passed=(\d+) total=(\d+)\s*$")


@runtime_checkable
class TestRunner(Protocol):
    """Structured collaborator: runs the suite and reports its counts."""

    def run_tests(self) -> TestSummary:
        ...


def _parse_pytest_body(body: str) -> Optional[TestSummary]:
    if body.strip() == "no tests ran":
        return TestSummary(passed=0, total=0)

    counts: dict[str, int] = {}
    for token in body.split(","):
        m = _PYTEST_COUNT.match(token.strip())
        if not m or m.group(2) not in _PYTEST_OUTCOMES:
            return None
        counts[m.group(2)] = counts.get(m.group(2), 0) + int(m.group(1))

    passed = counts.get("passed", 0) + counts.get("xpassed", 0)
    failed = counts.get("failed", 0) + counts.get("error", 0) + counts.get("errors", 0)
    return TestSummary(passed=passed, total=passed + failed)


def parse_summary(output: str) -> TestSummary:
    """Extract {passed, total} from test-runner output.

    The last recognised summary line wins. Accepts the pytest terminal
    summary and the explicit ``SINPHASE passed=<n> total=<m>`` line.

    Raises:
        TestSummaryParseError: If no line parses
    """
    for line in reversed(output.splitlines()):
        line = line.strip()
        if not line:
            continue

        explicit = _EXPLICIT_SUMMARY.match(line)
        if explicit:
            passed, total = int(explicit.group(1)), int(explicit.group(2))
            if passed > total:
                raise TestSummaryParseError(
                    f"Summary reports passed > total: {line!r}", line=line,
                )
            return TestSummary(passed=passed, total=total)

        m = _PYTEST_SUMMARY.match(line)
        if m:
            summary = _parse_pytest_body(m.group("body"))
            if summary is not None:
                return summary

    raise TestSummaryParseError("No test summary line found in runner output")


class SubprocessTestRunner:
    """Runs the configured test command and parses its summary line.

    Blocking and synchronous. ``timeout`` is the caller's policy; the core
    imposes none by default.
    """

    def __init__(
        self,
        command: Union[str, Sequence[str]],
        cwd: Optional[Union[str, Path]] = None,
        timeout: Optional[float] = None,
    ):
        self.command = shlex.split(command) if isinstance(command, str) else list(command)
        self.cwd = str(cwd) if cwd else None
        self.timeout = timeout

    def run_tests(self) -> TestSummary:
        logger.info("Running test command: %s", " ".join(self.command))
        try:
            result = subprocess.run(
                self.command,
                capture_output=True,
                text=True,
                cwd=self.cwd,
                timeout=self.timeout,
            )
        except subprocess.TimeoutExpired as e:
            raise TestSummaryParseError(
                f"Test command timed out after {self.timeout}s", timeout=self.timeout,
            ) from e
        except OSError as e:
            raise TestSummaryParseError(f"Test command could not start: {e}") from e

        # Non-zero exit is expected when tests fail; only the summary matters.
        summary = parse_summary(result.stdout + "\n" + result.stderr)
        logger.info("Test runner reported %d/%d passed", summary.passed, summary.total)
        return summary


class MetricCalculator:
    """Computes sinphase from artifact presence and test counts."""

    def __init__(self, runner: Optional[TestRunner] = None):
        self.runner = runner

    def summary(self, summary: Optional[TestSummary] = None) -> TestSummary:
        """Return the supplied summary, or derive one from the test runner."""
        if summary is not None:
            return summary
        if self.runner is None:
            raise TestSummaryParseError("No test summary supplied and no test runner configured")
        return self.runner.run_tests()

    def compute(self, present_count: int, summary: TestSummary) -> SinphaseMetric:
        """
        Raises:
            NoTestData: If summary.total == 0
        """
        if summary.total == 0:
            raise NoTestData(
                "Cannot compute sinphase: test total is 0",
                passed=summary.passed, total=summary.total,
            )
        if present_count < 0:
            raise ValueError(f"present_count must be non-negative: {present_count}")

        exact = Fraction(present_count * summary.passed, summary.total * SCALE)
        metric = SinphaseMetric(
            exact=exact,
            present_count=present_count,
            passed=summary.passed,
            total=summary.total,
        )
        logger.debug(
            "sinphase = (%d * %d) / (%d * %d) = %.4f",
            present_count, summary.passed, summary.total, SCALE, metric.value,
        )
        return metric
