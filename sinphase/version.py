"""Semantic-version resolution from the paths changed since the last tag."""
from __future__ import annotations

import fnmatch
import logging
import re
from typing import Iterable, Optional, Sequence, Union

from sinphase.models import SemanticVersion, VersionBumpClass, VersionResolution

logger = logging.getLogger(__name__)

BASELINE = SemanticVersion(0, 0, 0)

DEFAULT_PUBLIC_INTERFACE_PATTERNS = ("include/*", "api/*", "*.pyi")
DEFAULT_CORE_IMPLEMENTATION_PATTERNS = ("src/*", "lib/*")

_VERSION_PATTERN = re.compile(r"(?<!\d)(0|[1-9]\d*)\.(0|[1-9]\d*)\.(0|[1-9]\d*)(?!\d)")


def parse_version(text: str) -> Optional[SemanticVersion]:
    """Find the first MAJOR.MINOR.PATCH in ``text`` (e.g. a tag name like v1.2.3-beta)."""
    m = _VERSION_PATTERN.search(text)
    if not m:
        return None
    return SemanticVersion(int(m.group(1)), int(m.group(2)), int(m.group(3)))


def increment(version: Union[str, SemanticVersion], bump: VersionBumpClass) -> SemanticVersion:
    """Apply a bump; lower-order fields reset to zero on major/minor."""
    if isinstance(version, str):
        parsed = parse_version(version)
        if parsed is None:
            raise ValueError(f"Not a semantic version: {version!r}")
        version = parsed
    if bump is VersionBumpClass.MAJOR:
        return SemanticVersion(version.major + 1, 0, 0)
    if bump is VersionBumpClass.MINOR:
        return SemanticVersion(version.major, version.minor + 1, 0)
    return SemanticVersion(version.major, version.minor, version.patch + 1)


def _matches_any(path: str, patterns: Sequence[str]) -> bool:
    return any(fnmatch.fnmatchcase(path, p) for p in patterns)


def classify_changes(
    paths: Iterable[str],
    public_patterns: Sequence[str] = DEFAULT_PUBLIC_INTERFACE_PATTERNS,
    core_patterns: Sequence[str] = DEFAULT_CORE_IMPLEMENTATION_PATTERNS,
) -> VersionBumpClass:
    """Most significant area touched wins: public interface > core > anything else."""
    paths = list(paths)
    if any(_matches_any(p, public_patterns) for p in paths):
        return VersionBumpClass.MAJOR
    if any(_matches_any(p, core_patterns) for p in paths):
        return VersionBumpClass.MINOR
    return VersionBumpClass.PATCH


class VersionResolver:
    """Derives the next version from the most recent tag and the changes since it.

    Usage:
        resolver = VersionResolver(GitBackend(repo_root))
        resolution = resolver.resolve()
        print(resolution.next)
    """

    def __init__(
        self,
        backend,
        public_patterns: Sequence[str] = DEFAULT_PUBLIC_INTERFACE_PATTERNS,
        core_patterns: Sequence[str] = DEFAULT_CORE_IMPLEMENTATION_PATTERNS,
    ):
        self.backend = backend
        self.public_patterns = tuple(public_patterns)
        self.core_patterns = tuple(core_patterns)

    def previous(self) -> tuple[Optional[str], SemanticVersion]:
        tag = self.backend.most_recent_tag()
        if tag is None:
            return None, BASELINE
        version = parse_version(tag)
        if version is None:
            logger.warning("Most recent tag %r carries no version; using %s", tag, BASELINE)
            return tag, BASELINE
        return tag, version

    def resolve(self, to_ref: str = "HEAD") -> VersionResolution:
        previous_tag, previous = self.previous()
        changed = sorted(self.backend.list_changed_paths(previous_tag, to_ref))
        if previous_tag is not None and not changed:
            # Re-tagging an unchanged tree resolves to the existing version
            logger.info("No changes since %s; version stays %s", previous_tag, previous)
            return VersionResolution(
                previous_tag=previous_tag, previous=previous, bump=None, next=previous,
            )

        bump = classify_changes(changed, self.public_patterns, self.core_patterns)
        resolution = VersionResolution(
            previous_tag=previous_tag,
            previous=previous,
            bump=bump,
            next=increment(previous, bump),
            changed_paths=tuple(changed),
        )
        logger.info(
            "Version %s -> %s (%s bump, %d changed path(s) since %s)",
            previous, resolution.next, bump.value, len(changed), previous_tag or "baseline",
        )
        return resolution
