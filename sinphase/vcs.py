"""Version-control backend: the protocol the engine talks to, and its git implementation."""
from __future__ import annotations

import fcntl
import logging
import subprocess
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional, Protocol, Union, runtime_checkable

from sinphase.models import RepositoryLocked, TagAlreadyExists, VcsError

logger = logging.getLogger(__name__)

LOCK_FILENAME = "sinphase-tag.lock"


@runtime_checkable
class VcsBackend(Protocol):
    """Operations the tagging pipeline needs from version control."""

    def list_changed_paths(self, from_ref: Optional[str], to_ref: str) -> set[str]:
        """Paths changed between two refs; every tracked path when from_ref is None."""
        ...

    def most_recent_tag(self) -> Optional[str]:
        ...

    def head_commit(self) -> str:
        ...

    def tag_exists(self, name: str) -> bool:
        ...

    def create_annotated_tag(self, name: str, annotation: str, target_commit: str) -> None:
        """Raises TagAlreadyExists instead of overwriting."""
        ...

    def read_tag_annotation(self, name: str) -> str:
        ...


class GitBackend:
    """VcsBackend over the ``git`` command line."""

    def __init__(self, repo_root: Union[str, Path, None] = None):
        self.repo_root = Path(repo_root) if repo_root else Path.cwd()

    def _git(self, *args: str, stdin: Optional[str] = None) -> subprocess.CompletedProcess:
        try:
            return subprocess.run(
                ["git", *args],
                cwd=self.repo_root,
                input=stdin,
                capture_output=True,
                text=True,
            )
        except OSError as e:
            raise VcsError(f"git could not be executed: {e}") from e

    def _git_checked(self, *args: str, stdin: Optional[str] = None) -> str:
        result = self._git(*args, stdin=stdin)
        if result.returncode != 0:
            raise VcsError(
                f"git {args[0]} failed: {result.stderr.strip()}",
                command=["git", *args],
                returncode=result.returncode,
            )
        return result.stdout

    @property
    def git_dir(self) -> Path:
        git_dir = Path(self._git_checked("rev-parse", "--git-dir").strip())
        return git_dir if git_dir.is_absolute() else self.repo_root / git_dir

    def head_commit(self) -> str:
        return self._git_checked("rev-parse", "HEAD").strip()

    def most_recent_tag(self) -> Optional[str]:
        result = self._git("describe", "--tags", "--abbrev=0")
        if result.returncode == 0:
            return result.stdout.strip() or None
        stderr = result.stderr.lower()
        if "no names found" in stderr or "no tags can describe" in stderr:
            return None
        raise VcsError(f"git describe failed: {result.stderr.strip()}")

    def list_changed_paths(self, from_ref: Optional[str], to_ref: str = "HEAD") -> set[str]:
        if from_ref is None:
            output = self._git_checked("ls-tree", "-r", "--name-only", to_ref)
        else:
            output = self._git_checked("diff", "--name-only", from_ref, to_ref)
        return {line for line in output.splitlines() if line}

    def tag_exists(self, name: str) -> bool:
        return self._git("rev-parse", "-q", "--verify", f"refs/tags/{name}").returncode == 0

    def create_annotated_tag(self, name: str, annotation: str, target_commit: str) -> None:
        if self.tag_exists(name):
            raise TagAlreadyExists(name)
        result = self._git(
            "tag", "-a", "--cleanup=verbatim", "-F", "-", name, target_commit,
            stdin=annotation,
        )
        if result.returncode != 0:
            if "already exists" in result.stderr:
                raise TagAlreadyExists(name)
            raise VcsError(f"git tag failed: {result.stderr.strip()}", tag_name=name)
        logger.info("Created annotated tag %s -> %s", name, target_commit[:12])

    def read_tag_annotation(self, name: str) -> str:
        result = self._git("cat-file", "tag", name)
        if result.returncode != 0:
            raise VcsError(f"No annotated tag named {name}: {result.stderr.strip()}", tag_name=name)
        # Tag object: header lines, blank line, message
        _, _, message = result.stdout.partition("\n\n")
        return message


@contextmanager
def repository_lock(git_dir: Union[str, Path]) -> Iterator[Path]:
    """Exclusive, non-blocking advisory lock serializing tag runs on one repository.

    Raises:
        RepositoryLocked: If another run holds the lock
    """
    lock_path = Path(git_dir) / LOCK_FILENAME
    fd = open(lock_path, "w")
    try:
        try:
            fcntl.flock(fd.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
        except OSError as e:
            raise RepositoryLocked(
                f"Another tagging run holds {lock_path}", lock=str(lock_path),
            ) from e
        logger.debug("Acquired repository lock %s", lock_path)
        try:
            yield lock_path
        finally:
            fcntl.flock(fd.fileno(), fcntl.LOCK_UN)
    finally:
        fd.close()
