"""Shared fixtures for governance tagger tests."""
from __future__ import annotations

import shutil
import subprocess
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

import pytest

from sinphase.config import TaggerConfig
from sinphase.engine import TagEngine
from sinphase.models import TagAlreadyExists, VcsError
from sinphase.signing import HmacSigner

FIXED_TIME = datetime(2026, 10, 19, 8, 30, 0, tzinfo=timezone.utc)
FIXED_TIMESTAMP = "2026-10-19T08:30:00Z"
HEAD_COMMIT = "c0ffee0000000000000000000000000000000001"
ARTIFACT_COUNT = 10


class FakeBackend:
    """In-memory VcsBackend recording every tag write."""

    def __init__(self, tags: Optional[dict] = None, changed: Optional[set] = None,
                 head: str = HEAD_COMMIT):
        self.tags: dict[str, tuple[str, str]] = dict(tags or {})
        self.changed = set(changed or ())
        self.head = head
        self.create_calls: list[str] = []
        self.changed_requests: list[tuple[Optional[str], str]] = []

    def list_changed_paths(self, from_ref, to_ref):
        self.changed_requests.append((from_ref, to_ref))
        return set(self.changed)

    def most_recent_tag(self):
        return list(self.tags)[-1] if self.tags else None

    def head_commit(self):
        return self.head

    def tag_exists(self, name):
        return name in self.tags

    def create_annotated_tag(self, name, annotation, target_commit):
        self.create_calls.append(name)
        if name in self.tags:
            raise TagAlreadyExists(name)
        self.tags[name] = (annotation, target_commit)

    def read_tag_annotation(self, name):
        if name not in self.tags:
            raise VcsError(f"No annotated tag named {name}", tag_name=name)
        return self.tags[name][0]


class StaticRunner:
    """TestRunner returning a fixed summary and counting invocations."""

    def __init__(self, summary):
        self.summary = summary
        self.calls = 0

    def run_tests(self):
        self.calls += 1
        return self.summary


def artifact_paths(count: int = ARTIFACT_COUNT) -> tuple[str, ...]:
    return tuple(f"dist/artifact_{i}.bin" for i in range(count))


@pytest.fixture
def artifact_dir(tmp_path: Path) -> Path:
    """Base directory holding dist/artifact_0.bin .. artifact_9.bin."""
    dist = tmp_path / "dist"
    dist.mkdir()
    for i, rel in enumerate(artifact_paths()):
        (tmp_path / rel).write_bytes(f"artifact {i}\n".encode())
    return tmp_path


@pytest.fixture
def make_config(artifact_dir: Path):
    def _make(count: int = ARTIFACT_COUNT, **overrides) -> TaggerConfig:
        values = dict(
            artifacts=artifact_paths(count),
            governance_ref="GOV-TEST-001",
            base_dir=artifact_dir,
        )
        values.update(overrides)
        return TaggerConfig(**values)
    return _make


@pytest.fixture
def signer() -> HmacSigner:
    return HmacSigner(b"test-secret")


@pytest.fixture
def backend() -> FakeBackend:
    return FakeBackend(changed={"src/core.py"})


@pytest.fixture
def make_engine(make_config, backend, signer):
    def _make(config: Optional[TaggerConfig] = None, runner=None, **kwargs) -> TagEngine:
        return TagEngine(
            config or make_config(),
            kwargs.pop("backend", backend),
            kwargs.pop("signer", signer),
            runner=runner,
            clock=lambda: FIXED_TIME,
        )
    return _make


# ---------------------------------------------------------------------------
# Real git repositories
# ---------------------------------------------------------------------------

def run_git(repo: Path, *args: str) -> str:
    result = subprocess.run(
        ["git", *args], cwd=repo, capture_output=True, text=True, check=True,
    )
    return result.stdout.strip()


def commit_file(repo: Path, rel: str, content: str, message: str = "change") -> str:
    path = repo / rel
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content)
    run_git(repo, "add", rel)
    run_git(repo, "commit", "-q", "-m", message)
    return run_git(repo, "rev-parse", "HEAD")


@pytest.fixture
def git_repo(tmp_path: Path, monkeypatch) -> Path:
    """A git repository with one commit, isolated from the user's git config."""
    if shutil.which("git") is None:
        pytest.skip("git not installed")
    home = tmp_path / "home"
    home.mkdir()
    monkeypatch.setenv("HOME", str(home))
    monkeypatch.setenv("GIT_CONFIG_NOSYSTEM", "1")
    for var in ("GIT_AUTHOR_NAME", "GIT_COMMITTER_NAME"):
        monkeypatch.setenv(var, "Release Bot")
    for var in ("GIT_AUTHOR_EMAIL", "GIT_COMMITTER_EMAIL"):
        monkeypatch.setenv(var, "release@example.com")

    repo = tmp_path / "repo"
    repo.mkdir()
    run_git(repo, "init", "-q")
    commit_file(repo, "README.md", "hello\n", "initial")
    return repo
