"""Shared fixtures."""

import shutil
from pathlib import Path

import pytest

from mdwiki.config import Settings
from mdwiki.core.auth import hash_password
from mdwiki.core.errors import VCSCommandError
from mdwiki.core.models import Commit, Identity
from mdwiki.core.vcs import VersionControl

requires_git = pytest.mark.skipif(shutil.which("git") is None, reason="git not installed")

# Low iteration count keeps the suite fast; production hashes use the default.
ALICE_PASSWORD = "wonderland"
ALICE_HASH = hash_password(ALICE_PASSWORD, iterations=1000)


class FakeVersionControl(VersionControl):
    """In-memory backend that records what the store asks of it."""

    def __init__(self, fail_commit: bool = False):
        self.fail_commit = fail_commit
        self.staged: list[Path] = []
        self.commits: list[Commit] = []
        self.opened = False

    def open(self) -> bool:
        created = not self.opened
        self.opened = True
        return created

    def stage(self, paths: list[Path]) -> None:
        self.staged.extend(paths)

    def commit(self, message: str, author: Identity, paths: list[Path]) -> str:
        if self.fail_commit:
            raise VCSCommandError("git commit failed", {"stderr": "simulated"})
        sha = f"{len(self.commits) + 1:040x}"
        self.commits.append(
            Commit(
                sha=sha,
                message=message,
                author=author.username,
                paths=[str(p) for p in paths],
            )
        )
        self.staged = [p for p in self.staged if p not in paths]
        return sha

    def head(self) -> str | None:
        return self.commits[-1].sha if self.commits else None

    def log(self, path: Path | None = None, limit: int = 20) -> list[Commit]:
        commits = [
            c for c in reversed(self.commits) if path is None or str(path) in c.paths
        ]
        return commits[:limit]


@pytest.fixture
def settings(tmp_path):
    return Settings(
        _env_file=None,
        wiki_root=tmp_path / "wiki",
        users={"alice": ALICE_HASH},
        lock_timeout=10.0,
        git_timeout=30.0,
    )


@pytest.fixture
def alice():
    return Identity(username="alice")


@pytest.fixture
def bob():
    return Identity(username="bob")
