"""Version control backend for the repository store.

The store only needs two mutating operations, ``stage`` and ``commit``, so
the backend is kept behind a small interface. ``GitVersionControl`` drives
the git binary through GitPython with a bounded timeout on every command.
"""

import logging
from abc import ABC, abstractmethod
from datetime import datetime
from pathlib import Path

from git import Repo
from git.exc import (
    GitCommandError,
    GitCommandNotFound,
    InvalidGitRepositoryError,
    NoSuchPathError,
)

from mdwiki.core.errors import RepositoryError, VCSCommandError
from mdwiki.core.models import Commit, Identity

logger = logging.getLogger(__name__)

# Separators for parsing `git log` output.
_RECORD = "\x1e"
_FIELD = "\x1f"


class VersionControl(ABC):
    """Abstract version control backend."""

    @abstractmethod
    def open(self) -> bool:
        """Open the repository, creating it if needed.

        Returns True if a new repository was initialized.
        """
        ...

    @abstractmethod
    def stage(self, paths: list[Path]) -> None:
        """Add the given working tree files to the index."""
        ...

    @abstractmethod
    def commit(self, message: str, author: Identity, paths: list[Path]) -> str:
        """Commit exactly ``paths``, ignoring anything else staged.

        Returns the new commit id.
        """
        ...

    @abstractmethod
    def head(self) -> str | None:
        """Current commit id, or None for an empty repository."""
        ...

    @abstractmethod
    def log(self, path: Path | None = None, limit: int = 20) -> list[Commit]:
        """Recent commits, newest first, optionally only those touching path."""
        ...


class GitVersionControl(VersionControl):
    """Git backend built on GitPython.

    Every command runs with ``kill_after_timeout`` so a stuck git process
    cannot hold the store lock forever.
    """

    def __init__(self, work_tree: Path, email: str, timeout: float = 10.0):
        self.work_tree = work_tree
        self.email = email
        self.timeout = timeout
        self._repo: Repo | None = None

    @property
    def repo(self) -> Repo:
        if self._repo is None:
            self.open()
        return self._repo

    def open(self) -> bool:
        try:
            self._repo = Repo(self.work_tree)
            logger.info("Using existing git repository at %s", self.work_tree)
            return False
        except (InvalidGitRepositoryError, NoSuchPathError):
            logger.info("No git repository at %s, initializing", self.work_tree)
        try:
            self.work_tree.mkdir(parents=True, exist_ok=True)
            self._repo = Repo.init(self.work_tree)
        except GitCommandNotFound as e:
            raise RepositoryError("git is not installed", {"error": str(e)}) from e
        except GitCommandError as e:
            raise RepositoryError(
                f"failed to init repository at {self.work_tree}", {"error": str(e)}
            ) from e
        return True

    def _relative(self, path: Path) -> str:
        try:
            return path.relative_to(self.work_tree).as_posix()
        except ValueError:
            raise VCSCommandError(f"{path} is outside the repository") from None

    def _run(self, command: str, *args: str, **kwargs):
        """Run a git command with the configured timeout."""
        try:
            return getattr(self.repo.git, command)(
                *args, kill_after_timeout=self.timeout, **kwargs
            )
        except GitCommandNotFound as e:
            raise RepositoryError("git is not installed", {"error": str(e)}) from e
        except GitCommandError as e:
            logger.warning("git %s failed: %s", command, e.stderr.strip() or e)
            raise VCSCommandError(
                f"git {command} failed", {"status": e.status, "stderr": e.stderr}
            ) from e

    def stage(self, paths: list[Path]) -> None:
        self._run("add", "--", *[self._relative(p) for p in paths])

    def commit(self, message: str, author: Identity, paths: list[Path]) -> str:
        env = {
            "GIT_AUTHOR_NAME": author.username,
            "GIT_AUTHOR_EMAIL": self.email,
            "GIT_COMMITTER_NAME": author.username,
            "GIT_COMMITTER_EMAIL": self.email,
        }
        args = ["--allow-empty", "--no-verify", "-m", message]
        if paths:
            # Anything else in the index stays out of this commit.
            args += ["--only", "--", *[self._relative(p) for p in paths]]
        self._run("commit", *args, env=env)
        sha = self.head()
        if sha is None:
            raise VCSCommandError("commit did not move HEAD")
        return sha

    def head(self) -> str | None:
        try:
            return self.repo.head.commit.hexsha
        except ValueError:
            # Unborn branch
            return None

    def log(self, path: Path | None = None, limit: int = 20) -> list[Commit]:
        if self.head() is None:
            return []
        args = [
            f"--max-count={limit}",
            f"--format={_RECORD}%H{_FIELD}%an{_FIELD}%aI{_FIELD}%s",
            "--name-only",
        ]
        if path is not None:
            args += ["--", self._relative(path)]
        output = self._run("log", *args)

        commits = []
        for record in output.split(_RECORD):
            if not record.strip():
                continue
            header, _, names = record.partition("\n")
            sha, author, date, subject = header.split(_FIELD, 3)
            commits.append(
                Commit(
                    sha=sha,
                    message=subject,
                    author=author,
                    paths=[line for line in names.splitlines() if line.strip()],
                    created=datetime.fromisoformat(date),
                )
            )
        return commits
