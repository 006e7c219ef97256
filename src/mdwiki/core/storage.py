"""Repository store: page files in a git working tree.

Every mutation writes files atomically and records them in one commit.
Mutations are serialized by a lock owned by the store; reads never take it.
"""

import contextlib
import logging
import os
import tempfile
import threading
from collections.abc import Iterator, Mapping
from datetime import datetime, timezone
from pathlib import Path

from mdwiki.config import Settings
from mdwiki.core.errors import (
    AlreadyExistsError,
    CommitFailedError,
    NotFoundError,
    VCSCommandError,
    WriteFailedError,
)
from mdwiki.core.models import Commit, Identity, WikiPath
from mdwiki.core.summary import SUMMARY_FILENAME, build_summary
from mdwiki.core.vcs import GitVersionControl, VersionControl

logger = logging.getLogger(__name__)

DEFAULT_BOOK_TOML = """\
[book]
title = "{title}"
authors = []
language = "en"
src = "{source_dir}"

[build]
build-dir = "book"
create-missing = false
"""

DEFAULT_GITIGNORE = "/book/\n"

DEFAULT_README = """\
# {title}

Welcome to your wiki.

## Instructions

Log in, then use the edit button on any page or create a new page. Every
save is recorded as a git commit in the wiki directory.
"""


class RepositoryStore:
    """Reads and commits page files under the wiki's source root."""

    def __init__(self, settings: Settings, vcs: VersionControl | None = None):
        self.settings = settings
        self.wiki_root = settings.wiki_root
        self.source_root = settings.source_path
        self.vcs = vcs or GitVersionControl(
            settings.wiki_root,
            email=settings.commit_email,
            timeout=settings.git_timeout,
        )
        self.lock_timeout = settings.lock_timeout
        self._lock = threading.Lock()

    @contextlib.contextmanager
    def locked(self) -> Iterator[None]:
        """Hold the single-writer lock, giving up after ``lock_timeout``."""
        if not self._lock.acquire(timeout=self.lock_timeout):
            logger.warning("Timed out waiting for the repository lock")
            raise WriteFailedError("The wiki is busy, please try again.")
        try:
            yield
        finally:
            self._lock.release()

    # ========== Reads ==========

    def exists(self, path: WikiPath) -> bool:
        return path.absolute.is_file()

    def read(self, path: WikiPath) -> bytes:
        """Return the raw bytes of a page."""
        try:
            return path.absolute.read_bytes()
        except (FileNotFoundError, IsADirectoryError, NotADirectoryError):
            raise NotFoundError(context={"path": str(path)}) from None

    def read_text(self, path: WikiPath) -> str:
        return self.read(path).decode("utf-8")

    def history(self, path: WikiPath | None = None, limit: int = 20) -> list[Commit]:
        """Recent commits, newest first."""
        return self.vcs.log(path.absolute if path is not None else None, limit)

    # ========== Writes ==========

    def write(
        self, path: WikiPath, content: bytes, author: Identity, message: str
    ) -> Commit:
        """Atomically write one page and commit it."""
        with self.locked():
            return self._apply({path.absolute: content}, author, message)

    def write_many(
        self, changes: Mapping[WikiPath, bytes], author: Identity, message: str
    ) -> Commit:
        """Atomically write several pages and commit them together."""
        with self.locked():
            return self._apply(
                {path.absolute: content for path, content in changes.items()},
                author,
                message,
            )

    def create(
        self, path: WikiPath, content: bytes, author: Identity, message: str
    ) -> Commit:
        """Create a new page.

        Missing index pages of the containing directories are created too,
        and the navigation file is regenerated when ``manage_summary`` is set.
        Everything lands in a single commit.
        """
        with self.locked():
            if self.exists(path):
                raise AlreadyExistsError(context={"path": str(path)})

            files: dict[Path, bytes] = {}
            for directory in reversed(path.directories):
                index = path.root / directory / self.settings.index_filename
                if index != path.absolute and not index.is_file():
                    logger.debug("Creating index page %s", index)
                    files[index] = f"# {directory.name}".encode()
            files[path.absolute] = content

            summary = None
            if self.settings.manage_summary:
                summary = self.source_root / SUMMARY_FILENAME
            return self._apply(files, author, message, summary=summary)

    def update(
        self, path: WikiPath, content: bytes, author: Identity, message: str
    ) -> Commit:
        """Replace the content of an existing page."""
        with self.locked():
            if not self.exists(path):
                raise NotFoundError(context={"path": str(path)})
            return self._apply({path.absolute: content}, author, message)

    def _apply(
        self,
        files: Mapping[Path, bytes],
        author: Identity,
        message: str,
        summary: Path | None = None,
        also_stage: list[Path] | None = None,
    ) -> Commit:
        """Write files, then stage and commit exactly those files.

        Must be called with the lock held.
        """
        written: list[Path] = []
        previous: dict[Path, bytes | None] = {}
        new_dirs = self._missing_dirs([*files, *([summary] if summary else [])])
        try:
            for target, content in files.items():
                previous[target] = target.read_bytes() if target.is_file() else None
                self._atomic_write(target, content)
                written.append(target)
            if summary is not None:
                rendered = build_summary(
                    self.source_root,
                    index_filename=self.settings.index_filename,
                    page_extension=self.settings.page_extension,
                    assets_dir=self.settings.assets_dir,
                )
                previous[summary] = summary.read_bytes() if summary.is_file() else None
                self._atomic_write(summary, rendered.encode("utf-8"))
                written.append(summary)
        except OSError as e:
            logger.warning("Write failed after %d file(s): %s", len(written), e)
            self._rollback(written, previous, new_dirs)
            raise WriteFailedError(context={"error": str(e)}) from e

        try:
            to_stage = written + (also_stage or [])
            if to_stage:
                self.vcs.stage(to_stage)
            sha = self.vcs.commit(message, author, to_stage)
        except VCSCommandError as e:
            logger.warning("Commit %r failed: %s", message, e.message)
            raise CommitFailedError(context=e.context) from e

        logger.info("Committed %s: %s (%s)", sha[:8], message, author.username)
        return Commit(
            sha=sha,
            message=message,
            author=author.username,
            paths=[p.relative_to(self.wiki_root).as_posix() for p in written],
            created=datetime.now(timezone.utc),
        )

    def _missing_dirs(self, targets: list[Path]) -> list[Path]:
        """Directories that writing ``targets`` would create, deepest first."""
        missing: set[Path] = set()
        for target in targets:
            for directory in target.parents:
                if directory == self.wiki_root or directory.exists():
                    break
                missing.add(directory)
        return sorted(missing, key=lambda p: len(p.parts), reverse=True)

    def _rollback(
        self,
        written: list[Path],
        previous: Mapping[Path, bytes | None],
        new_dirs: list[Path],
    ) -> None:
        """Undo a partially applied write so no uncommitted files remain."""
        for target in reversed(written):
            try:
                if previous[target] is None:
                    target.unlink(missing_ok=True)
                else:
                    self._atomic_write(target, previous[target])
            except OSError as e:
                logger.error("Could not roll back %s: %s", target, e)
        for directory in new_dirs:
            # Still holds something we did not write
            with contextlib.suppress(OSError):
                directory.rmdir()

    @staticmethod
    def _atomic_write(target: Path, content: bytes) -> None:
        """Write via a temp file in the same directory and rename over target."""
        target.parent.mkdir(parents=True, exist_ok=True)
        mode = target.stat().st_mode & 0o777 if target.exists() else 0o644
        fd, tmp = tempfile.mkstemp(
            dir=target.parent, prefix=f".{target.name}.", suffix=".tmp"
        )
        try:
            with os.fdopen(fd, "wb") as fh:
                fh.write(content)
                fh.flush()
                os.fsync(fh.fileno())
            os.chmod(tmp, mode)
            os.replace(tmp, target)
        except BaseException:
            with contextlib.suppress(FileNotFoundError):
                os.unlink(tmp)
            raise

    # ========== Bootstrap ==========

    def initialize(self) -> Commit | None:
        """Create the wiki layout and git repository if they are missing.

        Returns the initial commit, or None when the wiki already existed.
        """
        with self.locked():
            created_repo = self.vcs.open()
            self.settings.assets_path.mkdir(parents=True, exist_ok=True)

            gitignore = DEFAULT_GITIGNORE
            if self.settings.ignore_assets:
                assets = self.settings.assets_path.relative_to(self.wiki_root)
                gitignore += f"/{assets.as_posix()}/\n"

            title = self.settings.app_title
            scaffold = {
                self.wiki_root / "book.toml": DEFAULT_BOOK_TOML.format(
                    title=title, source_dir=self.settings.source_dir
                ),
                self.wiki_root / ".gitignore": gitignore,
                self.source_root / self.settings.index_filename: DEFAULT_README.format(
                    title=title
                ),
            }
            missing = {
                path: content.encode("utf-8")
                for path, content in scaffold.items()
                if not path.exists()
            }
            summary = None
            if self.settings.manage_summary and (
                missing or not (self.source_root / SUMMARY_FILENAME).exists()
            ):
                summary = self.source_root / SUMMARY_FILENAME

            if not missing and summary is None and not created_repo:
                logger.info("Using existing wiki at %s", self.wiki_root)
                return None

            logger.info("Setting up wiki at %s", self.wiki_root)
            return self._apply(
                missing,
                Identity(username=self.settings.system_user),
                "Initial mdwiki commit",
                summary=summary,
                also_stage=[self.wiki_root] if created_repo else None,
            )
