"""Data models for mdwiki."""

from datetime import datetime
from enum import Enum
from pathlib import Path, PurePosixPath

from pydantic import BaseModel, ConfigDict, Field, field_validator


class WikiPath(BaseModel):
    """A validated page path, relative to the source root.

    Build these from request input with :func:`mdwiki.core.paths.resolve`.
    The validator only rejects absolute and ``..`` paths.
    """

    model_config = ConfigDict(frozen=True)

    path: str
    root: Path
    index_filename: str = "README.md"

    @field_validator("path")
    @classmethod
    def _check_relative(cls, value: str) -> str:
        pure = PurePosixPath(value)
        if pure.is_absolute() or ".." in pure.parts or not pure.parts:
            raise ValueError(f"not a wiki-relative path: {value!r}")
        return value

    def __str__(self) -> str:
        return self.path

    @property
    def pure(self) -> PurePosixPath:
        return PurePosixPath(self.path)

    @property
    def absolute(self) -> Path:
        """Filesystem path of the page file."""
        return self.root.joinpath(*self.pure.parts)

    @property
    def is_index(self) -> bool:
        return self.pure.name == self.index_filename

    @property
    def directories(self) -> list[PurePosixPath]:
        """Containing directories, innermost first, excluding the root."""
        return [p for p in self.pure.parents if p != PurePosixPath(".")]

    @property
    def depth(self) -> int:
        return len(self.pure.parts)

    @property
    def url(self) -> str:
        """URL the static-site generator serves this page at."""
        if self.is_index:
            parent = self.pure.parent
            return "/" if parent == PurePosixPath(".") else f"/{parent}/"
        return "/" + str(self.pure.with_suffix(".html"))

    @property
    def title(self) -> str:
        """Human readable name derived from the file or directory name."""
        source = self.pure.parent.name if self.is_index else self.pure.stem
        return (source or "README").replace("_", " ")


class Identity(BaseModel):
    """An authenticated user."""

    model_config = ConfigDict(frozen=True)

    username: str


class Commit(BaseModel):
    """A commit recorded by the repository store."""

    sha: str
    message: str
    author: str
    paths: list[str] = Field(default_factory=list)
    created: datetime | None = None


class Session(BaseModel):
    """Server-side session record."""

    token: str
    username: str
    created_at: datetime
    expires_at: datetime

    def is_expired(self, now: datetime) -> bool:
        return now >= self.expires_at


class AssetReference(BaseModel):
    """A stored upload and the URL that page content can use for it."""

    name: str
    content_type: str
    size: int
    url: str
    created: bool = True


class EditState(str, Enum):
    """States a create/edit request moves through."""

    RECEIVED = "received"
    AUTHORIZING = "authorizing"
    RESOLVING_PATH = "resolving_path"
    WRITING = "writing"
    COMMITTING = "committing"
    DONE = "done"

    UNAUTHORIZED = "unauthorized"
    INVALID_PATH = "invalid_path"
    NOT_FOUND = "not_found"
    ALREADY_EXISTS = "already_exists"
    WRITE_FAILED = "write_failed"
    COMMIT_FAILED = "commit_failed"

    @property
    def is_terminal(self) -> bool:
        return self not in _IN_PROGRESS

    @property
    def is_error(self) -> bool:
        return self.is_terminal and self is not EditState.DONE


_IN_PROGRESS = frozenset(
    {
        EditState.RECEIVED,
        EditState.AUTHORIZING,
        EditState.RESOLVING_PATH,
        EditState.WRITING,
        EditState.COMMITTING,
    }
)


class EditOutcome(BaseModel):
    """Result of one create/edit request."""

    state: EditState
    history: list[EditState] = Field(default_factory=list)
    path: WikiPath | None = None
    commit: Commit | None = None
    content: str = ""
    message: str | None = None

    @property
    def ok(self) -> bool:
        return self.state is EditState.DONE
