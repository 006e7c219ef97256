"""Mapping of requested paths to page files under the source root.

The layout mirrors the static-site generator: a directory is rendered from
its ``README.md`` (served as ``index.html``) and every other page from
``<name>.md`` (served as ``<name>.html``).
"""

import re
from pathlib import Path, PurePosixPath

from mdwiki.config import Settings
from mdwiki.core.errors import (
    InvalidPathError,
    ReservedPathError,
    TraversalError,
)
from mdwiki.core.models import WikiPath

# Files the generator owns, and top-level names taken by application routes.
RESERVED_NAMES = ("SUMMARY.md", "index.md")
RESERVED_PREFIXES = ("new", "edit", "upload", "images")

_DRIVE_PATTERN = re.compile(r"^[A-Za-z]:")


def _split(requested: str) -> tuple[list[str], bool]:
    """Split raw input into normalized parts.

    Returns (parts, is_directory). Raises TraversalError for anything that
    could leave the root, without touching the filesystem.
    """
    raw = requested.strip()
    if "\x00" in raw or "\\" in raw:
        raise TraversalError(context={"path": requested})
    if raw in ("", "/"):
        return [], True
    if raw.startswith("/") or _DRIVE_PATTERN.match(raw):
        raise TraversalError(context={"path": requested})

    parts = [part for part in raw.split("/") if part not in ("", ".")]
    if ".." in parts:
        raise TraversalError(context={"path": requested})
    return parts, raw.endswith("/") or not parts


def resolve(
    requested: str,
    root: Path,
    *,
    index_filename: str = "README.md",
    page_extension: str = ".md",
    reserved_names: tuple[str, ...] = RESERVED_NAMES,
    reserved_prefixes: tuple[str, ...] = RESERVED_PREFIXES,
) -> WikiPath:
    """Resolve a requested path to a page file inside ``root``.

    - empty, ``/`` or a trailing slash maps to the directory index file
    - an extensionless path naming an existing directory maps to its index
    - any other extensionless path gets ``page_extension``
    - ``<name>.html`` maps back to its source (``index.html`` to the index)

    Raises:
        TraversalError: ``..`` components, absolute paths, or a symlink that
            points outside ``root``.
        InvalidPathError: a non-Markdown extension or a hidden component.
        ReservedPathError: generator files and application route prefixes.
    """
    parts, is_directory = _split(requested)

    if not is_directory:
        name = parts[-1]
        suffix = PurePosixPath(name).suffix
        if not suffix:
            if root.joinpath(*parts).is_dir():
                is_directory = True
            else:
                parts[-1] = name + page_extension
        elif suffix == ".html":
            stem = name.removesuffix(".html")
            parts[-1] = index_filename if stem == "index" else stem + page_extension
        elif suffix != page_extension:
            raise InvalidPathError(context={"path": requested})

    if is_directory:
        parts.append(index_filename)

    if any(part.startswith(".") for part in parts):
        raise InvalidPathError(context={"path": requested})

    candidate = root.joinpath(*parts)
    try:
        candidate.resolve().relative_to(root.resolve())
    except ValueError:
        raise TraversalError(context={"path": requested}) from None

    if parts[-1] in reserved_names or (len(parts) > 1 and parts[0] in reserved_prefixes):
        raise ReservedPathError(context={"path": requested})

    return WikiPath(
        path="/".join(parts),
        root=root,
        index_filename=index_filename,
    )


class PathResolver:
    """Path resolution bound to the configured source root."""

    def __init__(self, settings: Settings):
        self.root = settings.source_path
        self.index_filename = settings.index_filename
        self.page_extension = settings.page_extension
        self.reserved_prefixes = tuple(
            dict.fromkeys(("new", "edit", "upload", settings.assets_dir))
        )

    def resolve(self, requested: str) -> WikiPath:
        return resolve(
            requested,
            self.root,
            index_filename=self.index_filename,
            page_extension=self.page_extension,
            reserved_prefixes=self.reserved_prefixes,
        )
