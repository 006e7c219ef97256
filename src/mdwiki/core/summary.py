"""Generation of the static-site generator's navigation file (SUMMARY.md)."""

from pathlib import Path, PurePosixPath

from mdwiki.core.paths import RESERVED_NAMES

SUMMARY_FILENAME = "SUMMARY.md"

SUMMARY_HEAD = "# Summary\n\n[Introduction](README.md)\n\n"


def _entry(path: PurePosixPath, title: str, link: PurePosixPath) -> str:
    level = len(path.parts) - 1
    return f"{'  ' * level}- [{title.replace('_', ' ')}]({link.as_posix()})\n"


def iter_tree(
    root: Path,
    *,
    index_filename: str = "README.md",
    page_extension: str = ".md",
    assets_dir: str = "images",
):
    """Yield (relative_path, is_directory) for every navigable entry.

    Entries come depth first, siblings sorted by name. Index files, generator
    files, hidden entries and the assets directory are skipped.
    """

    def visit(directory: Path):
        for child in sorted(directory.iterdir(), key=lambda p: p.name):
            relative = PurePosixPath(child.relative_to(root).as_posix())
            if child.name.startswith("."):
                continue
            if child.is_dir():
                if relative.parts[0] == assets_dir:
                    continue
                yield relative, True
                yield from visit(child)
            elif (
                child.suffix == page_extension
                and child.name != index_filename
                and child.name not in RESERVED_NAMES
            ):
                yield relative, False

    if root.is_dir():
        yield from visit(root)


def build_summary(
    root: Path,
    *,
    index_filename: str = "README.md",
    page_extension: str = ".md",
    assets_dir: str = "images",
) -> str:
    """Render SUMMARY.md for the pages under ``root``.

    Directories link to their index page, pages link to themselves, nesting
    follows the directory structure.
    """
    lines = [SUMMARY_HEAD]
    for relative, is_directory in iter_tree(
        root,
        index_filename=index_filename,
        page_extension=page_extension,
        assets_dir=assets_dir,
    ):
        if is_directory:
            lines.append(_entry(relative, relative.name, relative / index_filename))
        else:
            lines.append(_entry(relative, relative.stem, relative))
    return "".join(lines)
