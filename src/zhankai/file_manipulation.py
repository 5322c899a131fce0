from __future__ import annotations

import os
from pathlib import Path
from typing import TYPE_CHECKING, NamedTuple

from zhankai.config import MAX_FILE_LINES, PREVIEW_LINES, FileType, guess_file_type, guess_language
from zhankai.logging import get_logger

if TYPE_CHECKING:
    import structlog

    from zhankai.ignore_rules import IgnoreSet


class Entry(NamedTuple):
    """A directory entry that survived filtering."""

    path: Path
    rel: str
    is_dir: bool


def relpath(path: Path, root: Path) -> str:
    """Send the relative path of path from root.

    Args:
        path (Path): the path to "relativise"
        root (Path): the root to relativise from

    Returns:
        str: the relative path from root to path, with POSIX separators.
            If path is not under root, returns the original path as a string.
    """
    try:
        return path.relative_to(root).as_posix()
    except ValueError:
        return str(path)


def file_language(path: Path) -> str:
    """Determine the code fence language of a file from its extension.

    Args:
        path (Path): the file path to analyze

    Returns:
        str: a language string such as "python" or "typescript", or "" if unknown
    """
    return guess_language(guess_file_type(path))


def is_image_file(path: Path) -> bool:
    """Check whether the extension of path is a known image type."""
    return guess_file_type(path) is FileType.IMAGE


def within_depth(depth: int | None, level: int) -> bool:
    """Tell whether a directory `level` below the root may be descended into.

    Args:
        depth (int | None): configured maximum depth, None for unbounded
        level (int): level of the directory, the root being 0

    Returns:
        bool: True if the directory is within the depth limit
    """
    return depth is None or level <= depth


def list_directory(directory: Path, *, sort_entries: bool = False) -> list[Path]:
    """List the children of a directory.

    The default order is whatever the platform directory listing returns;
    it is not alphabetical. Pass `sort_entries=True` for a case-insensitive
    name order that is stable across platforms.

    Args:
        directory (Path): the directory to list
        sort_entries (bool): sort children by name

    Raises:
        OSError: if the directory cannot be listed

    Returns:
        list[Path]: the children of `directory`
    """
    with os.scandir(directory) as it:
        children = [Path(e.path) for e in it]
    if sort_entries:
        children.sort(key=lambda p: (p.name.lower(), p.name))
    return children


def visible_entries(
    directory: Path,
    repo: Path,
    ignore_set: IgnoreSet,
    *,
    sort_entries: bool = False,
) -> list[Entry]:
    """List the entries of a directory that belong in the export.

    Ignored and excluded entries are dropped, as are directories whose name
    starts with a dot and symlinked directories.

    Args:
        directory (Path): the directory to list
        repo (Path): the repository root that ignore patterns are relative to
        ignore_set (IgnoreSet): the combined ignore rules
        sort_entries (bool): sort children by name

    Raises:
        OSError: if the directory cannot be listed

    Returns:
        list[Entry]: the retained entries, in listing order
    """
    out: list[Entry] = []
    for child in list_directory(directory, sort_entries=sort_entries):
        is_dir = child.is_dir()
        rel = relpath(child, repo)
        if ignore_set.is_excluded(rel, is_dir=is_dir):
            continue
        if is_dir and (child.name.startswith(".") or child.is_symlink()):
            continue
        out.append(Entry(path=child, rel=rel, is_dir=is_dir))
    return out


def read_text_file(path: Path) -> str:
    """Read a file as UTF-8 text.

    Raises:
        OSError: if the file cannot be opened
        UnicodeDecodeError: if the content is not valid UTF-8
    """
    return path.read_text(encoding="utf-8")


def take_preview(content: str) -> tuple[str, bool]:
    """Apply the line ceiling to a file's content.

    Lines are counted by splitting on newlines, so a trailing newline counts
    as an extra (empty) line.

    Args:
        content (str): the full file content

    Returns:
        tuple[str, bool]: the content to emit and whether it was truncated
    """
    lines = content.split("\n")
    if len(lines) > MAX_FILE_LINES:
        return "\n".join(lines[:PREVIEW_LINES]), True
    return content, False


def get_unique_filename(path: Path) -> Path:
    """Find a free file name by appending a counter before the extension.

    `file.md` is returned unchanged when it does not exist, otherwise the first
    free name among `file(1).md`, `file(2).md`, ... is returned.

    Args:
        path (Path): the desired file path

    Returns:
        Path: a path that does not exist yet
    """
    candidate = path
    counter = 1
    while candidate.exists():
        candidate = path.with_name(f"{path.stem}({counter}){path.suffix}")
        counter += 1
    return candidate


def build_tree_lines(
    repo: Path,
    ignore_set: IgnoreSet,
    *,
    depth: int | None = None,
    sort_entries: bool = False,
    logger: structlog.BoundLogger | None = None,
) -> list[str]:
    """Build a visual tree of the exported part of the repository.

    The same filtering and depth rules as the document body apply, so a
    directory shows up here exactly when it gets a heading in the body.

    Args:
        repo (Path): the repository root
        ignore_set (IgnoreSet): the combined ignore rules
        depth (int | None): maximum directory depth, None for unbounded
        sort_entries (bool): sort entries by name instead of listing order
        logger (structlog.BoundLogger | None): logger for unlistable directories

    Returns:
        list[str]: one string per tree line, without newlines
    """
    log = logger or get_logger()
    lines: list[str] = []

    def walk(directory: Path, prefix: str, level: int) -> None:
        try:
            entries = visible_entries(directory, repo, ignore_set, sort_entries=sort_entries)
        except OSError as e:
            log.error("structure_listing_failed", directory=str(directory), error=str(e))
            return
        entries = [e for e in entries if not e.is_dir or within_depth(depth, level + 1)]
        for idx, entry in enumerate(entries):
            last = idx == len(entries) - 1
            branch = "└── " if last else "├── "
            lines.append(prefix + branch + entry.path.name)
            if entry.is_dir:
                ext = "    " if last else "│   "
                walk(entry.path, prefix + ext, level + 1)

    walk(repo, "", 0)
    return lines
