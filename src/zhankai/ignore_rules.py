"""Ignore rules: built-in defaults plus the repository's `.gitignore`."""

from __future__ import annotations

from typing import TYPE_CHECKING

import pathspec

from zhankai.config import DEFAULT_IGNORES, EXCLUDED_ITEMS
from zhankai.logging import get_logger

if TYPE_CHECKING:
    from collections.abc import Sequence
    from pathlib import Path

    import structlog

GITIGNORE_NAME = ".gitignore"


class IgnoreSet:
    """Ordered gitignore-style patterns matched against repo-relative paths."""

    def __init__(self, patterns: Sequence[str]) -> None:
        self.patterns: tuple[str, ...] = tuple(patterns)
        self._spec = pathspec.GitIgnoreSpec.from_lines(self.patterns)

    def matches(self, rel_path: str, *, is_dir: bool = False) -> bool:
        """Check whether a path relative to the repository root is ignored.

        Args:
            rel_path (str): POSIX path relative to the repository root.
            is_dir (bool): Whether the path names a directory, so that
                directory-only patterns such as `logs/` apply.

        Returns:
            bool: True if some pattern excludes the path.
        """
        candidate = rel_path.strip("/")
        if is_dir:
            candidate += "/"
        return self._spec.match_file(candidate)

    def is_excluded(self, rel_path: str, *, is_dir: bool = False) -> bool:
        """Check the unconditional name exclusions, then the ignore patterns."""
        name = rel_path.rstrip("/").rsplit("/", 1)[-1]
        return name in EXCLUDED_ITEMS or self.matches(rel_path, is_dir=is_dir)


def read_ignore_file(path: Path) -> list[str]:
    """Return the non-empty, non-comment lines of an ignore file.

    Args:
        path (Path): the ignore file to read

    Returns:
        list[str]: the pattern lines, stripped of trailing whitespace

    Raises:
        OSError: if the file is missing or unreadable
    """
    lines = path.read_text(encoding="utf-8", errors="replace").splitlines()
    return [ln.rstrip() for ln in lines if ln.strip() and not ln.lstrip().startswith("#")]


def build_ignore_set(repo: Path, *, logger: structlog.BoundLogger | None = None) -> IgnoreSet:
    """Build the combined ignore set for a repository.

    The defaults always apply; the repository's `.gitignore` is layered on top
    when it can be read, and silently skipped otherwise.

    Args:
        repo (Path): the repository root
        logger (structlog.BoundLogger | None): logger to report a missing ignore file to

    Returns:
        IgnoreSet: defaults followed by the repository patterns
    """
    log = logger or get_logger()
    patterns = list(DEFAULT_IGNORES)
    gitignore = repo / GITIGNORE_NAME
    try:
        patterns.extend(read_ignore_file(gitignore))
    except OSError as e:
        log.debug("ignore_file_unavailable", path=str(gitignore), error=str(e))
    return IgnoreSet(patterns)
