from __future__ import annotations

import subprocess  # noqa: S404
from pathlib import Path
from typing import TYPE_CHECKING

from zhankai.logging import get_logger

if TYPE_CHECKING:
    import structlog


def _git(repo: Path, *args: str) -> str:
    out = subprocess.run(
        ["git", *args],  # noqa: S607
        cwd=str(repo),
        text=True,
        capture_output=True,
        check=True,
    )
    return out.stdout


def get_repo_name(repo: Path) -> str:
    """Get the repository name from git, falling back to the directory name.

    Args:
        repo (Path): a directory inside the repository

    Returns:
        str: the base name of the git top-level directory, or of `repo` itself
            when git is unavailable or `repo` is not in a work tree
    """
    try:
        toplevel = _git(repo, "rev-parse", "--show-toplevel").strip()
    except (OSError, subprocess.CalledProcessError):
        return repo.resolve().name
    return Path(toplevel).name if toplevel else repo.resolve().name


def has_uncommitted_changes(repo: Path) -> bool:
    """Check whether the work tree has uncommitted changes.

    Args:
        repo (Path): a directory inside the repository

    Returns:
        bool: True if `git status --porcelain` reports anything; False when
            `repo` is not a git work tree or git is not installed
    """
    try:
        _git(repo, "rev-parse", "--is-inside-work-tree")
        status = _git(repo, "status", "--porcelain")
    except (OSError, subprocess.CalledProcessError):
        return False
    return bool(status.strip())


def add_to_gitignore(repo: Path, pattern: str, *, logger: structlog.BoundLogger | None = None) -> bool:
    """Append a root-anchored pattern to the repository `.gitignore`.

    The file is created if needed. Nothing is written when either `pattern`
    or `/pattern` is already listed.

    Args:
        repo (Path): the repository root
        pattern (str): the pattern to register, e.g. "zhankai"
        logger (structlog.BoundLogger | None): logger for the update

    Returns:
        bool: True if the file was modified
    """
    log = logger or get_logger()
    gitignore = repo / ".gitignore"
    formatted = pattern if pattern.startswith("/") else f"/{pattern}"
    try:
        current = gitignore.read_text(encoding="utf-8") if gitignore.exists() else ""
        if any(line.strip() in {formatted, pattern} for line in current.split("\n")):
            return False
        if current and not current.endswith("\n"):
            current += "\n"
        gitignore.write_text(f"{current}{formatted}\n", encoding="utf-8")
    except OSError as e:
        log.error("gitignore_update_failed", path=str(gitignore), error=str(e))
        return False
    log.info("gitignore_updated", pattern=formatted)
    return True
