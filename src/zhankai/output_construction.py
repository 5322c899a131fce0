from __future__ import annotations

from typing import TYPE_CHECKING

from zhankai.config import IMAGE_PLACEHOLDER, TRUNCATION_NOTICE, UNREADABLE_PLACEHOLDER
from zhankai.file_manipulation import (
    build_tree_lines,
    file_language,
    is_image_file,
    read_text_file,
    take_preview,
    visible_entries,
    within_depth,
)
from zhankai.logging import get_logger
from zhankai.markdown import generate_timestamp

if TYPE_CHECKING:
    from datetime import datetime
    from pathlib import Path
    from typing import TextIO

    import structlog

    from zhankai.config import TraversalConfig
    from zhankai.file_manipulation import Entry
    from zhankai.ignore_rules import IgnoreSet

FENCE = "```"


def write_file_section(out: TextIO, entry: Entry, *, logger: structlog.BoundLogger) -> None:
    """Write the heading and fenced content of one file.

    Images get a placeholder without being opened; files over the line
    ceiling keep a preview followed by a truncation notice; unreadable files
    get a placeholder and an error log.

    Args:
        out (TextIO): the document being written
        entry (Entry): the file to export
        logger (structlog.BoundLogger): logger for unreadable files
    """
    out.write(f"\n### {entry.rel}\n\n")
    out.write(f"{FENCE}{file_language(entry.path)}\n")

    if is_image_file(entry.path):
        out.write(IMAGE_PLACEHOLDER)
        out.write(f"\n{FENCE}\n")
        return

    try:
        content = read_text_file(entry.path)
    except (OSError, UnicodeDecodeError) as e:
        out.write(UNREADABLE_PLACEHOLDER)
        out.write(f"\n{FENCE}\n")
        logger.error("file_read_failed", path=entry.rel, error=str(e))
        return

    body, truncated = take_preview(content)
    out.write(body)
    out.write(f"\n{FENCE}\n")
    if truncated:
        out.write(f"\n{TRUNCATION_NOTICE}\n")


def traverse_directory(
    out: TextIO,
    directory: Path,
    repo: Path,
    config: TraversalConfig,
    ignore_set: IgnoreSet,
    *,
    level: int = 0,
    logger: structlog.BoundLogger,
) -> None:
    """Recursively write the sections of a directory, in listing order.

    Args:
        out (TextIO): the document being written
        directory (Path): the directory to export
        repo (Path): the repository root
        config (TraversalConfig): the run configuration (depth, ordering)
        ignore_set (IgnoreSet): the combined ignore rules
        level (int): depth of `directory`, the root being 0
        logger (structlog.BoundLogger): logger for read failures
    """
    try:
        entries = visible_entries(directory, repo, ignore_set, sort_entries=config.sort_entries)
    except OSError as e:
        logger.error("directory_read_failed", directory=str(directory), error=str(e))
        return

    for entry in entries:
        if not entry.is_dir:
            write_file_section(out, entry, logger=logger)
        elif within_depth(config.depth, level + 1):
            out.write(f"\n## {entry.rel}\n\n")
            traverse_directory(out, entry.path, repo, config, ignore_set, level=level + 1, logger=logger)


def render_structure(
    repo: Path,
    config: TraversalConfig,
    ignore_set: IgnoreSet,
    *,
    logger: structlog.BoundLogger | None = None,
) -> str:
    """Render the tree of exported paths, one newline-terminated line per entry."""
    lines = build_tree_lines(
        repo,
        ignore_set,
        depth=config.depth,
        sort_entries=config.sort_entries,
        logger=logger,
    )
    return "".join(f"{line}\n" for line in lines)


def assemble_document(
    repo: Path,
    repo_name: str,
    config: TraversalConfig,
    ignore_set: IgnoreSet,
    *,
    logger: structlog.BoundLogger | None = None,
    now: datetime | None = None,
) -> Path:
    """Write the markdown export of a repository to `config.output`.

    The document is written as the tree is walked: the title, then one
    section per directory and file, then the structure tree and a timestamp.
    File- and directory-level failures degrade to placeholders and logs.

    Args:
        repo (Path): the repository root
        repo_name (str): the title of the document
        config (TraversalConfig): the run configuration
        ignore_set (IgnoreSet): the combined ignore rules
        logger (structlog.BoundLogger | None): logger for the run
        now (datetime | None): the moment to stamp the document with

    Returns:
        Path: the written document
    """
    log = logger or get_logger()
    with config.output.open("w", encoding="utf-8", newline="\n") as out:
        out.write(f"# {repo_name}\n\n")
        traverse_directory(out, repo, repo, config, ignore_set, logger=log)
        structure = render_structure(repo, config, ignore_set, logger=log)
        out.write(f"\n## Structure\n\n{FENCE}\n{structure}{FENCE}\n")
        out.write(f"\nTimestamp: {generate_timestamp(now)}\n")
    log.info("document_written", output=str(config.output))
    return config.output
