"""
zhankai: export a repository to one markdown document, and optionally ask about it.

Overview
--------
The tool walks the repository (honoring built-in ignores and `.gitignore`),
writes every file into a single markdown document under `zhankai/`, and
closes it with a structure tree and a timestamp. With `--query`, the
document is sent to the assistant API together with the question; the
answer is printed, saved as `zhankai/query.md`, and any whole-file updates
it carries are written back into the repository.

Options given on the command line win over `ZHANKAI_*` environment
variables (a `.env` file is honored), which win over the `[tool.zhankai]`
table of `pyproject.toml`.

Usage
-----
Run `python -m zhankai --help` for full options. Common examples:
    - Export the current repository:
        zhankai

    - Export two levels deep, in name order, to a chosen file:
        zhankai --depth 2 --sort --output overview.md

    - Ask a question about the code base:
        zhankai --query "Where is the retry policy implemented?"
"""

from __future__ import annotations

import argparse
from pathlib import Path
from typing import TYPE_CHECKING

from zhankai import __version__
from zhankai.api import QUERY_FAILURE_PREFIX, QueryTransport
from zhankai.config import OUTPUT_DIR_NAME, TraversalConfig
from zhankai.exceptions import InvalidDepthError
from zhankai.file_manipulation import get_unique_filename
from zhankai.file_updates import ResponseFileUpdater
from zhankai.git import add_to_gitignore, get_repo_name, has_uncommitted_changes
from zhankai.ignore_rules import build_ignore_set
from zhankai.logging import setup_logging
from zhankai.output_construction import assemble_document
from zhankai.settings import Settings, load_env_config, load_tool_config, parse_depth, resolve_layered

if TYPE_CHECKING:
    from collections.abc import Sequence

    import httpx
    import structlog

DIRTY_TREE_MESSAGE = "Operation cancelled. Please commit your changes first (or pass --allow-dirty)."


def _depth_arg(value: str) -> str:
    try:
        parse_depth(value)
    except InvalidDepthError as e:
        raise argparse.ArgumentTypeError(str(e)) from None
    return value


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="zhankai",
        description="Export a repository to markdown and optionally query the assistant API about it.",
    )
    p.add_argument("--repo", type=str, default=".", help="Repository root.")
    p.add_argument(
        "-o",
        "--output",
        type=str,
        default=None,
        help="Output file name inside zhankai/ (default: <repo>_app_description.md).",
    )
    p.add_argument(
        "-d",
        "--depth",
        type=_depth_arg,
        default=None,
        help="Maximum directory depth, or 'Infinity' (default).",
    )
    p.add_argument(
        "-c",
        "--contents",
        action="store_true",
        help="Include file contents (always on; accepted for compatibility).",
    )
    p.add_argument("-q", "--query", type=str, default=None, help="Query to send to the API.")
    p.add_argument("--debug", action="store_true", help="Log request and response details.")
    p.add_argument(
        "--timeout",
        type=int,
        default=None,
        help="API request timeout in milliseconds (default: 120000).",
    )
    p.add_argument("--api-url", type=str, default=None, help="Query endpoint.")
    p.add_argument("--log-file", type=str, default="", help="Log file path.")
    p.add_argument(
        "--sort",
        action="store_true",
        help="Visit entries by name instead of directory listing order.",
    )
    p.add_argument(
        "--allow-dirty",
        action="store_true",
        help="Send the query even when the work tree has uncommitted changes.",
    )
    p.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return p


def parse_args(argv: Sequence[str] | None = None) -> Settings:
    args = build_parser().parse_args(argv)
    repo = Path(args.repo).resolve()
    cli_values = vars(args)
    layered = resolve_layered(cli_values, load_env_config(), load_tool_config(repo))
    plain = {k: v for k, v in cli_values.items() if k not in layered and k != "depth" and v is not None}
    plain["repo"] = repo
    return Settings(**plain, **layered)


def setup_output_directory(repo: Path, *, logger: structlog.BoundLogger) -> Path:
    """Create the `zhankai/` output directory and keep it out of version control.

    Args:
        repo (Path): the repository root
        logger (structlog.BoundLogger): logger for the run

    Returns:
        Path: the output directory
    """
    output_dir = repo / OUTPUT_DIR_NAME
    output_dir.mkdir(parents=True, exist_ok=True)
    add_to_gitignore(repo, OUTPUT_DIR_NAME, logger=logger)
    return output_dir


def run_query(
    settings: Settings,
    config: TraversalConfig,
    output_dir: Path,
    *,
    dirty: bool = False,
    logger: structlog.BoundLogger,
    client: httpx.Client | None = None,
) -> int:
    """Send the query with the exported document and print the answer.

    Args:
        settings (Settings): the resolved settings
        config (TraversalConfig): the run configuration carrying the query
        output_dir (Path): where the raw response and the answer are saved
        dirty (bool): whether the work tree had uncommitted changes when the run started
        logger (structlog.BoundLogger): logger for the run
        client (httpx.Client | None): HTTP client to send the query with

    Returns:
        int: 0 on success, 1 when the query was refused or failed
    """
    if dirty and not settings.allow_dirty:
        logger.warning("uncommitted_changes", repo=str(settings.repo))
        print(DIRTY_TREE_MESSAGE)
        return 1

    logger.info("processing_query", query=config.query)
    transport = QueryTransport(
        settings.api_url,
        output_dir,
        client=client,
        logger=logger,
        updater=ResponseFileUpdater(settings.repo, logger=logger),
    )
    answer = transport.send_query(
        config.query or "",
        config.output,
        debug=config.debug,
        timeout_ms=config.timeout_ms,
    )
    print(answer)
    return 1 if answer.startswith(QUERY_FAILURE_PREFIX) else 0


def run(
    settings: Settings,
    *,
    logger: structlog.BoundLogger,
    client: httpx.Client | None = None,
) -> int:
    """Export the repository described by settings, then run the query if any.

    Args:
        settings (Settings): the resolved settings
        logger (structlog.BoundLogger): logger for the run
        client (httpx.Client | None): HTTP client to send the query with

    Returns:
        int: the process exit code
    """
    repo = settings.repo
    repo_name = get_repo_name(repo)
    # Must run before setup_output_directory edits .gitignore.
    dirty = bool(settings.query) and not settings.allow_dirty and has_uncommitted_changes(repo)
    output_dir = setup_output_directory(repo, logger=logger)
    output = get_unique_filename(output_dir / (settings.output or f"{repo_name}_app_description.md"))
    output.parent.mkdir(parents=True, exist_ok=True)

    config = TraversalConfig(
        output=output,
        depth=settings.depth,
        contents=settings.contents,
        query=settings.query or None,
        debug=settings.debug,
        timeout_ms=settings.timeout,
        sort_entries=settings.sort,
    )
    ignore_set = build_ignore_set(repo, logger=logger)
    assemble_document(repo, repo_name, config, ignore_set, logger=logger)
    print(f"Wrote {output} depth={'Infinity' if config.depth is None else config.depth}")

    if not config.query:
        return 0
    return run_query(settings, config, output_dir, dirty=dirty, logger=logger, client=client)


def main(argv: Sequence[str] | None = None) -> int:
    settings = parse_args(argv)
    logger = setup_logging(settings.log_file or None, debug=settings.debug)
    return run(settings, logger=logger)


if __name__ == "__main__":
    raise SystemExit(main())
