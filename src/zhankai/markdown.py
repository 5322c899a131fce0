"""Markdown helpers: document timestamp and terminal rendering of answers."""

from __future__ import annotations

import re
from datetime import UTC, datetime

from rich.style import Style

HEADING_STYLES: dict[int, Style] = {
    1: Style(bold=True, color="blue"),
    2: Style(bold=True, color="green"),
    3: Style(bold=True, color="cyan"),
    4: Style(bold=True, color="yellow"),
}
TABLE_RULE = "  " + "-" * 60

_CODE_BLOCK = re.compile(r"```[a-z]*\n([\s\S]*?)```")
_BULLET = re.compile(r"^- (.*)$", re.MULTILINE)
_NUMBERED = re.compile(r"^([0-9]+)\. (.*)$", re.MULTILINE)
_TABLE_ROW = re.compile(r"\|(.*)\|")


def generate_timestamp(now: datetime | None = None) -> str:
    """Format a UTC timestamp such as `Mar 07 2025 02:15:09 PM UTC`.

    Args:
        now (datetime | None): the moment to format; defaults to the current time

    Returns:
        str: the formatted timestamp
    """
    moment = (now or datetime.now(UTC)).astimezone(UTC)
    return moment.strftime("%b %d %Y %I:%M:%S %p") + " UTC"


def _indent_code(match: re.Match[str]) -> str:
    code = match.group(1)
    return "\n" + "\n".join(f"    {line}" for line in code.split("\n")) + "\n"


def _format_table_row(match: re.Match[str]) -> str:
    row = match.group(0)
    if "-----" in row:
        return TABLE_RULE
    cells = [cell.strip() for cell in row.split("|") if cell.strip()]
    if len(cells) >= 2:  # noqa: PLR2004
        return f"  {cells[0]}: {' | '.join(cells[1:])}"
    return row


def format_markdown_for_terminal(markdown: str) -> str:
    """Render a markdown answer for display in a terminal.

    Purely cosmetic: headings are coloured, fenced code is indented instead of
    fenced, and lists and tables are re-flowed.

    Args:
        markdown (str): the answer text

    Returns:
        str: the text to print
    """
    formatted = markdown
    for level, style in HEADING_STYLES.items():
        pattern = re.compile(rf"^{'#' * level} (.*)$", re.MULTILINE)
        formatted = pattern.sub(lambda m, s=style: s.render(m.group(1)), formatted)
    formatted = _CODE_BLOCK.sub(_indent_code, formatted)
    formatted = _BULLET.sub(r"  • \1", formatted)
    formatted = _NUMBERED.sub(r"  \1. \2", formatted)
    formatted = _TABLE_ROW.sub(_format_table_row, formatted)
    return "\n" + formatted + "\n"
