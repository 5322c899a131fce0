"""Apply the whole-file updates carried by an API response.

A response can request file updates in three ways, tried in order and never
merged:

1. a structured `filesToUpdate` list;
2. an answer text that is, as a whole, a JSON array;
3. a JSON array embedded somewhere in the prose of the answer text.

The embedded case is found by scanning for `[` and tracking bracket and brace
depth (string and escape aware) until the array closes, then parsing the
candidate. Unlike a fixed regular expression this copes with nested objects
and escaped quotes in file contents, but it is still a heuristic: the first
balanced array of objects carrying `fileName` wins, even when the prose holds
several. The scans share a budget of `SCAN_BUDGET_FACTOR` times the text
length, so a stray quote or a run of unclosed brackets cannot make the search
quadratic; candidates past the budget are not considered.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import TYPE_CHECKING, Any

from pydantic import ValidationError

from zhankai.config import FileUpdateSpec
from zhankai.logging import get_logger

if TYPE_CHECKING:
    from collections.abc import Iterator

    import structlog

    from zhankai.config import ApiResponse

_CLOSERS = {"[": "]", "{": "}"}

# Characters the embedded scan may visit, per character of text.
SCAN_BUDGET_FACTOR = 8


def _balanced_end(text: str, start: int, stop: int) -> tuple[int | None, int]:
    """Find the bracket closing the one at `start`, looking no further than `stop`.

    Returns:
        tuple[int | None, int]: the closing index or None, and the number of
            characters visited
    """
    stack: list[str] = []
    in_string = False
    escaped = False
    for idx in range(start, stop):
        ch = text[idx]
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
        elif ch == '"':
            in_string = True
        elif ch in _CLOSERS:
            stack.append(_CLOSERS[ch])
        elif ch in {"]", "}"}:
            if not stack or stack.pop() != ch:
                return None, idx - start + 1
            if not stack:
                return idx, idx - start + 1
    return None, stop - start


def iter_json_arrays(text: str) -> Iterator[str]:
    """Yield the bracket-balanced `[...]` substrings of text, by start position.

    Scanning stops once `SCAN_BUDGET_FACTOR * len(text)` characters have been
    visited in total.
    """
    budget = SCAN_BUDGET_FACTOR * len(text)
    start = text.find("[")
    while start != -1 and budget > 0:
        end, visited = _balanced_end(text, start, min(len(text), start + budget))
        budget -= visited
        if end is not None:
            yield text[start : end + 1]
        start = text.find("[", start + 1)


def _looks_like_file_specs(value: Any) -> bool:  # noqa: ANN401
    return (
        isinstance(value, list)
        and bool(value)
        and all(isinstance(item, dict) and "fileName" in item for item in value)
    )


def find_embedded_file_specs(text: str) -> list[dict[str, Any]] | None:
    """Find the first JSON array of file specifications embedded in prose.

    Args:
        text (str): free text that may contain a `[{"fileName": ..., "fileContent": ...}]` literal

    Returns:
        list[dict[str, Any]] | None: the parsed array, or None if no candidate parses
    """
    for candidate in iter_json_arrays(text):
        try:
            parsed = json.loads(candidate)
        except json.JSONDecodeError:
            continue
        if _looks_like_file_specs(parsed):
            return parsed
    return None


def resolve_file_specs(response: ApiResponse) -> tuple[str, list[Any]] | None:
    """Pick the list of requested file updates out of a response.

    Args:
        response (ApiResponse): the parsed API response

    Returns:
        tuple[str, list[Any]] | None: the source the list was taken from and its
            raw items, or None when the response requests no file updates
    """
    if response.files_to_update:
        return "filesToUpdate", list(response.files_to_update)

    text = response.content
    if not text:
        return None

    try:
        whole = json.loads(text)
    except json.JSONDecodeError:
        whole = None
    if isinstance(whole, list):
        return "content", whole

    embedded = find_embedded_file_specs(text)
    if embedded is not None:
        return "embedded", embedded
    return None


class ResponseFileUpdater:
    """Write the files an API response asks for, each one independently.

    Paths are resolved against `base_dir` (the current working directory by
    default); a path escaping it is refused. Existing files are overwritten.
    """

    def __init__(self, base_dir: Path | None = None, *, logger: structlog.BoundLogger | None = None) -> None:
        self.base_dir = (base_dir or Path.cwd()).resolve()
        self._logger = logger or get_logger()

    def apply(self, response: ApiResponse) -> None:
        """Apply every file update found in response, in list order.

        Never raises: a malformed item or a failed write is logged and the
        remaining items are still processed.
        """
        try:
            resolved = resolve_file_specs(response)
            if resolved is None:
                self._logger.debug("no_file_updates", reason="content is not a recognized file-update format")
                return
            source, items = resolved
            self._logger.info("file_updates_found", count=len(items), source=source)
            written = sum(self.update_file(item) for item in items)
            self._logger.info("file_updates_done", count=len(items), written=written)
        except Exception as e:
            self._logger.error("file_updates_failed", error=str(e))

    def update_file(self, item: Any) -> bool:  # noqa: ANN401
        """Validate one raw file specification and write it.

        Args:
            item (Any): a raw `{"fileName": ..., "fileContent": ...}` mapping

        Returns:
            bool: True if the file was written
        """
        try:
            spec = FileUpdateSpec.model_validate(item)
        except ValidationError as e:
            file_name = item.get("fileName") if isinstance(item, dict) else None
            self._logger.error("file_update_invalid", file_name=file_name, error=str(e))
            return False

        target = (self.base_dir / spec.file_name).resolve()
        if not target.is_relative_to(self.base_dir):
            self._logger.error("file_update_outside_base", file_name=spec.file_name, base_dir=str(self.base_dir))
            return False

        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_text(spec.file_content, encoding="utf-8", newline="")
        except OSError as e:
            self._logger.error("file_update_failed", file_name=spec.file_name, error=str(e))
            return False
        self._logger.info("file_updated", file_name=spec.file_name)
        return True
