from __future__ import annotations

import os
from pathlib import Path
from typing import TYPE_CHECKING, Any

import tomlkit
from dotenv import find_dotenv, load_dotenv
from pydantic import BaseModel, ConfigDict, Field
from tomlkit.exceptions import TOMLKitError

from zhankai.config import DEFAULT_API_URL, DEFAULT_TIMEOUT_MS
from zhankai.exceptions import InvalidDepthError

if TYPE_CHECKING:
    from collections.abc import Mapping

ENV_PREFIX = "ZHANKAI_"
TOOL_TABLE = "zhankai"
UNBOUNDED_DEPTHS = frozenset({"infinity", "inf", "unbounded"})

# Options that may also come from the environment or `[tool.zhankai]`.
LAYERED_OPTIONS = ("output", "depth", "timeout", "api_url")


class Settings(BaseModel):
    """Configuration settings for one zhankai run."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    repo: Path = Field(default_factory=Path.cwd, description="Repository root.")
    output: str = Field(default="", description="Output file name (default: <repo>_app_description.md).")
    depth: int | None = Field(default=None, ge=0, description="Maximum depth; None is unbounded.")
    contents: bool = Field(default=False, description="Include file contents (reserved).")
    query: str | None = Field(default=None, description="Query to send to the API.")
    debug: bool = Field(default=False, description="Enable debug logging.")
    timeout: int = Field(default=DEFAULT_TIMEOUT_MS, gt=0, description="API request timeout (ms).")
    log_file: str = Field(default="", description="Log file path.")
    api_url: str = Field(default=DEFAULT_API_URL, description="Query endpoint.")
    sort: bool = Field(default=False, description="Visit entries by name instead of listing order.")
    allow_dirty: bool = Field(default=False, description="Send queries despite uncommitted changes.")


def parse_depth(value: str | int | None) -> int | None:
    """Parse a traversal depth.

    Args:
        value (str | int | None): a non-negative integer, or "Infinity"/"inf"/"unbounded"

    Raises:
        InvalidDepthError: if the value is negative or not a number

    Returns:
        int | None: the depth, None meaning unbounded
    """
    if value is None:
        return None
    if isinstance(value, int) and not isinstance(value, bool):
        depth = value
    else:
        text = str(value).strip()
        if not text or text.lower() in UNBOUNDED_DEPTHS:
            return None
        try:
            depth = int(text)
        except ValueError:
            raise InvalidDepthError(value=str(value)) from None
    if depth < 0:
        raise InvalidDepthError(value=str(value))
    return depth


def find_pyproject(path: Path) -> Path | None:
    """Find the nearest ``pyproject.toml`` by searching upward from ``path``.

    Args:
        path (Path): Starting directory.

    Returns:
        Path | None: Located ``pyproject.toml`` path, or None if there is none.
    """
    current = path.resolve()
    while True:
        candidate = current / "pyproject.toml"
        if candidate.exists():
            return candidate
        if current.parent == current:
            return None
        current = current.parent


def load_tool_config(repo: Path) -> dict[str, Any]:
    """Read the ``[tool.zhankai]`` table of the nearest ``pyproject.toml``.

    Keys are normalized to snake case (``api-url`` becomes ``api_url``).
    A missing file, a missing table or an unparsable file yields ``{}``.

    Args:
        repo (Path): the repository root to start searching from

    Returns:
        dict[str, Any]: the table as plain Python values
    """
    pyproject = find_pyproject(repo)
    if pyproject is None:
        return {}
    try:
        doc = tomlkit.parse(pyproject.read_text(encoding="utf-8")).unwrap()
    except (OSError, TOMLKitError):
        return {}
    table = doc.get("tool", {}).get(TOOL_TABLE, {})
    if not isinstance(table, dict):
        return {}
    return {str(k).replace("-", "_"): v for k, v in table.items()}


def load_env_config(environ: Mapping[str, str] | None = None) -> dict[str, str]:
    """Collect ``ZHANKAI_*`` variables, after loading the nearest ``.env`` file.

    Args:
        environ (Mapping[str, str] | None): environment to read; defaults to ``os.environ``

    Returns:
        dict[str, str]: the layered options found, keyed by option name
    """
    if environ is None:
        env_file = find_dotenv(usecwd=True)
        if env_file:
            load_dotenv(env_file)
        environ = os.environ
    out: dict[str, str] = {}
    for name in LAYERED_OPTIONS:
        value = environ.get(f"{ENV_PREFIX}{name.upper()}")
        if value:
            out[name] = value
    return out


def resolve_layered(
    cli_values: Mapping[str, Any],
    env_values: Mapping[str, Any],
    file_values: Mapping[str, Any],
) -> dict[str, Any]:
    """Merge the layered options: command line, then environment, then ``[tool.zhankai]``.

    Args:
        cli_values (Mapping[str, Any]): parsed arguments; None means "not given"
        env_values (Mapping[str, Any]): values from ``load_env_config``
        file_values (Mapping[str, Any]): values from ``load_tool_config``

    Returns:
        dict[str, Any]: the options that were set somewhere, depth parsed
    """
    merged: dict[str, Any] = {}
    for name in LAYERED_OPTIONS:
        for source in (cli_values, env_values, file_values):
            value = source.get(name)
            if value is not None:
                merged[name] = value
                break
    if "depth" in merged:
        merged["depth"] = parse_depth(merged["depth"])
    return merged
