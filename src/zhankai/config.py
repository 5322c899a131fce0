from __future__ import annotations

from enum import StrEnum, auto
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from zhankai.logging import get_logger

OUTPUT_DIR_NAME = "zhankai"

MAX_FILE_LINES = 500
PREVIEW_LINES = 30

DEFAULT_API_URL = "https://rukh.w3hc.org/ask"
DEFAULT_MODEL = "anthropic"
REQUEST_CONTEXT = "zhankai"
MAX_RETRIES = 5
RETRY_DELAY_SECONDS = 5.0
DEFAULT_TIMEOUT_MS = 120_000

RAW_RESPONSE_FILENAME = "raw_response.txt"
ANSWER_FILENAME = "query.md"

# Excluded by name wherever they appear, whatever the ignore rules say.
EXCLUDED_ITEMS = frozenset({"LICENSE", ".git"})

DEFAULT_IGNORES = ["node_modules", ".git", OUTPUT_DIR_NAME, "dist", "build"]

IMAGE_PLACEHOLDER = "[This is an image file]"
UNREADABLE_PLACEHOLDER = "[Unable to read file content]"
TRUNCATION_NOTICE = f"[This file was cut: it has more than {MAX_FILE_LINES} lines]"


class FileType(StrEnum):
    """Categorization of file types for the markdown export.

    Only IMAGE changes how a file is emitted; every other member just selects
    the code fence language.
    """

    IMAGE = auto()
    TYPESCRIPT = auto()
    JAVASCRIPT = auto()
    JSON = auto()
    MARKDOWN = auto()
    PYTHON = auto()
    RUBY = auto()
    JAVA = auto()
    C = auto()
    CPP = auto()
    CSHARP = auto()
    HTML = auto()
    CSS = auto()
    PHP = auto()
    GO = auto()
    RUST = auto()
    SWIFT = auto()
    KOTLIN = auto()
    SCALA = auto()
    BASH = auto()
    YAML = auto()
    XML = auto()
    SQL = auto()
    R = auto()
    MATLAB = auto()
    TOML = auto()
    OTHER = auto()


EXT2LANG: dict[str, FileType] = {
    ".bmp": FileType.IMAGE,
    ".c": FileType.C,
    ".cpp": FileType.CPP,
    ".cs": FileType.CSHARP,
    ".css": FileType.CSS,
    ".gif": FileType.IMAGE,
    ".go": FileType.GO,
    ".html": FileType.HTML,
    ".ico": FileType.IMAGE,
    ".java": FileType.JAVA,
    ".jpeg": FileType.IMAGE,
    ".jpg": FileType.IMAGE,
    ".js": FileType.JAVASCRIPT,
    ".json": FileType.JSON,
    ".kt": FileType.KOTLIN,
    ".m": FileType.MATLAB,
    ".md": FileType.MARKDOWN,
    ".php": FileType.PHP,
    ".png": FileType.IMAGE,
    ".py": FileType.PYTHON,
    ".r": FileType.R,
    ".rb": FileType.RUBY,
    ".rs": FileType.RUST,
    ".scala": FileType.SCALA,
    ".sh": FileType.BASH,
    ".sql": FileType.SQL,
    ".svg": FileType.IMAGE,
    ".swift": FileType.SWIFT,
    ".toml": FileType.TOML,
    ".ts": FileType.TYPESCRIPT,
    ".xml": FileType.XML,
    ".yaml": FileType.YAML,
    ".yml": FileType.YAML,
}

_FENCE_LANGUAGE: dict[FileType, str] = {
    FileType.TYPESCRIPT: "typescript",
    FileType.JAVASCRIPT: "javascript",
    FileType.JSON: "json",
    FileType.MARKDOWN: "markdown",
    FileType.PYTHON: "python",
    FileType.RUBY: "ruby",
    FileType.JAVA: "java",
    FileType.C: "c",
    FileType.CPP: "cpp",
    FileType.CSHARP: "csharp",
    FileType.HTML: "html",
    FileType.CSS: "css",
    FileType.PHP: "php",
    FileType.GO: "go",
    FileType.RUST: "rust",
    FileType.SWIFT: "swift",
    FileType.KOTLIN: "kotlin",
    FileType.SCALA: "scala",
    FileType.BASH: "bash",
    FileType.YAML: "yaml",
    FileType.XML: "xml",
    FileType.SQL: "sql",
    FileType.R: "r",
    FileType.MATLAB: "matlab",
    FileType.TOML: "toml",
    FileType.IMAGE: "",
    FileType.OTHER: "",
}


def guess_file_type(path: Path) -> FileType:
    """Guess a file type from its extension.

    Args:
        path (Path): The file path to guess the type for.

    Returns:
        FileType: The guessed file type, or FileType.OTHER if unknown.
    """
    return EXT2LANG.get(path.suffix.lower(), FileType.OTHER)


def guess_language(file_type: FileType) -> str:
    """Get the code fence language for a given file type.

    Args:
        file_type (FileType): The categorized file type.

    Returns:
        str: The language name for code fences, or empty string if none.
    """
    return _FENCE_LANGUAGE.get(file_type, "")


class TraversalConfig(BaseModel):
    """Immutable configuration of one export run.

    Attributes:
        output: Path of the markdown document being written.
        depth: Deepest directory level to descend into; None means unbounded.
        contents: Reserved for path-only listings; contents are always exported.
        query: Question sent to the API along with the document, if any.
        debug: Log request and response details.
        timeout_ms: Per-attempt HTTP timeout in milliseconds.
        sort_entries: Visit directory entries by name instead of listing order.
    """

    model_config = ConfigDict(arbitrary_types_allowed=True, frozen=True)

    output: Path = Field(..., description="Output markdown document")
    depth: int | None = Field(default=None, ge=0, description="Maximum depth; None is unbounded")
    contents: bool = Field(default=False, description="Reserved content-inclusion flag")
    query: str | None = Field(default=None, description="Query for the remote API")
    debug: bool = Field(default=False, description="Verbose request logging")
    timeout_ms: int = Field(default=DEFAULT_TIMEOUT_MS, gt=0, description="HTTP timeout (ms)")
    sort_entries: bool = Field(default=False, description="Sort entries by name")


class FileUpdateSpec(BaseModel):
    """A whole-file replacement requested by the API.

    Attributes:
        file_name: Path of the file, relative to the directory updates are applied in.
        file_content: The complete new content of the file.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")

    file_name: str = Field(..., alias="fileName", min_length=1, strict=True)
    file_content: str = Field(..., alias="fileContent", min_length=1, strict=True)


class ApiResponse(BaseModel):
    """JSON body of a successful API answer.

    The textual answer is read from `output`, then from `answer`; the first
    non-empty one wins. `files_to_update` is kept raw so that each item can
    be validated, and skipped, on its own.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")

    output: str | None = None
    answer: str | None = None
    files_to_update: list[Any] | None = Field(default=None, alias="filesToUpdate")

    @field_validator("files_to_update", mode="before")
    @classmethod
    def _drop_non_list_updates(cls, value: Any) -> Any:
        """Ignore a `filesToUpdate` that is not a list instead of rejecting the answer."""
        if value is None or isinstance(value, list):
            return value
        get_logger().debug("files_to_update_ignored", type=type(value).__name__)
        return None

    @property
    def content(self) -> str:
        """Return the textual answer, or an empty string when there is none."""
        return self.output or self.answer or ""
