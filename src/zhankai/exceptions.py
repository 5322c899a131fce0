from dataclasses import dataclass
from pathlib import Path


@dataclass(frozen=True)
class ZhankaiError(Exception):
    """Base exception for errors in the zhankai module."""

    def __str__(self) -> str:
        return self.__doc__ or type(self).__name__


@dataclass(frozen=True)
class InvalidDepthError(ZhankaiError):
    """Raised when a traversal depth is neither a non-negative integer nor unbounded."""

    value: str

    def __str__(self) -> str:
        return f"Invalid depth {self.value!r}: expected a non-negative integer or 'Infinity'"


@dataclass(frozen=True)
class DocumentAccessError(ZhankaiError):
    """Raised when the assembled document cannot be read before a query."""

    path: Path

    def __str__(self) -> str:
        return f"Cannot access file at path: {self.path}"


@dataclass(frozen=True)
class AuthenticationError(ZhankaiError):
    """Raised when the API rejects the request credentials (HTTP 401)."""

    def __str__(self) -> str:
        return "Authentication failed. Please check your API credentials."


@dataclass(frozen=True)
class ApiStatusError(ZhankaiError):
    """Raised when the API answers with a non-retryable status code."""

    status_code: int
    details: str

    def __str__(self) -> str:
        return f"API request failed with status {self.status_code}: {self.details}"


@dataclass(frozen=True)
class ConnectionFailedError(ZhankaiError):
    """Raised when the last permitted attempt fails at the network level."""

    attempts: int
    reason: str

    def __str__(self) -> str:
        return f"Failed to connect to API after {self.attempts} attempts: {self.reason}"


@dataclass(frozen=True)
class RetriesExhaustedError(ZhankaiError):
    """Raised when every attempt ended with a retryable status."""

    attempts: int

    def __str__(self) -> str:
        return f"All API request attempts failed ({self.attempts} attempts)"


@dataclass(frozen=True)
class ResponseParseError(ZhankaiError):
    """Raised when a successful response body is not a JSON object."""

    reason: str

    def __str__(self) -> str:
        return f"Failed to parse API response as JSON: {self.reason}"


@dataclass(frozen=True)
class MissingContentError(ZhankaiError):
    """Raised when a parsed response carries neither `output` nor `answer`."""

    keys: tuple[str, ...] = ()

    def __str__(self) -> str:
        return "Missing content in API response"
