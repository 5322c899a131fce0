"""Send the exported document and a query to the assistant API."""

from __future__ import annotations

import json
import os
import time
from enum import StrEnum, auto
from typing import TYPE_CHECKING, Protocol

import httpx
from pydantic import BaseModel, ConfigDict, ValidationError

from zhankai.config import (
    ANSWER_FILENAME,
    DEFAULT_MODEL,
    DEFAULT_TIMEOUT_MS,
    MAX_RETRIES,
    RAW_RESPONSE_FILENAME,
    REQUEST_CONTEXT,
    RETRY_DELAY_SECONDS,
    ApiResponse,
)
from zhankai.exceptions import (
    ApiStatusError,
    AuthenticationError,
    ConnectionFailedError,
    DocumentAccessError,
    MissingContentError,
    ResponseParseError,
    RetriesExhaustedError,
    ZhankaiError,
)
from zhankai.file_manipulation import get_unique_filename
from zhankai.logging import get_logger
from zhankai.markdown import format_markdown_for_terminal

if TYPE_CHECKING:
    from collections.abc import Callable
    from pathlib import Path

    import structlog

    from zhankai.file_updates import ResponseFileUpdater

QUERY_FAILURE_PREFIX = "Failed to get response from API"
RETRYABLE_STATUSES = frozenset({429, 500, 502, 503, 504})
ERROR_BODY_LIMIT = 200


class AttemptOutcome(StrEnum):
    """What the request loop does after one attempt."""

    SUCCESS = auto()
    RETRY = auto()
    FATAL = auto()


def classify_status(status_code: int) -> AttemptOutcome:
    """Classify an HTTP status: 2xx succeeds, 429 and 5xx gateway errors retry, the rest is fatal."""
    if 200 <= status_code < 300:  # noqa: PLR2004
        return AttemptOutcome.SUCCESS
    if status_code in RETRYABLE_STATUSES:
        return AttemptOutcome.RETRY
    return AttemptOutcome.FATAL


def classify_error(error: Exception) -> AttemptOutcome:
    """Classify a request exception: network errors and timeouts retry, anything else is fatal."""
    if isinstance(error, httpx.TransportError):
        return AttemptOutcome.RETRY
    return AttemptOutcome.FATAL


def extract_error_details(response: httpx.Response) -> str:
    """Summarize an error body: JSON `message` or `error`, else the start of the text."""
    text = response.text
    try:
        payload = json.loads(text)
    except json.JSONDecodeError:
        return text[:ERROR_BODY_LIMIT]
    if isinstance(payload, dict):
        return str(payload.get("message") or payload.get("error") or json.dumps(payload))
    return json.dumps(payload)


class SiweChallenge(BaseModel):
    """Sign-in challenge handed out by the API."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    message: str
    nonce: str


class SignedIdentity(BaseModel):
    """Result of signing a challenge: who signed, and the signature."""

    model_config = ConfigDict(frozen=True)

    address: str
    signature: str
    username: str = ""


class ChallengeSigner(Protocol):
    """Signs challenge messages; wallet and credential storage live behind it."""

    def sign(self, message: str) -> SignedIdentity | None: ...


def challenge_url(api_url: str) -> str:
    """Derive the challenge endpoint from the query endpoint."""
    base = api_url.removesuffix("/ask").rstrip("/")
    return f"{base}/siwe/challenge"


class QueryTransport:
    """Post a document and a query to the API, retrying transient failures.

    The request loop is driven by `classify_status` and `classify_error`:
    retryable outcomes wait `retry_delay` seconds and try again, up to
    `max_retries` attempts in total; fatal outcomes stop immediately. The
    timeout applies to each attempt, not to the loop.
    """

    def __init__(
        self,
        api_url: str,
        output_dir: Path,
        *,
        client: httpx.Client | None = None,
        logger: structlog.BoundLogger | None = None,
        sleep: Callable[[float], None] = time.sleep,
        max_retries: int = MAX_RETRIES,
        retry_delay: float = RETRY_DELAY_SECONDS,
        signer: ChallengeSigner | None = None,
        updater: ResponseFileUpdater | None = None,
    ) -> None:
        self.api_url = api_url
        self.output_dir = output_dir
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self.signer = signer
        self.updater = updater
        self._client = client
        self._logger = logger or get_logger()
        self._sleep = sleep

    def send_query(
        self,
        query: str,
        document_path: Path,
        *,
        debug: bool = False,
        timeout_ms: int = DEFAULT_TIMEOUT_MS,
    ) -> str:
        """Send a query with the document attached and return the formatted answer.

        Never raises: any failure is logged and returned as a string starting
        with `QUERY_FAILURE_PREFIX`.

        Args:
            query (str): the question for the assistant
            document_path (Path): the exported markdown document
            debug (bool): log request and response details
            timeout_ms (int): per-attempt timeout in milliseconds

        Returns:
            str: the answer formatted for the terminal, or a failure message
        """
        try:
            if self._client is not None:
                return self._send(self._client, query, document_path, debug=debug, timeout_ms=timeout_ms)
            with httpx.Client() as client:
                return self._send(client, query, document_path, debug=debug, timeout_ms=timeout_ms)
        except ZhankaiError as e:
            self._logger.error("query_failed", error=str(e))
            return f"{QUERY_FAILURE_PREFIX}: {e}"
        except Exception as e:
            self._logger.exception("query_failed_unexpectedly")
            return f"{QUERY_FAILURE_PREFIX}: {e}"

    def _send(
        self,
        client: httpx.Client,
        query: str,
        document_path: Path,
        *,
        debug: bool,
        timeout_ms: int,
    ) -> str:
        if not document_path.is_file() or not os.access(document_path, os.R_OK):
            raise DocumentAccessError(path=document_path)
        try:
            document = document_path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            raise DocumentAccessError(path=document_path) from e
        if debug:
            self._logger.debug("document_loaded", length=len(document), preview=document[:200])

        identity, challenge = self._authenticate(client)
        data = {
            "message": query,
            "model": DEFAULT_MODEL,
            "sessionId": "",
            "walletAddress": identity.address if identity else "",
            "context": REQUEST_CONTEXT,
        }
        if identity and challenge:
            data["data"] = json.dumps(
                {"githubUserName": identity.username, "nonce": challenge.nonce, "signature": identity.signature},
            )
        files = {"file": (document_path.name, document.encode("utf-8"), "text/markdown")}

        response = self._post_with_retries(client, data, files, timeout_ms=timeout_ms)
        return self._handle_success(response, debug=debug)

    def _authenticate(self, client: httpx.Client) -> tuple[SignedIdentity | None, SiweChallenge | None]:
        """Sign a challenge when a signer is configured; failures fall back to anonymous requests."""
        if self.signer is None:
            return None, None
        try:
            response = client.get(challenge_url(self.api_url), headers={"accept": "application/json"})
            if classify_status(response.status_code) is not AttemptOutcome.SUCCESS:
                self._logger.warning("challenge_unavailable", status=response.status_code)
                return None, None
            challenge = SiweChallenge.model_validate(response.json())
            identity = self.signer.sign(challenge.message)
        except Exception as e:
            self._logger.warning("authentication_skipped", error=str(e))
            return None, None
        if identity is None:
            self._logger.warning("authentication_skipped", error="challenge could not be signed")
            return None, None
        self._logger.info("authenticated", username=identity.username, address=identity.address)
        return identity, challenge

    def _post_with_retries(
        self,
        client: httpx.Client,
        data: dict[str, str],
        files: dict[str, tuple[str, bytes, str]],
        *,
        timeout_ms: int,
    ) -> httpx.Response:
        timeout = timeout_ms / 1000
        for attempt in range(1, self.max_retries + 1):
            last_attempt = attempt == self.max_retries
            self._logger.info("request_sent", url=self.api_url, attempt=attempt, max_attempts=self.max_retries)
            try:
                response = client.post(
                    self.api_url,
                    data=data,
                    files=files,
                    headers={"accept": "application/json"},
                    timeout=timeout,
                )
            except Exception as e:
                if classify_error(e) is AttemptOutcome.FATAL:
                    raise
                kind = "timeout" if isinstance(e, httpx.TimeoutException) else "network"
                self._logger.warning("request_failed", attempt=attempt, kind=kind, error=str(e))
                if last_attempt:
                    raise ConnectionFailedError(attempts=self.max_retries, reason=str(e) or kind) from e
                self._sleep(self.retry_delay)
                continue

            outcome = classify_status(response.status_code)
            if outcome is AttemptOutcome.SUCCESS:
                return response
            if response.status_code == 401:  # noqa: PLR2004
                raise AuthenticationError()
            details = extract_error_details(response)
            if outcome is AttemptOutcome.FATAL:
                raise ApiStatusError(status_code=response.status_code, details=details)

            if response.status_code == 429:  # noqa: PLR2004
                self._logger.warning("rate_limited", attempt=attempt, retry_in=self.retry_delay)
            else:
                self._logger.error("server_error", status=response.status_code, details=details, attempt=attempt)
            if not last_attempt:
                self._sleep(self.retry_delay)

        raise RetriesExhaustedError(attempts=self.max_retries)

    def _handle_success(self, response: httpx.Response, *, debug: bool) -> str:
        body = response.text
        self.output_dir.mkdir(parents=True, exist_ok=True)
        raw_path = self.output_dir / RAW_RESPONSE_FILENAME
        try:
            raw_path.write_text(body, encoding="utf-8")
        except OSError as e:
            self._logger.error("raw_response_save_failed", path=str(raw_path), error=str(e))
        else:
            if debug:
                self._logger.debug("raw_response_saved", path=str(raw_path))

        try:
            payload = json.loads(body)
        except json.JSONDecodeError as e:
            self._logger.debug("raw_response", body=body[:1000])
            raise ResponseParseError(reason=str(e)) from e
        if not isinstance(payload, dict):
            raise ResponseParseError(reason=f"expected a JSON object, got {type(payload).__name__}")
        try:
            parsed = ApiResponse.model_validate(payload)
        except ValidationError as e:
            raise ResponseParseError(reason=str(e)) from e

        if debug:
            self._logger.debug(
                "response_details",
                status=response.status_code,
                headers=dict(response.headers),
                keys=sorted(payload),
            )

        content = parsed.content
        if content:
            self._save_answer(content)
        if self.updater is not None:
            self.updater.apply(parsed)
        if not content:
            raise MissingContentError(keys=tuple(sorted(payload)))
        return format_markdown_for_terminal(content)

    def _save_answer(self, content: str) -> None:
        answer_path = get_unique_filename(self.output_dir / ANSWER_FILENAME)
        try:
            answer_path.write_text(content, encoding="utf-8")
        except OSError as e:
            self._logger.error("answer_save_failed", path=str(answer_path), error=str(e))
            return
        self._logger.info("answer_saved", path=str(answer_path))
