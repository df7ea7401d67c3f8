"""
Error normalization for generative API calls.

Failures from the Gemini SDK arrive in inconsistent shapes: typed API errors
with a numeric code, bare exceptions whose message is a JSON document, or
plain strings mentioning the quota. Everything is folded into a single
GenerationError at the backend boundary so the retry layer only has to read
``kind`` and ``retry_delay_ms``.

Kinds:
- QUOTA: rate limit / resource exhausted, worth waiting out
- FATAL: anything else, propagated immediately
"""

import json
import math
import re
from enum import Enum
from typing import Any, Optional

RATE_LIMIT_CODE = 429
RESOURCE_EXHAUSTED = "RESOURCE_EXHAUSTED"
QUOTA_MARKERS = ("429", RESOURCE_EXHAUSTED, "Quota exceeded")
CREDENTIAL_MARKER = "Requested entity was not found"

_RETRY_IN_PATTERN = re.compile(r"retry in ([0-9.]+)s")


class ErrorKind(str, Enum):
    """Classification of a remote-call failure."""
    QUOTA = "quota"
    FATAL = "fatal"


class GenerationError(Exception):
    """Normalized failure of a Generation Backend operation."""

    def __init__(
        self,
        message: str,
        kind: ErrorKind = ErrorKind.FATAL,
        status: Optional[str] = None,
        code: Optional[int] = None,
        retry_delay_ms: Optional[int] = None,
        details: Optional[list] = None,
    ):
        self.kind = kind
        self.status = status
        self.code = code
        self.retry_delay_ms = retry_delay_ms
        self.details = details or []
        super().__init__(message)

    @property
    def retryable(self) -> bool:
        return self.kind == ErrorKind.QUOTA


class RetriesExhausted(Exception):
    """Raised when every permitted attempt failed with a quota error."""

    def __init__(self, call_id: str, attempts: int, last_error: Optional[BaseException] = None):
        self.call_id = call_id
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(f"Max retries exceeded for [{call_id}] after {attempts} attempts")


class GenerationBusy(Exception):
    """Raised when a same-kind generation is already in flight."""

    def __init__(self, kind: str, running_id: Optional[str]):
        self.kind = kind
        self.running_id = running_id
        super().__init__(f"{kind} generation already running for segment {running_id}")


def _error_message(error: BaseException) -> str:
    message = getattr(error, "message", None)
    if isinstance(message, str) and message:
        return message
    if error.args and isinstance(error.args[0], str):
        return error.args[0]
    return str(error)


def _parse_json_message(message: str) -> Optional[dict]:
    """Parse a JSON document embedded in an error message, if there is one."""
    if not message.strip().startswith("{"):
        return None
    try:
        parsed = json.loads(message)
    except ValueError:
        return None
    return parsed if isinstance(parsed, dict) else None


def _structured_status(error: BaseException, payload: Optional[dict]) -> list[Any]:
    """Collect every status/code value the error carries."""
    values = [getattr(error, "status", None), getattr(error, "code", None)]
    nested = getattr(error, "error", None)
    if isinstance(nested, dict):
        values.extend([nested.get("code"), nested.get("status")])
    for source in (getattr(error, "details", None), payload):
        if isinstance(source, dict) and isinstance(source.get("error"), dict):
            values.extend([source["error"].get("code"), source["error"].get("status")])
    return [v for v in values if v is not None]


def classify(error: BaseException) -> ErrorKind:
    """Classify a failure as quota-exhausted (retryable) or fatal."""
    if isinstance(error, GenerationError):
        return error.kind

    message = _error_message(error)
    for value in _structured_status(error, _parse_json_message(message)):
        if value == RATE_LIMIT_CODE or value == RESOURCE_EXHAUSTED:
            return ErrorKind.QUOTA

    if any(marker in message for marker in QUOTA_MARKERS):
        return ErrorKind.QUOTA

    return ErrorKind.FATAL


def _details_list(error: BaseException, payload: Optional[dict]) -> list:
    for source in (payload, getattr(error, "details", None), getattr(error, "error", None)):
        if isinstance(source, list):
            return source
        if isinstance(source, dict):
            inner = source.get("error")
            if isinstance(inner, dict) and isinstance(inner.get("details"), list):
                return inner["details"]
            if isinstance(source.get("details"), list):
                return source["details"]
    return []


def parse_duration_ms(value: str) -> Optional[int]:
    """Convert a protobuf duration string like ``"57.12s"`` to milliseconds."""
    if not isinstance(value, str) or not value.endswith("s"):
        return None
    try:
        seconds = float(value[:-1])
    except ValueError:
        return None
    return math.ceil(seconds * 1000)


def extract_retry_delay_ms(error: BaseException) -> Optional[int]:
    """Recover a server-suggested wait from the error, or None."""
    if isinstance(error, GenerationError) and error.retry_delay_ms is not None:
        return error.retry_delay_ms

    message = _error_message(error)
    for entry in _details_list(error, _parse_json_message(message)):
        if isinstance(entry, dict) and "RetryInfo" in str(entry.get("@type", "")):
            delay = parse_duration_ms(entry.get("retryDelay", ""))
            if delay is not None:
                return delay

    match = _RETRY_IN_PATTERN.search(message)
    if match:
        try:
            return math.ceil(float(match.group(1)) * 1000)
        except ValueError:
            return None
    return None


def normalize_error(error: BaseException) -> GenerationError:
    """Fold any SDK or transport failure into a GenerationError."""
    if isinstance(error, GenerationError):
        return error

    message = _error_message(error)
    payload = _parse_json_message(message)
    if payload and isinstance(payload.get("error"), dict) and payload["error"].get("message"):
        readable = payload["error"]["message"]
    else:
        readable = message

    status = getattr(error, "status", None)
    code = getattr(error, "code", None)
    kind = classify(error)

    return GenerationError(
        readable or type(error).__name__,
        kind=kind,
        status=status if isinstance(status, str) else None,
        code=code if isinstance(code, int) else None,
        retry_delay_ms=extract_retry_delay_ms(error) if kind == ErrorKind.QUOTA else None,
        details=_details_list(error, payload),
    )


def describe_error(error: BaseException) -> str:
    """Human-readable message for log lines."""
    if isinstance(error, RetriesExhausted) and error.last_error is not None:
        return f"{error} (last error: {describe_error(error.last_error)})"

    message = _error_message(error)
    payload = _parse_json_message(message)
    if payload and isinstance(payload.get("error"), dict) and payload["error"].get("message"):
        return payload["error"]["message"]
    return message or type(error).__name__


def is_credential_error(message: str) -> bool:
    """True when the message signals an invalid or revoked API key."""
    return CREDENTIAL_MARKER in message
