"""
Error taxonomy for backend call failures.

Raw backend exceptions are classified once, where they are first caught,
into a closed set of variants that drive the governor's retry policy:

- QuotaExceeded: resource exhaustion, handled by model fallback
- ServerError: 5xx-class or timed out, retried with backoff
- ClientError: any other status, fatal
- UnknownCallError: no status information, fatal
"""

import asyncio
import json
from typing import Any, Optional, Tuple

DEFAULT_ERROR_MESSAGE = "An unexpected API error occurred."

QUOTA_STATUSES = frozenset({"RESOURCE_EXHAUSTED", "INSUFFICIENT_QUOTA"})
QUOTA_HTTP_CODE = 429
TIMEOUT_HTTP_CODE = 504


class CallError(Exception):
    """Base class for classified backend errors."""
    retryable = False

    def __init__(self, message: str, cause: Optional[BaseException] = None):
        super().__init__(message)
        self.message = message
        self.cause = cause


class QuotaExceeded(CallError):
    """Backend reported quota exhaustion for a model."""

    def __init__(self, model: str, message: str, cause: Optional[BaseException] = None):
        super().__init__(message, cause)
        self.model = model


class ServerError(CallError):
    """Server-class failure; worth retrying."""
    retryable = True

    def __init__(self, code: int, message: str, cause: Optional[BaseException] = None):
        super().__init__(message, cause)
        self.code = code


class ClientError(CallError):
    """Client-class failure; retrying will not help."""

    def __init__(self, code: int, message: str, cause: Optional[BaseException] = None):
        super().__init__(message, cause)
        self.code = code


class UnknownCallError(CallError):
    """Failure without any recognizable status information."""


class GovernedCallError(Exception):
    """Raised to the caller when a logical call ends in failure.

    Carries the last observed message and the classified error that
    ended the call.
    """

    def __init__(self, message: str, error: CallError, attempts: int, model: str):
        super().__init__(message)
        self.message = message
        self.error = error
        self.attempts = attempts
        self.model = model


def _as_code(value: Any) -> Optional[int]:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, str) and value.isdigit():
        return int(value)
    return None


def _scan(source: Any, getter) -> Tuple[Optional[int], Optional[str]]:
    """Collect the first numeric code and the first status string."""
    code = None
    status = None
    for name in ("status_code", "code", "status"):
        value = getter(source, name)
        numeric = _as_code(value)
        if numeric is not None:
            if code is None:
                code = numeric
        elif isinstance(value, str) and value and status is None:
            status = value
    return code, status


def _parse_body(message: str) -> Optional[dict]:
    """Decode a JSON-encoded error body, if the message is one."""
    try:
        body = json.loads(message)
    except (TypeError, ValueError):
        return None
    if not isinstance(body, dict):
        return None
    error = body.get("error", body)
    return error if isinstance(error, dict) else None


def error_message(exc: BaseException) -> str:
    """Human-readable message for a raw backend exception."""
    message = getattr(exc, "message", None)
    if isinstance(message, str) and message:
        return message
    return str(exc) or DEFAULT_ERROR_MESSAGE


def classify_error(exc: BaseException, model: str) -> CallError:
    """Classify a raw backend exception.

    Status information is read from the exception's ``status_code``,
    ``code`` and ``status`` attributes, then from a JSON-encoded message
    body of the form ``{"error": {"code": ..., "status": ...}}``.

    Args:
        exc: Exception raised by a physical attempt
        model: Model the attempt was made against

    Returns:
        The classified error
    """
    if isinstance(exc, CallError):
        return exc

    message = error_message(exc)

    if isinstance(exc, (asyncio.TimeoutError, TimeoutError)):
        return ServerError(TIMEOUT_HTTP_CODE, message if str(exc) else "Request timed out.", exc)

    code, status = _scan(exc, lambda source, name: getattr(source, name, None))
    if code is None or status is None:
        body = _parse_body(str(exc))
        if body is not None:
            body_code, body_status = _scan(body, lambda source, name: source.get(name))
            code = code if code is not None else body_code
            status = status or body_status

    if (status and status.upper() in QUOTA_STATUSES) or code == QUOTA_HTTP_CODE:
        return QuotaExceeded(model, message, exc)
    if code is not None and 500 <= code < 600:
        return ServerError(code, message, exc)
    if code is not None:
        return ClientError(code, message, exc)
    return UnknownCallError(message, exc)
