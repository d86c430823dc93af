"""
API error classification.

Every failure that reaches a caller goes through `classify`, which turns a
raw exception (transport failure, HTTP status, anything unexpected) into one
ApiError subclass with a stable, human-readable message. This is the single
place where user-facing copy for failures is decided, so UI code branches on
`category` (or the exception class), never on raw status codes.
"""
from typing import Any, ClassVar, Literal

from ..core.transport import HttpError, NetworkError, RequestTimeout

ErrorCategory = Literal[
    "network",       # No response (DNS, connection refused, TLS)
    "timeout",       # Request exceeded its timeout
    "auth",          # 401/403 - missing, invalid or insufficient credentials
    "validation",    # 400/422 - rejected input
    "not_found",     # 404 - resource does not exist
    "conflict",      # 409 - resource already exists / was modified
    "rate_limited",  # 429 - too many requests
    "server",        # 5xx
    "unknown",       # Anything else
]


class ApiError(Exception):
    """Base class for classified API failures surfaced to callers."""

    category: ClassVar[ErrorCategory] = "unknown"
    default_message: ClassVar[str] = "An unexpected error occurred."

    def __init__(
        self,
        message: str | None = None,
        status: int | None = None,
        code: str | None = None,
        details: Any = None,
    ) -> None:
        self.message = message or self.default_message
        self.status = status
        self.code = code
        self.details = details
        super().__init__(self.message)


class NetworkFailure(ApiError):
    """No response could be obtained from the server."""

    category = "network"
    default_message = "Network error. Please check your connection."


class TimeoutFailure(ApiError):
    """The request did not complete in time."""

    category = "timeout"
    default_message = "Request timed out. Please try again."


class AuthError(ApiError):
    """401/403 - authentication required or permission denied."""

    category = "auth"
    default_message = "Authentication required. Please log in."


class ValidationError(ApiError):
    """400/422 - the server rejected the request input."""

    category = "validation"
    default_message = "Please check your input and try again."


class NotFoundError(ApiError):
    """404 - resource not found."""

    category = "not_found"
    default_message = "The requested resource was not found."


class ConflictError(ApiError):
    """409 - conflicting resource state."""

    category = "conflict"
    default_message = "Conflict. The resource already exists."


class RateLimitedError(ApiError):
    """429 - rate limit exceeded."""

    category = "rate_limited"
    default_message = "Too many requests. Please try again later."

    def __init__(
        self,
        message: str | None = None,
        status: int | None = None,
        code: str | None = None,
        details: Any = None,
        retry_after: float | None = None,
    ) -> None:
        super().__init__(message, status, code, details)
        self.retry_after = retry_after


class ServerError(ApiError):
    """5xx - the server failed to process the request."""

    category = "server"
    default_message = "Server error. Please try again later."


class UnknownError(ApiError):
    """Failure that fits no other category."""

    category = "unknown"


FORBIDDEN_MESSAGE = "Access denied. You do not have permission."


def _server_message(details: dict[str, Any]) -> str | None:
    """Extract a server-supplied message from an error body, if any."""
    message = details.get("message")
    if isinstance(message, str) and message:
        return message
    detail = details.get("detail")
    if isinstance(detail, str) and detail:
        return detail
    if isinstance(detail, dict):
        nested = detail.get("message")
        if isinstance(nested, str) and nested:
            return nested
    error = details.get("error")
    if isinstance(error, str) and error:
        return error
    return None


def _validation_message(details: dict[str, Any]) -> str | None:
    """
    Extract a validation message from a 400/422 body.

    Handles FastAPI-style `detail` lists ({"loc": [...], "msg": ...}) and
    express-validator style `errors` arrays ({"path"/"param", "msg"}).
    """
    entries = details.get("detail")
    if not isinstance(entries, list):
        entries = details.get("errors")
    if isinstance(entries, list):
        messages = []
        for err in entries:
            if not isinstance(err, dict):
                continue
            loc = err.get("loc")
            if isinstance(loc, list) and loc:
                field = loc[-1]
            else:
                field = err.get("path") or err.get("param") or err.get("field") or "unknown"
            msg = err.get("msg") or err.get("message") or "invalid"
            messages.append(f"{field}: {msg}")
        if messages:
            return "; ".join(messages)
    return _server_message(details)


def _retry_after(headers: dict[str, str]) -> float | None:
    for key, value in headers.items():
        if key.lower() == "retry-after":
            try:
                return max(0.0, float(value))
            except ValueError:
                return None
    return None


def _classify_http(e: HttpError) -> ApiError:  # noqa: PLR0911
    status = e.status
    details = e.details
    server_message = _server_message(details)

    if status == 401:
        return AuthError(server_message, status, e.code, details)
    if status == 403:
        return AuthError(server_message or FORBIDDEN_MESSAGE, status, e.code, details)
    if status in (400, 422):
        return ValidationError(_validation_message(details), status, e.code, details)
    if status == 404:
        return NotFoundError(server_message, status, e.code, details)
    if status == 409:
        return ConflictError(server_message, status, e.code, details)
    if status == 429:
        return RateLimitedError(
            server_message, status, e.code, details, retry_after=_retry_after(e.headers),
        )
    if status >= 500:
        return ServerError(server_message, status, e.code, details)
    return UnknownError(
        server_message or f"Request failed with status {status}", status, e.code, details,
    )


def classify(raw: BaseException) -> ApiError:
    """
    Map any failure to a typed ApiError.

    Pure: no I/O, no logging. An ApiError passed in is returned unchanged.

    Args:
        raw: The exception raised by the transport/retry stack or elsewhere.

    Returns:
        The matching ApiError subclass instance.
    """
    if isinstance(raw, ApiError):
        return raw
    if isinstance(raw, HttpError):
        return _classify_http(raw)
    if isinstance(raw, RequestTimeout):
        return TimeoutFailure()
    if isinstance(raw, NetworkError):
        return NetworkFailure()
    return UnknownError()
