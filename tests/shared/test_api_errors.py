"""Tests for API error classification."""
import pytest

from devcommunity_client.core.transport import HttpError, NetworkError, RequestTimeout
from devcommunity_client.shared.api_errors import (
    FORBIDDEN_MESSAGE,
    ApiError,
    AuthError,
    ConflictError,
    NetworkFailure,
    NotFoundError,
    RateLimitedError,
    ServerError,
    TimeoutFailure,
    UnknownError,
    ValidationError,
    classify,
)


class TestClassifyStatus:
    """Tests for mapping HTTP statuses to error classes."""

    @pytest.mark.parametrize(
        ("status", "error_class", "category"),
        [
            (400, ValidationError, "validation"),
            (401, AuthError, "auth"),
            (403, AuthError, "auth"),
            (404, NotFoundError, "not_found"),
            (409, ConflictError, "conflict"),
            (422, ValidationError, "validation"),
            (429, RateLimitedError, "rate_limited"),
            (500, ServerError, "server"),
            (503, ServerError, "server"),
            (418, UnknownError, "unknown"),
        ],
    )
    def test__classify__status_mapping(
        self, status: int, error_class: type[ApiError], category: str,
    ) -> None:
        error = classify(HttpError(status, f"HTTP {status}"))

        assert type(error) is error_class
        assert error.category == category
        assert error.status == status

    def test__classify__default_messages_when_server_silent(self) -> None:
        assert classify(HttpError(401, "HTTP 401")).message == (
            "Authentication required. Please log in."
        )
        assert classify(HttpError(403, "HTTP 403")).message == FORBIDDEN_MESSAGE
        assert classify(HttpError(404, "HTTP 404")).message == (
            "The requested resource was not found."
        )
        assert classify(HttpError(500, "HTTP 500")).message == (
            "Server error. Please try again later."
        )
        assert classify(HttpError(418, "HTTP 418")).message == "Request failed with status 418"

    def test__classify__server_message_wins(self) -> None:
        error = classify(HttpError(404, "x", details={"message": "Post not found"}))
        assert error.message == "Post not found"

    def test__classify__nested_detail_message(self) -> None:
        error = classify(HttpError(409, "x", details={"detail": {"message": "Email taken"}}))
        assert error.message == "Email taken"

    def test__classify__validation_lists_flattened(self) -> None:
        fastapi_style = {"detail": [
            {"loc": ["body", "email"], "msg": "field required"},
            {"loc": ["body", "password"], "msg": "too short"},
        ]}
        express_style = {"errors": [{"path": "title", "msg": "Title is required"}]}

        assert classify(HttpError(422, "x", details=fastapi_style)).message == (
            "email: field required; password: too short"
        )
        assert classify(HttpError(400, "x", details=express_style)).message == (
            "title: Title is required"
        )

    def test__classify__rate_limit_exposes_retry_after(self) -> None:
        error = classify(HttpError(429, "x", headers={"Retry-After": "30"}))

        assert isinstance(error, RateLimitedError)
        assert error.retry_after == 30.0


class TestClassifyOther:
    """Tests for non-HTTP failures."""

    def test__classify__network_and_timeout(self) -> None:
        network = classify(NetworkError("refused"))
        timeout = classify(RequestTimeout(10.0))

        assert isinstance(network, NetworkFailure)
        assert network.message == "Network error. Please check your connection."
        assert isinstance(timeout, TimeoutFailure)
        assert timeout.message == "Request timed out. Please try again."

    def test__classify__unexpected_exception_is_unknown(self) -> None:
        error = classify(KeyError("boom"))

        assert isinstance(error, UnknownError)
        assert error.message == "An unexpected error occurred."

    def test__classify__idempotent(self) -> None:
        original = classify(HttpError(404, "x"))
        assert classify(original) is original
