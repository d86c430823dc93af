"""
Request pipeline shared by the endpoint services.

ApiClient composes Transport, RetryPolicy and SessionStore: it attaches the
Authorization header when a credential exists, sends through the retry
policy only when the caller marks the call retry-safe, and converts every
failure into an ApiError.
"""
import logging
from collections.abc import Callable
from typing import Any, TypeVar

from pydantic import ValidationError as PydanticValidationError

from ..schemas.common import FileUpload
from ..shared.api_errors import ApiError, AuthError, UnknownError, classify
from .retry import RetryPolicy
from .session import SessionStore
from .transport import ApiRequest, ApiResponse, Transport

logger = logging.getLogger(__name__)

T = TypeVar("T")

REQUEST_SOURCE_HEADER = "X-Request-Source"


class ApiClient:
    """Sends service requests with auth headers, retry and error mapping."""

    def __init__(
        self,
        transport: Transport,
        retry_policy: RetryPolicy,
        session: SessionStore,
        request_source: str | None = None,
    ) -> None:
        self.transport = transport
        self.retry_policy = retry_policy
        self.session = session
        self._request_source = request_source

    def _headers(self) -> dict[str, str]:
        # Read per attempt so a retry picks up a refreshed credential
        headers = self.session.auth_headers()
        if self._request_source:
            headers[REQUEST_SOURCE_HEADER] = self._request_source
        return headers

    def require_user_id(self) -> str:
        """
        Id of the signed-in user, for calls that need an authenticated session.

        Token expiry is not checked here; the server is the authority and
        answers 401 for a stale credential.

        Raises:
            AuthError: If there is no usable session. No request is issued.
        """
        session = self.session.session
        if session.user is None or session.token is None:
            raise AuthError()
        return session.user.id

    async def request(
        self,
        method: str,
        path: str,
        *,
        retry: bool,
        auth: bool = False,
        params: dict[str, Any] | None = None,
        json: Any = None,
        form: dict[str, Any] | None = None,
        files: dict[str, FileUpload] | None = None,
    ) -> ApiResponse:
        """
        Send one logical request.

        Args:
            method: HTTP method.
            path: Path relative to the API base URL.
            retry: Whether the call is safe to repeat (idempotent).
            auth: Whether the call requires a signed-in user. When set and
                the session is anonymous, AuthError is raised without a
                request.
            params: Query parameters (None values dropped).
            json: JSON body.
            form: Multipart fields.
            files: Multipart file parts keyed by field name.

        Raises:
            ApiError: The classified failure.
        """
        if auth and self.session.get_token() is None:
            raise AuthError()

        async def attempt() -> ApiResponse:
            return await self.transport.send(ApiRequest(
                method=method,
                path=path,
                params=params,
                json=json,
                form=form,
                files={name: f.to_httpx() for name, f in (files or {}).items()} or None,
                headers=self._headers(),
            ))

        try:
            if retry:
                return await self.retry_policy.execute(attempt)
            return await attempt()
        except ApiError:
            raise
        except Exception as e:
            error = classify(e)
            logger.info(
                "request_failed method=%s path=%s category=%s status=%s",
                method, path, error.category, error.status,
            )
            raise error from e

    @staticmethod
    def parse(response: ApiResponse, parser: Callable[[Any], T]) -> T:
        """
        Normalize a response body, mapping malformed payloads to UnknownError.

        Raises:
            UnknownError: If the body matches no supported shape.
        """
        try:
            return parser(response.data)
        except (PydanticValidationError, TypeError, ValueError) as e:
            logger.warning("response_malformed status=%s error=%s", response.status, e)
            raise UnknownError("Unexpected response from the server.") from e

