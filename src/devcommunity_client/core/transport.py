"""
HTTP transport for the DevCommunity API.

One call to Transport.send is exactly one HTTP exchange: it builds the request
body (JSON or multipart), bounds the exchange with a timeout, and turns the
response into either an ApiResponse (2xx) or a TransportError subclass.
Transport never touches the session or the entity cache; the service layer
supplies auth headers and decides what to do with the result.
"""
import asyncio
import json
import logging
from dataclasses import dataclass, field
from typing import Any

import httpx

logger = logging.getLogger(__name__)

JSON_CONTENT_TYPE = "application/json"
DEFAULT_TIMEOUT = 10.0


class TransportError(Exception):
    """Base class for failures raised by Transport.send."""


class NetworkError(TransportError):
    """Connection, DNS, TLS or protocol failure before a response was received."""


class RequestTimeout(TransportError):
    """The exchange did not finish within its timeout and was cancelled."""

    def __init__(self, timeout: float) -> None:
        self.timeout = timeout
        super().__init__(f"Request timed out after {timeout:g}s")


class HttpError(TransportError):
    """The server answered with a status >= 400."""

    def __init__(
        self,
        status: int,
        message: str,
        code: str | None = None,
        details: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
    ) -> None:
        self.status = status
        self.message = message
        self.code = code
        self.details = details if details is not None else {}
        self.headers = headers if headers is not None else {}
        super().__init__(message)


@dataclass
class ApiRequest:
    """
    Description of a single API call.

    `json` and the multipart pair (`form` / `files`) are mutually exclusive.
    Setting either `form` or `files` makes the body multipart.
    """

    method: str
    path: str
    params: dict[str, Any] | None = None
    json: Any = None
    form: dict[str, Any] | None = None
    files: dict[str, Any] | None = None
    headers: dict[str, str] = field(default_factory=dict)
    timeout: float | None = None

    def __post_init__(self) -> None:
        self.method = self.method.upper()
        if self.json is not None and self.is_multipart:
            raise ValueError("A request body is either JSON or multipart, not both")

    @property
    def is_multipart(self) -> bool:
        """True when the body must be sent as multipart/form-data."""
        return self.form is not None or self.files is not None


@dataclass
class ApiResponse:
    """Successful (2xx) response."""

    data: Any
    status: int
    message: str | None = None


def _has_header(headers: dict[str, str], name: str) -> bool:
    lowered = name.lower()
    return any(key.lower() == lowered for key in headers)


def _clean_params(params: dict[str, Any] | None) -> dict[str, str] | None:
    """Drop unset query params and comma-join list values."""
    if not params:
        return None
    cleaned = {}
    for key, value in params.items():
        if value is None or value == "" or value == []:
            continue
        if isinstance(value, (list, tuple)):
            cleaned[key] = ",".join(str(v) for v in value)
        elif isinstance(value, bool):
            cleaned[key] = "true" if value else "false"
        else:
            cleaned[key] = str(value)
    return cleaned or None


def _multipart_parts(request: ApiRequest) -> list[tuple[str, Any]]:
    """
    Encode form fields and files as multipart parts.

    Plain fields are sent as (None, value) parts so httpx always produces a
    multipart body, even when no file is attached.
    """
    parts: list[tuple[str, Any]] = []
    for name, value in (request.form or {}).items():
        if value is None:
            continue
        if isinstance(value, (list, dict)):
            value = json.dumps(value)
        elif isinstance(value, bool):
            value = "true" if value else "false"
        parts.append((name, (None, str(value))))
    for name, value in (request.files or {}).items():
        if value is not None:
            parts.append((name, value))
    return parts


def _parse_error_body(response: httpx.Response) -> dict[str, Any]:
    """Best-effort JSON parse of an error body; anything else yields {}."""
    try:
        body = response.json()
    except ValueError:
        return {}
    return body if isinstance(body, dict) else {}


def _error_message(body: dict[str, Any], response: httpx.Response) -> str:
    message = body.get("message")
    if isinstance(message, str) and message:
        return message
    detail = body.get("detail")
    if isinstance(detail, str) and detail:
        return detail
    if isinstance(detail, dict) and isinstance(detail.get("message"), str):
        return detail["message"]
    error = body.get("error")
    if isinstance(error, str) and error:
        return error
    return f"HTTP {response.status_code}: {response.reason_phrase}"


class Transport:
    """Sends ApiRequests over a shared httpx.AsyncClient."""

    def __init__(
        self,
        base_url: str,
        timeout: float = DEFAULT_TIMEOUT,
        client: httpx.AsyncClient | None = None,
        default_headers: dict[str, str] | None = None,
    ) -> None:
        if timeout <= 0:
            raise ValueError("timeout must be positive")
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._client = client
        self._owns_client = client is None
        self._default_headers = dict(default_headers or {})

    @property
    def timeout(self) -> float:
        """Default per-request timeout in seconds."""
        return self._timeout

    def url_for(self, path: str) -> str:
        """Absolute URL of an API path. Injected clients need not carry a base URL."""
        return f"{self._base_url}/{path.lstrip('/')}"

    def _get_client(self) -> httpx.AsyncClient:
        """Get or create the HTTP client for API requests."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=self._base_url,
                timeout=self._timeout,
            )
            self._owns_client = True
        return self._client

    def _build_kwargs(self, request: ApiRequest) -> dict[str, Any]:
        headers = {**self._default_headers, **request.headers}
        kwargs: dict[str, Any] = {"params": _clean_params(request.params)}

        if request.is_multipart:
            # httpx generates the boundary; an explicit Content-Type would lose it
            headers = {k: v for k, v in headers.items() if k.lower() != "content-type"}
            kwargs["files"] = _multipart_parts(request)
        elif request.json is not None:
            kwargs["content"] = json.dumps(request.json).encode("utf-8")
            if not _has_header(headers, "Content-Type"):
                headers["Content-Type"] = JSON_CONTENT_TYPE

        kwargs["headers"] = headers
        return kwargs

    async def send(self, request: ApiRequest) -> ApiResponse:
        """
        Perform one HTTP exchange.

        Returns:
            ApiResponse with the parsed JSON body for 2xx statuses.

        Raises:
            HttpError: status >= 400 (body parsed best-effort).
            RequestTimeout: the exchange exceeded its timeout.
            NetworkError: no response could be obtained.
        """
        timeout = request.timeout if request.timeout is not None else self._timeout
        client = self._get_client()
        kwargs = self._build_kwargs(request)

        logger.debug("request_start method=%s path=%s", request.method, request.path)
        try:
            async with asyncio.timeout(timeout):
                response = await client.request(
                    request.method,
                    self.url_for(request.path),
                    timeout=timeout,
                    **kwargs,
                )
        except (TimeoutError, httpx.TimeoutException) as e:
            logger.debug("request_timeout method=%s path=%s", request.method, request.path)
            raise RequestTimeout(timeout) from e
        except httpx.RequestError as e:
            logger.debug(
                "request_network_error method=%s path=%s error=%s",
                request.method, request.path, e,
            )
            raise NetworkError(str(e) or type(e).__name__) from e

        logger.debug(
            "request_done method=%s path=%s status=%s",
            request.method, request.path, response.status_code,
        )

        if response.status_code >= 400:
            body = _parse_error_body(response)
            code = body.get("code")
            raise HttpError(
                status=response.status_code,
                message=_error_message(body, response),
                code=str(code) if code is not None else None,
                details=body,
                headers=dict(response.headers),
            )

        if not response.content:
            return ApiResponse(data=None, status=response.status_code)
        try:
            data = response.json()
        except ValueError:
            data = response.text
        message = data.get("message") if isinstance(data, dict) else None
        return ApiResponse(data=data, status=response.status_code, message=message)

    async def aclose(self) -> None:
        """Close the underlying client if this transport created it."""
        if self._client is not None and self._owns_client:
            await self._client.aclose()
        self._client = None

    async def __aenter__(self) -> "Transport":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()
