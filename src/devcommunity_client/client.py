"""
DevCommunityClient: the session context object.

Built once at startup and passed by reference to whatever needs the API. It
owns the transport (and its connection pool), the retry policy, the session
store, the entity caches and every endpoint service, so tests can construct
an isolated instance with in-memory storage and a mocked HTTP client.
"""
import logging
from collections.abc import Awaitable, Callable

import httpx

from .core.api_client import ApiClient
from .core.config import Settings, get_settings
from .core.entity_cache import CacheRegistry
from .core.retry import RetryPolicy
from .core.session import SessionStore
from .core.storage import FileStorage, MemoryStorage, SessionStorage
from .core.transport import Transport
from .services.auth_service import AuthService
from .services.comment_service import CommentService
from .services.leaderboard_service import LeaderboardService
from .services.post_service import PostService
from .services.user_service import UserService

logger = logging.getLogger(__name__)


def _default_storage(settings: Settings) -> SessionStorage:
    if settings.session_file:
        return FileStorage(settings.session_file)
    return MemoryStorage()


class DevCommunityClient:
    """Entry point to the DevCommunity API."""

    def __init__(
        self,
        settings: Settings | None = None,
        *,
        storage: SessionStorage | None = None,
        http_client: httpx.AsyncClient | None = None,
        sleep: Callable[[float], Awaitable[None]] | None = None,
        clock: Callable[[], float] | None = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.transport = Transport(
            self.settings.api_base_url,
            timeout=self.settings.request_timeout,
            client=http_client,
        )
        retry_kwargs = {} if sleep is None else {"sleep": sleep}
        self.retry_policy = RetryPolicy(
            max_attempts=self.settings.retry_attempts,
            backoff_base=self.settings.retry_backoff_base,
            **retry_kwargs,
        )
        session_kwargs = {} if clock is None else {"clock": clock}
        self.session = SessionStore(
            storage if storage is not None else _default_storage(self.settings),
            **session_kwargs,
        )
        self.caches = CacheRegistry()
        self.api = ApiClient(
            self.transport,
            self.retry_policy,
            self.session,
            request_source=self.settings.request_source,
        )

        self.auth = AuthService(self.api, self.session)
        self.posts = PostService(self.api, self.caches.posts)
        self.comments = CommentService(self.api, self.caches.comments)
        self.users = UserService(self.api, self.session)
        self.leaderboard = LeaderboardService(self.api)
        logger.debug("client_ready base_url=%s", self.settings.api_base_url)

    async def aclose(self) -> None:
        await self.transport.aclose()

    async def __aenter__(self) -> "DevCommunityClient":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()
