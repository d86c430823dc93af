"""Shared test fixtures."""
import time
from collections.abc import AsyncIterator, Iterator
from typing import Any

import httpx
import jwt
import pytest
import respx

from devcommunity_client.client import DevCommunityClient
from devcommunity_client.core.config import Settings
from devcommunity_client.core.storage import MemoryStorage
from devcommunity_client.schemas.user import UserIdentity

BASE_URL = "http://api.test"


class RecordingSleep:
    """Async sleep replacement that records requested delays instead of waiting."""

    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(float(delay))


def make_token(user_id: str = "u1", expires_in: float = 3600, **claims: Any) -> str:
    """Signed JWT as the backend would issue it (the client never verifies the signature)."""
    payload = {"userId": user_id, "exp": int(time.time() + expires_in), **claims}
    return jwt.encode(payload, "test-signing-secret-with-at-least-32-bytes", algorithm="HS256")


@pytest.fixture
def token_factory():
    """Build signed JWTs: token_factory(user_id="u1", expires_in=3600, **claims)."""
    return make_token


@pytest.fixture
def settings() -> Settings:
    return Settings(
        _env_file=None,
        api_base_url=BASE_URL,
        request_timeout=5.0,
        retry_attempts=3,
        retry_backoff_base=1.0,
        session_file="",
        request_source="test-client",
    )


@pytest.fixture
def mock_api() -> Iterator[respx.MockRouter]:
    """Context manager for mocking API responses."""
    with respx.mock(base_url=BASE_URL, assert_all_called=False) as respx_mock:
        yield respx_mock


@pytest.fixture
def recording_sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def storage() -> MemoryStorage:
    return MemoryStorage()


@pytest.fixture
async def client(
    settings: Settings,
    storage: MemoryStorage,
    recording_sleep: RecordingSleep,
    mock_api: respx.MockRouter,  # noqa: ARG001
) -> AsyncIterator[DevCommunityClient]:
    async with httpx.AsyncClient() as http_client:
        async with DevCommunityClient(
            settings, storage=storage, http_client=http_client, sleep=recording_sleep,
        ) as community:
            yield community


@pytest.fixture
def sample_user() -> dict[str, Any]:
    """Sample user as returned by the backend."""
    return {
        "_id": "u1",
        "username": "ada",
        "email": "a@x.com",
        "avatar": "https://cdn.test/ada.png",
        "bio": "Analyst",
        "score": 42,
    }


@pytest.fixture
def identity() -> UserIdentity:
    return UserIdentity(id="u1", display_name="ada", score=42)


@pytest.fixture
def signed_in(client: DevCommunityClient, identity: UserIdentity) -> str:
    """Put a valid session into the client; returns the token."""
    token = make_token("u1")
    client.session.set_session(identity, token)
    return token


@pytest.fixture
def sample_post() -> dict[str, Any]:
    """Sample post response data."""
    return {
        "_id": "p1",
        "title": "Hello",
        "content": "First post",
        "tags": ["intro"],
        "author": {"_id": "u2", "username": "grace"},
        "votes": 3,
        "upvotes": 4,
        "downvotes": 1,
        "votedBy": ["u2", "u3", "u4", "u5", "u6"],
        "likedBy": ["u2"],
        "commentsCount": 2,
        "createdAt": "2024-01-01T00:00:00Z",
    }


@pytest.fixture
def sample_comment() -> dict[str, Any]:
    """Sample comment response data."""
    return {
        "_id": "c1",
        "content": "Nice",
        "post": {"_id": "p1", "title": "Hello"},
        "author": "u2",
        "votes": 1,
        "upvotes": 1,
        "downvotes": 0,
        "votedBy": ["u2"],
        "createdAt": "2024-01-02T00:00:00Z",
    }
