"""Service layer for user profiles."""
import logging

from ..core.api_client import ApiClient
from ..core.session import SessionStore
from ..schemas.common import FileUpload, Page, normalize_page
from ..schemas.user import (
    ProfileUpdate,
    UserIdentity,
    UserStats,
    normalize_user,
    normalize_user_stats,
    user_payload,
)

logger = logging.getLogger(__name__)


class UserService:
    """User endpoints. All are retried (reads and overwrite-style updates)."""

    def __init__(self, api: ApiClient, session: SessionStore) -> None:
        self.api = api
        self.session = session

    async def get_user(self, user_id: str) -> UserIdentity:
        response = await self.api.request("GET", f"/users/{user_id}", retry=True)
        return self.api.parse(response, normalize_user)

    async def search_users(self, query: str, page: int = 1) -> Page[UserIdentity]:
        response = await self.api.request(
            "GET", "/users", retry=True, params={"search": query, "page": page},
        )
        return self.api.parse(response, lambda data: normalize_page(data, UserIdentity, "users"))

    async def get_user_stats(self, user_id: str) -> UserStats:
        response = await self.api.request("GET", f"/users/{user_id}/stats", retry=True)
        return self.api.parse(response, normalize_user_stats)

    async def update_profile(self, data: ProfileUpdate) -> UserIdentity | None:
        """
        Update display name and/or bio, then merge the result into the session.

        The sent fields are merged first so a response carrying only part of
        the user still leaves the session up to date.
        """
        self.api.require_user_id()
        body = data.to_json()
        response = await self.api.request(
            "PUT", "/users/profile", retry=True, auth=True, json=body,
        )
        return self.session.update_user({**body, **user_payload(response.data)})

    async def update_avatar(self, avatar: FileUpload) -> UserIdentity | None:
        """Upload a new avatar (multipart) and merge the returned URL into the session."""
        self.api.require_user_id()
        response = await self.api.request(
            "PUT", "/users/profile/avatar", retry=True, auth=True, files={"avatar": avatar},
        )
        changes = user_payload(response.data)
        if not changes:
            logger.warning("avatar_response_empty")
        return self.session.update_user(changes)
