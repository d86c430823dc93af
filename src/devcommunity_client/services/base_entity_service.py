"""
Base service class for cached entity operations.

Provides the shared read-into-cache and optimistic-mutation logic for the
Post and Comment services. Entity-specific behavior is defined via class
attributes and the endpoint paths each subclass passes in.

Every mutation follows the same steps, in order:

    apply (EntityCache) -> request (ApiClient) -> commit | rollback

Any failure between apply and settle, including task cancellation, rolls the
optimistic change back before the error propagates.
"""
import logging
import uuid
from collections.abc import Awaitable, Callable, Mapping, Sequence
from datetime import UTC, datetime
from typing import Any, Generic, TypeVar

from pydantic import ValidationError as PydanticValidationError

from ..core.api_client import ApiClient
from ..core.entity_cache import EntityCache, MutationHandle
from ..core.transport import ApiResponse
from ..schemas.comment import Comment
from ..schemas.common import (
    Page,
    VoteType,
    normalize_entity,
    normalize_page,
    unwrap_envelope,
)
from ..schemas.post import Post
from ..shared.api_errors import NotFoundError, ValidationError

logger = logging.getLogger(__name__)

EntityT = TypeVar("EntityT", Post, Comment)

TEMP_ID_PREFIX = "temp-"


def temporary_id() -> str:
    """Client-side id for an entity the server has not created yet."""
    return f"{TEMP_ID_PREFIX}{uuid.uuid4().hex}"


def utc_now_iso() -> str:
    return datetime.now(UTC).isoformat()


def check_vote(vote: str) -> VoteType:
    """
    Validate a vote direction before anything is applied.

    Raises:
        ValidationError: If the vote is not 'up' or 'down'.
    """
    if vote == "up":
        return "up"
    if vote == "down":
        return "down"
    raise ValidationError("Vote must be 'up' or 'down'.")


class BaseEntityService(Generic[EntityT]):
    """
    Shared logic for services whose entities live in an EntityCache.

    Subclasses must define:
    - model: The pydantic entity class
    - entity_key: Wrapper key of single-entity responses (e.g. "post")
    - list_key: Wrapper key of listing responses (e.g. "posts")
    """

    model: type[EntityT]
    entity_key: str
    list_key: str

    def __init__(self, api: ApiClient, cache: EntityCache[EntityT]) -> None:
        self.api = api
        self.cache = cache

    # --- Parsing ---

    def _parse_entity(self, response: ApiResponse) -> EntityT:
        return self.api.parse(
            response, lambda data: normalize_entity(data, self.model, self.entity_key),
        )

    def _parse_page(self, response: ApiResponse) -> Page[EntityT]:
        return self.api.parse(
            response, lambda data: normalize_page(data, self.model, self.list_key),
        )

    def _parse_result(self, response: ApiResponse, entity_id: str | None) -> EntityT | None:
        """
        Entity carried by a mutation response, if any.

        The request has already succeeded at this point, so a body that is
        not a usable entity keeps the optimistic values instead of failing.
        """
        body = unwrap_envelope(response.data)
        if not isinstance(body, dict):
            return None
        try:
            return normalize_entity(body, self.model, self.entity_key, default_id=entity_id)
        except PydanticValidationError as e:
            logger.warning(
                "mutation_result_ignored entity=%s id=%s errors=%s",
                self.entity_key, entity_id, e.error_count(),
            )
            return None

    # --- Reads ---

    async def _fetch_one(self, path: str, entity_id: str) -> EntityT:
        try:
            response = await self.api.request("GET", path, retry=True)
        except NotFoundError:
            self.cache.evict(entity_id)
            raise
        entity = self.cache.upsert(self._parse_entity(response))
        return entity

    async def _fetch_page(
        self,
        path: str,
        params: dict[str, Any],
        list_key: str | None,
    ) -> Page[EntityT]:
        """
        Fetch a listing page into the cache.

        Page 1 replaces the ordered view; later pages extend it.
        """
        response = await self.api.request("GET", path, retry=True, params=params)
        page = self._parse_page(response)
        ids = self.cache.upsert_many(page.items)
        if list_key is not None:
            if (params.get("page") or 1) > 1:
                self.cache.extend_list(list_key, ids)
            else:
                self.cache.set_list(list_key, ids)
        merged = [self.cache.get(entity_id) or item for entity_id, item in zip(ids, page.items)]
        return page.model_copy(update={"items": merged})

    # --- Mutations ---

    async def _mutate(
        self,
        handle: MutationHandle | None,
        send: Callable[[], Awaitable[ApiResponse]],
        entity_id: str | None,
    ) -> EntityT | None:
        """Run the request for an applied mutation and settle it."""
        try:
            response = await send()
        except BaseException:
            if handle is not None:
                self.cache.rollback(handle)
            raise
        result = self._parse_result(response, entity_id)
        if handle is not None:
            self.cache.commit(handle, result)
        elif result is not None and entity_id is not None:
            self.cache.upsert(result)
        return result

    def _current(self, entity_id: str, fallback: EntityT | None) -> EntityT | None:
        return self.cache.get(entity_id) or fallback

    async def _create(
        self,
        draft: EntityT,
        lists: Sequence[str],
        send: Callable[[], Awaitable[ApiResponse]],
    ) -> EntityT:
        """Prepend a draft with a temporary id, then swap in the server entity."""
        handle = self.cache.apply_create(draft, lists)
        result = await self._mutate(handle, send, entity_id=None)
        if result is None:
            logger.warning("create_result_missing entity=%s temp_id=%s", self.entity_key, draft.id)
            return self._current(draft.id, draft)
        return self._current(result.id, result)

    async def _update(
        self,
        entity_id: str,
        changes: Mapping[str, Any],
        send: Callable[[], Awaitable[ApiResponse]],
    ) -> EntityT | None:
        self.api.require_user_id()
        handle = None
        if entity_id in self.cache and changes:
            handle = self.cache.apply_update(entity_id, changes)
        result = await self._mutate(handle, send, entity_id)
        return self._current(entity_id, result)

    async def _delete(self, entity_id: str, path: str) -> None:
        self.api.require_user_id()
        handle = self.cache.apply_delete(entity_id) if entity_id in self.cache else None

        async def send() -> ApiResponse:
            try:
                return await self.api.request("DELETE", path, retry=True, auth=True)
            except NotFoundError:
                # A retried delete finds the first attempt already applied
                logger.debug("delete_already_gone entity=%s id=%s", self.entity_key, entity_id)
                return ApiResponse(data=None, status=404)

        await self._mutate(handle, send, entity_id=None)

    async def _vote(
        self,
        entity_id: str,
        vote: str,
        path: str,
        vote_field: str,
    ) -> EntityT | None:
        """
        Set the caller's vote. Retried: setting the same direction twice is a
        no-op on the server.
        """
        direction = check_vote(vote)
        user_id = self.api.require_user_id()
        handle = None
        if entity_id in self.cache:
            handle = self.cache.apply_vote(entity_id, user_id, direction)

        async def send() -> ApiResponse:
            return await self.api.request(
                "POST", path, retry=True, auth=True, json={vote_field: direction},
            )

        result = await self._mutate(handle, send, entity_id)
        return self._current(entity_id, result)
