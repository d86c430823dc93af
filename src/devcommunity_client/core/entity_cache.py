"""
Normalized entity cache with optimistic mutations.

Entities (posts, comments) live in one map per kind, keyed by id. Ordered
views (the feed, a user's posts, a post's comment thread) are separate lists
of ids that reference the map.

Optimistic mutations follow a small state machine:

    apply_*  ->  PendingMutation recorded (handle returned)
    commit   ->  authoritative server fields merged, pending record dropped
    rollback ->  pre-mutation values restored, pending record dropped

Several mutations may be pending on the same entity at once. Each gets a
sequence number when applied, and a settle only writes a field when no newer
mutation (pending or already settled) has written it. Settling an older
mutation under a newer pending one hands the older baseline (or the
confirmed server value) to the newer mutation, so a later rollback still
restores the right value. Fields touched by other pending mutations are
never overwritten by a settle or a fetch.
"""
import copy
import itertools
import logging
from collections.abc import Callable, Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any, Generic, TypeVar

from pydantic import BaseModel

from ..schemas.comment import Comment
from ..schemas.common import VoteType
from ..schemas.post import Post

logger = logging.getLogger(__name__)

EntityT = TypeVar("EntityT", bound=BaseModel)

CacheListener = Callable[[frozenset[str]], None]

FEED_LIST = "feed"
TRENDING_LIST = "trending"
RECENT_LIST = "recent"


def user_list(user_id: str) -> str:
    """List key for the posts (or comments) authored by a user."""
    return f"user:{user_id}"


def thread_list(post_id: str) -> str:
    """List key for a post's comment thread."""
    return f"post:{post_id}"


def replies_list(comment_id: str) -> str:
    """List key for the replies nested under a comment."""
    return f"replies:{comment_id}"


def tag_list(tag: str) -> str:
    return f"tag:{tag}"


class MutationKind(StrEnum):
    """What an optimistic mutation does to its entity."""

    CREATE = "create"
    UPDATE = "update"
    VOTE = "vote"
    LIKE = "like"
    DELETE = "delete"


@dataclass(frozen=True)
class MutationHandle:
    """Opaque reference to a pending mutation, passed back to commit/rollback."""

    id: int
    entity_id: str
    kind: MutationKind


@dataclass
class PendingMutation(Generic[EntityT]):
    """Bookkeeping for one not-yet-settled optimistic mutation."""

    seq: int
    entity_id: str
    kind: MutationKind
    # Optimistic values of the fields this mutation touched
    fields: dict[str, Any]
    # Rollback target per touched field
    previous: dict[str, Any]
    optimistic_snapshot: EntityT | None = None
    previous_snapshot: EntityT | None = None
    # CREATE: lists the entity was prepended to. DELETE: index per list.
    positions: dict[str, int] = field(default_factory=dict)


def vote_changes(
    entity: Post | Comment, user_id: str, vote: VoteType,
) -> dict[str, Any]:
    """
    Field values after `user_id` votes `vote` on `entity`.

    Setting the same vote twice changes nothing, which keeps the call safe to
    retry. Switching direction moves the user's vote from one counter to the
    other.
    """
    previous_vote = entity.user_vote
    if previous_vote == vote:
        return {"user_vote": vote}

    contribution = {"up": 1, "down": -1, None: 0}
    upvotes, downvotes = entity.upvotes, entity.downvotes
    if previous_vote == "up":
        upvotes -= 1
    elif previous_vote == "down":
        downvotes -= 1
    if vote == "up":
        upvotes += 1
    else:
        downvotes += 1

    voters = list(entity.voted_by)
    if user_id not in voters:
        voters.append(user_id)

    return {
        "upvotes": max(upvotes, 0),
        "downvotes": max(downvotes, 0),
        "votes": entity.votes + contribution[vote] - contribution[previous_vote],
        "voted_by": voters,
        "user_vote": vote,
    }


def like_changes(post: Post, user_id: str) -> dict[str, Any]:
    """Field values after `user_id` toggles their like on `post`."""
    if user_id in post.liked_by:
        return {"liked_by": [uid for uid in post.liked_by if uid != user_id]}
    return {"liked_by": [*post.liked_by, user_id]}


class EntityCache(Generic[EntityT]):
    """Entity map, ordered id lists and pending optimistic mutations for one kind."""

    def __init__(self, model: type[EntityT], name: str) -> None:
        self._model = model
        self.name = name
        self._entities: dict[str, EntityT] = {}
        self._lists: dict[str, list[str]] = {}
        self._pending: dict[int, PendingMutation[EntityT]] = {}
        # entity id -> field -> highest seq of a settled mutation that wrote it
        self._settled: dict[str, dict[str, int]] = {}
        self._seq = itertools.count(1)
        self._listeners: list[CacheListener] = []

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get(self, entity_id: str) -> EntityT | None:
        return self._entities.get(entity_id)

    def __contains__(self, entity_id: object) -> bool:
        return entity_id in self._entities

    def __len__(self) -> int:
        return len(self._entities)

    def list_ids(self, key: str) -> list[str]:
        return list(self._lists.get(key, []))

    def list_view(self, key: str) -> list[EntityT]:
        """Entities of an ordered view, skipping ids no longer in the map."""
        return [self._entities[i] for i in self._lists.get(key, []) if i in self._entities]

    def pending_for(self, entity_id: str) -> list[PendingMutation[EntityT]]:
        """Pending mutations on an entity, oldest first."""
        return sorted(
            (m for m in self._pending.values() if m.entity_id == entity_id),
            key=lambda m: m.seq,
        )

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    # ------------------------------------------------------------------
    # Subscriptions
    # ------------------------------------------------------------------

    def subscribe(self, listener: CacheListener) -> Callable[[], None]:
        """
        Register a listener called with the ids changed by each state change.

        Returns:
            A function that unregisters the listener.
        """
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _emit(self, ids: Iterable[str]) -> None:
        changed = frozenset(ids)
        if not changed:
            return
        for listener in list(self._listeners):
            try:
                listener(changed)
            except Exception:
                logger.warning("cache_listener_failed cache=%s", self.name, exc_info=True)

    # ------------------------------------------------------------------
    # Field bookkeeping
    # ------------------------------------------------------------------

    def _pending_touching(self, entity_id: str, name: str) -> list[PendingMutation[EntityT]]:
        return [
            m for m in self.pending_for(entity_id) if name in m.fields
        ]

    def _check_fields(self, changes: Mapping[str, Any]) -> None:
        unknown = set(changes) - set(self._model.model_fields)
        if unknown:
            raise ValueError(f"Unknown {self._model.__name__} fields: {sorted(unknown)}")
        if "id" in changes:
            raise ValueError("The id of a cached entity cannot be changed")

    def _set_fields(self, entity_id: str, values: Mapping[str, Any]) -> None:
        if values:
            self._entities[entity_id] = self._entities[entity_id].model_copy(update=dict(values))

    def _server_fields(self, entity: EntityT) -> dict[str, Any]:
        """Fields actually present in a server payload (defaults are not authoritative)."""
        return {
            name: getattr(entity, name)
            for name in entity.model_fields_set
            if name != "id"
        }

    # ------------------------------------------------------------------
    # Ingestion from reads
    # ------------------------------------------------------------------

    def upsert(self, entity: EntityT) -> EntityT:
        """
        Merge a fetched server snapshot.

        Fields held by pending mutations keep their optimistic value; the
        fetched value becomes the rollback baseline for the oldest of them.
        """
        entity_id = entity.id
        if entity_id not in self._entities:
            self._entities[entity_id] = entity
            self._emit([entity_id])
            return entity

        writes = {}
        for name, value in self._server_fields(entity).items():
            holders = self._pending_touching(entity_id, name)
            if holders:
                holders[0].previous[name] = copy.deepcopy(value)
            else:
                writes[name] = value
        self._set_fields(entity_id, writes)
        self._emit([entity_id])
        return self._entities[entity_id]

    def upsert_many(self, entities: Iterable[EntityT]) -> list[str]:
        """Upsert several entities; returns their ids in order."""
        return [self.upsert(entity).id for entity in entities]

    def set_list(self, key: str, ids: Sequence[str]) -> None:
        """Replace an ordered view."""
        self._lists[key] = list(dict.fromkeys(ids))
        self._emit(ids)

    def extend_list(self, key: str, ids: Sequence[str]) -> None:
        """Append ids (e.g. the next page) that are not already in the view."""
        current = self._lists.setdefault(key, [])
        seen = set(current)
        added = [i for i in ids if i not in seen]
        current.extend(dict.fromkeys(added))
        self._emit(added)

    def evict(self, entity_id: str) -> None:
        """Forget an entity without a mutation (e.g. it 404'd on refresh)."""
        self._entities.pop(entity_id, None)
        self._settled.pop(entity_id, None)
        for ids in self._lists.values():
            if entity_id in ids:
                ids.remove(entity_id)
        self._emit([entity_id])

    def reset(self) -> None:
        """Drop all entities, views and pending mutations."""
        changed = set(self._entities)
        self._entities.clear()
        self._lists.clear()
        self._pending.clear()
        self._settled.clear()
        self._emit(changed)

    # ------------------------------------------------------------------
    # Optimistic mutations
    # ------------------------------------------------------------------

    def _record(self, mutation: PendingMutation[EntityT]) -> MutationHandle:
        self._pending[mutation.seq] = mutation
        logger.debug(
            "cache_apply cache=%s kind=%s entity_id=%s seq=%s",
            self.name, mutation.kind, mutation.entity_id, mutation.seq,
        )
        return MutationHandle(id=mutation.seq, entity_id=mutation.entity_id, kind=mutation.kind)

    def apply_optimistic(
        self,
        entity_id: str,
        kind: MutationKind,
        changes: Mapping[str, Any],
    ) -> MutationHandle:
        """
        Apply field changes to an entity before the server confirms them.

        Raises:
            KeyError: If the entity is not cached.
            ValueError: For unknown fields, an id change, or CREATE/DELETE
                (use apply_create / apply_delete).
        """
        if kind in (MutationKind.CREATE, MutationKind.DELETE):
            raise ValueError(f"Use apply_{kind.value} for {kind.value} mutations")
        self._check_fields(changes)
        before = self._entities[entity_id]
        seq = next(self._seq)
        previous = {name: copy.deepcopy(getattr(before, name)) for name in changes}
        self._set_fields(entity_id, changes)
        handle = self._record(PendingMutation(
            seq=seq,
            entity_id=entity_id,
            kind=kind,
            fields=dict(changes),
            previous=previous,
            optimistic_snapshot=self._entities[entity_id],
            previous_snapshot=before,
        ))
        self._emit([entity_id])
        return handle

    def apply_update(self, entity_id: str, changes: Mapping[str, Any]) -> MutationHandle:
        return self.apply_optimistic(entity_id, MutationKind.UPDATE, changes)

    def apply_vote(self, entity_id: str, user_id: str, vote: VoteType) -> MutationHandle:
        entity = self._entities[entity_id]
        return self.apply_optimistic(
            entity_id, MutationKind.VOTE, vote_changes(entity, user_id, vote),
        )

    def apply_like(self, entity_id: str, user_id: str) -> MutationHandle:
        entity = self._entities[entity_id]
        return self.apply_optimistic(entity_id, MutationKind.LIKE, like_changes(entity, user_id))

    def apply_create(self, entity: EntityT, lists: Sequence[str] = ()) -> MutationHandle:
        """Insert a locally built entity (temporary id) and prepend it to views."""
        entity_id = entity.id
        if entity_id in self._entities:
            raise ValueError(f"Entity {entity_id} already exists")
        seq = next(self._seq)
        self._entities[entity_id] = entity
        for key in lists:
            self._lists.setdefault(key, []).insert(0, entity_id)
        handle = self._record(PendingMutation(
            seq=seq,
            entity_id=entity_id,
            kind=MutationKind.CREATE,
            fields={},
            previous={},
            optimistic_snapshot=entity,
            positions={key: 0 for key in lists},
        ))
        self._emit([entity_id])
        return handle

    def apply_delete(self, entity_id: str) -> MutationHandle:
        """Remove an entity from the map and every view, remembering where it was."""
        before = self._entities.pop(entity_id)
        positions = {}
        for key, ids in self._lists.items():
            if entity_id in ids:
                positions[key] = ids.index(entity_id)
                ids.remove(entity_id)
        handle = self._record(PendingMutation(
            seq=next(self._seq),
            entity_id=entity_id,
            kind=MutationKind.DELETE,
            fields={},
            previous={},
            previous_snapshot=before,
            positions=positions,
        ))
        self._emit([entity_id])
        return handle

    # ------------------------------------------------------------------
    # Settling
    # ------------------------------------------------------------------

    def _take(self, handle: MutationHandle) -> PendingMutation[EntityT]:
        try:
            return self._pending.pop(handle.id)
        except KeyError:
            raise KeyError(f"Mutation {handle.id} is not pending") from None

    def _newest_settle(self, entity_id: str, name: str) -> int:
        return self._settled.get(entity_id, {}).get(name, 0)

    def _hand_off_baseline(
        self, mutation: PendingMutation[EntityT], name: str, value: Any,
    ) -> None:
        """Give `value` as rollback baseline to the next newer pending writer of `name`."""
        if self._newest_settle(mutation.entity_id, name) > mutation.seq:
            return
        newer = [
            m for m in self._pending_touching(mutation.entity_id, name) if m.seq > mutation.seq
        ]
        if newer:
            newer[0].previous[name] = copy.deepcopy(value)

    def commit(self, handle: MutationHandle, server_result: EntityT | None = None) -> None:
        """
        Settle a mutation with the server's authoritative entity.

        `server_result` may be None when the endpoint returns no entity; the
        optimistic values are then kept as confirmed.

        Raises:
            KeyError: If the handle is unknown or already settled.
        """
        mutation = self._take(handle)
        logger.debug(
            "cache_commit cache=%s kind=%s entity_id=%s seq=%s",
            self.name, mutation.kind, mutation.entity_id, mutation.seq,
        )
        if mutation.kind is MutationKind.DELETE:
            self._settled.pop(mutation.entity_id, None)
            self._emit([mutation.entity_id])
            return
        if mutation.kind is MutationKind.CREATE:
            self._commit_create(mutation, server_result)
            return

        settled = self._settled.setdefault(mutation.entity_id, {})
        if server_result is None:
            for name in mutation.fields:
                settled[name] = max(settled.get(name, 0), mutation.seq)
            self._emit([mutation.entity_id])
            return
        if mutation.entity_id not in self._entities:
            # Deleted or evicted while in flight; do not resurrect it
            logger.debug("cache_commit_skipped entity_id=%s", mutation.entity_id)
            return

        writes = {}
        for name, value in self._server_fields(server_result).items():
            others = self._pending_touching(mutation.entity_id, name)
            newer_pending = [m for m in others if m.seq > mutation.seq]
            if name in mutation.fields:
                if newer_pending or settled.get(name, 0) > mutation.seq:
                    self._hand_off_baseline(mutation, name, value)
                    continue
            elif others:
                # Held by an unrelated pending mutation: refresh its baseline only
                if settled.get(name, 0) <= mutation.seq:
                    others[0].previous[name] = copy.deepcopy(value)
                continue
            elif settled.get(name, 0) > mutation.seq:
                # A newer mutation already confirmed this field
                continue
            writes[name] = value
            settled[name] = max(settled.get(name, 0), mutation.seq)
        self._set_fields(mutation.entity_id, writes)
        self._emit([mutation.entity_id])

    def _commit_create(
        self, mutation: PendingMutation[EntityT], server_result: EntityT | None,
    ) -> None:
        temp_id = mutation.entity_id
        if server_result is None or temp_id not in self._entities:
            self._emit([temp_id])
            return

        new_id = server_result.id
        self._entities.pop(temp_id)
        self._entities[new_id] = server_result
        for ids in self._lists.values():
            if temp_id in ids:
                if new_id in ids:
                    ids.remove(temp_id)
                else:
                    ids[ids.index(temp_id)] = new_id
        # Mutations applied to the temporary entity follow it to its real id
        for other in self._pending.values():
            if other.entity_id == temp_id:
                other.entity_id = new_id
        self._emit([temp_id, new_id])

    def rollback(self, handle: MutationHandle) -> None:
        """
        Undo a mutation whose request ultimately failed.

        Restores exactly the pre-mutation values of the fields it touched,
        except where a newer mutation has since written them.

        Raises:
            KeyError: If the handle is unknown or already settled.
        """
        mutation = self._take(handle)
        entity_id = mutation.entity_id
        logger.debug(
            "cache_rollback cache=%s kind=%s entity_id=%s seq=%s",
            self.name, mutation.kind, entity_id, mutation.seq,
        )

        if mutation.kind is MutationKind.CREATE:
            self._entities.pop(entity_id, None)
            for ids in self._lists.values():
                if entity_id in ids:
                    ids.remove(entity_id)
            self._emit([entity_id])
            return

        if mutation.kind is MutationKind.DELETE:
            if mutation.previous_snapshot is not None and entity_id not in self._entities:
                self._entities[entity_id] = mutation.previous_snapshot
                for key, index in mutation.positions.items():
                    ids = self._lists.setdefault(key, [])
                    if entity_id not in ids:
                        ids.insert(min(index, len(ids)), entity_id)
            self._emit([entity_id])
            return

        if entity_id not in self._entities:
            return

        restores = {}
        for name, value in mutation.previous.items():
            newer_pending = [
                m for m in self._pending_touching(entity_id, name) if m.seq > mutation.seq
            ]
            if newer_pending:
                self._hand_off_baseline(mutation, name, value)
                continue
            if self._newest_settle(entity_id, name) > mutation.seq:
                continue
            restores[name] = value
        self._set_fields(entity_id, restores)
        self._emit([entity_id])


class CacheRegistry:
    """The caches for every entity kind, shared by all services."""

    def __init__(self) -> None:
        self.posts: EntityCache[Post] = EntityCache(Post, name="posts")
        self.comments: EntityCache[Comment] = EntityCache(Comment, name="comments")

    def reset(self) -> None:
        self.posts.reset()
        self.comments.reset()
