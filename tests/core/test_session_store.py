"""Tests for the session store."""
import json
import time
from unittest.mock import MagicMock

import jwt
import pytest

from devcommunity_client.core.session import (
    TOKEN_KEY,
    USER_KEY,
    SessionState,
    SessionStore,
)
from devcommunity_client.core.storage import MemoryStorage, StorageError
from devcommunity_client.schemas.user import UserIdentity


class BrokenStorage:
    """Storage whose every operation fails, like disabled browser storage."""

    def get(self, key: str) -> str | None:
        raise StorageError("disabled")

    def set(self, key: str, value: str) -> None:
        raise StorageError("disabled")

    def remove(self, key: str) -> None:
        raise StorageError("disabled")

    def update(self, changes) -> None:
        raise StorageError("quota exceeded")


@pytest.fixture
def user() -> UserIdentity:
    return UserIdentity(id="u1", display_name="ada", score=7)


class TestSetAndGet:
    """Tests for set_session / get_user round trips."""

    def test__set_session__persists_both_keys(
        self, storage: MemoryStorage, user: UserIdentity, token_factory,
    ) -> None:
        store = SessionStore(storage)
        token = token_factory()

        store.set_session(user, token)

        snapshot = storage.snapshot()
        assert snapshot[TOKEN_KEY] == token
        assert json.loads(snapshot[USER_KEY])["displayName"] == "ada"

    def test__get_user__returns_what_was_set(
        self, storage: MemoryStorage, user: UserIdentity, token_factory,
    ) -> None:
        store = SessionStore(storage)
        store.set_session(user, token_factory())

        assert store.get_user().model_dump() == user.model_dump()
        assert store.state is SessionState.AUTHENTICATED

    def test__restore__new_store_reads_persisted_session(
        self, storage: MemoryStorage, user: UserIdentity, token_factory,
    ) -> None:
        token = token_factory()
        SessionStore(storage).set_session(user, token)

        restored = SessionStore(storage)

        assert restored.get_user().model_dump() == user.model_dump()
        assert restored.get_token() == token

    def test__set_session__empty_token_rejected(self, user: UserIdentity) -> None:
        with pytest.raises(ValueError, match="non-empty"):
            SessionStore().set_session(user, "")

    def test__auth_headers__bearer_when_token_present(self, user: UserIdentity) -> None:
        store = SessionStore()
        assert store.auth_headers() == {}

        store.set_session(user, "abc")

        assert store.auth_headers() == {"Authorization": "Bearer abc"}


class TestClear:
    """Tests for logout / clear."""

    def test__logout__removes_everything_and_notifies(
        self, storage: MemoryStorage, user: UserIdentity, token_factory,
    ) -> None:
        store = SessionStore(storage)
        store.set_session(user, token_factory())
        listener = MagicMock()
        store.on_change(listener)

        store.logout()

        assert store.get_user() is None
        assert store.get_token() is None
        assert storage.snapshot() == {}
        listener.assert_called_once_with(None)
        assert store.state is SessionState.LOGGED_OUT

    def test__clear__idempotent_when_anonymous(self) -> None:
        store = SessionStore()
        listener = MagicMock()
        store.on_change(listener)

        store.clear()
        store.logout()

        listener.assert_not_called()
        assert store.get_user() is None


class TestCorruption:
    """Tests for self-healing of corrupted persisted data."""

    def test__get_user__invalid_json_clears_session(self, token_factory) -> None:
        storage = MemoryStorage({TOKEN_KEY: token_factory(), USER_KEY: "{not json"})
        store = SessionStore(storage)

        assert store.get_user() is None
        assert storage.snapshot() == {}

    def test__get_user__missing_display_name_clears_session(self, token_factory) -> None:
        storage = MemoryStorage({TOKEN_KEY: token_factory(), USER_KEY: json.dumps({"id": "u1"})})
        store = SessionStore(storage)

        assert store.get_user() is None
        assert store.get_token() is None

    def test__get_user__user_without_token_is_invalid(self) -> None:
        storage = MemoryStorage({USER_KEY: json.dumps({"id": "u1", "displayName": "ada"})})
        store = SessionStore(storage)

        assert store.get_user() is None
        assert storage.snapshot() == {}

    def test__get_user__corruption_after_start_notifies_and_clears(
        self, storage: MemoryStorage, user: UserIdentity, token_factory,
    ) -> None:
        store = SessionStore(storage)
        store.set_session(user, token_factory())
        listener = MagicMock()
        store.on_change(listener)

        # Another writer garbles the persisted identity
        storage.set(USER_KEY, json.dumps({"id": "", "displayName": ""}))

        assert store.get_user() is None
        listener.assert_called_once_with(None)
        assert storage.snapshot() == {}


class TestExpiry:
    """Tests for token expiry checks."""

    def test__is_expired__past_exp(self, user: UserIdentity, token_factory) -> None:
        store = SessionStore()
        store.set_session(user, token_factory(expires_in=-60))

        assert store.is_expired() is True

    def test__is_expired__future_exp(self, user: UserIdentity, token_factory) -> None:
        store = SessionStore()
        store.set_session(user, token_factory(expires_in=600))

        assert store.is_expired() is False

    @pytest.mark.parametrize("token", ["abc", "a.b.c", "not-a-jwt-at-all"])
    def test__is_expired__undecodable_token_fails_closed(
        self, user: UserIdentity, token: str,
    ) -> None:
        store = SessionStore()
        store.set_session(user, token)

        assert store.is_expired() is True

    def test__is_expired__missing_exp_fails_closed(self, user: UserIdentity) -> None:
        store = SessionStore()
        store.set_session(
            user, jwt.encode({"userId": "u1"}, "test-signing-secret-with-at-least-32-bytes"),
        )

        assert store.is_expired() is True

    def test__is_expired__uses_injected_clock(self, user: UserIdentity, token_factory) -> None:
        token = token_factory(expires_in=100)
        store = SessionStore(clock=lambda: time.time() + 1000)
        store.set_session(user, token)

        assert store.is_expired() is True

    def test__is_expired__does_not_clear(self, user: UserIdentity, token_factory) -> None:
        store = SessionStore()
        store.set_session(user, token_factory(expires_in=-1))

        store.is_expired()

        assert store.get_user().model_dump() == user.model_dump()

    def test__is_authenticated__expired_token_clears_session(
        self, user: UserIdentity, token_factory,
    ) -> None:
        store = SessionStore()
        store.set_session(user, token_factory(expires_in=-60))
        listener = MagicMock()
        store.on_change(listener)

        assert store.is_authenticated() is False
        assert store.get_user() is None
        assert store.state is SessionState.EXPIRED
        listener.assert_called_once_with(None)

    def test__get_user_id_from_token__reads_claims(
        self, user: UserIdentity, token_factory,
    ) -> None:
        store = SessionStore()
        assert store.get_user_id_from_token() is None

        store.set_session(user, token_factory("u9"))
        assert store.get_user_id_from_token() == "u9"

        store.set_session(user, "opaque")
        assert store.get_user_id_from_token() is None


class TestSubscribers:
    """Tests for change notification."""

    def test__on_change__every_subscriber_sees_each_transition_once(
        self, user: UserIdentity, token_factory,
    ) -> None:
        store = SessionStore()
        first, second = MagicMock(), MagicMock()
        store.on_change(first)
        store.on_change(second)

        store.set_session(user, token_factory())
        store.logout()

        for listener in (first, second):
            assert [c.args[0] for c in listener.call_args_list] == [user, None]

    def test__on_change__unsubscribe_stops_notifications(
        self, user: UserIdentity, token_factory,
    ) -> None:
        store = SessionStore()
        listener = MagicMock()
        unsubscribe = store.on_change(listener)

        unsubscribe()
        unsubscribe()
        store.set_session(user, token_factory())

        listener.assert_not_called()

    def test__on_change__listener_sees_persisted_state(
        self, storage: MemoryStorage, user: UserIdentity, token_factory,
    ) -> None:
        store = SessionStore(storage)
        seen = []
        store.on_change(lambda u: seen.append((u, storage.get(TOKEN_KEY), store.get_user().id)))
        token = token_factory()

        store.set_session(user, token)

        assert seen == [(user, token, "u1")]

    def test__on_change__failing_listener_does_not_block_others(
        self, user: UserIdentity, token_factory,
    ) -> None:
        store = SessionStore()
        store.on_change(MagicMock(side_effect=RuntimeError("ui crashed")))
        healthy = MagicMock()
        store.on_change(healthy)

        store.set_session(user, token_factory())

        healthy.assert_called_once_with(user)


class TestStorageFailures:
    """Tests for degraded, in-memory-only operation."""

    def test__set_session__storage_failure_keeps_working_in_memory(
        self, user: UserIdentity, token_factory,
    ) -> None:
        store = SessionStore(BrokenStorage())
        listener = MagicMock()
        store.on_change(listener)
        token = token_factory()

        store.set_session(user, token)

        assert store.get_user().model_dump() == user.model_dump()
        assert store.get_token() == token
        listener.assert_called_once_with(user)

    def test__logout__storage_failure_not_raised(
        self, user: UserIdentity, token_factory,
    ) -> None:
        store = SessionStore(BrokenStorage())
        store.set_session(user, token_factory())

        store.logout()

        assert store.get_user() is None


class TestUpdateUser:
    """Tests for merging profile changes into the identity."""

    def test__update_user__merges_without_touching_token_or_id(
        self, user: UserIdentity, token_factory,
    ) -> None:
        store = SessionStore()
        token = token_factory()
        store.set_session(user, token)
        listener = MagicMock()
        store.on_change(listener)

        merged = store.update_user(
            {"_id": "other", "avatar": "https://cdn.test/a.png", "bio": "hi"},
        )

        assert merged is not None
        assert merged.id == "u1"
        assert merged.avatar_url == "https://cdn.test/a.png"
        assert merged.bio == "hi"
        assert merged.display_name == "ada"
        assert store.get_token() == token
        listener.assert_called_once_with(merged)

    def test__update_user__anonymous_is_noop(self) -> None:
        store = SessionStore()
        assert store.update_user({"bio": "hi"}) is None
        assert store.get_user() is None
