"""
Session store: the client's credential and identity.

The store is the only reader and writer of the persisted session keys
(`auth_token`, `user_data`). Every transition is persisted and then published
to subscribers inside one synchronous call, so on a single event loop no
subscriber can observe storage and memory disagreeing.

Storage failures never propagate: they are logged and the store keeps
working from its in-memory copy. Corrupted persisted data is cleared and
reported as anonymous.
"""
import logging
import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from enum import StrEnum
from typing import Any

import jwt
from pydantic import ValidationError

from ..schemas.user import UserIdentity, identity_changes
from .storage import MemoryStorage, SessionStorage, StorageError

logger = logging.getLogger(__name__)

TOKEN_KEY = "auth_token"
USER_KEY = "user_data"

SessionListener = Callable[[UserIdentity | None], None]


class SessionState(StrEnum):
    """Lifecycle of the session."""

    ANONYMOUS = "anonymous"
    AUTHENTICATED = "authenticated"
    EXPIRED = "expired"
    LOGGED_OUT = "logged_out"


@dataclass(frozen=True)
class Session:
    """Snapshot of the current credential and identity."""

    token: str | None = None
    user: UserIdentity | None = None


def decode_token_claims(token: str) -> dict[str, Any]:
    """
    Decode a JWT's claims without verifying its signature.

    The client never holds the signing secret; the claims are only used for
    advisory checks (expiry, user id). The server remains the authority.

    Raises:
        jwt.PyJWTError: If the token is not a decodable JWT.
    """
    return jwt.decode(
        token,
        options={"verify_signature": False, "verify_exp": False},
    )


class SessionStore:
    """Owns the session and notifies subscribers of every transition."""

    def __init__(
        self,
        storage: SessionStorage | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._storage: SessionStorage = storage if storage is not None else MemoryStorage()
        self._clock = clock
        self._listeners: list[SessionListener] = []
        # False after a failed write: memory is then the source of truth
        self._storage_in_sync = True
        self._session = Session()
        self._state = SessionState.ANONYMOUS
        self._restore()

    # ------------------------------------------------------------------
    # Persistence helpers
    # ------------------------------------------------------------------

    def _read(self) -> tuple[str | None, str | None] | None:
        """Read (token, raw user) from storage; None if storage is unusable."""
        if not self._storage_in_sync:
            return None
        try:
            return self._storage.get(TOKEN_KEY), self._storage.get(USER_KEY)
        except StorageError as e:
            logger.warning("session_storage_read_failed error=%s", e)
            return None

    def _write(self, changes: Mapping[str, str | None]) -> None:
        try:
            self._storage.update(changes)
            self._storage_in_sync = True
        except StorageError as e:
            logger.warning("session_storage_write_failed error=%s", e)
            self._storage_in_sync = False

    def _parse(self, token: str | None, raw_user: str | None) -> Session | None:
        """Validate persisted values. Returns None when they are corrupted."""
        if raw_user is None:
            return Session(token=token or None, user=None)
        try:
            user = UserIdentity.model_validate_json(raw_user)
        except ValidationError as e:
            logger.warning("session_user_corrupted errors=%s", e.error_count())
            return None
        if not token:
            # An identity without a credential is never valid
            logger.warning("session_user_without_token user_id=%s", user.id)
            return None
        return Session(token=token, user=user)

    def _restore(self) -> None:
        values = self._read()
        if values is None:
            return
        session = self._parse(*values)
        if session is None:
            self._write({TOKEN_KEY: None, USER_KEY: None})
            return
        self._session = session
        if session.token:
            self._state = SessionState.AUTHENTICATED

    def _current(self) -> Session:
        """
        Current session, re-read from storage when storage is healthy.

        Corrupted persisted state is cleared (notifying subscribers) and an
        empty session is returned.
        """
        values = self._read()
        if values is None:
            return self._session
        session = self._parse(*values)
        if session is None:
            self.clear()
            return Session()
        self._session = session
        return session

    # ------------------------------------------------------------------
    # Notification
    # ------------------------------------------------------------------

    def on_change(self, listener: SessionListener) -> Callable[[], None]:
        """
        Register a listener called with the new identity (or None) on every
        transition.

        Returns:
            A function that unregisters the listener. Calling it twice is safe.
        """
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _notify(self, user: UserIdentity | None) -> None:
        for listener in list(self._listeners):
            try:
                listener(user)
            except Exception:
                logger.warning("session_listener_failed", exc_info=True)

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def set_session(self, user: UserIdentity, token: str) -> None:
        """Persist a new credential and identity, then notify subscribers."""
        if not token:
            raise ValueError("token must be a non-empty string")
        self._write({TOKEN_KEY: token, USER_KEY: user.model_dump_json(by_alias=True)})
        self._session = Session(token=token, user=user)
        self._state = SessionState.AUTHENTICATED
        logger.debug("session_set user_id=%s", user.id)
        self._notify(user)

    def update_user(self, changes: Mapping[str, Any]) -> UserIdentity | None:
        """
        Merge non-credential identity fields into the stored user.

        `changes` may use any backend spelling (e.g. `avatar` or `avatarUrl`).
        The user id is never changed by a merge.

        Returns:
            The merged identity, or None when there is no signed-in user.
        """
        session = self._current()
        if session.user is None or session.token is None:
            logger.debug("session_update_skipped reason=anonymous")
            return None
        fields = identity_changes(changes)
        fields.pop("id", None)
        try:
            merged = UserIdentity.model_validate({**session.user.model_dump(), **fields})
        except ValidationError as e:
            logger.warning("session_update_rejected errors=%s", e.error_count())
            return session.user
        self.set_session(merged, session.token)
        return merged

    def _end(self, state: SessionState) -> None:
        had_session = self._session.token is not None or self._session.user is not None
        self._write({TOKEN_KEY: None, USER_KEY: None})
        self._session = Session()
        self._state = state
        if had_session:
            logger.debug("session_cleared state=%s", state)
            self._notify(None)

    def clear(self) -> None:
        """Remove credential and identity. Safe to call when already anonymous."""
        self._end(SessionState.ANONYMOUS)

    def logout(self) -> None:
        """Explicit logout. Safe to call when already anonymous."""
        self._end(SessionState.LOGGED_OUT)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    @property
    def session(self) -> Session:
        return self._current()

    @property
    def state(self) -> SessionState:
        """
        Lifecycle state. `logged_out` and `expired` are anonymous states that
        record how the last session ended, until the next set_session.
        """
        session = self._current()
        if session.token is None:
            if self._state is SessionState.AUTHENTICATED:
                return SessionState.ANONYMOUS
            return self._state
        if self.is_expired():
            return SessionState.EXPIRED
        return SessionState.AUTHENTICATED

    def get_user(self) -> UserIdentity | None:
        """Persisted identity, or None (also after self-healing corrupted data)."""
        return self._current().user

    def get_token(self) -> str | None:
        return self._current().token

    def auth_headers(self) -> dict[str, str]:
        """Authorization header for the current token, or {} when anonymous."""
        token = self.get_token()
        return {"Authorization": f"Bearer {token}"} if token else {}

    def is_expired(self) -> bool:
        """
        Whether the credential's `exp` claim is in the past.

        Fail-closed: no token, an undecodable token, or a missing/non-numeric
        `exp` all count as expired. Advisory only; nothing is cleared here.
        """
        token = self.get_token()
        if not token:
            return True
        try:
            claims = decode_token_claims(token)
        except jwt.PyJWTError:
            return True
        exp = claims.get("exp")
        if not isinstance(exp, (int, float)) or isinstance(exp, bool):
            return True
        return exp < self._clock()

    def is_authenticated(self) -> bool:
        """
        True when a credential is present and not expired.

        An expired credential is cleared here (subscribers are notified) so
        the UI can prompt for re-authentication.
        """
        if self.get_token() is None:
            return False
        if self.is_expired():
            logger.info("session_expired")
            self._end(SessionState.EXPIRED)
            return False
        return True

    def get_user_id_from_token(self) -> str | None:
        """The `userId` (or `sub`) claim of the current token, if decodable."""
        token = self.get_token()
        if not token:
            return None
        try:
            claims = decode_token_claims(token)
        except jwt.PyJWTError:
            return None
        user_id = claims.get("userId") or claims.get("sub")
        return str(user_id) if user_id is not None else None
