"""
Shared subscribe/merge/write machinery for ride sync sessions.

A session owns one live subscription. Snapshots arrive as loop events and
are applied in delivery order; a snapshot whose store version is not newer
than the last applied one is dropped. Once a session is closed nothing it
receives, and nothing a pending write returns, touches its state.

Subclasses implement:
    - apply_snapshot(snapshot): merge a snapshot into local state
    - on_identity_changed(): re-check ownership after a user switch
"""

import asyncio
import logging
from typing import Any, Callable, List, Optional

from .access import require_owner
from .exceptions import (
    ForbiddenError,
    InvalidStateError,
    RideSyncError,
    SubscriptionFailedError,
    WriteFailedError,
)
from .identity import AuthState
from .store import DocumentStore, StoreError, Subscription

logger = logging.getLogger(__name__)


class SessionState:
    LOADING = "loading"
    VIEWING = "viewing"
    EDITING = "editing"
    SAVING = "saving"
    ERROR = "error"
    CLOSED = "closed"


class SyncSession:

    def __init__(
        self,
        store: DocumentStore,
        acting_user_id=None,
        auth: Optional[AuthState] = None,
    ):
        self.store = store
        self.acting_user_id = acting_user_id
        self.state = SessionState.LOADING
        self.error: Optional[RideSyncError] = None
        self._subscription: Optional[Subscription] = None
        self._applied_version: Optional[int] = None
        self._listeners: List[Callable[["SyncSession"], None]] = []
        self._closed = False
        self._unbind_auth = None
        if auth is not None:
            self._unbind_auth = auth.on_auth_changed(self._on_auth_changed)

    # ---------------------- Lifecycle ----------------------

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def error_kind(self) -> Optional[str]:
        return self.error.kind if self.error is not None else None

    async def _subscribe(self, path: str) -> Optional[Subscription]:
        if self._closed:
            raise InvalidStateError("Session is closed")

        self._teardown_subscription()
        self._applied_version = None
        self.error = None
        self.state = SessionState.LOADING

        try:
            subscription = await self.store.subscribe(path, self._receive, self._receive_error)
        except StoreError as exc:
            logger.warning("%s could not subscribe to %s: %s", type(self).__name__, path, exc)
            self._fail(SubscriptionFailedError(str(exc)))
            return None
        if self._closed:
            # closed while the subscription was being opened
            subscription.cancel()
            return subscription

        self._subscription = subscription
        logger.debug("%s subscribed to %s", type(self).__name__, path)
        return subscription

    def close(self):
        """Release the subscription. Safe to call repeatedly, from any state."""
        if self._closed:
            return
        self._closed = True
        self._teardown_subscription()
        if self._unbind_auth is not None:
            self._unbind_auth()
            self._unbind_auth = None
        self.state = SessionState.CLOSED
        self._listeners.clear()

    def _teardown_subscription(self):
        if self._subscription is not None:
            self._subscription.cancel()
            self._subscription = None

    # ---------------------- Snapshot delivery ----------------------

    def _receive(self, snapshot):
        if self._closed or self.state == SessionState.ERROR:
            return

        version = getattr(snapshot, "version", None)
        if (
            version is not None
            and self._applied_version is not None
            and version <= self._applied_version
        ):
            logger.debug(
                "Dropping stale snapshot v%s (applied v%s)", version, self._applied_version
            )
            return
        if version is not None:
            self._applied_version = version

        self.apply_snapshot(snapshot)
        if self.state != SessionState.ERROR:
            self._emit()

    def _receive_error(self, exc: Exception):
        if self._closed:
            return
        logger.warning("%s feed failed: %s", type(self).__name__, exc)
        self._fail(SubscriptionFailedError(str(exc)))

    def apply_snapshot(self, snapshot):
        raise NotImplementedError

    def _fail(self, error: RideSyncError):
        self._teardown_subscription()
        self.error = error
        self.state = SessionState.ERROR
        self._emit()

    # ---------------------- Identity ----------------------

    def _on_auth_changed(self, identity):
        self.acting_user_id = identity.user_id if identity else None
        if self._subscription is None:
            return
        if identity is None:
            self._fail(ForbiddenError("Signed out."))
            return
        self.on_identity_changed()

    def on_identity_changed(self):
        pass

    def _require_owner(self, owner_id):
        require_owner(self.acting_user_id, owner_id)

    # ---------------------- Writes ----------------------

    async def _write(self, operation, *args) -> Any:
        """Run a store write, mapping store failures to WriteFailedError."""
        try:
            return await operation(*args)
        except (StoreError, asyncio.TimeoutError) as exc:
            message = str(exc) or "Write timed out"
            logger.warning("%s write failed: %s", type(self).__name__, message)
            raise WriteFailedError(message) from exc

    async def _one_shot(self, operation, *args) -> bool:
        """
        Write without entering an edit session; state returns to where it was.

        Returns False when the session was closed before the write finished,
        in which case the outcome is ignored.
        """
        resume = self.state
        self.state = SessionState.SAVING
        self._emit()
        try:
            await self._write(operation, *args)
        except WriteFailedError:
            if self._closed:
                return False
            self._resume(resume)
            raise
        if self._closed:
            return False
        self._resume(resume)
        return True

    def _resume(self, state):
        if self.state == SessionState.SAVING:
            self.state = state
            self._emit()

    def _require_state(self, *states):
        if self.state not in states:
            raise InvalidStateError(f"Not allowed while {self.state}")

    # ---------------------- Listeners ----------------------

    def add_listener(self, callback: Callable[["SyncSession"], None]) -> Callable[[], None]:
        self._listeners.append(callback)

        def remove():
            if callback in self._listeners:
                self._listeners.remove(callback)

        return remove

    def _emit(self):
        for callback in list(self._listeners):
            try:
                callback(self)
            except Exception:
                logger.exception("Listener failed for %s", type(self).__name__)
