"""
Append-only progress notes on a ride plan.

Entries are stored oldest first under ``timeline_updates`` and only ever
grow through the store's append primitive. Readers get them newest first.
"""

import logging
from typing import Any, Dict, List, Optional

from .access import is_owner
from .base import SessionState, SyncSession
from .exceptions import ForbiddenError, NotFoundError, ValidationFailedError
from .plans import TIMELINE_FIELD, clean_text
from .store import SERVER_TIMESTAMP, ride_path

logger = logging.getLogger(__name__)


def build_timeline_entry(text: Any) -> Dict[str, Any]:
    """Build an entry for appending; empty text is rejected locally."""
    text = clean_text(text)
    if not text:
        raise ValidationFailedError("Update text is required.", field="text")
    return {"text": text, "recorded_at": SERVER_TIMESTAMP}


def newest_first(updates: Optional[List[Dict[str, Any]]]) -> List[Dict[str, Any]]:
    return [dict(entry) for entry in reversed(updates or [])]


class TimelineManager(SyncSession):
    """Live, newest-first view of a ride plan's timeline with a one-shot append."""

    def __init__(self, store, ride_id, acting_user_id=None, auth=None):
        self.ride_id = str(ride_id)
        self.owner_id = None
        self._updates: List[Dict[str, Any]] = []
        super().__init__(store, acting_user_id=acting_user_id, auth=auth)

    async def open(self):
        return await self._subscribe(ride_path(self.ride_id))

    def apply_snapshot(self, snapshot):
        if not snapshot.exists:
            self._fail(NotFoundError("Ride not found."))
            return
        owner_id = snapshot.data.get("owner_id")
        if not is_owner(self.acting_user_id, owner_id):
            self._fail(ForbiddenError("Not allowed."))
            return
        self.owner_id = owner_id
        self._updates = list(snapshot.data.get(TIMELINE_FIELD) or [])
        if self.state == SessionState.LOADING:
            self.state = SessionState.VIEWING

    def on_identity_changed(self):
        if self.owner_id is not None and not is_owner(self.acting_user_id, self.owner_id):
            self._fail(ForbiddenError("Not allowed."))

    @property
    def entries(self) -> List[Dict[str, Any]]:
        return newest_first(self._updates)

    async def append(self, text):
        entry = build_timeline_entry(text)
        self._require_state(SessionState.VIEWING)
        self._require_owner(self.owner_id)

        written = await self._one_shot(
            self.store.append, ride_path(self.ride_id), TIMELINE_FIELD, [entry]
        )
        if written:
            logger.debug("Timeline update appended to ride %s", self.ride_id)
