"""
Draft/sync controller for a single ride plan view.

The controller keeps the latest remote snapshot of a ride plan and, while
the owner is editing, a separate draft. Snapshots that arrive during an
edit only refresh the remote copy; the draft changes only through
``update_draft``/``commit_edit``/``cancel_edit``.

States:
    loading  -> viewing            first snapshot
    loading  -> error(not_found)   record missing
    loading  -> error(forbidden)   acting user is not the owner
    viewing  -> editing            begin_edit()
    editing  -> saving             commit_edit()
    saving   -> viewing            write acknowledged, draft dropped
    saving   -> editing            write failed, draft kept
    editing  -> viewing            cancel_edit()
    any      -> error(subscription_failed)
"""

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from .access import is_owner
from .base import SessionState, SyncSession
from .calendar import build_ride_ics, google_calendar_link, ride_ics_filename
from .exceptions import (
    ForbiddenError,
    InvalidStateError,
    NotFoundError,
    ValidationFailedError,
    WriteFailedError,
)
from .plans import PLAN_FIELDS, TIMELINE_FIELD, draft_from_document, normalize_plan_fields, normalize_status
from .store import Subscription, ride_path
from .timeline import build_timeline_entry, newest_first

logger = logging.getLogger(__name__)


class RidePlanController(SyncSession):

    def __init__(self, store, acting_user_id=None, auth=None):
        self.record_id: Optional[str] = None
        self.remote: Optional[Dict[str, Any]] = None
        self.draft: Optional[Dict[str, Any]] = None
        super().__init__(store, acting_user_id=acting_user_id, auth=auth)

    # ---------------------- Subscription ----------------------

    async def open(self, record_id) -> Optional[Subscription]:
        """Start watching a ride plan. not_found/forbidden end this handle."""
        self.record_id = str(record_id)
        self.remote = None
        self.draft = None
        return await self._subscribe(ride_path(self.record_id))

    def apply_snapshot(self, snapshot):
        if not snapshot.exists:
            self.remote = None
            self._fail(NotFoundError("Ride not found."))
            return

        data = snapshot.to_dict()
        if not is_owner(self.acting_user_id, data.get("owner_id")):
            self.remote = None
            self._fail(ForbiddenError("Not allowed."))
            return

        # During an edit only the remote copy moves; the draft is left alone
        self.remote = data
        if self.state == SessionState.LOADING:
            self.state = SessionState.VIEWING
            logger.debug("Ride %s loaded", self.record_id)

    def on_identity_changed(self):
        if self.remote is not None and not is_owner(self.acting_user_id, self.remote.get("owner_id")):
            self._fail(ForbiddenError("Not allowed."))

    # ---------------------- Views ----------------------

    @property
    def view(self) -> Optional[Dict[str, Any]]:
        """Fields to display: the draft during an edit, otherwise the remote copy."""
        if self.draft is not None and self.state in (SessionState.EDITING, SessionState.SAVING):
            return {"id": self.record_id, **self.draft}
        if self.remote is None:
            return None
        return dict(self.remote)

    @property
    def is_editing(self) -> bool:
        return self.draft is not None

    @property
    def timeline(self) -> List[Dict[str, Any]]:
        return newest_first((self.remote or {}).get(TIMELINE_FIELD))

    def _owner_id(self):
        if self.remote is None:
            raise InvalidStateError(f"No ride loaded ({self.state})")
        return self.remote.get("owner_id")

    # ---------------------- Editing ----------------------

    def begin_edit(self) -> Dict[str, Any]:
        self._require_state(SessionState.VIEWING)
        self._require_owner(self._owner_id())
        self.draft = draft_from_document(self.remote)
        self.state = SessionState.EDITING
        self._emit()
        return dict(self.draft)

    def update_draft(self, **fields) -> Dict[str, Any]:
        self._require_state(SessionState.EDITING)
        self._merge_draft(fields)
        self._emit()
        return dict(self.draft)

    def _merge_draft(self, fields):
        unknown = set(fields) - set(PLAN_FIELDS)
        if unknown:
            raise ValidationFailedError(f"Unknown field(s): {', '.join(sorted(unknown))}")
        for name, value in fields.items():
            self.draft[name] = list(value or []) if name == "stops" else value

    def cancel_edit(self):
        self._require_state(SessionState.EDITING)
        self.draft = None
        self.state = SessionState.VIEWING
        self._emit()

    async def commit_edit(self, draft_fields: Optional[Dict[str, Any]] = None):
        """
        Validate, normalize and write the draft.

        Raises:
            ForbiddenError: acting user is not the owner (nothing written)
            ValidationFailedError: a required field is empty (nothing written)
            WriteFailedError: the store rejected the write; the draft is kept
        """
        self._require_state(SessionState.EDITING)
        if draft_fields:
            self._merge_draft(draft_fields)

        self._require_owner(self._owner_id())
        fields = normalize_plan_fields(self.draft)

        self.state = SessionState.SAVING
        self._emit()
        try:
            await self._write(self.store.update, ride_path(self.record_id), fields)
        except WriteFailedError:
            if self._closed:
                return
            if self.state == SessionState.SAVING:
                self.state = SessionState.EDITING
                self._emit()
            raise

        if self._closed or self.state != SessionState.SAVING:
            return
        self.draft = None
        self.state = SessionState.VIEWING
        logger.debug("Ride %s saved", self.record_id)
        self._emit()

    # ---------------------- One-shot writes ----------------------

    async def set_status(self, new_status):
        status = normalize_status(new_status)
        self._require_state(SessionState.VIEWING, SessionState.EDITING)
        self._require_owner(self._owner_id())
        await self._one_shot(self.store.update, ride_path(self.record_id), {"status": status})

    async def append_timeline_update(self, text):
        entry = build_timeline_entry(text)
        self._require_state(SessionState.VIEWING, SessionState.EDITING)
        self._require_owner(self._owner_id())
        await self._one_shot(self.store.append, ride_path(self.record_id), TIMELINE_FIELD, [entry])

    async def delete_record(self):
        """Delete the ride plan (content items are not touched) and close."""
        self._require_state(SessionState.VIEWING, SessionState.EDITING)
        self._require_owner(self._owner_id())
        record_id = self.record_id
        await self._write(self.store.delete, ride_path(record_id))
        self.close()
        self.record_id = None
        self.remote = None
        self.draft = None
        logger.info("Ride %s deleted", record_id)

    # ---------------------- Export ----------------------

    def _export_source(self) -> Dict[str, Any]:
        view = self.view
        if view is None:
            raise InvalidStateError(f"No ride loaded ({self.state})")
        return view

    def export_calendar(self, now: Optional[datetime] = None) -> str:
        return build_ride_ics(self._export_source(), now=now)

    def calendar_filename(self) -> str:
        return ride_ics_filename(self._export_source().get("title"))

    def calendar_link(self) -> Optional[str]:
        return google_calendar_link(self._export_source())
