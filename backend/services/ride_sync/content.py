"""
Content items (photos, videos, blog entries) attached to a ride plan.

The manager watches the plan's content collection. At most one item is
being edited at a time; only that item is pinned against incoming
snapshots, every sibling keeps following the live feed.
"""

import logging
from typing import Any, Dict, List, Optional

from rides.constants import CONTENT_KIND_VALUES, LINKED_CONTENT_KINDS

from .access import is_owner
from .base import SessionState, SyncSession
from .exceptions import (
    ForbiddenError,
    NotFoundError,
    SubscriptionFailedError,
    ValidationFailedError,
    WriteFailedError,
)
from .plans import clean_text, normalize_choice, purge_ride_content
from .store import SERVER_TIMESTAMP, StoreError, content_path, ride_path

logger = logging.getLogger(__name__)

CONTENT_DRAFT_FIELDS = ("kind", "title", "url", "caption", "body")


def build_content_payload(draft: Dict[str, Any], acting_user_id) -> Dict[str, Any]:
    """
    Validate a content draft and build the fields to write.

    Raises:
        ValidationFailedError: title missing, or url missing for photo/video
    """
    kind = normalize_choice(draft.get("kind"), CONTENT_KIND_VALUES, "kind")
    title = clean_text(draft.get("title"))
    if not title:
        raise ValidationFailedError("Title is required.", field="title")

    payload = {
        "owner_id": str(acting_user_id),
        "kind": kind,
        "title": title,
        "caption": clean_text(draft.get("caption")),
        "updated_at": SERVER_TIMESTAMP,
    }
    if kind in LINKED_CONTENT_KINDS:
        url = clean_text(draft.get("url"))
        if not url:
            raise ValidationFailedError("URL is required for Photo/Video.", field="url")
        payload["url"] = url
    else:
        payload["body"] = draft.get("body") or ""
    return payload


class ContentManager(SyncSession):

    def __init__(self, store, ride_id, acting_user_id=None, auth=None):
        self.ride_id = str(ride_id)
        self.plan_owner_id = None
        self.editing_id: Optional[str] = None
        self.draft: Optional[Dict[str, Any]] = None
        self._live: List[Dict[str, Any]] = []
        self._pinned: Optional[Dict[str, Any]] = None
        super().__init__(store, acting_user_id=acting_user_id, auth=auth)

    async def open(self):
        """Check plan ownership, then watch the content collection."""
        try:
            plan = await self.store.get(ride_path(self.ride_id))
        except StoreError as exc:
            self._fail(SubscriptionFailedError(str(exc)))
            return None
        if not plan.exists:
            self._fail(NotFoundError("Ride not found."))
            return None
        self.plan_owner_id = plan.data.get("owner_id")
        if not is_owner(self.acting_user_id, self.plan_owner_id):
            self._fail(ForbiddenError("Not allowed."))
            return None
        return await self._subscribe(content_path(self.ride_id))

    def apply_snapshot(self, collection):
        self._live = [doc.to_dict() for doc in collection.documents if doc.exists]
        if self.state == SessionState.LOADING:
            self.state = SessionState.VIEWING

    def on_identity_changed(self):
        if self.plan_owner_id is not None and not is_owner(self.acting_user_id, self.plan_owner_id):
            self._fail(ForbiddenError("Not allowed."))

    # ---------------------- Views ----------------------

    @property
    def items(self) -> List[Dict[str, Any]]:
        """Newest first; the item under edit shows its state from when the edit began."""
        result = []
        for item in self._live:
            if self._pinned is not None and item["id"] == self.editing_id:
                result.append(dict(self._pinned))
            else:
                result.append(dict(item))
        return result

    def _find(self, item_id) -> Dict[str, Any]:
        item_id = str(item_id)
        for item in self._live:
            if item["id"] == item_id:
                return item
        raise NotFoundError("Content item not found.")

    # ---------------------- Editing ----------------------

    def _start_draft(self, item=None):
        """Check a new form may open; only then drop the one it replaces."""
        self._require_state(SessionState.VIEWING, SessionState.EDITING)
        self._require_owner(self.plan_owner_id)
        if item is not None:
            self._require_owner(item.get("owner_id"))
        self._clear_draft()

    def begin_create(self, kind: str = "photo") -> Dict[str, Any]:
        self._start_draft()
        self.draft = {"kind": kind, "title": "", "url": "", "caption": "", "body": ""}
        self.editing_id = None
        self.state = SessionState.EDITING
        self._emit()
        return dict(self.draft)

    def begin_edit(self, item_id) -> Dict[str, Any]:
        item = self._find(item_id)
        self._start_draft(item)
        self._pinned = dict(item)
        self.editing_id = item["id"]
        self.draft = {name: item.get(name) or "" for name in CONTENT_DRAFT_FIELDS}
        self.state = SessionState.EDITING
        self._emit()
        return dict(self.draft)

    def update_draft(self, **fields) -> Dict[str, Any]:
        self._require_state(SessionState.EDITING)
        self._merge_draft(fields)
        self._emit()
        return dict(self.draft)

    def _merge_draft(self, fields):
        unknown = set(fields) - set(CONTENT_DRAFT_FIELDS)
        if unknown:
            raise ValidationFailedError(f"Unknown field(s): {', '.join(sorted(unknown))}")
        self.draft.update(fields)

    def cancel_edit(self):
        self._require_state(SessionState.EDITING)
        self._clear_draft()
        self.state = SessionState.VIEWING
        self._emit()

    def _clear_draft(self):
        self.draft = None
        self.editing_id = None
        self._pinned = None

    async def commit(self, draft_fields: Optional[Dict[str, Any]] = None) -> Optional[str]:
        """
        Write the open draft: update the item under edit, or create one new item.

        Returns:
            The id of the written item, or None if the manager was closed
            before the write finished
        """
        self._require_state(SessionState.EDITING)
        if draft_fields:
            self._merge_draft(draft_fields)

        self._require_owner(self.plan_owner_id)
        if self._pinned is not None:
            self._require_owner(self._pinned.get("owner_id"))
        payload = build_content_payload(self.draft, self.acting_user_id)

        editing_id = self.editing_id
        self.state = SessionState.SAVING
        self._emit()
        try:
            if editing_id is not None:
                await self._write(self.store.update, content_path(self.ride_id, editing_id), payload)
                item_id = editing_id
            else:
                payload["created_at"] = SERVER_TIMESTAMP
                item_id = await self._write(self.store.add, content_path(self.ride_id), payload)
        except WriteFailedError:
            if self._closed:
                return None
            if self.state == SessionState.SAVING:
                self.state = SessionState.EDITING
                self._emit()
            raise

        if self._closed:
            return None
        if self.state == SessionState.SAVING:
            self._clear_draft()
            self.state = SessionState.VIEWING
            self._emit()
        logger.debug("Content item %s saved on ride %s", item_id, self.ride_id)
        return item_id

    # ---------------------- Deletion ----------------------

    async def delete(self, item_id):
        """Delete one item immediately; no draft is involved."""
        item = self._find(item_id)
        self._require_owner(item.get("owner_id"))
        await self._write(self.store.delete, content_path(self.ride_id, item["id"]))
        if not self._closed and self.editing_id == item["id"] and self.state == SessionState.EDITING:
            self._clear_draft()
            self.state = SessionState.VIEWING
            self._emit()

    async def purge(self) -> int:
        """Explicitly delete every content item of the plan."""
        self._require_owner(self.plan_owner_id)
        return await purge_ride_content(self.store, self.ride_id, self.acting_user_id)
