"""Ride plan editing WebSocket consumer."""

import asyncio
import logging
from typing import Dict, Any, Optional

from services.ride_sync import (
    AuthState,
    ContentManager,
    InvalidStateError,
    RidePlanController,
    RideSyncError,
    get_document_store,
)
from services.ride_sync.calendar import CALENDAR_CONTENT_TYPE

from .base import BaseConsumer

logger = logging.getLogger(__name__)


def _error_payload(session) -> Optional[Dict[str, Any]]:
    if session.error is None:
        return None
    return {"kind": session.error.kind, "message": session.error.message}


class RidePlanConsumer(BaseConsumer):
    """
    WebSocket consumer for viewing and editing one ride plan at a time.

    Each connection holds a RidePlanController and a ContentManager for the
    open ride. Their state changes are pushed to the client as
    ``ride_state`` / ``content_state`` messages; engine errors are sent as
    ``error`` messages carrying the error kind.
    """

    EXPECTED_ERRORS = (RideSyncError,)

    async def on_connect(self):
        self.auth = AuthState()
        self.auth.sign_in(self.user_id, getattr(self.user, "email", "") or "")
        self.store = get_document_store()
        self.controller: Optional[RidePlanController] = None
        self.content: Optional[ContentManager] = None
        self._pending_pushes = set()
        self._queued_pushes = set()

        await self.send_success(
            "connection_established",
            user_id=self.user_id,
            message="Ride plan connection established",
        )

    async def on_disconnect(self, close_code):
        self._close_sessions()
        self.auth.sign_out()
        for task in list(self._pending_pushes):
            task.cancel()

    async def report_error(self, msg_type: str, exc: RideSyncError):
        extra = {"field": exc.field} if getattr(exc, "field", None) else {}
        await self.send_error(exc.message, kind=exc.kind, request=msg_type, **extra)

    # ---------------------- Session Helpers ----------------------

    def _close_sessions(self):
        for session in (self.controller, self.content):
            if session is not None:
                session.close()

    def _require_controller(self) -> RidePlanController:
        if self.controller is None or self.controller.closed:
            raise InvalidStateError("No ride is open")
        return self.controller

    def _require_content(self) -> ContentManager:
        if self.content is None or self.content.closed:
            raise InvalidStateError("No ride is open")
        return self.content

    def _push_soon(self, push):
        """Schedule a state push; pushes already waiting send the latest state."""
        if push in self._queued_pushes:
            return
        self._queued_pushes.add(push)

        async def run():
            self._queued_pushes.discard(push)
            await push()

        task = asyncio.get_running_loop().create_task(run())
        self._pending_pushes.add(task)
        task.add_done_callback(self._push_done)

    def _push_done(self, task):
        self._pending_pushes.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("State push failed for user %s", self.user_id, exc_info=exc)

    # ---------------------- Message Handlers ----------------------

    async def _handle_open_ride(self, data: Dict[str, Any]):
        ride_id = data.get("ride_id")
        if ride_id in (None, ""):
            await self.send_error("open_ride requires ride_id", kind="validation_failed")
            return

        self._close_sessions()
        self.controller = RidePlanController(self.store, auth=self.auth)
        self.content = ContentManager(self.store, ride_id, auth=self.auth)
        self.controller.add_listener(lambda _: self._push_soon(self._send_ride_state))
        self.content.add_listener(lambda _: self._push_soon(self._send_content_state))

        await self.controller.open(ride_id)
        await self.content.open()
        logger.debug("User %s opened ride %s", self.user_id, ride_id)

    async def _handle_close_ride(self, data: Dict[str, Any]):
        controller = self._require_controller()
        self._close_sessions()
        await self._send_ride_state()
        self.controller = None
        self.content = None
        logger.debug("User %s closed ride %s", self.user_id, controller.record_id)

    async def _handle_begin_edit(self, data: Dict[str, Any]):
        self._require_controller().begin_edit()

    async def _handle_update_draft(self, data: Dict[str, Any]):
        self._require_controller().update_draft(**(data.get("fields") or {}))

    async def _handle_cancel_edit(self, data: Dict[str, Any]):
        self._require_controller().cancel_edit()

    async def _handle_commit_edit(self, data: Dict[str, Any]):
        await self._require_controller().commit_edit(data.get("fields"))

    async def _handle_set_status(self, data: Dict[str, Any]):
        await self._require_controller().set_status(data.get("status"))

    async def _handle_append_update(self, data: Dict[str, Any]):
        await self._require_controller().append_timeline_update(data.get("text"))

    async def _handle_begin_content(self, data: Dict[str, Any]):
        self._require_content().begin_create(data.get("kind") or "photo")

    async def _handle_edit_content(self, data: Dict[str, Any]):
        self._require_content().begin_edit(data.get("item_id"))

    async def _handle_update_content_draft(self, data: Dict[str, Any]):
        self._require_content().update_draft(**(data.get("fields") or {}))

    async def _handle_cancel_content(self, data: Dict[str, Any]):
        self._require_content().cancel_edit()

    async def _handle_commit_content(self, data: Dict[str, Any]):
        item_id = await self._require_content().commit(data.get("fields"))
        if item_id is not None:
            await self.send_success("content_saved", item_id=item_id)

    async def _handle_delete_content(self, data: Dict[str, Any]):
        item_id = data.get("item_id")
        await self._require_content().delete(item_id)
        await self.send_success("content_deleted", item_id=str(item_id))

    async def _handle_export_calendar(self, data: Dict[str, Any]):
        controller = self._require_controller()
        await self.send_json({
            "type": "calendar",
            "ride_id": controller.record_id,
            "filename": controller.calendar_filename(),
            "content_type": CALENDAR_CONTENT_TYPE,
            "ics": controller.export_calendar(),
            "google_calendar_link": controller.calendar_link(),
        })

    HANDLERS = {
        "open_ride": _handle_open_ride,
        "close_ride": _handle_close_ride,
        "begin_edit": _handle_begin_edit,
        "update_draft": _handle_update_draft,
        "cancel_edit": _handle_cancel_edit,
        "commit_edit": _handle_commit_edit,
        "set_status": _handle_set_status,
        "append_update": _handle_append_update,
        "begin_content": _handle_begin_content,
        "edit_content": _handle_edit_content,
        "update_content_draft": _handle_update_content_draft,
        "cancel_content": _handle_cancel_content,
        "commit_content": _handle_commit_content,
        "delete_content": _handle_delete_content,
        "export_calendar": _handle_export_calendar,
    }

    # ---------------------- State Pushes ----------------------

    async def _send_ride_state(self):
        controller = self.controller
        if controller is None:
            return
        await self.send_json({
            "type": "ride_state",
            "ride_id": controller.record_id,
            "state": controller.state,
            "ride": controller.view,
            "remote": controller.remote,
            "editing": controller.is_editing,
            "timeline": controller.timeline,
            "error": _error_payload(controller),
        })

    async def _send_content_state(self):
        content = self.content
        if content is None or content.closed:
            return
        await self.send_json({
            "type": "content_state",
            "ride_id": content.ride_id,
            "state": content.state,
            "items": content.items,
            "editing_id": content.editing_id,
            "draft": content.draft,
            "error": _error_payload(content),
        })
