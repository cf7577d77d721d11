"""Base WebSocket consumer with shared functionality for all consumers."""

import json
import logging
from typing import Awaitable, Callable, Dict, Any, Optional

from channels.generic.websocket import AsyncJsonWebsocketConsumer
from django.core.serializers.json import DjangoJSONEncoder

logger = logging.getLogger(__name__)

# Close code sent to unauthenticated sockets
UNAUTHORIZED_CLOSE_CODE = 4401


class BaseConsumer(AsyncJsonWebsocketConsumer):
    """
    Base consumer: authenticated connections, table-driven message dispatch.

    Subclasses set:
        - HANDLERS: {msg_type: async handler(self, data)}
        - EXPECTED_ERRORS: exception types reported to the client as
          ``error`` messages through report_error()
    and may override on_connect() / on_disconnect(close_code).
    """

    HANDLERS: Dict[str, Callable[..., Awaitable[None]]] = {}
    EXPECTED_ERRORS = ()

    async def connect(self):
        self.user = self.scope.get("user")

        if self.user is None or self.user.is_anonymous:
            await self.close(code=UNAUTHORIZED_CLOSE_CODE)
            return

        self.user_id = getattr(self.user, "id", None)
        self.connected = True

        await self.accept()
        await self.on_connect()

    async def on_connect(self):
        """Override in subclass for custom connect logic."""
        await self.send_success("connection_established", user_id=self.user_id)

    async def disconnect(self, close_code):
        if not getattr(self, "connected", False):
            return
        self.connected = False
        try:
            await self.on_disconnect(close_code)
        except Exception:
            logger.exception("Error during disconnect for user %s", getattr(self, 'user_id', 'unknown'))

    async def on_disconnect(self, close_code):
        """Override in subclass for custom disconnect logic."""
        pass

    async def receive_json(self, data: Any):
        """Route incoming messages to the handler registered for their type."""
        if not isinstance(data, dict) or not data.get("type"):
            await self.send_error("Message type is required")
            return

        msg_type = data["type"]
        handler = self.HANDLERS.get(msg_type)
        if handler is None:
            await self.send_error(f"Unknown message type: {msg_type}")
            return

        try:
            await handler(self, data)
        except self.EXPECTED_ERRORS as exc:
            await self.report_error(msg_type, exc)
        except Exception:
            logger.exception("Error handling message type %s", msg_type)
            await self.send_error(f"Error processing {msg_type}")

    async def report_error(self, msg_type: str, exc: Exception):
        await self.send_error(str(exc), request=msg_type)

    @classmethod
    async def encode_json(cls, content):
        # snapshots carry datetimes
        return json.dumps(content, cls=DjangoJSONEncoder)

    # ---------------------- Response Helpers ----------------------

    async def send_error(self, message: str, kind: Optional[str] = None, **extra):
        """Send an error message to the client."""
        await self.send_json({
            "type": "error",
            "kind": kind or "error",
            "message": message,
            **extra,
        })

    async def send_success(self, event_type: str, **kwargs):
        """Send a success response to the client."""
        await self.send_json({
            "type": event_type,
            **kwargs,
        })
