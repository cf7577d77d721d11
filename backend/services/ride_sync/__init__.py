"""
Ride sync service - keeps ride plan drafts consistent with the live store.

This module handles:
    - Watching a ride plan and editing it without losing local input
    - Content items and timeline updates attached to a plan
    - Single-owner write checks
    - iCalendar export of a plan's schedule
"""

from .access import is_owner, require_owner
from .base import SessionState
from .calendar import (
    build_ride_ics,
    escape_text,
    google_calendar_link,
    ride_ics_filename,
)
from .content import ContentManager
from .controller import RidePlanController
from .identity import AuthState, Identity
from .plans import create_ride_plan, normalize_plan_fields, purge_ride_content
from .store import (
    SERVER_TIMESTAMP,
    DocumentStore,
    StoreError,
    get_document_store,
)
from .timeline import TimelineManager

from .exceptions import (
    RideSyncError,
    NotFoundError,
    ForbiddenError,
    ValidationFailedError,
    SubscriptionFailedError,
    WriteFailedError,
    InvalidStateError,
)

__all__ = [
    # Sessions
    "RidePlanController",
    "ContentManager",
    "TimelineManager",
    "SessionState",
    "AuthState",
    "Identity",
    # Operations
    "create_ride_plan",
    "normalize_plan_fields",
    "purge_ride_content",
    "is_owner",
    "require_owner",
    "build_ride_ics",
    "escape_text",
    "google_calendar_link",
    "ride_ics_filename",
    # Store
    "DocumentStore",
    "StoreError",
    "SERVER_TIMESTAMP",
    "get_document_store",
    # Exceptions
    "RideSyncError",
    "NotFoundError",
    "ForbiddenError",
    "ValidationFailedError",
    "SubscriptionFailedError",
    "WriteFailedError",
    "InvalidStateError",
]
