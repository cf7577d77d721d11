"""
Ride plan field normalization, creation and explicit content purge.

Deleting a ride plan removes only the plan document. Content items are
purged by an explicit call to ``purge_ride_content`` (also exposed through
the REST delete endpoint and the ``purge_orphaned_content`` command).
"""

import logging
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

from rides.constants import (
    BUDGET_ALIASES,
    BUDGET_VALUES,
    DEFAULT_BUDGET,
    DEFAULT_TRANSPORT,
    INITIAL_STATUS,
    STATUS_ALIASES,
    STATUS_VALUES,
    TRANSPORT_VALUES,
)

from .access import is_owner
from .calendar import parse_local_datetime
from .exceptions import ForbiddenError, ValidationFailedError, WriteFailedError
from .store import (
    RIDES_COLLECTION,
    SERVER_TIMESTAMP,
    DocumentStore,
    StoreError,
    content_path,
)

logger = logging.getLogger(__name__)

PLAN_FIELDS = (
    "title",
    "start_location",
    "end_location",
    "stops",
    "transport_mode",
    "budget_tier",
    "status",
    "scheduled_start",
    "scheduled_end",
    "notes",
    "media_intent",
)

TIMELINE_FIELD = "timeline_updates"


def clean_text(value: Any) -> str:
    return "" if value is None else str(value).strip()


def clean_stops(stops: Optional[Iterable[Any]]) -> List[str]:
    """Trim every stop and drop the empty ones, keeping route order."""
    return [s for s in (clean_text(stop) for stop in (stops or [])) if s]


def normalize_choice(value, allowed, field: str, aliases=None, default=None) -> str:
    text = clean_text(value).lower()
    if not text and default is not None:
        return default
    text = (aliases or {}).get(text, text)
    if text not in allowed:
        raise ValidationFailedError(
            f"Invalid {field.replace('_', ' ')}: {value!r}", field=field
        )
    return text


def normalize_status(value) -> str:
    return normalize_choice(value, STATUS_VALUES, "status", aliases=STATUS_ALIASES)


def _schedule_text(value) -> str:
    parsed = parse_local_datetime(value)
    if parsed is None:
        return ""
    return parsed.isoformat(timespec="minutes" if parsed.second == 0 else "seconds")


def normalize_schedule(start, end) -> Tuple[str, str]:
    start_text, end_text = _schedule_text(start), _schedule_text(end)
    if start_text and end_text and parse_local_datetime(end_text) < parse_local_datetime(start_text):
        raise ValidationFailedError("End must not be before Start.", field="scheduled_end")
    return start_text, end_text


def normalize_plan_fields(fields: Mapping[str, Any]) -> Dict[str, Any]:
    """
    Validate and normalize a full set of ride plan fields for persistence.

    Raises:
        ValidationFailedError: if a required field is empty or a value is
            outside its enumeration
    """
    title = clean_text(fields.get("title"))
    if not title:
        raise ValidationFailedError("Title is required.", field="title")

    start = clean_text(fields.get("start_location"))
    end = clean_text(fields.get("end_location"))
    if not start or not end:
        raise ValidationFailedError(
            "Start and End are required.",
            field="start_location" if not start else "end_location",
        )

    scheduled_start, scheduled_end = normalize_schedule(
        fields.get("scheduled_start"), fields.get("scheduled_end")
    )

    return {
        "title": title,
        "start_location": start,
        "end_location": end,
        "stops": clean_stops(fields.get("stops")),
        "transport_mode": normalize_choice(
            fields.get("transport_mode"), TRANSPORT_VALUES, "transport_mode",
            default=DEFAULT_TRANSPORT,
        ),
        "budget_tier": normalize_choice(
            fields.get("budget_tier"), BUDGET_VALUES, "budget_tier",
            aliases=BUDGET_ALIASES, default=DEFAULT_BUDGET,
        ),
        "status": normalize_choice(
            fields.get("status"), STATUS_VALUES, "status",
            aliases=STATUS_ALIASES, default=INITIAL_STATUS,
        ),
        "scheduled_start": scheduled_start,
        "scheduled_end": scheduled_end,
        "notes": clean_text(fields.get("notes")),
        "media_intent": clean_text(fields.get("media_intent")),
    }


def draft_from_document(document: Mapping[str, Any]) -> Dict[str, Any]:
    """Editable copy of a stored ride plan."""
    return {
        "title": document.get("title") or "",
        "start_location": document.get("start_location") or "",
        "end_location": document.get("end_location") or "",
        "stops": [s or "" for s in (document.get("stops") or [])],
        "transport_mode": document.get("transport_mode") or DEFAULT_TRANSPORT,
        "budget_tier": document.get("budget_tier") or DEFAULT_BUDGET,
        "status": document.get("status") or INITIAL_STATUS,
        "scheduled_start": document.get("scheduled_start") or "",
        "scheduled_end": document.get("scheduled_end") or "",
        "notes": document.get("notes") or "",
        "media_intent": document.get("media_intent") or "",
    }


async def create_ride_plan(store: DocumentStore, acting_user_id, fields: Mapping[str, Any]) -> str:
    """
    Create a ride plan owned by the acting user. Status always starts as planned.

    Returns:
        The new plan's id
    """
    if not is_owner(acting_user_id, acting_user_id):
        raise ForbiddenError("Please login first.")

    payload = normalize_plan_fields({**fields, "status": INITIAL_STATUS})
    payload.update({
        "owner_id": str(acting_user_id),
        TIMELINE_FIELD: [],
        "created_at": SERVER_TIMESTAMP,
    })

    try:
        ride_id = await store.add(RIDES_COLLECTION, payload)
    except StoreError as exc:
        raise WriteFailedError(str(exc)) from exc

    logger.info("Ride plan %s created by user %s", ride_id, acting_user_id)
    return ride_id


async def purge_ride_content(store: DocumentStore, ride_id, acting_user_id) -> int:
    """
    Delete every content item of a ride plan.

    All items must belong to the acting user; otherwise nothing is deleted.

    Returns:
        Number of items deleted
    """
    try:
        collection = await store.get(content_path(ride_id))
    except StoreError as exc:
        raise WriteFailedError(str(exc)) from exc

    documents = [doc for doc in collection.documents if doc.exists]
    for doc in documents:
        if not is_owner(acting_user_id, doc.data.get("owner_id")):
            raise ForbiddenError("Not allowed.")

    for doc in documents:
        try:
            await store.delete(content_path(ride_id, doc.id))
        except StoreError as exc:
            raise WriteFailedError(str(exc)) from exc

    logger.info("Purged %s content item(s) of ride %s", len(documents), ride_id)
    return len(documents)
