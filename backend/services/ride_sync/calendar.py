"""
iCalendar export for ride plans.

A ride's schedule is encoded as a single VEVENT inside a VCALENDAR. Times
use the floating local convention: the wall-clock value the rider typed is
written as-is without a UTC marker, so calendar apps show it in the
viewer's own timezone. DTSTAMP is always UTC.

The current time is injected so the output is reproducible in tests.
"""

import re
from datetime import datetime, timezone as dt_timezone
from typing import Any, Mapping, Optional
from urllib.parse import urlencode

from django.conf import settings
from django.utils import timezone

from .exceptions import ValidationFailedError

DEFAULT_PRODID = "-//xBhp//Ride Planner//EN"
DEFAULT_UID_DOMAIN = "xbhp"
CALENDAR_EXTENSION = ".ics"
CALENDAR_CONTENT_TYPE = "text/calendar; charset=utf-8"
GOOGLE_CALENDAR_URL = "https://calendar.google.com/calendar/render"

# RFC 5545 section 3.1
MAX_LINE_OCTETS = 75
CRLF = "\r\n"

ROUTE_SEPARATOR = " → "
_LINE_BREAKS = re.compile(r"[\r\n]+")
_WHITESPACE = re.compile(r"\s+")
_UNSAFE_FILENAME_CHARS = re.compile(r'[\\/"]')


def escape_text(value: Any) -> str:
    """Escape a TEXT value: backslash, newline, comma, semicolon, in that order."""
    text = "" if value is None else str(value)
    text = text.replace("\r\n", "\n").replace("\r", "\n")
    return (
        text.replace("\\", "\\\\")
        .replace("\n", "\\n")
        .replace(",", "\\,")
        .replace(";", "\\;")
    )


def fold_line(line: str) -> str:
    """Fold a content line so no physical line exceeds 75 octets."""
    if len(line.encode("utf-8")) <= MAX_LINE_OCTETS:
        return line

    parts = []
    current = ""
    size = 0
    for char in line:
        width = len(char.encode("utf-8"))
        if size + width > MAX_LINE_OCTETS:
            parts.append(current)
            current = char
            # continuation lines start with a single space
            size = 1 + width
        else:
            current += char
            size += width
    parts.append(current)
    return (CRLF + " ").join(parts)


def parse_local_datetime(value: Any) -> Optional[datetime]:
    """
    Parse a floating wall-clock value such as ``2026-02-10T06:00``.

    Returns None for empty input. Aware datetimes keep their wall-clock
    reading and lose the tzinfo.
    """
    if value in (None, ""):
        return None
    if isinstance(value, datetime):
        return value.replace(tzinfo=None)
    try:
        parsed = datetime.fromisoformat(str(value).strip())
    except ValueError:
        raise ValidationFailedError(f"Invalid date/time: {value!r}")
    return parsed.replace(tzinfo=None)


def format_local_datetime(value: datetime) -> str:
    """Compact fifteen-character floating form, e.g. 20260210T060000."""
    return value.strftime("%Y%m%dT%H%M%S")


def format_utc_datetime(value: datetime) -> str:
    if timezone.is_naive(value):
        value = value.replace(tzinfo=dt_timezone.utc)
    return value.astimezone(dt_timezone.utc).strftime("%Y%m%dT%H%M%SZ")


def _uid_stamp(value: datetime) -> str:
    if timezone.is_naive(value):
        value = value.replace(tzinfo=dt_timezone.utc)
    return value.astimezone(dt_timezone.utc).strftime("%Y%m%dT%H%M%S%f")


def _local_date(value: datetime):
    """Calendar date on the local wall clock, matching the floating times."""
    if timezone.is_naive(value):
        return value.date()
    return timezone.localtime(value).date()


def ride_route(ride: Mapping[str, Any]) -> str:
    points = [ride.get("start_location"), *(ride.get("stops") or []), ride.get("end_location")]
    return ROUTE_SEPARATOR.join(str(p).strip() for p in points if p and str(p).strip())


def _single_line(value: Any) -> str:
    return _LINE_BREAKS.sub(" ", "" if value is None else str(value)).strip()


def _describe(ride: Mapping[str, Any], route: str) -> str:
    lines = [
        f"Transport: {(ride.get('transport_mode') or '').upper()}",
        f"Budget: {(ride.get('budget_tier') or '').upper()}",
        f"Status: {(ride.get('status') or '').upper()}",
    ]
    if route:
        lines.append(f"Route: {route}")
    notes = (ride.get("notes") or "").strip()
    if notes:
        lines.append(f"Notes: {notes}")
    return "\n".join(lines)


def build_ride_ics(ride: Mapping[str, Any], now: Optional[datetime] = None) -> str:
    """
    Serialize a ride plan document into an iCalendar file.

    Args:
        ride: ride plan fields (``id``, ``title``, ``start_location``,
            ``stops``, ``end_location``, ``scheduled_start``,
            ``scheduled_end``, ``transport_mode``, ``budget_tier``,
            ``status``, ``notes``)
        now: generation time; defaults to the current UTC time

    Returns:
        The calendar text with CRLF line endings.
    """
    now = now or timezone.now()
    prodid = getattr(settings, "RIDE_CALENDAR_PRODID", DEFAULT_PRODID)
    domain = getattr(settings, "RIDE_CALENDAR_UID_DOMAIN", DEFAULT_UID_DOMAIN)

    stamp = format_utc_datetime(now)
    record_id = ride.get("id") or "draft"
    uid = f"ride-{record_id}-{_uid_stamp(now)}@{domain}"

    start = parse_local_datetime(ride.get("scheduled_start"))
    end = parse_local_datetime(ride.get("scheduled_end"))
    route = ride_route(ride)

    lines = [
        "BEGIN:VCALENDAR",
        "VERSION:2.0",
        f"PRODID:{prodid}",
        "CALSCALE:GREGORIAN",
        "METHOD:PUBLISH",
        "BEGIN:VEVENT",
        f"UID:{uid}",
        f"DTSTAMP:{stamp}",
    ]

    if start is None:
        # No schedule yet: an all-day placeholder for today
        lines.append(f"DTSTART;VALUE=DATE:{_local_date(now).strftime('%Y%m%d')}")
    else:
        lines.append(f"DTSTART:{format_local_datetime(start)}")
        if end is not None:
            lines.append(f"DTEND:{format_local_datetime(end)}")

    lines.append(f"SUMMARY:{escape_text(_single_line(ride.get('title')))}")
    if route:
        lines.append(f"LOCATION:{escape_text(route)}")
    lines.append(f"DESCRIPTION:{escape_text(_describe(ride, route))}")
    lines.extend(["END:VEVENT", "END:VCALENDAR"])

    return CRLF.join(fold_line(line) for line in lines) + CRLF


def ride_ics_filename(title: Any) -> str:
    """Download filename for a ride's calendar file."""
    base = _UNSAFE_FILENAME_CHARS.sub("", "" if title is None else str(title))
    base = _WHITESPACE.sub("_", base.strip())
    return f"{base or 'ride'}{CALENDAR_EXTENSION}"


def google_calendar_link(ride: Mapping[str, Any]) -> Optional[str]:
    """Google Calendar "create event" link, or None when there is no start time."""
    start = parse_local_datetime(ride.get("scheduled_start"))
    if start is None:
        return None
    end = parse_local_datetime(ride.get("scheduled_end")) or start

    route = ride_route(ride)
    params = {
        "action": "TEMPLATE",
        "text": _single_line(ride.get("title")),
        "dates": f"{format_local_datetime(start)}/{format_local_datetime(end)}",
        "details": _describe(ride, route),
        "location": route,
    }
    return f"{GOOGLE_CALENDAR_URL}?{urlencode(params)}"
