"""
Single-owner access guard.

This is a fast-fail check for the UI layer. The authoritative check belongs
to the document store (the ORM store and REST querysets filter by owner).
"""

from typing import Any, Optional

from .exceptions import ForbiddenError


def _normalize_id(value: Any) -> Optional[str]:
    if value is None:
        return None
    value = str(value).strip()
    return value or None


def is_owner(acting_user_id, record_owner_id) -> bool:
    """Return True only when a signed-in user owns the record."""
    acting = _normalize_id(acting_user_id)
    if acting is None:
        return False
    return acting == _normalize_id(record_owner_id)


def require_owner(acting_user_id, record_owner_id, message: str = "Not allowed."):
    if not is_owner(acting_user_id, record_owner_id):
        raise ForbiddenError(message)
