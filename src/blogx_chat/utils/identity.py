"""Helpers for normalizing user identifiers received from clients."""

from __future__ import annotations

from typing import Any


def coerce_user_id(value: Any) -> int | None:
    """Return ``value`` as a positive user id, or None when it is malformed.

    Accepts integers and decimal strings; booleans, floats, blanks and
    non-positive numbers are rejected.
    """
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value if value > 0 else None
    if isinstance(value, str):
        text = value.strip()
        if not text.isdigit():
            return None
        parsed = int(text)
        return parsed if parsed > 0 else None
    return None
