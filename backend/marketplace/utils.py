"""
Shared utility functions.
"""

import uuid as uuid_mod
from datetime import datetime, timezone
from typing import Optional

from marketplace.errors import bad_request


def parse_uuid(value: Optional[str], field_name: str = "id") -> uuid_mod.UUID:
    """
    Parse a string as UUID, raising BAD_REQUEST on invalid input
    instead of letting a bare ValueError bubble up as a 500.
    """
    try:
        return uuid_mod.UUID(str(value).strip())
    except (ValueError, AttributeError):
        raise bad_request(f"{field_name} must be a UUID")


def utcnow() -> datetime:
    """
    Return the current UTC time as a naive datetime (no tzinfo).
    Naive datetimes are used because our DB columns are TIMESTAMP WITHOUT TIME ZONE.
    """
    return datetime.now(timezone.utc).replace(tzinfo=None)


def clamp_page(limit: Optional[int], offset: Optional[int], default_limit: int = 20, max_limit: int = 100) -> tuple[int, int]:
    """Clamp limit to 1..max_limit and offset to >= 0."""
    limit = default_limit if limit is None else limit
    offset = 0 if offset is None else offset
    return min(max_limit, max(1, limit)), max(0, offset)


def iso_or_none(value) -> Optional[str]:
    return value.isoformat() if value else None


def str_or_none(value) -> Optional[str]:
    return str(value) if value else None
