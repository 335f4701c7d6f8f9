from __future__ import annotations

from datetime import date, datetime, timezone
from typing import Optional

# Canonical storage form: naive datetimes that are implicitly UTC.
# Serialized form: ISO-8601 with a trailing "Z".


def utcnow() -> datetime:
    """Server-side 'now' in UTC (naive, canonical)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def as_naive_utc(dt: datetime) -> datetime:
    """Convert an aware datetime to naive UTC; naive input is assumed UTC already."""
    if dt.tzinfo is None:
        return dt
    return dt.astimezone(timezone.utc).replace(tzinfo=None)


def parse_iso_datetime(value: Optional[str]) -> Optional[datetime]:
    """
    Parse an ISO-8601 datetime string into naive UTC.

    None or a blank string gives None. Offsets (including "Z") are applied;
    a string without an offset is read as UTC. Raises ValueError otherwise.
    """
    if value is None or not value.strip():
        return None
    text = value.strip()
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"
    return as_naive_utc(datetime.fromisoformat(text))


def parse_iso_date(value: Optional[str]) -> Optional[date]:
    """Parse a plain "YYYY-MM-DD" string. Datetime strings are rejected."""
    if value is None or not value.strip():
        return None
    return date.fromisoformat(value.strip())


def to_utc_z(dt: Optional[datetime]) -> Optional[str]:
    """Whole-second ISO-8601 form with trailing 'Z' (naive input is UTC)."""
    if dt is None:
        return None
    stamp = as_naive_utc(dt).replace(microsecond=0)
    return stamp.isoformat() + "Z"
