from __future__ import annotations
from datetime import datetime, UTC, timedelta
from typing import Any, Optional

__all__ = ["utc_now", "ensure_aware_utc", "days_from_now", "parse_provider_datetime"]

def utc_now() -> datetime:
    """Return timezone-aware UTC now."""
    return datetime.now(UTC)

def ensure_aware_utc(dt: datetime | None) -> Optional[datetime]:
    """Ensure a datetime is timezone-aware in UTC (assumes naive input already in UTC).

    SQLite hands back naive values even for ``DateTime(timezone=True)`` columns.
    """
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=UTC)
    return dt.astimezone(UTC)

def days_from_now(days: int, now: datetime | None = None) -> datetime:
    return (now or utc_now()) + timedelta(days=days)

def _from_epoch_millis(millis: float) -> Optional[datetime]:
    try:
        return datetime.fromtimestamp(millis / 1000, tz=UTC)
    except (OverflowError, OSError, ValueError):
        return None

def parse_provider_datetime(value: Any) -> Optional[datetime]:
    """Parse a FastSpring date field.

    FastSpring sends epoch milliseconds on most payloads and ISO-8601 strings
    on a few older ones. Anything unparseable or out of range yields None.
    """
    if value is None or value == "" or isinstance(value, bool):
        return None
    if isinstance(value, datetime):
        return ensure_aware_utc(value)
    if isinstance(value, (int, float)):
        return _from_epoch_millis(value)
    text = str(value).strip()
    if text.isdigit():
        try:
            return _from_epoch_millis(int(text))
        except ValueError:
            # int() refuses digit strings past the interpreter's conversion limit
            return None
    try:
        return ensure_aware_utc(datetime.fromisoformat(text.replace("Z", "+00:00")))
    except ValueError:
        return None
