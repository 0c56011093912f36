"""Date/time helpers.

- Always store and operate on timezone-aware UTC datetimes.
- Monotonic time (``time.monotonic``) is used for deadlines and TTLs;
  wall-clock UTC only for values shown to operators.
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import UTC, datetime

Clock = Callable[[], float]
"""A monotonic seconds source, injectable for tests."""


def utcnow() -> datetime:
    """Return a timezone-aware datetime in UTC."""
    return datetime.now(UTC)


def to_iso_z(dt: datetime) -> str:
    """RFC3339 with trailing 'Z'."""
    if dt.tzinfo is None:
        raise ValueError("to_iso_z requires a timezone-aware datetime")
    return dt.astimezone(UTC).isoformat().replace("+00:00", "Z")


def format_duration_ms(duration_ms: int) -> str:
    """Format milliseconds as M:SS or H:MM:SS; 0 renders as LIVE."""
    if duration_ms <= 0:
        return "LIVE"

    hours, remainder = divmod(duration_ms // 1000, 3600)
    minutes, seconds = divmod(remainder, 60)

    if hours > 0:
        return f"{hours}:{minutes:02d}:{seconds:02d}"
    return f"{minutes}:{seconds:02d}"
