"""Shared utilities for vend_core.

This module provides small reusable helpers used across the engine, the
reports and the importer:

- Timestamp parsing: tolerant ISO-8601 parsing of backend timestamps
- Day keys: bucketing timestamps by calendar day
- Batching: splitting a sequence into fixed-size chunks for inserts
- Duration formatting for log lines

Examples:
    >>> from vend_core.utils import day_key, iter_batches
    >>> day_key("2025-03-04T18:22:00+00:00")
    '2025-03-04'
    >>> [len(batch) for _, batch in iter_batches(list(range(7)), 3)]
    [3, 3, 1]

"""

from __future__ import annotations

from collections.abc import Iterator, Sequence
from datetime import date, datetime, timezone
from typing import Any, TypeVar

T = TypeVar("T")

MILLIS_PER_HOUR = 3_600_000
MILLIS_PER_MINUTE = 60_000


def parse_instant(value: Any) -> datetime | None:
    """Parse a backend timestamp into an aware datetime.

    Accepts datetimes, dates and ISO-8601 strings (with ``Z`` or an offset,
    or naive, which is read as UTC). Returns None for blanks and anything
    that does not parse.

    Examples:
        >>> parse_instant("2025-01-15T10:30:00Z")
        datetime.datetime(2025, 1, 15, 10, 30, tzinfo=datetime.timezone.utc)
        >>> parse_instant("not a date") is None
        True

    """
    if value is None:
        return None
    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, date):
        dt = datetime(value.year, value.month, value.day)
    else:
        s = str(value).strip()
        if not s:
            return None
        if s.endswith("Z"):
            s = s[:-1] + "+00:00"
        try:
            dt = datetime.fromisoformat(s)
        except ValueError:
            return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def to_iso(value: datetime) -> str:
    """Render an instant as an ISO-8601 UTC string for query filters."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat()


def day_key(value: Any) -> str | None:
    """Return the YYYY-MM-DD day of a timestamp, or None if unparseable.

    String timestamps keep their own calendar day (no timezone shift), which
    matches how the dashboard buckets sales by the first ten characters.
    """
    if value is None:
        return None
    if isinstance(value, str):
        s = value.strip()
        if len(s) >= 10 and parse_instant(s[:10]) is not None:
            return s[:10]
        return None
    dt = parse_instant(value)
    return dt.date().isoformat() if dt else None


def millis_between(start: Any, end: Any) -> int:
    """Non-negative milliseconds between two timestamps, 0 if either is missing."""
    a = parse_instant(start)
    b = parse_instant(end)
    if a is None or b is None:
        return 0
    return max(0, int((b - a).total_seconds() * 1000))


def days_between(start: Any, end: Any) -> float | None:
    """Fractional days between two timestamps, None if either is missing."""
    a = parse_instant(start)
    b = parse_instant(end)
    if a is None or b is None:
        return None
    return (b - a).total_seconds() / 86_400


def iter_batches(items: Sequence[T], size: int) -> Iterator[tuple[int, Sequence[T]]]:
    """Yield ``(offset, batch)`` pairs covering ``items`` in order.

    Args:
        items: Sequence to split.
        size: Maximum batch length (must be positive).

    Yields:
        Tuples of (0-based offset of the batch, batch slice).

    Raises:
        ValueError: If size is not positive.

    """
    if size <= 0:
        raise ValueError(f"Batch size must be positive, got {size}")
    for start in range(0, len(items), size):
        yield start, items[start : start + size]


def format_duration(seconds: float) -> str:
    """Format a duration in seconds as a human-readable string.

    Examples:
        >>> format_duration(90.5)
        '1m 30.5s'
        >>> format_duration(45.2)
        '45.2s'

    """
    mins, secs = divmod(seconds, 60.0)
    if mins >= 1:
        return f"{int(mins)}m {secs:04.1f}s"
    else:
        return f"{secs:.1f}s"
