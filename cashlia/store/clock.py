"""
Store Clock

All persisted timestamps are text in one fixed shape:
    YYYY-MM-DDTHH:MM:SS.ffffffZ

DESIGN DECISION: Fixed precision, always UTC, always zero-padded.
With that shape, comparing two timestamps as strings gives the same
answer as comparing them as instants. The sync engine's last-write-wins
merge and every ORDER BY on a timestamp column rely on it.
"""

from datetime import date, datetime, time, timedelta, timezone, tzinfo
from typing import Callable, Optional, Union


TIMESTAMP_FORMAT = "%Y-%m-%dT%H:%M:%S.%fZ"

TimestampLike = Union[datetime, date, str]


def format_timestamp(value: datetime, tz: tzinfo = timezone.utc) -> str:
    """Render a datetime in the store's timestamp shape (naive means tz)."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=tz)
    return value.astimezone(timezone.utc).strftime(TIMESTAMP_FORMAT)


def parse_timestamp(value: str, tz: tzinfo = timezone.utc) -> datetime:
    """Parse an ISO-8601 string into an aware UTC datetime (no offset means tz)."""
    text = value.strip()
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"
    parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=tz)
    return parsed.astimezone(timezone.utc)


def normalize_timestamp(value: TimestampLike, end_of_day: bool = False, tz: tzinfo = timezone.utc) -> str:
    """
    Coerce a datetime, date or ISO string into the store's timestamp shape.

    A bare date becomes the first (or, with end_of_day, the last)
    microsecond of that day. Dates and values without an offset are
    read in tz, which defaults to UTC.
    """
    if isinstance(value, datetime):
        return format_timestamp(value, tz)
    if isinstance(value, date):
        moment = time.max if end_of_day else time.min
        return format_timestamp(datetime.combine(value, moment, tzinfo=tz))
    return format_timestamp(parse_timestamp(value, tz))


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class Clock:
    """
    Monotonic timestamp source.

    Two readings never compare equal and never go backwards, even when
    the wall clock does. A store owns exactly one Clock.
    """

    def __init__(self, source: Optional[Callable[[], datetime]] = None):
        self._source = source or utc_now
        self._last: Optional[datetime] = None

    def now(self) -> str:
        current = self._source()
        if current.tzinfo is None:
            current = current.replace(tzinfo=timezone.utc)
        if self._last is not None and current <= self._last:
            current = self._last + timedelta(microseconds=1)
        self._last = current
        return format_timestamp(current)
