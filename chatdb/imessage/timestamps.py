"""
Timestamp conversion for chat.db.

Messages stores dates relative to Apple's epoch (2001-01-01 UTC). Archives
written by newer versions of the app use nanoseconds, older ones use seconds,
so the unit is picked by magnitude.
"""

from datetime import datetime, timedelta, timezone

# Apple's epoch starts on 2001-01-01 (vs Unix 1970-01-01)
APPLE_EPOCH_OFFSET = 978307200
APPLE_EPOCH = datetime(2001, 1, 1, tzinfo=timezone.utc)

# Anything larger than this is nanoseconds, anything smaller is seconds
NANOSECOND_THRESHOLD = 1e15

_MIN = datetime.min.replace(tzinfo=timezone.utc)
_MAX = datetime.max.replace(tzinfo=timezone.utc)


def to_absolute(raw: int | float) -> datetime:
    """Convert a raw chat.db date value to an aware UTC datetime."""
    seconds = raw / 1_000_000_000 if abs(raw) > NANOSECOND_THRESHOLD else raw
    try:
        return APPLE_EPOCH + timedelta(seconds=seconds)
    except OverflowError:
        return _MAX if seconds > 0 else _MIN


def from_absolute(dt: datetime) -> int:
    """Convert a datetime to Apple's nanoseconds-since-2001. Naive means UTC."""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    delta = dt - APPLE_EPOCH
    # Integer arithmetic keeps the conversion exact to the microsecond
    return (delta.days * 86_400 + delta.seconds) * 1_000_000_000 + delta.microseconds * 1_000
