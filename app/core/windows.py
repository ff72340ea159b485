"""
Fixed time windows used for request counting

All boundaries are computed in UTC and stored as naive UTC datetimes.
"""
from datetime import datetime, timedelta, timezone
import enum
import math


class WindowType(str, enum.Enum):
    """Counting window granularity"""
    MINUTE = "minute"
    HOUR = "hour"
    DAY = "day"

    def __str__(self):
        return self.value


# Tightest window first
WINDOW_ORDER = (WindowType.MINUTE, WindowType.HOUR, WindowType.DAY)

WINDOW_DURATIONS = {
    WindowType.MINUTE: timedelta(minutes=1),
    WindowType.HOUR: timedelta(hours=1),
    WindowType.DAY: timedelta(days=1),
}


def utcnow() -> datetime:
    """Current time as naive UTC"""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_utc_naive(value: datetime) -> datetime:
    """Normalize an aware or naive datetime to naive UTC"""
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def floor_to_window(now: datetime, window_type: WindowType) -> datetime:
    """
    Truncate a timestamp to the start of its window

    Args:
        now: Timestamp (aware or naive UTC)
        window_type: Window granularity

    Returns:
        Naive UTC start of the window containing ``now``
    """
    now = to_utc_naive(now)
    window_type = WindowType(window_type)
    if window_type == WindowType.MINUTE:
        return now.replace(second=0, microsecond=0)
    if window_type == WindowType.HOUR:
        return now.replace(minute=0, second=0, microsecond=0)
    return now.replace(hour=0, minute=0, second=0, microsecond=0)


def window_end(now: datetime, window_type: WindowType) -> datetime:
    """Start of the window following the one containing ``now``"""
    return floor_to_window(now, window_type) + WINDOW_DURATIONS[WindowType(window_type)]


def seconds_until_reset(now: datetime, window_type: WindowType) -> int:
    """Whole seconds until the current window ends (at least 1)"""
    delta = window_end(now, window_type) - to_utc_naive(now)
    return max(1, math.ceil(delta.total_seconds()))
