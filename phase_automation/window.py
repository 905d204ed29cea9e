"""
Window Matcher

Pure time-window test: does a target date fall inside a phase window as of
a reference instant?

Window bounds are relative offsets from `now` (negative = target already in
the past). Bounds are min/max normalized, so windows authored with
start > end still match. Both bounds are inclusive. Naive datetimes are
read as UTC when compared with aware ones.
"""

from datetime import datetime, timezone
from typing import Dict, Tuple, Union

from .models import PhaseWindowConfig, WindowUnit

MINUTES_PER_UNIT: Dict[WindowUnit, int] = {
    WindowUnit.HOURS: 60,
    WindowUnit.DAYS: 24 * 60,
    WindowUnit.WEEKS: 7 * 24 * 60,
}


def to_minutes(unit: Union[WindowUnit, str], value: int) -> int:
    """Convert a window offset expressed in `unit` into minutes."""
    return value * MINUTES_PER_UNIT[WindowUnit(unit)]


def align_timezones(a: datetime, b: datetime) -> Tuple[datetime, datetime]:
    """Make two datetimes comparable; a naive side is read as UTC when the other is aware."""
    if (a.tzinfo is None) == (b.tzinfo is None):
        return a, b
    if a.tzinfo is None:
        return a.replace(tzinfo=timezone.utc), b
    return a, b.replace(tzinfo=timezone.utc)


def is_within_window(window: PhaseWindowConfig, target_date: datetime, now: datetime) -> bool:
    """
    Check whether target_date lies inside the window as of now.

    Args:
        window: Phase window (unit, start, end)
        target_date: Reference date of the item
        now: Evaluation instant

    Returns:
        True iff min(start, end) <= (target_date - now) <= max(start, end),
        all measured in minutes
    """
    target_date, now = align_timezones(target_date, now)
    diff_minutes = (target_date - now).total_seconds() / 60
    start = to_minutes(window.unit, window.start)
    end = to_minutes(window.unit, window.end)
    return min(start, end) <= diff_minutes <= max(start, end)
