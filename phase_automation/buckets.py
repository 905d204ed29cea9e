"""
Bucket Key Generator

Derives the deduplication key that groups items into one shared business
task. The key is a pure function of (window bucket, target date, item's
timetable year).
"""

from datetime import datetime, timedelta
from typing import Optional

from .collaborators import OrderItem
from .models import BucketGranularity, PhaseTemplateDefinition


def start_of_week(date: datetime) -> datetime:
    """Monday 00:00 of the week containing `date` (Monday = day 0)."""
    monday = date - timedelta(days=date.weekday())
    return monday.replace(hour=0, minute=0, second=0, microsecond=0)


def bucket_key(
    definition: PhaseTemplateDefinition,
    target_date: datetime,
    item: OrderItem,
    timetable_year: Optional[str] = None,
) -> str:
    """
    Compute the bucket key for an item's target date.

    Args:
        definition: Phase definition whose window bucket decides granularity
        target_date: Item reference date
        item: The order item being processed
        timetable_year: Timetable-year label resolved by the order source;
            falls back to the item's own label

    Returns:
        year -> timetable-year label or 4-digit year
        week -> Monday of the week, YYYY-MM-DD
        hour -> YYYY-MM-DDTHH
        day (default) -> YYYY-MM-DD
    """
    bucket = definition.window.bucket

    if bucket == BucketGranularity.YEAR:
        return timetable_year or item.timetable_year_label or f"{target_date.year:04d}"

    if bucket == BucketGranularity.WEEK:
        return start_of_week(target_date).strftime("%Y-%m-%d")

    if bucket == BucketGranularity.HOUR:
        return target_date.strftime("%Y-%m-%dT%H")

    return target_date.strftime("%Y-%m-%d")
