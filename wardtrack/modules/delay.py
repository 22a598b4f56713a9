"""
WardTrack Delay Calculator
Whole-day delays and overdue classification relative to an explicit `now`
"""

from datetime import datetime, timedelta
from typing import Optional

from wardtrack.schemas import ItemStatus, TimelineItemBase

_DAY = timedelta(days=1)


def scheduled_at(item: TimelineItemBase) -> datetime:
    """Scheduled instant of an item (midnight when no time was given)"""
    return item.scheduled_at


def whole_days_between(later: datetime, earlier: datetime) -> int:
    """
    Number of whole 24h periods from `earlier` to `later`, truncated toward zero

    Args:
        later: End instant
        earlier: Start instant

    Returns:
        Signed whole-day count (negative when `later` precedes `earlier`)
    """
    span = later - earlier
    if span >= timedelta(0):
        return span // _DAY
    return -((-span) // _DAY)


def delay_days(scheduled: datetime, actual_or_now: datetime) -> int:
    """Whole days late; never negative"""
    return max(0, whole_days_between(actual_or_now, scheduled))


def is_overdue(item: TimelineItemBase, now: datetime) -> bool:
    """Still scheduled and its scheduled instant has passed"""
    return item.status == ItemStatus.SCHEDULED and item.scheduled_at < now


def is_delay_unexplained(days: int, delay_reason: Optional[str]) -> bool:
    """Late completion without a delay reason (flagged, not rejected)"""
    return days > 0 and not (delay_reason or "").strip()


def current_delay(item: TimelineItemBase, now: datetime) -> int:
    """
    Delay of an item as of `now`

    Completed items report their recorded delay; open items accrue against `now`;
    cancelled items carry no delay.
    """
    if item.status == ItemStatus.COMPLETED and item.completion is not None:
        return item.completion.delay_days
    if item.status == ItemStatus.CANCELLED:
        return 0
    return delay_days(item.scheduled_at, now)
