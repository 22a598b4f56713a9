"""
WardTrack Recurrence Expander
Turns a cadence + termination rule into an ordered sequence of scheduled dates
"""

import logging
from datetime import date, datetime, time, timedelta
from itertools import islice, takewhile
from typing import Dict, Iterator, List, Optional, Tuple

from dateutil.rrule import rrule, DAILY, WEEKLY

from wardtrack.config import settings
from wardtrack.exceptions import ValidationError
from wardtrack.schemas import Cadence, RecurrencePattern

logger = logging.getLogger(__name__)


# =============================================================================
# Cadence → rrule mapping
# =============================================================================

_CADENCE_RULES: Dict[Cadence, Tuple[int, int]] = {
    Cadence.DAILY: (DAILY, 1),
    Cadence.ALTERNATE_DAYS: (DAILY, 2),
    Cadence.WEEKLY: (WEEKLY, 1),
    Cadence.BIWEEKLY: (WEEKLY, 2),
    Cadence.CUSTOM_DAYS: (DAILY, 1),
}


def build_rule(pattern: RecurrencePattern) -> rrule:
    """
    Build the dateutil rule for a pattern

    Args:
        pattern: Recurrence pattern

    Returns:
        Lazy rrule; iterating it never materialises the whole sequence
    """
    dtstart = datetime.combine(pattern.start_date, time.min)

    if pattern.cadence == Cadence.ONCE:
        return rrule(DAILY, dtstart=dtstart, count=1)

    freq, interval = _CADENCE_RULES[pattern.cadence]
    kwargs = {"dtstart": dtstart, "interval": interval}

    # rrule skips dtstart when its weekday is not in byweekday
    if pattern.cadence == Cadence.CUSTOM_DAYS:
        kwargs["byweekday"] = [day.number for day in pattern.days_of_week]

    if pattern.repeat_count is not None:
        kwargs["count"] = pattern.repeat_count
    elif pattern.end_date is not None:
        kwargs["until"] = datetime.combine(pattern.end_date, time.min)

    return rrule(freq, **kwargs)


def iter_occurrences(pattern: RecurrencePattern) -> Iterator[date]:
    """Lazily yield occurrence dates, earliest first"""
    for occurrence in build_rule(pattern):
        yield occurrence.date()


# =============================================================================
# Public API
# =============================================================================

def expand(
    pattern: RecurrencePattern,
    through: Optional[date] = None,
    limit: Optional[int] = None,
    max_occurrences: Optional[int] = None
) -> List[date]:
    """
    Expand a recurrence pattern into concrete dates

    Args:
        pattern: Recurrence pattern
        through: Horizon date (inclusive); required for unbounded patterns unless limit is given
        limit: Maximum number of dates to return
        max_occurrences: Hard cap (default: settings.recurrence_max_occurrences)

    Returns:
        Ordered, deduplicated list of dates

    Raises:
        ValidationError: if the pattern is unbounded and no horizon was supplied
    """
    if not pattern.is_bounded and through is None and limit is None:
        raise ValidationError(
            f"Unbounded {pattern.cadence.value} recurrence needs a horizon (through date or limit)"
        )

    cap = max_occurrences or settings.recurrence_max_occurrences
    bound = cap if limit is None else min(limit, cap)

    occurrences = iter_occurrences(pattern)
    if through is not None:
        occurrences = takewhile(lambda d: d <= through, occurrences)

    dates = list(islice(occurrences, bound))

    if len(dates) == cap and (limit is None or limit > cap):
        logger.warning(
            f"Recurrence expansion truncated at {cap} occurrences "
            f"({pattern.cadence.value} from {pattern.start_date})"
        )

    return dates


def next_occurrences(pattern: RecurrencePattern, after: date, count: int = 1) -> List[date]:
    """
    Next occurrences strictly after a date

    Args:
        pattern: Recurrence pattern
        after: Reference date (excluded)
        count: How many dates to return

    Returns:
        Up to `count` dates; fewer if the pattern terminates first
    """
    if count < 1:
        return []
    rule = build_rule(pattern)
    reference = datetime.combine(after, time.min)
    return [d.date() for d in rule.xafter(reference, count=count, inc=False)]


def occurs_on(pattern: RecurrencePattern, day: date) -> bool:
    """Whether the pattern generates `day`"""
    if day < pattern.start_date:
        return False
    instant = datetime.combine(day, time.min)
    return build_rule(pattern).after(instant, inc=True) == instant


def last_occurrence(pattern: RecurrencePattern) -> Optional[date]:
    """Final occurrence of a bounded pattern, None when unbounded"""
    if not pattern.is_bounded:
        return None
    dates = expand(pattern)
    return dates[-1] if dates else None


# =============================================================================
# Medication Administration Schedules
# =============================================================================

FREQUENCY_TIMES: Dict[str, List[time]] = {
    "OD": [time(8, 0)],
    "MANE": [time(8, 0)],
    "NOCTE": [time(22, 0)],
    "BD": [time(8, 0), time(20, 0)],
    "TDS": [time(8, 0), time(14, 0), time(20, 0)],
    "QDS": [time(6, 0), time(12, 0), time(18, 0), time(22, 0)],
    "Q4H": [time(h, 0) for h in (2, 6, 10, 14, 18, 22)],
    "Q6H": [time(h, 0) for h in (0, 6, 12, 18)],
    "Q8H": [time(6, 0), time(14, 0), time(22, 0)],
    "Q12H": [time(8, 0), time(20, 0)],
}

FREQUENCY_ALIASES: Dict[str, str] = {
    "DAILY": "OD",
    "ONCE DAILY": "OD",
    "Q24H": "OD",
    "BID": "BD",
    "TID": "TDS",
    "QID": "QDS",
    "QHS": "NOCTE",
    "QAM": "MANE",
}

SINGLE_DOSE_CODES = {"STAT", "ONCE"}
AS_NEEDED_CODES = {"PRN"}


def frequency_code(frequency: str) -> Optional[str]:
    """Normalised frequency code, or None for free text we cannot schedule"""
    code = frequency.strip().upper()
    code = FREQUENCY_ALIASES.get(code, code)
    if code in FREQUENCY_TIMES or code in SINGLE_DOSE_CODES or code in AS_NEEDED_CODES or code == "WEEKLY":
        return code
    return None


def administration_times(
    frequency: str,
    start: date,
    end: Optional[date] = None,
    through: Optional[date] = None
) -> List[datetime]:
    """
    Expand a medication frequency code into dose times within a window

    Args:
        frequency: Frequency text (OD, BD, TDS, QDS, Q6H, STAT, WEEKLY, PRN ...)
        start: First day of the administration window
        end: Last day of the window (inclusive)
        through: Horizon for open-ended orders

    Returns:
        Ordered dose datetimes; empty for PRN orders

    Raises:
        ValidationError: unknown frequency, or an open-ended window with no horizon
    """
    code = frequency_code(frequency)
    if code is None:
        raise ValidationError(f"Unknown medication frequency: {frequency}")

    if code in AS_NEEDED_CODES:
        return []

    if code in SINGLE_DOSE_CODES:
        return [datetime.combine(start, time(8, 0))]

    bounds = [d for d in (end, through) if d is not None]
    if not bounds:
        raise ValidationError(f"Open-ended {frequency} order needs an end date or horizon")
    last_day = min(bounds)

    if code == "WEEKLY":
        days = [start + timedelta(days=7 * i) for i in range(((last_day - start).days // 7) + 1)]
        return [datetime.combine(d, time(8, 0)) for d in days if d <= last_day]

    times = FREQUENCY_TIMES[code]
    doses = []
    day = start
    while day <= last_day:
        doses.extend(datetime.combine(day, t) for t in times)
        day += timedelta(days=1)

    return doses
