"""
WardTrack Time Source
Injected clock so overdue and delay computations are deterministic
"""

from datetime import datetime, timedelta
from typing import Protocol


class Clock(Protocol):
    def now(self) -> datetime:
        ...


class SystemClock:
    """Wall clock (naive local time, matching stored schedule times)"""

    def now(self) -> datetime:
        return datetime.now()


class FixedClock:
    """Clock pinned to an instant; tests advance it explicitly"""

    def __init__(self, instant: datetime):
        self.instant = instant

    def now(self) -> datetime:
        return self.instant

    def advance(self, **kwargs) -> datetime:
        self.instant = self.instant + timedelta(**kwargs)
        return self.instant
