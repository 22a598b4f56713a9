"""
Unit tests for delay calculation and overdue classification
"""

from datetime import date, datetime, time

from wardtrack.modules.delay import (
    current_delay,
    delay_days,
    is_delay_unexplained,
    is_overdue,
    whole_days_between,
)
from wardtrack.schemas import ItemStatus, ProcedureItem


class TestDelayDays:
    """Test whole-day delay arithmetic"""

    def test_truncates_partial_days(self):
        """Test truncates partial days"""
        assert whole_days_between(datetime(2024, 1, 12, 23, 59), datetime(2024, 1, 10)) == 2

    def test_negative_span_truncates_toward_zero(self):
        """Test negative span truncates toward zero"""
        assert whole_days_between(datetime(2024, 1, 10), datetime(2024, 1, 11, 12, 0)) == -1

    def test_never_negative(self):
        """Test delay is never negative"""
        assert delay_days(datetime(2024, 1, 10), datetime(2024, 1, 8)) == 0

    def test_same_day_is_on_time(self):
        """Test same day is on time"""
        assert delay_days(datetime(2024, 1, 10), datetime(2024, 1, 10, 17, 0)) == 0

    def test_delay_grows_with_actual_date(self):
        """Test delay grows with actual date"""
        scheduled = datetime(2024, 1, 10)
        delays = [delay_days(scheduled, datetime(2024, 1, d)) for d in range(10, 16)]

        assert delays == sorted(delays)
        assert delays[-1] == 5


class TestOverdue:
    """Test derived overdue classification"""

    def test_date_only_item_due_from_midnight(self):
        """Test date only item due from midnight"""
        item = ProcedureItem(title="Wound debridement", scheduled_date=date(2024, 1, 10))

        assert not is_overdue(item, datetime(2024, 1, 10, 0, 0))
        assert is_overdue(item, datetime(2024, 1, 10, 0, 1))

    def test_scheduled_time_respected(self):
        """Test scheduled time respected"""
        item = ProcedureItem(title="Cast change", scheduled_date=date(2024, 1, 10), scheduled_time=time(14, 0))

        assert not is_overdue(item, datetime(2024, 1, 10, 13, 59))
        assert is_overdue(item, datetime(2024, 1, 10, 14, 1))

    def test_terminal_items_never_overdue(self):
        """Test terminal items never overdue"""
        item = ProcedureItem(title="Cast change", scheduled_date=date(2024, 1, 1))
        now = datetime(2024, 1, 15)

        item.status = ItemStatus.COMPLETED
        assert not is_overdue(item, now)

        item.status = ItemStatus.CANCELLED
        assert not is_overdue(item, now)

    def test_current_delay_for_open_and_cancelled_items(self):
        """Test current delay for open and cancelled items"""
        item = ProcedureItem(title="Cast change", scheduled_date=date(2024, 1, 10))

        assert current_delay(item, datetime(2024, 1, 13, 8, 0)) == 3

        item.status = ItemStatus.CANCELLED
        assert current_delay(item, datetime(2024, 1, 13, 8, 0)) == 0


class TestUnexplainedDelay:
    """Test soft delay-reason constraint"""

    def test_late_without_reason_is_flagged(self):
        """Test late without reason is flagged"""
        assert is_delay_unexplained(2, None)
        assert is_delay_unexplained(2, "   ")

    def test_reason_or_no_delay_not_flagged(self):
        """Test reason or no delay not flagged"""
        assert not is_delay_unexplained(2, "Theatre list overran")
        assert not is_delay_unexplained(0, None)
