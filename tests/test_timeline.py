"""
Unit tests for timeline item lifecycle
"""

import pytest
from datetime import date, datetime

from wardtrack.exceptions import InvalidTransition, ItemNotFound, ValidationError
from wardtrack.modules import timeline
from wardtrack.schemas import (
    AdministrationStatus,
    Cadence,
    InvestigationItem,
    InvestigationResult,
    ItemKind,
    ItemStatus,
    MedicationItem,
    RecurrencePattern,
    ResultStatus,
    ReviewItem,
    TimelineItemBase,
)


def daily_review(start: date, **pattern) -> ReviewItem:
    return ReviewItem(
        scheduled_date=start,
        recurrence=RecurrencePattern(cadence=Cadence.DAILY, start_date=start, **pattern),
    )


class TestCompleteAndCancel:
    """Test terminal transitions"""

    def test_late_review_completion_records_delay(self):
        """Review scheduled 01-10 completed 01-12"""
        review = ReviewItem(scheduled_date=date(2024, 1, 10))

        timeline.complete(review, datetime(2024, 1, 12, 10, 0), "Wound clean", delay_reason="Consultant away")

        assert review.status == ItemStatus.COMPLETED
        assert review.completion.delay_days == 2
        assert not review.completion.delay_unexplained

    def test_late_completion_without_reason_is_flagged(self):
        """Test late completion without reason is flagged"""
        review = ReviewItem(scheduled_date=date(2024, 1, 10))

        timeline.complete(review, datetime(2024, 1, 13, 9, 0), "Seen")

        assert review.status == ItemStatus.COMPLETED
        assert review.completion.delay_unexplained

    def test_complete_twice_rejected(self):
        """Test complete twice rejected"""
        review = ReviewItem(scheduled_date=date(2024, 1, 10))
        timeline.complete(review, datetime(2024, 1, 10, 9, 0), "Seen")

        with pytest.raises(InvalidTransition):
            timeline.complete(review, datetime(2024, 1, 11, 9, 0), "Seen again")

    def test_cancelled_item_cannot_complete(self):
        """Test cancelled item cannot complete"""
        review = ReviewItem(scheduled_date=date(2024, 1, 10))
        timeline.cancel(review, "Patient transferred", datetime(2024, 1, 9, 12, 0))

        assert review.status == ItemStatus.CANCELLED
        with pytest.raises(InvalidTransition):
            timeline.complete(review, datetime(2024, 1, 10, 9, 0), "Seen")
        with pytest.raises(InvalidTransition):
            timeline.cancel(review, "Again", datetime(2024, 1, 10, 9, 0))

    def test_cancel_requires_reason(self):
        """Test cancel requires reason"""
        review = ReviewItem(scheduled_date=date(2024, 1, 10))

        with pytest.raises(ValidationError):
            timeline.cancel(review, "  ", datetime(2024, 1, 9, 12, 0))
        assert review.status == ItemStatus.SCHEDULED

    def test_recurring_review_completed_per_occurrence(self):
        """Test recurring review completed per occurrence"""
        review = daily_review(date(2024, 1, 10))

        with pytest.raises(ValidationError):
            timeline.complete(review, datetime(2024, 1, 10, 9, 0), "Seen")


class TestRecurringReviews:
    """Test occurrence logging on recurring reviews"""

    def test_bounded_pattern_completes_when_all_logged(self):
        """Test bounded pattern completes when all logged"""
        review = daily_review(date(2024, 1, 10), repeat_count=3)

        timeline.complete_occurrence(review, date(2024, 1, 10), datetime(2024, 1, 10, 9, 0), findings="Stable")
        timeline.record_missed_occurrence(review, date(2024, 1, 11), datetime(2024, 1, 11, 18, 0), "Theatre day")
        assert review.status == ItemStatus.SCHEDULED
        assert timeline.is_pattern_active(review)

        timeline.complete_occurrence(review, date(2024, 1, 12), datetime(2024, 1, 12, 9, 0))

        assert review.status == ItemStatus.COMPLETED
        assert not timeline.is_pattern_active(review)
        assert len(review.completed_occurrences) == 2
        assert len(review.missed_occurrences) == 1

    def test_occurrence_delay(self):
        """Test occurrence delay"""
        review = daily_review(date(2024, 1, 10))

        record = timeline.complete_occurrence(review, date(2024, 1, 10), datetime(2024, 1, 12, 8, 0))

        assert record.delay_days == 2
        assert record.delay_unexplained

    def test_date_outside_pattern_rejected(self):
        """Test date outside pattern rejected"""
        review = ReviewItem(
            scheduled_date=date(2024, 1, 10),
            recurrence=RecurrencePattern(cadence=Cadence.ALTERNATE_DAYS, start_date=date(2024, 1, 10)),
        )

        with pytest.raises(ValidationError):
            timeline.complete_occurrence(review, date(2024, 1, 11), datetime(2024, 1, 11, 9, 0))

    def test_occurrence_logged_once(self):
        """Test occurrence logged once"""
        review = daily_review(date(2024, 1, 10))
        timeline.complete_occurrence(review, date(2024, 1, 10), datetime(2024, 1, 10, 9, 0))

        with pytest.raises(ValidationError):
            timeline.record_missed_occurrence(review, date(2024, 1, 10), datetime(2024, 1, 10, 20, 0))

    def test_outstanding_occurrences(self):
        """Test outstanding occurrences"""
        review = daily_review(date(2024, 1, 10))
        timeline.complete_occurrence(review, date(2024, 1, 11), datetime(2024, 1, 11, 9, 0))

        assert timeline.outstanding_occurrences(review, date(2024, 1, 13)) == [
            date(2024, 1, 10),
            date(2024, 1, 12),
            date(2024, 1, 13),
        ]

    def test_cancel_ends_pattern(self):
        """Test cancel ends pattern"""
        review = daily_review(date(2024, 1, 10))
        timeline.cancel(review, "Discharged", datetime(2024, 1, 12, 9, 0))

        assert timeline.outstanding_occurrences(review, date(2024, 1, 20)) == []
        with pytest.raises(InvalidTransition):
            timeline.complete_occurrence(review, date(2024, 1, 13), datetime(2024, 1, 13, 9, 0))

    def test_review_without_pattern_has_no_occurrences_to_log(self):
        """Test review without pattern has no occurrences to log"""
        review = ReviewItem(scheduled_date=date(2024, 1, 10))

        with pytest.raises(ValidationError):
            timeline.complete_occurrence(review, date(2024, 1, 10), datetime(2024, 1, 10, 9, 0))


class TestInvestigationsAndMedications:
    """Test result logs and dose records"""

    def test_results_accumulate_after_completion(self):
        """Test results accumulate after completion"""
        investigation = InvestigationItem(title="FBC", scheduled_date=date(2024, 1, 10), target_value="Hb > 10")
        first = InvestigationResult(recorded_at=datetime(2024, 1, 10, 11, 0), result="Hb 8.9", status=ResultStatus.ABNORMAL)
        second = InvestigationResult(recorded_at=datetime(2024, 1, 12, 11, 0), result="Hb 10.4")

        timeline.record_result(investigation, first)
        timeline.complete(investigation, datetime(2024, 1, 10, 11, 0), "Sent")
        timeline.record_result(investigation, second)

        assert investigation.latest_result.result == "Hb 10.4"
        assert len(investigation.results) == 2

    def test_no_results_on_cancelled_investigation(self):
        """Test no results on cancelled investigation"""
        investigation = InvestigationItem(title="CRP", scheduled_date=date(2024, 1, 10))
        timeline.cancel(investigation, "Duplicate request", datetime(2024, 1, 9, 9, 0))

        with pytest.raises(InvalidTransition):
            timeline.record_result(
                investigation, InvestigationResult(recorded_at=datetime(2024, 1, 10, 9, 0), result="12")
            )

    def test_dose_recorded_once(self):
        """Test dose recorded once"""
        medication = MedicationItem(
            medication_name="Ceftriaxone",
            dosage="1g",
            frequency="OD",
            route="IV",
            scheduled_date=date(2024, 1, 10),
            end_date=date(2024, 1, 12),
        )
        doses = timeline.schedule_administrations(medication, date(2024, 1, 20))
        assert len(doses) == 3

        entry = timeline.record_administration(
            medication, doses[0].id, AdministrationStatus.GIVEN, actual_at=datetime(2024, 1, 10, 9, 30)
        )

        assert entry.delay_minutes == 90
        with pytest.raises(InvalidTransition):
            timeline.record_administration(
                medication, doses[0].id, AdministrationStatus.MISSED, actual_at=datetime(2024, 1, 10, 10, 0)
            )
        with pytest.raises(ItemNotFound):
            timeline.record_administration(medication, "dose_missing", AdministrationStatus.REFUSED)

    def test_doses_outside_window_rejected(self):
        """Test doses outside window rejected"""
        medication = MedicationItem(
            medication_name="Enoxaparin",
            dosage="40mg",
            frequency="OD",
            route="SC",
            scheduled_date=date(2024, 1, 10),
            end_date=date(2024, 1, 12),
        )

        with pytest.raises(ValidationError):
            timeline.add_administrations(medication, [datetime(2024, 1, 13, 8, 0)])
        assert medication.administrations == []


class TestKindDispatch:
    """Test exhaustive item kind resolution"""

    def test_known_kinds(self):
        """Test known kinds"""
        assert timeline.kind_of(ReviewItem(scheduled_date=date(2024, 1, 10))) == ItemKind.REVIEW

    def test_unknown_item_type(self):
        """Test unknown item type"""
        with pytest.raises(TypeError):
            timeline.kind_of(TimelineItemBase(scheduled_date=date(2024, 1, 10)))
