"""
Unit tests for the overdue scanner
"""

from datetime import date, datetime, time

from wardtrack.modules.overdue import OverdueScanner
from wardtrack.modules.treatment_plan import TreatmentPlanAggregate
from wardtrack.schemas import Cadence, PlanStatus, TreatmentPlan


class TestPlanScan:
    """Test per-plan classification"""

    def test_lists_are_disjoint_by_kind(self, aggregate, clock):
        """Test lists are disjoint by kind"""
        review = aggregate.schedule_review(date(2024, 1, 12))
        procedure = aggregate.schedule_procedure("Fasciotomy", date(2024, 1, 14), surgeon="Dr Okafor")
        aggregate.order_investigation("Wound swab", date(2024, 1, 11))
        aggregate.set_discharge_target(date(2024, 1, 13))

        report = OverdueScanner(clock).scan(aggregate.plan)

        assert [e.item_id for e in report.reviews] == [review.id]
        assert [e.item_id for e in report.procedures] == [procedure.id]
        assert report.medications == []
        assert report.total == 2

    def test_completed_and_cancelled_items_drop_out(self, aggregate, clock):
        """Test completed and cancelled items drop out"""
        review = aggregate.schedule_review(date(2024, 1, 12))
        procedure = aggregate.schedule_procedure("Fasciotomy", date(2024, 1, 14))
        scanner = OverdueScanner(clock)
        assert scanner.scan(aggregate.plan).total == 2

        aggregate.complete_item(review.id, datetime(2024, 1, 15, 8, 0), "Seen", delay_reason="Bed crisis")
        aggregate.cancel_item(procedure.id, "Not indicated")

        assert scanner.scan(aggregate.plan).total == 0

    def test_future_items_not_overdue(self, aggregate, clock):
        """Test future items not overdue"""
        aggregate.schedule_review(date(2024, 1, 15), scheduled_time=time(10, 0))
        aggregate.schedule_procedure("Cast change", date(2024, 1, 16))

        assert OverdueScanner(clock).scan(aggregate.plan).total == 0

    def test_recurring_review_reported_per_occurrence(self, aggregate, clock):
        """Test recurring review reported per occurrence"""
        review = aggregate.schedule_review(date(2024, 1, 12), Cadence.DAILY)
        aggregate.complete_review_occurrence(review.id, date(2024, 1, 12), datetime(2024, 1, 12, 9, 0))

        report = OverdueScanner(clock).scan(aggregate.plan)

        assert [e.occurrence_date for e in report.reviews] == [
            date(2024, 1, 13),
            date(2024, 1, 14),
            date(2024, 1, 15),
        ]
        assert report.reviews[0].delay_days == 2

    def test_pending_doses_before_now(self, aggregate, clock):
        """Test pending doses before now"""
        medication = aggregate.prescribe_medication(
            "Metronidazole", "500mg", "BD", date(2024, 1, 14), end_date=date(2024, 1, 15), route="IV"
        )
        scanner = OverdueScanner(clock)

        report = scanner.scan(aggregate.plan)
        assert len(report.medications) == 3

        first, second, third, _ = medication.administrations
        aggregate.record_administration(medication.id, first.id, actual_at=datetime(2024, 1, 14, 8, 15))

        report = scanner.scan(aggregate.plan)
        assert [e.administration_id for e in report.medications] == [second.id, third.id]

    def test_scan_uses_explicit_now(self, aggregate, clock):
        """Test scan uses explicit now"""
        aggregate.schedule_procedure("Fasciotomy", date(2024, 1, 20))

        report = OverdueScanner(clock).scan(aggregate.plan, now=datetime(2024, 1, 22, 12, 0))

        assert report.as_of == datetime(2024, 1, 22, 12, 0)
        assert report.procedures[0].delay_days == 2


class TestActivePlans:
    """Test scanning across plans"""

    def test_only_active_plans_scanned(self, clock):
        """Test only active plans scanned"""
        plans = []
        for index, plan_status in enumerate([PlanStatus.ACTIVE, PlanStatus.DRAFT, PlanStatus.COMPLETED]):
            plan = TreatmentPlan(
                id=f"plan_{index}",
                patient_id=f"patient_{index}",
                diagnosis="Cellulitis",
                admission_date=datetime(2024, 1, 8),
            )
            aggregate = TreatmentPlanAggregate(plan, clock)
            aggregate.schedule_procedure("Incision and drainage", date(2024, 1, 10))
            plan.status = plan_status
            plans.append(plan)

        report = OverdueScanner(clock).scan_active(plans)

        assert [e.plan_id for e in report.procedures] == ["plan_0"]
