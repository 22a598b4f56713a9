"""
WardTrack Overdue Scanner
Classifies pending reviews, procedures and medication doses past their schedule
"""

import logging
from datetime import datetime, time
from typing import Iterable, List, Optional

from wardtrack.clock import Clock
from wardtrack.modules.delay import delay_days, is_overdue
from wardtrack.modules.timeline import kind_of, outstanding_occurrences
from wardtrack.schemas import (
    AdministrationStatus,
    ItemKind,
    ItemStatus,
    MedicationItem,
    OverdueEntry,
    OverdueReport,
    PlanStatus,
    ReviewItem,
    TimelineItemBase,
    TreatmentPlan,
)

logger = logging.getLogger(__name__)


class OverdueScanner:
    """
    Computes overdue lists on demand

    Nothing is cached: every scan re-reads the plan against the given instant.
    """

    def __init__(self, clock: Clock):
        self.clock = clock

    def scan(self, plan: TreatmentPlan, now: Optional[datetime] = None) -> OverdueReport:
        """
        Scan one plan

        Args:
            plan: Treatment plan
            now: Reference instant (default: clock)

        Returns:
            Report with disjoint review, procedure and medication lists
        """
        now = now or self.clock.now()
        report = OverdueReport(as_of=now)

        for item in plan.items:
            kind = kind_of(item)
            if kind == ItemKind.REVIEW:
                report.reviews.extend(self._review_entries(plan, item, now))
            elif kind == ItemKind.PROCEDURE:
                if is_overdue(item, now):
                    report.procedures.append(self._entry(plan, item, item.scheduled_at, now))
            elif kind == ItemKind.MEDICATION:
                report.medications.extend(self._dose_entries(plan, item, now))
            elif kind in (ItemKind.INVESTIGATION, ItemKind.DISCHARGE):
                continue
            else:
                raise TypeError(f"Unhandled item kind: {kind}")

        for entries in (report.reviews, report.procedures, report.medications):
            entries.sort(key=lambda e: e.scheduled_at)

        return report

    def scan_active(self, plans: Iterable[TreatmentPlan], now: Optional[datetime] = None) -> OverdueReport:
        """Scan every active plan against a single instant"""
        now = now or self.clock.now()
        report = OverdueReport(as_of=now)
        scanned = 0

        for plan in plans:
            if plan.status != PlanStatus.ACTIVE:
                continue
            report.extend(self.scan(plan, now))
            scanned += 1

        logger.info(f"Overdue scan: {scanned} active plans, {report.total} overdue entries")
        return report

    # -------------------------------------------------------------------------

    @staticmethod
    def _entry(
        plan: TreatmentPlan,
        item: TimelineItemBase,
        due: datetime,
        now: datetime,
        **extra
    ) -> OverdueEntry:
        return OverdueEntry(
            plan_id=plan.id,
            item_id=item.id,
            kind=kind_of(item),
            title=item.display_name,
            scheduled_at=due,
            delay_days=delay_days(due, now),
            assigned_to=item.assigned_to,
            **extra
        )

    def _review_entries(self, plan: TreatmentPlan, item: ReviewItem, now: datetime) -> List[OverdueEntry]:
        if item.recurrence is None:
            return [self._entry(plan, item, item.scheduled_at, now)] if is_overdue(item, now) else []

        entries = []
        for occurrence in outstanding_occurrences(item, now.date()):
            due = datetime.combine(occurrence, item.scheduled_time or time.min)
            if due < now:
                entries.append(self._entry(plan, item, due, now, occurrence_date=occurrence))
        return entries

    def _dose_entries(self, plan: TreatmentPlan, item: MedicationItem, now: datetime) -> List[OverdueEntry]:
        if item.status != ItemStatus.SCHEDULED:
            return []
        return [
            self._entry(plan, item, dose.scheduled_at, now, administration_id=dose.id)
            for dose in item.administrations
            if dose.status == AdministrationStatus.PENDING and dose.scheduled_at < now
        ]
