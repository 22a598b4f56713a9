"""
WardTrack Treatment Plan Aggregate
Single owner of every mutation on a plan and its timeline items
"""

import logging
from datetime import date, datetime, time, timedelta
from typing import Any, Dict, List, Optional, Union

from pydantic import TypeAdapter, ValidationError as PydanticValidationError

from wardtrack.clock import Clock
from wardtrack.config import settings
from wardtrack.exceptions import InvalidTransition, ItemNotFound, ValidationError
from wardtrack.modules import timeline
from wardtrack.modules.overdue import OverdueScanner
from wardtrack.modules.recurrence import frequency_code
from wardtrack.schemas import (
    AdministrationStatus,
    AssigneeRole,
    Cadence,
    DischargeExtension,
    DischargeItem,
    DischargeType,
    InvestigationItem,
    InvestigationResult,
    InvestigationType,
    ItemKind,
    ItemStatus,
    MedicationAdministration,
    MedicationItem,
    MedicationRoute,
    MissedReview,
    OverdueReport,
    PlanStatus,
    ProcedureItem,
    ProcedureType,
    ResultStatus,
    ReviewItem,
    ReviewOccurrence,
    TimelineItem,
    TimelineItemBase,
    TreatmentPlan,
    Weekday,
)

logger = logging.getLogger(__name__)

_ITEM_ADAPTER = TypeAdapter(TimelineItem)


def _wrap_validation(exc: PydanticValidationError, what: str) -> ValidationError:
    return ValidationError(
        f"Invalid {what}: {exc.error_count()} error(s)",
        errors=exc.errors(include_url=False, include_context=False),
    )


class TreatmentPlanAggregate:
    """
    Treatment plan aggregate

    All item creation and lifecycle transitions go through here so the plan
    invariants (ownership, unique ids, one active discharge target) hold.
    """

    def __init__(self, plan: TreatmentPlan, clock: Clock):
        self.plan = plan
        self.clock = clock

    @property
    def id(self) -> str:
        return self.plan.id

    @property
    def status(self) -> PlanStatus:
        return self.plan.status

    @property
    def items(self) -> List[TimelineItemBase]:
        return list(self.plan.items)

    def _touch(self) -> datetime:
        now = self.clock.now()
        self.plan.updated_at = now
        return now

    # =========================================================================
    # Plan Lifecycle
    # =========================================================================

    def _move_to(self, target: PlanStatus, action: str) -> TreatmentPlan:
        current = self.plan.status
        if target.rank <= current.rank:
            raise InvalidTransition("plan", current.value, action)
        self.plan.status = target
        self._touch()
        logger.info(f"Plan {self.plan.id}: {current.value} → {target.value}")
        return self.plan

    def activate(self) -> TreatmentPlan:
        return self._move_to(PlanStatus.ACTIVE, "activate")

    def complete_plan(self) -> TreatmentPlan:
        return self._move_to(PlanStatus.COMPLETED, "complete")

    def archive(self) -> TreatmentPlan:
        return self._move_to(PlanStatus.ARCHIVED, "archive")

    def transition_to(self, status: PlanStatus) -> TreatmentPlan:
        """Move the plan to a named status (API entry point)"""
        if status == PlanStatus.ACTIVE:
            return self.activate()
        elif status == PlanStatus.COMPLETED:
            return self.complete_plan()
        elif status == PlanStatus.ARCHIVED:
            return self.archive()
        raise InvalidTransition("plan", self.plan.status.value, f"move to {status.value}")

    def _require_open(self, action: str) -> None:
        if self.plan.status in (PlanStatus.COMPLETED, PlanStatus.ARCHIVED):
            raise InvalidTransition("plan", self.plan.status.value, action)

    def _require_not_archived(self, action: str) -> None:
        if self.plan.status == PlanStatus.ARCHIVED:
            raise InvalidTransition("plan", self.plan.status.value, action)

    # =========================================================================
    # Item Creation
    # =========================================================================

    def add_item(self, item: Union[TimelineItemBase, Dict[str, Any]]) -> TimelineItemBase:
        """
        Validate and attach a timeline item

        Args:
            item: Item model or raw payload (dict with a `kind` discriminator)

        Returns:
            The stored item, stamped with this plan's id

        Raises:
            InvalidTransition: plan completed or archived
            ValidationError: invalid payload, foreign plan id, duplicate id,
                or a second active discharge target
        """
        self._require_open("add items to")

        data = item.model_dump() if isinstance(item, TimelineItemBase) else dict(item)
        if data.get("plan_id") not in (None, self.plan.id):
            raise ValidationError(f"Item belongs to plan {data['plan_id']}, not {self.plan.id}")

        now = self.clock.now()
        data["plan_id"] = self.plan.id
        data["created_at"] = data.get("created_at") or now
        data["updated_at"] = now

        try:
            stored = _ITEM_ADAPTER.validate_python(data)
        except PydanticValidationError as e:
            raise _wrap_validation(e, f"{data.get('kind', 'timeline')} item") from e

        if any(existing.id == stored.id for existing in self.plan.items):
            raise ValidationError(f"Item {stored.id} already exists in plan {self.plan.id}")

        if (
            timeline.kind_of(stored) == ItemKind.DISCHARGE
            and stored.status == ItemStatus.SCHEDULED
            and self.active_discharge_target() is not None
        ):
            raise ValidationError("Plan already has an active discharge target; move it instead")

        self.plan.items.append(stored)
        self.plan.updated_at = now
        logger.info(f"Plan {self.plan.id}: added {stored.kind} {stored.id} for {stored.scheduled_date}")
        return stored

    def schedule_review(
        self,
        scheduled_date: date,
        cadence: Cadence = Cadence.ONCE,
        end_date: Optional[date] = None,
        repeat_count: Optional[int] = None,
        days_of_week: Optional[List[Weekday]] = None,
        title: Optional[str] = None,
        scheduled_time: Optional[time] = None,
        assigned_to: Optional[str] = None,
        assigned_role: Optional[AssigneeRole] = None,
        notes: Optional[str] = None
    ) -> ReviewItem:
        """Schedule a ward review, recurring unless cadence is once"""
        recurrence = None
        if cadence != Cadence.ONCE or end_date or repeat_count or days_of_week:
            recurrence = {
                "cadence": cadence,
                "start_date": scheduled_date,
                "end_date": end_date,
                "repeat_count": repeat_count,
                "days_of_week": days_of_week or [],
            }

        return self.add_item({
            "kind": ItemKind.REVIEW.value,
            "scheduled_date": scheduled_date,
            "scheduled_time": scheduled_time,
            "recurrence": recurrence,
            "title": title,
            "assigned_to": assigned_to,
            "assigned_role": assigned_role,
            "notes": notes,
        })

    def order_investigation(
        self,
        title: str,
        scheduled_date: date,
        investigation_type: InvestigationType = InvestigationType.LAB,
        target_value: Optional[str] = None,
        target_range: Optional[str] = None,
        **fields
    ) -> InvestigationItem:
        return self.add_item({
            "kind": ItemKind.INVESTIGATION.value,
            "title": title,
            "scheduled_date": scheduled_date,
            "investigation_type": investigation_type,
            "target_value": target_value,
            "target_range": target_range,
            **fields,
        })

    def schedule_procedure(
        self,
        title: str,
        scheduled_date: date,
        procedure_type: ProcedureType = ProcedureType.MINOR,
        surgeon: Optional[str] = None,
        location: Optional[str] = None,
        **fields
    ) -> ProcedureItem:
        return self.add_item({
            "kind": ItemKind.PROCEDURE.value,
            "title": title,
            "scheduled_date": scheduled_date,
            "procedure_type": procedure_type,
            "surgeon": surgeon,
            "location": location,
            **fields,
        })

    def prescribe_medication(
        self,
        medication_name: str,
        dosage: str,
        frequency: str,
        start_date: date,
        end_date: Optional[date] = None,
        route: MedicationRoute = MedicationRoute.ORAL,
        schedule_through: Optional[date] = None,
        **fields
    ) -> MedicationItem:
        """
        Prescribe a medication and generate its pending doses

        Doses are generated through the end date, or `schedule_through`, or the
        default horizon for open-ended orders. PRN and free-text frequencies get
        no generated doses.
        """
        item = self.add_item({
            "kind": ItemKind.MEDICATION.value,
            "medication_name": medication_name,
            "dosage": dosage,
            "frequency": frequency,
            "route": route,
            "scheduled_date": start_date,
            "end_date": end_date,
            **fields,
        })

        if frequency_code(frequency) is None:
            logger.info(f"Medication {item.id}: frequency '{frequency}' not schedulable; no doses generated")
            return item

        through = schedule_through or start_date + timedelta(days=settings.default_horizon_days)
        doses = timeline.schedule_administrations(item, through)
        logger.debug(f"Medication {item.id}: {len(doses)} doses scheduled through {through}")
        return item

    # =========================================================================
    # Discharge Target
    # =========================================================================

    def set_discharge_target(
        self,
        target_date: date,
        reason: Optional[str] = None,
        set_by: Optional[str] = None,
        targets_not_met: Optional[List[str]] = None,
        criteria: Optional[List[str]] = None,
        discharge_type: DischargeType = DischargeType.HOME,
        destination: Optional[str] = None
    ) -> DischargeItem:
        """
        Set the discharge target, superseding any active one

        A first target is created as a discharge item. Setting a target while
        one is active moves it and appends an extension record.
        """
        active = self.active_discharge_target()
        if active is not None:
            return self.extend_discharge(target_date, reason, targets_not_met, set_by)

        return self.add_item({
            "kind": ItemKind.DISCHARGE.value,
            "scheduled_date": target_date,
            "discharge_type": discharge_type,
            "destination": destination,
            "criteria": criteria or [],
        })

    def extend_discharge(
        self,
        new_date: date,
        reason: Optional[str],
        targets_not_met: Optional[List[str]] = None,
        extended_by: Optional[str] = None
    ) -> DischargeItem:
        """Move the active discharge target and record the extension"""
        self._require_open("extend discharge of")

        active = self.active_discharge_target()
        if active is None:
            raise ValidationError(f"Plan {self.plan.id} has no active discharge target")
        if not (reason or "").strip():
            raise ValidationError("Moving a discharge target requires a reason")
        if new_date == active.scheduled_date:
            raise ValidationError(f"Discharge target is already {new_date}")

        now = self._touch()
        previous = active.scheduled_date
        active.extensions.append(DischargeExtension(
            new_date=new_date,
            previous_date=previous,
            added_days=(new_date - previous).days,
            reason=reason,
            targets_not_met=targets_not_met or active.criteria_pending,
            extended_by=extended_by,
            extended_at=now,
        ))
        active.scheduled_date = new_date
        active.updated_at = now

        logger.info(f"Plan {self.plan.id}: discharge moved {previous} → {new_date} ({reason})")
        return active

    def mark_discharge_criterion_met(self, criterion: str) -> DischargeItem:
        active = self.active_discharge_target()
        if active is None:
            raise ValidationError(f"Plan {self.plan.id} has no active discharge target")
        if criterion not in active.criteria:
            raise ValidationError(f"'{criterion}' is not a discharge criterion for plan {self.plan.id}")
        if criterion not in active.criteria_met:
            active.criteria_met.append(criterion)
            active.updated_at = self._touch()
        return active

    # =========================================================================
    # Item Transitions
    # =========================================================================

    def complete_item(
        self,
        item_id: str,
        actual_at: datetime,
        outcome: Optional[str] = None,
        completed_by: Optional[str] = None,
        delay_reason: Optional[str] = None
    ) -> TimelineItemBase:
        self._require_not_archived("complete items of")
        item = timeline.complete(self.get_item(item_id), actual_at, outcome, completed_by, delay_reason)
        self._touch()
        return item

    def cancel_item(self, item_id: str, reason: str, cancelled_by: Optional[str] = None) -> TimelineItemBase:
        self._require_not_archived("cancel items of")
        item = timeline.cancel(self.get_item(item_id), reason, self.clock.now(), cancelled_by)
        self._touch()
        return item

    def complete_review_occurrence(
        self,
        item_id: str,
        occurrence_date: date,
        completed_at: datetime,
        findings: Optional[str] = None,
        actions_taken: Optional[str] = None,
        next_steps: Optional[str] = None,
        completed_by: Optional[str] = None,
        delay_reason: Optional[str] = None
    ) -> ReviewOccurrence:
        self._require_not_archived("log reviews on")
        record = timeline.complete_occurrence(
            self.get_item(item_id),
            occurrence_date,
            completed_at,
            findings=findings,
            actions_taken=actions_taken,
            next_steps=next_steps,
            completed_by=completed_by,
            delay_reason=delay_reason,
        )
        self._touch()
        return record

    def record_missed_review(
        self,
        item_id: str,
        occurrence_date: date,
        reason: Optional[str] = None
    ) -> MissedReview:
        self._require_not_archived("log reviews on")
        record = timeline.record_missed_occurrence(
            self.get_item(item_id), occurrence_date, self.clock.now(), reason
        )
        self._touch()
        return record

    def record_investigation_result(
        self,
        item_id: str,
        result: str,
        value: Optional[str] = None,
        unit: Optional[str] = None,
        status: ResultStatus = ResultStatus.NORMAL,
        notes: Optional[str] = None,
        recorded_at: Optional[datetime] = None
    ) -> InvestigationResult:
        self._require_not_archived("record results on")
        try:
            entry = InvestigationResult(
                recorded_at=recorded_at or self.clock.now(),
                result=result,
                value=value,
                unit=unit,
                status=status,
                notes=notes,
            )
        except PydanticValidationError as e:
            raise _wrap_validation(e, "investigation result") from e

        timeline.record_result(self.get_item(item_id), entry)
        self._touch()
        return entry

    def record_administration(
        self,
        item_id: str,
        administration_id: str,
        status: AdministrationStatus = AdministrationStatus.GIVEN,
        actual_at: Optional[datetime] = None,
        administered_by: Optional[str] = None,
        delay_reason: Optional[str] = None,
        notes: Optional[str] = None
    ) -> MedicationAdministration:
        self._require_not_archived("record doses on")
        if status == AdministrationStatus.GIVEN and actual_at is None:
            actual_at = self.clock.now()
        entry = timeline.record_administration(
            self.get_item(item_id),
            administration_id,
            status,
            actual_at=actual_at,
            administered_by=administered_by,
            delay_reason=delay_reason,
            notes=notes,
        )
        self._touch()
        return entry

    # =========================================================================
    # Read-only Views (computed per call)
    # =========================================================================

    def get_item(self, item_id: str) -> TimelineItemBase:
        for item in self.plan.items:
            if item.id == item_id:
                return item
        raise ItemNotFound(f"Item {item_id} not found in plan {self.plan.id}")

    def _of_kind(self, kind: ItemKind) -> List[TimelineItemBase]:
        return [item for item in self.plan.items if timeline.kind_of(item) == kind]

    def reviews(self) -> List[ReviewItem]:
        return self._of_kind(ItemKind.REVIEW)

    def investigations(self) -> List[InvestigationItem]:
        return self._of_kind(ItemKind.INVESTIGATION)

    def procedures(self) -> List[ProcedureItem]:
        return self._of_kind(ItemKind.PROCEDURE)

    def medications(self) -> List[MedicationItem]:
        return self._of_kind(ItemKind.MEDICATION)

    def discharges(self) -> List[DischargeItem]:
        return self._of_kind(ItemKind.DISCHARGE)

    def active_discharge_target(self) -> Optional[DischargeItem]:
        for item in self.discharges():
            if item.status == ItemStatus.SCHEDULED:
                return item
        return None

    def overdue(self, now: Optional[datetime] = None) -> OverdueReport:
        return OverdueScanner(self.clock).scan(self.plan, now)
