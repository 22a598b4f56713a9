"""
WardTrack Timeline Item Lifecycle
Scheduled → Completed | Cancelled transitions, recurring review occurrences,
investigation result logs and medication administration records
"""

import logging
from datetime import date, datetime, time
from itertools import takewhile
from typing import Iterable, List, Optional, Set

from wardtrack.exceptions import InvalidTransition, ItemNotFound, ValidationError
from wardtrack.modules.delay import delay_days, is_delay_unexplained
from wardtrack.modules.recurrence import (
    administration_times,
    expand,
    iter_occurrences,
    occurs_on,
)
from wardtrack.schemas import (
    AdministrationStatus,
    CancellationRecord,
    CompletionRecord,
    DischargeItem,
    InvestigationItem,
    InvestigationResult,
    ItemKind,
    ItemStatus,
    MedicationAdministration,
    MedicationItem,
    MissedReview,
    ProcedureItem,
    ResultStatus,
    ReviewItem,
    ReviewOccurrence,
    TimelineItemBase,
)

logger = logging.getLogger(__name__)


def kind_of(item: TimelineItemBase) -> ItemKind:
    """Resolve the kind of a timeline item; unknown item types are a programming error"""
    if isinstance(item, ReviewItem):
        return ItemKind.REVIEW
    elif isinstance(item, InvestigationItem):
        return ItemKind.INVESTIGATION
    elif isinstance(item, ProcedureItem):
        return ItemKind.PROCEDURE
    elif isinstance(item, MedicationItem):
        return ItemKind.MEDICATION
    elif isinstance(item, DischargeItem):
        return ItemKind.DISCHARGE
    raise TypeError(f"Unknown timeline item type: {type(item).__name__}")


def _require_scheduled(item: TimelineItemBase, action: str) -> None:
    if item.status != ItemStatus.SCHEDULED:
        raise InvalidTransition(kind_of(item).value, item.status.value, action)


# =============================================================================
# Complete / Cancel
# =============================================================================

def complete(
    item: TimelineItemBase,
    actual_at: datetime,
    outcome: Optional[str] = None,
    completed_by: Optional[str] = None,
    delay_reason: Optional[str] = None
) -> TimelineItemBase:
    """
    Complete a scheduled item

    Args:
        item: Timeline item (must be scheduled)
        actual_at: When the work was actually done
        outcome: Findings / outcome notes
        completed_by: Clinician recording the completion
        delay_reason: Why the work was late, if it was

    Returns:
        The same item, now completed

    Raises:
        InvalidTransition: item already completed or cancelled
        ValidationError: item is a recurring review (complete occurrences instead)
    """
    _require_scheduled(item, "complete")

    if isinstance(item, ReviewItem) and item.is_recurring:
        raise ValidationError(
            f"Review {item.id} recurs {item.recurrence.cadence.value}; complete individual occurrences"
        )

    days = delay_days(item.scheduled_at, actual_at)
    unexplained = is_delay_unexplained(days, delay_reason)
    if unexplained:
        logger.warning(f"{kind_of(item).value} {item.id} completed {days}d late with no delay reason")

    item.completion = CompletionRecord(
        actual_at=actual_at,
        completed_by=completed_by,
        outcome=outcome,
        delay_reason=delay_reason,
        delay_days=days,
        delay_unexplained=unexplained,
    )
    item.status = ItemStatus.COMPLETED
    item.updated_at = actual_at

    logger.debug(f"Completed {kind_of(item).value} {item.id} (delay {days}d)")
    return item


def cancel(
    item: TimelineItemBase,
    reason: str,
    at: datetime,
    cancelled_by: Optional[str] = None
) -> TimelineItemBase:
    """Cancel a scheduled item; for a recurring review this ends the whole pattern"""
    _require_scheduled(item, "cancel")

    if not (reason or "").strip():
        raise ValidationError("Cancellation requires a reason")

    item.cancellation = CancellationRecord(cancelled_at=at, cancelled_by=cancelled_by, reason=reason)
    item.status = ItemStatus.CANCELLED
    item.updated_at = at

    logger.debug(f"Cancelled {kind_of(item).value} {item.id}: {reason}")
    return item


# =============================================================================
# Recurring Reviews
# =============================================================================

def logged_occurrences(item: ReviewItem) -> Set[date]:
    """Occurrence dates already completed or marked missed"""
    completed = {o.occurrence_date for o in item.completed_occurrences}
    missed = {m.occurrence_date for m in item.missed_occurrences}
    return completed | missed


def _require_pattern(item: TimelineItemBase) -> ReviewItem:
    if not isinstance(item, ReviewItem) or item.recurrence is None:
        raise ValidationError(f"Item {item.id} has no recurrence pattern")
    return item


def _check_occurrence(item: ReviewItem, occurrence_date: date) -> None:
    if not occurs_on(item.recurrence, occurrence_date):
        raise ValidationError(
            f"{occurrence_date} is not an occurrence of review {item.id} "
            f"({item.recurrence.cadence.value} from {item.recurrence.start_date})"
        )
    if occurrence_date in logged_occurrences(item):
        raise ValidationError(f"Occurrence {occurrence_date} of review {item.id} already logged")


def _close_if_exhausted(item: ReviewItem, at: datetime, completed_by: Optional[str] = None) -> None:
    """A bounded pattern with every occurrence logged completes the review"""
    if not item.recurrence.is_bounded:
        return

    expected = expand(item.recurrence)
    if set(expected) - logged_occurrences(item):
        return

    item.status = ItemStatus.COMPLETED
    item.completion = CompletionRecord(
        actual_at=at,
        completed_by=completed_by,
        outcome=f"{len(item.completed_occurrences)} of {len(expected)} occurrences completed",
    )
    logger.info(f"Review {item.id} pattern exhausted; marked completed")


def complete_occurrence(
    item: TimelineItemBase,
    occurrence_date: date,
    actual_at: datetime,
    findings: Optional[str] = None,
    actions_taken: Optional[str] = None,
    next_steps: Optional[str] = None,
    completed_by: Optional[str] = None,
    delay_reason: Optional[str] = None
) -> ReviewOccurrence:
    """
    Log completion of one occurrence of a recurring review

    Args:
        item: Review carrying a recurrence pattern
        occurrence_date: Generated occurrence being completed
        actual_at: When the review actually happened
        findings: Review findings
        actions_taken: Actions taken during the review
        next_steps: Plan going forward
        completed_by: Clinician
        delay_reason: Why the review was late, if it was

    Returns:
        The appended occurrence record
    """
    review = _require_pattern(item)
    _require_scheduled(review, "complete occurrence of")
    _check_occurrence(review, occurrence_date)

    due = datetime.combine(occurrence_date, review.scheduled_time or time.min)
    days = delay_days(due, actual_at)
    unexplained = is_delay_unexplained(days, delay_reason)
    if unexplained:
        logger.warning(f"Review {review.id} occurrence {occurrence_date} done {days}d late, no reason")

    record = ReviewOccurrence(
        occurrence_date=occurrence_date,
        completed_at=actual_at,
        completed_by=completed_by,
        findings=findings,
        actions_taken=actions_taken,
        next_steps=next_steps,
        delay_days=days,
        delay_reason=delay_reason,
        delay_unexplained=unexplained,
    )
    review.completed_occurrences.append(record)
    review.completed_occurrences.sort(key=lambda o: o.occurrence_date)
    review.updated_at = actual_at

    _close_if_exhausted(review, actual_at, completed_by)
    return record


def record_missed_occurrence(
    item: TimelineItemBase,
    occurrence_date: date,
    at: datetime,
    reason: Optional[str] = None
) -> MissedReview:
    """Mark one occurrence of a recurring review as missed"""
    review = _require_pattern(item)
    _require_scheduled(review, "record missed occurrence of")
    _check_occurrence(review, occurrence_date)

    record = MissedReview(occurrence_date=occurrence_date, reason=reason, recorded_at=at)
    review.missed_occurrences.append(record)
    review.missed_occurrences.sort(key=lambda m: m.occurrence_date)
    review.updated_at = at

    _close_if_exhausted(review, at)
    return record


def outstanding_occurrences(item: ReviewItem, through: date) -> List[date]:
    """
    Generated occurrences on or before `through` not yet completed or missed

    A review without a pattern has a single occurrence on its scheduled date.
    Terminal reviews have nothing outstanding.
    """
    if item.status != ItemStatus.SCHEDULED:
        return []

    if item.recurrence is None:
        return [item.scheduled_date] if item.scheduled_date <= through else []

    logged = logged_occurrences(item)
    generated = takewhile(lambda d: d <= through, iter_occurrences(item.recurrence))
    return [d for d in generated if d not in logged]


def is_pattern_active(item: ReviewItem) -> bool:
    """True while a scheduled review still has occurrences left to log"""
    if item.status != ItemStatus.SCHEDULED:
        return False
    if item.recurrence is None:
        return True
    if not item.recurrence.is_bounded:
        return True
    logged = logged_occurrences(item)
    return any(d not in logged for d in expand(item.recurrence))


# =============================================================================
# Investigations
# =============================================================================

def record_result(item: TimelineItemBase, entry: InvestigationResult) -> InvestigationResult:
    """Append to an investigation's result log (allowed until cancelled)"""
    if not isinstance(item, InvestigationItem):
        raise ValidationError(f"Results can only be recorded on investigations, not {kind_of(item).value}")
    if item.status == ItemStatus.CANCELLED:
        raise InvalidTransition(ItemKind.INVESTIGATION.value, item.status.value, "record result on")

    item.results.append(entry)
    item.updated_at = entry.recorded_at

    if entry.status == ResultStatus.CRITICAL:
        logger.warning(f"Critical result on investigation {item.id}: {entry.result}")
    return entry


# =============================================================================
# Medication Administrations
# =============================================================================

def add_administrations(item: TimelineItemBase, times: Iterable[datetime]) -> List[MedicationAdministration]:
    """
    Add pending dose entries inside the medication window

    Times already scheduled are skipped.

    Returns:
        Newly created entries
    """
    if not isinstance(item, MedicationItem):
        raise ValidationError(f"Administrations only apply to medications, not {kind_of(item).value}")
    _require_scheduled(item, "schedule doses for")

    requested = sorted(set(times))
    for scheduled in requested:
        if scheduled.date() < item.start_date or (item.end_date and scheduled.date() > item.end_date):
            raise ValidationError(f"Dose at {scheduled} falls outside medication window for {item.id}")

    existing = {a.scheduled_at for a in item.administrations}
    created = []
    for scheduled in requested:
        if scheduled in existing:
            continue
        entry = MedicationAdministration(scheduled_at=scheduled)
        item.administrations.append(entry)
        created.append(entry)

    item.administrations.sort(key=lambda a: a.scheduled_at)
    return created


def schedule_administrations(item: MedicationItem, through: date) -> List[MedicationAdministration]:
    """Generate pending doses from the frequency code up to a horizon"""
    times = administration_times(item.frequency, item.start_date, item.end_date, through)
    return add_administrations(item, times)


def record_administration(
    item: TimelineItemBase,
    administration_id: str,
    status: AdministrationStatus,
    actual_at: Optional[datetime] = None,
    administered_by: Optional[str] = None,
    delay_reason: Optional[str] = None,
    notes: Optional[str] = None
) -> MedicationAdministration:
    """
    Record the outcome of a pending dose

    Raises:
        ItemNotFound: no such administration entry
        InvalidTransition: dose already recorded, or medication no longer scheduled
        ValidationError: status left pending, or a given dose without a time
    """
    if not isinstance(item, MedicationItem):
        raise ValidationError(f"Administrations only apply to medications, not {kind_of(item).value}")
    _require_scheduled(item, "record dose for")

    entry = next((a for a in item.administrations if a.id == administration_id), None)
    if entry is None:
        raise ItemNotFound(f"Administration {administration_id} not found on medication {item.id}")
    if entry.status != AdministrationStatus.PENDING:
        raise InvalidTransition("administration", entry.status.value, "record")
    if status == AdministrationStatus.PENDING:
        raise ValidationError("Administration outcome must be given, missed or refused")
    if status == AdministrationStatus.GIVEN and actual_at is None:
        raise ValidationError("A given dose needs the time it was administered")

    entry.status = status
    entry.actual_at = actual_at
    entry.administered_by = administered_by
    entry.delay_reason = delay_reason
    entry.notes = notes
    if actual_at is not None:
        entry.delay_minutes = max(0, int((actual_at - entry.scheduled_at).total_seconds() // 60))

    item.updated_at = actual_at or item.updated_at
    return entry
