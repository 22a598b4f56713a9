"""
WardTrack - Treatment Plan Timeline Schemas
Pydantic models for plans, timeline items, recurrence and sync records
"""

import uuid
from datetime import datetime, date, time
from enum import Enum
from typing import Optional, List, Dict, Any, Literal, Union, Annotated

from pydantic import BaseModel, Field, field_validator, model_validator, computed_field


def new_id(prefix: str) -> str:
    """Client-side identifier, stable across offline retries"""
    return f"{prefix}_{uuid.uuid4().hex[:16]}"


# ============================================================================
# Enumerations
# ============================================================================

class PlanStatus(str, Enum):
    """Treatment plan lifecycle (monotonically forward)"""
    DRAFT = "draft"
    ACTIVE = "active"
    COMPLETED = "completed"
    ARCHIVED = "archived"

    @property
    def rank(self) -> int:
        return list(PlanStatus).index(self)


class ItemKind(str, Enum):
    """Timeline item discriminator"""
    REVIEW = "review"
    INVESTIGATION = "investigation"
    PROCEDURE = "procedure"
    MEDICATION = "medication"
    DISCHARGE = "discharge"


class ItemStatus(str, Enum):
    """Timeline item lifecycle; overdue is derived, never stored"""
    SCHEDULED = "scheduled"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class AssigneeRole(str, Enum):
    """Medical team roles"""
    SENIOR_REGISTRAR = "senior_registrar"
    REGISTRAR = "registrar"
    HOUSE_OFFICER = "house_officer"


class Cadence(str, Enum):
    """Recurrence cadence"""
    ONCE = "once"
    DAILY = "daily"
    ALTERNATE_DAYS = "alternate_days"
    WEEKLY = "weekly"
    BIWEEKLY = "biweekly"
    CUSTOM_DAYS = "custom_days_of_week"


class Weekday(str, Enum):
    """Days of week, ordered Monday first (matches date.weekday())"""
    MONDAY = "monday"
    TUESDAY = "tuesday"
    WEDNESDAY = "wednesday"
    THURSDAY = "thursday"
    FRIDAY = "friday"
    SATURDAY = "saturday"
    SUNDAY = "sunday"

    @property
    def number(self) -> int:
        return list(Weekday).index(self)


class InvestigationType(str, Enum):
    LAB = "lab"
    IMAGING = "imaging"
    OTHER = "other"


class ResultStatus(str, Enum):
    """Investigation result interpretation"""
    NORMAL = "normal"
    ABNORMAL = "abnormal"
    CRITICAL = "critical"


class MedicationRoute(str, Enum):
    """Medication administration routes"""
    ORAL = "oral"
    IV = "IV"
    IM = "IM"
    SC = "SC"
    TOPICAL = "topical"
    RECTAL = "rectal"
    SUBLINGUAL = "sublingual"
    OTHER = "other"


class AdministrationStatus(str, Enum):
    """Status of a single scheduled medication dose"""
    PENDING = "pending"
    GIVEN = "given"
    MISSED = "missed"
    REFUSED = "refused"


class ProcedureType(str, Enum):
    MINOR = "minor"
    MAJOR = "major"
    DIAGNOSTIC = "diagnostic"
    THERAPEUTIC = "therapeutic"


class DischargeType(str, Enum):
    HOME = "home"
    TRANSFER = "transfer"
    AMA = "ama"
    DEATH = "death"


class SyncOperation(str, Enum):
    """Remote write still owed by a dirty local record"""
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


# ============================================================================
# Recurrence
# ============================================================================

class RecurrencePattern(BaseModel):
    """
    Cadence plus termination rule.
    At most one of end_date / repeat_count; neither means unbounded until the plan closes.
    """
    cadence: Cadence
    start_date: date
    end_date: Optional[date] = None
    repeat_count: Optional[int] = Field(None, ge=1, description="Number of occurrences to generate")
    days_of_week: List[Weekday] = Field(default_factory=list, description="Only for custom_days_of_week")

    @field_validator("days_of_week")
    @classmethod
    def order_days(cls, v: List[Weekday]) -> List[Weekday]:
        return sorted(set(v), key=lambda d: d.number)

    @model_validator(mode="after")
    def validate_termination(self) -> "RecurrencePattern":
        if self.end_date is not None and self.repeat_count is not None:
            raise ValueError("end_date and repeat_count are mutually exclusive")
        if self.end_date is not None and self.end_date < self.start_date:
            raise ValueError("end_date must not precede start_date")
        if self.cadence == Cadence.CUSTOM_DAYS and not self.days_of_week:
            raise ValueError("custom_days_of_week cadence requires at least one day")
        if self.cadence != Cadence.CUSTOM_DAYS and self.days_of_week:
            raise ValueError("days_of_week only applies to custom_days_of_week cadence")
        return self

    @property
    def is_bounded(self) -> bool:
        return (
            self.cadence == Cadence.ONCE
            or self.end_date is not None
            or self.repeat_count is not None
        )


# ============================================================================
# Completion / Cancellation Records
# ============================================================================

class CompletionRecord(BaseModel):
    """Actual completion of a scheduled item"""
    actual_at: datetime
    completed_by: Optional[str] = None
    outcome: Optional[str] = Field(None, description="Findings / outcome notes")
    delay_reason: Optional[str] = None
    delay_days: int = Field(0, ge=0)
    delay_unexplained: bool = Field(False, description="Late with no delay reason given")


class CancellationRecord(BaseModel):
    cancelled_at: datetime
    cancelled_by: Optional[str] = None
    reason: str = Field(..., min_length=1)


class ReviewOccurrence(BaseModel):
    """One completed occurrence of a recurring review"""
    occurrence_date: date
    completed_at: datetime
    completed_by: Optional[str] = None
    findings: Optional[str] = None
    actions_taken: Optional[str] = None
    next_steps: Optional[str] = None
    delay_days: int = Field(0, ge=0)
    delay_reason: Optional[str] = None
    delay_unexplained: bool = False


class MissedReview(BaseModel):
    occurrence_date: date
    reason: Optional[str] = None
    recorded_at: datetime


class InvestigationResult(BaseModel):
    """Entry in an investigation's accumulating result log"""
    recorded_at: datetime
    result: str = Field(..., min_length=1)
    value: Optional[str] = None
    unit: Optional[str] = None
    status: ResultStatus = ResultStatus.NORMAL
    notes: Optional[str] = None


class MedicationAdministration(BaseModel):
    """A single scheduled dose"""
    id: str = Field(default_factory=lambda: new_id("dose"))
    scheduled_at: datetime
    status: AdministrationStatus = AdministrationStatus.PENDING
    actual_at: Optional[datetime] = None
    administered_by: Optional[str] = None
    delay_minutes: Optional[int] = Field(None, ge=0)
    delay_reason: Optional[str] = None
    notes: Optional[str] = None


class DischargeExtension(BaseModel):
    """Audit trail entry left when a discharge target is moved"""
    new_date: date
    previous_date: date
    added_days: int
    reason: str = Field(..., min_length=1)
    targets_not_met: List[str] = Field(default_factory=list)
    extended_by: Optional[str] = None
    extended_at: datetime


# ============================================================================
# Timeline Items
# ============================================================================

class TimelineItemBase(BaseModel):
    """Fields shared by every kind of schedulable clinical work"""
    id: str = Field(default_factory=lambda: new_id("item"))
    plan_id: Optional[str] = Field(None, description="Owning plan; stamped by the plan aggregate")
    title: Optional[str] = None
    scheduled_date: date
    scheduled_time: Optional[time] = None
    assigned_to: Optional[str] = None
    assigned_role: Optional[AssigneeRole] = None
    status: ItemStatus = ItemStatus.SCHEDULED
    completion: Optional[CompletionRecord] = None
    cancellation: Optional[CancellationRecord] = None
    notes: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def scheduled_at(self) -> datetime:
        """Scheduled instant; date-only items fall at midnight"""
        return datetime.combine(self.scheduled_date, self.scheduled_time or time.min)

    @property
    def is_terminal(self) -> bool:
        return self.status != ItemStatus.SCHEDULED

    @property
    def display_name(self) -> str:
        return self.title or self.kind


class ReviewItem(TimelineItemBase):
    """Ward review; optionally recurring, each occurrence tracked independently"""
    kind: Literal["review"] = "review"
    recurrence: Optional[RecurrencePattern] = None
    completed_occurrences: List[ReviewOccurrence] = Field(default_factory=list)
    missed_occurrences: List[MissedReview] = Field(default_factory=list)

    @model_validator(mode="before")
    @classmethod
    def default_date_from_recurrence(cls, data: Any) -> Any:
        if isinstance(data, dict) and data.get("scheduled_date") is None:
            recurrence = data.get("recurrence")
            if isinstance(recurrence, dict) and recurrence.get("start_date"):
                data = {**data, "scheduled_date": recurrence["start_date"]}
            elif isinstance(recurrence, RecurrencePattern):
                data = {**data, "scheduled_date": recurrence.start_date}
        return data

    @model_validator(mode="after")
    def check_recurrence_start(self) -> "ReviewItem":
        if self.recurrence is not None and self.recurrence.start_date != self.scheduled_date:
            raise ValueError("recurrence start_date must equal scheduled_date")
        return self

    @property
    def is_recurring(self) -> bool:
        return self.recurrence is not None and self.recurrence.cadence != Cadence.ONCE

    @property
    def display_name(self) -> str:
        return self.title or "Ward review"


class InvestigationItem(TimelineItemBase):
    """Lab / imaging investigation with targets and accumulating results"""
    kind: Literal["investigation"] = "investigation"
    investigation_type: InvestigationType = InvestigationType.LAB
    target_value: Optional[str] = Field(None, description="Expected/target result")
    target_range: Optional[str] = Field(None, description="Normal range")
    results: List[InvestigationResult] = Field(default_factory=list)

    @property
    def latest_result(self) -> Optional[InvestigationResult]:
        return self.results[-1] if self.results else None


class ProcedureItem(TimelineItemBase):
    kind: Literal["procedure"] = "procedure"
    procedure_type: ProcedureType = ProcedureType.MINOR
    surgeon: Optional[str] = None
    location: Optional[str] = None


class MedicationItem(TimelineItemBase):
    """Medication order; scheduled_date is the start of the administration window"""
    kind: Literal["medication"] = "medication"
    medication_name: str = Field(..., min_length=1)
    dosage: str = Field(..., min_length=1)
    route: MedicationRoute = MedicationRoute.ORAL
    frequency: str = Field(..., min_length=1, description="OD, BD, TDS, Q6H, PRN ...")
    end_date: Optional[date] = None
    administrations: List[MedicationAdministration] = Field(default_factory=list)

    @model_validator(mode="after")
    def check_window(self) -> "MedicationItem":
        if self.end_date is not None and self.end_date < self.scheduled_date:
            raise ValueError("end_date must not precede start of medication window")
        return self

    @property
    def start_date(self) -> date:
        return self.scheduled_date

    @property
    def display_name(self) -> str:
        return self.title or f"{self.medication_name} {self.dosage} {self.frequency}"


class DischargeItem(TimelineItemBase):
    """Discharge target; moving it leaves an extension audit trail"""
    kind: Literal["discharge"] = "discharge"
    initial_date: Optional[date] = None
    discharge_type: DischargeType = DischargeType.HOME
    destination: Optional[str] = None
    criteria: List[str] = Field(default_factory=list)
    criteria_met: List[str] = Field(default_factory=list)
    extensions: List[DischargeExtension] = Field(default_factory=list)

    @model_validator(mode="before")
    @classmethod
    def default_initial_date(cls, data: Any) -> Any:
        if isinstance(data, dict) and data.get("initial_date") is None:
            data = {**data, "initial_date": data.get("scheduled_date")}
        return data

    @property
    def criteria_pending(self) -> List[str]:
        return [c for c in self.criteria if c not in self.criteria_met]

    @property
    def display_name(self) -> str:
        return self.title or "Discharge target"


TimelineItem = Annotated[
    Union[ReviewItem, InvestigationItem, ProcedureItem, MedicationItem, DischargeItem],
    Field(discriminator="kind")
]


# ============================================================================
# Patient & Treatment Plan
# ============================================================================

class Patient(BaseModel):
    """Patient demographics held in the synced patient collection"""
    id: str = Field(default_factory=lambda: new_id("patient"))
    hospital_number: str = Field(..., min_length=1)
    first_name: str = Field(..., min_length=1)
    last_name: str = Field(..., min_length=1)
    dob: Optional[date] = None
    sex: Optional[Literal["male", "female", "other"]] = None
    phone: Optional[str] = None
    address: Optional[str] = None
    allergies: List[str] = Field(default_factory=list)
    comorbidities: List[str] = Field(default_factory=list)

    @field_validator("allergies", "comorbidities", mode="before")
    @classmethod
    def normalize_list(cls, v):
        """Scalar values become one-element lists, missing becomes empty"""
        if v is None or v == "":
            return []
        if isinstance(v, (list, tuple)):
            return list(v)
        return [v]

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}"


class TreatmentPlan(BaseModel):
    """One plan per admission episode, owning its timeline items"""
    id: str = Field(default_factory=lambda: new_id("plan"))
    patient_id: str = Field(..., min_length=1)
    diagnosis: str = Field(..., min_length=1)
    title: Optional[str] = None
    admission_date: datetime
    status: PlanStatus = PlanStatus.DRAFT
    items: List[TimelineItem] = Field(default_factory=list)
    created_by: Optional[str] = None
    notes: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @model_validator(mode="after")
    def check_item_ownership(self) -> "TreatmentPlan":
        seen = set()
        active_discharges = 0
        for item in self.items:
            if item.plan_id is None:
                item.plan_id = self.id
            elif item.plan_id != self.id:
                raise ValueError(f"item {item.id} belongs to plan {item.plan_id}, not {self.id}")
            if item.id in seen:
                raise ValueError(f"duplicate item id {item.id}")
            seen.add(item.id)
            if item.kind == ItemKind.DISCHARGE and item.status == ItemStatus.SCHEDULED:
                active_discharges += 1
        if active_discharges > 1:
            raise ValueError("a plan has at most one active discharge target")
        return self


# ============================================================================
# Overdue Scanning
# ============================================================================

class OverdueEntry(BaseModel):
    """Something still pending past its scheduled instant"""
    plan_id: str
    item_id: str
    kind: ItemKind
    title: str
    scheduled_at: datetime
    delay_days: int = Field(0, ge=0)
    occurrence_date: Optional[date] = Field(None, description="Recurring review occurrence")
    administration_id: Optional[str] = Field(None, description="Medication dose entry")
    assigned_to: Optional[str] = None


class OverdueReport(BaseModel):
    """Disjoint overdue lists, computed as of a given instant"""
    as_of: datetime
    reviews: List[OverdueEntry] = Field(default_factory=list)
    procedures: List[OverdueEntry] = Field(default_factory=list)
    medications: List[OverdueEntry] = Field(default_factory=list)

    @computed_field
    @property
    def total(self) -> int:
        return len(self.reviews) + len(self.procedures) + len(self.medications)

    def extend(self, other: "OverdueReport") -> None:
        self.reviews.extend(other.reviews)
        self.procedures.extend(other.procedures)
        self.medications.extend(other.medications)


# ============================================================================
# Sync Records
# ============================================================================

class SyncableRecord(BaseModel):
    """Persisted entity wrapped with sync and tombstone flags"""
    collection: str
    id: str
    payload: Dict[str, Any] = Field(default_factory=dict)
    synced: bool = False
    deleted: bool = False
    pending_operation: Optional[SyncOperation] = None
    version: int = Field(1, ge=1, description="Monotonic local write counter")
    updated_at: Optional[datetime] = None
    last_synced_at: Optional[datetime] = None
    last_error: Optional[str] = None

    @property
    def is_dirty(self) -> bool:
        return not self.synced


class ReconcileResult(BaseModel):
    collection: str
    attempted: int = 0
    synced: int = 0
    failed: int = 0
    deletes_confirmed: int = 0
    skipped: int = Field(0, description="Left dirty after the remote store became unreachable")
    errors: List[str] = Field(default_factory=list)


class SyncStatus(BaseModel):
    collection: str
    pending_writes: int = 0
    pending_deletes: int = 0
    conflicts: int = 0


# ============================================================================
# API Request Models
# ============================================================================

class PlanCreateRequest(BaseModel):
    patient_id: str = Field(..., min_length=1)
    diagnosis: str = Field(..., min_length=1)
    admission_date: datetime
    title: Optional[str] = None
    created_by: Optional[str] = None
    notes: Optional[str] = None


class PlanStatusRequest(BaseModel):
    status: PlanStatus


class CompleteItemRequest(BaseModel):
    actual_at: datetime
    outcome: Optional[str] = None
    completed_by: Optional[str] = None
    delay_reason: Optional[str] = None


class CancelItemRequest(BaseModel):
    reason: str = Field(..., min_length=1)
    cancelled_by: Optional[str] = None


class ReviewOccurrenceRequest(BaseModel):
    occurrence_date: date
    completed_at: datetime
    findings: Optional[str] = None
    actions_taken: Optional[str] = None
    next_steps: Optional[str] = None
    completed_by: Optional[str] = None
    delay_reason: Optional[str] = None


class MissedReviewRequest(BaseModel):
    occurrence_date: date
    reason: Optional[str] = None


class InvestigationResultRequest(BaseModel):
    result: str = Field(..., min_length=1)
    value: Optional[str] = None
    unit: Optional[str] = None
    status: ResultStatus = ResultStatus.NORMAL
    notes: Optional[str] = None
    recorded_at: Optional[datetime] = None


class DischargeCriterionRequest(BaseModel):
    criterion: str = Field(..., min_length=1)


class DischargeTargetRequest(BaseModel):
    target_date: date
    reason: Optional[str] = Field(None, description="Required when moving an existing target")
    targets_not_met: List[str] = Field(default_factory=list)
    set_by: Optional[str] = None
    criteria: List[str] = Field(default_factory=list)


class AdministrationRecordRequest(BaseModel):
    status: AdministrationStatus = AdministrationStatus.GIVEN
    actual_at: Optional[datetime] = None
    administered_by: Optional[str] = None
    delay_reason: Optional[str] = None
    notes: Optional[str] = None
