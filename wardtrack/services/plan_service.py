"""
WardTrack Treatment Plan Service
Loads and saves plan aggregates and patients through their sync coordinators
"""

import logging
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, TypeVar

from pydantic import ValidationError as PydanticValidationError

from wardtrack.clock import Clock
from wardtrack.exceptions import PatientNotFound, PlanNotFound, ValidationError
from wardtrack.modules.overdue import OverdueScanner
from wardtrack.modules.treatment_plan import TreatmentPlanAggregate
from wardtrack.schemas import (
    OverdueReport,
    Patient,
    PlanCreateRequest,
    PlanStatus,
    ReconcileResult,
    SyncStatus,
    TreatmentPlan,
)
from wardtrack.services.sync_coordinator import SyncCoordinator

logger = logging.getLogger(__name__)

T = TypeVar("T")


def _invalid(exc: PydanticValidationError, what: str) -> ValidationError:
    return ValidationError(
        f"Invalid {what}: {exc.error_count()} error(s)",
        errors=exc.errors(include_url=False, include_context=False),
    )


class TreatmentPlanService:
    """Composition root for plan and patient operations"""

    def __init__(
        self,
        plans: SyncCoordinator,
        patients: SyncCoordinator,
        clock: Clock,
        scanner: Optional[OverdueScanner] = None
    ):
        self.plans = plans
        self.patients = patients
        self.clock = clock
        self.scanner = scanner or OverdueScanner(clock)

    # =========================================================================
    # Patients
    # =========================================================================

    async def register_patient(self, data: Dict[str, Any]) -> Patient:
        try:
            patient = Patient.model_validate(data)
        except PydanticValidationError as e:
            raise _invalid(e, "patient") from e

        stored = await self.patients.create(patient.model_dump(mode="json"))
        logger.info(f"Registered patient {patient.id}")
        return Patient.model_validate(stored)

    async def list_patients(self) -> List[Patient]:
        patients = []
        for payload in await self.patients.fetch_all():
            try:
                patients.append(Patient.model_validate(payload))
            except PydanticValidationError as e:
                logger.warning(f"Skipping malformed patient {payload.get('id')}: {e.error_count()} error(s)")
        return patients

    async def get_patient(self, patient_id: str) -> Patient:
        payload = await self.patients.fetch_one(patient_id)
        if payload is None:
            raise PatientNotFound(f"Patient {patient_id} not found")
        return Patient.model_validate(payload)

    async def update_patient(self, patient_id: str, changes: Dict[str, Any]) -> Patient:
        current = await self.get_patient(patient_id)
        try:
            updated = Patient.model_validate({**current.model_dump(), **changes, "id": patient_id})
        except PydanticValidationError as e:
            raise _invalid(e, "patient") from e

        stored = await self.patients.update(patient_id, updated.model_dump(mode="json"))
        return Patient.model_validate(stored)

    async def delete_patient(self, patient_id: str) -> bool:
        return await self.patients.delete(patient_id)

    # =========================================================================
    # Plans
    # =========================================================================

    async def create_plan(self, request: PlanCreateRequest) -> TreatmentPlan:
        now = self.clock.now()
        plan = TreatmentPlan(
            patient_id=request.patient_id,
            diagnosis=request.diagnosis,
            title=request.title,
            admission_date=request.admission_date,
            created_by=request.created_by,
            notes=request.notes,
            created_at=now,
            updated_at=now,
        )
        stored = await self.plans.create(plan.model_dump(mode="json"))
        logger.info(f"Created treatment plan {plan.id} for patient {plan.patient_id}")
        return TreatmentPlan.model_validate(stored)

    async def load(self, plan_id: str) -> TreatmentPlanAggregate:
        """
        Load a plan aggregate

        Raises:
            PlanNotFound: neither store knows the plan
        """
        payload = await self.plans.fetch_one(plan_id)
        if payload is None:
            raise PlanNotFound(f"Treatment plan {plan_id} not found")
        return TreatmentPlanAggregate(TreatmentPlan.model_validate(payload), self.clock)

    async def save(self, aggregate: TreatmentPlanAggregate) -> TreatmentPlan:
        stored = await self.plans.update(aggregate.id, aggregate.plan.model_dump(mode="json"))
        return TreatmentPlan.model_validate(stored)

    async def apply(self, plan_id: str, operation: Callable[[TreatmentPlanAggregate], T]) -> T:
        """
        Load a plan, run one aggregate operation and save it

        Nothing is saved when the operation raises.
        """
        aggregate = await self.load(plan_id)
        outcome = operation(aggregate)
        await self.save(aggregate)
        return outcome

    async def list_plans(self, status: Optional[PlanStatus] = None) -> List[TreatmentPlan]:
        plans = []
        for payload in await self.plans.fetch_all():
            try:
                plan = TreatmentPlan.model_validate(payload)
            except PydanticValidationError as e:
                logger.warning(f"Skipping malformed plan {payload.get('id')}: {e.error_count()} error(s)")
                continue
            if status is None or plan.status == status:
                plans.append(plan)
        return plans

    async def plans_for_patient(self, patient_id: str) -> List[TreatmentPlan]:
        return [plan for plan in await self.list_plans() if plan.patient_id == patient_id]

    async def delete_plan(self, plan_id: str) -> bool:
        return await self.plans.delete(plan_id)

    # =========================================================================
    # Overdue & Sync
    # =========================================================================

    async def plan_overdue(self, plan_id: str, now: Optional[datetime] = None) -> OverdueReport:
        aggregate = await self.load(plan_id)
        return self.scanner.scan(aggregate.plan, now)

    async def scan_overdue(self, now: Optional[datetime] = None) -> OverdueReport:
        """Overdue entries across every active plan"""
        return self.scanner.scan_active(await self.list_plans(PlanStatus.ACTIVE), now)

    async def reconcile(self) -> List[ReconcileResult]:
        return [await self.patients.reconcile(), await self.plans.reconcile()]

    def sync_status(self) -> List[SyncStatus]:
        return [self.patients.status(), self.plans.status()]
