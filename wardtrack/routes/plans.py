"""
WardTrack - Treatment Plan API Routes
Plan lifecycle, timeline item transitions, discharge target and overdue views
"""

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Body, Depends, Query, status

from wardtrack.dependencies import get_plan_service
from wardtrack.schemas import (
    AdministrationRecordRequest,
    CancelItemRequest,
    CompleteItemRequest,
    DischargeCriterionRequest,
    DischargeTargetRequest,
    InvestigationResultRequest,
    MissedReviewRequest,
    OverdueReport,
    PlanCreateRequest,
    PlanStatus,
    PlanStatusRequest,
    ReviewOccurrenceRequest,
    TreatmentPlan,
)
from wardtrack.services.plan_service import TreatmentPlanService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/plans", tags=["Treatment Plans"])


# =============================================================================
# Plans
# =============================================================================

@router.post("", status_code=status.HTTP_201_CREATED, response_model=TreatmentPlan)
async def create_plan(
    request: PlanCreateRequest,
    service: TreatmentPlanService = Depends(get_plan_service)
):
    """Open a treatment plan (draft) for an admission"""
    return await service.create_plan(request)


@router.get("", response_model=List[TreatmentPlan])
async def list_plans(
    plan_status: Optional[PlanStatus] = Query(None, alias="status"),
    patient_id: Optional[str] = Query(None),
    service: TreatmentPlanService = Depends(get_plan_service)
):
    plans = await service.list_plans(plan_status)
    if patient_id:
        plans = [plan for plan in plans if plan.patient_id == patient_id]
    return plans


@router.get("/overdue", response_model=OverdueReport)
async def overdue_across_active_plans(
    now: Optional[datetime] = Query(None, description="Reference instant (default: server clock)"),
    service: TreatmentPlanService = Depends(get_plan_service)
):
    """Overdue reviews, procedures and doses across every active plan"""
    return await service.scan_overdue(now)


@router.get("/{plan_id}", response_model=TreatmentPlan)
async def get_plan(plan_id: str, service: TreatmentPlanService = Depends(get_plan_service)):
    aggregate = await service.load(plan_id)
    return aggregate.plan


@router.delete("/{plan_id}")
async def delete_plan(plan_id: str, service: TreatmentPlanService = Depends(get_plan_service)):
    confirmed = await service.delete_plan(plan_id)
    return {"id": plan_id, "deleted": True, "synced": confirmed}


@router.post("/{plan_id}/status", response_model=TreatmentPlan)
async def change_plan_status(
    plan_id: str,
    request: PlanStatusRequest,
    service: TreatmentPlanService = Depends(get_plan_service)
):
    """Move the plan forward (draft → active → completed → archived)"""
    return await service.apply(plan_id, lambda plan: plan.transition_to(request.status))


@router.get("/{plan_id}/overdue", response_model=OverdueReport)
async def plan_overdue(
    plan_id: str,
    now: Optional[datetime] = Query(None),
    service: TreatmentPlanService = Depends(get_plan_service)
):
    return await service.plan_overdue(plan_id, now)


# =============================================================================
# Timeline Items
# =============================================================================

@router.post("/{plan_id}/items", status_code=status.HTTP_201_CREATED)
async def add_item(
    plan_id: str,
    payload: Dict[str, Any] = Body(..., description="Timeline item with a `kind` discriminator"),
    service: TreatmentPlanService = Depends(get_plan_service)
):
    """
    Add a review, investigation, procedure, medication or discharge item

    The payload is validated against the item kind; nothing is stored on failure.
    """
    item = await service.apply(plan_id, lambda plan: plan.add_item(payload))
    logger.info(f"Plan {plan_id}: {item.kind} {item.id} added via API")
    return item


@router.post("/{plan_id}/items/{item_id}/complete")
async def complete_item(
    plan_id: str,
    item_id: str,
    request: CompleteItemRequest,
    service: TreatmentPlanService = Depends(get_plan_service)
):
    return await service.apply(
        plan_id,
        lambda plan: plan.complete_item(
            item_id,
            request.actual_at,
            outcome=request.outcome,
            completed_by=request.completed_by,
            delay_reason=request.delay_reason,
        )
    )


@router.post("/{plan_id}/items/{item_id}/cancel")
async def cancel_item(
    plan_id: str,
    item_id: str,
    request: CancelItemRequest,
    service: TreatmentPlanService = Depends(get_plan_service)
):
    return await service.apply(
        plan_id,
        lambda plan: plan.cancel_item(item_id, request.reason, cancelled_by=request.cancelled_by)
    )


@router.post("/{plan_id}/items/{item_id}/occurrences")
async def complete_review_occurrence(
    plan_id: str,
    item_id: str,
    request: ReviewOccurrenceRequest,
    service: TreatmentPlanService = Depends(get_plan_service)
):
    """Log one completed occurrence of a recurring review"""
    return await service.apply(
        plan_id,
        lambda plan: plan.complete_review_occurrence(
            item_id,
            request.occurrence_date,
            request.completed_at,
            findings=request.findings,
            actions_taken=request.actions_taken,
            next_steps=request.next_steps,
            completed_by=request.completed_by,
            delay_reason=request.delay_reason,
        )
    )


@router.post("/{plan_id}/items/{item_id}/missed")
async def record_missed_review(
    plan_id: str,
    item_id: str,
    request: MissedReviewRequest,
    service: TreatmentPlanService = Depends(get_plan_service)
):
    return await service.apply(
        plan_id,
        lambda plan: plan.record_missed_review(item_id, request.occurrence_date, request.reason)
    )


@router.post("/{plan_id}/items/{item_id}/results")
async def record_investigation_result(
    plan_id: str,
    item_id: str,
    request: InvestigationResultRequest,
    service: TreatmentPlanService = Depends(get_plan_service)
):
    return await service.apply(
        plan_id,
        lambda plan: plan.record_investigation_result(item_id, **request.model_dump())
    )


@router.post("/{plan_id}/items/{item_id}/administrations/{administration_id}")
async def record_administration(
    plan_id: str,
    item_id: str,
    administration_id: str,
    request: AdministrationRecordRequest,
    service: TreatmentPlanService = Depends(get_plan_service)
):
    return await service.apply(
        plan_id,
        lambda plan: plan.record_administration(item_id, administration_id, **request.model_dump())
    )


# =============================================================================
# Discharge
# =============================================================================

@router.put("/{plan_id}/discharge")
async def set_discharge_target(
    plan_id: str,
    request: DischargeTargetRequest,
    service: TreatmentPlanService = Depends(get_plan_service)
):
    """Set the discharge target; moving an existing target records an extension"""
    return await service.apply(
        plan_id,
        lambda plan: plan.set_discharge_target(
            request.target_date,
            reason=request.reason,
            set_by=request.set_by,
            targets_not_met=request.targets_not_met or None,
            criteria=request.criteria,
        )
    )


@router.post("/{plan_id}/discharge/criteria")
async def mark_discharge_criterion_met(
    plan_id: str,
    request: DischargeCriterionRequest,
    service: TreatmentPlanService = Depends(get_plan_service)
):
    return await service.apply(plan_id, lambda plan: plan.mark_discharge_criterion_met(request.criterion))
