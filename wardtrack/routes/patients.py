"""
WardTrack - Patient API Routes
Offline-first patient records
"""

import logging
from typing import Any, Dict, List

from fastapi import APIRouter, Body, Depends, status

from wardtrack.dependencies import get_plan_service
from wardtrack.schemas import Patient, TreatmentPlan
from wardtrack.services.plan_service import TreatmentPlanService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/patients", tags=["Patients"])


@router.post("", status_code=status.HTTP_201_CREATED, response_model=Patient)
async def register_patient(
    payload: Dict[str, Any] = Body(...),
    service: TreatmentPlanService = Depends(get_plan_service)
):
    """Register a patient (stored locally when the remote store is unreachable)"""
    return await service.register_patient(payload)


@router.get("", response_model=List[Patient])
async def list_patients(service: TreatmentPlanService = Depends(get_plan_service)):
    return await service.list_patients()


@router.get("/{patient_id}", response_model=Patient)
async def get_patient(patient_id: str, service: TreatmentPlanService = Depends(get_plan_service)):
    return await service.get_patient(patient_id)


@router.put("/{patient_id}", response_model=Patient)
async def update_patient(
    patient_id: str,
    changes: Dict[str, Any] = Body(...),
    service: TreatmentPlanService = Depends(get_plan_service)
):
    return await service.update_patient(patient_id, changes)


@router.delete("/{patient_id}")
async def delete_patient(patient_id: str, service: TreatmentPlanService = Depends(get_plan_service)):
    confirmed = await service.delete_patient(patient_id)
    return {"id": patient_id, "deleted": True, "synced": confirmed}


@router.get("/{patient_id}/plans", response_model=List[TreatmentPlan])
async def patient_plans(patient_id: str, service: TreatmentPlanService = Depends(get_plan_service)):
    return await service.plans_for_patient(patient_id)
