"""
WardTrack - Sync API Routes
Manual reconciliation trigger and pending-write status
"""

import logging
from typing import List

from fastapi import APIRouter, Depends

from wardtrack.dependencies import get_plan_service
from wardtrack.schemas import ReconcileResult, SyncStatus
from wardtrack.services.plan_service import TreatmentPlanService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/sync", tags=["Sync"])


@router.post("/reconcile", response_model=List[ReconcileResult])
async def reconcile(service: TreatmentPlanService = Depends(get_plan_service)):
    """Push every unsynced local write and pending delete to the remote store"""
    results = await service.reconcile()
    logger.info(f"Manual reconcile: {sum(r.synced for r in results)} records synced")
    return results


@router.get("/status", response_model=List[SyncStatus])
async def sync_status(service: TreatmentPlanService = Depends(get_plan_service)):
    return service.sync_status()
