"""
WardTrack Service Wiring
Builds the service graph once per process and hands it to routes and tasks
"""

import logging
from typing import Awaitable, Callable, Optional, TypeVar

from fastapi import Request

from wardtrack.clock import Clock, SystemClock
from wardtrack.config import settings
from wardtrack.modules.overdue import OverdueScanner
from wardtrack.services.local_store import LocalReplicaStore
from wardtrack.services.plan_service import TreatmentPlanService
from wardtrack.services.remote_store import HttpRemoteStore, RemoteStore
from wardtrack.services.sync_coordinator import SyncCoordinator

logger = logging.getLogger(__name__)

T = TypeVar("T")

PATIENTS = "patients"
TREATMENT_PLANS = "treatment_plans"


def build_plan_service(
    clock: Optional[Clock] = None,
    remote: Optional[RemoteStore] = None,
    local: Optional[LocalReplicaStore] = None
) -> TreatmentPlanService:
    """
    Build the plan service with its coordinators

    Args:
        clock: Time source (default: system clock)
        remote: Remote store (default: HTTP client from settings)
        local: Local replica (default: SQLAlchemy store from settings)
    """
    clock = clock or SystemClock()
    remote = remote or HttpRemoteStore(token=settings.remote_api_token)
    local = local or LocalReplicaStore.from_url(
        settings.local_database_url,
        echo=settings.database_echo,
        clock=clock
    )

    service = TreatmentPlanService(
        plans=SyncCoordinator(remote, local, TREATMENT_PLANS, clock, id_prefix="plan"),
        patients=SyncCoordinator(remote, local, PATIENTS, clock, id_prefix="patient"),
        clock=clock,
        scanner=OverdueScanner(clock),
    )
    logger.info(f"✓ Plan service ready (remote: {settings.remote_api_url})")
    return service


async def close_plan_service(service: TreatmentPlanService) -> None:
    await service.plans.remote.close()
    service.plans.local.close()


def get_plan_service(request: Request) -> TreatmentPlanService:
    """FastAPI dependency: service built in the application lifespan"""
    return request.app.state.plan_service


async def run_with_plan_service(operation: Callable[[TreatmentPlanService], Awaitable[T]]) -> T:
    """Build a short-lived service for a background job and close it afterwards"""
    service = build_plan_service()
    try:
        return await operation(service)
    finally:
        await close_plan_service(service)
