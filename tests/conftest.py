"""
Shared fixtures: pinned clock, in-memory replica, in-memory remote store
"""

import asyncio
from datetime import datetime
from typing import Any, Dict, List, Optional

import pytest

from wardtrack.clock import FixedClock
from wardtrack.exceptions import RemoteRequestError, RemoteUnavailable
from wardtrack.modules.overdue import OverdueScanner
from wardtrack.modules.treatment_plan import TreatmentPlanAggregate
from wardtrack.schemas import PlanStatus, TreatmentPlan
from wardtrack.services.local_store import LocalReplicaStore
from wardtrack.services.plan_service import TreatmentPlanService
from wardtrack.services.remote_store import RemoteStore
from wardtrack.services.sync_coordinator import SyncCoordinator


class InMemoryRemoteStore(RemoteStore):
    """Remote store double; flip `available` to simulate losing the network"""

    def __init__(self):
        self.records: Dict[str, Dict[str, Dict[str, Any]]] = {}
        self.available = True
        self.rejected_ids = set()
        self.calls: List[tuple] = []

    def _check(self, operation: str, collection: str, record_id: Optional[str] = None):
        self.calls.append((operation, collection, record_id))
        if not self.available:
            raise RemoteUnavailable("network unreachable")
        if record_id in self.rejected_ids:
            raise RemoteRequestError(status_code=400, message="invalid record")

    async def list(self, collection):
        self._check("list", collection)
        await asyncio.sleep(0)
        return [dict(r) for r in self.records.get(collection, {}).values()]

    async def get(self, collection, record_id):
        self._check("get", collection, record_id)
        record = self.records.get(collection, {}).get(record_id)
        return dict(record) if record is not None else None

    async def upsert(self, collection, record):
        self._check("upsert", collection, record["id"])
        await asyncio.sleep(0)
        self.records.setdefault(collection, {})[record["id"]] = dict(record)
        return dict(record)

    async def update(self, collection, record_id, changes):
        self._check("update", collection, record_id)
        existing = self.records.get(collection, {}).get(record_id)
        if existing is None:
            raise RemoteRequestError(status_code=404, message="not found")
        existing.update(changes)
        return dict(existing)

    async def delete(self, collection, record_id):
        self._check("delete", collection, record_id)
        self.records.get(collection, {}).pop(record_id, None)

    def count(self, operation: str) -> int:
        return sum(1 for call in self.calls if call[0] == operation)


@pytest.fixture
def clock():
    return FixedClock(datetime(2024, 1, 15, 9, 0))


@pytest.fixture
def plan():
    return TreatmentPlan(
        id="plan_test",
        patient_id="patient_1",
        diagnosis="Compound fracture left tibia",
        admission_date=datetime(2024, 1, 8, 14, 30),
        status=PlanStatus.ACTIVE,
    )


@pytest.fixture
def aggregate(plan, clock):
    return TreatmentPlanAggregate(plan, clock)


@pytest.fixture
def local_store(clock):
    store = LocalReplicaStore.from_url("sqlite://", clock=clock)
    yield store
    store.close()


@pytest.fixture
def remote():
    return InMemoryRemoteStore()


@pytest.fixture
def coordinator(remote, local_store, clock):
    return SyncCoordinator(remote, local_store, "patients", clock)


@pytest.fixture
def plan_service(remote, local_store, clock):
    return TreatmentPlanService(
        plans=SyncCoordinator(remote, local_store, "treatment_plans", clock, id_prefix="plan"),
        patients=SyncCoordinator(remote, local_store, "patients", clock, id_prefix="patient"),
        clock=clock,
        scanner=OverdueScanner(clock),
    )
