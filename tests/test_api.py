"""
API tests for plan, patient and sync routes
"""

import pytest
from fastapi.testclient import TestClient

from wardtrack.dependencies import get_plan_service
from wardtrack.main import app


@pytest.fixture
def client(plan_service):
    app.dependency_overrides[get_plan_service] = lambda: plan_service
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def plan_id(client):
    response = client.post("/api/v1/plans", json={
        "patient_id": "patient_1",
        "diagnosis": "Diabetic foot ulcer",
        "admission_date": "2024-01-08T10:00:00",
    })
    assert response.status_code == 201
    plan_id = response.json()["id"]
    client.post(f"/api/v1/plans/{plan_id}/status", json={"status": "active"})
    return plan_id


class TestHealth:
    def test_health_check(self, client):
        """Test health check"""
        response = client.get("/health")

        assert response.status_code == 200
        assert response.json()["status"] == "healthy"


class TestPlanRoutes:
    """Test plan and item endpoints"""

    def test_create_and_fetch_plan(self, client, plan_id):
        """Test create and fetch plan"""
        response = client.get(f"/api/v1/plans/{plan_id}")

        assert response.status_code == 200
        assert response.json()["status"] == "active"

    def test_unknown_plan_is_404(self, client):
        """Test unknown plan returns 404"""
        assert client.get("/api/v1/plans/plan_missing").status_code == 404

    def test_backwards_status_is_409(self, client, plan_id):
        """Test backwards status change returns 409"""
        response = client.post(f"/api/v1/plans/{plan_id}/status", json={"status": "draft"})

        assert response.status_code == 409

    def test_invalid_item_is_422_and_not_stored(self, client, plan_id):
        """Test invalid item returns 422 and is not stored"""
        response = client.post(f"/api/v1/plans/{plan_id}/items", json={
            "kind": "medication",
            "medication_name": "Metformin",
            "scheduled_date": "2024-01-16",
        })

        assert response.status_code == 422
        assert response.json()["errors"]
        assert client.get(f"/api/v1/plans/{plan_id}").json()["items"] == []

    def test_complete_review_twice_is_409(self, client, plan_id):
        """Test completing a review twice returns 409"""
        item = client.post(f"/api/v1/plans/{plan_id}/items", json={
            "kind": "review",
            "scheduled_date": "2024-01-10",
            "assigned_role": "registrar",
        }).json()
        completion = {"actual_at": "2024-01-12T10:00:00", "outcome": "Granulating", "delay_reason": "Post-call"}

        first = client.post(f"/api/v1/plans/{plan_id}/items/{item['id']}/complete", json=completion)
        second = client.post(f"/api/v1/plans/{plan_id}/items/{item['id']}/complete", json=completion)

        assert first.status_code == 200
        assert first.json()["completion"]["delay_days"] == 2
        assert second.status_code == 409

    def test_discharge_extension(self, client, plan_id):
        """Test discharge extension"""
        client.put(f"/api/v1/plans/{plan_id}/discharge", json={"target_date": "2024-01-20"})
        response = client.put(f"/api/v1/plans/{plan_id}/discharge", json={
            "target_date": "2024-01-23",
            "reason": "wound not healed",
        })

        body = response.json()
        assert response.status_code == 200
        assert body["scheduled_date"] == "2024-01-23"
        assert body["extensions"][0]["added_days"] == 3

    def test_overdue_views(self, client, plan_id):
        """Test overdue views"""
        client.post(f"/api/v1/plans/{plan_id}/items", json={"kind": "review", "scheduled_date": "2024-01-10"})

        per_plan = client.get(f"/api/v1/plans/{plan_id}/overdue").json()
        across = client.get("/api/v1/plans/overdue", params={"now": "2024-01-09T00:00:00"}).json()

        assert len(per_plan["reviews"]) == 1
        assert per_plan["reviews"][0]["delay_days"] == 5
        assert across["total"] == 0


class TestPatientAndSyncRoutes:
    """Test patient records and sync endpoints"""

    def test_register_patient_normalises_lists(self, client):
        """Test register patient normalises lists"""
        response = client.post("/api/v1/patients", json={
            "hospital_number": "UN-100",
            "first_name": "Ngozi",
            "last_name": "Eze",
            "allergies": "Penicillin",
        })

        assert response.status_code == 201
        assert response.json()["allergies"] == ["Penicillin"]
        assert response.json()["comorbidities"] == []

    def test_offline_registration_then_reconcile(self, client, remote):
        """Test offline registration then reconcile"""
        remote.available = False
        created = client.post("/api/v1/patients", json={
            "hospital_number": "UN-101",
            "first_name": "Emeka",
            "last_name": "Obi",
        })
        status = client.get("/api/v1/sync/status").json()

        remote.available = True
        results = client.post("/api/v1/sync/reconcile").json()

        assert created.status_code == 201
        assert status[0] == {"collection": "patients", "pending_writes": 1, "pending_deletes": 0, "conflicts": 0}
        assert results[0]["synced"] == 1
        assert created.json()["id"] in remote.records["patients"]
