"""
Unit tests for the HTTP remote store client
"""

import json

import httpx
import pytest

from wardtrack.exceptions import RemoteRequestError, RemoteUnavailable
from wardtrack.services.remote_store import HttpRemoteStore

BASE_URL = "https://ward.example.test/api/sync"


def make_store(handler, **kwargs) -> HttpRemoteStore:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return HttpRemoteStore(BASE_URL, http_client=client, max_retries=3, retry_wait_max=0, **kwargs)


class TestRequests:
    """Test request shape and response unwrapping"""

    async def test_list_unwraps_collection_envelope(self):
        """Test list unwraps collection envelope"""
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={"patients": [{"id": "patient_1"}, {"id": "patient_2"}]})

        store = make_store(handler, token="tok-1")
        records = await store.list("patients")

        assert [r["id"] for r in records] == ["patient_1", "patient_2"]
        assert seen[0].method == "GET"
        assert seen[0].url.path == "/api/sync/patients"
        assert seen[0].headers["Authorization"] == "Bearer tok-1"

    async def test_set_token_applies_to_later_requests(self):
        """Test set token applies to later requests"""
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request.headers.get("Authorization"))
            return httpx.Response(200, json=[])

        store = make_store(handler)
        await store.list("patients")
        store.set_token("tok-2")
        await store.list("patients")

        assert seen == [None, "Bearer tok-2"]

    async def test_upsert_posts_record_with_id(self):
        """Test upsert posts record with id"""
        bodies = []

        def handler(request: httpx.Request) -> httpx.Response:
            bodies.append((request.method, request.url.path, json.loads(request.content)))
            return httpx.Response(200, json={"patient": {"id": "patient_1", "first_name": "Ada"}})

        store = make_store(handler)
        stored = await store.upsert("patients", {"id": "patient_1", "first_name": "Ada"})

        assert bodies == [("POST", "/api/sync/patients", {"id": "patient_1", "first_name": "Ada"})]
        assert stored == {"id": "patient_1", "first_name": "Ada"}

    async def test_update_without_record_body_returns_sent_fields(self):
        """Test update without record body returns sent fields"""
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"message": "Patient updated successfully"})

        store = make_store(handler)
        stored = await store.update("patients", "patient_1", {"phone": "0803"})

        assert stored == {"id": "patient_1", "phone": "0803"}

    async def test_missing_record(self):
        """Test missing record handling on get and delete"""
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(404, json={"error": "not found"})

        store = make_store(handler)

        assert await store.get("patients", "patient_9") is None
        await store.delete("patients", "patient_9")


class TestFailures:
    """Test transient vs rejected failures"""

    async def test_server_errors_retried_then_unavailable(self):
        """Test server errors retried then unavailable"""
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            return httpx.Response(503, json={"error": "database unavailable"})

        store = make_store(handler)

        with pytest.raises(RemoteUnavailable):
            await store.list("patients")
        assert len(calls) == 3

    async def test_transient_error_recovers(self):
        """Test transient error recovers"""
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            if len(calls) == 1:
                raise httpx.ConnectError("connection refused", request=request)
            return httpx.Response(200, json=[{"id": "patient_1"}])

        store = make_store(handler)

        assert await store.list("patients") == [{"id": "patient_1"}]
        assert len(calls) == 2

    async def test_network_error_is_unavailable(self):
        """Test network error is unavailable"""
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("timed out", request=request)

        store = make_store(handler)

        with pytest.raises(RemoteUnavailable):
            await store.upsert("patients", {"id": "patient_1"})

    async def test_client_error_not_retried(self):
        """Test client error not retried"""
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            return httpx.Response(400, json={"error": "hospital_number required"})

        store = make_store(handler)

        with pytest.raises(RemoteRequestError) as exc_info:
            await store.upsert("patients", {"id": "patient_1"})

        assert exc_info.value.status_code == 400
        assert "hospital_number" in exc_info.value.message
        assert len(calls) == 1
