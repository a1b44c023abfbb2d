"""
HTTP tests for the maintenance API
"""
import pytest
from fastapi.testclient import TestClient

from conftest import BRANCH, CUSTOMER_ID, PART_ID, SERVICE_PRODUCT_ID, TECHNICIAN_ID, TENANT, OTHER_TENANT
from maintenance_engine.clock import get_clock
from maintenance_engine.database import get_db
from maintenance_engine.main import app

OWNER_HEADERS = {"X-User-Id": "1", "X-Tenant-Id": str(TENANT), "X-Role": "business_owner"}
TECHNICIAN_HEADERS = {
    "X-User-Id": str(TECHNICIAN_ID),
    "X-Tenant-Id": str(TENANT),
    "X-Role": "technician",
    "X-Branch-Ids": str(BRANCH),
}
FOREIGN_HEADERS = {"X-User-Id": "9", "X-Tenant-Id": str(OTHER_TENANT), "X-Role": "business_owner"}

CONTRACT_BODY = {
    "branch_id": BRANCH,
    "customer_id": CUSTOMER_ID,
    "product_id": SERVICE_PRODUCT_ID,
    "assigned_technician_id": TECHNICIAN_ID,
    "frequency_kind": "fixed_interval",
    "frequency_value": 1,
    "frequency_unit": "month",
    "start_date": "2026-01-01",
    "end_date": "2026-06-30",
    "contract_value": 1200.0,
}


@pytest.fixture
def client(db, seed, clock):
    def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_clock] = lambda: clock
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def contract_id(client):
    response = client.post("/maintenance/contracts", json=CONTRACT_BODY, headers=OWNER_HEADERS)
    assert response.status_code == 201
    return response.json()["id"]


class TestVisitFlow:
    """Create, materialize, view the calendar, then start and complete a visit"""

    def test_full_flow(self, client, contract_id):
        response = client.post(
            f"/maintenance/schedule/contracts/{contract_id}/materialize",
            json={"through": "2026-02-01"},
            headers=OWNER_HEADERS,
        )
        assert response.status_code == 200
        body = response.json()
        assert body["created_count"] == 2
        first_visit_id = body["visits"][0]["id"]

        response = client.get(
            "/maintenance/schedule/calendar",
            params={"start": "2026-01-01", "end": "2026-03-31"},
            headers=OWNER_HEADERS,
        )
        assert response.status_code == 200
        calendar = response.json()
        assert calendar["real_count"] == 2
        assert calendar["virtual_count"] == 1
        assert calendar["entries"][2]["key"] == f"virtual:{contract_id}:2026-03-01"
        assert calendar["entries"][2]["action"] == "materialize"

        response = client.post(f"/maintenance/visits/{first_visit_id}/start", headers=TECHNICIAN_HEADERS)
        assert response.status_code == 200
        assert response.json()["status"] == "in_progress"

        response = client.post(
            f"/maintenance/visits/{first_visit_id}/complete",
            json={"completion_notes": "Filters swapped", "parts": [{"part_id": PART_ID, "quantity": 2}]},
            headers=TECHNICIAN_HEADERS,
        )
        assert response.status_code == 200
        visit = response.json()
        assert visit["status"] == "completed"
        assert visit["total_cost"] == 50.0

        response = client.get(f"/maintenance/visits/{first_visit_id}/stock-movements", headers=OWNER_HEADERS)
        assert [m["quantity_delta"] for m in response.json()] == [-2]

        response = client.get(f"/maintenance/contracts/{contract_id}/health", headers=OWNER_HEADERS)
        assert response.status_code == 200
        assert response.json()["completed_visits"] == 1

    def test_materialize_virtual_entry(self, client, contract_id):
        response = client.post(
            "/maintenance/schedule/occurrences",
            json={"key": f"virtual:{contract_id}:2026-04-01"},
            headers=OWNER_HEADERS,
        )
        assert response.status_code == 200
        assert response.json()["scheduled_date"] == "2026-04-01"

    def test_run_automation(self, client, contract_id):
        response = client.post("/maintenance/automation/run?materialize=true", headers=OWNER_HEADERS)
        assert response.status_code == 200
        body = response.json()
        assert body["contracts_expired"] == 0
        assert body["visits_materialized"] == 2

    def test_completion_trend(self, client, contract_id):
        client.post(
            f"/maintenance/schedule/contracts/{contract_id}/materialize",
            json={"through": "2026-01-01"},
            headers=OWNER_HEADERS,
        )
        response = client.get(
            "/maintenance/analytics/completion-trend",
            params={"group_by": "month", "start": "2026-01-01", "end": "2026-01-31"},
            headers=OWNER_HEADERS,
        )
        assert response.status_code == 200
        assert response.json() == [
            {"period": "2026-01", "total_visits": 1, "completed_visits": 0, "completion_rate": 0.0}
        ]

        response = client.get(
            "/maintenance/analytics/completion-trend", params={"group_by": "year"}, headers=OWNER_HEADERS
        )
        assert response.status_code == 422
        assert response.json()["detail"]["field"] == "group_by"


class TestErrors:
    """Error mapping"""

    def test_missing_identity(self, client):
        response = client.get("/maintenance/contracts")
        assert response.status_code == 401

    def test_system_role_rejected(self, client):
        headers = dict(OWNER_HEADERS, **{"X-Role": "system"})
        assert client.get("/maintenance/contracts", headers=headers).status_code == 401

    def test_cross_tenant_is_forbidden(self, client, contract_id):
        response = client.get(f"/maintenance/contracts/{contract_id}", headers=FOREIGN_HEADERS)
        assert response.status_code == 403
        assert response.json()["detail"]["code"] == "access_denied"

    def test_invalid_transition(self, client, contract_id):
        client.post(f"/maintenance/contracts/{contract_id}/pause", headers=OWNER_HEADERS)
        response = client.post(f"/maintenance/contracts/{contract_id}/pause", headers=OWNER_HEADERS)
        assert response.status_code == 409
        assert response.json()["detail"]["code"] == "invalid_transition"

    def test_business_validation(self, client):
        body = dict(CONTRACT_BODY, frequency_value=0)
        response = client.post("/maintenance/contracts", json=body, headers=OWNER_HEADERS)
        assert response.status_code == 422
        assert response.json()["detail"]["field"] == "frequency_value"

    def test_request_validation(self, client):
        response = client.post("/maintenance/contracts", json={"branch_id": "abc"}, headers=OWNER_HEADERS)
        assert response.status_code == 422
        assert response.json()["detail"]["code"] == "validation_error"

    def test_not_found(self, client):
        response = client.get("/maintenance/visits/999", headers=OWNER_HEADERS)
        assert response.status_code == 404

    def test_health_endpoint(self, client):
        assert client.get("/health").json() == {"status": "ok"}
