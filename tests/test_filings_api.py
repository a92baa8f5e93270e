"""End-to-end tests for the v1 filing endpoints."""

from unittest.mock import AsyncMock

import pytest
from fastapi.testclient import TestClient

from app.domain.errors import SubmissionError
from app.infrastructure.db.repositories import InMemoryFilingRepository
from app.infrastructure.external.efiling_gateway_client import SubmissionReceipt
from app.main import create_app

USER = {"X-Actor-Id": "user-1", "X-Actor-Role": "user"}
OTHER_USER = {"X-Actor-Id": "user-2", "X-Actor-Role": "user"}
CA = {"X-Actor-Id": "ca-1", "X-Actor-Role": "ca"}
ADMIN = {"X-Actor-Id": "admin-1", "X-Actor-Role": "admin"}
SYSTEM = {"X-Actor-Id": "efiling-webhook", "X-Actor-Role": "system"}

TAXPAYER = {"pan": "ABCDE1234F", "name": "Asha Rao", "dob": "15/08/1990"}


@pytest.fixture
def api_gateway():
    gw = AsyncMock()
    gw.submit = AsyncMock(return_value=SubmissionReceipt(ack_number="ACK2025000042"))
    return gw


@pytest.fixture
def client(api_gateway):
    app = create_app(repository=InMemoryFilingRepository(), gateway=api_gateway)
    with TestClient(app) as c:
        yield c


def _open(client, headers=USER, **overrides) -> dict:
    body = {"assessment_year": "2025-26", "itr_type": "ITR-1", "taxpayer": TAXPAYER}
    body.update(overrides)
    resp = client.post("/api/v1/filings", json=body, headers=headers)
    assert resp.status_code == 201, resp.text
    return resp.json()["data"]


def _post(client, filing, path, headers=USER, **body) -> dict:
    body.setdefault("expected_version", filing["version"])
    resp = client.post(f"/api/v1/filings/{filing['filing_id']}/{path}", json=body, headers=headers)
    assert resp.status_code == 200, resp.text
    return resp.json()["data"]


def _ready(client) -> dict:
    f = _open(client)
    f = _post(client, f, "sources", kind="form16", confidence=0.9, data={
        "gross_salary": "1200000",
        "section_80c": "150000",
        "total_tax_deducted": "90000",
    })
    f = _post(client, f, "regime", regime="new")
    f = _post(client, f, "intake/complete")
    f = _post(client, f, "compute")
    f = _post(client, f, "review")
    return _post(client, f, "ready")


class TestHealth:
    def test_health(self, client):
        resp = client.get("/")
        assert resp.status_code == 200
        assert resp.json()["status"] == "ok"


class TestLifecycleApi:
    def test_open_filing(self, client):
        data = _open(client)
        assert data["status"] == "draft"
        assert data["owner_id"] == "user-1"
        assert data["version"] == 1

    def test_full_flow_to_processed(self, client, api_gateway):
        f = _ready(client)
        assert f["status"] == "ready_to_submit"
        assert f["computation"]["regime"] == "new"
        assert f["computation"]["total_tax"] == "71500"

        f = _post(client, f, "submit")
        assert f["status"] == "submitted"
        assert f["ack_number"] == "ACK2025000042"
        api_gateway.submit.assert_awaited_once()

        resp = client.post(
            "/api/v1/filings/everification/callback",
            json={"filing_id": f["filing_id"], "verified": True, "method": "aadhaar_otp"},
            headers=SYSTEM,
        )
        assert resp.status_code == 200, resp.text
        assert resp.json()["data"]["status"] == "e_verified"

        resp = client.post(f"/api/v1/filings/{f['filing_id']}/processed", headers=SYSTEM)
        assert resp.json()["data"]["status"] == "processed"

    def test_document_and_view(self, client):
        f = _ready(client)
        doc = client.get(f"/api/v1/filings/{f['filing_id']}/document", headers=USER).json()["data"]
        assert doc["version_number"] == 1
        assert doc["document"]["ITR"]["ITR1"]["PartA_GEN1"]["PersonalInfo"]["PAN"] == "ABCDE1234F"

        view = client.get(f"/api/v1/filings/{f['filing_id']}/view", headers=USER).json()["data"]
        assert view == {
            "filing_id": f["filing_id"],
            "status": "ready_to_submit",
            "itr_type": "ITR-1",
            "ack_number": None,
            "current_version_id": f["current_version_id"],
        }

    def test_recommendation(self, client):
        f = _open(client)
        _post(client, f, "facts", facts=[
            {"field_id": "salary_income", "amount": "900000"},
            {"field_id": "ltcg_112a", "amount": "200000", "source": "aggregated_statement", "confidence": 0.95},
        ])
        rec = client.get(f"/api/v1/filings/{f['filing_id']}/recommendation", headers=USER).json()["data"]
        assert rec["recommended_type"] == "ITR-2"
        assert rec["requires_switch"] is True

    def test_audit_requires_reviewer_role(self, client):
        f = _open(client)
        resp = client.get(f"/api/v1/filings/{f['filing_id']}/audit", headers=USER)
        assert resp.status_code == 403
        resp = client.get(f"/api/v1/filings/{f['filing_id']}/audit", headers=CA)
        assert resp.status_code == 200
        assert resp.json()["data"][0]["action"] == "open"


class TestErrorMapping:
    def test_missing_actor_header(self, client):
        resp = client.post("/api/v1/filings", json={})
        assert resp.status_code == 401

    def test_unknown_role(self, client):
        resp = client.post("/api/v1/filings", json={}, headers={"X-Actor-Id": "x", "X-Actor-Role": "root"})
        assert resp.status_code == 400

    def test_duplicate_is_conflict(self, client):
        _open(client)
        resp = client.post("/api/v1/filings", json={"assessment_year": "2025-26"}, headers=USER)
        assert resp.status_code == 409
        body = resp.json()
        assert body["status"] == "error"
        assert body["errors"][0]["code"] == "duplicate_filing"

    def test_validation_names_fields(self, client):
        f = _open(client)
        resp = client.post(
            f"/api/v1/filings/{f['filing_id']}/intake/complete",
            json={"expected_version": f["version"]},
            headers=USER,
        )
        assert resp.status_code == 422
        assert resp.json()["errors"][0]["field_ids"] == ["salary_income"]

    def test_stale_version_is_conflict(self, client):
        f = _open(client)
        _post(client, f, "regime", regime="old")
        resp = client.post(
            f"/api/v1/filings/{f['filing_id']}/regime",
            json={"expected_version": f["version"], "regime": "new"},
            headers=USER,
        )
        assert resp.status_code == 409
        assert resp.json()["errors"][0]["code"] == "concurrent_modification"

    def test_invalid_transition_is_conflict(self, client):
        f = _open(client)
        resp = client.post(
            f"/api/v1/filings/{f['filing_id']}/review",
            json={"expected_version": f["version"]},
            headers=USER,
        )
        assert resp.status_code == 409
        assert resp.json()["errors"][0]["current"] == "draft"

    def test_locked_filing_is_423(self, client):
        f = _post(client, _ready(client), "submit")
        resp = client.post(
            f"/api/v1/filings/{f['filing_id']}/facts",
            json={"expected_version": f["version"], "facts": [{"field_id": "salary_income", "amount": "1"}]},
            headers=USER,
        )
        assert resp.status_code == 423

    def test_other_users_filing_is_not_found(self, client):
        f = _open(client)
        resp = client.get(f"/api/v1/filings/{f['filing_id']}", headers=OTHER_USER)
        assert resp.status_code == 404

    def test_user_cannot_void(self, client):
        f = _open(client)
        resp = client.post(
            f"/api/v1/filings/{f['filing_id']}/void",
            json={"expected_version": f["version"]},
            headers=USER,
        )
        assert resp.status_code == 403

    def test_gateway_timeout_is_503_and_keeps_state(self, client, api_gateway):
        api_gateway.submit.side_effect = SubmissionError("E-filing gateway timed out", timed_out=True)
        f = _ready(client)
        resp = client.post(
            f"/api/v1/filings/{f['filing_id']}/submit",
            json={"expected_version": f["version"]},
            headers=USER,
        )
        assert resp.status_code == 503
        assert resp.json()["errors"][0]["timed_out"] is True

        data = client.get(f"/api/v1/filings/{f['filing_id']}", headers=USER).json()["data"]
        assert data["status"] == "ready_to_submit"
        assert data["last_submission_error"] == "E-filing gateway timed out"


class TestTaxRatesApi:
    def test_list_and_get(self, client):
        years = client.get("/api/v1/tax-rates").json()["data"]["assessment_years"]
        assert "2025-26" in years
        resp = client.get("/api/v1/tax-rates/2025-26")
        assert resp.json()["data"]["source"] == "hardcoded"
        assert client.get("/api/v1/tax-rates/1990-91").status_code == 422

    def test_override_admin_only(self, client):
        resp = client.put("/api/v1/tax-rates/2025-26", json={"cess_rate": "5"}, headers=CA)
        assert resp.status_code == 403

        resp = client.put("/api/v1/tax-rates/2025-26", json={"cess_rate": "5"}, headers=ADMIN)
        assert resp.status_code == 200
        data = client.get("/api/v1/tax-rates/2025-26").json()["data"]
        assert data["source"] == "manual"
        assert data["config"]["cess_rate"] == "5"
