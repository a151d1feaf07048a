import time

import pytest
from fastapi.testclient import TestClient

from autoprocure.server import create_app

TERMINAL_STATES = ("Completed", "Error")


@pytest.fixture
def client(make_orchestrator):
    # Entered as a context manager so background flows keep running between requests.
    with TestClient(create_app(orchestrator=make_orchestrator())) as client:
        yield client


def _create(client, **overrides):
    body = {"brief": "Need blockchain analytics API", "maxBudget": 500}
    body.update(overrides)
    response = client.post("/procurement/request", json=body)
    assert response.status_code == 200, response.text
    return response.json()["workflowId"]


def _wait_for_terminal(client, workflow_id, timeout=5.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        workflow = client.get(f"/procurement/{workflow_id}/status").json()["workflow"]
        if workflow["state"] in TERMINAL_STATES:
            return workflow
        time.sleep(0.01)
    raise AssertionError(f"workflow {workflow_id} did not reach a terminal state")


class TestVendorEndpoints:
    def test_list(self, client):
        data = client.get("/vendors").json()
        assert data["success"] is True
        assert len(data["vendors"]) == 5
        assert data["vendors"][0]["pricePerMonth"] == 450

    def test_filters(self, client):
        data = client.get("/vendors", params={"maxPrice": 400, "minSla": 98}).json()
        assert [v["id"] for v in data["vendors"]] == ["vendor_2", "vendor_3"]

    def test_get_one(self, client):
        data = client.get("/vendors/vendor_3").json()
        assert data["vendor"]["name"] == "CryptoData Hub"

    def test_unknown_vendor(self, client):
        response = client.get("/vendors/vendor_99")
        assert response.status_code == 404
        assert response.json() == {"success": False, "error": "Vendor not found"}


class TestCreateRequest:
    def test_defaults_applied(self, client):
        workflow_id = _create(client)
        workflow = client.get(f"/procurement/{workflow_id}/status").json()["workflow"]
        assert workflow["state"] == "Initialized"
        assert workflow["request"]["minQualityScore"] == 7.0
        assert workflow["request"]["preferredSLA"] == 99.0
        assert workflow["request"]["durationDays"] == 30

    def test_optional_fields_accepted(self, client):
        workflow_id = _create(client, minQualityScore=8, preferredSLA=99.5, durationDays=60)
        request = client.get(f"/procurement/{workflow_id}/status").json()["workflow"]["request"]
        assert request["minQualityScore"] == 8
        assert request["preferredSLA"] == 99.5
        assert request["durationDays"] == 60

    def test_null_optional_fields_take_defaults(self, client):
        workflow_id = _create(client, minQualityScore=None)
        request = client.get(f"/procurement/{workflow_id}/status").json()["workflow"]["request"]
        assert request["minQualityScore"] == 7.0

    @pytest.mark.parametrize("body", [
        {"maxBudget": 500},
        {"brief": "analytics"},
        {"brief": "", "maxBudget": 500},
        {},
    ])
    def test_missing_required_fields(self, client, body):
        response = client.post("/procurement/request", json=body)
        assert response.status_code == 400
        assert response.json()["error"] == "Missing required fields: brief, maxBudget"

    @pytest.mark.parametrize("overrides", [
        {"maxBudget": -5},
        {"minQualityScore": 11},
        {"preferredSLA": 101},
        {"durationDays": 0},
        {"brief": "   "},
    ])
    def test_invalid_fields(self, client, overrides):
        body = {"brief": "analytics", "maxBudget": 500, **overrides}
        response = client.post("/procurement/request", json=body)
        assert response.status_code == 400
        assert response.json()["success"] is False

    def test_body_must_be_json_object(self, client):
        response = client.post(
            "/procurement/request", content=b"not json", headers={"content-type": "application/json"},
        )
        assert response.status_code == 400


class TestExecution:
    def test_completes_and_selects_vendor_2(self, client):
        workflow_id = _create(client)
        response = client.post(f"/procurement/{workflow_id}/execute")
        assert response.status_code == 200
        assert response.json() == {
            "success": True,
            "message": "Autonomous execution started",
            "workflowId": workflow_id,
        }

        workflow = _wait_for_terminal(client, workflow_id)
        assert workflow["state"] == "Completed"
        assert workflow["selectedVendorId"] == "vendor_2"
        assert workflow["paymentAmount"] == 380.0
        assert workflow["paymentTxHash"].startswith("0x")

    def test_evaluation_is_enriched_and_ranked(self, client):
        workflow_id = _create(client)
        client.post(f"/procurement/{workflow_id}/execute")
        _wait_for_terminal(client, workflow_id)

        evaluation = client.get(f"/procurement/{workflow_id}/evaluation").json()["evaluation"]
        ranked = evaluation["rankedVendors"]
        totals = [entry["totalScore"] for entry in ranked]
        assert totals == sorted(totals, reverse=True)
        assert ranked[0]["vendor"]["id"] == ranked[0]["vendorId"]
        assert evaluation["recommendation"].startswith("Recommended: BlockInsight API")

    def test_ledger_view_omits_constraints(self, client):
        workflow_id = _create(client)
        client.post(f"/procurement/{workflow_id}/execute")
        workflow = _wait_for_terminal(client, workflow_id)

        ledger = client.get(f"/procurement/{workflow_id}/ledger").json()["ledger"]
        assert ledger["stateName"] == "Completed"
        assert ledger["state"] == 7
        assert ledger["paymentTxHash"] == workflow["paymentTxHash"]
        assert "maxBudget" not in ledger

    def test_impossible_budget_ends_in_error(self, client):
        workflow_id = _create(client, maxBudget=100)
        client.post(f"/procurement/{workflow_id}/execute")
        workflow = _wait_for_terminal(client, workflow_id)

        assert workflow["state"] == "Error"
        assert "No valid vendors found" in workflow["error"]
        response = client.get(f"/procurement/{workflow_id}/evaluation")
        assert response.status_code == 404

    def test_second_execute_conflicts(self, client):
        workflow_id = _create(client)
        assert client.post(f"/procurement/{workflow_id}/execute").status_code == 200
        response = client.post(f"/procurement/{workflow_id}/execute")
        assert response.status_code == 409
        assert response.json()["success"] is False
        assert _wait_for_terminal(client, workflow_id)["state"] == "Completed"

    def test_execute_unknown_workflow(self, client):
        assert client.post("/procurement/999/execute").status_code == 404


class TestReadEndpoints:
    def test_status_unknown(self, client):
        response = client.get("/procurement/999/status")
        assert response.status_code == 404
        assert response.json() == {"success": False, "error": "Workflow not found"}

    def test_evaluation_unknown(self, client):
        response = client.get("/procurement/999/evaluation")
        assert response.status_code == 404
        assert response.json()["error"] == "Workflow not found"

    def test_evaluation_before_execution(self, client):
        workflow_id = _create(client)
        response = client.get(f"/procurement/{workflow_id}/evaluation")
        assert response.status_code == 404
        assert response.json()["error"] == "Evaluation not yet complete"

    def test_ledger_unknown(self, client):
        assert client.get("/procurement/999/ledger").status_code == 404

    def test_health(self, client):
        data = client.get("/health").json()
        assert data["success"] is True
        assert data["status"] == "healthy"
        assert len(data["catalogVersion"]) == 12


class TestStartup:
    def test_requires_encryption_key(self, monkeypatch):
        monkeypatch.delenv("PROCUREMENT_ENCRYPTION_KEY", raising=False)
        with pytest.raises(RuntimeError, match="PROCUREMENT_ENCRYPTION_KEY"):
            with TestClient(create_app()):
                pass

    def test_builds_from_environment(self, monkeypatch):
        monkeypatch.setenv("PROCUREMENT_ENCRYPTION_KEY", "x" * 64)
        monkeypatch.setenv("PROCUREMENT_ON_ORACLE_FAILURE", "fallback")
        with TestClient(create_app()) as client:
            assert client.get("/vendors").json()["success"] is True
