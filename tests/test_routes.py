from unittest.mock import MagicMock

import pytest
from fastapi.testclient import TestClient

from conftest import client_error
from onboarding.core.dependencies import get_rbac_worker, get_reconciliation_sweep, get_storage_worker
from onboarding.core.exceptions import ProvisioningFailedError, ProvisioningTimeoutError
from onboarding.main import app
from onboarding.modules.provisioning.schemas import ProvisioningResult
from onboarding.modules.rbac.worker import RBACBootstrapWorker
from onboarding.modules.reconciliation.guard import SingleFlightGuard
from onboarding.modules.reconciliation.sweep import ReconciliationReport, ReconciliationSweep

RENDER_PARAMS = {
    "accountId": "acct-001",
    "accountName": "Acme Corp",
    "environment": "dev",
    "billingMode": "PAY_PER_REQUEST",
    "enablePointInTimeRecovery": "true",
    "enableDeletionProtection": "true",
}


@pytest.fixture
def client():
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


def test_health_and_security_headers(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "healthy"}
    assert response.headers["X-Content-Type-Options"] == "nosniff"
    assert response.headers["X-Frame-Options"] == "DENY"


def test_responses_are_not_cacheable(client):
    response = client.get("/ready")
    assert response.headers["Cache-Control"] == "no-store"
    assert response.headers["Referrer-Policy"] == "no-referrer"


def test_ready_reports_configuration(client):
    body = client.get("/ready").json()
    assert body["status"] == "ready"
    assert body["reconciliation"] is False


def test_render_returns_description(client):
    response = client.post("/api/v1/provisioning/render", json=RENDER_PARAMS)

    assert response.status_code == 200
    table = response.json()["Resources"]["AccountTable"]["Properties"]
    assert "ProvisionedThroughput" not in table


def test_render_rejects_invalid_parameters(client):
    response = client.post("/api/v1/provisioning/render", json=dict(RENDER_PARAMS, environment="qa"))

    assert response.status_code == 400
    assert response.json()["errors"]


def test_provision_storage_returns_camel_case_result(client):
    worker = MagicMock()
    worker.run.return_value = ProvisioningResult(
        account_id="acct-001", execution_id="exec-1", cloud_type="private", table_name="app-dev-acct-001",
    )
    app.dependency_overrides[get_storage_worker] = lambda: worker

    response = client.post("/api/v1/provisioning/storage", json={
        "accountId": "acct-001", "accountName": "Acme Corp", "executionId": "exec-1",
    })

    assert response.status_code == 200
    assert response.json()["tableName"] == "app-dev-acct-001"
    assert worker.run.call_args.args[0].action == "provision_private"


@pytest.mark.parametrize("error,status_code", [
    (ProvisioningFailedError("app-dev-account-acct-001", "ROLLBACK_COMPLETE", "limit"), 409),
    (ProvisioningTimeoutError("app-dev-account-acct-001", 540), 504),
])
def test_provisioning_errors_map_to_status_codes(client, error, status_code):
    worker = MagicMock()
    worker.run.side_effect = error
    app.dependency_overrides[get_storage_worker] = lambda: worker

    response = client.post("/api/v1/provisioning/storage", json={
        "accountId": "acct-001", "accountName": "Acme Corp", "executionId": "exec-1",
    })

    assert response.status_code == status_code


def test_status_not_found(client):
    worker = MagicMock()
    worker.get_status.return_value = None
    app.dependency_overrides[get_storage_worker] = lambda: worker

    assert client.get("/api/v1/provisioning/acct-404/status").status_code == 404


def test_delete_builds_event_from_query(client):
    worker = MagicMock()
    worker.delete.return_value.to_payload.return_value = {"status": "DELETING"}
    app.dependency_overrides[get_storage_worker] = lambda: worker

    response = client.delete("/api/v1/provisioning/acct-001?cloud_type=private&execution_id=exec-7")

    assert response.json() == {"status": "DELETING"}
    event = worker.delete.call_args.args[0]
    assert (event.resolved_action, event.execution_id) == ("delete_private", "exec-7")


def test_rbac_setup(client, store, metrics, notifier):
    app.dependency_overrides[get_rbac_worker] = lambda: RBACBootstrapWorker(store, metrics=metrics, notifier=notifier)

    body = client.post("/api/v1/rbac/setup", json={"accountId": "acct-001", "executionId": "exec-1"}).json()

    assert (body["roles"], body["groups"], body["permissions"], body["status"]) == (5, 5, 45, "SUCCESS")


def test_reconciliation_run_reports_skip_when_busy(client, metrics):
    guard = SingleFlightGuard("cognito-reconciliation")
    guard.try_acquire()
    reconciler = MagicMock()
    app.dependency_overrides[get_reconciliation_sweep] = lambda: ReconciliationSweep(
        reconciler, guard=guard, metrics=metrics, dry_run=True,
    )

    body = client.post("/api/v1/reconciliation/run").json()

    assert body["status"] == "skipped"
    reconciler.reconcile.assert_not_called()


def test_reconciliation_run_returns_report(client, metrics):
    reconciler = MagicMock()
    reconciler.reconcile.return_value = ReconciliationReport(scanned=4, missing=1, skipped=1, dry_run=True)
    app.dependency_overrides[get_reconciliation_sweep] = lambda: ReconciliationSweep(
        reconciler, metrics=metrics, dry_run=False,
    )

    body = client.post("/api/v1/reconciliation/run?dry_run=true").json()

    assert body["status"] == "completed"
    assert body["scanned"] == 4
    reconciler.reconcile.assert_called_once_with(dry_run=True)
