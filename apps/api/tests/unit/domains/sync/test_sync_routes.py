# tests/unit/domains/sync/test_sync_routes.py
"""
Tests for the invoice and payment sync endpoints.
"""
from typing import Dict

from fastapi.testclient import TestClient

from src.domains.sync.models import SyncStatus
from src.shared.exceptions import NetworkError, RemoteFaultError
from tests.fixtures.sync_fixtures import (
    FakeQuickBooksClient,
    InMemorySyncRepository,
    make_connection,
    make_invoice,
    make_payment,
)

INVOICES = "/api/v1/qbo/invoices"
PAYMENTS = "/api/v1/qbo/payments"


class TestRealmResolution:
    """The realm-id header selects the connection."""

    def test_missing_header(self, client: TestClient) -> None:
        response = client.post(f"{INVOICES}/sync")

        assert response.status_code == 400
        body = response.json()
        assert body["status"] == "error"
        assert body["data"]["errorCode"] == "VALIDATION_ERROR"

    def test_unknown_realm(self, client: TestClient) -> None:
        """Connections are never created implicitly for an unknown realm."""
        response = client.post(f"{INVOICES}/sync", headers={"realm-id": "realm-unknown"})

        assert response.status_code == 404
        assert response.json()["data"]["errorCode"] == "CONNECTION_NOT_FOUND"

    def test_disconnected_realm(
        self,
        client: TestClient,
        repository: InMemorySyncRepository,
        realm_headers: Dict[str, str],
    ) -> None:
        repository.add_connection(make_connection(is_connected=False))

        response = client.post(f"{INVOICES}/sync", headers=realm_headers)

        assert response.status_code == 401
        assert response.json()["data"]["errorKind"] == "AUTH"


class TestSyncSingle:
    """POST /qbo/{type}/sync/{id}"""

    def test_created(
        self,
        client: TestClient,
        repository: InMemorySyncRepository,
        realm_headers: Dict[str, str],
    ) -> None:
        # Arrange
        repository.add_entity(make_invoice(1))

        # Act
        response = client.post(f"{INVOICES}/sync/inv-1", headers=realm_headers)

        # Assert
        assert response.status_code == 201
        body = response.json()
        assert body["status"] == "success"
        assert body["data"]["remote_id"] == "101"
        assert body["data"]["status"] == "SUCCESS"

    def test_already_synced(
        self,
        client: TestClient,
        repository: InMemorySyncRepository,
        realm_headers: Dict[str, str],
    ) -> None:
        repository.add_entity(make_invoice(1, remote_id="130", sync_status=SyncStatus.SUCCESS))

        response = client.post(f"{INVOICES}/sync/inv-1", headers=realm_headers)

        assert response.status_code == 400
        data = response.json()["data"]
        assert data["errorCode"] == "ALREADY_SYNCED"
        assert data["errorKind"] == "ALREADY_SYNCED"
        assert data["result"]["remote_id"] == "130"

    def test_remote_fault(
        self,
        client: TestClient,
        repository: InMemorySyncRepository,
        fake_qbo_client: FakeQuickBooksClient,
        realm_headers: Dict[str, str],
    ) -> None:
        repository.add_entity(make_invoice(1))
        fake_qbo_client.failures["INV-0001"] = RemoteFaultError("6240", "Invalid Customer Reference")

        response = client.post(f"{INVOICES}/sync/inv-1", headers=realm_headers)

        assert response.status_code == 400
        body = response.json()
        assert body["message"] == "Invalid Customer Reference"
        assert body["data"]["errorCode"] == "6240"
        assert body["data"]["errorKind"] == "REMOTE_FAULT"

    def test_network_failure(
        self,
        client: TestClient,
        repository: InMemorySyncRepository,
        fake_qbo_client: FakeQuickBooksClient,
        realm_headers: Dict[str, str],
    ) -> None:
        repository.add_entity(make_invoice(1))
        fake_qbo_client.failures["INV-0001"] = NetworkError("QuickBooks request timed out")

        response = client.post(f"{INVOICES}/sync/inv-1", headers=realm_headers)

        assert response.status_code == 502
        assert response.json()["data"]["errorKind"] == "NETWORK"

    def test_not_found(self, client: TestClient, realm_headers: Dict[str, str]) -> None:
        response = client.post(f"{INVOICES}/sync/inv-404", headers=realm_headers)

        assert response.status_code == 404
        assert response.json()["data"]["errorCode"] == "NOT_FOUND"

    def test_overlong_id_rejected(self, client: TestClient, realm_headers: Dict[str, str]) -> None:
        response = client.post(f"{INVOICES}/sync/{'x' * 51}", headers=realm_headers)

        assert response.status_code == 400
        assert response.json()["data"]["errorCode"] == "VALIDATION_ERROR"

    def test_payment(
        self,
        client: TestClient,
        repository: InMemorySyncRepository,
        realm_headers: Dict[str, str],
    ) -> None:
        repository.add_entity(make_invoice(1, remote_id="130", sync_status=SyncStatus.SUCCESS))
        repository.add_entity(make_payment(1))

        response = client.post(f"{PAYMENTS}/sync/pay-1", headers=realm_headers)

        assert response.status_code == 201
        assert repository.payments["pay-1"].remote_invoice_id == "130"


class TestSyncAll:
    """POST /qbo/{type}/sync status mapping."""

    def test_no_pending(self, client: TestClient, realm_headers: Dict[str, str]) -> None:
        response = client.post(f"{INVOICES}/sync", headers=realm_headers)

        assert response.status_code == 200
        assert response.json()["data"]["outcome"] == "NO_OP"

    def test_all_succeeded(
        self,
        client: TestClient,
        repository: InMemorySyncRepository,
        realm_headers: Dict[str, str],
    ) -> None:
        for index in range(1, 4):
            repository.add_entity(make_invoice(index))

        response = client.post(f"{INVOICES}/sync", headers=realm_headers)

        assert response.status_code == 200
        data = response.json()["data"]
        assert data["outcome"] == "SUCCESS"
        assert data["success_count"] == 3
        assert len(data["batches"]) == 1

    def test_partial(
        self,
        client: TestClient,
        repository: InMemorySyncRepository,
        fake_qbo_client: FakeQuickBooksClient,
        realm_headers: Dict[str, str],
    ) -> None:
        # Arrange
        for index in range(1, 4):
            repository.add_entity(make_invoice(index))
        fake_qbo_client.failures["INV-0002"] = RemoteFaultError("6240", "Invalid Customer Reference")

        # Act
        response = client.post(f"{INVOICES}/sync", headers=realm_headers)

        # Assert
        assert response.status_code == 207
        body = response.json()
        assert body["status"] == "success"
        assert body["data"]["success_count"] == 2
        assert body["data"]["failure_count"] == 1
        assert body["message"] == "Processed 3 invoices: 2 succeeded, 1 failed"

    def test_all_failed(
        self,
        client: TestClient,
        repository: InMemorySyncRepository,
        fake_qbo_client: FakeQuickBooksClient,
        realm_headers: Dict[str, str],
    ) -> None:
        repository.add_entity(make_invoice(1))
        fake_qbo_client.failures["INV-0001"] = RemoteFaultError("6240", "Invalid Customer Reference")

        response = client.post(f"{INVOICES}/sync", headers=realm_headers)

        assert response.status_code == 400
        body = response.json()
        assert body["status"] == "error"
        assert body["data"]["outcome"] == "FAILED"


class TestRecovery:
    """Retry, cancel and status endpoints."""

    def test_retry_with_force(
        self,
        client: TestClient,
        repository: InMemorySyncRepository,
        realm_headers: Dict[str, str],
    ) -> None:
        repository.add_entity(make_invoice(1, sync_status=SyncStatus.IN_PROGRESS))

        response = client.post(
            f"{INVOICES}/sync/inv-1/retry",
            headers=realm_headers,
            json={"forceRetry": True},
        )

        assert response.status_code == 201

    def test_retry_in_progress_without_force(
        self,
        client: TestClient,
        repository: InMemorySyncRepository,
        realm_headers: Dict[str, str],
    ) -> None:
        repository.add_entity(make_invoice(1, sync_status=SyncStatus.IN_PROGRESS))

        response = client.post(f"{INVOICES}/sync/inv-1/retry", headers=realm_headers)

        assert response.status_code == 409
        assert response.json()["data"]["errorCode"] == "SYNC_CONFLICT"

    def test_cancel(
        self,
        client: TestClient,
        repository: InMemorySyncRepository,
        realm_headers: Dict[str, str],
    ) -> None:
        repository.add_entity(make_invoice(1))

        response = client.post(f"{INVOICES}/sync/inv-1/cancel", headers=realm_headers)

        assert response.status_code == 200
        assert response.json()["data"]["sync_status"] == "CANCELLED"
        assert repository.invoices["inv-1"].sync_status == SyncStatus.CANCELLED

    def test_cancel_synced(
        self,
        client: TestClient,
        repository: InMemorySyncRepository,
        realm_headers: Dict[str, str],
    ) -> None:
        repository.add_entity(make_invoice(1, remote_id="130", sync_status=SyncStatus.SUCCESS))

        response = client.post(f"{INVOICES}/sync/inv-1/cancel", headers=realm_headers)

        assert response.status_code == 400
        assert response.json()["data"]["errorCode"] == "ALREADY_SYNCED"

    def test_entity_status(
        self,
        client: TestClient,
        repository: InMemorySyncRepository,
        realm_headers: Dict[str, str],
    ) -> None:
        repository.add_entity(make_invoice(1))
        client.post(f"{INVOICES}/sync/inv-1", headers=realm_headers)

        response = client.get(f"{INVOICES}/sync/inv-1/status", headers=realm_headers)

        assert response.status_code == 200
        data = response.json()["data"]
        assert data["entity"]["sync_status"] == "SUCCESS"
        assert data["logs"][0]["quickbooks_id"] == "101"

    def test_status_list(
        self,
        client: TestClient,
        repository: InMemorySyncRepository,
        realm_headers: Dict[str, str],
    ) -> None:
        repository.add_entity(make_invoice(1))
        repository.add_entity(make_invoice(2, sync_status=SyncStatus.FAILED))

        response = client.get(
            f"{INVOICES}/sync/status",
            headers=realm_headers,
            params={"syncStatus": "FAILED"},
        )

        assert response.status_code == 200
        data = response.json()["data"]
        assert [item["id"] for item in data["items"]] == ["inv-2"]
        assert data["summary"]["PENDING"] == 1
        assert data["pagination"]["total"] == 1
