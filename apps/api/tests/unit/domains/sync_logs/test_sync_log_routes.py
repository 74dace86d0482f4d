# tests/unit/domains/sync_logs/test_sync_log_routes.py
"""
Tests for the sync log query endpoints.
"""
from typing import Dict

from fastapi.testclient import TestClient

from src.shared.exceptions import RemoteFaultError
from tests.fixtures.sync_fixtures import (
    TEST_CONNECTION_ID,
    FakeQuickBooksClient,
    InMemorySyncRepository,
    make_connection,
    make_invoice,
)

SYNC_LOGS = "/api/v1/qbo/sync-logs"


def sync_three_invoices(
    client: TestClient,
    repository: InMemorySyncRepository,
    fake_qbo_client: FakeQuickBooksClient,
    headers: Dict[str, str],
) -> None:
    """Two invoices sync, the third is rejected with fault 6240."""
    for index in range(1, 4):
        repository.add_entity(make_invoice(index))
    fake_qbo_client.failures["INV-0003"] = RemoteFaultError("6240", "Invalid Customer Reference")
    response = client.post("/api/v1/qbo/invoices/sync", headers=headers)
    assert response.status_code == 207


class TestSyncLogRoutes:
    def test_list_logs(
        self,
        client: TestClient,
        repository: InMemorySyncRepository,
        fake_qbo_client: FakeQuickBooksClient,
        realm_headers: Dict[str, str],
    ) -> None:
        # Arrange
        sync_three_invoices(client, repository, fake_qbo_client, realm_headers)

        # Act
        response = client.get(
            SYNC_LOGS,
            headers=realm_headers,
            params={"status": "FAILED", "transactionType": "INVOICE"},
        )

        # Assert
        assert response.status_code == 200
        data = response.json()["data"]
        assert len(data["logs"]) == 1
        assert data["logs"][0]["error_code"] == "6240"
        assert data["pagination"]["total"] == 1
        assert data["summary"]["failed_count"] == 1

    def test_list_logs_requires_realm(
        self,
        client: TestClient,
        repository: InMemorySyncRepository,
        fake_qbo_client: FakeQuickBooksClient,
        realm_headers: Dict[str, str],
    ) -> None:
        sync_three_invoices(client, repository, fake_qbo_client, realm_headers)

        response = client.get(SYNC_LOGS)

        assert response.status_code == 400
        assert response.json()["data"]["errorCode"] == "VALIDATION_ERROR"

    def test_list_logs_excludes_other_connections(
        self,
        client: TestClient,
        repository: InMemorySyncRepository,
        fake_qbo_client: FakeQuickBooksClient,
        realm_headers: Dict[str, str],
    ) -> None:
        # Arrange
        sync_three_invoices(client, repository, fake_qbo_client, realm_headers)
        repository.add_connection(make_connection(id="conn-456", realm_id="realm-456"))

        # Act
        response = client.get(SYNC_LOGS, headers={"realm-id": "realm-456"})

        # Assert
        assert response.status_code == 200
        assert response.json()["data"]["pagination"]["total"] == 0

    def test_disconnected_connection_keeps_its_history(
        self,
        client: TestClient,
        repository: InMemorySyncRepository,
        fake_qbo_client: FakeQuickBooksClient,
        realm_headers: Dict[str, str],
    ) -> None:
        sync_three_invoices(client, repository, fake_qbo_client, realm_headers)
        connection = repository.connections[TEST_CONNECTION_ID]
        repository.connections[TEST_CONNECTION_ID] = connection.model_copy(
            update={"is_connected": False}
        )

        response = client.get(SYNC_LOGS, headers=realm_headers)

        assert response.status_code == 200
        assert response.json()["data"]["pagination"]["total"] == 3

    def test_invalid_sort_field(
        self, client: TestClient, realm_headers: Dict[str, str]
    ) -> None:
        response = client.get(SYNC_LOGS, headers=realm_headers, params={"sortBy": "password"})

        assert response.status_code == 400
        assert response.json()["data"]["errorCode"] == "VALIDATION_ERROR"

    def test_statistics(
        self,
        client: TestClient,
        repository: InMemorySyncRepository,
        fake_qbo_client: FakeQuickBooksClient,
        realm_headers: Dict[str, str],
    ) -> None:
        sync_three_invoices(client, repository, fake_qbo_client, realm_headers)

        response = client.get(f"{SYNC_LOGS}/statistics", headers=realm_headers)

        assert response.status_code == 200
        data = response.json()["data"]
        assert data["total_logs"] == 3
        assert data["success_rate"] == 67
        assert data["by_status"] == {"SUCCESS": 2, "FAILED": 1}

    def test_logs_for_transaction(
        self,
        client: TestClient,
        repository: InMemorySyncRepository,
        fake_qbo_client: FakeQuickBooksClient,
        realm_headers: Dict[str, str],
    ) -> None:
        sync_three_invoices(client, repository, fake_qbo_client, realm_headers)
        remote_id = repository.invoices["inv-1"].remote_id

        response = client.get(f"{SYNC_LOGS}/transaction/{remote_id}", headers=realm_headers)

        assert response.status_code == 200
        logs = response.json()["data"]
        assert [log["system_transaction_id"] for log in logs] == ["inv-1"]

    def test_get_log(
        self,
        client: TestClient,
        repository: InMemorySyncRepository,
        fake_qbo_client: FakeQuickBooksClient,
        realm_headers: Dict[str, str],
    ) -> None:
        sync_three_invoices(client, repository, fake_qbo_client, realm_headers)
        log_id = next(iter(repository.sync_logs))

        response = client.get(f"{SYNC_LOGS}/{log_id}", headers=realm_headers)

        assert response.status_code == 200
        assert response.json()["data"]["id"] == log_id

    def test_get_log_not_found(
        self, client: TestClient, realm_headers: Dict[str, str]
    ) -> None:
        response = client.get(f"{SYNC_LOGS}/missing-log", headers=realm_headers)

        assert response.status_code == 404
        assert response.json()["data"]["errorCode"] == "NOT_FOUND"

    def test_get_log_from_other_connection_not_found(
        self,
        client: TestClient,
        repository: InMemorySyncRepository,
        fake_qbo_client: FakeQuickBooksClient,
        realm_headers: Dict[str, str],
    ) -> None:
        # Arrange
        sync_three_invoices(client, repository, fake_qbo_client, realm_headers)
        repository.add_connection(make_connection(id="conn-456", realm_id="realm-456"))
        log_id = next(iter(repository.sync_logs))

        # Act
        other = client.get(f"{SYNC_LOGS}/{log_id}", headers={"realm-id": "realm-456"})
        missing_header = client.get(f"{SYNC_LOGS}/{log_id}")

        # Assert
        assert other.status_code == 404
        assert missing_header.status_code == 400
