# apps/api/src/domains/sync/dependencies.py
from typing import Optional

from fastapi import Depends, Header, Request

from src.domains.quickbooks.auth.service import QuickBooksAuthService
from src.domains.sync.models import Connection
from src.domains.sync.orchestrator import BatchSyncOrchestrator
from src.domains.sync.repository import BaseSyncRepository
from src.domains.sync.service import EntitySyncService
from src.domains.sync_logs.service import SyncAuditLog
from src.shared.exceptions import (
    AuthExpiredError,
    ConnectionNotFoundError,
    SyncValidationError,
)


def get_repository(request: Request) -> BaseSyncRepository:
    return request.app.state.repository


def get_auth_service(request: Request) -> QuickBooksAuthService:
    """The application-wide token manager; its refresh locks must be shared."""
    return request.app.state.auth_service


def get_audit_log(
    repository: BaseSyncRepository = Depends(get_repository),
) -> SyncAuditLog:
    return SyncAuditLog(repository)


def get_sync_service(
    repository: BaseSyncRepository = Depends(get_repository),
    auth_service: QuickBooksAuthService = Depends(get_auth_service),
    audit_log: SyncAuditLog = Depends(get_audit_log),
) -> EntitySyncService:
    return EntitySyncService(repository, auth_service, audit_log=audit_log)


def get_orchestrator(
    repository: BaseSyncRepository = Depends(get_repository),
    sync_service: EntitySyncService = Depends(get_sync_service),
) -> BatchSyncOrchestrator:
    return BatchSyncOrchestrator(repository, sync_service)


async def get_realm_scope(
    realm_id: Optional[str] = Header(None, alias="realm-id"),
    repository: BaseSyncRepository = Depends(get_repository),
) -> Connection:
    """
    Resolve the connection from the ``realm-id`` header.

    Connections are only created by the OAuth flow; an unknown realm is a 404.
    A disconnected connection still resolves so its sync history stays readable.
    """
    if not realm_id:
        raise SyncValidationError("realm-id header is required")
    connection = await repository.get_connection_by_realm(realm_id)
    if not connection:
        raise ConnectionNotFoundError(
            f"No QuickBooks connection found for realm {realm_id}"
        )
    return connection


async def get_realm_connection(
    connection: Connection = Depends(get_realm_scope),
) -> Connection:
    """The realm's connection, which must still be authorized to push records."""
    if not connection.is_connected:
        raise AuthExpiredError(
            f"QuickBooks connection for realm {connection.realm_id} is "
            "disconnected. Please reconnect."
        )
    return connection
