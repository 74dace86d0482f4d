# apps/api/src/domains/sync_logs/routes.py
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse

from src.domains.sync.dependencies import get_audit_log, get_realm_scope
from src.domains.sync.models import (
    Connection,
    SyncOperation,
    SyncStatus,
    TransactionType,
)
from src.domains.sync_logs.models import SyncLogFilters
from src.domains.sync_logs.service import SyncAuditLog
from src.shared.responses import success_response

router = APIRouter(prefix="/qbo/sync-logs", tags=["Sync Logs"])


@router.get("", operation_id="listSyncLogs")
async def list_sync_logs(
    connection: Connection = Depends(get_realm_scope),
    audit_log: SyncAuditLog = Depends(get_audit_log),
    page: int = Query(1, description="Page number for pagination", ge=1, le=1000),
    limit: int = Query(50, description="Number of records per page", ge=1, le=500),
    transaction_type: Optional[TransactionType] = Query(None, alias="transactionType"),
    status: Optional[SyncStatus] = Query(None, description="Filter by sync status"),
    operation: Optional[SyncOperation] = Query(None),
    system_transaction_id: Optional[str] = Query(None, alias="systemTransactionId"),
    quickbooks_id: Optional[str] = Query(None, alias="quickbooksId"),
    date_from: Optional[datetime] = Query(None, alias="dateFrom"),
    date_to: Optional[datetime] = Query(None, alias="dateTo"),
    search: Optional[str] = Query(
        None, description="Search ids, error messages and error codes"
    ),
    sort_by: str = Query("timestamp", alias="sortBy"),
    sort_order: str = Query("desc", alias="sortOrder"),
) -> JSONResponse:
    """
    Paginated sync log query with a summary block.

    Scoped to the connection named by the ``realm-id`` header.
    """
    filters = SyncLogFilters(
        transaction_type=transaction_type,
        status=status,
        operation=operation,
        system_transaction_id=system_transaction_id,
        quickbooks_id=quickbooks_id,
        date_from=date_from,
        date_to=date_to,
        search=search,
    )
    result = await audit_log.list_logs(
        connection.id,
        filters,
        page=page,
        limit=limit,
        sort_by=sort_by,
        sort_order=sort_order,
    )
    return success_response("Sync logs retrieved successfully", result)


@router.get("/statistics", operation_id="getSyncLogStatistics")
async def get_statistics(
    connection: Connection = Depends(get_realm_scope),
    audit_log: SyncAuditLog = Depends(get_audit_log),
) -> JSONResponse:
    stats = await audit_log.statistics(connection.id)
    return success_response("Sync statistics retrieved successfully", stats)


@router.get("/transaction/{transaction_id}", operation_id="getSyncLogsByTransaction")
async def get_logs_for_transaction(
    transaction_id: str,
    connection: Connection = Depends(get_realm_scope),
    audit_log: SyncAuditLog = Depends(get_audit_log),
) -> JSONResponse:
    logs = await audit_log.logs_for_transaction(transaction_id, connection.id)
    return success_response(f"Found {len(logs)} sync logs", logs)


@router.get("/{sync_log_id}", operation_id="getSyncLog")
async def get_sync_log(
    sync_log_id: str,
    connection: Connection = Depends(get_realm_scope),
    audit_log: SyncAuditLog = Depends(get_audit_log),
) -> JSONResponse:
    entry = await audit_log.get_log(sync_log_id, connection.id)
    return success_response("Sync log retrieved successfully", entry)
