# apps/api/src/domains/sync/routes.py
from datetime import datetime
from typing import Annotated, Optional

from fastapi import APIRouter, Body, Depends, Path, Query, status
from fastapi.responses import JSONResponse

from src.domains.sync.dependencies import (
    get_orchestrator,
    get_realm_connection,
    get_sync_service,
)
from src.domains.sync.models import (
    BatchOutcome,
    Connection,
    EntitySyncResult,
    RetryRequest,
    SyncStatus,
    TransactionType,
)
from src.domains.sync.orchestrator import BatchSyncOrchestrator
from src.domains.sync.service import EntitySyncService
from src.shared.exceptions import ERROR_KIND_STATUS, ErrorKind
from src.shared.responses import error_response, success_response

EntityId = Annotated[
    str, Path(min_length=1, max_length=50, description="Local record id")
]


def _single_result_response(result: EntitySyncResult) -> JSONResponse:
    if result.success:
        return success_response(
            f"{result.label} synced to QuickBooks",
            result.model_dump(mode="json"),
            status_code=status.HTTP_201_CREATED,
        )

    kind = result.error_kind or ErrorKind.INTERNAL
    return error_response(
        result.error or "Sync failed",
        ERROR_KIND_STATUS[kind],
        {
            "errorCode": result.error_code,
            "errorKind": kind.value,
            "result": result.model_dump(mode="json"),
        },
    )


def build_sync_router(transaction_type: TransactionType) -> APIRouter:
    """Push-sync endpoints for one record type (invoices or payments)."""
    noun = transaction_type.value.lower() + "s"
    router = APIRouter(prefix=f"/qbo/{noun}", tags=[f"QuickBooks {noun.title()}"])

    @router.post("/sync", operation_id=f"sync{noun.title()}")
    async def sync_all(
        connection: Connection = Depends(get_realm_connection),
        orchestrator: BatchSyncOrchestrator = Depends(get_orchestrator),
    ) -> JSONResponse:
        """
        Sync every pending record for the connection.

        200 when everything succeeded or nothing was pending, 207 on mixed
        results, 400 when every attempted record failed.
        """
        result = await orchestrator.sync_all_pending(transaction_type, connection.id)
        body = result.model_dump(mode="json")
        if result.outcome == BatchOutcome.FAILED:
            return error_response(result.message, result.outcome.http_status, body)
        return success_response(
            result.message, body, status_code=result.outcome.http_status
        )

    @router.get("/sync/status", operation_id=f"list{noun.title()}SyncStatus")
    async def list_sync_status(
        connection: Connection = Depends(get_realm_connection),
        sync_service: EntitySyncService = Depends(get_sync_service),
        sync_status: Optional[SyncStatus] = Query(None, alias="syncStatus"),
        date_from: Optional[datetime] = Query(None, alias="dateFrom"),
        date_to: Optional[datetime] = Query(None, alias="dateTo"),
        page: int = Query(1, ge=1, le=1000),
        limit: int = Query(50, ge=1, le=500),
    ) -> JSONResponse:
        result = await sync_service.list_sync_status(
            transaction_type,
            connection.id,
            sync_status=sync_status,
            date_from=date_from,
            date_to=date_to,
            page=page,
            limit=limit,
        )
        return success_response(f"Retrieved {noun} sync status", result)

    @router.post("/sync/{entity_id}", operation_id=f"syncSingle{transaction_type.value.title()}")
    async def sync_single(
        entity_id: EntityId,
        connection: Connection = Depends(get_realm_connection),
        sync_service: EntitySyncService = Depends(get_sync_service),
    ) -> JSONResponse:
        result = await sync_service.sync_one(transaction_type, entity_id, connection.id)
        return _single_result_response(result)

    @router.post("/sync/{entity_id}/retry", operation_id=f"retry{transaction_type.value.title()}Sync")
    async def retry_single(
        entity_id: EntityId,
        request: Optional[RetryRequest] = Body(None),
        connection: Connection = Depends(get_realm_connection),
        sync_service: EntitySyncService = Depends(get_sync_service),
    ) -> JSONResponse:
        force = request.forceRetry if request else False
        result = await sync_service.retry(
            transaction_type, entity_id, connection.id, force=force
        )
        return _single_result_response(result)

    @router.post("/sync/{entity_id}/cancel", operation_id=f"cancel{transaction_type.value.title()}Sync")
    async def cancel_single(
        entity_id: EntityId,
        connection: Connection = Depends(get_realm_connection),
        sync_service: EntitySyncService = Depends(get_sync_service),
    ) -> JSONResponse:
        overview = await sync_service.cancel(transaction_type, entity_id, connection.id)
        return success_response(f"{overview.label} sync cancelled", overview)

    @router.get("/sync/{entity_id}/status", operation_id=f"get{transaction_type.value.title()}SyncStatus")
    async def get_sync_status(
        entity_id: EntityId,
        connection: Connection = Depends(get_realm_connection),
        sync_service: EntitySyncService = Depends(get_sync_service),
    ) -> JSONResponse:
        detail = await sync_service.get_sync_status(
            transaction_type, entity_id, connection.id
        )
        return success_response(f"Retrieved sync status for {detail.entity.label}", detail)

    return router


invoices_router = build_sync_router(TransactionType.INVOICE)
payments_router = build_sync_router(TransactionType.PAYMENT)
