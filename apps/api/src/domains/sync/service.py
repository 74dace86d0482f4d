# apps/api/src/domains/sync/service.py
import json
import logging
import time
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from src.core.settings import settings
from src.domains.quickbooks.auth.service import QuickBooksAuthService
from src.domains.quickbooks.client import QuickBooksClient
from src.domains.quickbooks.transformer import PayloadTransformer
from src.domains.quickbooks.types import QBOCreatedEntity, QBOPaymentPayload
from src.domains.sync_logs.models import (
    EntitySyncDetail,
    SyncAttemptDetail,
    SyncLogEntry,
    SyncLogFilters,
    SyncLogKey,
)
from src.domains.sync_logs.service import SyncAuditLog
from src.shared.exceptions import (
    AlreadySyncedError,
    BaseHTTPException,
    EntityNotFoundError,
    ErrorKind,
    InternalError,
    SyncConflictError,
)
from src.shared.responses import PaginationMetadata

from .models import (
    CLAIMABLE_STATUSES,
    EntitySyncOverview,
    EntitySyncResult,
    EntitySyncStatusList,
    SyncableEntity,
    SyncOperation,
    SyncStatus,
    TransactionType,
    can_transition,
    statuses_into,
)
from .repository import BaseSyncRepository

logger = logging.getLogger(__name__)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _elapsed_ms(started: float) -> int:
    return int((time.monotonic() - started) * 1000)


def _load_payload(raw: Optional[str]) -> Dict[str, Any]:
    return json.loads(raw) if raw else {}


def _linked_invoice_id(payment_payload: Dict[str, Any]) -> Optional[str]:
    for line in payment_payload.get("Line") or []:
        for txn in line.get("LinkedTxn") or []:
            if txn.get("TxnType") == "Invoice":
                return txn.get("TxnId")
    return None


class EntitySyncService:
    """Per-record sync lifecycle: claim, transform, create remotely, record."""

    def __init__(
        self,
        repository: BaseSyncRepository,
        auth_service: QuickBooksAuthService,
        client: Optional[QuickBooksClient] = None,
        transformer: Optional[PayloadTransformer] = None,
        audit_log: Optional[SyncAuditLog] = None,
    ):
        self.repository = repository
        self.auth_service = auth_service
        self.client = client or auth_service.client
        self.transformer = transformer or PayloadTransformer(repository)
        self.audit_log = audit_log or SyncAuditLog(repository)

    async def sync_one(
        self,
        transaction_type: TransactionType,
        entity_id: str,
        connection_id: str,
    ) -> EntitySyncResult:
        """
        Create one invoice or payment in QuickBooks.

        Remote faults, transport errors and auth failures come back as a
        failed ``EntitySyncResult``; nothing is retried here.

        Raises:
            EntityNotFoundError: No such record for this connection
        """
        entity = await self._load(transaction_type, entity_id, connection_id)

        if entity.remote_id:
            return self._already_synced_result(entity)

        if entity.sync_status not in CLAIMABLE_STATUSES:
            return self._result(
                entity,
                success=False,
                status=entity.sync_status,
                error=(
                    f"{entity.label} is {entity.sync_status.value}; "
                    "retry it before syncing again"
                ),
                error_code="INVALID_STATE",
                error_kind=ErrorKind.VALIDATION,
            )

        if not await self.repository.claim(transaction_type, entity_id):
            logger.info(f"{entity.label} was claimed by another sync run")
            return self._result(
                entity,
                success=False,
                error=f"{entity.label} is already being synced",
                error_code=SyncConflictError.error_code,
                error_kind=ErrorKind.CONFLICT,
            )

        return await self._submit(entity, connection_id)

    def _log_key(self, entity: SyncableEntity, connection_id: str) -> SyncLogKey:
        return SyncLogKey(
            transaction_type=entity.transaction_type,
            system_transaction_id=entity.id,
            operation=SyncOperation.CREATE,
            connection_id=connection_id,
        )

    async def _submit(self, entity: SyncableEntity, connection_id: str) -> EntitySyncResult:
        key = self._log_key(entity, connection_id)
        started = time.monotonic()
        audit_entry = await self._audit(key, SyncStatus.IN_PROGRESS)
        logger.info(f"Syncing {entity.label} to QuickBooks")

        payload = None
        try:
            payload = await self.transformer.to_remote_payload(entity)
            credentials = await self.auth_service.get_credentials(connection_id)
            created = await self.client.create_entity(
                payload.endpoint, payload.to_wire(), credentials
            )
            remote = QBOCreatedEntity(**created)
        except BaseHTTPException as e:
            return await self._record_failure(entity, key, e, started, payload, audit_entry)
        except Exception as e:
            logger.error(f"Unexpected error syncing {entity.label}: {e}", exc_info=True)
            return await self._record_failure(
                entity, key, InternalError(str(e)), started, payload, audit_entry
            )

        duration_ms = _elapsed_ms(started)
        synced_at = utcnow()
        extra: Dict[str, Any] = {}
        if isinstance(payload, QBOPaymentPayload):
            if payload.linked_invoice_id:
                extra["qboInvoiceId"] = payload.linked_invoice_id
            if remote.UnappliedAmt is not None:
                extra["unappliedAmount"] = remote.UnappliedAmt

        try:
            await self.repository.mark_sync_success(
                entity.transaction_type,
                entity.id,
                remote_id=remote.Id,
                sync_token=remote.SyncToken,
                synced_at=synced_at,
                extra=extra,
            )
        except Exception as e:
            # Created remotely; the record stays IN_PROGRESS so it is not resubmitted.
            logger.error(
                f"{entity.label} created in QuickBooks as {remote.Id} but the local "
                f"update failed: {e}",
                exc_info=True,
            )
            await self._audit(
                key,
                SyncStatus.FAILED,
                SyncAttemptDetail(
                    quickbooks_id=remote.Id,
                    request_payload=payload.to_wire(),
                    response_payload=created,
                    error_message=f"Local update failed after remote create: {e}",
                    error_code="LOCAL_UPDATE_FAILED",
                    error_kind=ErrorKind.INTERNAL,
                    duration_ms=duration_ms,
                ),
            )
            return self._result(
                entity,
                success=False,
                remote_id=remote.Id,
                status=SyncStatus.IN_PROGRESS,
                error=f"Local update failed after remote create: {e}",
                error_code="LOCAL_UPDATE_FAILED",
                error_kind=ErrorKind.INTERNAL,
                duration_ms=duration_ms,
            )

        await self._audit(
            key,
            SyncStatus.SUCCESS,
            SyncAttemptDetail(
                quickbooks_id=remote.Id,
                request_payload=payload.to_wire(),
                response_payload=created,
                duration_ms=duration_ms,
            ),
        )
        logger.info(f"Synced {entity.label} as QuickBooks id {remote.Id}")

        return self._result(
            entity,
            success=True,
            remote_id=remote.Id,
            sync_token=remote.SyncToken,
            status=SyncStatus.SUCCESS,
            duration_ms=duration_ms,
        )

    async def _record_failure(
        self,
        entity: SyncableEntity,
        key: SyncLogKey,
        error: BaseHTTPException,
        started: float,
        payload: Any,
        audit_entry: Optional[SyncLogEntry],
    ) -> EntitySyncResult:
        duration_ms = _elapsed_ms(started)
        now = utcnow()
        logger.warning(
            f"Failed to sync {entity.label}: [{error.error_code}] {error.message}"
        )

        try:
            await self.repository.mark_sync_failed(entity.transaction_type, entity.id, now)
        except Exception as e:
            logger.error(f"Could not mark {entity.label} as FAILED: {e}", exc_info=True)

        await self._audit(
            key,
            SyncStatus.FAILED,
            SyncAttemptDetail(
                request_payload=payload.to_wire() if payload is not None else None,
                error_message=error.message,
                error_code=error.error_code,
                error_kind=error.kind,
                duration_ms=duration_ms,
                next_retry_at=self._next_retry_at(error, audit_entry, now),
            ),
        )

        return self._result(
            entity,
            success=False,
            status=SyncStatus.FAILED,
            error=error.message,
            error_code=error.error_code,
            error_kind=error.kind,
            duration_ms=duration_ms,
        )

    def _next_retry_at(
        self,
        error: BaseHTTPException,
        audit_entry: Optional[SyncLogEntry],
        now: datetime,
    ) -> Optional[datetime]:
        """Backoff hint for transient failures; retries stay a caller decision."""
        if error.kind != ErrorKind.NETWORK or audit_entry is None:
            return None
        if audit_entry.retry_count >= audit_entry.max_retries:
            return None
        backoff = settings.SYNC_RETRY_BACKOFF_SECONDS * (2 ** audit_entry.retry_count)
        return now + timedelta(seconds=backoff)

    async def _audit(
        self,
        key: SyncLogKey,
        status: SyncStatus,
        detail: Optional[SyncAttemptDetail] = None,
    ) -> Optional[SyncLogEntry]:
        try:
            return await self.audit_log.record_attempt(key, status, detail)
        except Exception as e:
            # The sync outcome on the record itself is authoritative.
            logger.error(
                f"Failed to write sync log for {key.transaction_type.value} "
                f"{key.system_transaction_id}: {e}",
                exc_info=True,
            )
            return None

    async def retry(
        self,
        transaction_type: TransactionType,
        entity_id: str,
        connection_id: str,
        force: bool = False,
    ) -> EntitySyncResult:
        """
        Move a FAILED or CANCELLED record back to RETRY and sync it.

        ``force`` also recovers a record left IN_PROGRESS by an interrupted run.
        A record QuickBooks already created is completed locally from its
        audit row instead of being sent again.
        """
        entity = await self._load(transaction_type, entity_id, connection_id)
        if entity.remote_id:
            return self._already_synced_result(entity)

        if entity.sync_status not in CLAIMABLE_STATUSES:
            if entity.sync_status == SyncStatus.IN_PROGRESS and not force:
                raise SyncConflictError(
                    f"{entity.label} is IN_PROGRESS and cannot be retried without forceRetry"
                )
            if not can_transition(entity.sync_status, SyncStatus.RETRY):
                raise SyncConflictError(
                    f"{entity.label} is {entity.sync_status.value} and cannot be retried"
                )

            recovered = await self._complete_remote_create(entity, connection_id)
            if recovered:
                return recovered

            from_statuses = [
                s
                for s in statuses_into(SyncStatus.RETRY)
                if force or s != SyncStatus.IN_PROGRESS
            ]
            moved = await self.repository.transition_status(
                transaction_type, entity_id, from_statuses, SyncStatus.RETRY
            )
            if not moved:
                raise SyncConflictError(f"{entity.label} changed state, try again")
            logger.info(f"{entity.label} moved to RETRY")

        return await self.sync_one(transaction_type, entity_id, connection_id)

    async def _complete_remote_create(
        self, entity: SyncableEntity, connection_id: str
    ) -> Optional[EntitySyncResult]:
        """
        Finish a record whose remote create succeeded but whose local update did not.

        The QuickBooks id is taken from the audit row; nothing is sent to
        QuickBooks. Returns None when no remote id was ever recorded.
        """
        key = self._log_key(entity, connection_id)
        entry = await self.repository.find_sync_log(key)
        if entry is None or not entry.quickbooks_id:
            return None

        response = _load_payload(entry.response_payload)
        remote = QBOCreatedEntity(**{**response, "Id": entry.quickbooks_id})
        extra: Dict[str, Any] = {}
        if entity.transaction_type == TransactionType.PAYMENT:
            linked_invoice_id = _linked_invoice_id(_load_payload(entry.request_payload))
            if linked_invoice_id:
                extra["qboInvoiceId"] = linked_invoice_id
            if remote.UnappliedAmt is not None:
                extra["unappliedAmount"] = remote.UnappliedAmt

        try:
            await self.repository.mark_sync_success(
                entity.transaction_type,
                entity.id,
                remote_id=remote.Id,
                sync_token=remote.SyncToken,
                synced_at=utcnow(),
                extra=extra,
            )
        except Exception as e:
            raise InternalError(
                f"{entity.label} exists in QuickBooks as {remote.Id} but the local "
                f"update failed again: {e}"
            ) from e

        await self._audit(
            key,
            SyncStatus.SUCCESS,
            SyncAttemptDetail(quickbooks_id=remote.Id, duration_ms=entry.duration),
        )
        logger.info(f"Completed {entity.label} from recorded QuickBooks id {remote.Id}")

        return self._result(
            entity,
            success=True,
            remote_id=remote.Id,
            sync_token=remote.SyncToken,
            status=SyncStatus.SUCCESS,
        )

    async def cancel(
        self,
        transaction_type: TransactionType,
        entity_id: str,
        connection_id: str,
    ) -> EntitySyncOverview:
        entity = await self._load(transaction_type, entity_id, connection_id)
        if entity.remote_id:
            raise AlreadySyncedError(
                f"{entity.label} is already synced to QuickBooks (ID: {entity.remote_id})"
            )

        if not can_transition(entity.sync_status, SyncStatus.CANCELLED):
            raise SyncConflictError(
                f"{entity.label} is {entity.sync_status.value} and cannot be cancelled"
            )

        cancelled = await self.repository.transition_status(
            transaction_type,
            entity_id,
            statuses_into(SyncStatus.CANCELLED),
            SyncStatus.CANCELLED,
        )
        if not cancelled:
            raise SyncConflictError(f"{entity.label} changed state, try again")

        logger.info(f"{entity.label} cancelled")
        return EntitySyncOverview.from_entity(
            entity.model_copy(update={"sync_status": SyncStatus.CANCELLED})
        )

    async def get_sync_status(
        self,
        transaction_type: TransactionType,
        entity_id: str,
        connection_id: str,
    ) -> EntitySyncDetail:
        entity = await self._load(transaction_type, entity_id, connection_id)
        logs, _ = await self.repository.list_sync_logs(
            connection_id,
            SyncLogFilters(
                transaction_type=transaction_type, system_transaction_id=entity_id
            ),
        )
        return EntitySyncDetail(entity=EntitySyncOverview.from_entity(entity), logs=logs)

    async def list_sync_status(
        self,
        transaction_type: TransactionType,
        connection_id: str,
        sync_status: Optional[SyncStatus] = None,
        date_from: Optional[datetime] = None,
        date_to: Optional[datetime] = None,
        page: int = 1,
        limit: int = 50,
    ) -> EntitySyncStatusList:
        entities, total = await self.repository.list_entities(
            transaction_type,
            connection_id,
            sync_status,
            date_from,
            date_to,
            skip=(page - 1) * limit,
            take=limit,
        )
        counts = await self.repository.count_entities_by_status(
            transaction_type, connection_id
        )
        return EntitySyncStatusList(
            items=[EntitySyncOverview.from_entity(e) for e in entities],
            pagination=PaginationMetadata.build(page, limit, total),
            summary={s.value: n for s, n in counts.items()},
        )

    async def _load(
        self, transaction_type: TransactionType, entity_id: str, connection_id: str
    ) -> SyncableEntity:
        entity = await self.repository.get_entity(transaction_type, entity_id)
        if not entity or entity.connection_id != connection_id:
            raise EntityNotFoundError(
                f"{transaction_type.value.title()} {entity_id} not found"
            )
        return entity

    def _already_synced_result(self, entity: SyncableEntity) -> EntitySyncResult:
        return self._result(
            entity,
            success=False,
            remote_id=entity.remote_id,
            status=entity.sync_status,
            error=(
                f"{entity.label} is already synced to QuickBooks "
                f"(ID: {entity.remote_id})"
            ),
            error_code=AlreadySyncedError.error_code,
            error_kind=ErrorKind.ALREADY_SYNCED,
        )

    def _result(self, entity: SyncableEntity, **fields: Any) -> EntitySyncResult:
        return EntitySyncResult(
            entity_id=entity.id,
            transaction_type=entity.transaction_type,
            label=entity.label,
            **fields,
        )
