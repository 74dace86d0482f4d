"""
Persistence seam for the push-sync core.

Every component receives a ``BaseSyncRepository``; ``PrismaSyncRepository``
is the production implementation on top of prisma-client-py.
"""
import json
from abc import ABC, abstractmethod
from datetime import datetime
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Sequence, Tuple

from src.domains.sync.models import (
    CLAIMABLE_STATUSES,
    Connection,
    InvoiceRecord,
    PaymentRecord,
    SyncableEntity,
    SyncOperation,
    SyncStatus,
    TransactionType,
)
from src.domains.sync_logs.models import (
    SyncLogCounts,
    SyncLogEntry,
    SyncLogFilters,
    SyncLogKey,
)

if TYPE_CHECKING:
    from prisma import Prisma


class BaseSyncRepository(ABC):
    """Storage operations needed by the token manager, sync engine and audit log."""

    # Connections

    @abstractmethod
    async def get_connection(self, connection_id: str) -> Optional[Connection]:
        pass

    @abstractmethod
    async def get_connection_by_realm(self, realm_id: str) -> Optional[Connection]:
        pass

    @abstractmethod
    async def list_connected(self) -> List[Connection]:
        pass

    @abstractmethod
    async def save_connection(
        self, realm_id: str, data: Dict[str, Any]
    ) -> Connection:
        """Create or update the connection for a realm from OAuth credentials."""
        pass

    @abstractmethod
    async def swap_credentials(
        self,
        connection_id: str,
        expected_refresh_token: Optional[str],
        access_token: str,
        refresh_token: str,
        expires_at: datetime,
        refresh_expires_at: datetime,
    ) -> bool:
        """
        Store rotated credentials only if the refresh token is still the one
        the caller exchanged. Returns False when another writer got there first.
        """
        pass

    @abstractmethod
    async def mark_disconnected(
        self, connection_id: str, at: datetime, clear_tokens: bool = False
    ) -> None:
        pass

    @abstractmethod
    async def touch_last_sync(self, connection_id: str, at: datetime) -> None:
        pass

    # Syncable entities

    @abstractmethod
    async def get_invoice(self, invoice_id: str) -> Optional[InvoiceRecord]:
        pass

    @abstractmethod
    async def get_payment(self, payment_id: str) -> Optional[PaymentRecord]:
        pass

    async def get_entity(
        self, transaction_type: TransactionType, entity_id: str
    ) -> Optional[SyncableEntity]:
        if transaction_type == TransactionType.INVOICE:
            return await self.get_invoice(entity_id)
        return await self.get_payment(entity_id)

    @abstractmethod
    async def list_pending(
        self, transaction_type: TransactionType, connection_id: str
    ) -> List[SyncableEntity]:
        """PENDING entities without a remote id, oldest first."""
        pass

    @abstractmethod
    async def transition_status(
        self,
        transaction_type: TransactionType,
        entity_id: str,
        from_statuses: Sequence[SyncStatus],
        to_status: SyncStatus,
        require_unsynced: bool = True,
    ) -> bool:
        """Conditional status update. Returns True when this caller won."""
        pass

    async def claim(self, transaction_type: TransactionType, entity_id: str) -> bool:
        return await self.transition_status(
            transaction_type, entity_id, CLAIMABLE_STATUSES, SyncStatus.IN_PROGRESS
        )

    @abstractmethod
    async def mark_sync_success(
        self,
        transaction_type: TransactionType,
        entity_id: str,
        remote_id: str,
        sync_token: Optional[str],
        synced_at: datetime,
        extra: Optional[Dict[str, Any]] = None,
    ) -> None:
        pass

    @abstractmethod
    async def mark_sync_failed(
        self, transaction_type: TransactionType, entity_id: str, attempted_at: datetime
    ) -> None:
        pass

    @abstractmethod
    async def list_entities(
        self,
        transaction_type: TransactionType,
        connection_id: str,
        sync_status: Optional[SyncStatus],
        date_from: Optional[datetime],
        date_to: Optional[datetime],
        skip: int,
        take: int,
    ) -> Tuple[List[SyncableEntity], int]:
        pass

    @abstractmethod
    async def count_entities_by_status(
        self, transaction_type: TransactionType, connection_id: str
    ) -> Dict[SyncStatus, int]:
        pass

    # Sync audit log

    @abstractmethod
    async def find_sync_log(self, key: SyncLogKey) -> Optional[SyncLogEntry]:
        pass

    @abstractmethod
    async def get_sync_log(
        self, sync_log_id: str, connection_id: str
    ) -> Optional[SyncLogEntry]:
        pass

    @abstractmethod
    async def create_sync_log(
        self, key: SyncLogKey, data: Dict[str, Any]
    ) -> SyncLogEntry:
        pass

    @abstractmethod
    async def update_sync_log(
        self, sync_log_id: str, data: Dict[str, Any]
    ) -> SyncLogEntry:
        pass

    @abstractmethod
    async def list_sync_logs(
        self,
        connection_id: Optional[str],
        filters: SyncLogFilters,
        skip: Optional[int] = None,
        take: Optional[int] = None,
        sort_by: str = "timestamp",
        sort_order: str = "desc",
    ) -> Tuple[List[SyncLogEntry], int]:
        pass

    @abstractmethod
    async def summarize_sync_logs(
        self, connection_id: str, filters: SyncLogFilters, recent_since: datetime
    ) -> SyncLogCounts:
        """Counts by status, type and operation without loading the rows."""
        pass


_ENTITY_MODELS = {
    TransactionType.INVOICE: ("invoice", "qboInvoiceId", InvoiceRecord),
    TransactionType.PAYMENT: ("payment", "qboPaymentId", PaymentRecord),
}

# Snake-case audit fields to Prisma column names.
_SYNC_LOG_COLUMNS = {
    "status": "status",
    "quickbooks_id": "quickbooksId",
    "request_payload": "requestPayload",
    "response_payload": "responsePayload",
    "error_message": "errorMessage",
    "error_code": "errorCode",
    "error_kind": "errorKind",
    "timestamp": "timestamp",
    "started_at": "startedAt",
    "completed_at": "completedAt",
    "duration": "duration",
    "retry_count": "retryCount",
    "max_retries": "maxRetries",
    "next_retry_at": "nextRetryAt",
}


def _enum_value(value: Any) -> Any:
    return getattr(value, "value", value)


def _serialize_payload(value: Any) -> Optional[str]:
    if value is None or isinstance(value, str):
        return value
    return json.dumps(value, default=str)


class PrismaSyncRepository(BaseSyncRepository):
    """Prisma-backed implementation."""

    def __init__(self, db: "Prisma"):
        self.db = db

    def _model(self, transaction_type: TransactionType) -> Any:
        name, _, _ = _ENTITY_MODELS[transaction_type]
        return getattr(self.db, name)

    # Connections

    async def get_connection(self, connection_id: str) -> Optional[Connection]:
        row = await self.db.qboconnection.find_unique(where={"id": connection_id})
        return Connection.from_prisma(row) if row else None

    async def get_connection_by_realm(self, realm_id: str) -> Optional[Connection]:
        row = await self.db.qboconnection.find_unique(where={"realmId": realm_id})
        return Connection.from_prisma(row) if row else None

    async def list_connected(self) -> List[Connection]:
        rows = await self.db.qboconnection.find_many(
            where={"isConnected": True}, order={"connectedAt": "desc"}
        )
        return [Connection.from_prisma(row) for row in rows]

    async def save_connection(
        self, realm_id: str, data: Dict[str, Any]
    ) -> Connection:
        row = await self.db.qboconnection.upsert(
            where={"realmId": realm_id},
            data={
                "create": {"realmId": realm_id, **data},
                "update": data,
            },
        )
        return Connection.from_prisma(row)

    async def swap_credentials(
        self,
        connection_id: str,
        expected_refresh_token: Optional[str],
        access_token: str,
        refresh_token: str,
        expires_at: datetime,
        refresh_expires_at: datetime,
    ) -> bool:
        count = await self.db.qboconnection.update_many(
            where={"id": connection_id, "refreshToken": expected_refresh_token},
            data={
                "accessToken": access_token,
                "refreshToken": refresh_token,
                "expiresAt": expires_at,
                "refreshExpiresAt": refresh_expires_at,
            },
        )
        return count == 1

    async def mark_disconnected(
        self, connection_id: str, at: datetime, clear_tokens: bool = False
    ) -> None:
        data: Dict[str, Any] = {"isConnected": False, "disconnectedAt": at}
        if clear_tokens:
            data.update({"accessToken": None, "refreshToken": None})
        await self.db.qboconnection.update(where={"id": connection_id}, data=data)

    async def touch_last_sync(self, connection_id: str, at: datetime) -> None:
        await self.db.qboconnection.update(
            where={"id": connection_id}, data={"lastSyncAt": at}
        )

    # Syncable entities

    async def get_invoice(self, invoice_id: str) -> Optional[InvoiceRecord]:
        row = await self.db.invoice.find_unique(where={"id": invoice_id})
        return InvoiceRecord.from_prisma(row) if row else None

    async def get_payment(self, payment_id: str) -> Optional[PaymentRecord]:
        row = await self.db.payment.find_unique(where={"id": payment_id})
        return PaymentRecord.from_prisma(row) if row else None

    async def list_pending(
        self, transaction_type: TransactionType, connection_id: str
    ) -> List[SyncableEntity]:
        _, remote_field, record_cls = _ENTITY_MODELS[transaction_type]
        rows = await self._model(transaction_type).find_many(
            where={
                "qboConnectionId": connection_id,
                "syncStatus": SyncStatus.PENDING.value,
                remote_field: None,
            },
            order={"createdAt": "asc"},
        )
        return [record_cls.from_prisma(row) for row in rows]

    async def transition_status(
        self,
        transaction_type: TransactionType,
        entity_id: str,
        from_statuses: Sequence[SyncStatus],
        to_status: SyncStatus,
        require_unsynced: bool = True,
    ) -> bool:
        _, remote_field, _ = _ENTITY_MODELS[transaction_type]
        where: Dict[str, Any] = {
            "id": entity_id,
            "syncStatus": {"in": [s.value for s in from_statuses]},
        }
        if require_unsynced:
            where[remote_field] = None

        count = await self._model(transaction_type).update_many(
            where=where, data={"syncStatus": to_status.value}
        )
        return count == 1

    async def mark_sync_success(
        self,
        transaction_type: TransactionType,
        entity_id: str,
        remote_id: str,
        sync_token: Optional[str],
        synced_at: datetime,
        extra: Optional[Dict[str, Any]] = None,
    ) -> None:
        _, remote_field, _ = _ENTITY_MODELS[transaction_type]
        data: Dict[str, Any] = {
            remote_field: remote_id,
            "syncStatus": SyncStatus.SUCCESS.value,
            "syncToken": sync_token,
            "lastSyncedAt": synced_at,
        }
        if extra:
            data.update(extra)

        # Remote id is written at most once.
        await self._model(transaction_type).update_many(
            where={"id": entity_id, remote_field: None}, data=data
        )

    async def mark_sync_failed(
        self, transaction_type: TransactionType, entity_id: str, attempted_at: datetime
    ) -> None:
        await self._model(transaction_type).update(
            where={"id": entity_id},
            data={
                "syncStatus": SyncStatus.FAILED.value,
                "lastSyncedAt": attempted_at,
            },
        )

    def _entity_where(
        self,
        connection_id: str,
        sync_status: Optional[SyncStatus],
        date_from: Optional[datetime],
        date_to: Optional[datetime],
    ) -> Dict[str, Any]:
        where: Dict[str, Any] = {"qboConnectionId": connection_id}
        if sync_status:
            where["syncStatus"] = sync_status.value
        if date_from or date_to:
            created: Dict[str, datetime] = {}
            if date_from:
                created["gte"] = date_from
            if date_to:
                created["lte"] = date_to
            where["createdAt"] = created
        return where

    async def list_entities(
        self,
        transaction_type: TransactionType,
        connection_id: str,
        sync_status: Optional[SyncStatus],
        date_from: Optional[datetime],
        date_to: Optional[datetime],
        skip: int,
        take: int,
    ) -> Tuple[List[SyncableEntity], int]:
        _, _, record_cls = _ENTITY_MODELS[transaction_type]
        model = self._model(transaction_type)
        where = self._entity_where(connection_id, sync_status, date_from, date_to)

        total = await model.count(where=where)
        rows = await model.find_many(
            where=where, skip=skip, take=take, order={"createdAt": "desc"}
        )
        return [record_cls.from_prisma(row) for row in rows], total

    async def count_entities_by_status(
        self, transaction_type: TransactionType, connection_id: str
    ) -> Dict[SyncStatus, int]:
        model = self._model(transaction_type)
        counts: Dict[SyncStatus, int] = {}
        for sync_status in SyncStatus:
            counts[sync_status] = await model.count(
                where={
                    "qboConnectionId": connection_id,
                    "syncStatus": sync_status.value,
                }
            )
        return counts

    # Sync audit log

    def _log_data(self, data: Dict[str, Any]) -> Dict[str, Any]:
        row: Dict[str, Any] = {}
        for field, value in data.items():
            column = _SYNC_LOG_COLUMNS[field]
            if field in ("request_payload", "response_payload"):
                value = _serialize_payload(value)
            row[column] = _enum_value(value)
        return row

    async def find_sync_log(self, key: SyncLogKey) -> Optional[SyncLogEntry]:
        row = await self.db.synclog.find_first(
            where={
                "transactionType": key.transaction_type.value,
                "systemTransactionId": key.system_transaction_id,
                "operation": key.operation.value,
                "qboConnectionId": key.connection_id,
            }
        )
        return SyncLogEntry.from_prisma(row) if row else None

    async def get_sync_log(
        self, sync_log_id: str, connection_id: str
    ) -> Optional[SyncLogEntry]:
        row = await self.db.synclog.find_first(
            where={"id": sync_log_id, "qboConnectionId": connection_id}
        )
        return SyncLogEntry.from_prisma(row) if row else None

    async def create_sync_log(
        self, key: SyncLogKey, data: Dict[str, Any]
    ) -> SyncLogEntry:
        row_data = {
            "transactionType": key.transaction_type.value,
            "systemTransactionId": key.system_transaction_id,
            "operation": key.operation.value,
            "qboConnectionId": key.connection_id,
            **self._log_data(data),
        }
        if key.transaction_type == TransactionType.INVOICE:
            row_data["invoiceId"] = key.system_transaction_id
        else:
            row_data["paymentId"] = key.system_transaction_id

        row = await self.db.synclog.create(data=row_data)
        return SyncLogEntry.from_prisma(row)

    async def update_sync_log(
        self, sync_log_id: str, data: Dict[str, Any]
    ) -> SyncLogEntry:
        row = await self.db.synclog.update(
            where={"id": sync_log_id}, data=self._log_data(data)
        )
        return SyncLogEntry.from_prisma(row)

    def _sync_log_where(
        self, connection_id: Optional[str], filters: SyncLogFilters
    ) -> Dict[str, Any]:
        where: Dict[str, Any] = {}
        if connection_id:
            where["qboConnectionId"] = connection_id
        if filters.transaction_type:
            where["transactionType"] = filters.transaction_type.value
        if filters.status:
            where["status"] = filters.status.value
        if filters.operation:
            where["operation"] = filters.operation.value
        if filters.system_transaction_id:
            where["systemTransactionId"] = filters.system_transaction_id
        if filters.quickbooks_id:
            where["quickbooksId"] = filters.quickbooks_id

        if filters.date_from or filters.date_to:
            timestamp_filter: Dict[str, datetime] = {}
            if filters.date_from:
                timestamp_filter["gte"] = filters.date_from
            if filters.date_to:
                timestamp_filter["lte"] = filters.date_to
            where["timestamp"] = timestamp_filter

        if filters.search:
            search_term = filters.search.strip()
            where["OR"] = [
                {"systemTransactionId": {"contains": search_term, "mode": "insensitive"}},
                {"quickbooksId": {"contains": search_term, "mode": "insensitive"}},
                {"errorMessage": {"contains": search_term, "mode": "insensitive"}},
                {"errorCode": {"contains": search_term, "mode": "insensitive"}},
            ]

        return where

    async def list_sync_logs(
        self,
        connection_id: Optional[str],
        filters: SyncLogFilters,
        skip: Optional[int] = None,
        take: Optional[int] = None,
        sort_by: str = "timestamp",
        sort_order: str = "desc",
    ) -> Tuple[List[SyncLogEntry], int]:
        where = self._sync_log_where(connection_id, filters)

        total = await self.db.synclog.count(where=where)
        query: Dict[str, Any] = {"where": where, "order": {sort_by: sort_order}}
        if skip is not None:
            query["skip"] = skip
        if take is not None:
            query["take"] = take

        rows = await self.db.synclog.find_many(**query)
        return [SyncLogEntry.from_prisma(row) for row in rows], total

    async def summarize_sync_logs(
        self, connection_id: str, filters: SyncLogFilters, recent_since: datetime
    ) -> SyncLogCounts:
        where = self._sync_log_where(connection_id, filters)

        async def count(condition: Dict[str, Any]) -> int:
            return await self.db.synclog.count(where={"AND": [where, condition]})

        counts = SyncLogCounts(total=await self.db.synclog.count(where=where))
        for sync_status in SyncStatus:
            counts.by_status[sync_status] = await count({"status": sync_status.value})
        for transaction_type in TransactionType:
            counts.by_transaction_type[transaction_type] = await count(
                {"transactionType": transaction_type.value}
            )
        for operation in SyncOperation:
            counts.by_operation[operation] = await count({"operation": operation.value})
        counts.recent = await count({"timestamp": {"gte": recent_since}})

        # A single connection is in scope, so there is at most one group
        groups = await self.db.synclog.group_by(
            ["qboConnectionId"], where=where, avg={"duration": True}
        )
        if groups:
            counts.average_duration = (groups[0].get("_avg") or {}).get("duration")
        return counts
