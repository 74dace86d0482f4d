# apps/api/src/domains/sync_logs/models.py
from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field

from src.domains.sync.models import (
    EntitySyncOverview,
    SyncOperation,
    SyncStatus,
    TransactionType,
)
from src.shared.exceptions import ErrorKind
from src.shared.responses import PaginationMetadata

SYNC_LOG_SORT_FIELDS = (
    "timestamp",
    "status",
    "transactionType",
    "operation",
    "duration",
    "startedAt",
    "completedAt",
)


class SyncLogKey(BaseModel):
    """Composite identity of a latest-attempt audit row."""

    transaction_type: TransactionType
    system_transaction_id: str
    operation: SyncOperation = SyncOperation.CREATE
    connection_id: str


class SyncAttemptDetail(BaseModel):
    """Fields written alongside a status change."""

    quickbooks_id: Optional[str] = None
    request_payload: Optional[Any] = None
    response_payload: Optional[Any] = None
    error_message: Optional[str] = None
    error_code: Optional[str] = None
    error_kind: Optional[ErrorKind] = None
    duration_ms: Optional[int] = None
    next_retry_at: Optional[datetime] = None


class SyncLogEntry(BaseModel):
    id: str
    transaction_type: TransactionType
    system_transaction_id: str
    operation: SyncOperation
    connection_id: str
    status: SyncStatus
    quickbooks_id: Optional[str] = None
    request_payload: Optional[str] = None
    response_payload: Optional[str] = None
    error_message: Optional[str] = None
    error_code: Optional[str] = None
    error_kind: Optional[ErrorKind] = None
    timestamp: datetime
    started_at: datetime
    completed_at: Optional[datetime] = None
    duration: Optional[int] = Field(None, description="Milliseconds")
    retry_count: int = 0
    max_retries: int = 3
    next_retry_at: Optional[datetime] = None

    @property
    def key(self) -> SyncLogKey:
        return SyncLogKey(
            transaction_type=self.transaction_type,
            system_transaction_id=self.system_transaction_id,
            operation=self.operation,
            connection_id=self.connection_id,
        )

    @classmethod
    def from_prisma(cls, row: Any) -> "SyncLogEntry":
        return cls(
            id=row.id,
            transaction_type=TransactionType(row.transactionType),
            system_transaction_id=row.systemTransactionId,
            operation=SyncOperation(row.operation),
            connection_id=row.qboConnectionId,
            status=SyncStatus(row.status),
            quickbooks_id=row.quickbooksId,
            request_payload=row.requestPayload,
            response_payload=row.responsePayload,
            error_message=row.errorMessage,
            error_code=row.errorCode,
            error_kind=ErrorKind(row.errorKind) if row.errorKind else None,
            timestamp=row.timestamp,
            started_at=row.startedAt,
            completed_at=row.completedAt,
            duration=row.duration,
            retry_count=row.retryCount,
            max_retries=row.maxRetries,
            next_retry_at=row.nextRetryAt,
        )


class SyncLogFilters(BaseModel):
    transaction_type: Optional[TransactionType] = None
    status: Optional[SyncStatus] = None
    operation: Optional[SyncOperation] = None
    system_transaction_id: Optional[str] = None
    quickbooks_id: Optional[str] = None
    date_from: Optional[datetime] = None
    date_to: Optional[datetime] = None
    search: Optional[str] = None


class SyncLogCounts(BaseModel):
    """Aggregates computed by the database for one connection."""

    total: int = 0
    by_status: Dict[SyncStatus, int] = Field(default_factory=dict)
    by_transaction_type: Dict[TransactionType, int] = Field(default_factory=dict)
    by_operation: Dict[SyncOperation, int] = Field(default_factory=dict)
    recent: int = 0
    average_duration: Optional[float] = None


class SyncLogStatistics(BaseModel):
    total_logs: int = 0
    by_status: dict = Field(default_factory=dict)
    by_transaction_type: dict = Field(default_factory=dict)
    by_operation: dict = Field(default_factory=dict)
    success_count: int = 0
    failed_count: int = 0
    pending_count: int = 0
    in_progress_count: int = 0
    average_duration: Optional[int] = Field(None, description="Milliseconds")
    recent_activity: int = Field(0, description="Rows touched in the last 24 hours")
    success_rate: int = Field(0, description="Percentage, rounded")


class SyncLogListResponse(BaseModel):
    logs: List[SyncLogEntry]
    pagination: PaginationMetadata
    summary: SyncLogStatistics


SortOrder = Literal["asc", "desc"]


class EntitySyncDetail(BaseModel):
    """Current sync state of one record plus its audit rows."""

    entity: EntitySyncOverview
    logs: List[SyncLogEntry]
