# apps/api/src/domains/sync/models.py
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional, Union

from fastapi import status
from pydantic import BaseModel, ConfigDict, Field

from src.shared.exceptions import ErrorKind
from src.shared.responses import PaginationMetadata


class SyncStatus(str, Enum):
    PENDING = "PENDING"
    IN_PROGRESS = "IN_PROGRESS"
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"
    RETRY = "RETRY"
    CANCELLED = "CANCELLED"


class TransactionType(str, Enum):
    INVOICE = "INVOICE"
    PAYMENT = "PAYMENT"


class SyncOperation(str, Enum):
    CREATE = "CREATE"
    UPDATE = "UPDATE"
    DELETE = "DELETE"
    READ = "READ"


ALLOWED_TRANSITIONS: Dict[SyncStatus, tuple] = {
    SyncStatus.PENDING: (SyncStatus.IN_PROGRESS, SyncStatus.CANCELLED),
    SyncStatus.RETRY: (SyncStatus.IN_PROGRESS, SyncStatus.CANCELLED),
    # RETRY from IN_PROGRESS only through a forced retry of an interrupted run
    SyncStatus.IN_PROGRESS: (SyncStatus.SUCCESS, SyncStatus.FAILED, SyncStatus.RETRY),
    SyncStatus.FAILED: (SyncStatus.RETRY, SyncStatus.CANCELLED),
    SyncStatus.CANCELLED: (SyncStatus.RETRY,),
    SyncStatus.SUCCESS: (),
}


def can_transition(current: SyncStatus, target: SyncStatus) -> bool:
    return target in ALLOWED_TRANSITIONS.get(current, ())


def statuses_into(target: SyncStatus) -> List[SyncStatus]:
    """Every status the lifecycle allows to move to ``target``."""
    return [s for s in SyncStatus if can_transition(s, target)]


# States an entity may be claimed from for a new remote create.
CLAIMABLE_STATUSES = tuple(statuses_into(SyncStatus.IN_PROGRESS))


class BatchOutcome(str, Enum):
    """Overall classification of a batch run."""

    NO_OP = "NO_OP"
    SUCCESS = "SUCCESS"
    PARTIAL = "PARTIAL"
    FAILED = "FAILED"

    @property
    def http_status(self) -> int:
        return {
            BatchOutcome.NO_OP: status.HTTP_200_OK,
            BatchOutcome.SUCCESS: status.HTTP_200_OK,
            BatchOutcome.PARTIAL: status.HTTP_207_MULTI_STATUS,
            BatchOutcome.FAILED: status.HTTP_400_BAD_REQUEST,
        }[self]

    @classmethod
    def classify(cls, success_count: int, failure_count: int) -> "BatchOutcome":
        if success_count + failure_count == 0:
            return cls.NO_OP
        if failure_count == 0:
            return cls.SUCCESS
        if success_count == 0:
            return cls.FAILED
        return cls.PARTIAL


class Connection(BaseModel):
    """A QuickBooks company (realm) and its OAuth credential state."""

    id: str
    realm_id: str
    company_name: Optional[str] = None
    access_token: Optional[str] = None
    refresh_token: Optional[str] = None
    expires_at: Optional[datetime] = None
    refresh_expires_at: Optional[datetime] = None
    is_connected: bool = False
    connected_at: Optional[datetime] = None
    disconnected_at: Optional[datetime] = None
    last_sync_at: Optional[datetime] = None

    @classmethod
    def from_prisma(cls, row: Any) -> "Connection":
        return cls(
            id=row.id,
            realm_id=row.realmId,
            company_name=row.companyName,
            access_token=row.accessToken,
            refresh_token=row.refreshToken,
            expires_at=row.expiresAt,
            refresh_expires_at=row.refreshExpiresAt,
            is_connected=row.isConnected,
            connected_at=row.connectedAt,
            disconnected_at=row.disconnectedAt,
            last_sync_at=row.lastSyncAt,
        )


class LineItem(BaseModel):
    """Invoice line as stored locally in the ``lineItems`` JSON column."""

    model_config = ConfigDict(populate_by_name=True)

    detail_type: str = Field("SalesItemLineDetail", alias="detailType")
    amount: Decimal
    description: Optional[str] = None
    item_ref: Optional[str] = Field(None, alias="itemRef")
    item_name: Optional[str] = Field(None, alias="itemName")
    quantity: Optional[Decimal] = None
    unit_price: Optional[Decimal] = Field(None, alias="unitPrice")
    tax_code_ref: Optional[str] = Field(None, alias="taxCodeRef")
    discount_account_ref: Optional[str] = Field(None, alias="discountAccountRef")


class InvoiceRecord(BaseModel):
    id: str
    connection_id: str
    customer_id: str
    doc_number: Optional[str] = None
    invoice_date: Optional[datetime] = None
    due_date: Optional[datetime] = None
    total: Decimal
    line_items: List[LineItem] = Field(default_factory=list)
    notes: Optional[str] = None
    remote_id: Optional[str] = None
    sync_status: SyncStatus = SyncStatus.PENDING
    sync_token: Optional[str] = None
    last_synced_at: Optional[datetime] = None
    created_at: Optional[datetime] = None

    transaction_type: TransactionType = Field(
        TransactionType.INVOICE, exclude=True
    )

    @property
    def label(self) -> str:
        return self.doc_number or f"Invoice-{self.id}"

    @classmethod
    def from_prisma(cls, row: Any) -> "InvoiceRecord":
        lines = row.lineItems or []
        return cls(
            id=row.id,
            connection_id=row.qboConnectionId,
            customer_id=row.customerId,
            doc_number=row.docNumber,
            invoice_date=row.invoiceDate,
            due_date=row.dueDate,
            total=row.total,
            line_items=[LineItem.model_validate(line) for line in lines],
            notes=row.notes,
            remote_id=row.qboInvoiceId,
            sync_status=SyncStatus(row.syncStatus),
            sync_token=row.syncToken,
            last_synced_at=row.lastSyncedAt,
            created_at=row.createdAt,
        )


class PaymentRecord(BaseModel):
    id: str
    connection_id: str
    invoice_id: str
    amount: Decimal
    total_amount: Optional[Decimal] = None
    payment_date: Optional[datetime] = None
    reference_number: Optional[str] = None
    notes: Optional[str] = None
    deposit_to_account_ref: Optional[str] = None
    linked_transactions: List[Dict[str, Any]] = Field(default_factory=list)
    remote_invoice_id: Optional[str] = None
    unapplied_amount: Optional[Decimal] = None
    remote_id: Optional[str] = None
    sync_status: SyncStatus = SyncStatus.PENDING
    sync_token: Optional[str] = None
    last_synced_at: Optional[datetime] = None
    created_at: Optional[datetime] = None

    transaction_type: TransactionType = Field(
        TransactionType.PAYMENT, exclude=True
    )

    @property
    def label(self) -> str:
        return self.reference_number or f"Payment-{self.id}"

    @classmethod
    def from_prisma(cls, row: Any) -> "PaymentRecord":
        return cls(
            id=row.id,
            connection_id=row.qboConnectionId,
            invoice_id=row.invoiceId,
            amount=row.amount,
            total_amount=row.totalAmount,
            payment_date=row.paymentDate,
            reference_number=row.referenceNumber,
            notes=row.notes,
            deposit_to_account_ref=row.depositToAccountRef,
            linked_transactions=row.linkedTransactions or [],
            remote_invoice_id=row.qboInvoiceId,
            unapplied_amount=row.unappliedAmount,
            remote_id=row.qboPaymentId,
            sync_status=SyncStatus(row.syncStatus),
            sync_token=row.syncToken,
            last_synced_at=row.lastSyncedAt,
            created_at=row.createdAt,
        )


SyncableEntity = Union[InvoiceRecord, PaymentRecord]


class EntitySyncResult(BaseModel):
    """Outcome of a single ``sync_one`` call. Failures are values, not raises."""

    success: bool
    entity_id: str
    transaction_type: TransactionType
    label: str
    remote_id: Optional[str] = None
    sync_token: Optional[str] = None
    status: Optional[SyncStatus] = None
    error: Optional[str] = None
    error_code: Optional[str] = None
    error_kind: Optional[ErrorKind] = None
    duration_ms: Optional[int] = None

    @property
    def already_synced(self) -> bool:
        return self.error_kind == ErrorKind.ALREADY_SYNCED


class SyncItemResult(BaseModel):
    id: str
    label: str
    success: bool
    remote_id: Optional[str] = None
    error: Optional[str] = None
    error_code: Optional[str] = None

    @classmethod
    def from_entity_result(cls, result: EntitySyncResult) -> "SyncItemResult":
        return cls(
            id=result.entity_id,
            label=result.label,
            success=result.success,
            remote_id=result.remote_id,
            error=result.error,
            error_code=result.error_code,
        )


class BatchSummary(BaseModel):
    index: int
    size: int
    success_count: int
    failure_count: int
    started_at: datetime
    completed_at: datetime


class BatchSyncResult(BaseModel):
    transaction_type: TransactionType
    connection_id: str
    outcome: BatchOutcome
    total_processed: int = 0
    success_count: int = 0
    failure_count: int = 0
    skipped_count: int = Field(0, description="Items not started due to cancellation")
    cancelled: bool = False
    results: List[SyncItemResult] = Field(default_factory=list)
    batches: List[BatchSummary] = Field(default_factory=list)
    duration_seconds: float = 0.0

    @property
    def message(self) -> str:
        noun = self.transaction_type.value.lower() + "s"
        if self.outcome == BatchOutcome.NO_OP:
            return f"No pending {noun} to sync"
        text = (
            f"Processed {self.total_processed} {noun}: "
            f"{self.success_count} succeeded, {self.failure_count} failed"
        )
        if self.cancelled:
            text += f", {self.skipped_count} skipped after cancellation"
        return text


class RetryRequest(BaseModel):
    forceRetry: bool = Field(False, description="Also recover records stuck IN_PROGRESS")


class EntitySyncOverview(BaseModel):
    id: str
    label: str
    transaction_type: TransactionType
    sync_status: SyncStatus
    remote_id: Optional[str] = None
    sync_token: Optional[str] = None
    last_synced_at: Optional[datetime] = None
    created_at: Optional[datetime] = None

    @classmethod
    def from_entity(cls, entity: SyncableEntity) -> "EntitySyncOverview":
        return cls(
            id=entity.id,
            label=entity.label,
            transaction_type=entity.transaction_type,
            sync_status=entity.sync_status,
            remote_id=entity.remote_id,
            sync_token=entity.sync_token,
            last_synced_at=entity.last_synced_at,
            created_at=entity.created_at,
        )


class EntitySyncStatusList(BaseModel):
    items: List[EntitySyncOverview]
    pagination: PaginationMetadata
    summary: Dict[str, int] = Field(
        default_factory=dict, description="Counts by sync status"
    )
