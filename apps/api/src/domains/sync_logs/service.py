# apps/api/src/domains/sync_logs/service.py
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from src.core.settings import settings
from src.domains.sync.models import SyncStatus
from src.domains.sync.repository import BaseSyncRepository
from src.shared.exceptions import EntityNotFoundError, SyncValidationError
from src.shared.responses import PaginationMetadata

from .models import (
    SYNC_LOG_SORT_FIELDS,
    SyncAttemptDetail,
    SyncLogEntry,
    SyncLogFilters,
    SyncLogKey,
    SyncLogListResponse,
    SyncLogStatistics,
)

logger = logging.getLogger(__name__)

RECENT_ACTIVITY_WINDOW = timedelta(hours=24)

_DETAIL_FIELDS = (
    "quickbooks_id",
    "request_payload",
    "response_payload",
    "error_message",
    "error_code",
    "error_kind",
    "next_retry_at",
)


def _elapsed_ms(started_at: datetime, now: datetime) -> int:
    return max(int((now - started_at).total_seconds() * 1000), 0)


class SyncAuditLog:
    """
    Latest-attempt audit trail, one row per
    (transaction type, local id, operation, connection).
    """

    def __init__(self, repository: BaseSyncRepository):
        self.repository = repository

    async def record_attempt(
        self,
        key: SyncLogKey,
        status: SyncStatus,
        detail: Optional[SyncAttemptDetail] = None,
    ) -> SyncLogEntry:
        detail = detail or SyncAttemptDetail()
        now = datetime.now(timezone.utc)
        existing = await self.repository.find_sync_log(key)

        data: Dict[str, Any] = {"status": status, "timestamp": now}
        started_at = now

        if existing:
            started_at = existing.started_at
            if status == SyncStatus.IN_PROGRESS and existing.status != SyncStatus.IN_PROGRESS:
                # A new attempt on a finished row starts from a clean slate
                started_at = now
                data.update(
                    {
                        "started_at": now,
                        "completed_at": None,
                        "duration": None,
                        "error_message": None,
                        "error_code": None,
                        "error_kind": None,
                        "next_retry_at": None,
                        "response_payload": None,
                        "retry_count": existing.retry_count + 1,
                    }
                )
        else:
            data.update(
                {
                    "started_at": now,
                    "retry_count": 0,
                    "max_retries": settings.SYNC_MAX_RETRIES,
                }
            )

        for field in _DETAIL_FIELDS:
            value = getattr(detail, field)
            if value is not None:
                data[field] = value

        if status != SyncStatus.IN_PROGRESS:
            data["completed_at"] = now
            data["duration"] = (
                detail.duration_ms
                if detail.duration_ms is not None
                else _elapsed_ms(started_at, now)
            )
        if status == SyncStatus.SUCCESS:
            data.update({"error_message": None, "error_code": None, "error_kind": None})

        if existing:
            entry = await self.repository.update_sync_log(existing.id, data)
        else:
            entry = await self.repository.create_sync_log(key, data)

        logger.debug(
            f"Audit {key.transaction_type.value} {key.system_transaction_id} "
            f"{key.operation.value} -> {status.value}"
        )
        return entry

    async def statistics(
        self,
        connection_id: str,
        filters: Optional[SyncLogFilters] = None,
    ) -> SyncLogStatistics:
        """Counts by status, type and operation plus duration and success rate."""
        now = datetime.now(timezone.utc)
        counts = await self.repository.summarize_sync_logs(
            connection_id, filters or SyncLogFilters(), now - RECENT_ACTIVITY_WINDOW
        )

        success_count = counts.by_status.get(SyncStatus.SUCCESS, 0)
        return SyncLogStatistics(
            total_logs=counts.total,
            by_status={s.value: n for s, n in counts.by_status.items() if n},
            by_transaction_type={
                t.value: n for t, n in counts.by_transaction_type.items() if n
            },
            by_operation={o.value: n for o, n in counts.by_operation.items() if n},
            success_count=success_count,
            failed_count=counts.by_status.get(SyncStatus.FAILED, 0),
            pending_count=counts.by_status.get(SyncStatus.PENDING, 0),
            in_progress_count=counts.by_status.get(SyncStatus.IN_PROGRESS, 0),
            average_duration=(
                round(counts.average_duration)
                if counts.average_duration is not None
                else None
            ),
            recent_activity=counts.recent,
            success_rate=round(success_count / counts.total * 100) if counts.total else 0,
        )


    async def list_logs(
        self,
        connection_id: str,
        filters: SyncLogFilters,
        page: int = 1,
        limit: int = 50,
        sort_by: str = "timestamp",
        sort_order: str = "desc",
    ) -> SyncLogListResponse:
        if sort_by not in SYNC_LOG_SORT_FIELDS:
            raise SyncValidationError(
                f"Invalid sortBy '{sort_by}'. Allowed: {', '.join(SYNC_LOG_SORT_FIELDS)}"
            )
        if sort_order not in ("asc", "desc"):
            raise SyncValidationError("sortOrder must be 'asc' or 'desc'")
        if filters.date_from and filters.date_to and filters.date_from > filters.date_to:
            raise SyncValidationError("dateFrom must be before dateTo")

        logs, total = await self.repository.list_sync_logs(
            connection_id,
            filters,
            skip=(page - 1) * limit,
            take=limit,
            sort_by=sort_by,
            sort_order=sort_order,
        )
        summary = await self.statistics(connection_id, filters)

        return SyncLogListResponse(
            logs=logs,
            pagination=PaginationMetadata.build(page, limit, total),
            summary=summary,
        )

    async def get_log(self, sync_log_id: str, connection_id: str) -> SyncLogEntry:
        entry = await self.repository.get_sync_log(sync_log_id, connection_id)
        if not entry:
            raise EntityNotFoundError(f"Sync log {sync_log_id} not found")
        return entry

    async def logs_for_transaction(
        self, transaction_id: str, connection_id: str
    ) -> List[SyncLogEntry]:
        """Rows whose local id or QuickBooks id matches, newest first."""
        by_local, _ = await self.repository.list_sync_logs(
            connection_id, SyncLogFilters(system_transaction_id=transaction_id)
        )
        by_remote, _ = await self.repository.list_sync_logs(
            connection_id, SyncLogFilters(quickbooks_id=transaction_id)
        )

        merged = {log.id: log for log in by_local + by_remote}
        return sorted(merged.values(), key=lambda log: log.timestamp, reverse=True)
