# apps/api/src/domains/sync/orchestrator.py
import asyncio
import logging
import time
from datetime import datetime, timedelta, timezone
from typing import List, Optional

from src.core.settings import settings
from src.shared.exceptions import BaseHTTPException, ErrorKind

from .models import (
    BatchOutcome,
    BatchSummary,
    BatchSyncResult,
    EntitySyncResult,
    SyncableEntity,
    SyncItemResult,
    TransactionType,
)
from .repository import BaseSyncRepository
from .service import EntitySyncService

logger = logging.getLogger(__name__)


def _chunk(items: List[SyncableEntity], size: int) -> List[List[SyncableEntity]]:
    return [items[i : i + size] for i in range(0, len(items), size)]


class BatchSyncOrchestrator:
    """
    Pushes every pending record of one type for a connection.

    Batches run strictly in sequence with a pacing delay between them. Inside
    a batch at most ``max_concurrency`` records are in flight at once.
    """

    def __init__(
        self,
        repository: BaseSyncRepository,
        sync_service: EntitySyncService,
        batch_size: Optional[int] = None,
        max_concurrency: Optional[int] = None,
        batch_delay_seconds: Optional[float] = None,
    ):
        self.repository = repository
        self.sync_service = sync_service
        self.batch_size = batch_size or settings.SYNC_BATCH_SIZE
        self.max_concurrency = max_concurrency or settings.SYNC_MAX_CONCURRENCY
        self.batch_delay_seconds = (
            settings.SYNC_BATCH_DELAY_SECONDS
            if batch_delay_seconds is None
            else batch_delay_seconds
        )

    async def sync_all_pending(
        self,
        transaction_type: TransactionType,
        connection_id: str,
        cancel_event: Optional[asyncio.Event] = None,
        deadline: Optional[float] = None,
    ) -> BatchSyncResult:
        """
        Sync all PENDING records without a remote id, oldest first.

        Args:
            transaction_type: INVOICE or PAYMENT
            connection_id: Connection whose records are pushed
            cancel_event: When set, no further records are started
            deadline: ``time.monotonic()`` value after which no further
                records are started

        Returns:
            BatchSyncResult with per-item results and per-batch timings.
            Records already finished are never rolled back on cancellation.
        """
        run_started = time.monotonic()
        candidates = await self.repository.list_pending(transaction_type, connection_id)

        if not candidates:
            logger.info(
                f"No pending {transaction_type.value} records for connection {connection_id}"
            )
            return BatchSyncResult(
                transaction_type=transaction_type,
                connection_id=connection_id,
                outcome=BatchOutcome.NO_OP,
            )

        batches = _chunk(candidates, self.batch_size)
        logger.info(
            f"Syncing {len(candidates)} {transaction_type.value} records for "
            f"connection {connection_id} in {len(batches)} batches"
        )

        def should_stop() -> bool:
            if cancel_event is not None and cancel_event.is_set():
                return True
            return deadline is not None and time.monotonic() >= deadline

        semaphore = asyncio.Semaphore(self.max_concurrency)
        results: List[SyncItemResult] = []
        summaries: List[BatchSummary] = []
        skipped = 0

        for index, batch in enumerate(batches):
            if should_stop():
                skipped += sum(len(b) for b in batches[index:])
                break

            started_at = datetime.now(timezone.utc)
            batch_results = await asyncio.gather(
                *[
                    self._sync_with_semaphore(
                        semaphore, transaction_type, entity, connection_id, should_stop
                    )
                    for entity in batch
                ]
            )
            completed_at = datetime.now(timezone.utc)

            attempted = [r for r in batch_results if r is not None]
            skipped += len(batch_results) - len(attempted)
            batch_items = [SyncItemResult.from_entity_result(r) for r in attempted]
            results.extend(batch_items)

            summary = BatchSummary(
                index=index,
                size=len(batch),
                success_count=sum(1 for r in batch_items if r.success),
                failure_count=sum(1 for r in batch_items if not r.success),
                started_at=started_at,
                completed_at=completed_at,
            )
            summaries.append(summary)
            logger.info(
                f"Batch {index + 1}/{len(batches)} complete: "
                f"{summary.success_count} succeeded, {summary.failure_count} failed"
            )

            is_last = index == len(batches) - 1
            if not is_last and not should_stop() and self.batch_delay_seconds > 0:
                logger.debug(f"Waiting {self.batch_delay_seconds}s before next batch")
                await self._pause_after(completed_at)

        cancelled = skipped > 0
        if cancelled:
            logger.warning(
                f"Sync run for connection {connection_id} stopped early, "
                f"{skipped} records not started"
            )

        success_count = sum(1 for r in results if r.success)
        failure_count = len(results) - success_count

        if results:
            await self.repository.touch_last_sync(
                connection_id, datetime.now(timezone.utc)
            )

        return BatchSyncResult(
            transaction_type=transaction_type,
            connection_id=connection_id,
            outcome=BatchOutcome.classify(success_count, failure_count),
            total_processed=len(results),
            success_count=success_count,
            failure_count=failure_count,
            skipped_count=skipped,
            cancelled=cancelled,
            results=results,
            batches=summaries,
            duration_seconds=time.monotonic() - run_started,
        )

    async def _pause_after(self, completed_at: datetime) -> None:
        """Wait until ``batch_delay_seconds`` have passed since ``completed_at``."""
        resume_at = completed_at + timedelta(seconds=self.batch_delay_seconds)
        remaining = (resume_at - datetime.now(timezone.utc)).total_seconds()
        # asyncio timers can fire up to a clock tick early
        while remaining > 0:
            await asyncio.sleep(remaining)
            remaining = (resume_at - datetime.now(timezone.utc)).total_seconds()

    async def _sync_with_semaphore(
        self,
        semaphore: asyncio.Semaphore,
        transaction_type: TransactionType,
        entity: SyncableEntity,
        connection_id: str,
        should_stop,
    ) -> Optional[EntitySyncResult]:
        async with semaphore:
            if should_stop():
                return None
            try:
                return await self.sync_service.sync_one(
                    transaction_type, entity.id, connection_id
                )
            except BaseHTTPException as e:
                return EntitySyncResult(
                    success=False,
                    entity_id=entity.id,
                    transaction_type=transaction_type,
                    label=entity.label,
                    error=e.message,
                    error_code=e.error_code,
                    error_kind=e.kind,
                )
            except Exception as e:
                logger.error(f"Unexpected error syncing {entity.label}: {e}", exc_info=True)
                return EntitySyncResult(
                    success=False,
                    entity_id=entity.id,
                    transaction_type=transaction_type,
                    label=entity.label,
                    error=str(e),
                    error_code="INTERNAL_ERROR",
                    error_kind=ErrorKind.INTERNAL,
                )
