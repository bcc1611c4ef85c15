"""
Call Reconciler
===============
Backfills call duration/status from the voice provider and prunes old
call records.
"""

from collections.abc import Callable
from contextlib import AbstractAsyncContextManager
from dataclasses import asdict, dataclass
from datetime import datetime, timedelta
from typing import Optional

import structlog
from prometheus_client import Counter
from sqlalchemy.ext.asyncio import AsyncSession

from voicegate.config import settings
from voicegate.database import get_session_context
from voicegate.services.ledger import (
    STATUS_ENDED,
    STATUS_ERROR,
    LedgerError,
    UsageLedger,
    utcnow,
)
from voicegate.services.provider import ProviderError, RetellClient

logger = structlog.get_logger()

RECONCILED_RECORDS = Counter(
    "voicegate_reconciler_records_total",
    "Call records processed by the reconciler",
    ["result"],
)


@dataclass
class SyncSummary:
    checked: int = 0
    synced: int = 0
    errors: int = 0


@dataclass
class CleanupSummary:
    deleted: int = 0
    orphans_released: int = 0
    retention_days: int = 0


@dataclass
class ReconcileSummary:
    """Counts reported to whoever triggered the run."""

    sync: SyncSummary
    cleanup: CleanupSummary

    def to_dict(self) -> dict:
        return asdict(self)


class CallReconciler:
    """
    Sync call durations and prune the usage ledger.

    Invoked on a schedule by the job scheduler or the cron endpoint; it does
    not schedule itself.
    """

    def __init__(
        self,
        session_context: Callable[
            [], AbstractAsyncContextManager[AsyncSession]
        ] = get_session_context,
        provider: Optional[RetellClient] = None,
        clock: Callable[[], datetime] = utcnow,
        batch_size: Optional[int] = None,
        grace_period: Optional[timedelta] = None,
        retention_days: Optional[int] = None,
        orphan_timeout: Optional[timedelta] = None,
    ):
        self.session_context = session_context
        self.provider = provider
        self.clock = clock
        self.batch_size = batch_size or settings.reconciler_batch_size
        self.grace_period = (
            grace_period
            if grace_period is not None
            else timedelta(minutes=settings.reconciler_grace_minutes)
        )
        self.retention_days = retention_days or settings.call_logs_retention_days
        self.orphan_timeout = (
            orphan_timeout
            if orphan_timeout is not None
            else timedelta(minutes=settings.orphan_slot_timeout_minutes)
        )

    async def run(self) -> ReconcileSummary:
        """
        Run one reconciliation pass.

        Returns:
            Sync and cleanup counts

        Raises:
            LedgerError: if the batch cannot be selected or pruning fails
        """
        now = self.clock()
        logger.info("Starting call reconciliation", batch_size=self.batch_size)

        async with self.session_context() as session:
            ledger = UsageLedger(session)

            if self.provider is None:
                async with RetellClient() as provider:
                    sync = await self.sync_durations(ledger, provider, now)
            else:
                sync = await self.sync_durations(ledger, self.provider, now)

            cleanup = CleanupSummary(retention_days=self.retention_days)
            if self.orphan_timeout > timedelta(0):
                cleanup.orphans_released = await ledger.delete_orphans(now - self.orphan_timeout)
            cleanup.deleted = await ledger.prune_before(now - timedelta(days=self.retention_days))

        RECONCILED_RECORDS.labels(result="pruned").inc(cleanup.deleted)
        RECONCILED_RECORDS.labels(result="orphan_released").inc(cleanup.orphans_released)
        logger.info(
            "Call reconciliation completed",
            checked=sync.checked,
            synced=sync.synced,
            errors=sync.errors,
            deleted=cleanup.deleted,
            orphans_released=cleanup.orphans_released,
        )
        return ReconcileSummary(sync=sync, cleanup=cleanup)

    async def sync_durations(
        self,
        ledger: UsageLedger,
        provider: RetellClient,
        now: datetime,
    ) -> SyncSummary:
        """Poll the provider for ongoing calls older than the grace period."""
        pending = await ledger.pending_durations(now - self.grace_period, self.batch_size)
        summary = SyncSummary(checked=len(pending))
        logger.info("Found calls to sync", count=summary.checked)

        for record, api_key in pending:
            try:
                status = await provider.get_call(api_key, record.call_id)
            except ProviderError as e:
                logger.warning("Failed to fetch call status", call_id=record.call_id, error=str(e))
                summary.errors += 1
                RECONCILED_RECORDS.labels(result="error").inc()
                continue
            except Exception as e:
                # One bad record must not abort the batch
                logger.exception(
                    "Unexpected error fetching call status",
                    call_id=record.call_id,
                    error=str(e),
                )
                summary.errors += 1
                RECONCILED_RECORDS.labels(result="error").inc()
                continue

            try:
                if status.status == STATUS_ENDED and status.duration_seconds is not None:
                    await ledger.record_outcome(record.id, STATUS_ENDED, status.duration_seconds)
                elif status.status == STATUS_ERROR:
                    await ledger.record_outcome(record.id, STATUS_ERROR)
                else:
                    # Still in progress; next run
                    continue
            except LedgerError as e:
                logger.error("Failed to update call", call_id=record.call_id, error=str(e))
                summary.errors += 1
                RECONCILED_RECORDS.labels(result="error").inc()
                continue

            summary.synced += 1
            RECONCILED_RECORDS.labels(result=status.status).inc()
            logger.info(
                "Synced call",
                call_id=record.call_id,
                status=status.status,
                duration_seconds=status.duration_seconds,
            )

        return summary
