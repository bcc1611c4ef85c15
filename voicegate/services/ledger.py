"""
Usage Ledger
============
Shared log of call attempts backing rate limits and daily minute budgets.

Every write commits immediately so that concurrent admission requests see
each other's reservations. The ledger takes no locks; the count-then-insert
sequence in admission is a best-effort bound, not a transactional one.
"""

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager, suppress
from datetime import datetime, timezone
from uuid import UUID

import structlog
from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from voicegate.models.calls import CallLog, Widget

logger = structlog.get_logger()

STATUS_ONGOING = "ongoing"
STATUS_ENDED = "ended"
STATUS_ERROR = "error"

# Bulk writes do not sync objects already loaded in the session
_BULK = {"synchronize_session": False}


class LedgerError(Exception):
    """Raised when the ledger's storage backend fails."""


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def start_of_utc_day(now: datetime) -> datetime:
    return now.astimezone(timezone.utc).replace(hour=0, minute=0, second=0, microsecond=0)


class UsageLedger:
    """Count/sum/insert/update/delete access to call attempt records."""

    def __init__(self, session: AsyncSession):
        self.session = session

    @asynccontextmanager
    async def _storage(self, operation: str, **context) -> AsyncIterator[None]:
        try:
            yield
        except SQLAlchemyError as e:
            logger.error("Ledger operation failed", operation=operation, error=str(e), **context)
            with suppress(SQLAlchemyError):
                await self.session.rollback()
            raise LedgerError(f"{operation} failed") from e

    async def count_since(self, widget_id: UUID, window_start: datetime) -> int:
        """Count attempts for a widget started at or after window_start."""
        async with self._storage("count_since", widget_id=str(widget_id)):
            stmt = select(func.count(CallLog.id)).where(
                CallLog.widget_id == widget_id,
                CallLog.started_at >= window_start,
            )
            result = await self.session.execute(stmt)
            return result.scalar_one()

    async def sum_completed_duration_since(self, widget_id: UUID, day_start: datetime) -> int:
        """Sum known call durations (seconds) for a widget since day_start."""
        async with self._storage("sum_completed_duration_since", widget_id=str(widget_id)):
            stmt = select(func.coalesce(func.sum(CallLog.duration_seconds), 0)).where(
                CallLog.widget_id == widget_id,
                CallLog.started_at >= day_start,
                CallLog.duration_seconds.is_not(None),
            )
            result = await self.session.execute(stmt)
            return int(result.scalar_one())

    async def insert(self, record: CallLog) -> CallLog:
        async with self._storage("insert", widget_id=str(record.widget_id)):
            self.session.add(record)
            await self.session.commit()
            return record

    async def get(self, record_id: UUID) -> CallLog | None:
        async with self._storage("get", record_id=str(record_id)):
            return await self.session.get(CallLog, record_id)

    async def set_external_id(self, record_id: UUID, call_id: str) -> bool:
        """Attach a provider call ID to a record that does not have one yet."""
        async with self._storage("set_external_id", record_id=str(record_id)):
            stmt = (
                update(CallLog)
                .where(CallLog.id == record_id, CallLog.call_id.is_(None))
                .values(call_id=call_id)
            )
            result = await self.session.execute(stmt, execution_options=_BULK)
            await self.session.commit()
            return result.rowcount == 1

    async def delete_unattached(self, record_id: UUID) -> bool:
        """Delete a record that was never attached to a provider call."""
        async with self._storage("delete_unattached", record_id=str(record_id)):
            stmt = delete(CallLog).where(CallLog.id == record_id, CallLog.call_id.is_(None))
            result = await self.session.execute(stmt, execution_options=_BULK)
            await self.session.commit()
            return result.rowcount == 1

    async def pending_durations(
        self,
        started_before: datetime,
        limit: int,
    ) -> list[tuple[CallLog, str]]:
        """
        Ongoing, attached records with no duration, oldest first.

        Returns (record, provider api key) pairs.
        """
        async with self._storage("pending_durations"):
            stmt = (
                select(CallLog, Widget.retell_api_key)
                .join(Widget, Widget.id == CallLog.widget_id)
                .where(
                    CallLog.duration_seconds.is_(None),
                    CallLog.call_status == STATUS_ONGOING,
                    CallLog.call_id.is_not(None),
                    CallLog.started_at < started_before,
                )
                .order_by(CallLog.started_at)
                .limit(limit)
            )
            result = await self.session.execute(stmt)
            return [(row[0], row[1]) for row in result.all()]

    async def record_outcome(
        self,
        record_id: UUID,
        status: str,
        duration_seconds: int | None = None,
    ) -> bool:
        """Write the final status (and duration, if known) of an ongoing call."""
        values: dict = {"call_status": status}
        if duration_seconds is not None:
            values["duration_seconds"] = duration_seconds

        async with self._storage("record_outcome", record_id=str(record_id)):
            stmt = (
                update(CallLog)
                .where(CallLog.id == record_id, CallLog.call_status == STATUS_ONGOING)
                .values(**values)
            )
            result = await self.session.execute(stmt, execution_options=_BULK)
            await self.session.commit()
            return result.rowcount == 1

    async def delete_orphans(self, started_before: datetime) -> int:
        """Delete reservations that never received a provider call ID."""
        async with self._storage("delete_orphans"):
            stmt = delete(CallLog).where(
                CallLog.call_id.is_(None),
                CallLog.call_status == STATUS_ONGOING,
                CallLog.started_at < started_before,
            )
            result = await self.session.execute(stmt, execution_options=_BULK)
            await self.session.commit()
            return result.rowcount or 0

    async def prune_before(self, cutoff: datetime) -> int:
        """Delete every record started before cutoff, whatever its status."""
        async with self._storage("prune_before"):
            stmt = delete(CallLog).where(CallLog.started_at < cutoff)
            result = await self.session.execute(stmt, execution_options=_BULK)
            await self.session.commit()
            return result.rowcount or 0
