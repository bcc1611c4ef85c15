"""
Call Slots
==========
Lifecycle of a single admitted call attempt.

    reserved --attach--> active --(reconciler)--> closed
    reserved --release--> (deleted)

A reserved slot that is neither attached nor released keeps counting toward
the widget's rate limit until the reconciler sweeps it.
"""

from collections.abc import Callable
from datetime import datetime
from uuid import UUID

import structlog
from prometheus_client import Counter

from voicegate.core.policy import CallType
from voicegate.models.calls import CallLog
from voicegate.services.ledger import STATUS_ONGOING, UsageLedger, utcnow

logger = structlog.get_logger()

SLOT_TRANSITIONS = Counter(
    "voicegate_slot_transitions_total",
    "Call slot lifecycle transitions",
    ["transition"],
)


class SlotStateError(Exception):
    """Raised when a slot is missing or not in the reserved state."""


class CallSlotManager:
    """Reserve, attach and release call slots in the usage ledger."""

    def __init__(
        self,
        ledger: UsageLedger,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.ledger = ledger
        self.clock = clock

    async def reserve(
        self,
        widget_id: UUID,
        account_id: str,
        call_type: CallType,
    ) -> UUID:
        """
        Insert a placeholder call record and return its ID.

        Raises LedgerError on storage failure.
        """
        record = CallLog(
            widget_id=widget_id,
            user_id=account_id,
            call_id=None,
            call_type=call_type.value,
            started_at=self.clock(),
            duration_seconds=None,
            call_status=STATUS_ONGOING,
        )
        await self.ledger.insert(record)
        SLOT_TRANSITIONS.labels(transition="reserve").inc()
        logger.info("Reserved call slot", slot_id=str(record.id), widget_id=str(widget_id))
        return record.id

    async def attach(self, slot_id: UUID, external_call_id: str) -> None:
        """
        Attach the provider-assigned call ID to a reserved slot.

        Raises SlotStateError if the slot is gone or already attached.
        """
        if not await self.ledger.set_external_id(slot_id, external_call_id):
            raise SlotStateError(f"Slot {slot_id} is not reserved")
        SLOT_TRANSITIONS.labels(transition="attach").inc()
        logger.info("Attached call to slot", slot_id=str(slot_id), call_id=external_call_id)

    async def release(self, slot_id: UUID) -> bool:
        """
        Delete a reserved slot so a failed attempt stops counting.

        Returns False if there was nothing to release.
        """
        released = await self.ledger.delete_unattached(slot_id)
        if released:
            SLOT_TRANSITIONS.labels(transition="release").inc()
            logger.info("Released call slot", slot_id=str(slot_id))
        else:
            logger.warning("No reserved slot to release", slot_id=str(slot_id))
        return released
