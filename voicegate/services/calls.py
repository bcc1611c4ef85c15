"""
Call Registration
=================
Admission followed by call creation at the voice provider, with the slot
attached on success and released on failure.
"""

import json
import re
from collections.abc import Awaitable
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Optional
from uuid import UUID

import structlog

from voicegate.config import settings
from voicegate.core.policy import CallType
from voicegate.services.admission import AdmissionController, AdmissionResult
from voicegate.services.ledger import LedgerError, utcnow
from voicegate.services.provider import CreatedCall, RetellClient
from voicegate.services.slots import CallSlotManager, SlotStateError

logger = structlog.get_logger()

PHONE_NUMBER_RE = re.compile(r"^\+?[1-9]\d{9,14}$")
_PHONE_NOISE_RE = re.compile(r"[\s\-()]")


class WidgetConfigurationError(Exception):
    """The widget is missing configuration needed for this call."""


def normalize_phone_number(value: str) -> Optional[str]:
    """Strip formatting and prefix with '+'; None if not a valid number."""
    cleaned = _PHONE_NOISE_RE.sub("", value or "")
    if not PHONE_NUMBER_RE.match(cleaned):
        return None
    return cleaned if cleaned.startswith("+") else f"+{cleaned}"


def metadata_within_limit(metadata: Optional[dict[str, Any]]) -> bool:
    if not metadata:
        return True
    try:
        serialized = json.dumps(metadata, separators=(",", ":"))
    except (TypeError, ValueError):
        return False
    return len(serialized.encode()) <= settings.max_metadata_size_bytes


@dataclass
class CallOutcome:
    """Admission result plus the provider call, if one was created."""

    admission: AdmissionResult
    call: Optional[CreatedCall] = None


class CallService:
    """Registers web and phone calls for widgets."""

    def __init__(
        self,
        controller: AdmissionController,
        provider: RetellClient,
    ):
        self.controller = controller
        self.provider = provider
        self.slots: CallSlotManager = controller.slots

    async def register_web_call(
        self,
        widget_id: UUID | str,
        origin: Optional[str],
        metadata: Optional[dict[str, Any]] = None,
        access_code: Optional[str] = None,
    ) -> CallOutcome:
        """
        Admit a browser call and create it at the provider.

        Raises AdmissionError or ProviderError; the slot is released before
        any failure from the provider call propagates.
        """
        admission = await self.controller.admit(widget_id, origin, access_code)
        if not admission.admitted:
            return CallOutcome(admission=admission)

        if admission.call_type not in (CallType.INBOUND_WEB, CallType.OUTBOUND_WEB):
            await self.release(admission.slot_id)
            raise WidgetConfigurationError("Widget not configured for web calls")

        widget = admission.widget
        call = await self._create(
            admission,
            self.provider.create_web_call(widget.retell_api_key, widget.agent_id, metadata),
        )
        return CallOutcome(admission=admission, call=call)

    async def place_outbound_call(
        self,
        widget_id: UUID | str,
        origin: Optional[str],
        phone_number: str,
        metadata: Optional[dict[str, Any]] = None,
        access_code: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> CallOutcome:
        """Admit an outbound phone call and place it from the widget's number."""
        admission = await self.controller.admit(
            widget_id, origin, access_code, call_type=CallType.OUTBOUND_PHONE
        )
        if not admission.admitted:
            return CallOutcome(admission=admission)

        widget = admission.widget
        if not widget.outbound_phone_number:
            await self.release(admission.slot_id)
            raise WidgetConfigurationError("Outbound phone number not configured")

        merged = {
            **widget.default_metadata,
            **(metadata or {}),
            "widget_id": str(widget.id),
            "origin": origin,
            "timestamp": (now or utcnow()).isoformat(),
            "phone_number": phone_number,
        }

        call = await self._create(
            admission,
            self.provider.create_phone_call(
                widget.retell_api_key,
                widget.agent_id,
                from_number=widget.outbound_phone_number,
                to_number=phone_number,
                metadata=merged,
            ),
        )
        return CallOutcome(admission=admission, call=call)

    async def lookup_inbound_number(
        self,
        widget_id: UUID | str,
        origin: Optional[str],
        access_code: Optional[str] = None,
    ) -> tuple[AdmissionResult, Optional[str]]:
        """Admit a phone-number lookup and find the number routed to the widget's agent."""
        admission = await self.controller.admit(
            widget_id, origin, access_code, call_type=CallType.INBOUND_PHONE
        )
        if not admission.admitted:
            return admission, None

        widget = admission.widget
        number = await self.provider.find_inbound_number(widget.retell_api_key, widget.agent_id)
        return admission, number

    async def _create(
        self,
        admission: AdmissionResult,
        request: Awaitable[CreatedCall],
    ) -> CreatedCall:
        try:
            call = await request
        except Exception:
            # A call that was never created must not keep counting
            await self.release(admission.slot_id)
            raise
        await self.attach(admission.slot_id, call.call_id)
        return call

    async def attach(self, slot_id: Optional[UUID], call_id: str) -> None:
        """Attach a call to its slot; failures are logged, not raised."""
        if slot_id is None:
            return
        try:
            await self.slots.attach(slot_id, call_id)
        except (LedgerError, SlotStateError) as e:
            logger.error(
                "Failed to attach call to slot",
                slot_id=str(slot_id),
                call_id=call_id,
                error=str(e),
            )

    async def release(self, slot_id: Optional[UUID]) -> None:
        """Release a slot; failures are logged, not raised."""
        if slot_id is None:
            return
        try:
            await self.slots.release(slot_id)
        except LedgerError as e:
            logger.error("Failed to release call slot", slot_id=str(slot_id), error=str(e))
