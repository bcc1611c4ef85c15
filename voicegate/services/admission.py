"""
Call Admission
==============
Decides whether an inbound widget request may start a call.

Checks run in a fixed order and the first failure wins:

1. Widget lookup           -> widget_unknown
2. Requested call type     -> call_type_unsupported
3. Origin allow-list       -> domain_unauthorized
4. Access code             -> access_denied
5. Hourly rate limit       -> rate_limited
6. Daily minutes budget    -> budget_exceeded
7. Slot reservation

Which of steps 3-7 apply depends on the widget's call type (see
``voicegate.core.policy.CALL_TYPE_CHECKS``). The reservation in step 7 is a
ledger write made before any provider call, so it is counted by step 5 of
concurrent requests. Two requests racing between steps 5 and 7 can both be
admitted; rate limits are approximate upper bounds.
"""

import hmac
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta
from uuid import UUID

import structlog
from prometheus_client import Counter

from voicegate.config import settings
from voicegate.core.domains import DomainMatcher, get_domain_matcher
from voicegate.core.policy import (
    DENIAL_MESSAGES,
    CallType,
    Check,
    DenialReason,
    FailurePolicy,
    checks_for,
    parse_call_type,
)
from voicegate.models.calls import Widget
from voicegate.services.ledger import LedgerError, UsageLedger, start_of_utc_day, utcnow
from voicegate.services.slots import CallSlotManager
from voicegate.services.widgets import WidgetLookupError, WidgetRepository

logger = structlog.get_logger()

ADMISSION_DECISIONS = Counter(
    "voicegate_admission_decisions_total",
    "Admission decisions by call type and outcome",
    ["call_type", "outcome"],
)


class AdmissionError(Exception):
    """Admission could not be decided because of an infrastructure failure."""


class LedgerUnavailableError(AdmissionError):
    """A fail-closed usage check could not read the ledger."""


@dataclass
class AdmissionResult:
    """Outcome of an admission request."""

    widget: Widget | None = None
    call_type: CallType | None = None
    reason: DenialReason | None = None
    slot_id: UUID | None = None

    @property
    def admitted(self) -> bool:
        return self.reason is None

    @property
    def message(self) -> str | None:
        return DENIAL_MESSAGES[self.reason] if self.reason else None


@dataclass
class AdmissionLimits:
    """System-wide defaults and failure policies for usage checks."""

    default_calls_per_hour: int = 10
    window: timedelta = timedelta(hours=1)
    rate_limit_policy: FailurePolicy = FailurePolicy.OPEN
    budget_policy: FailurePolicy = FailurePolicy.OPEN

    @classmethod
    def from_settings(cls) -> "AdmissionLimits":
        return cls(
            default_calls_per_hour=settings.rate_limit_calls_per_hour,
            window=timedelta(seconds=settings.rate_limit_window_seconds),
            rate_limit_policy=FailurePolicy(settings.rate_limit_failure_policy),
            budget_policy=FailurePolicy(settings.daily_budget_failure_policy),
        )


def access_code_matches(expected: str | None, candidate: str | None) -> bool:
    if not expected or candidate is None:
        return False
    return hmac.compare_digest(expected.encode(), candidate.encode())


class AdmissionController:
    """Runs the admission sequence for a single request."""

    def __init__(
        self,
        ledger: UsageLedger,
        widgets: WidgetRepository,
        matcher: DomainMatcher | None = None,
        limits: AdmissionLimits | None = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.ledger = ledger
        self.widgets = widgets
        self.matcher = matcher or get_domain_matcher()
        self.limits = limits or AdmissionLimits.from_settings()
        self.clock = clock
        self.slots = CallSlotManager(ledger, clock=clock)

    async def admit(
        self,
        widget_id: UUID | str,
        origin: str | None,
        access_code: str | None = None,
        call_type: CallType | None = None,
    ) -> AdmissionResult:
        """
        Admit or deny a call request.

        Raises AdmissionError when the widget cannot be loaded, a fail-closed
        usage check cannot read the ledger, or the slot cannot be reserved.
        """
        try:
            widget = await self.widgets.get(widget_id)
        except WidgetLookupError as e:
            raise AdmissionError("Widget lookup failed") from e

        if widget is None:
            return self._deny(AdmissionResult(), DenialReason.WIDGET_UNKNOWN, widget_id)

        widget_type = parse_call_type(widget.widget_type)
        result = AdmissionResult(widget=widget, call_type=widget_type)
        if widget_type is None or (call_type is not None and call_type != widget_type):
            return self._deny(result, DenialReason.CALL_TYPE_UNSUPPORTED, widget_id)

        checks = checks_for(widget_type)

        if Check.DOMAIN in checks and not self.matcher.is_authorized(origin, widget.allowed_domain):
            return self._deny(result, DenialReason.DOMAIN_UNAUTHORIZED, widget_id, origin=origin)

        if (
            Check.ACCESS_CODE in checks
            and widget.require_access_code
            and not access_code_matches(widget.access_code, access_code)
        ):
            return self._deny(result, DenialReason.ACCESS_DENIED, widget_id)

        now = self.clock()

        if Check.RATE_LIMIT in checks and widget.rate_limit_enabled:
            if not await self._within_rate_limit(widget, now):
                return self._deny(result, DenialReason.RATE_LIMITED, widget_id)

        if (
            Check.DAILY_BUDGET in checks
            and widget.daily_minutes_enabled
            and widget.daily_minutes_limit
        ):
            if not await self._within_daily_budget(widget, now):
                return self._deny(result, DenialReason.BUDGET_EXCEEDED, widget_id)

        if Check.RESERVE_SLOT in checks:
            try:
                result.slot_id = await self.slots.reserve(widget.id, widget.user_id, widget_type)
            except LedgerError as e:
                raise AdmissionError("Could not reserve call slot") from e

        ADMISSION_DECISIONS.labels(call_type=widget_type.value, outcome="admitted").inc()
        logger.info(
            "Call admitted",
            widget_id=str(widget.id),
            call_type=widget_type.value,
            slot_id=str(result.slot_id) if result.slot_id else None,
        )
        return result

    async def _within_rate_limit(self, widget: Widget, now: datetime) -> bool:
        threshold = widget.rate_limit_calls_per_hour or self.limits.default_calls_per_hour
        try:
            count = await self.ledger.count_since(widget.id, now - self.limits.window)
        except LedgerError as e:
            return self._on_ledger_failure("rate_limit", self.limits.rate_limit_policy, widget, e)
        return count < threshold

    async def _within_daily_budget(self, widget: Widget, now: datetime) -> bool:
        try:
            seconds = await self.ledger.sum_completed_duration_since(
                widget.id, start_of_utc_day(now)
            )
        except LedgerError as e:
            return self._on_ledger_failure("daily_budget", self.limits.budget_policy, widget, e)
        minutes_used = seconds // 60
        return minutes_used < widget.daily_minutes_limit

    def _on_ledger_failure(
        self,
        check: str,
        policy: FailurePolicy,
        widget: Widget,
        error: LedgerError,
    ) -> bool:
        if policy is FailurePolicy.OPEN:
            logger.warning(
                "Usage check failed, allowing request",
                check=check,
                widget_id=str(widget.id),
                error=str(error),
            )
            return True
        logger.error(
            "Usage check failed, refusing request",
            check=check,
            widget_id=str(widget.id),
            error=str(error),
        )
        raise LedgerUnavailableError(f"{check} check unavailable") from error

    def _deny(
        self,
        result: AdmissionResult,
        reason: DenialReason,
        widget_id: UUID | str,
        **context,
    ) -> AdmissionResult:
        result.reason = reason
        call_type = result.call_type.value if result.call_type else "unknown"
        ADMISSION_DECISIONS.labels(call_type=call_type, outcome=reason.value).inc()
        logger.info("Call denied", widget_id=str(widget_id), reason=reason.value, **context)
        return result
