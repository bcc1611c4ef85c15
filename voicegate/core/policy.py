"""
Admission Policy
================
Call types, the checks each one is subject to, and denial reasons.
"""

from enum import Enum


class CallType(str, Enum):
    """Widget call-type classification."""

    INBOUND_WEB = "inbound_web"
    OUTBOUND_WEB = "outbound_web"
    OUTBOUND_PHONE = "outbound_phone"
    INBOUND_PHONE = "inbound_phone"


class Check(str, Enum):
    """Admission steps that can apply to a call type."""

    DOMAIN = "domain"
    ACCESS_CODE = "access_code"
    RATE_LIMIT = "rate_limit"
    DAILY_BUDGET = "daily_budget"
    RESERVE_SLOT = "reserve_slot"


class DenialReason(str, Enum):
    """Expected, caller-visible reasons a request is refused."""

    WIDGET_UNKNOWN = "widget_unknown"
    CALL_TYPE_UNSUPPORTED = "call_type_unsupported"
    DOMAIN_UNAUTHORIZED = "domain_unauthorized"
    ACCESS_DENIED = "access_denied"
    RATE_LIMITED = "rate_limited"
    BUDGET_EXCEEDED = "budget_exceeded"


class FailurePolicy(str, Enum):
    """What a usage check does when the ledger cannot answer."""

    OPEN = "open"
    CLOSED = "closed"


_ALL_CHECKS = frozenset(Check)

CALL_TYPE_CHECKS: dict[CallType, frozenset[Check]] = {
    CallType.INBOUND_WEB: _ALL_CHECKS,
    CallType.OUTBOUND_WEB: _ALL_CHECKS,
    CallType.OUTBOUND_PHONE: _ALL_CHECKS,
    # The visitor dials a published number, so no call is created here
    CallType.INBOUND_PHONE: frozenset({Check.DOMAIN, Check.ACCESS_CODE}),
}

DENIAL_MESSAGES: dict[DenialReason, str] = {
    DenialReason.WIDGET_UNKNOWN: "Widget not found",
    DenialReason.CALL_TYPE_UNSUPPORTED: "Widget not configured for this call type",
    DenialReason.DOMAIN_UNAUTHORIZED: "Domain not authorized for this widget",
    DenialReason.ACCESS_DENIED: "Invalid or missing access code",
    DenialReason.RATE_LIMITED: "Rate limit exceeded. Please try again later.",
    DenialReason.BUDGET_EXCEEDED: "Daily call minutes limit reached. Please try again tomorrow.",
}


def checks_for(call_type: CallType) -> frozenset[Check]:
    return CALL_TYPE_CHECKS[call_type]


def parse_call_type(value: str | None) -> CallType | None:
    """Map a stored widget type to a CallType, or None if unrecognised."""
    if value is None:
        return CallType.INBOUND_WEB
    try:
        return CallType(value)
    except ValueError:
        return None
