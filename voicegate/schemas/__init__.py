"""
Pydantic Schemas
================
Request/Response models for API validation.
"""

from voicegate.schemas.calls import (
    OutboundCallRequest,
    OutboundCallResponse,
    PhoneLookupResponse,
    ReconcileResponse,
    RegisterCallRequest,
    RegisterCallResponse,
    WidgetConfigResponse,
)

__all__ = [
    "RegisterCallRequest",
    "RegisterCallResponse",
    "OutboundCallRequest",
    "OutboundCallResponse",
    "PhoneLookupResponse",
    "WidgetConfigResponse",
    "ReconcileResponse",
]
