"""
Call Schemas
============
Pydantic models for the public widget API.
"""

from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel, Field, field_validator

from voicegate.services.calls import metadata_within_limit


def _check_metadata(v: dict[str, Any] | None) -> dict[str, Any] | None:
    if not metadata_within_limit(v):
        raise ValueError("Invalid metadata format or size")
    return v


class RegisterCallRequest(BaseModel):
    """Browser call registration from the embedded widget."""

    widget_id: UUID
    metadata: dict[str, Any] | None = None
    access_code: str | None = Field(default=None, max_length=255)

    @field_validator("metadata")
    @classmethod
    def validate_metadata(cls, v: dict[str, Any] | None) -> dict[str, Any] | None:
        return _check_metadata(v)


class RegisterCallResponse(BaseModel):
    """Provider call handle for the widget to join."""

    call_id: str
    access_token: str | None = None


class OutboundCallRequest(BaseModel):
    """Request for the widget's agent to call a visitor."""

    widget_id: UUID
    phone_number: str = Field(..., min_length=1, max_length=32)
    metadata: dict[str, Any] | None = None
    access_code: str | None = Field(default=None, max_length=255)

    @field_validator("metadata")
    @classmethod
    def validate_metadata(cls, v: dict[str, Any] | None) -> dict[str, Any] | None:
        return _check_metadata(v)


class OutboundCallResponse(BaseModel):
    success: bool = True
    call_id: str
    status: str = "initiated"
    message: str = "Call initiated successfully! You should receive a call shortly."


class PhoneLookupResponse(BaseModel):
    phone_number: str
    display_text: str
    widget_type: str


class DefaultMetadata(BaseModel):
    agent_name: str | None = None
    property_type: str | None = None
    lead_source: str | None = None
    contact_email: str | None = None
    notes: str | None = None


class WidgetConfigResponse(BaseModel):
    """Public widget configuration; never includes credentials or codes."""

    id: UUID
    widget_type: str
    button_text: str | None = None
    display_text: str | None = None
    agent_persona: str | None = None
    opening_message: str | None = None
    require_access_code: bool = False
    default_metadata: DefaultMetadata
    outbound_phone_number: str | None = None


class SyncCounts(BaseModel):
    checked: int
    synced: int
    errors: int


class CleanupCounts(BaseModel):
    deleted: int
    orphans_released: int
    retention_days: int


class ReconcileResponse(BaseModel):
    """Result of a reconciliation run."""

    success: bool = True
    sync: SyncCounts
    cleanup: CleanupCounts
    timestamp: datetime
