"""
Widget and Call Models
======================
Models for widget configuration and the call usage ledger.
"""

from datetime import datetime
from uuid import UUID, uuid4

from sqlalchemy import (
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column

from voicegate.models.base import Base, TimestampMixin


class Widget(Base, TimestampMixin):
    """
    Embeddable voice-call widget.
    Owned by a platform account; the admission core only reads it.
    """

    __tablename__ = "widgets"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    user_id: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    widget_type: Mapped[str] = mapped_column(
        String(32),
        nullable=False,
        default="inbound_web",
    )

    # Provider credentials, passed through to the voice provider
    retell_api_key: Mapped[str] = mapped_column(String(255), nullable=False)
    agent_id: Mapped[str] = mapped_column(String(255), nullable=False)
    outbound_phone_number: Mapped[str | None] = mapped_column(String(32), nullable=True)

    # Security and usage policy
    allowed_domain: Mapped[str] = mapped_column(Text, nullable=False, default="")
    rate_limit_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    rate_limit_calls_per_hour: Mapped[int | None] = mapped_column(Integer, nullable=True)
    daily_minutes_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    daily_minutes_limit: Mapped[int | None] = mapped_column(Integer, nullable=True)
    require_access_code: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    access_code: Mapped[str | None] = mapped_column(String(255), nullable=True)

    # Public presentation
    button_text: Mapped[str | None] = mapped_column(String(100), nullable=True)
    display_text: Mapped[str | None] = mapped_column(Text, nullable=True)
    agent_persona: Mapped[str | None] = mapped_column(Text, nullable=True)
    opening_message: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Default call metadata, overridable per page
    default_agent_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    default_property_type: Mapped[str | None] = mapped_column(String(255), nullable=True)
    default_lead_source: Mapped[str | None] = mapped_column(String(255), nullable=True)
    default_contact_email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    default_notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    @property
    def default_metadata(self) -> dict[str, str | None]:
        return {
            "agent_name": self.default_agent_name,
            "property_type": self.default_property_type,
            "lead_source": self.default_lead_source,
            "contact_email": self.default_contact_email,
            "notes": self.default_notes,
        }


class CallLog(Base, TimestampMixin):
    """
    One call attempt in the usage ledger.
    Created as a placeholder at admission time, before the provider is contacted.
    """

    __tablename__ = "call_logs"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    widget_id: Mapped[UUID] = mapped_column(
        Uuid,
        ForeignKey("widgets.id", ondelete="CASCADE"),
        nullable=False,
    )
    user_id: Mapped[str] = mapped_column(String(255), nullable=False)
    call_id: Mapped[str | None] = mapped_column(String(255), nullable=True, index=True)
    call_type: Mapped[str] = mapped_column(String(32), nullable=False)
    started_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    duration_seconds: Mapped[int | None] = mapped_column(Integer, nullable=True)
    call_status: Mapped[str] = mapped_column(String(16), nullable=False, default="ongoing")

    __table_args__ = (
        Index("idx_call_logs_widget_started", "widget_id", "started_at"),
        Index("idx_call_logs_pending", "call_status", "started_at"),
    )
