"""Initial schema

Revision ID: 20261017_000001
Revises:
Create Date: 2026-10-17 00:00:01

"""

from collections.abc import Sequence

import sqlalchemy as sa

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "20261017_000001"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    # Create widgets table
    op.create_table(
        "widgets",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("user_id", sa.String(255), nullable=False),
        sa.Column("name", sa.String(100), nullable=False),
        sa.Column("widget_type", sa.String(32), nullable=False, server_default="inbound_web"),
        sa.Column("retell_api_key", sa.String(255), nullable=False),
        sa.Column("agent_id", sa.String(255), nullable=False),
        sa.Column("outbound_phone_number", sa.String(32), nullable=True),
        sa.Column("allowed_domain", sa.Text(), nullable=False, server_default=""),
        sa.Column("rate_limit_enabled", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("rate_limit_calls_per_hour", sa.Integer(), nullable=True),
        sa.Column("daily_minutes_enabled", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("daily_minutes_limit", sa.Integer(), nullable=True),
        sa.Column("require_access_code", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("access_code", sa.String(255), nullable=True),
        sa.Column("button_text", sa.String(100), nullable=True),
        sa.Column("display_text", sa.Text(), nullable=True),
        sa.Column("agent_persona", sa.Text(), nullable=True),
        sa.Column("opening_message", sa.Text(), nullable=True),
        sa.Column("default_agent_name", sa.String(255), nullable=True),
        sa.Column("default_property_type", sa.String(255), nullable=True),
        sa.Column("default_lead_source", sa.String(255), nullable=True),
        sa.Column("default_contact_email", sa.String(255), nullable=True),
        sa.Column("default_notes", sa.Text(), nullable=True),
        sa.Column(
            "created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False
        ),
        sa.Column(
            "updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False
        ),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_widgets_user_id", "widgets", ["user_id"])

    # Create call_logs table (usage ledger)
    op.create_table(
        "call_logs",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("widget_id", sa.Uuid(), nullable=False),
        sa.Column("user_id", sa.String(255), nullable=False),
        sa.Column("call_id", sa.String(255), nullable=True),
        sa.Column("call_type", sa.String(32), nullable=False),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("duration_seconds", sa.Integer(), nullable=True),
        sa.Column("call_status", sa.String(16), nullable=False, server_default="ongoing"),
        sa.Column(
            "created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False
        ),
        sa.Column(
            "updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False
        ),
        sa.ForeignKeyConstraint(["widget_id"], ["widgets.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )

    # Create indexes for call_logs
    op.create_index("ix_call_logs_call_id", "call_logs", ["call_id"])
    op.create_index("idx_call_logs_widget_started", "call_logs", ["widget_id", "started_at"])
    op.create_index("idx_call_logs_pending", "call_logs", ["call_status", "started_at"])


def downgrade() -> None:
    op.drop_index("idx_call_logs_pending", table_name="call_logs")
    op.drop_index("idx_call_logs_widget_started", table_name="call_logs")
    op.drop_index("ix_call_logs_call_id", table_name="call_logs")
    op.drop_table("call_logs")

    op.drop_index("ix_widgets_user_id", table_name="widgets")
    op.drop_table("widgets")
