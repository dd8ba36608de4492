"""Initial schema: profiles, sessions, session_eta, notifications.

Revision ID: 0001
Revises:
Create Date: 2026-10-19

"""
from __future__ import annotations

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

revision: str = "0001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # -- Profiles --
    op.create_table(
        "profiles",
        sa.Column("id", sa.String(64), primary_key=True),
        sa.Column("email", sa.String(320), nullable=True),
        sa.Column("full_name", sa.String(256), nullable=True),
        sa.Column("role", sa.String(16), server_default="student"),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    )

    # -- Sessions --
    op.create_table(
        "sessions",
        sa.Column("id", sa.String(64), primary_key=True),
        sa.Column("tutor_id", sa.String(64), sa.ForeignKey("profiles.id"), nullable=False),
        sa.Column("student_id", sa.String(64), sa.ForeignKey("profiles.id"), nullable=False),
        sa.Column("start_time", sa.DateTime(timezone=True), nullable=False),
        sa.Column("status", sa.String(16), server_default="pending"),
        sa.Column("duration_minutes", sa.Integer, server_default="60"),
        sa.Column("location", sa.Text, nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index(
        "ix_sessions_tutor_status_start", "sessions", ["tutor_id", "status", "start_time"]
    )

    # -- Session ETA --
    op.create_table(
        "session_eta",
        sa.Column(
            "session_id",
            sa.String(64),
            sa.ForeignKey("sessions.id", ondelete="CASCADE"),
            primary_key=True,
        ),
        sa.Column("estimated_arrival", sa.String(128), nullable=False),
        sa.Column("updated_by", sa.String(64), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    )

    # -- Notifications --
    op.create_table(
        "notifications",
        sa.Column("id", sa.String(64), primary_key=True),
        sa.Column("recipient_id", sa.String(64), nullable=False),
        sa.Column("tutor_id", sa.String(64), server_default=""),
        sa.Column("session_id", sa.String(64), server_default=""),
        sa.Column("kind", sa.String(32), server_default="arrival_update"),
        sa.Column("message", sa.Text, server_default=""),
        sa.Column("metadata", sa.JSON, nullable=False),
        sa.Column("status", sa.String(16), server_default="pending"),
        sa.Column("idempotency_key", sa.String(64), nullable=False),
        sa.Column("attempts", sa.Integer, server_default="1"),
        sa.Column("last_error", sa.Text, nullable=True),
        sa.Column("is_read", sa.Boolean, server_default="false"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("sent_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("read_at", sa.DateTime(timezone=True), nullable=True),
        sa.UniqueConstraint("idempotency_key", name="uq_notifications_idempotency_key"),
    )
    op.create_index("ix_notifications_recipient_id", "notifications", ["recipient_id"])


def downgrade() -> None:
    op.drop_table("notifications")
    op.drop_table("session_eta")
    op.drop_table("sessions")
    op.drop_table("profiles")
