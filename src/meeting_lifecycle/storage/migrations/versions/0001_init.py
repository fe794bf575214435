"""
Инициальная миграция.

Создаёт таблицы:
- accounts
- rooms
- meetings (UNIQUE active_room_key: одна открытая сессия на комнату)
- meeting_participants
- transcript_records
"""

from __future__ import annotations

import sqlalchemy as sa
from alembic import op

revision = "0001_init"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "accounts",
        sa.Column("id", sa.String(length=128), primary_key=True),
        sa.Column("name", sa.String(length=256), nullable=True),
        sa.Column(
            "subscription_status",
            sa.Enum(
                "none", "active", "trialing", "past_due", "canceled", name="subscriptionstatus"
            ),
            nullable=False,
        ),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )

    op.create_table(
        "rooms",
        sa.Column("id", sa.String(length=64), primary_key=True),
        sa.Column("room_name", sa.String(length=128), nullable=False, unique=True),
        sa.Column("title", sa.String(length=256), nullable=False),
        sa.Column("type", sa.String(length=128), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("owner_id", sa.String(length=128), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column("last_meeting_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_rooms_owner_id", "rooms", ["owner_id"], unique=False)

    op.create_table(
        "meetings",
        sa.Column("id", sa.String(length=64), primary_key=True),
        sa.Column("room_id", sa.String(length=64), sa.ForeignKey("rooms.id"), nullable=True),
        sa.Column("room_name", sa.String(length=128), nullable=False),
        sa.Column("title", sa.String(length=256), nullable=True),
        sa.Column("type", sa.String(length=128), nullable=False),
        sa.Column(
            "status",
            sa.Enum("active", "ending", "ended", name="meetingstatus"),
            nullable=False,
        ),
        sa.Column("active_room_key", sa.String(length=128), nullable=True, unique=True),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("ended_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("duration_min", sa.Integer(), nullable=True),
        sa.Column("last_activity_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("claimed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("active_participant_count", sa.Integer(), nullable=False),
        sa.Column("summary", sa.JSON(), nullable=True),
        sa.Column(
            "processing_status",
            sa.Enum(
                "none", "pending", "processing", "completed", "failed", name="processingstatus"
            ),
            nullable=False,
        ),
        sa.Column("processing_started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("processing_completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("processing_error", sa.Text(), nullable=True),
        sa.Column("processing_attempts", sa.Integer(), nullable=False, server_default="0"),
    )
    op.create_index("ix_meetings_room_name", "meetings", ["room_name"], unique=False)
    op.create_index(
        "ix_meetings_status_activity", "meetings", ["status", "last_activity_at"], unique=False
    )

    op.create_table(
        "meeting_participants",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("meeting_id", sa.String(length=64), sa.ForeignKey("meetings.id"), nullable=False),
        sa.Column("identity", sa.String(length=256), nullable=False),
        sa.Column("name", sa.String(length=256), nullable=True),
        sa.Column("is_host", sa.Boolean(), nullable=False),
        sa.Column("joined_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("left_at", sa.DateTime(timezone=True), nullable=True),
        sa.UniqueConstraint("meeting_id", "identity", name="uq_meeting_participant_identity"),
    )

    op.create_table(
        "transcript_records",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("meeting_id", sa.String(length=64), sa.ForeignKey("meetings.id"), nullable=False),
        sa.Column("seq", sa.Integer(), nullable=False),
        sa.Column("speaker", sa.String(length=256), nullable=False),
        sa.Column("text", sa.Text(), nullable=False),
        sa.Column("timestamp", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index(
        "ix_transcript_records_meeting_seq",
        "transcript_records",
        ["meeting_id", "seq"],
        unique=False,
    )


def downgrade() -> None:
    op.drop_index("ix_transcript_records_meeting_seq", table_name="transcript_records")
    op.drop_table("transcript_records")
    op.drop_table("meeting_participants")
    op.drop_index("ix_meetings_status_activity", table_name="meetings")
    op.drop_index("ix_meetings_room_name", table_name="meetings")
    op.drop_table("meetings")
    op.drop_index("ix_rooms_owner_id", table_name="rooms")
    op.drop_table("rooms")
    op.drop_table("accounts")
    sa.Enum(name="processingstatus").drop(op.get_bind(), checkfirst=True)
    sa.Enum(name="meetingstatus").drop(op.get_bind(), checkfirst=True)
    sa.Enum(name="subscriptionstatus").drop(op.get_bind(), checkfirst=True)
