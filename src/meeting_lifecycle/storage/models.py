"""
ORM-модели базы данных.

Назначение:
- комнаты (статическая конфигурация) и аккаунты (квота)
- сессии встреч и их участники
- транскрипт сессии (append-only, заменяется победившим finalize)

Инвариант "одна active/ending сессия на комнату" держит UNIQUE на
meetings.active_room_key: там room_name, пока сессия открыта, и NULL после ended.
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

from meeting_lifecycle.common.time import utc_now
from meeting_lifecycle.domain.enums import MeetingStatus, ProcessingStatus, SubscriptionStatus


# =============================================================================
# BASE
# =============================================================================
class Base(DeclarativeBase):
    pass


# =============================================================================
# ACCOUNT
# =============================================================================
class Account(Base):
    __tablename__ = "accounts"

    id: Mapped[str] = mapped_column(String(128), primary_key=True)
    name: Mapped[str | None] = mapped_column(String(256), nullable=True)
    subscription_status: Mapped[SubscriptionStatus] = mapped_column(
        Enum(SubscriptionStatus), default=SubscriptionStatus.none, nullable=False
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, nullable=False
    )


# =============================================================================
# ROOM
# =============================================================================
class MeetingRoom(Base):
    """
    Постоянное пространство встречи (URL slug = room_name).
    """

    __tablename__ = "rooms"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    room_name: Mapped[str] = mapped_column(String(128), unique=True, nullable=False)
    title: Mapped[str] = mapped_column(String(256), nullable=False)
    type: Mapped[str] = mapped_column(String(128), default="Meeting", nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    owner_id: Mapped[str | None] = mapped_column(String(128), nullable=True, index=True)

    is_active: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    last_meeting_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, nullable=False
    )


# =============================================================================
# MEETING SESSION
# =============================================================================
class Meeting(Base):
    """
    Одна сессия занятости комнаты: от первого join до finalize.
    """

    __tablename__ = "meetings"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    room_id: Mapped[str | None] = mapped_column(ForeignKey("rooms.id"), nullable=True)
    room_name: Mapped[str] = mapped_column(String(128), nullable=False, index=True)
    title: Mapped[str | None] = mapped_column(String(256), nullable=True)
    type: Mapped[str] = mapped_column(String(128), default="Meeting", nullable=False)

    status: Mapped[MeetingStatus] = mapped_column(Enum(MeetingStatus), nullable=False)
    active_room_key: Mapped[str | None] = mapped_column(String(128), nullable=True, unique=True)

    started_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    ended_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    duration_min: Mapped[int | None] = mapped_column(Integer, nullable=True)
    last_activity_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    claimed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    active_participant_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    summary: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    processing_status: Mapped[ProcessingStatus] = mapped_column(
        Enum(ProcessingStatus), default=ProcessingStatus.none, nullable=False
    )
    processing_started_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    processing_completed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    processing_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    processing_attempts: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    participants: Mapped[list[MeetingParticipant]] = relationship(
        back_populates="meeting",
        order_by="MeetingParticipant.id",
        cascade="all, delete-orphan",
    )
    transcripts: Mapped[list[TranscriptRecord]] = relationship(
        back_populates="meeting",
        order_by="TranscriptRecord.seq",
        cascade="all, delete-orphan",
    )

    __table_args__ = (Index("ix_meetings_status_activity", "status", "last_activity_at"),)


# =============================================================================
# PARTICIPANTS
# =============================================================================
class MeetingParticipant(Base):
    __tablename__ = "meeting_participants"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    meeting_id: Mapped[str] = mapped_column(ForeignKey("meetings.id"), nullable=False)
    identity: Mapped[str] = mapped_column(String(256), nullable=False)
    name: Mapped[str | None] = mapped_column(String(256), nullable=True)
    is_host: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    joined_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    left_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    meeting: Mapped[Meeting] = relationship(back_populates="participants")

    __table_args__ = (
        UniqueConstraint("meeting_id", "identity", name="uq_meeting_participant_identity"),
    )


# =============================================================================
# TRANSCRIPT RECORDS
# =============================================================================
class TranscriptRecord(Base):
    __tablename__ = "transcript_records"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    meeting_id: Mapped[str] = mapped_column(ForeignKey("meetings.id"), nullable=False)

    seq: Mapped[int] = mapped_column(Integer, nullable=False)
    speaker: Mapped[str] = mapped_column(String(256), nullable=False)
    text: Mapped[str] = mapped_column(Text, nullable=False)
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    meeting: Mapped[Meeting] = relationship(back_populates="transcripts")

    __table_args__ = (Index("ix_transcript_records_meeting_seq", "meeting_id", "seq"),)
