"""
Репозитории (DAO слой).

Правила:
- Никакой бизнес-логики
- Только CRUD и запросы
- Все изменения status / active_participant_count / ended_at идут через
  условные UPDATE ниже; вызывающий смотрит на rowcount
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import and_, delete, desc, func, or_, select, update
from sqlalchemy.orm import Session

from meeting_lifecycle.domain.enums import MeetingStatus, ProcessingStatus

from .models import Account, Meeting, MeetingParticipant, MeetingRoom, TranscriptRecord


def _no_sync(stmt):
    return stmt.execution_options(synchronize_session=False)


# =============================================================================
# ROOM REPOSITORY
# =============================================================================
class RoomRepository:
    def __init__(self, session: Session) -> None:
        self.session = session

    def get_by_name(self, room_name: str) -> MeetingRoom | None:
        return self.session.scalars(
            select(MeetingRoom).where(MeetingRoom.room_name == room_name)
        ).one_or_none()

    def add(self, room: MeetingRoom) -> None:
        self.session.add(room)
        self.session.flush()

    def set_active(self, room_name: str, *, is_active: bool, at: datetime | None = None) -> None:
        values: dict = {"is_active": is_active}
        if at is not None:
            values["last_meeting_at"] = at
        self.session.execute(
            _no_sync(update(MeetingRoom).where(MeetingRoom.room_name == room_name).values(**values))
        )

    def list_by_owner(self, owner_id: str, *, limit: int = 100) -> list[MeetingRoom]:
        return list(
            self.session.scalars(
                select(MeetingRoom)
                .where(MeetingRoom.owner_id == owner_id)
                .order_by(desc(MeetingRoom.created_at))
                .limit(max(1, min(limit, 500)))
            )
        )


# =============================================================================
# MEETING REPOSITORY
# =============================================================================
class MeetingRepository:
    def __init__(self, session: Session) -> None:
        self.session = session

    def get(self, meeting_id: str) -> Meeting | None:
        return self.session.get(Meeting, meeting_id)

    def get_open_by_room(self, room_name: str) -> Meeting | None:
        """
        Сессия в статусе active/ending для комнаты (через уникальный active_room_key).
        """
        return self.session.scalars(
            select(Meeting).where(Meeting.active_room_key == room_name)
        ).one_or_none()

    def insert(self, meeting: Meeting) -> None:
        """
        INSERT с немедленным flush: IntegrityError по active_room_key означает,
        что в комнате уже есть открытая сессия.
        """
        self.session.add(meeting)
        self.session.flush()

    def touch_open(self, meeting_id: str, *, at: datetime) -> int:
        return self.session.execute(
            _no_sync(
                update(Meeting)
                .where(
                    Meeting.id == meeting_id,
                    Meeting.status.in_([MeetingStatus.active, MeetingStatus.ending]),
                )
                .values(last_activity_at=at)
            )
        ).rowcount

    def increment_participants(self, meeting_id: str, *, at: datetime) -> int:
        return self.session.execute(
            _no_sync(
                update(Meeting)
                .where(Meeting.id == meeting_id, Meeting.status == MeetingStatus.active)
                .values(
                    active_participant_count=Meeting.active_participant_count + 1,
                    last_activity_at=at,
                )
            )
        ).rowcount

    def decrement_participants(self, meeting_id: str, *, at: datetime) -> int:
        """
        Условный декремент: только active и только если счётчик > 0.
        """
        return self.session.execute(
            _no_sync(
                update(Meeting)
                .where(
                    Meeting.id == meeting_id,
                    Meeting.status == MeetingStatus.active,
                    Meeting.active_participant_count > 0,
                )
                .values(
                    active_participant_count=Meeting.active_participant_count - 1,
                    last_activity_at=at,
                )
            )
        ).rowcount

    def read_state(self, meeting_id: str) -> tuple[MeetingStatus, int] | None:
        row = self.session.execute(
            select(Meeting.status, Meeting.active_participant_count).where(Meeting.id == meeting_id)
        ).one_or_none()
        if row is None:
            return None
        return row[0], int(row[1])

    def claim_for_finalize(self, meeting_id: str, *, at: datetime) -> int:
        """
        active -> ending. Ровно один конкурентный вызов получает rowcount == 1.
        """
        return self.session.execute(
            _no_sync(
                update(Meeting)
                .where(Meeting.id == meeting_id, Meeting.status == MeetingStatus.active)
                .values(status=MeetingStatus.ending, claimed_at=at)
            )
        ).rowcount

    def complete_finalize(
        self,
        meeting_id: str,
        *,
        ended_at: datetime,
        duration_min: int,
    ) -> int:
        """
        ending -> ended. Освобождает комнату (active_room_key = NULL).
        """
        return self.session.execute(
            _no_sync(
                update(Meeting)
                .where(Meeting.id == meeting_id, Meeting.status == MeetingStatus.ending)
                .values(
                    status=MeetingStatus.ended,
                    ended_at=ended_at,
                    duration_min=duration_min,
                    active_room_key=None,
                    active_participant_count=0,
                    last_activity_at=ended_at,
                    processing_status=ProcessingStatus.pending,
                )
            )
        ).rowcount

    def delete_claimed(self, meeting_id: str) -> int:
        """
        Удаляет сессию в статусе ending вместе с участниками и транскриптом.
        """
        claimed = select(Meeting.id).where(
            Meeting.id == meeting_id, Meeting.status == MeetingStatus.ending
        )
        # дочерние строки первыми (FK)
        self.session.execute(
            _no_sync(delete(TranscriptRecord).where(TranscriptRecord.meeting_id.in_(claimed)))
        )
        self.session.execute(
            _no_sync(delete(MeetingParticipant).where(MeetingParticipant.meeting_id.in_(claimed)))
        )
        return self.session.execute(
            _no_sync(
                delete(Meeting).where(Meeting.id == meeting_id, Meeting.status == MeetingStatus.ending)
            )
        ).rowcount

    # -------------------------------------------------------------------------
    # Reconciliation / history / usage
    # -------------------------------------------------------------------------
    def list_stale_ending(self, *, claimed_before: datetime, limit: int) -> list[str]:
        return list(
            self.session.scalars(
                select(Meeting.id)
                .where(Meeting.status == MeetingStatus.ending, Meeting.claimed_at < claimed_before)
                .order_by(Meeting.claimed_at)
                .limit(max(1, limit))
            )
        )

    def list_idle_active(self, *, inactive_before: datetime, limit: int) -> list[Meeting]:
        return list(
            self.session.scalars(
                select(Meeting)
                .where(
                    Meeting.status == MeetingStatus.active,
                    Meeting.last_activity_at < inactive_before,
                )
                .order_by(Meeting.last_activity_at)
                .limit(max(1, limit))
            )
        )

    def list_pending_processing(self, *, ended_before: datetime, limit: int) -> list[Meeting]:
        return list(
            self.session.scalars(
                select(Meeting)
                .where(
                    Meeting.status == MeetingStatus.ended,
                    Meeting.processing_status == ProcessingStatus.pending,
                    Meeting.ended_at < ended_before,
                )
                .order_by(Meeting.ended_at)
                .limit(max(1, limit))
            )
        )

    def list_stale_processing(
        self, *, started_before: datetime, max_attempts: int, limit: int
    ) -> list[Meeting]:
        """
        processing дольше порога (воркер упал после claim) и failed, у которых
        попытки не исчерпаны (повтор потерян вместе с задачей).
        """
        return list(
            self.session.scalars(
                select(Meeting)
                .where(
                    Meeting.status == MeetingStatus.ended,
                    Meeting.processing_started_at < started_before,
                    or_(
                        Meeting.processing_status == ProcessingStatus.processing,
                        and_(
                            Meeting.processing_status == ProcessingStatus.failed,
                            Meeting.processing_attempts < max_attempts,
                        ),
                    ),
                )
                .order_by(Meeting.processing_started_at)
                .limit(max(1, limit))
            )
        )

    def expire_processing(self, meeting_id: str, *, started_before: datetime) -> int:
        return self.session.execute(
            _no_sync(
                update(Meeting)
                .where(
                    Meeting.id == meeting_id,
                    Meeting.processing_status == ProcessingStatus.processing,
                    Meeting.processing_started_at < started_before,
                )
                .values(
                    processing_status=ProcessingStatus.failed,
                    processing_error="processing timed out",
                )
            )
        ).rowcount

    def list_history(self, room_name: str, *, limit: int = 20) -> list[Meeting]:
        return list(
            self.session.scalars(
                select(Meeting)
                .where(Meeting.room_name == room_name, Meeting.status == MeetingStatus.ended)
                .order_by(desc(Meeting.ended_at))
                .limit(max(1, min(limit, 100)))
            )
        )

    def count_by_status(self) -> dict[MeetingStatus, int]:
        rows = self.session.execute(
            select(Meeting.status, func.count(Meeting.id)).group_by(Meeting.status)
        )
        return {status: int(n) for status, n in rows}

    def count_started_in_owned_rooms(
        self, owner_id: str, *, start: datetime, end: datetime
    ) -> int:
        return int(
            self.session.scalar(
                select(func.count(Meeting.id))
                .join(MeetingRoom, MeetingRoom.id == Meeting.room_id)
                .where(
                    MeetingRoom.owner_id == owner_id,
                    Meeting.started_at >= start,
                    Meeting.started_at < end,
                )
            )
            or 0
        )

    # -------------------------------------------------------------------------
    # Post-processing
    # -------------------------------------------------------------------------
    def claim_processing(self, meeting_id: str, *, at: datetime) -> int:
        return self.session.execute(
            _no_sync(
                update(Meeting)
                .where(
                    Meeting.id == meeting_id,
                    Meeting.status == MeetingStatus.ended,
                    Meeting.processing_status.in_(
                        [ProcessingStatus.pending, ProcessingStatus.failed]
                    ),
                )
                .values(
                    processing_status=ProcessingStatus.processing,
                    processing_started_at=at,
                    processing_error=None,
                    processing_attempts=Meeting.processing_attempts + 1,
                )
            )
        ).rowcount

    def complete_processing(self, meeting_id: str, *, summary: dict, at: datetime) -> int:
        return self.session.execute(
            _no_sync(
                update(Meeting)
                .where(
                    Meeting.id == meeting_id,
                    Meeting.processing_status == ProcessingStatus.processing,
                )
                .values(
                    summary=summary,
                    processing_status=ProcessingStatus.completed,
                    processing_completed_at=at,
                )
            )
        ).rowcount

    def fail_processing(self, meeting_id: str, *, error: str) -> int:
        return self.session.execute(
            _no_sync(
                update(Meeting)
                .where(
                    Meeting.id == meeting_id,
                    Meeting.processing_status == ProcessingStatus.processing,
                )
                .values(processing_status=ProcessingStatus.failed, processing_error=error[:1000])
            )
        ).rowcount


# =============================================================================
# PARTICIPANT REPOSITORY
# =============================================================================
class ParticipantRepository:
    def __init__(self, session: Session) -> None:
        self.session = session

    def get(self, meeting_id: str, identity: str) -> MeetingParticipant | None:
        return self.session.scalars(
            select(MeetingParticipant).where(
                MeetingParticipant.meeting_id == meeting_id,
                MeetingParticipant.identity == identity,
            )
        ).one_or_none()

    def add(self, participant: MeetingParticipant) -> None:
        self.session.add(participant)
        self.session.flush()

    def reopen(self, meeting_id: str, identity: str) -> int:
        """
        Повторный вход: снимает left_at. rowcount == 1 только если участник был вышедшим.
        """
        return self.session.execute(
            _no_sync(
                update(MeetingParticipant)
                .where(
                    MeetingParticipant.meeting_id == meeting_id,
                    MeetingParticipant.identity == identity,
                    MeetingParticipant.left_at.is_not(None),
                )
                .values(left_at=None)
            )
        ).rowcount

    def mark_left(self, meeting_id: str, identity: str, *, at: datetime) -> int:
        return self.session.execute(
            _no_sync(
                update(MeetingParticipant)
                .where(
                    MeetingParticipant.meeting_id == meeting_id,
                    MeetingParticipant.identity == identity,
                    MeetingParticipant.left_at.is_(None),
                )
                .values(left_at=at)
            )
        ).rowcount

    def close_open(self, meeting_id: str, *, at: datetime) -> int:
        return self.session.execute(
            _no_sync(
                update(MeetingParticipant)
                .where(
                    MeetingParticipant.meeting_id == meeting_id,
                    MeetingParticipant.left_at.is_(None),
                )
                .values(left_at=at)
            )
        ).rowcount

    def list_by_meeting(self, meeting_id: str) -> list[MeetingParticipant]:
        return list(
            self.session.scalars(
                select(MeetingParticipant)
                .where(MeetingParticipant.meeting_id == meeting_id)
                .order_by(MeetingParticipant.id)
            )
        )


# =============================================================================
# TRANSCRIPT RECORD REPOSITORY
# =============================================================================
class TranscriptRecordRepository:
    def __init__(self, session: Session) -> None:
        self.session = session

    def next_seq(self, meeting_id: str) -> int:
        current = self.session.scalar(
            select(func.max(TranscriptRecord.seq)).where(TranscriptRecord.meeting_id == meeting_id)
        )
        return int(current) + 1 if current is not None else 0

    def append_many(self, meeting_id: str, items: list[dict]) -> int:
        """
        items: [{speaker, text, timestamp}] в порядке поступления.
        """
        seq = self.next_seq(meeting_id)
        for item in items:
            self.session.add(
                TranscriptRecord(
                    meeting_id=meeting_id,
                    seq=seq,
                    speaker=item["speaker"],
                    text=item["text"],
                    timestamp=item["timestamp"],
                )
            )
            seq += 1
        self.session.flush()
        return len(items)

    def replace_all(self, meeting_id: str, items: list[dict]) -> int:
        self.session.execute(
            _no_sync(delete(TranscriptRecord).where(TranscriptRecord.meeting_id == meeting_id))
        )
        return self.append_many(meeting_id, items)

    def list_by_meeting(self, meeting_id: str) -> list[TranscriptRecord]:
        return list(
            self.session.scalars(
                select(TranscriptRecord)
                .where(TranscriptRecord.meeting_id == meeting_id)
                .order_by(TranscriptRecord.seq)
            )
        )


# =============================================================================
# ACCOUNT REPOSITORY
# =============================================================================
class AccountRepository:
    def __init__(self, session: Session) -> None:
        self.session = session

    def get(self, account_id: str) -> Account | None:
        return self.session.get(Account, account_id)

    def save(self, account: Account) -> None:
        self.session.add(account)
