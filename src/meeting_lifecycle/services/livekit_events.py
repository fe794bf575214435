"""
Обработка событий LiveKit (webhook).

- participant_left: record_leave; если счётчик не дошёл до 0, спрашиваем
  транспорт — пустая комната всё равно завершает сессию
- room_finished: комната закрыта транспортом -> принудительный finalize
- participant_joined / room_started: только лог
- повторная доставка того же event id отсекается ключом идемпотентности
"""

from __future__ import annotations

from dataclasses import dataclass

from meeting_lifecycle.common.config import get_settings
from meeting_lifecycle.common.errors import AppError
from meeting_lifecycle.common.logging import get_project_logger
from meeting_lifecycle.connectors.base import RoomOccupancyProbe, build_occupancy_probe
from meeting_lifecycle.connectors.livekit.webhook import WebhookEvent
from meeting_lifecycle.domain.enums import FinalizeTrigger
from meeting_lifecycle.queue.idempotency import check_and_set, release

from .end_arbiter import OccupancyOutcome, handle_occupancy_signal, handle_participant_left

log = get_project_logger()

IDEM_SCOPE = "livekit_webhook"


@dataclass
class WebhookOutcome:
    event: str
    room_name: str | None
    action: str
    meeting_id: str | None = None
    duplicate: bool = False


def _from_occupancy(event: WebhookEvent, outcome: OccupancyOutcome) -> WebhookOutcome:
    return WebhookOutcome(
        event=event.event,
        room_name=event.room_name,
        action=outcome.action,
        meeting_id=outcome.meeting_id,
    )


def _participant_left(event: WebhookEvent, probe: RoomOccupancyProbe) -> WebhookOutcome:
    if not event.room_name or not event.participant_identity:
        log.warning("livekit_event_incomplete", extra={"payload": {"event": event.event}})
        return WebhookOutcome(event=event.event, room_name=event.room_name, action="ignored")

    outcome = handle_participant_left(event.room_name, event.participant_identity)
    if outcome.action != "ignored":
        return _from_occupancy(event, outcome)

    # счётчик — лишь зеркало занятости; транспорт — источник истины
    try:
        occupancy = probe.room_occupancy(event.room_name)
    except AppError as e:
        log.warning(
            "livekit_occupancy_probe_failed",
            extra={"payload": {"room_name": event.room_name, "code": e.code, "err": e.message}},
        )
        return _from_occupancy(event, outcome)

    if not occupancy.is_empty:
        return _from_occupancy(event, outcome)
    return _from_occupancy(
        event,
        handle_occupancy_signal(
            event.room_name, True, trigger=FinalizeTrigger.participant_left
        ),
    )


def handle_event(event: WebhookEvent, *, probe: RoomOccupancyProbe | None = None) -> WebhookOutcome:
    log.info(
        "livekit_event_received",
        extra={
            "payload": {
                "event_id": event.id,
                "event": event.event,
                "room_name": event.room_name,
                "identity": event.participant_identity,
            }
        },
    )

    if event.event == "participant_left":
        return _participant_left(event, probe or build_occupancy_probe())

    if event.event == "room_finished":
        if not event.room_name:
            return WebhookOutcome(event=event.event, room_name=None, action="ignored")
        return _from_occupancy(
            event,
            handle_occupancy_signal(event.room_name, True, trigger=FinalizeTrigger.room_finished),
        )

    if event.event in ("participant_joined", "room_started"):
        return WebhookOutcome(event=event.event, room_name=event.room_name, action="logged")

    return WebhookOutcome(event=event.event, room_name=event.room_name, action="unhandled")


def handle_webhook(event: WebhookEvent, *, probe: RoomOccupancyProbe | None = None) -> WebhookOutcome:
    """
    handle_event с дедупликацией по event id. Ключ снимается при ошибке,
    чтобы повторная доставка LiveKit обработала событие заново.
    """
    if not event.id:
        return handle_event(event, probe=probe)

    scope_entity = event.room_name or "-"
    ttl = int(get_settings().livekit_webhook_dedupe_ttl_sec)
    if not check_and_set(IDEM_SCOPE, scope_entity, event.id, ttl_sec=ttl):
        log.info(
            "livekit_event_duplicate",
            extra={"payload": {"event_id": event.id, "event": event.event}},
        )
        return WebhookOutcome(
            event=event.event, room_name=event.room_name, action="duplicate", duplicate=True
        )

    try:
        return handle_event(event, probe=probe)
    except Exception:
        release(IDEM_SCOPE, scope_entity, event.id)
        raise
