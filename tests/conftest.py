from __future__ import annotations

import os
import tempfile
from pathlib import Path

# ENV до импорта проекта: Settings и engine создаются при импорте
_TMP_DIR = Path(tempfile.mkdtemp(prefix="meeting-lifecycle-tests-"))
os.environ.setdefault("APP_ENV", "test")
os.environ["POSTGRES_DSN"] = f"sqlite:///{_TMP_DIR / 'meetings.db'}"
os.environ["QUEUE_MODE"] = "inline"
os.environ["AUTH_MODE"] = "api_key"
os.environ["API_KEYS"] = "user-key:acc_1,other-key:acc_2"
os.environ["SERVICE_API_KEYS"] = "svc-key"
os.environ["LLM_PROVIDER"] = "mock"
os.environ["LIVEKIT_PROVIDER"] = "livekit_mock"
os.environ["LIVEKIT_API_KEY"] = "lk-key"
os.environ["LIVEKIT_API_SECRET"] = "lk-secret-for-tests-0123456789abcdef"
os.environ["LOG_FORMAT"] = "text"

import pytest  # noqa: E402

from meeting_lifecycle.queue import idempotency  # noqa: E402
from meeting_lifecycle.storage.db import engine  # noqa: E402
from meeting_lifecycle.storage.models import Base  # noqa: E402


@pytest.fixture(autouse=True)
def clean_db():
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    idempotency.reset_inline_keys()
    yield
    idempotency.reset_inline_keys()


@pytest.fixture()
def room():
    from meeting_lifecycle.services.meeting_service import create_room

    return create_room(room_name="standup-1", title="Daily standup", owner_id="acc_1")
