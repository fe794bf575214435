from __future__ import annotations

import time
from datetime import timedelta

import jwt

from meeting_lifecycle.common.config import get_settings
from meeting_lifecycle.common.time import utc_now
from meeting_lifecycle.connectors.livekit.webhook import body_sha256
from meeting_lifecycle.processing.transcripts import TranscriptLine


def lines(*pairs: tuple[str, str]) -> list[TranscriptLine]:
    base = utc_now()
    return [
        TranscriptLine(speaker=speaker, text=text, timestamp=base + timedelta(seconds=i))
        for i, (speaker, text) in enumerate(pairs)
    ]


def sign_webhook(
    body: bytes, *, key: str | None = None, secret: str | None = None, sha: str | None = None
) -> str:
    """Authorization для webhook LiveKit: JWT с sha256 тела."""
    s = get_settings()
    now = int(time.time())
    claims = {
        "iss": key or s.livekit_api_key,
        "nbf": now - 5,
        "exp": now + 300,
        "sha256": sha if sha is not None else body_sha256(body),
    }
    return jwt.encode(claims, secret or s.livekit_api_secret, algorithm="HS256")
