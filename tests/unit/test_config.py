from __future__ import annotations

import pytest

from meeting_lifecycle.common.config import Settings


def test_secret_file_overrides_env(tmp_path, monkeypatch) -> None:
    keys = tmp_path / "api_keys"
    keys.write_text("k1:acc_1\nk2:acc_2\n", encoding="utf-8")
    secret = tmp_path / "lk_secret"
    secret.write_text("  from-file-secret\n", encoding="utf-8")
    monkeypatch.setenv("API_KEYS_FILE", str(keys))
    monkeypatch.setenv("LIVEKIT_API_SECRET_FILE", str(secret))

    s = Settings()
    assert s.api_keys == "k1:acc_1,k2:acc_2"
    assert s.livekit_api_secret == "from-file-secret"


def test_missing_secret_file_fails_fast(tmp_path, monkeypatch) -> None:
    monkeypatch.setenv("JWT_SHARED_SECRET_FILE", str(tmp_path / "absent"))
    with pytest.raises(RuntimeError):
        Settings()


def test_non_secret_file_env_is_ignored(tmp_path, monkeypatch) -> None:
    level = tmp_path / "level"
    level.write_text("DEBUG", encoding="utf-8")
    monkeypatch.setenv("LOG_LEVEL_FILE", str(level))
    assert Settings().log_level != "DEBUG"
