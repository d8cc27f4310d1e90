"""Tests for configuration loading."""

from __future__ import annotations

from pathlib import Path

import pytest

from highlight_sync.config import Config, ConfigError, load_config


@pytest.fixture(autouse=True)
def clean_env(monkeypatch, tmp_path):
    for name in (
        "HIGHLIGHT_SYNC_DATA_DIR",
        "HIGHLIGHT_SYNC_USER_ID",
        "HIGHLIGHT_SYNC_BATCH_SIZE",
        "HIGHLIGHT_SYNC_MAX_RETRIES",
        "HIGHLIGHT_SYNC_BACKOFF_BASE_SECONDS",
        "HIGHLIGHT_SYNC_NOTION_API_BASE",
    ):
        # setenv first so values loaded from a .env file are undone too
        monkeypatch.setenv(name, "")
        monkeypatch.delenv(name)
    # keep a developer's .env out of the tests
    monkeypatch.chdir(tmp_path)


def test_defaults():
    cfg = Config()
    assert cfg.batch_size == 10
    assert cfg.max_retries == 5
    assert cfg.backoff_base_seconds == 30
    assert cfg.backoff_factor == 3
    assert cfg.backoff_cap_seconds == 6 * 60 * 60
    assert cfg.stale_after_seconds == 120
    assert cfg.notion_version == "2022-06-28"


def test_db_path(tmp_path):
    cfg = Config(data_dir=tmp_path)
    assert cfg.db_path == tmp_path / "highlights.db"


def test_ensure_dirs(tmp_path):
    cfg = Config(data_dir=tmp_path / "nested" / "data")
    cfg.ensure_dirs()
    assert cfg.data_dir.is_dir()


def test_env_settings(monkeypatch, tmp_path):
    monkeypatch.setenv("HIGHLIGHT_SYNC_DATA_DIR", str(tmp_path / "env"))
    monkeypatch.setenv("HIGHLIGHT_SYNC_USER_ID", "alice")
    monkeypatch.setenv("HIGHLIGHT_SYNC_BATCH_SIZE", "25")
    monkeypatch.setenv("HIGHLIGHT_SYNC_BACKOFF_BASE_SECONDS", "1.5")
    monkeypatch.setenv("HIGHLIGHT_SYNC_NOTION_API_BASE", "http://localhost:9999/v1")

    cfg = load_config()

    assert cfg.data_dir == tmp_path / "env"
    assert cfg.user_id == "alice"
    assert cfg.batch_size == 25
    assert cfg.backoff_base_seconds == 1.5
    assert cfg.notion_api_base == "http://localhost:9999/v1"


def test_overrides_win(monkeypatch, tmp_path):
    monkeypatch.setenv("HIGHLIGHT_SYNC_USER_ID", "alice")
    monkeypatch.setenv("HIGHLIGHT_SYNC_MAX_RETRIES", "9")

    cfg = load_config(data_dir=str(tmp_path), user_id="bob", max_retries=2)

    assert cfg.data_dir == Path(tmp_path)
    assert cfg.user_id == "bob"
    assert cfg.max_retries == 2


def test_dotenv_file(tmp_path):
    (tmp_path / ".env").write_text("HIGHLIGHT_SYNC_USER_ID=from-dotenv\n")
    assert load_config().user_id == "from-dotenv"


def test_bad_number(monkeypatch):
    monkeypatch.setenv("HIGHLIGHT_SYNC_BATCH_SIZE", "ten")
    with pytest.raises(ConfigError, match="HIGHLIGHT_SYNC_BATCH_SIZE must be of type int"):
        load_config()
