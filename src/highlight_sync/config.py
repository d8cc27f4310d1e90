"""Configuration management for Highlight Sync."""

from __future__ import annotations

import os
from pathlib import Path

from dotenv import load_dotenv
from pydantic import BaseModel

DEFAULT_DATA_DIR = Path.home() / ".highlight-sync"
DEFAULT_USER_ID = "local"


class ConfigError(ValueError):
    """Raised when an environment setting cannot be parsed."""


class Config(BaseModel):
    """Application configuration."""

    data_dir: Path = DEFAULT_DATA_DIR
    db_filename: str = "highlights.db"
    user_id: str = DEFAULT_USER_ID
    notion_api_base: str = "https://api.notion.com/v1"
    notion_version: str = "2022-06-28"
    notion_timeout_seconds: float = 60.0
    web_host: str = "127.0.0.1"
    web_port: int = 8878

    # Queue / worker policy
    batch_size: int = 10
    max_retries: int = 5
    stale_after_seconds: float = 120.0
    backoff_base_seconds: float = 30.0
    backoff_factor: float = 3.0
    backoff_cap_seconds: float = 6 * 60 * 60
    debounce_seconds: float = 2.0
    worker_interval_seconds: float = 60.0

    @property
    def db_path(self) -> Path:
        return self.data_dir / self.db_filename

    def ensure_dirs(self) -> None:
        """Create the data directory."""
        self.data_dir.mkdir(parents=True, exist_ok=True)


_INT_SETTINGS = {
    "web_port": "HIGHLIGHT_SYNC_WEB_PORT",
    "batch_size": "HIGHLIGHT_SYNC_BATCH_SIZE",
    "max_retries": "HIGHLIGHT_SYNC_MAX_RETRIES",
}

_FLOAT_SETTINGS = {
    "notion_timeout_seconds": "HIGHLIGHT_SYNC_NOTION_TIMEOUT_SECONDS",
    "stale_after_seconds": "HIGHLIGHT_SYNC_STALE_AFTER_SECONDS",
    "backoff_base_seconds": "HIGHLIGHT_SYNC_BACKOFF_BASE_SECONDS",
    "backoff_factor": "HIGHLIGHT_SYNC_BACKOFF_FACTOR",
    "backoff_cap_seconds": "HIGHLIGHT_SYNC_BACKOFF_CAP_SECONDS",
    "debounce_seconds": "HIGHLIGHT_SYNC_DEBOUNCE_SECONDS",
    "worker_interval_seconds": "HIGHLIGHT_SYNC_WORKER_INTERVAL_SECONDS",
}


def _parse_number(name: str, raw: str, kind: type) -> object:
    try:
        return kind(raw)
    except ValueError as exc:
        raise ConfigError(f"{name} must be of type {kind.__name__}, got {raw!r}") from exc


def load_config(**overrides: object) -> Config:
    """Load config from environment variables, .env file, and overrides.

    Resolution order (highest priority first):
    1. Explicit overrides (CLI flags)
    2. Environment variables
    3. .env file
    4. Defaults
    """
    # Load .env from CWD or home
    load_dotenv()
    load_dotenv(DEFAULT_DATA_DIR / ".env")

    kwargs: dict[str, object] = {}

    data_dir = overrides.get("data_dir") or os.getenv("HIGHLIGHT_SYNC_DATA_DIR")
    if data_dir:
        kwargs["data_dir"] = Path(str(data_dir))

    user_id = overrides.get("user_id") or os.getenv("HIGHLIGHT_SYNC_USER_ID")
    if user_id:
        kwargs["user_id"] = str(user_id)

    api_base = os.getenv("HIGHLIGHT_SYNC_NOTION_API_BASE")
    if api_base:
        kwargs["notion_api_base"] = api_base

    notion_version = os.getenv("HIGHLIGHT_SYNC_NOTION_VERSION")
    if notion_version:
        kwargs["notion_version"] = notion_version

    web_host = os.getenv("HIGHLIGHT_SYNC_WEB_HOST")
    if web_host:
        kwargs["web_host"] = web_host

    for field_name, env_name in _INT_SETTINGS.items():
        raw = os.getenv(env_name)
        if raw is not None:
            kwargs[field_name] = _parse_number(env_name, raw, int)

    for field_name, env_name in _FLOAT_SETTINGS.items():
        raw = os.getenv(env_name)
        if raw is not None:
            kwargs[field_name] = _parse_number(env_name, raw, float)

    for key in ("batch_size", "max_retries", "web_port"):
        if overrides.get(key) is not None:
            kwargs[key] = overrides[key]

    return Config(**kwargs)
