"""Centralised application settings loaded from environment / .env file."""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict

_PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent


def _resolve_db_dir() -> Path:
    """Return (and create) the directory that holds the SQLite file."""
    d = _PROJECT_ROOT / "data"
    d.mkdir(parents=True, exist_ok=True)
    return d


DEFAULT_SECRET_KEY = "change-me-to-a-random-secret"

_DEFAULT_DB_URL = f"sqlite+aiosqlite:///{_resolve_db_dir() / 'behavioral_emotion.db'}"


class Settings(BaseSettings):
    """All runtime configuration for the behavioral-emotion service.

    Values are read from environment variables first, then from a *.env* file
    located at the project root.  Variable names are flat (``LOG_LEVEL``,
    ``COLLECTOR_WINDOW_MS``, ...) and case-insensitive.
    """

    model_config = SettingsConfigDict(
        env_file=str(_PROJECT_ROOT / ".env"),
        env_file_encoding="utf-8",
        extra="ignore",
        protected_namespaces=(),
    )

    # ── Database ──────────────────────────────────────────────
    database_url: str = _DEFAULT_DB_URL

    # ── API server ────────────────────────────────────────────
    api_host: str = "127.0.0.1"
    api_port: int = 8000
    api_secret_key: str = DEFAULT_SECRET_KEY
    cors_origins: str = "*"  # comma-separated origins, or "*" for all

    # ── Logging ───────────────────────────────────────────────
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    log_format: Literal["auto", "console", "json"] = "auto"  # auto: console on a TTY

    # ── Event collection ──────────────────────────────────────
    collector_window_ms: int = 5000  # Feature window duration
    collector_tick_seconds: float = 1.0
    viewport_width: int = 1920
    viewport_height: int = 1080
    document_height: int = 1080

    # ── Classifier ────────────────────────────────────────────
    model_learning_rate: float = 0.01
    model_persist_every: int = 10  # Persist weights every N train calls
    model_synthetic_samples: int = 100
    model_seed: int | None = None

    # ── Training store ────────────────────────────────────────
    store_max_samples: int = 1000
    store_retention_days: int = 30

    # ── Retraining scheduler ──────────────────────────────────
    scheduler_enabled: bool = True
    scheduler_interval_minutes: float = 10
    scheduler_min_interval_seconds: float = 300  # Min gap between two runs
    scheduler_min_samples: int = 10
    scheduler_feedback_batch: int = 50
    scheduler_recent_batch: int = 50


@lru_cache
def get_settings() -> Settings:
    """Return a cached :class:`Settings` singleton."""
    return Settings()
