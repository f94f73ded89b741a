"""
Centralised configuration via Pydantic Settings.

Reads from .env in dev and from the scheduler's environment in production.
Every pipeline component takes explicit overrides and falls back to these values.
"""

from __future__ import annotations

from functools import lru_cache
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ── Application ─────────────────────────────────────────
    app_env: Literal["development", "staging", "production"] = "development"
    log_level: str = "INFO"
    api_key: str = "change-me"
    cors_origins: list[str] = ["http://localhost:3000"]

    # ── Database ────────────────────────────────────────────
    database_url: str = "sqlite+aiosqlite:///./dev.db"

    @field_validator("database_url", mode="before")
    @classmethod
    def assemble_db_url(cls, v: str) -> str:
        """Hosted Postgres hands out postgres:// but SQLAlchemy needs postgresql+asyncpg://."""
        if v.startswith("postgres://"):
            v = v.replace("postgres://", "postgresql+asyncpg://", 1)
        elif v.startswith("postgresql://"):
            v = v.replace("postgresql://", "postgresql+asyncpg://", 1)
        return v

    @property
    def is_sqlite(self) -> bool:
        return "sqlite" in self.database_url

    # ── LLM: Gemini ────────────────────────────────────────
    google_api_key: str = ""

    # Model routing: cheap calls (screening, terms, same-event) vs. generation
    model_classifier: str = "gemini-2.5-flash"
    model_generator: str = "gemini-2.5-pro"

    # ── Feed fetching ──────────────────────────────────────
    feed_timeout: float = 30.0
    feed_user_agent: str = "ai-milestone-harvester/0.1 (+feed ingestion)"
    fetch_max_retries: int = 3
    fetch_initial_delay: float = 2.0
    freshness_window_hours: int = Field(
        default=48, description="Items published earlier than this are not ingested"
    )

    # ── Duplicate detection ────────────────────────────────
    title_match_threshold: float = 0.8
    ambiguous_title_threshold: float = 0.5
    url_match_score: float = 0.9
    same_event_confidence: float = 0.7
    duplicate_lookback_hours: int = 24

    # ── Analysis ────────────────────────────────────────────
    analysis_batch_limit: int = 20
    analysis_max_retries: int = 3
    analysis_initial_delay: float = 5.0
    recent_milestones_context: int = 50

    # ── Error bookkeeping ──────────────────────────────────
    error_retention_days: int = 30
    recent_errors_limit: int = 10


@lru_cache
def get_settings() -> Settings:
    return Settings()
