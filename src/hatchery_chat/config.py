"""Configuration models for the hatchery chat service."""

from __future__ import annotations

import os

from pydantic import BaseModel, Field

HEALTH_CHECK_SENTINEL = "__health_check__"


class RetrievalConfig(BaseModel):
    """Configures grouped aggregation and its validation."""

    default_limit: int = Field(default=200, ge=1)
    min_groups: int = Field(default=1, ge=1)
    unknown_fraction_threshold: float = Field(default=0.3, ge=0.0, le=1.0)


class ChatConfig(BaseModel):
    """Configures the conversational request pipeline."""

    history_turns: int = Field(default=10, ge=0)
    upcoming_window_days: int = Field(default=7, ge=0)
    health_check_sentinel: str = HEALTH_CHECK_SENTINEL
    smart_default_min_rows: int = Field(default=3, ge=0)


class Settings(BaseModel):
    """Process settings resolved from the environment."""

    openai_api_key: str | None = None
    openai_base_url: str | None = None
    supabase_url: str | None = None
    supabase_key: str | None = None
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            openai_api_key=(os.getenv("OPENAI_API_KEY") or "").strip() or None,
            openai_base_url=os.getenv("OPENAI_BASE_URL") or None,
            supabase_url=os.getenv("SUPABASE_URL") or None,
            supabase_key=os.getenv("SUPABASE_SERVICE_ROLE_KEY") or None,
            log_level=os.getenv("HATCHERY_CHAT_LOG_LEVEL", "INFO").upper(),
        )

    @property
    def openai_configured(self) -> bool:
        return bool(self.openai_api_key)
