"""
Centralized configuration management using Pydantic Settings.

Configuration is loaded from environment variables with sensible defaults.
"""

from pathlib import Path
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class FollowUpConfig(BaseSettings):
    """Call-back workflow tuning."""

    model_config = SettingsConfigDict(env_prefix="CHURNFLOW_FOLLOWUP_")

    reminder_interval_hours: int = Field(
        default=24, ge=1, description="Gap between a call attempt and the next reminder"
    )
    max_attempts: int = Field(
        default=3, ge=1, description="Attempts after which the workflow completes"
    )
    attempt_ceiling: int = Field(
        default=4, ge=1, description="Hard upper bound on stored call attempts"
    )
    new_window_days: int = Field(
        default=3, ge=0, description="Records logged within this many days count as new"
    )
    max_conflict_retries: int = Field(
        default=3, ge=1, description="Re-read/recompute rounds before surfacing a write conflict"
    )
    default_page_size: int = Field(default=100, ge=1, le=1000, description="Listing page size")
    taxonomy_path: Optional[Path] = Field(
        default=None,
        description="JSON file overriding the built-in reason taxonomy",
    )

    @field_validator("attempt_ceiling")
    @classmethod
    def _ceiling_covers_attempts(cls, v: int, info) -> int:
        max_attempts = info.data.get("max_attempts", 3)
        if v < max_attempts:
            raise ValueError("attempt_ceiling must be >= max_attempts")
        return v


class AutoHealConfig(BaseSettings):
    """Consistency auto-heal scheduling."""

    model_config = SettingsConfigDict(env_prefix="CHURNFLOW_AUTO_HEAL_")

    enabled: bool = Field(default=True, description="Run the periodic heal job")
    interval_minutes: int = Field(default=30, ge=1, le=1440, description="Minutes between heal sweeps")
    on_read: bool = Field(default=True, description="Heal visible records before every listing")


class Settings(BaseSettings):
    """Application-wide settings."""

    model_config = SettingsConfigDict(
        env_prefix="CHURNFLOW_",
        env_file=".env",
        env_nested_delimiter="__",
        extra="ignore",
    )

    debug: bool = Field(default=False, description="Enable debug mode")
    log_level: str = Field(default="INFO", description="Logging level")
    host: str = Field(default="0.0.0.0", description="Bind address for the HTTP server")
    port: int = Field(default=8000, ge=1, le=65535, description="HTTP server port")

    followup: FollowUpConfig = Field(default_factory=FollowUpConfig)
    auto_heal: AutoHealConfig = Field(default_factory=AutoHealConfig)

    @field_validator("log_level")
    @classmethod
    def _upper_log_level(cls, v: str) -> str:
        return v.upper()


settings = Settings()
