"""
Host configuration
Environment variables prefixed with TOMATINE_, optionally from a .env file
"""

from functools import lru_cache
from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from tomatine.core.models import DRIFT_THRESHOLD_MS, FRAME_INTERVAL_MS, TIMER_UPDATE_INTERVAL_MS


def default_db_path() -> Path:
    """Returns the SQLite file in the current working directory."""
    return Path.cwd() / "tomatine.db"


class Settings(BaseSettings):
    """Process-level settings. Per-user durations live in the record store."""

    model_config = SettingsConfigDict(
        env_prefix="TOMATINE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    db_path: Path = Field(default_factory=default_db_path)
    log_level: str = "INFO"

    tick_interval_ms: int = TIMER_UPDATE_INTERVAL_MS
    drift_threshold_ms: int = DRIFT_THRESHOLD_MS
    # 0 disables frame pacing even when a GUI application is running
    frame_interval_ms: int = FRAME_INTERVAL_MS

    @field_validator("tick_interval_ms", "drift_threshold_ms")
    @classmethod
    def _positive(cls, value: int) -> int:
        if value <= 0:
            raise ValueError("must be positive")
        return value

    @field_validator("frame_interval_ms")
    @classmethod
    def _non_negative(cls, value: int) -> int:
        if value < 0:
            raise ValueError("must not be negative")
        return value

    @field_validator("log_level")
    @classmethod
    def _upper(cls, value: str) -> str:
        return value.upper()


@lru_cache
def get_settings() -> Settings:
    """Returns the cached settings instance."""
    return Settings()
