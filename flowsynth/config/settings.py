"""
FlowSynth - Configuration Settings
Synthesis limits, output formatting, API and logging settings.
"""

import logging
import sys

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    """FlowSynth settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )

    # ── Runtime ───────────────────────────────────────────────────────
    environment: str = Field(default="dev", alias="ENVIRONMENT")
    log_level: str = Field(default="INFO", alias="FLOWSYNTH_LOG_LEVEL")

    # ── Synthesis Limits ──────────────────────────────────────────────
    recursion_limit: int = Field(default=100, alias="FLOWSYNTH_RECURSION_LIMIT")
    synthesis_timeout_seconds: float = Field(default=5.0, alias="FLOWSYNTH_SYNTHESIS_TIMEOUT")

    # ── Output Formatting ─────────────────────────────────────────────
    indent: str = Field(default="  ", alias="FLOWSYNTH_INDENT")

    # ── API ───────────────────────────────────────────────────────────
    api_title: str = "FlowSynth"
    api_version: str = "1.0.0"
    cors_allowed_origins: str = Field(default="*", alias="CORS_ALLOWED_ORIGINS")

    @field_validator("environment")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        allowed = ["dev", "development", "test", "qa", "prod"]
        if v.lower() not in allowed:
            logger.warning(f"[SETTINGS] environment '{v}' not in {allowed}")
        return v.lower()

    @field_validator("recursion_limit")
    @classmethod
    def validate_recursion_limit(cls, v: int) -> int:
        if v < 1:
            raise ValueError("recursion_limit must be at least 1")
        # resolve() takes up to two interpreter frames per graph level
        ceiling = max(1, sys.getrecursionlimit() // 4)
        if v > ceiling:
            logger.warning(f"[SETTINGS] recursion_limit {v} capped to {ceiling}")
            return ceiling
        return v

    @field_validator("synthesis_timeout_seconds")
    @classmethod
    def validate_timeout(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("synthesis_timeout_seconds must be positive")
        return v


settings = Settings()
