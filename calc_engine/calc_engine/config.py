"""Engine configuration loaded from environment variables."""

from __future__ import annotations

import logging
from enum import Enum
from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)


class FlowEnv(str, Enum):
    DEV = "dev"
    STAGING = "staging"
    PROD = "prod"


class Settings(BaseSettings):
    """Application settings loaded from environment variables with FLOWCALC_ prefix."""

    model_config = SettingsConfigDict(
        env_prefix="FLOWCALC_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    env: FlowEnv = FlowEnv.DEV
    debug: bool = False

    # Logging
    log_level: str = "WARNING"
    structured_logging: bool = False

    # Recalculation
    auto_recalculate: bool = True

    # Analysis
    trace_max_depth: int = Field(default=10, ge=0)
    default_percent_change: float = 10.0

    # Profiling
    profiling_enabled: bool = True
    profile_max_results: int = Field(default=100, ge=1)

    # Storage
    flow_file: Path = Path("flows/flow.json")

    @field_validator("log_level", mode="before")
    @classmethod
    def normalize_log_level(cls, v: str) -> str:
        level = str(v).upper()
        if level not in logging.getLevelNamesMapping():
            raise ValueError(f"Unknown log level: {v}")
        return level


def load_settings(**overrides: object) -> Settings:
    """Load settings from environment, with optional overrides for testing."""
    settings = Settings(**overrides)  # type: ignore[arg-type]

    if settings.debug:
        logger.info("Loaded settings for environment: %s", settings.env.value)

    return settings
