"""Update engine configuration loaded from environment variables."""

from __future__ import annotations

import logging
from enum import Enum
from pathlib import Path

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from update_engine.versioning import parse_version

logger = logging.getLogger(__name__)


class EngineEnv(str, Enum):
    DEV = "dev"
    STAGING = "staging"
    PROD = "prod"


class Settings(BaseSettings):
    """Engine settings loaded from environment variables with UPDATE_ENGINE_ prefix."""

    model_config = SettingsConfigDict(
        env_prefix="UPDATE_ENGINE_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    env: EngineEnv = EngineEnv.DEV
    debug: bool = False

    # Versioning
    initial_version: str = "1.0.0"

    # Deadlines (seconds, 0 disables)
    component_call_timeout_seconds: float = 30.0
    verification_timeout_seconds: float = 300.0

    # Snapshots
    snapshot_label_prefix: str = "pre-update"

    # Rollback
    halt_on_rollback_failure: bool = True

    # Telemetry
    events_file: Path | None = None
    structured_logging: bool = False
    log_level: str = "INFO"

    @field_validator("initial_version")
    @classmethod
    def validate_initial_version(cls, v: str) -> str:
        parse_version(v)
        return v

    @field_validator("component_call_timeout_seconds", "verification_timeout_seconds")
    @classmethod
    def validate_timeout(cls, v: float) -> float:
        if v < 0:
            raise ValueError("timeout must be >= 0 (0 disables the deadline)")
        return v

    @field_validator("snapshot_label_prefix")
    @classmethod
    def validate_label_prefix(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("snapshot_label_prefix must not be empty")
        return v.strip()

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        level = v.upper()
        if level not in logging.getLevelNamesMapping():
            raise ValueError(f"unknown log level: {v}")
        return level


def load_settings(**overrides: object) -> Settings:
    """Load settings from environment, with optional overrides for testing."""
    settings = Settings(**overrides)  # type: ignore[arg-type]

    if settings.debug:
        logger.info("Loaded settings for environment: %s", settings.env.value)

    return settings
