"""
Typed settings management using pydantic-settings.

Session-scoped configuration for the iteration engine. Settings are loaded
once at session start and are frozen afterwards: components receive them by
reference (through ``SessionContext``) and never reload or mutate them
mid-session.

Features:
- Type-safe configuration with validation
- Automatic environment variable loading (``KOI_`` prefix)
- .env file support
- Nested settings for organization

Usage:
    from koi_engine.settings import get_settings

    settings = get_settings()
    print(settings.iteration.quality_threshold)
"""

from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic import Field, SecretStr, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from koi_engine.core.retry import RetryPolicy


# =============================================================================
# Path Configuration
# =============================================================================


def _get_xdg_dir(env_var: str) -> Path:
    """Get XDG directory, defaulting to ~/.koi_engine if not set."""
    xdg_base = os.getenv(env_var)
    if xdg_base:
        return Path(xdg_base) / "koi_engine"
    return Path.home() / ".koi_engine"


class PathSettings(BaseSettings):
    """XDG-compliant path configuration."""

    model_config = SettingsConfigDict(
        env_prefix="KOI_",
        extra="ignore",
        frozen=True,
        populate_by_name=True,
    )

    state_dir_override: Optional[Path] = Field(
        default=None,
        alias="KOI_STATE_DIR",
        description="Explicit state directory (tests, containers)",
    )

    @property
    def state_dir(self) -> Path:
        """KOI_STATE_DIR, XDG_STATE_HOME/koi_engine or ~/.koi_engine"""
        if self.state_dir_override is not None:
            return self.state_dir_override
        return _get_xdg_dir("XDG_STATE_HOME")

    @property
    def data_dir(self) -> Path:
        """XDG_DATA_HOME/koi_engine or ~/.koi_engine"""
        if self.state_dir_override is not None:
            return self.state_dir_override
        return _get_xdg_dir("XDG_DATA_HOME")

    @property
    def tasks_dir(self) -> Path:
        """One ``<task_id>.json`` per running task."""
        return self.state_dir / "tasks"

    @property
    def task_history_file(self) -> Path:
        return self.state_dir / "task-history.jsonl"

    @property
    def memory_file(self) -> Path:
        return self.data_dir / "iterations.jsonl"

    def ensure_directories(self) -> None:
        """Create all necessary directories with secure permissions."""
        for directory in [self.state_dir, self.data_dir]:
            directory.mkdir(parents=True, exist_ok=True, mode=0o700)


# =============================================================================
# Iteration Settings
# =============================================================================


class IterationSettings(BaseSettings):
    """Default task limits and decision policy constants."""

    model_config = SettingsConfigDict(
        env_prefix="KOI_",
        extra="ignore",
        frozen=True,
    )

    max_iterations: int = Field(
        default=3,
        ge=1,
        description="Maximum plan-execute-evaluate attempts per task",
    )
    quality_threshold: float = Field(
        default=0.8,
        ge=0.0,
        le=1.0,
        description="Aggregate score at or above which a task is accepted",
    )
    token_budget: int = Field(
        default=200_000,
        gt=0,
        description="Token budget per task (execution + evaluation)",
    )
    time_budget_seconds: float = Field(
        default=300.0,
        gt=0.0,
        description="Wall-clock budget per task in seconds",
    )
    max_cost_usd: float = Field(
        default=2.0,
        gt=0.0,
        description="USD spend per task (execution + evaluation) before the run stops",
    )
    regression_epsilon: float = Field(
        default=0.0,
        ge=0.0,
        le=1.0,
        description="Tolerance before a score decrease counts as a regression",
    )
    blocker_score_cap: float = Field(
        default=0.4,
        ge=0.0,
        le=1.0,
        description="Ceiling applied to the aggregate score when a Blocker finding exists",
    )

    @model_validator(mode="after")
    def validate_cap_below_threshold(self) -> "IterationSettings":
        """A Blocker-capped score must never satisfy the quality threshold."""
        if self.blocker_score_cap >= self.quality_threshold:
            raise ValueError(
                "blocker_score_cap must be lower than quality_threshold, "
                f"got {self.blocker_score_cap} >= {self.quality_threshold}"
            )
        return self


# =============================================================================
# Retry Settings
# =============================================================================


class RetrySettings(BaseSettings):
    """Backoff configuration for executor and scorer calls."""

    model_config = SettingsConfigDict(
        env_prefix="KOI_RETRY_",
        extra="ignore",
        frozen=True,
    )

    executor_max_attempts: int = Field(default=4, ge=1, le=20)
    scorer_max_attempts: int = Field(default=3, ge=1, le=20)
    initial_delay_seconds: float = Field(default=1.0, ge=0.0)
    backoff_factor: float = Field(default=2.0, ge=1.0)
    max_delay_seconds: float = Field(default=30.0, ge=0.0)
    jitter_fraction: float = Field(default=0.2, ge=0.0, le=1.0)

    def executor_policy(self) -> RetryPolicy:
        return self._policy(self.executor_max_attempts)

    def scorer_policy(self) -> RetryPolicy:
        return self._policy(self.scorer_max_attempts)

    def _policy(self, max_attempts: int) -> RetryPolicy:
        return RetryPolicy(
            max_attempts=max_attempts,
            initial_delay=self.initial_delay_seconds,
            backoff_factor=self.backoff_factor,
            max_delay=self.max_delay_seconds,
            jitter_fraction=self.jitter_fraction,
        )


# =============================================================================
# Evaluation Settings
# =============================================================================


class EvaluationSettings(BaseSettings):
    """Scorer execution configuration."""

    model_config = SettingsConfigDict(
        env_prefix="KOI_EVAL_",
        extra="ignore",
        frozen=True,
    )

    scorer_timeout_seconds: float = Field(
        default=120.0,
        gt=0.0,
        description="Per-attempt timeout for a single scorer",
    )
    skip_identical_artifacts: bool = Field(
        default=True,
        description="Skip evaluation when the artifact is identical to the previous one",
    )


# =============================================================================
# Logging Settings
# =============================================================================


class LoggingSettings(BaseSettings):
    """Logging and Logfire configuration."""

    model_config = SettingsConfigDict(
        env_prefix="KOI_",
        extra="ignore",
        frozen=True,
    )

    log_level: str = Field(default="INFO", description="Root log level")
    logfire_enabled: bool = Field(default=True, description="Emit Logfire spans")
    service_name: str = Field(default="koi-engine")
    logfire_token: Optional[SecretStr] = Field(default=None, alias="LOGFIRE_TOKEN")

    @field_validator("log_level")
    @classmethod
    def normalize_level(cls, value: str) -> str:
        level = value.upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"Unknown log level: {value}")
        return level


# =============================================================================
# Master Settings Class
# =============================================================================


class Settings(BaseSettings):
    """Master settings combining all configuration sections."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="KOI_",
        extra="ignore",
        case_sensitive=False,
        frozen=True,
    )

    paths: PathSettings = Field(default_factory=PathSettings)
    iteration: IterationSettings = Field(default_factory=IterationSettings)
    retry: RetrySettings = Field(default_factory=RetrySettings)
    evaluation: EvaluationSettings = Field(default_factory=EvaluationSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)

    def ensure_directories(self) -> None:
        """Create all necessary directories."""
        self.paths.ensure_directories()


# =============================================================================
# Cached Singleton Accessors
# =============================================================================


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Get the cached settings singleton.

    The settings are loaded once and cached for the process lifetime.
    To reload, call clear_settings_cache() first.
    """
    return Settings()


def clear_settings_cache() -> None:
    """Clear the cached settings instance.

    Call this if environment variables or .env files have changed
    and you need to reload configuration.
    """
    get_settings.cache_clear()
