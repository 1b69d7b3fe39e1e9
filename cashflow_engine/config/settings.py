"""
Configuration Management for the Cashflow Engine

Uses pydantic-settings for type-safe configuration from environment variables.

DESIGN DECISION: All configuration is centralized here.
Every tunable bound of the engine (generation ceiling, reconcile horizon,
retry policy) is visible in one place and validated at startup.
"""

from functools import lru_cache

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class GenerationSettings(BaseSettings):
    """Occurrence generation bounds."""

    model_config = SettingsConfigDict(
        env_prefix="CASHFLOW_GENERATION_",
        extra="ignore"
    )

    max_occurrences: int = Field(
        default=1000,
        ge=1,
        le=100000,
        description="Maximum occurrences one rule may produce in a single window"
    )


class MaterializationSettings(BaseSettings):
    """Reconcile window and write batching."""

    model_config = SettingsConfigDict(
        env_prefix="CASHFLOW_MATERIALIZATION_",
        extra="ignore"
    )

    lookback_months: int = Field(
        default=3,
        ge=0,
        le=120,
        description="Months before the current month covered by the default window"
    )
    horizon_months: int = Field(
        default=24,
        ge=0,
        le=120,
        description="Months after the current month covered by the default window"
    )
    write_batch_size: int = Field(
        default=50,
        ge=1,
        le=1000,
        description="Events written per upsert call"
    )
    default_projection_months: int = Field(
        default=6,
        ge=0,
        le=120,
        description="Months projected after the current month when none are given"
    )


class StorageSettings(BaseSettings):
    """Retry policy for calls to the external persistence layer."""

    model_config = SettingsConfigDict(
        env_prefix="CASHFLOW_STORAGE_",
        extra="ignore"
    )

    retry_attempts: int = Field(
        default=3,
        ge=1,
        le=10,
        description="Attempts per storage call before the failure is raised"
    )
    retry_min_wait_seconds: float = Field(
        default=0.5,
        ge=0.0,
        description="Minimum backoff between attempts"
    )
    retry_max_wait_seconds: float = Field(
        default=5.0,
        ge=0.0,
        description="Maximum backoff between attempts"
    )


class LoggingSettings(BaseSettings):
    """Structured logging configuration."""

    model_config = SettingsConfigDict(
        env_prefix="CASHFLOW_LOG_",
        extra="ignore"
    )

    level: str = Field(
        default="INFO",
        description="Minimum log level"
    )
    json_output: bool = Field(
        default=True,
        description="Render JSON lines (False renders for a console)"
    )

    @field_validator('level')
    @classmethod
    def validate_level(cls, v: str) -> str:
        allowed = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        if v.upper() not in allowed:
            raise ValueError(f"Unsupported log level: {v}. Allowed: {sorted(allowed)}")
        return v.upper()


class Settings(BaseSettings):
    """
    Root settings container.

    Aggregates all sub-settings for easy access.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    @property
    def generation(self) -> GenerationSettings:
        return GenerationSettings()

    @property
    def materialization(self) -> MaterializationSettings:
        return MaterializationSettings()

    @property
    def storage(self) -> StorageSettings:
        return StorageSettings()

    @property
    def logging(self) -> LoggingSettings:
        return LoggingSettings()


@lru_cache()
def get_settings() -> Settings:
    """
    Get application settings (cached).

    Call get_settings.cache_clear() to reload if needed.
    """
    return Settings()


def validate_all_settings() -> dict[str, bool]:
    """
    Validate all settings are properly configured.

    Returns a dict of {setting_name: is_valid}, with a
    `<name>_error` entry for each section that failed.
    """
    results = {}

    settings = get_settings()

    sections = {
        "generation": lambda: settings.generation,
        "materialization": lambda: settings.materialization,
        "storage": lambda: settings.storage,
        "logging": lambda: settings.logging,
    }

    for name, load in sections.items():
        try:
            load()
            results[name] = True
        except Exception as e:
            results[name] = False
            results[f"{name}_error"] = str(e)

    return results
