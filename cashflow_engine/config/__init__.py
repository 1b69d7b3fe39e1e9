"""Configuration package."""

from cashflow_engine.config.settings import (
    GenerationSettings,
    LoggingSettings,
    MaterializationSettings,
    Settings,
    StorageSettings,
    get_settings,
    validate_all_settings,
)

__all__ = [
    "GenerationSettings",
    "LoggingSettings",
    "MaterializationSettings",
    "Settings",
    "StorageSettings",
    "get_settings",
    "validate_all_settings",
]
