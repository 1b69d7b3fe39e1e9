"""Tests for environment-driven settings."""

import pytest

from cashflow_engine.config import (
    GenerationSettings,
    LoggingSettings,
    MaterializationSettings,
    get_settings,
    validate_all_settings,
)


class TestSettings:
    """Tests for the settings sections."""

    def test_defaults(self):
        """Test the engine's default bounds."""
        assert GenerationSettings().max_occurrences == 1000
        window = MaterializationSettings()
        assert window.lookback_months == 3
        assert window.horizon_months == 24

    def test_env_override(self, monkeypatch):
        """Test that prefixed environment variables are read."""
        monkeypatch.setenv("CASHFLOW_GENERATION_MAX_OCCURRENCES", "250")
        monkeypatch.setenv("CASHFLOW_MATERIALIZATION_HORIZON_MONTHS", "12")

        assert GenerationSettings().max_occurrences == 250
        assert MaterializationSettings().horizon_months == 12

    def test_log_level_normalized(self):
        """Test that log levels are upper-cased and checked."""
        assert LoggingSettings(level="debug").level == "DEBUG"
        with pytest.raises(ValueError):
            LoggingSettings(level="verbose")

    def test_validate_all_settings_sections(self):
        """Test that every engine section is checked and nothing else."""
        get_settings.cache_clear()

        results = validate_all_settings()

        assert results == {
            "generation": True,
            "materialization": True,
            "storage": True,
            "logging": True,
        }

    def test_validate_all_settings_reports_errors(self, monkeypatch):
        """Test that a broken section is reported instead of raised."""
        monkeypatch.setenv("CASHFLOW_STORAGE_RETRY_ATTEMPTS", "0")
        get_settings.cache_clear()

        results = validate_all_settings()

        assert results["generation"] is True
        assert results["storage"] is False
        assert "storage_error" in results
        get_settings.cache_clear()
