"""
Unit Tests for Settings

Tests environment loading, validators and refresh interval names.
"""

import pytest
from pydantic import ValidationError

from fleetdeploy.config import REFRESH_INTERVALS, Settings, refresh_interval_seconds
from fleetdeploy.exceptions import ConfigurationError


class TestSettings:
    """Tests for the Settings model."""

    def test_defaults(self) -> None:
        settings = Settings()

        assert settings.poll_interval_ms == 150
        assert settings.max_workers == 50
        assert settings.auto_reboot is False
        assert (settings.warning_threshold, settings.critical_threshold) == (75.0, 90.0)

    def test_environment_prefix(self, monkeypatch) -> None:
        monkeypatch.setenv("FLEETDEPLOY_MAX_WORKERS", "8")
        monkeypatch.setenv("FLEETDEPLOY_AUTO_REBOOT", "true")

        settings = Settings()

        assert settings.max_workers == 8
        assert settings.auto_reboot is True

    @pytest.mark.parametrize(
        "overrides",
        [
            {"poll_interval_ms": 5},
            {"max_workers": 0},
            {"max_workers": 1000},
            {"warning_threshold": 80.0, "critical_threshold": 70.0},
            {"log_level": "chatty"},
        ],
    )
    def test_invalid_values(self, overrides: dict) -> None:
        with pytest.raises(ValidationError):
            Settings(**overrides)

    def test_log_level_normalized(self) -> None:
        assert Settings(log_level="debug").log_level == "DEBUG"


class TestRefreshIntervals:
    """Tests for refresh_interval_seconds."""

    def test_known_intervals(self) -> None:
        assert {name: refresh_interval_seconds(name) for name in REFRESH_INTERVALS} == {
            "10s": 10,
            "30s": 30,
            "1m": 60,
            "5m": 300,
        }

    def test_unknown_interval(self) -> None:
        with pytest.raises(ConfigurationError) as exc_info:
            refresh_interval_seconds("2m")

        assert exc_info.value.setting_key == "refresh_interval"
