"""
fleetdeploy Configuration
Runtime settings loaded from the environment (prefix FLEETDEPLOY_) or .env
"""

from functools import lru_cache
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from fleetdeploy.exceptions import ConfigurationError

# Recurring health refresh intervals offered to the user, in seconds
REFRESH_INTERVALS = {
    "10s": 10,
    "30s": 30,
    "1m": 60,
    "5m": 300,
}

# Upper bound on concurrent host workers regardless of configuration
MAX_WORKERS_CEILING = 256


class Settings(BaseSettings):
    """Orchestrator and transport settings"""

    # SSH transport
    ssh_port: int = 22
    ssh_timeout: int = Field(default=15, description="Connect timeout in seconds")
    command_timeout: int = Field(default=60, description="Default remote command timeout")
    install_timeout: int = Field(default=900, description="Timeout for installer commands")
    sudo: bool = Field(default=False, description="Run commands on Linux hosts through sudo")

    # Orchestration
    poll_interval_ms: int = Field(default=150, description="Completion poller tick interval")
    max_workers: int = Field(default=50, description="Cap on concurrent host workers")

    # Windows compatibility layer
    auto_reboot: bool = Field(default=False, description="Reboot Windows hosts automatically when required")
    reboot_timeout: int = Field(default=600, description="Seconds to wait for a host to come back")
    reboot_poll_seconds: int = 10
    wsl_distribution: str = "Ubuntu"

    # Reverse proxy
    domain: Optional[str] = Field(default=None, description="Base domain for proxied services")

    # Health classification thresholds (percent)
    warning_threshold: float = 75.0
    critical_threshold: float = 90.0

    # Logging
    log_level: str = "INFO"

    model_config = SettingsConfigDict(env_file=".env", env_prefix="FLEETDEPLOY_", extra="ignore")

    @field_validator("poll_interval_ms")
    @classmethod
    def poll_interval_in_range(cls, v):
        if not 10 <= v <= 5000:
            raise ValueError("poll_interval_ms must be between 10 and 5000")
        return v

    @field_validator("max_workers")
    @classmethod
    def max_workers_bounded(cls, v):
        if not 1 <= v <= MAX_WORKERS_CEILING:
            raise ValueError(f"max_workers must be between 1 and {MAX_WORKERS_CEILING}")
        return v

    @field_validator("critical_threshold")
    @classmethod
    def critical_above_warning(cls, v, info):
        warning = info.data.get("warning_threshold")
        if warning is not None and v < warning:
            raise ValueError("critical_threshold must not be below warning_threshold")
        return v

    @field_validator("log_level")
    @classmethod
    def known_log_level(cls, v):
        level = v.upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"Unknown log level: {v}")
        return level


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings"""
    return Settings()


def refresh_interval_seconds(name: str) -> int:
    """Translate a refresh interval name ("10s", "1m", ...) into seconds."""
    try:
        return REFRESH_INTERVALS[name]
    except KeyError:
        choices = ", ".join(REFRESH_INTERVALS)
        raise ConfigurationError(
            f"Unsupported refresh interval {name!r} (choose from {choices})", "refresh_interval"
        ) from None
