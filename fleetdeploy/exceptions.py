"""
fleetdeploy Exceptions

Exception classes with structured context for logging and for turning
transport failures into pipeline outcomes. Messages never carry secrets.

This module defines:
- FleetDeployError: Base class for all fleetdeploy errors
- SSHConnectionError: Errors while establishing a session to a host
- SSHCommandError: Errors while executing a remote command
- HostValidationError: Static host validation failed before a run
- RunInProgressError: A run of the same kind is already active
- WorkerSpawnError: A host worker could not be started
- ConfigurationError: Invalid runtime configuration

Usage:
    from fleetdeploy.exceptions import SSHConnectionError

    try:
        session = backend.open_session(host)
    except SSHConnectionError as e:
        logger.warning("Connection failed: %s", e)
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional


class FleetDeployError(Exception):
    """Base class for fleetdeploy errors."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(self.message)


class SSHConnectionError(FleetDeployError):
    """
    Raised when a session to a host cannot be established.

    Error Types:
        - auth_failed: Credentials rejected
        - timeout: Connection timed out
        - unreachable: Network path not available or connection refused
        - protocol_error: SSH negotiation failed
    """

    def __init__(
        self,
        message: str,
        hostname: Optional[str] = None,
        port: Optional[int] = None,
        error_type: Optional[str] = None,
    ) -> None:
        self.hostname = hostname
        self.port = port
        self.error_type = error_type
        super().__init__(message)

    def __str__(self) -> str:
        if self.hostname:
            return f"{self.message} (target: {self.hostname}:{self.port or 22})"
        return self.message

    def __repr__(self) -> str:
        return (
            f"SSHConnectionError(message={self.message!r}, "
            f"hostname={self.hostname!r}, port={self.port!r}, "
            f"error_type={self.error_type!r})"
        )


class SSHCommandError(FleetDeployError):
    """
    Raised when command execution fails at the transport level.

    A command returning a non-zero exit code is NOT an error; it is reported
    through ``Result.exit_code``.
    """

    def __init__(
        self,
        message: str,
        command: Optional[str] = None,
        hostname: Optional[str] = None,
        duration: Optional[float] = None,
    ) -> None:
        # Truncate command to keep logs readable
        self.command = command[:100] + "..." if command and len(command) > 100 else command
        self.hostname = hostname
        self.duration = duration
        super().__init__(message)

    def __str__(self) -> str:
        parts = [self.message]
        if self.hostname:
            parts.append(f"host: {self.hostname}")
        if self.duration is not None:
            parts.append(f"duration: {self.duration:.2f}s")
        return " | ".join(parts)


@dataclass(frozen=True)
class ValidationIssue:
    """One validation failure for one host field."""

    host_id: int
    field: str
    message: str

    def __str__(self) -> str:
        return f"host {self.host_id}: {self.field}: {self.message}"


class HostValidationError(FleetDeployError):
    """Raised when submitted hosts fail static validation."""

    def __init__(self, issues: list[ValidationIssue]) -> None:
        self.issues = list(issues)
        super().__init__(f"{len(self.issues)} host validation error(s)")

    def __str__(self) -> str:
        lines = [self.message]
        lines.extend(f"  - {issue}" for issue in self.issues)
        return "\n".join(lines)


class RunInProgressError(FleetDeployError):
    """Raised when a run is submitted while another of the same kind is active."""

    def __init__(self, kind: str, run_id: Optional[str] = None) -> None:
        self.kind = kind
        self.run_id = run_id
        super().__init__(f"A {kind} run is already in progress")


class WorkerSpawnError(FleetDeployError):
    """Wraps the exception that prevented a host worker from starting."""

    def __init__(self, host_id: int, cause: BaseException) -> None:
        self.host_id = host_id
        self.cause = cause
        super().__init__(f"Could not start worker for host {host_id}: {cause}")


class ConfigurationError(FleetDeployError):
    """Raised for invalid runtime configuration values."""

    def __init__(self, message: str, setting_key: Optional[str] = None) -> None:
        self.setting_key = setting_key
        super().__init__(message)

    def __str__(self) -> str:
        if self.setting_key:
            return f"{self.message} (setting: {self.setting_key})"
        return self.message


__all__ = [
    "FleetDeployError",
    "SSHConnectionError",
    "SSHCommandError",
    "ValidationIssue",
    "HostValidationError",
    "RunInProgressError",
    "WorkerSpawnError",
    "ConfigurationError",
]
