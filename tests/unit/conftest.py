"""
Unit test fixtures and helpers.

Provides in-memory stand-ins for the remote side (backend, sessions,
installers) so pipelines and orchestration can be tested without SSH.
"""

from __future__ import annotations

import threading
from typing import Callable

import pytest

from fleetdeploy._types import CompatOutcome, HostDescriptor, OSFamily, Service
from fleetdeploy.backend import RemoteBackend
from fleetdeploy.config import Settings
from fleetdeploy.installers import InstallerRegistry
from fleetdeploy.ssh import Result


# =============================================================================
# Fakes
# =============================================================================


class FakeSession:
    """Records commands; answers from a prefix -> Result table."""

    def __init__(self, hostname: str = "host", responses: dict[str, Result] | None = None):
        self.hostname = hostname
        self.responses = responses or {}
        self.commands: list[str] = []
        self.closed = False

    def run(self, cmd: str, *, timeout: int | None = None) -> Result:
        self.commands.append(cmd)
        for prefix, result in self.responses.items():
            if cmd.startswith(prefix):
                return result
        return Result(exit_code=0, stdout="", stderr="")

    def close(self) -> None:
        self.closed = True


class FakeBackend(RemoteBackend):
    """Backend whose behaviour is configured per host address.

    Args:
        unreachable: Addresses for which test_reachable returns False.
        os_by_address: OS family per address (default Linux).
        open_error: Addresses for which open_session raises.
        gate: Optional event every open_session waits on.

    """

    def __init__(
        self,
        unreachable: set[str] | None = None,
        os_by_address: dict[str, OSFamily] | None = None,
        open_error: set[str] | None = None,
        gate: threading.Event | None = None,
    ):
        self.unreachable = unreachable or set()
        self.os_by_address = os_by_address or {}
        self.open_error = open_error or set()
        self.gate = gate
        self.sessions: list[FakeSession] = []
        self.reachability_checks: list[str] = []
        self._lock = threading.Lock()

    def test_reachable(self, host: HostDescriptor) -> bool:
        with self._lock:
            self.reachability_checks.append(host.address)
        return host.address not in self.unreachable

    def open_session(self, host: HostDescriptor) -> FakeSession:
        if self.gate is not None:
            self.gate.wait(timeout=5)
        if host.address in self.open_error:
            raise ConnectionError("authentication failed")
        session = FakeSession(hostname=host.address)
        with self._lock:
            self.sessions.append(session)
        return session

    def detect_os(self, session: FakeSession) -> OSFamily:
        return self.os_by_address.get(session.hostname, OSFamily.LINUX)

    def wait_for_reboot(self, host: HostDescriptor) -> bool:
        return True


def make_registry(
    runtime: Callable | bool = True,
    compat: Callable | bool | CompatOutcome = True,
    proxy: Callable | bool = True,
    service: Callable | bool = True,
) -> InstallerRegistry:
    """Registry whose installers return fixed values (or run the given callables)."""

    def wrap(value):
        if callable(value):
            return value
        return lambda ctx: value

    service_installer = wrap(service)
    return InstallerRegistry(
        runtime={OSFamily.LINUX: wrap(runtime), OSFamily.WINDOWS: wrap(runtime)},
        compat_layer=wrap(compat),
        reverse_proxy=wrap(proxy),
        services={s: service_installer for s in Service},
    )


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def settings() -> Settings:
    """Settings with a fast poll interval and no environment influence."""
    return Settings(poll_interval_ms=10, max_workers=50, auto_reboot=False)


@pytest.fixture
def backend() -> FakeBackend:
    return FakeBackend()


@pytest.fixture
def registry() -> InstallerRegistry:
    return make_registry()


@pytest.fixture
def make_host() -> Callable[..., HostDescriptor]:
    """Factory for valid host descriptors with sequential ids."""
    counter = {"next": 1}

    def factory(address: str = "192.168.1.10", service=Service.PORTAINER, **fields) -> HostDescriptor:
        host = HostDescriptor(
            id=fields.pop("id", counter["next"]),
            address=address,
            user=fields.pop("user", "admin"),
            secret=fields.pop("secret", "secret"),  # pragma: allowlist secret
            service=service,
            **fields,
        )
        counter["next"] = host.id + 1
        return host

    return factory
