"""Installer registry.

Installers are plain callables taking an ``InstallContext`` and returning
either ``bool`` or, for the compatibility layer, a ``CompatOutcome``. They
may raise; the pipeline treats an exception as that stage failing.

Installer Modules:
    - _runtime: Docker Engine (natively on Linux, inside WSL on Windows)
    - _proxy: Caddy reverse proxy container
    - _services: one container definition per Service
    - _windows: WSL compatibility layer with optional reboot-and-wait

Example:
-------
    >>> from fleetdeploy.installers import default_registry
    >>> registry = default_registry()
    >>> installer = registry.service_installer(Service.PORTAINER)
    >>> ok = installer(ctx)

"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Callable, Union

from fleetdeploy._types import CompatOutcome, HostDescriptor, OSFamily, Service, Severity
from fleetdeploy.config import Settings
from fleetdeploy.installers._proxy import install_reverse_proxy
from fleetdeploy.installers._runtime import install_docker
from fleetdeploy.installers._services import SERVICE_SPECS, install_service
from fleetdeploy.installers._windows import install_wsl
from fleetdeploy.ssh import WSLSession

if TYPE_CHECKING:
    from fleetdeploy.backend import RemoteBackend


@dataclass
class InstallContext:
    """Everything an installer may need for one host.

    ``session`` is the host's own shell; ``shell`` is where POSIX commands
    run (the session itself on Linux, WSL on Windows). ``reconnect``
    replaces the session after a reboot.
    """

    host: HostDescriptor
    session: Any
    backend: RemoteBackend
    settings: Settings
    os_family: OSFamily
    emit: Callable[[str, Severity], None] = lambda message, severity=Severity.INFO: None
    proxy_available: bool = False

    @property
    def domain(self) -> str | None:
        return self.settings.domain

    @property
    def shell(self):
        if self.os_family is OSFamily.WINDOWS:
            return WSLSession(self.session, self.settings.wsl_distribution)
        return self.session

    def reconnect(self) -> None:
        if self.session is not None:
            self.session.close()
        self.session = None
        self.session = self.backend.open_session(self.host)


Installer = Callable[[InstallContext], Union[bool, CompatOutcome]]


def _service_installer(service: Service) -> Installer:
    spec = SERVICE_SPECS[service]

    def installer(ctx: InstallContext) -> bool:
        return install_service(ctx, spec)

    installer.__name__ = f"install_{service.name.lower()}"
    return installer


SERVICE_INSTALLERS: dict[Service, Installer] = {service: _service_installer(service) for service in Service}


def _check_exhaustive(table: dict[Service, Installer]) -> None:
    missing = set(Service) - set(table)
    if missing:
        names = ", ".join(sorted(s.value for s in missing))
        raise RuntimeError(f"No installer registered for: {names}")


_check_exhaustive(SERVICE_INSTALLERS)


@dataclass
class InstallerRegistry:
    """Installer capabilities keyed by OS family and by service."""

    runtime: dict[OSFamily, Installer] = field(default_factory=dict)
    compat_layer: Installer | None = None
    reverse_proxy: Installer | None = None
    services: dict[Service, Installer] = field(default_factory=dict)

    def runtime_installer(self, os_family: OSFamily) -> Installer | None:
        return self.runtime.get(os_family)

    def service_installer(self, service: Service | str | None) -> Installer | None:
        """Look up the installer for a selection; None means unknown service."""
        member = Service.parse(service) if isinstance(service, str) else service
        if member is None:
            return None
        return self.services.get(member)


def default_registry() -> InstallerRegistry:
    """Registry wired to the SSH-based installers."""
    return InstallerRegistry(
        runtime={OSFamily.LINUX: install_docker, OSFamily.WINDOWS: install_docker},
        compat_layer=install_wsl,
        reverse_proxy=install_reverse_proxy,
        services=dict(SERVICE_INSTALLERS),
    )


__all__ = [
    "InstallContext",
    "Installer",
    "InstallerRegistry",
    "SERVICE_INSTALLERS",
    "default_registry",
]
