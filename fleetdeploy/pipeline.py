"""Per-host deployment pipeline.

One ``DeployPipeline`` runs on one worker thread for one host and walks a
fixed stage sequence, stopping at the first hard failure:

    Linux:    Connect -> DetectOS -> InstallRuntime -> InstallReverseProxy -> InstallService
    Windows:  Connect -> DetectOS -> InstallCompatibilityLayer -> InstallRuntime (in WSL)
              -> InstallReverseProxy -> InstallService

Failure classes:
    - hard: connection, unknown OS, runtime, compatibility layer -> terminal
    - soft: reverse proxy -> warning event, the service stays on its direct port
    - unknown service: earlier stages stand, the result is unsuccessful

Every failure, including an exception raised by a collaborator, is turned
into a progress event and, when terminal, a PipelineResult. ``run`` never
raises.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Callable

from fleetdeploy._types import (
    COMPAT_LAYER_FAILED,
    COMPAT_RUNTIME_FAILED,
    CONNECTION_FAILED,
    REBOOT_REQUIRED,
    RUNTIME_FAILED,
    SERVICE_FAILED,
    UNKNOWN_OS,
    UNKNOWN_SERVICE,
    CompatOutcome,
    HostDescriptor,
    OSFamily,
    PipelineResult,
    Service,
    Severity,
)
from fleetdeploy.channel import ProgressChannel
from fleetdeploy.config import Settings, get_settings
from fleetdeploy.installers import InstallContext, InstallerRegistry

if TYPE_CHECKING:
    from fleetdeploy.backend import RemoteBackend

logger = logging.getLogger(__name__)


def normalize_compat_outcome(outcome: bool | CompatOutcome | None) -> str | None:
    """Map a compatibility-layer installer return value to an error kind.

    Accepts a plain bool (legacy installers) or a CompatOutcome.

    Returns:
        None to proceed, otherwise the terminal error kind.

    """
    if isinstance(outcome, CompatOutcome):
        if not outcome.success:
            return COMPAT_LAYER_FAILED
        if outcome.needs_reboot and not outcome.ready:
            return REBOOT_REQUIRED
        return None
    return None if outcome else COMPAT_LAYER_FAILED


class DeployPipeline:
    """Stage sequence for one host."""

    def __init__(
        self,
        host: HostDescriptor,
        channel: ProgressChannel,
        backend: RemoteBackend,
        registry: InstallerRegistry,
        settings: Settings | None = None,
    ):
        self.host = host
        self.channel = channel
        self.backend = backend
        self.registry = registry
        self.settings = settings or get_settings()
        self.result: PipelineResult | None = None
        self._ctx: InstallContext | None = None

    # ── Event helpers ──────────────────────────────────────────────────

    def emit(self, message: str, severity: Severity = Severity.INFO) -> None:
        if self.result is not None:
            # Terminal result already produced; nothing may follow it.
            logger.debug("Dropping late event for host %s: %s", self.host.id, message)
            return
        self.channel.emit(self.host.id, message, severity)

    def _finish(self, success: bool, error_kind: str | None = None) -> PipelineResult:
        self.result = PipelineResult(
            host_id=self.host.id,
            address=self.host.address,
            success=success,
            service=Service.parse(self.host.service),
            error_kind=error_kind,
        )
        return self.result

    def _fail(self, error_kind: str, message: str) -> PipelineResult:
        self.emit(message, Severity.ERROR)
        logger.info("Host %s (%s) failed: %s", self.host.id, self.host.address, error_kind)
        return self._finish(False, error_kind)

    def _call(self, stage: str, func: Callable, *args, severity: Severity = Severity.ERROR):
        """Invoke a collaborator, converting an exception into a failed stage."""
        try:
            return func(*args)
        except Exception as exc:
            logger.warning(
                "Host %s (%s): %s raised %s: %s", self.host.id, self.host.address, stage, type(exc).__name__, exc
            )
            self.emit(f"{stage}: {exc}", severity)
            return None

    # ── Stages ─────────────────────────────────────────────────────────

    def run(self) -> PipelineResult:
        """Execute all stages and return the terminal result."""
        try:
            return self._run()
        finally:
            if self._ctx is not None and self._ctx.session is not None:
                try:
                    self._ctx.session.close()
                except Exception as exc:
                    logger.debug("Host %s: error closing session: %s", self.host.id, exc)

    def _run(self) -> PipelineResult:
        host = self.host

        self.emit(f"Connecting to {host.address}:{host.port}")
        if not self._call("Connect", self.backend.test_reachable, host):
            return self._fail(CONNECTION_FAILED, f"{host.address} is unreachable")
        session = self._call("Connect", self.backend.open_session, host)
        if session is None:
            return self._fail(CONNECTION_FAILED, f"Could not open a session to {host.address}")
        self.emit("Connected", Severity.SUCCESS)

        self.emit("Detecting operating system")
        os_family = self._call("DetectOS", self.backend.detect_os, session) or OSFamily.UNKNOWN
        self._ctx = InstallContext(
            host=host,
            session=session,
            backend=self.backend,
            settings=self.settings,
            os_family=os_family,
            emit=self.emit,
        )
        if os_family is OSFamily.UNKNOWN:
            return self._fail(UNKNOWN_OS, "Operating system not supported")
        self.emit(f"Detected {os_family.value.capitalize()}", Severity.SUCCESS)

        if os_family is OSFamily.WINDOWS:
            return self._run_windows()
        return self._run_linux()

    def _run_linux(self) -> PipelineResult:
        if not self._install_runtime(RUNTIME_FAILED, "Installing container runtime"):
            return self.result
        self._install_reverse_proxy()
        return self._install_service()

    def _run_windows(self) -> PipelineResult:
        self.emit("Installing compatibility layer (WSL)")
        installer = self.registry.compat_layer
        outcome = self._call("InstallCompatibilityLayer", installer, self._ctx) if installer else None
        error_kind = normalize_compat_outcome(outcome)
        if error_kind == REBOOT_REQUIRED:
            return self._fail(REBOOT_REQUIRED, "Reboot required to finish enabling WSL; reboot the host and run again")
        if error_kind is not None:
            return self._fail(error_kind, "Compatibility layer installation failed")
        self.emit("Compatibility layer ready", Severity.SUCCESS)

        if not self._install_runtime(COMPAT_RUNTIME_FAILED, "Installing container runtime inside WSL"):
            return self.result
        self._install_reverse_proxy()
        return self._install_service()

    def _install_runtime(self, error_kind: str, message: str) -> bool:
        self.emit(message)
        installer = self.registry.runtime_installer(self._ctx.os_family)
        if installer is None or not self._call("InstallRuntime", installer, self._ctx):
            self._fail(error_kind, "Container runtime installation failed")
            return False
        self.emit("Container runtime ready", Severity.SUCCESS)
        return True

    def _install_reverse_proxy(self) -> None:
        self.emit("Installing reverse proxy")
        installer = self.registry.reverse_proxy
        if installer is not None and self._call("InstallReverseProxy", installer, self._ctx, severity=Severity.WARNING):
            self._ctx.proxy_available = True
            self.emit("Reverse proxy ready", Severity.SUCCESS)
        else:
            self.emit(
                "Reverse proxy installation failed; service will be reachable on its direct port", Severity.WARNING
            )

    def _install_service(self) -> PipelineResult:
        name = self.host.service_name
        self.emit(f"Installing {name}")
        installer = self.registry.service_installer(self.host.service)
        if installer is None:
            return self._fail(UNKNOWN_SERVICE, f"Unknown service {name!r}")

        if not self._call("InstallService", installer, self._ctx):
            return self._fail(SERVICE_FAILED, f"{name} installation failed")
        self.emit(f"{name} deployed", Severity.SUCCESS)
        return self._finish(True)
