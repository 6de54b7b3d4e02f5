"""Remote collaborators used by the pipelines.

The orchestrator reaches hosts only through ``RemoteBackend``: a
reachability test, a session factory, OS classification and a wait for a
host to come back from a reboot. ``SSHBackend`` implements it over
paramiko; tests substitute an in-memory fake.
"""

from __future__ import annotations

import logging
import socket
import time

from fleetdeploy._types import HostDescriptor, OSFamily
from fleetdeploy.config import Settings, get_settings
from fleetdeploy.detect import detect_os
from fleetdeploy.ssh import SSHSession

logger = logging.getLogger(__name__)


class RemoteBackend:
    """Interface between the pipelines and the transport."""

    def test_reachable(self, host: HostDescriptor) -> bool:
        raise NotImplementedError

    def open_session(self, host: HostDescriptor):
        """Return a connected session exposing ``run(cmd)`` and ``close()``."""
        raise NotImplementedError

    def detect_os(self, session) -> OSFamily:
        raise NotImplementedError

    def wait_for_reboot(self, host: HostDescriptor) -> bool:
        """Block until ``host`` has gone down and come back. False on timeout."""
        raise NotImplementedError


class SSHBackend(RemoteBackend):
    """RemoteBackend over SSH (OpenSSH on Linux, OpenSSH for Windows)."""

    def __init__(self, settings: Settings | None = None):
        self.settings = settings or get_settings()

    def _port_open(self, host: HostDescriptor, timeout: float) -> bool:
        try:
            with socket.create_connection((host.address, host.port), timeout=timeout):
                return True
        except OSError as exc:
            logger.debug("Port check %s:%s failed: %s", host.address, host.port, type(exc).__name__)
            return False

    def test_reachable(self, host: HostDescriptor) -> bool:
        """Check that the SSH port accepts TCP connections."""
        return self._port_open(host, self.settings.ssh_timeout)

    def open_session(self, host: HostDescriptor) -> SSHSession:
        """Connect without elevation; ``detect_os`` turns sudo on for Linux hosts."""
        session = SSHSession(
            host.address,
            port=host.port,
            user=host.user or None,
            password=host.secret or None,
            timeout=self.settings.ssh_timeout,
            command_timeout=self.settings.command_timeout,
        )
        session.connect()
        return session

    def detect_os(self, session: SSHSession) -> OSFamily:
        session.sudo = False
        family = detect_os(session)
        logger.info("%s: %s", session.hostname, family.value)
        # Windows commands run through cmd.exe or PowerShell, never sudo
        session.sudo = self.settings.sudo and family is OSFamily.LINUX
        return family

    def wait_for_reboot(self, host: HostDescriptor) -> bool:
        deadline = time.monotonic() + self.settings.reboot_timeout
        interval = self.settings.reboot_poll_seconds

        # Port must close first, then reopen.
        while self._port_open(host, timeout=5):
            if time.monotonic() > deadline:
                logger.warning("%s did not go down within %ss", host.address, self.settings.reboot_timeout)
                return False
            time.sleep(interval)

        while not self._port_open(host, timeout=5):
            if time.monotonic() > deadline:
                logger.warning("%s did not come back within %ss", host.address, self.settings.reboot_timeout)
                return False
            time.sleep(interval)

        logger.info("%s is back online", host.address)
        return True
