"""Container runtime installer.

Installs Docker Engine through the upstream convenience script. The same
commands run natively on Linux and inside the WSL distribution on Windows,
so one installer serves both branches.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from fleetdeploy import shell_util
from fleetdeploy._types import Severity
from fleetdeploy.detect import DEBIAN_FAMILY, detect_platform

if TYPE_CHECKING:
    from fleetdeploy.installers import InstallContext

logger = logging.getLogger(__name__)

DOCKER_INSTALL_SCRIPT = "https://get.docker.com"
NETWORK_NAME = "fleetdeploy"

# systemd is not always running inside WSL; fall back to the SysV wrapper.
_START_DOCKER = "systemctl enable --now docker >/dev/null 2>&1 || service docker start"


def package_install_command(platform, packages: str) -> str | None:
    """Return the command installing ``packages`` on ``platform``, or None if unsupported."""
    if platform is None:
        return None
    if platform.family in DEBIAN_FAMILY:
        return f"apt-get update -qq && apt-get install -y -qq {packages}"
    if platform.family == "rhel":
        # RHEL/CentOS 7 and older have no dnf
        manager = "yum" if 0 < platform.version < 8 else "dnf"
        return f"{manager} install -y {packages}"
    return None


def install_docker(ctx: InstallContext) -> bool:
    """Install and start Docker Engine, then create the shared network.

    Idempotent: an existing, responsive daemon is left as is.
    """
    shell = ctx.shell
    timeout = ctx.settings.install_timeout

    if not shell_util.command_exists(shell, "docker"):
        ctx.emit("Docker not found, running the installer script", Severity.INFO)
        if not shell_util.command_exists(shell, "curl"):
            platform = detect_platform(shell)
            command = package_install_command(platform, "curl")
            if command is None:
                logger.warning("%s: no package manager known for %s", ctx.host.address, platform)
                return False
            result = shell.run(command, timeout=timeout)
            if not result.ok:
                logger.warning("%s: curl installation failed: %s", ctx.host.address, result.stderr[:200])
                return False

        result = shell.run(f"curl -fsSL {DOCKER_INSTALL_SCRIPT} | sh", timeout=timeout)
        if not result.ok:
            logger.warning("%s: Docker install script failed: %s", ctx.host.address, result.stderr[:200])
            return False

    if not shell.run("docker info >/dev/null 2>&1").ok:
        result = shell.run(_START_DOCKER)
        if not result.ok or not shell.run("docker info >/dev/null 2>&1").ok:
            logger.warning("%s: Docker daemon did not start", ctx.host.address)
            return False

    network = shell_util.quote(NETWORK_NAME)
    result = shell.run(f"docker network inspect {network} >/dev/null 2>&1 || docker network create {network}")
    if not result.ok:
        logger.warning("%s: could not create network %s: %s", ctx.host.address, NETWORK_NAME, result.stderr)
        return False
    return True
