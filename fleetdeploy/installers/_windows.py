"""Windows compatibility layer installer (WSL).

Enabling the WSL and VirtualMachinePlatform features usually requires a
reboot before a distribution can run. The installer reports this through
``CompatOutcome``:

    success=False                              -> install failed
    success=True, needs_reboot, not ready      -> manual reboot required
    success=True, ready                        -> continue

With ``Settings.auto_reboot`` enabled it reboots the host itself, waits for
it to come back, reconnects and finishes the distribution install.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from fleetdeploy._types import CompatOutcome, Severity
from fleetdeploy.exceptions import SSHCommandError, SSHConnectionError
from fleetdeploy.ssh import powershell

if TYPE_CHECKING:
    from fleetdeploy.installers import InstallContext

logger = logging.getLogger(__name__)

_ENABLE_FEATURES = """\
$ErrorActionPreference = 'Stop'
$reboot = $false
foreach ($name in @('Microsoft-Windows-Subsystem-Linux', 'VirtualMachinePlatform')) {
  $feature = Get-WindowsOptionalFeature -Online -FeatureName $name
  if ($feature.State -ne 'Enabled') {
    $r = Enable-WindowsOptionalFeature -Online -FeatureName $name -All -NoRestart
    if ($r.RestartNeeded) { $reboot = $true }
  } elseif ($feature.RestartNeeded) {
    $reboot = $true
  }
}
Write-Output "REBOOT=$reboot"
"""


def _distribution_ready(ctx: InstallContext) -> bool:
    distro = ctx.settings.wsl_distribution
    return ctx.session.run(f"wsl.exe -d {distro} -u root -- true").ok


def _install_distribution(ctx: InstallContext) -> bool:
    distro = ctx.settings.wsl_distribution
    ctx.session.run("wsl.exe --set-default-version 2")
    result = ctx.session.run(
        f"wsl.exe --install -d {distro} --no-launch",
        timeout=ctx.settings.install_timeout,
    )
    if not result.ok:
        logger.warning("%s: wsl --install failed: %s", ctx.host.address, (result.stderr or result.stdout)[:200])
        return False
    # First launch as root registers the distribution without prompting for a user.
    launcher = distro.lower().replace("-", "").replace(".", "")
    ctx.session.run(f"{launcher}.exe install --root", timeout=ctx.settings.install_timeout)
    return _distribution_ready(ctx)


def _reboot_and_wait(ctx: InstallContext) -> bool:
    ctx.emit("Rebooting host to finish enabling WSL", Severity.WARNING)
    try:
        ctx.session.run("shutdown /r /t 5 /c \"fleetdeploy: enabling WSL\"")
    except SSHCommandError:
        logger.debug("%s: session dropped while issuing reboot", ctx.host.address)

    ctx.session.close()
    if not ctx.backend.wait_for_reboot(ctx.host):
        return False

    try:
        ctx.reconnect()
    except SSHConnectionError as exc:
        logger.warning("%s: reconnect after reboot failed: %s", ctx.host.address, exc)
        return False
    ctx.emit("Host is back online", Severity.SUCCESS)
    return True


def install_wsl(ctx: InstallContext) -> CompatOutcome:
    """Enable WSL 2 and install the configured distribution."""
    if _distribution_ready(ctx):
        return CompatOutcome(success=True, needs_reboot=False, ready=True)

    result = ctx.session.run(powershell(_ENABLE_FEATURES), timeout=ctx.settings.install_timeout)
    if not result.ok:
        logger.warning("%s: enabling WSL features failed: %s", ctx.host.address, result.stderr[:200])
        return CompatOutcome(success=False)

    needs_reboot = "REBOOT=True" in result.stdout
    if needs_reboot:
        if not ctx.settings.auto_reboot:
            return CompatOutcome(success=True, needs_reboot=True, ready=False)
        if not _reboot_and_wait(ctx):
            return CompatOutcome(success=True, needs_reboot=True, ready=False)

    ready = _install_distribution(ctx)
    if not ready and not needs_reboot:
        return CompatOutcome(success=False)
    return CompatOutcome(success=True, needs_reboot=needs_reboot, ready=ready)
