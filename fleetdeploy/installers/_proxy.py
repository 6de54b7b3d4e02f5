"""Reverse proxy installer.

Runs Caddy in a container attached to the shared network. Services register
a site block in the Caddyfile when a base domain is configured; without a
domain they stay on their direct ports.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from fleetdeploy import shell_util
from fleetdeploy.installers._runtime import NETWORK_NAME

if TYPE_CHECKING:
    from fleetdeploy.installers import InstallContext

logger = logging.getLogger(__name__)

PROXY_CONTAINER = "fleetdeploy-caddy"
PROXY_IMAGE = "caddy:2"
CADDY_DIR = "/opt/fleetdeploy/caddy"
CADDYFILE = f"{CADDY_DIR}/Caddyfile"

_BASE_CADDYFILE = "# Managed by fleetdeploy. Site blocks are appended per service.\n"


def install_reverse_proxy(ctx: InstallContext) -> bool:
    """Start the Caddy container. Idempotent."""
    shell = ctx.shell

    if shell_util.container_running(shell, PROXY_CONTAINER):
        return True

    if not shell.run(f"test -f {shell_util.quote(CADDYFILE)}").ok:
        if not shell_util.write_file(shell, CADDYFILE, _BASE_CADDYFILE):
            logger.warning("%s: could not write %s", ctx.host.address, CADDYFILE)
            return False

    if shell_util.container_exists(shell, PROXY_CONTAINER):
        result = shell.run(f"docker start {PROXY_CONTAINER}")
    else:
        result = shell.run(
            f"docker run -d --name {PROXY_CONTAINER} --restart unless-stopped "
            f"--network {NETWORK_NAME} -p 80:80 -p 443:443 "
            f"-v {CADDY_DIR}:/etc/caddy -v fleetdeploy-caddy-data:/data {PROXY_IMAGE}",
            timeout=ctx.settings.install_timeout,
        )
    if not result.ok:
        logger.warning("%s: Caddy failed to start: %s", ctx.host.address, result.stderr[:200])
        return False
    return True


def register_site(ctx: InstallContext, site: str, upstream: str) -> bool:
    """Add a ``site { reverse_proxy upstream }`` block and reload Caddy."""
    shell = ctx.shell
    marker = f"# fleetdeploy:{site}"
    if shell.run(f"grep -qF {shell_util.quote(marker)} {CADDYFILE}").ok:
        return True

    block = f"\n{marker}\n{site} {{\n\treverse_proxy {upstream}\n}}\n"
    quoted = shell_util.quote(block)
    if not shell.run(f"printf '%s' {quoted} >> {CADDYFILE}").ok:
        return False
    return shell.run(f"docker exec {PROXY_CONTAINER} caddy reload --config /etc/caddy/Caddyfile").ok
