"""Service installers.

Each Service is one container definition. ``install_service`` runs it on
the shared network, publishes its web port directly and, when the reverse
proxy is up and a base domain is configured, registers a proxied site.
On Windows the published port lives inside WSL and is forwarded to the
host's LAN address with ``netsh interface portproxy``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from fleetdeploy import shell_util
from fleetdeploy._types import OSFamily, Service, Severity
from fleetdeploy.installers._proxy import register_site
from fleetdeploy.installers._runtime import NETWORK_NAME
from fleetdeploy.ssh import powershell

if TYPE_CHECKING:
    from fleetdeploy.installers import InstallContext

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ServiceSpec:
    """Container definition for one deployable service."""

    container: str
    image: str
    web_port: int  # container-side port of the web UI
    host_port: int  # published port for direct access
    subdomain: str
    volumes: tuple[str, ...] = ()
    extra_ports: tuple[str, ...] = ()
    env: dict[str, str] = field(default_factory=dict)

    def run_command(self) -> str:
        parts = [
            "docker run -d",
            f"--name {self.container}",
            "--restart unless-stopped",
            f"--network {NETWORK_NAME}",
            f"-p {self.host_port}:{self.web_port}",
        ]
        parts.extend(f"-p {p}" for p in self.extra_ports)
        parts.extend(f"-v {shell_util.quote(v)}" for v in self.volumes)
        parts.extend(f"-e {shell_util.quote(f'{k}={v}')}" for k, v in sorted(self.env.items()))
        parts.append(self.image)
        return " ".join(parts)


SERVICE_SPECS: dict[Service, ServiceSpec] = {
    Service.ADGUARD: ServiceSpec(
        container="adguardhome",
        image="adguard/adguardhome:latest",
        web_port=3000,
        host_port=3000,
        subdomain="adguard",
        volumes=("/opt/adguardhome/work:/opt/adguardhome/work", "/opt/adguardhome/conf:/opt/adguardhome/conf"),
        extra_ports=("53:53/tcp", "53:53/udp"),
    ),
    Service.N8N: ServiceSpec(
        container="n8n",
        image="docker.n8n.io/n8nio/n8n:latest",
        web_port=5678,
        host_port=5678,
        subdomain="n8n",
        volumes=("n8n_data:/home/node/.n8n",),
        env={"N8N_SECURE_COOKIE": "false"},
    ),
    Service.HOMARR: ServiceSpec(
        container="homarr",
        image="ghcr.io/ajnart/homarr:latest",
        web_port=7575,
        host_port=7575,
        subdomain="homarr",
        volumes=(
            "/opt/homarr/configs:/app/data/configs",
            "/opt/homarr/icons:/app/public/icons",
            "/opt/homarr/data:/data",
        ),
    ),
    Service.CRAFTY: ServiceSpec(
        container="crafty",
        image="registry.gitlab.com/crafty-controller/crafty-4:latest",
        web_port=8443,
        host_port=8443,
        subdomain="crafty",
        volumes=(
            "/opt/crafty/backups:/crafty/backups",
            "/opt/crafty/logs:/crafty/logs",
            "/opt/crafty/servers:/crafty/servers",
            "/opt/crafty/config:/crafty/app/config",
            "/opt/crafty/import:/crafty/import",
        ),
        extra_ports=("25565:25565",),
        env={"TZ": "Etc/UTC"},
    ),
    Service.PORTAINER: ServiceSpec(
        container="portainer",
        image="portainer/portainer-ce:latest",
        web_port=9443,
        host_port=9443,
        subdomain="portainer",
        volumes=("/var/run/docker.sock:/var/run/docker.sock", "portainer_data:/data"),
    ),
}


def install_service(ctx: InstallContext, spec: ServiceSpec) -> bool:
    """Run the service container and expose it. Idempotent."""
    shell = ctx.shell

    if shell_util.container_running(shell, spec.container):
        ctx.emit(f"{spec.container} is already running", Severity.INFO)
    else:
        if shell_util.container_exists(shell, spec.container):
            result = shell.run(f"docker start {spec.container}")
        else:
            result = shell.run(spec.run_command(), timeout=ctx.settings.install_timeout)
        if not result.ok:
            logger.warning("%s: %s failed to start: %s", ctx.host.address, spec.container, result.stderr[:200])
            return False

    if ctx.os_family is OSFamily.WINDOWS and not _forward_windows_port(ctx, spec.host_port):
        ctx.emit(f"Could not forward port {spec.host_port} from Windows into WSL", Severity.WARNING)

    if ctx.proxy_available and ctx.domain:
        site = f"{spec.subdomain}.{ctx.domain}"
        scheme = "https" if spec.web_port in (8443, 9443) else "http"
        upstream = f"{scheme}://{spec.container}:{spec.web_port}"
        if scheme == "https":
            upstream = f"{upstream} {{\n\t\ttransport http {{\n\t\t\ttls_insecure_skip_verify\n\t\t}}\n\t}}"
        if register_site(ctx, site, upstream):
            ctx.emit(f"Proxied at https://{site}", Severity.SUCCESS)
        else:
            ctx.emit(f"Could not register {site} with the reverse proxy", Severity.WARNING)

    ctx.emit(f"Direct access: {ctx.host.address}:{spec.host_port}", Severity.INFO)
    return True


def _forward_windows_port(ctx: InstallContext, port: int) -> bool:
    result = ctx.shell.run("hostname -I | awk '{print $1}'")
    wsl_ip = result.stdout.strip()
    if not result.ok or not wsl_ip:
        return False

    script = (
        f"netsh interface portproxy delete v4tov4 listenport={port} listenaddress=0.0.0.0 | Out-Null\n"
        f"netsh interface portproxy add v4tov4 listenport={port} listenaddress=0.0.0.0 "
        f"connectport={port} connectaddress={wsl_ip}\n"
        f"if (-not (Get-NetFirewallRule -DisplayName 'fleetdeploy-{port}' -ErrorAction SilentlyContinue)) {{\n"
        f"  New-NetFirewallRule -DisplayName 'fleetdeploy-{port}' -Direction Inbound -Protocol TCP "
        f"-LocalPort {port} -Action Allow | Out-Null\n"
        f"}}\n"
    )
    return ctx.session.run(powershell(script)).ok
