"""fleetdeploy CLI — deploy container services to many hosts over SSH and poll their health."""

from __future__ import annotations

import json
import logging
import sys
import time

import click
from rich.console import Console
from rich.table import Table

from fleetdeploy._types import HealthSnapshot, HealthStatus, HostDescriptor, PipelineEvent, Service, Severity, Summary
from fleetdeploy.config import REFRESH_INTERVALS, Settings
from fleetdeploy.exceptions import FleetDeployError, HostValidationError
from fleetdeploy.health import HealthMonitor
from fleetdeploy.installers._services import SERVICE_SPECS
from fleetdeploy.inventory import HostStore, load_inventory, parse_host_flag
from fleetdeploy.orchestrator import DeploymentOrchestrator
from fleetdeploy.report import format_snapshots_json, format_summary_json, format_summary_text
from fleetdeploy.validation import validate_hosts

console = Console()

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

_SEVERITY_STYLE = {
    Severity.INFO: "dim",
    Severity.SUCCESS: "green",
    Severity.WARNING: "yellow",
    Severity.ERROR: "red",
}

_STATUS_STYLE = {
    HealthStatus.HEALTHY: "green",
    HealthStatus.WARNING: "yellow",
    HealthStatus.CRITICAL: "red",
    HealthStatus.ERROR: "red",
}


# ── Host resolution ─────────────────────────────────────────────────────────


def _resolve_hosts(host, inventory, user, password, port, service, settings: Settings) -> list[HostDescriptor]:
    """Build the host list from --host flags and/or an inventory file.

    ``--user``, ``--password``, ``--port`` and ``--service`` fill in values a
    host entry does not set itself. Without ``--port`` the ``ssh_port``
    setting applies.
    """
    store = HostStore(default_port=port or settings.ssh_port)
    if inventory:
        try:
            load_inventory(inventory, store)
        except (OSError, ValueError) as exc:
            console.print(f"[red]Error:[/red] {exc}")
            sys.exit(2)

    for flag in host:
        fields = parse_host_flag(flag)
        store.add(
            address=fields["address"],
            user=fields.get("user", ""),
            secret="",
            service=fields.get("service"),
            port=fields.get("port"),
        )

    hosts = store.snapshot()
    if not hosts:
        console.print("[red]Error:[/red] No hosts given (use --host or --inventory)")
        sys.exit(2)

    for h in hosts:
        h.user = h.user or (user or "")
        h.secret = h.secret or (password or "")
        h.service = h.service or service
    return hosts


def _settings(workers, sudo=False, domain=None, auto_reboot=False, verbose=False) -> Settings:
    overrides = {}
    if sudo:
        overrides["sudo"] = True
    if workers is not None:
        overrides["max_workers"] = workers
    if domain:
        overrides["domain"] = domain
    if auto_reboot:
        overrides["auto_reboot"] = True
    if verbose:
        overrides["log_level"] = "DEBUG"
    settings = Settings(**overrides)
    logging.basicConfig(level=getattr(logging, settings.log_level), format=LOG_FORMAT)
    return settings


def _print_issues(error: HostValidationError) -> None:
    console.print(f"[red]Error:[/red] {error.message}")
    for issue in error.issues:
        console.print(f"  [red]-[/red] {issue}")


def _event_sink(hosts: list[HostDescriptor], quiet: bool):
    addresses = {h.id: h.address for h in hosts}

    def sink(event: PipelineEvent) -> None:
        if quiet:
            return
        style = _SEVERITY_STYLE[event.severity]
        address = addresses.get(event.host_id, f"host {event.host_id}")
        console.print(f"[bold]{address}[/bold] [{style}]{event.message}[/{style}]")

    return sink


# ── Shared options ──────────────────────────────────────────────────────────


def target_options(f):
    """Common target/connection options for all host commands."""
    f = click.option(
        "--host",
        "-h",
        multiple=True,
        metavar="[USER@]ADDR[:PORT][=SERVICE]",
        help="Target host (repeatable)",
    )(f)
    f = click.option("--inventory", "-i", default=None, help="YAML inventory file")(f)
    f = click.option("--user", "-u", default=None, help="SSH username")(f)
    f = click.option("--password", "-p", default=None, help="SSH password")(f)
    f = click.option(
        "--port", "-P", default=None, type=int, help="SSH port for hosts that do not set one (default: 22)"
    )(f)
    f = click.option("--sudo", is_flag=True, help="Run commands on Linux hosts through sudo")(f)
    f = click.option(
        "--workers",
        "-w",
        default=None,
        type=click.IntRange(1, 256),
        help="Maximum concurrent host workers (default: 50)",
    )(f)
    f = click.option("--verbose", "-v", is_flag=True, help="Debug logging")(f)
    f = click.option("--json", "as_json", is_flag=True, help="Print results as JSON")(f)
    return f


def service_option(f):
    return click.option(
        "--service",
        "-s",
        default=None,
        type=click.Choice([s.value for s in Service], case_sensitive=False),
        help="Service for hosts that do not name one",
    )(f)


# ── CLI group ───────────────────────────────────────────────────────────────

MAIN_HELP_EPILOG = """
\b
Examples:
  fleetdeploy validate -h admin@192.168.1.10=AdGuard -p secret
  fleetdeploy deploy -h admin@192.168.1.10=AdGuard -h admin@nas.local=Portainer -p secret
  fleetdeploy deploy -i hosts.yml --domain home.lan --auto-reboot
  fleetdeploy health -i hosts.yml --watch 30s
  fleetdeploy services
"""


@click.group(epilog=MAIN_HELP_EPILOG, context_settings={"max_content_width": 120})
@click.version_option(version="0.1.0", prog_name="fleetdeploy")
def main():
    """fleetdeploy — concurrent service deployment and health polling over SSH."""
    pass


# ── services ────────────────────────────────────────────────────────────────


@main.command()
def services():
    """List deployable services."""
    table = Table(title="Services")
    table.add_column("Service", style="bold")
    table.add_column("Image")
    table.add_column("Port", justify="right")
    table.add_column("Subdomain")
    for service, spec in SERVICE_SPECS.items():
        table.add_row(service.value, spec.image, str(spec.host_port), spec.subdomain)
    console.print(table)


# ── validate ────────────────────────────────────────────────────────────────


@main.command()
@target_options
@service_option
def validate(host, inventory, user, password, port, sudo, workers, verbose, as_json, service):
    """Check host entries without connecting to them."""
    settings = _settings(workers, sudo, verbose=verbose)
    hosts = _resolve_hosts(host, inventory, user, password, port, service, settings)
    issues = validate_hosts(hosts)
    if as_json:
        click.echo(json.dumps([{"host_id": i.host_id, "field": i.field, "message": i.message} for i in issues]))
    elif issues:
        for issue in issues:
            console.print(f"  [red]-[/red] {issue}")
    else:
        console.print(f"[green]{len(hosts)} host(s) valid[/green]")
    sys.exit(1 if issues else 0)


# ── deploy ──────────────────────────────────────────────────────────────────


def _print_summary(summary: Summary) -> None:
    table = Table(title="Deployment")
    table.add_column("Host", style="bold")
    table.add_column("Service")
    table.add_column("Result")
    for r in summary.per_host:
        result = "[green]ok[/green]" if r.success else f"[red]{r.error_kind}[/red]"
        table.add_row(r.address, r.service.value if r.service else "-", result)
    console.print(table)
    console.print(f"[green]{summary.succeeded} succeeded[/green], [red]{summary.failed} failed[/red]")


@main.command()
@target_options
@service_option
@click.option("--domain", "-d", default=None, help="Base domain for reverse-proxied sites")
@click.option("--auto-reboot", is_flag=True, help="Reboot Windows hosts when WSL needs it")
@click.option("--export", "export_path", default=None, type=click.Path(dir_okay=False), help="Write a text summary")
def deploy(
    host, inventory, user, password, port, sudo, workers, verbose, as_json, service, domain, auto_reboot, export_path
):
    """Deploy the selected service to every host."""
    settings = _settings(workers, sudo, domain, auto_reboot, verbose)
    hosts = _resolve_hosts(host, inventory, user, password, port, service, settings)
    orchestrator = DeploymentOrchestrator(settings=settings)

    try:
        summary = orchestrator.run(hosts, _event_sink(hosts, quiet=as_json))
    except HostValidationError as exc:
        _print_issues(exc)
        sys.exit(2)
    except FleetDeployError as exc:
        console.print(f"[red]Error:[/red] {exc}")
        sys.exit(2)
    finally:
        orchestrator.shutdown()

    if as_json:
        click.echo(format_summary_json(summary))
    else:
        console.print()
        _print_summary(summary)
    if export_path:
        with open(export_path, "w") as fh:
            fh.write(format_summary_text(summary) + "\n")
    sys.exit(1 if summary.failed else 0)


# ── health ──────────────────────────────────────────────────────────────────


def _print_snapshots(snapshots: list[HealthSnapshot]) -> None:
    table = Table(title="Health")
    table.add_column("Host", style="bold")
    table.add_column("Status")
    table.add_column("CPU", justify="right")
    table.add_column("Mem", justify="right")
    table.add_column("Disk", justify="right")
    table.add_column("Containers", justify="right")
    for s in snapshots:
        style = _STATUS_STYLE[s.status]
        m = s.metrics
        containers = "-" if s.containers_error else f"{s.running}/{s.total}"
        table.add_row(
            s.address,
            f"[{style}]{s.status.value}[/{style}]",
            f"{m.cpu_percent:.0f}%" if m else "-",
            f"{m.memory_percent:.0f}%" if m else "-",
            f"{m.disk_percent:.0f}%" if m else "-",
            containers,
        )
    console.print(table)


@main.command()
@target_options
@click.option(
    "--watch",
    type=click.Choice(list(REFRESH_INTERVALS)),
    default=None,
    help="Refresh at this interval until interrupted",
)
@click.option("--export", "export_path", default=None, type=click.Path(dir_okay=False), help="Write a text report")
def health(host, inventory, user, password, port, sudo, workers, verbose, as_json, watch, export_path):
    """Query host metrics and container status."""
    settings = _settings(workers, sudo, verbose=verbose)
    hosts = _resolve_hosts(host, inventory, user, password, port, None, settings)
    monitor = HealthMonitor(settings=settings)
    sink = _event_sink(hosts, quiet=as_json or not verbose)

    def show(snapshots):
        if as_json:
            click.echo(format_snapshots_json(snapshots))
        else:
            _print_snapshots(snapshots)
        if export_path:
            with open(export_path, "w") as fh:
                fh.write(monitor.export_text() + "\n")

    try:
        snapshots = monitor.refresh_now(hosts, sink)
    except HostValidationError as exc:
        _print_issues(exc)
        sys.exit(2)
    show(snapshots)

    if watch:
        last_shown = {s.host_id: s.collected_at for s in snapshots}

        monitor.enable_auto_refresh(hosts, watch, sink)
        console.print(f"[dim]Refreshing every {watch}; Ctrl-C to stop[/dim]")
        try:
            while True:
                time.sleep(0.5)
                current = monitor.snapshots
                if any(last_shown.get(k) != v.collected_at for k, v in current.items()):
                    last_shown = {k: v.collected_at for k, v in current.items()}
                    show([current[k] for k in sorted(current)])
        except KeyboardInterrupt:
            console.print("[dim]Stopped[/dim]")
        finally:
            monitor.shutdown()
        current = monitor.snapshots
        snapshots = [current[k] for k in sorted(current)]

    sys.exit(1 if any(s.status is HealthStatus.ERROR for s in snapshots) else 0)


if __name__ == "__main__":
    main()
