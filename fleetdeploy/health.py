"""Host health polling.

Reuses the deployment fan-out and completion polling against a read-only
pipeline with two sub-queries per host:

    - host metrics: CPU, memory, disk, uptime -> status classification
    - containers: per-container state, image and resource usage

Both sub-queries always run. A failing sub-query is recorded on the
snapshot (``metrics_error`` / ``containers_error``) without suppressing
the other one.

Snapshots are cached by host id and replaced wholesale on each refresh.
Only one refresh runs at a time; a refresh requested while one is in
flight is a no-op. An optional timer re-runs the refresh at a fixed
interval until disabled.
"""

from __future__ import annotations

import json
import logging
import threading
from typing import Callable, Sequence, Union

from fleetdeploy._types import (
    CONNECTION_FAILED,
    ContainerStatus,
    HealthSnapshot,
    HealthStatus,
    HostDescriptor,
    HostMetrics,
    OSFamily,
    Severity,
)
from fleetdeploy.backend import RemoteBackend, SSHBackend
from fleetdeploy.channel import ProgressChannel
from fleetdeploy.config import Settings, get_settings, refresh_interval_seconds
from fleetdeploy.orchestrator import RunContext, RunGuard
from fleetdeploy.poller import CompletionPoller, EventSink
from fleetdeploy.report import format_snapshots_text
from fleetdeploy.scheduler import FanOutScheduler
from fleetdeploy.ssh import WSLSession, powershell
from fleetdeploy.validation import ensure_valid

logger = logging.getLogger(__name__)

HostsSource = Union[Sequence[HostDescriptor], Callable[[], Sequence[HostDescriptor]]]


# ── Metric queries ─────────────────────────────────────────────────────────

_LINUX_METRICS = (
    "echo CPU1 $(head -1 /proc/stat); sleep 1; echo CPU2 $(head -1 /proc/stat); "
    "free -b | awk '/^Mem:/ {print \"MEM\", $2, $7}'; "
    "df -P / | awk 'NR==2 {print \"DISK\", $5}'; "
    "echo UPTIME $(cut -d' ' -f1 /proc/uptime)"
)

_WINDOWS_METRICS = """\
$os = Get-CimInstance Win32_OperatingSystem
$cpu = (Get-CimInstance Win32_Processor | Measure-Object -Property LoadPercentage -Average).Average
$disk = Get-CimInstance Win32_LogicalDisk -Filter "DeviceID='C:'"
Write-Output "CPU=$cpu"
Write-Output ("MEM=" + [math]::Round(100 * (1 - $os.FreePhysicalMemory / $os.TotalVisibleMemorySize), 1))
Write-Output ("DISK=" + [math]::Round(100 * (1 - $disk.FreeSpace / $disk.Size), 1))
Write-Output ("UPTIME=" + [int]((Get-Date) - $os.LastBootUpTime).TotalSeconds)
"""


def _cpu_times(fields: list[str]) -> tuple[int, int]:
    # fields: cpu user nice system idle iowait irq softirq steal ...
    values = [int(v) for v in fields[1:]]
    idle = values[3] + (values[4] if len(values) > 4 else 0)
    return idle, sum(values)


def parse_linux_metrics(output: str) -> HostMetrics:
    """Parse the tagged output of the Linux metrics command."""
    lines = {}
    for line in output.splitlines():
        parts = line.split()
        if parts:
            lines[parts[0]] = parts[1:]

    try:
        idle1, total1 = _cpu_times(lines["CPU1"])
        idle2, total2 = _cpu_times(lines["CPU2"])
        delta = total2 - total1
        cpu = 100.0 * (1 - (idle2 - idle1) / delta) if delta > 0 else 0.0

        mem_total, mem_available = (int(v) for v in lines["MEM"][:2])
        memory = 100.0 * (mem_total - mem_available) / mem_total if mem_total else 0.0

        disk = float(lines["DISK"][0].rstrip("%"))
        uptime = int(float(lines["UPTIME"][0]))
    except (KeyError, IndexError, ValueError) as exc:
        raise ValueError(f"Unexpected metrics output: {exc}") from exc

    return HostMetrics(
        cpu_percent=round(cpu, 1),
        memory_percent=round(memory, 1),
        disk_percent=disk,
        uptime_seconds=uptime,
    )


def parse_windows_metrics(output: str) -> HostMetrics:
    """Parse ``KEY=value`` lines from the Windows metrics script."""
    values = {}
    for line in output.splitlines():
        key, sep, value = line.strip().partition("=")
        if sep:
            values[key] = value
    try:
        return HostMetrics(
            cpu_percent=float(values["CPU"] or 0),
            memory_percent=float(values["MEM"]),
            disk_percent=float(values["DISK"]),
            uptime_seconds=int(values["UPTIME"]),
        )
    except (KeyError, ValueError) as exc:
        raise ValueError(f"Unexpected metrics output: {exc}") from exc


def query_host_metrics(session, os_family: OSFamily) -> HostMetrics:
    """Query resource usage of the host itself."""
    if os_family is OSFamily.WINDOWS:
        result = session.run(powershell(_WINDOWS_METRICS))
        parse = parse_windows_metrics
    else:
        result = session.run(_LINUX_METRICS)
        parse = parse_linux_metrics
    if not result.ok:
        raise RuntimeError(f"metrics command failed: {result.stderr or result.exit_code}")
    return parse(result.stdout)


# ── Container queries ──────────────────────────────────────────────────────


def _state_from_status(status: str) -> str:
    lowered = status.lower()
    if lowered.startswith("up"):
        return "paused" if "paused" in lowered else "running"
    if lowered.startswith("exited"):
        return "exited"
    if lowered.startswith("restarting"):
        return "restarting"
    if lowered.startswith("created"):
        return "created"
    return "unknown"


def parse_docker_ps(output: str) -> list[ContainerStatus]:
    """Parse ``docker ps -a --format '{{json .}}'`` output."""
    containers = []
    for line in output.splitlines():
        line = line.strip()
        if not line:
            continue
        data = json.loads(line)
        status = data.get("Status", "")
        containers.append(
            ContainerStatus(
                name=data.get("Names", ""),
                image=data.get("Image", ""),
                state=data.get("State") or _state_from_status(status),
                status=status,
            )
        )
    return containers


def parse_docker_stats(output: str) -> dict[str, tuple[float | None, str | None]]:
    """Parse ``docker stats --no-stream --format '{{json .}}'`` by container name."""
    stats = {}
    for line in output.splitlines():
        line = line.strip()
        if not line:
            continue
        data = json.loads(line)
        cpu = data.get("CPUPerc", "").rstrip("%")
        try:
            cpu_value = float(cpu) if cpu else None
        except ValueError:
            cpu_value = None
        stats[data.get("Name", "")] = (cpu_value, data.get("MemUsage") or None)
    return stats


def query_containers(shell) -> list[ContainerStatus]:
    """List all containers with their state and resource usage."""
    result = shell.run("docker ps -a --format '{{json .}}'")
    if not result.ok:
        raise RuntimeError(f"docker ps failed: {result.stderr or result.exit_code}")
    containers = parse_docker_ps(result.stdout)

    if any(c.running for c in containers):
        stats_result = shell.run("docker stats --no-stream --format '{{json .}}'")
        if stats_result.ok:
            stats = parse_docker_stats(stats_result.stdout)
            for container in containers:
                if container.name in stats:
                    container.cpu_percent, container.memory_usage = stats[container.name]
        else:
            logger.debug("docker stats failed on %s: %s", getattr(shell, "hostname", "?"), stats_result.stderr)
    return containers


class HealthQueries:
    """The two sub-queries of the health pipeline; replaceable in tests."""

    def host_metrics(self, session, os_family: OSFamily) -> HostMetrics:
        return query_host_metrics(session, os_family)

    def containers(self, shell) -> list[ContainerStatus]:
        return query_containers(shell)


def classify_status(metrics: HostMetrics, settings: Settings) -> HealthStatus:
    """Classify a host from its highest resource usage."""
    peak = max(metrics.cpu_percent, metrics.memory_percent, metrics.disk_percent)
    if peak >= settings.critical_threshold:
        return HealthStatus.CRITICAL
    if peak >= settings.warning_threshold:
        return HealthStatus.WARNING
    return HealthStatus.HEALTHY


_STATUS_SEVERITY = {
    HealthStatus.HEALTHY: Severity.SUCCESS,
    HealthStatus.WARNING: Severity.WARNING,
    HealthStatus.CRITICAL: Severity.ERROR,
    HealthStatus.ERROR: Severity.ERROR,
}


# ── Query pipeline ─────────────────────────────────────────────────────────


class HealthPipeline:
    """Health query for one host. ``run`` never raises."""

    def __init__(
        self,
        host: HostDescriptor,
        channel: ProgressChannel,
        backend: RemoteBackend,
        queries: HealthQueries,
        settings: Settings,
    ):
        self.host = host
        self.channel = channel
        self.backend = backend
        self.queries = queries
        self.settings = settings

    def _emit(self, message: str, severity: Severity = Severity.INFO) -> None:
        self.channel.emit(self.host.id, message, severity)

    def _unreachable(self, detail: str) -> HealthSnapshot:
        self._emit(f"{self.host.address}: {detail}", Severity.ERROR)
        return HealthSnapshot(
            host_id=self.host.id,
            address=self.host.address,
            status=HealthStatus.ERROR,
            metrics_error=CONNECTION_FAILED,
            containers_error=CONNECTION_FAILED,
        )

    def run(self) -> HealthSnapshot:
        host = self.host
        self._emit(f"Querying {host.address}")

        try:
            reachable = self.backend.test_reachable(host)
        except Exception as exc:
            logger.debug("Reachability probe for %s raised: %s", host.address, exc)
            reachable = False
        if not reachable:
            return self._unreachable("unreachable")

        try:
            session = self.backend.open_session(host)
        except Exception as exc:
            logger.info("Health query for %s could not connect: %s", host.address, exc)
            return self._unreachable(f"connection failed ({exc})")

        try:
            return self._query(session)
        finally:
            try:
                session.close()
            except Exception as exc:
                logger.debug("Error closing session to %s: %s", host.address, exc)

    def _query(self, session) -> HealthSnapshot:
        host = self.host
        snapshot = HealthSnapshot(host_id=host.id, address=host.address, status=HealthStatus.ERROR)

        try:
            os_family = self.backend.detect_os(session)
        except Exception as exc:
            logger.info("OS detection on %s failed: %s", host.address, exc)
            os_family = OSFamily.UNKNOWN

        try:
            snapshot.metrics = self.queries.host_metrics(session, os_family)
        except Exception as exc:
            snapshot.metrics_error = str(exc) or type(exc).__name__
            self._emit(f"Host metrics unavailable: {snapshot.metrics_error}", Severity.WARNING)

        shell = WSLSession(session, self.settings.wsl_distribution) if os_family is OSFamily.WINDOWS else session
        try:
            snapshot.containers = self.queries.containers(shell)
        except Exception as exc:
            snapshot.containers_error = str(exc) or type(exc).__name__
            self._emit(f"Container status unavailable: {snapshot.containers_error}", Severity.WARNING)

        if snapshot.metrics is not None:
            snapshot.status = classify_status(snapshot.metrics, self.settings)
            if snapshot.status is HealthStatus.HEALTHY and snapshot.running < snapshot.total:
                snapshot.status = HealthStatus.WARNING

        self._emit(
            f"{host.address}: {snapshot.status.value} ({snapshot.running}/{snapshot.total} containers running)",
            _STATUS_SEVERITY[snapshot.status],
        )
        return snapshot


def _error_snapshot(host: HostDescriptor, exc: BaseException) -> HealthSnapshot:
    return HealthSnapshot(
        host_id=host.id,
        address=host.address,
        status=HealthStatus.ERROR,
        metrics_error=str(exc),
        containers_error=str(exc),
    )


# ── Monitor ────────────────────────────────────────────────────────────────


class HealthMonitor:
    """Runs health refreshes, caches snapshots and drives the refresh timer."""

    KIND = "health"

    def __init__(
        self,
        backend: RemoteBackend | None = None,
        settings: Settings | None = None,
        queries: HealthQueries | None = None,
    ):
        self.settings = settings or get_settings()
        self.backend = backend or SSHBackend(self.settings)
        self.queries = queries or HealthQueries()
        self.scheduler = FanOutScheduler(max_workers=self.settings.max_workers)
        self._guard = RunGuard(self.KIND)
        self._cache: dict[int, HealthSnapshot] = {}
        self._cache_lock = threading.Lock()

        self._timer: threading.Timer | None = None
        self._timer_lock = threading.Lock()
        self._timer_generation = 0
        self._interval: int | None = None
        self._source: HostsSource = ()
        self._sink: EventSink | None = None

    # ── One-shot refresh ───────────────────────────────────────────────

    @property
    def active_run(self) -> RunContext | None:
        return self._guard.active

    def refresh(self, hosts: Sequence[HostDescriptor]) -> RunContext | None:
        """Start a refresh. Returns None (and does nothing) if one is in flight.

        Raises:
            HostValidationError: if any host fails static validation.

        """
        ctx = RunContext.create(self.KIND, hosts)
        ensure_valid(ctx.hosts, require_service=False)

        if not self._guard.acquire(ctx):
            logger.info("Health refresh already in progress; request ignored")
            return None

        try:
            ctx.handle = self.scheduler.start(
                ctx.hosts,
                lambda host: HealthPipeline(host, ctx.channel, self.backend, self.queries, self.settings).run,
                channel=ctx.channel,
                on_error=_error_snapshot,
                thread_name_prefix=f"health-{ctx.run_id}",
            )
        except Exception:
            self._guard.release(ctx)
            raise
        return ctx

    def try_drain_events(self, ctx: RunContext):
        return ctx.channel.drain()

    def is_complete(self, ctx: RunContext) -> bool:
        return ctx.handle is not None and ctx.handle.is_complete()

    def collect_results(self, ctx: RunContext) -> list[HealthSnapshot]:
        """Cache the snapshots of a completed refresh and end the run."""
        if not self.is_complete(ctx):
            raise RuntimeError(f"Health run {ctx.run_id} is still in progress")

        if ctx.results is None:
            ctx.results = ctx.handle.finalize()
            with self._cache_lock:
                for snapshot in ctx.results:
                    self._cache[snapshot.host_id] = snapshot
        self._guard.release(ctx)
        ctx.dispose()
        return list(ctx.results)

    def refresh_now(
        self, hosts: Sequence[HostDescriptor], sink: EventSink | None = None
    ) -> list[HealthSnapshot] | None:
        """Refresh and wait for completion. None if a refresh was in flight."""
        ctx = self.refresh(hosts)
        if ctx is None:
            return None
        CompletionPoller(ctx.handle, sink, interval=self.settings.poll_interval_ms / 1000).run()
        return self.collect_results(ctx)

    # ── Cache ──────────────────────────────────────────────────────────

    @property
    def snapshots(self) -> dict[int, HealthSnapshot]:
        with self._cache_lock:
            return dict(self._cache)

    def get_snapshot(self, host_id: int) -> HealthSnapshot | None:
        with self._cache_lock:
            return self._cache.get(host_id)

    def export_text(self) -> str:
        """Format every cached snapshot. Never triggers a query."""
        with self._cache_lock:
            snapshots = [self._cache[k] for k in sorted(self._cache)]
        return format_snapshots_text(snapshots)

    # ── Recurring refresh ──────────────────────────────────────────────

    @property
    def auto_refresh_enabled(self) -> bool:
        return self._interval is not None

    def enable_auto_refresh(self, hosts: HostsSource, interval: str, sink: EventSink | None = None) -> None:
        """Re-run the refresh every ``interval`` ("10s", "30s", "1m" or "5m").

        ``hosts`` may be a callable so each run captures the current host
        list. Enabling again replaces the previous timer.
        """
        seconds = refresh_interval_seconds(interval)
        with self._timer_lock:
            self._cancel_timer()
            self._interval = seconds
            self._source = hosts
            self._sink = sink
            self._timer_generation += 1
            self._arm(self._timer_generation)
        logger.info("Auto refresh enabled every %s", interval)

    def disable_auto_refresh(self) -> None:
        """Stop scheduling refreshes. A refresh already running completes."""
        with self._timer_lock:
            self._cancel_timer()
            self._interval = None
            self._timer_generation += 1
        logger.info("Auto refresh disabled")

    def shutdown(self) -> None:
        """Stop all timers and release the active run, if any."""
        self.disable_auto_refresh()
        ctx = self._guard.active
        if ctx is not None:
            ctx.dispose()
            self._guard.release(ctx)

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _arm(self, generation: int) -> None:
        self._timer = threading.Timer(self._interval, self._on_timer, args=(generation,))
        self._timer.daemon = True
        self._timer.start()

    def _on_timer(self, generation: int) -> None:
        if generation != self._timer_generation:
            return
        source = self._source
        try:
            hosts = source() if callable(source) else source
            if self.refresh_now(hosts, self._sink) is None:
                logger.debug("Scheduled refresh skipped: previous refresh still running")
        except Exception:
            logger.exception("Scheduled health refresh failed")
        finally:
            with self._timer_lock:
                if generation == self._timer_generation and self._interval is not None:
                    self._arm(generation)
