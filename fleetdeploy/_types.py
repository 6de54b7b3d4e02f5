"""Data types shared by the deployment and health pipelines."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ── Enumerations ───────────────────────────────────────────────────────────


class Service(str, Enum):
    """Services that can be deployed onto a host."""

    ADGUARD = "AdGuard"
    N8N = "n8n"
    HOMARR = "Homarr"
    CRAFTY = "Crafty"
    PORTAINER = "Portainer"

    @classmethod
    def parse(cls, value: str | Service | None) -> Service | None:
        """Return the matching member (case-insensitive), or None."""
        if value is None or isinstance(value, Service):
            return value
        wanted = value.strip().lower()
        for member in cls:
            if member.value.lower() == wanted or member.name.lower() == wanted:
                return member
        return None


class OSFamily(str, Enum):
    """Operating system classification used to branch the pipeline."""

    LINUX = "linux"
    WINDOWS = "windows"
    UNKNOWN = "unknown"


class Severity(str, Enum):
    """Severity of a progress event."""

    INFO = "info"
    SUCCESS = "success"
    WARNING = "warning"
    ERROR = "error"


class HealthStatus(str, Enum):
    """Overall health classification of a host."""

    HEALTHY = "healthy"
    WARNING = "warning"
    CRITICAL = "critical"
    ERROR = "error"


# ── Error kinds ────────────────────────────────────────────────────────────
#
# Terminal failure classifications carried on PipelineResult.error_kind.

CONNECTION_FAILED = "connection failed"
UNKNOWN_OS = "unknown OS"
RUNTIME_FAILED = "runtime installation failed"
COMPAT_LAYER_FAILED = "compat layer install failed"
REBOOT_REQUIRED = "reboot required"
COMPAT_RUNTIME_FAILED = "runtime in compat layer failed"
UNKNOWN_SERVICE = "unknown service"
SERVICE_FAILED = "service installation failed"
SPAWN_FAILED = "worker spawn failed"
INTERNAL_ERROR = "internal error"


# ── Host descriptors ───────────────────────────────────────────────────────


@dataclass
class HostDescriptor:
    """A target host as entered by the user.

    ``service`` holds the raw selection; it is normally a ``Service`` member
    but may be any string loaded from an inventory file.
    """

    id: int
    address: str
    user: str = ""
    secret: str = ""
    service: Service | str | None = None
    port: int = 22

    @property
    def service_name(self) -> str:
        if isinstance(self.service, Service):
            return self.service.value
        return self.service or ""

    def __repr__(self) -> str:
        # Keep the secret out of logs and tracebacks.
        return (
            f"HostDescriptor(id={self.id!r}, address={self.address!r}, "
            f"user={self.user!r}, service={self.service_name!r}, port={self.port!r})"
        )


# ── Pipeline output ────────────────────────────────────────────────────────


@dataclass(frozen=True)
class PipelineEvent:
    """Human-readable progress message from one host pipeline."""

    host_id: int
    message: str
    severity: Severity = Severity.INFO
    timestamp: datetime = field(default_factory=_utcnow)


@dataclass(frozen=True)
class PipelineResult:
    """Terminal outcome of one host's deployment pipeline."""

    host_id: int
    address: str
    success: bool
    service: Service | None = None
    error_kind: str | None = None


@dataclass(frozen=True)
class CompatOutcome:
    """Structured outcome of the compatibility-layer installer."""

    success: bool
    needs_reboot: bool = False
    ready: bool = True


@dataclass
class Summary:
    """Aggregated outcome of a deployment run."""

    succeeded: int = 0
    failed: int = 0
    per_host: list[PipelineResult] = field(default_factory=list)

    @property
    def total(self) -> int:
        return self.succeeded + self.failed


# ── Health data ────────────────────────────────────────────────────────────


@dataclass
class ContainerStatus:
    """State of one container on a host."""

    name: str
    image: str = ""
    state: str = "unknown"  # running, exited, paused, restarting, created, dead
    status: str = ""
    cpu_percent: float | None = None
    memory_usage: str | None = None

    @property
    def running(self) -> bool:
        return self.state == "running"


@dataclass
class HostMetrics:
    """Resource usage of a host at query time."""

    cpu_percent: float
    memory_percent: float
    disk_percent: float
    uptime_seconds: int = 0


@dataclass
class HealthSnapshot:
    """Most recent health state of one host.

    A failing sub-query records its error in ``metrics_error`` or
    ``containers_error`` without discarding the other sub-query's data.
    """

    host_id: int
    address: str
    status: HealthStatus
    metrics: HostMetrics | None = None
    containers: list[ContainerStatus] = field(default_factory=list)
    metrics_error: str | None = None
    containers_error: str | None = None
    collected_at: datetime = field(default_factory=_utcnow)

    @property
    def running(self) -> int:
        return sum(1 for c in self.containers if c.running)

    @property
    def total(self) -> int:
        return len(self.containers)
