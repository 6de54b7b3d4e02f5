"""
fleetdeploy

Concurrent deployment of self-hosted container services to many hosts over
SSH, with live per-host progress and recurring health polling.

Supported targets:
- Linux: Docker Engine, Caddy reverse proxy, one service container
- Windows: WSL compatibility layer (optional reboot-and-wait), Docker inside WSL

Usage:
    from fleetdeploy import DeploymentOrchestrator, HostStore, Service

    store = HostStore()
    store.add("192.168.1.10", user="admin", secret="...", service=Service.ADGUARD)
    summary = DeploymentOrchestrator().run(store.snapshot(), sink=print)
    print(f"{summary.succeeded} succeeded, {summary.failed} failed")

Version: 0.1.0
"""

__version__ = "0.1.0"

from fleetdeploy._types import (
    CompatOutcome,
    ContainerStatus,
    HealthSnapshot,
    HealthStatus,
    HostDescriptor,
    HostMetrics,
    OSFamily,
    PipelineEvent,
    PipelineResult,
    Service,
    Severity,
    Summary,
)
from fleetdeploy.aggregate import aggregate
from fleetdeploy.channel import ProgressChannel
from fleetdeploy.config import Settings, get_settings
from fleetdeploy.health import HealthMonitor, HealthPipeline
from fleetdeploy.inventory import HostStore, load_inventory
from fleetdeploy.orchestrator import DeploymentOrchestrator, RunContext
from fleetdeploy.pipeline import DeployPipeline
from fleetdeploy.poller import CompletionPoller
from fleetdeploy.scheduler import FanOutScheduler, RunHandle
from fleetdeploy.ssh import Result, SSHSession
from fleetdeploy.validation import test_address, validate_host, validate_hosts

__all__ = [
    # Version
    "__version__",
    # Types
    "Service",
    "OSFamily",
    "Severity",
    "HealthStatus",
    "HostDescriptor",
    "PipelineEvent",
    "PipelineResult",
    "CompatOutcome",
    "Summary",
    "ContainerStatus",
    "HostMetrics",
    "HealthSnapshot",
    # Hosts
    "HostStore",
    "load_inventory",
    "test_address",
    "validate_host",
    "validate_hosts",
    # Orchestration
    "ProgressChannel",
    "FanOutScheduler",
    "RunHandle",
    "CompletionPoller",
    "DeployPipeline",
    "DeploymentOrchestrator",
    "RunContext",
    "aggregate",
    # Health
    "HealthMonitor",
    "HealthPipeline",
    # SSH
    "SSHSession",
    "Result",
    # Configuration
    "Settings",
    "get_settings",
]
