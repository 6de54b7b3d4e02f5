"""Deployment orchestration.

A deployment run is owned by the caller through its ``RunContext``:

    ctx = orchestrator.submit(hosts)          # validate, capture, fan out
    while not orchestrator.is_complete(ctx):  # any loop: CLI, UI timer, test
        for event in orchestrator.try_drain_events(ctx):
            show(event)
        time.sleep(0.15)
    summary = orchestrator.collect_results(ctx)

``run`` wraps the same sequence around a CompletionPoller for headless use.

Only one deployment may be active at a time. A second ``submit`` while a
run is active raises RunInProgressError before any remote call; the active
run is not affected.
"""

from __future__ import annotations

import copy
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from threading import Lock
from typing import Any, Sequence

from fleetdeploy._types import (
    INTERNAL_ERROR,
    SPAWN_FAILED,
    HostDescriptor,
    PipelineEvent,
    PipelineResult,
    Service,
    Summary,
)
from fleetdeploy.aggregate import aggregate
from fleetdeploy.backend import RemoteBackend, SSHBackend
from fleetdeploy.channel import ProgressChannel
from fleetdeploy.config import Settings, get_settings
from fleetdeploy.exceptions import RunInProgressError, WorkerSpawnError
from fleetdeploy.installers import InstallerRegistry, default_registry
from fleetdeploy.pipeline import DeployPipeline
from fleetdeploy.poller import CompletionPoller, EventSink
from fleetdeploy.scheduler import FanOutScheduler, RunHandle
from fleetdeploy.validation import ensure_valid

logger = logging.getLogger(__name__)


@dataclass
class RunContext:
    """State of one run, from submission to disposal.

    Holds a private copy of the submitted hosts, the run's progress channel
    and the handle on its workers. Two runs never share a context.
    """

    kind: str
    hosts: list[HostDescriptor]
    channel: ProgressChannel = field(default_factory=ProgressChannel)
    handle: RunHandle | None = None
    run_id: str = field(default_factory=lambda: uuid.uuid4().hex[:12])
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    results: list[Any] | None = None
    disposed: bool = False

    @classmethod
    def create(cls, kind: str, hosts: Sequence[HostDescriptor]) -> RunContext:
        return cls(kind=kind, hosts=[copy.deepcopy(h) for h in hosts])

    @property
    def host_ids(self) -> list[int]:
        return [h.id for h in self.hosts]

    def dispose(self) -> None:
        """Release worker resources. In-flight workers run to completion."""
        if self.disposed:
            return
        if self.handle is not None:
            self.handle.shutdown()
        self.disposed = True
        logger.debug("Disposed %s run %s", self.kind, self.run_id)


class RunGuard:
    """Tracks the single active run of one kind."""

    def __init__(self, kind: str):
        self.kind = kind
        self._lock = Lock()
        self._active: RunContext | None = None

    @property
    def active(self) -> RunContext | None:
        return self._active

    def acquire(self, ctx: RunContext) -> bool:
        with self._lock:
            if self._active is not None:
                return False
            self._active = ctx
            return True

    def release(self, ctx: RunContext) -> None:
        with self._lock:
            if self._active is ctx:
                self._active = None


def failure_result(host: HostDescriptor, exc: BaseException) -> PipelineResult:
    """Terminal result for a host whose worker could not start or crashed."""
    return PipelineResult(
        host_id=host.id,
        address=host.address,
        success=False,
        service=Service.parse(host.service),
        error_kind=SPAWN_FAILED if isinstance(exc, WorkerSpawnError) else INTERNAL_ERROR,
    )


class DeploymentOrchestrator:
    """Submits deployment runs and exposes their progress and results."""

    KIND = "deployment"

    def __init__(
        self,
        backend: RemoteBackend | None = None,
        registry: InstallerRegistry | None = None,
        settings: Settings | None = None,
    ):
        self.settings = settings or get_settings()
        self.backend = backend or SSHBackend(self.settings)
        self.registry = registry or default_registry()
        self.scheduler = FanOutScheduler(max_workers=self.settings.max_workers)
        self._guard = RunGuard(self.KIND)

    @property
    def active_run(self) -> RunContext | None:
        return self._guard.active

    def submit(self, hosts: Sequence[HostDescriptor]) -> RunContext:
        """Validate ``hosts`` and start one pipeline per host.

        Raises:
            HostValidationError: if any host fails static validation.
            RunInProgressError: if a deployment is already active.

        """
        ctx = RunContext.create(self.KIND, hosts)
        ensure_valid(ctx.hosts)

        if not self._guard.acquire(ctx):
            active = self._guard.active
            raise RunInProgressError(self.KIND, active.run_id if active else None)

        try:
            ctx.handle = self.scheduler.start(
                ctx.hosts,
                lambda host: DeployPipeline(host, ctx.channel, self.backend, self.registry, self.settings).run,
                channel=ctx.channel,
                on_error=failure_result,
                thread_name_prefix=f"deploy-{ctx.run_id}",
            )
        except Exception:
            self._guard.release(ctx)
            raise

        logger.info("Started deployment run %s for %d host(s)", ctx.run_id, len(ctx.hosts))
        return ctx

    def try_drain_events(self, ctx: RunContext) -> list[PipelineEvent]:
        return ctx.channel.drain()

    def is_complete(self, ctx: RunContext) -> bool:
        return ctx.handle is not None and ctx.handle.is_complete()

    def collect_results(self, ctx: RunContext) -> Summary:
        """Reap results of a completed run, aggregate them and end the run.

        Events still queued stay drainable afterwards.

        Raises:
            RuntimeError: if the run has not completed yet.

        """
        if not self.is_complete(ctx):
            raise RuntimeError(f"Deployment run {ctx.run_id} is still in progress")

        if ctx.results is None:
            ctx.results = ctx.handle.finalize()
        summary = aggregate(ctx.results, order=ctx.host_ids)
        self._guard.release(ctx)
        ctx.dispose()

        logger.info(
            "Deployment run %s finished: %d succeeded, %d failed", ctx.run_id, summary.succeeded, summary.failed
        )
        return summary

    def run(self, hosts: Sequence[HostDescriptor], sink: EventSink | None = None) -> Summary:
        """Submit and poll until complete, forwarding events to ``sink``."""
        ctx = self.submit(hosts)
        poller = CompletionPoller(ctx.handle, sink, interval=self.settings.poll_interval_ms / 1000)
        poller.run()
        return self.collect_results(ctx)

    def shutdown(self) -> None:
        """Release the active run's resources on application exit."""
        ctx = self._guard.active
        if ctx is not None:
            ctx.dispose()
            self._guard.release(ctx)
