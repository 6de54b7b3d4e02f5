"""
Unit Tests for DeploymentOrchestrator

Test Categories:
- End-to-end runs over a fake backend (mixed outcomes, ordering)
- Run guard: a second submit while a run is active
- Validation before any remote call
- Caller-driven polling (submit / try_drain_events / collect_results)
- Result aggregation
"""

import threading
import time

import pytest

from fleetdeploy._types import (
    CONNECTION_FAILED,
    INTERNAL_ERROR,
    REBOOT_REQUIRED,
    SPAWN_FAILED,
    CompatOutcome,
    OSFamily,
    PipelineResult,
    Service,
)
from fleetdeploy.aggregate import aggregate
from fleetdeploy.exceptions import HostValidationError, RunInProgressError, WorkerSpawnError
from fleetdeploy.orchestrator import DeploymentOrchestrator, failure_result

from conftest import FakeBackend, make_registry


def _wait(orchestrator, ctx, timeout: float = 5.0) -> None:
    deadline = time.monotonic() + timeout
    while not orchestrator.is_complete(ctx):
        assert time.monotonic() < deadline, "run did not complete"
        time.sleep(0.01)


# =============================================================================
# End-to-end Tests
# =============================================================================


class TestDeploymentRun:
    """Tests for DeploymentOrchestrator.run."""

    def test_mixed_outcomes(self, make_host, settings) -> None:
        """Linux success, unreachable host and Windows host needing a reboot."""
        hosts = [
            make_host("192.168.1.10", Service.ADGUARD),
            make_host("192.168.1.11", Service.N8N),
            make_host("192.168.1.12", Service.PORTAINER),
        ]
        backend = FakeBackend(unreachable={"192.168.1.11"}, os_by_address={"192.168.1.12": OSFamily.WINDOWS})
        registry = make_registry(compat=CompatOutcome(success=True, needs_reboot=True, ready=False))
        events = []

        summary = DeploymentOrchestrator(backend, registry, settings).run(hosts, events.append)

        assert summary.succeeded == 1
        assert summary.failed == 2
        assert [r.host_id for r in summary.per_host] == [h.id for h in hosts]
        assert [r.error_kind for r in summary.per_host] == [None, CONNECTION_FAILED, REBOOT_REQUIRED]
        assert {e.host_id for e in events} == {h.id for h in hosts}

    def test_results_follow_submission_order(self, make_host, settings) -> None:
        """The first host finishes last but is still reported first."""
        slow = threading.Event()

        def service(ctx):
            if ctx.host.address == "10.0.0.1":
                slow.wait(timeout=0.3)
            return True

        hosts = [make_host(f"10.0.0.{i}") for i in range(1, 5)]

        summary = DeploymentOrchestrator(FakeBackend(), make_registry(service=service), settings).run(hosts)

        assert [r.address for r in summary.per_host] == [h.address for h in hosts]
        assert summary.succeeded == 4

    def test_hosts_are_captured_at_submission(self, make_host, backend, registry, settings) -> None:
        """Edits to the caller's descriptors after submit do not affect the run."""
        host = make_host("10.0.0.1")
        orchestrator = DeploymentOrchestrator(backend, registry, settings)

        ctx = orchestrator.submit([host])
        host.address = "10.9.9.9"
        _wait(orchestrator, ctx)
        summary = orchestrator.collect_results(ctx)

        assert summary.per_host[0].address == "10.0.0.1"

    def test_channel_empty_after_completion(self, make_host, backend, registry, settings) -> None:
        orchestrator = DeploymentOrchestrator(backend, registry, settings)

        ctx = orchestrator.submit([make_host("10.0.0.1"), make_host("10.0.0.2")])
        _wait(orchestrator, ctx)
        drained = orchestrator.try_drain_events(ctx)
        orchestrator.collect_results(ctx)

        assert drained
        assert orchestrator.try_drain_events(ctx) == []


# =============================================================================
# Guard and Validation Tests
# =============================================================================


class TestRunGuard:
    """Tests for the single-active-run guard."""

    def test_second_submit_rejected_while_active(self, make_host, registry, settings) -> None:
        gate = threading.Event()
        backend = FakeBackend(gate=gate)
        orchestrator = DeploymentOrchestrator(backend, registry, settings)

        ctx = orchestrator.submit([make_host("10.0.0.1")])
        with pytest.raises(RunInProgressError) as exc_info:
            orchestrator.submit([make_host("10.0.0.2")])
        gate.set()
        _wait(orchestrator, ctx)
        summary = orchestrator.collect_results(ctx)

        assert exc_info.value.run_id == ctx.run_id
        assert summary.total == 1
        assert "10.0.0.2" not in backend.reachability_checks

    def test_submit_allowed_after_collect(self, make_host, backend, registry, settings) -> None:
        orchestrator = DeploymentOrchestrator(backend, registry, settings)

        orchestrator.run([make_host("10.0.0.1")])
        summary = orchestrator.run([make_host("10.0.0.2")])

        assert summary.succeeded == 1
        assert orchestrator.active_run is None

    def test_collect_before_complete_raises(self, make_host, registry, settings) -> None:
        gate = threading.Event()
        orchestrator = DeploymentOrchestrator(FakeBackend(gate=gate), registry, settings)

        ctx = orchestrator.submit([make_host()])
        with pytest.raises(RuntimeError, match="in progress"):
            orchestrator.collect_results(ctx)
        gate.set()
        _wait(orchestrator, ctx)

        assert orchestrator.collect_results(ctx).succeeded == 1

    def test_validation_errors_before_any_remote_call(self, make_host, backend, registry, settings) -> None:
        hosts = [make_host("10.0.0.1"), make_host("999.1.1.1"), make_host("10.0.0.3", secret="")]
        orchestrator = DeploymentOrchestrator(backend, registry, settings)

        with pytest.raises(HostValidationError) as exc_info:
            orchestrator.submit(hosts)

        assert [(i.host_id, i.field) for i in exc_info.value.issues] == [(2, "address"), (3, "secret")]
        assert backend.reachability_checks == []
        assert orchestrator.active_run is None


# =============================================================================
# Aggregation Tests
# =============================================================================


class TestAggregate:
    """Tests for aggregate and failure_result."""

    def test_counts_and_order(self) -> None:
        results = [
            PipelineResult(host_id=3, address="c", success=False, error_kind=CONNECTION_FAILED),
            PipelineResult(host_id=1, address="a", success=True),
            PipelineResult(host_id=2, address="b", success=True),
        ]

        summary = aggregate(results, order=[1, 2, 3])

        assert (summary.succeeded, summary.failed, summary.total) == (2, 1, 3)
        assert [r.host_id for r in summary.per_host] == [1, 2, 3]

    def test_empty(self) -> None:
        summary = aggregate([])

        assert (summary.succeeded, summary.failed, summary.per_host) == (0, 0, [])

    def test_failure_result_kinds(self, make_host) -> None:
        host = make_host(service=Service.HOMARR)

        spawn = failure_result(host, WorkerSpawnError(host.id, RuntimeError("no threads")))
        crash = failure_result(host, ValueError("bug"))

        assert (spawn.success, spawn.error_kind, spawn.service) == (False, SPAWN_FAILED, Service.HOMARR)
        assert crash.error_kind == INTERNAL_ERROR
