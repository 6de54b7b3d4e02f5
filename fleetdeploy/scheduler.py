"""Fan-out scheduler: one concurrent worker per host.

Every host gets its own thread from a pool sized to the host count (capped
by ``Settings.max_workers``), so no host waits behind another. Workers
start as soon as the run handle is constructed.

Example:
-------
    >>> channel = ProgressChannel()
    >>> handle = FanOutScheduler(max_workers=50).start(
    ...     hosts, lambda h: DeployPipeline(h, channel, backend, registry).run,
    ...     channel=channel, on_error=failure_result,
    ... )
    >>> while not handle.is_complete():
    ...     for event in handle.drain():
    ...         print(event.message)
    ...     time.sleep(0.15)
    >>> results = handle.finalize()

"""

from __future__ import annotations

import logging
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Callable, Generic, Sequence, TypeVar

from fleetdeploy._types import HostDescriptor, PipelineEvent
from fleetdeploy.channel import ProgressChannel
from fleetdeploy.config import MAX_WORKERS_CEILING
from fleetdeploy.exceptions import WorkerSpawnError

logger = logging.getLogger(__name__)

R = TypeVar("R")

PipelineFactory = Callable[[HostDescriptor], Callable[[], R]]
ErrorHandler = Callable[[HostDescriptor, BaseException], R]


class RunHandle(Generic[R]):
    """Observation point for one fan-out.

    ``drain`` and ``is_complete`` never block. ``finalize`` reaps each
    worker's terminal value in submission order and releases the pool.
    """

    def __init__(
        self,
        hosts: Sequence[HostDescriptor],
        channel: ProgressChannel,
        executor: ThreadPoolExecutor | None,
        on_error: ErrorHandler,
    ):
        self.hosts = list(hosts)
        self.channel = channel
        self._executor = executor
        self._on_error = on_error
        self._futures: dict[int, Future] = {}
        self._spawn_failures: dict[int, R] = {}
        self._results: list[R] | None = None

    def _spawn(self, host: HostDescriptor, task: Callable[[], R]) -> None:
        self._futures[host.id] = self._executor.submit(task)

    def _record_spawn_failure(self, host: HostDescriptor, exc: BaseException) -> None:
        self._spawn_failures[host.id] = self._on_error(host, WorkerSpawnError(host.id, exc))

    def drain(self) -> list[PipelineEvent]:
        return self.channel.drain()

    def is_complete(self) -> bool:
        """True once every worker has finished."""
        return all(f.done() for f in self._futures.values())

    @property
    def finalized(self) -> bool:
        return self._results is not None

    def finalize(self) -> list[R]:
        """Collect one terminal value per host and shut the pool down.

        Calling this before ``is_complete()`` blocks until the remaining
        workers finish. Subsequent calls return the cached values.
        """
        if self._results is not None:
            return self._results

        results: list[R] = []
        for host in self.hosts:
            if host.id in self._spawn_failures:
                results.append(self._spawn_failures[host.id])
                continue
            future = self._futures[host.id]
            try:
                results.append(future.result())
            except Exception as exc:
                logger.exception("Worker for host %s (%s) raised", host.id, host.address)
                results.append(self._on_error(host, exc))

        if self._executor is not None:
            self._executor.shutdown(wait=True)
            self._executor = None
        self._results = results
        return results

    def shutdown(self) -> None:
        """Release the pool without collecting results. Running workers finish."""
        if self._executor is not None:
            self._executor.shutdown(wait=False)
            self._executor = None


class FanOutScheduler:
    """Spawns one worker per host and returns a RunHandle."""

    def __init__(self, max_workers: int = 50):
        if not 1 <= max_workers <= MAX_WORKERS_CEILING:
            raise ValueError(f"max_workers must be between 1 and {MAX_WORKERS_CEILING}")
        self.max_workers = max_workers

    def pool_size(self, host_count: int) -> int:
        return min(max(host_count, 1), self.max_workers)

    def start(
        self,
        hosts: Sequence[HostDescriptor],
        pipeline_factory: PipelineFactory,
        *,
        channel: ProgressChannel,
        on_error: ErrorHandler,
        thread_name_prefix: str = "fleetdeploy",
    ) -> RunHandle[R]:
        """Start one worker per host immediately.

        A host whose pipeline cannot be built or submitted gets the value of
        ``on_error`` as its terminal result; the remaining hosts still start.
        """
        ids = [h.id for h in hosts]
        if len(set(ids)) != len(ids):
            raise ValueError("Host ids must be unique within a run")

        size = self.pool_size(len(hosts))
        if size < len(hosts):
            logger.warning("%d hosts exceed the worker cap of %d; some hosts will wait", len(hosts), size)

        executor = ThreadPoolExecutor(max_workers=size, thread_name_prefix=thread_name_prefix)
        handle: RunHandle[R] = RunHandle(hosts, channel, executor, on_error)

        for host in hosts:
            try:
                handle._spawn(host, pipeline_factory(host))
            except Exception as exc:
                logger.error("Could not start worker for host %s (%s): %s", host.id, host.address, exc)
                handle._record_spawn_failure(host, exc)

        logger.debug("Started %d worker(s) on a pool of %d", len(hosts), size)
        return handle
