"""Cooperative completion poller.

The progress sink must never wait on a slow remote operation, so instead of
joining workers the poller ticks at a fixed interval: each tick forwards
queued events to the sink and checks whether every worker has finished.
When they have, it finalizes the run, drains once more to pick up events
emitted between the liveness check and teardown, and hands the terminal
values to ``on_complete``.

``tick`` can be driven from any loop (a UI timer, a CLI, a test).
``run`` is a convenience loop for headless callers.
"""

from __future__ import annotations

import logging
import time
from typing import Callable, Generic, TypeVar

from fleetdeploy._types import PipelineEvent
from fleetdeploy.scheduler import RunHandle

logger = logging.getLogger(__name__)

R = TypeVar("R")

EventSink = Callable[[PipelineEvent], None]


class CompletionPoller(Generic[R]):
    """Fixed-interval tick loop over a RunHandle."""

    def __init__(
        self,
        handle: RunHandle[R],
        sink: EventSink | None = None,
        *,
        interval: float = 0.15,
        on_complete: Callable[[list[R]], None] | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.handle = handle
        self.sink = sink
        self.interval = interval
        self.on_complete = on_complete
        self._sleep = sleep
        self.results: list[R] | None = None
        self.ticks = 0

    @property
    def done(self) -> bool:
        return self.results is not None

    def _forward(self, events: list[PipelineEvent]) -> None:
        if self.sink is None:
            return
        for event in events:
            try:
                self.sink(event)
            except Exception:
                # A broken sink must not stall completion detection.
                logger.exception("Progress sink failed on event for host %s", event.host_id)

    def tick(self) -> bool:
        """Run one poll cycle. Returns True once the run is complete."""
        if self.results is not None:
            return True
        self.ticks += 1

        self._forward(self.handle.drain())
        if not self.handle.is_complete():
            return False

        results = self.handle.finalize()
        self._forward(self.handle.drain())
        self.results = results
        logger.debug("Run complete after %d tick(s): %d result(s)", self.ticks, len(results))

        if self.on_complete is not None:
            self.on_complete(results)
        return True

    def run(self) -> list[R]:
        """Tick until complete and return the terminal values."""
        while not self.tick():
            self._sleep(self.interval)
        return self.results
