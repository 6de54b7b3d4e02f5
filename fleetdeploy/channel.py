"""Progress channel between host workers and the single progress consumer."""

from __future__ import annotations

import queue

from fleetdeploy._types import PipelineEvent, Severity


class ProgressChannel:
    """Unbounded multi-producer, single-consumer event queue.

    Any worker may ``emit`` concurrently; only the completion poller calls
    ``drain``. Events from one worker keep their submission order.
    """

    def __init__(self) -> None:
        self._queue: queue.SimpleQueue[PipelineEvent] = queue.SimpleQueue()

    def put(self, event: PipelineEvent) -> None:
        self._queue.put(event)

    def emit(self, host_id: int, message: str, severity: Severity = Severity.INFO) -> None:
        self._queue.put(PipelineEvent(host_id=host_id, message=message, severity=severity))

    def drain(self) -> list[PipelineEvent]:
        """Pop every event currently queued. Never blocks."""
        events = []
        while True:
            try:
                events.append(self._queue.get_nowait())
            except queue.Empty:
                return events

    def empty(self) -> bool:
        return self._queue.empty()
