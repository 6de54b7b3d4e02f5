"""Result aggregation for deployment runs."""

from __future__ import annotations

from typing import Iterable, Sequence

from fleetdeploy._types import PipelineResult, Summary


def aggregate(results: Iterable[PipelineResult], order: Sequence[int] | None = None) -> Summary:
    """Summarize terminal results.

    ``per_host`` follows ``order`` (host ids in submission order) when given,
    so reports are reproducible regardless of which host finished first.
    Results for ids missing from ``order`` are appended in the order received.

    Args:
        results: One PipelineResult per host.
        order: Host ids in submission order.

    Returns:
        Summary with success/failure counts and the ordered per-host list.

    """
    results = list(results)
    if order is not None:
        rank = {host_id: i for i, host_id in enumerate(order)}
        results.sort(key=lambda r: rank.get(r.host_id, len(rank)))

    succeeded = sum(1 for r in results if r.success)
    return Summary(succeeded=succeeded, failed=len(results) - succeeded, per_host=results)
