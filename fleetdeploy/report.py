"""Text and JSON formatting of deployment summaries and health snapshots.

Formatting is pure: nothing here queries a host. Health text export reads
the cached snapshots only.

JSON summary structure:
    {
        "timestamp": "ISO-8601 datetime",
        "summary": {"hosts": n, "succeeded": n, "failed": n},
        "hosts": [{"host_id", "address", "service", "success", "error"}, ...]
    }

"""

from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Any, Iterable

from fleetdeploy._types import HealthSnapshot, Summary


def _format_uptime(seconds: int) -> str:
    days, rem = divmod(int(seconds), 86400)
    hours, rem = divmod(rem, 3600)
    minutes = rem // 60
    if days:
        return f"{days}d {hours}h {minutes}m"
    if hours:
        return f"{hours}h {minutes}m"
    return f"{minutes}m"


# ── Deployment summaries ──────────────────────────────────────────────────


def format_summary_text(summary: Summary) -> str:
    """One line per host followed by the totals line."""
    lines = []
    for result in summary.per_host:
        service = result.service.value if result.service else "-"
        if result.success:
            lines.append(f"[OK]   {result.address:<30s} {service}")
        else:
            lines.append(f"[FAIL] {result.address:<30s} {service} ({result.error_kind})")
    lines.append(f"{summary.succeeded} succeeded, {summary.failed} failed")
    return "\n".join(lines)


def format_summary_json(summary: Summary, timestamp: datetime | None = None) -> str:
    """Format a deployment summary as JSON.

    Args:
        summary: Aggregated outcome of a deployment run.
        timestamp: Time of the run; defaults to now (UTC).

    Returns:
        Pretty-printed JSON string (2-space indent).

    """
    timestamp = timestamp or datetime.now(timezone.utc)
    data: dict[str, Any] = {
        "timestamp": timestamp.isoformat(),
        "summary": {
            "hosts": summary.total,
            "succeeded": summary.succeeded,
            "failed": summary.failed,
        },
        "hosts": [
            {
                "host_id": r.host_id,
                "address": r.address,
                "service": r.service.value if r.service else None,
                "success": r.success,
                "error": r.error_kind,
            }
            for r in summary.per_host
        ],
    }
    return json.dumps(data, indent=2)


# ── Health snapshots ──────────────────────────────────────────────────────


def format_snapshot_text(snapshot: HealthSnapshot) -> str:
    """Plain-text block for one host."""
    lines = [
        f"Host: {snapshot.address}",
        f"Status: {snapshot.status.value}",
        f"Collected: {snapshot.collected_at.isoformat(timespec='seconds')}",
    ]

    metrics = snapshot.metrics
    if metrics is not None:
        lines.append(f"CPU: {metrics.cpu_percent:.1f}%")
        lines.append(f"Memory: {metrics.memory_percent:.1f}%")
        lines.append(f"Disk: {metrics.disk_percent:.1f}%")
        lines.append(f"Uptime: {_format_uptime(metrics.uptime_seconds)}")
    elif snapshot.metrics_error:
        lines.append(f"Metrics: unavailable ({snapshot.metrics_error})")

    if snapshot.containers_error:
        lines.append(f"Containers: unavailable ({snapshot.containers_error})")
    else:
        lines.append(f"Containers: {snapshot.running}/{snapshot.total} running")
        for container in snapshot.containers:
            usage = ""
            if container.cpu_percent is not None:
                usage = f" cpu={container.cpu_percent:.1f}%"
            if container.memory_usage:
                usage += f" mem={container.memory_usage}"
            lines.append(f"  - {container.name} [{container.state}] {container.image}{usage}")

    return "\n".join(lines)


def format_snapshots_text(snapshots: Iterable[HealthSnapshot]) -> str:
    """Blocks for every snapshot, separated by a blank line."""
    return "\n\n".join(format_snapshot_text(s) for s in snapshots)


def format_snapshots_json(snapshots: Iterable[HealthSnapshot]) -> str:
    data = []
    for s in snapshots:
        data.append(
            {
                "host_id": s.host_id,
                "address": s.address,
                "status": s.status.value,
                "collected_at": s.collected_at.isoformat(),
                "metrics": (
                    {
                        "cpu_percent": s.metrics.cpu_percent,
                        "memory_percent": s.metrics.memory_percent,
                        "disk_percent": s.metrics.disk_percent,
                        "uptime_seconds": s.metrics.uptime_seconds,
                    }
                    if s.metrics
                    else None
                ),
                "metrics_error": s.metrics_error,
                "containers": [
                    {
                        "name": c.name,
                        "image": c.image,
                        "state": c.state,
                        "status": c.status,
                        "cpu_percent": c.cpu_percent,
                        "memory_usage": c.memory_usage,
                    }
                    for c in s.containers
                ],
                "containers_error": s.containers_error,
            }
        )
    return json.dumps(data, indent=2)
