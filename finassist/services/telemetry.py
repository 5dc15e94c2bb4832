# =============================================================================
# Telemetry — Task Usage Metrics
# =============================================================================
#
# The executor reports (task kind, success, duration) for every worker call.
# Durable metric storage belongs to an external service; in process we keep
# only a bounded window of recent metrics for the /stats endpoint.
#
# DESIGN DECISION: Bounded deque, not an ever-growing list.
# A long-running process must not accumulate history. collections.deque
# with maxlen drops the oldest entry on append — O(1) and allocation-free.
#
# DESIGN DECISION: Async record().
# Real sinks are network calls (metrics RPC). The executor awaits the call
# inside a try/except, so a failing sink never fails a task.
# =============================================================================

from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass
from typing import Protocol

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TaskMetric:
    kind: str
    success: bool
    duration_ms: int


class TelemetrySink(Protocol):
    """Receives one usage metric per executed task. Best-effort."""

    async def record(self, kind: str, success: bool, duration_ms: int) -> None:
        ...


class RecentMetrics:
    """
    In-process telemetry sink keeping the last `window_size` metrics.

    Optionally forwards every metric to a downstream sink (e.g., a metrics
    service client). Forwarding errors are logged and swallowed.
    """

    def __init__(
        self,
        window_size: int = 200,
        forward_to: TelemetrySink | None = None,
    ) -> None:
        self._window: deque[TaskMetric] = deque(maxlen=window_size)
        self._forward_to = forward_to

    async def record(self, kind: str, success: bool, duration_ms: int) -> None:
        self._window.append(TaskMetric(kind, success, duration_ms))
        logger.debug(
            "Task metric: kind=%s success=%s duration=%dms",
            kind, success, duration_ms,
        )
        if self._forward_to is not None:
            try:
                await self._forward_to.record(kind, success, duration_ms)
            except Exception as e:
                logger.warning("Downstream telemetry sink failed: %s", e)

    def __len__(self) -> int:
        return len(self._window)

    def summary(self) -> dict[str, dict[str, float]]:
        """
        Per-kind aggregates over the window.

        Example:
            {"communication": {"count": 12, "success_rate": 0.92,
                               "avg_duration_ms": 1840.5}}
        """
        grouped: dict[str, list[TaskMetric]] = {}
        for metric in self._window:
            grouped.setdefault(metric.kind, []).append(metric)

        return {
            kind: {
                "count": len(metrics),
                "success_rate": round(
                    sum(m.success for m in metrics) / len(metrics), 4,
                ),
                "avg_duration_ms": round(
                    sum(m.duration_ms for m in metrics) / len(metrics), 1,
                ),
            }
            for kind, metrics in grouped.items()
        }
