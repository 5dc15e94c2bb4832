# =============================================================================
# Workflow Executor — Dependency-Aware Scheduling with Bounded Concurrency
# =============================================================================
#
# Runs a planned task graph:
#
#   while tasks remain:
#     1. skip every task with a FAILED dependency (transitively)
#     2. ready set = remaining tasks whose dependencies all COMPLETED
#     3. empty ready set with tasks remaining → StalledGraphError
#     4. run up to max_concurrency ready tasks at once
#        (higher priority first, then planning order)
#     5. a CRITICAL failure cancels its running siblings and ends the loop
#
# Each worker call is the only suspension point: tasks in one batch run as
# separate asyncio tasks, so a slow model call never blocks its siblings.
# Every call is bounded by a timeout; a timeout is an ordinary failure.
#
# DESIGN DECISION: Batch-at-a-time scheduling (not a continuous pool).
# A task only starts after every dependency has a terminal status, and a
# batch is fully settled before the next ready set is computed. Workflows
# are at most five tasks deep, so waiting for a batch costs little and
# keeps the ordering guarantee trivially true.
#
# DESIGN DECISION: One executor per process, state per call.
# The runner table, telemetry sink and in-flight counter are shared; the
# completed/failed sets and the results dict are locals of execute(), so
# concurrent workflows never share graph state.
# =============================================================================

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Mapping, Sequence
from typing import Any, Protocol

from finassist.agents.tasks import (
    Task,
    TaskKind,
    TaskPayload,
    TaskStatus,
    WorkflowResult,
)
from finassist.errors import StalledGraphError, TaskFailure
from finassist.services.telemetry import TelemetrySink

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Protocol Definition
# ---------------------------------------------------------------------------


class CapabilityWorker(Protocol):
    """
    A capability the executor can dispatch a task to.

    Implementations return a result object, or raise (or return an
    Exception instance) to signal failure.
    """

    async def run(
        self,
        payload: TaskPayload,
        prior_results: Mapping[str, Any],
    ) -> Any:
        """
        Args:
            payload: The task's kind-specific payload.
            prior_results: Results of every task completed so far in this
                workflow, keyed by task id (read-only snapshot).
        """
        ...


# ---------------------------------------------------------------------------
# Executor
# ---------------------------------------------------------------------------


class WorkflowExecutor:
    """Executes task graphs against a fixed table of capability workers."""

    def __init__(
        self,
        runners: Mapping[TaskKind, CapabilityWorker],
        telemetry: TelemetrySink | None = None,
        max_concurrency: int = 5,
        task_timeout: float = 30.0,
    ) -> None:
        missing = [kind.value for kind in TaskKind if kind not in runners]
        if missing:
            raise ValueError(f"No worker registered for: {', '.join(missing)}")
        if max_concurrency < 1:
            raise ValueError("max_concurrency must be at least 1")

        self._runners = dict(runners)
        self._telemetry = telemetry
        self._max_concurrency = max_concurrency
        self._task_timeout = task_timeout
        self._in_flight = 0

    @property
    def in_flight(self) -> int:
        """Worker calls currently running, across all workflows."""
        return self._in_flight

    async def execute(
        self,
        tasks: Sequence[Task],
        max_concurrency: int | None = None,
    ) -> WorkflowResult:
        """
        Run a task graph to completion, critical failure, or stall.

        Args:
            tasks: Tasks in planning order, all PENDING.
            max_concurrency: Per-call override of the concurrency cap.

        Returns:
            WorkflowResult — success is False only when a critical task
            failed or the graph stalled; non-critical failures are listed
            in `errors` and their dependents are skipped.
        """
        start = time.monotonic()
        cap = self._max_concurrency if max_concurrency is None else max_concurrency
        if cap < 1:
            raise ValueError("max_concurrency must be at least 1")

        ids = [t.id for t in tasks]
        if len(set(ids)) != len(ids):
            raise ValueError(f"Duplicate task ids in workflow: {ids}")
        not_pending = [t.id for t in tasks if t.status is not TaskStatus.PENDING]
        if not_pending:
            raise ValueError(f"Tasks already executed: {not_pending}")

        order = {task_id: i for i, task_id in enumerate(ids)}
        completed: set[str] = set()
        failed: set[str] = set()
        results: dict[str, Any] = {}
        errors: list[str] = []
        remaining = list(tasks)
        success = True

        logger.info("Executing workflow: %d tasks, concurrency cap %d", len(tasks), cap)

        try:
            while remaining:
                _skip_blocked(remaining, failed, errors)
                remaining = [t for t in remaining if not t.status.is_terminal]
                if not remaining:
                    break

                ready = [t for t in remaining if t.depends_on <= completed]
                if not ready:
                    raise StalledGraphError([t.id for t in remaining])

                ready.sort(key=lambda t: (-t.priority.rank, order[t.id]))
                batch = ready[:cap]
                if not batch:
                    raise StalledGraphError([t.id for t in remaining])
                logger.info(
                    "Starting batch: %s (%d ready, %d waiting)",
                    [t.id for t in batch], len(ready), len(remaining) - len(batch),
                )

                critical = await self._run_batch(
                    batch, results, completed, failed, errors,
                )
                remaining = [t for t in remaining if not t.status.is_terminal]

                if critical is not None:
                    logger.error(
                        "Critical task %s failed — aborting workflow "
                        "(%d tasks not run)",
                        critical.id, len(remaining),
                    )
                    success = False
                    break

        except StalledGraphError as e:
            logger.exception("Workflow stalled: %s", e)
            errors.append(str(e))
            success = False

        elapsed_ms = int((time.monotonic() - start) * 1000)
        logger.info(
            "Workflow finished: success=%s, completed=%d/%d, errors=%d, %dms",
            success, len(completed), len(tasks), len(errors), elapsed_ms,
        )

        return WorkflowResult(
            success=success,
            results_by_task_id=dict(results),
            errors=tuple(errors),
            elapsed_ms=elapsed_ms,
            tasks=tuple(tasks),
        )

    # -----------------------------------------------------------------------
    # Batch execution
    # -----------------------------------------------------------------------

    async def _run_batch(
        self,
        batch: list[Task],
        results: dict[str, Any],
        completed: set[str],
        failed: set[str],
        errors: list[str],
    ) -> Task | None:
        """
        Run one batch concurrently and fold outcomes into the workflow state.

        Returns the first critical task that failed, or None.
        """
        prior = dict(results)
        pending = {
            asyncio.create_task(self._run_task(task, prior)): task
            for task in batch
        }
        critical: Task | None = None

        try:
            while pending and critical is None:
                done, _ = await asyncio.wait(
                    pending, return_when=asyncio.FIRST_COMPLETED,
                )
                for future in done:
                    task = pending.pop(future)
                    if future.result():
                        completed.add(task.id)
                        results[task.id] = task.result
                        continue
                    failed.add(task.id)
                    errors.append(task.error or f"Task {task.id} failed")
                    if task.is_critical and critical is None:
                        critical = task
        finally:
            if pending:
                for future in pending:
                    future.cancel()
                await asyncio.gather(*pending, return_exceptions=True)

        # Siblings still running when a critical task failed
        for task in pending.values():
            if task.status is TaskStatus.COMPLETED:
                completed.add(task.id)
                results[task.id] = task.result
            elif task.status is TaskStatus.FAILED:
                failed.add(task.id)
                errors.append(task.error or f"Task {task.id} failed")
            else:
                reason = f"Task {task.id} cancelled: critical task failed"
                task.mark_failed(reason)
                failed.add(task.id)
                errors.append(reason)

        return critical

    async def _run_task(self, task: Task, prior: Mapping[str, Any]) -> bool:
        """Invoke one worker. Never raises except on cancellation."""
        runner = self._runners[task.kind]
        task.mark_running()
        self._in_flight += 1
        logger.info("Running %s (%s)", task.id, task.priority.value)

        reason: str
        try:
            result = await asyncio.wait_for(
                runner.run(task.payload, prior), timeout=self._task_timeout,
            )
        except asyncio.TimeoutError:
            reason = f"timed out after {self._task_timeout:g}s"
        except Exception as e:
            logger.warning("Worker for %s raised: %s", task.id, e)
            reason = str(e) or type(e).__name__
        else:
            if isinstance(result, Exception):
                reason = str(result) or type(result).__name__
            else:
                task.mark_completed(result)
                logger.info("%s completed in %dms", task.id, task.duration_ms)
                await self._record(task, success=True)
                return True
        finally:
            self._in_flight -= 1

        failure = TaskFailure(task.id, task.kind.value, reason)
        task.mark_failed(str(failure))
        logger.warning("%s", failure)
        await self._record(task, success=False)
        return False

    async def _record(self, task: Task, success: bool) -> None:
        """Emit a usage metric. Best-effort: sink errors are only logged."""
        if self._telemetry is None:
            return
        try:
            await self._telemetry.record(
                task.kind.value, success, task.duration_ms or 0,
            )
        except Exception as e:
            logger.warning("Telemetry sink failed for %s: %s", task.id, e)


# ---------------------------------------------------------------------------
# Internal Helpers
# ---------------------------------------------------------------------------


def _skip_blocked(
    remaining: list[Task],
    failed: set[str],
    errors: list[str],
) -> None:
    """Fail every pending task that has a failed dependency, transitively."""
    changed = True
    while changed:
        changed = False
        for task in remaining:
            if task.status is not TaskStatus.PENDING:
                continue
            blocked = sorted(task.depends_on & failed)
            if blocked:
                reason = (
                    f"Task {task.id} skipped: dependency "
                    f"{', '.join(blocked)} failed"
                )
                task.mark_failed(reason)
                failed.add(task.id)
                errors.append(reason)
                logger.warning("%s", reason)
                changed = True
