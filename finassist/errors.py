# =============================================================================
# Error Taxonomy — Orchestration & Retrieval Failures
# =============================================================================
#
# Each failure class maps to one containment policy:
#
#   PlanningError     → coordinator falls back to a single communication task
#   StalledGraphError → executor logs a defect, workflow returns success=False
#   TaskFailure       → critical task aborts the workflow; non-critical is
#                       recorded and its dependents are skipped
#   RetrievalFailure  → hybrid retriever treats that source as empty
#
# None of these ever escapes the coordinator: the chat client always gets
# a structured reply it can render.
# =============================================================================

from __future__ import annotations


class AssistantError(Exception):
    """Base class for all orchestration and retrieval errors."""


class PlanningError(AssistantError):
    """The request could not be turned into a task graph."""


class StalledGraphError(AssistantError):
    """No task is ready while tasks remain: a cycle or a missing dependency."""

    def __init__(self, remaining: list[str]) -> None:
        self.remaining = remaining
        super().__init__(
            "Workflow stalled: no ready task among "
            f"{', '.join(remaining)} (dependency cycle or missing dependency)"
        )


class TaskFailure(AssistantError):
    """A capability worker raised, returned an error, or timed out."""

    def __init__(self, task_id: str, kind: str, reason: str) -> None:
        self.task_id = task_id
        self.kind = kind
        self.reason = reason
        super().__init__(f"Task {task_id} ({kind}) failed: {reason}")


class RetrievalFailure(AssistantError):
    """A knowledge or memory similarity search could not be completed."""

    def __init__(self, source: str, reason: str) -> None:
        self.source = source
        self.reason = reason
        super().__init__(f"{source} search failed: {reason}")
