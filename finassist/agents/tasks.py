# =============================================================================
# Task Model — Units of Work in a Workflow Graph
# =============================================================================
#
# A workflow is a small DAG of Tasks. Each Task carries:
#   - an immutable description (id, kind, priority, payload, depends_on)
#   - mutable execution state (status, result, error, timestamps)
#
# DESIGN DECISION: Closed kinds with one payload type per kind.
# TaskKind is an Enum and every kind has exactly one payload dataclass
# (PAYLOAD_TYPES). A Task refuses a payload of the wrong type at
# construction, and the executor refuses a runner table that does not
# cover every kind — adding a kind forces every dispatch site to handle it.
#
# DESIGN DECISION: Forward-only state machine.
#   PENDING ──▶ RUNNING ──▶ COMPLETED
#      │           └──────▶ FAILED
#      └─────────────────▶ FAILED   (skipped: an upstream dependency failed)
# Transitions are methods that raise ValueError on an illegal move, so a
# scheduler bug surfaces immediately instead of silently re-running a task.
# =============================================================================

from __future__ import annotations

import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Union


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class TaskKind(str, Enum):
    """The five capabilities a workflow can invoke."""

    DOCUMENT_PROCESSING = "document_processing"
    DATA_ANALYSIS = "data_analysis"
    FINANCIAL_OPERATION = "financial_operation"
    VALIDATION = "validation"
    COMMUNICATION = "communication"


class TaskPriority(str, Enum):
    """Scheduling priority. CRITICAL failures abort the whole workflow."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        """Higher rank runs first when the ready set exceeds the cap."""
        return _PRIORITY_RANK[self]


_PRIORITY_RANK = {
    TaskPriority.LOW: 0,
    TaskPriority.MEDIUM: 1,
    TaskPriority.HIGH: 2,
    TaskPriority.CRITICAL: 3,
}


class TaskStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (TaskStatus.COMPLETED, TaskStatus.FAILED)


# ---------------------------------------------------------------------------
# Payloads — one per TaskKind
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Attachment:
    """A file attached to a chat message (bank statement, invoice, ...)."""

    filename: str
    content: bytes
    content_type: str = "application/octet-stream"


@dataclass(frozen=True)
class DocumentPayload:
    attachment: Attachment | None = None
    # Analysis already produced upstream (e.g., by the upload flow)
    document_analysis: str | None = None


@dataclass(frozen=True)
class AnalysisPayload:
    user_message: str
    focus: str = "general"  # expenses | income | balances | general
    financial_context: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class OperationPayload:
    user_message: str
    user_id: str
    operations: tuple[str, ...] = ()
    financial_context: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class ValidationPayload:
    # Ids of the financial_operation tasks whose outcome must be checked
    operation_task_ids: tuple[str, ...] = ()


@dataclass(frozen=True)
class CommunicationPayload:
    original_message: str
    user_id: str
    response_type: str = "guidance"  # action_result | analysis_report | guidance
    financial_context: dict[str, Any] = field(default_factory=dict)


TaskPayload = Union[
    DocumentPayload,
    AnalysisPayload,
    OperationPayload,
    ValidationPayload,
    CommunicationPayload,
]

PAYLOAD_TYPES: dict[TaskKind, type] = {
    TaskKind.DOCUMENT_PROCESSING: DocumentPayload,
    TaskKind.DATA_ANALYSIS: AnalysisPayload,
    TaskKind.FINANCIAL_OPERATION: OperationPayload,
    TaskKind.VALIDATION: ValidationPayload,
    TaskKind.COMMUNICATION: CommunicationPayload,
}


# ---------------------------------------------------------------------------
# Task
# ---------------------------------------------------------------------------


def new_task_id(kind: TaskKind) -> str:
    """Unique id, prefixed by kind so logs stay readable."""
    return f"{kind.value}-{uuid.uuid4().hex[:8]}"


@dataclass(eq=False)
class Task:
    """
    One unit of work plus its execution state.

    Timestamps come from time.monotonic() — they are only compared with
    each other (dependency ordering, durations), never shown as dates.
    """

    id: str
    kind: TaskKind
    priority: TaskPriority
    payload: TaskPayload
    depends_on: frozenset[str] = frozenset()

    status: TaskStatus = TaskStatus.PENDING
    result: Any = None
    error: str | None = None
    started_at: float | None = None
    finished_at: float | None = None

    def __post_init__(self) -> None:
        expected = PAYLOAD_TYPES[self.kind]
        if not isinstance(self.payload, expected):
            raise TypeError(
                f"Task {self.id}: {self.kind.value} expects "
                f"{expected.__name__}, got {type(self.payload).__name__}"
            )
        if self.id in self.depends_on:
            raise ValueError(f"Task {self.id} cannot depend on itself")
        self.depends_on = frozenset(self.depends_on)

    @property
    def is_critical(self) -> bool:
        return self.priority is TaskPriority.CRITICAL

    @property
    def duration_ms(self) -> int | None:
        if self.started_at is None or self.finished_at is None:
            return None
        return int((self.finished_at - self.started_at) * 1000)

    # -- State transitions --------------------------------------------------

    def mark_running(self) -> None:
        self._require(TaskStatus.PENDING, "start")
        self.status = TaskStatus.RUNNING
        self.started_at = time.monotonic()

    def mark_completed(self, result: Any) -> None:
        self._require(TaskStatus.RUNNING, "complete")
        self.status = TaskStatus.COMPLETED
        self.result = result
        self.finished_at = time.monotonic()

    def mark_failed(self, error: str) -> None:
        """Fail a running task, or skip a pending one."""
        if self.status.is_terminal:
            raise ValueError(
                f"Cannot fail task {self.id}: already {self.status.value}"
            )
        self.status = TaskStatus.FAILED
        self.error = error
        self.finished_at = time.monotonic()

    def _require(self, expected: TaskStatus, action: str) -> None:
        if self.status is not expected:
            raise ValueError(
                f"Cannot {action} task {self.id}: status is "
                f"{self.status.value} (expected {expected.value})"
            )


# ---------------------------------------------------------------------------
# Workflow Result
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class WorkflowResult:
    """Outcome of one executed task graph. Built once, never mutated."""

    success: bool
    results_by_task_id: dict[str, Any]
    errors: tuple[str, ...] = ()
    elapsed_ms: int = 0
    tasks: tuple[Task, ...] = ()

    def result_for(self, kind: TaskKind) -> Any:
        """Result of the first completed task of `kind`, or None."""
        for task in self.tasks:
            if task.kind is kind and task.id in self.results_by_task_id:
                return self.results_by_task_id[task.id]
        return None
