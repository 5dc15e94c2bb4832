# =============================================================================
# Workflow Coordinator — Request Façade over Planner, Executor & Retrieval
# =============================================================================
#
# The coordinator is the single entry point the chat API calls. It wires
# the planner, the executor and the hybrid retrieval into a LangGraph
# StateGraph:
#
# GRAPH TOPOLOGY:
#   START ──▶ plan ──▶ execute ──▶ respond ──▶ END
#
#   plan     — WorkflowPlanner.plan(); PlanningError → fallback_plan()
#   execute  — WorkflowExecutor.execute() on the planned task graph
#   respond  — consolidate: use the communication task's reply, or answer
#              single-pass (cached hybrid context + one LLM call) when the
#              workflow produced none
#
# DESIGN DECISION: process_request() never raises.
# Every failure degrades to a structured ChatReply: planning errors fall
# back to a single communication task, task failures are contained by the
# executor, a missing reply triggers the single-pass answer, and if even
# that fails the user gets a fixed apology with success=False.
#
# DESIGN DECISION: Graph compiled once per coordinator.
# Nodes are bound methods so they reach the injected collaborators without
# module-level singletons. The application builds one coordinator at
# startup; tests build their own with fakes.
#
# DESIGN DECISION: Bounded history.
# Only the last `history_size` workflow outcomes are kept (for /stats);
# durable history lives in the memory store.
# =============================================================================

from __future__ import annotations

import logging
import time
from collections import deque
from dataclasses import dataclass, field
from typing import Any

from langgraph.graph import END, START, StateGraph
from typing_extensions import TypedDict

from finassist.agents.composer import compose_reply
from finassist.agents.executor import WorkflowExecutor
from finassist.agents.planner import RequestContext, WorkflowPlanner
from finassist.agents.tasks import Attachment, Task, TaskKind, TaskStatus, WorkflowResult
from finassist.agents.workers import CommunicationOutcome
from finassist.errors import PlanningError
from finassist.services.context_cache import ContextCache
from finassist.services.hybrid import HybridContext, HybridRetriever
from finassist.services.llm import LLMProvider
from finassist.services.memory import MemorySearchAdapter
from finassist.services.telemetry import RecentMetrics

logger = logging.getLogger(__name__)

APOLOGY_MESSAGE = (
    "Sorry, I couldn't process your request right now. "
    "Please try again in a moment."
)

MAX_REPLY_SOURCES = 5


# ---------------------------------------------------------------------------
# Data Structures
# ---------------------------------------------------------------------------


@dataclass
class ChatReply:
    """Consolidated answer returned to the chat API."""

    success: bool
    message: str
    sources: list[dict[str, Any]] = field(default_factory=list)
    confidence_score: float = 0.0
    workflow_metadata: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class _WorkflowRecord:
    success: bool
    elapsed_ms: int
    single_pass: bool


class CoordinatorState(TypedDict, total=False):
    """
    State flowing through the coordinator graph.

    total=False: each node returns only the keys it sets.
    """

    # --- Input ---
    message: str
    request: RequestContext

    # --- Set by plan ---
    tasks: list[Task]
    planning_error: str | None

    # --- Set by execute ---
    workflow: WorkflowResult

    # --- Set by respond ---
    reply: ChatReply


# ---------------------------------------------------------------------------
# Coordinator
# ---------------------------------------------------------------------------


class WorkflowCoordinator:
    def __init__(
        self,
        planner: WorkflowPlanner,
        executor: WorkflowExecutor,
        retriever: HybridRetriever,
        cache: ContextCache,
        llm: LLMProvider,
        memory: MemorySearchAdapter | None = None,
        telemetry: RecentMetrics | None = None,
        min_memory_confidence: float = 0.7,
        history_size: int = 200,
    ) -> None:
        self._planner = planner
        self._executor = executor
        self._retriever = retriever
        self._cache = cache
        self._llm = llm
        self._memory = memory
        self._telemetry = telemetry
        self._min_memory_confidence = min_memory_confidence
        self._history: deque[_WorkflowRecord] = deque(maxlen=history_size)

        builder = StateGraph(CoordinatorState)
        builder.add_node("plan", self._plan_node)
        builder.add_node("execute", self._execute_node)
        builder.add_node("respond", self._respond_node)
        builder.add_edge(START, "plan")
        builder.add_edge("plan", "execute")
        builder.add_edge("execute", "respond")
        builder.add_edge("respond", END)
        self._graph = builder.compile()

    @property
    def cache(self) -> ContextCache:
        return self._cache

    async def process_request(
        self,
        message: str,
        user_id: str = "anonymous",
        financial_context: dict[str, Any] | None = None,
        attachment: Attachment | None = None,
        document_analysis: str | None = None,
    ) -> ChatReply:
        """
        Answer one chat message. Never raises.

        Args:
            message: The user's chat message.
            user_id: Owner of the memory store entries used and written.
            financial_context: Snapshot of the user's accounts/transactions.
            attachment: Uploaded file (statement, invoice, ...), if any.
            document_analysis: Analysis of a document produced earlier.
        """
        start = time.monotonic()
        text = message if isinstance(message, str) else ""
        request = RequestContext(
            user_id=user_id,
            financial_context=dict(financial_context or {}),
            attachment=attachment,
            document_analysis=document_analysis,
        )

        logger.info(
            "Processing request: user=%s, message='%s', attachment=%s",
            user_id, text[:80], attachment.filename if attachment else None,
        )

        workflow: WorkflowResult | None = None
        try:
            final = await self._graph.ainvoke({"message": message, "request": request})
            reply = final["reply"]
            workflow = final.get("workflow")
        except Exception:
            logger.exception("Workflow pipeline failed, answering single-pass")
            reply = await self._single_pass(text, request, errors=())
            reply.workflow_metadata["pipeline_failed"] = True

        elapsed_ms = int((time.monotonic() - start) * 1000)
        reply.workflow_metadata["elapsed_ms"] = elapsed_ms
        self._history.append(_WorkflowRecord(
            success=reply.success,
            elapsed_ms=elapsed_ms,
            single_pass=bool(reply.workflow_metadata.get("single_pass")),
        ))

        self._remember(text, request, reply, workflow)

        logger.info(
            "Request complete: success=%s, confidence=%.3f, sources=%d, %dms",
            reply.success, reply.confidence_score, len(reply.sources), elapsed_ms,
        )
        return reply

    def stats(self) -> dict[str, Any]:
        """Load and outcome figures over the recent-workflow window."""
        records = list(self._history)
        count = len(records)
        return {
            "workflows": count,
            "success_rate": (
                round(sum(r.success for r in records) / count, 4) if count else 0.0
            ),
            "avg_elapsed_ms": (
                round(sum(r.elapsed_ms for r in records) / count, 1) if count else 0.0
            ),
            "single_pass_count": sum(r.single_pass for r in records),
            "in_flight": self._executor.in_flight,
            "cache_size": len(self._cache),
            "cache_hits": self._cache.hits,
            "cache_misses": self._cache.misses,
            "tasks": self._telemetry.summary() if self._telemetry else {},
        }

    # -----------------------------------------------------------------------
    # Graph nodes
    # -----------------------------------------------------------------------

    async def _plan_node(self, state: CoordinatorState) -> dict:
        request = state["request"]
        try:
            tasks = self._planner.plan(
                state["message"],
                has_attachment=request.attachment is not None,
                context=request,
            )
            return {"tasks": tasks, "planning_error": None}
        except PlanningError as e:
            logger.warning("Planning failed (%s), using fallback plan", e)
            return {
                "tasks": self._planner.fallback_plan(state["message"], request),
                "planning_error": str(e),
            }

    async def _execute_node(self, state: CoordinatorState) -> dict:
        workflow = await self._executor.execute(state["tasks"])
        return {"workflow": workflow}

    async def _respond_node(self, state: CoordinatorState) -> dict:
        workflow = state["workflow"]
        message = state["message"] if isinstance(state["message"], str) else ""
        communication = workflow.result_for(TaskKind.COMMUNICATION)

        if isinstance(communication, CommunicationOutcome):
            reply = _reply_from_context(
                success=workflow.success,
                message=communication.message,
                context=communication.context,
            )
        else:
            logger.warning(
                "Workflow produced no reply (success=%s, errors=%d), "
                "answering single-pass",
                workflow.success, len(workflow.errors),
            )
            reply = await self._single_pass(message, state["request"], workflow.errors)
            reply.success = reply.success and workflow.success

        reply.workflow_metadata.update(_workflow_metadata(workflow))
        if state.get("planning_error"):
            reply.workflow_metadata["planning_error"] = state["planning_error"]
        return {"reply": reply}

    # -----------------------------------------------------------------------
    # Fallback & memory
    # -----------------------------------------------------------------------

    async def _single_pass(
        self,
        message: str,
        request: RequestContext,
        errors: tuple[str, ...],
    ) -> ChatReply:
        """Cached hybrid context + one LLM completion, or the apology."""
        try:
            context = await self._cache.get_or_compute(
                request.user_id,
                message,
                lambda: self._retriever.retrieve(message, request.user_id),
            )
            composed = await compose_reply(
                self._llm,
                message=message,
                response_type="guidance",
                context=context,
                prior_results={"workflow_errors": "; ".join(errors)} if errors else None,
                financial_context=request.financial_context,
            )
        except Exception:
            logger.exception("Single-pass answer failed, returning apology")
            return ChatReply(
                success=False,
                message=APOLOGY_MESSAGE,
                workflow_metadata={"single_pass": True},
            )

        reply = _reply_from_context(
            success=True, message=composed.message, context=context,
        )
        reply.workflow_metadata["single_pass"] = True
        return reply

    def _remember(
        self,
        message: str,
        request: RequestContext,
        reply: ChatReply,
        workflow: WorkflowResult | None,
    ) -> None:
        """Schedule memory writes for a good answer. Best-effort."""
        if self._memory is None or not reply.success:
            return
        try:
            if reply.confidence_score > self._min_memory_confidence:
                self._memory.remember(
                    request.user_id,
                    f"Q: {message}\nA: {reply.message}",
                    {
                        "type": "interaction",
                        "summary": message[:80],
                        "confidence": reply.confidence_score,
                    },
                )
            if workflow is not None and workflow.success and len(workflow.tasks) > 1:
                kinds = [t.kind.value for t in workflow.tasks]
                self._memory.remember(
                    request.user_id,
                    f"Workflow for '{message[:200]}': {' → '.join(kinds)}",
                    {
                        "type": "workflow",
                        "summary": f"{len(kinds)}-task workflow",
                        "tasks": kinds,
                    },
                )
        except Exception as e:
            logger.warning("Could not schedule memory write: %s", e)


# ---------------------------------------------------------------------------
# Internal Helpers
# ---------------------------------------------------------------------------


def _reply_from_context(
    success: bool, message: str, context: HybridContext,
) -> ChatReply:
    sources = [
        {
            "type": snippet.source,
            "title": snippet.title or _preview(snippet.content),
            "confidence": snippet.weighted_score,
        }
        for snippet in context.sources[:MAX_REPLY_SOURCES]
    ]
    return ChatReply(
        success=success,
        message=message,
        sources=sources,
        confidence_score=context.confidence_score,
        workflow_metadata={
            "context_summary": context.summary,
            "recommended_action": context.recommended_action,
        },
    )


def _workflow_metadata(workflow: WorkflowResult) -> dict[str, Any]:
    completed = [t.kind.value for t in workflow.tasks if t.status is TaskStatus.COMPLETED]
    failed = [t.kind.value for t in workflow.tasks if t.status is TaskStatus.FAILED]
    summary = f"Executed {len(workflow.tasks)} tasks: {len(completed)} completed"
    if failed:
        summary += f", {len(failed)} failed ({', '.join(failed)})"
    return {
        "tasks_executed": completed,
        "tasks_failed": failed,
        "processing_summary": summary,
        "workflow_success": workflow.success,
        "workflow_elapsed_ms": workflow.elapsed_ms,
        "errors": list(workflow.errors),
    }


def _preview(content: str, limit: int = 50) -> str:
    return content if len(content) <= limit else content[:limit] + "..."
