# =============================================================================
# Workflow Planner — Request → Task Graph
# =============================================================================
#
# Turns a chat message (plus optional attachment / prior document analysis)
# into a list of Tasks whose depends_on edges form a DAG.
#
# RULES (applied in this fixed order):
#   1. attachment or document analysis → document_processing (high)
#   2. analysis-intent keyword, or a   → data_analysis (medium)
#      question about past spending
#   3. action-intent keyword, or an    → financial_operation (high),
#      expense/income statement         depends on document_processing
#   4. any financial_operation         → one validation (critical),
#                                        depends on every financial_operation
#   5. always                          → one communication (medium),
#                                        depends on every other task
#
# Because a task only ever depends on tasks emitted earlier in this order,
# the graph is acyclic by construction and communication is its only sink.
#
# DESIGN DECISION: Rule-based over LLM classification.
# Same trade-off as the capability classifier it grew from: zero latency,
# zero cost, deterministic and trivially testable. Keywords cover Portuguese
# (the product's language) and English, matched accent-insensitively.
# =============================================================================

from __future__ import annotations

import logging
import unicodedata
from dataclasses import dataclass, field
from typing import Any

from finassist.agents.tasks import (
    AnalysisPayload,
    Attachment,
    CommunicationPayload,
    DocumentPayload,
    OperationPayload,
    Task,
    TaskKind,
    TaskPriority,
    ValidationPayload,
    new_task_id,
)
from finassist.errors import PlanningError

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Intent Keywords
# ---------------------------------------------------------------------------
# All keywords are lower-case and accent-free; messages are folded the same
# way before matching (see _fold).
# ---------------------------------------------------------------------------

ANALYSIS_KEYWORDS: tuple[str, ...] = (
    "analyze", "analyse", "analysis", "analise", "analisar",
    "compare", "comparar", "report", "relatorio",
    "trend", "tendencia", "padrao", "pattern",
    "como esta", "how am i doing", "resumo", "summary",
)

ACTION_KEYWORDS: tuple[str, ...] = (
    "create", "crie", "criar", "record", "registre", "registrar",
    "import ", "importe", "importar", "organize", "organizar",
    "categorize", "categorizar", "transfer", "transferir", "transfira",
)

# "Gastei 50 reais" is an implicit record request; "Quanto gastei?" is not
STATEMENT_VERBS: tuple[str, ...] = (
    "gastei", "paguei", "comprei", "recebi", "spent", "paid", "received",
)

_QUESTION_OPENERS: tuple[str, ...] = (
    "quanto ", "quanta ", "qual ", "quais ", "quando ", "onde ", "como ",
    "o que ", "how ", "what ", "when ", "where ", "which ", "did ", "do ",
)

_FOCUS_KEYWORDS: tuple[tuple[str, tuple[str, ...]], ...] = (
    ("expenses", ("gast", "despesa", "expense", "spent", "spending", "paguei", "paid", "comprei")),
    ("income", ("receita", "entrada", "salario", "income", "salary", "recebi", "received")),
    ("balances", ("saldo", "conta", "balance", "account")),
)

_OPERATION_KEYWORDS: tuple[tuple[str, tuple[str, ...]], ...] = (
    ("create_transaction", ("transacao", "lancamento", "transaction")),
    ("record_expense", ("gastei", "paguei", "comprei", "spent", "paid")),
    ("record_income", ("recebi", "received")),
    ("import_statement", ("import ", "importe", "importar", "extrato", "statement")),
    ("categorize_transactions", ("categor",)),
    ("create_transfer", ("transfer",)),
)


# ---------------------------------------------------------------------------
# Data Structures
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class RequestContext:
    """Everything the planner may use besides the message text."""

    user_id: str = "anonymous"
    financial_context: dict[str, Any] = field(default_factory=dict)
    attachment: Attachment | None = None
    document_analysis: str | None = None


@dataclass(frozen=True)
class Intent:
    """Result of keyword inspection of a message."""

    needs_analysis: bool
    needs_execution: bool
    focus: str
    operations: tuple[str, ...]
    response_type: str


# ---------------------------------------------------------------------------
# Planner
# ---------------------------------------------------------------------------


class WorkflowPlanner:
    """Deterministic, keyword-driven task-graph builder."""

    def plan(
        self,
        message: str,
        has_attachment: bool = False,
        context: RequestContext | None = None,
    ) -> list[Task]:
        """
        Build the task graph for one request.

        Args:
            message: The user's chat message.
            has_attachment: Whether a file accompanies the message.
            context: User id, financial snapshot, attachment and any
                document analysis computed earlier in the conversation.

        Returns:
            Tasks in emission order; the last one is always communication.

        Raises:
            PlanningError: If the message is not text, or is empty with
                nothing attached.
        """
        context = context or RequestContext()
        if not isinstance(message, str):
            raise PlanningError(
                f"Message must be a string, got {type(message).__name__}"
            )
        has_document = (
            has_attachment
            or context.attachment is not None
            or bool(context.document_analysis)
        )
        if not message.strip() and not has_document:
            raise PlanningError("Empty message with no attachment")

        intent = analyze_intent(message)
        tasks: list[Task] = []

        document_task: Task | None = None
        if has_document:
            document_task = Task(
                id=new_task_id(TaskKind.DOCUMENT_PROCESSING),
                kind=TaskKind.DOCUMENT_PROCESSING,
                priority=TaskPriority.HIGH,
                payload=DocumentPayload(
                    attachment=context.attachment,
                    document_analysis=context.document_analysis,
                ),
            )
            tasks.append(document_task)

        if intent.needs_analysis:
            tasks.append(Task(
                id=new_task_id(TaskKind.DATA_ANALYSIS),
                kind=TaskKind.DATA_ANALYSIS,
                priority=TaskPriority.MEDIUM,
                payload=AnalysisPayload(
                    user_message=message,
                    focus=intent.focus,
                    financial_context=context.financial_context,
                ),
            ))

        if intent.needs_execution:
            tasks.append(Task(
                id=new_task_id(TaskKind.FINANCIAL_OPERATION),
                kind=TaskKind.FINANCIAL_OPERATION,
                priority=TaskPriority.HIGH,
                payload=OperationPayload(
                    user_message=message,
                    user_id=context.user_id,
                    operations=intent.operations,
                    financial_context=context.financial_context,
                ),
                depends_on=(
                    frozenset({document_task.id}) if document_task
                    else frozenset()
                ),
            ))

        operation_ids = tuple(
            t.id for t in tasks if t.kind is TaskKind.FINANCIAL_OPERATION
        )
        if operation_ids:
            tasks.append(Task(
                id=new_task_id(TaskKind.VALIDATION),
                kind=TaskKind.VALIDATION,
                priority=TaskPriority.CRITICAL,
                payload=ValidationPayload(operation_task_ids=operation_ids),
                depends_on=frozenset(operation_ids),
            ))

        tasks.append(self._communication_task(
            message, intent.response_type, context,
            depends_on=frozenset(t.id for t in tasks),
        ))

        logger.info(
            "Planned workflow: %s (message: '%s')",
            [f"{t.kind.value}({t.priority.value})" for t in tasks],
            message[:80],
        )
        return tasks

    def fallback_plan(
        self,
        message: str,
        context: RequestContext | None = None,
    ) -> list[Task]:
        """Single communication task — used when planning fails."""
        context = context or RequestContext()
        text = message if isinstance(message, str) else ""
        return [self._communication_task(text, "guidance", context)]

    @staticmethod
    def _communication_task(
        message: str,
        response_type: str,
        context: RequestContext,
        depends_on: frozenset[str] = frozenset(),
    ) -> Task:
        return Task(
            id=new_task_id(TaskKind.COMMUNICATION),
            kind=TaskKind.COMMUNICATION,
            priority=TaskPriority.MEDIUM,
            payload=CommunicationPayload(
                original_message=message,
                user_id=context.user_id,
                response_type=response_type,
                financial_context=context.financial_context,
            ),
            depends_on=depends_on,
        )


# ---------------------------------------------------------------------------
# Intent Analysis
# ---------------------------------------------------------------------------


def analyze_intent(message: str) -> Intent:
    """
    Keyword inspection of a chat message.

    Examples:
        "Gastei 50 reais no supermercado" → execution, record_expense
        "Analise meus gastos"             → analysis, focus=expenses
        "Quanto gastei este mês?"         → analysis, focus=expenses
    """
    # Padded so word-final keywords ("import ") also match at the end
    text = f" {_fold(message)} "

    statement = any(kw in text for kw in STATEMENT_VERBS)
    question = "?" in message or text.lstrip().startswith(_QUESTION_OPENERS)

    # A question about past spending asks for analysis, not a new record
    needs_analysis = (
        any(kw in text for kw in ANALYSIS_KEYWORDS) or (statement and question)
    )
    needs_execution = (
        any(kw in text for kw in ACTION_KEYWORDS) or (statement and not question)
    )

    focus = "general"
    for name, keywords in _FOCUS_KEYWORDS:
        if any(kw in text for kw in keywords):
            focus = name
            break

    operations = tuple(
        name for name, keywords in _OPERATION_KEYWORDS
        if needs_execution and any(kw in text for kw in keywords)
    )

    if needs_execution:
        response_type = "action_result"
    elif needs_analysis:
        response_type = "analysis_report"
    else:
        response_type = "guidance"

    return Intent(
        needs_analysis=needs_analysis,
        needs_execution=needs_execution,
        focus=focus,
        operations=operations,
        response_type=response_type,
    )


def _fold(text: str) -> str:
    """Lower-case and strip accents: 'Relatório' → 'relatorio'."""
    decomposed = unicodedata.normalize("NFKD", text.lower())
    return "".join(c for c in decomposed if not unicodedata.combining(c))
