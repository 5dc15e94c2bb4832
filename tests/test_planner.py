# =============================================================================
# Unit Tests — Workflow Planner
# =============================================================================
#
# Tests the keyword-driven planner: which tasks are emitted for a message,
# their priorities, and the dependency edges between them.
# Pure functions — no mocks needed.
# =============================================================================

from __future__ import annotations

import pytest

from finassist.agents.planner import RequestContext, WorkflowPlanner, analyze_intent
from finassist.agents.tasks import (
    Attachment,
    CommunicationPayload,
    Task,
    TaskKind,
    TaskPriority,
    TaskStatus,
)
from finassist.errors import PlanningError


def _by_kind(tasks: list[Task], kind: TaskKind) -> list[Task]:
    return [t for t in tasks if t.kind is kind]


def _kinds(tasks: list[Task]) -> list[TaskKind]:
    return [t.kind for t in tasks]


# ---------------------------------------------------------------------------
# Test: Intent Analysis
# ---------------------------------------------------------------------------


class TestAnalyzeIntent:
    """Tests for keyword inspection of messages."""

    def test_expense_statement_is_action(self):
        intent = analyze_intent("Gastei 50 reais no supermercado")
        assert intent.needs_execution
        assert not intent.needs_analysis
        assert intent.operations == ("record_expense",)
        assert intent.response_type == "action_result"

    def test_analysis_request_with_expense_focus(self):
        intent = analyze_intent("Analise meus gastos")
        assert intent.needs_analysis
        assert not intent.needs_execution
        assert intent.focus == "expenses"
        assert intent.response_type == "analysis_report"

    def test_accents_are_ignored(self):
        intent = analyze_intent("Quero um RELATÓRIO do meu salário")
        assert intent.needs_analysis
        assert intent.focus == "income"

    def test_plain_question_is_guidance(self):
        intent = analyze_intent("How can I build an emergency fund?")
        assert not intent.needs_analysis
        assert not intent.needs_execution
        assert intent.response_type == "guidance"
        assert intent.focus == "general"

    def test_import_does_not_match_important(self):
        intent = analyze_intent("What is important when saving?")
        assert not intent.needs_execution

    def test_import_at_end_of_message(self):
        intent = analyze_intent("please import")
        assert intent.needs_execution
        assert intent.operations == ("import_statement",)

    @pytest.mark.parametrize("message", [
        "Quanto gastei este mês?",
        "Quanto gastei em 2024",
        "How much have I spent on food?",
    ])
    def test_spending_question_is_analysis_not_action(self, message):
        intent = analyze_intent(message)
        assert not intent.needs_execution
        assert intent.needs_analysis
        assert intent.operations == ()
        assert intent.focus == "expenses"
        assert intent.response_type == "analysis_report"

    def test_explicit_command_in_question_is_action(self):
        intent = analyze_intent("Pode registrar que paguei 80 reais?")
        assert intent.needs_execution
        assert "record_expense" in intent.operations

    def test_execution_wins_response_type(self):
        intent = analyze_intent("Importe o extrato e analise os gastos")
        assert intent.needs_analysis and intent.needs_execution
        assert intent.response_type == "action_result"


# ---------------------------------------------------------------------------
# Test: Plan Shape
# ---------------------------------------------------------------------------


class TestPlan:
    """Tests for the emitted task graph."""

    def test_expense_message_plans_operation_validation_communication(self):
        tasks = WorkflowPlanner().plan("Gastei 50 reais no supermercado")

        assert _kinds(tasks) == [
            TaskKind.FINANCIAL_OPERATION,
            TaskKind.VALIDATION,
            TaskKind.COMMUNICATION,
        ]
        operation, validation, communication = tasks
        assert operation.priority is TaskPriority.HIGH
        assert operation.depends_on == frozenset()
        assert validation.priority is TaskPriority.CRITICAL
        assert validation.depends_on == {operation.id}
        assert validation.payload.operation_task_ids == (operation.id,)
        assert communication.priority is TaskPriority.MEDIUM
        assert communication.depends_on == {operation.id, validation.id}

    def test_attachment_with_import_and_analysis_plans_five_tasks(self):
        context = RequestContext(
            user_id="u1",
            attachment=Attachment("extrato.csv", b"date,amount\n", "text/csv"),
        )
        tasks = WorkflowPlanner().plan(
            "Importe este extrato e analise meus gastos",
            has_attachment=True,
            context=context,
        )

        assert _kinds(tasks) == [
            TaskKind.DOCUMENT_PROCESSING,
            TaskKind.DATA_ANALYSIS,
            TaskKind.FINANCIAL_OPERATION,
            TaskKind.VALIDATION,
            TaskKind.COMMUNICATION,
        ]
        document = _by_kind(tasks, TaskKind.DOCUMENT_PROCESSING)[0]
        analysis = _by_kind(tasks, TaskKind.DATA_ANALYSIS)[0]
        operation = _by_kind(tasks, TaskKind.FINANCIAL_OPERATION)[0]
        communication = tasks[-1]

        assert document.priority is TaskPriority.HIGH
        assert document.payload.attachment is context.attachment
        assert analysis.depends_on == frozenset()
        assert operation.depends_on == {document.id}
        assert communication.depends_on == {t.id for t in tasks[:-1]}

    def test_spending_question_plans_no_operation_or_validation(self):
        tasks = WorkflowPlanner().plan("Quanto gastei este mês?")
        assert _kinds(tasks) == [TaskKind.DATA_ANALYSIS, TaskKind.COMMUNICATION]
        assert tasks[-1].payload.response_type == "analysis_report"

    def test_question_plans_single_communication_task(self):
        tasks = WorkflowPlanner().plan("What is a good savings rate?")
        assert _kinds(tasks) == [TaskKind.COMMUNICATION]
        assert tasks[0].depends_on == frozenset()
        assert tasks[0].payload.response_type == "guidance"

    def test_document_analysis_counts_as_document(self):
        context = RequestContext(document_analysis="Statement with 12 rows")
        tasks = WorkflowPlanner().plan("", context=context)
        assert _kinds(tasks) == [TaskKind.DOCUMENT_PROCESSING, TaskKind.COMMUNICATION]
        assert tasks[0].payload.document_analysis == "Statement with 12 rows"

    def test_communication_is_the_only_sink(self):
        context = RequestContext(
            attachment=Attachment("a.csv", b"x", "text/csv"),
        )
        tasks = WorkflowPlanner().plan(
            "Registre e compare meus gastos", has_attachment=True, context=context,
        )
        referenced = set().union(*(t.depends_on for t in tasks))
        sinks = [t for t in tasks if t.id not in referenced]
        assert [t.kind for t in sinks] == [TaskKind.COMMUNICATION]

    def test_dependencies_point_backwards_only(self):
        tasks = WorkflowPlanner().plan(
            "Crie uma transacao e analise o saldo", has_attachment=True,
        )
        seen: set[str] = set()
        for task in tasks:
            assert task.depends_on <= seen
            seen.add(task.id)

    def test_all_tasks_start_pending_with_unique_ids(self):
        tasks = WorkflowPlanner().plan("Gastei 20 e analise meus gastos")
        assert all(t.status is TaskStatus.PENDING for t in tasks)
        assert len({t.id for t in tasks}) == len(tasks)

    def test_payloads_carry_user_and_financial_context(self):
        context = RequestContext(user_id="u42", financial_context={"balance": 10})
        tasks = WorkflowPlanner().plan("Paguei a conta de luz", context=context)
        operation = _by_kind(tasks, TaskKind.FINANCIAL_OPERATION)[0]
        assert operation.payload.user_id == "u42"
        assert operation.payload.financial_context == {"balance": 10}
        assert operation.payload.operations == ("record_expense",)
        communication = tasks[-1]
        assert isinstance(communication.payload, CommunicationPayload)
        assert communication.payload.user_id == "u42"
        assert communication.payload.response_type == "action_result"


# ---------------------------------------------------------------------------
# Test: Invalid Input & Fallback
# ---------------------------------------------------------------------------


class TestPlanningErrors:
    def test_empty_message_without_attachment_raises(self):
        with pytest.raises(PlanningError):
            WorkflowPlanner().plan("   ")

    def test_non_string_message_raises(self):
        with pytest.raises(PlanningError):
            WorkflowPlanner().plan(None)  # type: ignore[arg-type]

    def test_empty_message_with_attachment_is_accepted(self):
        tasks = WorkflowPlanner().plan("", has_attachment=True)
        assert _kinds(tasks) == [TaskKind.DOCUMENT_PROCESSING, TaskKind.COMMUNICATION]

    def test_fallback_plan_is_single_communication_task(self):
        context = RequestContext(user_id="u1")
        tasks = WorkflowPlanner().fallback_plan("hello", context)
        assert len(tasks) == 1
        assert tasks[0].kind is TaskKind.COMMUNICATION
        assert tasks[0].payload.user_id == "u1"
        assert tasks[0].payload.response_type == "guidance"

    def test_fallback_plan_tolerates_non_string(self):
        tasks = WorkflowPlanner().fallback_plan(None)  # type: ignore[arg-type]
        assert tasks[0].payload.original_message == ""
