# =============================================================================
# Unit Tests — Response Composer
# =============================================================================
#
# Tests deterministic phrasing, context formatting and the prompt sent to
# a mock LLM provider.
# =============================================================================

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock

import pytest

from finassist.agents.composer import (
    OPENINGS,
    SYSTEM_PROMPTS,
    compose_reply,
    format_context,
    select_variant,
    variant_seed,
)
from finassist.agents.tasks import OperationPayload
from finassist.agents.workers import ExecutionWorker, OperationOutcome, PlannedOperation
from finassist.services.hybrid import HybridContext, RankedSnippet
from finassist.services.llm import LLMResponse


def _run(coro):
    """Helper to run async functions in sync tests."""
    return asyncio.run(coro)


def _mock_llm(content: str = "Keep 6 months of expenses [1].") -> AsyncMock:
    llm = AsyncMock()
    llm.complete.return_value = LLMResponse(
        content=content, model="test-model", input_tokens=120, output_tokens=30,
    )
    return llm


def _context() -> HybridContext:
    return HybridContext(
        sources=(
            RankedSnippet(
                source="knowledge", content="Emergency funds cover 3-6 months.",
                raw_similarity=0.9, title="Emergency funds", weighted_score=0.63,
            ),
            RankedSnippet(
                source="memory", content="Q: how much do I save?",
                raw_similarity=0.8, weighted_score=0.24,
            ),
        ),
        confidence_score=0.515,
        summary="Found 1 knowledge source + 1 reference from your history.",
    )


# ---------------------------------------------------------------------------
# Test: Variant Selection
# ---------------------------------------------------------------------------


class TestSelectVariant:
    def test_same_seed_same_template(self):
        templates = ("a", "b", "c")
        assert select_variant(7, templates) == select_variant(7, templates)

    def test_seed_indexes_modulo_length(self):
        assert select_variant(0, ("a", "b", "c")) == "a"
        assert select_variant(4, ("a", "b", "c")) == "b"

    def test_empty_templates_rejected(self):
        with pytest.raises(ValueError):
            select_variant(1, ())

    def test_seed_is_stable_for_a_message(self):
        assert variant_seed("Gastei 50 reais") == variant_seed("Gastei 50 reais")
        assert variant_seed("Gastei 50 reais") != variant_seed("Gastei 51 reais")


# ---------------------------------------------------------------------------
# Test: Context Formatting
# ---------------------------------------------------------------------------


class TestFormatContext:
    def test_numbered_with_source_labels(self):
        text = format_context(_context().sources)
        assert "[1] (knowledge: Emergency funds):" in text
        assert "[2] (your history):" in text
        assert "---" in text

    def test_long_content_truncated(self):
        snippet = RankedSnippet(source="knowledge", content="x" * 2000, raw_similarity=0.9)
        text = format_context([snippet])
        assert len(text) < 600
        assert text.endswith("...")


# ---------------------------------------------------------------------------
# Test: compose_reply
# ---------------------------------------------------------------------------


class TestComposeReply:
    def test_prompt_includes_message_results_and_context(self):
        llm = _mock_llm()

        class Outcome:
            def describe(self):
                return "Operations pending_confirmation: record_expense"

        _run(compose_reply(
            llm,
            message="Gastei 50 reais",
            response_type="action_result",
            context=_context(),
            prior_results={"financial_operation-1": Outcome()},
            financial_context={"balance": 100},
        ))

        kwargs = llm.complete.call_args.kwargs
        prompt = kwargs["messages"][0]["content"]
        assert kwargs["system"] == SYSTEM_PROMPTS["action_result"]
        assert "User message: Gastei 50 reais" in prompt
        assert "financial_operation-1: Operations pending_confirmation" in prompt
        assert '"balance": 100' in prompt
        assert "[1] (knowledge: Emergency funds)" in prompt

    def test_reply_starts_with_deterministic_opening(self):
        message = "Analise meus gastos"
        reply = _run(compose_reply(
            _mock_llm("Food is your top category."),
            message=message,
            response_type="analysis_report",
            context=_context(),
        ))
        opening = select_variant(variant_seed(message), OPENINGS["analysis_report"])
        assert reply.message == f"{opening} Food is your top category."
        assert reply.model == "test-model"
        assert reply.input_tokens == 120

    def test_pending_operations_do_not_claim_success(self):
        outcome = _run(ExecutionWorker().run(
            OperationPayload(
                user_message="Gastei 50 reais no supermercado",
                user_id="u1",
                operations=("record_expense",),
            ),
            {},
        ))
        assert outcome.status == "pending_confirmation"

        reply = _run(compose_reply(
            _mock_llm("Please confirm the R$50 expense."),
            message="Gastei 50 reais no supermercado",
            response_type="action_result",
            context=_context(),
            prior_results={"financial_operation-1": outcome},
        ))

        opening = select_variant(
            variant_seed("Gastei 50 reais no supermercado"), OPENINGS["action_pending"],
        )
        assert reply.message == f"{opening} Please confirm the R$50 expense."
        for claim in OPENINGS["action_result"]:
            assert not reply.message.startswith(claim)

    def test_completed_operations_use_success_opening(self):
        message = "Gastei 50 reais"
        outcome = OperationOutcome(
            status="completed",
            operations=[PlannedOperation(
                "record_expense", {"amount": 50.0}, status="completed",
            )],
        )
        reply = _run(compose_reply(
            _mock_llm("Expense recorded."),
            message=message,
            response_type="action_result",
            context=_context(),
            prior_results={"financial_operation-1": outcome},
        ))
        opening = select_variant(variant_seed(message), OPENINGS["action_result"])
        assert reply.message == f"{opening} Expense recorded."

    def test_failed_operations_get_no_opening(self):
        outcome = OperationOutcome(
            status="failed",
            operations=[PlannedOperation(
                "record_expense", {}, status="failed", error="ledger offline",
            )],
        )
        reply = _run(compose_reply(
            _mock_llm("I could not record that expense."),
            message="Gastei 50 reais",
            response_type="action_result",
            context=_context(),
            prior_results={"financial_operation-1": outcome},
        ))
        assert reply.message == "I could not record that expense."

    def test_unknown_response_type_uses_guidance_prompt(self):
        llm = _mock_llm()
        _run(compose_reply(llm, "hi", "mystery", HybridContext()))
        assert llm.complete.call_args.kwargs["system"] == SYSTEM_PROMPTS["guidance"]

    def test_empty_context_mentions_summary(self):
        llm = _mock_llm()
        _run(compose_reply(llm, "hi", "guidance", HybridContext()))
        prompt = llm.complete.call_args.kwargs["messages"][0]["content"]
        assert "Context: No relevant context found." in prompt

    def test_llm_error_propagates(self):
        llm = AsyncMock()
        llm.complete.side_effect = RuntimeError("API down")
        with pytest.raises(RuntimeError):
            _run(compose_reply(llm, "hi", "guidance", HybridContext()))
