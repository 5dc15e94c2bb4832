# =============================================================================
# Unit Tests — Hybrid Retrieval (combiner + parallel retriever)
# =============================================================================
#
# The combiner is pure, so most tests feed it hand-built RankedSnippets.
# The retriever tests use AsyncMock search adapters.
# =============================================================================

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock

import pytest

from finassist.errors import RetrievalFailure
from finassist.services.hybrid import (
    NO_CONTEXT_SUMMARY,
    HybridRetrievalCombiner,
    HybridRetriever,
    RankedSnippet,
)


def _run(coro):
    """Helper to run async functions in sync tests."""
    return asyncio.run(coro)


def _knowledge(similarity: float, content: str = "", category: str | None = None):
    metadata = {"category": category} if category else {}
    return RankedSnippet(
        source="knowledge",
        content=content or f"knowledge {similarity}",
        raw_similarity=similarity,
        title=f"Article {similarity}",
        metadata=metadata,
    )


def _memory(similarity: float, content: str = ""):
    return RankedSnippet(
        source="memory",
        content=content or f"memory {similarity}",
        raw_similarity=similarity,
    )


# ---------------------------------------------------------------------------
# Test: Combiner
# ---------------------------------------------------------------------------


class TestCombiner:
    def test_weighted_ranking_and_confidence(self):
        combiner = HybridRetrievalCombiner()
        context = combiner.combine(
            [_knowledge(0.9), _knowledge(0.75), _knowledge(0.5)],
            [_memory(0.8), _memory(0.65)],
        )

        # 0.5 is below the 0.6 threshold
        scores = [s.weighted_score for s in context.sources]
        assert scores == pytest.approx([0.63, 0.525, 0.24, 0.195])
        assert [s.source for s in context.sources] == [
            "knowledge", "knowledge", "memory", "memory",
        ]
        # avg 0.3975 + diversity min(4/5, 1) * 0.1
        assert context.confidence_score == pytest.approx(0.4775)
        assert context.knowledge_hits == 2
        assert context.memory_hits == 2

    def test_memory_can_outrank_weak_knowledge(self):
        combiner = HybridRetrievalCombiner(knowledge_weight=0.5, memory_weight=0.5)
        context = combiner.combine([_knowledge(0.7)], [_memory(0.95)])
        assert [s.source for s in context.sources] == ["memory", "knowledge"]

    def test_empty_inputs_give_empty_context(self):
        context = HybridRetrievalCombiner().combine([], [])
        assert context.is_empty
        assert context.confidence_score == 0.0
        assert context.summary == NO_CONTEXT_SUMMARY
        assert context.recommended_action

    def test_everything_below_threshold_gives_empty_context(self):
        context = HybridRetrievalCombiner().combine([_knowledge(0.59)], [_memory(0.1)])
        assert context.is_empty
        assert context.confidence_score == 0.0

    def test_cap_keeps_highest_scores(self):
        combiner = HybridRetrievalCombiner(max_sources=3)
        knowledge = [_knowledge(0.6 + i * 0.05) for i in range(6)]
        context = combiner.combine(knowledge, [])
        assert len(context.sources) == 3
        assert context.sources[0].raw_similarity == pytest.approx(0.85)

    def test_ties_keep_input_order(self):
        context = HybridRetrievalCombiner().combine(
            [_knowledge(0.8, "first"), _knowledge(0.8, "second")], [],
        )
        assert [s.content for s in context.sources] == ["first", "second"]

    def test_confidence_is_clamped_to_one(self):
        combiner = HybridRetrievalCombiner(knowledge_weight=1.0, diversity_bonus=0.5)
        context = combiner.combine([_knowledge(1.0)] * 5, [])
        assert context.confidence_score == 1.0

    def test_diversity_bonus_saturates(self):
        combiner = HybridRetrievalCombiner(knowledge_weight=1.0, max_sources=10)
        five = combiner.combine([_knowledge(0.8)] * 5, [])
        ten = combiner.combine([_knowledge(0.8)] * 10, [])
        assert five.confidence_score == pytest.approx(0.9)
        assert ten.confidence_score == pytest.approx(0.9)

    def test_input_snippets_are_not_mutated(self):
        snippet = _knowledge(0.9)
        HybridRetrievalCombiner().combine([snippet], [])
        assert snippet.weighted_score == 0.0

    def test_summary_lists_counts_and_categories(self):
        context = HybridRetrievalCombiner().combine(
            [_knowledge(0.9, category="budgeting"), _knowledge(0.8, category="credit")],
            [_memory(0.9)],
        )
        assert context.summary == (
            "Found 2 knowledge sources (budgeting, credit) + "
            "1 reference from your history."
        )

    def test_recommended_action_depends_on_sources_present(self):
        combiner = HybridRetrievalCombiner()
        both = combiner.combine([_knowledge(0.9)], [_memory(0.9)])
        knowledge_only = combiner.combine([_knowledge(0.9)], [])
        memory_only = combiner.combine([], [_memory(0.9)])
        actions = {
            both.recommended_action,
            knowledge_only.recommended_action,
            memory_only.recommended_action,
        }
        assert len(actions) == 3


# ---------------------------------------------------------------------------
# Test: Retriever
# ---------------------------------------------------------------------------


class TestRetriever:
    def _retriever(self, knowledge_results, memory_results):
        knowledge = AsyncMock()
        memory = AsyncMock()
        if isinstance(knowledge_results, Exception):
            knowledge.search.side_effect = knowledge_results
        else:
            knowledge.search.return_value = knowledge_results
        if isinstance(memory_results, Exception):
            memory.search.side_effect = memory_results
        else:
            memory.search.return_value = memory_results
        retriever = HybridRetriever(knowledge, memory, HybridRetrievalCombiner())
        return retriever, knowledge, memory

    def test_both_sources_combined(self):
        retriever, knowledge, memory = self._retriever(
            [_knowledge(0.9)], [_memory(0.8)],
        )
        context = _run(retriever.retrieve("emergency fund", "u1"))

        assert context.knowledge_hits == 1 and context.memory_hits == 1
        knowledge.search.assert_awaited_once_with("emergency fund", 5)
        memory.search.assert_awaited_once_with("emergency fund", "u1", 5, 0.6)

    def test_knowledge_failure_keeps_memory(self):
        retriever, _, _ = self._retriever(
            RetrievalFailure("knowledge", "chroma down"), [_memory(0.8)],
        )
        context = _run(retriever.retrieve("q", "u1"))
        assert [s.source for s in context.sources] == ["memory"]

    def test_memory_failure_keeps_knowledge(self):
        retriever, _, _ = self._retriever(
            [_knowledge(0.8)], RetrievalFailure("memory", "timeout"),
        )
        context = _run(retriever.retrieve("q", "u1"))
        assert [s.source for s in context.sources] == ["knowledge"]

    def test_both_failing_gives_empty_context(self):
        retriever, _, _ = self._retriever(
            RetrievalFailure("knowledge", "x"), RuntimeError("y"),
        )
        context = _run(retriever.retrieve("q", "u1"))
        assert context.is_empty
        assert context.summary == NO_CONTEXT_SUMMARY
