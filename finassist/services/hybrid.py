# =============================================================================
# Hybrid Retrieval — Knowledge Base + User Memory, Ranked Together
# =============================================================================
#
# Two independent similarity searches feed one ranked context:
#
#   knowledge base (trained finance content, shared)  ──┐
#                                                       ├─▶ combine ─▶ HybridContext
#   user memory (per-user past interactions)          ──┘
#
# COMBINE ALGORITHM:
#   1. drop snippets with raw similarity < threshold
#   2. weighted = raw similarity × source weight (knowledge 0.7, memory 0.3)
#   3. concatenate, stable-sort descending by weighted score, keep top N (8)
#   4. confidence = mean(weighted) + min(count / 5, 1) × 0.1, clamped to [0, 1]
#   5. summary = per-source counts + up to 3 knowledge categories
#
# DESIGN DECISION: Stable sort for determinism.
# Python's sort is stable, so equal weighted scores keep input order
# (knowledge before memory, then each adapter's own ranking). Identical
# inputs always produce an identical ranking.
#
# DESIGN DECISION: Partial-result tolerance lives in the retriever, not the
# combiner. HybridRetriever runs both searches in parallel and turns a
# failing source into an empty list; the combiner is a pure function of
# its two inputs and never raises.
# =============================================================================

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any, Literal, Protocol

logger = logging.getLogger(__name__)

SnippetSource = Literal["knowledge", "memory"]

NO_CONTEXT_SUMMARY = "No relevant context found."


# ---------------------------------------------------------------------------
# Data Structures
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class RankedSnippet:
    """
    One search hit, as produced by a search adapter.

    weighted_score is 0.0 until the combiner assigns the source weight.
    """

    source: SnippetSource
    content: str
    raw_similarity: float  # 0.0–1.0, from the originating search
    title: str | None = None
    weighted_score: float = 0.0
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class HybridContext:
    """Merged, ranked context handed to the response composer."""

    sources: tuple[RankedSnippet, ...] = ()
    confidence_score: float = 0.0
    summary: str = NO_CONTEXT_SUMMARY
    recommended_action: str = ""
    knowledge_hits: int = 0
    memory_hits: int = 0

    @property
    def is_empty(self) -> bool:
        return not self.sources


# ---------------------------------------------------------------------------
# Combiner
# ---------------------------------------------------------------------------


class HybridRetrievalCombiner:
    """Pure merge of two ranked snippet lists into one HybridContext."""

    def __init__(
        self,
        knowledge_weight: float = 0.7,
        memory_weight: float = 0.3,
        min_similarity: float = 0.6,
        max_sources: int = 8,
        diversity_saturation: int = 5,
        diversity_bonus: float = 0.1,
    ) -> None:
        self._weights: dict[str, float] = {
            "knowledge": knowledge_weight,
            "memory": memory_weight,
        }
        self._min_similarity = min_similarity
        self._max_sources = max_sources
        self._diversity_saturation = diversity_saturation
        self._diversity_bonus = diversity_bonus

    def combine(
        self,
        knowledge_results: Sequence[RankedSnippet],
        memory_results: Sequence[RankedSnippet],
    ) -> HybridContext:
        """
        Merge both result lists into a weighted, ranked, capped context.

        Never raises: empty inputs give an empty context with
        confidence 0 and a "no relevant context" summary.
        """
        weighted = [
            self._weigh(snippet, "knowledge")
            for snippet in knowledge_results
            if snippet.raw_similarity >= self._min_similarity
        ] + [
            self._weigh(snippet, "memory")
            for snippet in memory_results
            if snippet.raw_similarity >= self._min_similarity
        ]

        if not weighted:
            return HybridContext(
                recommended_action=_recommend(has_knowledge=False, has_memory=False),
            )

        # Stable: ties keep input order
        weighted.sort(key=lambda s: s.weighted_score, reverse=True)
        retained = tuple(weighted[: self._max_sources])

        average = sum(s.weighted_score for s in retained) / len(retained)
        diversity = (
            min(len(retained) / self._diversity_saturation, 1.0)
            * self._diversity_bonus
        )
        confidence = round(min(max(average + diversity, 0.0), 1.0), 4)

        knowledge = [s for s in retained if s.source == "knowledge"]
        memory = [s for s in retained if s.source == "memory"]

        logger.debug(
            "Combined %d knowledge + %d memory snippets → %d retained, "
            "confidence=%.3f",
            len(knowledge_results), len(memory_results), len(retained),
            confidence,
        )

        return HybridContext(
            sources=retained,
            confidence_score=confidence,
            summary=_summarise(knowledge, memory),
            recommended_action=_recommend(
                has_knowledge=bool(knowledge), has_memory=bool(memory),
            ),
            knowledge_hits=len(knowledge),
            memory_hits=len(memory),
        )

    def _weigh(self, snippet: RankedSnippet, source: SnippetSource) -> RankedSnippet:
        return RankedSnippet(
            source=source,
            content=snippet.content,
            raw_similarity=snippet.raw_similarity,
            title=snippet.title,
            weighted_score=round(snippet.raw_similarity * self._weights[source], 6),
            metadata=snippet.metadata,
        )


# ---------------------------------------------------------------------------
# Retriever — parallel search with partial-failure tolerance
# ---------------------------------------------------------------------------


class KnowledgeSearch(Protocol):
    async def search(self, query: str, max_results: int) -> list[RankedSnippet]:
        ...


class MemorySearch(Protocol):
    async def search(
        self,
        query: str,
        user_id: str,
        max_results: int,
        threshold: float,
    ) -> list[RankedSnippet]:
        ...


class HybridRetriever:
    """Runs both searches concurrently and combines whatever came back."""

    def __init__(
        self,
        knowledge: KnowledgeSearch,
        memory: MemorySearch,
        combiner: HybridRetrievalCombiner,
        knowledge_max_results: int = 5,
        memory_max_results: int = 5,
        memory_threshold: float = 0.6,
    ) -> None:
        self._knowledge = knowledge
        self._memory = memory
        self._combiner = combiner
        self._knowledge_max_results = knowledge_max_results
        self._memory_max_results = memory_max_results
        self._memory_threshold = memory_threshold

    async def retrieve(self, query: str, user_id: str) -> HybridContext:
        """
        Search knowledge base and user memory in parallel and combine.

        A source that raises is treated as having returned nothing.
        """
        start = time.monotonic()

        knowledge_results, memory_results = await asyncio.gather(
            self._knowledge.search(query, self._knowledge_max_results),
            self._memory.search(
                query, user_id, self._memory_max_results, self._memory_threshold,
            ),
            return_exceptions=True,
        )

        if isinstance(knowledge_results, BaseException):
            logger.warning(
                "Knowledge search failed, continuing without it: %s",
                knowledge_results,
            )
            knowledge_results = []
        if isinstance(memory_results, BaseException):
            logger.warning(
                "Memory search failed, continuing without it: %s",
                memory_results,
            )
            memory_results = []

        context = self._combiner.combine(knowledge_results, memory_results)

        logger.info(
            "Hybrid retrieval: %d knowledge + %d memory hits, "
            "confidence=%.3f, %dms",
            context.knowledge_hits, context.memory_hits,
            context.confidence_score,
            int((time.monotonic() - start) * 1000),
        )
        return context


# ---------------------------------------------------------------------------
# Internal Helpers
# ---------------------------------------------------------------------------


def _summarise(
    knowledge: Sequence[RankedSnippet],
    memory: Sequence[RankedSnippet],
) -> str:
    """
    Example:
        "Found 3 knowledge sources (budgeting, credit cards) + 1 reference
        from your history."
    """
    if not knowledge and not memory:
        return NO_CONTEXT_SUMMARY

    parts = []
    if knowledge:
        categories: list[str] = []
        for snippet in knowledge:
            category = snippet.metadata.get("category")
            if category and category not in categories:
                categories.append(str(category))
        part = f"{len(knowledge)} knowledge source{'s' if len(knowledge) != 1 else ''}"
        if categories:
            part += f" ({', '.join(categories[:3])})"
        parts.append(part)
    if memory:
        parts.append(
            f"{len(memory)} reference{'s' if len(memory) != 1 else ''} "
            "from your history"
        )
    return f"Found {' + '.join(parts)}."


def _recommend(has_knowledge: bool, has_memory: bool) -> str:
    if has_knowledge and has_memory:
        return "Answer from specialised knowledge and the user's own history."
    if has_knowledge:
        return "Answer from specialised financial knowledge."
    if has_memory:
        return "Answer from the user's personal history."
    return "Ask for more details before giving a personalised recommendation."
