# =============================================================================
# Knowledge Search Adapter — Trained Finance Knowledge Base
# =============================================================================
#
# Embeds the user's query, searches the shared knowledge collection, drops
# hits below the similarity threshold and returns RankedSnippets.
#
# Any failure (embedding API down, vector store unreachable) is raised as
# RetrievalFailure("knowledge", ...) so the hybrid retriever can continue
# with memory results only.
# =============================================================================

from __future__ import annotations

import asyncio
import logging

from finassist.errors import RetrievalFailure
from finassist.services.embedder import Embedder
from finassist.services.hybrid import RankedSnippet
from finassist.services.vectorstore import SnippetStore

logger = logging.getLogger(__name__)


class KnowledgeSearchAdapter:
    def __init__(
        self,
        store: SnippetStore,
        embedder: Embedder,
        min_similarity: float = 0.6,
    ) -> None:
        self._store = store
        self._embedder = embedder
        self._min_similarity = min_similarity

    async def search(self, query: str, max_results: int = 5) -> list[RankedSnippet]:
        """
        Top knowledge snippets for `query`, most similar first.

        Raises:
            RetrievalFailure: If embedding or vector search fails.
        """
        try:
            embedding = await asyncio.to_thread(self._embedder.embed_query, query)
            hits = await self._store.search(embedding, top_k=max_results)
        except Exception as e:
            raise RetrievalFailure("knowledge", str(e)) from e

        snippets = [
            RankedSnippet(
                source="knowledge",
                content=hit.content,
                title=hit.metadata.get("title") or None,
                raw_similarity=hit.similarity_score,
                metadata=hit.metadata,
            )
            for hit in hits
            if hit.similarity_score >= self._min_similarity
        ]

        logger.debug(
            "Knowledge search: %d hits, %d above threshold %.2f",
            len(hits), len(snippets), self._min_similarity,
        )
        return snippets
