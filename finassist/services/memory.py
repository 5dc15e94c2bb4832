# =============================================================================
# Memory Search Adapter — Per-User Interaction Memory
# =============================================================================
#
# Two operations over the user-memory collection:
#
#   search(query, user_id, max_results, threshold)
#       Similarity search restricted to one user's memories.
#
#   store(user_id, content, metadata)
#       Persist a successful interaction so later answers can be
#       personalised. Best-effort: failures are logged, never raised.
#
#   remember(user_id, content, metadata)
#       Fire-and-forget wrapper around store(): schedules it as a
#       background task and returns immediately.
#
# DESIGN DECISION: Background tasks are kept in a set until they finish.
# The event loop only holds weak references to tasks; without a strong
# reference a pending store could be garbage-collected mid-flight.
# =============================================================================

from __future__ import annotations

import asyncio
import logging
import uuid
from datetime import UTC, datetime
from typing import Any

from finassist.errors import RetrievalFailure
from finassist.services.embedder import Embedder
from finassist.services.hybrid import RankedSnippet
from finassist.services.vectorstore import SnippetStore

logger = logging.getLogger(__name__)


class MemorySearchAdapter:
    def __init__(self, store: SnippetStore, embedder: Embedder) -> None:
        self._store = store
        self._embedder = embedder
        self._background: set[asyncio.Task] = set()

    async def search(
        self,
        query: str,
        user_id: str,
        max_results: int = 5,
        threshold: float = 0.6,
    ) -> list[RankedSnippet]:
        """
        The user's most relevant memories for `query`.

        Raises:
            RetrievalFailure: If embedding or vector search fails.
        """
        try:
            embedding = await asyncio.to_thread(self._embedder.embed_query, query)
            hits = await self._store.search(
                embedding, top_k=max_results, where={"user_id": user_id},
            )
        except Exception as e:
            raise RetrievalFailure("memory", str(e)) from e

        return [
            RankedSnippet(
                source="memory",
                content=hit.content,
                title=hit.metadata.get("summary") or None,
                raw_similarity=hit.similarity_score,
                metadata=hit.metadata,
            )
            for hit in hits
            if hit.similarity_score >= threshold
        ]

    async def store(
        self,
        user_id: str,
        content: str,
        metadata: dict[str, Any] | None = None,
    ) -> str | None:
        """
        Persist one memory. Returns its id, or None if storing failed.
        """
        memory_id = f"mem-{uuid.uuid4().hex}"
        record = {
            **(metadata or {}),
            "user_id": user_id,
            "created_at": datetime.now(UTC).isoformat(),
        }
        try:
            embedding = await asyncio.to_thread(self._embedder.embed_query, content)
            await asyncio.to_thread(
                self._store.add, [memory_id], [content], [embedding], [record],
            )
        except Exception as e:
            logger.warning("Failed to store memory for user %s: %s", user_id, e)
            return None

        logger.info("Stored memory %s for user %s", memory_id, user_id)
        return memory_id

    def remember(
        self,
        user_id: str,
        content: str,
        metadata: dict[str, Any] | None = None,
    ) -> asyncio.Task:
        """Schedule store() in the background and return immediately."""
        task = asyncio.create_task(self.store(user_id, content, metadata))
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return task

    @property
    def pending_writes(self) -> int:
        return len(self._background)
