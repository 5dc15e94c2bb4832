# =============================================================================
# Vector Store Abstraction — Snippet Similarity Search
# =============================================================================
#
# Both knowledge sources are collections of text snippets with embeddings:
#   - the trained knowledge base (finance articles, FAQs; shared)
#   - the per-user memory store (past interactions; filtered by user_id)
#
# This module provides the storage protocol and a ChromaDB implementation.
# The search adapters (knowledge.py, memory.py) add thresholds, mapping to
# RankedSnippet and error containment on top.
#
# DESIGN DECISION: Protocol (structural typing) over ABC.
# Adapters accept anything with add() / search(); tests substitute an
# in-process Chroma client or a plain fake.
#
# DESIGN DECISION: Mixed sync/async interface.
# - add() is sync → called from a worker thread by the memory adapter
# - search() is async → wraps the sync Chroma client in asyncio.to_thread()
#   so a search never blocks the event loop.
# =============================================================================

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Protocol

import chromadb

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Data Structures
# ---------------------------------------------------------------------------


@dataclass
class StoredSnippet:
    """A single hit from vector similarity search."""

    snippet_id: str
    content: str
    similarity_score: float  # 0.0–1.0 (cosine similarity, higher = more relevant)
    metadata: dict[str, Any] = field(default_factory=dict)


# ---------------------------------------------------------------------------
# Protocol Definition
# ---------------------------------------------------------------------------


class SnippetStore(Protocol):
    def add(
        self,
        ids: list[str],
        contents: list[str],
        embeddings: list[list[float]],
        metadatas: list[dict[str, Any]],
    ) -> None:
        """Store snippets with their embeddings (upsert on matching ids)."""
        ...

    async def search(
        self,
        query_embedding: list[float],
        top_k: int = 5,
        where: dict[str, Any] | None = None,
    ) -> list[StoredSnippet]:
        """Most similar snippets first, optionally filtered by metadata."""
        ...


# ---------------------------------------------------------------------------
# Implementation: ChromaDB
# ---------------------------------------------------------------------------


class ChromaSnippetStore:
    """
    ChromaDB-backed snippet store, one collection per knowledge source.

    ChromaDB supports both in-process and client/server modes:
    - In-process (default): No extra infra, data stored in memory
    - Client/server: Pass chroma_url for a Docker deployment
    """

    def __init__(
        self,
        collection_name: str,
        chroma_url: str | None = None,
        client: Any = None,
    ) -> None:
        if client is not None:
            self._client = client
        elif chroma_url:
            self._client = chromadb.HttpClient(host=chroma_url)
        else:
            self._client = chromadb.Client()

        # Cosine space so 1 - distance is a similarity in [0, 1]
        self._collection = self._client.get_or_create_collection(
            name=collection_name,
            metadata={"hnsw:space": "cosine"},
        )
        self.collection_name = collection_name

    def add(
        self,
        ids: list[str],
        contents: list[str],
        embeddings: list[list[float]],
        metadatas: list[dict[str, Any]],
    ) -> None:
        self._collection.upsert(
            ids=ids,
            documents=contents,
            embeddings=embeddings,
            # Chroma rejects empty metadata dicts; None is accepted
            metadatas=[_sanitise_chroma_metadata(m) or None for m in metadatas],
        )
        logger.info(
            "Stored %d snippets in ChromaDB collection '%s'",
            len(ids), self.collection_name,
        )

    async def search(
        self,
        query_embedding: list[float],
        top_k: int = 5,
        where: dict[str, Any] | None = None,
    ) -> list[StoredSnippet]:
        """
        Similarity search in ChromaDB.

        The Python client is synchronous; the query runs in a worker thread.
        """

        def _sync_search() -> list[StoredSnippet]:
            results = self._collection.query(
                query_embeddings=[query_embedding],
                n_results=top_k,
                where=where or None,
                include=["documents", "metadatas", "distances"],
            )

            hits: list[StoredSnippet] = []
            if not (results and results["ids"] and results["ids"][0]):
                return hits

            for i, chroma_id in enumerate(results["ids"][0]):
                distance = (
                    results["distances"][0][i] if results["distances"] else 0.0
                )
                metadata = (
                    results["metadatas"][0][i] if results["metadatas"] else {}
                )
                content = (
                    results["documents"][0][i] if results["documents"] else ""
                )
                hits.append(StoredSnippet(
                    snippet_id=chroma_id,
                    content=content or "",
                    # Cosine distance is in [0, 2]; clamp similarity to [0, 1]
                    similarity_score=round(max(0.0, 1.0 - distance), 4),
                    metadata=dict(metadata or {}),
                ))
            return hits

        return await asyncio.to_thread(_sync_search)


# ---------------------------------------------------------------------------
# Internal Helpers
# ---------------------------------------------------------------------------


def _sanitise_chroma_metadata(metadata: dict[str, Any]) -> dict[str, Any]:
    """
    ChromaDB metadata values must be str, int, float, or bool:
    - list → comma-separated string
    - None → empty string
    - anything else → str()
    """
    sanitised: dict[str, Any] = {}
    for key, value in metadata.items():
        if value is None:
            sanitised[key] = ""
        elif isinstance(value, list):
            sanitised[key] = ",".join(str(v) for v in value)
        elif isinstance(value, (str, int, float, bool)):
            sanitised[key] = value
        else:
            sanitised[key] = str(value)
    return sanitised
