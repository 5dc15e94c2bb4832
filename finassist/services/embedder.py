# =============================================================================
# Embedding Service — Query & Memory Vectors (Provider-Agnostic)
# =============================================================================
#
# Generates vector embeddings using any OpenAI-compatible embedding API.
# Used by the knowledge and memory search adapters to embed the user's
# query, and by the memory adapter to embed interactions it stores.
#
# DESIGN DECISION: OpenAI SDK with configurable base_url.
# Most providers (Alibaba Cloud, DeepSeek, etc.) expose OpenAI-compatible
# embedding endpoints; base_url selects among them with zero code changes.
#
# DESIGN DECISION: Sync client, called via asyncio.to_thread() by the
# adapters. Same split as the vector store: the SDK call is blocking, the
# callers are async.
#
# DESIGN DECISION: Lazy client. Constructing OpenAIEmbedder never touches
# the network or validates the key, so the app can start (and serve the
# degraded no-context path) without embedding credentials.
# =============================================================================

from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import Protocol

from openai import OpenAI

logger = logging.getLogger(__name__)


class Embedder(Protocol):
    def embed(self, texts: Sequence[str]) -> list[list[float]]:
        ...

    def embed_query(self, text: str) -> list[float]:
        ...


class OpenAIEmbedder:
    """Embedding client for OpenAI-compatible APIs."""

    def __init__(
        self,
        api_key: str | None,
        model: str = "text-embedding-3-small",
        dimensions: int | None = 1536,
        base_url: str | None = None,
    ) -> None:
        self._api_key = api_key
        self._model = model
        self._dimensions = dimensions
        self._base_url = base_url
        self._client: OpenAI | None = None

    def _get_client(self) -> OpenAI:
        """Lazily initialize and cache the embedding client."""
        if self._client is None:
            if not self._api_key:
                raise ValueError(
                    "No API key configured for embeddings. "
                    "Set OPENAI_API_KEY or LLM_API_KEY in .env"
                )
            client_kwargs: dict = {"api_key": self._api_key}
            if self._base_url:
                client_kwargs["base_url"] = self._base_url
            self._client = OpenAI(**client_kwargs)
            logger.info(
                "Initialized embedding client (model=%s, base_url=%s)",
                self._model,
                self._base_url or "https://api.openai.com/v1",
            )
        return self._client

    def embed(self, texts: Sequence[str]) -> list[list[float]]:
        """
        Embed a batch of texts, returned in input order.

        Raises:
            ValueError: If no API key is configured.
            openai.APIError: If the API call fails.
        """
        if not texts:
            return []

        create_kwargs: dict = {"model": self._model, "input": list(texts)}
        if self._dimensions:
            create_kwargs["dimensions"] = self._dimensions

        response = self._get_client().embeddings.create(**create_kwargs)

        # Sort by index: order mismatches would silently corrupt results
        return [
            item.embedding
            for item in sorted(response.data, key=lambda x: x.index)
        ]

    def embed_query(self, text: str) -> list[float]:
        return self.embed([text])[0]
