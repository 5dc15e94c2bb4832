# =============================================================================
# Context Cache — Memoised Hybrid Retrieval per (User, Query)
# =============================================================================
#
# Hybrid retrieval costs two embedding calls and two vector searches. Chat
# users often repeat or rephrase the same question within minutes, so the
# combined context is cached per user and normalised query.
#
# KEY: "<user_id>:<normalised query>" where normalisation lower-cases,
# strips punctuation, collapses whitespace and truncates to a bounded prefix
# ("Quanto gastei?" and "quanto   gastei" share an entry).
#
# POLICY:
#   - hit with age <= TTL   → cached value, compute_fn not called
#   - miss or stale hit     → compute_fn, then store (replacing the stale entry)
#   - size > max_entries    → evict the oldest INSERTED entry (FIFO, not LRU)
#
# DESIGN DECISION: Single-writer discipline.
# The cache is the only object shared across concurrent requests from
# different users. Inserts and evictions happen under an asyncio.Lock;
# lookups read the OrderedDict without locking (a single dict get is atomic
# on the event loop). compute_fn runs OUTSIDE the lock so one slow retrieval
# never blocks other users. Two concurrent misses on the same key both
# compute; the later store wins — the values are equivalent.
#
# DESIGN DECISION: Entries are never updated in place. HybridContext is a
# frozen dataclass, and a refresh deletes the old entry and re-inserts, so
# a refreshed key moves to the back of the FIFO queue.
# =============================================================================

from __future__ import annotations

import asyncio
import logging
import re
import time
from collections import OrderedDict
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

from finassist.services.hybrid import HybridContext

logger = logging.getLogger(__name__)

_PUNCTUATION = re.compile(r"[^\w\s]")
_WHITESPACE = re.compile(r"\s+")


@dataclass(frozen=True)
class CacheEntry:
    key: str
    value: HybridContext
    created_at: float


def normalise_query(query: str, max_length: int = 100) -> str:
    """
    Canonical form of a query for cache keys.

    Example:
        normalise_query("  Quanto GASTEI, este mês?! ") → "quanto gastei este mês"
    """
    text = _PUNCTUATION.sub("", query.lower())
    text = _WHITESPACE.sub(" ", text).strip()
    return text[:max_length]


class ContextCache:
    """Bounded, TTL-checked, FIFO-evicting cache of HybridContext values."""

    def __init__(
        self,
        ttl_seconds: float = 300.0,
        max_entries: int = 50,
        key_length: int = 100,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._ttl = ttl_seconds
        self._max_entries = max_entries
        self._key_length = key_length
        self._clock = clock
        self._entries: OrderedDict[str, CacheEntry] = OrderedDict()
        self._write_lock = asyncio.Lock()
        self.hits = 0
        self.misses = 0

    def key_for(self, user_id: str, raw_query: str) -> str:
        return f"{user_id}:{normalise_query(raw_query, self._key_length)}"

    async def get_or_compute(
        self,
        user_id: str,
        raw_query: str,
        compute_fn: Callable[[], Awaitable[HybridContext]],
    ) -> HybridContext:
        """
        Return the cached context for (user_id, raw_query), computing and
        storing it on a miss or when the cached entry is older than the TTL.

        Exceptions from compute_fn propagate and nothing is stored.
        """
        key = self.key_for(user_id, raw_query)
        entry = self._entries.get(key)

        if entry is not None and self._clock() - entry.created_at <= self._ttl:
            self.hits += 1
            logger.debug("Context cache hit: %s", key[:60])
            return entry.value

        self.misses += 1
        logger.debug(
            "Context cache %s: %s",
            "stale" if entry is not None else "miss", key[:60],
        )

        value = await compute_fn()
        await self._store(key, value)
        return value

    async def _store(self, key: str, value: HybridContext) -> None:
        async with self._write_lock:
            self._entries.pop(key, None)
            self._entries[key] = CacheEntry(key, value, self._clock())
            while len(self._entries) > self._max_entries:
                evicted, _ = self._entries.popitem(last=False)
                logger.debug("Context cache evicted: %s", evicted[:60])

    async def clear(self) -> int:
        """Drop every entry. Returns how many were removed."""
        async with self._write_lock:
            count = len(self._entries)
            self._entries.clear()
        logger.info("Context cache cleared (%d entries)", count)
        return count

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: object) -> bool:
        return key in self._entries
