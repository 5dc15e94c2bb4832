# =============================================================================
# Unit Tests — Context Cache
# =============================================================================
#
# Uses an injectable fake clock so TTL behaviour is tested without sleeping.
# =============================================================================

from __future__ import annotations

import asyncio

import pytest

from finassist.services.context_cache import ContextCache, normalise_query
from finassist.services.hybrid import HybridContext


def _run(coro):
    """Helper to run async functions in sync tests."""
    return asyncio.run(coro)


class FakeClock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


class CountingCompute:
    """compute_fn that returns a distinct context per call."""

    def __init__(self) -> None:
        self.calls = 0

    async def __call__(self) -> HybridContext:
        self.calls += 1
        return HybridContext(summary=f"computed #{self.calls}")


# ---------------------------------------------------------------------------
# Test: Key Normalisation
# ---------------------------------------------------------------------------


class TestNormaliseQuery:
    def test_case_punctuation_and_whitespace(self):
        assert normalise_query("  Quanto GASTEI,   este mês?! ") == "quanto gastei este mês"

    def test_truncated_to_max_length(self):
        assert len(normalise_query("a" * 300)) == 100
        assert normalise_query("abcdef", max_length=3) == "abc"

    def test_equivalent_queries_share_a_key(self):
        cache = ContextCache()
        assert cache.key_for("u1", "Emergency fund?") == cache.key_for("u1", "emergency   FUND")

    def test_users_never_share_keys(self):
        cache = ContextCache()
        assert cache.key_for("u1", "budget") != cache.key_for("u2", "budget")


# ---------------------------------------------------------------------------
# Test: Hit / Miss / TTL
# ---------------------------------------------------------------------------


class TestGetOrCompute:
    def test_second_call_within_ttl_is_a_hit(self):
        clock = FakeClock()
        cache = ContextCache(clock=clock)
        compute = CountingCompute()

        async def scenario():
            first = await cache.get_or_compute("u1", "Budget tips", compute)
            clock.now += 299
            second = await cache.get_or_compute("u1", "budget tips!", compute)
            return first, second

        first, second = _run(scenario())

        assert compute.calls == 1
        assert second is first
        assert cache.hits == 1 and cache.misses == 1

    def test_entry_exactly_at_ttl_is_still_fresh(self):
        clock = FakeClock()
        cache = ContextCache(ttl_seconds=300, clock=clock)
        compute = CountingCompute()

        async def scenario():
            await cache.get_or_compute("u1", "q", compute)
            clock.now += 300
            await cache.get_or_compute("u1", "q", compute)

        _run(scenario())
        assert compute.calls == 1

    def test_stale_entry_is_recomputed(self):
        clock = FakeClock()
        cache = ContextCache(ttl_seconds=300, clock=clock)
        compute = CountingCompute()

        async def scenario():
            await cache.get_or_compute("u1", "q", compute)
            clock.now += 301
            return await cache.get_or_compute("u1", "q", compute)

        value = _run(scenario())
        assert compute.calls == 2
        assert value.summary == "computed #2"
        assert len(cache) == 1

    def test_compute_error_propagates_and_stores_nothing(self):
        cache = ContextCache()

        async def broken() -> HybridContext:
            raise RuntimeError("retrieval down")

        with pytest.raises(RuntimeError):
            _run(cache.get_or_compute("u1", "q", broken))
        assert len(cache) == 0


# ---------------------------------------------------------------------------
# Test: Eviction & Clear
# ---------------------------------------------------------------------------


class TestEviction:
    def test_fifty_first_key_evicts_the_oldest(self):
        cache = ContextCache(max_entries=50)
        compute = CountingCompute()

        async def scenario():
            for i in range(51):
                await cache.get_or_compute("u1", f"query {i}", compute)

        _run(scenario())

        assert len(cache) == 50
        assert cache.key_for("u1", "query 0") not in cache
        assert cache.key_for("u1", "query 1") in cache
        assert cache.key_for("u1", "query 50") in cache

    def test_refreshed_entry_moves_to_the_back(self):
        clock = FakeClock()
        cache = ContextCache(max_entries=2, ttl_seconds=10, clock=clock)
        compute = CountingCompute()

        async def scenario():
            await cache.get_or_compute("u1", "a", compute)
            await cache.get_or_compute("u1", "b", compute)
            clock.now += 11  # both stale
            await cache.get_or_compute("u1", "a", compute)  # recomputed, reinserted
            await cache.get_or_compute("u1", "c", compute)  # evicts "b"

        _run(scenario())

        assert cache.key_for("u1", "a") in cache
        assert cache.key_for("u1", "b") not in cache
        assert cache.key_for("u1", "c") in cache

    def test_clear_returns_count(self):
        cache = ContextCache()
        compute = CountingCompute()

        async def scenario():
            await cache.get_or_compute("u1", "a", compute)
            await cache.get_or_compute("u2", "a", compute)
            return await cache.clear()

        assert _run(scenario()) == 2
        assert len(cache) == 0

    def test_concurrent_users_are_isolated(self):
        cache = ContextCache()
        compute = CountingCompute()

        async def scenario():
            return await asyncio.gather(*(
                cache.get_or_compute(f"user-{i}", "same question", compute)
                for i in range(10)
            ))

        results = _run(scenario())
        assert compute.calls == 10
        assert len(cache) == 10
        assert len({id(r) for r in results}) == 10
