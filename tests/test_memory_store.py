"""Tests for the in-process storage engine."""

import asyncio
import threading
import time

import pytest

from ratewarden.models import TokenBucketState
from ratewarden.storage.memory import MemoryStore


class TestIncrement:
    """Counter semantics used by the fixed window strategy."""

    @pytest.mark.asyncio
    async def test_first_hit_creates_counter(self, memory_store):
        assert await memory_store.increment("k", ttl_ms=1000) == 1
        assert await memory_store.increment("k", ttl_ms=1000) == 2

    @pytest.mark.asyncio
    async def test_expiry_set_only_on_first_hit(self, memory_store, clock):
        """Later hits never push the window forward."""
        await memory_store.increment("k", ttl_ms=1000)
        clock.advance_ms(600)
        await memory_store.increment("k", ttl_ms=1000)
        clock.advance_ms(500)

        assert await memory_store.increment("k", ttl_ms=1000) == 1

    @pytest.mark.asyncio
    async def test_keys_are_independent(self, memory_store):
        await memory_store.increment("a", ttl_ms=1000)
        await memory_store.increment("a", ttl_ms=1000)

        assert await memory_store.increment("b", ttl_ms=1000) == 1

    @pytest.mark.asyncio
    async def test_concurrent_increments_are_not_lost(self, memory_store):
        results = await asyncio.gather(
            *(memory_store.increment("k", ttl_ms=60_000) for _ in range(50))
        )

        assert sorted(results) == list(range(1, 51))

    def test_increments_from_threads(self, memory_store):
        """Counts stay exact when several threads hit one key."""

        def worker():
            loop = asyncio.new_event_loop()
            try:
                for _ in range(100):
                    loop.run_until_complete(memory_store.increment("k", ttl_ms=60_000))
            finally:
                loop.close()

        threads = [threading.Thread(target=worker) for _ in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert asyncio.run(memory_store.increment("k", ttl_ms=60_000)) == 401


class TestStateStorage:
    """get / set / delete for token bucket state."""

    @pytest.mark.asyncio
    async def test_get_missing_returns_none(self, memory_store):
        assert await memory_store.get("missing") is None

    @pytest.mark.asyncio
    async def test_set_then_get(self, memory_store):
        state = TokenBucketState(tokens=2.5, last_refill=1000)
        await memory_store.set("k", state, ttl_ms=1000)

        assert await memory_store.get("k") == state

    @pytest.mark.asyncio
    async def test_expired_state_is_dropped_on_read(self, memory_store, clock):
        await memory_store.set("k", TokenBucketState(tokens=1, last_refill=0), ttl_ms=1000)
        clock.advance_ms(1000)

        assert await memory_store.get("k") is None
        assert len(memory_store) == 0

    @pytest.mark.asyncio
    async def test_set_replaces_expiry(self, memory_store, clock):
        await memory_store.set("k", TokenBucketState(tokens=1, last_refill=0), ttl_ms=1000)
        clock.advance_ms(900)
        await memory_store.set("k", TokenBucketState(tokens=2, last_refill=0), ttl_ms=1000)
        clock.advance_ms(900)

        assert (await memory_store.get("k")).tokens == 2

    @pytest.mark.asyncio
    async def test_delete(self, memory_store):
        await memory_store.increment("k", ttl_ms=1000)
        await memory_store.delete("k")
        await memory_store.delete("never-existed")

        assert await memory_store.get("k") is None


class TestPenalty:
    """Penalty markers."""

    @pytest.mark.asyncio
    async def test_penalty_lifecycle(self, memory_store, clock):
        assert await memory_store.check_penalty("p") is False

        await memory_store.set_penalty("p", ttl_ms=5000)
        assert await memory_store.check_penalty("p") is True

        clock.advance_ms(4000)
        assert await memory_store.check_penalty("p") is True

        clock.advance_ms(1000)
        assert await memory_store.check_penalty("p") is False


class TestSweep:
    """Removal of expired records and the background thread."""

    @pytest.mark.asyncio
    async def test_sweep_removes_only_expired(self, memory_store, clock):
        await memory_store.increment("short", ttl_ms=100)
        await memory_store.increment("long", ttl_ms=10_000)
        clock.advance_ms(500)

        assert memory_store.sweep() == 1
        assert len(memory_store) == 1
        assert await memory_store.increment("long", ttl_ms=10_000) == 2

    def test_disabled_sweep_starts_no_thread(self):
        store = MemoryStore(sweep_interval_ms=0)

        assert store.sweeping is False
        store.close()

    def test_close_stops_sweep_thread(self):
        store = MemoryStore(sweep_interval_ms=50)
        assert store.sweeping is True

        store.close()

        assert store.sweeping is False

    def test_invalid_lock_stripes(self):
        with pytest.raises(ValueError):
            MemoryStore(sweep_interval_ms=None, lock_stripes=0)

    @pytest.mark.asyncio
    async def test_single_stripe_still_works(self, clock):
        store = MemoryStore(sweep_interval_ms=None, lock_stripes=1, clock=clock)

        await store.increment("a", ttl_ms=1000)
        await store.set_penalty("b", ttl_ms=1000)

        assert await store.increment("a", ttl_ms=1000) == 2
        assert await store.check_penalty("b") is True

    def test_background_thread_removes_expired_records(self, clock):
        """Expired records disappear without any read on their key."""
        store = MemoryStore(sweep_interval_ms=10, clock=clock)
        try:
            asyncio.run(store.increment("k", ttl_ms=100))
            clock.advance_ms(500)

            deadline = time.monotonic() + 2.0
            while len(store) and time.monotonic() < deadline:
                time.sleep(0.01)

            assert len(store) == 0
        finally:
            store.close()


class TestUpdate:
    """Atomic read-modify-write."""

    @pytest.mark.asyncio
    async def test_update_passes_current_state(self, memory_store):
        seen = []

        def bump(state):
            seen.append(state)
            tokens = state.tokens + 1 if state else 1.0
            return TokenBucketState(tokens=tokens, last_refill=0), tokens

        assert await memory_store.update("k", bump, ttl_ms=1000) == 1.0
        assert await memory_store.update("k", bump, ttl_ms=1000) == 2.0
        assert seen[0] is None
        assert (await memory_store.get("k")).tokens == 2.0

    @pytest.mark.asyncio
    async def test_update_sees_expired_state_as_missing(self, memory_store, clock):
        await memory_store.set("k", TokenBucketState(tokens=5, last_refill=0), ttl_ms=1000)
        clock.advance_ms(1000)

        result = await memory_store.update(
            "k", lambda state: (TokenBucketState(tokens=0, last_refill=0), state), ttl_ms=1000
        )

        assert result is None

    @pytest.mark.asyncio
    async def test_update_error_leaves_state_untouched(self, memory_store):
        state = TokenBucketState(tokens=1, last_refill=0)
        await memory_store.set("k", state, ttl_ms=1000)

        def broken(current):
            raise RuntimeError("boom")

        with pytest.raises(RuntimeError):
            await memory_store.update("k", broken, ttl_ms=1000)

        assert await memory_store.get("k") == state
        assert await memory_store.increment("other", ttl_ms=1000) == 1
