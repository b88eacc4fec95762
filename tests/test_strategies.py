"""Tests for the fixed window and token bucket strategies."""

import asyncio
import threading
import time
from unittest.mock import AsyncMock

import pytest

from ratewarden.exceptions import InvalidStrategyOptionsError
from ratewarden.models import TokenBucketState
from ratewarden.storage.base import StorageEngine
from ratewarden.storage.memory import MemoryStore
from ratewarden.strategies import (
    FixedWindowOptions,
    FixedWindowStrategy,
    TokenBucketOptions,
    TokenBucketStrategy,
)


class DictStorage(StorageEngine):
    """Bare get/set backend relying on the default update()."""

    def __init__(self):
        self.data = {}
        self.ttls = {}

    async def get(self, key):
        return self.data.get(key)

    async def set(self, key, state, ttl_ms):
        self.data[key] = state
        self.ttls[key] = ttl_ms

    async def delete(self, key):
        self.data.pop(key, None)

    async def increment(self, key, ttl_ms):
        raise NotImplementedError

    async def set_penalty(self, key, ttl_ms):
        raise NotImplementedError

    async def check_penalty(self, key):
        return False


class SlowReadMemoryStore(MemoryStore):
    """Memory store that yields the GIL on every read."""

    def _live_record(self, key):
        time.sleep(0.001)
        return super()._live_record(key)


class TestFixedWindowOptions:
    """Option validation."""

    @pytest.mark.parametrize(("limit", "time_frame_ms"), [(0, 1000), (5, 0), (-1, 1000), (5, -10)])
    def test_non_positive_rejected(self, limit, time_frame_ms):
        with pytest.raises(InvalidStrategyOptionsError) as exc_info:
            FixedWindowOptions(limit=limit, time_frame_ms=time_frame_ms)

        assert "FixedWindowStrategy" in str(exc_info.value)

    def test_error_is_value_error(self):
        with pytest.raises(ValueError):
            FixedWindowStrategy.create(limit=0, time_frame_ms=1000)


class TestFixedWindow:
    """Counting hits within a window."""

    @pytest.mark.asyncio
    async def test_allows_up_to_limit(self, memory_store):
        strategy = FixedWindowStrategy.create(limit=2, time_frame_ms=1000)

        first = await strategy.check("k", memory_store)
        second = await strategy.check("k", memory_store)
        third = await strategy.check("k", memory_store)

        assert (first.is_allowed, first.remaining) == (True, 1)
        assert (second.is_allowed, second.remaining) == (True, 0)
        assert (third.is_allowed, third.remaining) == (False, 0)

    @pytest.mark.asyncio
    async def test_reset_is_window_length(self, memory_store, clock):
        """reset reports the configured window, not the time left in it."""
        strategy = FixedWindowStrategy.create(limit=1, time_frame_ms=1000)

        await strategy.check("k", memory_store)
        clock.advance_ms(700)
        result = await strategy.check("k", memory_store)

        assert result.reset == 1000

    @pytest.mark.asyncio
    async def test_new_window_after_expiry(self, memory_store, clock):
        strategy = FixedWindowStrategy.create(limit=1, time_frame_ms=1000)

        await strategy.check("k", memory_store)
        assert (await strategy.check("k", memory_store)).is_allowed is False

        clock.advance_ms(1000)
        assert (await strategy.check("k", memory_store)).is_allowed is True

    @pytest.mark.asyncio
    async def test_allowed_count_never_exceeds_limit(self, memory_store):
        strategy = FixedWindowStrategy.create(limit=3, time_frame_ms=60_000)

        results = [await strategy.check("k", memory_store) for _ in range(10)]

        assert sum(r.is_allowed for r in results) == 3
        assert all(r.remaining >= 0 for r in results)

    @pytest.mark.asyncio
    async def test_limit_override_does_not_change_options(self, memory_store):
        strategy = FixedWindowStrategy.create(limit=1, time_frame_ms=1000)

        results = [await strategy.check("k", memory_store, limit=5) for _ in range(5)]

        assert all(r.is_allowed for r in results)
        assert strategy.options.limit == 1

    @pytest.mark.asyncio
    async def test_invalid_override_rejected(self, memory_store):
        strategy = FixedWindowStrategy.create(limit=1, time_frame_ms=1000)

        with pytest.raises(InvalidStrategyOptionsError):
            await strategy.check("k", memory_store, limit=0)

    @pytest.mark.asyncio
    async def test_increment_uses_window_as_ttl(self):
        storage = AsyncMock()
        storage.increment.return_value = 1
        strategy = FixedWindowStrategy.create(limit=1, time_frame_ms=2500)

        await strategy.check("k", storage)

        storage.increment.assert_awaited_once_with("k", 2500)


class TestTokenBucketOptions:
    """Option validation."""

    @pytest.mark.parametrize(
        ("bucket_size", "interval_ms", "tokens_per_interval"),
        [(0, 1000, 1), (5, 0, 1), (5, 1000, 0), (-1, 1000, 1)],
    )
    def test_non_positive_rejected(self, bucket_size, interval_ms, tokens_per_interval):
        with pytest.raises(InvalidStrategyOptionsError):
            TokenBucketOptions(
                bucket_size=bucket_size,
                interval_ms=interval_ms,
                tokens_per_interval=tokens_per_interval,
            )

    def test_storage_ttl_covers_full_refill(self):
        strategy = TokenBucketStrategy.create(bucket_size=5, interval_ms=2000, tokens_per_interval=2)

        assert strategy.storage_ttl_ms == 6000


class TestTokenBucket:
    """Burst, refill and persisted state."""

    @pytest.fixture
    def strategy(self, clock):
        return TokenBucketStrategy(
            TokenBucketOptions(bucket_size=3, interval_ms=1000, tokens_per_interval=1),
            clock=clock,
        )

    @pytest.mark.asyncio
    async def test_burst_then_throttle(self, strategy, memory_store):
        results = [await strategy.check("k", memory_store) for _ in range(4)]

        assert [r.is_allowed for r in results] == [True, True, True, False]
        assert [r.remaining for r in results] == [2, 1, 0, 0]
        assert results[0].reset == 0
        assert results[3].reset == 1000

    @pytest.mark.asyncio
    async def test_refill_after_interval(self, strategy, memory_store, clock):
        for _ in range(4):
            await strategy.check("k", memory_store)

        clock.advance_ms(1100)
        result = await strategy.check("k", memory_store)

        assert result.is_allowed is True
        assert result.remaining == 0
        assert (await strategy.check("k", memory_store)).is_allowed is False

    @pytest.mark.asyncio
    async def test_refill_capped_at_bucket_size(self, strategy, memory_store, clock):
        await strategy.check("k", memory_store)
        clock.advance_ms(60_000)

        result = await strategy.check("k", memory_store)

        assert result.remaining == 2
        assert (await memory_store.get("k")).tokens == 2

    @pytest.mark.asyncio
    async def test_persists_state_with_ttl(self, strategy, memory_store, clock):
        await strategy.check("k", memory_store)

        assert await memory_store.get("k") == TokenBucketState(
            tokens=2.0, last_refill=int(clock() * 1000)
        )
        clock.advance_ms(2000)
        assert await memory_store.get("k") is not None
        clock.advance_ms(1000)
        assert await memory_store.get("k") is None

    @pytest.mark.asyncio
    async def test_denied_request_still_persists_refill(self, strategy, memory_store, clock):
        now_ms = int(clock() * 1000)
        await memory_store.set("k", TokenBucketState(tokens=0.0, last_refill=now_ms - 500), 3000)

        result = await strategy.check("k", memory_store)

        assert result.is_allowed is False
        assert result.reset == 500
        stored = await memory_store.get("k")
        assert stored.tokens == pytest.approx(0.5)
        assert stored.last_refill == now_ms

    @pytest.mark.asyncio
    async def test_storage_with_default_update(self, strategy):
        """Backends that only implement get/set still work."""
        storage = DictStorage()

        results = [await strategy.check("k", storage) for _ in range(4)]

        assert [r.is_allowed for r in results] == [True, True, True, False]
        assert storage.ttls["k"] == 3000

    def test_concurrent_checks_never_exceed_bucket(self, clock):
        """Threads racing on one key get exactly bucket_size tokens."""
        store = SlowReadMemoryStore(sweep_interval_ms=None, clock=clock)
        strategy = TokenBucketStrategy(
            TokenBucketOptions(bucket_size=50, interval_ms=60_000, tokens_per_interval=1),
            clock=clock,
        )
        allowed = []

        def worker():
            for _ in range(20):
                if asyncio.run(strategy.check("k", store)).is_allowed:
                    allowed.append(1)

        threads = [threading.Thread(target=worker) for _ in range(10)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len(allowed) == 50
