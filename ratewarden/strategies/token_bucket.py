"""Token bucket rate limiting.

Each entity owns a bucket of at most ``bucket_size`` tokens that refills
continuously at ``tokens_per_interval`` per ``interval_ms``. Every allowed
request takes one token.
"""

import math
import time
from dataclasses import dataclass
from typing import Callable, Optional, Tuple

from ratewarden.exceptions import InvalidStrategyOptionsError
from ratewarden.models import LimitResult, TokenBucketState
from ratewarden.storage.base import StorageEngine
from ratewarden.strategies.base import LimiterStrategy


@dataclass(frozen=True)
class TokenBucketOptions:
    """
    Configuration for the token bucket strategy.

    Args:
        bucket_size: Maximum tokens held; the burst size
        interval_ms: Refill period in milliseconds
        tokens_per_interval: Tokens added per period; the sustained rate
    """
    bucket_size: float
    interval_ms: int
    tokens_per_interval: float

    def __post_init__(self):
        if self.bucket_size <= 0 or self.interval_ms <= 0 or self.tokens_per_interval <= 0:
            raise InvalidStrategyOptionsError(
                "TokenBucketStrategy",
                "bucket_size, interval_ms, and tokens_per_interval must be positive numbers.",
            )


class TokenBucketStrategy(LimiterStrategy):
    """
    Token bucket rate limiter.

    Allows bursts up to the bucket size and a steady rate afterwards.

    Example:
        # bursts of 5, then one message every 2 seconds
        strategy = TokenBucketStrategy(
            TokenBucketOptions(bucket_size=5, interval_ms=2000, tokens_per_interval=1)
        )
    """

    def __init__(
        self,
        options: TokenBucketOptions,
        clock: Callable[[], float] = time.time,
    ):
        """
        Initialize token bucket strategy.

        Args:
            options: Validated bucket configuration
            clock: Time source returning UNIX time in seconds
        """
        self.options = options
        self._clock = clock
        # Long enough to refill an empty bucket; idle buckets expire after that
        self.storage_ttl_ms = (
            math.ceil(options.bucket_size / options.tokens_per_interval) * options.interval_ms
        )

    @classmethod
    def create(
        cls,
        bucket_size: float,
        interval_ms: int,
        tokens_per_interval: float,
    ) -> "TokenBucketStrategy":
        """Build a strategy from bare numbers."""
        return cls(TokenBucketOptions(
            bucket_size=bucket_size,
            interval_ms=interval_ms,
            tokens_per_interval=tokens_per_interval,
        ))

    def _now_ms(self) -> int:
        return int(self._clock() * 1000)

    def _refill(self, state: TokenBucketState, now: int) -> TokenBucketState:
        """Add the tokens earned since the last refill, capped at bucket size."""
        elapsed = now - state.last_refill
        if elapsed <= 0:
            return state
        tokens_to_add = (elapsed / self.options.interval_ms) * self.options.tokens_per_interval
        return TokenBucketState(
            tokens=min(self.options.bucket_size, state.tokens + tokens_to_add),
            last_refill=now,
        )

    def _time_to_next_token(self, tokens: float) -> int:
        """Milliseconds until at least one whole token is available."""
        if tokens >= 1:
            return 0
        time_per_token = self.options.interval_ms / self.options.tokens_per_interval
        return math.ceil((1 - tokens) * time_per_token)

    async def check(self, key: str, storage: StorageEngine) -> LimitResult:
        """
        Refill the bucket, take a token if one is available and persist.

        The whole cycle runs inside ``storage.update`` so concurrent checks
        on one key never read the same token count.

        Args:
            key: Storage key of the entity
            storage: Storage engine holding the bucket state

        Returns:
            LimitResult with whole tokens left and the wait for the next one
        """
        now = self._now_ms()

        def take(state: Optional[TokenBucketState]) -> Tuple[TokenBucketState, LimitResult]:
            if state is None:
                state = TokenBucketState(tokens=float(self.options.bucket_size), last_refill=now)

            state = self._refill(state, now)

            is_allowed = state.tokens >= 1
            if is_allowed:
                state = TokenBucketState(tokens=state.tokens - 1, last_refill=state.last_refill)

            return state, LimitResult(
                is_allowed=is_allowed,
                remaining=math.floor(state.tokens),
                reset=self._time_to_next_token(state.tokens),
            )

        return await storage.update(key, take, self.storage_ttl_ms)
