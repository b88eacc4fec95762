"""Fixed window rate limiting.

Each entity gets a counter that expires ``time_frame_ms`` after its first
hit. Requests are allowed while the counter stays within the limit.
"""

from dataclasses import dataclass
from typing import Optional

from ratewarden.exceptions import InvalidStrategyOptionsError
from ratewarden.models import LimitResult
from ratewarden.storage.base import StorageEngine
from ratewarden.strategies.base import LimiterStrategy


@dataclass(frozen=True)
class FixedWindowOptions:
    """
    Configuration for the fixed window strategy.

    Args:
        limit: Maximum number of requests in one window
        time_frame_ms: Window length in milliseconds
    """
    limit: int
    time_frame_ms: int

    def __post_init__(self):
        if self.limit <= 0 or self.time_frame_ms <= 0:
            raise InvalidStrategyOptionsError(
                "FixedWindowStrategy", "limit and time_frame_ms must be positive numbers."
            )


class FixedWindowStrategy(LimiterStrategy):
    """
    Fixed window rate limiter.

    Example:
        # 20 messages per minute
        strategy = FixedWindowStrategy(FixedWindowOptions(limit=20, time_frame_ms=60_000))
        result = await strategy.check("RATEWARDEN:42", storage)
    """

    def __init__(self, options: FixedWindowOptions):
        self.options = options

    @classmethod
    def create(cls, limit: int, time_frame_ms: int) -> "FixedWindowStrategy":
        """Build a strategy from bare numbers."""
        return cls(FixedWindowOptions(limit=limit, time_frame_ms=time_frame_ms))

    async def check(
        self,
        key: str,
        storage: StorageEngine,
        *,
        limit: Optional[int] = None,
    ) -> LimitResult:
        """
        Count a hit and compare it with the limit.

        Args:
            key: Storage key of the entity
            storage: Storage engine used to track hits
            limit: Limit for this call only (dynamic limits); the
                configured limit is used when omitted

        Returns:
            LimitResult whose ``reset`` is the configured window length
        """
        if limit is None:
            limit = self.options.limit
        elif limit <= 0:
            raise InvalidStrategyOptionsError(
                "FixedWindowStrategy", f"dynamic limit must be positive, got {limit!r}."
            )

        hits = await storage.increment(key, self.options.time_frame_ms)
        return LimitResult(
            is_allowed=hits <= limit,
            remaining=max(0, limit - hits),
            # Window length, not time left in the window
            reset=self.options.time_frame_ms,
        )
