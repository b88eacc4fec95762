"""Pluggable rate limiting middleware.

Build a rule with :class:`Limiter`, pick a storage engine, and turn the rule
into a middleware with :func:`limit`:

    store = MemoryStore()
    middleware = limit(
        Limiter()
        .fixed_window(limit=5, time_frame_ms=60_000)
        .limit_for("user")
        .use_storage(store)
        .with_key_prefix("commands")
    )
    await middleware(ctx, call_next)
"""

from ratewarden.builder import Limiter
from ratewarden.events import (
    AllowedEvent,
    EventChannel,
    LimiterEvent,
    PenaltyAppliedEvent,
    ThrottledEvent,
)
from ratewarden.exceptions import (
    InvalidStrategyOptionsError,
    RateWardenError,
    RuleConfigurationError,
)
from ratewarden.middleware.dispatcher import limit
from ratewarden.models import LimitResult, TokenBucketState
from ratewarden.rule import PenaltyConfig, Rule
from ratewarden.storage import MemoryStore, RedisStore, StorageEngine
from ratewarden.strategies import (
    FixedWindowOptions,
    FixedWindowStrategy,
    LimiterStrategy,
    TokenBucketOptions,
    TokenBucketStrategy,
)

__all__ = [
    # Entry points
    "limit",
    "Limiter",
    "Rule",
    "PenaltyConfig",
    # Strategies
    "LimiterStrategy",
    "FixedWindowOptions",
    "FixedWindowStrategy",
    "TokenBucketOptions",
    "TokenBucketStrategy",
    # Storage
    "StorageEngine",
    "MemoryStore",
    "RedisStore",
    # Events
    "EventChannel",
    "LimiterEvent",
    "AllowedEvent",
    "ThrottledEvent",
    "PenaltyAppliedEvent",
    # Models
    "LimitResult",
    "TokenBucketState",
    # Errors
    "RateWardenError",
    "RuleConfigurationError",
    "InvalidStrategyOptionsError",
]
