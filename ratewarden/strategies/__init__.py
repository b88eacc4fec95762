"""Rate limiting algorithms."""

from .base import LimiterStrategy
from .fixed_window import FixedWindowOptions, FixedWindowStrategy
from .token_bucket import TokenBucketOptions, TokenBucketStrategy

__all__ = [
    "LimiterStrategy",
    "FixedWindowOptions",
    "FixedWindowStrategy",
    "TokenBucketOptions",
    "TokenBucketStrategy",
]
