"""Storage engines for rate limiter state.

This package provides the storage contract plus an in-process and a Redis
implementation. A single store instance may back any number of rules.
"""

from .base import StorageEngine
from .memory import MemoryStore
from .redis import RedisStore
from .redis_lua import ATOMIC_INCREMENT_SCRIPT

__all__ = [
    "StorageEngine",
    "MemoryStore",
    "RedisStore",
    "ATOMIC_INCREMENT_SCRIPT",
]
