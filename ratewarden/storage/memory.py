"""In-process storage engine.

Records live in a plain dict keyed by storage key. Each key is guarded by
one lock out of a fixed pool of stripes, so a read-modify-write on one key
never waits on another key's work, and the background sweep only ever
holds one stripe at a time.

Notes:
- Per-process only: several workers each enforce their own limits.
- Thread-safe: usable from several event loops or threads at once.
"""

import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

from ratewarden.core.config import settings
from ratewarden.core.logging import get_logger
from ratewarden.models import TokenBucketState
from ratewarden.storage.base import StorageEngine, Updater

logger = get_logger(__name__)

_UNSET: Any = object()


@dataclass
class _MemoryRecord:
    """Stored state plus its absolute expiry (epoch seconds)."""

    state: Any
    expires_at: float

    def is_expired(self, now: float) -> bool:
        return self.expires_at <= now


class MemoryStore(StorageEngine):
    """Storage engine backed by a dict in this process.

    Example:
        >>> store = MemoryStore()
        >>> await store.increment("RATEWARDEN:42", ttl_ms=1000)
        1
    """

    def __init__(
        self,
        sweep_interval_ms: Optional[int] = _UNSET,
        lock_stripes: Optional[int] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """Initialize the store and start the sweep thread.

        Args:
            sweep_interval_ms: Milliseconds between sweeps of expired records.
                Defaults to ``settings.memory_sweep_interval_ms``; pass None or
                a value <= 0 to disable the background sweep.
            lock_stripes: Number of per-key lock stripes. Defaults to
                ``settings.memory_lock_stripes``.
            clock: Time source returning UNIX time in seconds.
        """
        if sweep_interval_ms is _UNSET:
            sweep_interval_ms = settings.memory_sweep_interval_ms
        stripes = lock_stripes if lock_stripes is not None else settings.memory_lock_stripes
        if stripes < 1:
            raise ValueError("lock_stripes must be >= 1")

        self._records: Dict[str, _MemoryRecord] = {}
        self._locks: List[threading.Lock] = [threading.Lock() for _ in range(stripes)]
        self._clock = clock
        self._sweep_interval_ms = sweep_interval_ms if sweep_interval_ms and sweep_interval_ms > 0 else None
        self._stop_event = threading.Event()
        self._sweep_thread: Optional[threading.Thread] = None

        if self._sweep_interval_ms is not None:
            self._sweep_thread = threading.Thread(
                target=self._sweep_loop,
                name="ratewarden-memory-sweep",
                daemon=True,
            )
            self._sweep_thread.start()

    def __len__(self) -> int:
        return len(self._records)

    @property
    def sweeping(self) -> bool:
        """True while the background sweep thread is running."""
        return self._sweep_thread is not None and self._sweep_thread.is_alive()

    def _lock_for(self, key: str) -> threading.Lock:
        return self._locks[hash(key) % len(self._locks)]

    def _expiry(self, ttl_ms: int) -> float:
        return self._clock() + ttl_ms / 1000.0

    def _live_record(self, key: str) -> Optional[_MemoryRecord]:
        """Return the record for ``key``, dropping it if expired.

        Caller must hold the key's stripe.
        """
        record = self._records.get(key)
        if record is None:
            return None
        if record.is_expired(self._clock()):
            del self._records[key]
            return None
        return record

    async def get(self, key: str) -> Optional[TokenBucketState]:
        with self._lock_for(key):
            record = self._live_record(key)
            return record.state if record is not None else None

    async def set(self, key: str, state: TokenBucketState, ttl_ms: int) -> None:
        with self._lock_for(key):
            self._records[key] = _MemoryRecord(state=state, expires_at=self._expiry(ttl_ms))

    async def delete(self, key: str) -> None:
        with self._lock_for(key):
            self._records.pop(key, None)

    async def increment(self, key: str, ttl_ms: int) -> int:
        with self._lock_for(key):
            record = self._live_record(key)
            if record is None:
                self._records[key] = _MemoryRecord(state=1, expires_at=self._expiry(ttl_ms))
                return 1
            record.state += 1
            return record.state

    async def update(self, key: str, fn: Updater, ttl_ms: int) -> Any:
        """Run ``fn`` on the state under ``key`` while holding its stripe."""
        with self._lock_for(key):
            record = self._live_record(key)
            new_state, result = fn(record.state if record is not None else None)
            self._records[key] = _MemoryRecord(state=new_state, expires_at=self._expiry(ttl_ms))
            return result

    async def set_penalty(self, key: str, ttl_ms: int) -> None:
        with self._lock_for(key):
            self._records[key] = _MemoryRecord(state=True, expires_at=self._expiry(ttl_ms))

    async def check_penalty(self, key: str) -> bool:
        with self._lock_for(key):
            return self._live_record(key) is not None

    def sweep(self) -> int:
        """Remove every expired record.

        Keys are visited one at a time, each under its own stripe, so
        concurrent requests on other keys are never blocked.

        Returns:
            Number of records removed.
        """
        removed = 0
        for key in list(self._records):
            with self._lock_for(key):
                record = self._records.get(key)
                if record is not None and record.is_expired(self._clock()):
                    del self._records[key]
                    removed += 1
        if removed:
            logger.debug(f"Swept {removed} expired records from memory store")
        return removed

    def _sweep_loop(self) -> None:
        """Background loop - runs in the sweep thread until close()."""
        interval = self._sweep_interval_ms / 1000.0
        while not self._stop_event.wait(interval):
            try:
                self.sweep()
            except Exception as e:
                logger.error(f"Error during memory store sweep: {e}")

    def close(self) -> None:
        """Stop the background sweep. Stored records are kept."""
        self._stop_event.set()
        if self._sweep_thread is not None:
            self._sweep_thread.join(timeout=5.0)
            self._sweep_thread = None
