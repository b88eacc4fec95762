"""Storage engine interface.

Strategies and the dispatcher depend on this abstraction only, so the
in-process store can be swapped for Redis (or any other backend) without
touching a rule.
"""

from abc import ABC, abstractmethod
from typing import Any, Callable, Optional, Tuple

from ratewarden.models import TokenBucketState

Updater = Callable[[Optional[TokenBucketState]], Tuple[TokenBucketState, Any]]


class StorageEngine(ABC):
    """Abstract base class for key/value storage with expiry.

    All TTLs are in milliseconds. Implementations must make
    :meth:`increment` atomic per key: two concurrent calls on a fresh key
    must never both see the first hit, and no hit may be lost. Backends shared
    by concurrent requests must also make :meth:`update` atomic per key.
    """

    @abstractmethod
    async def get(self, key: str) -> Optional[TokenBucketState]:
        """Retrieve the state stored under ``key``.

        Args:
            key: Storage key.

        Returns:
            The stored state, or None if absent or expired.
        """

    @abstractmethod
    async def set(self, key: str, state: TokenBucketState, ttl_ms: int) -> None:
        """Store ``state`` under ``key`` for ``ttl_ms`` milliseconds."""

    @abstractmethod
    async def delete(self, key: str) -> None:
        """Remove ``key``. Removing an absent key is not an error."""

    @abstractmethod
    async def increment(self, key: str, ttl_ms: int) -> int:
        """Atomically increment the counter under ``key``.

        The expiry is applied only by the hit that creates the counter; later
        hits leave it untouched so the window closes on time.

        Args:
            key: Storage key.
            ttl_ms: Expiry applied when the counter is created.

        Returns:
            The counter value after this hit.
        """

    @abstractmethod
    async def set_penalty(self, key: str, ttl_ms: int) -> None:
        """Mark ``key`` as penalized for ``ttl_ms`` milliseconds."""

    @abstractmethod
    async def check_penalty(self, key: str) -> bool:
        """Return True while a penalty marker for ``key`` is active."""

    async def update(self, key: str, fn: Updater, ttl_ms: int) -> Any:
        """Read, transform and write the state under ``key`` as one step.

        ``fn`` receives the current state (None if absent or expired) and
        returns ``(new_state, result)``; ``new_state`` is stored for
        ``ttl_ms`` milliseconds and ``result`` is returned. ``fn`` must not
        call back into the store.

        This default runs :meth:`get` and :meth:`set` back to back and is
        only safe when nothing else touches ``key`` in between. Backends
        that can be shared by concurrent requests override it with an
        atomic version.
        """
        new_state, result = fn(await self.get(key))
        await self.set(key, new_state, ttl_ms)
        return result
