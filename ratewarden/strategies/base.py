"""Strategy interface.

A strategy turns whatever it keeps in storage into an allow/deny decision.
Strategies are immutable after construction and may be shared by any
number of concurrent requests.
"""

from abc import ABC, abstractmethod
from typing import Any

from ratewarden.models import LimitResult
from ratewarden.storage.base import StorageEngine


class LimiterStrategy(ABC):
    """Abstract base class for rate limiting algorithms.

    Attributes:
        options: The validated configuration this strategy was built with.
    """

    options: Any = None

    @abstractmethod
    async def check(self, key: str, storage: StorageEngine) -> LimitResult:
        """Record a hit for ``key`` and decide whether it is allowed.

        Args:
            key: Fully prefixed storage key of the entity.
            storage: Storage engine holding the strategy's state.

        Returns:
            LimitResult describing the decision.
        """
