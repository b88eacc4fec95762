"""Immutable rate limiting rules.

A :class:`Rule` is produced once by the builder at setup time and then
shared by every request. :class:`RuleConfig` is the mutable value the
builder fills in; :meth:`Rule.from_config` validates it.
"""

from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Optional, Union

from ratewarden.core.config import settings
from ratewarden.events import EventChannel
from ratewarden.exceptions import RuleConfigurationError
from ratewarden.models import LimitResult
from ratewarden.storage.base import StorageEngine
from ratewarden.strategies.base import LimiterStrategy

KeyFunc = Callable[[Any], Optional[str]]
Filter = Callable[[Any], Union[bool, Awaitable[bool]]]
OnThrottled = Callable[[Any, LimitResult, StorageEngine], Any]
DynamicLimit = Callable[[Any], int]
PenaltyDuration = Callable[[Any, LimitResult], float]


def _always(ctx: Any) -> bool:
    return True


def _noop(ctx: Any, result: LimitResult, storage: StorageEngine) -> None:
    return None


@dataclass(frozen=True)
class PenaltyConfig:
    """Penalty box settings.

    Attributes:
        duration: Returns the mute length in milliseconds for a throttled
            request; values <= 0 skip the penalty.
        key_prefix: Namespace of penalty markers in storage.
    """
    duration: PenaltyDuration
    key_prefix: str

    def key_for(self, entity_key: str) -> str:
        return f"{self.key_prefix}:{entity_key}"


@dataclass
class RuleConfig:
    """Mutable accumulator filled in by the builder."""
    strategy: Optional[LimiterStrategy] = None
    storage: Optional[StorageEngine] = None
    key_func: Optional[KeyFunc] = None
    events: Optional[EventChannel] = None
    key_prefix: Optional[str] = None
    filter: Optional[Filter] = None
    on_throttled: Optional[OnThrottled] = None
    dynamic_limit: Optional[DynamicLimit] = None
    penalty: Optional[PenaltyConfig] = None


@dataclass(frozen=True)
class Rule:
    """A validated, ready-to-use rate limiting rule.

    The strategy and storage are shared references: one store may back
    many rules. Nothing on a rule changes after construction.
    """
    strategy: LimiterStrategy
    storage: StorageEngine
    key_func: KeyFunc
    events: EventChannel
    key_prefix: str = field(default_factory=lambda: settings.default_key_prefix)
    filter: Filter = _always
    on_throttled: OnThrottled = _noop
    dynamic_limit: Optional[DynamicLimit] = None
    penalty: Optional[PenaltyConfig] = None

    @classmethod
    def from_config(cls, config: RuleConfig) -> "Rule":
        """Validate ``config`` and freeze it into a rule.

        Checks run in a fixed order: strategy, storage, key function, event
        channel. The first missing piece raises.

        Raises:
            RuleConfigurationError: A required piece is missing.
        """
        if config.strategy is None:
            raise RuleConfigurationError(
                "A limiting strategy",
                ".fixed_window(), .token_bucket(), or .custom_strategy() on the builder",
            )
        if config.storage is None:
            raise RuleConfigurationError(
                "A storage engine",
                ".use_storage() on the builder",
                "It is recommended to create one store instance and share it across all rules.",
            )
        if config.key_func is None:
            raise RuleConfigurationError("A key generation strategy", ".limit_for() on the builder")
        if config.events is None:
            raise RuleConfigurationError("An event channel", "the Limiter builder, which creates one")

        return cls(
            strategy=config.strategy,
            storage=config.storage,
            key_func=config.key_func,
            events=config.events,
            key_prefix=config.key_prefix or settings.default_key_prefix,
            filter=config.filter or _always,
            on_throttled=config.on_throttled or _noop,
            dynamic_limit=config.dynamic_limit,
            penalty=config.penalty,
        )

    def storage_key(self, entity_key: str) -> str:
        """Storage key of an entity under this rule's prefix."""
        return f"{self.key_prefix}:{entity_key}"
