"""Fluent builder for rate limiting rules.

Example:
    >>> store = MemoryStore()
    >>> rule = (
    ...     Limiter()
    ...     .fixed_window(limit=3, time_frame_ms=10_000)
    ...     .limit_for("user")
    ...     .use_storage(store)
    ...     .with_key_prefix("messages")
    ...     .on_throttled(lambda ctx, info, storage: ctx.reply("Slow down"))
    ...     .build()
    ... )
"""

from typing import Any, Optional, Union

from ratewarden.core.config import settings
from ratewarden.core.logging import get_logger
from ratewarden.events import EventChannel, LimiterEvent, Listener
from ratewarden.models import LimitResult
from ratewarden.rule import (
    DynamicLimit,
    Filter,
    KeyFunc,
    OnThrottled,
    PenaltyConfig,
    PenaltyDuration,
    Rule,
    RuleConfig,
)
from ratewarden.storage.base import StorageEngine
from ratewarden.strategies.base import LimiterStrategy
from ratewarden.strategies.fixed_window import FixedWindowStrategy
from ratewarden.strategies.token_bucket import TokenBucketStrategy

logger = get_logger(__name__)

GLOBAL_KEY = "___GLOBAL___"


def _attr_id(ctx: Any, attr: str) -> Optional[str]:
    """Stringified ``ctx.<attr>.id``, or None when either part is missing."""
    owner = getattr(ctx, attr, None)
    entity_id = getattr(owner, "id", None)
    return str(entity_id) if entity_id is not None else None


def user_key(ctx: Any) -> Optional[str]:
    """Key of the user that sent the update (``ctx.from_user.id``)."""
    return _attr_id(ctx, "from_user")


def chat_key(ctx: Any) -> Optional[str]:
    """Key of the chat the update belongs to (``ctx.chat.id``)."""
    return _attr_id(ctx, "chat")


def global_key(ctx: Any) -> str:
    """One key shared by every request."""
    return GLOBAL_KEY


SCOPES = {
    "user": user_key,
    "chat": chat_key,
    "global": global_key,
}


class Limiter:
    """Accumulates rule settings through chained calls.

    Every method returns the builder itself; :meth:`build` validates the
    result and returns an immutable :class:`Rule`.
    """

    def __init__(self) -> None:
        self._events = EventChannel()
        self._config = RuleConfig(events=self._events)

    def fixed_window(
        self,
        limit: Union[int, DynamicLimit],
        time_frame_ms: int,
    ) -> "Limiter":
        """Use the fixed window algorithm.

        Args:
            limit: Requests allowed per window, or a function of the context
                returning that number for each request.
            time_frame_ms: Window length in milliseconds.
        """
        if callable(limit):
            # Placeholder; the real limit is computed per request
            self._config.strategy = FixedWindowStrategy.create(limit=1, time_frame_ms=time_frame_ms)
            self._config.dynamic_limit = limit
        else:
            self._config.strategy = FixedWindowStrategy.create(limit=limit, time_frame_ms=time_frame_ms)
            self._config.dynamic_limit = None
        return self

    def token_bucket(
        self,
        bucket_size: float,
        tokens_per_interval: float,
        interval_ms: int,
    ) -> "Limiter":
        """Use the token bucket algorithm.

        Args:
            bucket_size: Maximum tokens; the burst size.
            tokens_per_interval: Tokens added every interval.
            interval_ms: Refill interval in milliseconds.
        """
        self._config.strategy = TokenBucketStrategy.create(
            bucket_size=bucket_size,
            interval_ms=interval_ms,
            tokens_per_interval=tokens_per_interval,
        )
        self._config.dynamic_limit = None
        return self

    def custom_strategy(self, strategy: LimiterStrategy) -> "Limiter":
        """Use any object implementing the strategy contract."""
        self._config.strategy = strategy
        self._config.dynamic_limit = None
        return self

    def use_storage(self, storage: StorageEngine) -> "Limiter":
        """Set the storage engine. One store can be shared by many rules."""
        self._config.storage = storage
        return self

    def limit_for(self, scope: Union[str, KeyFunc]) -> "Limiter":
        """Choose what entity the limit applies to.

        Args:
            scope: ``"user"``, ``"chat"``, ``"global"`` or a function of the
                context returning a key. Requests whose key is None or empty
                are never limited.

        Raises:
            ValueError: Unknown scope name.
        """
        if callable(scope):
            self._config.key_func = scope
        elif scope in SCOPES:
            self._config.key_func = SCOPES[scope]
        else:
            raise ValueError(f"Unknown scope: {scope!r}. Use 'user', 'chat', 'global' or a function.")
        return self

    def with_key_prefix(self, prefix: str) -> "Limiter":
        """Namespace this rule's keys; use a distinct prefix per rule."""
        self._config.key_prefix = prefix
        return self

    def only_if(self, predicate: Filter) -> "Limiter":
        """Apply the limiter only when ``predicate(ctx)`` is true (may be async)."""
        self._config.filter = predicate
        return self

    def on_throttled(self, handler: OnThrottled) -> "Limiter":
        """Handler called as ``handler(ctx, result, storage)`` for denied requests.

        The request does not continue on its own; the handler decides what
        the host sees. Its return value is returned by the middleware.
        """
        self._config.on_throttled = handler
        return self

    def with_penalty(
        self,
        penalty_time_ms: Union[float, PenaltyDuration],
        penalty_key_prefix: Optional[str] = None,
    ) -> "Limiter":
        """Mute entities for a while after they get throttled.

        Args:
            penalty_time_ms: Mute length in milliseconds, or a function
                ``(ctx, result) -> ms``. Non-positive values skip the penalty.
            penalty_key_prefix: Namespace of penalty markers. Defaults to
                ``settings.default_penalty_key_prefix``.
        """
        if callable(penalty_time_ms):
            duration = penalty_time_ms
        else:
            fixed = penalty_time_ms

            def duration(ctx: Any, info: LimitResult) -> float:
                return fixed

        self._config.penalty = PenaltyConfig(
            duration=duration,
            key_prefix=penalty_key_prefix or settings.default_penalty_key_prefix,
        )
        return self

    def on(self, kind: Union[LimiterEvent, str], listener: Listener) -> "Limiter":
        """Register an event listener on this rule's channel."""
        self._events.on(kind, listener)
        return self

    def off(self, kind: Union[LimiterEvent, str], listener: Listener) -> "Limiter":
        """Remove an event listener from this rule's channel."""
        self._events.off(kind, listener)
        return self

    def build(self) -> Rule:
        """Validate the configuration and return the rule.

        Raises:
            RuleConfigurationError: Strategy, storage or key function missing.
        """
        rule = Rule.from_config(self._config)
        if not self._config.key_prefix:
            logger.warning(
                "No .with_key_prefix() was set for this limiter. Using the default "
                f"prefix {rule.key_prefix!r} can lead to data collisions when several "
                "rules share one storage; assign a unique prefix to each rule."
            )
        return rule
