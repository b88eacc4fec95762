"""Per-request dispatch of a rate limiting rule.

``limit(rule)`` returns a coroutine function ``middleware(ctx, call_next)``
that a host pipeline calls for every incoming event. ``call_next`` is a
zero-argument coroutine function that continues the pipeline.

Order of evaluation (first exit wins):
1. Penalty box - a muted entity is dropped silently.
2. Filter - requests the rule does not apply to continue untouched.
3. Entity key - requests without a key are never limited.
4. Strategy check against storage.
5. Allowed -> continue; denied -> throttled callback, then maybe a penalty.
"""

import inspect
from typing import Any, Awaitable, Callable, Optional, Union

from ratewarden.builder import Limiter
from ratewarden.core.logging import get_log_context, get_logger
from ratewarden.events import (
    AllowedEvent,
    LimiterEvent,
    PenaltyAppliedEvent,
    ThrottledEvent,
)
from ratewarden.models import LimitResult
from ratewarden.rule import Rule
from ratewarden.strategies.fixed_window import FixedWindowStrategy

logger = get_logger(__name__)

CallNext = Callable[[], Awaitable[Any]]
Middleware = Callable[[Any, CallNext], Awaitable[Any]]


async def _resolve(value: Any) -> Any:
    """Await ``value`` if a sync-or-async callback handed back an awaitable."""
    if inspect.isawaitable(value):
        return await value
    return value


async def _check(rule: Rule, ctx: Any, storage_key: str) -> LimitResult:
    """Run the rule's strategy, substituting a dynamic limit when configured.

    The resolved limit is passed to this one call only; the shared strategy
    object is never modified.
    """
    if rule.dynamic_limit is not None and isinstance(rule.strategy, FixedWindowStrategy):
        dynamic = await _resolve(rule.dynamic_limit(ctx))
        return await rule.strategy.check(storage_key, rule.storage, limit=dynamic)
    return await rule.strategy.check(storage_key, rule.storage)


async def _apply_penalty(rule: Rule, ctx: Any, entity_key: str, result: LimitResult) -> None:
    duration = await _resolve(rule.penalty.duration(ctx, result))
    if duration <= 0:
        return

    await rule.storage.set_penalty(rule.penalty.key_for(entity_key), duration)
    logger.info(
        "Penalty applied",
        extra=get_log_context(
            rule=rule.key_prefix,
            entity_key=entity_key,
            event=LimiterEvent.PENALTY_APPLIED.value,
            duration_ms=duration,
        ),
    )
    if rule.events.has_listeners(LimiterEvent.PENALTY_APPLIED):
        rule.events.emit(PenaltyAppliedEvent(ctx=ctx, key=entity_key, duration_ms=duration))


def limit(rule_or_builder: Union[Rule, Limiter]) -> Middleware:
    """Create the middleware for a rule.

    Args:
        rule_or_builder: A built rule, or a builder which is built now so
            configuration errors surface at setup time.

    Returns:
        ``async middleware(ctx, call_next)``. It returns whatever
        ``call_next()`` returned for admitted requests, whatever the throttled
        callback returned for denied ones, and None for muted entities.
        Storage and strategy errors propagate to the caller.
    """
    rule = rule_or_builder.build() if isinstance(rule_or_builder, Limiter) else rule_or_builder

    async def middleware(ctx: Any, call_next: CallNext) -> Optional[Any]:
        if rule.penalty is not None:
            penalized_key = rule.key_func(ctx)
            if penalized_key:
                if await rule.storage.check_penalty(rule.penalty.key_for(penalized_key)):
                    logger.debug(
                        "Request dropped, entity is in the penalty box",
                        extra=get_log_context(
                            rule=rule.key_prefix, entity_key=penalized_key, event="penalty_drop"
                        ),
                    )
                    return None

        if not await _resolve(rule.filter(ctx)):
            return await call_next()

        entity_key = rule.key_func(ctx)
        if not entity_key:
            return await call_next()

        result = await _check(rule, ctx, rule.storage_key(entity_key))

        if result.is_allowed:
            if rule.events.has_listeners(LimiterEvent.ALLOWED):
                rule.events.emit(AllowedEvent(ctx=ctx, result=result))
            return await call_next()

        logger.info(
            "Request throttled",
            extra=get_log_context(
                rule=rule.key_prefix,
                entity_key=entity_key,
                event=LimiterEvent.THROTTLED.value,
                remaining=result.remaining,
                reset_ms=result.reset,
            ),
        )
        if rule.events.has_listeners(LimiterEvent.THROTTLED):
            rule.events.emit(ThrottledEvent(ctx=ctx, result=result))

        response = await _resolve(rule.on_throttled(ctx, result, rule.storage))

        if rule.penalty is not None:
            await _apply_penalty(rule, ctx, entity_key, result)

        return response

    return middleware
