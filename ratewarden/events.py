"""Synchronous event channel for observing limiter decisions.

Three event kinds exist, each with its own payload type:

- ``allowed``          -> AllowedEvent(ctx, result)
- ``throttled``        -> ThrottledEvent(ctx, result)
- ``penalty_applied``  -> PenaltyAppliedEvent(ctx, key, duration_ms)

Listeners are plain callables taking the payload. They run inline, in
registration order, while the request is being dispatched, so they should
be quick (logging, counters).
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, ClassVar, Dict, List, Union

from ratewarden.models import LimitResult


class LimiterEvent(str, Enum):
    """Kinds of events emitted by the dispatcher."""
    ALLOWED = "allowed"
    THROTTLED = "throttled"
    PENALTY_APPLIED = "penalty_applied"


@dataclass(frozen=True)
class AllowedEvent:
    """A request passed the limiter."""
    kind: ClassVar[LimiterEvent] = LimiterEvent.ALLOWED
    ctx: Any
    result: LimitResult


@dataclass(frozen=True)
class ThrottledEvent:
    """A request was denied by the strategy."""
    kind: ClassVar[LimiterEvent] = LimiterEvent.THROTTLED
    ctx: Any
    result: LimitResult


@dataclass(frozen=True)
class PenaltyAppliedEvent:
    """An entity was muted after being throttled."""
    kind: ClassVar[LimiterEvent] = LimiterEvent.PENALTY_APPLIED
    ctx: Any
    key: str
    duration_ms: float


EventPayload = Union[AllowedEvent, ThrottledEvent, PenaltyAppliedEvent]
Listener = Callable[[Any], None]


class EventChannel:
    """Per-rule publish/subscribe channel."""

    def __init__(self) -> None:
        self._listeners: Dict[LimiterEvent, List[Listener]] = {
            kind: [] for kind in LimiterEvent
        }

    def on(self, kind: Union[LimiterEvent, str], listener: Listener) -> "EventChannel":
        """Register ``listener`` for ``kind``. Registering twice is a no-op."""
        listeners = self._listeners[LimiterEvent(kind)]
        if listener not in listeners:
            listeners.append(listener)
        return self

    def off(self, kind: Union[LimiterEvent, str], listener: Listener) -> "EventChannel":
        """Unregister ``listener``. Unknown listeners are ignored."""
        listeners = self._listeners[LimiterEvent(kind)]
        if listener in listeners:
            listeners.remove(listener)
        return self

    def emit(self, payload: EventPayload) -> None:
        """Call every listener registered for the payload's kind."""
        for listener in list(self._listeners[payload.kind]):
            listener(payload)

    def has_listeners(self, kind: Union[LimiterEvent, str]) -> bool:
        """Check whether anything listens to ``kind``.

        The dispatcher uses this to skip building payloads nobody reads.
        """
        return bool(self._listeners[LimiterEvent(kind)])
