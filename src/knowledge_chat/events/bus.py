"""Async pub/sub EventBus for stream diagnostics.

Lines dropped by a stream (bad JSON, unrecognised payload shapes) never
reach the segment consumer.  Subscribers here can still observe them, and
the bus keeps per-type counts so a caller can tell how lossy a backend is.
"""

from __future__ import annotations

import inspect
import logging
from collections import Counter, deque
from typing import Any, Callable

from knowledge_chat.types import EventType, StreamEvent

_logger = logging.getLogger(__name__)

# Subscribing under this key receives every event
WILDCARD = "*"

Handler = Callable[[StreamEvent], Any]


class EventBus:
    """Deliver ``StreamEvent``s to sync or async handlers.

    Handlers for the event's own type run first, then wildcard handlers,
    each awaited in subscription order.  A failing handler is logged and
    skipped.
    """

    def __init__(self, max_history: int = 200) -> None:
        self._handlers: dict[str, list[Handler]] = {}
        self._history: deque[StreamEvent] = deque(maxlen=max_history)
        self._counts: Counter[str] = Counter()

    # ------------------------------------------------------------------
    # Subscriptions
    # ------------------------------------------------------------------

    def subscribe(self, event_type: EventType | str, handler: Handler) -> None:
        self._handlers.setdefault(_key(event_type), []).append(handler)

    def unsubscribe(self, event_type: EventType | str, handler: Handler) -> None:
        """Remove *handler*; unknown handlers are ignored."""
        handlers = self._handlers.get(_key(event_type), [])
        if handler in handlers:
            handlers.remove(handler)

    # ------------------------------------------------------------------
    # Delivery
    # ------------------------------------------------------------------

    async def emit(self, event: StreamEvent) -> None:
        key = _key(event.type)
        self._history.append(event)
        self._counts[key] += 1

        targets = [*self._handlers.get(key, ()), *self._handlers.get(WILDCARD, ())]
        for handler in targets:
            try:
                result = handler(event)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                _logger.exception(
                    "Diagnostics handler %s failed on %s",
                    getattr(handler, "__name__", handler), key,
                )

    # ------------------------------------------------------------------
    # Inspection
    # ------------------------------------------------------------------

    @property
    def history(self) -> list[StreamEvent]:
        """The most recent events, oldest first."""
        return list(self._history)

    def events(self, event_type: EventType | str) -> list[StreamEvent]:
        """Recent events of one type."""
        key = _key(event_type)
        return [e for e in self._history if _key(e.type) == key]

    def count(self, event_type: EventType | str) -> int:
        """Total events of *event_type* emitted since the last ``clear()``.

        Unlike ``history`` this is not bounded.
        """
        return self._counts[_key(event_type)]

    def clear(self) -> None:
        self._handlers.clear()
        self._history.clear()
        self._counts.clear()


def _key(event_type: EventType | str) -> str:
    return event_type.value if isinstance(event_type, EventType) else str(event_type)
