"""Async event bus for Ideario."""

from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from collections.abc import Callable, Coroutine
from typing import Any

from ideario.events.types import EventType

logger = logging.getLogger(__name__)

Listener = Callable[[EventType, dict[str, Any]], Coroutine[Any, Any, None]]
Unsubscribe = Callable[[], None]


class EventBus:
    """Async pub/sub bus for lifecycle, engagement and session events.

    Listeners run sequentially in registration order. A failing listener is
    logged and skipped so that a broken subscriber never fails the action
    that emitted the event.
    """

    def __init__(self) -> None:
        self._listeners: dict[EventType, list[Listener]] = defaultdict(list)
        self._global_listeners: list[Listener] = []

    def on(self, event_type: EventType, listener: Listener) -> Unsubscribe:
        """Register a listener for one event type. Returns an unsubscribe callable."""
        self._listeners[event_type].append(listener)
        return lambda: self.off(event_type, listener)

    def on_all(self, listener: Listener) -> Unsubscribe:
        """Register a listener for every event."""
        self._global_listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._global_listeners:
                self._global_listeners.remove(listener)

        return _unsubscribe

    def off(self, event_type: EventType, listener: Listener) -> None:
        if listener in self._listeners[event_type]:
            self._listeners[event_type].remove(listener)

    def listener_count(self, event_type: EventType | None = None) -> int:
        if event_type is None:
            return sum(len(v) for v in self._listeners.values()) + len(self._global_listeners)
        return len(self._listeners.get(event_type, [])) + len(self._global_listeners)

    async def emit(self, event_type: EventType, data: dict[str, Any] | None = None) -> None:
        """Deliver an event to its listeners, then to the global listeners."""
        payload = dict(data or {})
        listeners = [*self._listeners.get(event_type, []), *self._global_listeners]

        for listener in listeners:
            try:
                await listener(event_type, payload)
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("Listener %r failed for %s", listener, event_type)

    def clear(self) -> None:
        self._listeners.clear()
        self._global_listeners.clear()
