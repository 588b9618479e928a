"""
Lifecycle notifications for routeq.

Handlers run synchronously on the thread that triggered the state change,
after the change is applied. They must not block and should not raise; a
raising handler is logged and skipped so the remaining handlers still run
and queue state is never rolled back.
"""

import logging
from collections import defaultdict
from typing import Any, Callable, Dict, List

_log = logging.getLogger(__name__)

EVENT_ENQUEUED  = "enqueued"
EVENT_DEQUEUED  = "dequeued"
EVENT_COMPLETED = "completed"
EVENT_FAILED    = "failed"
EVENT_FALLBACK  = "fallback"

VALID_EVENTS = {EVENT_ENQUEUED, EVENT_DEQUEUED, EVENT_COMPLETED, EVENT_FAILED, EVENT_FALLBACK}

Handler = Callable[[Any], None]


class Subscription:
    """Handle returned by :meth:`EventBus.subscribe`."""

    def __init__(self, bus: "EventBus", event: str, handler: Handler):
        self._bus = bus
        self.event = event
        self.handler = handler
        self.active = True

    def cancel(self) -> None:
        if self.active:
            self._bus.unsubscribe(self.event, self.handler)
            self.active = False


class EventBus:
    """Minimal synchronous observer registry."""

    def __init__(self) -> None:
        self._handlers: Dict[str, List[Handler]] = defaultdict(list)

    def subscribe(self, event: str, handler: Handler) -> Subscription:
        """Register *handler* for *event*.

        Raises:
            ValueError: For an unknown event name
        """
        if event not in VALID_EVENTS:
            raise ValueError(
                f"event must be one of {sorted(VALID_EVENTS)}, got {event!r}"
            )
        self._handlers[event].append(handler)
        return Subscription(self, event, handler)

    def unsubscribe(self, event: str, handler: Handler) -> bool:
        handlers = self._handlers.get(event, [])
        if handler in handlers:
            handlers.remove(handler)
            return True
        return False

    def emit(self, event: str, payload: Any) -> None:
        # Copy so handlers may unsubscribe themselves mid-dispatch
        for handler in list(self._handlers.get(event, [])):
            try:
                handler(payload)
            except Exception:
                _log.exception("Handler %r for %r event raised", handler, event)

    def handler_count(self, event: str) -> int:
        return len(self._handlers.get(event, []))

    def clear(self) -> None:
        self._handlers.clear()
