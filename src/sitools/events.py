"""Synchronous event subscription.

Handlers run on the thread that emits, in subscription order. Handler
exceptions propagate to the emitter.
"""

from collections import defaultdict
from collections.abc import Callable
from enum import StrEnum
from typing import Any


class EventType(StrEnum):
    STATE_CHANGED = "state_changed"
    SAMPLE_BLOCK_READY = "sample_block_ready"
    FIELD_CHANGED = "field_changed"


Handler = Callable[..., Any]


class EventEmitter:
    def __init__(self) -> None:
        self._handlers: dict[EventType, list[Handler]] = defaultdict(list)

    def subscribe(self, event: EventType, handler: Handler) -> Callable[[], None]:
        """Register ``handler`` for ``event`` and return a function that removes it."""
        self._handlers[event].append(handler)
        return lambda: self.unsubscribe(event, handler)

    def unsubscribe(self, event: EventType, handler: Handler) -> None:
        handlers = self._handlers.get(event, [])
        if handler in handlers:
            handlers.remove(handler)

    def emit(self, event: EventType, *args: Any) -> None:
        for handler in list(self._handlers.get(event, [])):
            handler(*args)

    def clear(self) -> None:
        self._handlers.clear()
