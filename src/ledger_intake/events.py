"""
In-process domain event bus.

Publishing is fire-and-forget: a failing handler is logged and the
publisher carries on.
"""

import logging
import threading
from collections import defaultdict
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

logger = logging.getLogger(__name__)

EXPENSES_CREATED = "expenses.created"
EMAIL_AUTO_CONFIRMED = "import.email.auto_confirmed"
EMAIL_ADDRESS_CREATED = "import.email.created"

# Subscribed to every event name
WILDCARD = "*"


@dataclass(frozen=True)
class DomainEvent:
    name: str
    payload: dict[str, Any] = field(default_factory=dict)


Handler = Callable[[DomainEvent], None]


class EventBus:
    """Thread-safe synchronous pub/sub."""

    def __init__(self) -> None:
        self._handlers: dict[str, list[Handler]] = defaultdict(list)
        self._lock = threading.Lock()

    def subscribe(self, name: str, handler: Handler) -> None:
        with self._lock:
            self._handlers[name].append(handler)

    def unsubscribe(self, name: str, handler: Handler) -> None:
        with self._lock:
            if handler in self._handlers.get(name, []):
                self._handlers[name].remove(handler)

    def publish(self, name: str, payload: dict[str, Any]) -> DomainEvent:
        event = DomainEvent(name=name, payload=payload)
        with self._lock:
            handlers = [*self._handlers.get(name, []), *self._handlers.get(WILDCARD, [])]

        logger.debug("Publishing %s to %d handlers", name, len(handlers))
        for handler in handlers:
            try:
                handler(event)
            except Exception:
                logger.warning("Event handler for %s failed", name, exc_info=True)
        return event
