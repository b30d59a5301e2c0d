"""
Event Bus: In-process subscriber registry and delivery

Delivery rules:
1. Look up subscribers by event_type
2. Call every handler in registration order, even after one fails
3. If any handler failed, raise EventDeliveryError listing all failures

The bus owns no state beyond its subscriber list. It is built by the app
factory and stored on app.extensions["event_bus"]; nothing is registered at
import time.

Handlers can see the same event more than once (the outbox redelivers until
every handler succeeds), so they must be idempotent.
"""

from __future__ import annotations

from threading import Lock
from typing import Callable

from .domain_events import DomainEvent


Handler = Callable[[DomainEvent], None]


class EventBusError(Exception):
    pass


class EventDeliveryError(EventBusError):
    """One or more subscribers raised while handling an event."""

    def __init__(self, event: DomainEvent, failures: list[tuple[str, BaseException]]):
        self.event = event
        self.failures = failures
        names = ", ".join(f"{name}: {type(exc).__name__}: {exc}" for name, exc in failures)
        super().__init__(f"{event.event_type} delivery failed ({names})")


class EventBus:
    def __init__(self):
        self._subscribers: dict[str, list[Handler]] = {}
        self._lock = Lock()

    def subscribe(self, event_type: str, handler: Handler) -> None:
        if not event_type or not isinstance(event_type, str):
            raise EventBusError("event_type must be a non-empty string")
        if not callable(handler):
            raise EventBusError(f"Handler must be callable, got {type(handler)}.")

        with self._lock:
            handlers = self._subscribers.setdefault(event_type, [])
            if handler in handlers:
                raise EventBusError(f"{_handler_name(handler)} already subscribed to {event_type}")
            handlers.append(handler)

    def subscribers(self, event_type: str) -> list[Handler]:
        with self._lock:
            return list(self._subscribers.get(event_type, []))

    def publish(self, event: DomainEvent) -> int:
        """
        Deliver `event` to its subscribers.

        Returns the number of handlers called. No subscribers is not an error.
        """
        handlers = self.subscribers(event.event_type)
        failures: list[tuple[str, BaseException]] = []

        for handler in handlers:
            try:
                handler(event)
            except Exception as exc:
                failures.append((_handler_name(handler), exc))

        if failures:
            raise EventDeliveryError(event, failures) from failures[0][1]
        return len(handlers)


def _handler_name(handler) -> str:
    return getattr(handler, "__qualname__", None) or repr(handler)
