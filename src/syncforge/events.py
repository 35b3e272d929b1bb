"""Typed publish/subscribe for executor lifecycle events.

Subscribers register a handler for one event class; publishing an event calls
every handler registered for its exact class, in registration order.
"""

import logging
import threading
from collections.abc import Callable
from dataclasses import dataclass
from typing import TypeVar

from .constants import APP_NAME

logger = logging.getLogger(APP_NAME)


@dataclass(frozen=True)
class CommitEvent:
    """A commit was created in the tracking repository."""

    message: str


@dataclass(frozen=True)
class PushEvent:
    """The tracking branch was pushed to the remote."""

    branch: str


@dataclass(frozen=True)
class ErrorEvent:
    """A terminal failure, reported once per failure."""

    error: Exception


@dataclass(frozen=True)
class OperationStartEvent:
    name: str


@dataclass(frozen=True)
class OperationEndEvent:
    name: str


SyncEvent = CommitEvent | PushEvent | ErrorEvent | OperationStartEvent | OperationEndEvent

EVENT_TYPES: tuple[type, ...] = (
    CommitEvent,
    PushEvent,
    ErrorEvent,
    OperationStartEvent,
    OperationEndEvent,
)

E = TypeVar("E", CommitEvent, PushEvent, ErrorEvent, OperationStartEvent, OperationEndEvent)


class EventBus:
    """Dispatches `SyncEvent`s to per-variant handlers.

    Handlers run synchronously on the publishing thread. A handler that raises
    is logged and skipped so it cannot break the publisher.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._handlers: dict[type, list[Callable]] = {t: [] for t in EVENT_TYPES}

    def subscribe(self, event_type: type[E], handler: Callable[[E], None]) -> Callable[[], None]:
        """Registers a handler for one event variant.

        Args:
            event_type (type): One of the event classes in `EVENT_TYPES`.
            handler (Callable): Called with each published event of that type.

        Returns:
            Callable[[], None]: A function that removes the registration.

        Raises:
            TypeError: If `event_type` is not a known event variant.
        """
        if event_type not in self._handlers:
            raise TypeError(f"Unknown event type: {event_type!r}")

        with self._lock:
            self._handlers[event_type].append(handler)

        def unsubscribe() -> None:
            with self._lock:
                if handler in self._handlers[event_type]:
                    self._handlers[event_type].remove(handler)

        return unsubscribe

    def publish(self, event: SyncEvent) -> None:
        """Delivers an event to every handler registered for its type."""
        with self._lock:
            handlers = list(self._handlers.get(type(event), ()))

        for handler in handlers:
            try:
                handler(event)
            except Exception:
                logger.exception(f"Event handler failed for {type(event).__name__}")
