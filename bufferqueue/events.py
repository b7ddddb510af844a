"""
Event registration and dispatch for bufferqueue.

The scheduler reports the lifecycle of every key through an EventManager.
Handlers are plain callables registered per event name and are invoked
synchronously, in registration order, with the event's positional arguments.

Example:
    >>> from bufferqueue.events import EventManager, EVENT_SUCCESS
    >>>
    >>> events = EventManager()
    >>> events.on(EVENT_SUCCESS, lambda key, payload, ms: print(key, len(payload)))
    >>> events.emit(EVENT_SUCCESS, "https://example.com/a.bin", b"abc", 12.5)
    https://example.com/a.bin 3
"""

from __future__ import annotations

import logging
from collections import defaultdict
from collections.abc import Callable
from typing import Any

logger = logging.getLogger(__name__)

EventHandler = Callable[..., Any]

# Events emitted by the scheduler

EVENT_ADDED = "added"
"""(key, level): a key was queued, or moved to another level."""

EVENT_REMOVED = "removed"
"""(key): a queued key was removed and will not be downloaded."""

EVENT_RESETED = "reseted"
"""(): the whole priority queue was emptied."""

EVENT_DOWNLOADING = "downloading"
"""(key): a key was popped from the queue and its transfer started."""

EVENT_SUCCESS = "success"
"""(key, payload, elapsed_ms): a transfer completed and was decoded."""

EVENT_FAILED = "failed"
"""(key, error): a transfer ended with a ProtocolFailure or TransportError."""

EVENT_ABORTED = "aborted"
"""(key): a transfer was cancelled by an explicit abort."""

ALL_EVENTS = (
    EVENT_ADDED,
    EVENT_REMOVED,
    EVENT_RESETED,
    EVENT_DOWNLOADING,
    EVENT_SUCCESS,
    EVENT_FAILED,
    EVENT_ABORTED,
)


class EventManager:
    """
    Maps event names to ordered lists of handlers.

    Emitting an event nobody listens to is silently ignored. A handler that
    raises is logged and skipped so that one faulty listener can neither
    starve the others nor break the caller's control flow.

    Example:
        >>> events = EventManager()
        >>> seen = []
        >>> events.on("added", lambda key, level: seen.append((key, level)))
        >>> events.emit("added", "a", 0)
        >>> seen
        [('a', 0)]
    """

    def __init__(self) -> None:
        self._handlers: dict[str, list[EventHandler]] = defaultdict(list)

    def on(self, event_name: str, handler: EventHandler) -> None:
        """
        Register a handler for an event.

        Args:
            event_name: Name of the event.
            handler: Callable invoked with the event's arguments.
        """
        if not callable(handler):
            logger.warning(f"Ignoring non-callable handler for event '{event_name}'")
            return
        self._handlers[event_name].append(handler)

    def off(self, event_name: str, handler: EventHandler) -> bool:
        """
        Unregister a handler.

        Returns:
            True if the handler was removed, False if it was not registered.
        """
        handlers = self._handlers.get(event_name)
        if not handlers:
            return False
        try:
            handlers.remove(handler)
            return True
        except ValueError:
            return False

    def clear(self, event_name: str | None = None) -> None:
        """Remove the handlers of one event, or of all events."""
        if event_name is None:
            self._handlers.clear()
        else:
            self._handlers.pop(event_name, None)

    def handlers(self, event_name: str) -> list[EventHandler]:
        """Get a copy of the handlers registered for an event."""
        return list(self._handlers.get(event_name, ()))

    def emit(self, event_name: str, *args: Any) -> None:
        """
        Call every handler of an event, in the order they were registered.

        Args:
            event_name: Name of the event to fire.
            *args: Positional arguments passed to each handler.
        """
        handlers = self._handlers.get(event_name)
        if not handlers:
            return

        # Copy so handlers may (un)register during dispatch
        for handler in list(handlers):
            try:
                handler(*args)
            except Exception:
                logger.exception(f"Handler for event '{event_name}' raised")
