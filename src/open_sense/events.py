"""Synchronous publish/subscribe for client events."""

import logging
from collections.abc import Callable
from typing import Any, Optional


_LOGGER = logging.getLogger(__name__)

SESSION_CHANGED = "session_changed"
REALTIME_UPDATE = "realtime_update"


class EventEmitter:
    """
    Named-event emitter.

    Handlers run synchronously, in registration order, inside the call
    to :meth:`emit`. A failing handler is logged and does not keep the
    remaining handlers from running.

    Example:
        >>> emitter = EventEmitter()
        >>> handler = emitter.on("session_changed", print)
        >>> emitter.emit("session_changed", None)
        None
    """

    def __init__(self, logger: logging.Logger = _LOGGER):
        # Per event: [handler, once] entries in registration order
        self._handlers: dict[str, list[list[Any]]] = {}
        self._logger = logger

    def on(self, event: str, handler: Optional[Callable[..., Any]] = None) -> Callable[..., Any]:
        """
        Register a handler and return it.

        Called without a handler, returns a decorator instead:

            @emitter.on("session_changed")
            def persist(session): ...
        """
        if handler is None:
            return lambda fn: self._add(event, fn, once=False)
        return self._add(event, handler, once=False)

    def once(self, event: str, handler: Callable[..., Any]) -> Callable[..., Any]:
        """Register a handler that is removed after its first call."""
        return self._add(event, handler, once=True)

    def _add(self, event: str, handler: Callable[..., Any], once: bool) -> Callable[..., Any]:
        self._handlers.setdefault(event, []).append([handler, once])
        return handler

    def off(self, event: str, handler: Callable[..., Any]) -> None:
        """Remove the first registration of a handler. Unknown handlers are ignored."""
        entries = self._handlers.get(event, [])
        for entry in entries:
            if entry[0] == handler:
                entries.remove(entry)
                return

    def remove_all_listeners(self, event: Optional[str] = None) -> None:
        if event is None:
            self._handlers.clear()
        else:
            self._handlers.pop(event, None)

    def listener_count(self, event: str) -> int:
        return len(self._handlers.get(event, []))

    def emit(self, event: str, *args: Any) -> bool:
        """
        Call every handler registered for ``event``.

        Returns:
            True if at least one handler was registered
        """
        entries = list(self._handlers.get(event, []))
        for entry in entries:
            handler, once = entry
            if once:
                registered = self._handlers.get(event, [])
                if not any(e is entry for e in registered):
                    continue
                registered[:] = [e for e in registered if e is not entry]
            try:
                handler(*args)
            except Exception:
                self._logger.error("Handler for %r event failed", event, exc_info=True)
        return bool(entries)
