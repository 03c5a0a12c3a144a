"""
Event system for Claw.

Small synchronous emitter so output handlers (console, API status, logging)
can follow what the agent does without the agent knowing about them.

Events:
    Turn events:
        - turn_start: A turn began (user_id, trigger, model)
        - turn_end: A turn finished (user_id, status, iterations, duration_ms)
        - llm_call_end: One model call finished (model, tokens, duration_ms)

    Tool events:
        - tool_start: Tool execution starting (name, input)
        - tool_end: Tool execution completed (name, result, duration_ms)

Usage:
    agent.on("tool_start", lambda e: print(f"Running {e['name']}..."))

    @agent.on("turn_end")
    def log_turn(e):
        ...
"""

import logging
from typing import Any, Callable

logger = logging.getLogger(__name__)

Handler = Callable[[dict[str, Any]], None]


class EventEmitter:
    """
    Mixin providing on/off/once/emit.

    Handlers registered for "*" receive every event. Handler errors are
    logged and never reach the emitter.
    """

    def __init_events__(self):
        """Initialize handler storage. Call from __init__ when used as a mixin."""
        if not hasattr(self, "_event_handlers"):
            self._event_handlers: dict[str, list[Handler]] = {}

    def on(self, event: str, handler: Handler = None) -> Callable:
        """
        Subscribe to an event, or to all events with "*".

        Returns the handler, or a decorator when ``handler`` is omitted.
        """
        self.__init_events__()
        handlers = self._event_handlers.setdefault(event, [])

        if handler is None:
            def decorator(fn: Handler) -> Handler:
                handlers.append(fn)
                return fn
            return decorator

        handlers.append(handler)
        return handler

    def off(self, event: str, handler: Handler = None):
        """Remove one handler, or every handler for ``event`` when none is given."""
        self.__init_events__()
        if event not in self._event_handlers:
            return
        if handler is None:
            self._event_handlers[event] = []
        else:
            self._event_handlers[event] = [h for h in self._event_handlers[event] if h != handler]

    def emit(self, event: str, data: dict[str, Any] = None):
        """Deliver ``data`` to the event's handlers, then to wildcard handlers."""
        self.__init_events__()
        data = data or {}
        data["_event"] = event

        for handler in self._event_handlers.get(event, []) + self._event_handlers.get("*", []):
            try:
                handler(data)
            except Exception as e:
                logger.debug("Event handler for %s failed: %s", event, e)

    def once(self, event: str, handler: Handler) -> Handler:
        """Subscribe for a single emission only."""
        def wrapper(data):
            self.off(event, wrapper)
            handler(data)

        return self.on(event, wrapper)
