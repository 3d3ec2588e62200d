"""
ReducerWrapper — a plain handler function dressed up as a top-level reducer.

Both the wrapper and the Router publish "action" telemetry events:

    wrapper.on("action", lambda sender_id, action, text, req: ...)

Listeners are for analytics and test tooling; they never influence routing.
"""
from __future__ import annotations

import inspect
from collections import defaultdict
from typing import Any, Callable, Optional

import structlog

logger = structlog.get_logger()


class EventSource:
    """Minimal synchronous event emitter."""

    def __init__(self):
        self._listeners: dict[str, list[Callable]] = defaultdict(list)

    def on(self, event: str, listener: Callable) -> EventSource:
        self._listeners[event].append(listener)
        return self

    def off(self, event: str, listener: Callable) -> EventSource:
        if listener in self._listeners.get(event, []):
            self._listeners[event].remove(listener)
        return self

    def emit(self, event: str, *args: Any) -> None:
        for listener in list(self._listeners.get(event, [])):
            try:
                listener(*args)
            except Exception as e:
                logger.warning("event_listener_failed", event_name=event, error=str(e))


class ReducerWrapper(EventSource):

    def __init__(self, reduce: Optional[Callable] = None):
        super().__init__()
        self._reduce = reduce or (lambda req, res, post_back: None)

    async def reduce(self, req, res, post_back=None, location: str = "/") -> Any:
        result = self._reduce(req, res, post_back)
        if inspect.isawaitable(result):
            result = await result
        self.emit_action(req)
        return result

    def emit_action(self, req, action: Optional[str] = None) -> None:
        self.emit("action", req.sender_id, action or req.action(), req.text(), req)
