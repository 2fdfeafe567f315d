"""Observer-list event emitter used by adapters and the bus."""

from __future__ import annotations

import inspect
from collections.abc import Callable
from typing import Any

import structlog

logger = structlog.get_logger()

Listener = Callable[..., Any]


class EventEmitter:
    """Ordered listener lists keyed by event name.

    Listeners may be plain callables or coroutine functions. ``emit`` awaits
    them one after another in registration order, so events from a single
    source are delivered in the order they were emitted. A failing listener
    is logged and does not stop delivery to the rest.
    """

    def __init__(self) -> None:
        self._listeners: dict[str, list[Listener]] = {}

    def on(self, event: str, listener: Listener) -> Listener:
        self._listeners.setdefault(event, []).append(listener)
        return listener

    def off(self, event: str, listener: Listener) -> None:
        listeners = self._listeners.get(event)
        if not listeners:
            return
        try:
            listeners.remove(listener)
        except ValueError:
            return
        if not listeners:
            del self._listeners[event]

    def listener_count(self, event: str) -> int:
        return len(self._listeners.get(event, ()))

    async def emit(self, event: str, *args: Any) -> None:
        for listener in list(self._listeners.get(event, ())):
            try:
                result = listener(*args)
                if inspect.isawaitable(result):
                    await result
            except Exception as exc:
                logger.error(
                    "events.listener_failed",
                    event=event,
                    listener=getattr(listener, "__qualname__", repr(listener)),
                    error=str(exc),
                )
