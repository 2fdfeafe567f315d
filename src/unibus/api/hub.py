"""Fan bus events out to connected WebSocket clients."""

from __future__ import annotations

from typing import Any

import structlog
from fastapi import WebSocket

from unibus.bus.manager import MessageBus
from unibus.bus.models import UnifiedMessage
from unibus.events import Listener

logger = structlog.get_logger()

FORWARDED_EVENTS = ("message", "message_sent", "integration_status", "integration_error")


def _serialize(data: Any) -> Any:
    if isinstance(data, UnifiedMessage):
        return data.to_dict()
    return data


class EventHub:
    """Holds open sockets and pushes ``{"type": event, "data": ...}`` frames to each."""

    def __init__(self) -> None:
        self.clients: set[WebSocket] = set()
        self._subscriptions: list[tuple[str, Listener]] = []
        self._bus: MessageBus | None = None

    def attach(self, bus: MessageBus) -> None:
        self.detach()
        self._bus = bus
        for event in FORWARDED_EVENTS:

            async def forward(data: Any, _event: str = event) -> None:
                await self.broadcast(_event, data)

            bus.subscribe(event, forward)
            self._subscriptions.append((event, forward))

    def detach(self) -> None:
        if self._bus is not None:
            for event, listener in self._subscriptions:
                self._bus.unsubscribe(event, listener)
        self._subscriptions.clear()
        self._bus = None

    def add(self, websocket: WebSocket) -> None:
        self.clients.add(websocket)
        logger.info("api.ws.connected", clients=len(self.clients))

    def remove(self, websocket: WebSocket) -> None:
        self.clients.discard(websocket)
        logger.info("api.ws.disconnected", clients=len(self.clients))

    async def broadcast(self, event: str, data: Any) -> None:
        frame = {"type": event, "data": _serialize(data)}
        for websocket in list(self.clients):
            try:
                await websocket.send_json(frame)
            except Exception as exc:
                logger.warning("api.ws.send_failed", event=event, error=str(exc))
                self.clients.discard(websocket)
