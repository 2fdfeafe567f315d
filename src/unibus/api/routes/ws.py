"""WebSocket feed of bus events with a small command channel."""

from __future__ import annotations

from typing import Any

import structlog
from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from unibus.bus.manager import MessageBus
from unibus.errors import UnibusError, error_payload

logger = structlog.get_logger()

router = APIRouter()

MAX_LIST_LIMIT = 1000


def _list_limit(value: Any) -> int:
    """Same bounds as the HTTP ``limit`` query: default 50, 1..1000."""
    if value is None:
        return 50
    if isinstance(value, bool) or not isinstance(value, (int, str)):
        raise ValueError(f"limit must be an integer, got {value!r}")
    limit = int(value)
    if limit < 1:
        raise ValueError(f"limit must be at least 1, got {limit}")
    return min(limit, MAX_LIST_LIMIT)


async def _run_command(bus: MessageBus, command: str, data: dict[str, Any]) -> Any:
    if command == "send_message":
        result = await bus.send_message(
            str(data.get("platform", "")),
            str(data.get("channel_id", "")),
            str(data.get("content", "")),
            data.get("options"),
        )
        return result.to_dict()
    if command == "list_messages":
        messages = bus.get_messages(
            platform=data.get("platform"),
            channel_id=data.get("channel") or data.get("channel_id"),
            author=data.get("author"),
            since=data.get("since"),
            limit=_list_limit(data.get("limit")),
        )
        return [message.to_dict() for message in messages]
    if command == "list_channels":
        platform = data.get("platform")
        return [
            channel.to_dict()
            for channel in bus.get_channels()
            if not platform or channel.platform == platform
        ]
    if command == "status":
        reports = await bus.health()
        return {
            "stats": bus.get_stats(),
            "platforms": [report.to_dict() for report in reports.values()],
        }
    raise ValueError(f"Unknown command: {command}")


@router.websocket("/ws")
async def events_socket(websocket: WebSocket) -> None:
    hub = websocket.app.state.hub
    bus = websocket.app.state.bus

    await websocket.accept()
    hub.add(websocket)
    try:
        while True:
            frame = await websocket.receive_json()
            if not isinstance(frame, dict) or frame.get("type") != "command":
                await websocket.send_json(
                    {"type": "error", "error": {"type": "ValueError", "message": "Expected a command frame"}}
                )
                continue

            command = str(frame.get("command", ""))
            data = frame.get("data") or {}
            if not isinstance(data, dict):
                await websocket.send_json(
                    {
                        "type": "error",
                        "command": command,
                        "error": {"type": "ValueError", "message": "Command data must be an object"},
                    }
                )
                continue
            try:
                result = await _run_command(bus, command, data)
            except (UnibusError, ValueError) as exc:
                logger.warning("api.ws.command_failed", command=command, error=str(exc))
                await websocket.send_json(
                    {"type": "error", "command": command, "error": error_payload(exc, operation=command)}
                )
                continue
            await websocket.send_json({"type": "command_result", "command": command, "data": result})
    except WebSocketDisconnect:
        pass
    finally:
        hub.remove(websocket)
