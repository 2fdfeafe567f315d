"""Message query, send and broadcast endpoints."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from fastapi import APIRouter, Query, Request
from pydantic import BaseModel, Field

router = APIRouter()


class SendRequest(BaseModel):
    platform: str
    channel_id: str
    content: str
    options: dict[str, Any] = Field(default_factory=dict)


class BroadcastRequest(BaseModel):
    content: str
    channels: list[str] | dict[str, list[str]] | None = Field(
        default=None,
        description="One list for every platform, or per-platform lists",
    )
    options: dict[str, Any] = Field(default_factory=dict)


@router.get("/api/messages")
async def list_messages(
    request: Request,
    platform: str | None = None,
    channel: str | None = None,
    author: str | None = None,
    since: datetime | None = None,
    limit: int = Query(default=50, ge=1, le=1000),
) -> dict:
    messages = request.app.state.bus.get_messages(
        platform=platform,
        channel_id=channel,
        author=author,
        since=since,
        limit=limit,
    )
    return {"messages": [message.to_dict() for message in messages], "count": len(messages)}


@router.post("/api/messages/send")
async def send_message(body: SendRequest, request: Request) -> dict:
    result = await request.app.state.bus.send_message(
        body.platform,
        body.channel_id,
        body.content,
        body.options,
    )
    return {"result": result.to_dict()}


@router.post("/api/messages/broadcast")
async def broadcast(body: BroadcastRequest, request: Request) -> dict:
    deliveries = await request.app.state.bus.send_cross_channel_message(
        body.content,
        channels=body.channels,
        options=body.options,
    )
    return {
        "results": [delivery.to_dict() for delivery in deliveries],
        "delivered": sum(1 for delivery in deliveries if delivery.ok),
        "failed": sum(1 for delivery in deliveries if not delivery.ok),
    }
