"""Channel listing endpoint."""

from __future__ import annotations

from fastapi import APIRouter, Request

router = APIRouter()


@router.get("/api/channels")
async def list_channels(request: Request, platform: str | None = None) -> dict:
    channels = request.app.state.bus.get_channels()
    if platform:
        channels = [channel for channel in channels if channel.platform == platform]
    return {"channels": [channel.to_dict() for channel in channels]}
