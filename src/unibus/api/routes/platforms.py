"""Platform health and connection control."""

from __future__ import annotations

from fastapi import APIRouter, Request

router = APIRouter()


@router.get("/api/platforms")
async def list_platforms(request: Request) -> dict:
    reports = await request.app.state.bus.health()
    return {"platforms": [report.to_dict() for report in reports.values()]}


@router.post("/api/platforms/{platform}/connect")
async def connect_platform(platform: str, request: Request) -> dict:
    adapter = await request.app.state.channel_manager.connect_platform(platform)
    report = await adapter.health_check()
    return {"platform": platform, "status": "connected", "health": report.to_dict()}


@router.post("/api/platforms/{platform}/disconnect")
async def disconnect_platform(platform: str, request: Request) -> dict:
    await request.app.state.channel_manager.disconnect_platform(platform)
    return {"platform": platform, "status": "disconnected"}
