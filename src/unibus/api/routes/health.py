"""Health and status endpoints."""

from __future__ import annotations

import time

from fastapi import APIRouter, Request

router = APIRouter()

_start_time = time.time()


@router.get("/health")
async def health(request: Request) -> dict:
    """Liveness plus a connected/registered platform count."""
    bus = request.app.state.bus
    connected = [platform for platform, adapter in bus.integrations.items() if adapter.connected]
    return {
        "status": "ok",
        "version": "1.0.0",
        "uptime_seconds": round(time.time() - _start_time, 1),
        "platforms": {"registered": len(bus.integrations), "connected": len(connected)},
    }


@router.get("/api/status")
async def status(request: Request) -> dict:
    bus = request.app.state.bus
    manager = getattr(request.app.state, "channel_manager", None)
    gateway = getattr(request.app.state, "gateway", None)
    return {
        "stats": bus.get_stats(),
        "platforms": manager.statuses() if manager else [],
        "ai": gateway.stats if gateway else None,
    }
