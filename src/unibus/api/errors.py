"""Render ``UnibusError`` as JSON responses."""

from __future__ import annotations

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from unibus.errors import AdapterNotConnectedError, UnibusError, UnknownPlatformError


def status_for(error: UnibusError) -> int:
    if isinstance(error, UnknownPlatformError):
        return 404
    if isinstance(error, AdapterNotConnectedError):
        return 409
    return 502


async def unibus_error_handler(_request: Request, exc: UnibusError) -> JSONResponse:
    return JSONResponse(status_code=status_for(exc), content={"error": exc.to_dict()})


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(UnibusError, unibus_error_handler)
