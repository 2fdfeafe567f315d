"""Unibus FastAPI application entrypoint."""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import structlog
import uvicorn
from fastapi import FastAPI

from unibus.ai.responder import LLMResponder
from unibus.api.errors import register_error_handlers
from unibus.api.hub import EventHub
from unibus.bus.manager import GLOBAL_AGENT_KEY, MessageBus
from unibus.channels.manager import ChannelRuntimeManager
from unibus.config import get_config
from unibus.llm.gateway import LLMGateway
from unibus.logging import setup_logging

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Application startup/shutdown lifecycle."""
    config = get_config()
    setup_logging(level=config.log_level, fmt=config.log_format)

    logger.info("unibus.starting", version="1.0.0")

    bus = MessageBus(bot_username=config.bot_username)

    gateway: LLMGateway | None = None
    if config.ai.enabled:
        gateway = LLMGateway(config.ai)
        bus.register_ai_agent(GLOBAL_AGENT_KEY, LLMResponder(gateway, config.ai))
        logger.info("unibus.ai.enabled", model=config.ai.model)

    hub = EventHub()
    hub.attach(bus)

    channel_manager = ChannelRuntimeManager(config=config, bus=bus)
    await channel_manager.start()

    # Store on app state
    app.state.config = config
    app.state.bus = bus
    app.state.gateway = gateway
    app.state.hub = hub
    app.state.channel_manager = channel_manager

    logger.info("unibus.ready", platforms=list(channel_manager.adapters))

    yield

    # Shutdown
    logger.info("unibus.shutting_down")
    await channel_manager.stop()
    await bus.aclose()
    hub.detach()
    logger.info("unibus.stopped")


def create_app() -> FastAPI:
    """Create the FastAPI application."""
    app = FastAPI(
        title="Unibus",
        version="1.0.0",
        description="One message bus for Telegram, Slack and Discord.",
        lifespan=lifespan,
    )
    register_error_handlers(app)

    from unibus.api.routes.channels import router as channels_router
    from unibus.api.routes.health import router as health_router
    from unibus.api.routes.messages import router as messages_router
    from unibus.api.routes.platforms import router as platforms_router
    from unibus.api.routes.ws import router as ws_router

    app.include_router(health_router, tags=["health"])
    app.include_router(platforms_router, tags=["platforms"])
    app.include_router(messages_router, tags=["messages"])
    app.include_router(channels_router, tags=["channels"])
    app.include_router(ws_router, tags=["ws"])

    return app


app = create_app()


def main() -> None:
    """Run the server directly."""
    config = get_config()
    setup_logging(level=config.log_level, fmt=config.log_format)
    uvicorn.run(
        "unibus.main:app",
        host=config.host,
        port=config.port,
        log_level="warning",
    )


if __name__ == "__main__":
    main()
