"""Channel runtime manager."""

from __future__ import annotations

from typing import Any

import structlog

from unibus.bus.manager import MessageBus
from unibus.channels.base import ChannelAdapter
from unibus.channels.registry import SUPPORTED_PLATFORMS, create_adapter
from unibus.config import UnibusConfig

logger = structlog.get_logger()


class ChannelRuntimeManager:
    """Builds the enabled adapters, registers them on the bus and owns their lifecycle."""

    def __init__(self, config: UnibusConfig, bus: MessageBus) -> None:
        self.config = config
        self.bus = bus
        self.adapters: dict[str, ChannelAdapter] = {}

        self._initialize_adapters()

    def _initialize_adapters(self) -> None:
        for platform in SUPPORTED_PLATFORMS:
            adapter = create_adapter(platform, self.config)
            if not adapter.enabled:
                logger.info("channels.adapter.disabled", platform=platform)
                continue
            self._register(platform, adapter)

    def _register(self, platform: str, adapter: ChannelAdapter) -> None:
        self.adapters[platform] = adapter
        self.bus.register_integration(platform, adapter)

    async def start(self) -> None:
        """Connect every registered adapter. One failing platform does not stop the others."""
        for platform, adapter in self.adapters.items():
            try:
                await adapter.connect()
                logger.info("channels.adapter.started", platform=platform)
            except Exception as e:
                logger.error("channels.adapter.start_failed", platform=platform, error=str(e))

    async def stop(self) -> None:
        """Disconnect all adapters."""
        for platform, adapter in self.adapters.items():
            try:
                await adapter.disconnect()
                logger.info("channels.adapter.stopped", platform=platform)
            except Exception as e:
                logger.warning("channels.adapter.stop_failed", platform=platform, error=str(e))

    async def connect_platform(self, platform: str) -> ChannelAdapter:
        """(Re)connect one platform with a fresh adapter instance.

        The old adapter, if any, is disconnected before the replacement is
        registered. Connection errors propagate to the caller.
        """
        previous = self.adapters.get(platform)
        if previous is not None:
            await self._safe_disconnect(platform, previous)

        adapter = create_adapter(platform, self.config)
        self._register(platform, adapter)
        adapter.reset_reconnect()
        await adapter.connect()
        logger.info("channels.adapter.connected", platform=platform)
        return adapter

    async def disconnect_platform(self, platform: str) -> ChannelAdapter:
        adapter = self.bus.get_integration(platform)
        await adapter.disconnect()
        logger.info("channels.adapter.disconnected", platform=platform)
        return adapter

    async def _safe_disconnect(self, platform: str, adapter: ChannelAdapter) -> None:
        try:
            await adapter.disconnect()
        except Exception as e:
            logger.warning("channels.adapter.stop_failed", platform=platform, error=str(e))

    def statuses(self) -> list[dict[str, Any]]:
        """Return runtime status for every supported platform."""
        statuses = []
        for platform in SUPPORTED_PLATFORMS:
            adapter = self.adapters.get(platform)
            statuses.append(
                {
                    "platform": platform,
                    "enabled": adapter is not None,
                    "connected": bool(adapter and adapter.connected),
                    "last_activity": (
                        adapter.last_activity.isoformat()
                        if adapter and adapter.last_activity
                        else None
                    ),
                    "reconnect_attempts": adapter.reconnect_attempts if adapter else 0,
                }
            )
        return statuses
