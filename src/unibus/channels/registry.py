"""Platform name -> adapter factory."""

from __future__ import annotations

from collections.abc import Callable

from unibus.channels.base import ChannelAdapter
from unibus.channels.discord.adapter import DiscordAdapter
from unibus.channels.slack.adapter import SlackAdapter
from unibus.channels.telegram.adapter import TelegramAdapter
from unibus.config import ReconnectConfig, UnibusConfig
from unibus.errors import UnknownPlatformError

AdapterFactory = Callable[[UnibusConfig, ReconnectConfig], ChannelAdapter]

ADAPTER_FACTORIES: dict[str, AdapterFactory] = {
    "telegram": lambda config, reconnect: TelegramAdapter(config.channels.telegram, reconnect=reconnect),
    "slack": lambda config, reconnect: SlackAdapter(config.channels.slack, reconnect=reconnect),
    "discord": lambda config, reconnect: DiscordAdapter(config.channels.discord, reconnect=reconnect),
}

SUPPORTED_PLATFORMS = tuple(ADAPTER_FACTORIES)


def create_adapter(platform: str, config: UnibusConfig) -> ChannelAdapter:
    factory = ADAPTER_FACTORIES.get(platform)
    if factory is None:
        raise UnknownPlatformError(platform, operation="create_adapter")
    return factory(config, config.reconnect)
