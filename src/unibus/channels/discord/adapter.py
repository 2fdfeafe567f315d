"""Discord adapter (discord.py gateway client)."""

from __future__ import annotations

import asyncio
from typing import Any

import discord
import structlog

from unibus.channels.base import ChannelAdapter, SendOptions, SendResult
from unibus.config import DiscordChannelConfig, ReconnectConfig
from unibus.errors import AdapterConnectionError, AdapterNotConnectedError, AdapterSendError

logger = structlog.get_logger()


def translate_message(message: Any, *, is_edit: bool = False) -> dict[str, Any]:
    """Flatten a ``discord.Message`` into the payload the bus normalizes."""
    author = message.author
    channel = message.channel
    guild = getattr(message, "guild", None)
    native_type = getattr(message.type, "name", message.type)
    edited_at = getattr(message, "edited_at", None)
    return {
        "id": str(message.id),
        "content": message.content,
        "author": {
            "id": str(author.id),
            "username": author.name,
            "global_name": getattr(author, "global_name", None),
            "discriminator": getattr(author, "discriminator", None),
            "bot": bool(getattr(author, "bot", False)),
        },
        "channel": {
            "id": str(channel.id),
            "name": getattr(channel, "name", None),
            "type": str(getattr(channel, "type", "")),
        },
        "guild": {"id": str(guild.id), "name": guild.name} if guild else None,
        "type": str(native_type),
        "timestamp": message.created_at.isoformat(),
        "edited_timestamp": edited_at.isoformat() if edited_at else None,
        "attachments": [
            {
                "id": str(attachment.id),
                "url": attachment.url,
                "filename": attachment.filename,
                "size": attachment.size,
                "content_type": getattr(attachment, "content_type", None),
            }
            for attachment in message.attachments
        ],
        "mentions": [{"id": str(user.id), "username": user.name} for user in message.mentions],
        "reactions": [
            {"emoji": str(reaction.emoji), "count": reaction.count}
            for reaction in getattr(message, "reactions", [])
        ],
        "is_edit": is_edit,
        "platform": "discord",
    }


class DiscordAdapter(ChannelAdapter):
    def __init__(
        self,
        config: DiscordChannelConfig,
        *,
        reconnect: ReconnectConfig | None = None,
    ) -> None:
        super().__init__("discord", reconnect)
        self.config = config
        self.guilds: dict[str, dict[str, Any]] = {}
        self.channels: dict[str, dict[str, Any]] = {}

        self._client: discord.Client | None = None
        self._runner: asyncio.Task[None] | None = None
        self._ready = asyncio.Event()
        self._closing = False

    @property
    def enabled(self) -> bool:
        return bool(self.config.enabled and self.validate_config())

    def validate_config(self) -> bool:
        return bool(self.config.bot_token.strip())

    def _build_client(self) -> discord.Client:
        intents = discord.Intents.default()
        intents.message_content = True
        intents.messages = True
        intents.guilds = True
        client = discord.Client(intents=intents)

        @client.event
        async def on_ready() -> None:
            # A new gateway session after a drop fires on_ready instead of on_resumed.
            if self._ready.is_set() and not self.connected:
                await self.emit_status("connected")
            self._ready.set()
            logger.info("channels.discord.ready", user=str(client.user))

        @client.event
        async def on_message(message: discord.Message) -> None:
            await self._handle_message(message)

        @client.event
        async def on_message_edit(_before: discord.Message, after: discord.Message) -> None:
            await self._handle_message(after, is_edit=True)

        @client.event
        async def on_disconnect() -> None:
            if self.connected and not self._closing:
                await self.emit_status("disconnected")

        @client.event
        async def on_resumed() -> None:
            await self.emit_status("connected")

        return client

    async def connect(self) -> None:
        if not self.validate_config():
            error = AdapterConnectionError("Discord bot token is required", platform=self.platform)
            await self.emit_error(error)
            raise error

        await self._teardown()
        self._closing = False
        self._ready.clear()
        self._client = self._build_client()
        self._runner = asyncio.create_task(
            self._client.start(self.config.bot_token.strip()),
            name="channel-discord-gateway",
        )

        waiter = asyncio.create_task(self._ready.wait())
        try:
            await asyncio.wait(
                {self._runner, waiter},
                timeout=self.config.ready_timeout_s,
                return_when=asyncio.FIRST_COMPLETED,
            )
        finally:
            waiter.cancel()

        if not self._ready.is_set():
            reason = "timed out waiting for gateway ready"
            if self._runner.done() and not self._runner.cancelled() and self._runner.exception():
                reason = str(self._runner.exception())
            await self._teardown()
            error = AdapterConnectionError(f"Discord login failed: {reason}", platform=self.platform)
            await self.emit_error(error)
            raise error

        self._runner.add_done_callback(self._on_gateway_exit)
        await self.load_channels()
        await self.emit_status("connected")

    def _on_gateway_exit(self, task: asyncio.Task[None]) -> None:
        if self._closing or task.cancelled():
            return
        exc = task.exception()
        if exc is None:
            return
        logger.warning("channels.discord.gateway_lost", error=str(exc))
        if self._reconnect_task is not None and not self._reconnect_task.done():
            self._reconnect_requested = True
            return
        self._reconnect_task = asyncio.create_task(
            self._recover(exc),
            name="channel-discord-reconnect",
        )

    async def _recover(self, exc: BaseException) -> bool:
        await self.emit_error(exc)
        await self.emit_status("disconnected")
        return await self.handle_reconnect()

    async def disconnect(self) -> None:
        await self.cancel_reconnect()
        await self._teardown()
        await self.emit_status("disconnected")

    async def _teardown(self) -> None:
        self._closing = True
        client, runner = self._client, self._runner
        self._client = None
        self._runner = None
        if client is not None and not client.is_closed():
            await client.close()
        if runner is not None and not runner.done():
            runner.cancel()
            try:
                await runner
            except (asyncio.CancelledError, discord.DiscordException):
                pass

    async def _handle_message(self, message: Any, *, is_edit: bool = False) -> None:
        if message is None or getattr(message.author, "bot", False):
            return
        if not self.accepts_channel(message.channel.id, self.config.listen_channels):
            return
        await self.emit_message(translate_message(message, is_edit=is_edit))

    async def _resolve_channel(self, channel_id: str) -> Any:
        if self._client is None:
            raise AdapterNotConnectedError(self.platform, "resolve_channel")
        snowflake = int(channel_id)
        channel = self._client.get_channel(snowflake)
        if channel is None:
            channel = await self._client.fetch_channel(snowflake)
        return channel

    async def send_message(
        self,
        channel_id: str,
        content: str,
        options: SendOptions | None = None,
    ) -> SendResult:
        if self._client is None:
            raise AdapterNotConnectedError(self.platform, "send_message")
        options = options or SendOptions()

        try:
            channel = await self._resolve_channel(channel_id)
            if not callable(getattr(channel, "send", None)):
                raise AdapterSendError(
                    f"Channel {channel_id} is not messageable",
                    platform=self.platform,
                    channel_id=channel_id,
                )

            kwargs: dict[str, Any] = {"content": content, "tts": options.tts}
            if options.reply_to:
                kwargs["reference"] = discord.MessageReference(
                    message_id=int(options.reply_to),
                    channel_id=int(channel_id),
                    fail_if_not_exists=False,
                )
            if options.attachments:
                kwargs["files"] = [discord.File(path) for path in options.attachments]
            kwargs.update(options.extra)

            sent = await channel.send(**kwargs)
        except AdapterSendError:
            raise
        except (discord.DiscordException, ValueError, OSError) as exc:
            logger.warning("channels.discord.send_failed", channel_id=channel_id, error=str(exc))
            raise AdapterSendError(str(exc), platform=self.platform, channel_id=channel_id) from exc

        self.last_activity = self._now()
        return SendResult(
            message_id=str(sent.id),
            channel_id=str(sent.channel.id),
            timestamp=sent.created_at,
            platform=self.platform,
        )

    async def load_channels(self) -> None:
        if self._client is None:
            raise AdapterNotConnectedError(self.platform, "load_channels")
        for guild in self._client.guilds:
            self.guilds[str(guild.id)] = {
                "id": str(guild.id),
                "name": guild.name,
                "member_count": guild.member_count,
                "platform": self.platform,
            }
            for channel in guild.text_channels:
                self.channels[str(channel.id)] = {
                    "id": str(channel.id),
                    "name": channel.name,
                    "type": "text",
                    "guild_id": str(guild.id),
                    "guild_name": guild.name,
                    "topic": channel.topic,
                    "position": channel.position,
                    "platform": self.platform,
                }
        logger.info(
            "channels.discord.channels_loaded",
            guilds=len(self.guilds),
            channels=len(self.channels),
        )

    async def get_channels(self) -> list[dict[str, Any]]:
        await self.load_channels()
        return list(self.channels.values())

    async def get_messages(
        self,
        channel_id: str,
        *,
        limit: int = 100,
        before: str | None = None,
    ) -> list[dict[str, Any]]:
        channel = await self._resolve_channel(channel_id)
        cursor = discord.Object(id=int(before)) if before else None
        return [
            translate_message(message)
            async for message in channel.history(limit=limit, before=cursor)
        ]

    async def _probe(self) -> dict[str, Any]:
        if self._client is None:
            raise AdapterNotConnectedError(self.platform, "health_check")
        user = self._client.user
        return {
            "user": {"id": str(user.id), "username": user.name} if user else None,
            "latency_ms": round(self._client.latency * 1000, 1),
            "guilds_count": len(self.guilds),
            "channels_count": len(self.channels),
        }
