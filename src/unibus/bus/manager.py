"""Message bus: adapter registry, in-memory message log and routing."""

from __future__ import annotations

import asyncio
from collections.abc import Iterable, Mapping
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

import structlog

from unibus.bus.models import Author, ChannelSummary, DeliveryResult, UnifiedMessage
from unibus.bus.normalize import normalize_message
from unibus.channels.base import ChannelAdapter, HealthReport, SendOptions, SendResult
from unibus.errors import UnknownPlatformError, error_payload
from unibus.events import EventEmitter, Listener

if TYPE_CHECKING:
    from unibus.ai.responder import AIResponder

logger = structlog.get_logger()

GLOBAL_AGENT_KEY = "global"
BOT_AUTHOR_ID = "bot"

ChannelTargets = Iterable[str] | Mapping[str, Iterable[str]]


def _coerce_datetime(value: datetime | str) -> datetime:
    parsed = datetime.fromisoformat(value) if isinstance(value, str) else value
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


class MessageBus(EventEmitter):
    """Owns registered adapters, stored messages and AI bindings.

    Events emitted to subscribers:

    - ``message``: every normalized inbound ``UnifiedMessage``
    - ``message_sent``: the ``UnifiedMessage`` synthesized for each outbound send
    - ``integration_status``: ``{"platform", "status"}``
    - ``integration_error``: ``{"platform", "error"}`` with a structured error
    """

    def __init__(self, *, bot_username: str = "Unibus") -> None:
        super().__init__()
        self.bot_username = bot_username
        self.messages: dict[str, UnifiedMessage] = {}
        self.integrations: dict[str, ChannelAdapter] = {}
        self.ai_agents: dict[str, AIResponder] = {}
        self._adapter_listeners: dict[str, list[tuple[str, Listener]]] = {}
        self._ai_tasks: set[asyncio.Task[None]] = set()

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def register_integration(self, platform: str, adapter: ChannelAdapter) -> None:
        """Register ``adapter`` under ``platform``.

        A previously registered adapter for the same platform is replaced and
        the bus's listeners are detached from it. The old adapter is not
        disconnected; callers that want that must disconnect it first.
        """
        previous = self.integrations.get(platform)
        if previous is not None:
            self._detach(platform, previous)
            logger.warning("bus.integration.replaced", platform=platform)

        async def on_message(payload: dict[str, Any]) -> None:
            await self.handle_incoming_message(platform, payload)

        async def on_status(status: str) -> None:
            await self.emit("integration_status", {"platform": platform, "status": status})

        async def on_error(error: BaseException) -> None:
            await self.emit(
                "integration_error",
                {"platform": platform, "error": error_payload(error, platform=platform)},
            )

        listeners: list[tuple[str, Listener]] = [
            ("message", on_message),
            ("status", on_status),
            ("error", on_error),
        ]
        for event, listener in listeners:
            adapter.on(event, listener)

        self.integrations[platform] = adapter
        self._adapter_listeners[platform] = listeners
        logger.info("bus.integration.registered", platform=platform)

    def unregister_integration(self, platform: str) -> ChannelAdapter | None:
        adapter = self.integrations.pop(platform, None)
        if adapter is not None:
            self._detach(platform, adapter)
            logger.info("bus.integration.unregistered", platform=platform)
        return adapter

    def get_integration(self, platform: str) -> ChannelAdapter:
        adapter = self.integrations.get(platform)
        if adapter is None:
            raise UnknownPlatformError(platform, operation="get_integration")
        return adapter

    def _detach(self, platform: str, adapter: ChannelAdapter) -> None:
        for event, listener in self._adapter_listeners.pop(platform, []):
            adapter.off(event, listener)

    def register_ai_agent(self, key: str, agent: AIResponder) -> None:
        """Bind a responder to ``"global"``, a channel id or ``"platform:channel"``."""
        self.ai_agents[key] = agent
        logger.info("bus.ai_agent.registered", key=key)

    def unregister_ai_agent(self, key: str) -> None:
        self.ai_agents.pop(key, None)

    def subscribe(self, event: str, handler: Listener) -> Listener:
        """Consumer-facing alias for ``on``; returns ``handler`` for later ``unsubscribe``."""
        return self.on(event, handler)

    def unsubscribe(self, event: str, handler: Listener) -> None:
        self.off(event, handler)

    # ------------------------------------------------------------------
    # Inbound
    # ------------------------------------------------------------------

    async def handle_incoming_message(self, platform: str, payload: dict[str, Any]) -> UnifiedMessage:
        """Normalize, store and publish one inbound message."""
        message = normalize_message(platform, payload)
        self.messages[message.id] = message

        logger.info(
            "bus.message.received",
            platform=platform,
            channel_id=message.channel_id,
            message_id=message.id,
            is_edit=message.is_edit,
            preview=message.content[:80],
        )

        use_ai = self.should_process_with_ai(message)
        await self.emit("message", message)
        if use_ai:
            self._dispatch_ai(message)
        return message

    def should_process_with_ai(self, message: UnifiedMessage) -> bool:
        content = message.content
        return (
            "@ai" in content
            or content.startswith("/ai")
            or self._channel_agent(message) is not None
        )

    def _channel_agent(self, message: UnifiedMessage) -> AIResponder | None:
        scoped = self.ai_agents.get(f"{message.platform}:{message.channel_id}")
        if scoped is not None:
            return scoped
        return self.ai_agents.get(message.channel_id)

    def _dispatch_ai(self, message: UnifiedMessage) -> None:
        task = asyncio.create_task(
            self._process_with_ai(message),
            name=f"bus-ai-{message.id}",
        )
        self._ai_tasks.add(task)
        task.add_done_callback(self._ai_tasks.discard)

    async def _process_with_ai(self, message: UnifiedMessage) -> None:
        agent = self._channel_agent(message) or self.ai_agents.get(GLOBAL_AGENT_KEY)
        if agent is None:
            logger.warning(
                "bus.ai.no_agent",
                platform=message.platform,
                channel_id=message.channel_id,
            )
            return

        try:
            reply = await agent.process_message(message)
            if reply and reply.strip():
                await self.send_message(message.platform, message.channel_id, reply)
        except Exception as exc:
            logger.error(
                "bus.ai.failed",
                platform=message.platform,
                channel_id=message.channel_id,
                message_id=message.id,
                error=str(exc),
            )

    # ------------------------------------------------------------------
    # Outbound
    # ------------------------------------------------------------------

    async def send_message(
        self,
        platform: str,
        channel_id: str,
        content: str,
        options: SendOptions | dict[str, Any] | None = None,
    ) -> SendResult:
        """Send through the platform's adapter and log the outbound message.

        Raises ``UnknownPlatformError`` before touching any adapter when the
        platform is not registered. Adapter failures propagate unchanged.
        """
        adapter = self.integrations.get(platform)
        if adapter is None:
            raise UnknownPlatformError(platform)

        if not isinstance(options, SendOptions):
            options = SendOptions.from_dict(options)

        try:
            result = await adapter.send_message(str(channel_id), content, options)
        except Exception as exc:
            logger.error(
                "bus.send.failed",
                platform=platform,
                channel_id=str(channel_id),
                error=str(exc),
            )
            raise

        message = UnifiedMessage(
            platform=platform,
            channel_id=str(channel_id),
            author=Author(id=BOT_AUTHOR_ID, username=self.bot_username),
            content=content,
            native_message_id=str(result.message_id),
            message_type="text",
        )
        self.messages[message.id] = message
        logger.info(
            "bus.message.sent",
            platform=platform,
            channel_id=message.channel_id,
            native_message_id=message.native_message_id,
        )
        await self.emit("message_sent", message)
        return result

    async def send_cross_channel_message(
        self,
        content: str,
        *,
        channels: ChannelTargets | None = None,
        options: SendOptions | dict[str, Any] | None = None,
    ) -> list[DeliveryResult]:
        """Deliver ``content`` to every registered platform.

        ``channels`` overrides the destinations: a list applies to every
        platform, a mapping gives per-platform lists. Platforms without an
        override receive the message in every channel seen so far. Each
        failed destination is recorded; the call itself never raises.
        """
        results: list[DeliveryResult] = []
        for platform in list(self.integrations):
            for channel_id in self._broadcast_targets(platform, channels):
                try:
                    result = await self.send_message(platform, channel_id, content, options)
                except Exception as exc:
                    logger.error(
                        "bus.broadcast.delivery_failed",
                        platform=platform,
                        channel_id=channel_id,
                        error=str(exc),
                    )
                    results.append(
                        DeliveryResult(
                            platform=platform,
                            channel_id=channel_id,
                            error=error_payload(exc, platform=platform, operation="send_message"),
                        )
                    )
                    continue
                results.append(DeliveryResult(platform=platform, channel_id=channel_id, result=result))

        logger.info(
            "bus.broadcast.completed",
            deliveries=len(results),
            failures=sum(1 for item in results if not item.ok),
        )
        return results

    def _broadcast_targets(self, platform: str, channels: ChannelTargets | None) -> list[str]:
        if channels is None:
            return self.get_active_channels(platform)
        if isinstance(channels, str):
            return [channels]
        if isinstance(channels, Mapping):
            override = channels.get(platform)
            if override is None:
                return self.get_active_channels(platform)
            return [str(item) for item in override]
        return [str(item) for item in channels]

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_active_channels(self, platform: str) -> list[str]:
        """Channel ids seen for ``platform`` in first-seen order."""
        seen: dict[str, None] = {}
        for message in self.messages.values():
            if message.platform == platform:
                seen.setdefault(message.channel_id, None)
        return list(seen)

    def get_messages(
        self,
        *,
        platform: str | None = None,
        channel_id: str | None = None,
        author: str | None = None,
        since: datetime | str | None = None,
        limit: int | None = None,
    ) -> list[UnifiedMessage]:
        """Filter stored messages; result is ascending by timestamp.

        ``limit`` keeps the last N matches by insertion order before sorting.
        ``since`` is exclusive. A ``limit`` below 1 raises ``ValueError``.
        """
        if limit is not None and limit < 1:
            raise ValueError(f"limit must be at least 1, got {limit}")
        messages = list(self.messages.values())

        if platform:
            messages = [msg for msg in messages if msg.platform == platform]
        if channel_id is not None:
            messages = [msg for msg in messages if msg.channel_id == str(channel_id)]
        if author:
            messages = [
                msg
                for msg in messages
                if author in (msg.author.id, msg.author.username, msg.author.display_name)
            ]
        if since is not None:
            cutoff = _coerce_datetime(since)
            messages = [msg for msg in messages if msg.timestamp > cutoff]
        if limit is not None:
            messages = messages[-limit:]

        return sorted(messages, key=lambda msg: msg.timestamp)

    def get_channels(self) -> list[ChannelSummary]:
        channels: dict[tuple[str, str], ChannelSummary] = {}
        for message in self.messages.values():
            key = (message.platform, message.channel_id)
            summary = channels.get(key)
            if summary is None:
                summary = ChannelSummary(
                    platform=message.platform,
                    id=message.channel_id,
                    name=message.channel_name,
                    last_message_at=message.timestamp,
                )
                channels[key] = summary
            summary.message_count += 1
            if summary.name is None and message.channel_name:
                summary.name = message.channel_name
            if message.timestamp > summary.last_message_at:
                summary.last_message_at = message.timestamp
        return list(channels.values())

    def get_stats(self) -> dict[str, Any]:
        by_platform: dict[str, int] = {}
        for message in self.messages.values():
            by_platform[message.platform] = by_platform.get(message.platform, 0) + 1
        return {
            "total_messages": len(self.messages),
            "platform_count": len(self.integrations),
            "channel_count": len(self.get_channels()),
            "ai_agent_count": len(self.ai_agents),
            "messages_by_platform": by_platform,
        }

    async def health(self) -> dict[str, HealthReport]:
        return {
            platform: await adapter.health_check()
            for platform, adapter in self.integrations.items()
        }

    async def aclose(self) -> None:
        """Wait for in-flight AI tasks to finish."""
        if self._ai_tasks:
            await asyncio.gather(*list(self._ai_tasks), return_exceptions=True)
