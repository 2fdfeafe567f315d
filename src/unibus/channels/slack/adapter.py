"""Slack adapter (Socket Mode via slack_bolt, Web API via slack_sdk)."""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any

import structlog
from slack_bolt.adapter.socket_mode.async_handler import AsyncSocketModeHandler
from slack_bolt.async_app import AsyncApp
from slack_sdk.errors import SlackApiError, SlackClientError
from slack_sdk.web.async_client import AsyncWebClient

from unibus.channels.base import ChannelAdapter, SendOptions, SendResult
from unibus.config import ReconnectConfig, SlackChannelConfig
from unibus.errors import AdapterConnectionError, AdapterNotConnectedError, AdapterSendError

logger = structlog.get_logger()

_IGNORED_SUBTYPES = {"bot_message", "message_deleted", "channel_join", "channel_leave"}


def _ts_to_datetime(ts: Any) -> datetime:
    try:
        return datetime.fromtimestamp(float(ts), UTC)
    except (TypeError, ValueError):
        return datetime.now(UTC)


class SlackAdapter(ChannelAdapter):
    def __init__(
        self,
        config: SlackChannelConfig,
        *,
        reconnect: ReconnectConfig | None = None,
    ) -> None:
        super().__init__("slack", reconnect)
        self.config = config
        self.channels: dict[str, dict[str, Any]] = {}
        self.users: dict[str, dict[str, Any]] = {}

        self._app: AsyncApp | None = None
        self._handler: AsyncSocketModeHandler | None = None
        self._web: AsyncWebClient | None = None
        self._closing = False

    @property
    def enabled(self) -> bool:
        return bool(self.config.enabled and self.validate_config())

    def validate_config(self) -> bool:
        return bool(self.config.bot_token.strip() and self.config.app_token.strip())

    async def connect(self) -> None:
        if not self.validate_config():
            error = AdapterConnectionError(
                "Slack bot token and app token are required",
                platform=self.platform,
            )
            await self.emit_error(error)
            raise error

        await self._close_handler()
        self._closing = False

        app = AsyncApp(token=self.config.bot_token.strip())

        @app.event("message")
        async def handle_message_events(event: dict[str, Any]) -> None:
            await self._handle_event(event)

        @app.error
        async def handle_errors(error: Exception) -> None:
            await self.emit_error(error)

        self._app = app
        self._web = app.client
        try:
            await self._web.auth_test()
            self._handler = AsyncSocketModeHandler(app, self.config.app_token.strip())
            await self._handler.connect_async()
            self._handler.client.on_close_listeners.append(self._on_socket_close)
            await self.load_channels()
            await self.load_users()
        except Exception as exc:
            await self._close_handler()
            error = AdapterConnectionError(f"Slack connection failed: {exc}", platform=self.platform)
            await self.emit_error(error)
            raise error from exc

        await self.emit_status("connected")
        logger.info(
            "channels.slack.connected",
            channels=len(self.channels),
            users=len(self.users),
        )

    async def disconnect(self) -> None:
        await self.cancel_reconnect()
        await self._close_handler()
        await self.emit_status("disconnected")

    async def _on_socket_close(self, message: Any) -> None:
        """Socket Mode CLOSE frame; the SDK may already have opened a new session."""
        if self._closing:
            return
        logger.warning("channels.slack.socket_closed", reason=str(getattr(message, "extra", "") or ""))
        await self.emit_status("disconnected")
        handler = self._handler
        if handler is not None and await handler.client.is_connected():
            await self.emit_status("connected")
            return
        self.schedule_reconnect()

    async def _close_handler(self) -> None:
        self._closing = True
        if self._handler is not None:
            try:
                await self._handler.close_async()
            except Exception as exc:
                logger.warning("channels.slack.close_failed", error=str(exc))
        self._handler = None
        self._app = None
        self._web = None

    def translate_event(self, event: dict[str, Any]) -> dict[str, Any] | None:
        """Reshape a Slack ``message`` event into the payload the bus normalizes.

        Returns None for events that are not user messages.
        """
        if not event:
            return None
        subtype = event.get("subtype")
        if subtype in _IGNORED_SUBTYPES or event.get("bot_id"):
            return None

        is_edit = subtype == "message_changed"
        if is_edit:
            inner = event.get("message") or {}
            if inner.get("bot_id") or inner.get("subtype") in _IGNORED_SUBTYPES:
                return None
            source = {**inner, "channel": event.get("channel")}
            subtype = inner.get("subtype")
        else:
            source = event

        channel_id = source.get("channel")
        user_id = source.get("user")
        channel = self.channels.get(str(channel_id)) or {}
        user = self.users.get(str(user_id)) or {}
        return {
            "text": source.get("text"),
            "user": user_id,
            "channel": channel_id,
            "ts": source.get("ts"),
            "thread_ts": source.get("thread_ts"),
            "subtype": subtype,
            "username": user.get("name") or "Unknown",
            "real_name": user.get("real_name"),
            "channel_name": channel.get("name") or "Unknown",
            "files": source.get("files") or [],
            "is_edit": is_edit,
            "platform": self.platform,
        }

    async def _handle_event(self, event: dict[str, Any]) -> None:
        payload = self.translate_event(event)
        if payload is None:
            return
        if not self.accepts_channel(payload["channel"], self.config.listen_channels):
            logger.debug("channels.slack.message_ignored", channel=payload["channel"])
            return
        await self.emit_message(payload)

    async def send_message(
        self,
        channel_id: str,
        content: str,
        options: SendOptions | None = None,
    ) -> SendResult:
        if self._web is None:
            raise AdapterNotConnectedError(self.platform, "send_message")
        options = options or SendOptions()

        kwargs: dict[str, Any] = {
            "channel": channel_id,
            "text": content,
            "unfurl_links": not options.disable_preview,
            "unfurl_media": not options.disable_preview,
        }
        # Slack replies are threads; reply_to is treated as the parent ts.
        thread_ts = options.thread_id or options.reply_to
        if thread_ts:
            kwargs["thread_ts"] = thread_ts
        if options.parse_mode == "none":
            kwargs["mrkdwn"] = False
        kwargs.update(options.extra)

        try:
            response = await self._web.chat_postMessage(**kwargs)
            for path in options.attachments:
                await self._web.files_upload_v2(
                    channel=channel_id,
                    file=path,
                    thread_ts=thread_ts or response["ts"],
                )
        except (SlackApiError, SlackClientError, OSError) as exc:
            logger.warning("channels.slack.send_failed", channel=channel_id, error=str(exc))
            raise AdapterSendError(str(exc), platform=self.platform, channel_id=channel_id) from exc

        self.last_activity = self._now()
        return SendResult(
            message_id=str(response["ts"]),
            channel_id=str(response.get("channel") or channel_id),
            timestamp=_ts_to_datetime(response["ts"]),
            platform=self.platform,
        )

    async def load_channels(self) -> None:
        if self._web is None:
            raise AdapterNotConnectedError(self.platform, "load_channels")
        response = await self._web.conversations_list(
            types="public_channel,private_channel,im,mpim",
            limit=1000,
        )
        for channel in response.get("channels") or []:
            if channel.get("is_channel"):
                kind = "channel"
            elif channel.get("is_group"):
                kind = "group"
            elif channel.get("is_im"):
                kind = "im"
            else:
                kind = "mpim"
            self.channels[channel["id"]] = {
                "id": channel["id"],
                "name": channel.get("name"),
                "type": kind,
                "is_private": channel.get("is_private", False),
                "is_member": channel.get("is_member", False),
                "topic": (channel.get("topic") or {}).get("value", ""),
                "member_count": channel.get("num_members"),
                "platform": self.platform,
            }
        logger.info("channels.slack.channels_loaded", count=len(self.channels))

    async def load_users(self) -> None:
        if self._web is None:
            raise AdapterNotConnectedError(self.platform, "load_users")
        response = await self._web.users_list(limit=1000)
        for member in response.get("members") or []:
            profile = member.get("profile") or {}
            self.users[member["id"]] = {
                "id": member["id"],
                "name": member.get("name"),
                "real_name": member.get("real_name") or profile.get("real_name"),
                "display_name": profile.get("display_name"),
                "is_bot": member.get("is_bot", False),
                "is_active": not member.get("deleted", False),
                "platform": self.platform,
            }
        logger.info("channels.slack.users_loaded", count=len(self.users))

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
        if self._web is None:
            raise AdapterNotConnectedError(self.platform, "get_messages")
        kwargs: dict[str, Any] = {"channel": channel_id, "limit": limit}
        if before:
            kwargs["latest"] = before
        response = await self._web.conversations_history(**kwargs)
        messages = []
        for raw in response.get("messages") or []:
            payload = self.translate_event({**raw, "channel": channel_id})
            if payload is not None:
                messages.append(payload)
        return messages

    async def add_reaction(self, channel_id: str, ts: str, emoji: str) -> None:
        if self._web is None:
            raise AdapterNotConnectedError(self.platform, "add_reaction")
        await self._web.reactions_add(channel=channel_id, timestamp=ts, name=emoji)

    async def edit_message(self, channel_id: str, ts: str, content: str) -> dict[str, Any]:
        if self._web is None:
            raise AdapterNotConnectedError(self.platform, "edit_message")
        response = await self._web.chat_update(channel=channel_id, ts=ts, text=content)
        return dict(response.data) if hasattr(response, "data") else dict(response)

    async def delete_message(self, channel_id: str, ts: str) -> None:
        if self._web is None:
            raise AdapterNotConnectedError(self.platform, "delete_message")
        await self._web.chat_delete(channel=channel_id, ts=ts)

    async def _probe(self) -> dict[str, Any]:
        if self._web is None:
            raise AdapterNotConnectedError(self.platform, "health_check")
        auth = await self._web.auth_test()
        return {
            "team": {
                "id": auth.get("team_id"),
                "name": auth.get("team"),
                "user_id": auth.get("user_id"),
                "user": auth.get("user"),
            },
            "channels_count": len(self.channels),
            "users_count": len(self.users),
        }
