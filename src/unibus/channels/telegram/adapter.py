"""Telegram adapter (Bot API over httpx, long polling)."""

from __future__ import annotations

import asyncio
import json
from collections import deque
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

import httpx
import structlog

from unibus.channels.base import ChannelAdapter, SendOptions, SendResult
from unibus.config import ReconnectConfig, TelegramChannelConfig
from unibus.errors import AdapterConnectionError, AdapterNotConnectedError, AdapterSendError

logger = structlog.get_logger()

_MEDIA_METHODS = {
    "photo": "sendPhoto",
    "audio": "sendAudio",
    "voice": "sendVoice",
    "document": "sendDocument",
    "video": "sendVideo",
}


class TelegramAPIError(RuntimeError):
    """Bot API answered with ``ok: false``."""


class TelegramAdapter(ChannelAdapter):
    def __init__(
        self,
        config: TelegramChannelConfig,
        *,
        reconnect: ReconnectConfig | None = None,
    ) -> None:
        super().__init__("telegram", reconnect)
        self.config = config
        self.chats: dict[str, dict[str, Any]] = {}
        self.recent: dict[str, deque[dict[str, Any]]] = {}

        self._client: httpx.AsyncClient | None = None
        self._task: asyncio.Task[None] | None = None
        self._stop_event = asyncio.Event()
        self._offset = 0
        self.bot_info: dict[str, Any] = {}

    @property
    def enabled(self) -> bool:
        return bool(self.config.enabled and self.validate_config())

    def validate_config(self) -> bool:
        return bool(self.config.bot_token.strip())

    @property
    def api_base(self) -> str:
        return f"{self.config.api_base.rstrip('/')}/bot{self.config.bot_token.strip()}"

    async def connect(self) -> None:
        if not self.validate_config():
            error = AdapterConnectionError("Telegram bot token is required", platform=self.platform)
            await self.emit_error(error)
            raise error

        await self._stop_polling()
        await self._close_client()

        timeout = httpx.Timeout(
            connect=10.0,
            read=self.config.poll_timeout_s + 10.0,
            write=10.0,
            pool=10.0,
        )
        self._client = httpx.AsyncClient(timeout=timeout)
        try:
            self.bot_info = await self._call("getMe")
        except Exception as exc:
            await self._close_client()
            error = AdapterConnectionError(f"Telegram getMe failed: {exc}", platform=self.platform)
            await self.emit_error(error)
            raise error from exc

        self._stop_event.clear()
        self._task = asyncio.create_task(self._poll_loop(), name="channel-telegram-poll")
        await self.emit_status("connected")
        logger.info("channels.telegram.connected", username=self.bot_info.get("username"))

    async def disconnect(self) -> None:
        await self.cancel_reconnect()
        await self._stop_polling()
        await self._close_client()
        await self.emit_status("disconnected")

    async def _stop_polling(self) -> None:
        self._stop_event.set()
        task = self._task
        self._task = None
        if task and not task.done() and task is not asyncio.current_task():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

    async def _close_client(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def _call(
        self,
        method: str,
        payload: dict[str, Any] | None = None,
        *,
        files: dict[str, Any] | None = None,
    ) -> Any:
        if self._client is None:
            raise AdapterNotConnectedError(self.platform, method)
        if files:
            data = {
                key: json.dumps(value) if isinstance(value, (dict, list)) else str(value)
                for key, value in (payload or {}).items()
            }
            resp = await self._client.post(f"{self.api_base}/{method}", data=data, files=files)
        else:
            resp = await self._client.post(f"{self.api_base}/{method}", json=payload or {})
        body = resp.json()
        if not body.get("ok"):
            raise TelegramAPIError(
                f"Telegram {method} failed: {body.get('description') or resp.status_code}"
            )
        return body.get("result")

    async def _poll_loop(self) -> None:
        while not self._stop_event.is_set():
            try:
                updates = await self._get_updates()
                for update in updates:
                    await self._process_update(update)
            except asyncio.CancelledError:
                raise
            except httpx.TransportError as e:
                logger.warning("channels.telegram.connection_lost", error=str(e))
                await self.emit_error(e)
                await self.emit_status("disconnected")
                self._task = None
                self.schedule_reconnect()
                return
            except Exception as e:
                logger.warning("channels.telegram.poll_error", error=str(e))
                await self.emit_error(e)
                await asyncio.sleep(self.config.retry_delay_s)

    async def _get_updates(self) -> list[dict[str, Any]]:
        result = await self._call(
            "getUpdates",
            {
                "offset": self._offset,
                "timeout": self.config.poll_timeout_s,
                "allowed_updates": ["message", "edited_message", "channel_post", "edited_channel_post"],
            },
        )
        if not isinstance(result, list):
            return []
        return [item for item in result if isinstance(item, dict)]

    async def _process_update(self, update: dict[str, Any]) -> None:
        update_id = update.get("update_id")
        if isinstance(update_id, int):
            self._offset = max(self._offset, update_id + 1)

        is_edit = False
        message = update.get("message") or update.get("channel_post")
        if message is None:
            message = update.get("edited_message") or update.get("edited_channel_post")
            is_edit = message is not None
        if not isinstance(message, dict):
            return

        chat = message.get("chat") or {}
        chat_id = chat.get("id")
        if chat_id is None:
            return
        if not self.accepts_channel(chat_id, self.config.listen_channels):
            logger.debug("channels.telegram.message_ignored", chat_id=chat_id)
            return

        self.chats[str(chat_id)] = {
            "id": str(chat_id),
            "type": chat.get("type"),
            "title": chat.get("title"),
            "username": chat.get("username"),
            "first_name": chat.get("first_name"),
            "last_name": chat.get("last_name"),
            "platform": self.platform,
        }

        payload = {**message, "is_edit": is_edit, "platform": self.platform}
        self._remember(str(chat_id), payload)
        await self.emit_message(payload)

    def _remember(self, chat_id: str, payload: dict[str, Any]) -> None:
        buffer = self.recent.get(chat_id)
        if buffer is None:
            buffer = deque(maxlen=self.config.history_limit)
            self.recent[chat_id] = buffer
        buffer.append(payload)

    async def send_message(
        self,
        channel_id: str,
        content: str,
        options: SendOptions | None = None,
    ) -> SendResult:
        if self._client is None:
            raise AdapterNotConnectedError(self.platform, "send_message")
        options = options or SendOptions()

        base: dict[str, Any] = {"chat_id": channel_id}
        parse_mode = options.parse_mode or self.config.parse_mode
        if parse_mode:
            base["parse_mode"] = parse_mode

        try:
            if options.reply_to:
                base["reply_to_message_id"] = int(options.reply_to)
            if options.thread_id:
                base["message_thread_id"] = int(options.thread_id)
            method = _MEDIA_METHODS.get(options.media_type or "")
            if method and options.attachments:
                result = await self._send_media(method, options.media_type, options.attachments[0], content, base, options)
            else:
                result = None
                for chunk in self._chunk_text(content):
                    sent = await self._call(
                        "sendMessage",
                        {
                            **base,
                            "text": chunk,
                            "disable_web_page_preview": options.disable_preview,
                            **options.extra,
                        },
                    )
                    result = result or sent
                    # Only the first chunk replies to the original message.
                    base.pop("reply_to_message_id", None)
        except (TelegramAPIError, httpx.HTTPError, ValueError) as exc:
            logger.warning("channels.telegram.send_failed", chat_id=channel_id, error=str(exc))
            raise AdapterSendError(str(exc), platform=self.platform, channel_id=channel_id) from exc

        self.last_activity = self._now()
        chat = (result or {}).get("chat") or {}
        sent_at = (result or {}).get("date")
        return SendResult(
            message_id=str((result or {}).get("message_id", "")),
            channel_id=str(chat.get("id", channel_id)),
            timestamp=datetime.fromtimestamp(sent_at, UTC) if sent_at else self._now(),
            platform=self.platform,
        )

    async def _send_media(
        self,
        method: str,
        field_name: str,
        attachment: str,
        caption: str,
        base: dict[str, Any],
        options: SendOptions,
    ) -> Any:
        payload = {**base, "caption": caption, **options.extra}
        path = Path(attachment)
        if path.is_file():
            with path.open("rb") as fh:
                return await self._call(method, payload, files={field_name: (path.name, fh)})
        return await self._call(method, {**payload, field_name: attachment})

    def _chunk_text(self, text: str) -> list[str]:
        content = text or ""
        limit = self.config.max_message_chars
        if len(content) <= limit:
            return [content]
        return [content[start : start + limit] for start in range(0, len(content), limit)]

    async def get_channels(self) -> list[dict[str, Any]]:
        return list(self.chats.values())

    async def get_messages(
        self,
        channel_id: str,
        *,
        limit: int = 100,
        before: str | None = None,
    ) -> list[dict[str, Any]]:
        # The Bot API has no history call; serve what polling has seen.
        messages = list(self.recent.get(str(channel_id), ()))
        if before is not None:
            messages = [msg for msg in messages if int(msg.get("message_id") or 0) < int(before)]
        return messages[-limit:]

    async def get_chat_info(self, chat_id: str) -> dict[str, Any]:
        chat = await self._call("getChat", {"chat_id": chat_id})
        return {**chat, "platform": self.platform}

    async def edit_message(self, chat_id: str, message_id: str, content: str) -> dict[str, Any]:
        payload: dict[str, Any] = {"chat_id": chat_id, "message_id": int(message_id), "text": content}
        if self.config.parse_mode:
            payload["parse_mode"] = self.config.parse_mode
        return await self._call("editMessageText", payload)

    async def delete_message(self, chat_id: str, message_id: str) -> None:
        await self._call("deleteMessage", {"chat_id": chat_id, "message_id": int(message_id)})

    async def send_typing(self, chat_id: str) -> None:
        try:
            await self._call("sendChatAction", {"chat_id": chat_id, "action": "typing"})
        except Exception as exc:
            logger.warning("channels.telegram.typing_failed", chat_id=chat_id, error=str(exc))

    async def _probe(self) -> dict[str, Any]:
        me = await self._call("getMe")
        return {
            "bot": {"id": me.get("id"), "username": me.get("username"), "first_name": me.get("first_name")},
            "chats_count": len(self.chats),
        }
