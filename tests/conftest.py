from __future__ import annotations

import os
from datetime import UTC, datetime
from typing import Any

import pytest

from unibus.bus.models import UnifiedMessage
from unibus.channels.base import ChannelAdapter, SendOptions, SendResult
from unibus.errors import AdapterSendError


class FakeAdapter(ChannelAdapter):
    """In-memory adapter that records sends and can be told to fail."""

    def __init__(self, platform: str = "telegram", *, fail_channels: set[str] | None = None) -> None:
        super().__init__(platform)
        self.sent: list[tuple[str, str, SendOptions | None]] = []
        self.fail_channels = fail_channels or set()
        self.connect_calls = 0
        self.fail_connect = False
        self._counter = 0

    @property
    def enabled(self) -> bool:
        return True

    def validate_config(self) -> bool:
        return True

    async def connect(self) -> None:
        self.connect_calls += 1
        if self.fail_connect:
            raise ConnectionError("platform unreachable")
        await self.emit_status("connected")

    async def disconnect(self) -> None:
        await self.cancel_reconnect()
        await self.emit_status("disconnected")

    async def send_message(
        self,
        channel_id: str,
        content: str,
        options: SendOptions | None = None,
    ) -> SendResult:
        if channel_id in self.fail_channels:
            raise AdapterSendError("rejected", platform=self.platform, channel_id=channel_id)
        self._counter += 1
        self.sent.append((channel_id, content, options))
        return SendResult(
            message_id=f"{self.platform}-{self._counter}",
            channel_id=channel_id,
            timestamp=datetime.now(UTC),
            platform=self.platform,
        )

    async def get_channels(self) -> list[dict[str, Any]]:
        return []

    async def get_messages(
        self,
        channel_id: str,
        *,
        limit: int = 100,
        before: str | None = None,
    ) -> list[dict[str, Any]]:
        return []


class FakeResponder:
    def __init__(self, reply: str | None = "beep", *, error: Exception | None = None) -> None:
        self.reply = reply
        self.error = error
        self.seen: list[UnifiedMessage] = []

    async def process_message(self, message: UnifiedMessage) -> str | None:
        self.seen.append(message)
        if self.error is not None:
            raise self.error
        return self.reply


def telegram_payload(text: str, *, chat_id: int = 42, user_id: int = 1, message_id: int = 1) -> dict[str, Any]:
    return {
        "text": text,
        "from": {"id": user_id, "username": f"user{user_id}"},
        "chat": {"id": chat_id, "title": f"chat {chat_id}"},
        "message_id": message_id,
    }


@pytest.fixture(autouse=True)
def _isolated_config_env(monkeypatch, tmp_path) -> None:
    """Keep a developer's UNIBUS_* env and unibus.yaml out of tests."""
    for key in list(os.environ):
        if key.startswith("UNIBUS_"):
            monkeypatch.delenv(key, raising=False)
    monkeypatch.chdir(tmp_path)
