from __future__ import annotations

import json
from typing import Any

import httpx
import pytest

from unibus.channels.base import SendOptions
from unibus.channels.telegram.adapter import TelegramAdapter
from unibus.config import TelegramChannelConfig
from unibus.errors import (
    AdapterConnectionError,
    AdapterNotConnectedError,
    AdapterSendError,
    ReconnectExhaustedError,
)


class _BotAPI:
    """Records Bot API calls and answers from a per-method table."""

    def __init__(self, answers: dict[str, Any] | None = None) -> None:
        self.calls: list[tuple[str, dict[str, Any]]] = []
        self.answers = answers or {}
        self._next_id = 100

    def __call__(self, request: httpx.Request) -> httpx.Response:
        method = request.url.path.rsplit("/", 1)[-1]
        body: dict[str, Any] = {}
        if request.headers.get("content-type", "").startswith("application/json"):
            body = json.loads(request.content or b"{}")
        self.calls.append((method, body))

        answer = self.answers.get(method)
        if isinstance(answer, Exception):
            raise answer
        if answer is not None:
            return httpx.Response(200, json=answer)
        self._next_id += 1
        return httpx.Response(
            200,
            json={
                "ok": True,
                "result": {
                    "message_id": self._next_id,
                    "date": 1700000000,
                    "chat": {"id": body.get("chat_id")},
                },
            },
        )


def _adapter(api: _BotAPI, **config: Any) -> TelegramAdapter:
    adapter = TelegramAdapter(TelegramChannelConfig(bot_token="TOKEN", **config))
    adapter._client = httpx.AsyncClient(transport=httpx.MockTransport(api))
    return adapter


def _update(update_id: int, kind: str = "message", chat_id: int = 42, text: str = "hi") -> dict[str, Any]:
    return {
        "update_id": update_id,
        kind: {
            "message_id": update_id,
            "chat": {"id": chat_id, "type": "group", "title": "Team"},
            "from": {"id": 1, "username": "bob"},
            "text": text,
        },
    }


@pytest.mark.asyncio
async def test_process_update_emits_native_payload_and_caches_chat() -> None:
    adapter = _adapter(_BotAPI())
    payloads: list[dict[str, Any]] = []
    adapter.on("message", payloads.append)

    await adapter._process_update(_update(10))
    await adapter._process_update(_update(11, kind="edited_message", text="hi!"))

    assert [p["text"] for p in payloads] == ["hi", "hi!"]
    assert [p["is_edit"] for p in payloads] == [False, True]
    assert payloads[0]["platform"] == "telegram"
    assert payloads[0]["chat"]["title"] == "Team"
    assert adapter.chats["42"]["title"] == "Team"
    assert adapter._offset == 12
    assert adapter.last_activity is not None


@pytest.mark.asyncio
async def test_listen_channels_drops_other_chats() -> None:
    adapter = _adapter(_BotAPI(), listen_channels="42")
    payloads: list[dict[str, Any]] = []
    adapter.on("message", payloads.append)

    await adapter._process_update(_update(1, chat_id=42))
    await adapter._process_update(_update(2, chat_id=7))

    assert [p["chat"]["id"] for p in payloads] == [42]
    assert adapter._offset == 3


@pytest.mark.asyncio
async def test_send_message_splits_long_text_and_replies_once() -> None:
    api = _BotAPI()
    adapter = _adapter(api, max_message_chars=200)

    result = await adapter.send_message(
        "42",
        "x" * 450,
        SendOptions(reply_to="5", thread_id="3", disable_preview=True),
    )

    sends = [body for method, body in api.calls if method == "sendMessage"]
    assert [len(body["text"]) for body in sends] == [200, 200, 50]
    assert sends[0]["reply_to_message_id"] == 5
    assert "reply_to_message_id" not in sends[1]
    assert all(body["message_thread_id"] == 3 for body in sends)
    assert all(body["parse_mode"] == "HTML" for body in sends)
    assert all(body["disable_web_page_preview"] is True for body in sends)
    assert result.message_id == "101"
    assert result.channel_id == "42"
    assert result.platform == "telegram"


@pytest.mark.asyncio
async def test_send_media_by_url_uses_media_method() -> None:
    api = _BotAPI()
    adapter = _adapter(api)

    await adapter.send_message(
        "42",
        "caption here",
        SendOptions(media_type="photo", attachments=["https://example.com/cat.png"]),
    )

    method, body = api.calls[-1]
    assert method == "sendPhoto"
    assert body["photo"] == "https://example.com/cat.png"
    assert body["caption"] == "caption here"


@pytest.mark.asyncio
async def test_send_failure_becomes_adapter_send_error() -> None:
    api = _BotAPI({"sendMessage": {"ok": False, "description": "Bad Request: chat not found"}})
    adapter = _adapter(api)

    with pytest.raises(AdapterSendError, match="chat not found") as exc_info:
        await adapter.send_message("404", "hello")

    assert exc_info.value.to_dict()["channel_id"] == "404"


@pytest.mark.asyncio
async def test_non_numeric_reply_or_thread_id_becomes_adapter_send_error() -> None:
    api = _BotAPI()
    adapter = _adapter(api)

    with pytest.raises(AdapterSendError) as exc_info:
        await adapter.send_message("42", "hello", SendOptions(reply_to="abc"))
    with pytest.raises(AdapterSendError):
        await adapter.send_message("42", "hello", SendOptions(thread_id="topic"))

    assert isinstance(exc_info.value.__cause__, ValueError)
    assert exc_info.value.to_dict()["platform"] == "telegram"
    assert api.calls == []


@pytest.mark.asyncio
async def test_send_before_connect_raises_not_connected() -> None:
    adapter = TelegramAdapter(TelegramChannelConfig(bot_token="TOKEN"))

    with pytest.raises(AdapterNotConnectedError):
        await adapter.send_message("42", "hello")


@pytest.mark.asyncio
async def test_get_messages_serves_recent_buffer() -> None:
    adapter = _adapter(_BotAPI(), history_limit=3)
    for update_id in range(1, 6):
        await adapter._process_update(_update(update_id, text=f"m{update_id}"))

    recent = await adapter.get_messages("42")
    older = await adapter.get_messages("42", before="5", limit=1)

    assert [p["text"] for p in recent] == ["m3", "m4", "m5"]
    assert [p["text"] for p in older] == ["m4"]


@pytest.mark.asyncio
async def test_connect_without_token_emits_and_raises() -> None:
    adapter = TelegramAdapter(TelegramChannelConfig(bot_token=""))
    errors: list[BaseException] = []
    adapter.on("error", errors.append)

    with pytest.raises(AdapterConnectionError):
        await adapter.connect()

    assert adapter.validate_config() is False
    assert adapter.enabled is False
    assert len(errors) == 1


@pytest.mark.asyncio
async def test_connect_and_disconnect_with_mock_api(monkeypatch) -> None:
    api = _BotAPI(
        {
            "getMe": {"ok": True, "result": {"id": 9, "username": "unibus_bot", "first_name": "Unibus"}},
            "getUpdates": {"ok": False, "description": "Conflict: terminated by other getUpdates request"},
        }
    )
    transport = httpx.MockTransport(api)
    real_client = httpx.AsyncClient
    monkeypatch.setattr(httpx, "AsyncClient", lambda **kw: real_client(transport=transport, **kw))

    adapter = TelegramAdapter(TelegramChannelConfig(bot_token="TOKEN"))
    statuses: list[str] = []
    adapter.on("status", statuses.append)

    await adapter.connect()
    report = await adapter.health_check()
    await adapter.disconnect()

    assert adapter.bot_info["username"] == "unibus_bot"
    assert report.connected is True
    assert report.details["bot"]["username"] == "unibus_bot"
    assert statuses == ["connected", "disconnected"]
    assert adapter.connected is False


@pytest.mark.asyncio
async def test_network_failure_in_poll_loop_triggers_reconnect() -> None:
    request = httpx.Request("POST", "https://api.telegram.org")
    api = _BotAPI({"getUpdates": httpx.ConnectError("network down", request=request)})
    adapter = _adapter(api)
    adapter.max_reconnect_attempts = 0
    errors: list[BaseException] = []
    statuses: list[str] = []
    adapter.on("error", errors.append)
    adapter.on("status", statuses.append)

    await adapter._poll_loop()
    recovered = await adapter._reconnect_task

    assert recovered is False
    assert isinstance(errors[0], httpx.ConnectError)
    assert isinstance(errors[-1], ReconnectExhaustedError)
    assert statuses == ["disconnected"]
