from __future__ import annotations

from datetime import UTC, datetime
from types import SimpleNamespace
from typing import Any

import discord
import pytest

from unibus.channels.base import SendOptions
from unibus.channels.discord.adapter import DiscordAdapter, translate_message
from unibus.config import DiscordChannelConfig
from unibus.errors import AdapterConnectionError, AdapterNotConnectedError, AdapterSendError

CREATED = datetime(2024, 5, 1, 12, 0, tzinfo=UTC)


def _message(content: str = "gg", *, bot: bool = False, channel_id: int = 333, **overrides: Any) -> SimpleNamespace:
    values = {
        "id": 111,
        "content": content,
        "author": SimpleNamespace(id=222, name="carol", global_name="Carol", discriminator="0", bot=bot),
        "channel": SimpleNamespace(id=channel_id, name="general", type="text"),
        "guild": SimpleNamespace(id=1, name="Guild"),
        "type": SimpleNamespace(name="default"),
        "created_at": CREATED,
        "edited_at": None,
        "attachments": [],
        "mentions": [],
        "reactions": [],
    }
    values.update(overrides)
    return SimpleNamespace(**values)


class _FakeChannel:
    def __init__(self, channel_id: int, *, error: Exception | None = None) -> None:
        self.id = channel_id
        self.error = error
        self.sent: list[dict[str, Any]] = []
        self.history_calls: list[dict[str, Any]] = []

    async def send(self, **kwargs: Any) -> SimpleNamespace:
        if self.error is not None:
            raise self.error
        self.sent.append(kwargs)
        return SimpleNamespace(id=999, channel=SimpleNamespace(id=self.id), created_at=CREATED)

    async def history(self, **kwargs: Any):
        self.history_calls.append(kwargs)
        for message_id in (5, 4):
            yield _message(f"m{message_id}", id=message_id, channel_id=self.id)


class _FakeClient:
    def __init__(self, channels: dict[int, Any]) -> None:
        self.channels = channels
        self.fetched: list[int] = []
        self.user = SimpleNamespace(id=7, name="unibus")
        self.latency = 0.0425
        self.guilds = [
            SimpleNamespace(
                id=1,
                name="Guild",
                member_count=10,
                text_channels=[SimpleNamespace(id=333, name="general", topic=None, position=0)],
            )
        ]

    def get_channel(self, channel_id: int) -> Any:
        return self.channels.get(channel_id)

    async def fetch_channel(self, channel_id: int) -> Any:
        self.fetched.append(channel_id)
        channel = _FakeChannel(channel_id)
        self.channels[channel_id] = channel
        return channel


def _adapter(client: _FakeClient | None = None, **config: Any) -> DiscordAdapter:
    adapter = DiscordAdapter(DiscordChannelConfig(bot_token="token", **config))
    adapter._client = client or _FakeClient({})  # type: ignore[assignment]
    return adapter


def test_translate_message_flattens_discord_objects() -> None:
    payload = translate_message(
        _message(
            attachments=[
                SimpleNamespace(id=5, url="https://cdn/x.png", filename="x.png", size=10, content_type="image/png")
            ],
            mentions=[SimpleNamespace(id=8, name="dave")],
            reactions=[SimpleNamespace(emoji="👍", count=2)],
        ),
        is_edit=True,
    )

    assert payload["id"] == "111"
    assert payload["author"] == {
        "id": "222",
        "username": "carol",
        "global_name": "Carol",
        "discriminator": "0",
        "bot": False,
    }
    assert payload["channel"]["id"] == "333"
    assert payload["guild"] == {"id": "1", "name": "Guild"}
    assert payload["type"] == "default"
    assert payload["timestamp"] == CREATED.isoformat()
    assert payload["attachments"][0]["filename"] == "x.png"
    assert payload["mentions"] == [{"id": "8", "username": "dave"}]
    assert payload["reactions"] == [{"emoji": "👍", "count": 2}]
    assert payload["is_edit"] is True
    assert payload["platform"] == "discord"


@pytest.mark.asyncio
async def test_bot_authors_and_unlisted_channels_are_dropped() -> None:
    adapter = _adapter(listen_channels="333")
    payloads: list[dict[str, Any]] = []
    adapter.on("message", payloads.append)

    await adapter._handle_message(_message("from bot", bot=True))
    await adapter._handle_message(_message("elsewhere", channel_id=444))
    await adapter._handle_message(_message("kept"))
    await adapter._handle_message(_message("kept, edited"), is_edit=True)

    assert [(p["content"], p["is_edit"]) for p in payloads] == [("kept", False), ("kept, edited", True)]


@pytest.mark.asyncio
async def test_send_message_builds_reply_reference_and_tts() -> None:
    channel = _FakeChannel(333)
    adapter = _adapter(_FakeClient({333: channel}))

    result = await adapter.send_message("333", "hello", SendOptions(reply_to="111", tts=True))

    [kwargs] = channel.sent
    assert kwargs["content"] == "hello"
    assert kwargs["tts"] is True
    assert isinstance(kwargs["reference"], discord.MessageReference)
    assert kwargs["reference"].message_id == 111
    assert result.message_id == "999"
    assert result.channel_id == "333"
    assert result.timestamp == CREATED


@pytest.mark.asyncio
async def test_send_message_fetches_uncached_channel() -> None:
    client = _FakeClient({})
    adapter = _adapter(client)

    await adapter.send_message("555", "hi")

    assert client.fetched == [555]
    assert client.channels[555].sent[0]["content"] == "hi"


@pytest.mark.asyncio
async def test_send_failures_become_adapter_send_error() -> None:
    failing = _FakeChannel(333, error=discord.DiscordException("Missing Permissions"))
    voice = SimpleNamespace(id=334)
    adapter = _adapter(_FakeClient({333: failing, 334: voice}))

    with pytest.raises(AdapterSendError, match="Missing Permissions"):
        await adapter.send_message("333", "hi")
    with pytest.raises(AdapterSendError, match="not messageable"):
        await adapter.send_message("334", "hi")


@pytest.mark.asyncio
async def test_send_before_connect_raises_not_connected() -> None:
    adapter = DiscordAdapter(DiscordChannelConfig(bot_token="token"))

    with pytest.raises(AdapterNotConnectedError):
        await adapter.send_message("333", "hello")


@pytest.mark.asyncio
async def test_history_channels_and_health() -> None:
    channel = _FakeChannel(333)
    adapter = _adapter(_FakeClient({333: channel}))

    history = await adapter.get_messages("333", limit=2, before="6")
    channels = await adapter.get_channels()
    adapter.connected = True
    report = await adapter.health_check()

    assert [m["content"] for m in history] == ["m5", "m4"]
    assert channel.history_calls[0]["limit"] == 2
    assert channel.history_calls[0]["before"].id == 6
    assert channels[0]["name"] == "general"
    assert channels[0]["guild_name"] == "Guild"
    assert report.details["user"] == {"id": "7", "username": "unibus"}
    assert report.details["latency_ms"] == 42.5


@pytest.mark.asyncio
async def test_connect_without_token_emits_and_raises() -> None:
    adapter = DiscordAdapter(DiscordChannelConfig(bot_token=" "))
    errors: list[BaseException] = []
    adapter.on("error", errors.append)

    with pytest.raises(AdapterConnectionError):
        await adapter.connect()

    assert adapter.enabled is False
    assert len(errors) == 1
