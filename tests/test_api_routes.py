from __future__ import annotations

import asyncio

import pytest
from fastapi.testclient import TestClient

from conftest import FakeAdapter, telegram_payload
from unibus.api.hub import EventHub
from unibus.bus.manager import MessageBus
from unibus.channels.manager import ChannelRuntimeManager
from unibus.config import UnibusConfig
from unibus.errors import AdapterNotConnectedError
from unibus.main import create_app


class _OfflineAdapter(FakeAdapter):
    async def send_message(self, channel_id, content, options=None):
        raise AdapterNotConnectedError(self.platform, "send_message")


@pytest.fixture
def bus() -> MessageBus:
    bus = MessageBus()
    bus.register_integration("telegram", FakeAdapter("telegram"))
    bus.register_integration("slack", _OfflineAdapter("slack"))
    return bus


@pytest.fixture
def client(bus: MessageBus) -> TestClient:
    app = create_app()
    config = UnibusConfig()
    hub = EventHub()
    hub.attach(bus)
    app.state.config = config
    app.state.bus = bus
    app.state.hub = hub
    app.state.gateway = None
    app.state.channel_manager = ChannelRuntimeManager(config=config, bus=bus)
    # Without lifespan: TestClient is not entered as a context manager.
    return TestClient(app)


def test_health_counts_platforms(client: TestClient) -> None:
    resp = client.get("/health")

    assert resp.status_code == 200
    assert resp.json()["status"] == "ok"
    assert resp.json()["platforms"] == {"registered": 2, "connected": 0}


def test_send_message_returns_platform_result(client: TestClient, bus: MessageBus) -> None:
    resp = client.post(
        "/api/messages/send",
        json={"platform": "telegram", "channel_id": "42", "content": "hello", "options": {"reply_to": "9"}},
    )

    assert resp.status_code == 200
    assert resp.json()["result"]["message_id"] == "telegram-1"
    assert [m.content for m in bus.get_messages()] == ["hello"]


def test_send_errors_map_to_status_codes(client: TestClient) -> None:
    unknown = client.post("/api/messages/send", json={"platform": "irc", "channel_id": "1", "content": "x"})
    offline = client.post("/api/messages/send", json={"platform": "slack", "channel_id": "C1", "content": "x"})

    assert unknown.status_code == 404
    assert unknown.json()["error"]["type"] == "UnknownPlatformError"
    assert offline.status_code == 409
    assert offline.json()["error"]["operation"] == "send_message"


def test_list_messages_and_channels(bus: MessageBus) -> None:
    async def seed() -> None:
        await bus.handle_incoming_message("telegram", telegram_payload("a", chat_id=1))
        await bus.handle_incoming_message("telegram", telegram_payload("b", chat_id=2, user_id=5))
        await bus.handle_incoming_message("slack", {"text": "c", "user": "U1", "channel": "C1", "ts": "1"})

    asyncio.run(seed())

    app = create_app()
    app.state.bus = bus
    client = TestClient(app)

    by_platform = client.get("/api/messages", params={"platform": "telegram"}).json()
    by_author = client.get("/api/messages", params={"author": "user5"}).json()
    limited = client.get("/api/messages", params={"limit": 1}).json()
    channels = client.get("/api/channels", params={"platform": "telegram"}).json()

    assert [m["content"] for m in by_platform["messages"]] == ["a", "b"]
    assert [m["content"] for m in by_author["messages"]] == ["b"]
    assert limited["count"] == 1
    assert {c["id"] for c in channels["channels"]} == {"1", "2"}


def test_broadcast_reports_each_destination(client: TestClient) -> None:
    resp = client.post("/api/messages/broadcast", json={"content": "hi all", "channels": ["10"]})

    body = resp.json()
    assert resp.status_code == 200
    assert body["delivered"] == 1
    assert body["failed"] == 1
    assert body["results"][1]["error"]["type"] == "AdapterNotConnectedError"


def test_platform_connect_errors(client: TestClient) -> None:
    unknown = client.post("/api/platforms/irc/connect")
    no_token = client.post("/api/platforms/telegram/connect")

    assert unknown.status_code == 404
    assert no_token.status_code == 502
    assert no_token.json()["error"]["type"] == "AdapterConnectionError"


def test_platform_disconnect_and_listing(client: TestClient, bus: MessageBus) -> None:
    listing = client.get("/api/platforms").json()
    resp = client.post("/api/platforms/slack/disconnect")
    missing = client.post("/api/platforms/discord/disconnect")

    assert {p["platform"] for p in listing["platforms"]} == {"telegram", "slack"}
    assert resp.json() == {"platform": "slack", "status": "disconnected"}
    assert missing.status_code == 404


def test_status_includes_stats_and_platforms(client: TestClient) -> None:
    body = client.get("/api/status").json()

    assert body["stats"]["platform_count"] == 2
    assert [p["platform"] for p in body["platforms"]] == ["telegram", "slack", "discord"]
    assert body["ai"] is None


def test_websocket_commands_and_pushed_events(client: TestClient) -> None:
    with client.websocket_connect("/ws") as ws:
        ws.send_json({"type": "command", "command": "status"})
        status = ws.receive_json()

        ws.send_json(
            {
                "type": "command",
                "command": "send_message",
                "data": {"platform": "telegram", "channel_id": "42", "content": "via ws"},
            }
        )
        pushed = ws.receive_json()
        result = ws.receive_json()

        ws.send_json({"type": "command", "command": "send_message", "data": {"platform": "irc"}})
        error = ws.receive_json()

        ws.send_json({"type": "command", "command": "list_messages", "data": {"platform": "telegram"}})
        listed = ws.receive_json()

    assert status["type"] == "command_result"
    assert status["data"]["stats"]["platform_count"] == 2
    assert pushed["type"] == "message_sent"
    assert pushed["data"]["content"] == "via ws"
    assert result["data"]["message_id"] == "telegram-1"
    assert error["type"] == "error"
    assert error["error"]["type"] == "UnknownPlatformError"
    assert [m["content"] for m in listed["data"]] == ["via ws"]


def test_websocket_rejects_bad_limit_and_non_object_data(client: TestClient) -> None:
    with client.websocket_connect("/ws") as ws:
        ws.send_json({"type": "command", "command": "list_messages", "data": {"limit": -1}})
        negative = ws.receive_json()

        ws.send_json({"type": "command", "command": "list_messages", "data": ["not", "a", "dict"]})
        not_object = ws.receive_json()

        ws.send_json({"type": "command", "command": "list_messages", "data": {"limit": 5000}})
        clamped = ws.receive_json()

    assert negative["type"] == "error"
    assert negative["error"]["type"] == "ValueError"
    assert negative["error"]["operation"] == "list_messages"
    assert not_object["type"] == "error"
    assert not_object["command"] == "list_messages"
    assert clamped["type"] == "command_result"
    assert clamped["data"] == []


def test_lifespan_builds_runtime_without_credentials(monkeypatch) -> None:
    import unibus.config as config_module

    monkeypatch.setattr(config_module, "_config", None)

    with TestClient(create_app()) as client:
        health = client.get("/health").json()
        status = client.get("/api/status").json()

    assert health["platforms"] == {"registered": 0, "connected": 0}
    assert all(not p["enabled"] for p in status["platforms"])
