from __future__ import annotations

import pytest

from conftest import FakeAdapter
from unibus.bus.manager import MessageBus
from unibus.channels import registry
from unibus.channels.manager import ChannelRuntimeManager
from unibus.channels.slack.adapter import SlackAdapter
from unibus.config import UnibusConfig
from unibus.errors import UnknownPlatformError


class _DisabledAdapter(FakeAdapter):
    @property
    def enabled(self) -> bool:
        return False


@pytest.fixture
def built(monkeypatch) -> dict[str, list[FakeAdapter]]:
    built: dict[str, list[FakeAdapter]] = {"telegram": [], "slack": []}

    def make(platform: str, *, fail: bool = False):
        def factory(_config, _reconnect):
            adapter = FakeAdapter(platform)
            adapter.fail_connect = fail
            built[platform].append(adapter)
            return adapter

        return factory

    monkeypatch.setitem(registry.ADAPTER_FACTORIES, "telegram", make("telegram"))
    monkeypatch.setitem(registry.ADAPTER_FACTORIES, "slack", make("slack", fail=True))
    monkeypatch.setitem(
        registry.ADAPTER_FACTORIES,
        "discord",
        lambda _config, _reconnect: _DisabledAdapter("discord"),
    )
    return built


def test_create_adapter_uses_platform_config() -> None:
    config = UnibusConfig()

    adapter = registry.create_adapter("slack", config)

    assert isinstance(adapter, SlackAdapter)
    assert adapter.config is config.channels.slack
    with pytest.raises(UnknownPlatformError):
        registry.create_adapter("irc", config)


@pytest.mark.asyncio
async def test_start_connects_enabled_adapters_and_survives_failures(built) -> None:
    bus = MessageBus()
    manager = ChannelRuntimeManager(UnibusConfig(), bus)

    await manager.start()

    assert set(bus.integrations) == {"telegram", "slack"}
    assert built["telegram"][0].connected is True
    assert built["slack"][0].connect_calls == 1
    statuses = {s["platform"]: s for s in manager.statuses()}
    assert statuses["telegram"]["connected"] is True
    assert statuses["slack"]["connected"] is False
    assert statuses["discord"]["enabled"] is False


@pytest.mark.asyncio
async def test_connect_platform_replaces_and_disconnects_previous(built) -> None:
    bus = MessageBus()
    manager = ChannelRuntimeManager(UnibusConfig(), bus)
    await manager.start()
    old = built["telegram"][0]

    new = await manager.connect_platform("telegram")

    assert new is not old
    assert old.connected is False
    assert old.listener_count("message") == 0
    assert bus.get_integration("telegram") is new
    assert new.connected is True


@pytest.mark.asyncio
async def test_stop_disconnects_everything(built) -> None:
    bus = MessageBus()
    manager = ChannelRuntimeManager(UnibusConfig(), bus)
    await manager.start()

    await manager.stop()

    assert all(not adapter.connected for adapter in manager.adapters.values())
