"""Unibus configuration: loads from unibus.yaml + environment."""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Annotated, Any

import yaml
from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


def _load_yaml_config() -> dict[str, Any]:
    """Load unibus.yaml from UNIBUS_CONFIG_PATH or default locations."""
    config_path = os.getenv("UNIBUS_CONFIG_PATH")
    search_paths = (
        [Path(config_path)]
        if config_path
        else [
            Path("unibus.yaml"),
            Path("config/unibus.yaml"),
        ]
    )
    for path in search_paths:
        if path.exists():
            with open(path) as f:
                return yaml.safe_load(f) or {}
    return {}


def _parse_id_list(value: Any) -> list[str]:
    """Accept a list, a JSON list string or a comma separated string."""
    if value is None:
        return []
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return []
        if text.startswith("["):
            try:
                parsed = json.loads(text)
            except ValueError:
                parsed = None
            if isinstance(parsed, list):
                return [str(item).strip() for item in parsed if str(item).strip()]
        return [item.strip() for item in text.split(",") if item.strip()]
    if isinstance(value, (list, tuple, set)):
        return [str(item).strip() for item in value if str(item).strip()]
    return [str(value).strip()] if str(value).strip() else []


class ReconnectConfig(BaseSettings):
    """Shared reconnect policy for all adapters."""

    max_attempts: int = Field(default=5, ge=0, description="Reconnect attempts before giving up")
    base_delay_s: float = Field(
        default=1.0,
        ge=0.0,
        description="Attempt n waits base_delay_s * n seconds",
    )

    model_config = SettingsConfigDict(env_prefix="UNIBUS_RECONNECT_")


class TelegramChannelConfig(BaseSettings):
    """Telegram Bot API adapter configuration."""

    enabled: bool = True
    bot_token: str = Field(default="", description="Telegram bot token")
    api_base: str = "https://api.telegram.org"
    poll_timeout_s: int = Field(default=25, ge=1, le=60)
    retry_delay_s: int = Field(default=3, ge=0, le=30)
    max_message_chars: int = Field(default=4000, ge=200, le=4096)
    parse_mode: str | None = "HTML"
    history_limit: int = Field(default=200, ge=1, description="Recent messages kept per chat")
    listen_channels: Annotated[list[str], NoDecode] = Field(default_factory=list)

    @field_validator("listen_channels", mode="before")
    @classmethod
    def _parse_listen_channels(cls, value: Any) -> list[str]:
        return _parse_id_list(value)

    model_config = SettingsConfigDict(env_prefix="UNIBUS_TELEGRAM_")


class SlackChannelConfig(BaseSettings):
    """Slack Socket Mode adapter configuration."""

    enabled: bool = True
    bot_token: str = Field(default="", description="xoxb- bot token")
    app_token: str = Field(default="", description="xapp- app-level token for Socket Mode")
    listen_channels: Annotated[list[str], NoDecode] = Field(default_factory=list)

    @field_validator("listen_channels", mode="before")
    @classmethod
    def _parse_listen_channels(cls, value: Any) -> list[str]:
        return _parse_id_list(value)

    model_config = SettingsConfigDict(env_prefix="UNIBUS_SLACK_")


class DiscordChannelConfig(BaseSettings):
    """Discord gateway adapter configuration."""

    enabled: bool = True
    bot_token: str = Field(default="", description="Discord bot token")
    ready_timeout_s: float = Field(default=30.0, gt=0)
    listen_channels: Annotated[list[str], NoDecode] = Field(default_factory=list)

    @field_validator("listen_channels", mode="before")
    @classmethod
    def _parse_listen_channels(cls, value: Any) -> list[str]:
        return _parse_id_list(value)

    model_config = SettingsConfigDict(env_prefix="UNIBUS_DISCORD_")


class ChannelsConfig(BaseModel):
    """Per-platform adapter configuration."""

    telegram: TelegramChannelConfig = Field(default_factory=TelegramChannelConfig)
    slack: SlackChannelConfig = Field(default_factory=SlackChannelConfig)
    discord: DiscordChannelConfig = Field(default_factory=DiscordChannelConfig)


class AIConfig(BaseSettings):
    """AI responder configuration."""

    enabled: bool = False
    model: str = Field(default="openai/gpt-4o-mini", description="LiteLLM model identifier")
    api_key: str = Field(default="", description="API key for the LLM provider")
    api_base: str | None = Field(default=None, description="Custom API base URL")
    temperature: float = Field(default=0.7, ge=0.0, le=2.0)
    max_tokens: int = Field(default=1000, gt=0)
    system_prompt: str | None = None
    history_limit: int = Field(default=20, gt=0, description="History entries kept per channel")
    context_messages: int = Field(default=10, gt=0, description="History entries sent per request")
    fallback_models: Annotated[list[str], NoDecode] = Field(default_factory=list)

    @field_validator("fallback_models", mode="before")
    @classmethod
    def _parse_fallback_models(cls, value: Any) -> list[str]:
        return _parse_id_list(value)

    model_config = SettingsConfigDict(env_prefix="UNIBUS_AI_")


class UnibusConfig(BaseSettings):
    """Root Unibus configuration."""

    # Server
    host: str = Field(default="127.0.0.1", description="Server bind host")
    port: int = Field(default=3000, description="Server bind port")

    # Outbound identity used for messages the bus sends itself
    bot_username: str = Field(default="Unibus")

    # Sub-configs
    channels: ChannelsConfig = Field(default_factory=ChannelsConfig)
    reconnect: ReconnectConfig = Field(default_factory=ReconnectConfig)
    ai: AIConfig = Field(default_factory=AIConfig)

    # Logging
    log_level: str = Field(default="INFO")
    log_format: str = Field(default="json", description="'json' or 'console'")

    model_config = SettingsConfigDict(
        env_prefix="UNIBUS_",
        env_nested_delimiter="__",
    )

    @classmethod
    def load(cls) -> UnibusConfig:
        """Load config from YAML + env vars (env takes precedence)."""
        yaml_cfg = _load_yaml_config()

        channels_data = yaml_cfg.pop("channels", {}) or {}
        reconnect_data = yaml_cfg.pop("reconnect", {})
        ai_data = yaml_cfg.pop("ai", {})

        # Sub-configs are only built from YAML when present so that
        # pydantic-settings still reads their env prefixes otherwise.
        kwargs: dict[str, Any] = {**yaml_cfg}
        if channels_data:
            kwargs["channels"] = ChannelsConfig(
                telegram=TelegramChannelConfig(**(channels_data.get("telegram") or {})),
                slack=SlackChannelConfig(**(channels_data.get("slack") or {})),
                discord=DiscordChannelConfig(**(channels_data.get("discord") or {})),
            )
        if reconnect_data:
            kwargs["reconnect"] = ReconnectConfig(**reconnect_data)
        if ai_data:
            kwargs["ai"] = AIConfig(**ai_data)

        return cls(**kwargs)


_config: UnibusConfig | None = None


def get_config() -> UnibusConfig:
    """Get or create the process config."""
    global _config
    if _config is None:
        _config = UnibusConfig.load()
    return _config
