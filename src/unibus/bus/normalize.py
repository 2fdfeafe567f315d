"""Native payload -> UnifiedMessage mapping, one function per platform."""

from __future__ import annotations

import uuid
from collections.abc import Callable
from typing import Any

from unibus.bus.models import Author, UnifiedMessage

Normalizer = Callable[[str, dict[str, Any]], UnifiedMessage]

MEDIA_PLACEHOLDER = "[Media]"
UNKNOWN_PLACEHOLDER = "[Unknown]"

_TELEGRAM_MEDIA_KEYS = ("photo", "video", "audio", "voice", "document", "sticker")


def _as_str(value: Any, default: str) -> str:
    if value is None or value == "":
        return default
    return str(value)


def _join_name(*parts: Any) -> str | None:
    name = " ".join(str(part) for part in parts if part)
    return name or None


def _is_edit(payload: dict[str, Any]) -> bool:
    return bool(payload.get("is_edit") or payload.get("isEdit"))


def telegram_message_type(payload: dict[str, Any]) -> str:
    for key in _TELEGRAM_MEDIA_KEYS:
        if payload.get(key):
            return key
    return "text"


def normalize_telegram(platform: str, payload: dict[str, Any]) -> UnifiedMessage:
    sender = payload.get("from") or {}
    chat = payload.get("chat") or {}
    return UnifiedMessage(
        platform=platform,
        content=payload.get("text") or payload.get("caption") or MEDIA_PLACEHOLDER,
        author=Author(
            id=_as_str(sender.get("id"), "unknown"),
            username=sender.get("username"),
            display_name=_join_name(sender.get("first_name"), sender.get("last_name")),
        ),
        channel_id=_as_str(chat.get("id"), "unknown"),
        channel_name=chat.get("title") or chat.get("first_name"),
        native_message_id=_as_str(payload.get("message_id"), str(uuid.uuid4())),
        message_type=telegram_message_type(payload),
        is_edit=_is_edit(payload),
    )


def normalize_slack(platform: str, payload: dict[str, Any]) -> UnifiedMessage:
    return UnifiedMessage(
        platform=platform,
        content=payload.get("text") or MEDIA_PLACEHOLDER,
        author=Author(
            id=_as_str(payload.get("user"), "unknown"),
            username=payload.get("username"),
            display_name=payload.get("real_name"),
        ),
        channel_id=_as_str(payload.get("channel"), "unknown"),
        channel_name=payload.get("channel_name"),
        native_message_id=_as_str(payload.get("ts"), str(uuid.uuid4())),
        message_type=payload.get("subtype") or "message",
        is_edit=_is_edit(payload),
    )


def normalize_discord(platform: str, payload: dict[str, Any]) -> UnifiedMessage:
    author = payload.get("author") or {}
    channel = payload.get("channel") or {}
    return UnifiedMessage(
        platform=platform,
        content=payload.get("content") or MEDIA_PLACEHOLDER,
        author=Author(
            id=_as_str(author.get("id"), "unknown"),
            username=author.get("username"),
            display_name=author.get("global_name") or author.get("display_name"),
        ),
        channel_id=_as_str(channel.get("id"), "unknown"),
        channel_name=channel.get("name"),
        native_message_id=_as_str(payload.get("id"), str(uuid.uuid4())),
        message_type=_as_str(payload.get("type"), "message"),
        is_edit=_is_edit(payload),
        attachments=list(payload.get("attachments") or []),
        reactions=list(payload.get("reactions") or []),
    )


def normalize_default(platform: str, payload: dict[str, Any]) -> UnifiedMessage:
    raw_author = payload.get("author")
    if isinstance(raw_author, dict):
        author = Author(
            id=_as_str(raw_author.get("id"), "unknown"),
            username=raw_author.get("username"),
            display_name=raw_author.get("display_name"),
        )
    else:
        author = Author(id="unknown", username="Unknown")
    return UnifiedMessage(
        platform=platform,
        content=payload.get("content") or payload.get("text") or UNKNOWN_PLACEHOLDER,
        author=author,
        channel_id=_as_str(payload.get("channelId") or payload.get("channel_id"), "unknown"),
        channel_name=payload.get("channelName") or payload.get("channel_name") or "Unknown",
        native_message_id=_as_str(payload.get("id"), str(uuid.uuid4())),
        message_type="message",
        is_edit=_is_edit(payload),
    )


NORMALIZERS: dict[str, Normalizer] = {
    "telegram": normalize_telegram,
    "slack": normalize_slack,
    "discord": normalize_discord,
}


def normalize_message(platform: str, payload: dict[str, Any]) -> UnifiedMessage:
    """Map a native payload to a new UnifiedMessage with a fresh id."""
    normalizer = NORMALIZERS.get(platform, normalize_default)
    return normalizer(platform, payload)
