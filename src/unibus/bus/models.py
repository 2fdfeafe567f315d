"""Canonical message model shared by every platform."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from unibus.channels.base import SendResult


@dataclass(frozen=True)
class Author:
    """Platform-scoped identity. Not unique across platforms."""

    id: str
    username: str | None = None
    display_name: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id, "username": self.username, "display_name": self.display_name}


@dataclass
class UnifiedMessage:
    """A message in the bus's platform-independent representation.

    Only ``reactions`` and ``attachments`` are meant to change after the
    message is stored; edits arrive as new messages with ``is_edit`` set.
    """

    platform: str
    channel_id: str
    author: Author
    content: str
    native_message_id: str
    message_type: str = "text"
    channel_name: str | None = None
    is_edit: bool = False
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))
    reactions: list[dict[str, Any]] = field(default_factory=list)
    attachments: list[dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "platform": self.platform,
            "channel_id": self.channel_id,
            "channel_name": self.channel_name,
            "author": self.author.to_dict(),
            "content": self.content,
            "message_type": self.message_type,
            "timestamp": self.timestamp.isoformat(),
            "native_message_id": self.native_message_id,
            "is_edit": self.is_edit,
            "reactions": list(self.reactions),
            "attachments": list(self.attachments),
        }


@dataclass
class ChannelSummary:
    """Live aggregate for one (platform, channel) pair."""

    platform: str
    id: str
    name: str | None
    last_message_at: datetime
    message_count: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "platform": self.platform,
            "id": self.id,
            "name": self.name,
            "last_message_at": self.last_message_at.isoformat(),
            "message_count": self.message_count,
        }


@dataclass
class DeliveryResult:
    """Outcome of one destination in a cross-channel broadcast."""

    platform: str
    channel_id: str | None = None
    result: SendResult | None = None
    error: dict[str, Any] | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"platform": self.platform, "channel_id": self.channel_id}
        if self.error is not None:
            data["error"] = self.error
        else:
            data["result"] = self.result.to_dict() if self.result else None
        return data
