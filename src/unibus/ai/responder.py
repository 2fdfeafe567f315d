"""AI responder boundary and the default LLM-backed responder."""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any, Protocol

import structlog

from unibus.bus.models import UnifiedMessage
from unibus.config import AIConfig
from unibus.llm.gateway import LLMGateway

logger = structlog.get_logger()

DEFAULT_SYSTEM_PROMPT = (
    "You are Unibus AI, a helpful assistant that answers messages arriving from "
    "Telegram, Slack and Discord. Be concise and match the tone of the platform "
    "the message came from."
)


class AIResponder(Protocol):
    """Anything the bus can hand a message to for an optional reply."""

    async def process_message(self, message: UnifiedMessage) -> str | None:
        ...


@dataclass
class HistoryEntry:
    role: str
    content: str
    timestamp: datetime


class LLMResponder:
    """Replies through an LLM, keeping a short history per channel."""

    def __init__(self, gateway: LLMGateway, config: AIConfig) -> None:
        self.gateway = gateway
        self.config = config
        self.system_prompt = config.system_prompt or DEFAULT_SYSTEM_PROMPT
        self.history: dict[str, deque[HistoryEntry]] = {}

    def _history_for(self, platform: str, channel_id: str) -> deque[HistoryEntry]:
        key = f"{platform}:{channel_id}"
        history = self.history.get(key)
        if history is None:
            history = deque(maxlen=self.config.history_limit)
            self.history[key] = history
        return history

    async def process_message(self, message: UnifiedMessage) -> str | None:
        history = self._history_for(message.platform, message.channel_id)
        speaker = message.author.username or message.author.display_name or message.author.id
        history.append(
            HistoryEntry(
                role="user",
                content=f"[{message.platform}] {speaker}: {message.content}",
                timestamp=message.timestamp,
            )
        )

        context = list(history)[-self.config.context_messages :]
        messages: list[dict[str, Any]] = [{"role": "system", "content": self.system_prompt}]
        messages.extend({"role": entry.role, "content": entry.content} for entry in context)

        reply = await self.gateway.complete_text(messages)
        if not reply:
            return None

        history.append(HistoryEntry(role="assistant", content=reply, timestamp=datetime.now(UTC)))
        logger.info(
            "ai.reply.generated",
            platform=message.platform,
            channel_id=message.channel_id,
            length=len(reply),
        )
        return reply

    async def summarize_conversation(self, platform: str, channel_id: str, message_count: int = 50) -> str:
        history = self.history.get(f"{platform}:{channel_id}")
        if not history:
            return "No conversation history found."

        transcript = "\n".join(
            f"{entry.role}: {entry.content}" for entry in list(history)[-message_count:]
        )
        return await self.gateway.complete_text(
            [
                {"role": "system", "content": "You summarize chat conversations concisely."},
                {"role": "user", "content": f"Summarize this conversation:\n\n{transcript}"},
            ],
            temperature=0.3,
            max_tokens=500,
        )

    async def translate(self, text: str, target_language: str = "en") -> str:
        return await self.gateway.complete_text(
            [
                {"role": "system", "content": "You are a professional translator."},
                {"role": "user", "content": f"Translate the following text to {target_language}:\n\n{text}"},
            ],
            temperature=0.3,
            max_tokens=500,
        )

    def reset(self, platform: str, channel_id: str) -> None:
        self.history.pop(f"{platform}:{channel_id}", None)
