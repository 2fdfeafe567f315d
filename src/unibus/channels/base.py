"""Core channel abstractions."""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, Literal

import structlog

from unibus.config import ReconnectConfig
from unibus.errors import ReconnectExhaustedError, error_payload
from unibus.events import EventEmitter

logger = structlog.get_logger()

AdapterStatus = Literal["connected", "disconnected", "reconnecting"]


@dataclass
class SendOptions:
    """Outbound options understood by every adapter.

    Each adapter maps the fields it supports onto its platform call and
    ignores the rest. ``extra`` is passed through to the native call as-is.
    """

    reply_to: str | None = None
    thread_id: str | None = None
    parse_mode: str | None = None
    disable_preview: bool = False
    media_type: str | None = None
    attachments: list[str] = field(default_factory=list)
    tts: bool = False
    extra: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> SendOptions:
        if not data:
            return cls()
        known = {name for name in cls.__dataclass_fields__}
        kwargs = {key: value for key, value in data.items() if key in known}
        extra = {key: value for key, value in data.items() if key not in known}
        if extra:
            kwargs["extra"] = {**extra, **(kwargs.get("extra") or {})}
        return cls(**kwargs)


@dataclass
class SendResult:
    """What a platform reports back for a delivered message."""

    message_id: str
    channel_id: str
    timestamp: datetime
    platform: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "message_id": self.message_id,
            "channel_id": self.channel_id,
            "timestamp": self.timestamp.isoformat(),
            "platform": self.platform,
        }


@dataclass
class HealthReport:
    """Non-throwing status probe result for one adapter."""

    platform: str
    connected: bool
    last_activity: datetime | None
    config_valid: bool
    details: dict[str, Any] = field(default_factory=dict)
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "platform": self.platform,
            "connected": self.connected,
            "last_activity": self.last_activity.isoformat() if self.last_activity else None,
            "config_valid": self.config_valid,
            "details": self.details,
            "error": self.error,
        }


class ChannelAdapter(EventEmitter, ABC):
    """Interface implemented by all platform adapters.

    Adapters emit three events:

    - ``message``: an inbound message in the platform's own field names,
      tagged with ``platform`` and ``is_edit``. The bus normalizes it.
    - ``status``: one of ``connected``, ``disconnected``, ``reconnecting``.
    - ``error``: a non-fatal exception instance.
    """

    def __init__(self, platform: str, reconnect: ReconnectConfig | None = None) -> None:
        super().__init__()
        reconnect = reconnect or ReconnectConfig()
        self.platform = platform
        self.connected = False
        self.last_activity: datetime | None = None
        self.max_reconnect_attempts = reconnect.max_attempts
        self.reconnect_delay_s = reconnect.base_delay_s
        self.reconnect_attempts = 0
        self._reconnect_task: asyncio.Task[bool] | None = None
        # Set when the session drops again while a reconnect attempt is still in connect().
        self._reconnect_requested = False

    @property
    @abstractmethod
    def enabled(self) -> bool:
        ...

    @abstractmethod
    async def connect(self) -> None:
        ...

    @abstractmethod
    async def disconnect(self) -> None:
        ...

    @abstractmethod
    async def send_message(
        self,
        channel_id: str,
        content: str,
        options: SendOptions | None = None,
    ) -> SendResult:
        ...

    @abstractmethod
    async def get_channels(self) -> list[dict[str, Any]]:
        ...

    @abstractmethod
    async def get_messages(
        self,
        channel_id: str,
        *,
        limit: int = 100,
        before: str | None = None,
    ) -> list[dict[str, Any]]:
        """Best-effort history in the adapter's native payload shape."""
        ...

    @abstractmethod
    def validate_config(self) -> bool:
        """Report config validity without raising."""
        ...

    async def _probe(self) -> dict[str, Any]:
        """Platform identity details for ``health_check``. May raise."""
        return {}

    async def health_check(self) -> HealthReport:
        report = HealthReport(
            platform=self.platform,
            connected=self.connected,
            last_activity=self.last_activity,
            config_valid=self._safe_validate(),
        )
        if not self.connected:
            return report
        try:
            report.details = await self._probe()
        except Exception as exc:
            report.error = str(exc)
        return report

    def _safe_validate(self) -> bool:
        try:
            return bool(self.validate_config())
        except Exception:
            return False

    async def emit_message(self, payload: dict[str, Any]) -> None:
        self.last_activity = self._now()
        await self.emit("message", payload)

    async def emit_status(self, status: AdapterStatus) -> None:
        self.connected = status == "connected"
        self.last_activity = self._now()
        logger.info("channels.status", platform=self.platform, status=status)
        await self.emit("status", status)

    async def emit_error(self, error: BaseException) -> None:
        logger.error("channels.error", **error_payload(error, platform=self.platform))
        await self.emit("error", error)

    async def handle_reconnect(self) -> bool:
        """Run the bounded, linearly backed-off reconnect policy.

        Returns True once a ``connect()`` succeeds. After
        ``max_reconnect_attempts`` failures a ``ReconnectExhaustedError`` is
        emitted and no further attempts are made until ``reset_reconnect``.
        """
        while self.reconnect_attempts < self.max_reconnect_attempts:
            self.reconnect_attempts += 1
            delay = self.reconnect_delay_s * self.reconnect_attempts
            logger.info(
                "channels.reconnect.attempt",
                platform=self.platform,
                attempt=self.reconnect_attempts,
                delay_s=delay,
            )
            await self.emit_status("reconnecting")
            await asyncio.sleep(delay)
            self._reconnect_requested = False
            try:
                await self.connect()
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                logger.warning(
                    "channels.reconnect.failed",
                    platform=self.platform,
                    attempt=self.reconnect_attempts,
                    error=str(exc),
                )
                continue
            if self._reconnect_requested:
                logger.warning(
                    "channels.reconnect.lost_again",
                    platform=self.platform,
                    attempt=self.reconnect_attempts,
                )
                continue
            logger.info(
                "channels.reconnect.succeeded",
                platform=self.platform,
                attempts=self.reconnect_attempts,
            )
            self.reconnect_attempts = 0
            return True

        await self.emit_error(ReconnectExhaustedError(self.platform, self.reconnect_attempts))
        return False

    def schedule_reconnect(self) -> asyncio.Task[bool]:
        """Start the reconnect policy in the background unless already running.

        A request that arrives while a run is in progress makes that run retry
        instead of reporting success.
        """
        if self._reconnect_task is None or self._reconnect_task.done():
            self._reconnect_task = asyncio.create_task(
                self.handle_reconnect(),
                name=f"channel-{self.platform}-reconnect",
            )
        else:
            self._reconnect_requested = True
        return self._reconnect_task

    async def cancel_reconnect(self) -> None:
        task = self._reconnect_task
        self._reconnect_task = None
        if task is None or task.done() or task is asyncio.current_task():
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    def reset_reconnect(self) -> None:
        self.reconnect_attempts = 0

    def accepts_channel(self, channel_id: Any, allowlist: list[str]) -> bool:
        if not allowlist:
            return True
        return str(channel_id) in allowlist

    @staticmethod
    def _now() -> datetime:
        return datetime.now(UTC)
