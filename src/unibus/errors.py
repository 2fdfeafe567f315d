"""Error taxonomy shared by adapters, the bus and the API layer."""

from __future__ import annotations

from typing import Any


class UnibusError(Exception):
    """Base error. Always tagged with the platform and operation that failed."""

    def __init__(
        self,
        message: str,
        *,
        platform: str | None = None,
        operation: str | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.platform = platform
        self.operation = operation

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": type(self).__name__,
            "message": self.message,
            "platform": self.platform,
            "operation": self.operation,
        }


class AdapterConnectionError(UnibusError):
    """Authentication or network failure while opening a platform session."""

    def __init__(self, message: str, *, platform: str) -> None:
        super().__init__(message, platform=platform, operation="connect")


class AdapterNotConnectedError(UnibusError):
    """A platform call was made before ``connect()`` succeeded."""

    def __init__(self, platform: str, operation: str) -> None:
        super().__init__(
            f"{platform} adapter is not connected",
            platform=platform,
            operation=operation,
        )


class AdapterSendError(UnibusError):
    """The platform rejected an outbound message."""

    def __init__(self, message: str, *, platform: str, channel_id: str | None = None) -> None:
        super().__init__(message, platform=platform, operation="send_message")
        self.channel_id = channel_id

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data["channel_id"] = self.channel_id
        return data


class ReconnectExhaustedError(UnibusError):
    """Terminal error emitted once the reconnect policy gives up."""

    def __init__(self, platform: str, attempts: int) -> None:
        super().__init__(
            f"Max reconnect attempts reached for {platform} ({attempts})",
            platform=platform,
            operation="reconnect",
        )
        self.attempts = attempts


class UnknownPlatformError(UnibusError):
    """No adapter is registered under the requested platform name."""

    def __init__(self, platform: str, operation: str = "send_message") -> None:
        super().__init__(
            f"No integration found for platform: {platform}",
            platform=platform,
            operation=operation,
        )


def error_payload(error: BaseException, *, platform: str | None = None, operation: str | None = None) -> dict[str, Any]:
    """Render any exception as a structured payload, never a traceback."""
    if isinstance(error, UnibusError):
        data = error.to_dict()
        if data.get("platform") is None:
            data["platform"] = platform
        if data.get("operation") is None:
            data["operation"] = operation
        return data
    return {
        "type": type(error).__name__,
        "message": str(error),
        "platform": platform,
        "operation": operation,
    }
