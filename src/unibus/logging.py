"""structlog setup shared by the server, the adapters and the CLI."""

from __future__ import annotations

import logging
import sys
from typing import TextIO

import structlog

# SDK loggers that are chatty at INFO (gateway heartbeats, socket-mode pings, HTTP lines).
_NOISY_LOGGERS = (
    "uvicorn.access",
    "httpcore",
    "httpx",
    "litellm",
    "LiteLLM",
    "discord",
    "discord.gateway",
    "slack_bolt",
    "slack_sdk.socket_mode",
)


def _shared_processors() -> list[structlog.types.Processor]:
    return [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]


def _renderer(fmt: str) -> list[structlog.types.Processor]:
    if fmt == "console":
        return [structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty())]
    return [structlog.processors.format_exc_info, structlog.processors.JSONRenderer()]


def setup_logging(level: str = "INFO", fmt: str = "json", *, stream: TextIO | None = None) -> None:
    """Route structlog and stdlib logging (SDKs included) through one handler.

    ``fmt`` is ``"json"`` or ``"console"``.
    """
    shared = _shared_processors()

    structlog.configure(
        processors=[*shared, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler(stream or sys.stdout)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            processors=[structlog.stdlib.ProcessorFormatter.remove_processors_meta, *_renderer(fmt)],
            foreign_pre_chain=shared,
        )
    )

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(getattr(logging, level.upper(), logging.INFO))

    _quiet_third_party()


def _quiet_third_party(level: int = logging.WARNING) -> None:
    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(level)
