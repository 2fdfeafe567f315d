"""LiteLLM gateway: async wrapper for multi-provider LLM access."""

from __future__ import annotations

import time
from typing import Any

import litellm
import structlog

from unibus.config import AIConfig

logger = structlog.get_logger()

litellm.suppress_debug_info = True
litellm.drop_params = True


class LLMGateway:
    """Async wrapper around LiteLLM used by the AI responder."""

    def __init__(self, config: AIConfig) -> None:
        self.config = config
        self.total_tokens_used = 0
        self.request_count = 0

    async def completion(
        self,
        messages: list[dict[str, Any]],
        *,
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> Any:
        """Send a chat completion request, falling back through configured models."""
        kwargs: dict[str, Any] = {
            "model": self.config.model,
            "messages": messages,
            "temperature": temperature if temperature is not None else self.config.temperature,
            "max_tokens": max_tokens or self.config.max_tokens,
        }
        if self.config.api_key:
            kwargs["api_key"] = self.config.api_key
        if self.config.api_base:
            kwargs["api_base"] = self.config.api_base

        start = time.monotonic()
        self.request_count += 1
        request_id = self.request_count
        logger.info(
            "llm.request",
            request_id=request_id,
            model=kwargs["model"],
            message_count=len(messages),
        )

        try:
            response = await litellm.acompletion(**kwargs)
        except Exception as e:
            logger.error("llm.error", request_id=request_id, error=str(e), model=kwargs["model"])
            for fallback in self.config.fallback_models:
                logger.info("llm.fallback", fallback_model=fallback)
                try:
                    kwargs["model"] = fallback
                    response = await litellm.acompletion(**kwargs)
                except Exception as fallback_err:
                    logger.error("llm.fallback.error", model=fallback, error=str(fallback_err))
                    continue
                logger.info("llm.fallback.success", model=fallback)
                return response
            raise

        usage = getattr(response, "usage", None)
        tokens = getattr(usage, "total_tokens", 0) if usage else 0
        self.total_tokens_used += tokens or 0
        logger.info(
            "llm.response",
            request_id=request_id,
            tokens=tokens,
            duration=f"{time.monotonic() - start:.2f}s",
        )
        return response

    async def complete_text(self, messages: list[dict[str, Any]], **kwargs: Any) -> str:
        """Return the stripped text of the first choice."""
        response = await self.completion(messages, **kwargs)
        content = response.choices[0].message.content
        return (content or "").strip()

    @property
    def stats(self) -> dict[str, Any]:
        return {
            "total_tokens": self.total_tokens_used,
            "request_count": self.request_count,
            "model": self.config.model,
        }
