"""Thin async wrapper around an OpenAI-compatible chat completion endpoint."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

from openai import AsyncOpenAI

from marketplace_service.logging import get_logger

if TYPE_CHECKING:
    from marketplace_service.config import AIConfig


@dataclass(frozen=True)
class LLMResponse:
    """Parsed chat completion result."""

    content: str
    finish_reason: str


class LLMClient:
    """Async client for an OpenAI-compatible chat completion endpoint."""

    def __init__(self, config: AIConfig) -> None:
        self._config = config
        self._client = AsyncOpenAI(
            api_key=config.api_key,
            base_url=config.base_url,
        )
        self._logger = get_logger(__name__)

    async def complete(self, system_prompt: str, user_prompt: str) -> LLMResponse:
        """Send a chat completion request and return the parsed response.

        Raises:
            RuntimeError: If the response contains no content.
            openai.OpenAIError: On any SDK-level failure.
        """
        self._logger.debug(
            "LLM request",
            extra={"model": self._config.model_id, "max_tokens": self._config.max_tokens},
        )

        response = await self._client.chat.completions.create(
            model=self._config.model_id,
            messages=[
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt},
            ],
            temperature=self._config.temperature,
            max_tokens=self._config.max_tokens,
            presence_penalty=0.1,
            frequency_penalty=0.1,
        )

        if not response.choices:
            msg = "LLM returned no choices"
            raise RuntimeError(msg)
        choice = response.choices[0]
        content = choice.message.content
        if not content:
            msg = "LLM returned empty content"
            raise RuntimeError(msg)

        return LLMResponse(
            content=content.strip(),
            finish_reason=choice.finish_reason or "unknown",
        )

    async def close(self) -> None:
        """Close the underlying HTTP client."""
        await self._client.close()
