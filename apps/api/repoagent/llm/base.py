"""Abstract base class for LLM adapters."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any

from repoagent.schemas import LLMMessage, LLMResponse


class LLMAdapter(ABC):
    """Abstract base class for LLM provider adapters.

    All providers (OpenAI, DeepSeek) implement this interface so the
    router can retry and fall back without caring which one answered.
    """

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """Return the provider name (e.g., 'openai', 'deepseek')."""
        ...

    @property
    @abstractmethod
    def default_model(self) -> str:
        """Model used when the caller does not name one."""
        ...

    @abstractmethod
    async def chat_completion(
        self,
        messages: list[LLMMessage],
        model: str | None = None,
        temperature: float = 0.7,
        max_tokens: int = 4000,
    ) -> LLMResponse:
        """Send a chat completion request.

        Failures are reported in the returned response (``finish_reason ==
        "error"``) rather than raised, so the router can decide whether to
        retry.

        Args:
            messages: Ordered conversation messages
            model: Model name (uses default if None)
            temperature: Sampling temperature (0-2)
            max_tokens: Maximum tokens in response

        Returns:
            LLMResponse with the completion text or the failure details
        """
        ...

    @abstractmethod
    async def close(self) -> None:
        """Release the underlying HTTP client."""
        ...

    def _build_request(
        self,
        messages: list[LLMMessage],
        model: str,
        temperature: float,
        max_tokens: int,
    ) -> dict[str, Any]:
        """Build the chat completions payload."""
        return {
            "model": model,
            "messages": [m.model_dump() for m in messages],
            "temperature": temperature,
            "max_tokens": max_tokens,
        }
