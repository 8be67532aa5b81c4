"""LLM Router with retry and provider fallback.

Strategy:
- Send the request to the primary provider
- Retry transient failures (network errors, 429, 5xx) up to ``llm_max_retries``
- Then try the fallback provider once, if one is configured
- If nothing answered, raise ``LLMInvocationError``

Unparseable output is not a failure here; only a missing answer is.
"""

from __future__ import annotations

import logging

from repoagent.config import Settings, get_settings
from repoagent.llm.base import LLMAdapter
from repoagent.llm.deepseek import DeepSeekAdapter
from repoagent.llm.openai import OpenAIAdapter
from repoagent.schemas import LLMMessage, LLMResponse


logger = logging.getLogger(__name__)

ADAPTER_CLASSES: dict[str, type[OpenAIAdapter]] = {
    "openai": OpenAIAdapter,
    "deepseek": DeepSeekAdapter,
}


class LLMInvocationError(Exception):
    """The completion endpoint could not produce an answer."""


def is_transient(response: LLMResponse) -> bool:
    """Network failures, rate limits and server errors are worth retrying."""
    if response.status_code is None:
        return True
    return response.status_code == 429 or response.status_code >= 500


class ModelRouter:
    """Routes LLM requests to the configured providers."""

    def __init__(
        self,
        settings: Settings | None = None,
        adapters: dict[str, LLMAdapter] | None = None,
    ):
        self._settings = settings or get_settings()
        self.primary_provider = self._settings.primary_provider
        self.fallback_provider = self._settings.fallback_provider
        self.max_retries = self._settings.llm_max_retries

        # Adapters are created lazily unless injected
        self._adapters: dict[str, LLMAdapter] = dict(adapters or {})

    def _get_adapter(self, provider: str) -> LLMAdapter:
        """Get or create an adapter for a provider."""
        if provider not in self._adapters:
            adapter_class = ADAPTER_CLASSES.get(provider)
            if adapter_class is None:
                raise ValueError(f"Unknown provider: {provider}")
            self._adapters[provider] = adapter_class(settings=self._settings)
        return self._adapters[provider]

    async def _call_with_retry(
        self,
        provider: str,
        messages: list[LLMMessage],
        temperature: float,
        max_tokens: int,
    ) -> LLMResponse:
        adapter = self._get_adapter(provider)
        attempts = 1 + self.max_retries

        for attempt in range(1, attempts + 1):
            response = await adapter.chat_completion(
                messages=messages,
                temperature=temperature,
                max_tokens=max_tokens,
            )
            if not response.failed:
                return response

            logger.warning(
                f"{provider} attempt {attempt}/{attempts} failed: {response.error}"
            )
            if not is_transient(response):
                break

        return response

    async def complete(
        self,
        messages: list[LLMMessage],
        temperature: float = 0.7,
        max_tokens: int | None = None,
    ) -> LLMResponse:
        """Route a chat completion request with retry and fallback.

        Args:
            messages: Ordered conversation messages
            temperature: Sampling temperature
            max_tokens: Max response tokens (defaults to ``llm_max_tokens``)

        Returns:
            The first successful response

        Raises:
            LLMInvocationError: every provider failed
        """
        max_tokens = max_tokens or self._settings.llm_max_tokens
        providers = [self.primary_provider]
        if self.fallback_provider and self.fallback_provider != self.primary_provider:
            providers.append(self.fallback_provider)

        errors: list[str] = []
        for provider in providers:
            try:
                response = await self._call_with_retry(provider, messages, temperature, max_tokens)
            except ValueError as e:
                # Provider not configured (missing API key)
                logger.warning(f"Skipping provider {provider}: {e}")
                errors.append(f"{provider}: {e}")
                continue

            if not response.failed:
                logger.info(f"Completion served by {provider}/{response.model}")
                return response

            errors.append(f"{provider}: {response.error}")
            if provider != providers[-1]:
                logger.warning(f"Provider {provider} failed, trying fallback")

        raise LLMInvocationError("LLM invocation failed: " + "; ".join(errors))

    async def complete_text(
        self,
        system_prompt: str,
        user_prompt: str,
        temperature: float = 0.7,
        max_tokens: int | None = None,
    ) -> str:
        """System + user prompt in, completion text out."""
        response = await self.complete(
            [
                LLMMessage(role="system", content=system_prompt),
                LLMMessage(role="user", content=user_prompt),
            ],
            temperature=temperature,
            max_tokens=max_tokens,
        )
        return response.content or ""

    async def close(self) -> None:
        """Close all adapters."""
        for adapter in self._adapters.values():
            await adapter.close()


def build_router(settings: Settings | None = None) -> ModelRouter:
    """Construct a router from settings."""
    return ModelRouter(settings=settings or get_settings())
