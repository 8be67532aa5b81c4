"""OpenAI chat completions adapter.

Talks to ``POST {base_url}/chat/completions`` over httpx. Any endpoint
that speaks the same wire format (DeepSeek, self-hosted gateways) can
reuse this class by subclassing it with different settings.
"""

from __future__ import annotations

import logging
import time

import httpx

from repoagent.config import Settings, get_settings
from repoagent.llm.base import LLMAdapter
from repoagent.schemas import LLMMessage, LLMResponse


logger = logging.getLogger(__name__)


class OpenAIAdapter(LLMAdapter):
    """OpenAI-compatible chat completions adapter."""

    def __init__(
        self,
        api_key: str | None = None,
        base_url: str | None = None,
        model: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        settings: Settings | None = None,
    ):
        settings = settings or get_settings()
        self.api_key = api_key if api_key is not None else settings.openai_api_key
        self.base_url = base_url or settings.openai_base_url
        self._default_model = model or settings.openai_model
        self.timeout = timeout or settings.llm_timeout_seconds

        if not self.api_key:
            raise ValueError(f"{self.provider_name} API key not configured")

        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            headers={
                "Authorization": f"Bearer {self.api_key}",
                "Content-Type": "application/json",
            },
            timeout=self.timeout,
            transport=transport,
        )

    @property
    def provider_name(self) -> str:
        return "openai"

    @property
    def default_model(self) -> str:
        return self._default_model

    async def chat_completion(
        self,
        messages: list[LLMMessage],
        model: str | None = None,
        temperature: float = 0.7,
        max_tokens: int = 4000,
    ) -> LLMResponse:
        """Send chat completion request to the provider."""
        model = model or self.default_model
        payload = self._build_request(
            messages=messages,
            model=model,
            temperature=temperature,
            max_tokens=max_tokens,
        )

        start_time = time.perf_counter()

        try:
            response = await self._client.post("/chat/completions", json=payload)
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPStatusError as e:
            return LLMResponse(
                model=model,
                finish_reason="error",
                status_code=e.response.status_code,
                error=f"{self.provider_name} returned {e.response.status_code}: {e.response.text[:200]}",
            )
        except httpx.HTTPError as e:
            return LLMResponse(
                model=model,
                finish_reason="error",
                error=f"{self.provider_name} request failed: {e!r}",
            )

        latency_ms = int((time.perf_counter() - start_time) * 1000)
        logger.debug(f"{self.provider_name}/{model} answered in {latency_ms}ms")

        choice = (data.get("choices") or [{}])[0]
        message = choice.get("message") or {}

        return LLMResponse(
            content=message.get("content"),
            model=data.get("model", model),
            usage=data.get("usage") or {},
            finish_reason=choice.get("finish_reason"),
            raw_response=data,
        )

    async def close(self) -> None:
        """Close the HTTP client."""
        await self._client.aclose()
