"""DeepSeek LLM adapter.

DeepSeek provides an OpenAI-compatible API at https://api.deepseek.com,
so only the credentials and the default model differ.
"""

from __future__ import annotations

import httpx

from repoagent.config import Settings, get_settings
from repoagent.llm.openai import OpenAIAdapter


class DeepSeekAdapter(OpenAIAdapter):
    """DeepSeek API adapter using the OpenAI-compatible endpoint."""

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
        super().__init__(
            api_key=api_key if api_key is not None else settings.deepseek_api_key,
            base_url=base_url or settings.deepseek_base_url,
            model=model or settings.deepseek_model_chat,
            timeout=timeout,
            transport=transport,
            settings=settings,
        )

    @property
    def provider_name(self) -> str:
        return "deepseek"
