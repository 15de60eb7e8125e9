"""OpenRouter adapter (OpenAI-compatible with attribution headers)."""

from __future__ import annotations

import httpx

from chatrelay.config import Settings
from chatrelay.providers.base import ProviderDescriptor
from chatrelay.providers.openai_compat import OpenAICompatProvider


class OpenRouterProvider(OpenAICompatProvider):
    """OpenRouter requires referrer/title metadata alongside the bearer key."""

    def __init__(
        self,
        descriptor: ProviderDescriptor,
        settings: Settings,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        super().__init__(
            descriptor,
            settings,
            base_url=settings.openrouter_base_url,
            api_key=settings.openrouter_api_key,
            transport=transport,
        )

    def vendor_headers(self) -> dict[str, str]:
        return {
            "HTTP-Referer": self.settings.openrouter_referer,
            "X-Title": self.settings.openrouter_title,
        }
