"""Groq adapter (OpenAI-compatible surface under /openai/v1)."""

from __future__ import annotations

import httpx

from chatrelay.config import Settings
from chatrelay.providers.base import ProviderDescriptor
from chatrelay.providers.openai_compat import OpenAICompatProvider


class GroqProvider(OpenAICompatProvider):
    """Groq takes the plain bearer key and no vendor headers."""

    def __init__(
        self,
        descriptor: ProviderDescriptor,
        settings: Settings,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        super().__init__(
            descriptor,
            settings,
            base_url=settings.groq_base_url,
            api_key=settings.groq_api_key,
            transport=transport,
        )
