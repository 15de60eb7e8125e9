"""Upstream provider interfaces and implementations."""

from chatrelay.providers.base import (
    AttachmentRef,
    ChatMessage,
    Provider,
    ProviderDescriptor,
    Role,
    UpstreamRequest,
    UpstreamStream,
)
from chatrelay.providers.groq import GroqProvider
from chatrelay.providers.openai_compat import OpenAICompatProvider
from chatrelay.providers.openrouter import OpenRouterProvider
from chatrelay.providers.registry import (
    PROVIDER_TABLE,
    ProviderBinding,
    ProviderRegistry,
)

__all__ = [
    "AttachmentRef",
    "ChatMessage",
    "GroqProvider",
    "OpenAICompatProvider",
    "OpenRouterProvider",
    "PROVIDER_TABLE",
    "Provider",
    "ProviderBinding",
    "ProviderDescriptor",
    "ProviderRegistry",
    "Role",
    "UpstreamRequest",
    "UpstreamStream",
]
