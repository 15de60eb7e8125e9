"""Provider registry built once from a fixed provider table."""

from __future__ import annotations

from dataclasses import dataclass

import httpx

from chatrelay.config import Settings
from chatrelay.core import InvalidModelError, UnknownProviderError, get_logger
from chatrelay.providers.base import Provider, ProviderDescriptor
from chatrelay.providers.groq import GroqProvider
from chatrelay.providers.openai_compat import OpenAICompatProvider
from chatrelay.providers.openrouter import OpenRouterProvider

logger = get_logger(__name__)


@dataclass(frozen=True)
class ProviderTableEntry:
    display_name: str
    adapter: type[OpenAICompatProvider]
    models: tuple[str, ...]


# The only place providers and their models are declared.
PROVIDER_TABLE: dict[str, ProviderTableEntry] = {
    "openrouter": ProviderTableEntry(
        display_name="OpenRouter",
        adapter=OpenRouterProvider,
        models=(
            "mistralai/mistral-7b-instruct:free",
            "deepseek/deepseek-r1-0528:free",
            "meta-llama/llama-4-scout:free",
        ),
    ),
    "groq": ProviderTableEntry(
        display_name="Groq",
        adapter=GroqProvider,
        models=(
            "llama3-8b-8192",
            "llama3-70b-8192",
            "gemma2-9b-it",
        ),
    ),
}


@dataclass(frozen=True)
class ProviderBinding:
    """A resolved provider: its static descriptor and its adapter."""

    descriptor: ProviderDescriptor
    adapter: Provider


class ProviderRegistry:
    """Instantiate and look up enabled providers; read-only after construction."""

    def __init__(
        self,
        settings: Settings,
        transport_overrides: dict[str, httpx.AsyncBaseTransport] | None = None,
    ):
        self.settings = settings
        self._bindings: dict[str, ProviderBinding] = {}
        self._transport_overrides = transport_overrides or {}
        self._initialize()

    def _initialize(self) -> None:
        for provider_id in self.settings.providers_enabled_list:
            entry = PROVIDER_TABLE.get(provider_id)
            if entry is None:
                logger.warning("Unknown provider id in configuration", data={"id": provider_id})
                continue
            descriptor = ProviderDescriptor(
                id=provider_id,
                display_name=entry.display_name,
                models=entry.models,
            )
            adapter = entry.adapter(
                descriptor,
                self.settings,
                transport=self._transport_overrides.get(provider_id),
            )
            self._bindings[provider_id] = ProviderBinding(descriptor=descriptor, adapter=adapter)

        logger.info(
            "Provider registry initialized",
            data={"providers": list(self._bindings.keys())},
        )

    def resolve(self, provider_id: str) -> ProviderBinding:
        """Resolve a provider by ID or raise UnknownProviderError."""
        binding = self._bindings.get(provider_id)
        if binding is None:
            raise UnknownProviderError(provider_id)
        return binding

    def validate_model(self, provider_id: str, model: str) -> None:
        """
        Ensure ``model`` belongs to ``provider_id``.

        Raises:
            UnknownProviderError: If the provider is not registered.
            InvalidModelError: If the model is not served by that provider.
        """
        binding = self.resolve(provider_id)
        if not binding.descriptor.supports(model):
            raise InvalidModelError(provider_id, model)

    def descriptors(self) -> list[ProviderDescriptor]:
        """Return descriptors in table order."""
        return [binding.descriptor for binding in self._bindings.values()]

    async def aclose(self) -> None:
        """Close all provider clients."""
        for provider_id, binding in self._bindings.items():
            try:
                await binding.adapter.aclose()
            except httpx.HTTPError:
                logger.warning("Error closing provider client", data={"provider": provider_id})
