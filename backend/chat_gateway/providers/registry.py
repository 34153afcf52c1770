"""Provider registry: descriptors, credentials and the lazily-built client cache.

One registry is built by the application factory and shared by reference with
everything that needs to know about providers.
"""

from typing import Callable, Dict, List, Optional

import structlog

from chat_gateway.core.config import PLACEHOLDER_CREDENTIALS, Settings, is_real_credential
from chat_gateway.errors import UnsupportedProvider
from chat_gateway.providers.anthropic_provider import AnthropicProvider, normalize_anthropic_event
from chat_gateway.providers.base import (
    ChunkNormalizer,
    GenerationOptions,
    Provider,
    ProviderDescriptor,
)
from chat_gateway.providers.openai_provider import OpenAICompatibleProvider, normalize_openai_chunk

logger = structlog.get_logger()

PROVIDER_DESCRIPTORS: Dict[str, ProviderDescriptor] = {
    "openai": ProviderDescriptor(
        id="openai",
        display_name="OpenAI",
        supported_models=("gpt-4o-mini", "gpt-4o", "gpt-4-turbo", "gpt-3.5-turbo"),
        default_model="gpt-4o-mini",
        credential_env="OPENAI_API_KEY",
    ),
    "groq": ProviderDescriptor(
        id="groq",
        display_name="Groq",
        supported_models=("llama-3.1-8b-instant", "llama-3.3-70b-versatile", "gemma2-9b-it"),
        default_model="llama-3.1-8b-instant",
        credential_env="GROQ_API_KEY",
    ),
    "anthropic": ProviderDescriptor(
        id="anthropic",
        display_name="Anthropic",
        supported_models=(
            "claude-3-haiku-20240307",
            "claude-3-5-sonnet-20241022",
            "claude-3-opus-20240229",
        ),
        default_model="claude-3-haiku-20240307",
        credential_env="ANTHROPIC_API_KEY",
        paid=True,
    ),
    "openrouter": ProviderDescriptor(
        id="openrouter",
        display_name="OpenRouter",
        supported_models=("openrouter/auto", "openai/gpt-4o-mini", "anthropic/claude-3-haiku"),
        default_model="openrouter/auto",
        credential_env="OPENROUTER_API_KEY",
    ),
}

# Chunk envelope -> StreamChunk, one entry per provider id
CHUNK_NORMALIZERS: Dict[str, ChunkNormalizer] = {
    "openai": normalize_openai_chunk,
    "groq": normalize_openai_chunk,
    "openrouter": normalize_openai_chunk,
    "anthropic": normalize_anthropic_event,
}

_PLACEHOLDER = next(iter(PLACEHOLDER_CREDENTIALS))


class ProviderRegistry:
    def __init__(
        self,
        settings: Settings,
        descriptors: Optional[Dict[str, ProviderDescriptor]] = None,
    ):
        self.settings = settings
        self._descriptors = dict(descriptors or PROVIDER_DESCRIPTORS)
        self._providers: Dict[str, Provider] = {}
        self._options = GenerationOptions(
            temperature=settings.LLM_TEMPERATURE,
            max_tokens=settings.LLM_MAX_TOKENS,
            timeout=settings.LLM_TIMEOUT_SECONDS,
            max_attempts=settings.LLM_MAX_ATTEMPTS,
        )
        self._factories: Dict[str, Callable[[ProviderDescriptor, str], Provider]] = {
            "openai": lambda d, key: OpenAICompatibleProvider(d, key, self._options),
            "groq": lambda d, key: OpenAICompatibleProvider(
                d, key, self._options, base_url=settings.GROQ_BASE_URL
            ),
            "openrouter": lambda d, key: OpenAICompatibleProvider(
                d, key, self._options, base_url=settings.OPENROUTER_BASE_URL
            ),
            "anthropic": lambda d, key: AnthropicProvider(d, key, self._options),
        }

    def descriptors(self) -> List[ProviderDescriptor]:
        return list(self._descriptors.values())

    def get(self, provider_id: Optional[str]) -> Optional[ProviderDescriptor]:
        if not provider_id:
            return None
        return self._descriptors.get(provider_id)

    def is_enabled(self, provider_id: str) -> bool:
        descriptor = self._descriptors.get(provider_id)
        if descriptor is None:
            return False
        if provider_id in self.settings.disabled_provider_ids:
            return False
        if self.settings.FREE_MODE and descriptor.paid:
            return False
        return True

    def enabled_ids(self) -> List[str]:
        return [pid for pid in self._descriptors if self.is_enabled(pid)]

    def credential(self, provider_id: str) -> Optional[str]:
        descriptor = self._descriptors.get(provider_id)
        if descriptor is None:
            return None
        return self.settings.credential(descriptor.credential_env)

    def is_configured(self, provider_id: str) -> bool:
        return is_real_credential(self.credential(provider_id))

    def configured_ids(self) -> List[str]:
        return [pid for pid in self.enabled_ids() if self.is_configured(pid)]

    def require(self, provider_id: str) -> ProviderDescriptor:
        descriptor = self._descriptors.get(provider_id)
        if descriptor is None:
            raise UnsupportedProvider(provider_id, self.enabled_ids())
        return descriptor

    def normalizer(self, provider_id: str) -> ChunkNormalizer:
        try:
            return CHUNK_NORMALIZERS[provider_id]
        except KeyError:
            raise UnsupportedProvider(provider_id, self.enabled_ids()) from None

    def provider(self, provider_id: str) -> Provider:
        """Return the cached binding for ``provider_id``, building it on first use.

        A missing credential never fails here; the upstream call is what fails.
        """
        cached = self._providers.get(provider_id)
        if cached is not None:
            return cached
        descriptor = self.require(provider_id)
        factory = self._factories.get(provider_id)
        if factory is None:
            raise UnsupportedProvider(provider_id, self.enabled_ids())
        api_key = self.credential(provider_id) or _PLACEHOLDER
        binding = factory(descriptor, api_key)
        self._providers[provider_id] = binding
        logger.debug("provider_client_created", provider=provider_id)
        return binding

    async def aclose(self) -> None:
        for binding in self._providers.values():
            await binding.aclose()
        self._providers.clear()
