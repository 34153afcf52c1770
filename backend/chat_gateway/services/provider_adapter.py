from typing import AsyncIterator, List, Optional

from chat_gateway.providers.base import ChatMessage, StreamChunk
from chat_gateway.providers.registry import ProviderRegistry


class ProviderAdapter:
    """Single call signature over every registered provider binding."""

    def __init__(self, registry: ProviderRegistry):
        self.registry = registry

    def resolve_model(self, provider_id: str, model: Optional[str] = None) -> str:
        return model or self.registry.require(provider_id).default_model

    async def stream(
        self,
        provider_id: str,
        messages: List[ChatMessage],
        model: Optional[str] = None,
    ) -> AsyncIterator[StreamChunk]:
        binding = self.registry.provider(provider_id)
        normalize = self.registry.normalizer(provider_id)
        upstream = await binding.open_stream(messages, self.resolve_model(provider_id, model))
        try:
            async for event in upstream:
                yield normalize(event)
        finally:
            close = getattr(upstream, "close", None)
            if close is not None:
                await close()

    async def invoke(
        self,
        provider_id: str,
        messages: List[ChatMessage],
        model: Optional[str] = None,
    ) -> str:
        binding = self.registry.provider(provider_id)
        return await binding.complete(messages, self.resolve_model(provider_id, model))
