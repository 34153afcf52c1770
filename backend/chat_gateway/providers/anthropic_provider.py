from typing import Any, AsyncIterator, Dict, List, Tuple

import anthropic
from anthropic import AsyncAnthropic

from chat_gateway.providers.base import (
    EMPTY_CHUNK,
    ChatMessage,
    Provider,
    StreamChunk,
    system_first,
)


def normalize_anthropic_event(event: Any) -> StreamChunk:
    # Only content_block_delta events carry text; message_start, ping, etc. are dropped
    if event.type != "content_block_delta":
        return EMPTY_CHUNK
    delta = event.delta
    if delta.type != "text_delta" or not delta.text:
        return EMPTY_CHUNK
    return StreamChunk(text_delta=delta.text)


def split_system(messages: List[ChatMessage]) -> Tuple[str, List[Dict[str, str]]]:
    """Move system messages out of the history into the top-level ``system`` field.

    The Messages API takes one system prompt and rejects ``system`` roles in the
    history. Augmented requests carry the content message ahead of the caller's
    own system prompt, so every system message is merged, in order, rather than
    keeping only the first.
    """
    ordered = system_first(messages)
    system_parts = [m.content for m in ordered if m.role == "system"]
    history = [
        {"role": "user" if m.role == "user" else "assistant", "content": m.content}
        for m in ordered
        if m.role != "system"
    ]
    return "\n\n".join(system_parts), history


class AnthropicProvider(Provider):
    retry_on = (anthropic.APIConnectionError, anthropic.APITimeoutError)

    def _build_client(self) -> AsyncAnthropic:
        return AsyncAnthropic(
            api_key=self.api_key,
            timeout=self.options.timeout,
            max_retries=0,
        )

    def _request(self, messages: List[ChatMessage], model: str) -> Dict[str, Any]:
        system, history = split_system(messages)
        params: Dict[str, Any] = {
            "model": model,
            "messages": history,
            "temperature": self.options.temperature,
            "max_tokens": self.options.max_tokens,
        }
        if system:
            params["system"] = system
        return params

    async def open_stream(self, messages: List[ChatMessage], model: str) -> AsyncIterator[Any]:
        return await self._retrying()(
            self.client.messages.create, stream=True, **self._request(messages, model)
        )

    async def complete(self, messages: List[ChatMessage], model: str) -> str:
        resp = await self._retrying()(
            self.client.messages.create, **self._request(messages, model)
        )
        return "".join(block.text for block in resp.content if block.type == "text")
