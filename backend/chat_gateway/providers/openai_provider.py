from typing import Any, AsyncIterator, List, Optional

import openai
from openai import AsyncOpenAI

from chat_gateway.providers.base import (
    EMPTY_CHUNK,
    ChatMessage,
    GenerationOptions,
    Provider,
    ProviderDescriptor,
    StreamChunk,
    system_first,
)


def normalize_openai_chunk(event: Any) -> StreamChunk:
    # ChatCompletionChunk: text lives at choices[0].delta.content
    choices = event.choices
    if not choices:
        return EMPTY_CHUNK
    delta = choices[0].delta
    if delta is None or not delta.content:
        return EMPTY_CHUNK
    return StreamChunk(text_delta=delta.content)


class OpenAICompatibleProvider(Provider):
    """OpenAI chat-completions envelope; also serves Groq and OpenRouter via base_url."""

    retry_on = (openai.APIConnectionError, openai.APITimeoutError)

    def __init__(
        self,
        descriptor: ProviderDescriptor,
        api_key: str,
        options: Optional[GenerationOptions] = None,
        base_url: Optional[str] = None,
    ):
        super().__init__(descriptor, api_key, options)
        self.base_url = base_url

    def _build_client(self) -> AsyncOpenAI:
        return AsyncOpenAI(
            api_key=self.api_key,
            base_url=self.base_url,
            timeout=self.options.timeout,
            max_retries=0,
        )

    def _to_openai_messages(self, messages: List[ChatMessage]):
        return [{"role": m.role, "content": m.content} for m in system_first(messages)]

    async def open_stream(self, messages: List[ChatMessage], model: str) -> AsyncIterator[Any]:
        return await self._retrying()(
            self.client.chat.completions.create,
            model=model,
            messages=self._to_openai_messages(messages),
            temperature=self.options.temperature,
            max_tokens=self.options.max_tokens,
            stream=True,
        )

    async def complete(self, messages: List[ChatMessage], model: str) -> str:
        resp = await self._retrying()(
            self.client.chat.completions.create,
            model=model,
            messages=self._to_openai_messages(messages),
            temperature=self.options.temperature,
            max_tokens=self.options.max_tokens,
            stream=False,
        )
        if not resp.choices:
            return ""
        return resp.choices[0].message.content or ""
