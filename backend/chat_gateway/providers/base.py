from dataclasses import dataclass
from typing import Any, AsyncIterator, Callable, List, Literal, Optional, Tuple, Type

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential_jitter

Role = Literal["system", "user", "assistant"]


class ChatMessage(BaseModel):
    model_config = ConfigDict(frozen=True)

    role: Role
    content: str


class StreamChunk(BaseModel):
    """Normalized streaming unit; everything but the text delta is dropped."""

    model_config = ConfigDict(frozen=True, alias_generator=to_camel, populate_by_name=True)

    text_delta: str = ""


EMPTY_CHUNK = StreamChunk()

ChunkNormalizer = Callable[[Any], StreamChunk]


@dataclass(frozen=True)
class ProviderDescriptor:
    id: str
    display_name: str
    supported_models: Tuple[str, ...]
    default_model: str
    credential_env: str
    supports_streaming: bool = True
    paid: bool = False

    def to_public(self) -> dict:
        return {
            "id": self.id,
            "name": self.display_name,
            "models": list(self.supported_models),
            "defaultModel": self.default_model,
            "streaming": self.supports_streaming,
        }


def system_first(messages: List[ChatMessage]) -> List[ChatMessage]:
    """Stable partition: system messages first, conversation order otherwise kept."""
    system = [m for m in messages if m.role == "system"]
    rest = [m for m in messages if m.role != "system"]
    return system + rest


@dataclass(frozen=True)
class GenerationOptions:
    temperature: float = 0.7
    max_tokens: int = 1000
    timeout: float = 60.0
    max_attempts: int = 3


class Provider:
    """One upstream binding: owns its client, its request shape and its chunk shape."""

    # Exceptions worth another attempt before any bytes have been streamed
    retry_on: Tuple[Type[BaseException], ...] = ()

    def __init__(
        self,
        descriptor: ProviderDescriptor,
        api_key: str,
        options: Optional[GenerationOptions] = None,
    ):
        self.descriptor = descriptor
        self.api_key = api_key
        self.options = options or GenerationOptions()
        self._client: Any = None

    @property
    def client(self) -> Any:
        if self._client is None:
            self._client = self._build_client()
        return self._client

    def _build_client(self) -> Any:
        raise NotImplementedError

    def _retrying(self) -> AsyncRetrying:
        return AsyncRetrying(
            wait=wait_exponential_jitter(initial=0.5, max=6),
            stop=stop_after_attempt(self.options.max_attempts),
            retry=retry_if_exception_type(self.retry_on),
            reraise=True,
        )

    async def open_stream(self, messages: List[ChatMessage], model: str) -> AsyncIterator[Any]:
        """Start a streaming completion and return the raw upstream event iterator."""
        raise NotImplementedError

    async def complete(self, messages: List[ChatMessage], model: str) -> str:
        raise NotImplementedError

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.close()
            self._client = None
