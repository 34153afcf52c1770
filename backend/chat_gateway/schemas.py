from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from chat_gateway.providers.base import ChatMessage


class WireModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class AugmentationConfig(WireModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    content_types: Optional[List[str]] = None
    limit: Optional[int] = Field(default=None, ge=1, le=20)
    api_key: Optional[str] = None
    delivery_token: Optional[str] = None
    environment: Optional[str] = None


class ChatRequest(WireModel):
    # Optional here so a missing/null list is reported as InvalidRequest, not a 422
    messages: Optional[List[ChatMessage]] = None
    provider: Optional[str] = None
    model: Optional[str] = None
    stream: bool = True
    augmentation_config: Optional[AugmentationConfig] = None

    def last_user_message(self) -> str:
        for message in reversed(self.messages or []):
            if message.role == "user":
                return message.content
        return ""


class ChatCompletion(WireModel):
    content: str
    provider: str
    model: str
    response_time_ms: int
    mock: bool = False


class ProviderTestRequest(WireModel):
    provider: Optional[str] = None
    model: Optional[str] = None


class SearchContentRequest(WireModel):
    query: Optional[str] = None
    content_types: Optional[List[str]] = None
    limit: int = Field(default=5, ge=1, le=50)
