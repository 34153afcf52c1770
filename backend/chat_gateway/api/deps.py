from typing import Annotated

from fastapi import Depends, Request

from chat_gateway.core.config import Settings
from chat_gateway.providers.registry import ProviderRegistry
from chat_gateway.services.analytics import AnalyticsRecorder
from chat_gateway.services.content import ContentAugmenter
from chat_gateway.services.orchestrator import ChatOrchestrator
from chat_gateway.services.provider_adapter import ProviderAdapter
from chat_gateway.utils.rate_limit import RateLimiter


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_registry(request: Request) -> ProviderRegistry:
    return request.app.state.registry


def get_adapter(request: Request) -> ProviderAdapter:
    return request.app.state.adapter


def get_augmenter(request: Request) -> ContentAugmenter:
    return request.app.state.augmenter


def get_recorder(request: Request) -> AnalyticsRecorder:
    return request.app.state.recorder


def get_orchestrator(request: Request) -> ChatOrchestrator:
    return request.app.state.orchestrator


def get_rate_limiter(request: Request) -> RateLimiter:
    return request.app.state.rate_limiter


def get_client_id(request: Request) -> str:
    """Caller identity for rate limiting and analytics.

    X-Client-ID is caller-controlled, so it is only used when the deployment
    says a trusted proxy sets it; otherwise the peer address identifies the caller.
    """
    if request.app.state.settings.TRUST_CLIENT_ID_HEADER:
        header = request.headers.get("X-Client-ID")
        if header:
            return header
    return request.client.host if request.client else "anonymous"


SettingsDep = Annotated[Settings, Depends(get_settings)]
RegistryDep = Annotated[ProviderRegistry, Depends(get_registry)]
AdapterDep = Annotated[ProviderAdapter, Depends(get_adapter)]
AugmenterDep = Annotated[ContentAugmenter, Depends(get_augmenter)]
RecorderDep = Annotated[AnalyticsRecorder, Depends(get_recorder)]
OrchestratorDep = Annotated[ChatOrchestrator, Depends(get_orchestrator)]
RateLimiterDep = Annotated[RateLimiter, Depends(get_rate_limiter)]
ClientIdDep = Annotated[str, Depends(get_client_id)]
