import time

from fastapi import APIRouter, Request

from chat_gateway.api.deps import AugmenterDep, OrchestratorDep, RegistryDep, SettingsDep
from chat_gateway.models import utcnow

router = APIRouter(tags=["health"])


def _uptime(request: Request) -> float:
    return round(time.monotonic() - request.app.state.started_at, 3)


@router.get("/health")
async def health(
    request: Request, settings: SettingsDep, registry: RegistryDep, augmenter: AugmenterDep
):
    return {
        "status": "healthy",
        "timestamp": utcnow().isoformat(),
        "uptime": _uptime(request),
        "version": settings.VERSION,
        "services": {
            "llm": {
                "providers": len(registry.enabled_ids()),
                "configured": len(registry.configured_ids()),
            },
            "contentstack": augmenter.status(),
        },
    }


@router.get("/stats")
async def stats(
    request: Request,
    orchestrator: OrchestratorDep,
    registry: RegistryDep,
    augmenter: AugmenterDep,
):
    return {
        "activeStreams": orchestrator.active_streams,
        "totalProviders": len(registry.enabled_ids()),
        "configuredProviders": len(registry.configured_ids()),
        "contentstackConfigured": augmenter.is_configured,
        "uptime": _uptime(request),
        "timestamp": utcnow().isoformat(),
    }
