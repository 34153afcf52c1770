import structlog
from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse, StreamingResponse

from chat_gateway.api.deps import (
    AdapterDep,
    ClientIdDep,
    OrchestratorDep,
    RateLimiterDep,
    RegistryDep,
)
from chat_gateway.errors import InvalidRequest, ProviderNotConfigured, UnsupportedProvider
from chat_gateway.models import utcnow
from chat_gateway.providers.base import ChatMessage
from chat_gateway.schemas import ChatRequest, ProviderTestRequest
from chat_gateway.utils.sse import SSE_HEADERS

router = APIRouter(tags=["chat"])
logger = structlog.get_logger()

GREETING_PROMPT = "Hello! Please respond with a simple greeting."


@router.post("/chat")
async def chat(
    payload: ChatRequest,
    request: Request,
    orchestrator: OrchestratorDep,
    limiter: RateLimiterDep,
    client_id: ClientIdDep,
):
    request_id = getattr(request.state, "request_id", None)
    # Rejected requests never reach the limiter
    orchestrator.validate(payload)
    async with limiter.get(client_id):
        if not payload.stream:
            completion = await orchestrator.complete(
                payload, request_id=request_id, client_id=client_id
            )
            return JSONResponse(content=completion.model_dump(by_alias=True))

        stream = await orchestrator.open_stream(
            payload,
            request_id=request_id,
            client_id=client_id,
            is_disconnected=request.is_disconnected,
        )

    headers = dict(SSE_HEADERS)
    headers["X-Request-ID"] = stream.request_id
    return StreamingResponse(stream.frames, media_type="text/event-stream", headers=headers)


@router.post("/chat/{request_id}/abort")
async def abort_chat(request_id: str, orchestrator: OrchestratorDep):
    if not orchestrator.abort(request_id):
        return JSONResponse(
            status_code=404, content={"error": "Request not found", "requestId": request_id}
        )
    logger.info("chat_abort_requested", aborted_request_id=request_id)
    return {"success": True, "message": f"Request {request_id} aborted", "requestId": request_id}


@router.post("/test-provider")
async def check_provider(
    payload: ProviderTestRequest,
    registry: RegistryDep,
    adapter: AdapterDep,
    limiter: RateLimiterDep,
    client_id: ClientIdDep,
):
    if not payload.provider:
        raise InvalidRequest("Provider is required")
    descriptor = registry.get(payload.provider)
    if descriptor is None or not registry.is_enabled(descriptor.id):
        raise UnsupportedProvider(payload.provider, registry.enabled_ids())
    if not registry.is_configured(descriptor.id):
        raise ProviderNotConfigured(descriptor.id, descriptor.display_name, descriptor.credential_env)

    model = payload.model or descriptor.default_model
    async with limiter.get(client_id):
        try:
            response = await adapter.invoke(
                descriptor.id, [ChatMessage(role="user", content=GREETING_PROMPT)], model
            )
        except Exception as e:
            logger.error("provider_test_failed", provider=descriptor.id, model=model, err=str(e))
            return JSONResponse(
                status_code=500,
                content={
                    "success": False,
                    "error": str(e) or type(e).__name__,
                    "provider": descriptor.id,
                    "model": model,
                },
            )

    return {
        "success": True,
        "provider": descriptor.id,
        "model": model,
        "response": response,
        "timestamp": utcnow().isoformat(),
    }
