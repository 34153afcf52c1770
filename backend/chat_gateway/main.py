import time
from contextlib import asynccontextmanager
from typing import Optional

import sentry_sdk
import structlog
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from fastapi.routing import APIRoute
from starlette.middleware.cors import CORSMiddleware

from chat_gateway.api.main import api_router
from chat_gateway.core.config import Settings, settings as default_settings
from chat_gateway.core.logging import setup_logging
from chat_gateway.errors import ChatGatewayError
from chat_gateway.middleware.request_id import RequestIdMiddleware
from chat_gateway.observability import MetricsMiddleware, metrics_router
from chat_gateway.providers.registry import ProviderRegistry
from chat_gateway.services.analytics import AnalyticsRecorder
from chat_gateway.services.content import ContentAugmenter
from chat_gateway.services.mock_responder import MockResponder
from chat_gateway.services.orchestrator import ChatOrchestrator
from chat_gateway.services.provider_adapter import ProviderAdapter
from chat_gateway.utils.rate_limit import RateLimiter

logger = structlog.get_logger()


def custom_generate_unique_id(route: APIRoute) -> str:
    return f"{route.tags[0]}-{route.name}" if route.tags else route.name


def _validation_message(exc: RequestValidationError) -> str:
    for err in exc.errors():
        if tuple(err.get("loc", ())) == ("body", "messages"):
            return "Messages array is required"
    return "Invalid request"


async def gateway_error_handler(request: Request, exc: ChatGatewayError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    details = "; ".join(
        f"{'.'.join(str(p) for p in err.get('loc', ()))}: {err.get('msg')}" for err in exc.errors()
    )
    logger.info("request_validation_failed", path=request.url.path, details=details)
    return JSONResponse(
        status_code=400, content={"error": _validation_message(exc), "details": details}
    )


def create_app(
    settings: Optional[Settings] = None,
    *,
    registry: Optional[ProviderRegistry] = None,
    adapter: Optional[ProviderAdapter] = None,
    augmenter: Optional[ContentAugmenter] = None,
    recorder: Optional[AnalyticsRecorder] = None,
) -> FastAPI:
    """Composition root: every shared collaborator is built here and hung off ``app.state``."""
    settings = settings or default_settings
    setup_logging(settings)

    if settings.SENTRY_DSN and settings.ENVIRONMENT != "local":
        sentry_sdk.init(dsn=str(settings.SENTRY_DSN), enable_tracing=True)

    registry = registry or ProviderRegistry(settings)
    adapter = adapter or ProviderAdapter(registry)
    augmenter = augmenter or ContentAugmenter(settings)
    recorder = recorder or AnalyticsRecorder(
        settings.ANALYTICS_FILE,
        provider_ids=[d.id for d in registry.descriptors()],
        enabled=settings.ANALYTICS_ENABLED,
        anonymize_clients=settings.ANALYTICS_ANONYMIZE_CLIENTS,
    )
    orchestrator = ChatOrchestrator(
        settings=settings,
        registry=registry,
        adapter=adapter,
        augmenter=augmenter,
        recorder=recorder,
        mock=MockResponder(settings.MOCK_STREAM_DELAY_MS),
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info(
            "gateway_starting",
            environment=settings.ENVIRONMENT,
            configured_providers=registry.configured_ids(),
            contentstack_configured=augmenter.is_configured,
        )
        yield
        await recorder.drain()
        await registry.aclose()
        await augmenter.aclose()
        logger.info("gateway_stopped")

    app = FastAPI(
        title=settings.PROJECT_NAME,
        version=settings.VERSION,
        openapi_url=f"{settings.API_PREFIX}/openapi.json",
        generate_unique_id_function=custom_generate_unique_id,
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.registry = registry
    app.state.adapter = adapter
    app.state.augmenter = augmenter
    app.state.recorder = recorder
    app.state.orchestrator = orchestrator
    app.state.rate_limiter = RateLimiter(settings.RATE_LIMIT_PER_MINUTE)
    app.state.started_at = time.monotonic()

    app.add_exception_handler(ChatGatewayError, gateway_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)

    app.add_middleware(RequestIdMiddleware)
    app.add_middleware(MetricsMiddleware)

    # Set all CORS enabled origins
    if settings.all_cors_origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=settings.all_cors_origins,
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
            expose_headers=["X-Request-ID"],
        )

    app.include_router(api_router, prefix=settings.API_PREFIX)
    app.include_router(metrics_router)
    return app


app = create_app()
