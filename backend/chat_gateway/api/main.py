from fastapi import APIRouter

from chat_gateway.api.routes import analytics, chat, content, health, providers

api_router = APIRouter()
api_router.include_router(health.router)
api_router.include_router(providers.router)
api_router.include_router(chat.router)
api_router.include_router(content.router)
api_router.include_router(analytics.router)
