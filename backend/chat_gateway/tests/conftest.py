"""Shared fixtures: isolated settings, app factory and an ASGI client."""

import os
from typing import Any, Dict, List

# Clear real credentials before the application module builds its settings
for _name in (
    "OPENAI_API_KEY",
    "GROQ_API_KEY",
    "ANTHROPIC_API_KEY",
    "OPENROUTER_API_KEY",
    "CONTENTSTACK_API_KEY",
    "CONTENTSTACK_DELIVERY_TOKEN",
    "SENTRY_DSN",
    "FREE_MODE",
    "DISABLED_PROVIDERS",
    "API_PREFIX",
):
    os.environ.pop(_name, None)
os.environ["ENVIRONMENT"] = "local"
os.environ["MOCK_STREAM_DELAY_MS"] = "0"
os.environ["RATE_LIMIT_PER_MINUTE"] = "1000"
os.environ["ANALYTICS_ENABLED"] = "false"

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from chat_gateway.core.config import Settings
from chat_gateway.main import create_app
from chat_gateway.models import ContentEntry


@pytest.fixture
def sample_entries() -> List[ContentEntry]:
    return [
        ContentEntry(
            id="blt1",
            title="Rome Historical Tours",
            content_type="tour",
            content={"title": "Rome Historical Tours", "duration": "4 hours"},
            relevance=12,
            url="/tours/rome",
        ),
        ContentEntry(
            id="blt2",
            title="Venice Cultural Experience",
            content_type="tour",
            content={"title": "Venice Cultural Experience"},
            relevance=5,
        ),
    ]


@pytest.fixture
def make_settings(tmp_path):
    def _make(**overrides) -> Settings:
        values: Dict[str, Any] = {
            "ANALYTICS_FILE": str(tmp_path / "analytics.json"),
            "ANALYTICS_ENABLED": True,
            "MOCK_STREAM_DELAY_MS": 0,
            "RATE_LIMIT_PER_MINUTE": 1000,
        }
        values.update(overrides)
        return Settings(_env_file=None, **values)

    return _make


@pytest.fixture
def settings(make_settings) -> Settings:
    return make_settings()


@pytest.fixture
def configured_settings(make_settings) -> Settings:
    return make_settings(GROQ_API_KEY="gsk-test", OPENAI_API_KEY="sk-test")


@pytest.fixture
def make_app():
    def _make(settings: Settings, adapter=None, augmenter=None):
        return create_app(settings, adapter=adapter, augmenter=augmenter)

    return _make


@pytest_asyncio.fixture
async def client_for():
    clients: List[AsyncClient] = []

    async def _open(app) -> AsyncClient:
        client = AsyncClient(transport=ASGITransport(app=app), base_url="http://testserver")
        clients.append(client)
        return client

    yield _open
    for client in clients:
        await client.aclose()
