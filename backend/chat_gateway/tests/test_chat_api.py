"""API tests for the SSE chat endpoint."""

import json

import openai
import pytest
from fastapi import status

from chat_gateway.errors import AugmentationFailure
from chat_gateway.services.mock_responder import FALLBACK_REPLY, UNCONFIGURED_REPLY, MockResponder
from chat_gateway.tests.fakes import FakeAdapter, FakeAugmenter, chat_body, parse_sse


def _contents(events):
    return [e["content"] for e in events if isinstance(e, dict) and "content" in e]


@pytest.mark.asyncio
async def test_unconfigured_provider_streams_mock_reply(settings, make_app, client_for):
    adapter = FakeAdapter()
    client = await client_for(make_app(settings, adapter=adapter))

    resp = await client.post("/chat", json=chat_body("Hello", provider="openrouter"))

    assert resp.status_code == status.HTTP_200_OK
    assert resp.headers["content-type"].startswith("text/event-stream")
    assert resp.headers["cache-control"] == "no-cache"
    assert resp.headers["x-request-id"]
    events = parse_sse(resp.text)
    assert events[-1] == "[DONE]"
    assert events.count("[DONE]") == 1
    assert _contents(events) == MockResponder.words(UNCONFIGURED_REPLY)
    # every mock frame carries only the content key
    assert all(set(e) == {"content"} for e in events[:-1])
    assert adapter.calls == []


@pytest.mark.asyncio
async def test_placeholder_credential_counts_as_unconfigured(make_settings, make_app, client_for):
    settings = make_settings(GROQ_API_KEY="dummy")
    adapter = FakeAdapter()
    client = await client_for(make_app(settings, adapter=adapter))

    resp = await client.post("/chat", json=chat_body(provider="groq"))

    assert resp.status_code == status.HTTP_200_OK
    assert "".join(_contents(parse_sse(resp.text))).strip() == UNCONFIGURED_REPLY
    assert adapter.calls == []


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "body",
    [
        {"messages": []},
        {"messages": None},
        {"provider": "groq"},
        {"messages": "Hello"},
    ],
)
async def test_missing_messages_is_rejected(body, settings, make_app, client_for):
    client = await client_for(make_app(settings, adapter=FakeAdapter()))

    resp = await client.post("/chat", json=body)

    assert resp.status_code == status.HTTP_400_BAD_REQUEST
    assert resp.headers["content-type"].startswith("application/json")
    assert resp.json()["error"] == "Messages array is required"


@pytest.mark.asyncio
async def test_malformed_json_is_rejected(settings, make_app, client_for):
    client = await client_for(make_app(settings, adapter=FakeAdapter()))

    resp = await client.post(
        "/chat", content=b"{not json", headers={"content-type": "application/json"}
    )

    assert resp.status_code == status.HTTP_400_BAD_REQUEST
    assert resp.json()["error"] == "Invalid request"


@pytest.mark.asyncio
async def test_unknown_provider_names_valid_ids(settings, make_app, client_for):
    client = await client_for(make_app(settings, adapter=FakeAdapter()))

    resp = await client.post("/chat", json=chat_body(provider="not-a-real-provider"))

    assert resp.status_code == status.HTTP_400_BAD_REQUEST
    body = resp.json()
    assert body["error"] == "Invalid provider"
    assert body["validProviders"] == ["openai", "groq", "anthropic", "openrouter"]
    for provider_id in body["validProviders"]:
        assert provider_id in body["details"]


@pytest.mark.asyncio
async def test_disabled_provider_is_rejected(make_settings, make_app, client_for):
    settings = make_settings(DISABLED_PROVIDERS="openai", ANTHROPIC_API_KEY="sk-ant-test", FREE_MODE=True)
    client = await client_for(make_app(settings, adapter=FakeAdapter()))

    disabled = await client.post("/chat", json=chat_body(provider="openai"))
    paid = await client.post("/chat", json=chat_body(provider="anthropic"))

    assert disabled.status_code == status.HTTP_400_BAD_REQUEST
    assert paid.status_code == status.HTTP_400_BAD_REQUEST
    assert paid.json()["validProviders"] == ["groq", "openrouter"]


@pytest.mark.asyncio
async def test_unconfigured_provider_rejected_when_mock_disabled(make_settings, make_app, client_for):
    settings = make_settings(MOCK_UNCONFIGURED_PROVIDERS=False)
    client = await client_for(make_app(settings, adapter=FakeAdapter()))

    resp = await client.post("/chat", json=chat_body(provider="openai"))

    assert resp.status_code == status.HTTP_400_BAD_REQUEST
    body = resp.json()
    assert body["error"] == "Provider not configured"
    assert body["credential"] == "OPENAI_API_KEY"
    assert "OPENAI_API_KEY" in body["details"]


@pytest.mark.asyncio
async def test_configured_provider_relays_upstream_text(configured_settings, make_app, client_for):
    adapter = FakeAdapter(chunks=["Buon", "", "giorno", " from Rome"])
    client = await client_for(make_app(configured_settings, adapter=adapter))

    resp = await client.post("/chat", json=chat_body(provider="groq"))

    assert resp.status_code == status.HTTP_200_OK
    events = parse_sse(resp.text)
    content_frames = [e for e in events if isinstance(e, dict) and "content" in e]
    # empty deltas never produce a frame
    assert [f["content"] for f in content_frames] == ["Buon", "giorno", " from Rome"]
    assert "".join(f["content"] for f in content_frames) == "Buongiorno from Rome"
    assert content_frames[0]["provider"] == "groq"
    assert content_frames[0]["model"] == "llama-3.1-8b-instant"
    assert content_frames[0]["contentUsed"] is False
    assert [f["tokens"] for f in content_frames] == [1, 2, 5]

    done = events[-2]
    assert done["done"] is True
    assert done["totalTokens"] == 5
    assert done["provider"] == "groq"
    assert isinstance(done["responseTimeMs"], int)
    assert events[-1] == "[DONE]"
    assert events.count("[DONE]") == 1


@pytest.mark.asyncio
async def test_default_provider_and_explicit_model(configured_settings, make_app, client_for):
    adapter = FakeAdapter()
    client = await client_for(make_app(configured_settings, adapter=adapter))

    resp = await client.post("/chat", json=chat_body(model="llama-3.3-70b-versatile"))

    assert resp.status_code == status.HTTP_200_OK
    assert adapter.calls[0]["provider"] == "groq"
    assert adapter.calls[0]["model"] == "llama-3.3-70b-versatile"


@pytest.mark.asyncio
async def test_upstream_error_mid_stream_emits_error_frame(configured_settings, make_app, client_for):
    adapter = FakeAdapter(chunks=["first ", "second"], mid_error=RuntimeError("connection reset"))
    client = await client_for(make_app(configured_settings, adapter=adapter))

    resp = await client.post("/chat", json=chat_body(provider="groq"))

    assert resp.status_code == status.HTTP_200_OK
    events = parse_sse(resp.text)
    assert len(events) == 4
    assert [e["content"] for e in events[:2]] == ["first ", "second"]
    assert events[2] == {"error": "Stream processing failed", "details": "connection reset"}
    assert events[3] == "[DONE]"


@pytest.mark.asyncio
async def test_upstream_open_failure_falls_back_to_mock(configured_settings, make_app, client_for):
    error = openai.APIConnectionError(request=None)  # type: ignore[arg-type]
    adapter = FakeAdapter(open_error=error)
    app = make_app(configured_settings, adapter=adapter)
    client = await client_for(app)

    resp = await client.post("/chat", json=chat_body(provider="openai"))

    assert resp.status_code == status.HTTP_200_OK
    events = parse_sse(resp.text)
    assert "".join(_contents(events)).strip() == FALLBACK_REPLY
    assert not any(isinstance(e, dict) and "error" in e for e in events)
    assert events[-1] == "[DONE]"

    recorder = app.state.recorder
    await recorder.drain()
    store = await recorder.load()
    assert store.failed_requests == 1
    assert store.error_logs[-1].context == "chat processing"
    assert store.error_logs[-1].provider == "openai"


@pytest.mark.asyncio
async def test_content_snippets_injected_as_leading_system_message(
    configured_settings, make_app, client_for, sample_entries
):
    adapter = FakeAdapter()
    augmenter = FakeAugmenter(configured_settings, entries=sample_entries)
    client = await client_for(make_app(configured_settings, adapter=adapter, augmenter=augmenter))
    body = {
        "provider": "groq",
        "messages": [
            {"role": "system", "content": "Be brief."},
            {"role": "user", "content": "Any tours in Rome?"},
        ],
    }

    resp = await client.post("/chat", json=body)

    assert resp.status_code == status.HTTP_200_OK
    assert augmenter.queries == ["Any tours in Rome?"]
    sent = adapter.calls[0]["messages"]
    assert len(sent) == 3
    assert sent[0].role == "system"
    assert "Rome Historical Tours" in sent[0].content
    assert sent[0].content.startswith("You have access to the following content from the knowledge base")
    assert [m.content for m in sent[1:]] == ["Be brief.", "Any tours in Rome?"]

    events = parse_sse(resp.text)
    assert events[0]["contentUsed"] is True
    assert events[0]["contentEntries"] == 2


@pytest.mark.asyncio
async def test_augmentation_limit_from_request(configured_settings, make_app, client_for, sample_entries):
    adapter = FakeAdapter()
    augmenter = FakeAugmenter(configured_settings, entries=sample_entries)
    client = await client_for(make_app(configured_settings, adapter=adapter, augmenter=augmenter))

    resp = await client.post(
        "/chat", json=chat_body(provider="groq", augmentationConfig={"limit": 1})
    )

    assert resp.status_code == status.HTTP_200_OK
    assert parse_sse(resp.text)[0]["contentEntries"] == 1


@pytest.mark.asyncio
async def test_augmentation_failure_is_not_fatal(configured_settings, make_app, client_for):
    adapter = FakeAdapter(chunks=["ok"])
    augmenter = FakeAugmenter(configured_settings, error=AugmentationFailure(details="cms down"))
    client = await client_for(make_app(configured_settings, adapter=adapter, augmenter=augmenter))

    resp = await client.post("/chat", json=chat_body(provider="groq"))

    assert resp.status_code == status.HTTP_200_OK
    events = parse_sse(resp.text)
    assert events[0]["content"] == "ok"
    assert events[0]["contentUsed"] is False
    assert len(adapter.calls[0]["messages"]) == 1


@pytest.mark.asyncio
async def test_non_streaming_chat_returns_json(configured_settings, make_app, client_for):
    adapter = FakeAdapter(reply="Ciao!")
    client = await client_for(make_app(configured_settings, adapter=adapter))

    resp = await client.post("/chat", json=chat_body(provider="openai", stream=False))

    assert resp.status_code == status.HTTP_200_OK
    body = resp.json()
    assert body["content"] == "Ciao!"
    assert body["provider"] == "openai"
    assert body["model"] == "gpt-4o-mini"
    assert body["mock"] is False
    assert "responseTimeMs" in body


@pytest.mark.asyncio
async def test_non_streaming_upstream_failure_returns_fallback(configured_settings, make_app, client_for):
    adapter = FakeAdapter(invoke_error=RuntimeError("boom"))
    client = await client_for(make_app(configured_settings, adapter=adapter))

    resp = await client.post("/chat", json=chat_body(provider="openai", stream=False))

    assert resp.status_code == status.HTTP_200_OK
    assert resp.json()["content"] == FALLBACK_REPLY
    assert resp.json()["mock"] is True


@pytest.mark.asyncio
async def test_request_id_header_is_echoed(settings, make_app, client_for):
    client = await client_for(make_app(settings, adapter=FakeAdapter()))

    resp = await client.post("/chat", json=chat_body(), headers={"X-Request-ID": "req-123"})

    assert resp.headers["x-request-id"] == "req-123"


@pytest.mark.asyncio
async def test_chat_records_analytics(make_settings, make_app, client_for):
    settings = make_settings(GROQ_API_KEY="gsk-test", TRUST_CLIENT_ID_HEADER=True)
    app = make_app(settings, adapter=FakeAdapter(chunks=["a b", " c"]))
    client = await client_for(app)

    resp = await client.post(
        "/chat",
        json=chat_body("What are the best tours in Italy?", provider="groq"),
        headers={"X-Client-ID": "visitor-1"},
    )
    assert resp.status_code == status.HTTP_200_OK

    recorder = app.state.recorder
    await recorder.drain()
    data = json.loads(recorder.path.read_text())
    assert data["totalRequests"] == 1
    assert data["failedRequests"] == 0
    assert data["providerUsage"]["groq"] == 1
    assert data["totalUsers"] == 1
    assert "visitor-1" not in data["userSessions"]
    assert data["popularQueries"] == {"what are the best tours in italy?": 1}
