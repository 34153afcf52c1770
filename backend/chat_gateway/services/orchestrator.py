"""Chat orchestration: validation, prompt augmentation, upstream streaming and fallbacks.

The flow for one streamed request:

- ``validate`` rejects bad input before anything is written (400s).
- Unconfigured providers are answered by the mock responder.
- Configured providers get the augmenter's snippets as a leading system message,
  then ``_attempt_upstream`` opens the provider stream and pulls the first chunk.
  That attempt yields an ``UpstreamAttempt``: either chunks or an error. An
  error at this point means nothing has reached the client yet, so the mock
  fallback reply is streamed instead.
- ``_relay`` re-emits chunks as SSE frames. Errors from here on become one
  inline error frame, and the stream still ends with ``[DONE]``.
"""

import asyncio
import json
import time
import uuid
import weakref
from dataclasses import dataclass, field
from typing import AsyncIterator, Awaitable, Callable, List, Optional

import structlog

from chat_gateway.core.config import Settings
from chat_gateway.errors import (
    ChatGatewayError,
    InvalidRequest,
    ProviderNotConfigured,
    UnsupportedProvider,
    UpstreamStreamFailure,
)
from chat_gateway.models import ChatOutcome, ContentEntry
from chat_gateway.observability import CHAT_STREAMS, CLIENT_ABORTS, UPSTREAM_FAILURES
from chat_gateway.providers.base import ChatMessage, ProviderDescriptor, StreamChunk
from chat_gateway.providers.registry import ProviderRegistry
from chat_gateway.schemas import AugmentationConfig, ChatCompletion, ChatRequest
from chat_gateway.services.analytics import AnalyticsRecorder
from chat_gateway.services.content import ContentAugmenter, StackCredentials
from chat_gateway.services.mock_responder import FALLBACK_REPLY, UNCONFIGURED_REPLY, MockResponder
from chat_gateway.services.provider_adapter import ProviderAdapter
from chat_gateway.utils.sse import SSE_DONE, sse_format

logger = structlog.get_logger()

AUGMENTATION_PROMPT = (
    "You have access to the following content from the knowledge base:\n\n"
    "{context}\n\n"
    "Use this information to provide accurate and helpful responses. "
    "If the content doesn't contain relevant information for the user's query, "
    "you can use your general knowledge but mention that the specific content wasn't found."
)

DisconnectCheck = Callable[[], Awaitable[bool]]


def build_augmentation_message(snippets: List[ContentEntry]) -> ChatMessage:
    context = json.dumps(
        [s.model_dump(by_alias=True) for s in snippets], indent=2, ensure_ascii=False, default=str
    )
    return ChatMessage(role="system", content=AUGMENTATION_PROMPT.format(context=context))


def approx_tokens(text: str) -> int:
    return len(text.split(" ")) if text else 0


class AbortSignal:
    """Per-request stop flag, set explicitly or by the client going away."""

    def __init__(self, is_disconnected: Optional[DisconnectCheck] = None):
        self._event = asyncio.Event()
        self._is_disconnected = is_disconnected

    def set(self) -> None:
        self._event.set()

    async def is_set(self) -> bool:
        if self._event.is_set():
            return True
        if self._is_disconnected is not None and await self._is_disconnected():
            self._event.set()
            return True
        return False


@dataclass
class ChatContext:
    request_id: str
    descriptor: ProviderDescriptor
    model: str
    messages: List[ChatMessage]
    query: str
    client_id: Optional[str] = None
    started: float = field(default_factory=time.perf_counter)
    snippets: List[ContentEntry] = field(default_factory=list)

    @property
    def provider(self) -> str:
        return self.descriptor.id

    def elapsed_ms(self) -> int:
        return int((time.perf_counter() - self.started) * 1000)

    def outcome(self, success: bool, tokens: int, mock: bool = False) -> ChatOutcome:
        return ChatOutcome(
            provider=self.provider,
            model=self.model,
            response_time_ms=self.elapsed_ms(),
            success=success,
            token_count_approx=tokens,
            client_id=self.client_id,
            query=self.query,
            mock=mock,
        )


@dataclass
class UpstreamAttempt:
    """Outcome of opening the provider stream: chunks or an error, never both."""

    chunks: Optional[AsyncIterator[StreamChunk]] = None
    error: Optional[UpstreamStreamFailure] = None


@dataclass
class ChatStream:
    """SSE frames for one chat plus the id that ``abort`` accepts for it."""

    request_id: str
    frames: AsyncIterator[str]

    def __aiter__(self) -> AsyncIterator[str]:
        return self.frames

    async def __anext__(self) -> str:
        return await self.frames.__anext__()


async def _prepend(first: StreamChunk, rest: AsyncIterator[StreamChunk]) -> AsyncIterator[StreamChunk]:
    try:
        yield first
        async for chunk in rest:
            yield chunk
    finally:
        await rest.aclose()


async def _no_chunks() -> AsyncIterator[StreamChunk]:
    return
    yield


class ChatOrchestrator:
    def __init__(
        self,
        settings: Settings,
        registry: ProviderRegistry,
        adapter: ProviderAdapter,
        augmenter: ContentAugmenter,
        recorder: AnalyticsRecorder,
        mock: MockResponder,
    ):
        self.settings = settings
        self.registry = registry
        self.adapter = adapter
        self.augmenter = augmenter
        self.recorder = recorder
        self.mock = mock
        # Weak values: a stream whose generator is dropped unstarted leaves no entry behind
        self._active: "weakref.WeakValueDictionary[str, AbortSignal]" = weakref.WeakValueDictionary()

    @property
    def active_streams(self) -> int:
        return len(self._active)

    def abort(self, request_id: str) -> bool:
        signal = self._active.get(request_id)
        if signal is None:
            return False
        signal.set()
        return True

    def _claim(self, request_id: Optional[str], signal: AbortSignal) -> str:
        key = request_id or uuid.uuid4().hex
        if key in self._active:
            # Callers choose X-Request-ID, so a live stream may already hold this id
            key = f"{key}-{uuid.uuid4().hex[:8]}"
        self._active[key] = signal
        return key

    def _release(self, key: str, signal: AbortSignal) -> None:
        if self._active.get(key) is signal:
            del self._active[key]

    # validation

    def validate(self, payload: ChatRequest) -> ProviderDescriptor:
        try:
            if not payload.messages:
                raise InvalidRequest(
                    "Messages array is required",
                    details="Please provide an array of message objects with role and content",
                )
            provider_id = payload.provider or self.settings.DEFAULT_PROVIDER
            descriptor = self.registry.get(provider_id)
            if descriptor is None or not self.registry.is_enabled(provider_id):
                raise UnsupportedProvider(provider_id, self.registry.enabled_ids())
            if (
                not self.registry.is_configured(provider_id)
                and not self.settings.MOCK_UNCONFIGURED_PROVIDERS
            ):
                raise ProviderNotConfigured(
                    descriptor.id, descriptor.display_name, descriptor.credential_env
                )
        except ChatGatewayError as e:
            logger.info("chat_request_rejected", error=e.message, provider=payload.provider)
            self.recorder.submit_error(e, payload.provider, "request validation")
            raise
        return descriptor

    def _context(
        self,
        payload: ChatRequest,
        descriptor: ProviderDescriptor,
        request_id: Optional[str],
        client_id: Optional[str],
    ) -> ChatContext:
        return ChatContext(
            request_id=request_id or uuid.uuid4().hex,
            descriptor=descriptor,
            model=payload.model or descriptor.default_model,
            messages=list(payload.messages or []),
            query=payload.last_user_message(),
            client_id=client_id,
        )

    # augmentation

    def _credentials(self, config: AugmentationConfig) -> Optional[StackCredentials]:
        if not (config.api_key or config.delivery_token or config.environment):
            return None
        defaults = self.augmenter.default_credentials
        return StackCredentials(
            api_key=config.api_key or defaults.api_key,
            delivery_token=config.delivery_token or defaults.delivery_token,
            environment=config.environment or defaults.environment,
        )

    async def _augment(self, ctx: ChatContext, config: Optional[AugmentationConfig]) -> None:
        if not ctx.query:
            return
        config = config or AugmentationConfig()
        try:
            snippets = await self.augmenter.fetch_relevant(
                ctx.query,
                content_types=config.content_types,
                limit=config.limit,
                credentials=self._credentials(config),
            )
        except Exception as e:
            logger.warning(
                "augmentation_failed",
                error_type=type(e).__name__,
                err=str(e),
                provider=ctx.provider,
                request_id=ctx.request_id,
            )
            return
        if snippets:
            ctx.snippets = snippets
            ctx.messages = [build_augmentation_message(snippets)] + ctx.messages
            logger.info("prompt_augmented", entries=len(snippets), request_id=ctx.request_id)

    # upstream

    async def _attempt_upstream(self, ctx: ChatContext) -> UpstreamAttempt:
        chunks = self.adapter.stream(ctx.provider, ctx.messages, ctx.model)
        try:
            first = await anext(chunks)
        except StopAsyncIteration:
            return UpstreamAttempt(chunks=_no_chunks())
        except Exception as e:
            failure = UpstreamStreamFailure(ctx.provider, e)
            logger.error(
                "upstream_open_failed",
                provider=ctx.provider,
                model=ctx.model,
                err=failure.details,
                request_id=ctx.request_id,
            )
            UPSTREAM_FAILURES.labels(ctx.provider, "open").inc()
            return UpstreamAttempt(error=failure)
        return UpstreamAttempt(chunks=_prepend(first, chunks))

    # streaming entry point

    async def open_stream(
        self,
        payload: ChatRequest,
        *,
        request_id: Optional[str] = None,
        client_id: Optional[str] = None,
        is_disconnected: Optional[DisconnectCheck] = None,
    ) -> ChatStream:
        """Validate, prepare and return the SSE frame iterator for one chat request.

        Everything that can fail with a 400 happens before this returns, so the
        caller only commits the 200 event-stream response once it has frames.
        The returned ``request_id`` is the one ``abort`` accepts; it differs from
        the requested id when another live stream already holds that id.
        """
        descriptor = self.validate(payload)
        signal = AbortSignal(is_disconnected)
        key = self._claim(request_id, signal)
        try:
            ctx = self._context(payload, descriptor, key, client_id)
            frames = await self._prepare(ctx, signal, payload.augmentation_config)
        except BaseException:
            self._release(key, signal)
            raise
        return ChatStream(request_id=key, frames=frames)

    async def _prepare(
        self, ctx: ChatContext, signal: AbortSignal, config: Optional[AugmentationConfig]
    ) -> AsyncIterator[str]:
        if not self.registry.is_configured(ctx.provider):
            logger.info("provider_unconfigured_mock_reply", provider=ctx.provider, request_id=ctx.request_id)
            CHAT_STREAMS.labels(ctx.provider, "mock").inc()
            return self._mock_frames(ctx, signal, UNCONFIGURED_REPLY, success=True)

        await self._augment(ctx, config)
        attempt = await self._attempt_upstream(ctx)
        if attempt.error is not None:
            self.recorder.submit_error(attempt.error, ctx.provider, "chat processing")
            CHAT_STREAMS.labels(ctx.provider, "fallback").inc()
            return self._mock_frames(ctx, signal, FALLBACK_REPLY, success=False)

        CHAT_STREAMS.labels(ctx.provider, "upstream").inc()
        return self._relay(ctx, signal, attempt.chunks or _no_chunks())

    async def _mock_frames(
        self, ctx: ChatContext, signal: AbortSignal, text: str, success: bool
    ) -> AsyncIterator[str]:
        tokens = 0
        aborted = False
        try:
            async for word in self.mock.stream(text):
                if await signal.is_set():
                    aborted = True
                    break
                tokens += 1
                yield sse_format({"content": word})
            if aborted:
                CLIENT_ABORTS.labels(ctx.provider).inc()
                logger.info("chat_stream_aborted", request_id=ctx.request_id, provider=ctx.provider)
            else:
                yield SSE_DONE
        finally:
            self._release(ctx.request_id, signal)
            self.recorder.submit_request(ctx.outcome(success=success, tokens=tokens, mock=True))

    async def _relay(
        self, ctx: ChatContext, signal: AbortSignal, chunks: AsyncIterator[StreamChunk]
    ) -> AsyncIterator[str]:
        total_tokens = 0
        success = True
        aborted = False
        content_used = bool(ctx.snippets)
        try:
            try:
                async for chunk in chunks:
                    if await signal.is_set():
                        aborted = True
                        break
                    if not chunk.text_delta:
                        continue
                    total_tokens += approx_tokens(chunk.text_delta)
                    yield sse_format(
                        {
                            "content": chunk.text_delta,
                            "provider": ctx.provider,
                            "model": ctx.model,
                            "tokens": total_tokens,
                            "contentUsed": content_used,
                            "contentEntries": len(ctx.snippets),
                        }
                    )
            except Exception as e:
                success = False
                failure = UpstreamStreamFailure(ctx.provider, e)
                logger.error(
                    "Error during streaming",
                    provider=ctx.provider,
                    err=failure.details,
                    request_id=ctx.request_id,
                )
                UPSTREAM_FAILURES.labels(ctx.provider, "stream").inc()
                self.recorder.submit_error(failure, ctx.provider, "streaming response")
                yield sse_format({"error": "Stream processing failed", "details": failure.details})
            else:
                if not aborted:
                    yield sse_format(
                        {
                            "done": True,
                            "totalTokens": total_tokens,
                            "responseTimeMs": ctx.elapsed_ms(),
                            "provider": ctx.provider,
                            "model": ctx.model,
                            "contentUsed": content_used,
                            "contentEntries": len(ctx.snippets),
                        }
                    )

            if aborted:
                CLIENT_ABORTS.labels(ctx.provider).inc()
                logger.info("chat_stream_aborted", request_id=ctx.request_id, provider=ctx.provider)
            else:
                yield SSE_DONE
                logger.info(
                    "chat_stream_complete",
                    request_id=ctx.request_id,
                    provider=ctx.provider,
                    tokens=total_tokens,
                    elapsed_ms=ctx.elapsed_ms(),
                )
        finally:
            aclose = getattr(chunks, "aclose", None)
            if aclose is not None:
                await aclose()
            self._release(ctx.request_id, signal)
            self.recorder.submit_request(ctx.outcome(success=success, tokens=total_tokens))

    # non-streaming

    async def complete(
        self,
        payload: ChatRequest,
        *,
        request_id: Optional[str] = None,
        client_id: Optional[str] = None,
    ) -> ChatCompletion:
        descriptor = self.validate(payload)
        ctx = self._context(payload, descriptor, request_id, client_id)
        success = True
        mock = False

        if not self.registry.is_configured(ctx.provider):
            text, mock = UNCONFIGURED_REPLY, True
        else:
            await self._augment(ctx, payload.augmentation_config)
            try:
                text = await self.adapter.invoke(ctx.provider, ctx.messages, ctx.model)
            except Exception as e:
                failure = UpstreamStreamFailure(ctx.provider, e)
                logger.error("upstream_invoke_failed", provider=ctx.provider, err=failure.details)
                UPSTREAM_FAILURES.labels(ctx.provider, "invoke").inc()
                self.recorder.submit_error(failure, ctx.provider, "chat processing")
                text, mock, success = FALLBACK_REPLY, True, False

        self.recorder.submit_request(ctx.outcome(success=success, tokens=approx_tokens(text), mock=mock))
        return ChatCompletion(
            content=text,
            provider=ctx.provider,
            model=ctx.model,
            response_time_ms=ctx.elapsed_ms(),
            mock=mock,
        )
