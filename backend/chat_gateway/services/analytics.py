"""Usage analytics persisted to a single JSON document.

Every read-modify-write of the document goes through one ``asyncio.Lock`` so
concurrent requests cannot lose each other's updates, and the file is replaced
atomically. Recording is fire-and-forget from the chat path: ``submit_*``
schedules the write and returns immediately, and any failure is logged as an
``AnalyticsFailure`` and dropped.
"""

import asyncio
import hashlib
import os
import tempfile
from collections import Counter
from datetime import timedelta
from pathlib import Path
from typing import Any, Awaitable, Dict, Iterable, Optional, Set

import structlog
from pydantic import ValidationError

from chat_gateway.errors import AnalyticsFailure
from chat_gateway.models import (
    AnalyticsStore,
    ChatOutcome,
    DailyStats,
    ErrorRecord,
    QueryRecord,
    ResponseTimeRecord,
    utcnow,
)

logger = structlog.get_logger()

MAX_RESPONSE_TIMES = 1000
MAX_CONTENT_QUERIES = 1000
MAX_ERROR_LOGS = 100
MIN_TRACKED_QUERY_LENGTH = 10


class AnalyticsRecorder:
    def __init__(
        self,
        path: str | Path,
        provider_ids: Iterable[str] = (),
        enabled: bool = True,
        anonymize_clients: bool = True,
    ):
        self.path = Path(path)
        self.provider_ids = list(provider_ids)
        self.enabled = enabled
        self.anonymize_clients = anonymize_clients
        self._lock = asyncio.Lock()
        self._pending: Set[asyncio.Task] = set()

    # storage

    def _empty(self) -> AnalyticsStore:
        return AnalyticsStore(provider_usage={pid: 0 for pid in self.provider_ids})

    def _read(self) -> AnalyticsStore:
        if not self.path.exists():
            return self._empty()
        try:
            return AnalyticsStore.model_validate_json(self.path.read_text(encoding="utf-8"))
        except ValidationError as e:
            # The next write replaces the unreadable document
            logger.warning("analytics_file_unreadable", path=str(self.path), err=str(e))
            return self._empty()

    def _write(self, store: AnalyticsStore) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp = tempfile.mkstemp(dir=self.path.parent, prefix=".analytics-", suffix=".json")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                fh.write(store.model_dump_json(by_alias=True, indent=2))
            os.replace(tmp, self.path)
        except BaseException:
            if os.path.exists(tmp):
                os.unlink(tmp)
            raise

    async def load(self) -> AnalyticsStore:
        async with self._lock:
            return await asyncio.to_thread(self._read)

    async def _update(self, mutate) -> None:
        async with self._lock:
            store = await asyncio.to_thread(self._read)
            mutate(store)
            await asyncio.to_thread(self._write, store)

    def _client_key(self, client_id: str) -> str:
        if not self.anonymize_clients:
            return client_id
        return hashlib.sha256(client_id.encode("utf-8")).hexdigest()[:16]

    # recording

    async def track_request(self, outcome: ChatOutcome) -> None:
        def mutate(store: AnalyticsStore) -> None:
            now = utcnow()
            store.total_requests += 1
            if not outcome.success:
                store.failed_requests += 1
            store.provider_usage[outcome.provider] = store.provider_usage.get(outcome.provider, 0) + 1

            store.response_times.append(
                ResponseTimeRecord(
                    timestamp=now,
                    provider=outcome.provider,
                    response_time=outcome.response_time_ms,
                    success=outcome.success,
                    model=outcome.model,
                    tokens=outcome.token_count_approx,
                    mock=outcome.mock,
                )
            )
            store.response_times = store.response_times[-MAX_RESPONSE_TIMES:]

            if outcome.client_id:
                key = self._client_key(outcome.client_id)
                if key not in store.user_sessions:
                    store.user_sessions.append(key)
                store.total_users = len(store.user_sessions)

            today = now.date().isoformat()
            day = store.daily_stats.setdefault(today, DailyStats())
            day.requests += 1
            if not outcome.success:
                day.errors += 1
            recent = store.response_times[-100:]
            day.avg_response_time = sum(r.response_time for r in recent) / len(recent)

            query = (outcome.query or "").strip()
            if len(query) > MIN_TRACKED_QUERY_LENGTH:
                query_key = query.lower()[:50]
                store.popular_queries[query_key] = store.popular_queries.get(query_key, 0) + 1
                store.content_queries.append(
                    QueryRecord(
                        timestamp=now,
                        query=query[:200],
                        provider=outcome.provider,
                        response_time=outcome.response_time_ms,
                        success=outcome.success,
                    )
                )
                store.content_queries = store.content_queries[-MAX_CONTENT_QUERIES:]

        await self._update(mutate)

    async def track_error(
        self, error: BaseException, provider: Optional[str] = None, context: str = ""
    ) -> None:
        def mutate(store: AnalyticsStore) -> None:
            store.error_logs.append(
                ErrorRecord(
                    error=str(error) or type(error).__name__,
                    error_type=type(error).__name__,
                    provider=provider,
                    context=context,
                )
            )
            store.error_logs = store.error_logs[-MAX_ERROR_LOGS:]

        await self._update(mutate)

    def _schedule(self, operation: str, coro: Awaitable[None]) -> None:
        async def guarded() -> None:
            try:
                await coro
            except Exception as e:
                failure = AnalyticsFailure(operation, e)
                logger.warning("analytics_write_failed", operation=operation, err=failure.details)

        task = asyncio.create_task(guarded())
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    def submit_request(self, outcome: ChatOutcome) -> None:
        if self.enabled:
            self._schedule("track_request", self.track_request(outcome))

    def submit_error(
        self, error: BaseException, provider: Optional[str] = None, context: str = ""
    ) -> None:
        if self.enabled:
            self._schedule("track_error", self.track_error(error, provider, context))

    async def drain(self) -> None:
        """Wait for every scheduled write to finish."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    # reporting

    async def get_analytics(self) -> Dict[str, Any]:
        store = await self.load()
        times = [r.response_time for r in store.response_times]
        avg_response_time = sum(times) / len(times) if times else 0
        success_rate = (
            (store.total_requests - store.failed_requests) / store.total_requests * 100
            if store.total_requests
            else 100.0
        )
        top_queries = Counter(store.popular_queries).most_common(10)
        return {
            "overview": {
                "totalRequests": store.total_requests,
                "totalUsers": store.total_users,
                "avgResponseTime": round(avg_response_time, 2),
                "successRate": round(success_rate, 2),
            },
            "providerUsage": store.provider_usage,
            "topQueries": [{"query": q, "count": c} for q, c in top_queries],
            "recentErrors": [e.model_dump(mode="json", by_alias=True) for e in store.error_logs[-5:]],
            "dailyStats": {
                day: stats.model_dump(by_alias=True) for day, stats in store.daily_stats.items()
            },
            "performanceMetrics": {
                "responseTimes": [
                    r.model_dump(mode="json", by_alias=True) for r in store.response_times[-50:]
                ],
                "errorRate": round(100 - success_rate, 2),
            },
        }

    async def get_dashboard(self) -> Dict[str, Any]:
        store = await self.load()
        today = utcnow().date()
        last_7_days: Dict[str, DailyStats] = {}
        for offset in range(6, -1, -1):
            day = (today - timedelta(days=offset)).isoformat()
            last_7_days[day] = store.daily_stats.get(day, DailyStats())

        week = DailyStats(
            requests=sum(d.requests for d in last_7_days.values()),
            errors=sum(d.errors for d in last_7_days.values()),
            avg_response_time=sum(d.avg_response_time for d in last_7_days.values()),
        )
        return {
            "summary": {
                "today": store.daily_stats.get(today.isoformat(), DailyStats()).model_dump(by_alias=True),
                "thisWeek": week.model_dump(by_alias=True),
                "total": {
                    "requests": store.total_requests,
                    "users": store.total_users,
                    "errors": len(store.error_logs),
                },
            },
            "charts": {
                "dailyRequests": {day: s.model_dump(by_alias=True) for day, s in last_7_days.items()},
                "providerUsage": store.provider_usage,
                "topQueries": Counter(store.popular_queries).most_common(5),
            },
            "recentActivity": {
                "recentQueries": [
                    q.model_dump(mode="json", by_alias=True) for q in reversed(store.content_queries[-10:])
                ],
                "recentErrors": [e.model_dump(mode="json", by_alias=True) for e in store.error_logs[-5:]],
            },
        }
