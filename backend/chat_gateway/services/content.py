"""Contentstack-backed content search used to augment prompts."""

import json
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence

import httpx
import structlog
from cachetools import TTLCache

from chat_gateway.core.config import Settings, is_real_credential
from chat_gateway.errors import AugmentationFailure
from chat_gateway.models import ContentEntry

logger = structlog.get_logger()

CDN_HOSTS = {
    "us": "https://cdn.contentstack.io",
    "eu": "https://eu-cdn.contentstack.com",
    "azure-na": "https://azure-na-cdn.contentstack.com",
    "azure-eu": "https://azure-eu-cdn.contentstack.com",
    "gcp-na": "https://gcp-na-cdn.contentstack.com",
}

SEARCH_FIELDS = ("title", "description", "content")

DEMO_CATALOG: List[ContentEntry] = [
    ContentEntry(
        id="mock-1",
        title="Italy Travel Guide",
        content_type="travel_guide",
        content={
            "title": "Italy Travel Guide",
            "description": "Complete guide to traveling in Italy",
            "destinations": ["Rome", "Venice", "Florence", "Milan"],
            "tours": [
                "Rome Colosseum Tour",
                "Venice Gondola Experience",
                "Florence Duomo Visit",
                "Amalfi Coast Drive",
            ],
        },
        relevance=8,
        url="/travel/italy",
    ),
    ContentEntry(
        id="mock-2",
        title="Rome Historical Tours",
        content_type="tour",
        content={
            "title": "Rome Historical Tours",
            "description": "Explore ancient Rome with expert guides",
            "duration": "4 hours",
            "price": "€89",
            "highlights": ["Colosseum", "Roman Forum", "Palatine Hill"],
        },
        relevance=6,
        url="/tours/rome-historical",
    ),
    ContentEntry(
        id="mock-3",
        title="Venice Cultural Experience",
        content_type="experience",
        content={
            "title": "Venice Cultural Experience",
            "description": "Immerse yourself in Venetian culture",
            "activities": ["Gondola ride", "St. Mark's Square", "Murano glass"],
            "duration": "6 hours",
        },
        relevance=4,
        url="/experiences/venice-culture",
    ),
]


@dataclass(frozen=True)
class StackCredentials:
    api_key: Optional[str]
    delivery_token: Optional[str]
    environment: str

    @property
    def configured(self) -> bool:
        return is_real_credential(self.api_key) and is_real_credential(self.delivery_token)


def score_entry(entry: Dict[str, Any], query: str) -> float:
    q = query.lower()
    score = 0.0
    title = str(entry.get("title") or "").lower()
    if title and q in title:
        score += 10
        if title == q:
            score += 5
    description = str(entry.get("description") or "").lower()
    if description and q in description:
        score += 5
    if entry.get("content") and q in json.dumps(entry["content"], default=str).lower():
        score += 2
    return score


def dedupe_and_rank(entries: Sequence[ContentEntry], limit: int) -> List[ContentEntry]:
    seen = set()
    unique: List[ContentEntry] = []
    for entry in entries:
        key = (entry.content_type, entry.id)
        if key in seen:
            continue
        seen.add(key)
        unique.append(entry)
    unique.sort(key=lambda e: e.relevance, reverse=True)
    return unique[:limit]


class ContentAugmenter:
    """Regex search over Contentstack delivery API entries, ranked by a simple relevance score."""

    def __init__(self, settings: Settings, http_client: Optional[httpx.AsyncClient] = None):
        self.settings = settings
        self.base_url = CDN_HOSTS.get(settings.CONTENTSTACK_REGION, CDN_HOSTS["us"])
        self._client = http_client
        self._cache: TTLCache = TTLCache(
            maxsize=512, ttl=max(1, settings.CONTENTSTACK_CACHE_TTL_SECONDS)
        )

    @property
    def default_credentials(self) -> StackCredentials:
        return StackCredentials(
            api_key=self.settings.CONTENTSTACK_API_KEY,
            delivery_token=self.settings.CONTENTSTACK_DELIVERY_TOKEN,
            environment=self.settings.CONTENTSTACK_ENVIRONMENT,
        )

    @property
    def is_configured(self) -> bool:
        return self.default_credentials.configured

    def status(self) -> Dict[str, Any]:
        return {
            "configured": self.is_configured,
            "region": self.settings.CONTENTSTACK_REGION,
            "environment": self.settings.CONTENTSTACK_ENVIRONMENT,
            "contentTypes": self.settings.content_type_uids,
            "mockCatalog": self.settings.CONTENTSTACK_MOCK_CATALOG,
        }

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.base_url, timeout=self.settings.CONTENTSTACK_TIMEOUT_SECONDS
            )
        return self._client

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    def _demo_results(self, query: str, limit: int) -> List[ContentEntry]:
        q = query.lower()
        hits = [
            entry
            for entry in DEMO_CATALOG
            if q in entry.title.lower() or q in json.dumps(entry.content).lower()
        ]
        return dedupe_and_rank(hits, limit)

    async def _search_content_type(
        self, creds: StackCredentials, content_type: str, query: str, limit: int
    ) -> List[ContentEntry]:
        cache_key = (
            creds.api_key, creds.delivery_token, creds.environment, content_type, query.lower(), limit
        )
        if cache_key in self._cache:
            return self._cache[cache_key]

        where = {
            "$or": [{field: {"$regex": query, "$options": "i"}} for field in SEARCH_FIELDS]
        }
        resp = await self.client.get(
            f"/v3/content_types/{content_type}/entries",
            params={
                "environment": creds.environment,
                "query": json.dumps(where),
                "limit": limit,
            },
            headers={"api_key": creds.api_key or "", "access_token": creds.delivery_token or ""},
        )
        resp.raise_for_status()
        entries = [
            ContentEntry(
                id=str(raw.get("uid", "")),
                title=str(raw.get("title") or ""),
                content_type=content_type,
                content=raw,
                relevance=score_entry(raw, query),
                url=raw.get("url"),
            )
            for raw in resp.json().get("entries", [])
        ]
        self._cache[cache_key] = entries
        return entries

    async def fetch_relevant(
        self,
        query: str,
        content_types: Optional[Sequence[str]] = None,
        limit: Optional[int] = None,
        credentials: Optional[StackCredentials] = None,
    ) -> List[ContentEntry]:
        """Return up to ``limit`` entries relevant to ``query``, best first.

        Raises:
            AugmentationFailure: if every content type lookup failed.
        """
        limit = limit or self.settings.AUGMENTATION_LIMIT
        query = query.strip()
        if not query:
            return []

        creds = credentials or self.default_credentials
        if not creds.configured:
            if self.settings.CONTENTSTACK_MOCK_CATALOG:
                return self._demo_results(query, limit)
            return []

        types = list(content_types or self.settings.content_type_uids)
        results: List[ContentEntry] = []
        failures = []
        for content_type in types:
            try:
                results.extend(await self._search_content_type(creds, content_type, query, limit))
            except (httpx.HTTPError, ValueError) as e:
                logger.warning("content_type_search_failed", content_type=content_type, err=str(e))
                failures.append(f"{content_type}: {e}")

        if types and len(failures) == len(types):
            raise AugmentationFailure(details="; ".join(failures))

        ranked = dedupe_and_rank(results, limit)
        logger.info("content_search_complete", query=query[:80], results=len(ranked))
        return ranked
