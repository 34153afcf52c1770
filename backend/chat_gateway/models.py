from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# Chat outcome handed to analytics once per request

class ChatOutcome(CamelModel):
    provider: str
    response_time_ms: int
    success: bool
    token_count_approx: int = 0
    model: Optional[str] = None
    client_id: Optional[str] = None
    query: Optional[str] = None
    mock: bool = False


# CMS content

class ContentEntry(CamelModel):
    """One ranked snippet from the content store."""

    id: str
    title: str = ""
    content_type: str
    content: Dict[str, Any] = Field(default_factory=dict)
    relevance: float = 0
    url: Optional[str] = None


# Analytics JSON document

class ResponseTimeRecord(CamelModel):
    timestamp: datetime = Field(default_factory=utcnow)
    provider: str
    response_time: int
    success: bool
    model: Optional[str] = None
    tokens: int = 0
    mock: bool = False


class QueryRecord(CamelModel):
    timestamp: datetime = Field(default_factory=utcnow)
    query: str
    provider: str
    response_time: int
    success: bool


class ErrorRecord(CamelModel):
    timestamp: datetime = Field(default_factory=utcnow)
    error: str
    error_type: Optional[str] = None
    provider: Optional[str] = None
    context: str = ""


class DailyStats(CamelModel):
    requests: int = 0
    errors: int = 0
    avg_response_time: float = 0


class AnalyticsStore(CamelModel):
    total_requests: int = 0
    failed_requests: int = 0
    total_users: int = 0
    provider_usage: Dict[str, int] = Field(default_factory=dict)
    content_queries: List[QueryRecord] = Field(default_factory=list)
    error_logs: List[ErrorRecord] = Field(default_factory=list)
    daily_stats: Dict[str, DailyStats] = Field(default_factory=dict)
    popular_queries: Dict[str, int] = Field(default_factory=dict)
    response_times: List[ResponseTimeRecord] = Field(default_factory=list)
    user_sessions: List[str] = Field(default_factory=list)
