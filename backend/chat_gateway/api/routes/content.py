import structlog
from fastapi import APIRouter
from fastapi.responses import JSONResponse

from chat_gateway.api.deps import AugmenterDep
from chat_gateway.errors import AugmentationFailure, InvalidRequest
from chat_gateway.models import utcnow
from chat_gateway.schemas import SearchContentRequest

router = APIRouter(tags=["content"])
logger = structlog.get_logger()


@router.post("/search-content")
async def search_content(payload: SearchContentRequest, augmenter: AugmenterDep):
    query = (payload.query or "").strip()
    if not query:
        raise InvalidRequest("Query is required")
    try:
        results = await augmenter.fetch_relevant(
            query, content_types=payload.content_types, limit=payload.limit
        )
    except AugmentationFailure as e:
        logger.error("content_search_failed", err=e.details)
        return JSONResponse(
            status_code=500,
            content={"error": e.message, "details": e.details, "query": query},
        )
    return {
        "query": query,
        "results": [r.model_dump(mode="json", by_alias=True) for r in results],
        "count": len(results),
        "timestamp": utcnow().isoformat(),
    }
