"""
Rate Limit Statistics Endpoint

GET /api/v1/rate-limit/stats - Window, block and behaviour record counts
"""
from fastapi import APIRouter
from fastapi.responses import JSONResponse

from storefront_core.api.deps import Limiter
from storefront_core.cache.http_headers import cache_control_headers
from storefront_core.models.schemas import RateLimitStatsResponse

router = APIRouter(prefix="/rate-limit", tags=["Rate Limit"])


@router.get("/stats", response_model=RateLimitStatsResponse, summary="Rate Limit Statistics")
async def rate_limit_stats(limiter: Limiter) -> JSONResponse:
    stats = limiter.get_stats()
    stats.pop("timestamp", None)
    response = RateLimitStatsResponse(**stats)

    return JSONResponse(
        content=response.model_dump(mode="json"),
        headers=cache_control_headers("monitoring"),
    )
