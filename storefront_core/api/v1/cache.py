"""
Cache Statistics Endpoint

GET /api/v1/cache/stats - Per-instance and aggregated cache statistics
"""
import logging

from fastapi import APIRouter
from fastapi.responses import JSONResponse

from storefront_core.api.deps import Invalidation, Registry
from storefront_core.cache.http_headers import cache_control_headers
from storefront_core.models.schemas import CacheStatsResponse

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/cache", tags=["Cache"])


@router.get("/stats", response_model=CacheStatsResponse, summary="Cache Statistics")
async def cache_stats(registry: Registry, invalidation: Invalidation) -> JSONResponse:
    """Statistics for every cache instance, never cached by browsers or CDNs."""
    stats = registry.get_global_stats()
    response = CacheStatsResponse(**stats, invalidation=invalidation.get_health())

    logger.debug(
        f"[CACHE] Stats requested: {response.totals['entries']} entries, "
        f"hit_rate={response.totals['hit_rate']}"
    )

    return JSONResponse(
        content=response.model_dump(mode="json"),
        headers=cache_control_headers("monitoring"),
    )
