"""
API Version 1 Router
Aggregates all v1 endpoints
"""
from fastapi import APIRouter

from storefront_core.api.v1.cache import router as cache_router
from storefront_core.api.v1.health import router as health_router
from storefront_core.api.v1.rate_limit import router as rate_limit_router

router = APIRouter(tags=["v1"])

# Include sub-routers
router.include_router(health_router)
router.include_router(cache_router)  # GET /cache/stats
router.include_router(rate_limit_router)  # GET /rate-limit/stats


@router.get("/")
async def api_v1_root():
    """API v1 root endpoint"""
    return {"api": "v1", "status": "active"}
