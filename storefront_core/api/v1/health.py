"""
Health Check Endpoints

GET /api/v1/health            - Shallow check, no component access
GET /api/v1/health/components - API, cache registry and rate limiter status

Timeout: 5 seconds per component.
"""
import asyncio
import functools
import logging
import time
from typing import Optional

from fastapi import APIRouter, Request

from storefront_core.cache.registry import CacheRegistry
from storefront_core.models.schemas import ComponentHealth, ComponentStatus, HealthResponse
from storefront_core.ratelimit.limiter import RateLimiter

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/health", tags=["Health"])

HEALTH_CHECK_TIMEOUT = 5


async def check_api_health() -> ComponentHealth:
    """Check API component health"""
    start = time.time()
    latency = (time.time() - start) * 1000
    return ComponentHealth(
        name="API",
        status=ComponentStatus.HEALTHY,
        latency_ms=round(latency, 2),
        message="API is responding",
    )


async def check_cache_health(registry: Optional[CacheRegistry]) -> ComponentHealth:
    """
    Cache registry health.

    Degraded when any instance has recorded operation errors.
    """
    start = time.time()

    if registry is None:
        return ComponentHealth(
            name="Cache Registry",
            status=ComponentStatus.UNAVAILABLE,
            message="Cache disabled",
        )

    try:
        stats = registry.get_global_stats()
        errors = sum(c["operations"]["errors"] for c in stats["caches"].values())
        latency = (time.time() - start) * 1000

        totals = stats["totals"]
        summary = (
            f"{len(stats['caches'])} instances, {totals['entries']} entries, "
            f"hit_rate={totals['hit_rate']:.2%}"
        )

        if errors:
            return ComponentHealth(
                name="Cache Registry",
                status=ComponentStatus.DEGRADED,
                latency_ms=round(latency, 2),
                message=f"{summary}, {errors} errors",
            )
        return ComponentHealth(
            name="Cache Registry",
            status=ComponentStatus.HEALTHY,
            latency_ms=round(latency, 2),
            message=summary,
        )
    except Exception as e:
        latency = (time.time() - start) * 1000
        logger.error(f"Cache health check failed: {e}")
        return ComponentHealth(
            name="Cache Registry",
            status=ComponentStatus.UNAVAILABLE,
            latency_ms=round(latency, 2),
            message=str(e),
        )


async def check_rate_limiter_health(limiter: Optional[RateLimiter]) -> ComponentHealth:
    """
    Rate limiter health.

    Degraded when the limiter has failed open at least once.
    """
    start = time.time()

    if limiter is None:
        return ComponentHealth(
            name="Rate Limiter",
            status=ComponentStatus.UNAVAILABLE,
            message="Rate limiting disabled",
        )

    try:
        stats = limiter.get_stats()
        internal_errors = stats["counters"]["internal_errors"]
        latency = (time.time() - start) * 1000
        summary = (
            f"{stats['memory']['active_keys']} active keys, "
            f"{stats['security']['blocked_ips']} blocked IPs"
        )

        if internal_errors:
            return ComponentHealth(
                name="Rate Limiter",
                status=ComponentStatus.DEGRADED,
                latency_ms=round(latency, 2),
                message=f"{summary}, failed open {internal_errors} times",
            )
        return ComponentHealth(
            name="Rate Limiter",
            status=ComponentStatus.HEALTHY,
            latency_ms=round(latency, 2),
            message=summary,
        )
    except Exception as e:
        latency = (time.time() - start) * 1000
        logger.error(f"Rate limiter health check failed: {e}")
        return ComponentHealth(
            name="Rate Limiter",
            status=ComponentStatus.UNAVAILABLE,
            latency_ms=round(latency, 2),
            message=str(e),
        )


def determine_overall_status(components: dict[str, ComponentHealth]) -> str:
    """
    Determine overall system status based on component health.

    - healthy: All components are healthy
    - degraded: Some components are degraded or unavailable
    - unhealthy: The API itself is unavailable
    """
    statuses = [c.status for c in components.values()]

    if all(s == ComponentStatus.HEALTHY for s in statuses):
        return "healthy"
    api = components.get("api")
    if api is None or api.status == ComponentStatus.UNAVAILABLE:
        return "unhealthy"
    return "degraded"


async def check_with_timeout(
    check_func,
    component_name: str,
    timeout_seconds: float = HEALTH_CHECK_TIMEOUT
) -> ComponentHealth:
    """
    Execute health check with timeout.

    Returns:
        ComponentHealth from check_func or UNAVAILABLE on timeout
    """
    try:
        return await asyncio.wait_for(check_func(), timeout=timeout_seconds)
    except asyncio.TimeoutError:
        logger.warning(f"Health check timeout for {component_name} (>{timeout_seconds}s)")
        return ComponentHealth(
            name=component_name,
            status=ComponentStatus.UNAVAILABLE,
            latency_ms=timeout_seconds * 1000,
            message=f"Health check timeout (>{timeout_seconds}s)",
        )


@router.get("", summary="Shallow Health Check")
async def health_check_shallow(request: Request):
    """Liveness check - touches no component."""
    settings = request.app.state.settings
    return {
        "status": "ok",
        "service": settings.app_name,
        "version": settings.app_version,
        "environment": settings.environment,
    }


@router.get("/components", response_model=HealthResponse, summary="Component Health Check")
async def health_check_components(request: Request) -> HealthResponse:
    """Status of the API, the cache registry and the rate limiter."""
    state = request.app.state
    settings = state.settings

    components = {
        "api": await check_with_timeout(check_api_health, "API"),
        "cache": await check_with_timeout(
            functools.partial(check_cache_health, getattr(state, "cache_registry", None)),
            "Cache Registry",
        ),
        "rate_limiter": await check_with_timeout(
            functools.partial(check_rate_limiter_health, getattr(state, "rate_limiter", None)),
            "Rate Limiter",
        ),
    }

    overall_status = determine_overall_status(components)
    logger.info(f"Component health check: {overall_status}")

    return HealthResponse(
        status=overall_status,
        version=settings.app_version,
        environment=settings.environment,
        components=components,
    )
