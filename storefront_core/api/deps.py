"""
API Dependencies - Dependency Injection for FastAPI

Components are built by the application lifespan and stored on
``app.state``; routes receive them through these dependencies.
"""
from typing import Annotated

from fastapi import Depends, HTTPException, Request

from storefront_core.cache.invalidation import CacheInvalidationManager
from storefront_core.cache.registry import CacheRegistry
from storefront_core.core.config import Settings
from storefront_core.core.events import EventBus
from storefront_core.ratelimit.limiter import RateLimiter


def _component(request: Request, name: str):
    component = getattr(request.app.state, name, None)
    if component is None:
        raise HTTPException(status_code=503, detail=f"{name} is not available")
    return component


def get_app_settings(request: Request) -> Settings:
    return _component(request, "settings")


def get_cache_registry(request: Request) -> CacheRegistry:
    return _component(request, "cache_registry")


def get_invalidation_manager(request: Request) -> CacheInvalidationManager:
    return _component(request, "invalidation_manager")


def get_rate_limiter(request: Request) -> RateLimiter:
    return _component(request, "rate_limiter")


def get_event_bus(request: Request) -> EventBus:
    return _component(request, "event_bus")


# =============================================================================
# Annotated dependencies
# =============================================================================

AppSettings = Annotated[Settings, Depends(get_app_settings)]
Registry = Annotated[CacheRegistry, Depends(get_cache_registry)]
Invalidation = Annotated[CacheInvalidationManager, Depends(get_invalidation_manager)]
Limiter = Annotated[RateLimiter, Depends(get_rate_limiter)]
Events = Annotated[EventBus, Depends(get_event_bus)]
