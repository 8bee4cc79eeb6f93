"""
Storefront Core Service - FastAPI Application Entry Point

In-process caching and rate limiting for the storefront API.
"""
import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from storefront_core.cache.invalidation import CacheInvalidationManager
from storefront_core.cache.registry import CacheRegistry
from storefront_core.core.config import Settings, get_settings
from storefront_core.core.error_reporting import LoggingErrorReporter
from storefront_core.core.events import EventBus
from storefront_core.models.schemas import ErrorDetail, ErrorResponse
from storefront_core.ratelimit.limiter import RateLimiter
from storefront_core.ratelimit.middleware import (
    RateLimitMiddleware,
    RateLimitRejected,
    rate_limit_rejected_handler,
)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """
    Application lifespan manager.

    - Startup: build the event bus, cache registry, invalidation manager and
      rate limiter, store them on app.state and start their background tasks
    - Shutdown: stop background tasks and drop cached data
    """
    settings: Settings = app.state.settings

    logger.info(f"Starting {settings.app_name} v{settings.app_version}")
    logger.info(f"Environment: {settings.environment}")
    logger.info(f"Debug mode: {settings.debug}")

    reporter = LoggingErrorReporter(only_warnings_and_errors=settings.is_production)
    events = EventBus()
    app.state.event_bus = events
    app.state.error_reporter = reporter

    registry: Optional[CacheRegistry] = None
    limiter: Optional[RateLimiter] = None

    if settings.cache_enabled:
        registry = CacheRegistry.from_settings(settings, events=events, error_reporter=reporter)
        await registry.init()
        app.state.cache_registry = registry
        app.state.invalidation_manager = CacheInvalidationManager(
            registry, max_versions=settings.cache_max_tracked_versions
        )
        logger.info(f"Cache registry ready: {', '.join(registry.names)}")
    else:
        app.state.cache_registry = None
        app.state.invalidation_manager = None
        logger.warning("Cache disabled by configuration")

    if settings.rate_limit_enabled:
        limiter = RateLimiter.from_settings(settings, events=events, error_reporter=reporter)
        await limiter.init()
        app.state.rate_limiter = limiter
    else:
        app.state.rate_limiter = None
        logger.warning("Rate limiting disabled by configuration")

    logger.info(f"{settings.app_name} started successfully")

    yield

    logger.info(f"Shutting down {settings.app_name}...")

    if limiter is not None:
        try:
            await limiter.shutdown()
        except Exception as e:
            logger.error(f"Failed to stop rate limiter: {e}")

    if registry is not None:
        try:
            await registry.shutdown()
        except Exception as e:
            logger.error(f"Failed to stop cache registry: {e}")

    events.clear()
    logger.info(f"{settings.app_name} shutdown complete")


def create_application(settings: Optional[Settings] = None) -> FastAPI:
    """
    Application factory pattern.
    Creates and configures the FastAPI application.
    """
    settings = settings or get_settings()

    logging.basicConfig(
        level=getattr(logging, settings.log_level),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    app = FastAPI(
        title=settings.app_name,
        description="In-process cache registry and rate limiter for the storefront",
        version=settings.app_version,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )
    app.state.settings = settings

    # Configure Rate Limiting
    app.add_middleware(
        RateLimitMiddleware,
        api_prefix=settings.api_v1_prefix,
        enabled=settings.rate_limit_enabled,
    )
    app.add_exception_handler(RateLimitRejected, rate_limit_rejected_handler)

    # Register exception handlers
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(Exception, general_exception_handler)

    # Include API routers
    from storefront_core.api.v1 import router as api_v1_router
    app.include_router(api_v1_router, prefix=settings.api_v1_prefix)

    @app.get("/", tags=["Root"])
    async def root():
        """Root endpoint - service information"""
        return {
            "service": settings.app_name,
            "version": settings.app_version,
            "environment": settings.environment,
        }

    return app


# =============================================================================
# Exception Handlers
# =============================================================================

async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """
    Handle Pydantic validation errors.
    Returns HTTP 400 with detailed error information.
    """
    errors = []
    for error in exc.errors():
        errors.append(
            ErrorDetail(
                field=".".join(str(loc) for loc in error["loc"]),
                message=error["msg"],
                code=error["type"],
            )
        )

    response = ErrorResponse(
        error="validation_error",
        message="Request validation failed",
        details=errors,
        request_id=request.headers.get("X-Request-ID"),
    )

    logger.warning(f"Validation error: {response.model_dump_json()}")

    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content=response.model_dump(mode="json"),
    )


async def general_exception_handler(
    request: Request, exc: Exception
) -> JSONResponse:
    """
    Handle unexpected exceptions.
    Returns HTTP 500 with error details while maintaining service availability.
    """
    logger.exception(f"Unexpected error: {exc}")

    debug = request.app.state.settings.debug
    response = ErrorResponse(
        error="internal_error",
        message=str(exc) if debug else "An unexpected error occurred",
        request_id=request.headers.get("X-Request-ID"),
    )

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=response.model_dump(mode="json"),
    )


# Create application instance
app = create_application()
