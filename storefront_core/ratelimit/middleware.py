"""
FastAPI / Starlette integration for the rate limiter.

RateLimitMiddleware applies path-based presets to every HTTP request;
RateLimitDependency guards individual server-action routes (order,
contact) where the submitted email takes part in the key.
"""
import json
import logging
from typing import Any, AsyncIterator, Optional, Tuple

from fastapi import Request, Response
from fastapi.responses import JSONResponse
from slowapi.util import get_remote_address
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.routing import Match

from storefront_core.ratelimit.limiter import RateLimiter
from storefront_core.ratelimit.models import RateLimitRejection, RequestDescriptor
from storefront_core.ratelimit.presets import DEFAULT_PRESET, SERVER_ACTION_PRESETS

logger = logging.getLogger(__name__)

# First matching prefix wins
PATH_PRESETS: Tuple[Tuple[str, str, str], ...] = (
    ("/api/blog", "BLOG_API", "blog"),
    ("/api/templates", "TEMPLATES_API", "templates"),
    ("/api/images", "IMAGE_REQUESTS", "images"),
    ("/api/presentation", "PRESENTATION_INTERACTIONS", "presentation"),
)

EXEMPT_PATHS: Tuple[str, ...] = ("/health", "/docs", "/redoc", "/openapi.json")


def classify_path(path: str) -> Tuple[str, str]:
    """Preset name and key prefix for a request path."""
    for prefix, preset, key_prefix in PATH_PRESETS:
        if path.startswith(prefix):
            return preset, key_prefix
    return DEFAULT_PRESET, DEFAULT_PRESET.lower()


def is_exempt(path: str, api_prefix: str = "") -> bool:
    for exempt in EXEMPT_PATHS:
        if path.startswith(exempt) or (api_prefix and path.startswith(f"{api_prefix}{exempt}")):
            return True
    return False


def describe_request(request: Request, body: object = None) -> RequestDescriptor:
    """Framework-neutral descriptor for a Starlette request."""
    return RequestDescriptor(
        path=request.url.path,
        headers=dict(request.headers),
        client_host=get_remote_address(request),
        body=body,
        method=request.method,
    )


def rejection_to_response(rejection: RateLimitRejection) -> JSONResponse:
    """
    Convert a rejection to the HTTP 429 JSON response.
    Includes Retry-After and X-RateLimit-* headers.
    """
    return JSONResponse(
        status_code=rejection.status,
        content=rejection.body(),
        headers=rejection.headers(),
    )


class RateLimitRejected(Exception):
    """Raised by RateLimitDependency to short-circuit a route."""

    def __init__(self, rejection: RateLimitRejection):
        super().__init__(rejection.message)
        self.rejection = rejection


async def rate_limit_rejected_handler(request: Request, exc: RateLimitRejected) -> Response:
    """Render RateLimitRejected as the HTTP 429 response."""
    return rejection_to_response(exc.rejection)


class RateLimitMiddleware(BaseHTTPMiddleware):
    """
    Apply the limiter to every request.

    The limiter is resolved from ``app.state.rate_limiter`` at request time
    so the middleware can be installed before the lifespan builds it.
    Outcomes (2xx/3xx success, everything else failure) are fed back for
    skip_* presets and behaviour scoring. Routes guarded by
    RateLimitDependency are left to the dependency so they are counted once.
    """

    def __init__(self, app, api_prefix: str = "", enabled: bool = True):
        super().__init__(app)
        self.api_prefix = api_prefix
        self.enabled = enabled

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        limiter: Optional[RateLimiter] = getattr(request.app.state, "rate_limiter", None)
        path = request.url.path

        if not self.enabled or limiter is None or is_exempt(path, self.api_prefix):
            return await call_next(request)

        if is_dependency_guarded(request):
            return await call_next(request)

        preset, prefix = classify_path(path)
        descriptor = describe_request(request)

        rejection = limiter.check(descriptor, preset, prefix)
        if rejection is not None:
            logger.debug(f"[RATE LIMIT] {path} rejected ({rejection.kind.value}) ref={rejection.reference}")
            return rejection_to_response(rejection)

        response = await call_next(request)
        limiter.record_outcome(descriptor, response.status_code < 400, preset, prefix)
        return response


class RateLimitDependency:
    """
    FastAPI dependency guarding a server action.

    Usage:
        @router.post("/orders", dependencies=[Depends(RateLimitDependency("order"))])
        async def create_order(...):
            ...

    Raises RateLimitRejected, rendered as the 429 JSON response by
    rate_limit_rejected_handler. After the route runs, the outcome is fed
    back to the limiter: an exception from the route counts as a failure,
    anything else as a success.
    """

    def __init__(self, action: str = "order"):
        self.action = action
        self.preset = SERVER_ACTION_PRESETS.get(action, SERVER_ACTION_PRESETS["general"])

    async def __call__(self, request: Request) -> AsyncIterator[Optional[RequestDescriptor]]:
        limiter: Optional[RateLimiter] = getattr(request.app.state, "rate_limiter", None)
        if limiter is None:
            yield None
            return

        body = None
        try:
            raw = await request.body()
            if raw:
                body = json.loads(raw)
        except ValueError:
            # Unparseable body: key falls back to IP + path
            body = None

        descriptor = describe_request(request, body)
        policy = limiter.for_server_action(self.action)

        rejection = policy(descriptor)
        if rejection is not None:
            raise RateLimitRejected(rejection)

        try:
            yield descriptor
        except Exception:
            policy.record_outcome(descriptor, success=False)
            raise
        else:
            policy.record_outcome(descriptor, success=True)


def _uses_rate_limit_dependency(dependant: Any) -> bool:
    return any(
        isinstance(dependency.call, RateLimitDependency) or _uses_rate_limit_dependency(dependency)
        for dependency in dependant.dependencies
    )


def is_dependency_guarded(request: Request) -> bool:
    """True when the route matching the request carries a RateLimitDependency."""
    for route in request.app.router.routes:
        match, _ = route.matches(request.scope)
        if match == Match.FULL:
            dependant = getattr(route, "dependant", None)
            return dependant is not None and _uses_rate_limit_dependency(dependant)
    return False
