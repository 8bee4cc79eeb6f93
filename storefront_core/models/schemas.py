"""
Pydantic Schemas for API Request/Response
"""
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field


def utc_now() -> datetime:
    """Get current UTC time (timezone-aware)"""
    return datetime.now(timezone.utc)


class ComponentStatus(str, Enum):
    """Status of a system component"""
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    UNAVAILABLE = "unavailable"


# =============================================================================
# Health Check Schemas
# =============================================================================

class ComponentHealth(BaseModel):
    """Health status of a single component"""
    name: str = Field(..., description="Component name")
    status: ComponentStatus = Field(..., description="Component status")
    latency_ms: Optional[float] = Field(default=None, description="Response latency in ms")
    message: Optional[str] = Field(default=None, description="Status message or error")


class HealthResponse(BaseModel):
    """Health check response"""
    status: str = Field(..., description="Overall system status")
    version: str = Field(..., description="Application version")
    environment: str = Field(..., description="Current environment")
    components: dict[str, ComponentHealth] = Field(
        ...,
        description="Status of all components: API, Cache, Rate Limiter"
    )
    timestamp: datetime = Field(default_factory=utc_now, description="Check timestamp")

    model_config = {
        "json_schema_extra": {
            "examples": [
                {
                    "status": "healthy",
                    "version": "0.1.0",
                    "environment": "development",
                    "components": {
                        "api": {"name": "API", "status": "healthy", "latency_ms": 0.1},
                        "cache": {"name": "Cache Registry", "status": "healthy", "latency_ms": 0.4},
                        "rate_limiter": {"name": "Rate Limiter", "status": "healthy", "latency_ms": 0.2}
                    }
                }
            ]
        }
    }


# =============================================================================
# Statistics Schemas
# =============================================================================

class CacheStatsResponse(BaseModel):
    """Aggregated cache registry statistics"""
    caches: dict[str, dict[str, Any]] = Field(..., description="Per-instance statistics")
    totals: dict[str, Any] = Field(..., description="Totals across instances")
    responsiveness: dict[str, float] = Field(..., description="Summed responsiveness counters")
    invalidation: dict[str, Any] = Field(default_factory=dict, description="Invalidation manager health")
    timestamp: datetime = Field(default_factory=utc_now, description="Snapshot timestamp")


class RateLimitStatsResponse(BaseModel):
    """Rate limiter statistics"""
    memory: dict[str, Any] = Field(..., description="Window storage usage")
    security: dict[str, Any] = Field(..., description="Blocked and suspicious counts")
    counters: dict[str, int] = Field(..., description="Decision counters")
    config: dict[str, Any] = Field(..., description="Active presets and locale")
    timestamp: datetime = Field(default_factory=utc_now, description="Snapshot timestamp")


# =============================================================================
# Error Response Schemas
# =============================================================================

class ErrorDetail(BaseModel):
    """Detail of a validation or processing error"""
    field: Optional[str] = Field(default=None, description="Field that caused the error")
    message: str = Field(..., description="Error message")
    code: Optional[str] = Field(default=None, description="Error code")


class ErrorResponse(BaseModel):
    """Standard error response format"""
    error: str = Field(..., description="Error type")
    message: str = Field(..., description="Human-readable error message")
    details: Optional[list[ErrorDetail]] = Field(default=None, description="Error details")
    request_id: Optional[str] = Field(default=None, description="Request ID for tracking")
    timestamp: datetime = Field(default_factory=utc_now, description="Error timestamp")
