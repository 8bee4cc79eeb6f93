"""
Rate Limit Data Models.

Presets, violation tiers, per-key records and the structured rejection
returned to callers.

Feature: rate-limiting
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Set, Tuple

from pydantic import BaseModel, ConfigDict, Field


class Severity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    SEVERE = "severe"


@dataclass(frozen=True)
class ViolationLevel:
    """Severity tier reached when attempts / max >= threshold."""
    severity: Severity
    threshold: float
    block_seconds: float
    log_level: int = logging.INFO


class RejectionKind(str, Enum):
    RATE_LIMITED = "rate_limited"
    BLOCKED = "blocked"


class RateLimitPreset(BaseModel):
    """
    Window and limit for one traffic class.

    Immutable; unknown fields are rejected.
    """
    model_config = ConfigDict(extra="forbid", frozen=True)

    name: str = Field(..., min_length=1)
    window_seconds: float = Field(..., gt=0)
    max_requests: int = Field(..., ge=1)
    skip_successful_requests: bool = False
    skip_failed_requests: bool = False


@dataclass
class RequestDescriptor:
    """
    Framework-neutral view of an incoming request or server action.

    Header names are matched case-insensitively.
    """
    path: str
    headers: Mapping[str, str] = field(default_factory=dict)
    client_host: Optional[str] = None
    body: Any = None
    method: str = "GET"

    def header(self, name: str) -> Optional[str]:
        name = name.lower()
        for key, value in self.headers.items():
            if key.lower() == name:
                return value
        return None


@dataclass
class WindowRecord:
    """Timestamps of attempts inside the active window for one key."""
    key: str
    timestamps: List[float] = field(default_factory=list)
    success_count: int = 0
    error_count: int = 0
    last_seen: float = 0.0

    def prune(self, window_start: float) -> None:
        if self.timestamps and self.timestamps[0] <= window_start:
            self.timestamps = [ts for ts in self.timestamps if ts > window_start]


@dataclass
class BlockRecord:
    ip: str
    blocked_until: float
    reason: str
    severity: Severity
    reference: str

    def is_active(self, now: float) -> bool:
        return now < self.blocked_until


@dataclass
class SuspiciousBehaviorRecord:
    """Behavioural signals accumulated for one key."""
    key: str
    violations: int = 0
    endpoints: Set[str] = field(default_factory=set)
    error_requests: int = 0
    total_requests: int = 0
    last_seen: float = 0.0

    @property
    def error_ratio(self) -> float:
        return self.error_requests / max(self.total_requests, 1)


@dataclass
class OrderAttemptRecord:
    key: str
    total_attempts: int = 0
    successful_orders: int = 0
    failed_attempts: int = 0
    first_attempt: float = 0.0
    last_attempt: float = 0.0


@dataclass(frozen=True)
class BehaviorAnalysis:
    """Outcome of the threat scoring for one key."""
    threat_level: int = 0
    detection_points: Tuple[str, ...] = ()

    @property
    def is_suspicious(self) -> bool:
        return self.threat_level >= 4


class RateLimitRejection(BaseModel):
    """
    Structured 429 returned instead of raising.

    ``retry_after`` is in whole seconds; ``reference`` correlates the
    response with logs and error reports.
    """
    status: int = 429
    error: str
    message: str
    retry_after: int = Field(..., ge=1)
    reference: str
    kind: RejectionKind = RejectionKind.RATE_LIMITED
    severity: Optional[Severity] = None

    # Header inputs, not part of the JSON body
    limit: Optional[int] = Field(default=None, exclude=True)
    reset_at: Optional[int] = Field(default=None, exclude=True)

    @property
    def is_blocked(self) -> bool:
        return self.kind == RejectionKind.BLOCKED

    def headers(self) -> Dict[str, str]:
        headers = {"Retry-After": str(self.retry_after)}
        if self.limit is not None:
            headers["X-RateLimit-Limit"] = str(self.limit)
            headers["X-RateLimit-Remaining"] = "0"
        if self.reset_at is not None:
            headers["X-RateLimit-Reset"] = str(self.reset_at)
        return headers

    def body(self) -> Dict[str, Any]:
        return self.model_dump(mode="json")
