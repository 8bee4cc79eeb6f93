"""
Rate Limiting Module - sliding windows, violation tiers, adaptive blocking.

Feature: rate-limiting
"""

from storefront_core.ratelimit.limiter import RateLimiter, RateLimitPolicy
from storefront_core.ratelimit.models import (
    RateLimitPreset,
    RateLimitRejection,
    RejectionKind,
    RequestDescriptor,
    Severity,
)
from storefront_core.ratelimit.presets import PRESETS, VIOLATION_LEVELS

__all__ = [
    "RateLimiter",
    "RateLimitPolicy",
    "RateLimitPreset",
    "RateLimitRejection",
    "RejectionKind",
    "RequestDescriptor",
    "Severity",
    "PRESETS",
    "VIOLATION_LEVELS",
]
