"""
Exception taxonomy for the cache and rate-limit layers.

None of these escape the public API of MemoryCache, CacheRegistry or
RateLimiter: they are raised internally, caught at the method boundary,
logged, reported and turned into safe return values.

Rate-limit outcomes (window exceeded, client blocked) are not exceptions,
see RateLimitRejection.
"""


class StorefrontCoreError(Exception):
    """Base class for all storefront-core errors."""


class ConfigurationError(StorefrontCoreError, ValueError):
    """Invalid profile, preset or registry wiring detected at construction."""


# =============================================================================
# Cache
# =============================================================================

class CacheError(StorefrontCoreError):
    """Base class for cache failures."""


class CompressionFailure(CacheError):
    """A compression strategy could not encode or decode a payload."""


class UnknownCompressionMethod(CompressionFailure):
    """Stored payload carries a method no registered strategy handles."""

    def __init__(self, method: str):
        super().__init__(f"Unknown compression method: {method!r}")
        self.method = method


class CacheCapacityExceeded(CacheError):
    """A single entry is too large for the instance's byte budget."""

    def __init__(self, key: str, size: int, limit: int):
        super().__init__(f"Cache entry too large: {key} ({size} bytes > {limit} bytes)")
        self.key = key
        self.size = size
        self.limit = limit


class CacheOperationError(CacheError):
    """Generic failure inside a cache operation."""


class CacheSerializationError(CacheOperationError):
    """Value cannot be converted to its canonical text form."""


# =============================================================================
# Rate limiting
# =============================================================================

class RateLimiterInternalError(StorefrontCoreError):
    """Unexpected failure inside the limiter; the request is allowed."""
