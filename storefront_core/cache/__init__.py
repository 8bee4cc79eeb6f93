"""
Cache Module - in-process storefront caching.

- MemoryCache: TTL + LRU instance with compression and single-flight loads
- CacheRegistry: named instances per data category, entity routing
- CacheInvalidationManager: coherence on entity updates/deletes

Feature: memory-cache
"""

from storefront_core.cache.compression import Compressor
from storefront_core.cache.invalidation import CacheInvalidationManager, with_cache_invalidation
from storefront_core.cache.keys import detect_entity_type, generate_cache_key
from storefront_core.cache.memory_cache import MemoryCache
from storefront_core.cache.models import CacheProfile, CacheStats, CompressionMethod
from storefront_core.cache.registry import CacheRegistry, EntityCacheOperations

__all__ = [
    "Compressor",
    "CacheInvalidationManager",
    "with_cache_invalidation",
    "detect_entity_type",
    "generate_cache_key",
    "MemoryCache",
    "CacheProfile",
    "CacheStats",
    "CompressionMethod",
    "CacheRegistry",
    "EntityCacheOperations",
]
