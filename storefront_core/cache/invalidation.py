"""
Cache Invalidation Manager - cache coherence on entity mutations.

Strategies:
1. TTL-based expiration (automatic, in MemoryCache)
2. Entity version tracking (skip invalidation when content is unchanged)
3. Downstream purge handlers (CDN, edge, ...)
4. Mutation decorator (invalidate after a successful write)

Feature: memory-cache
"""

import functools
import hashlib
import inspect
import json
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Optional, Tuple

from storefront_core.cache.registry import CacheRegistry
from storefront_core.core.bounded_map import BoundedMap

logger = logging.getLogger(__name__)

PurgeHandler = Callable[[str, Optional[str]], Awaitable[int]]


@dataclass
class EntityVersion:
    """Last seen content of an entity."""
    entity_type: str
    entity_id: str
    content_hash: str
    last_updated: float = field(default_factory=time.time)


class CacheInvalidationManager:
    """
    Invalidates registry entries and downstream caches when entities change.

    Usage:
        manager = CacheInvalidationManager(registry)
        manager.register_handler("cdn", cdn.purge_entity)

        # After an update
        await manager.on_entity_updated("template", 42, new_template)

    The registry result is reported under the "registry" key; each handler
    under its own name (-1 if it failed).
    """

    def __init__(self, registry: CacheRegistry, max_versions: int = 10000):
        self.registry = registry

        # Oldest versions are forgotten first (their next update always invalidates)
        self._versions: BoundedMap[Tuple[str, str], EntityVersion] = BoundedMap(max_versions)
        self._handlers: Dict[str, PurgeHandler] = {}

        # Statistics
        self._invalidation_count = 0
        self._last_invalidation_time: Optional[float] = None

        logger.info("CacheInvalidationManager initialized")

    def register_handler(self, name: str, handler: PurgeHandler) -> None:
        """
        Register a downstream invalidation handler.

        Args:
            name: Handler name used in result dictionaries
            handler: Async function (entity_type, entity_id) -> count
        """
        self._handlers[name] = handler
        logger.info(f"Registered invalidation handler: {name}")

    def unregister_handler(self, name: str) -> bool:
        return self._handlers.pop(name, None) is not None

    async def on_entity_updated(
        self,
        entity_type: str,
        entity_id: Any,
        content: Any = None,
    ) -> Dict[str, int]:
        """
        Invalidate cache entries when an entity changes.

        Args:
            entity_type: Entity name (order, template, blog, ...)
            entity_id: ID of the updated entity
            content: New content; an unchanged hash skips invalidation

        Returns:
            Dict mapping "registry" and handler names to invalidation counts
        """
        entity_id = str(entity_id)
        version_key = (entity_type, entity_id)

        new_hash = None
        if content is not None:
            new_hash = self._compute_hash(content)
            existing = self._versions.get(version_key)
            if existing and existing.content_hash == new_hash:
                logger.debug(f"{entity_type} {entity_id} unchanged, skipping invalidation")
                return {}

        results = await self._invalidate(entity_type, entity_id)

        if new_hash is not None:
            self._versions.set(version_key, EntityVersion(
                entity_type=entity_type,
                entity_id=entity_id,
                content_hash=new_hash,
            ))

        logger.info(
            f"{entity_type} {entity_id} updated: invalidated "
            f"{self._total(results)} entries across {len(results)} targets"
        )
        return results

    async def on_entity_deleted(self, entity_type: str, entity_id: Any) -> Dict[str, int]:
        """
        Invalidate cache entries when an entity is deleted.

        Returns:
            Dict mapping "registry" and handler names to invalidation counts
        """
        entity_id = str(entity_id)
        results = await self._invalidate(entity_type, entity_id)

        self._versions.pop((entity_type, entity_id), None)

        logger.info(f"{entity_type} {entity_id} deleted: invalidated {self._total(results)} entries")
        return results

    async def invalidate_all(self) -> Dict[str, int]:
        """
        Drop every cache entry and forget tracked versions (admin function).

        Returns:
            {"registry": entries cleared}
        """
        logger.warning("Full cache invalidation requested")

        cleared = self.registry.cleanup_all()
        self._versions.clear()

        self._invalidation_count += cleared
        self._last_invalidation_time = time.time()
        return {"registry": cleared}

    def get_health(self) -> Dict[str, Any]:
        """
        Report cache coherence status.

        Returns:
            Health status dictionary
        """
        return {
            "tracked_entities": len(self._versions),
            "registered_handlers": list(self._handlers.keys()),
            "total_invalidations": self._invalidation_count,
            "last_invalidation": self._last_invalidation_time,
        }

    async def _invalidate(self, entity_type: str, entity_id: Optional[str]) -> Dict[str, int]:
        results = {"registry": self.registry.invalidate(entity_type, entity_id)}

        for name, handler in self._handlers.items():
            try:
                results[name] = await handler(entity_type, entity_id)
            except Exception as e:
                logger.error(f"Invalidation handler failed for {name}: {e}")
                results[name] = -1

        self._invalidation_count += self._total(results)
        self._last_invalidation_time = time.time()
        return results

    @staticmethod
    def _total(results: Dict[str, int]) -> int:
        return sum(c for c in results.values() if c > 0)

    @staticmethod
    def _compute_hash(content: Any) -> str:
        """Compute SHA256 hash of content."""
        if not isinstance(content, str):
            content = json.dumps(content, sort_keys=True, default=str)
        return hashlib.sha256(content.encode("utf-8")).hexdigest()[:16]


def _is_failure(result: Any) -> bool:
    return isinstance(result, dict) and result.get("success") is False


def with_cache_invalidation(target: CacheRegistry, entity_type: str):
    """
    Decorator invalidating an entity type after a successful mutation.

    A result of the form ``{"success": False, ...}`` counts as a failure
    and leaves the cache untouched. Exceptions are logged and re-raised.

    Usage:
        @with_cache_invalidation(registry, "template")
        async def update_template(template_id, data):
            ...
    """

    def decorator(func):
        if inspect.iscoroutinefunction(func):
            @functools.wraps(func)
            async def async_wrapper(*args, **kwargs):
                try:
                    result = await func(*args, **kwargs)
                except Exception as e:
                    logger.error(f"[CACHE] Mutation {func.__name__} failed, cache kept for {entity_type}: {e}")
                    raise
                if not _is_failure(result):
                    target.invalidate(entity_type)
                return result

            return async_wrapper

        @functools.wraps(func)
        def sync_wrapper(*args, **kwargs):
            try:
                result = func(*args, **kwargs)
            except Exception as e:
                logger.error(f"[CACHE] Mutation {func.__name__} failed, cache kept for {entity_type}: {e}")
                raise
            if not _is_failure(result):
                target.invalidate(entity_type)
            return result

        return sync_wrapper

    return decorator
