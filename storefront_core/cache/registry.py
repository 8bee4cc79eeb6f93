"""
Cache Registry - named cache instances and entity routing.

Owns one MemoryCache per data category and maps entity types (order,
template, blog, ...) to the instances that hold them, so a mutation can
invalidate everything derived from an entity in one call.

Features:
- Default profiles for every storefront category
- Entity → instances routing for invalidation
- Aggregated statistics
- Background monitor (expiry sweep + efficiency warnings)

Feature: memory-cache
"""

import asyncio
import logging
import re
import time
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Sequence, Union

from storefront_core.cache.compression import Compressor
from storefront_core.cache.keys import generate_cache_key
from storefront_core.cache.memory_cache import ComputeFn, MemoryCache
from storefront_core.cache.models import CacheProfile, Efficiency
from storefront_core.core.config import Settings
from storefront_core.core.errors import ConfigurationError
from storefront_core.core.error_reporting import ErrorReporter, LoggingErrorReporter
from storefront_core.core.events import CacheStatsSnapshot, EventBus, RegistryInvalidated

logger = logging.getLogger(__name__)

# Instance used for entity types without a dedicated cache
EDGE_CACHE = "edge"

# Minimum lookups before a poor hit rate is worth a warning
MIN_OPERATIONS_FOR_ALERT = 10

DEFAULT_PROFILES: Dict[str, CacheProfile] = {
    profile.name: profile
    for profile in (
        CacheProfile(name="orders", entity_type="order", ttl_seconds=30, max_entries=100, must_revalidate=True),
        CacheProfile(name="templates", entity_type="template", ttl_seconds=600, max_entries=200),
        CacheProfile(name="single_template", entity_type="template", ttl_seconds=900, max_entries=300),
        CacheProfile(name="applications", entity_type="application", ttl_seconds=900, max_entries=300),
        CacheProfile(name="single_application", entity_type="application", ttl_seconds=1200, max_entries=400),
        CacheProfile(name="platforms", entity_type="platform", ttl_seconds=300, max_entries=50, compress=False),
        CacheProfile(name="blog_articles", entity_type="blog_article", ttl_seconds=300, max_entries=200),
        CacheProfile(name="single_blog_article", entity_type="blog_article", ttl_seconds=1800, max_entries=300),
        CacheProfile(name="cdn_images", entity_type="cdn_asset", ttl_seconds=3600, max_entries=1000, compress=False),
        CacheProfile(name="cdn_signatures", entity_type="cdn_asset", ttl_seconds=300, max_entries=100, compress=False),
        CacheProfile(name="user_sessions", entity_type="user", ttl_seconds=120, max_entries=200, compress=False),
        CacheProfile(name=EDGE_CACHE, entity_type="generic", ttl_seconds=300, edge_compatible=True),
    )
}

ENTITY_CACHE_MAP: Dict[str, List[str]] = {
    "order": ["orders"],
    "template": ["templates", "single_template"],
    "application": ["applications", "single_application"],
    "blog": ["blog_articles", "single_blog_article"],
    "article": ["blog_articles", "single_blog_article"],
    "platform": ["platforms"],
    "image": ["cdn_images", "cdn_signatures"],
    "user": ["user_sessions"],
}


class EntityCacheOperations:
    """
    Read-through helpers bound to one entity type.

    Usage:
        templates = registry.operations("template")
        template = await templates.read(42, lambda: repo.fetch_template(42))
        templates.invalidate(42)
    """

    def __init__(self, registry: "CacheRegistry", entity_type: str):
        self.registry = registry
        self.entity_type = entity_type

        names = registry.entity_map.get(entity_type) or [EDGE_CACHE]
        self.cache = registry.get(names[0])

    def key_for(self, entity_id: Any) -> str:
        return generate_cache_key(f"{self.entity_type}_read", {"id": entity_id})

    async def read(self, entity_id: Any, fetch: ComputeFn) -> Any:
        return await self.cache.get_or_set(
            self.key_for(entity_id),
            fetch,
            ttl=self.cache.profile.ttl_seconds,
            entity_type=self.entity_type,
        )

    def invalidate(self, entity_id: Optional[Any] = None) -> int:
        return self.registry.invalidate(self.entity_type, entity_id)


class CacheRegistry:
    """
    Collection of named MemoryCache instances.

    Usage:
        registry = CacheRegistry.from_settings(get_settings(), events=bus)
        await registry.init()

        await registry["templates"].set(key, templates)
        registry.invalidate("template", 42)

        await registry.shutdown()

    Args:
        profiles: Profiles keyed by instance name
        entity_map: Entity type → instance names (all must exist)
        compressor: Codec shared by every instance
        events: Bus receiving cache events
        error_reporter: External error tracker
        log_operations: Per-operation debug logging
        stats_interval: Seconds between monitor passes
        clock: Monotonic time source shared by every instance
    """

    def __init__(
        self,
        profiles: Optional[Union[Mapping[str, CacheProfile], Sequence[CacheProfile]]] = None,
        entity_map: Optional[Mapping[str, Iterable[str]]] = None,
        *,
        compressor: Optional[Compressor] = None,
        events: Optional[EventBus] = None,
        error_reporter: Optional[ErrorReporter] = None,
        log_operations: bool = False,
        stats_interval: float = 600.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        if profiles is None:
            profiles = DEFAULT_PROFILES
        if isinstance(profiles, Mapping):
            profiles = list(profiles.values())

        if entity_map is None:
            entity_map = ENTITY_CACHE_MAP
        self.entity_map: Dict[str, List[str]] = {
            entity: list(names) for entity, names in entity_map.items()
        }

        self.events = events
        self._reporter = error_reporter or LoggingErrorReporter()
        self.stats_interval = stats_interval
        self._monitor_task: Optional[asyncio.Task] = None

        compressor = compressor or Compressor()
        self._caches: Dict[str, MemoryCache] = {}
        for profile in profiles:
            if profile.name in self._caches:
                raise ConfigurationError(f"Duplicate cache profile: {profile.name}")
            self._caches[profile.name] = MemoryCache(
                profile,
                compressor=compressor,
                events=events,
                error_reporter=self._reporter,
                log_operations=log_operations,
                clock=clock,
            )

        # Every instance is also reachable by its own profile tag
        for profile in profiles:
            names = self.entity_map.setdefault(profile.entity_type, [])
            if profile.name not in names:
                names.append(profile.name)

        for entity, names in self.entity_map.items():
            missing = [name for name in names if name not in self._caches]
            if missing:
                raise ConfigurationError(
                    f"Entity '{entity}' maps to unknown cache instances: {missing}"
                )

        logger.info(
            f"CacheRegistry initialized: {len(self._caches)} instances, "
            f"{len(self.entity_map)} entity types"
        )

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        *,
        events: Optional[EventBus] = None,
        error_reporter: Optional[ErrorReporter] = None,
    ) -> "CacheRegistry":
        """Build the default registry with thresholds and intervals from settings."""
        profiles = [
            profile.model_copy(update={"max_entry_fraction": settings.cache_max_entry_fraction})
            for profile in DEFAULT_PROFILES.values()
        ]
        return cls(
            profiles,
            compressor=Compressor(threshold=settings.effective_compression_threshold),
            events=events,
            error_reporter=error_reporter,
            log_operations=settings.cache_log_operations,
            stats_interval=settings.effective_stats_interval,
        )

    # =========================================================================
    # Instance access
    # =========================================================================

    def get(self, name: str) -> MemoryCache:
        try:
            return self._caches[name]
        except KeyError:
            raise KeyError(f"Unknown cache instance: {name}") from None

    def __getitem__(self, name: str) -> MemoryCache:
        return self.get(name)

    def __contains__(self, name: object) -> bool:
        return name in self._caches

    @property
    def names(self) -> List[str]:
        return list(self._caches)

    def caches_for(self, entity_type: str) -> List[MemoryCache]:
        return [self._caches[name] for name in self.entity_map.get(entity_type, [])]

    def operations(self, entity_type: str) -> EntityCacheOperations:
        return EntityCacheOperations(self, entity_type)

    # =========================================================================
    # Invalidation
    # =========================================================================

    def invalidate(self, entity_type: str, entity_id: Optional[Any] = None) -> int:
        """
        Invalidate everything derived from an entity.

        Args:
            entity_type: Entity name from the entity map (unknown → 0)
            entity_id: Restrict to keys mentioning this ID

        Returns:
            Number of entries invalidated across instances
        """
        caches = self.caches_for(entity_type)
        if not caches:
            logger.debug(f"[CACHE] No cache instances mapped for entity '{entity_type}'")
            return 0

        total = 0
        if entity_id is not None:
            pattern = re.compile(f"{re.escape(entity_type)}.*{re.escape(str(entity_id))}")
            for cache in caches:
                total += cache.invalidate_pattern(pattern)
        else:
            # Entries in a mapped instance belong to the entity whatever their own tag
            for cache in caches:
                total += cache.invalidate_by_entity(entity_type, cache.entity_type)

        if self.events is not None:
            self.events.publish(RegistryInvalidated(
                entity_type, None if entity_id is None else str(entity_id), total
            ))

        logger.info(
            f"[CACHE] Invalidated {total} entries for {entity_type}"
            + (f" #{entity_id}" if entity_id is not None else "")
        )
        return total

    def cleanup_all(self) -> int:
        """Clear every instance. Returns the number of entries dropped."""
        total = sum(cache.clear() for cache in self._caches.values())
        logger.info(f"[CACHE] All caches cleaned up ({total} entries)")
        return total

    def sweep_expired(self) -> int:
        return sum(cache.sweep_expired() for cache in self._caches.values())

    # =========================================================================
    # Statistics
    # =========================================================================

    def get_global_stats(self) -> Dict[str, Any]:
        """
        Aggregate statistics across instances.

        Returns:
            {"caches": {name: stats}, "totals": {...}, "responsiveness": {...}}
        """
        caches: Dict[str, Any] = {}
        totals = {"entries": 0, "bytes": 0, "hits": 0, "misses": 0, "compression_savings": 0}
        responsiveness = {"lcp": 0.0, "fid": 0.0, "cls": 0.0}

        for name, cache in self._caches.items():
            stats = cache.get_stats()
            caches[name] = stats.to_dict()

            totals["entries"] += stats.entries
            totals["bytes"] += stats.bytes
            totals["hits"] += stats.hits
            totals["misses"] += stats.misses
            totals["compression_savings"] += stats.compression_savings

            for metric in responsiveness:
                responsiveness[metric] += stats.responsiveness.get(metric, 0.0)

        lookups = totals["hits"] + totals["misses"]
        hit_rate = totals["hits"] / lookups if lookups > 0 else 0.0
        totals["hit_rate"] = round(hit_rate, 4)
        totals["efficiency"] = Efficiency.from_hit_rate(hit_rate).value

        return {
            "caches": caches,
            "totals": totals,
            "responsiveness": {k: round(v, 3) for k, v in responsiveness.items()},
        }

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def init(self) -> None:
        """Start the background monitor."""
        if self._monitor_task is None or self._monitor_task.done():
            self._monitor_task = asyncio.create_task(self._monitor_loop())
            logger.info(f"[CACHE] Monitor started (interval={self.stats_interval}s)")

    async def shutdown(self) -> None:
        """Stop the monitor and drop every entry."""
        task, self._monitor_task = self._monitor_task, None
        if task is not None:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        self.cleanup_all()

    def monitor_once(self) -> int:
        """
        One monitor pass: sweep expired entries, log statistics and warn on
        poor efficiency.

        Returns:
            Number of expired entries swept
        """
        swept = self.sweep_expired()

        for name, cache in self._caches.items():
            stats = cache.get_stats()

            logger.debug(
                f"[CACHE] {name}: entries={stats.entries} hit_rate={stats.hit_rate:.2%} "
                f"efficiency={stats.efficiency.value} bytes={stats.bytes}"
            )

            if stats.efficiency == Efficiency.POOR and stats.operations > MIN_OPERATIONS_FOR_ALERT:
                logger.warning(
                    f"[CACHE] Poor cache efficiency for {name}: hit_rate={stats.hit_rate:.2%} "
                    f"over {stats.operations} operations"
                )
                self._reporter.capture_message(
                    f"Poor cache efficiency for {name}",
                    level="warning",
                    tags={"component": "cache_registry", "cache": name},
                    extra=stats.to_dict(),
                )

            if self.events is not None:
                self.events.publish(CacheStatsSnapshot(name, stats.to_dict()))

        if swept:
            logger.info(f"[CACHE] Swept {swept} expired entries")
        return swept

    async def _monitor_loop(self) -> None:
        while True:
            await asyncio.sleep(self.stats_interval)
            try:
                self.monitor_once()
            except Exception as e:
                logger.error(f"[CACHE] Monitor pass failed: {e}")
