"""
Memory Cache - bounded, compressing key-value store.

One instance per data category (orders, templates, blog articles, ...).

Features:
- TTL expiry, checked on read and by sweep_expired()
- LRU eviction on entry count and byte budget
- Threshold-based compression of stored values
- Single-flight get_or_set (no cache stampede on cold keys)
- Pattern and entity-type invalidation
- Metrics collection

Every public method catches its own failures: the cache is an
optimization, so errors are logged, reported and turned into a miss.

Feature: memory-cache
"""

import asyncio
import inspect
import logging
import re
import time
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

from storefront_core.cache.compression import Compressor
from storefront_core.cache.keys import detect_entity_type
from storefront_core.cache.models import CacheEntry, CacheMetrics, CacheProfile, CacheStats
from storefront_core.core.bounded_map import BoundedMap
from storefront_core.core.errors import (
    CacheCapacityExceeded,
    CacheOperationError,
    CompressionFailure,
)
from storefront_core.core.error_reporting import ErrorReporter, LoggingErrorReporter
from storefront_core.core.events import (
    CacheCleared,
    CacheErrorEvent,
    CacheEvicted,
    CacheHit,
    CacheInvalidated,
    CacheMiss,
    CacheSet,
    EventBus,
    EvictionReason,
)

logger = logging.getLogger(__name__)

# Detected types too vague to tag an entry with
_UNSPECIFIC_TYPES = {"generic", "primitive", "empty_list", "generic_list", "primitive_list"}

ComputeFn = Callable[[], Union[Any, Awaitable[Any]]]


class MemoryCache:
    """
    In-process TTL + LRU cache with compression.

    Usage:
        cache = MemoryCache(CacheProfile(name="templates", entity_type="template"))

        template = await cache.get_or_set(
            "storefront:template:id=42",
            lambda: repository.fetch_template(42),
        )

        # After a mutation
        cache.invalidate_by_entity("template")

    Args:
        profile: Size, TTL and compression policy
        compressor: Shared codec (a profile threshold override wins)
        events: Bus receiving cache events
        error_reporter: External error tracker
        log_operations: Log hits/misses/sets at DEBUG
        clock: Monotonic time source in seconds
    """

    def __init__(
        self,
        profile: CacheProfile,
        *,
        compressor: Optional[Compressor] = None,
        events: Optional[EventBus] = None,
        error_reporter: Optional[ErrorReporter] = None,
        log_operations: bool = False,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.profile = profile

        if compressor is None:
            compressor = Compressor()
        if profile.compression_threshold is not None:
            compressor = Compressor(
                threshold=profile.compression_threshold,
                strategies=compressor.strategies,
            )
        self._compressor = compressor

        self._events = events
        self._reporter = error_reporter or LoggingErrorReporter()
        self._log_operations = log_operations
        self._clock = clock

        self._entries: BoundedMap[str, CacheEntry] = BoundedMap(
            profile.max_entries, on_evict=self._on_capacity_evict
        )
        self._bytes = 0

        # In-flight get_or_set computations, one per key
        self._pending: Dict[str, asyncio.Future] = {}

        self.metrics = CacheMetrics()

        logger.debug(
            f"MemoryCache initialized: name={profile.name}, "
            f"ttl={profile.ttl_seconds}s, max_entries={profile.max_entries}, "
            f"max_bytes={profile.max_bytes}, compress={profile.compress}"
        )

    @property
    def name(self) -> str:
        return self.profile.name

    @property
    def entity_type(self) -> str:
        return self.profile.entity_type

    @property
    def size(self) -> int:
        return len(self._entries)

    @property
    def bytes(self) -> int:
        return self._bytes

    # =========================================================================
    # Core operations
    # =========================================================================

    async def get(self, key: str) -> Any:
        """
        Return the cached value, or None on miss or expiry.

        A hit refreshes recency (LRU) but not the entry's age.
        """
        start = time.perf_counter()

        try:
            entry = self._entries.get(key)

            if entry is not None and entry.is_expired(self._clock()):
                self._remove(key, EvictionReason.EXPIRED)
                entry = None

            if entry is None:
                self.metrics.misses += 1
                duration = self._elapsed_ms(start)
                self.metrics.responsiveness.record("miss", duration)
                self._publish(CacheMiss(self.name, key, self.entity_type, duration))

                if self._log_operations:
                    logger.debug(f"[CACHE] MISS {self.name} key='{key}'")
                return None

            value = await self._compressor.decompress(entry.data)

            entry.touch(self._clock())
            if self._entries.get(key) is entry:
                self._entries.touch(key)

            self.metrics.hits += 1
            duration = self._elapsed_ms(start)
            self.metrics.responsiveness.record("hit", duration)
            self._publish(CacheHit(self.name, key, entry.entity_type, duration, entry.data.compressed))

            if self._log_operations:
                logger.debug(
                    f"[CACHE] HIT {self.name} key='{key}' "
                    f"age={self._clock() - entry.created_at:.0f}s"
                )
            return value

        except Exception as e:
            if isinstance(e, CompressionFailure):
                self._discard(key)
            self._handle_error("get", key, e)
            return None

    async def set(
        self,
        key: str,
        value: Any,
        ttl: Optional[float] = None,
        entity_type: Optional[str] = None,
    ) -> bool:
        """
        Store a value.

        Args:
            key: Cache key
            value: JSON-serializable value
            ttl: Seconds to live (profile default when omitted)
            entity_type: Tag for invalidation (detected from the value when omitted)

        Returns:
            True if stored, False if rejected or failed
        """
        start = time.perf_counter()

        try:
            if not isinstance(key, str) or not key:
                raise CacheOperationError(f"Invalid cache key: {key!r}")

            ttl = self.profile.ttl_seconds if ttl is None else ttl
            if ttl <= 0:
                raise CacheOperationError(f"Invalid ttl for '{key}': {ttl}")

            data = await self._compressor.compress(value, enabled=self.profile.compress)

            if data.compressed_size > self.profile.max_entry_bytes:
                raise CacheCapacityExceeded(key, data.compressed_size, self.profile.max_entry_bytes)

            if data.error:
                logger.warning(f"[CACHE] {self.name}: storing '{key}' uncompressed ({data.error})")

            # Replacing resets the entry's age
            self._discard(key)

            while self._entries and self._bytes + data.compressed_size > self.profile.max_bytes:
                self._evict_oldest(EvictionReason.BYTE_BUDGET)

            now = self._clock()
            resolved_type = entity_type or self._resolve_entity_type(value)
            entry = CacheEntry(
                key=key,
                data=data,
                entity_type=resolved_type,
                ttl=ttl,
                created_at=now,
                last_accessed=now,
            )

            self._entries.set(key, entry)
            self._bytes += entry.size

            self.metrics.sets += 1
            self.metrics.compression_savings += data.savings

            duration = self._elapsed_ms(start)
            self.metrics.responsiveness.record("set", duration)
            self._publish(CacheSet(
                self.name, key, resolved_type, entry.size, data.compressed, data.method.value, duration
            ))

            if self._log_operations:
                logger.debug(
                    f"[CACHE] SET {self.name} key='{key}' size={entry.size} "
                    f"method={data.method.value} ttl={ttl}s"
                )
            return True

        except CacheCapacityExceeded as e:
            self.metrics.rejected += 1
            logger.warning(f"[CACHE] {self.name}: {e}")
            return False
        except Exception as e:
            self._handle_error("set", key, e)
            return False

    async def get_or_set(
        self,
        key: str,
        compute: ComputeFn,
        ttl: Optional[float] = None,
        entity_type: Optional[str] = None,
    ) -> Any:
        """
        Return the cached value or compute, store and return it.

        Concurrent callers for the same absent key share one computation:
        the first registers a future, the others await it and receive the
        same value or the same exception. Errors from ``compute`` are not
        cached and propagate to every waiter.
        """
        while True:
            pending = self._pending.get(key)
            if pending is not None:
                return await asyncio.shield(pending)

            cached = await self.get(key)
            # A stored None is a hit, not a reason to recompute
            if cached is not None or self.has(key):
                return cached

            # Another caller may have started computing while get() awaited
            if key not in self._pending:
                break

        future = asyncio.get_running_loop().create_future()
        self._pending[key] = future

        try:
            result = compute()
            if inspect.isawaitable(result):
                result = await result
        except asyncio.CancelledError:
            future.cancel()
            raise
        except Exception as e:
            future.set_exception(e)
            # Mark retrieved so a computation without waiters does not log
            future.exception()
            raise
        else:
            await self.set(key, result, ttl=ttl, entity_type=entity_type)
            future.set_result(result)
            return result
        finally:
            self._pending.pop(key, None)

    def has(self, key: str) -> bool:
        """True if a non-expired entry exists (no metrics, no recency change)."""
        entry = self._entries.get(key)
        return entry is not None and not entry.is_expired(self._clock())

    def keys(self) -> List[str]:
        return self._entries.keys()

    def delete(self, key: str) -> bool:
        try:
            existed = self._discard(key) is not None
            if existed:
                self.metrics.deletes += 1
            return existed
        except Exception as e:
            self._handle_error("delete", key, e)
            return False

    def clear(self) -> int:
        """
        Clear all cache entries.

        Returns:
            Number of entries cleared
        """
        try:
            count = self._entries.clear()
            self._bytes = 0
            self._publish(CacheCleared(self.name, count))
            if count:
                logger.info(f"[CACHE] Cleared {count} entries from {self.name}")
            return count
        except Exception as e:
            self._handle_error("clear", "all", e)
            return 0

    # =========================================================================
    # Invalidation
    # =========================================================================

    def invalidate_pattern(self, pattern: Union[str, "re.Pattern[str]"]) -> int:
        """
        Delete every key matching a regular expression (re.search).

        Returns:
            Number of entries invalidated
        """
        try:
            regex = pattern if isinstance(pattern, re.Pattern) else re.compile(pattern)
            keys = [key for key in self._entries.keys() if regex.search(key)]
            return self._invalidate(keys, regex.pattern)
        except Exception as e:
            self._handle_error("invalidate_pattern", str(pattern), e)
            return 0

    def invalidate_by_entity(self, entity_type: str, *aliases: str) -> int:
        """
        Delete every entry tagged with an entity type.

        Matches the exact type, its list variant, and any key containing the
        type name. Aliases are matched on the tag only.

        Returns:
            Number of entries invalidated
        """
        try:
            tags = {entity_type, f"{entity_type}_list"}
            for alias in aliases:
                tags.update((alias, f"{alias}_list"))
            keys = [
                key for key, entry in self._entries.items()
                if entry.entity_type in tags or entity_type in key
            ]
            return self._invalidate(keys, entity_type)
        except Exception as e:
            self._handle_error("invalidate_by_entity", entity_type, e)
            return 0

    def sweep_expired(self) -> int:
        """Remove every expired entry now instead of waiting for a read."""
        try:
            now = self._clock()
            expired = [key for key, entry in self._entries.items() if entry.is_expired(now)]
            for key in expired:
                self._remove(key, EvictionReason.EXPIRED)
            return len(expired)
        except Exception as e:
            self._handle_error("sweep_expired", "all", e)
            return 0

    # =========================================================================
    # Statistics
    # =========================================================================

    def get_stats(self) -> CacheStats:
        """Get current cache statistics."""
        m = self.metrics
        return CacheStats(
            name=self.name,
            entity_type=self.entity_type,
            entries=len(self._entries),
            bytes=self._bytes,
            max_entries=self.profile.max_entries,
            max_bytes=self.profile.max_bytes,
            hits=m.hits,
            misses=m.misses,
            sets=m.sets,
            deletes=m.deletes,
            errors=m.errors,
            evictions=m.evictions,
            expirations=m.expirations,
            rejected=m.rejected,
            invalidations=m.invalidations,
            compression_savings=m.compression_savings,
            responsiveness=m.responsiveness.to_dict(),
            edge_compatible=self.profile.edge_compatible,
        )

    # =========================================================================
    # Internals
    # =========================================================================

    def _resolve_entity_type(self, value: Any) -> str:
        detected = detect_entity_type(value)
        if detected in _UNSPECIFIC_TYPES:
            return self.entity_type
        return detected

    def _invalidate(self, keys: List[str], scope: str) -> int:
        for key in keys:
            self._discard(key)

        self.metrics.invalidations += len(keys)
        self._publish(CacheInvalidated(self.name, scope, len(keys)))

        if keys:
            logger.info(f"[CACHE] Invalidated {len(keys)} entries in {self.name} for '{scope}'")
        return len(keys)

    def _discard(self, key: str) -> Optional[CacheEntry]:
        entry = self._entries.pop(key)
        if entry is not None:
            self._bytes -= entry.size
        return entry

    def _remove(self, key: str, reason: EvictionReason) -> None:
        entry = self._discard(key)
        if entry is None:
            return
        if reason == EvictionReason.EXPIRED:
            self.metrics.expirations += 1
        else:
            self.metrics.evictions += 1
        self._publish(CacheEvicted(self.name, key, entry.entity_type, reason))

    def _evict_oldest(self, reason: EvictionReason) -> None:
        popped = self._entries.pop_oldest()
        if popped is None:
            return
        key, entry = popped
        self._bytes -= entry.size
        self.metrics.evictions += 1
        self._publish(CacheEvicted(self.name, key, entry.entity_type, reason))
        logger.debug(f"[CACHE] Evicted LRU entry from {self.name} ({reason.value}): {key}")

    def _on_capacity_evict(self, key: str, entry: CacheEntry) -> None:
        self._bytes -= entry.size
        self.metrics.evictions += 1
        self._publish(CacheEvicted(self.name, key, entry.entity_type, EvictionReason.CAPACITY))
        logger.debug(f"[CACHE] Evicted LRU entry from {self.name} (capacity): {key}")

    def _publish(self, event) -> None:
        if self._events is not None:
            self._events.publish(event)

    def _handle_error(self, operation: str, key: str, error: Exception) -> None:
        self.metrics.errors += 1
        logger.error(f"[CACHE] Cache error [{self.name}] during {operation} for key '{key}': {error}")

        try:
            self._reporter.capture_exception(
                error,
                tags={"component": "memory_cache", "operation": operation, "cache": self.name},
                extra={"key": key, "entity_type": self.entity_type},
            )
        except Exception as report_error:
            logger.error(f"[CACHE] Error reporter failed: {report_error}")

        self._publish(CacheErrorEvent(self.name, operation, key, str(error)))

    @staticmethod
    def _elapsed_ms(start: float) -> float:
        return (time.perf_counter() - start) * 1000
