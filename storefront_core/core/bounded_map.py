"""
Bounded Map - size-capped ordered mapping.

Shared storage primitive for cache entries, rate-limit windows, block
records and behaviour records. Entries are kept in insertion order;
re-setting a key moves it to the end, and inserting beyond capacity
evicts the oldest entry first.
"""

import logging
from collections import OrderedDict
from typing import Callable, Generic, Iterator, Optional, Tuple, TypeVar

logger = logging.getLogger(__name__)

K = TypeVar("K")
V = TypeVar("V")


class BoundedMap(Generic[K, V]):
    """
    OrderedDict wrapper with a hard entry limit.

    Usage:
        blocked = BoundedMap(max_size=1000)
        blocked.set("1.2.3.4", record)

        # Recency ordering (LRU) is opt-in through touch()
        blocked.touch("1.2.3.4")

    Args:
        max_size: Maximum number of entries (>= 1)
        on_evict: Called with (key, value) for every capacity eviction
    """

    def __init__(
        self,
        max_size: int,
        on_evict: Optional[Callable[[K, V], None]] = None,
    ):
        if max_size < 1:
            raise ValueError(f"max_size must be >= 1, got {max_size}")

        self.max_size = max_size
        self._on_evict = on_evict
        self._data: "OrderedDict[K, V]" = OrderedDict()
        self.evictions = 0

    def set(self, key: K, value: V) -> None:
        """Insert or replace a value; the key becomes the newest entry."""
        if key in self._data:
            del self._data[key]
        elif len(self._data) >= self.max_size:
            evicted_key, evicted = self._data.popitem(last=False)
            self.evictions += 1
            self._notify_evicted(evicted_key, evicted)

        self._data[key] = value

    def get(self, key: K, default: Optional[V] = None) -> Optional[V]:
        return self._data.get(key, default)

    def touch(self, key: K) -> None:
        """Mark a key as most recently used."""
        self._data.move_to_end(key)

    def pop(self, key: K, default: Optional[V] = None) -> Optional[V]:
        return self._data.pop(key, default)

    def pop_oldest(self) -> Optional[Tuple[K, V]]:
        """
        Remove and return the oldest entry.

        Explicit removals do not call on_evict; the caller owns the
        bookkeeping.
        """
        if not self._data:
            return None
        return self._data.popitem(last=False)

    def _notify_evicted(self, key: K, value: V) -> None:
        if self._on_evict is None:
            return
        try:
            self._on_evict(key, value)
        except Exception as e:
            logger.error(f"Eviction callback failed for {key!r}: {e}")

    def oldest_key(self) -> Optional[K]:
        return next(iter(self._data), None)

    def clear(self) -> int:
        count = len(self._data)
        self._data.clear()
        return count

    def keys(self):
        return list(self._data.keys())

    def items(self):
        return list(self._data.items())

    def values(self):
        return list(self._data.values())

    def __contains__(self, key: object) -> bool:
        return key in self._data

    def __len__(self) -> int:
        return len(self._data)

    def __iter__(self) -> Iterator[K]:
        return iter(list(self._data))

    def __repr__(self) -> str:
        return f"BoundedMap(size={len(self._data)}, max_size={self.max_size})"
