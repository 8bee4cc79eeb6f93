"""
Typed event bus for cache and rate-limit observability.

Events are frozen dataclasses from a closed set (see CacheEvent and
RateLimitEvent). Consumers subscribe per variant, or to everything, and
pattern-match on the concrete type:

    def on_event(event: Event) -> None:
        match event:
            case CacheHit(cache=name):
                dashboard.hit(name)
            case RateLimitBlocked(ip=ip, blocked_until=until):
                tracker.block(ip, until)

Publishing with no subscribers is a no-op, and a failing subscriber never
reaches the publisher.
"""

import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Tuple, Type, Union, get_args

logger = logging.getLogger(__name__)


class EvictionReason(str, Enum):
    """Why an entry left a cache without an explicit delete."""
    CAPACITY = "capacity"
    BYTE_BUDGET = "byte_budget"
    EXPIRED = "expired"


# =============================================================================
# Cache events
# =============================================================================

@dataclass(frozen=True)
class CacheHit:
    cache: str
    key: str
    entity_type: str
    duration_ms: float
    compressed: bool


@dataclass(frozen=True)
class CacheMiss:
    cache: str
    key: str
    entity_type: str
    duration_ms: float


@dataclass(frozen=True)
class CacheSet:
    cache: str
    key: str
    entity_type: str
    size: int
    compressed: bool
    method: str
    duration_ms: float


@dataclass(frozen=True)
class CacheEvicted:
    cache: str
    key: str
    entity_type: str
    reason: EvictionReason


@dataclass(frozen=True)
class CacheInvalidated:
    cache: str
    scope: str  # pattern or entity type
    count: int


@dataclass(frozen=True)
class CacheCleared:
    cache: str
    count: int


@dataclass(frozen=True)
class CacheErrorEvent:
    cache: str
    operation: str
    key: str
    error: str


@dataclass(frozen=True)
class CacheStatsSnapshot:
    cache: str
    stats: Dict[str, Any]


@dataclass(frozen=True)
class RegistryInvalidated:
    entity_type: str
    entity_id: Optional[str]
    count: int


# =============================================================================
# Rate limit events
# =============================================================================

@dataclass(frozen=True)
class RateLimitAllowed:
    key: str
    path: str
    preset: str


@dataclass(frozen=True)
class RateLimitViolated:
    key: str
    ip: str  # anonymized
    path: str
    preset: str
    severity: str
    ratio: float
    threat_level: int
    detection_points: Tuple[str, ...]
    reference: str


@dataclass(frozen=True)
class RateLimitBlocked:
    ip: str  # anonymized
    blocked_until: float
    severity: str
    reason: str
    reference: str


CacheEvent = Union[
    CacheHit,
    CacheMiss,
    CacheSet,
    CacheEvicted,
    CacheInvalidated,
    CacheCleared,
    CacheErrorEvent,
    CacheStatsSnapshot,
    RegistryInvalidated,
]

RateLimitEvent = Union[RateLimitAllowed, RateLimitViolated, RateLimitBlocked]

Event = Union[CacheEvent, RateLimitEvent]

EVENT_TYPES: Tuple[type, ...] = get_args(CacheEvent) + get_args(RateLimitEvent)

Handler = Callable[[Any], None]


@dataclass
class EventBusMetrics:
    published: int = 0
    delivered: int = 0
    handler_errors: int = 0
    last_duration_ms: Dict[str, float] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "published": self.published,
            "delivered": self.delivered,
            "handler_errors": self.handler_errors,
            "last_duration_ms": dict(self.last_duration_ms),
        }


class EventBus:
    """
    Publish/subscribe over the closed set of event dataclasses.

    Usage:
        bus = EventBus()
        unsubscribe = bus.subscribe(CacheMiss, lambda e: misses.append(e.key))
        bus.subscribe_all(audit_log.write)
        ...
        unsubscribe()
    """

    def __init__(self):
        self._handlers: Dict[type, List[Handler]] = {}
        self._catch_all: List[Handler] = []
        self.metrics = EventBusMetrics()

    def subscribe(self, event_type: Type, handler: Handler) -> Callable[[], None]:
        """
        Register a handler for one event variant.

        Returns:
            A callable removing the subscription
        """
        if event_type not in EVENT_TYPES:
            raise TypeError(f"Unknown event type: {event_type!r}")

        handlers = self._handlers.setdefault(event_type, [])
        handlers.append(handler)

        def unsubscribe() -> None:
            if handler in handlers:
                handlers.remove(handler)

        return unsubscribe

    def subscribe_all(self, handler: Handler) -> Callable[[], None]:
        """Register a handler receiving every event."""
        self._catch_all.append(handler)

        def unsubscribe() -> None:
            if handler in self._catch_all:
                self._catch_all.remove(handler)

        return unsubscribe

    def publish(self, event: Event) -> None:
        event_type = type(event)
        handlers = self._handlers.get(event_type, [])

        self.metrics.published += 1
        if not handlers and not self._catch_all:
            return

        start = time.perf_counter()
        for handler in [*handlers, *self._catch_all]:
            try:
                handler(event)
                self.metrics.delivered += 1
            except Exception as e:
                self.metrics.handler_errors += 1
                logger.error(f"Event handler failed for {event_type.__name__}: {e}")

        self.metrics.last_duration_ms[event_type.__name__] = (
            (time.perf_counter() - start) * 1000
        )

    def has_subscribers(self, event_type: Optional[Type] = None) -> bool:
        if self._catch_all:
            return True
        if event_type is None:
            return any(self._handlers.values())
        return bool(self._handlers.get(event_type))

    def clear(self) -> None:
        self._handlers.clear()
        self._catch_all.clear()
