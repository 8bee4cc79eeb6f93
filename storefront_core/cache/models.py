"""
Cache Data Models.

Defines cache entry structures, per-instance profiles and statistics.

Feature: memory-cache
"""

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, model_validator

# Edge runtime limits applied to edge-compatible profiles
EDGE_MAX_ENTRIES = 50
EDGE_MAX_BYTES = 5 * 1024 * 1024

DEFAULT_MAX_BYTES = 100 * 1024 * 1024


class CompressionMethod(str, Enum):
    """How a payload is stored."""
    NONE = "none"          # Serialized text, below threshold or compression off
    NATIVE = "native"      # Streaming deflate
    FALLBACK = "fallback"  # One-shot gzip


class Efficiency(str, Enum):
    """Hit-rate banding used for alerting."""
    EXCELLENT = "excellent"
    GOOD = "good"
    AVERAGE = "average"
    POOR = "poor"

    @classmethod
    def from_hit_rate(cls, hit_rate: float) -> "Efficiency":
        if hit_rate > 0.8:
            return cls.EXCELLENT
        if hit_rate > 0.6:
            return cls.GOOD
        if hit_rate > 0.4:
            return cls.AVERAGE
        return cls.POOR


class CacheProfile(BaseModel):
    """
    Configuration for one cache instance.

    Unknown fields are rejected and the model is immutable once built.
    Edge-compatible profiles are clamped to edge runtime limits.
    """
    model_config = ConfigDict(extra="forbid", frozen=True)

    name: str = Field(..., min_length=1)
    entity_type: str = Field(default="generic", min_length=1)
    ttl_seconds: float = Field(default=300, gt=0)
    max_entries: int = Field(default=500, ge=1)
    max_bytes: int = Field(default=DEFAULT_MAX_BYTES, ge=1)
    compress: bool = True
    compression_threshold: Optional[int] = Field(default=None, ge=0)
    must_revalidate: bool = False
    max_entry_fraction: float = Field(default=0.1, gt=0, le=1)
    edge_compatible: bool = False

    @model_validator(mode="before")
    @classmethod
    def clamp_edge_limits(cls, data: Any) -> Any:
        if isinstance(data, dict) and data.get("edge_compatible"):
            data = dict(data)
            data["max_entries"] = min(data.get("max_entries", EDGE_MAX_ENTRIES), EDGE_MAX_ENTRIES)
            data["max_bytes"] = min(data.get("max_bytes", EDGE_MAX_BYTES), EDGE_MAX_BYTES)
            data["compress"] = False
        return data

    @property
    def max_entry_bytes(self) -> int:
        """Largest stored size a single entry may have."""
        return int(self.max_bytes * self.max_entry_fraction)


@dataclass(frozen=True)
class CompressedPayload:
    """Output of the compression codec."""
    payload: Union[str, bytes]
    original_size: int
    compressed_size: int
    compressed: bool
    method: CompressionMethod
    error: Optional[str] = None

    @property
    def savings(self) -> int:
        return self.original_size - self.compressed_size if self.compressed else 0


@dataclass
class CacheEntry:
    """
    A single cache entry with metadata.

    Holds the compressed payload, never the live value.
    """
    key: str
    data: CompressedPayload
    entity_type: str
    ttl: float
    created_at: float = field(default_factory=time.monotonic)
    last_accessed: float = field(default_factory=time.monotonic)
    access_count: int = 0

    @property
    def size(self) -> int:
        return self.data.compressed_size

    def is_expired(self, now: float) -> bool:
        """Check if entry has expired based on TTL."""
        return now - self.created_at > self.ttl

    def touch(self, now: float) -> None:
        """Update last access time and increment counter."""
        self.last_accessed = now
        self.access_count += 1

    def remaining_ttl(self, now: float) -> float:
        return max(0.0, self.ttl - (now - self.created_at))


@dataclass
class Responsiveness:
    """
    Web-vitals style counters nudged by cache latency.

    Reporting only: fast hits raise lcp, misses lower it; operations under
    50ms raise fid, over 200ms lower it. cls is always 0.
    """
    lcp: float = 0.0
    fid: float = 0.0
    cls: float = 0.0

    def record(self, operation: str, duration_ms: float) -> None:
        if operation == "hit" and duration_ms < 100:
            self.lcp += 0.1
        elif operation == "miss":
            self.lcp -= 0.05

        if duration_ms < 50:
            self.fid += 0.1
        elif duration_ms > 200:
            self.fid -= 0.1

    def to_dict(self) -> Dict[str, float]:
        return {"lcp": round(self.lcp, 3), "fid": round(self.fid, 3), "cls": self.cls}


@dataclass
class CacheMetrics:
    """Mutable operation counters for one instance."""
    hits: int = 0
    misses: int = 0
    sets: int = 0
    deletes: int = 0
    errors: int = 0
    evictions: int = 0
    expirations: int = 0
    rejected: int = 0
    invalidations: int = 0
    compression_savings: int = 0
    responsiveness: Responsiveness = field(default_factory=Responsiveness)

    @property
    def hit_rate(self) -> float:
        total = self.hits + self.misses
        return self.hits / total if total > 0 else 0.0


@dataclass
class CacheStats:
    """Statistics snapshot for cache performance monitoring."""
    name: str
    entity_type: str
    entries: int
    bytes: int
    max_entries: int
    max_bytes: int
    hits: int = 0
    misses: int = 0
    sets: int = 0
    deletes: int = 0
    errors: int = 0
    evictions: int = 0
    expirations: int = 0
    rejected: int = 0
    invalidations: int = 0
    compression_savings: int = 0
    responsiveness: Dict[str, float] = field(default_factory=dict)
    edge_compatible: bool = False

    @property
    def hit_rate(self) -> float:
        total = self.hits + self.misses
        return self.hits / total if total > 0 else 0.0

    @property
    def efficiency(self) -> Efficiency:
        return Efficiency.from_hit_rate(self.hit_rate)

    @property
    def utilization(self) -> float:
        return self.bytes / self.max_bytes if self.max_bytes else 0.0

    @property
    def operations(self) -> int:
        return self.hits + self.misses

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "name": self.name,
            "entity_type": self.entity_type,
            "entries": self.entries,
            "bytes": self.bytes,
            "max_entries": self.max_entries,
            "max_bytes": self.max_bytes,
            "hit_rate": round(self.hit_rate, 4),
            "efficiency": self.efficiency.value,
            "operations": {
                "hits": self.hits,
                "misses": self.misses,
                "sets": self.sets,
                "deletes": self.deletes,
                "errors": self.errors,
            },
            "evictions": self.evictions,
            "expirations": self.expirations,
            "rejected": self.rejected,
            "invalidations": self.invalidations,
            "compression_savings": self.compression_savings,
            "utilization": round(self.utilization, 6),
            "responsiveness": dict(self.responsiveness),
            "edge_compatible": self.edge_compatible,
        }
