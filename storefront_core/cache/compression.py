"""
Compression codec for cache payloads.

Values are serialized to compact JSON text. Small payloads are stored as
text; larger ones go through an ordered list of strategies and the first
success wins:

1. StreamingDeflateStrategy ("native"): zlib compressobj fed in chunks,
   yielding to the event loop between chunks
2. GzipStrategy ("fallback"): one-shot gzip

If every strategy fails the text is stored as-is and the failure is kept
on the payload's ``error`` field.

Feature: memory-cache
"""

import asyncio
import gzip
import json
import logging
import zlib
from dataclasses import dataclass
from typing import Any, List, Optional, Protocol, Sequence

from storefront_core.cache.models import CompressedPayload, CompressionMethod
from storefront_core.core.errors import (
    CacheSerializationError,
    CompressionFailure,
    UnknownCompressionMethod,
)

logger = logging.getLogger(__name__)

DEFAULT_THRESHOLD = 4000
AGGRESSIVE_THRESHOLD = 2000

# Chunk size fed to the streaming compressor before yielding
STREAM_CHUNK_SIZE = 64 * 1024

# gzip container for zlib streams
GZIP_WBITS = 16 + zlib.MAX_WBITS


@dataclass(frozen=True)
class StrategyResult:
    """Either a compressed payload or the error that prevented it."""
    payload: Optional[bytes] = None
    error: Optional[BaseException] = None

    @property
    def ok(self) -> bool:
        return self.error is None and self.payload is not None


class CompressionStrategy(Protocol):
    method: CompressionMethod

    async def compress(self, data: bytes) -> StrategyResult:
        ...

    async def decompress(self, payload: bytes) -> bytes:
        ...


class StreamingDeflateStrategy:
    """Chunked zlib compression producing a gzip stream."""

    method = CompressionMethod.NATIVE

    def __init__(self, level: int = 6, chunk_size: int = STREAM_CHUNK_SIZE):
        self.level = level
        self.chunk_size = chunk_size

    async def compress(self, data: bytes) -> StrategyResult:
        try:
            compressor = zlib.compressobj(self.level, zlib.DEFLATED, GZIP_WBITS)
            chunks: List[bytes] = []
            for offset in range(0, len(data), self.chunk_size):
                chunks.append(compressor.compress(data[offset:offset + self.chunk_size]))
                await asyncio.sleep(0)
            chunks.append(compressor.flush())
            return StrategyResult(payload=b"".join(chunks))
        except (zlib.error, MemoryError, ValueError) as e:
            return StrategyResult(error=e)

    async def decompress(self, payload: bytes) -> bytes:
        decompressor = zlib.decompressobj(GZIP_WBITS)
        chunks: List[bytes] = []
        for offset in range(0, len(payload), self.chunk_size):
            chunks.append(decompressor.decompress(payload[offset:offset + self.chunk_size]))
            await asyncio.sleep(0)
        chunks.append(decompressor.flush())
        if not decompressor.eof:
            raise CompressionFailure("Truncated deflate stream")
        return b"".join(chunks)


class GzipStrategy:
    """Synchronous one-shot gzip."""

    method = CompressionMethod.FALLBACK

    def __init__(self, level: int = 6):
        self.level = level

    async def compress(self, data: bytes) -> StrategyResult:
        try:
            return StrategyResult(payload=gzip.compress(data, compresslevel=self.level))
        except (OSError, MemoryError, ValueError) as e:
            return StrategyResult(error=e)

    async def decompress(self, payload: bytes) -> bytes:
        return gzip.decompress(payload)


def default_strategies() -> List[CompressionStrategy]:
    return [StreamingDeflateStrategy(), GzipStrategy()]


def serialize(value: Any) -> str:
    """Canonical text form of a cacheable value."""
    try:
        return json.dumps(value, ensure_ascii=False, separators=(",", ":"), allow_nan=False)
    except (TypeError, ValueError) as e:
        raise CacheSerializationError(f"Value is not JSON serializable: {e}") from e


class Compressor:
    """
    Threshold-based, reversible, size-reporting codec.

    Usage:
        codec = Compressor(threshold=4000)
        stored = await codec.compress({"article_id": 1, "body": "..."})
        value = await codec.decompress(stored)

    Args:
        threshold: Serialized size in bytes below which nothing is compressed
        strategies: Ordered strategies; the first success is used
    """

    def __init__(
        self,
        threshold: int = DEFAULT_THRESHOLD,
        strategies: Optional[Sequence[CompressionStrategy]] = None,
    ):
        self.threshold = threshold
        self._strategies = list(strategies) if strategies is not None else default_strategies()
        self._by_method = {s.method: s for s in self._strategies}

    @property
    def strategies(self) -> List[CompressionStrategy]:
        return list(self._strategies)

    async def compress(self, value: Any, enabled: bool = True) -> CompressedPayload:
        text = serialize(value)
        data = text.encode("utf-8")
        size = len(data)

        if not enabled or size < self.threshold:
            return CompressedPayload(
                payload=text,
                original_size=size,
                compressed_size=size,
                compressed=False,
                method=CompressionMethod.NONE,
            )

        last_error: Optional[BaseException] = None
        for strategy in self._strategies:
            result = await strategy.compress(data)
            if result.ok:
                return CompressedPayload(
                    payload=result.payload,
                    original_size=size,
                    compressed_size=len(result.payload),
                    compressed=True,
                    method=strategy.method,
                )
            last_error = result.error
            logger.debug(
                f"[CACHE] {strategy.method.value} compression failed, trying next: {result.error}"
            )

        logger.error(f"[CACHE] All compression methods failed: {last_error}")
        return CompressedPayload(
            payload=text,
            original_size=size,
            compressed_size=size,
            compressed=False,
            method=CompressionMethod.NONE,
            error=str(last_error) if last_error else "no compression strategy available",
        )

    async def decompress(self, stored: CompressedPayload) -> Any:
        if stored.method == CompressionMethod.NONE:
            text = stored.payload if isinstance(stored.payload, str) else stored.payload.decode("utf-8")
            return json.loads(text)

        strategy = self._by_method.get(stored.method)
        if strategy is None:
            raise UnknownCompressionMethod(getattr(stored.method, "value", str(stored.method)))

        try:
            raw = await strategy.decompress(stored.payload)
            return json.loads(raw.decode("utf-8"))
        except CompressionFailure:
            raise
        except (zlib.error, OSError, EOFError, UnicodeDecodeError, ValueError) as e:
            raise CompressionFailure(f"Failed to decompress cache value: {e}") from e
