"""In-memory caching of transformed images."""

import asyncio
import hashlib
import json
import logging
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Callable, Optional, Protocol

from image_gateway.api.config import CACHE_MAX_SIZE_MB, FLOAT_PRECISION
from image_gateway.api.models import TransformRequest, round_adjustment

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CachedArtifact:
    """Encoded image bytes and their content type."""

    data: bytes
    content_type: str


class CacheBackend(Protocol):
    """Key-value store used by CacheService."""

    def get(self, key: str) -> Optional[CachedArtifact]: ...

    def set(self, key: str, value: CachedArtifact) -> None: ...


class LRUCache:
    """In-memory LRU cache with size limit and per-entry expiry."""

    def __init__(
        self,
        max_size_mb: float = CACHE_MAX_SIZE_MB,
        ttl_seconds: float = 86400,
        clock: Callable[[], float] = time.monotonic,
    ):
        """Initialize LRU cache with size limit in megabytes and entry TTL."""
        self.max_size_bytes = int(max_size_mb * 1024 * 1024)
        self.ttl_seconds = ttl_seconds
        self.clock = clock
        self.current_size = 0
        self.cache: OrderedDict[str, tuple[CachedArtifact, float]] = OrderedDict()

    def __len__(self) -> int:
        return len(self.cache)

    def get(self, key: str) -> Optional[CachedArtifact]:
        """Get value from cache, moving to end (most recently used)."""
        entry = self.cache.pop(key, None)
        if entry is None:
            logger.debug(f"Memory cache miss: {key}")
            return None

        value, expires_at = entry
        if self.clock() >= expires_at:
            self.current_size -= len(value.data)
            logger.debug(f"Memory cache expired: {key}")
            return None

        self.cache[key] = entry
        logger.debug(f"Memory cache hit: {key}")
        return value

    def set(self, key: str, value: CachedArtifact) -> None:
        """Set value in cache, evicting LRU items if needed."""
        value_size = len(value.data)

        if key in self.cache:
            old_value, _ = self.cache.pop(key)
            self.current_size -= len(old_value.data)

        if value_size > self.max_size_bytes:
            logger.warning(
                f"Value too large for memory cache: {value_size / (1024 * 1024):.2f}MB"
            )
            return

        while self.current_size + value_size > self.max_size_bytes and self.cache:
            evicted_key, (evicted, _) = self.cache.popitem(last=False)
            self.current_size -= len(evicted.data)
            logger.debug(f"Memory cache evicted: {evicted_key} ({len(evicted.data)} bytes)")

        self.cache[key] = (value, self.clock() + self.ttl_seconds)
        self.current_size += value_size
        logger.debug(
            f"Memory cache set: {key} ({value_size} bytes, "
            f"total: {self.current_size / (1024 * 1024):.2f}MB)"
        )

    def clear(self) -> None:
        """Clear all items from cache."""
        self.cache.clear()
        self.current_size = 0
        logger.info("Memory cache cleared")


class CacheService:
    """
    Cache adapter used by the transform pipeline.

    The cache only speeds things up: backend failures are logged and reported
    as a miss (on read) or ignored (on write).
    """

    def __init__(self, backend: Optional[CacheBackend] = None) -> None:
        """Initialize cache service with an in-memory LRU cache unless a backend is given."""
        self.backend: CacheBackend = backend if backend is not None else LRUCache()

    async def get(self, key: str) -> Optional[CachedArtifact]:
        """
        Get cached artifact.

        Args:
            key: Cache key

        Returns:
            Cached artifact, or None on miss or backend failure
        """
        try:
            return self.backend.get(key)
        except Exception as e:
            logger.warning(f"Cache read failed for {key}: {e}")
            return None

    async def set(self, key: str, value: CachedArtifact) -> None:
        """
        Store an artifact.

        Args:
            key: Cache key
            value: Artifact to cache
        """
        try:
            self.backend.set(key, value)
        except Exception as e:
            logger.warning(f"Cache write failed for {key}: {e}")


class CacheWriter:
    """
    Runs cache writes as detached tasks.

    Writes are scheduled on the event loop independently of the request that
    produced them, so cancelling the request does not cancel the write.
    """

    def __init__(self, cache_service: CacheService) -> None:
        self.cache_service = cache_service
        self._tasks: set[asyncio.Task[None]] = set()

    @property
    def pending(self) -> int:
        return len(self._tasks)

    def schedule(self, key: str, artifact: CachedArtifact) -> asyncio.Task[None]:
        """Start writing an artifact in the background."""
        task = asyncio.get_running_loop().create_task(
            self.cache_service.set(key, artifact), name=f"cache-write:{key}"
        )
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def drain(self) -> None:
        """Wait for every pending write to finish."""
        if self._tasks:
            logger.info(f"Waiting for {len(self._tasks)} pending cache writes")
            await asyncio.gather(*list(self._tasks), return_exceptions=True)


def _format_float(value: float) -> str:
    return f"{round_adjustment(value):.{FLOAT_PRECISION}f}"


def build_cache_key(request: TransformRequest) -> str:
    """
    Generate a deterministic cache key from every output-affecting parameter.

    Fields are serialized as a JSON array in a fixed order, so string values
    cannot collide across field boundaries. Floats are rounded to a fixed
    precision first.

    Args:
        request: Normalized transform request

    Returns:
        Cache key string
    """
    crop = request.crop
    key_parts = [
        request.url,
        request.width,
        request.height,
        request.fit.value,
        request.format.value,
        request.quality,
        [crop.x, crop.y, crop.width, crop.height] if crop else None,
        request.blur,
        _format_float(request.sharpen),
        _format_float(request.brightness),
        _format_float(request.contrast),
        _format_float(request.saturation),
        request.auto_optimize,
        request.grayscale,
        request.flip.value,
        request.rotate,
        request.background,
        request.strip,
    ]
    key_string = json.dumps(key_parts, separators=(",", ":"))

    key_hash = hashlib.sha256(key_string.encode("utf-8")).hexdigest()[:32]

    return f"transform:{key_hash}"
