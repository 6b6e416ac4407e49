"""Content-addressed audio cache with LRU eviction and TTL expiry.

Maps request fingerprints to previously synthesized audio. The cache keeps
a byte budget: every write evicts least-recently-used entries until the
total fits. Entries older than the TTL are treated as misses and removed
when they are read, on every write, and by the periodic sweep.
"""

import logging
import threading
import time
from collections import OrderedDict
from collections.abc import Callable
from typing import Any

from .models import CacheEntry

logger = logging.getLogger(__name__)

DEFAULT_MAX_BYTES = 100 * 1024 * 1024
DEFAULT_TTL_SECONDS = 24 * 60 * 60


class AudioCache:
    """Thread-safe in-memory LRU cache for synthesized audio.

    Cache operations never raise for capacity reasons. A put that cannot
    fit even into an empty cache drops the entry and leaves the cache
    untouched.

    Example:
        cache = AudioCache(max_bytes=10 * 1024 * 1024, ttl_seconds=3600)
        request = SynthesisRequest("Deploy complete", "Rachel")

        audio = cache.get(request.fingerprint)
        if audio is None:
            audio = await provider.synthesize(request.text, request.voice_id)
            cache.put(request.fingerprint, audio)
    """

    def __init__(
        self,
        max_bytes: int = DEFAULT_MAX_BYTES,
        ttl_seconds: float | None = DEFAULT_TTL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Initialize the cache.

        Args:
            max_bytes: Byte budget for all cached audio
            ttl_seconds: Maximum entry age, or None to disable expiry
            clock: Monotonic clock used for timestamps

        Raises:
            ValueError: If max_bytes or ttl_seconds is negative
        """
        if max_bytes < 0:
            raise ValueError(f"max_bytes must be non-negative, got {max_bytes}")
        if ttl_seconds is not None and ttl_seconds < 0:
            raise ValueError(f"ttl_seconds must be non-negative, got {ttl_seconds}")

        self.max_bytes = max_bytes
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        # Iteration order is recency order: first item is least recently used
        self._entries: OrderedDict[str, CacheEntry] = OrderedDict()
        self._total_bytes = 0
        self._lock = threading.Lock()

        self.hits = 0
        self.misses = 0
        self.evictions = 0
        self.expirations = 0

        logger.info(
            f"Audio cache initialized with budget {max_bytes} bytes, "
            f"ttl {ttl_seconds if ttl_seconds is not None else 'disabled'}"
        )

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    @property
    def total_bytes(self) -> int:
        with self._lock:
            return self._total_bytes

    def get(self, fingerprint: str) -> bytes | None:
        """Look up cached audio.

        A hit refreshes the entry's access time and marks it most recently
        used. An expired entry is removed and reported as a miss.

        Args:
            fingerprint: Request fingerprint

        Returns:
            Cached audio bytes, or None on miss
        """
        with self._lock:
            entry = self._entries.get(fingerprint)
            if entry is None:
                self.misses += 1
                logger.debug(f"Cache miss for key {fingerprint[:16]}")
                return None

            now = self._clock()
            if entry.is_expired(now, self.ttl_seconds):
                self._remove(fingerprint)
                self.expirations += 1
                self.misses += 1
                logger.debug(f"Cache entry {fingerprint[:16]} expired")
                return None

            entry.last_accessed_at = now
            self._entries.move_to_end(fingerprint)
            self.hits += 1
            logger.debug(f"Cache hit for key {fingerprint[:16]}, size {entry.size_bytes} bytes")
            return entry.audio

    def put(self, fingerprint: str, audio: bytes) -> bool:
        """Insert or replace cached audio, then enforce the byte budget.

        Args:
            fingerprint: Request fingerprint
            audio: Synthesized audio bytes

        Returns:
            True if the audio is now cached, False if it was dropped
        """
        if not audio:
            return False

        size = len(audio)
        with self._lock:
            # Replacing an entry invalidates the old audio either way
            if fingerprint in self._entries:
                self._remove(fingerprint)

            if size > self.max_bytes:
                logger.warning(
                    f"Not caching {size} bytes: larger than cache budget {self.max_bytes}"
                )
                return False

            now = self._clock()
            self._purge_expired_locked(now)

            self._entries[fingerprint] = CacheEntry(
                fingerprint=fingerprint,
                audio=audio,
                created_at=now,
                last_accessed_at=now,
            )
            self._total_bytes += size
            self._evict_locked()

            logger.debug(
                f"Cached {size} bytes for key {fingerprint[:16]}, "
                f"total {self._total_bytes}/{self.max_bytes} bytes"
            )
            return True

    def clear(self) -> int:
        """Remove every entry.

        Returns:
            Number of entries removed
        """
        with self._lock:
            count = len(self._entries)
            self._entries.clear()
            self._total_bytes = 0

        logger.info(f"Cleared all {count} cache entries")
        return count

    def purge_expired(self) -> int:
        """Remove entries older than the TTL.

        Returns:
            Number of entries removed
        """
        with self._lock:
            removed = self._purge_expired_locked(self._clock())

        if removed:
            logger.info(f"Removed {removed} expired cache entries")
        return removed

    def stats(self) -> dict[str, Any]:
        """Snapshot of cache usage counters."""
        with self._lock:
            total = self._total_bytes
            return {
                "total_entries": len(self._entries),
                "total_size_bytes": total,
                "max_size_bytes": self.max_bytes,
                "cache_usage_percent": (total * 100.0 / self.max_bytes) if self.max_bytes else 0.0,
                "ttl_seconds": self.ttl_seconds,
                "hits": self.hits,
                "misses": self.misses,
                "evictions": self.evictions,
                "expirations": self.expirations,
            }

    def _remove(self, fingerprint: str) -> CacheEntry:
        entry = self._entries.pop(fingerprint)
        self._total_bytes -= entry.size_bytes
        return entry

    def _purge_expired_locked(self, now: float) -> int:
        if self.ttl_seconds is None:
            return 0
        expired = [
            key
            for key, entry in self._entries.items()
            if entry.is_expired(now, self.ttl_seconds)
        ]
        for key in expired:
            self._remove(key)
        self.expirations += len(expired)
        return len(expired)

    def _evict_locked(self) -> None:
        evicted = 0
        freed = 0
        while self._total_bytes > self.max_bytes and self._entries:
            _, entry = self._entries.popitem(last=False)
            self._total_bytes -= entry.size_bytes
            freed += entry.size_bytes
            evicted += 1

        if evicted:
            self.evictions += evicted
            logger.info(f"Evicted {evicted} cache entries to free {freed} bytes")
