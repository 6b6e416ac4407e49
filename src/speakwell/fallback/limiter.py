"""Sliding-window rate limiter for synthesis backends.

Each backend gets its own window of (timestamp, characters) entries. An
acquisition prunes entries that fell out of the trailing window, then
admits the request only if both the request count and the character count
stay within the configured limits. Counting over a moving window avoids
the burst admission that fixed buckets allow at their boundaries.
"""

import logging
import threading
import time
from collections import deque
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from typing import Any

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RateLimit:
    """Limits for a single backend.

    Args:
        max_requests: Requests allowed inside one window
        max_characters: Characters allowed inside one window
        window_seconds: Length of the trailing window
    """

    max_requests: int = 100
    max_characters: int = 50_000
    window_seconds: float = 60.0

    def __post_init__(self) -> None:
        if self.max_requests < 1:
            raise ValueError("max_requests must be at least 1")
        if self.max_characters < 1:
            raise ValueError("max_characters must be at least 1")
        if self.window_seconds <= 0:
            raise ValueError("window_seconds must be positive")


@dataclass(frozen=True)
class RateDecision:
    """Outcome of an acquisition attempt.

    ``retry_after`` is the number of seconds until the request could be
    admitted, or None when it never can (a single request larger than the
    character limit).
    """

    allowed: bool
    retry_after: float | None = None

    def __bool__(self) -> bool:
        return self.allowed


@dataclass(frozen=True)
class QuotaSnapshot:
    """Remaining capacity in a backend's current window."""

    backend_id: str
    requests_in_window: int
    characters_in_window: int
    requests_remaining: int | None
    characters_remaining: int | None


@dataclass
class RateWindow:
    """Trailing window of admitted requests for one backend."""

    backend_id: str
    entries: deque[tuple[float, int]] = field(default_factory=deque)
    characters_in_window: int = 0
    total_requests: int = 0
    total_characters: int = 0
    last_request_at: float | None = None
    lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def prune(self, now: float, window_seconds: float) -> None:
        cutoff = now - window_seconds
        while self.entries and self.entries[0][0] <= cutoff:
            _, characters = self.entries.popleft()
            self.characters_in_window -= characters


ALLOWED = RateDecision(True)


class SlidingWindowRateLimiter:
    """Per-backend sliding-window admission control.

    Backends without configured limits are always admitted. Windows are
    created lazily on first use and each one carries its own lock, so
    acquisitions for unrelated backends never contend.
    """

    def __init__(
        self,
        limits: Mapping[str, RateLimit] | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._limits = dict(limits or {})
        self._clock = clock
        self._windows: dict[str, RateWindow] = {}
        self._registry_lock = threading.Lock()

        for backend_id, limit in self._limits.items():
            logger.info(
                f"Rate limit for {backend_id}: {limit.max_requests} requests, "
                f"{limit.max_characters} characters per {limit.window_seconds:g}s"
            )

    def limit_for(self, backend_id: str) -> RateLimit | None:
        return self._limits.get(backend_id)

    def try_acquire(self, backend_id: str, character_count: int) -> RateDecision:
        """Attempt to admit a request.

        Args:
            backend_id: Backend whose quota is consumed
            character_count: Characters the request will synthesize

        Returns:
            RateDecision; admitted requests are recorded in the window

        Raises:
            ValueError: If character_count is negative
        """
        if character_count < 0:
            raise ValueError(f"character_count must be non-negative, got {character_count}")

        limit = self._limits.get(backend_id)
        if limit is None:
            return ALLOWED

        window = self._window(backend_id)
        with window.lock:
            now = self._clock()
            window.prune(now, limit.window_seconds)

            if character_count > limit.max_characters:
                logger.warning(
                    f"Request of {character_count} characters can never fit "
                    f"{backend_id} limit of {limit.max_characters}"
                )
                return RateDecision(False, None)

            request_ok = len(window.entries) + 1 <= limit.max_requests
            chars_ok = window.characters_in_window + character_count <= limit.max_characters
            if request_ok and chars_ok:
                window.entries.append((now, character_count))
                window.characters_in_window += character_count
                window.total_requests += 1
                window.total_characters += character_count
                window.last_request_at = now
                return ALLOWED

            retry_after = self._retry_after(window, limit, character_count, now)
            logger.warning(
                f"Rate limit exceeded for {backend_id}: "
                f"{len(window.entries)}/{limit.max_requests} requests, "
                f"{window.characters_in_window}/{limit.max_characters} characters; "
                f"retry after {retry_after:.2f}s"
            )
            return RateDecision(False, retry_after)

    def retry_after(self, backend_id: str, character_count: int = 0) -> float | None:
        """Seconds until a request of the given size would be admitted.

        Returns 0.0 when it would be admitted now.
        """
        limit = self._limits.get(backend_id)
        if limit is None:
            return 0.0
        if character_count > limit.max_characters:
            return None

        window = self._window(backend_id)
        with window.lock:
            now = self._clock()
            window.prune(now, limit.window_seconds)
            return self._retry_after(window, limit, character_count, now)

    def remaining(self, backend_id: str) -> QuotaSnapshot:
        """Remaining requests and characters in the current window.

        Remaining values are None for backends without limits.
        """
        limit = self._limits.get(backend_id)
        window = self._window(backend_id)
        with window.lock:
            if limit is not None:
                window.prune(self._clock(), limit.window_seconds)
            requests = len(window.entries)
            characters = window.characters_in_window

        if limit is None:
            return QuotaSnapshot(backend_id, requests, characters, None, None)
        return QuotaSnapshot(
            backend_id,
            requests,
            characters,
            max(0, limit.max_requests - requests),
            max(0, limit.max_characters - characters),
        )

    def stats(self, backend_id: str) -> dict[str, Any]:
        """Usage statistics for one backend."""
        snapshot = self.remaining(backend_id)
        window = self._window(backend_id)
        limit = self._limits.get(backend_id)
        with window.lock:
            total_requests = window.total_requests
            total_characters = window.total_characters
            last_request_at = window.last_request_at

        rate_limited = False
        if limit is not None:
            rate_limited = (
                snapshot.requests_in_window >= limit.max_requests
                or snapshot.characters_in_window >= limit.max_characters
            )

        return {
            "total_requests": total_requests,
            "total_characters": total_characters,
            "requests_in_window": snapshot.requests_in_window,
            "characters_in_window": snapshot.characters_in_window,
            "requests_remaining": snapshot.requests_remaining,
            "characters_remaining": snapshot.characters_remaining,
            "last_request_at": last_request_at,
            "max_requests": limit.max_requests if limit else None,
            "max_characters": limit.max_characters if limit else None,
            "window_seconds": limit.window_seconds if limit else None,
            "rate_limited": rate_limited,
        }

    def reset(self, backend_id: str) -> None:
        """Forget all recorded requests for a backend."""
        with self._registry_lock:
            removed = self._windows.pop(backend_id, None)
        if removed is not None:
            logger.info(f"Reset rate limiting data for {backend_id}")

    def prune_idle(self, max_idle_seconds: float = 3600.0) -> int:
        """Drop windows with no requests in the last ``max_idle_seconds``.

        Returns:
            Number of windows dropped
        """
        now = self._clock()
        with self._registry_lock:
            idle = [
                backend_id
                for backend_id, window in self._windows.items()
                if window.last_request_at is None
                or now - window.last_request_at > max_idle_seconds
            ]
            for backend_id in idle:
                del self._windows[backend_id]

        if idle:
            logger.debug(f"Cleaned up {len(idle)} inactive rate limit windows")
        return len(idle)

    def _window(self, backend_id: str) -> RateWindow:
        window = self._windows.get(backend_id)
        if window is None:
            with self._registry_lock:
                window = self._windows.setdefault(backend_id, RateWindow(backend_id))
        return window

    @staticmethod
    def _retry_after(
        window: RateWindow, limit: RateLimit, character_count: int, now: float
    ) -> float:
        """Time until enough entries leave the window to admit the request."""
        requests = len(window.entries)
        characters = window.characters_in_window
        release_at = now
        # Walk from oldest to newest until both limits would be satisfied
        for timestamp, entry_characters in window.entries:
            if (
                requests + 1 <= limit.max_requests
                and characters + character_count <= limit.max_characters
            ):
                break
            requests -= 1
            characters -= entry_characters
            release_at = timestamp + limit.window_seconds
        return max(0.0, release_at - now)
