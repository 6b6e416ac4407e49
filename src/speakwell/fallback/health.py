"""Per-backend health tracking with failure cooldown."""

import logging
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

logger = logging.getLogger(__name__)

DEFAULT_FAILURE_THRESHOLD = 3
DEFAULT_COOLDOWN_SECONDS = 300.0


class BackendState(str, Enum):
    """Observable health state of a backend."""

    HEALTHY = "healthy"
    COOLING_DOWN = "cooling_down"


@dataclass
class BackendHealthRecord:
    """Failure bookkeeping for one backend."""

    backend_id: str
    consecutive_failures: int = 0
    last_failure_at: float | None = None
    cooldown_until: float | None = None
    last_error: str | None = None
    total_failures: int = 0
    total_successes: int = 0
    lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def is_eligible(self, now: float, failure_threshold: int) -> bool:
        if self.consecutive_failures < failure_threshold:
            return True
        return self.cooldown_until is None or now >= self.cooldown_until


class BackendHealthTracker:
    """Tracks consecutive failures and cooldowns per named backend.

    A backend that fails ``failure_threshold`` times in a row is skipped
    until ``cooldown_seconds`` have passed since its last failure. The
    backend becomes eligible again on its own once the cooldown lapses;
    any success clears its failure count immediately.
    """

    def __init__(
        self,
        failure_threshold: int = DEFAULT_FAILURE_THRESHOLD,
        cooldown_seconds: float = DEFAULT_COOLDOWN_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if failure_threshold < 1:
            raise ValueError("failure_threshold must be at least 1")
        if cooldown_seconds < 0:
            raise ValueError("cooldown_seconds must be non-negative")

        self.failure_threshold = failure_threshold
        self.cooldown_seconds = cooldown_seconds
        self._clock = clock
        self._records: dict[str, BackendHealthRecord] = {}
        self._registry_lock = threading.Lock()

    def is_eligible(self, backend_id: str) -> bool:
        record = self._record(backend_id)
        with record.lock:
            eligible = record.is_eligible(self._clock(), self.failure_threshold)
            if not eligible:
                logger.debug(
                    f"Backend {backend_id} is in cooldown until {record.cooldown_until:.1f}"
                )
            return eligible

    def state(self, backend_id: str) -> BackendState:
        return (
            BackendState.HEALTHY
            if self.is_eligible(backend_id)
            else BackendState.COOLING_DOWN
        )

    def record_success(self, backend_id: str) -> None:
        record = self._record(backend_id)
        with record.lock:
            if record.consecutive_failures:
                logger.info(
                    f"Backend {backend_id} recovered after "
                    f"{record.consecutive_failures} consecutive failures"
                )
            record.consecutive_failures = 0
            record.cooldown_until = None
            record.total_successes += 1

    def record_failure(
        self, backend_id: str, error: BaseException | str | None = None
    ) -> int:
        """Record a failed attempt.

        Args:
            backend_id: Backend that failed
            error: Exception or description of the failure

        Returns:
            Consecutive failure count after this failure
        """
        record = self._record(backend_id)
        with record.lock:
            now = self._clock()
            record.consecutive_failures += 1
            record.total_failures += 1
            record.last_failure_at = now
            record.last_error = str(error) if error is not None else None
            failures = record.consecutive_failures

            logger.warning(f"Backend {backend_id} failure #{failures}: {error}")

            if failures >= self.failure_threshold:
                record.cooldown_until = now + self.cooldown_seconds
                logger.warning(
                    f"Backend {backend_id} reached {self.failure_threshold} failures, "
                    f"entering {self.cooldown_seconds:g}s cooldown"
                )
            return failures

    def reset(self, backend_id: str) -> None:
        """Make a backend eligible immediately, e.g. for a manual retry."""
        record = self._record(backend_id)
        with record.lock:
            record.consecutive_failures = 0
            record.cooldown_until = None
        logger.info(f"Backend {backend_id} failure count reset")

    def failures(self, backend_id: str) -> int:
        record = self._record(backend_id)
        with record.lock:
            return record.consecutive_failures

    def snapshot(self) -> dict[str, dict[str, Any]]:
        """Status of every backend seen so far."""
        with self._registry_lock:
            records = list(self._records.values())

        now = self._clock()
        status: dict[str, dict[str, Any]] = {}
        for record in records:
            with record.lock:
                eligible = record.is_eligible(now, self.failure_threshold)
                status[record.backend_id] = {
                    "state": (
                        BackendState.HEALTHY if eligible else BackendState.COOLING_DOWN
                    ).value,
                    "consecutive_failures": record.consecutive_failures,
                    "total_failures": record.total_failures,
                    "total_successes": record.total_successes,
                    "last_failure_at": record.last_failure_at,
                    "cooldown_remaining": (
                        0.0 if eligible else record.cooldown_until - now
                    ),
                    "last_error": record.last_error,
                }
        return status

    def _record(self, backend_id: str) -> BackendHealthRecord:
        record = self._records.get(backend_id)
        if record is None:
            with self._registry_lock:
                record = self._records.setdefault(
                    backend_id, BackendHealthRecord(backend_id)
                )
        return record
