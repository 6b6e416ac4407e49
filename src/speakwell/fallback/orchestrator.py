"""Multi-tier fallback orchestration across synthesis backends.

The orchestrator owns a flat, priority-ordered table of backend
descriptors and walks it with a single dispatch loop. A backend is tried
only if the health tracker considers it eligible and the rate limiter
admits the request; failures are recorded and the loop moves on. The last
entry is always a terminal silent backend, so synthesis ends with a
well-defined (possibly empty) result instead of an exception.
"""

import asyncio
import logging
from collections.abc import AsyncIterator, Awaitable, Callable, Sequence
from contextlib import aclosing
from dataclasses import dataclass
from enum import Enum
from typing import Any

from ..providers.base import TTSProvider
from ..providers.silent import SilentProvider
from ..tts.errors import (
    ConfigurationError,
    TTSAPIError,
    TTSAuthError,
    TTSEmptyResultError,
    TTSQuotaError,
    TTSTimeoutError,
    TTSTransportError,
)
from ..tts.models import SynthesisRequest
from .health import BackendHealthTracker
from .limiter import SlidingWindowRateLimiter

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 30.0
SILENT_BACKEND_ID = "silent"


@dataclass(frozen=True)
class BackendDescriptor:
    """One row of the backend table.

    Args:
        backend_id: Name used for health, rate limits and logging
        provider: Object implementing the synthesis contract
        priority: Rank in the fallback order, lower is tried first
        supports_streaming: Whether to forward the provider's chunk stream
        voice: Voice to use with this backend instead of the request's
        timeout: Per-call timeout overriding the orchestrator default
        terminal: Marks the always-succeeding final backend
    """

    backend_id: str
    provider: TTSProvider
    priority: int = 0
    supports_streaming: bool = False
    voice: str | None = None
    timeout: float | None = None
    terminal: bool = False

    @classmethod
    def for_provider(
        cls, backend_id: str, provider: TTSProvider, priority: int = 0, **kwargs: Any
    ) -> "BackendDescriptor":
        """Build a descriptor taking the streaming capability from the provider."""
        kwargs.setdefault("supports_streaming", provider.supports_streaming)
        return cls(backend_id, provider, priority, **kwargs)

    @classmethod
    def silent(cls, backend_id: str = SILENT_BACKEND_ID) -> "BackendDescriptor":
        return cls(
            backend_id,
            SilentProvider(),
            priority=0,
            supports_streaming=True,
            terminal=True,
        )


@dataclass(frozen=True)
class SynthesisResult:
    """Audio produced for a request and where it came from."""

    audio: bytes
    backend_id: str
    terminal: bool = False
    cached: bool = False

    @property
    def is_empty(self) -> bool:
        return not self.audio


class StreamState(str, Enum):
    """Lifecycle of an audio stream as seen by its consumer."""

    PENDING = "pending"
    STREAMING = "streaming"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


_FINISHED = (StreamState.COMPLETED, StreamState.FAILED, StreamState.CANCELLED)


class AudioStream:
    """Async iterator over audio chunks with an explicit terminal state.

    ``state`` ends as ``completed`` when a backend delivered its whole
    output, ``failed`` when a backend broke off after chunks had already
    been forwarded, and ``cancelled`` when the consumer closed the stream
    or its task was cancelled.
    """

    def __init__(
        self,
        produce: Callable[[SynthesisRequest, "AudioStream"], AsyncIterator[bytes]],
        request: SynthesisRequest,
    ) -> None:
        self.request = request
        self.state = StreamState.PENDING
        self.backend_id: str | None = None
        self.terminal = False
        self._chunks = produce(request, self)

    @property
    def completed(self) -> bool:
        return self.state is StreamState.COMPLETED

    @property
    def finished(self) -> bool:
        return self.state in _FINISHED

    def __aiter__(self) -> "AudioStream":
        return self

    async def __anext__(self) -> bytes:
        return await self._chunks.__anext__()

    async def aclose(self) -> None:
        await self._chunks.aclose()
        if not self.finished:
            self.state = StreamState.CANCELLED

    def _start(self, backend: BackendDescriptor) -> None:
        self.state = StreamState.STREAMING
        self.backend_id = backend.backend_id
        self.terminal = backend.terminal

    def _finish(self, state: StreamState, backend: BackendDescriptor) -> None:
        self.state = state
        self.backend_id = backend.backend_id
        self.terminal = backend.terminal


def describe_failure(error: BaseException) -> str:
    """Short classification of a backend failure for logs."""
    if isinstance(error, (TimeoutError, TTSTimeoutError)):
        kind = "timeout"
    elif isinstance(error, TTSQuotaError):
        kind = "quota"
    elif isinstance(error, TTSAuthError):
        kind = "auth"
    elif isinstance(error, TTSTransportError):
        kind = "transport"
    elif isinstance(error, TTSEmptyResultError):
        kind = "empty result"
    elif isinstance(error, TTSAPIError):
        kind = f"api error (status {error.status_code})" if error.status_code else "api error"
    else:
        kind = type(error).__name__

    message = str(error)
    return f"{kind}: {message}" if message else kind


class FallbackOrchestrator:
    """Tries backends in priority order until one produces audio.

    Priority is fixed by configuration. Only eligibility (health and quota)
    decides which backends are actually tried; observed latency never
    reorders the table.

    Example:
        orchestrator = FallbackOrchestrator(
            [
                BackendDescriptor.for_provider("elevenlabs", ElevenLabsProvider(), 0),
                BackendDescriptor.for_provider("system", SystemTTSProvider(), 1),
            ],
            health=BackendHealthTracker(),
            limiter=SlidingWindowRateLimiter({"elevenlabs": RateLimit()}),
        )
        result = await orchestrator.synthesize(SynthesisRequest("Hello", "v1"))
    """

    def __init__(
        self,
        backends: Sequence[BackendDescriptor],
        health: BackendHealthTracker | None = None,
        limiter: SlidingWindowRateLimiter | None = None,
        timeout_seconds: float | None = DEFAULT_TIMEOUT_SECONDS,
        max_quota_wait_seconds: float = 0.0,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        """Initialize the orchestrator.

        Args:
            backends: Backend table; order among equal priorities is kept
            health: Health tracker, a default one is created if omitted
            limiter: Rate limiter, an unlimited one is created if omitted
            timeout_seconds: Default per-call timeout, None disables it
            max_quota_wait_seconds: Longest quota wait before giving up on
                rate-limited backends when nothing else succeeded
            sleep: Coroutine used for quota waits

        Raises:
            ConfigurationError: If the table is empty, has duplicate ids or
                more than one terminal backend
        """
        if not backends:
            raise ConfigurationError("At least one synthesis backend is required")

        terminals = [b for b in backends if b.terminal]
        if len(terminals) > 1:
            raise ConfigurationError(
                "Only one terminal backend is allowed, got "
                + ", ".join(b.backend_id for b in terminals)
            )

        real = sorted((b for b in backends if not b.terminal), key=lambda b: b.priority)
        terminal = terminals[0] if terminals else BackendDescriptor.silent()

        ids = [b.backend_id for b in real] + [terminal.backend_id]
        duplicates = sorted({i for i in ids if ids.count(i) > 1})
        if duplicates:
            raise ConfigurationError(f"Duplicate backend ids: {', '.join(duplicates)}")

        self._real = tuple(real)
        self._terminal = terminal
        self.health = health or BackendHealthTracker()
        self.limiter = limiter or SlidingWindowRateLimiter()
        self.timeout_seconds = timeout_seconds
        self.max_quota_wait_seconds = max_quota_wait_seconds
        self._sleep = sleep

        logger.info(
            f"Fallback order: {' -> '.join(b.backend_id for b in self.backends)}"
        )

    @property
    def backends(self) -> tuple[BackendDescriptor, ...]:
        """Backend table in the order it is tried, terminal last."""
        return self._real + (self._terminal,)

    async def synthesize(self, request: SynthesisRequest) -> SynthesisResult:
        """Produce complete audio for a request.

        Never raises for backend failures; total exhaustion returns the
        terminal backend's empty result.
        """
        if not request.text:
            return await self._terminal_result(request)

        candidates = list(self._real)
        waited = False
        while candidates:
            denials: list[tuple[BackendDescriptor, float | None]] = []
            for backend in candidates:
                if not self._admit(backend, request, denials):
                    continue

                logger.debug(f"Attempting speech generation with {backend.backend_id}")
                try:
                    audio = await self._call(backend, request)
                except Exception as e:
                    self._record_failure(backend, e)
                    continue

                self.health.record_success(backend.backend_id)
                logger.info(
                    f"Generated {len(audio)} bytes for {request.character_count} "
                    f"characters using {backend.backend_id}"
                )
                return SynthesisResult(audio, backend.backend_id)

            candidates = await self._await_quota(denials, waited)
            waited = True

        logger.error("All synthesis backends failed or were unavailable, returning silence")
        return await self._terminal_result(request)

    def stream(self, request: SynthesisRequest) -> AudioStream:
        """Stream audio for a request, forwarding chunks as they arrive."""
        return AudioStream(self._stream_chunks, request)

    def status(self) -> list[dict[str, Any]]:
        """Backend table with health and quota information."""
        health = self.health.snapshot()
        rows = []
        for backend in self.backends:
            row: dict[str, Any] = {
                "backend_id": backend.backend_id,
                "priority": backend.priority,
                "streaming": backend.supports_streaming,
                "terminal": backend.terminal,
            }
            if not backend.terminal:
                row["health"] = health.get(
                    backend.backend_id,
                    {"state": self.health.state(backend.backend_id).value},
                )
                row["rate_limit"] = self.limiter.stats(backend.backend_id)
            rows.append(row)
        return rows

    async def _stream_chunks(
        self, request: SynthesisRequest, stream: AudioStream
    ) -> AsyncIterator[bytes]:
        try:
            candidates = list(self._real) if request.text else []
            waited = False
            while candidates:
                denials: list[tuple[BackendDescriptor, float | None]] = []
                for backend in candidates:
                    if not self._admit(backend, request, denials):
                        continue

                    logger.debug(f"Attempting streaming speech with {backend.backend_id}")
                    emitted = 0
                    try:
                        async with aclosing(self._backend_chunks(backend, request)) as chunks:
                            async for chunk in chunks:
                                if not emitted:
                                    stream._start(backend)
                                emitted += 1
                                yield chunk
                    except Exception as e:
                        self._record_failure(backend, e)
                        if emitted:
                            logger.warning(
                                f"Stream from {backend.backend_id} broke off after "
                                f"{emitted} chunks, audio is incomplete"
                            )
                            stream._finish(StreamState.FAILED, backend)
                            return
                        continue

                    if not emitted:
                        self._record_failure(
                            backend,
                            TTSEmptyResultError(f"{backend.backend_id} streamed no audio"),
                        )
                        continue

                    self.health.record_success(backend.backend_id)
                    logger.info(
                        f"Streamed {emitted} chunks for {request.character_count} "
                        f"characters using {backend.backend_id}"
                    )
                    stream._finish(StreamState.COMPLETED, backend)
                    return

                candidates = await self._await_quota(denials, waited)
                waited = True

            if request.text:
                logger.error(
                    "All synthesis backends failed or were unavailable for streaming, "
                    "returning silence"
                )
            terminal = self._terminal
            stream._start(terminal)
            async with aclosing(self._terminal_chunks(request)) as chunks:
                async for chunk in chunks:
                    yield chunk
            stream._finish(StreamState.COMPLETED, terminal)

        except (GeneratorExit, asyncio.CancelledError):
            if not stream.finished:
                stream.state = StreamState.CANCELLED
            raise

    def _admit(
        self,
        backend: BackendDescriptor,
        request: SynthesisRequest,
        denials: list[tuple[BackendDescriptor, float | None]],
    ) -> bool:
        if not self.health.is_eligible(backend.backend_id):
            logger.debug(f"Skipping {backend.backend_id}: cooling down")
            return False

        decision = self.limiter.try_acquire(backend.backend_id, request.character_count)
        if not decision:
            denials.append((backend, decision.retry_after))
            logger.info(f"Skipping {backend.backend_id}: rate limited")
            return False
        return True

    async def _await_quota(
        self,
        denials: list[tuple[BackendDescriptor, float | None]],
        waited: bool,
    ) -> list[BackendDescriptor]:
        """Wait for the soonest quota release when that is the only way left.

        Returns the rate-limited backends worth retrying, or an empty list.
        """
        if waited or self.max_quota_wait_seconds <= 0:
            return []

        retryable = [
            (backend, retry_after)
            for backend, retry_after in denials
            if retry_after is not None and retry_after <= self.max_quota_wait_seconds
        ]
        if not retryable:
            return []

        delay = min(retry_after for _, retry_after in retryable)
        logger.info(f"All backends exhausted, waiting {delay:.2f}s for quota to free up")
        await self._sleep(delay)
        return [backend for backend, _ in retryable]

    def _timeout(self, backend: BackendDescriptor) -> float | None:
        return backend.timeout if backend.timeout is not None else self.timeout_seconds

    async def _call(self, backend: BackendDescriptor, request: SynthesisRequest) -> bytes:
        audio = await asyncio.wait_for(
            backend.provider.synthesize(
                request.text, backend.voice or request.voice_id, request.settings
            ),
            self._timeout(backend),
        )
        if not audio:
            raise TTSEmptyResultError(f"{backend.backend_id} returned no audio")
        return audio

    async def _backend_chunks(
        self, backend: BackendDescriptor, request: SynthesisRequest
    ) -> AsyncIterator[bytes]:
        if not backend.supports_streaming:
            yield await self._call(backend, request)
            return

        timeout = self._timeout(backend)
        chunks = aiter(
            backend.provider.stream(
                request.text, backend.voice or request.voice_id, request.settings
            )
        )
        try:
            while True:
                try:
                    # Timeout applies to the first chunk and to every gap after it
                    chunk = await asyncio.wait_for(anext(chunks), timeout)
                except StopAsyncIteration:
                    return
                if chunk:
                    yield chunk
        finally:
            aclose = getattr(chunks, "aclose", None)
            if aclose is not None:
                await aclose()

    async def _terminal_chunks(self, request: SynthesisRequest) -> AsyncIterator[bytes]:
        terminal = self._terminal
        try:
            async with aclosing(
                aiter(
                    terminal.provider.stream(
                        request.text, terminal.voice or request.voice_id, request.settings
                    )
                )
            ) as chunks:
                async for chunk in chunks:
                    if chunk:
                        yield chunk
        except Exception as e:
            logger.error(f"Terminal backend {terminal.backend_id} failed: {describe_failure(e)}")

    async def _terminal_result(self, request: SynthesisRequest) -> SynthesisResult:
        terminal = self._terminal
        try:
            audio = await terminal.provider.synthesize(
                request.text, terminal.voice or request.voice_id, request.settings
            )
        except Exception as e:
            logger.error(f"Terminal backend {terminal.backend_id} failed: {describe_failure(e)}")
            audio = b""
        return SynthesisResult(audio or b"", terminal.backend_id, terminal=True)

    def _record_failure(self, backend: BackendDescriptor, error: BaseException) -> None:
        self.health.record_failure(backend.backend_id, describe_failure(error))
