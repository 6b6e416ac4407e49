"""Speech synthesis facade for speakwell.

Composes the audio cache with the fallback orchestrator to provide a single
entry point for turning text into audio. Callers never see backend failures:
a request always ends with audio, possibly empty when every backend is down.
"""

import asyncio
import contextlib
import logging
from collections.abc import AsyncIterator
from contextlib import aclosing
from typing import Any

from ..cache.store import AudioCache
from ..fallback.orchestrator import FallbackOrchestrator, SynthesisResult
from .models import DEFAULT_VOICE, QuotaInfo, SynthesisRequest, VoiceSettings

logger = logging.getLogger(__name__)

CACHE_BACKEND_ID = "cache"


class SpeechPipeline:
    """Orchestrates the complete workflow from text to audio bytes.

    Handles cache lookup, fallback synthesis and cache write-back in a
    single coordinated workflow. The pipeline owns the cache, and through
    the orchestrator the health tracker and rate limiter, for its lifetime.

    Example:
        pipeline = SpeechPipeline(orchestrator, AudioCache())

        audio = await pipeline.generate_speech("Deploy complete", "v1")

        async for chunk in pipeline.stream_speech("Build finished"):
            sink.write(chunk)
    """

    def __init__(
        self,
        orchestrator: FallbackOrchestrator,
        cache: AudioCache | None = None,
        default_voice: str = DEFAULT_VOICE,
        default_settings: VoiceSettings | None = None,
    ) -> None:
        """Initialize the pipeline.

        Args:
            orchestrator: Fallback orchestrator over the backend table
            cache: Audio cache, None disables caching
            default_voice: Voice used when a call names none
            default_settings: Settings used when a call passes none
        """
        self.orchestrator = orchestrator
        self.cache = cache
        self.default_voice = default_voice
        self.default_settings = default_settings or VoiceSettings()
        self._sweeper: asyncio.Task | None = None

        logger.debug(
            f"SpeechPipeline initialized with cache={'enabled' if cache else 'disabled'}, "
            f"voice={default_voice}"
        )

    def _request(
        self, text: str, voice_id: str | None, settings: VoiceSettings | None
    ) -> SynthesisRequest:
        return SynthesisRequest(
            text, voice_id or self.default_voice, settings or self.default_settings
        )

    async def synthesize(
        self,
        text: str,
        voice_id: str | None = None,
        settings: VoiceSettings | None = None,
        use_cache: bool = True,
    ) -> SynthesisResult:
        """Produce complete audio and report where it came from.

        Args:
            text: Text to convert to speech
            voice_id: Voice to use, defaults to the pipeline's voice
            settings: Voice settings, defaults to the pipeline's settings
            use_cache: Whether to read from and write to the cache

        Returns:
            SynthesisResult with the audio, serving backend and cache flag
        """
        request = self._request(text, voice_id, settings)
        if not request.text:
            logger.debug("Empty text, nothing to synthesize")
            return await self.orchestrator.synthesize(request)

        cache = self.cache if use_cache else None
        fingerprint = request.fingerprint

        # === CACHE LOOKUP PHASE ===
        if cache is not None:
            audio = cache.get(fingerprint)
            if audio is not None:
                logger.debug(f"Cache hit for {fingerprint[:12]}, {len(audio)} bytes")
                return SynthesisResult(audio, CACHE_BACKEND_ID, cached=True)
            logger.debug(f"Cache miss for {fingerprint[:12]}")

        # === SYNTHESIS PHASE ===
        result = await self.orchestrator.synthesize(request)

        # === WRITE-BACK PHASE ===
        if cache is not None and not result.terminal and result.audio:
            cache.put(fingerprint, result.audio)

        return result

    async def generate_speech(
        self,
        text: str,
        voice_id: str | None = None,
        settings: VoiceSettings | None = None,
        use_cache: bool = True,
    ) -> bytes:
        """Convert text to complete audio bytes.

        Returns empty bytes for empty text or when every backend failed.
        """
        result = await self.synthesize(text, voice_id, settings, use_cache)
        return result.audio

    async def stream_speech(
        self,
        text: str,
        voice_id: str | None = None,
        settings: VoiceSettings | None = None,
        use_cache: bool = True,
    ) -> AsyncIterator[bytes]:
        """Yield audio chunks as soon as a backend produces them.

        A cache hit replays the cached audio as one chunk. On a miss the
        live chunks are buffered and committed to the cache only if the
        stream completed on a real backend. Closing this iterator early
        cancels the backend stream and leaves the cache untouched.
        """
        request = self._request(text, voice_id, settings)
        if not request.text:
            logger.debug("Empty text, nothing to stream")
            return

        cache = self.cache if use_cache else None
        fingerprint = request.fingerprint

        if cache is not None:
            audio = cache.get(fingerprint)
            if audio is not None:
                logger.debug(f"Cache hit for {fingerprint[:12]}, replaying {len(audio)} bytes")
                yield audio
                return
            logger.debug(f"Cache miss for {fingerprint[:12]}")

        stream = self.orchestrator.stream(request)
        buffer = bytearray()
        async with aclosing(stream):
            async for chunk in stream:
                buffer.extend(chunk)
                yield chunk

        if not stream.completed:
            logger.info(f"Stream ended {stream.state.value}, audio not cached")
        elif cache is not None and not stream.terminal and buffer:
            cache.put(fingerprint, bytes(buffer))

    def reset_backend(self, backend_id: str) -> None:
        """Make a cooling-down backend eligible again right away."""
        self.orchestrator.health.reset(backend_id)

    def reset_rate_limit(self, backend_id: str) -> None:
        self.orchestrator.limiter.reset(backend_id)

    def clear_cache(self) -> int:
        """Drop every cached entry.

        Returns:
            Number of entries removed
        """
        if self.cache is None:
            return 0
        return self.cache.clear()

    def status(self) -> dict[str, Any]:
        """Cache statistics plus health and rate window of every backend."""
        return {
            "cache": self.cache.stats() if self.cache is not None else None,
            "backends": self.orchestrator.status(),
        }

    async def probe_backends(self, timeout: float = 5.0) -> dict[str, bool]:
        """Ask every real backend whether it is ready, concurrently.

        Probing is out-of-band: results are reported, never fed into the
        health tracker.
        """
        backends = [b for b in self.orchestrator.backends if not b.terminal]

        async def _probe(backend) -> bool:
            try:
                return bool(await asyncio.wait_for(backend.provider.is_reachable(), timeout))
            except Exception as e:
                logger.debug(f"Probe of {backend.backend_id} failed: {e!r}")
                return False

        results = await asyncio.gather(*(_probe(b) for b in backends))
        return {b.backend_id: ok for b, ok in zip(backends, results)}

    async def quotas(self) -> dict[str, QuotaInfo]:
        """Account quota of every backend that reports one."""
        quotas: dict[str, QuotaInfo] = {}
        for backend in self.orchestrator.backends:
            if backend.terminal:
                continue
            try:
                quota = await backend.provider.get_quota()
            except Exception as e:
                logger.warning(f"Could not read quota for {backend.backend_id}: {e}")
                continue
            if quota is not None:
                quotas[backend.backend_id] = quota
        return quotas

    def start_cache_sweeper(self, interval_seconds: float) -> asyncio.Task | None:
        """Start a background task that purges expired cache entries.

        Also drops rate windows that have been idle for an hour. Must be
        called from a running event loop.
        """
        if self.cache is None:
            return None
        if (
            self._sweeper is not None
            and not self._sweeper.done()
            and self._sweeper.get_loop() is asyncio.get_running_loop()
        ):
            return self._sweeper
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be positive")

        self._sweeper = asyncio.create_task(self._sweep(interval_seconds))
        logger.debug(f"Cache sweeper started, interval {interval_seconds:g}s")
        return self._sweeper

    async def _sweep(self, interval_seconds: float) -> None:
        while True:
            await asyncio.sleep(interval_seconds)
            removed = self.cache.purge_expired()
            idle = self.orchestrator.limiter.prune_idle()
            if removed or idle:
                logger.debug(f"Sweep removed {removed} cache entries, {idle} rate windows")

    async def close(self) -> None:
        """Stop background work."""
        if self._sweeper is not None:
            self._sweeper.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._sweeper
            self._sweeper = None

    async def __aenter__(self) -> "SpeechPipeline":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()
