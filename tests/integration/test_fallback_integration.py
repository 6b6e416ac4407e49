"""Integration tests for the cache, limiter, health tracker and orchestrator together."""

import asyncio
import sys
from pathlib import Path

import pytest

# Add src to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent.parent / "src"))

from speakwell.cache.store import AudioCache
from speakwell.fallback import (
    BackendDescriptor,
    BackendHealthTracker,
    FallbackOrchestrator,
    RateLimit,
    SlidingWindowRateLimiter,
)
from speakwell.tts.errors import TTSQuotaError, TTSTransportError
from speakwell.tts.pipeline import SpeechPipeline
from test_helpers import HANG, FakeClock, FakeProvider

pytestmark = pytest.mark.integration


def build_stack(
    clock: FakeClock,
    cloud: FakeProvider,
    local: FakeProvider,
    limit: RateLimit | None = None,
    **kwargs,
) -> SpeechPipeline:
    """Cloud-then-local pipeline sharing one fake clock."""
    limiter = SlidingWindowRateLimiter({"cloud": limit} if limit else {}, clock=clock)
    orchestrator = FallbackOrchestrator(
        [
            BackendDescriptor.for_provider("cloud", cloud, 0),
            BackendDescriptor.for_provider("local", local, 1),
        ],
        health=BackendHealthTracker(failure_threshold=3, cooldown_seconds=300, clock=clock),
        limiter=limiter,
        **kwargs,
    )
    cache = AudioCache(max_bytes=10_000, ttl_seconds=3600, clock=clock)
    return SpeechPipeline(orchestrator, cache, default_voice="v1")


class TestOutageAndRecovery:
    """Backend outages are absorbed and recovered from without caller involvement."""

    @pytest.mark.asyncio
    async def test_cloud_outage_cooldown_and_recovery(self, clock: FakeClock) -> None:
        """
        INVARIANT: A failing backend is skipped for the cooldown, then tried again
        BREAKS: Every request pays the failing backend's timeout during an outage
        """
        cloud = FakeProvider(
            "cloud", audio=b"cloud", outcomes=[TTSTransportError("refused")] * 3
        )
        local = FakeProvider("local", audio=b"local")
        pipeline = build_stack(clock, cloud, local)

        for n in range(3):
            assert await pipeline.generate_speech(f"message {n}") == b"local"
        assert len(cloud.calls) == 3

        # Cooling down: requests go straight to the local backend
        clock.advance(120)
        assert await pipeline.generate_speech("message 3") == b"local"
        assert len(cloud.calls) == 3

        clock.advance(180)
        assert await pipeline.generate_speech("message 4") == b"cloud"
        assert pipeline.orchestrator.health.failures("cloud") == 0

        # Audio served by the fallback stays valid in the cache
        assert await pipeline.generate_speech("message 0") == b"local"
        assert len(local.calls) == 4

    @pytest.mark.asyncio
    async def test_total_outage_is_silent_and_not_cached(self, clock: FakeClock) -> None:
        """
        INVARIANT: Total exhaustion yields empty audio that is never cached
        BREAKS: Silence replayed from the cache after the backends come back
        """
        cloud = FakeProvider("cloud", outcomes=[RuntimeError("down")])
        local = FakeProvider("local", outcomes=[RuntimeError("no espeak")])
        pipeline = build_stack(clock, cloud, local)

        assert await pipeline.generate_speech("Deploy complete") == b""
        assert pipeline.cache.stats()["total_entries"] == 0

        assert await pipeline.generate_speech("Deploy complete") == b"audio"
        assert pipeline.cache.stats()["total_entries"] == 1

    @pytest.mark.asyncio
    async def test_hanging_backend_times_out(self, clock: FakeClock) -> None:
        cloud = FakeProvider("cloud", outcomes=[HANG])
        local = FakeProvider("local", audio=b"\x49\x44\x33\x04")
        pipeline = build_stack(clock, cloud, local, timeout_seconds=0.05)

        assert await pipeline.generate_speech("Hello") == b"\x49\x44\x33\x04"
        assert await pipeline.generate_speech("Hello") == b"\x49\x44\x33\x04"
        assert len(cloud.calls) == 1
        assert len(local.calls) == 1


class TestRateLimitedFallback:
    """Client-side quota pushes traffic to the fallback and back."""

    @pytest.mark.asyncio
    async def test_quota_exhaustion_and_window_reset(self, clock: FakeClock) -> None:
        cloud = FakeProvider("cloud", audio=b"cloud")
        local = FakeProvider("local", audio=b"local")
        pipeline = build_stack(
            clock, cloud, local, limit=RateLimit(max_requests=2, window_seconds=60)
        )

        served = []
        for n in range(4):
            served.append(await pipeline.generate_speech(f"line {n}"))
            clock.advance(1)

        assert served == [b"cloud", b"cloud", b"local", b"local"]
        assert pipeline.orchestrator.health.failures("cloud") == 0

        clock.advance(60)
        assert await pipeline.generate_speech("line 4") == b"cloud"

    @pytest.mark.asyncio
    async def test_server_quota_error_counts_as_failure(self, clock: FakeClock) -> None:
        cloud = FakeProvider("cloud", outcomes=[TTSQuotaError("quota_exceeded", 429)])
        local = FakeProvider("local", audio=b"local")
        pipeline = build_stack(clock, cloud, local)

        assert await pipeline.generate_speech("Hello") == b"local"
        status = pipeline.status()["backends"][0]
        assert status["health"]["consecutive_failures"] == 1
        assert status["health"]["last_error"] == "quota: quota_exceeded"

    @pytest.mark.asyncio
    async def test_concurrent_requests_respect_limit(self, clock: FakeClock) -> None:
        """
        INVARIANT: Concurrent callers never push a backend past its window limits
        BREAKS: Cloud account throttled or billed beyond the configured budget
        """
        cloud = FakeProvider("cloud", audio=b"cloud")
        local = FakeProvider("local", audio=b"local")
        pipeline = build_stack(
            clock, cloud, local, limit=RateLimit(max_requests=5, max_characters=1000)
        )

        results = await asyncio.gather(
            *(pipeline.synthesize(f"request number {n}") for n in range(20))
        )

        assert sum(r.backend_id == "cloud" for r in results) == 5
        assert sum(r.backend_id == "local" for r in results) == 15
        assert len(cloud.calls) == 5


class TestStreamingEndToEnd:
    """Streaming through every layer."""

    @pytest.mark.asyncio
    async def test_stream_falls_back_then_replays_from_cache(self, clock: FakeClock) -> None:
        cloud = FakeProvider(
            "cloud", chunks=[TTSTransportError("reset")], supports_streaming=True
        )
        local = FakeProvider("local", audio=b"local-audio")
        pipeline = build_stack(clock, cloud, local)

        first = [chunk async for chunk in pipeline.stream_speech("Build finished")]
        second = [chunk async for chunk in pipeline.stream_speech("Build finished")]

        assert first == [b"local-audio"]
        assert second == [b"local-audio"]
        assert len(local.calls) == 1
        assert cloud.stream_closed

    @pytest.mark.asyncio
    async def test_stream_and_generate_share_cache(self, clock: FakeClock) -> None:
        cloud = FakeProvider("cloud", chunks=[b"ID3", b"\x04", b"data"], supports_streaming=True)
        local = FakeProvider("local")
        pipeline = build_stack(clock, cloud, local)

        chunks = [chunk async for chunk in pipeline.stream_speech("Tests passed")]

        assert b"".join(chunks) == b"ID3\x04data"
        assert await pipeline.generate_speech("Tests passed") == b"ID3\x04data"
        assert cloud.calls == []
        assert local.calls == []
