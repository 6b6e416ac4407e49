"""Unit tests for the SpeechPipeline facade."""

import asyncio
import sys
from pathlib import Path
from unittest.mock import AsyncMock

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
from speakwell.tts.models import QuotaInfo, SynthesisRequest, VoiceSettings
from speakwell.tts.pipeline import SpeechPipeline
from test_helpers import HANG, FakeClock, FakeProvider

ID3_HEADER = b"\x49\x44\x33\x04"


def make_pipeline(
    clock: FakeClock, *providers: FakeProvider, cache: AudioCache | None = None, **kwargs
) -> SpeechPipeline:
    backends = [
        BackendDescriptor.for_provider(p.name, p, priority)
        for priority, p in enumerate(providers)
    ]
    orchestrator = FallbackOrchestrator(
        backends,
        health=BackendHealthTracker(clock=clock),
        limiter=SlidingWindowRateLimiter(clock=clock),
        **kwargs,
    )
    return SpeechPipeline(orchestrator, cache, default_voice="v1")


class TestGenerateSpeech:
    """Test complete synthesis through the cache."""

    @pytest.mark.asyncio
    async def test_failover_result_is_cached(self, clock: FakeClock) -> None:
        cloud = FakeProvider("cloud", outcomes=[HANG])
        local = FakeProvider("local", audio=ID3_HEADER)
        cache = AudioCache(clock=clock)
        pipeline = make_pipeline(clock, cloud, local, cache=cache, timeout_seconds=0.05)

        audio = await pipeline.generate_speech("Hello", "v1")

        assert audio == ID3_HEADER
        fingerprint = SynthesisRequest("Hello", "v1", VoiceSettings()).fingerprint
        assert cache.get(fingerprint) == ID3_HEADER
        assert pipeline.orchestrator.health.failures("cloud") == 1

        # Second identical call is served from the cache
        again = await pipeline.generate_speech("Hello", "v1")
        assert again == ID3_HEADER
        assert len(cloud.calls) == 1
        assert len(local.calls) == 1

    @pytest.mark.asyncio
    async def test_cache_hit_reports_cache_source(self, clock: FakeClock) -> None:
        pipeline = make_pipeline(clock, FakeProvider("cloud"), cache=AudioCache(clock=clock))

        first = await pipeline.synthesize("Hello")
        second = await pipeline.synthesize("Hello")

        assert first.backend_id == "cloud"
        assert not first.cached
        assert second.backend_id == "cache"
        assert second.cached

    @pytest.mark.asyncio
    async def test_default_voice_and_settings_are_used(self, clock: FakeClock) -> None:
        cloud = FakeProvider("cloud")
        pipeline = make_pipeline(clock, cloud)

        await pipeline.generate_speech("Hello")

        assert cloud.calls == [("Hello", "v1", VoiceSettings())]

    @pytest.mark.asyncio
    async def test_different_settings_miss_the_cache(self, clock: FakeClock) -> None:
        cloud = FakeProvider("cloud")
        pipeline = make_pipeline(clock, cloud, cache=AudioCache(clock=clock))

        await pipeline.generate_speech("Hello")
        await pipeline.generate_speech("Hello", settings=VoiceSettings.preset("excited"))

        assert len(cloud.calls) == 2

    @pytest.mark.asyncio
    async def test_nearby_settings_miss_the_cache(self, clock: FakeClock) -> None:
        cloud = FakeProvider("cloud")
        pipeline = make_pipeline(clock, cloud, cache=AudioCache(clock=clock))

        await pipeline.generate_speech("Hello", settings=VoiceSettings(stability=0.5))
        await pipeline.generate_speech("Hello", settings=VoiceSettings(stability=0.50004))

        assert len(cloud.calls) == 2
        assert cloud.calls[1][2].stability == 0.50004

    @pytest.mark.asyncio
    async def test_silence_is_not_cached(self, clock: FakeClock) -> None:
        cloud = FakeProvider("cloud", outcomes=[RuntimeError("down")])
        cache = AudioCache(clock=clock)
        pipeline = make_pipeline(clock, cloud, cache=cache)

        audio = await pipeline.generate_speech("Hello")

        assert audio == b""
        assert len(cache) == 0

        # Backend recovered: the next call reaches it instead of a cached silence
        assert await pipeline.generate_speech("Hello") == b"audio"

    @pytest.mark.asyncio
    async def test_empty_text_returns_empty_audio(self, clock: FakeClock) -> None:
        cloud = FakeProvider("cloud")
        cache = AudioCache(clock=clock)
        pipeline = make_pipeline(clock, cloud, cache=cache)

        assert await pipeline.generate_speech("  \n ") == b""
        assert cloud.calls == []
        assert cache.stats()["misses"] == 0

    @pytest.mark.asyncio
    async def test_cache_can_be_bypassed(self, clock: FakeClock) -> None:
        cloud = FakeProvider("cloud")
        cache = AudioCache(clock=clock)
        pipeline = make_pipeline(clock, cloud, cache=cache)

        await pipeline.generate_speech("Hello", use_cache=False)
        await pipeline.generate_speech("Hello", use_cache=False)

        assert len(cloud.calls) == 2
        assert len(cache) == 0

    @pytest.mark.asyncio
    async def test_without_cache(self, clock: FakeClock) -> None:
        cloud = FakeProvider("cloud")
        pipeline = make_pipeline(clock, cloud)

        await pipeline.generate_speech("Hello")
        await pipeline.generate_speech("Hello")

        assert len(cloud.calls) == 2
        assert pipeline.clear_cache() == 0


class TestStreamSpeech:
    """Test streaming through the cache."""

    @pytest.mark.asyncio
    async def test_completed_stream_is_cached(self, clock: FakeClock) -> None:
        cloud = FakeProvider("cloud", chunks=[b"ab", b"cd"], supports_streaming=True)
        cache = AudioCache(clock=clock)
        pipeline = make_pipeline(clock, cloud, cache=cache)

        chunks = [chunk async for chunk in pipeline.stream_speech("Hello")]

        assert chunks == [b"ab", b"cd"]
        assert await pipeline.generate_speech("Hello") == b"abcd"
        assert cloud.calls == []

    @pytest.mark.asyncio
    async def test_cache_hit_replays_single_chunk(self, clock: FakeClock) -> None:
        cloud = FakeProvider("cloud", audio=b"whole")
        pipeline = make_pipeline(clock, cloud, cache=AudioCache(clock=clock))
        await pipeline.generate_speech("Hello")

        chunks = [chunk async for chunk in pipeline.stream_speech("Hello")]

        assert chunks == [b"whole"]
        assert len(cloud.calls) == 1

    @pytest.mark.asyncio
    async def test_failed_stream_is_not_cached(self, clock: FakeClock) -> None:
        cloud = FakeProvider(
            "cloud", chunks=[b"ab", RuntimeError("reset")], supports_streaming=True
        )
        cache = AudioCache(clock=clock)
        pipeline = make_pipeline(clock, cloud, cache=cache)

        chunks = [chunk async for chunk in pipeline.stream_speech("Hello")]

        assert chunks == [b"ab"]
        assert len(cache) == 0

    @pytest.mark.asyncio
    async def test_cancelled_stream_is_not_cached(self, clock: FakeClock) -> None:
        cloud = FakeProvider("cloud", chunks=[b"ab", b"cd"], supports_streaming=True)
        cache = AudioCache(clock=clock)
        pipeline = make_pipeline(clock, cloud, cache=cache)

        stream = pipeline.stream_speech("Hello")
        assert await anext(stream) == b"ab"
        await stream.aclose()

        assert cloud.stream_closed
        assert len(cache) == 0

    @pytest.mark.asyncio
    async def test_cancelled_task_stops_backend_stream(self, clock: FakeClock) -> None:
        cloud = FakeProvider("cloud", chunks=[b"ab", HANG], supports_streaming=True)
        cache = AudioCache(clock=clock)
        pipeline = make_pipeline(clock, cloud, cache=cache, timeout_seconds=None)
        received: list[bytes] = []

        async def consume() -> None:
            async for chunk in pipeline.stream_speech("Hello"):
                received.append(chunk)

        task = asyncio.create_task(consume())
        while not received:
            await asyncio.sleep(0)
        task.cancel()

        with pytest.raises(asyncio.CancelledError):
            await task
        assert cloud.stream_closed
        assert len(cache) == 0
        assert pipeline.orchestrator.health.failures("cloud") == 0

    @pytest.mark.asyncio
    async def test_silent_stream_is_not_cached(self, clock: FakeClock) -> None:
        cloud = FakeProvider("cloud", outcomes=[RuntimeError("down")])
        cache = AudioCache(clock=clock)
        pipeline = make_pipeline(clock, cloud, cache=cache)

        chunks = [chunk async for chunk in pipeline.stream_speech("Hello")]

        assert chunks == []
        assert len(cache) == 0

    @pytest.mark.asyncio
    async def test_empty_text_streams_nothing(self, clock: FakeClock) -> None:
        cloud = FakeProvider("cloud", chunks=[b"ab"], supports_streaming=True)
        pipeline = make_pipeline(clock, cloud)

        assert [chunk async for chunk in pipeline.stream_speech("")] == []
        assert cloud.stream_calls == []


class TestPipelineManagement:
    """Test status, probes, quotas and maintenance."""

    @pytest.mark.asyncio
    async def test_status(self, clock: FakeClock) -> None:
        pipeline = make_pipeline(clock, FakeProvider("cloud"), cache=AudioCache(clock=clock))
        await pipeline.generate_speech("Hello")

        status = pipeline.status()

        assert status["cache"]["total_entries"] == 1
        assert [row["backend_id"] for row in status["backends"]] == ["cloud", "silent"]

    def test_status_without_cache(self, clock: FakeClock) -> None:
        assert make_pipeline(clock, FakeProvider("cloud")).status()["cache"] is None

    @pytest.mark.asyncio
    async def test_reset_backend(self, clock: FakeClock) -> None:
        cloud = FakeProvider("cloud", outcomes=[RuntimeError("down")] * 3)
        pipeline = make_pipeline(clock, cloud)
        for _ in range(3):
            await pipeline.generate_speech("Hello")
        assert not pipeline.orchestrator.health.is_eligible("cloud")

        pipeline.reset_backend("cloud")

        assert await pipeline.generate_speech("Hello") == b"audio"

    @pytest.mark.asyncio
    async def test_reset_rate_limit(self, clock: FakeClock) -> None:
        cloud = FakeProvider("cloud", audio=b"cloud")
        local = FakeProvider("local", audio=b"local")
        orchestrator = FallbackOrchestrator(
            [
                BackendDescriptor.for_provider("cloud", cloud, 0),
                BackendDescriptor.for_provider("local", local, 1),
            ],
            health=BackendHealthTracker(clock=clock),
            limiter=SlidingWindowRateLimiter(
                {"cloud": RateLimit(max_requests=1)}, clock=clock
            ),
        )
        pipeline = SpeechPipeline(orchestrator, None, default_voice="v1")

        assert await pipeline.generate_speech("One") == b"cloud"
        assert await pipeline.generate_speech("Two") == b"local"

        pipeline.reset_rate_limit("cloud")

        assert await pipeline.generate_speech("Three") == b"cloud"

    @pytest.mark.asyncio
    async def test_clear_cache(self, clock: FakeClock) -> None:
        pipeline = make_pipeline(clock, FakeProvider("cloud"), cache=AudioCache(clock=clock))
        await pipeline.generate_speech("One")
        await pipeline.generate_speech("Two")

        assert pipeline.clear_cache() == 2

    @pytest.mark.asyncio
    async def test_probe_backends(self, clock: FakeClock) -> None:
        broken = FakeProvider("broken")
        broken.is_reachable = AsyncMock(side_effect=RuntimeError("boom"))
        pipeline = make_pipeline(
            clock,
            FakeProvider("cloud", reachable=False),
            FakeProvider("local"),
            broken,
        )

        assert await pipeline.probe_backends() == {
            "cloud": False,
            "local": True,
            "broken": False,
        }
        # Probing never touches health
        assert pipeline.orchestrator.health.snapshot() == {}

    @pytest.mark.asyncio
    async def test_quotas(self, clock: FakeClock) -> None:
        cloud = FakeProvider("cloud")
        cloud.get_quota = AsyncMock(return_value=QuotaInfo(100, 1000))
        failing = FakeProvider("other")
        failing.get_quota = AsyncMock(side_effect=RuntimeError("nope"))
        pipeline = make_pipeline(clock, cloud, failing, FakeProvider("local"))

        assert await pipeline.quotas() == {"cloud": QuotaInfo(100, 1000)}

    @pytest.mark.asyncio
    async def test_cache_sweeper_purges_expired(self, clock: FakeClock) -> None:
        cache = AudioCache(ttl_seconds=60, clock=clock)
        async with make_pipeline(clock, FakeProvider("cloud"), cache=cache) as pipeline:
            await pipeline.generate_speech("Hello")
            clock.advance(61)

            task = pipeline.start_cache_sweeper(0.01)
            assert pipeline.start_cache_sweeper(0.01) is task
            await asyncio.sleep(0.05)

            assert cache.stats()["total_entries"] == 0

        assert task.cancelled()

    @pytest.mark.asyncio
    async def test_cache_sweeper_needs_cache_and_interval(self, clock: FakeClock) -> None:
        assert make_pipeline(clock, FakeProvider("cloud")).start_cache_sweeper(1) is None

        pipeline = make_pipeline(clock, FakeProvider("cloud"), cache=AudioCache(clock=clock))
        with pytest.raises(ValueError):
            pipeline.start_cache_sweeper(0)
