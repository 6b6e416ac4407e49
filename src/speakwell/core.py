"""Core functionality for speakwell - assembles the pipeline from configuration."""

import logging
from collections.abc import Sequence
from contextlib import ExitStack
from pathlib import Path
from typing import Any, BinaryIO

from .cache.store import AudioCache
from .config import SpeakwellConfig, load_config
from .fallback import (
    BackendDescriptor,
    BackendHealthTracker,
    FallbackOrchestrator,
    RateLimit,
    SlidingWindowRateLimiter,
)
from .providers import ProviderRegistry
from .tts.errors import ConfigurationError, TTSAPIError, TTSError
from .tts.models import VoiceSettings
from .tts.pipeline import SpeechPipeline

logger = logging.getLogger(__name__)

# Backends whose usage is metered by the client-side rate limiter
RATE_LIMITED_BACKENDS = ("elevenlabs",)


def _provider_options(config: SpeakwellConfig, name: str) -> dict[str, Any]:
    if name == "elevenlabs":
        return {
            "model_id": config.elevenlabs.model_id,
            "default_voice": config.elevenlabs.voice,
            "timeout": config.elevenlabs.timeout,
        }
    if name == "system":
        return {"default_voice": config.system.voice or None}
    if name == "kokoro":
        return {"default_voice": config.kokoro.voice, "device": config.kokoro.device}
    return {}


def build_backends(
    config: SpeakwellConfig, names: Sequence[str] | None = None
) -> list[BackendDescriptor]:
    """Instantiate the backend table in fallback order.

    A backend whose provider cannot be created (missing API key, missing
    optional dependency, unsupported platform) is left out with a warning.

    Raises:
        ConfigurationError: If a name is not a registered provider, or if
            every requested real backend is unavailable
    """
    names = list(names or config.tts.backends)
    unknown = [name for name in names if name not in ProviderRegistry.names()]
    if unknown:
        raise ConfigurationError(
            f"Unknown backends: {', '.join(unknown)}. "
            f"Available backends: {', '.join(ProviderRegistry.names())}"
        )

    descriptors = []
    skipped = []
    for priority, name in enumerate(names):
        if name == "silent":
            descriptors.append(BackendDescriptor.silent(name))
            continue

        try:
            provider = ProviderRegistry.create(name, **_provider_options(config, name))
        except (TTSError, ImportError, RuntimeError) as e:
            logger.warning(f"Backend {name} unavailable, skipping: {e}")
            skipped.append(name)
            continue

        streaming = provider.supports_streaming
        if name == "elevenlabs":
            streaming = streaming and config.elevenlabs.streaming
        descriptors.append(
            BackendDescriptor.for_provider(
                name, provider, priority, supports_streaming=streaming
            )
        )

    # An explicit silent-only table is allowed; losing every real backend is not
    if skipped and all(d.terminal for d in descriptors):
        raise ConfigurationError(
            f"No usable synthesis backend: {', '.join(skipped)} unavailable"
        )
    return descriptors


def build_rate_limiter(config: SpeakwellConfig) -> SlidingWindowRateLimiter:
    limits = {}
    if config.rate_limit.enabled:
        limit = RateLimit(
            max_requests=config.rate_limit.max_requests,
            max_characters=config.rate_limit.max_characters,
            window_seconds=config.rate_limit.window_seconds,
        )
        limits = {name: limit for name in RATE_LIMITED_BACKENDS}
    return SlidingWindowRateLimiter(limits)


def build_pipeline(
    config: SpeakwellConfig | None = None,
    backends: Sequence[str] | None = None,
    use_cache: bool | None = None,
) -> SpeechPipeline:
    """Create a pipeline wired according to configuration.

    Args:
        config: Configuration, loaded from disk if omitted
        backends: Backend names overriding the configured order
        use_cache: Overrides cache.enabled when given

    Returns:
        Ready-to-use SpeechPipeline

    Raises:
        ConfigurationError: If configuration is invalid or no backend is usable
    """
    config = config or load_config()

    health = BackendHealthTracker(
        failure_threshold=config.fallback.failure_threshold,
        cooldown_seconds=config.fallback.cooldown_seconds,
    )
    orchestrator = FallbackOrchestrator(
        build_backends(config, backends),
        health=health,
        limiter=build_rate_limiter(config),
        timeout_seconds=config.fallback.timeout_seconds,
        max_quota_wait_seconds=config.fallback.max_quota_wait_seconds,
    )

    cache_enabled = config.cache.enabled if use_cache is None else use_cache
    cache = (
        AudioCache(max_bytes=config.cache.max_bytes, ttl_seconds=config.cache.ttl_seconds)
        if cache_enabled
        else None
    )

    return SpeechPipeline(
        orchestrator,
        cache,
        default_voice=config.tts.voice,
        default_settings=config.voice_settings(),
    )


async def list_available_voices(
    backend: str = "elevenlabs", config: SpeakwellConfig | None = None
) -> list[dict]:
    """List all available voices from the specified backend.

    Args:
        backend: Backend name to list voices from

    Raises:
        TTSAuthError: If API key is not configured
        TTSAPIError: If API call fails
        KeyError: If backend not found
    """
    config = config or load_config()
    try:
        provider = ProviderRegistry.create(backend, **_provider_options(config, backend))
        return await provider.list_voices()
    except (TTSError, KeyError):
        raise
    except Exception as e:
        raise TTSAPIError(f"Failed to list voices: {e}", None, e) from e


async def speak_text(
    text: str,
    output_file: str | Path | None = None,
    voice_id: str | None = None,
    backends: Sequence[str] | None = None,
    preset: str | None = None,
    cache: bool = True,
    stream: bool = False,
    config: SpeakwellConfig | None = None,
    sink: BinaryIO | None = None,
) -> bytes:
    """Convert text to speech and optionally save the audio.

    Args:
        text: Text to convert to speech
        output_file: File to write the audio to
        voice_id: Voice to use instead of the configured one
        backends: Backend names overriding the configured order
        preset: Voice preset overriding the configured one
        cache: Whether to use the audio cache
        stream: Write chunks as they arrive instead of waiting for all audio
        config: Configuration, loaded from disk if omitted
        sink: Binary stream to write the audio to when no output_file is given

    Returns:
        The synthesized audio, empty if every backend failed

    Raises:
        ConfigurationError: If configuration or preset is invalid
        OSError: If the output file cannot be written
    """
    config = config or load_config()
    settings = None
    if preset:
        try:
            settings = VoiceSettings.preset(preset, config.tts.output_format)
        except ValueError as e:
            raise ConfigurationError(str(e), e) from e

    use_cache = config.cache.enabled and cache
    async with build_pipeline(config, backends, use_cache) as pipeline:
        with ExitStack() as stack:
            if output_file:
                sink = stack.enter_context(open(output_file, "wb"))

            if not stream:
                audio = await pipeline.generate_speech(text, voice_id, settings)
                if sink is not None:
                    sink.write(audio)
                return audio

            chunks = bytearray()
            async for chunk in pipeline.stream_speech(text, voice_id, settings):
                chunks.extend(chunk)
                if sink is not None:
                    sink.write(chunk)
                    sink.flush()
            return bytes(chunks)


async def collect_status(
    config: SpeakwellConfig | None = None,
    backends: Sequence[str] | None = None,
    probe: bool = True,
) -> dict[str, Any]:
    """Backend table, readiness and quota for the configured pipeline."""
    async with build_pipeline(config, backends) as pipeline:
        status = pipeline.status()
        status["reachable"] = await pipeline.probe_backends() if probe else {}
        status["quota"] = await pipeline.quotas() if probe else {}
        return status
