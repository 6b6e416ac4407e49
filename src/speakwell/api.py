"""High-level API for speakwell library usage.

The module keeps one pipeline per process so that the cache, health
tracker and rate limiter persist across calls.
"""

from collections.abc import AsyncIterator
from pathlib import Path

from .config import load_config
from .core import build_pipeline
from .tts.models import VoiceSettings
from .tts.pipeline import SpeechPipeline

_pipeline: SpeechPipeline | None = None
_sweep_seconds = 0.0


def get_pipeline() -> SpeechPipeline:
    """Return the shared pipeline, building it from configuration on first use."""
    global _pipeline, _sweep_seconds
    if _pipeline is None:
        config = load_config()
        _pipeline = build_pipeline(config)
        _sweep_seconds = config.cache.sweep_minutes * 60
    return _pipeline


def set_pipeline(pipeline: SpeechPipeline | None, sweep_seconds: float = 0.0) -> None:
    """Replace the shared pipeline, e.g. with one built from custom config."""
    global _pipeline, _sweep_seconds
    _pipeline = pipeline
    _sweep_seconds = sweep_seconds


def _running_pipeline() -> SpeechPipeline:
    pipeline = get_pipeline()
    if _sweep_seconds > 0:
        pipeline.start_cache_sweeper(_sweep_seconds)
    return pipeline


async def generate_speech(
    text: str,
    voice_id: str | None = None,
    settings: VoiceSettings | None = None,
    output: str | Path | None = None,
) -> bytes:
    """Synthesize speech from text.

    Args:
        text: Text to speak
        voice_id: Voice ID/name, defaults to the configured voice
        settings: Voice settings, defaults to the configured preset
        output: File path to also save the audio to

    Returns:
        Audio bytes; empty if the text is empty or every backend failed

    Raises:
        ConfigurationError: If the pipeline cannot be built from configuration
        OSError: If the output file cannot be written
    """
    audio = await _running_pipeline().generate_speech(text, voice_id, settings)
    if output:
        Path(output).write_bytes(audio)
    return audio


async def stream_speech(
    text: str,
    voice_id: str | None = None,
    settings: VoiceSettings | None = None,
) -> AsyncIterator[bytes]:
    """Yield audio chunks as they are synthesized."""
    async for chunk in _running_pipeline().stream_speech(text, voice_id, settings):
        yield chunk
