"""Kokoro text-to-speech provider implementation.

Requires the optional ``kokoro`` extra (kokoro, torch, soundfile). The heavy
imports happen when the provider is constructed, so a missing extra only
removes this backend from the table.
"""

import asyncio
import io
import logging

from ..tts.models import DEFAULT_VOICE, VoiceSettings
from .base import TTSProvider

logger = logging.getLogger(__name__)

DEFAULT_KOKORO_VOICE = "af_heart"
SAMPLE_RATE = 24000

# Voice prefix -> lang_code mapping
LANG_CODES = {"a": "a", "b": "b"}

VOICES = [
    "af_heart",
    "af_alloy",
    "af_aoede",
    "af_bella",
    "af_jessica",
    "af_kore",
    "af_nicole",
    "af_nova",
    "af_river",
    "af_sarah",
    "af_sky",
    "am_adam",
    "am_echo",
    "am_eric",
    "am_fenrir",
    "am_liam",
    "am_michael",
    "am_onyx",
    "am_puck",
    "am_santa",
    "bf_alice",
    "bf_emma",
    "bf_isabella",
    "bf_lily",
    "bm_daniel",
    "bm_fable",
    "bm_george",
    "bm_lewis",
]


class KokoroProvider(TTSProvider):
    """Kokoro TTS provider using local neural speech synthesis.

    Uses the Kokoro-82M model for GPU-accelerated (MPS/CUDA) or CPU-based
    text-to-speech generation. No API key required, runs entirely locally.

    Automatically selects American or British phonemizer based on voice prefix.
    """

    def __init__(self, default_voice: str = DEFAULT_KOKORO_VOICE, device: str = "auto") -> None:
        """Initialize Kokoro provider with lazy pipeline creation.

        Args:
            default_voice: Voice used when the request names none or names
                a voice Kokoro does not have
            device: "auto", "mps", "cuda" or "cpu"

        Raises:
            ImportError: If the kokoro extra is not installed
        """
        import soundfile
        import torch
        from kokoro import KPipeline

        self._sf = soundfile
        self._torch = torch
        self._pipeline_class = KPipeline
        self.default_voice = default_voice
        self._device = self._resolve_device(device)
        self._pipelines: dict = {}
        logger.info(f"Kokoro using device: {self._device}")

    def _resolve_device(self, device: str) -> str:
        """Resolve compute device.

        'auto' selects the best available device. Explicit values
        ('mps', 'cuda', 'cpu') are passed through.
        """
        if device == "auto":
            if self._torch.cuda.is_available():
                return "cuda"
            if self._torch.backends.mps.is_available():
                return "mps"
            return "cpu"

        return device

    def _resolve_voice(self, voice: str | None) -> str:
        if not voice or voice == DEFAULT_VOICE or voice not in VOICES:
            return self.default_voice
        return voice

    def _get_pipeline(self, voice: str):
        """Get or create a KPipeline for the given voice's language.

        Pipelines are cached by lang_code so switching between American
        and British voices doesn't reload the model unnecessarily.
        """
        lang_code = LANG_CODES.get(voice[0], "a") if voice else "a"
        if lang_code not in self._pipelines:
            logger.info(f"Creating Kokoro pipeline for lang_code='{lang_code}'")
            self._pipelines[lang_code] = self._pipeline_class(
                lang_code=lang_code, device=self._device
            )
        return self._pipelines[lang_code]

    async def synthesize(
        self, text: str, voice: str | None = None, settings: VoiceSettings | None = None
    ) -> bytes:
        """Convert text to speech using Kokoro neural TTS.

        Args:
            text: Text to convert to speech
            voice: Kokoro voice ID (e.g., bf_isabella, af_heart, am_adam)
            settings: Voice settings; speaking_rate maps to Kokoro speed

        Returns:
            Audio data as bytes (WAV format, 24kHz)

        Raises:
            ValueError: If text is empty
        """
        if not text or not text.strip():
            raise ValueError("Text cannot be empty")

        voice = self._resolve_voice(voice)
        speed = (settings or VoiceSettings()).speaking_rate

        def _generate() -> bytes:
            pipeline = self._get_pipeline(voice)
            segments = [
                audio
                for _, _, audio in pipeline(text, voice=voice, speed=speed)
                if audio is not None
            ]
            if not segments:
                return b""
            # One WAV container for the whole utterance
            samples = self._torch.cat([self._torch.as_tensor(s) for s in segments])
            buf = io.BytesIO()
            self._sf.write(buf, samples.cpu().numpy(), SAMPLE_RATE, format="WAV")
            return buf.getvalue()

        return await asyncio.to_thread(_generate)

    async def list_voices(self) -> list[dict]:
        """List available Kokoro voices."""
        return [{"id": v, "name": v, "provider": "kokoro"} for v in VOICES]
