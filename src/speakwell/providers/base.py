"""Abstract base class for text-to-speech providers.

This module defines the narrow contract every synthesis backend exposes to
the fallback orchestrator. Backend-specific types never leak past it.
"""

from abc import ABC, abstractmethod
from collections.abc import AsyncIterator
from typing import ClassVar

from ..tts.models import QuotaInfo, VoiceSettings


class TTSProvider(ABC):
    """Abstract base class for text-to-speech providers.

    All TTS providers must inherit from this class and implement
    the required methods for synthesizing speech and listing voices.
    Failures are reported by raising a ``TTSError`` subclass so that
    timeouts, quota/auth problems and transport errors stay distinguishable
    in logs.

    Voice Dictionary Structure:
        Each voice returned by list_voices() should follow this structure:
        {
            "id": str,       # Unique identifier for the voice
            "name": str,     # Human-readable name for the voice
            "provider": str  # Name of the provider (e.g., "elevenlabs", "system")
        }
    """

    #: Whether ``stream`` yields audio incrementally rather than in one chunk
    supports_streaming: ClassVar[bool] = False

    @abstractmethod
    async def synthesize(
        self, text: str, voice: str, settings: VoiceSettings | None = None
    ) -> bytes:
        """Convert text to audio bytes.

        Args:
            text: The text to convert to speech
            voice: Voice ID or name to use for synthesis
            settings: Optional synthesis settings

        Returns:
            Audio data as bytes

        Raises:
            TTSError: If synthesis fails
        """
        pass

    @abstractmethod
    async def list_voices(self) -> list[dict]:
        """Return available voices for this provider.

        Returns:
            List of voice dictionaries, each containing:
            - id: Unique voice identifier
            - name: Human-readable voice name
            - provider: Provider name

        Raises:
            Exception: If voice listing fails
        """
        pass

    async def stream(
        self, text: str, voice: str, settings: VoiceSettings | None = None
    ) -> AsyncIterator[bytes]:
        """Yield audio chunks as they become available.

        Providers without native streaming synthesize fully and yield a
        single chunk.
        """
        audio = await self.synthesize(text, voice, settings)
        if audio:
            yield audio

    async def is_reachable(self) -> bool:
        """Out-of-band readiness probe. Not used on the synthesis path."""
        return True

    async def get_quota(self) -> QuotaInfo | None:
        """Account usage for providers that meter characters."""
        return None
