"""Silent terminal provider.

Always succeeds and produces no audio. It sits at the end of every backend
table so that synthesis has a well-defined result even when every real
backend is down.
"""

from collections.abc import AsyncIterator

from ..tts.models import VoiceSettings
from .base import TTSProvider


class SilentProvider(TTSProvider):
    """Provider that returns empty audio without doing any work."""

    supports_streaming = True

    async def synthesize(
        self, text: str, voice: str, settings: VoiceSettings | None = None
    ) -> bytes:
        return b""

    async def stream(
        self, text: str, voice: str, settings: VoiceSettings | None = None
    ) -> AsyncIterator[bytes]:
        return
        yield b""

    async def list_voices(self) -> list[dict]:
        return [{"id": "silent", "name": "Silence", "provider": "silent"}]
