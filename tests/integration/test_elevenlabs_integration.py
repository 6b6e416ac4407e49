"""Integration tests for ElevenLabsProvider with the real ElevenLabs API."""

import os
import sys
from pathlib import Path

import pytest

# Add src to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent.parent / "src"))

from speakwell.providers.elevenlabs import ElevenLabsProvider
from speakwell.tts.errors import TTSAuthError

# Read before the test fixtures clear the environment
API_KEY = os.getenv("ELEVENLABS_API_KEY")

pytestmark = [
    pytest.mark.integration,
    pytest.mark.skipif(not API_KEY, reason="ELEVENLABS_API_KEY not set"),
]


class TestElevenLabsProviderRealAPIIntegration:
    """Test ElevenLabsProvider against the live API."""

    @pytest.mark.asyncio
    async def test_list_voices_returns_real_voices(self) -> None:
        """Test list_voices returns actual voices from ElevenLabs API."""
        provider = ElevenLabsProvider(api_key=API_KEY)

        voices = await provider.list_voices()

        assert len(voices) > 0, "Should return at least one voice"
        assert voices[0]["provider"] == "elevenlabs"
        assert voices[0]["id"], "Voice ID should not be empty"

    @pytest.mark.asyncio
    async def test_synthesize_returns_mp3(self) -> None:
        """Test synthesize returns real MP3 audio."""
        provider = ElevenLabsProvider(api_key=API_KEY)

        audio = await provider.synthesize("Integration test", "default")

        assert len(audio) > 1000, "Audio should be substantial (>1KB)"
        assert audio[:3] == b"ID3" or audio[0] == 0xFF, "Should be MP3 format"

    @pytest.mark.asyncio
    async def test_stream_yields_chunks(self) -> None:
        """Test streaming yields audio incrementally."""
        provider = ElevenLabsProvider(api_key=API_KEY)

        chunks = [chunk async for chunk in provider.stream("Streaming test", "default")]

        assert chunks
        assert sum(len(chunk) for chunk in chunks) > 1000

    @pytest.mark.asyncio
    async def test_quota_and_reachability(self) -> None:
        """Test the account endpoints answer."""
        provider = ElevenLabsProvider(api_key=API_KEY)

        assert await provider.is_reachable() is True
        quota = await provider.get_quota()
        assert quota is not None
        assert quota.character_limit >= 0

    @pytest.mark.asyncio
    async def test_invalid_key_is_auth_error(self) -> None:
        """Test a rejected key surfaces as TTSAuthError."""
        provider = ElevenLabsProvider(api_key="invalid-key")

        with pytest.raises(TTSAuthError):
            await provider.synthesize("Hello", "default")
