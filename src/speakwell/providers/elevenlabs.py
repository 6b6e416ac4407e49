"""ElevenLabs text-to-speech provider implementation."""

import asyncio
import logging
import os
from collections.abc import AsyncIterator

import httpx
from elevenlabs.client import ElevenLabs

from ..tts.errors import (
    TTSAPIError,
    TTSAuthError,
    TTSError,
    TTSQuotaError,
    TTSTimeoutError,
    TTSTransportError,
)
from ..tts.models import DEFAULT_VOICE, QuotaInfo, VoiceSettings
from .base import TTSProvider

logger = logging.getLogger(__name__)

DEFAULT_VOICE_ID = "EXAVITQu4vr4xnSDxMaL"
DEFAULT_MODEL_ID = "eleven_multilingual_v2"
DEFAULT_TIMEOUT_SECONDS = 30.0


def map_error(error: Exception, action: str) -> TTSError:
    """Translate an SDK or transport exception into a TTSError.

    The SDK raises ``ApiError`` carrying ``status_code`` for non-success
    responses and lets httpx exceptions through for network problems.
    """
    if isinstance(error, TTSError):
        return error
    if isinstance(error, httpx.TimeoutException):
        return TTSTimeoutError(f"{action} timed out: {error}", error)
    if isinstance(error, httpx.TransportError):
        return TTSTransportError(f"{action} could not reach ElevenLabs: {error}", error)

    status = getattr(error, "status_code", None)
    message = str(error)
    if status == 429 or "quota_exceeded" in message:
        return TTSQuotaError(f"Quota exceeded: {message}", status, error)
    if status in (401, 403):
        return TTSAuthError(f"Authentication failed: {message}", error)
    if status is not None and status >= 500:
        return TTSAPIError(f"Server error: {message}", status, error)
    return TTSAPIError(f"{action} failed: {message}", status, error)


class ElevenLabsProvider(TTSProvider):
    """ElevenLabs TTS provider implementation.

    Provides methods to synthesize and stream speech, list voices and read
    account quota using the ElevenLabs API. The SDK client is synchronous,
    so every call runs in a worker thread.
    """

    supports_streaming = True

    def __init__(
        self,
        api_key: str | None = None,
        model_id: str = DEFAULT_MODEL_ID,
        default_voice: str = DEFAULT_VOICE_ID,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
    ) -> None:
        """Initialize ElevenLabs provider.

        Args:
            api_key: ElevenLabs API key. If not provided, reads from
                    ELEVENLABS_API_KEY environment variable.
            model_id: Model used for synthesis
            default_voice: Voice used when the request names none
            timeout: HTTP timeout for API calls in seconds

        Raises:
            TTSAuthError: If API key is not provided or invalid.
        """
        self._api_key = api_key or os.getenv("ELEVENLABS_API_KEY")
        if not self._api_key:
            raise TTSAuthError(
                "ElevenLabs API key not found. Set ELEVENLABS_API_KEY environment "
                "variable or provide api_key parameter."
            )

        try:
            self._client = ElevenLabs(api_key=self._api_key, timeout=timeout)
        except Exception as e:
            raise TTSAuthError(f"Failed to initialize ElevenLabs client: {e}", e) from e

        self.model_id = model_id
        self.default_voice = default_voice

        # Cache for voices to avoid repeated API calls
        self._voices_cache: list[dict] | None = None

    def _resolve_voice(self, voice: str | None) -> str:
        if not voice or voice == DEFAULT_VOICE:
            return self.default_voice
        return voice

    def _request_kwargs(self, text: str, voice: str, settings: VoiceSettings | None) -> dict:
        settings = settings or VoiceSettings()
        return {
            "voice_id": self._resolve_voice(voice),
            "text": text,
            "model_id": self.model_id,
            "output_format": settings.output_format,
            "voice_settings": settings.to_dict(),
        }

    async def synthesize(
        self, text: str, voice: str, settings: VoiceSettings | None = None
    ) -> bytes:
        """Convert text to speech audio bytes.

        Args:
            text: Text to convert to speech
            voice: Voice ID to use for synthesis
            settings: Voice settings and output format

        Returns:
            Audio data as bytes in the requested output format

        Raises:
            TTSAuthError: If authentication fails
            TTSQuotaError: If the account is rate limited or out of characters
            TTSTimeoutError: If the API does not answer in time
            TTSTransportError: If the API cannot be reached
            TTSAPIError: For any other non-success response
            ValueError: If text is empty
        """
        if not text or not text.strip():
            raise ValueError("Text cannot be empty")

        kwargs = self._request_kwargs(text.strip(), voice, settings)

        def _sync_convert() -> bytes:
            audio_generator = self._client.text_to_speech.convert(**kwargs)
            # Collect all audio chunks
            return b"".join(audio_generator)

        try:
            # Execute in thread pool to avoid blocking
            audio_bytes = await asyncio.to_thread(_sync_convert)
        except Exception as e:
            raise map_error(e, "Speech synthesis") from e

        logger.debug(
            f"ElevenLabs returned {len(audio_bytes)} bytes "
            f"(voice={kwargs['voice_id']}, model={self.model_id})"
        )
        return audio_bytes

    async def stream(
        self, text: str, voice: str, settings: VoiceSettings | None = None
    ) -> AsyncIterator[bytes]:
        """Yield audio chunks as the API produces them.

        Each chunk is pulled from the SDK iterator in a worker thread so the
        event loop stays responsive between chunks.
        """
        if not text or not text.strip():
            raise ValueError("Text cannot be empty")

        kwargs = self._request_kwargs(text.strip(), voice, settings)

        try:
            chunks = await asyncio.to_thread(
                lambda: iter(self._client.text_to_speech.stream(**kwargs))
            )
        except Exception as e:
            raise map_error(e, "Speech streaming") from e

        try:
            while True:
                try:
                    chunk = await asyncio.to_thread(next, chunks, None)
                except Exception as e:
                    raise map_error(e, "Speech streaming") from e
                if chunk is None:
                    return
                if chunk:
                    yield chunk
        finally:
            close = getattr(chunks, "close", None)
            if close is not None:
                try:
                    close()
                except ValueError:
                    # Generator is still executing in a worker thread after a timeout
                    logger.debug("ElevenLabs stream busy in worker thread, not closed")

    async def list_voices(self) -> list[dict]:
        """Get list of available voices.

        Results are cached after first call to avoid repeated API requests.

        Returns:
            List of voice dictionaries with id, name, and provider fields

        Raises:
            TTSAPIError: If API call fails
            TTSAuthError: If authentication fails
        """
        if self._voices_cache is not None:
            return self._voices_cache

        def _sync_get_voices() -> list[dict]:
            response = self._client.voices.get_all()
            return [
                {"id": voice.voice_id, "name": voice.name, "provider": "elevenlabs"}
                for voice in response.voices
            ]

        try:
            voices = await asyncio.to_thread(_sync_get_voices)
        except Exception as e:
            raise map_error(e, "Listing voices") from e

        self._voices_cache = voices
        return voices

    async def get_quota(self) -> QuotaInfo | None:
        """Character usage of the account's current billing period.

        Raises:
            TTSError: If the subscription endpoint fails
        """
        try:
            subscription = await asyncio.to_thread(self._client.user.subscription.get)
        except Exception as e:
            raise map_error(e, "Reading subscription") from e

        return QuotaInfo.from_unix_reset(
            subscription.character_count,
            subscription.character_limit,
            getattr(subscription, "next_character_count_reset_unix", None),
        )

    async def is_reachable(self) -> bool:
        """Check the API answers an authenticated request."""
        try:
            await asyncio.to_thread(self._client.user.get)
        except Exception as e:
            logger.debug(f"ElevenLabs health check failed: {map_error(e, 'Health check')}")
            return False
        return True
