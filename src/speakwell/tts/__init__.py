"""TTS (Text-to-Speech) package for speakwell.

This package provides the synthesis facade together with its errors and
value objects.
"""

from .errors import (
    ConfigurationError,
    TTSAPIError,
    TTSAuthError,
    TTSEmptyResultError,
    TTSError,
    TTSQuotaError,
    TTSTimeoutError,
    TTSTransportError,
)
from .models import QuotaInfo, SynthesisRequest, VoiceInfo, VoiceSettings

__all__ = [
    "ConfigurationError",
    "QuotaInfo",
    "SynthesisRequest",
    "TTSAPIError",
    "TTSAuthError",
    "TTSEmptyResultError",
    "TTSError",
    "TTSQuotaError",
    "TTSTimeoutError",
    "TTSTransportError",
    "VoiceInfo",
    "VoiceSettings",
]
