"""TTS data models with validation."""

import hashlib
import json
import re
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone

DEFAULT_OUTPUT_FORMAT = "mp3_44100_128"
DEFAULT_VOICE = "default"

_WHITESPACE = re.compile(r"\s+")


def normalize_text(text: str | None) -> str:
    """Trim text and collapse internal runs of whitespace to single spaces."""
    if not text:
        return ""
    return _WHITESPACE.sub(" ", text).strip()


@dataclass
class VoiceInfo:
    """Information about an available voice.

    Args:
        voice_id: Unique identifier for the voice
        name: Human-readable name of the voice
        category: Optional voice category (e.g., "premade", "cloned")
        description: Optional voice description
    """

    voice_id: str
    name: str
    category: str | None = None
    description: str | None = None

    def __post_init__(self) -> None:
        """Validate voice information."""
        if not self.voice_id or not self.voice_id.strip():
            raise ValueError("voice_id cannot be empty")
        if not self.name or not self.name.strip():
            raise ValueError("name cannot be empty")


@dataclass(frozen=True)
class VoiceSettings:
    """Voice generation settings.

    Instances are immutable so they can be shared between the cache key
    and the payload forwarded to a backend.

    Args:
        stability: Voice stability (0.0-1.0)
        similarity_boost: Voice similarity boost (0.0-1.0)
        style: Voice style exaggeration (0.0-1.0)
        use_speaker_boost: Whether to use speaker boost
        speaking_rate: Speaking rate (0.25-4.0)
        output_format: Audio format tag (e.g., "mp3_44100_128")
    """

    stability: float = 0.75
    similarity_boost: float = 0.85
    style: float = 0.0
    use_speaker_boost: bool = True
    speaking_rate: float = 0.9
    output_format: str = DEFAULT_OUTPUT_FORMAT

    def __post_init__(self) -> None:
        """Validate voice settings."""
        if not 0.0 <= self.stability <= 1.0:
            raise ValueError("stability must be between 0.0 and 1.0")
        if not 0.0 <= self.similarity_boost <= 1.0:
            raise ValueError("similarity_boost must be between 0.0 and 1.0")
        if not 0.0 <= self.style <= 1.0:
            raise ValueError("style must be between 0.0 and 1.0")
        if not 0.25 <= self.speaking_rate <= 4.0:
            raise ValueError("speaking_rate must be between 0.25 and 4.0")
        if not self.output_format or not self.output_format.strip():
            raise ValueError("output_format cannot be empty")

    @classmethod
    def preset(cls, name: str, output_format: str = DEFAULT_OUTPUT_FORMAT) -> "VoiceSettings":
        """Build one of the named voice presets.

        Args:
            name: Preset name ("jarvis", "excited", "concerned", "calm").
                Aliases "enthusiastic", "warning" and "reassuring" are accepted.
            output_format: Audio format tag for the preset

        Returns:
            VoiceSettings for the preset

        Raises:
            ValueError: If the preset name is unknown
        """
        key = PRESET_ALIASES.get(name.strip().lower(), name.strip().lower())
        if key not in PRESETS:
            available = ", ".join(sorted(PRESETS))
            raise ValueError(f"Unknown voice preset '{name}'. Available presets: {available}")
        return replace(PRESETS[key], output_format=output_format)

    def with_format(self, output_format: str) -> "VoiceSettings":
        """Return a copy of these settings using a different output format."""
        return replace(self, output_format=output_format)

    def canonical(self) -> dict[str, str | bool]:
        """Stable serialization used for cache fingerprints.

        Floats are encoded with repr, which round-trips exactly, so settings
        that reach the backend differently never share a fingerprint.
        """
        return {
            "stability": repr(float(self.stability)),
            "similarity_boost": repr(float(self.similarity_boost)),
            "style": repr(float(self.style)),
            "speaking_rate": repr(float(self.speaking_rate)),
            "use_speaker_boost": self.use_speaker_boost,
            "output_format": self.output_format,
        }

    def to_dict(self) -> dict[str, float | bool]:
        """Voice settings payload in the shape the ElevenLabs API expects."""
        return {
            "stability": self.stability,
            "similarity_boost": self.similarity_boost,
            "style": self.style,
            "use_speaker_boost": self.use_speaker_boost,
            "speed": self.speaking_rate,
        }


PRESETS: dict[str, VoiceSettings] = {
    "jarvis": VoiceSettings(),
    "excited": VoiceSettings(
        stability=0.6, similarity_boost=0.8, style=0.3, speaking_rate=1.1
    ),
    "concerned": VoiceSettings(
        stability=0.8, similarity_boost=0.9, style=0.1, speaking_rate=0.8
    ),
    "calm": VoiceSettings(
        stability=0.85, similarity_boost=0.9, style=0.0, speaking_rate=0.85
    ),
}

PRESET_ALIASES = {
    "enthusiastic": "excited",
    "warning": "concerned",
    "reassuring": "calm",
}


def compute_fingerprint(text: str, voice_id: str, settings: VoiceSettings) -> str:
    """Compute the cache fingerprint for a synthesis request.

    Args:
        text: Normalized text
        voice_id: Voice identity
        settings: Synthesis settings

    Returns:
        64-character SHA-256 hex digest
    """
    payload = json.dumps(
        {"text": text, "voice": voice_id, "settings": settings.canonical()},
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
    )
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


@dataclass(frozen=True)
class SynthesisRequest:
    """Immutable synthesis request.

    Text is normalized on construction; the fingerprint is derived from the
    normalized text, the voice identity and the canonical settings.
    """

    text: str
    voice_id: str = DEFAULT_VOICE
    settings: VoiceSettings = field(default_factory=VoiceSettings)

    def __post_init__(self) -> None:
        object.__setattr__(self, "text", normalize_text(self.text))
        object.__setattr__(self, "voice_id", (self.voice_id or DEFAULT_VOICE).strip())

    @property
    def fingerprint(self) -> str:
        return compute_fingerprint(self.text, self.voice_id, self.settings)

    @property
    def character_count(self) -> int:
        return len(self.text)


@dataclass(frozen=True)
class QuotaInfo:
    """Character usage reported by a provider account.

    Args:
        character_count: Characters used in the current billing period
        character_limit: Characters allowed in the current billing period
        next_reset: When the usage counter resets, if known
    """

    character_count: int
    character_limit: int
    next_reset: datetime | None = None

    @classmethod
    def from_unix_reset(
        cls, character_count: int, character_limit: int, reset_unix: int | None
    ) -> "QuotaInfo":
        next_reset = (
            datetime.fromtimestamp(reset_unix, tz=timezone.utc) if reset_unix else None
        )
        return cls(character_count, character_limit, next_reset)

    @property
    def characters_remaining(self) -> int:
        return max(0, self.character_limit - self.character_count)

    @property
    def used_percentage(self) -> float:
        if self.character_limit <= 0:
            return 0.0
        return self.character_count / self.character_limit * 100
