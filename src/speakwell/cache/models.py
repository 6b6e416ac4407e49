"""Data models for the audio response cache."""

from dataclasses import dataclass, field


@dataclass
class CacheEntry:
    """Cached synthesis result.

    Attributes:
        fingerprint: Digest of normalized text, voice and settings
        audio: Synthesized audio bytes
        created_at: Clock reading when the entry was stored
        last_accessed_at: Clock reading of the most recent hit
        size_bytes: Size of the audio, used for budget accounting
    """

    fingerprint: str
    audio: bytes
    created_at: float
    last_accessed_at: float
    size_bytes: int = field(init=False)

    def __post_init__(self) -> None:
        self.audio = bytes(self.audio)
        self.size_bytes = len(self.audio)

    def age(self, now: float) -> float:
        return now - self.created_at

    def is_expired(self, now: float, ttl: float | None) -> bool:
        return ttl is not None and self.age(now) > ttl
