"""In-memory audio response cache for speakwell."""

from .models import CacheEntry
from .store import AudioCache

__all__ = ["AudioCache", "CacheEntry"]
