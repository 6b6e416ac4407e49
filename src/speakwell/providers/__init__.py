"""Provider abstraction for text-to-speech services.

This module provides a registry pattern for managing TTS providers,
allowing the backend table to be assembled from configuration by name.
"""

from typing import TYPE_CHECKING, Any, ClassVar

if TYPE_CHECKING:
    from .base import TTSProvider

from .elevenlabs import ElevenLabsProvider
from .kokoro import KokoroProvider
from .silent import SilentProvider
from .system import SystemTTSProvider

__all__ = [
    "ElevenLabsProvider",
    "KokoroProvider",
    "ProviderRegistry",
    "SilentProvider",
    "SystemTTSProvider",
]


class ProviderRegistry:
    """Registry for managing TTS providers.

    This class maintains a registry of available TTS providers,
    allowing registration and retrieval by name.
    """

    _providers: ClassVar[dict[str, type["TTSProvider"]]] = {}

    @classmethod
    def register(cls, name: str, provider_class: type["TTSProvider"]) -> None:
        """Register a TTS provider.

        Args:
            name: Name to register the provider under
            provider_class: Provider class that implements TTSProvider
        """
        cls._providers[name] = provider_class

    @classmethod
    def get(cls, name: str) -> type["TTSProvider"]:
        """Get a provider class by name.

        Args:
            name: Name of the provider to retrieve

        Returns:
            Provider class

        Raises:
            KeyError: If provider name not found
        """
        if name not in cls._providers:
            available = ", ".join(cls._providers.keys()) if cls._providers else "none"
            raise KeyError(
                f"Provider '{name}' not found. Available providers: {available}"
            )
        return cls._providers[name]

    @classmethod
    def create(cls, name: str, **options: Any) -> "TTSProvider":
        """Instantiate a registered provider.

        Args:
            name: Name of the provider
            **options: Constructor arguments for the provider

        Raises:
            KeyError: If provider name not found
        """
        return cls.get(name)(**options)

    @classmethod
    def names(cls) -> list[str]:
        return list(cls._providers)


# Register providers
ProviderRegistry.register("elevenlabs", ElevenLabsProvider)
ProviderRegistry.register("kokoro", KokoroProvider)
ProviderRegistry.register("system", SystemTTSProvider)
ProviderRegistry.register("silent", SilentProvider)
