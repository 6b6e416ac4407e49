"""speakwell - resilient text-to-speech with caching, rate limiting and fallback."""

__version__ = "0.1.0"
__all__ = ["generate_speech", "stream_speech"]


def __getattr__(name: str):  # type: ignore[no-untyped-def]
    if name in __all__:
        from . import api

        return getattr(api, name)
    raise AttributeError(f"module 'speakwell' has no attribute {name!r}")
