"""Configuration management for speakwell.

Loads configuration from ~/.config/speakwell/config.toml, falling back to
built-in defaults when the file does not exist.
Priority chain: CLI flags > env vars > config file > defaults.
"""

import os
import tomllib
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from .tts.errors import ConfigurationError
from .tts.models import DEFAULT_VOICE, VoiceSettings

CONFIG_DIR = Path.home() / ".config" / "speakwell"
CONFIG_PATH = CONFIG_DIR / "config.toml"

KNOWN_BACKENDS = ("elevenlabs", "kokoro", "system", "silent")

DEFAULT_CONFIG = """\
# speakwell configuration

[tts]
# Backends in fallback order. The silent backend is always appended last,
# so a request never fails outright.
# "elevenlabs" (cloud), "kokoro" (local neural, needs the kokoro extra),
# "system" (OS built-in)
backends = ["elevenlabs", "system"]

# Voice for synthesis; "default" lets each backend use its own default
voice = "default"

# Voice preset: "jarvis", "excited", "concerned", "calm"
preset = "jarvis"

# Audio format tag requested from the cloud backend
output_format = "mp3_44100_128"

[elevenlabs]
model_id = "eleven_multilingual_v2"
voice = "EXAVITQu4vr4xnSDxMaL"
# Forward audio chunks as they arrive when streaming
streaming = true
# HTTP timeout in seconds
timeout = 30.0

[system]
# Platform voice name (say -v / espeak -v / SAPI); empty uses the OS default
voice = ""

[kokoro]
voice = "af_heart"
# Compute device: "auto", "mps" (Apple Silicon), "cuda", "cpu"
device = "auto"

[cache]
# In-memory cache of synthesized audio keyed by text, voice and settings
enabled = true
max_size_mb = 100
# Entry lifetime; 0 keeps entries until they are evicted for space
ttl_hours = 24
# Interval of the background sweep of expired entries (0 disables it)
sweep_minutes = 10

[rate_limit]
# Client-side sliding window limits for the cloud backend
enabled = true
max_requests = 100
max_characters = 50000
window_seconds = 60

[fallback]
# Consecutive failures before a backend is skipped
failure_threshold = 3
# How long a failing backend is skipped
cooldown_seconds = 300
# Per-call timeout for every backend
timeout_seconds = 30
# Longest wait for rate limit quota when no other backend succeeded (0 = never wait)
max_quota_wait_seconds = 0

# API keys are read from environment variables, not this file:
#   ELEVENLABS_API_KEY  - ElevenLabs backend
"""


@dataclass(frozen=True)
class TTSConfig:
    """Backend order and request defaults."""

    backends: tuple[str, ...]
    voice: str
    preset: str
    output_format: str


@dataclass(frozen=True)
class ElevenLabsConfig:
    """ElevenLabs backend configuration."""

    model_id: str
    voice: str
    streaming: bool
    timeout: float


@dataclass(frozen=True)
class SystemConfig:
    """System TTS backend configuration."""

    voice: str


@dataclass(frozen=True)
class KokoroConfig:
    """Kokoro backend configuration."""

    voice: str
    device: str


@dataclass(frozen=True)
class CacheConfig:
    """Audio cache configuration."""

    enabled: bool
    max_size_mb: float
    ttl_hours: float
    sweep_minutes: float

    @property
    def max_bytes(self) -> int:
        return int(self.max_size_mb * 1024 * 1024)

    @property
    def ttl_seconds(self) -> float | None:
        return self.ttl_hours * 3600 if self.ttl_hours > 0 else None


@dataclass(frozen=True)
class RateLimitConfig:
    """Sliding window limits for the cloud backend."""

    enabled: bool
    max_requests: int
    max_characters: int
    window_seconds: float


@dataclass(frozen=True)
class FallbackConfig:
    """Health tracking and fallback behaviour."""

    failure_threshold: int
    cooldown_seconds: float
    timeout_seconds: float
    max_quota_wait_seconds: float


@dataclass(frozen=True)
class SpeakwellConfig:
    """Top-level speakwell configuration."""

    tts: TTSConfig
    elevenlabs: ElevenLabsConfig
    system: SystemConfig
    kokoro: KokoroConfig
    cache: CacheConfig
    rate_limit: RateLimitConfig
    fallback: FallbackConfig

    def voice_settings(self) -> VoiceSettings:
        return VoiceSettings.preset(self.tts.preset, self.tts.output_format)


_cached_config: SpeakwellConfig | None = None


def generate_config(path: Path | None = None) -> Path:
    """Generate default config file at ~/.config/speakwell/config.toml."""
    path = path or CONFIG_PATH
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(DEFAULT_CONFIG)
    return path


def reset_config_cache() -> None:
    global _cached_config
    _cached_config = None


def _table(data: dict[str, Any], name: str) -> dict[str, Any]:
    value = data.get(name, {})
    if not isinstance(value, dict):
        raise ConfigurationError(f"[{name}] must be a table")
    return value


def _value(table: dict[str, Any], section: str, key: str, kind: type) -> Any:
    """Read a typed value; defaults guarantee the key exists."""
    value = table[key]
    if kind is float and isinstance(value, int) and not isinstance(value, bool):
        value = float(value)
    if not isinstance(value, kind) or (kind is not bool and isinstance(value, bool)):
        raise ConfigurationError(
            f"{section}.{key} must be {kind.__name__}, got {value!r}"
        )
    return value


def _merge(defaults: dict[str, Any], data: dict[str, Any]) -> dict[str, Any]:
    merged = {}
    for section, values in defaults.items():
        merged[section] = {**values, **_table(data, section)}
    return merged


def _parse_backends(value: Any) -> tuple[str, ...]:
    if isinstance(value, str):
        value = value.split(",")
    if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
        raise ConfigurationError(f"tts.backends must be a list of names, got {value!r}")

    backends = tuple(name.strip().lower() for name in value if name.strip())
    if not backends:
        raise ConfigurationError("tts.backends must name at least one backend")

    unknown = [name for name in backends if name not in KNOWN_BACKENDS]
    if unknown:
        raise ConfigurationError(
            f"Unknown backends: {', '.join(unknown)}. "
            f"Available backends: {', '.join(KNOWN_BACKENDS)}"
        )
    duplicates = sorted({name for name in backends if backends.count(name) > 1})
    if duplicates:
        raise ConfigurationError(f"Duplicate backends: {', '.join(duplicates)}")
    return backends


def _validate(config: SpeakwellConfig) -> None:
    try:
        config.voice_settings()
    except ValueError as e:
        raise ConfigurationError(str(e), e) from e

    checks = [
        (config.elevenlabs.timeout > 0, "elevenlabs.timeout must be positive"),
        (config.cache.max_size_mb >= 0, "cache.max_size_mb must be non-negative"),
        (config.cache.ttl_hours >= 0, "cache.ttl_hours must be non-negative"),
        (config.cache.sweep_minutes >= 0, "cache.sweep_minutes must be non-negative"),
        (config.rate_limit.max_requests >= 1, "rate_limit.max_requests must be at least 1"),
        (
            config.rate_limit.max_characters >= 1,
            "rate_limit.max_characters must be at least 1",
        ),
        (config.rate_limit.window_seconds > 0, "rate_limit.window_seconds must be positive"),
        (
            config.fallback.failure_threshold >= 1,
            "fallback.failure_threshold must be at least 1",
        ),
        (config.fallback.cooldown_seconds >= 0, "fallback.cooldown_seconds must be non-negative"),
        (config.fallback.timeout_seconds > 0, "fallback.timeout_seconds must be positive"),
        (
            config.fallback.max_quota_wait_seconds >= 0,
            "fallback.max_quota_wait_seconds must be non-negative",
        ),
    ]
    for ok, message in checks:
        if not ok:
            raise ConfigurationError(message)


def parse_config(data: dict[str, Any]) -> SpeakwellConfig:
    """Build a validated configuration from parsed TOML.

    Missing keys take their built-in defaults; environment variables
    override file values.

    Raises:
        ConfigurationError: If a value has the wrong type or range
    """
    merged = _merge(tomllib.loads(DEFAULT_CONFIG), data)
    tts = merged["tts"]
    eleven = merged["elevenlabs"]
    system = merged["system"]
    kokoro = merged["kokoro"]
    cache = merged["cache"]
    rate = merged["rate_limit"]
    fallback = merged["fallback"]

    # Env vars override config file values
    backends = os.getenv("SPEAKWELL_BACKENDS") or tts["backends"]

    config = SpeakwellConfig(
        tts=TTSConfig(
            backends=_parse_backends(backends),
            voice=os.getenv("SPEAKWELL_VOICE") or _value(tts, "tts", "voice", str) or DEFAULT_VOICE,
            preset=_value(tts, "tts", "preset", str),
            output_format=os.getenv("SPEAKWELL_OUTPUT_FORMAT")
            or _value(tts, "tts", "output_format", str),
        ),
        elevenlabs=ElevenLabsConfig(
            model_id=_value(eleven, "elevenlabs", "model_id", str),
            voice=_value(eleven, "elevenlabs", "voice", str),
            streaming=_value(eleven, "elevenlabs", "streaming", bool),
            timeout=_value(eleven, "elevenlabs", "timeout", float),
        ),
        system=SystemConfig(voice=_value(system, "system", "voice", str)),
        kokoro=KokoroConfig(
            voice=_value(kokoro, "kokoro", "voice", str),
            device=os.getenv("SPEAKWELL_KOKORO_DEVICE")
            or _value(kokoro, "kokoro", "device", str),
        ),
        cache=CacheConfig(
            enabled=_value(cache, "cache", "enabled", bool),
            max_size_mb=_value(cache, "cache", "max_size_mb", float),
            ttl_hours=_value(cache, "cache", "ttl_hours", float),
            sweep_minutes=_value(cache, "cache", "sweep_minutes", float),
        ),
        rate_limit=RateLimitConfig(
            enabled=_value(rate, "rate_limit", "enabled", bool),
            max_requests=_value(rate, "rate_limit", "max_requests", int),
            max_characters=_value(rate, "rate_limit", "max_characters", int),
            window_seconds=_value(rate, "rate_limit", "window_seconds", float),
        ),
        fallback=FallbackConfig(
            failure_threshold=_value(fallback, "fallback", "failure_threshold", int),
            cooldown_seconds=_value(fallback, "fallback", "cooldown_seconds", float),
            timeout_seconds=_value(fallback, "fallback", "timeout_seconds", float),
            max_quota_wait_seconds=_value(
                fallback, "fallback", "max_quota_wait_seconds", float
            ),
        ),
    )
    _validate(config)
    return config


def load_config(path: Path | None = None) -> SpeakwellConfig:
    """Load configuration from config file with env var overrides.

    Uses built-in defaults when the file does not exist. The result for
    the default path is cached for the life of the process.

    Args:
        path: Explicit config file, bypasses the cache

    Returns:
        Loaded and validated SpeakwellConfig.

    Raises:
        ConfigurationError: If the file is not valid TOML or a value is invalid.
    """
    global _cached_config
    if path is None and _cached_config is not None:
        return _cached_config

    config_path = path or CONFIG_PATH
    data: dict[str, Any] = {}
    if config_path.exists():
        try:
            with open(config_path, "rb") as f:
                data = tomllib.load(f)
        except tomllib.TOMLDecodeError as e:
            raise ConfigurationError(f"Invalid TOML in {config_path}: {e}", e) from e

    config = parse_config(data)
    if path is None:
        _cached_config = config
    return config
