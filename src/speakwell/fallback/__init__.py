"""Resilience layer: rate limiting, health tracking and backend fallback."""

from .health import BackendHealthTracker, BackendState
from .limiter import RateDecision, RateLimit, SlidingWindowRateLimiter
from .orchestrator import (
    AudioStream,
    BackendDescriptor,
    FallbackOrchestrator,
    StreamState,
    SynthesisResult,
)

__all__ = [
    "AudioStream",
    "BackendDescriptor",
    "BackendHealthTracker",
    "BackendState",
    "FallbackOrchestrator",
    "RateDecision",
    "RateLimit",
    "SlidingWindowRateLimiter",
    "StreamState",
    "SynthesisResult",
]
