"""Pytest configuration and fixtures for speakwell tests."""

import sys
from collections.abc import Generator
from pathlib import Path

import pytest

# Add src and the shared test helpers to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))
sys.path.insert(0, str(Path(__file__).parent))

from test_helpers import FakeClock


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture(autouse=True)
def isolated_config(monkeypatch, tmp_path) -> Generator[Path]:
    """Point config at a temp file and clear overrides for every test."""
    import speakwell.api
    import speakwell.cli
    import speakwell.config

    config_path = tmp_path / "speakwell" / "config.toml"
    monkeypatch.setattr(speakwell.config, "CONFIG_PATH", config_path)
    monkeypatch.setattr(speakwell.cli, "CONFIG_PATH", config_path)
    for name in (
        "SPEAKWELL_VOICE",
        "SPEAKWELL_BACKENDS",
        "SPEAKWELL_OUTPUT_FORMAT",
        "SPEAKWELL_KOKORO_DEVICE",
        "ELEVENLABS_API_KEY",
    ):
        monkeypatch.delenv(name, raising=False)

    speakwell.config.reset_config_cache()
    speakwell.api.set_pipeline(None)
    yield config_path
    speakwell.config.reset_config_cache()
    speakwell.api.set_pipeline(None)
