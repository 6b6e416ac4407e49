"""Test package structure and imports."""

import sys
import tomllib
from pathlib import Path

# Add src to path for testing
sys.path.insert(0, str(Path(__file__).parent.parent.parent / "src"))


def test_package_imports() -> None:
    """Test that speakwell package can be imported."""
    import speakwell

    assert speakwell.__version__ == "0.1.0"


def test_main_module_imports() -> None:
    """Test that main module can be imported without error."""
    from speakwell.__main__ import main

    assert callable(main)


def test_public_modules_import() -> None:
    """Test that every layer imports without optional extras installed."""
    from speakwell.cache import AudioCache
    from speakwell.fallback import FallbackOrchestrator
    from speakwell.providers import ProviderRegistry
    from speakwell.tts import SynthesisRequest

    assert all((AudioCache, FallbackOrchestrator, ProviderRegistry, SynthesisRequest))


def test_project_readme_is_user_facing() -> None:
    """Test that the package long description is the README."""
    root = Path(__file__).parent.parent.parent
    project = tomllib.loads((root / "pyproject.toml").read_text())["project"]

    assert project["readme"] == "README.md"
    assert (root / "README.md").exists()
