"""System TTS provider using native OS text-to-speech commands.

This module provides text-to-speech functionality using the built-in
TTS capabilities of the operating system (say on macOS, espeak on Linux,
SAPI on Windows). It is the local fallback when the cloud provider is
unavailable.
"""

import asyncio
import logging
import platform
import shutil
import subprocess
import tempfile
from pathlib import Path

from ..tts.errors import TTSError
from ..tts.models import DEFAULT_VOICE, VoiceSettings
from .base import TTSProvider

logger = logging.getLogger(__name__)

# Words per minute at speaking_rate 1.0 for say and espeak
BASE_WORDS_PER_MINUTE = 175

REQUIRED_COMMANDS = {
    "Darwin": ("say", "afconvert"),
    "Linux": ("espeak",),
    "Windows": ("powershell",),
}


def words_per_minute(speaking_rate: float) -> int:
    return max(1, round(BASE_WORDS_PER_MINUTE * speaking_rate))


def sapi_rate(speaking_rate: float) -> int:
    """Map a speaking rate multiplier to SAPI's -10..10 scale."""
    return max(-10, min(10, round((speaking_rate - 1.0) * 10)))


def _ps_quote(value: str) -> str:
    return "'" + value.replace("'", "''") + "'"


class SystemTTSProvider(TTSProvider):
    """System TTS provider using native OS commands.

    Provides text-to-speech functionality without requiring external APIs,
    using the built-in TTS capabilities of the operating system.

    Note: Audio quality will be robotic compared to AI-powered voices.
    """

    def __init__(self, default_voice: str | None = None) -> None:
        """Initialize system TTS provider and detect platform.

        Args:
            default_voice: Platform voice used when the request names none

        Raises:
            RuntimeError: If the platform has no supported speech command
        """
        self.platform = platform.system()
        self.default_voice = default_voice

        if self.platform not in REQUIRED_COMMANDS:
            raise RuntimeError(f"Unsupported platform: {self.platform}")

        logger.debug(f"System TTS initialized for {self.platform}")

    def _resolve_voice(self, voice: str | None) -> str | None:
        if not voice or voice == DEFAULT_VOICE:
            return self.default_voice
        return voice

    async def _run(self, cmd: list[str], what: str) -> None:
        # Use async subprocess to avoid blocking event loop
        try:
            proc = await asyncio.create_subprocess_exec(
                *cmd, stdout=asyncio.subprocess.PIPE, stderr=asyncio.subprocess.PIPE
            )
        except FileNotFoundError as e:
            raise TTSError(f"{cmd[0]} not found", e) from e

        try:
            _, stderr = await proc.communicate()
        except asyncio.CancelledError:
            proc.kill()
            await proc.wait()
            raise

        if proc.returncode != 0:
            raise TTSError(
                f"{what} failed with code {proc.returncode}: "
                f"{stderr.decode(errors='replace').strip()}"
            )

    async def synthesize(
        self, text: str, voice: str | None = None, settings: VoiceSettings | None = None
    ) -> bytes:
        """Convert text to speech using native OS commands.

        Args:
            text: Text to convert to speech
            voice: Optional voice ID/name (platform-specific)
            settings: Voice settings; only speaking_rate applies

        Returns:
            Audio data as bytes in WAV format

        Raises:
            TTSError: If the TTS command fails
        """
        voice = self._resolve_voice(voice)
        rate = (settings or VoiceSettings()).speaking_rate

        with tempfile.TemporaryDirectory(prefix="speakwell-") as tmp:
            output_path = Path(tmp) / "speech.wav"

            if self.platform == "Darwin":  # macOS
                # say writes AIFF, convert to WAV for compatibility
                aiff_path = Path(tmp) / "speech.aiff"
                cmd = ["say", "-o", str(aiff_path), "-r", str(words_per_minute(rate))]
                if voice:
                    cmd.extend(["-v", voice])
                cmd.append(text)
                await self._run(cmd, "System TTS")

                await self._run(
                    ["afconvert", "-f", "WAVE", "-d", "LEI16", str(aiff_path), str(output_path)],
                    "Audio conversion",
                )

            elif self.platform == "Linux":
                if shutil.which("espeak") is None:
                    raise TTSError(
                        "espeak not found. Install it with: sudo apt-get install espeak"
                    )

                cmd = ["espeak", "-w", str(output_path), "-s", str(words_per_minute(rate))]
                if voice:
                    cmd.extend(["-v", voice])
                cmd.append(text)
                await self._run(cmd, "System TTS")

            else:  # Windows
                # Use PowerShell with SAPI
                ps_script = (
                    "Add-Type -AssemblyName System.Speech\n"
                    "$speak = New-Object System.Speech.Synthesis.SpeechSynthesizer\n"
                    f"$speak.SetOutputToWaveFile({_ps_quote(str(output_path))})\n"
                    f"$speak.Rate = {sapi_rate(rate)}\n"
                )
                if voice:
                    ps_script += f"$speak.SelectVoice({_ps_quote(voice)})\n"
                ps_script += f"$speak.Speak({_ps_quote(text)})\n$speak.Dispose()"
                await self._run(["powershell", "-Command", ps_script], "System TTS")

            if not output_path.exists():
                raise TTSError("System TTS produced no output file")
            return output_path.read_bytes()

    async def list_voices(self) -> list[dict]:
        """List available system voices.

        Returns:
            List of voice dictionaries with id, name, and provider fields
        """
        voices = []

        if self.platform == "Darwin":  # macOS
            try:
                result = subprocess.run(
                    ["say", "-v", "?"], capture_output=True, text=True, check=True
                )

                # Format: "Voice Name     Language  # Description"
                for line in result.stdout.strip().split("\n"):
                    parts = line.split()
                    if parts and not line.startswith("#"):
                        voices.append(
                            {"id": parts[0], "name": parts[0], "provider": "system"}
                        )

            except (OSError, subprocess.CalledProcessError) as e:
                logger.error(f"Failed to list macOS voices: {e}")

        elif self.platform == "Linux":
            try:
                result = subprocess.run(
                    ["espeak", "--voices"], capture_output=True, text=True, check=True
                )

                # Skip the header line, voice ID is in the second column
                for line in result.stdout.strip().split("\n")[1:]:
                    parts = line.split()
                    if len(parts) >= 2:
                        voices.append(
                            {"id": parts[1], "name": parts[1], "provider": "system"}
                        )

            except (OSError, subprocess.CalledProcessError):
                logger.warning("espeak not found - no voices available")

        elif self.platform == "Windows":
            ps_script = (
                "Add-Type -AssemblyName System.Speech\n"
                "$speak = New-Object System.Speech.Synthesis.SpeechSynthesizer\n"
                "$speak.GetInstalledVoices() | ForEach-Object { $_.VoiceInfo.Name }"
            )

            try:
                result = subprocess.run(
                    ["powershell", "-Command", ps_script],
                    capture_output=True,
                    text=True,
                    check=True,
                )
                for line in result.stdout.strip().split("\n"):
                    if line.strip():
                        voices.append(
                            {"id": line.strip(), "name": line.strip(), "provider": "system"}
                        )

            except (OSError, subprocess.CalledProcessError) as e:
                logger.error(f"Failed to list Windows voices: {e}")

        # If no voices found, add a default
        if not voices:
            voices.append(
                {"id": "default", "name": "Default System Voice", "provider": "system"}
            )

        return voices

    async def is_reachable(self) -> bool:
        """Check the platform's speech commands are installed."""
        return all(shutil.which(cmd) for cmd in REQUIRED_COMMANDS[self.platform])
