"""Typer CLI definition for speakwell."""

import asyncio
import logging
import sys
from pathlib import Path
from typing import NoReturn

import typer

from .config import CONFIG_PATH, generate_config, load_config
from .core import collect_status, list_available_voices, speak_text
from .tts.errors import ConfigurationError, TTSAPIError, TTSAuthError

app = typer.Typer(help="Convert text to speech with caching and backend fallback")


def process_text_input(text: str | None) -> str:
    """Process text input and return the text to synthesize.

    Args:
        text: Optional text input from CLI argument, file or stdin

    Returns:
        The text to synthesize

    Raises:
        ValueError: If no text is provided
    """
    if text is None or not text.strip():
        raise ValueError("No text provided")

    return text


def _fail(message: str, error: BaseException, debug: bool) -> NoReturn:
    if debug:
        typer.echo(f"Debug - {message}: {error!r}", err=True)
    else:
        typer.echo(f"Error: {message}: {error}", err=True)
    raise typer.Exit(1)


def _print_status(status: dict) -> None:
    typer.echo("=== Backends ===")
    reachable = status.get("reachable", {})
    for row in status["backends"]:
        name = row["backend_id"]
        if row["terminal"]:
            typer.echo(f"{name}: terminal")
            continue

        health = row["health"]
        line = f"{name}: {health['state']}"
        if health.get("consecutive_failures"):
            line += f", {health['consecutive_failures']} consecutive failures"
        if name in reachable:
            line += ", reachable" if reachable[name] else ", unreachable"
        typer.echo(line)

        rate = row["rate_limit"]
        if rate["max_requests"] is not None:
            typer.echo(
                f"  rate limit: {rate['requests_remaining']}/{rate['max_requests']} requests, "
                f"{rate['characters_remaining']}/{rate['max_characters']} characters left"
            )

    for name, quota in status.get("quota", {}).items():
        reset = f", resets {quota.next_reset:%Y-%m-%d %H:%M} UTC" if quota.next_reset else ""
        typer.echo(
            f"{name} quota: {quota.character_count}/{quota.character_limit} characters "
            f"({quota.used_percentage:.1f}%){reset}"
        )

    cache = status.get("cache")
    typer.echo("=== Cache ===")
    if cache is None:
        typer.echo("disabled")
    else:
        typer.echo(
            f"{cache['total_entries']} entries, {cache['total_size_bytes']} of "
            f"{cache['max_size_bytes']} bytes ({cache['cache_usage_percent']:.1f}%)"
        )


@app.command()
def speak(
    text: str | None = typer.Argument(None, help="Text to convert to speech"),
    file: Path | None = typer.Option(None, "-f", "--file", help="Read text from file"),
    output: Path | None = typer.Option(
        None, "-o", "--output", help="Save audio to file instead of writing to stdout"
    ),
    voice: str | None = typer.Option(
        None, "-v", "--voice", help="Voice ID (from config if omitted)"
    ),
    backend: list[str] | None = typer.Option(
        None,
        "-b",
        "--backend",
        help="Backend to use, repeat to set the fallback order (from config if omitted)",
    ),
    preset: str | None = typer.Option(
        None, "--preset", help="Voice preset: jarvis, excited, concerned, calm"
    ),
    stream: bool = typer.Option(
        False, "--stream", help="Write audio chunks as soon as they arrive"
    ),
    no_cache: bool = typer.Option(False, "--no-cache", help="Disable the audio cache"),
    debug: bool = typer.Option(
        False, "--debug", help="Show verbose error messages and pipeline activity"
    ),
    list_voices: bool = typer.Option(
        False, "--list-voices", help="List available voices and exit"
    ),
    status: bool = typer.Option(
        False, "--status", help="Show backend health, quota and cache status and exit"
    ),
    init_config: bool = typer.Option(
        False, "--init-config", help=f"Write a default config to {CONFIG_PATH} and exit"
    ),
) -> None:
    """Convert text to speech, falling back to local voices when needed."""
    # Configure logging for debug mode
    if debug:
        logging.basicConfig(
            level=logging.DEBUG,
            format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        )

    if init_config:
        if CONFIG_PATH.exists():
            typer.echo(f"Config already exists at {CONFIG_PATH}")
            raise typer.Exit(0)
        try:
            path = generate_config()
        except OSError as e:
            _fail("Failed to write config", e, debug)
        typer.echo(f"Config written to {path}")
        raise typer.Exit(0)

    try:
        config = load_config()
    except ConfigurationError as e:
        _fail("Invalid configuration", e, debug)

    # Handle --list-voices flag
    if list_voices:
        name = backend[0] if backend else config.tts.backends[0]
        try:
            voices = asyncio.run(list_available_voices(name, config))
        except Exception as e:
            _fail("Failed to list voices", e, debug)
        for item in voices:
            typer.echo(f"{item['name']}: {item['id']}")
        raise typer.Exit(0)

    if status:
        try:
            report = asyncio.run(collect_status(config, backend or None))
        except Exception as e:
            _fail("Failed to collect status", e, debug)
        _print_status(report)
        raise typer.Exit(0)

    # Get text from argument, file, or stdin (in priority order)
    if text is None:
        if file:
            try:
                text = file.read_text()
            except FileNotFoundError as e:
                _fail(f"File not found: {file}", e, debug)
            except PermissionError as e:
                _fail(f"Permission denied reading file: {file}", e, debug)
            except UnicodeDecodeError as e:
                _fail(f"Unable to decode file as text: {file}", e, debug)
        elif not sys.stdin.isatty():
            text = sys.stdin.read().strip()

    try:
        input_text = process_text_input(text)
    except ValueError as e:
        if debug:
            typer.echo(f"Debug - Text processing error: {e!r}", err=True)
        else:
            typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1) from None

    if output is None and sys.stdout.isatty():
        typer.echo(
            "Error: Refusing to write audio to a terminal, use -o FILE or redirect stdout",
            err=True,
        )
        raise typer.Exit(1)

    try:
        audio = asyncio.run(
            speak_text(
                input_text,
                output_file=output,
                voice_id=voice,
                backends=backend or None,
                preset=preset,
                cache=not no_cache,
                stream=stream,
                config=config,
                sink=None if output else sys.stdout.buffer,
            )
        )
    except ConfigurationError as e:
        _fail("Invalid configuration", e, debug)
    except (TTSAuthError, TTSAPIError) as e:
        _fail("Speech synthesis failed", e, debug)
    except OSError as e:
        _fail("Failed to save audio file", e, debug)
    except Exception as e:
        if debug:
            typer.echo(f"Debug - Unexpected error: {e!r}", err=True)
        else:
            typer.echo("Error: An unexpected error occurred", err=True)
        raise typer.Exit(1) from None

    if not audio:
        typer.echo("Warning: no backend produced audio", err=True)

    if output:
        typer.echo(f"Audio saved to {output}", err=True)
    else:
        sys.stdout.flush()
