"""Entry point for running speakwell as a module."""

from .cli import app


def main() -> None:
    """Main entry point for the speakwell CLI application."""
    app()


if __name__ == "__main__":
    main()
