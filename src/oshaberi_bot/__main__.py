"""CLI entry point for oshaberi-bot."""

from __future__ import annotations

import argparse
import asyncio
import signal
import sys

from oshaberi_bot.app import OshaberiBotApp
from oshaberi_bot.config import AppConfig, load_config
from oshaberi_bot.log import setup_logging


def main() -> None:
    parser = argparse.ArgumentParser(
        prog="oshaberi-bot",
        description="Discord chat and voice bot backed by LLM providers",
    )
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    for name, help_text in (
        ("start", "Start the bot"),
        ("config-check", "Validate configuration"),
        ("model-info", "Show AI model info per bot"),
    ):
        sub = subparsers.add_parser(name, help=help_text)
        sub.add_argument("-c", "--config", default="config.yaml", help="Path to config file")
        sub.add_argument("-e", "--env", default=".env", help="Path to .env file")

    args = parser.parse_args()

    if args.command is None:
        # Default to start
        args.command = "start"
        args.config = "config.yaml"
        args.env = ".env"

    if args.command == "config-check":
        _check_config(args.config, args.env)
    elif args.command == "model-info":
        _model_info(args.config, args.env)
    elif args.command == "start":
        _run(args.config, args.env)


def _load_or_exit(config_path: str, env_path: str) -> AppConfig:
    try:
        return load_config(config_path, env_path)
    except FileNotFoundError as e:
        print(f"Error: {e}", file=sys.stderr)
        print("Run 'python install.py' first or copy config.example.yaml to config.yaml")
        sys.exit(1)
    except Exception as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(1)


def _check_config(config_path: str, env_path: str) -> None:
    """Validate configuration and print summary."""
    config = _load_or_exit(config_path, env_path)
    print(f"Configuration valid: {config_path}")
    print(f"  Environment: {config.environment}")
    print(f"  KV backend: {config.kv.backend}")
    print(f"  Bots configured: {len(config.bots)}")
    for bot in config.bots:
        print(f"    - {bot.id} ({bot.platform}) [{bot.ai.provider}: {bot.ai.model}]")
        if getattr(config, bot.ai.provider) is None:
            print(f"      warning: no '{bot.ai.provider}' section in config")


def _model_info(config_path: str, env_path: str) -> None:
    """Show AI model information for each bot."""
    config = _load_or_exit(config_path, env_path)

    print("AI Model Configuration")
    print("=" * 50)
    for bot in config.bots:
        ai = bot.ai
        print(f"\n  Bot: {bot.id} ({bot.platform})")
        print(f"    Provider   : {ai.provider}")
        print(f"    Model      : {ai.model}")
        if ai.provider == "google" and ai.image_model:
            print(f"    Image model: {ai.image_model}")
        print(f"    Max tokens : {ai.max_tokens}")
        print(f"    Threshold  : {ai.token_threshold}")
        print(f"    Temp       : {ai.temperature}")
        print(f"    Interval   : {bot.limits.min_interval_seconds}s (x{bot.limits.image_interval_multiplier} for images)")
        if bot.voice.enabled:
            print(f"    Voice      : {bot.voice.transcription_model} / {bot.voice.speech_model} ({bot.voice.speech_voice})")
    print()


def _run(config_path: str, env_path: str) -> None:
    """Load config and start the application."""
    config = _load_or_exit(config_path, env_path)
    setup_logging(config.log_level, config.log_format)

    async def _async_main() -> None:
        loop = asyncio.get_running_loop()
        stop_event = asyncio.Event()

        def _signal_handler() -> None:
            stop_event.set()

        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, _signal_handler)
            except NotImplementedError:
                # Windows doesn't support add_signal_handler
                signal.signal(sig, lambda s, f: _signal_handler())

        app = OshaberiBotApp(config)
        await app.start()
        try:
            await stop_event.wait()
        finally:
            await app.stop()

    asyncio.run(_async_main())


if __name__ == "__main__":
    main()
