#!/usr/bin/env python3
"""Cross-platform install script for oshaberi-bot.

Usage:
    python install.py          # Production install
    python install.py --dev    # Development install (includes test tools)
"""

import os
import platform
import shutil
import subprocess
import sys

MIN_PYTHON = (3, 11)


def main() -> None:
    if sys.version_info < MIN_PYTHON:
        sys.exit(
            f"Error: Python {MIN_PYTHON[0]}.{MIN_PYTHON[1]}+ is required. "
            f"You have {sys.version_info.major}.{sys.version_info.minor}."
        )
    print(f"Python {sys.version_info.major}.{sys.version_info.minor} detected. OK.")

    dev = "--dev" in sys.argv
    project_dir = os.path.dirname(os.path.abspath(__file__))
    venv_dir = os.path.join(project_dir, ".venv")
    is_windows = platform.system() == "Windows"
    pip = os.path.join(venv_dir, "Scripts" if is_windows else "bin", "pip")

    if not os.path.isdir(venv_dir):
        print("Creating virtual environment...")
        subprocess.check_call([sys.executable, "-m", "venv", venv_dir])
    else:
        print("Virtual environment already exists.")

    subprocess.check_call([pip, "install", "--upgrade", "pip"])
    target = ".[dev]" if dev else "."
    print(f"Installing oshaberi-bot ({'development' if dev else 'production'})...")
    subprocess.check_call([pip, "install", "-e", target] if dev else [pip, "install", target], cwd=project_dir)

    # voice playback decodes synthesized speech through ffmpeg; libopus comes with discord.py[voice]
    if shutil.which("ffmpeg") is None:
        print("Warning: ffmpeg not found on PATH. Voice replies will not play until it is installed.")

    os.makedirs(os.path.join(project_dir, "data"), exist_ok=True)

    for src, dst in [("config.example.yaml", "config.yaml"), (".env.example", ".env")]:
        src_path = os.path.join(project_dir, src)
        dst_path = os.path.join(project_dir, dst)
        if os.path.exists(dst_path):
            print(f"{dst} already exists, skipping.")
        elif os.path.exists(src_path):
            shutil.copy(src_path, dst_path)
            print(f"Created {dst} from {src}")

    activate_cmd = r".\.venv\Scripts\activate" if is_windows else "source .venv/bin/activate"
    print()
    print("=" * 50)
    print("  oshaberi-bot installation complete!")
    print("=" * 50)
    print()
    print("Next steps:")
    print("  1. Edit config.yaml - configure your bots and the KV backend")
    print("  2. Edit .env - set DISCORD_BOT_TOKEN and the provider keys")
    print(f"  3. Activate the virtual environment: {activate_cmd}")
    print("  4. Check the config: python -m oshaberi_bot config-check")
    print("  5. Start the bot:    python -m oshaberi_bot")
    print()


if __name__ == "__main__":
    main()
