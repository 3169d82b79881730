"""Configuration loader with YAML parsing, env-var interpolation, and Pydantic validation."""

from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Literal, Optional

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, Field, field_validator

from oshaberi_bot.core.types import AIProvider, KVBackend

DEFAULT_IMAGE_KEYWORDS: list[list[str]] = [
    ["画像"],
    ["image", "generate"],
    ["加工"],
    ["編集"],
    ["合成"],
    ["削除"],
]


class AIConfig(BaseModel):
    provider: AIProvider = AIProvider.GOOGLE
    model: str = "gemini-2.5-flash-lite"
    image_model: str = "gemini-2.5-flash-image"  # google only; "" disables switching
    max_tokens: int = 1024
    token_threshold: int = 4096
    temperature: float = 1.1
    image_keywords: list[list[str]] = Field(
        default_factory=lambda: [list(group) for group in DEFAULT_IMAGE_KEYWORDS]
    )


class LimitsConfig(BaseModel):
    min_interval_seconds: int = 10
    image_interval_multiplier: int = 12


class VoiceConfig(BaseModel):
    enabled: bool = True
    sample_rate: int = 16000
    token_limit: int = 64
    speech_limit: int = 100  # characters sent to speech synthesis
    max_count_per_hour: int = 60
    min_stream_length: int = 40  # audio chunks; shorter utterances are ignored
    transcription_model: str = "gpt-4o-mini-transcribe"
    speech_model: str = "gpt-4o-mini-tts"
    speech_voice: str = "alloy"
    language: str = "ja"


class BotConfig(BaseModel):
    id: str
    platform: Literal["discord"] = "discord"
    token: str
    guild_ids: list[int] = Field(default_factory=list)
    command_channel_id: str = ""  # empty: every channel
    voice_channel_id: str = ""
    busy_reaction: str = "🥵"
    ai: AIConfig = Field(default_factory=AIConfig)
    limits: LimitsConfig = Field(default_factory=LimitsConfig)
    voice: VoiceConfig = Field(default_factory=VoiceConfig)

    @field_validator("command_channel_id", "voice_channel_id", mode="before")
    @classmethod
    def _snowflake_to_str(cls, value: object) -> object:
        # YAML reads unquoted Discord ids as ints and empty values as null
        if value is None:
            return ""
        if isinstance(value, int):
            return str(value)
        return value


class OpenAIConfig(BaseModel):
    api_key: str
    base_url: Optional[str] = None
    max_retries: int = 3
    timeout: int = 120


class GoogleConfig(BaseModel):
    api_key: Optional[str] = None  # Gemini Developer API; otherwise Vertex AI
    project_id: Optional[str] = None
    location: str = "global"
    credentials_base64: Optional[str] = None  # base64-encoded service account JSON


class AnthropicConfig(BaseModel):
    api_key: str
    base_url: Optional[str] = None
    max_retries: int = 3
    timeout: int = 120


class KVConfig(BaseModel):
    backend: KVBackend = KVBackend.REDIS
    redis_url: str = "redis://localhost:6379/0"
    max_retries: int = 5
    sqlite_path: str = "./data/oshaberi_kv.db"


class AppConfig(BaseModel):
    log_level: str = "INFO"
    log_format: Literal["console", "json"] = "console"
    environment: Literal["production", "development"] = "production"
    commit_sha: str = "unknown"
    data_dir: str = "./data"
    kv: KVConfig = Field(default_factory=KVConfig)
    openai: Optional[OpenAIConfig] = None
    google: Optional[GoogleConfig] = None
    anthropic: Optional[AnthropicConfig] = None
    bots: list[BotConfig]

    @property
    def is_development(self) -> bool:
        return self.environment == "development"


_ENV_VAR_PATTERN = re.compile(r"\$\{(\w+)\}")


def _interpolate_env_vars(text: str, extra: dict[str, str] | None = None) -> str:
    """Replace ${VAR_NAME} patterns with environment variable values."""

    def _replace(match: re.Match) -> str:
        var_name = match.group(1)
        if extra and var_name in extra:
            return extra[var_name]
        value = os.environ.get(var_name)
        if value is None:
            return match.group(0)
        return value

    return _ENV_VAR_PATTERN.sub(_replace, text)


def load_config(config_path: str | Path = "config.yaml", env_path: str | Path = ".env") -> AppConfig:
    """Load and validate configuration from YAML file with env-var interpolation."""
    env_file = Path(env_path)
    if env_file.exists():
        load_dotenv(env_file)

    config_file = Path(config_path)
    if not config_file.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_file}")

    raw_text = config_file.read_text(encoding="utf-8")

    # First pass: extract data_dir for self-referencing
    raw_data = yaml.safe_load(raw_text) or {}
    data_dir = _interpolate_env_vars(str(raw_data.get("data_dir", "./data")))

    # Second pass: interpolate all env vars
    interpolated = _interpolate_env_vars(raw_text, extra={"data_dir": data_dir})
    data = yaml.safe_load(interpolated)

    return AppConfig(**data)
