"""Shared types and enumerations."""

from __future__ import annotations

from enum import StrEnum


class Platform(StrEnum):
    DISCORD = "discord"


class AIProvider(StrEnum):
    GOOGLE = "google"
    OPENAI = "openai"
    ANTHROPIC = "anthropic"


class KVBackend(StrEnum):
    REDIS = "redis"
    SQLITE = "sqlite"
