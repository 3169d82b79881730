"""Key-value store contract and key naming.

Values are raw strings; anything else is JSON-encoded on write. Each
operation touches a single key and is atomic on its own. There are no
multi-key transactions.
"""

from __future__ import annotations

import json
from abc import ABC, abstractmethod
from typing import Any

SCOPE_PREFIX = "ai"


class KVError(Exception):
    """Backend failure raised by every KeyValueStore implementation."""


class KVKeys:
    """Key names under ``ai:``, grouped by sub-scope.

    ``{provider}`` marks an interpolated parameter.
    """

    PREVIOUS_RESPONSE_ID = ("chat", "previous-response-id")
    SYSTEM_MESSAGE = ("prompt", "system-message")
    MODEL_REQUEST_COUNT_HASH = ("limit", "model-request-count-hash", "{provider}")
    MODEL_TOTAL_TOKEN_SUM_HASH = (
        "limit",
        "model-total-token-sum-hash-by-ai-provider",
        "{provider}",
    )
    USER_LAST_USED_TIME_HASH = (
        "limit",
        "user-last-used-time-hash-by-ai-provider",
        "{provider}",
    )
    USER_SPEAK_COUNT_HASH = ("limit", "user-speak-count-hash")
    USER_LAST_SPEAKED_TIME_HASH = ("limit", "user-last-speaked-time-hash")


def build_key(namespace: str, parts: tuple[str, ...], **params: str) -> str:
    """Build a hierarchical key such as ``bot:ai:limit:model-request-count-hash:openai``.

    Raises KeyError if a ``{param}`` placeholder has no value.
    """
    rendered = [part.format_map(params) if "{" in part else part for part in parts]
    prefix = [namespace] if namespace else []
    return ":".join([*prefix, SCOPE_PREFIX, *rendered])


def encode_value(value: Any) -> str:
    if isinstance(value, str):
        return value
    return json.dumps(value, ensure_ascii=False)


class KeyValueStore(ABC):
    """Async key-value store with scalar and hash operations."""

    @abstractmethod
    async def get(self, key: str) -> str | None:
        ...

    @abstractmethod
    async def hget(self, key: str, field: str) -> str | None:
        ...

    @abstractmethod
    async def set(self, key: str, value: Any) -> None:
        ...

    @abstractmethod
    async def hset(self, key: str, field: str, value: Any) -> None:
        ...

    @abstractmethod
    async def incrby(self, key: str, amount: int) -> int:
        """Increment a scalar by *amount* and return the new value."""
        ...

    @abstractmethod
    async def hincrby(self, key: str, field: str, amount: int) -> int:
        """Increment a hash field by *amount* and return the new value."""
        ...

    @abstractmethod
    async def delete(self, key: str) -> None:
        ...

    async def initialize(self) -> None:
        """Open connections. Backends that connect lazily may skip this."""

    @abstractmethod
    async def close(self) -> None:
        ...
