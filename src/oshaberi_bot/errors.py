"""Domain exceptions.

Every exception raised across the chat/voice core derives from
:class:`ReplyableError`, whose message is safe to show to end users.
The platform boundary presents it as an error notice.
"""

from __future__ import annotations

from typing import Any


class ReplyableError(Exception):
    """Base class for errors whose message can be replied to a user."""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)

    @classmethod
    def from_exception(cls, e: BaseException) -> ReplyableError:
        if isinstance(e, ReplyableError):
            return e
        return cls(str(e) or e.__class__.__name__)


class ConfigurationError(ReplyableError):
    """Required configuration or persisted settings are missing.

    Raised when a conversation starts without a system prompt, or when
    the config names a provider whose credentials are absent.
    """


class PersistenceError(ReplyableError):
    """A key-value read, write or delete failed."""
