"""Platform boundary used by the message handler and the bot commands."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Awaitable, Callable

from oshaberi_bot.messenger.models import IncomingMessage, OutgoingMessage

MessageCallback = Callable[[IncomingMessage], Awaitable[None]]


class MessengerAdapter(ABC):
    """One bot account on one chat platform.

    Incoming messages are normalized to :class:`IncomingMessage` and passed to
    the callback registered with :meth:`on_message`.
    """

    def __init__(self, bot_id: str):
        self.bot_id = bot_id
        self._message_callback: MessageCallback | None = None

    @property
    @abstractmethod
    def platform_name(self) -> str:
        ...

    def on_message(self, callback: MessageCallback) -> None:
        self._message_callback = callback

    @abstractmethod
    async def start(self) -> None:
        """Log in and wait until the platform reports ready."""
        ...

    @abstractmethod
    async def stop(self) -> None:
        """Leave voice channels and close the platform connection."""
        ...

    @abstractmethod
    async def send_message(self, message: OutgoingMessage) -> None:
        """Post text, attachments and notices; threads as a reply when ``reply_to_message_id`` is set."""
        ...

    @abstractmethod
    async def send_typing_indicator(self, chat_id: str) -> None:
        ...

    @abstractmethod
    async def add_reaction(self, chat_id: str, message_id: str, emoji: str) -> None:
        ...

    @abstractmethod
    async def join_voice(self, guild_id: str, channel_id: str) -> bool:
        """Connect to a voice channel. False when the guild already has a voice connection."""
        ...
