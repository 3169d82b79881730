"""Platform-neutral message models."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum
from typing import Optional

from oshaberi_bot.core.types import Platform


class NoticeColor(StrEnum):
    BLURPLE = "blurple"
    RED = "red"
    GREEN = "green"


@dataclass(frozen=True, slots=True)
class Attachment:
    """Binary attachment (image, file, etc.)."""

    data: bytes
    media_type: str  # e.g. "image/jpeg", "image/png"
    filename: str = "attachment"


@dataclass(frozen=True, slots=True)
class Notice:
    """A boxed annotation under a reply (rendered as an embed on Discord)."""

    description: str = ""
    title: Optional[str] = None
    color: NoticeColor = NoticeColor.BLURPLE
    fields: list[tuple[str, str]] = field(default_factory=list)
    footer: Optional[str] = None


@dataclass(frozen=True, slots=True)
class IncomingMessage:
    platform: Platform
    bot_id: str
    chat_id: str
    message_id: str
    user_id: str
    user_display_name: str
    text: str
    timestamp: datetime
    clean_text: str = ""  # mentions rendered as names
    guild_id: Optional[str] = None
    author_is_bot: bool = False
    mentions_bot: bool = False
    author_voice_channel_id: Optional[str] = None
    attachments: list[Attachment] = field(default_factory=list)

    @property
    def match_text(self) -> str:
        return self.clean_text or self.text


@dataclass(frozen=True, slots=True)
class OutgoingMessage:
    chat_id: str
    text: str = ""
    reply_to_message_id: Optional[str] = None
    attachments: list[Attachment] = field(default_factory=list)
    notices: list[Notice] = field(default_factory=list)
