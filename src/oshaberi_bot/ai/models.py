"""Models exchanged between the chat orchestrator and the agents."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Literal, Optional, Union

from pydantic import BaseModel, Field


@dataclass(frozen=True, slots=True)
class ChatUser:
    """The platform user a turn is attributed to."""

    id: str
    display_name: str = ""
    is_bot: bool = False


@dataclass(frozen=True, slots=True)
class ChatImage:
    """A single image attached to a user turn, sent inline."""

    data: bytes
    media_type: str = "image/png"


class InlineData(BaseModel):
    mime_type: str
    data: str  # base64


class Part(BaseModel):
    text: Optional[str] = None
    inline_data: Optional[InlineData] = None


class Turn(BaseModel):
    """One entry of a client-held conversation history."""

    role: Literal["user", "model"]
    parts: list[Part] = Field(default_factory=list)


@dataclass(frozen=True, slots=True)
class ResponseHandle:
    """Opaque provider-issued conversation id (handle strategy)."""

    value: str


@dataclass(frozen=True, slots=True)
class TurnHistory:
    """Full turn sequence held by the client (history strategy)."""

    turns: list[Turn]

    def __len__(self) -> int:
        return len(self.turns)


ContinuationToken = Union[ResponseHandle, TurnHistory]


@dataclass
class AgentResponse:
    """Normalized result of one agent call."""

    token: ContinuationToken
    content: str
    threshold: int
    should_reset: bool = False
    total_token: Optional[int] = None
    history_length: Optional[int] = None
    generated_image: Optional[bytes] = None


@dataclass
class ChatStatus:
    title: str
    threshold: int
    total_token: Optional[int] = None


@dataclass
class ChatResult:
    content: str
    generated_image: Optional[bytes] = None
    status: Optional[ChatStatus] = None

    @property
    def succeeded(self) -> bool:
        """Failed turns carry a canned message and no status."""
        return self.status is not None
