"""Agent abstraction over LLM providers with two continuation strategies.

- Handle strategy: the provider keeps the conversation and returns an opaque
  id that is sent back with the next turn.
- History strategy: the provider is stateless, so the full turn history is
  the continuation token and is re-sent on every call.
"""

from __future__ import annotations

import base64
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

from oshaberi_bot.ai.history import dump_history, parse_history, trim_history
from oshaberi_bot.ai.models import (
    AgentResponse,
    ChatImage,
    ChatUser,
    ContinuationToken,
    InlineData,
    Part,
    ResponseHandle,
    Turn,
    TurnHistory,
)
from oshaberi_bot.log import get_logger

logger = get_logger(__name__)


def generate_ai_user_id(user: ChatUser) -> str:
    """End-user id reported to providers for abuse monitoring."""
    return f"discord_userid_{user.id}"


def build_instructions(
    system_prompt: str | None,
    user: ChatUser,
    provider_name: str,
    token_limit: int | None = None,
) -> str:
    """Wrap the stored system prompt in the rules every turn must follow."""
    lines: list[str] = []
    if token_limit:
        lines.append(f"(Stop your answer within at most {token_limit} tokens.)")
    lines.extend(
        [
            "[PERSIST_RULES]",
            "- Take part in the chat as a participant and talk naturally.",
            "- Always follow the role-play instructions and stay in character.",
            "- When images or media are attached or produced, try to read and "
            "understand them, and respond in character.",
            f"- Forget that you are an AI and any meta information about {provider_name}.",
            f"The name of the latest speaker is {user.display_name or user.id}.",
            "[/PERSIST_RULES]",
            "",
            system_prompt or "",
        ]
    )
    return "\n".join(lines)


class Agent(ABC):
    """Capability set the chat orchestrator relies on."""

    @property
    @abstractmethod
    def provider_id(self) -> str:
        ...

    @property
    @abstractmethod
    def model_id(self) -> str:
        ...

    @property
    @abstractmethod
    def threshold(self) -> int:
        """Total-token count above which a continued conversation is reset."""
        ...

    @abstractmethod
    async def first_turn(
        self,
        user: ChatUser,
        input: str,
        system_prompt: str,
        image: ChatImage | None = None,
        token_limit: int | None = None,
    ) -> Optional[AgentResponse]:
        """Start a conversation. Returns None when the provider call fails."""
        ...

    @abstractmethod
    async def continued_turn(
        self,
        user: ChatUser,
        input: str,
        token: ContinuationToken,
        system_prompt: str | None = None,
        image: ChatImage | None = None,
        token_limit: int | None = None,
    ) -> Optional[AgentResponse]:
        """Continue from *token*. Returns None when the provider call fails."""
        ...

    @abstractmethod
    def parse_token(self, raw: str) -> ContinuationToken:
        ...

    @abstractmethod
    def dump_token(self, token: ContinuationToken) -> str:
        ...

    @abstractmethod
    def token_after_reset(self, token: ContinuationToken) -> ContinuationToken | None:
        """State to keep after a reset; None means forget the conversation."""
        ...

    def status_fragment(self, response: AgentResponse) -> str:
        """Extra text appended to the conversation status title."""
        return ""


class HandleAgent(Agent):
    """Base for providers that keep conversation state server-side."""

    def parse_token(self, raw: str) -> ContinuationToken:
        return ResponseHandle(raw)

    def dump_token(self, token: ContinuationToken) -> str:
        if not isinstance(token, ResponseHandle):
            raise TypeError(f"{type(self).__name__} expects a ResponseHandle, got {type(token).__name__}")
        return token.value

    def token_after_reset(self, token: ContinuationToken) -> ContinuationToken | None:
        return None


@dataclass
class Exchange:
    """Outcome of one stateless provider call."""

    content: str
    history: list[Turn]
    total_token: Optional[int] = None
    generated_image: Optional[bytes] = None


class HistoryAgent(Agent):
    """Base for stateless providers: the continuation token is the turn history.

    Subclasses implement :meth:`_exchange`, which sends *user_turn* on top of
    *history* and returns the full resulting history.
    """

    @abstractmethod
    async def _exchange(
        self,
        user: ChatUser,
        history: list[Turn],
        user_turn: Turn,
        system_prompt: str | None,
        token_limit: int | None,
        continuing: bool,
    ) -> Exchange:
        ...

    def reported_history_length(self, stored: list[Turn], exchange: Exchange) -> int:
        """History length shown in the status title: the stored history the turn was sent on."""
        return len(stored)

    def sanitize_input(self, input: str) -> str:
        return input

    def user_turn(self, input: str, image: ChatImage | None = None) -> Turn:
        parts = [Part(text=self.sanitize_input(input))]
        if image is not None:
            parts.append(
                Part(
                    inline_data=InlineData(
                        mime_type=image.media_type,
                        data=base64.b64encode(image.data).decode(),
                    )
                )
            )
        return Turn(role="user", parts=parts)

    async def first_turn(
        self,
        user: ChatUser,
        input: str,
        system_prompt: str,
        image: ChatImage | None = None,
        token_limit: int | None = None,
    ) -> Optional[AgentResponse]:
        try:
            exchange = await self._exchange(
                user, [], self.user_turn(input, image), system_prompt, token_limit, continuing=False
            )
        except Exception as e:
            logger.error("first_turn_failed", provider=self.provider_id, model=self.model_id, error=str(e))
            return None
        return AgentResponse(
            token=TurnHistory(exchange.history),
            content=exchange.content,
            generated_image=exchange.generated_image,
            total_token=exchange.total_token,
            history_length=len(exchange.history),
            threshold=self.threshold,
            should_reset=False,
        )

    async def continued_turn(
        self,
        user: ChatUser,
        input: str,
        token: ContinuationToken,
        system_prompt: str | None = None,
        image: ChatImage | None = None,
        token_limit: int | None = None,
    ) -> Optional[AgentResponse]:
        history = token.turns if isinstance(token, TurnHistory) else []
        try:
            exchange = await self._exchange(
                user, list(history), self.user_turn(input, image), system_prompt, token_limit, continuing=True
            )
        except Exception as e:
            logger.error("continued_turn_failed", provider=self.provider_id, model=self.model_id, error=str(e))
            return None
        should_reset = exchange.total_token is not None and exchange.total_token > self.threshold
        logger.debug(
            "continued_turn_completed",
            threshold=self.threshold,
            should_reset=should_reset,
            history_length=len(exchange.history),
        )
        return AgentResponse(
            token=TurnHistory(exchange.history),
            content=exchange.content,
            generated_image=exchange.generated_image,
            total_token=exchange.total_token,
            history_length=self.reported_history_length(history, exchange),
            threshold=self.threshold,
            should_reset=should_reset,
        )

    def parse_token(self, raw: str) -> ContinuationToken:
        return TurnHistory(parse_history(raw))

    def dump_token(self, token: ContinuationToken) -> str:
        if not isinstance(token, TurnHistory):
            raise TypeError(f"{type(self).__name__} expects a TurnHistory, got {type(token).__name__}")
        return dump_history(token.turns)

    def token_after_reset(self, token: ContinuationToken) -> ContinuationToken | None:
        # shortened, not dropped; an empty history starts over
        turns = token.turns if isinstance(token, TurnHistory) else []
        if len(turns) > 1:
            turns = trim_history(turns)
        if not turns:
            return None
        return TurnHistory(turns)

    def status_fragment(self, response: AgentResponse) -> str:
        length = response.history_length if response.history_length is not None else "unknown"
        return f" history length: {length}"
