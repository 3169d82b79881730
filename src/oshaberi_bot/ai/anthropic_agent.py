"""Anthropic Messages API agent (history strategy)."""

from __future__ import annotations

from typing import Any

from oshaberi_bot.ai.agent import Exchange, HistoryAgent, build_instructions, generate_ai_user_id
from oshaberi_bot.ai.models import ChatUser, Part, Turn
from oshaberi_bot.config import AIConfig, AnthropicConfig
from oshaberi_bot.core.types import AIProvider
from oshaberi_bot.log import get_logger

logger = get_logger(__name__)


def to_message(turn: Turn) -> dict[str, Any]:
    """Convert a stored turn into an Anthropic message dict."""
    content: list[dict[str, Any]] = []
    for part in turn.parts:
        if part.inline_data is not None:
            content.append(
                {
                    "type": "image",
                    "source": {
                        "type": "base64",
                        "media_type": part.inline_data.mime_type,
                        "data": part.inline_data.data,
                    },
                }
            )
        elif part.text:
            content.append({"type": "text", "text": part.text})
    return {"role": "assistant" if turn.role == "model" else "user", "content": content}


class AnthropicAgent(HistoryAgent):
    """Claude via the Messages API; the history is re-sent on every call."""

    def __init__(self, config: AnthropicConfig, ai_config: AIConfig, client: Any = None):
        if client is None:
            import anthropic

            client = anthropic.AsyncAnthropic(
                api_key=config.api_key,
                base_url=config.base_url,
                max_retries=config.max_retries,
                timeout=config.timeout,
            )
        self._client = client
        self._ai_config = ai_config

    @property
    def provider_id(self) -> str:
        return AIProvider.ANTHROPIC

    @property
    def model_id(self) -> str:
        return self._ai_config.model

    @property
    def threshold(self) -> int:
        return self._ai_config.token_threshold

    async def _exchange(
        self,
        user: ChatUser,
        history: list[Turn],
        user_turn: Turn,
        system_prompt: str | None,
        token_limit: int | None,
        continuing: bool,
    ) -> Exchange:
        messages = [to_message(turn) for turn in [*history, user_turn]]
        logger.debug("api_request", model=self.model_id, message_count=len(messages))
        response = await self._client.messages.create(
            model=self.model_id,
            max_tokens=token_limit or self._ai_config.max_tokens,
            # the Messages API caps temperature at 1.0
            temperature=min(self._ai_config.temperature, 1.0),
            system=build_instructions(system_prompt, user, "Claude", token_limit),
            messages=messages,
            metadata={"user_id": generate_ai_user_id(user)},
        )
        text = "".join(block.text for block in response.content if block.type == "text")
        total_token = response.usage.input_tokens + response.usage.output_tokens
        logger.debug(
            "api_response",
            model=self.model_id,
            input_tokens=response.usage.input_tokens,
            output_tokens=response.usage.output_tokens,
            stop_reason=response.stop_reason,
        )
        reply = Turn(role="model", parts=[Part(text=text)])
        return Exchange(content=text, history=[*history, user_turn, reply], total_token=total_token)
