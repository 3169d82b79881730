"""OpenAI Responses API agent (handle strategy)."""

from __future__ import annotations

import base64
from typing import Any, Optional

from oshaberi_bot.ai.agent import HandleAgent, build_instructions, generate_ai_user_id
from oshaberi_bot.ai.models import (
    AgentResponse,
    ChatImage,
    ChatUser,
    ContinuationToken,
    ResponseHandle,
)
from oshaberi_bot.config import AIConfig, OpenAIConfig
from oshaberi_bot.core.types import AIProvider
from oshaberi_bot.log import get_logger

logger = get_logger(__name__)


def build_input(text: str, image: ChatImage | None = None) -> list[dict[str, Any]]:
    """Responses API input for one user turn, with the image inline as a data URL."""
    if image is None:
        return [{"type": "message", "role": "user", "content": text}]
    data_url = f"data:{image.media_type};base64,{base64.b64encode(image.data).decode()}"
    return [
        {
            "role": "user",
            "content": [
                {"type": "input_text", "text": text},
                {"type": "input_image", "image_url": data_url, "detail": "auto"},
            ],
        }
    ]


class OpenAIAgent(HandleAgent):
    """The provider keeps the conversation; ``previous_response_id`` continues it.

    Instructions are not carried over by ``previous_response_id``, so they are
    sent on every call.
    """

    def __init__(self, config: OpenAIConfig, ai_config: AIConfig, client: Any = None):
        if client is None:
            import openai

            client = openai.AsyncOpenAI(
                api_key=config.api_key,
                base_url=config.base_url,
                max_retries=config.max_retries,
                timeout=config.timeout,
            )
        self._client = client
        self._ai_config = ai_config

    @property
    def provider_id(self) -> str:
        return AIProvider.OPENAI

    @property
    def model_id(self) -> str:
        return self._ai_config.model

    @property
    def threshold(self) -> int:
        return self._ai_config.token_threshold

    def _request(
        self,
        user: ChatUser,
        input: str,
        image: ChatImage | None,
        system_prompt: str | None,
        token_limit: int | None,
    ) -> dict[str, Any]:
        return {
            "model": self.model_id,
            "input": build_input(input, image),
            "instructions": build_instructions(system_prompt, user, "OpenAI", token_limit),
            # input is cut automatically if it ever exceeds the context window
            "truncation": "auto",
            "max_output_tokens": token_limit or self._ai_config.max_tokens,
            "user": generate_ai_user_id(user),
        }

    async def first_turn(
        self,
        user: ChatUser,
        input: str,
        system_prompt: str,
        image: ChatImage | None = None,
        token_limit: int | None = None,
    ) -> Optional[AgentResponse]:
        body = self._request(user, input, image, system_prompt, token_limit)
        try:
            response = await self._client.responses.create(**body)
        except Exception as e:
            logger.error("openai_first_turn_failed", model=self.model_id, error=str(e))
            return None
        total_token = _total_tokens(response)
        logger.debug("openai_first_turn", response_id=response.id, total_token=total_token)
        return AgentResponse(
            token=ResponseHandle(response.id),
            content=response.output_text or "",
            total_token=total_token,
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
        if not isinstance(token, ResponseHandle):
            logger.error("openai_unexpected_token", token_type=type(token).__name__)
            return None
        body = self._request(user, input, image, system_prompt, token_limit)
        body["previous_response_id"] = token.value
        try:
            response = await self._client.responses.create(**body)
        except Exception as e:
            logger.error("openai_continued_turn_failed", model=self.model_id, error=str(e))
            return None
        total_token = _total_tokens(response)
        should_reset = total_token is not None and total_token > self.threshold
        logger.debug(
            "openai_continued_turn",
            response_id=response.id,
            total_token=total_token,
            threshold=self.threshold,
            should_reset=should_reset,
        )
        return AgentResponse(
            token=ResponseHandle(response.id),
            content=response.output_text or "",
            total_token=total_token,
            threshold=self.threshold,
            should_reset=should_reset,
        )


def _total_tokens(response: Any) -> int | None:
    usage = getattr(response, "usage", None)
    if usage is None:
        return None
    return usage.total_tokens
