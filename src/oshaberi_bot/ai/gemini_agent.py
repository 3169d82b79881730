"""Gemini agents via google-genai (history strategy).

Gemini has no server-side conversation id, so the chat history is rebuilt
from the stored turns on every call and the system instruction is re-sent.
"""

from __future__ import annotations

import base64
import json
import re
from typing import Any

from oshaberi_bot.ai.agent import Exchange, HistoryAgent, build_instructions
from oshaberi_bot.ai.models import ChatUser, InlineData, Part, Turn
from oshaberi_bot.config import AIConfig, GoogleConfig
from oshaberi_bot.core.types import AIProvider
from oshaberi_bot.errors import ConfigurationError
from oshaberi_bot.log import get_logger

logger = get_logger(__name__)

_CLOUD_PLATFORM_SCOPE = "https://www.googleapis.com/auth/cloud-platform"
_MENTION_PATTERN = re.compile(r"<@!?\d+>")

KEEP_CONTEXT_INSTRUCTION = (
    "From here on, keep the instructions and the role-play established so far in this conversation."
)
FORCE_IMAGE_INSTRUCTION = (
    "The next message tells you what to draw. **Always generate an image and return it in your response.**"
)


def create_genai_client(config: GoogleConfig) -> Any:
    """Gemini Developer API client when an API key is set, Vertex AI otherwise."""
    from google import genai

    if config.api_key:
        return genai.Client(api_key=config.api_key)
    if not config.project_id or not config.credentials_base64:
        raise ConfigurationError(
            "google needs either 'api_key' or both 'project_id' and 'credentials_base64'"
        )
    from google.oauth2 import service_account

    info = json.loads(base64.b64decode(config.credentials_base64).decode("utf-8"))
    credentials = service_account.Credentials.from_service_account_info(
        info, scopes=[_CLOUD_PLATFORM_SCOPE]
    )
    return genai.Client(
        vertexai=True,
        project=config.project_id,
        location=config.location,
        credentials=credentials,
    )


def to_content(turn: Turn) -> Any:
    from google.genai import types

    return types.Content(role=turn.role, parts=[to_part(part) for part in turn.parts])


def to_part(part: Part) -> Any:
    from google.genai import types

    if part.inline_data is not None:
        return types.Part.from_bytes(
            data=base64.b64decode(part.inline_data.data),
            mime_type=part.inline_data.mime_type,
        )
    return types.Part.from_text(text=part.text or "")


def from_content(content: Any) -> Turn:
    """Convert a genai Content into a Turn, keeping only text and inline data."""
    parts: list[Part] = []
    for part in content.parts or []:
        if getattr(part, "thought", None):
            continue
        if part.text is not None:
            parts.append(Part(text=part.text))
        elif part.inline_data is not None and part.inline_data.data:
            parts.append(
                Part(
                    inline_data=InlineData(
                        mime_type=part.inline_data.mime_type or "application/octet-stream",
                        data=base64.b64encode(part.inline_data.data).decode(),
                    )
                )
            )
    role = "model" if content.role == "model" else "user"
    return Turn(role=role, parts=parts)


def extract_image(response: Any) -> bytes | None:
    """The generated image is the first non-text part of the first candidate."""
    candidates = response.candidates or []
    if not candidates or candidates[0].content is None:
        return None
    for part in candidates[0].content.parts or []:
        if part.text:
            continue
        if part.inline_data is not None and part.inline_data.data:
            return part.inline_data.data
        break
    return None


def _total_tokens(response: Any) -> int | None:
    usage = getattr(response, "usage_metadata", None)
    if usage is None:
        return None
    return usage.total_token_count


class GeminiAgent(HistoryAgent):
    """Text chat on a Gemini model with ``system_instruction`` sent on every call."""

    def __init__(self, config: GoogleConfig, ai_config: AIConfig, client: Any = None):
        self._client = client if client is not None else create_genai_client(config)
        self._ai_config = ai_config

    @property
    def provider_id(self) -> str:
        return AIProvider.GOOGLE

    @property
    def model_id(self) -> str:
        return self._ai_config.model

    @property
    def threshold(self) -> int:
        return self._ai_config.token_threshold

    def _config(self, user: ChatUser, system_prompt: str | None, token_limit: int | None) -> Any:
        from google.genai import types

        return types.GenerateContentConfig(
            temperature=self._ai_config.temperature,
            max_output_tokens=token_limit or self._ai_config.max_tokens,
            system_instruction=build_instructions(system_prompt, user, "Gemini", token_limit),
        )

    async def _exchange(
        self,
        user: ChatUser,
        history: list[Turn],
        user_turn: Turn,
        system_prompt: str | None,
        token_limit: int | None,
        continuing: bool,
    ) -> Exchange:
        chat = self._client.aio.chats.create(
            model=self.model_id,
            config=self._config(user, system_prompt, token_limit),
            history=[to_content(turn) for turn in history],
        )
        logger.debug("gemini_request", model=self.model_id, history_length=len(history))
        response = await chat.send_message([to_part(part) for part in user_turn.parts])
        turns = [from_content(content) for content in chat.get_history()]
        return Exchange(
            content=response.text or "",
            history=turns,
            total_token=_total_tokens(response),
        )


class GeminiImageAgent(GeminiAgent):
    """Image-generating Gemini model.

    The model accepts no system instruction, so the system prompt goes in a
    leading user turn that is dropped again before the history is stored.
    On continuation a forcing turn asks for an image before the real input.
    """

    @property
    def model_id(self) -> str:
        return self._ai_config.image_model

    def sanitize_input(self, input: str) -> str:
        # mention markup keeps the model from answering with an image
        return _MENTION_PATTERN.sub("", input)

    def reported_history_length(self, stored: list[Turn], exchange: Exchange) -> int:
        # the image model reports the history after the turn, without the lead turn
        return len(exchange.history)

    @staticmethod
    def lead_turn(system_prompt: str | None) -> Turn:
        return Turn(role="user", parts=[Part(text=system_prompt or KEEP_CONTEXT_INSTRUCTION)])

    def _config(self, user: ChatUser, system_prompt: str | None, token_limit: int | None) -> Any:
        from google.genai import types

        return types.GenerateContentConfig(
            max_output_tokens=token_limit or self._ai_config.max_tokens * 10,
            response_modalities=["IMAGE", "TEXT"],
        )

    async def _exchange(
        self,
        user: ChatUser,
        history: list[Turn],
        user_turn: Turn,
        system_prompt: str | None,
        token_limit: int | None,
        continuing: bool,
    ) -> Exchange:
        chat = self._client.aio.chats.create(
            model=self.model_id,
            config=self._config(user, system_prompt, token_limit),
            history=[to_content(turn) for turn in [self.lead_turn(system_prompt), *history]],
        )
        if continuing:
            await chat.send_message(FORCE_IMAGE_INSTRUCTION)
        response = await chat.send_message([to_part(part) for part in user_turn.parts])
        turns = [from_content(content) for content in chat.get_history()[1:]]
        image = extract_image(response)
        logger.debug("gemini_image_response", has_image=image is not None, history_length=len(turns))
        return Exchange(
            content=response.text or "",
            history=turns,
            total_token=_total_tokens(response),
            generated_image=image,
        )
