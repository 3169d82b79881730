"""Text-to-speech collaborators."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Optional

from oshaberi_bot.ai.models import ChatUser
from oshaberi_bot.config import OpenAIConfig, VoiceConfig
from oshaberi_bot.log import get_logger

logger = get_logger(__name__)


class Speaker(ABC):
    @abstractmethod
    async def synthesize(self, user: ChatUser, text: str) -> Optional[bytes]:
        """Return encoded audio for *text*, or None on failure."""
        ...


class OpenAISpeaker(Speaker):
    """OpenAI speech synthesis, returning MP3 bytes."""

    def __init__(self, config: OpenAIConfig, voice_config: VoiceConfig, client: Any = None):
        if client is None:
            import openai

            client = openai.AsyncOpenAI(
                api_key=config.api_key,
                base_url=config.base_url,
                max_retries=config.max_retries,
                timeout=config.timeout,
            )
        self._client = client
        self._model = voice_config.speech_model
        self._voice = voice_config.speech_voice

    async def synthesize(self, user: ChatUser, text: str) -> Optional[bytes]:
        if not text.strip():
            return None
        try:
            response = await self._client.audio.speech.create(
                model=self._model,
                voice=self._voice,
                input=text,
                response_format="mp3",
            )
        except Exception as e:
            logger.error("speech_synthesis_failed", user_id=user.id, model=self._model, error=str(e))
            return None
        audio = response.content
        logger.debug("speech_synthesized", user_id=user.id, size=len(audio))
        return audio or None
