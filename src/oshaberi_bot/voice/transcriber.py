"""Speech-to-text collaborators."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any

from oshaberi_bot.config import OpenAIConfig, VoiceConfig
from oshaberi_bot.log import get_logger

logger = get_logger(__name__)


class Transcriber(ABC):
    @abstractmethod
    async def transcribe(self, wav: bytes) -> str:
        """Return the transcript of a mono WAV file, or "" for silence."""
        ...


class OpenAITranscriber(Transcriber):
    """OpenAI audio transcription.

    Failures are logged and reported as silence so they never cost voice quota.
    """

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
        self._model = voice_config.transcription_model
        self._language = voice_config.language

    async def transcribe(self, wav: bytes) -> str:
        try:
            result = await self._client.audio.transcriptions.create(
                model=self._model,
                file=("speech.wav", wav, "audio/wav"),
                language=self._language,
            )
        except Exception as e:
            logger.error("transcription_failed", model=self._model, error=str(e))
            return ""
        text = (result.text or "").strip()
        logger.debug("transcribed", length=len(text))
        return text
