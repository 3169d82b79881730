"""Voice turn: transcribe, gate on the speak bucket, chat, synthesize."""

from __future__ import annotations

from typing import Optional

from oshaberi_bot.ai.chat import ChatService
from oshaberi_bot.ai.models import ChatUser
from oshaberi_bot.config import VoiceConfig
from oshaberi_bot.log import get_logger
from oshaberi_bot.storage.voice_repo import VoiceLimitRepository
from oshaberi_bot.voice.speaker import Speaker
from oshaberi_bot.voice.transcriber import Transcriber

logger = get_logger(__name__)


class VoiceOrchestrator:
    """Answers a spoken utterance with synthesized audio.

    Transcription runs before the quota check so silence never drains the
    bucket, and a voice turn is counted only after the chat succeeded. The
    chat cooldown does not apply to voice.
    """

    def __init__(
        self,
        chat: ChatService,
        voice_limits: VoiceLimitRepository,
        transcriber: Transcriber,
        speaker: Speaker,
        config: VoiceConfig,
    ):
        self._chat = chat
        self._voice_limits = voice_limits
        self._transcriber = transcriber
        self._speaker = speaker
        self._config = config

    async def handle_voice_turn(self, user: ChatUser, audio: bytes) -> Optional[bytes]:
        transcript = await self._transcriber.transcribe(audio)
        if not transcript:
            logger.debug("voice_silence", user_id=user.id)
            return None

        if not await self._voice_limits.user_may_speak(user.id):
            logger.info("voice_quota_exceeded", user_id=user.id)
            return None

        result = await self._chat.get_chat_message(
            user, transcript, token_limit=self._config.token_limit
        )
        if not result.succeeded:
            logger.warning("voice_chat_failed", user_id=user.id, content=result.content)
            return None
        await self._voice_limits.record_speak(user.id)

        reply = await self._speaker.synthesize(user, result.content[: self._config.speech_limit])
        if reply is None:
            logger.warning("voice_synthesis_empty", user_id=user.id)
        return reply
