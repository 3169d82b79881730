"""Collects utterances on one voice connection and answers them."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Awaitable, Callable

from oshaberi_bot.ai.models import ChatUser
from oshaberi_bot.config import VoiceConfig
from oshaberi_bot.log import get_logger
from oshaberi_bot.voice.orchestrator import VoiceOrchestrator
from oshaberi_bot.voice.subscriptions import VoiceSubscriptionRegistry
from oshaberi_bot.voice.wav import downmix_to_mono, encode_wav

logger = get_logger(__name__)

PlayCallback = Callable[[bytes], Awaitable[None]]


@dataclass
class _Utterance:
    user: ChatUser
    chunks: list[bytes] = field(default_factory=list)


class VoiceListener:
    """Buffers PCM per speaking user and runs a voice turn when they stop.

    Chunks are 20 ms frames of 48 kHz stereo PCM as received from the
    platform; they are downmixed to mono at the configured sample rate.
    """

    def __init__(
        self,
        connection_id: str,
        registry: VoiceSubscriptionRegistry,
        orchestrator: VoiceOrchestrator,
        config: VoiceConfig,
        play: PlayCallback,
    ):
        self.connection_id = connection_id
        self._registry = registry
        self._orchestrator = orchestrator
        self._config = config
        self._play = play
        self._utterances: dict[str, _Utterance] = {}

    def speaking_started(self, user: ChatUser) -> bool:
        """Start capturing *user*. False for bots or users already being captured."""
        if user.is_bot:
            return False
        if not self._registry.try_acquire(self.connection_id, user.id):
            logger.debug("voice_already_subscribed", user_id=user.id)
            return False
        self._utterances[user.id] = _Utterance(user)
        return True

    def feed(self, user_id: str, pcm: bytes) -> None:
        utterance = self._utterances.get(user_id)
        if utterance is None:
            return
        chunk = downmix_to_mono(pcm, target_rate=self._config.sample_rate)
        if chunk:
            utterance.chunks.append(chunk)

    async def speaking_stopped(self, user_id: str) -> None:
        utterance = self._utterances.pop(user_id, None)
        if utterance is None:
            return
        try:
            if len(utterance.chunks) < self._config.min_stream_length:
                logger.debug(
                    "voice_too_short",
                    user_id=user_id,
                    chunks=len(utterance.chunks),
                    min_length=self._config.min_stream_length,
                )
                return
            wav = encode_wav(b"".join(utterance.chunks), sample_rate=self._config.sample_rate)
            logger.debug("voice_wav_created", user_id=user_id, size=len(wav))
            reply = await self._orchestrator.handle_voice_turn(utterance.user, wav)
            if reply:
                await self._play(reply)
        except Exception as e:
            logger.error("voice_turn_failed", user_id=user_id, error=str(e), exc_info=True)
        finally:
            self._registry.release(self.connection_id, user_id)

    def close(self) -> None:
        self._utterances.clear()
        self._registry.drop_connection(self.connection_id)
