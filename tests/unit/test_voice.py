"""Tests for the voice pipeline: orchestration, subscriptions, listener and PCM helpers."""

import io
import wave
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import numpy as np

from oshaberi_bot.ai.chat import ChatService
from oshaberi_bot.ai.models import ChatResult, ChatStatus, ChatUser
from oshaberi_bot.config import OpenAIConfig, VoiceConfig
from oshaberi_bot.storage.voice_repo import VoiceLimitRepository
from oshaberi_bot.voice.listener import VoiceListener
from oshaberi_bot.voice.orchestrator import VoiceOrchestrator
from oshaberi_bot.voice.speaker import OpenAISpeaker, Speaker
from oshaberi_bot.voice.subscriptions import VoiceSubscriptionRegistry
from oshaberi_bot.voice.transcriber import OpenAITranscriber, Transcriber
from oshaberi_bot.voice.wav import downmix_to_mono, encode_wav

COUNT_KEY = "bot1:ai:limit:user-speak-count-hash"
USER = ChatUser(id="42", display_name="alice")
OK = ChatResult(content="にゃーん、こんにちは", status=ChatStatus(title="conversation status", threshold=100))


def make_orchestrator(kv, clock, transcript="hello", chat_result=OK, max_count=60, speech_limit=100):
    transcriber = MagicMock(spec=Transcriber)
    transcriber.transcribe = AsyncMock(return_value=transcript)
    speaker = MagicMock(spec=Speaker)
    speaker.synthesize = AsyncMock(return_value=b"mp3")
    chat = MagicMock(spec=ChatService)
    chat.get_chat_message = AsyncMock(return_value=chat_result)
    config = VoiceConfig(token_limit=64, speech_limit=speech_limit, max_count_per_hour=max_count)
    limits = VoiceLimitRepository(kv, "bot1", max_count_per_hour=max_count, clock=clock)
    orchestrator = VoiceOrchestrator(chat, limits, transcriber, speaker, config)
    return orchestrator, chat, speaker, limits


class TestVoiceOrchestrator:
    async def test_successful_turn_records_and_speaks(self, kv, clock):
        orchestrator, chat, speaker, _ = make_orchestrator(kv, clock)

        reply = await orchestrator.handle_voice_turn(USER, b"wav")

        assert reply == b"mp3"
        chat.get_chat_message.assert_awaited_once_with(USER, "hello", token_limit=64)
        speaker.synthesize.assert_awaited_once_with(USER, OK.content)
        assert await kv.hget(COUNT_KEY, "42") == "1"

    async def test_silence_touches_nothing(self, kv, clock):
        orchestrator, chat, speaker, _ = make_orchestrator(kv, clock, transcript="")

        assert await orchestrator.handle_voice_turn(USER, b"wav") is None

        chat.get_chat_message.assert_not_awaited()
        speaker.synthesize.assert_not_awaited()
        assert await kv.hget(COUNT_KEY, "42") is None

    async def test_exhausted_bucket_is_denied(self, kv, clock):
        orchestrator, chat, _, limits = make_orchestrator(kv, clock, max_count=2)
        await limits.record_speak("42")
        await limits.record_speak("42")

        assert await orchestrator.handle_voice_turn(USER, b"wav") is None

        chat.get_chat_message.assert_not_awaited()
        assert await kv.hget(COUNT_KEY, "42") == "2"

    async def test_failed_chat_is_not_counted(self, kv, clock):
        failed = ChatResult(content="Failed to continue the conversation")
        orchestrator, _, speaker, _ = make_orchestrator(kv, clock, chat_result=failed)

        assert await orchestrator.handle_voice_turn(USER, b"wav") is None

        speaker.synthesize.assert_not_awaited()
        assert await kv.hget(COUNT_KEY, "42") is None

    async def test_speech_is_cut_to_the_limit(self, kv, clock):
        orchestrator, _, speaker, _ = make_orchestrator(kv, clock, speech_limit=4)

        await orchestrator.handle_voice_turn(USER, b"wav")

        speaker.synthesize.assert_awaited_once_with(USER, OK.content[:4])


class TestOpenAIAudio:
    async def test_transcription_failure_is_silence(self):
        client = MagicMock()
        client.audio.transcriptions.create = AsyncMock(side_effect=RuntimeError("timeout"))
        transcriber = OpenAITranscriber(OpenAIConfig(api_key="k"), VoiceConfig(), client=client)

        assert await transcriber.transcribe(b"wav") == ""

    async def test_transcript_is_stripped(self):
        client = MagicMock()
        client.audio.transcriptions.create = AsyncMock(return_value=SimpleNamespace(text="  こんにちは \n"))
        transcriber = OpenAITranscriber(OpenAIConfig(api_key="k"), VoiceConfig(language="ja"), client=client)

        assert await transcriber.transcribe(b"wav") == "こんにちは"
        kwargs = client.audio.transcriptions.create.await_args.kwargs
        assert kwargs["file"] == ("speech.wav", b"wav", "audio/wav")
        assert kwargs["language"] == "ja"

    async def test_blank_text_is_not_synthesized(self):
        client = MagicMock()
        client.audio.speech.create = AsyncMock()
        speaker = OpenAISpeaker(OpenAIConfig(api_key="k"), VoiceConfig(), client=client)

        assert await speaker.synthesize(USER, "   ") is None
        client.audio.speech.create.assert_not_awaited()

    async def test_synthesis_returns_mp3_bytes(self):
        client = MagicMock()
        client.audio.speech.create = AsyncMock(return_value=SimpleNamespace(content=b"ID3"))
        speaker = OpenAISpeaker(OpenAIConfig(api_key="k"), VoiceConfig(speech_voice="nova"), client=client)

        assert await speaker.synthesize(USER, "hi") == b"ID3"
        kwargs = client.audio.speech.create.await_args.kwargs
        assert kwargs["voice"] == "nova"
        assert kwargs["response_format"] == "mp3"


class TestVoiceSubscriptionRegistry:
    def test_second_acquire_is_refused_until_release(self):
        registry = VoiceSubscriptionRegistry()
        assert registry.try_acquire("guild1", "u1") is True
        assert registry.try_acquire("guild1", "u1") is False
        registry.release("guild1", "u1")
        assert registry.try_acquire("guild1", "u1") is True

    def test_connections_are_independent(self):
        registry = VoiceSubscriptionRegistry()
        registry.try_acquire("guild1", "u1")
        assert registry.try_acquire("guild2", "u1") is True
        registry.drop_connection("guild1")
        assert not registry.is_active("guild1", "u1")
        assert registry.is_active("guild2", "u1")

    def test_release_of_unknown_user_is_a_no_op(self):
        registry = VoiceSubscriptionRegistry()
        registry.release("guild1", "nobody")
        assert not registry.is_active("guild1", "nobody")


def stereo_frame(value=1000, frames=960):
    return np.full(frames * 2, value, dtype="<i2").tobytes()


class TestVoiceListener:
    def make_listener(self, min_stream_length=3):
        registry = VoiceSubscriptionRegistry()
        orchestrator = MagicMock(spec=VoiceOrchestrator)
        orchestrator.handle_voice_turn = AsyncMock(return_value=b"mp3")
        play = AsyncMock()
        listener = VoiceListener(
            "guild1", registry, orchestrator, VoiceConfig(min_stream_length=min_stream_length), play
        )
        return listener, registry, orchestrator, play

    async def test_utterance_is_answered_and_released(self):
        listener, registry, orchestrator, play = self.make_listener()
        assert listener.speaking_started(USER) is True
        for _ in range(3):
            listener.feed("42", stereo_frame())

        await listener.speaking_stopped("42")

        user, wav = orchestrator.handle_voice_turn.await_args.args
        assert user == USER
        with wave.open(io.BytesIO(wav)) as reader:
            assert reader.getframerate() == 16000
            assert reader.getnframes() == 3 * 320
        play.assert_awaited_once_with(b"mp3")
        assert not registry.is_active("guild1", "42")

    async def test_short_utterance_is_dropped_and_released(self):
        listener, registry, orchestrator, play = self.make_listener(min_stream_length=40)
        listener.speaking_started(USER)
        listener.feed("42", stereo_frame())

        await listener.speaking_stopped("42")

        orchestrator.handle_voice_turn.assert_not_awaited()
        play.assert_not_awaited()
        assert not registry.is_active("guild1", "42")

    async def test_failed_turn_still_releases(self):
        listener, registry, orchestrator, play = self.make_listener(min_stream_length=1)
        orchestrator.handle_voice_turn.side_effect = RuntimeError("boom")
        listener.speaking_started(USER)
        listener.feed("42", stereo_frame())

        await listener.speaking_stopped("42")

        play.assert_not_awaited()
        assert not registry.is_active("guild1", "42")

    def test_bots_and_duplicate_speakers_are_ignored(self):
        listener, _, _, _ = self.make_listener()
        assert listener.speaking_started(ChatUser(id="99", is_bot=True)) is False
        assert listener.speaking_started(USER) is True
        assert listener.speaking_started(USER) is False

    def test_audio_of_unsubscribed_user_is_ignored(self):
        listener, _, _, _ = self.make_listener()
        listener.feed("nobody", stereo_frame())
        assert listener._utterances == {}


class TestWav:
    def test_header_is_44_bytes(self):
        pcm = b"\x00\x01" * 100
        wav = encode_wav(pcm)
        assert len(wav) == 44 + len(pcm)
        assert wav[:4] == b"RIFF"
        assert wav[8:12] == b"WAVE"

    def test_downmix_averages_channels_and_resamples(self):
        stereo = np.array([100, 300] * 960, dtype="<i2").tobytes()
        mono = np.frombuffer(downmix_to_mono(stereo), dtype="<i2")
        assert len(mono) == 320
        assert set(mono.tolist()) == {200}

    def test_partial_frame_is_dropped(self):
        assert downmix_to_mono(b"\x01\x00", target_rate=48000) == b""
