"""Application orchestrator - wires all components and manages lifecycle."""

from __future__ import annotations

from typing import TYPE_CHECKING

from oshaberi_bot.ai.chat import ChatService
from oshaberi_bot.ai.commands import BotCommands
from oshaberi_bot.ai.factory import create_agents
from oshaberi_bot.ai.handler import MessageHandler
from oshaberi_bot.config import AppConfig, BotConfig
from oshaberi_bot.core.types import KVBackend
from oshaberi_bot.errors import ConfigurationError
from oshaberi_bot.log import get_logger
from oshaberi_bot.messenger.base import MessengerAdapter
from oshaberi_bot.storage.conversation_repo import ConversationRepository
from oshaberi_bot.storage.kv import KeyValueStore
from oshaberi_bot.storage.limit_repo import LimitRepository
from oshaberi_bot.storage.prompt_repo import PromptRepository
from oshaberi_bot.storage.voice_repo import VoiceLimitRepository
from oshaberi_bot.voice.listener import PlayCallback, VoiceListener
from oshaberi_bot.voice.orchestrator import VoiceOrchestrator
from oshaberi_bot.voice.speaker import OpenAISpeaker
from oshaberi_bot.voice.subscriptions import VoiceSubscriptionRegistry
from oshaberi_bot.voice.transcriber import OpenAITranscriber

if TYPE_CHECKING:
    from oshaberi_bot.messenger.discord_adapter import DiscordAdapter

logger = get_logger(__name__)


def create_kv(config: AppConfig) -> KeyValueStore:
    match config.kv.backend:
        case KVBackend.REDIS:
            from oshaberi_bot.storage.redis_kv import RedisKV

            return RedisKV(config.kv.redis_url, max_retries=config.kv.max_retries)
        case KVBackend.SQLITE:
            from oshaberi_bot.storage.sqlite_kv import SqliteKV

            return SqliteKV(config.kv.sqlite_path)
        case _:
            raise ConfigurationError(f"Unknown KV backend: {config.kv.backend}")


class OshaberiBotApp:
    """Top-level application orchestrator."""

    def __init__(self, config: AppConfig):
        self.config = config
        self.kv = create_kv(config)
        self.voice_registry = VoiceSubscriptionRegistry()
        self.adapters: dict[str, MessengerAdapter] = {}

    async def start(self) -> None:
        """Initialize and start all components."""
        await self.kv.initialize()

        for bot_cfg in self.config.bots:
            try:
                adapter = self._create_bot(bot_cfg)
                await adapter.start()
                self.adapters[bot_cfg.id] = adapter
                logger.info(
                    "bot_started",
                    bot_id=bot_cfg.id,
                    platform=adapter.platform_name,
                    provider=bot_cfg.ai.provider,
                    model=bot_cfg.ai.model,
                )
            except Exception as e:
                logger.error("bot_start_failed", bot_id=bot_cfg.id, error=str(e))

        logger.info("oshaberi_bot_started", bot_count=len(self.adapters))

    async def stop(self) -> None:
        """Gracefully shut down all components."""
        for adapter in self.adapters.values():
            try:
                await adapter.stop()
            except Exception as e:
                logger.error("bot_stop_error", bot_id=adapter.bot_id, error=str(e))

        await self.kv.close()
        logger.info("oshaberi_bot_stopped")

    def _create_bot(self, bot_cfg: BotConfig) -> MessengerAdapter:
        agents = create_agents(self.config, bot_cfg)
        prompts = PromptRepository(self.kv, bot_cfg.id)
        limits = LimitRepository(
            self.kv,
            bot_cfg.id,
            provider=agents.default.provider_id,
            min_interval_seconds=bot_cfg.limits.min_interval_seconds,
            fallback_max_tokens=bot_cfg.ai.max_tokens,
        )
        chat = ChatService(
            agents.default,
            ConversationRepository(self.kv, bot_cfg.id),
            prompts,
            limits,
        )

        adapter = self._create_adapter(bot_cfg)
        bot_commands = BotCommands(chat, prompts, limits, adapter, bot_cfg, self.config)
        handler = MessageHandler(adapter, chat, agents, bot_commands, bot_cfg, self.config)
        adapter.on_message(handler.handle)
        adapter.set_commands(bot_commands)

        orchestrator = self._create_voice(bot_cfg, chat)
        if orchestrator is not None:

            def listener_factory(connection_id: str, play: PlayCallback) -> VoiceListener:
                return VoiceListener(
                    connection_id, self.voice_registry, orchestrator, bot_cfg.voice, play
                )

            adapter.set_voice_listener_factory(listener_factory)
        return adapter

    def _create_voice(self, bot_cfg: BotConfig, chat: ChatService) -> VoiceOrchestrator | None:
        if not bot_cfg.voice.enabled:
            return None
        if not self.config.openai:
            logger.warning("voice_disabled_no_openai", bot_id=bot_cfg.id)
            return None
        return VoiceOrchestrator(
            chat,
            VoiceLimitRepository(self.kv, bot_cfg.id, bot_cfg.voice.max_count_per_hour),
            OpenAITranscriber(self.config.openai, bot_cfg.voice),
            OpenAISpeaker(self.config.openai, bot_cfg.voice),
            bot_cfg.voice,
        )

    def _create_adapter(self, cfg: BotConfig) -> DiscordAdapter:
        match cfg.platform:
            case "discord":
                from oshaberi_bot.messenger.discord_adapter import DiscordAdapter

                return DiscordAdapter(cfg)
            case _:
                raise ConfigurationError(f"Unknown platform: {cfg.platform}")
