"""Build the agents a bot talks through."""

from __future__ import annotations

from dataclasses import dataclass, field

from oshaberi_bot.ai.agent import Agent
from oshaberi_bot.config import AppConfig, BotConfig
from oshaberi_bot.core.types import AIProvider
from oshaberi_bot.errors import ConfigurationError
from oshaberi_bot.log import get_logger

logger = get_logger(__name__)


def matches_image_keywords(text: str, keyword_groups: list[list[str]]) -> bool:
    """True when every keyword of at least one group appears in *text*."""
    return any(group and all(keyword in text for keyword in group) for group in keyword_groups)


@dataclass
class BotAgents:
    """The default agent of a bot and, when configured, its image agent."""

    default: Agent
    image: Agent | None = None
    image_keywords: list[list[str]] = field(default_factory=list)

    def agent_for(self, text: str) -> Agent:
        if self.image is not None and matches_image_keywords(text, self.image_keywords):
            return self.image
        return self.default

    def is_image_agent(self, agent: Agent) -> bool:
        return self.image is not None and agent is self.image


def create_agents(config: AppConfig, bot_cfg: BotConfig) -> BotAgents:
    """Create the agents for *bot_cfg* from the provider sections of *config*."""
    ai = bot_cfg.ai
    match ai.provider:
        case AIProvider.OPENAI:
            if not config.openai:
                raise ConfigurationError(
                    f"Bot '{bot_cfg.id}' uses 'openai' but no 'openai' section in config"
                )
            from oshaberi_bot.ai.openai_agent import OpenAIAgent

            return BotAgents(default=OpenAIAgent(config.openai, ai))
        case AIProvider.GOOGLE:
            if not config.google:
                raise ConfigurationError(
                    f"Bot '{bot_cfg.id}' uses 'google' but no 'google' section in config"
                )
            from oshaberi_bot.ai.gemini_agent import (
                GeminiAgent,
                GeminiImageAgent,
                create_genai_client,
            )

            client = create_genai_client(config.google)
            default = GeminiAgent(config.google, ai, client=client)
            image = GeminiImageAgent(config.google, ai, client=client) if ai.image_model else None
            logger.debug("gemini_agents_created", model=ai.model, image_model=ai.image_model or None)
            return BotAgents(default=default, image=image, image_keywords=ai.image_keywords)
        case AIProvider.ANTHROPIC:
            if not config.anthropic:
                raise ConfigurationError(
                    f"Bot '{bot_cfg.id}' uses 'anthropic' but no 'anthropic' section in config"
                )
            from oshaberi_bot.ai.anthropic_agent import AnthropicAgent

            return BotAgents(default=AnthropicAgent(config.anthropic, ai))
        case _:
            raise ConfigurationError(f"Unknown AI provider: {ai.provider}")
