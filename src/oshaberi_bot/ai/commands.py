"""Bot commands, reachable as keyword command messages and as slash commands."""

from __future__ import annotations

from dataclasses import dataclass
from importlib.metadata import PackageNotFoundError, version
from typing import Awaitable, Callable

from oshaberi_bot.ai.chat import ChatService
from oshaberi_bot.ai.models import ChatUser
from oshaberi_bot.config import AppConfig, BotConfig
from oshaberi_bot.errors import ReplyableError
from oshaberi_bot.log import get_logger
from oshaberi_bot.messenger.base import MessengerAdapter
from oshaberi_bot.messenger.models import IncomingMessage, Notice, NoticeColor, OutgoingMessage
from oshaberi_bot.storage.limit_repo import LimitRepository
from oshaberi_bot.storage.prompt_repo import PromptRepository

logger = get_logger(__name__)

BOT_NAME = "AI Oshaberi Bot"


def bot_version() -> str:
    try:
        return version("oshaberi-bot")
    except PackageNotFoundError:
        return "unknown"


def strip_code_fence(text: str) -> str:
    """Unwrap a prompt pasted as a fenced code block (``` or ```md)."""
    stripped = text.strip()
    if not (stripped.startswith("```") and stripped.endswith("```") and len(stripped) > 6):
        return stripped
    body = stripped[3:-3]
    first_line, newline, rest = body.partition("\n")
    if newline and " " not in first_line.strip():
        # language tag
        body = rest
    return body.strip()


class BotCommands:
    """Operations behind the bot's commands, shared by both command surfaces."""

    def __init__(
        self,
        chat: ChatService,
        prompts: PromptRepository,
        limits: LimitRepository,
        adapter: MessengerAdapter,
        bot_config: BotConfig,
        app_config: AppConfig,
    ):
        self._chat = chat
        self._prompts = prompts
        self._limits = limits
        self._adapter = adapter
        self._bot_config = bot_config
        self._app_config = app_config

    async def limit_status(self) -> Notice:
        model_id = self._chat.default_agent.model_id
        status = await self._limits.get_limit_model_status(model_id)
        return Notice(
            title="Usage status",
            fields=[
                ("Total tokens used", str(status.total_token_sum)),
                ("Total requests", str(status.request_count)),
            ],
        )

    async def system_prompt_text(self) -> str:
        prompt = await self._prompts.get_system_prompt()
        if prompt is None:
            return "The system prompt is not configured"
        return f"```\n{prompt}\n```"

    async def set_system_prompt(self, raw_prompt: str, user: ChatUser) -> None:
        prompt = strip_code_fence(raw_prompt)
        if not prompt:
            raise ReplyableError("The system prompt is empty")
        logger.info("system_prompt_setting", user_id=user.id, length=len(prompt))
        await self._prompts.set_system_prompt(prompt)
        await self._chat.reset_chat(user)

    def version_notice(self) -> Notice:
        return Notice(
            title=BOT_NAME,
            footer=f"version: {bot_version()} ({self._app_config.commit_sha})",
        )

    async def join_voice(self, guild_id: str | None, voice_channel_id: str | None) -> str:
        if not guild_id or not voice_channel_id:
            return "Join a voice channel first"
        if voice_channel_id != self._bot_config.voice_channel_id:
            return "I can't join that voice channel"
        if not self._bot_config.voice.enabled:
            return "Voice chat is disabled"
        joined = await self._adapter.join_voice(guild_id, voice_channel_id)
        return "Joined" if joined else "Already joined"


def error_notice(message: str, title: str = "Something went wrong!") -> Notice:
    return Notice(
        title=title,
        description=message,
        color=NoticeColor.RED,
        footer=f"version: {bot_version()}",
    )


CommandAction = Callable[[BotCommands, IncomingMessage], Awaitable[OutgoingMessage]]


@dataclass(frozen=True)
class CommandMessage:
    """A command triggered by a keyword in a message mentioning the bot.

    ``|`` separates alternative keywords.
    """

    keyword: str
    action: CommandAction

    def match(self, text: str) -> bool:
        return any(keyword in text for keyword in self.keyword.split("|"))

    async def run(self, commands: BotCommands, message: IncomingMessage) -> OutgoingMessage:
        return await self.action(commands, message)


def _reply(message: IncomingMessage, text: str = "", notices: list[Notice] | None = None) -> OutgoingMessage:
    return OutgoingMessage(
        chat_id=message.chat_id,
        text=text,
        reply_to_message_id=message.message_id,
        notices=notices or [],
    )


async def _get_status(commands: BotCommands, message: IncomingMessage) -> OutgoingMessage:
    return _reply(message, notices=[await commands.limit_status()])


async def _get_system(commands: BotCommands, message: IncomingMessage) -> OutgoingMessage:
    return _reply(message, await commands.system_prompt_text())


SET_SYSTEM_KEYWORD = "[set-system]"


async def _set_system(commands: BotCommands, message: IncomingMessage) -> OutgoingMessage:
    _, _, prompt = message.match_text.partition(SET_SYSTEM_KEYWORD)
    user = ChatUser(id=message.user_id, display_name=message.user_display_name)
    await commands.set_system_prompt(prompt, user)
    return _reply(message, f"{SET_SYSTEM_KEYWORD}: system prompt updated")


async def _get_version(commands: BotCommands, message: IncomingMessage) -> OutgoingMessage:
    return _reply(message, notices=[commands.version_notice()])


async def _join_vc(commands: BotCommands, message: IncomingMessage) -> OutgoingMessage:
    return _reply(message, await commands.join_voice(message.guild_id, message.author_voice_channel_id))


COMMAND_MESSAGES: list[CommandMessage] = [
    CommandMessage("[get-status]", _get_status),
    CommandMessage("[get-system]", _get_system),
    CommandMessage(SET_SYSTEM_KEYWORD, _set_system),
    CommandMessage("[get-version]", _get_version),
    CommandMessage("[join-vc]|vcきて|VCきて", _join_vc),
]
