"""Message handler: command messages first, otherwise an AI reply."""

from __future__ import annotations

from oshaberi_bot.ai.chat import ChatService
from oshaberi_bot.ai.commands import COMMAND_MESSAGES, BotCommands, error_notice
from oshaberi_bot.ai.factory import BotAgents
from oshaberi_bot.ai.models import ChatImage, ChatResult, ChatUser
from oshaberi_bot.config import AppConfig, BotConfig
from oshaberi_bot.errors import ReplyableError
from oshaberi_bot.log import bind_event_context, get_logger
from oshaberi_bot.messenger.base import MessengerAdapter
from oshaberi_bot.messenger.models import (
    Attachment,
    IncomingMessage,
    Notice,
    NoticeColor,
    OutgoingMessage,
)

logger = get_logger(__name__)

GENERATED_IMAGE_FILENAME = "image.png"


def first_image(message: IncomingMessage) -> ChatImage | None:
    """Only the first attachment is used, and only when it is an image."""
    if not message.attachments:
        return None
    attachment = message.attachments[0]
    if not attachment.media_type.startswith("image/"):
        return None
    return ChatImage(data=attachment.data, media_type=attachment.media_type)


def build_notices(result: ChatResult, image_turn: bool, development: bool) -> list[Notice]:
    notices: list[Notice] = []
    title = result.status.title if result.status else ""
    if result.generated_image:
        notices.append(
            Notice(description=f"{title} - the system prompt is not used for image generation")
        )
    if image_turn and not result.generated_image:
        if result.status:
            notices.append(
                Notice(
                    description=f"{title} - used the image model, but no image came back",
                    color=NoticeColor.RED,
                )
            )
        else:
            notices.append(
                Notice(description="No response from the image model", color=NoticeColor.RED)
            )
    if result.status and development:
        total = result.status.total_token
        notices.append(
            Notice(
                description=title,
                color=NoticeColor.GREEN,
                fields=[
                    ("Token usage", str(total) if total is not None else "unknown"),
                    ("Reset threshold", str(result.status.threshold)),
                ],
            )
        )
    return notices


class MessageHandler:
    """Handles one platform message end to end."""

    def __init__(
        self,
        adapter: MessengerAdapter,
        chat: ChatService,
        agents: BotAgents,
        commands: BotCommands,
        bot_config: BotConfig,
        app_config: AppConfig,
    ):
        self._adapter = adapter
        self._chat = chat
        self._agents = agents
        self._commands = commands
        self._bot_config = bot_config
        self._app_config = app_config

    async def handle(self, message: IncomingMessage) -> None:
        if message.author_is_bot:
            return
        channel_id = self._bot_config.command_channel_id
        if channel_id and message.chat_id != channel_id:
            return
        if not message.mentions_bot:
            return

        bind_event_context(
            bot_id=message.bot_id,
            guild_id=message.guild_id or "",
            user_id=message.user_id,
        )
        await self._adapter.send_typing_indicator(message.chat_id)

        if await self._handle_command_message(message):
            return
        await self._handle_reply(message)

    async def _handle_command_message(self, message: IncomingMessage) -> bool:
        """Run the matching command message. Returns True when one matched."""
        matched = [command for command in COMMAND_MESSAGES if command.match(message.match_text)]
        if not matched:
            return False
        try:
            if len(matched) > 1:
                raise ReplyableError("More than one command message matched")
            logger.info("command_message", keyword=matched[0].keyword)
            reply = await matched[0].run(self._commands, message)
            await self._adapter.send_message(reply)
        except ReplyableError as e:
            logger.info("command_message_rejected", error=e.message)
            await self._send_error(message, e.message)
        except Exception as e:
            logger.error("command_message_error", error=str(e), exc_info=True)
            await self._send_error(message, ReplyableError.from_exception(e).message)
        return True

    async def _handle_reply(self, message: IncomingMessage) -> None:
        user = ChatUser(
            id=message.user_id,
            display_name=message.user_display_name,
            is_bot=message.author_is_bot,
        )
        agent = self._agents.agent_for(message.match_text)
        image_turn = self._agents.is_image_agent(agent)
        try:
            if not self._app_config.is_development:
                multiplier = self._bot_config.limits.image_interval_multiplier if image_turn else 1
                if not await self._chat.user_may_chat(user, multiplier):
                    logger.info("chat_cooldown", user_id=user.id, multiplier=multiplier)
                    await self._adapter.add_reaction(
                        message.chat_id, message.message_id, self._bot_config.busy_reaction
                    )
                    return

            result = await self._chat.get_chat_message(
                user, message.text, image=first_image(message), agent=agent
            )
            attachments = []
            if result.generated_image:
                attachments.append(
                    Attachment(
                        data=result.generated_image,
                        media_type="image/png",
                        filename=GENERATED_IMAGE_FILENAME,
                    )
                )
            await self._adapter.send_message(
                OutgoingMessage(
                    chat_id=message.chat_id,
                    text=result.content,
                    reply_to_message_id=message.message_id,
                    attachments=attachments,
                    notices=build_notices(result, image_turn, self._app_config.is_development),
                )
            )
        except ReplyableError as e:
            logger.info("reply_rejected", error=e.message)
            await self._send_error(message, e.message, title="Reply failed!")
        except Exception as e:
            logger.error("reply_error", error=str(e), exc_info=True)
            await self._send_error(
                message, "Replying failed; please report it to the admin", title="Reply failed!"
            )

    async def _send_error(self, message: IncomingMessage, description: str, title: str = "Something went wrong!") -> None:
        await self._adapter.send_message(
            OutgoingMessage(
                chat_id=message.chat_id,
                reply_to_message_id=message.message_id,
                notices=[error_notice(description, title=title)],
            )
        )
