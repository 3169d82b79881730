"""Discord messenger adapter using discord.py v2+ and discord-ext-voice-recv."""

from __future__ import annotations

import asyncio
import io
from datetime import datetime, timezone
from typing import Any, Callable

import discord
from discord import app_commands
from discord.ext import commands, voice_recv

from oshaberi_bot.ai.commands import BotCommands, error_notice
from oshaberi_bot.ai.models import ChatUser
from oshaberi_bot.config import BotConfig
from oshaberi_bot.core.types import Platform
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
from oshaberi_bot.voice.listener import PlayCallback, VoiceListener

logger = get_logger(__name__)

MAX_MESSAGE_LENGTH = 2000

VoiceListenerFactory = Callable[[str, PlayCallback], VoiceListener]

_COLORS = {
    NoticeColor.BLURPLE: discord.Color.blurple(),
    NoticeColor.RED: discord.Color.red(),
    NoticeColor.GREEN: discord.Color.green(),
}


def to_embed(notice: Notice) -> discord.Embed:
    embed = discord.Embed(
        title=notice.title,
        description=notice.description or None,
        color=_COLORS[notice.color],
    )
    for name, value in notice.fields:
        embed.add_field(name=name, value=value, inline=True)
    if notice.footer:
        embed.set_footer(text=notice.footer)
    return embed


def _chat_user(user: discord.abc.User) -> ChatUser:
    return ChatUser(id=str(user.id), display_name=user.display_name, is_bot=user.bot)


class _ListenerSink(voice_recv.AudioSink):
    """Bridges voice-recv callbacks (run off the event loop) into a VoiceListener."""

    def __init__(self, listener: VoiceListener, loop: asyncio.AbstractEventLoop):
        super().__init__()
        self._listener = listener
        self._loop = loop

    def wants_opus(self) -> bool:
        return False

    def write(self, user: discord.User | discord.Member | None, data: voice_recv.VoiceData) -> None:
        if user is None or not data.pcm:
            return
        self._loop.call_soon_threadsafe(self._listener.feed, str(user.id), data.pcm)

    @voice_recv.AudioSink.listener()
    def on_voice_member_speaking_start(self, member: discord.Member) -> None:
        self._loop.call_soon_threadsafe(self._listener.speaking_started, _chat_user(member))

    @voice_recv.AudioSink.listener()
    def on_voice_member_speaking_stop(self, member: discord.Member) -> None:
        asyncio.run_coroutine_threadsafe(
            self._listener.speaking_stopped(str(member.id)), self._loop
        )

    def cleanup(self) -> None:
        self._loop.call_soon_threadsafe(self._listener.close)


class DiscordAdapter(MessengerAdapter):
    """Discord bot adapter using discord.py."""

    def __init__(self, bot_config: BotConfig):
        super().__init__(bot_config.id)
        self._config = bot_config
        intents = discord.Intents.default()
        intents.message_content = True
        intents.voice_states = True
        self._bot = commands.Bot(command_prefix=commands.when_mentioned, intents=intents)
        self._task: asyncio.Task[Any] | None = None
        self._ready = asyncio.Event()
        self._commands: BotCommands | None = None
        self._voice_listener_factory: VoiceListenerFactory | None = None

        @self._bot.event
        async def on_ready() -> None:
            logger.info("discord_bot_ready", user=str(self._bot.user), bot_id=self.bot_id)
            self._ready.set()

        @self._bot.event
        async def on_message(message: discord.Message) -> None:
            if message.author == self._bot.user:
                return
            await self._on_discord_message(message)

    @property
    def platform_name(self) -> str:
        return Platform.DISCORD

    @property
    def bot_commands(self) -> BotCommands:
        if self._commands is None:
            raise ReplyableError("Commands are not available yet")
        return self._commands

    def set_commands(self, bot_commands: BotCommands) -> None:
        """Expose *bot_commands* as slash commands (synced on start)."""
        self._commands = bot_commands
        self._register_slash_commands()

    def set_voice_listener_factory(self, factory: VoiceListenerFactory) -> None:
        self._voice_listener_factory = factory

    async def start(self) -> None:
        token = self._config.token
        if not token:
            raise ValueError(f"Discord bot token not configured for bot '{self.bot_id}'")

        self._task = asyncio.create_task(self._bot.start(token))
        try:
            await asyncio.wait_for(self._ready.wait(), timeout=30)
        except asyncio.TimeoutError:
            logger.warning("discord_ready_timeout", bot_id=self.bot_id)
            return

        await self._sync_slash_commands()
        logger.info("discord_adapter_started", bot_id=self.bot_id)

    async def stop(self) -> None:
        for voice_client in list(self._bot.voice_clients):
            await voice_client.disconnect(force=True)
        await self._bot.close()
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            except Exception as e:
                logger.warning("discord_task_error", bot_id=self.bot_id, error=str(e))
        logger.info("discord_adapter_stopped", bot_id=self.bot_id)

    async def _channel(self, chat_id: str) -> Any:
        channel = self._bot.get_channel(int(chat_id))
        if channel is None:
            try:
                channel = await self._bot.fetch_channel(int(chat_id))
            except discord.DiscordException as e:
                logger.error("discord_channel_not_found", chat_id=chat_id, error=str(e))
                return None
        if not isinstance(channel, (discord.TextChannel, discord.DMChannel, discord.Thread, discord.VoiceChannel)):
            return None
        return channel

    async def send_message(self, message: OutgoingMessage) -> None:
        channel = await self._channel(message.chat_id)
        if channel is None:
            return

        files = [discord.File(io.BytesIO(att.data), filename=att.filename) for att in message.attachments]
        embeds = [to_embed(notice) for notice in message.notices]
        reference = None
        if message.reply_to_message_id:
            reference = discord.MessageReference(
                message_id=int(message.reply_to_message_id),
                channel_id=int(message.chat_id),
                fail_if_not_exists=False,
            )

        text = message.text or ""
        first_chunk = text[:MAX_MESSAGE_LENGTH]
        text = text[MAX_MESSAGE_LENGTH:]
        await channel.send(
            content=first_chunk or None,
            files=files,
            embeds=embeds,
            reference=reference,
        )
        while text:
            chunk = text[:MAX_MESSAGE_LENGTH]
            text = text[MAX_MESSAGE_LENGTH:]
            await channel.send(chunk)

    async def send_typing_indicator(self, chat_id: str) -> None:
        channel = self._bot.get_channel(int(chat_id))
        if channel and hasattr(channel, "typing"):
            await channel.typing()  # type: ignore[union-attr]

    async def add_reaction(self, chat_id: str, message_id: str, emoji: str) -> None:
        channel = await self._channel(chat_id)
        if channel is None:
            return
        await channel.get_partial_message(int(message_id)).add_reaction(emoji)

    async def join_voice(self, guild_id: str, channel_id: str) -> bool:
        guild = self._bot.get_guild(int(guild_id))
        if guild is None:
            raise ReplyableError("That server is not available to this bot")
        if guild.voice_client is not None:
            logger.debug("voice_already_joined", guild_id=guild_id)
            return False
        channel = guild.get_channel(int(channel_id))
        if not isinstance(channel, discord.VoiceChannel):
            raise ReplyableError("That channel is not a voice channel")

        voice_client = await channel.connect(cls=voice_recv.VoiceRecvClient)
        logger.info("voice_joined", guild_id=guild_id, channel_id=channel_id)
        if self._voice_listener_factory is None:
            return True

        async def play(audio: bytes) -> None:
            if voice_client.is_playing():
                voice_client.stop()
            voice_client.play(discord.FFmpegPCMAudio(io.BytesIO(audio), pipe=True))

        listener = self._voice_listener_factory(str(guild.id), play)
        voice_client.listen(_ListenerSink(listener, asyncio.get_running_loop()))
        return True

    async def _on_discord_message(self, message: discord.Message) -> None:
        """Normalize a Discord message (text and attachments) for the handler."""
        if not self._message_callback:
            return

        attachments: list[Attachment] = []
        for att in message.attachments:
            try:
                data = await att.read()
                attachments.append(
                    Attachment(
                        data=data,
                        media_type=att.content_type or "application/octet-stream",
                        filename=att.filename,
                    )
                )
            except discord.DiscordException as e:
                logger.warning("discord_attachment_download_error", error=str(e))

        author = message.author
        voice_channel_id = None
        if isinstance(author, discord.Member) and author.voice and author.voice.channel:
            voice_channel_id = str(author.voice.channel.id)

        incoming = IncomingMessage(
            platform=Platform.DISCORD,
            bot_id=self.bot_id,
            chat_id=str(message.channel.id),
            message_id=str(message.id),
            user_id=str(author.id),
            user_display_name=author.display_name,
            text=message.content or "",
            clean_text=message.clean_content or "",
            timestamp=message.created_at or datetime.now(timezone.utc),
            guild_id=str(message.guild.id) if message.guild else None,
            author_is_bot=author.bot,
            mentions_bot=self._bot.user is not None and self._bot.user in message.mentions,
            author_voice_channel_id=voice_channel_id,
            attachments=attachments,
        )

        try:
            await self._message_callback(incoming)
        except Exception as e:
            logger.error(
                "discord_handler_error", error=str(e), channel_id=str(message.channel.id)
            )

    def _register_slash_commands(self) -> None:
        tree = self._bot.tree

        @tree.command(name="get-status", description="Show accumulated token usage and requests")
        async def get_status(interaction: discord.Interaction) -> None:
            await self._run_slash(interaction, self._slash_get_status)

        @tree.command(name="get-system-prompt", description="Show the system prompt")
        async def get_system_prompt(interaction: discord.Interaction) -> None:
            await self._run_slash(interaction, self._slash_get_system_prompt)

        @tree.command(name="set-system-prompt", description="Set the system prompt and reset the conversation")
        @app_commands.describe(prompt="New system prompt")
        @app_commands.default_permissions(administrator=True)
        async def set_system_prompt(interaction: discord.Interaction, prompt: str) -> None:
            async def run(i: discord.Interaction) -> None:
                await self._slash_set_system_prompt(i, prompt)

            await self._run_slash(interaction, run)

        @tree.command(name="get-version", description="Show the bot version")
        async def get_version(interaction: discord.Interaction) -> None:
            await self._run_slash(interaction, self._slash_get_version)

        @tree.command(name="join-vc", description="Join your voice channel")
        async def join_vc(interaction: discord.Interaction) -> None:
            await self._run_slash(interaction, self._slash_join_vc)

    async def _sync_slash_commands(self) -> None:
        if self._commands is None:
            return
        tree = self._bot.tree
        try:
            if self._config.guild_ids:
                for guild_id in self._config.guild_ids:
                    guild = discord.Object(id=guild_id)
                    tree.copy_global_to(guild=guild)
                    await tree.sync(guild=guild)
            else:
                await tree.sync()
        except discord.HTTPException as e:
            logger.error("slash_command_sync_failed", bot_id=self.bot_id, error=str(e))
            return
        logger.info("slash_commands_synced", bot_id=self.bot_id, guild_count=len(self._config.guild_ids))

    async def _run_slash(self, interaction: discord.Interaction, action: Callable[[discord.Interaction], Any]) -> None:
        bind_event_context(
            bot_id=self.bot_id,
            guild_id=str(interaction.guild_id or ""),
            user_id=str(interaction.user.id),
        )
        try:
            await interaction.response.defer()
            await action(interaction)
        except ReplyableError as e:
            logger.info("slash_command_rejected", command=interaction.command.name if interaction.command else None, error=e.message)
            await interaction.followup.send(embed=to_embed(error_notice(e.message)))
        except Exception as e:
            logger.error("slash_command_error", error=str(e), exc_info=True)
            await interaction.followup.send(
                embed=to_embed(error_notice("The command failed; please report it to the admin"))
            )

    async def _slash_get_status(self, interaction: discord.Interaction) -> None:
        notice = await self.bot_commands.limit_status()
        await interaction.followup.send(embed=to_embed(notice))

    async def _slash_get_system_prompt(self, interaction: discord.Interaction) -> None:
        await interaction.followup.send(await self.bot_commands.system_prompt_text())

    async def _slash_set_system_prompt(self, interaction: discord.Interaction, prompt: str) -> None:
        await self.bot_commands.set_system_prompt(prompt, _chat_user(interaction.user))
        await interaction.followup.send("System prompt updated")

    async def _slash_get_version(self, interaction: discord.Interaction) -> None:
        await interaction.followup.send(embed=to_embed(self.bot_commands.version_notice()))

    async def _slash_join_vc(self, interaction: discord.Interaction) -> None:
        user = interaction.user
        voice_channel_id = None
        if isinstance(user, discord.Member) and user.voice and user.voice.channel:
            voice_channel_id = str(user.voice.channel.id)
        guild_id = str(interaction.guild_id) if interaction.guild_id else None
        await interaction.followup.send(await self.bot_commands.join_voice(guild_id, voice_channel_id))
