"""Tests for the Discord adapter pieces that need no gateway connection."""

from unittest.mock import AsyncMock, MagicMock

import discord
import pytest

from oshaberi_bot.config import BotConfig
from oshaberi_bot.core.types import Platform
from oshaberi_bot.errors import ReplyableError
from oshaberi_bot.messenger.discord_adapter import DiscordAdapter, to_embed
from oshaberi_bot.messenger.models import Notice, NoticeColor


@pytest.fixture
async def adapter():
    return DiscordAdapter(BotConfig(id="bot1", token="t"))


def slash_interaction():
    interaction = MagicMock()
    interaction.guild_id = 1
    interaction.user.id = 42
    interaction.command.name = "get-status"
    interaction.response.defer = AsyncMock()
    interaction.followup.send = AsyncMock()
    return interaction


class TestDiscordAdapter:
    async def test_platform_name(self, adapter):
        assert adapter.platform_name == Platform.DISCORD
        assert adapter.bot_id == "bot1"

    async def test_bot_commands_before_set_commands_raises(self, adapter):
        with pytest.raises(ReplyableError) as exc_info:
            adapter.bot_commands

        assert exc_info.value.message == "Commands are not available yet"

    async def test_slash_command_before_set_commands_replies_with_notice(self, adapter):
        interaction = slash_interaction()

        await adapter._run_slash(interaction, adapter._slash_get_status)

        interaction.response.defer.assert_awaited_once()
        embed = interaction.followup.send.await_args.kwargs["embed"]
        assert embed.description == "Commands are not available yet"
        assert embed.color == discord.Color.red()


class TestToEmbed:
    def test_fields_and_footer(self):
        notice = Notice(
            title="Usage status",
            fields=[("Total tokens used", "300")],
            footer="version: 1.0.0",
            color=NoticeColor.GREEN,
        )

        embed = to_embed(notice)

        assert embed.title == "Usage status"
        assert embed.description is None
        assert embed.color == discord.Color.green()
        assert [(f.name, f.value, f.inline) for f in embed.fields] == [("Total tokens used", "300", True)]
        assert embed.footer.text == "version: 1.0.0"
