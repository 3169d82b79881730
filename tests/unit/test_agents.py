"""Tests for the provider agents with mocked SDK clients."""

import base64
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest
from google.genai import types

from oshaberi_bot.ai.agent import build_instructions
from oshaberi_bot.ai.anthropic_agent import AnthropicAgent, to_message
from oshaberi_bot.ai.factory import BotAgents, create_agents, matches_image_keywords
from oshaberi_bot.ai.gemini_agent import (
    FORCE_IMAGE_INSTRUCTION,
    KEEP_CONTEXT_INSTRUCTION,
    GeminiAgent,
    GeminiImageAgent,
)
from oshaberi_bot.ai.models import ChatImage, ChatUser, InlineData, Part, ResponseHandle, Turn, TurnHistory
from oshaberi_bot.ai.openai_agent import OpenAIAgent, build_input
from oshaberi_bot.config import AIConfig, AnthropicConfig, AppConfig, BotConfig, GoogleConfig, OpenAIConfig
from oshaberi_bot.errors import ConfigurationError

USER = ChatUser(id="42", display_name="alice")


def ai_config(**overrides):
    values = {"model": "test-model", "image_model": "test-image-model", "max_tokens": 256, "token_threshold": 1000}
    values.update(overrides)
    return AIConfig(**values)


class TestBuildInstructions:
    def test_wraps_prompt_with_rules_and_speaker(self):
        text = build_instructions("Be a cat.", USER, "OpenAI")
        assert "[PERSIST_RULES]" in text
        assert "OpenAI" in text
        assert "alice" in text
        assert text.endswith("Be a cat.")

    def test_token_limit_line_comes_first(self):
        text = build_instructions("p", USER, "Gemini", token_limit=64)
        assert text.splitlines()[0] == "(Stop your answer within at most 64 tokens.)"


class TestOpenAIAgent:
    def make_agent(self, response=None, error=None):
        client = MagicMock()
        client.responses.create = AsyncMock(return_value=response, side_effect=error)
        agent = OpenAIAgent(OpenAIConfig(api_key="sk-test"), ai_config(provider="openai"), client=client)
        return agent, client

    def response(self, response_id="resp_2", total=120):
        return SimpleNamespace(id=response_id, output_text="hello", usage=SimpleNamespace(total_tokens=total))

    async def test_first_turn_request_body(self):
        agent, client = self.make_agent(self.response("resp_1", 80))

        result = await agent.first_turn(USER, "hi", "Be a cat.")

        body = client.responses.create.await_args.kwargs
        assert body["model"] == "test-model"
        assert body["truncation"] == "auto"
        assert body["max_output_tokens"] == 256
        assert body["user"] == "discord_userid_42"
        assert "previous_response_id" not in body
        assert body["instructions"].endswith("Be a cat.")
        assert result.token == ResponseHandle("resp_1")
        assert result.total_token == 80
        assert result.should_reset is False

    async def test_continued_turn_sends_previous_response_id(self):
        agent, client = self.make_agent(self.response("resp_2", 1500))

        result = await agent.continued_turn(USER, "again", ResponseHandle("resp_1"), system_prompt="p", token_limit=64)

        body = client.responses.create.await_args.kwargs
        assert body["previous_response_id"] == "resp_1"
        assert body["max_output_tokens"] == 64
        assert result.token == ResponseHandle("resp_2")
        assert result.should_reset is True

    async def test_threshold_is_exclusive(self):
        agent, _ = self.make_agent(self.response(total=1000))
        result = await agent.continued_turn(USER, "x", ResponseHandle("resp_1"))
        assert result.should_reset is False

    async def test_missing_usage_does_not_reset(self):
        agent, _ = self.make_agent(SimpleNamespace(id="resp_2", output_text="hi", usage=None))
        result = await agent.continued_turn(USER, "x", ResponseHandle("resp_1"))
        assert result.total_token is None
        assert result.should_reset is False

    async def test_provider_error_yields_none(self):
        agent, _ = self.make_agent(error=RuntimeError("rate limited"))
        assert await agent.first_turn(USER, "hi", "p") is None
        assert await agent.continued_turn(USER, "hi", ResponseHandle("resp_1")) is None

    def test_image_is_sent_as_data_url(self):
        items = build_input("look", ChatImage(data=b"png", media_type="image/png"))
        content = items[0]["content"]
        assert content[0] == {"type": "input_text", "text": "look"}
        assert content[1]["image_url"] == "data:image/png;base64," + base64.b64encode(b"png").decode()

    def test_reset_forgets_the_handle(self):
        agent, _ = self.make_agent()
        assert agent.token_after_reset(ResponseHandle("resp_1")) is None
        assert agent.dump_token(agent.parse_token("resp_9")) == "resp_9"


def gemini_client(history, response):
    chat = MagicMock()
    chat.send_message = AsyncMock(return_value=response)
    chat.get_history = MagicMock(return_value=history)
    client = MagicMock()
    client.aio.chats.create = MagicMock(return_value=chat)
    return client, chat


def content(role, text):
    return types.Content(role=role, parts=[types.Part(text=text)])


def gemini_response(text="hello", total=300, candidates=None):
    return SimpleNamespace(
        text=text,
        usage_metadata=SimpleNamespace(total_token_count=total),
        candidates=candidates or [],
    )


class TestGeminiAgent:
    async def test_first_turn_builds_history_from_chat(self):
        history = [content("user", "hi"), content("model", "hello")]
        client, chat = gemini_client(history, gemini_response())
        agent = GeminiAgent(GoogleConfig(api_key="k"), ai_config(), client=client)

        result = await agent.first_turn(USER, "hi", "Be a cat.")

        kwargs = client.aio.chats.create.call_args.kwargs
        assert kwargs["model"] == "test-model"
        assert kwargs["history"] == []
        assert kwargs["config"].system_instruction.endswith("Be a cat.")
        assert isinstance(result.token, TurnHistory)
        assert [t.role for t in result.token.turns] == ["user", "model"]
        assert result.history_length == 2
        assert result.total_token == 300

    async def test_continued_turn_replays_stored_history(self):
        stored = [Turn(role="user", parts=[Part(text="a")]), Turn(role="model", parts=[Part(text="b")])]
        history = [content("user", "a"), content("model", "b"), content("user", "c"), content("model", "d")]
        client, _ = gemini_client(history, gemini_response(total=2000))
        agent = GeminiAgent(GoogleConfig(api_key="k"), ai_config(), client=client)

        result = await agent.continued_turn(USER, "c", TurnHistory(stored))

        replayed = client.aio.chats.create.call_args.kwargs["history"]
        assert [c.role for c in replayed] == ["user", "model"]
        assert replayed[0].parts[0].text == "a"
        assert result.should_reset is True
        assert agent.status_fragment(result) == " history length: 2"

    async def test_thought_parts_are_not_stored(self):
        reply = types.Content(role="model", parts=[types.Part(text="thinking", thought=True), types.Part(text="ok")])
        client, _ = gemini_client([content("user", "hi"), reply], gemini_response())
        agent = GeminiAgent(GoogleConfig(api_key="k"), ai_config(), client=client)

        result = await agent.first_turn(USER, "hi", "p")

        assert result.token.turns[1].parts == [Part(text="ok")]

    async def test_send_failure_yields_none(self):
        client, chat = gemini_client([], None)
        chat.send_message.side_effect = RuntimeError("400 invalid argument")
        agent = GeminiAgent(GoogleConfig(api_key="k"), ai_config(), client=client)

        assert await agent.continued_turn(USER, "x", TurnHistory([])) is None

    def test_reset_trims_history(self):
        agent = GeminiAgent(GoogleConfig(api_key="k"), ai_config(), client=MagicMock())
        turns = [Turn(role="user" if i % 2 == 0 else "model", parts=[Part(text=str(i))]) for i in range(8)]

        kept = agent.token_after_reset(TurnHistory(turns))

        assert [t.parts[0].text for t in kept.turns] == ["4", "5", "6", "7"]


class TestGeminiImageAgent:
    def image_candidate(self):
        parts = [types.Part(text="here you go"), types.Part.from_bytes(data=b"\x89PNG", mime_type="image/png")]
        return [SimpleNamespace(content=types.Content(role="model", parts=parts))]

    async def test_first_turn_strips_lead_turn_and_mentions(self):
        history = [content("user", "Be a cat."), content("user", " draw a cat"), content("model", "meow")]
        client, chat = gemini_client(history, gemini_response(candidates=self.image_candidate()))
        agent = GeminiImageAgent(GoogleConfig(api_key="k"), ai_config(), client=client)

        result = await agent.first_turn(USER, "<@!123> draw a cat", "Be a cat.")

        kwargs = client.aio.chats.create.call_args.kwargs
        assert kwargs["model"] == "test-image-model"
        assert kwargs["history"][0].parts[0].text == "Be a cat."
        assert kwargs["config"].response_modalities == ["IMAGE", "TEXT"]
        assert kwargs["config"].max_output_tokens == 2560
        sent = chat.send_message.await_args.args[0]
        assert sent[0].text == " draw a cat"
        assert chat.send_message.await_count == 1
        assert [t.parts[0].text for t in result.token.turns] == [" draw a cat", "meow"]
        assert result.generated_image == b"\x89PNG"

    async def test_continuation_forces_an_image(self):
        client, chat = gemini_client([content("user", KEEP_CONTEXT_INSTRUCTION)], gemini_response())
        agent = GeminiImageAgent(GoogleConfig(api_key="k"), ai_config(), client=client)

        result = await agent.continued_turn(USER, "again", TurnHistory([]))

        lead = client.aio.chats.create.call_args.kwargs["history"][0]
        assert lead.parts[0].text == KEEP_CONTEXT_INSTRUCTION
        assert chat.send_message.await_args_list[0].args[0] == FORCE_IMAGE_INSTRUCTION
        assert result.generated_image is None

    async def test_status_reports_history_after_the_turn(self):
        history = [content("user", KEEP_CONTEXT_INSTRUCTION), content("user", "again"), content("model", "ok")]
        client, _ = gemini_client(history, gemini_response())
        agent = GeminiImageAgent(GoogleConfig(api_key="k"), ai_config(), client=client)

        result = await agent.continued_turn(USER, "again", TurnHistory([]))

        assert result.history_length == 2
        assert agent.status_fragment(result) == " history length: 2"


class TestAnthropicAgent:
    def make_agent(self, temperature=1.1):
        client = MagicMock()
        client.messages.create = AsyncMock(
            return_value=SimpleNamespace(
                content=[SimpleNamespace(type="text", text="meow")],
                usage=SimpleNamespace(input_tokens=90, output_tokens=10),
                stop_reason="end_turn",
            )
        )
        agent = AnthropicAgent(
            AnthropicConfig(api_key="k"), ai_config(provider="anthropic", temperature=temperature), client=client
        )
        return agent, client

    async def test_turn_appends_reply_and_counts_tokens(self):
        agent, client = self.make_agent()
        stored = [Turn(role="user", parts=[Part(text="a")]), Turn(role="model", parts=[Part(text="b")])]

        result = await agent.continued_turn(USER, "c", TurnHistory(stored), system_prompt="Be a cat.")

        kwargs = client.messages.create.await_args.kwargs
        assert [m["role"] for m in kwargs["messages"]] == ["user", "assistant", "user"]
        assert kwargs["temperature"] == 1.0
        assert kwargs["metadata"] == {"user_id": "discord_userid_42"}
        assert kwargs["system"].endswith("Be a cat.")
        assert result.total_token == 100
        assert result.content == "meow"
        assert [t.role for t in result.token.turns] == ["user", "model", "user", "model"]

    def test_inline_image_becomes_base64_block(self):
        turn = Turn(role="user", parts=[Part(inline_data=InlineData(mime_type="image/jpeg", data="AAAA"))])
        block = to_message(turn)["content"][0]
        assert block == {"type": "image", "source": {"type": "base64", "media_type": "image/jpeg", "data": "AAAA"}}


class TestAgentSelection:
    def test_keyword_groups_need_every_keyword(self):
        groups = [["image", "generate"], ["画像"]]
        assert matches_image_keywords("please generate an image", groups)
        assert not matches_image_keywords("an image please", groups)
        assert matches_image_keywords("猫の画像", groups)

    def test_agent_for_falls_back_to_default(self):
        default, image = MagicMock(), MagicMock()
        agents = BotAgents(default=default, image=image, image_keywords=[["画像"]])
        assert agents.agent_for("猫の画像") is image
        assert agents.agent_for("こんにちは") is default
        assert agents.is_image_agent(image)
        assert BotAgents(default=default).agent_for("画像") is default

    def test_missing_provider_section_raises(self):
        bot = BotConfig(id="bot1", token="t", ai=ai_config(provider="anthropic"))
        config = AppConfig(bots=[bot])
        with pytest.raises(ConfigurationError):
            create_agents(config, bot)

    def test_google_without_credentials_raises(self):
        bot = BotConfig(id="bot1", token="t", ai=ai_config(provider="google"))
        config = AppConfig(google=GoogleConfig(), bots=[bot])
        with pytest.raises(ConfigurationError):
            create_agents(config, bot)
