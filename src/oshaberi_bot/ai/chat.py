"""Chat orchestration: start or continue the bot's conversation and keep the ledger."""

from __future__ import annotations

from oshaberi_bot.ai.agent import Agent
from oshaberi_bot.ai.models import ChatImage, ChatResult, ChatStatus, ChatUser
from oshaberi_bot.errors import ConfigurationError, PersistenceError
from oshaberi_bot.log import get_logger
from oshaberi_bot.storage.conversation_repo import ConversationRepository
from oshaberi_bot.storage.limit_repo import LimitRepository
from oshaberi_bot.storage.prompt_repo import PromptRepository

logger = get_logger(__name__)

FIRST_TURN_FAILED_MESSAGE = "Failed to start the conversation"
CONTINUED_TURN_FAILED_MESSAGE = "Failed to continue the conversation"
MISSING_PROMPT_MESSAGE = "The system prompt is not configured"
NEW_CONVERSATION_TITLE = "conversation status"


class ChatService:
    """Runs one chat turn against the bot's single conversation.

    The conversation token is read and written without a lock; concurrent
    turns may overwrite each other's token.
    """

    def __init__(
        self,
        agent: Agent,
        conversations: ConversationRepository,
        prompts: PromptRepository,
        limits: LimitRepository,
    ):
        self._agent = agent
        self._conversations = conversations
        self._prompts = prompts
        self._limits = limits

    @property
    def default_agent(self) -> Agent:
        return self._agent

    async def user_may_chat(self, user: ChatUser, multiplier: float = 1) -> bool:
        return await self._limits.user_may_chat(user.id, multiplier)

    async def get_chat_message(
        self,
        user: ChatUser,
        input: str,
        image: ChatImage | None = None,
        token_limit: int | None = None,
        agent: Agent | None = None,
    ) -> ChatResult:
        """Reply to *input*, starting a conversation when none is stored.

        Agent failures yield a canned message without status. Storage failures
        raise :class:`PersistenceError`.
        """
        agent = agent or self._agent
        await self._limits.record_activity(user.id)

        raw_token = await self._conversations.load()
        if not raw_token:
            return await self._start(agent, user, input, image, token_limit)

        logger.info(
            "chat_continuing",
            user_id=user.id,
            provider=agent.provider_id,
            model=agent.model_id,
        )
        system_prompt = await self._prompts.get_system_prompt()
        response = await agent.continued_turn(
            user,
            input,
            agent.parse_token(raw_token),
            system_prompt=system_prompt,
            image=image,
            token_limit=token_limit,
        )
        if response is None:
            # a broken stored history is the likely cause
            await self.reset_chat(user, agent)
            return ChatResult(content=CONTINUED_TURN_FAILED_MESSAGE)

        await self._conversations.save(agent.dump_token(response.token))
        await self._limits.record_usage(agent.model_id, response.total_token)

        title = (
            f"{agent.provider_id}:{agent.model_id} "
            f"[image attached: {'yes' if image else 'no'}]"
            f"{agent.status_fragment(response)}"
        )
        if response.should_reset:
            title += (
                f" {agent.provider_id} memory exceeded {response.threshold} tokens,"
                " so the history was reset to save cost"
            )
        result = ChatResult(
            content=response.content,
            generated_image=response.generated_image,
            status=ChatStatus(
                title=title,
                total_token=response.total_token,
                threshold=response.threshold,
            ),
        )
        if response.should_reset:
            await self.reset_chat(user, agent)
        return result

    async def _start(
        self,
        agent: Agent,
        user: ChatUser,
        input: str,
        image: ChatImage | None,
        token_limit: int | None,
    ) -> ChatResult:
        logger.info("chat_starting", user_id=user.id, provider=agent.provider_id, model=agent.model_id)
        system_prompt = await self._prompts.get_system_prompt()
        if not system_prompt:
            logger.warning("system_prompt_missing")
            raise ConfigurationError(MISSING_PROMPT_MESSAGE)

        response = await agent.first_turn(
            user, input, system_prompt, image=image, token_limit=token_limit
        )
        if response is None:
            return ChatResult(content=FIRST_TURN_FAILED_MESSAGE)

        await self._conversations.save(agent.dump_token(response.token))
        await self._limits.record_usage(agent.model_id, response.total_token)
        return ChatResult(
            content=response.content,
            generated_image=response.generated_image,
            status=ChatStatus(
                title=NEW_CONVERSATION_TITLE,
                total_token=response.total_token,
                threshold=response.threshold,
            ),
        )

    async def reset_chat(self, user: ChatUser | None = None, agent: Agent | None = None) -> None:
        """Forget or shorten the stored conversation, as the agent's strategy dictates."""
        agent = agent or self._agent
        logger.info("chat_resetting", user_id=user.id if user else None, provider=agent.provider_id)
        try:
            raw_token = await self._conversations.load()
            if not raw_token:
                return
            kept = agent.token_after_reset(agent.parse_token(raw_token))
            if kept is None:
                await self._conversations.delete()
            else:
                await self._conversations.save(agent.dump_token(kept))
        except PersistenceError as e:
            raise PersistenceError("Failed to reset the conversation history") from e
