"""System prompt shared by every conversation of a bot."""

from __future__ import annotations

from oshaberi_bot.errors import PersistenceError
from oshaberi_bot.log import get_logger
from oshaberi_bot.storage.kv import KeyValueStore, KVError, KVKeys, build_key

logger = get_logger(__name__)


class PromptRepository:
    def __init__(self, kv: KeyValueStore, namespace: str):
        self._kv = kv
        self._key = build_key(namespace, KVKeys.SYSTEM_MESSAGE)

    async def get_system_prompt(self) -> str | None:
        """Return the stored prompt, or None when it was never configured."""
        try:
            prompt = await self._kv.get(self._key)
        except KVError as e:
            logger.error("system_prompt_load_failed", error=str(e))
            raise PersistenceError("Failed to load the system prompt") from e
        return prompt or None

    async def set_system_prompt(self, prompt: str) -> None:
        try:
            await self._kv.set(self._key, prompt)
        except KVError as e:
            logger.error("system_prompt_save_failed", error=str(e))
            raise PersistenceError("Failed to save the system prompt") from e
        logger.info("system_prompt_saved", length=len(prompt))
