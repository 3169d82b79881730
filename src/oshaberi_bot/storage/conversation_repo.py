"""Persistence of the continuation token for a bot's single running conversation."""

from __future__ import annotations

from oshaberi_bot.errors import PersistenceError
from oshaberi_bot.log import get_logger
from oshaberi_bot.storage.kv import KeyValueStore, KVError, KVKeys, build_key

logger = get_logger(__name__)


class ConversationRepository:
    """Raw continuation token under one key per bot.

    Reads and writes are not coordinated: two concurrent turns for the same
    bot may both read the same token, and the last writer wins.
    """

    def __init__(self, kv: KeyValueStore, namespace: str):
        self._kv = kv
        self._key = build_key(namespace, KVKeys.PREVIOUS_RESPONSE_ID)

    async def load(self) -> str | None:
        try:
            return await self._kv.get(self._key)
        except KVError as e:
            logger.error("conversation_load_failed", key=self._key, error=str(e))
            raise PersistenceError("Failed to load the conversation history") from e

    async def save(self, raw_token: str) -> None:
        try:
            await self._kv.set(self._key, raw_token)
        except KVError as e:
            logger.error("conversation_save_failed", key=self._key, error=str(e))
            raise PersistenceError("Failed to save the conversation history") from e

    async def delete(self) -> None:
        try:
            await self._kv.delete(self._key)
        except KVError as e:
            logger.error("conversation_delete_failed", key=self._key, error=str(e))
            raise PersistenceError("Failed to reset the conversation history") from e
