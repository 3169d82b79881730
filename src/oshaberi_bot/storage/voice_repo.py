"""Decaying per-user speak counter for voice conversations."""

from __future__ import annotations

from oshaberi_bot.core.clock import Clock, now_ms
from oshaberi_bot.errors import PersistenceError
from oshaberi_bot.log import get_logger
from oshaberi_bot.storage.kv import KeyValueStore, KVError, KVKeys, build_key

logger = get_logger(__name__)

_MS_PER_HOUR = 60 * 60 * 1000


class VoiceLimitRepository:
    """Leaky bucket of voice turns: each hour drains ``max_count_per_hour`` turns.

    The drain is applied lazily, once per gate check. The decrement is not
    floored, so the stored count can go below zero when the drain exceeds it
    without reaching ``max_count_per_hour``.
    """

    def __init__(
        self,
        kv: KeyValueStore,
        namespace: str,
        max_count_per_hour: int,
        clock: Clock = now_ms,
    ):
        self._kv = kv
        self._max_count_per_hour = max_count_per_hour
        self._clock = clock
        self._count_key = build_key(namespace, KVKeys.USER_SPEAK_COUNT_HASH)
        self._last_spoken_key = build_key(namespace, KVKeys.USER_LAST_SPEAKED_TIME_HASH)

    async def user_may_speak(self, user_id: str) -> bool:
        try:
            await self._drain(user_id)
            count = await self._kv.hget(self._count_key, user_id)
        except KVError as e:
            logger.error("speak_count_check_failed", user_id=user_id, error=str(e))
            raise PersistenceError("Failed to check the speak count") from e
        if not count:
            return True
        return int(count) < self._max_count_per_hour

    async def record_speak(self, user_id: str) -> None:
        """Stamp the last-spoken time and count one voice turn."""
        try:
            await self._kv.hset(self._last_spoken_key, user_id, self._clock())
            count = await self._kv.hincrby(self._count_key, user_id, 1)
        except KVError as e:
            logger.error("speak_count_update_failed", user_id=user_id, error=str(e))
            raise PersistenceError("Failed to update the speak count") from e
        logger.debug("speak_recorded", user_id=user_id, count=count)

    async def _drain(self, user_id: str) -> None:
        last_spoken = await self._kv.hget(self._last_spoken_key, user_id)
        if not last_spoken:
            return
        diff_hours = (self._clock() - int(last_spoken)) / _MS_PER_HOUR
        decay = int(diff_hours * self._max_count_per_hour)
        if decay >= self._max_count_per_hour:
            # a stale record would otherwise over-drain the count
            await self._kv.hset(self._count_key, user_id, 0)
            logger.debug("speak_count_reset", user_id=user_id, diff_hours=diff_hours, decay=decay)
        elif decay > 0:
            await self._kv.hincrby(self._count_key, user_id, -decay)
            logger.debug("speak_count_decremented", user_id=user_id, diff_hours=diff_hours, decay=decay)
