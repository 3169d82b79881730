"""Usage ledger: per-model token/request sums and per-user chat cooldown."""

from __future__ import annotations

from oshaberi_bot.core.clock import Clock, now_ms
from oshaberi_bot.errors import PersistenceError
from oshaberi_bot.log import get_logger
from oshaberi_bot.storage.kv import KeyValueStore, KVError, KVKeys, build_key
from oshaberi_bot.storage.models import LimitModelStatus

logger = get_logger(__name__)


class LimitRepository:
    """Reads and writes the usage hashes of one bot and provider."""

    def __init__(
        self,
        kv: KeyValueStore,
        namespace: str,
        provider: str,
        min_interval_seconds: int,
        fallback_max_tokens: int,
        clock: Clock = now_ms,
    ):
        self._kv = kv
        self._min_interval_seconds = min_interval_seconds
        self._fallback_max_tokens = fallback_max_tokens
        self._clock = clock
        self._token_sum_key = build_key(
            namespace, KVKeys.MODEL_TOTAL_TOKEN_SUM_HASH, provider=provider
        )
        self._request_count_key = build_key(
            namespace, KVKeys.MODEL_REQUEST_COUNT_HASH, provider=provider
        )
        self._last_used_key = build_key(
            namespace, KVKeys.USER_LAST_USED_TIME_HASH, provider=provider
        )

    async def record_activity(self, user_id: str) -> None:
        """Store the current time as the user's last chat attempt."""
        try:
            await self._kv.hset(self._last_used_key, user_id, self._clock())
        except KVError as e:
            logger.error("activity_record_failed", user_id=user_id, error=str(e))
            raise PersistenceError("Failed to record the last activity") from e

    async def user_may_chat(self, user_id: str, multiplier: float = 1) -> bool:
        """Whether the minimum interval (scaled by *multiplier*) has passed since the last attempt."""
        try:
            last_used = await self._kv.hget(self._last_used_key, user_id)
        except KVError as e:
            logger.error("activity_load_failed", user_id=user_id, error=str(e))
            raise PersistenceError("Failed to check the usage interval") from e
        if not last_used:
            return True
        diff = self._clock() - int(last_used)
        return diff >= self._min_interval_seconds * 1000 * multiplier

    async def record_usage(self, model_id: str, total_token: int | None = None) -> None:
        """Count one request and its tokens for *model_id*.

        Unreported usage is charged at the answer token cap. Both counters are
        best effort: a failed increment is logged and counted as zero.
        """
        tokens = total_token if total_token is not None else self._fallback_max_tokens
        try:
            await self._kv.hincrby(self._request_count_key, model_id, 1)
        except KVError as e:
            logger.error("request_count_increment_failed", model_id=model_id, error=str(e))
        try:
            await self._kv.hincrby(self._token_sum_key, model_id, tokens)
        except KVError as e:
            logger.error("token_sum_increment_failed", model_id=model_id, error=str(e))
            return
        logger.debug("usage_recorded", model_id=model_id, tokens=tokens)

    async def get_limit_model_status(self, model_id: str) -> LimitModelStatus:
        """Read both counters, initializing missing ones to zero."""
        try:
            total_token_sum = await self._read_counter(self._token_sum_key, model_id)
            request_count = await self._read_counter(self._request_count_key, model_id)
        except KVError as e:
            logger.error("limit_status_load_failed", model_id=model_id, error=str(e))
            raise PersistenceError("Failed to load the limit status") from e
        return LimitModelStatus(total_token_sum=total_token_sum, request_count=request_count)

    async def _read_counter(self, key: str, model_id: str) -> int:
        raw = await self._kv.hget(key, model_id)
        if not raw:
            logger.info("limit_counter_initialized", key=key, model_id=model_id)
            await self._kv.hset(key, model_id, 0)
            return 0
        return int(raw)
