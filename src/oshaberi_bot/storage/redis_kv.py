"""Redis implementation of the key-value store."""

from __future__ import annotations

from typing import Any

import redis.asyncio as redis
from redis.asyncio.retry import Retry
from redis.backoff import ExponentialBackoff
from redis.exceptions import RedisError

from oshaberi_bot.log import get_logger
from oshaberi_bot.storage.kv import KeyValueStore, KVError, encode_value

logger = get_logger(__name__)


class RedisKV(KeyValueStore):
    """KeyValueStore backed by redis.asyncio with bounded retries per request."""

    def __init__(self, url: str, max_retries: int = 5):
        self._url = url
        self._client: redis.Redis = redis.from_url(
            url,
            decode_responses=True,
            socket_connect_timeout=5,
            socket_timeout=5,
            retry=Retry(ExponentialBackoff(), max_retries),
            retry_on_timeout=True,
        )

    async def initialize(self) -> None:
        try:
            await self._client.ping()
        except RedisError as e:
            raise KVError(f"Redis connection failed: {e}") from e
        logger.info("redis_connected")

    async def get(self, key: str) -> str | None:
        try:
            return await self._client.get(key)
        except RedisError as e:
            raise KVError(str(e)) from e

    async def hget(self, key: str, field: str) -> str | None:
        try:
            return await self._client.hget(key, field)
        except RedisError as e:
            raise KVError(str(e)) from e

    async def set(self, key: str, value: Any) -> None:
        try:
            await self._client.set(key, encode_value(value))
        except RedisError as e:
            raise KVError(str(e)) from e

    async def hset(self, key: str, field: str, value: Any) -> None:
        try:
            await self._client.hset(key, field, encode_value(value))
        except RedisError as e:
            raise KVError(str(e)) from e

    async def incrby(self, key: str, amount: int) -> int:
        try:
            return int(await self._client.incrby(key, amount))
        except RedisError as e:
            raise KVError(str(e)) from e

    async def hincrby(self, key: str, field: str, amount: int) -> int:
        try:
            return int(await self._client.hincrby(key, field, amount))
        except RedisError as e:
            raise KVError(str(e)) from e

    async def delete(self, key: str) -> None:
        try:
            await self._client.delete(key)
        except RedisError as e:
            raise KVError(str(e)) from e

    async def close(self) -> None:
        await self._client.aclose()
        logger.info("redis_closed")
