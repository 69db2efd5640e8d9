"""Redis-backed durable namespace store (HGETALL/HSET/HDEL)."""

import logging

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from .base import NamespaceStore, StoreError

logger = logging.getLogger(__name__)


class RedisNamespaceStore(NamespaceStore):
    """Namespace hashes stored as native Redis hashes."""

    def __init__(self, redis_url: str = "redis://localhost:6379/0", client: aioredis.Redis | None = None):
        self.redis_url = redis_url
        self._client = client

    def _get_client(self) -> aioredis.Redis:
        if self._client is None:
            self._client = aioredis.Redis.from_url(
                self.redis_url,
                decode_responses=True,
                socket_connect_timeout=5,
            )
            logger.info(f"RedisNamespaceStore using {self.redis_url}")
        return self._client

    async def fetch_all(self, namespace_key: str) -> dict[str, str]:
        try:
            return await self._get_client().hgetall(namespace_key) or {}
        except RedisError as e:
            raise StoreError(f"HGETALL {namespace_key} failed: {e}") from e

    async def set_field(self, namespace_key: str, field: str, value: str) -> None:
        try:
            await self._get_client().hset(namespace_key, field, value)
        except RedisError as e:
            raise StoreError(f"HSET {namespace_key} {field} failed: {e}") from e

    async def delete_field(self, namespace_key: str, field: str) -> None:
        try:
            await self._get_client().hdel(namespace_key, field)
        except RedisError as e:
            raise StoreError(f"HDEL {namespace_key} {field} failed: {e}") from e

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None
