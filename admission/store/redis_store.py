"""
store/redis_store.py — Networked keyed store on Redis
======================================================
Shared by every service instance. Counter increments run as a Lua
script so the ceiling check, INCR and TTL-on-create form a single
server-side step.
"""
from __future__ import annotations

import json
import logging
from typing import Any, Optional

import redis.asyncio as redis

from ..errors import StoreUnavailable
from .base import KeyedStore

logger = logging.getLogger("admission.store")


LUA_BOUNDED_INCREMENT = """
-- KEYS[1] = counter key
-- ARGV = ttl_ms, limit ('' for none)
local key = KEYS[1]
local ttl = tonumber(ARGV[1])
local limit = tonumber(ARGV[2])

local current = tonumber(redis.call('GET', key))
if limit and current and current >= limit then
  return -1
end

local value = redis.call('INCR', key)
if value == 1 or redis.call('PTTL', key) < 0 then
  redis.call('PEXPIRE', key, ttl)
end
return value
"""


def _ms(ttl: float) -> int:
    return max(1, int(ttl * 1000))


class RedisStore(KeyedStore):
    def __init__(self, client: redis.Redis) -> None:
        self._client = client
        self._increment_script = client.register_script(LUA_BOUNDED_INCREMENT)

    @classmethod
    def from_url(cls, url: str, timeout: float = 2.0) -> "RedisStore":
        client = redis.from_url(
            url,
            encoding="utf-8",
            decode_responses=True,
            socket_timeout=timeout,
            socket_connect_timeout=timeout,
        )
        return cls(client)

    async def get(self, key: str) -> Optional[Any]:
        try:
            raw = await self._client.get(key)
        except redis.RedisError as exc:
            logger.error("redis get failed for %s: %s", key, exc)
            raise StoreUnavailable(str(exc)) from exc
        return json.loads(raw) if raw is not None else None

    async def set(self, key: str, value: Any, ttl: float) -> None:
        try:
            await self._client.set(key, json.dumps(value), px=_ms(ttl))
        except redis.RedisError as exc:
            logger.error("redis set failed for %s: %s", key, exc)
            raise StoreUnavailable(str(exc)) from exc

    async def delete(self, key: str) -> None:
        try:
            await self._client.delete(key)
        except redis.RedisError as exc:
            logger.error("redis delete failed for %s: %s", key, exc)
            raise StoreUnavailable(str(exc)) from exc

    async def increment(self, key: str, ttl: float, limit: Optional[int] = None) -> Optional[int]:
        try:
            result = await self._increment_script(
                keys=[key],
                args=[_ms(ttl), "" if limit is None else limit],
            )
        except redis.RedisError as exc:
            logger.error("redis increment failed for %s: %s", key, exc)
            raise StoreUnavailable(str(exc)) from exc
        value = int(result)
        return None if value < 0 else value

    async def close(self) -> None:
        await self._client.aclose()
