"""Key-value backends for the statistics record.

Both backends expose the same two coroutines, ``get`` and ``put``, over
opaque string values. Neither offers compare-and-swap; callers that
read-modify-write a key accept that concurrent writers may overwrite each
other.
"""

import logging
from typing import Protocol
from urllib.parse import urlparse

import redis.asyncio as redis

from watermark_proxy.errors import ConfigurationError

logger = logging.getLogger(__name__)


class KeyValueStore(Protocol):
    async def get(self, key: str) -> str | None: ...

    async def put(self, key: str, value: str) -> None: ...

    async def close(self) -> None: ...


class MemoryKeyValueStore:
    def __init__(self) -> None:
        self._data: dict[str, str] = {}

    async def get(self, key: str) -> str | None:
        return self._data.get(key)

    async def put(self, key: str, value: str) -> None:
        self._data[key] = value

    async def close(self) -> None:
        return None


class RedisKeyValueStore:
    def __init__(self, client: redis.Redis, namespace: str = "watermark-proxy") -> None:
        self._client = client
        self._namespace = namespace

    @classmethod
    def from_url(cls, url: str) -> "RedisKeyValueStore":
        return cls(redis.from_url(url, decode_responses=True))

    def _key(self, key: str) -> str:
        return f"{self._namespace}:{key}"

    async def get(self, key: str) -> str | None:
        return await self._client.get(self._key(key))

    async def put(self, key: str, value: str) -> None:
        await self._client.set(self._key(key), value)

    async def close(self) -> None:
        await self._client.aclose()


def open_kv_store(url: str | None) -> KeyValueStore:
    if not url:
        raise ConfigurationError("STATS_KV_URL is not configured; statistics cannot be tracked")

    scheme = urlparse(url).scheme
    if scheme == "memory":
        logger.info("Using process-local statistics store")
        return MemoryKeyValueStore()
    if scheme in {"redis", "rediss", "unix"}:
        logger.info("Using Redis statistics store at %s", urlparse(url).hostname or url)
        return RedisKeyValueStore.from_url(url)

    raise ConfigurationError(f"Unsupported STATS_KV_URL scheme: {scheme or url}")
