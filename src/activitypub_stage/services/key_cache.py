"""TTL cache of remote actor public keys and inbox locations.

Entries are keyed by the remote `keyId` (hashed with BLAKE3 so arbitrary
URLs make safe Redis keys). The same abstraction backs the in-process cache
used in development and tests and the Redis cache shared between workers.
"""

from __future__ import annotations

import asyncio
import json
import logging
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from dataclasses import asdict, dataclass
from typing import Any

import redis
from cachetools import TTLCache

from activitypub_stage.core.config import FederationConfig
from activitypub_stage.utils.hash import blake3_hexdigest

logger = logging.getLogger(__name__)

_REDIS_PREFIX = "activitypub:remote-key:"


@dataclass(frozen=True)
class RemoteActorEntry:
    """What the service remembers about a remote signer."""

    key_id: str
    actor_uri: str
    public_key: str
    inbox: str | None = None
    shared_inbox: str | None = None
    username: str | None = None
    fetched_at: float = 0.0

    def to_json(self) -> str:
        return json.dumps(asdict(self), separators=(",", ":"))

    @classmethod
    def from_json(cls, raw: str | bytes) -> RemoteActorEntry:
        data: dict[str, Any] = json.loads(raw)
        return cls(**data)


Fetcher = Callable[[str], Awaitable[RemoteActorEntry | None]]


class RemoteKeyCache(ABC):
    """Base class with the shared `get_or_fetch` flow."""

    def __init__(self, ttl_seconds: int) -> None:
        self.ttl_seconds = max(1, int(ttl_seconds))
        self._inflight: dict[str, asyncio.Future[RemoteActorEntry | None]] = {}

    @staticmethod
    def cache_key(key_id: str) -> str:
        return blake3_hexdigest(key_id)

    @abstractmethod
    def get(self, key_id: str) -> RemoteActorEntry | None: ...

    @abstractmethod
    def set(self, entry: RemoteActorEntry) -> None: ...

    @abstractmethod
    def invalidate(self, key_id: str) -> None: ...

    async def _aget(self, key_id: str) -> RemoteActorEntry | None:
        return self.get(key_id)

    async def _aset(self, entry: RemoteActorEntry) -> None:
        self.set(entry)

    async def get_or_fetch(self, key_id: str, fetcher: Fetcher) -> RemoteActorEntry | None:
        """Return the cached entry, fetching and storing it on a miss.

        Concurrent misses for the same key share one fetch. A failed fetch
        (`None`) is not cached.
        """
        cached = await self._aget(key_id)
        if cached is not None:
            return cached

        pending = self._inflight.get(key_id)
        if pending is not None:
            return await pending

        future: asyncio.Future[RemoteActorEntry | None] = (
            asyncio.get_running_loop().create_future()
        )
        self._inflight[key_id] = future
        try:
            entry = await fetcher(key_id)
            if entry is not None:
                await self._aset(entry)
            future.set_result(entry)
            return entry
        except Exception:
            future.set_result(None)
            raise
        finally:
            if not future.done():
                future.cancel()
            self._inflight.pop(key_id, None)


class MemoryKeyCache(RemoteKeyCache):
    """Process-local cache backed by `cachetools.TTLCache`."""

    def __init__(self, ttl_seconds: int, max_entries: int = 4096) -> None:
        super().__init__(ttl_seconds)
        self._entries: TTLCache[str, RemoteActorEntry] = TTLCache(
            maxsize=max(1, max_entries), ttl=self.ttl_seconds
        )

    def get(self, key_id: str) -> RemoteActorEntry | None:
        return self._entries.get(self.cache_key(key_id))

    def set(self, entry: RemoteActorEntry) -> None:
        self._entries[self.cache_key(entry.key_id)] = entry

    def invalidate(self, key_id: str) -> None:
        self._entries.pop(self.cache_key(key_id), None)

    def __len__(self) -> int:
        return len(self._entries)


class RedisKeyCache(RemoteKeyCache):
    """Cache shared between processes through Redis `SETEX`."""

    def __init__(self, client: redis.Redis, ttl_seconds: int) -> None:
        super().__init__(ttl_seconds)
        self._redis = client

    def _redis_key(self, key_id: str) -> str:
        return f"{_REDIS_PREFIX}{self.cache_key(key_id)}"

    async def _aget(self, key_id: str) -> RemoteActorEntry | None:
        return await asyncio.to_thread(self.get, key_id)

    async def _aset(self, entry: RemoteActorEntry) -> None:
        await asyncio.to_thread(self.set, entry)

    def get(self, key_id: str) -> RemoteActorEntry | None:
        try:
            raw = self._redis.get(self._redis_key(key_id))
        except redis.RedisError as exc:
            logger.warning("Remote key cache read failed: %s", exc)
            return None
        if raw is None:
            return None
        try:
            return RemoteActorEntry.from_json(raw)
        except (ValueError, TypeError) as exc:
            logger.warning("Discarding corrupt remote key cache entry: %s", exc)
            return None

    def set(self, entry: RemoteActorEntry) -> None:
        try:
            self._redis.setex(self._redis_key(entry.key_id), self.ttl_seconds, entry.to_json())
        except redis.RedisError as exc:
            logger.warning("Remote key cache write failed: %s", exc)

    def invalidate(self, key_id: str) -> None:
        try:
            self._redis.delete(self._redis_key(key_id))
        except redis.RedisError as exc:
            logger.warning("Remote key cache delete failed: %s", exc)


def build_key_cache(config: FederationConfig) -> RemoteKeyCache:
    """Create the cache backend selected by `REMOTE_KEY_CACHE_BACKEND`."""
    if config.remote_key_cache_backend == "redis":
        client = redis.from_url(config.redis_url)  # type: ignore[no-untyped-call]
        return RedisKeyCache(client, config.remote_key_cache_ttl_seconds)
    return MemoryKeyCache(
        config.remote_key_cache_ttl_seconds, config.remote_key_cache_max_entries
    )
