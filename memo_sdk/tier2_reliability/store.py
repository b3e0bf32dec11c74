"""
memo_sdk.tier2_reliability.store
──────────────────────────────────
Cache store abstraction: Redis (prod) or in-process dict (dev/test), behind
one adapter that turns "not connected" and transport failures into
StoreError without waiting on a degraded store.

The store is an external collaborator. The memoizer only needs three
primitives from it: byte get, set-with-millisecond-TTL, and a synchronous
readiness check.

Configure via: REDIS_URL, MEMO_RECONNECT_BACKOFF
"""
from __future__ import annotations

import time
from collections.abc import Callable
from typing import Any, Protocol, runtime_checkable

import redis.asyncio as aioredis
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import RedisError
from redis.exceptions import TimeoutError as RedisTimeoutError

from memo_sdk.tier0_core.config import MemoizerConfig
from memo_sdk.tier0_core.errors import ConfigurationError, StoreError


# ── Protocol ───────────────────────────────────────────────────────────────

@runtime_checkable
class CacheBackend(Protocol):
    """Minimal store surface. Swap Redis for anything with these three calls."""

    def is_ready(self) -> bool: ...

    async def get(self, key: str) -> bytes | None: ...

    async def set(self, key: str, ttl_ms: int, value: bytes) -> None: ...


# ── In-process backend (dev/test) ──────────────────────────────────────────

class MemoryBackend:
    """
    Dict-backed store with millisecond expiry.
    NOT shared across processes; use for tests and local dev only.
    """

    def __init__(self, time_fn: Callable[[], float] = time.monotonic) -> None:
        self._store: dict[str, tuple[bytes, float]] = {}  # key → (value, expires_at)
        self._time = time_fn
        self.ready = True

    def is_ready(self) -> bool:
        return self.ready

    async def get(self, key: str) -> bytes | None:
        if not self.ready:
            raise StoreError("Memory store is offline")
        entry = self._store.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if self._time() >= expires_at:
            del self._store[key]
            return None
        return value

    async def set(self, key: str, ttl_ms: int, value: bytes) -> None:
        if not self.ready:
            raise StoreError("Memory store is offline")
        self._store[key] = (value, self._time() + ttl_ms / 1000)

    async def delete(self, key: str) -> None:
        self._store.pop(key, None)

    def keys(self) -> list[str]:
        return list(self._store)

    def clear(self) -> None:
        self._store.clear()


# ── Redis backend ──────────────────────────────────────────────────────────

class RedisBackend:
    """
    Redis-backed store using the async redis client (GET / PSETEX).

    Readiness is tracked locally: a connection or timeout failure marks the
    backend down for *reconnect_backoff* ms, during which reads and writes
    fail fast instead of queueing behind a reconnect.
    """

    def __init__(self, client: aioredis.Redis, reconnect_backoff: int = 1000) -> None:
        kwargs = client.connection_pool.connection_kwargs
        if kwargs.get("decode_responses"):
            raise ConfigurationError(
                "A redis client passed to the memoizer must not set decode_responses=True"
            )
        self._redis = client
        self._backoff = reconnect_backoff / 1000
        self._down_until = 0.0

    @classmethod
    def from_url(cls, url: str, reconnect_backoff: int = 1000) -> "RedisBackend":
        return cls(aioredis.from_url(url, decode_responses=False), reconnect_backoff)

    @property
    def client(self) -> aioredis.Redis:
        return self._redis

    def is_ready(self) -> bool:
        return time.monotonic() >= self._down_until

    def _mark_down(self) -> None:
        self._down_until = time.monotonic() + self._backoff

    async def get(self, key: str) -> bytes | None:
        try:
            return await self._redis.get(key)
        except (RedisConnectionError, RedisTimeoutError) as exc:
            self._mark_down()
            raise StoreError(f"Redis read failed: {exc}", key=key) from exc
        except RedisError as exc:
            raise StoreError(f"Redis read failed: {exc}", key=key) from exc

    async def set(self, key: str, ttl_ms: int, value: bytes) -> None:
        try:
            await self._redis.psetex(key, ttl_ms, value)
        except (RedisConnectionError, RedisTimeoutError) as exc:
            self._mark_down()
            raise StoreError(f"Redis write failed: {exc}", key=key) from exc
        except RedisError as exc:
            raise StoreError(f"Redis write failed: {exc}", key=key) from exc

    async def ping(self) -> bool:
        """Ping the server and refresh readiness. Returns the new state."""
        try:
            await self._redis.ping()
        except RedisError:
            self._mark_down()
            return False
        self._down_until = 0.0
        return True

    async def aclose(self) -> None:
        await self._redis.aclose()


# ── Adapter ────────────────────────────────────────────────────────────────

class StoreAdapter:
    """
    What the memoizer talks to. Never touches the network when not ready,
    and every backend failure comes out as StoreError.
    """

    def __init__(self, backend: CacheBackend) -> None:
        self._backend = backend

    @property
    def backend(self) -> CacheBackend:
        return self._backend

    def is_ready(self) -> bool:
        return self._backend.is_ready()

    async def get_raw(self, key: str) -> bytes | None:
        if not self._backend.is_ready():
            raise StoreError("Not connected", key=key)
        try:
            return await self._backend.get(key)
        except StoreError:
            raise
        except Exception as exc:
            raise StoreError(f"Store read failed: {exc!r}", key=key) from exc

    async def set_with_ttl(self, key: str, ttl_ms: int, value: bytes) -> None:
        if not self._backend.is_ready():
            raise StoreError("Not connected", key=key)
        try:
            await self._backend.set(key, ttl_ms, value)
        except StoreError:
            raise
        except Exception as exc:
            raise StoreError(f"Store write failed: {exc!r}", key=key) from exc


# ── Backend resolution ─────────────────────────────────────────────────────

def resolve_backend(client: Any, config: MemoizerConfig) -> CacheBackend:
    """
    Accept whatever the caller has and return a backend:
    None (connect to config.redis_url), a redis URL, an existing async redis
    client, or any object implementing CacheBackend.
    """
    if client is None:
        return RedisBackend.from_url(config.redis_url, config.reconnect_backoff)
    if isinstance(client, str):
        return RedisBackend.from_url(client, config.reconnect_backoff)
    if isinstance(client, aioredis.Redis):
        return RedisBackend(client, config.reconnect_backoff)
    if isinstance(client, CacheBackend):
        return client
    raise ConfigurationError(
        f"Unsupported cache client {type(client).__name__!r}",
        hint="pass a redis URL, a redis.asyncio.Redis client, or a CacheBackend",
    )


__all__ = [
    "CacheBackend",
    "MemoryBackend",
    "RedisBackend",
    "StoreAdapter",
    "resolve_backend",
]
