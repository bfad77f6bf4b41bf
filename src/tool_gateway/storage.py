"""
Persistence for conversation threads.

Stores hold ``ConversationThread`` records keyed by continuation id and
replace them only through compare-and-swap on ``ConversationThread.version``,
so several dispatcher processes sharing one Redis keep a single writer per
thread. Removed tokens are remembered as retired and are never recreated.
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Optional

import redis.asyncio as redis
from redis.exceptions import WatchError

from tool_gateway.config import GatewayConfig
from tool_gateway.types import ConversationThread

__all__ = ["ThreadStore", "InMemoryThreadStore", "RedisThreadStore", "create_store"]

_logger = logging.getLogger(__name__)


class ThreadStore(ABC):
    """Async key-value store for thread records with a per-record TTL."""

    @abstractmethod
    async def get(self, token: str) -> Optional[ConversationThread]:
        ...

    @abstractmethod
    async def create(self, thread: ConversationThread, ttl: float) -> bool:
        """Insert a new record; False if the token exists or was retired."""
        ...

    @abstractmethod
    async def compare_and_swap(
        self, thread: ConversationThread, expected_version: int, ttl: float
    ) -> bool:
        """Replace the record only if its stored version is *expected_version*."""
        ...

    @abstractmethod
    async def delete(self, token: str) -> bool:
        """Remove a record and retire its token. True if a record was removed."""
        ...

    @abstractmethod
    async def purge_inactive(self, cutoff: datetime) -> int:
        """Delete records whose last activity is older than *cutoff*."""
        ...

    async def aclose(self) -> None:
        return None


class InMemoryThreadStore(ThreadStore):
    """Process-local store. Does not survive restarts; used for tests and single-shot CLI runs."""

    def __init__(self) -> None:
        self._records: dict[str, str] = {}
        self._retired: set[str] = set()
        self._lock = asyncio.Lock()

    async def get(self, token: str) -> Optional[ConversationThread]:
        raw = self._records.get(token)
        return None if raw is None else ConversationThread.model_validate_json(raw)

    async def create(self, thread: ConversationThread, ttl: float) -> bool:
        async with self._lock:
            token = thread.continuation_id
            if token in self._records or token in self._retired:
                return False
            self._records[token] = thread.model_dump_json()
            return True

    async def compare_and_swap(
        self, thread: ConversationThread, expected_version: int, ttl: float
    ) -> bool:
        async with self._lock:
            raw = self._records.get(thread.continuation_id)
            if raw is None:
                return False
            current = ConversationThread.model_validate_json(raw)
            if current.version != expected_version:
                return False
            self._records[thread.continuation_id] = thread.model_dump_json()
            return True

    async def delete(self, token: str) -> bool:
        async with self._lock:
            self._retired.add(token)
            return self._records.pop(token, None) is not None

    async def purge_inactive(self, cutoff: datetime) -> int:
        async with self._lock:
            stale = [
                token
                for token, raw in self._records.items()
                if ConversationThread.model_validate_json(raw).last_activity_at < cutoff
            ]
            for token in stale:
                del self._records[token]
                self._retired.add(token)
            return len(stale)

    def __len__(self) -> int:
        return len(self._records)


# retired markers outlive threads by a wide margin so late callers still get "not found"
_RETIRED_TTL_SECONDS = 30 * 24 * 3600


class RedisThreadStore(ThreadStore):
    """Redis-backed store; records carry the thread TTL as their key expiry."""

    def __init__(
        self,
        client: redis.Redis,
        *,
        prefix: str = "tool_gateway",
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self._redis = client
        self._ns = prefix.strip(":") or "tool_gateway"
        self.logger = logger or _logger

    @classmethod
    def from_url(cls, url: str, *, prefix: str = "tool_gateway") -> "RedisThreadStore":
        return cls(redis.from_url(url, decode_responses=True), prefix=prefix)

    def _key(self, token: str) -> str:
        return f"{self._ns}:thread:{token}"

    def _retired_key(self, token: str) -> str:
        return f"{self._ns}:retired:{token}"

    async def get(self, token: str) -> Optional[ConversationThread]:
        raw = await self._redis.get(self._key(token))
        return None if raw is None else ConversationThread.model_validate_json(raw)

    async def create(self, thread: ConversationThread, ttl: float) -> bool:
        token = thread.continuation_id
        key = self._key(token)
        async with self._redis.pipeline(transaction=True) as pipe:
            try:
                await pipe.watch(key, self._retired_key(token))
                if await pipe.exists(key, self._retired_key(token)):
                    return False
                pipe.multi()
                pipe.set(key, thread.model_dump_json(), ex=max(1, int(ttl)))
                await pipe.execute()
            except WatchError:
                return False
        return True

    async def compare_and_swap(
        self, thread: ConversationThread, expected_version: int, ttl: float
    ) -> bool:
        key = self._key(thread.continuation_id)
        async with self._redis.pipeline(transaction=True) as pipe:
            try:
                await pipe.watch(key)
                raw = await pipe.get(key)
                if raw is None:
                    return False
                if ConversationThread.model_validate_json(raw).version != expected_version:
                    return False
                pipe.multi()
                pipe.set(key, thread.model_dump_json(), ex=max(1, int(ttl)))
                await pipe.execute()
            except WatchError:
                self.logger.debug("Concurrent write on %s, retrying", key)
                return False
        return True

    async def delete(self, token: str) -> bool:
        async with self._redis.pipeline(transaction=True) as pipe:
            pipe.delete(self._key(token))
            pipe.set(self._retired_key(token), "1", ex=_RETIRED_TTL_SECONDS)
            removed, _ = await pipe.execute()
        return bool(removed)

    async def purge_inactive(self, cutoff: datetime) -> int:
        # key expiry already drops idle threads; this catches records whose TTL was extended
        purged = 0
        async for key in self._redis.scan_iter(match=f"{self._ns}:thread:*"):
            if await self._purge_if_idle(key, cutoff):
                purged += 1
        return purged

    async def _purge_if_idle(self, key: str, cutoff: datetime) -> bool:
        async with self._redis.pipeline(transaction=True) as pipe:
            try:
                await pipe.watch(key)
                raw = await pipe.get(key)
                if raw is None:
                    return False
                thread = ConversationThread.model_validate_json(raw)
                if thread.last_activity_at >= cutoff:
                    return False
                pipe.multi()
                pipe.delete(key)
                pipe.set(
                    self._retired_key(thread.continuation_id), "1", ex=_RETIRED_TTL_SECONDS
                )
                await pipe.execute()
            except WatchError:
                self.logger.debug("Thread %s written during sweep, kept", key)
                return False
        return True

    async def aclose(self) -> None:
        await self._redis.aclose()


def create_store(config: GatewayConfig) -> ThreadStore:
    if config.redis_url:
        _logger.info("Using Redis thread store with prefix %r", config.redis_key_prefix)
        return RedisThreadStore.from_url(config.redis_url, prefix=config.redis_key_prefix)
    _logger.info("REDIS_URL not set, conversation threads are kept in process memory")
    return InMemoryThreadStore()
