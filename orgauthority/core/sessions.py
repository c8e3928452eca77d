"""Session-scoped key/value storage for the active-organization pointer."""

from __future__ import annotations

import time
from typing import Callable, Dict, Optional, Protocol, Tuple

import redis.asyncio as aioredis

from .logging import logger
from .settings import settings

ACTIVE_ORG_KEY = "session:{session_id}:active_org"


class BindingStore(Protocol):
    async def get(self, session_id: str) -> Optional[int]: ...

    async def set(self, session_id: str, organization_id: int) -> None: ...

    async def clear(self, session_id: str) -> None: ...


class RedisBindingStore:
    def __init__(self, url: str | None = None, ttl_seconds: int | None = None) -> None:
        self.url = url or settings.redis_url
        self.ttl_seconds = ttl_seconds or settings.session_ttl_hours * 3600
        self._redis: aioredis.Redis | None = None

    @property
    def redis(self) -> aioredis.Redis:
        if self._redis is None:
            self._redis = aioredis.from_url(self.url, encoding="utf-8", decode_responses=True)
        return self._redis

    async def get(self, session_id: str) -> Optional[int]:
        raw = await self.redis.get(ACTIVE_ORG_KEY.format(session_id=session_id))
        if raw is None:
            return None
        try:
            return int(raw)
        except (TypeError, ValueError):
            logger.warning("session.binding_corrupt", session_id=session_id)
            return None

    async def set(self, session_id: str, organization_id: int) -> None:
        await self.redis.set(
            ACTIVE_ORG_KEY.format(session_id=session_id),
            str(organization_id),
            ex=self.ttl_seconds,
        )

    async def clear(self, session_id: str) -> None:
        await self.redis.delete(ACTIVE_ORG_KEY.format(session_id=session_id))

    async def close(self) -> None:
        if self._redis is not None:
            await self._redis.aclose()
            self._redis = None


class MemoryBindingStore:
    """Process-local store for development and tests (``SESSION_BACKEND=memory``)."""

    def __init__(
        self,
        ttl_seconds: int | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.ttl_seconds = ttl_seconds or settings.session_ttl_hours * 3600
        self._clock = clock
        self._entries: Dict[str, Tuple[int, float]] = {}

    async def get(self, session_id: str) -> Optional[int]:
        entry = self._entries.get(session_id)
        if entry is None:
            return None
        organization_id, expires_at = entry
        if self._clock() >= expires_at:
            self._entries.pop(session_id, None)
            return None
        return organization_id

    async def set(self, session_id: str, organization_id: int) -> None:
        self._entries[session_id] = (organization_id, self._clock() + self.ttl_seconds)

    async def clear(self, session_id: str) -> None:
        self._entries.pop(session_id, None)

    async def close(self) -> None:
        self._entries.clear()


_store: BindingStore | None = None


def get_binding_store() -> BindingStore:
    global _store
    if _store is None:
        if settings.session_backend == "memory":
            _store = MemoryBindingStore()
        else:
            _store = RedisBindingStore()
    return _store


async def close_binding_store() -> None:
    global _store
    if _store is not None:
        await _store.close()  # type: ignore[attr-defined]
        _store = None
