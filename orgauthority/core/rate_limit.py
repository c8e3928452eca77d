from __future__ import annotations

from typing import Awaitable, Callable

import redis.asyncio as aioredis
from fastapi import HTTPException, Request, status

from orgauthority.core.logging import logger
from orgauthority.core.settings import settings


async def enforce_rate_limit(request: Request, key_prefix: str, limit: int, window_seconds: int) -> None:
    client_host = request.client.host if request.client else "unknown"
    key = f"ratelimit:{key_prefix}:{client_host}"
    redis = None
    try:
        redis = aioredis.from_url(settings.redis_url, encoding="utf-8", decode_responses=True)
        current = await redis.incr(key)
        if current == 1:
            await redis.expire(key, window_seconds)
        if current > limit:
            logger.warning("rate_limit.exceeded", key=key, count=current)
            raise HTTPException(
                status_code=status.HTTP_429_TOO_MANY_REQUESTS,
                detail={"code": "rate_limited"},
            )
    except HTTPException:
        raise
    except (aioredis.RedisError, OSError) as exc:
        logger.warning("rate_limit.degraded", error=str(exc))
    finally:
        if redis is not None:
            await redis.aclose()


def rate_limiter_dependency(
    key_prefix: str,
    limit: int | None = None,
    window_seconds: int | None = None,
) -> Callable[[Request], Awaitable[None]]:
    async def dependency(request: Request) -> None:
        # the in-memory profile runs without Redis
        if settings.session_backend == "memory":
            return
        await enforce_rate_limit(
            request,
            key_prefix,
            limit or settings.accept_rate_limit,
            window_seconds or settings.accept_rate_window_seconds,
        )

    return dependency
