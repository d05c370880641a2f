from __future__ import annotations

import time
import uuid
from typing import cast

from fastapi import HTTPException, Request, status
from redis.asyncio import Redis


class RateLimitExceeded(HTTPException):
    """Exception raised when a client exceeds the permitted request quota."""

    def __init__(self, retry_after: int) -> None:
        super().__init__(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail="Rate limit exceeded. Please retry later.",
            headers={"Retry-After": str(max(1, retry_after))},
        )


class RateLimiter:
    """Sliding-window rate limiter backed by a Redis sorted set.

    Each accepted call is stored as a member scored by its timestamp; members
    older than the window are trimmed before counting.
    """

    def __init__(
        self,
        redis: Redis,
        *,
        limit: int,
        window_seconds: int = 60,
        prefix: str = "rate",
    ) -> None:
        self._redis = redis
        self._limit = limit
        self._window_seconds = window_seconds
        self._prefix = prefix

    def _key(self, scope: str, identifier: str) -> str:
        return f"{self._prefix}:{scope}:{identifier}"

    async def check(
        self,
        scope: str,
        identifier: str,
        *,
        limit: int | None = None,
    ) -> None:
        key = self._key(scope, identifier)
        active_limit = limit if limit is not None else self._limit
        now = time.time()
        window_start = now - self._window_seconds

        member = f"{now:.6f}:{uuid.uuid4().hex}"

        # Trim, add and count in one MULTI so concurrent callers see each other.
        async with self._redis.pipeline(transaction=True) as pipe:
            pipe.zremrangebyscore(key, 0, window_start)
            pipe.zadd(key, {member: now})
            pipe.zcard(key)
            pipe.expire(key, self._window_seconds)
            _, _, count, _ = await pipe.execute()

        if int(count) > active_limit:
            await self._redis.zrem(key, member)
            oldest = await self._redis.zrange(key, 0, 0, withscores=True)
            retry_after = self._window_seconds
            if oldest:
                retry_after = int(oldest[0][1] + self._window_seconds - now) + 1
            raise RateLimitExceeded(retry_after)

    async def reset(self, scope: str, identifier: str) -> None:
        await self._redis.delete(self._key(scope, identifier))


def get_rate_limiter(request: Request) -> RateLimiter:
    limiter_obj = getattr(request.app.state, "rate_limiter", None)
    if not isinstance(limiter_obj, RateLimiter):
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Rate limiter is not configured",
        )
    return cast(RateLimiter, limiter_obj)
