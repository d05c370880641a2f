from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from typing import cast

import pytest
import pytest_asyncio
import redis.asyncio as redis
from fakeredis import FakeAsyncRedis

from billing.security.rate_limiter import RateLimiter, RateLimitExceeded


@pytest_asyncio.fixture
async def redis_client() -> AsyncIterator[redis.Redis]:
    """Provide an in-memory Redis client for testing."""
    client = FakeAsyncRedis(decode_responses=True)
    try:
        yield cast(redis.Redis, client)
    finally:
        await client.flushdb()
        await client.aclose()


@pytest_asyncio.fixture
async def rate_limiter(redis_client: redis.Redis) -> RateLimiter:
    return RateLimiter(redis_client, limit=3, window_seconds=60)


@pytest.mark.asyncio
async def test_allows_requests_within_limit(rate_limiter: RateLimiter) -> None:
    for _ in range(3):
        await rate_limiter.check("payments:create", "42")


@pytest.mark.asyncio
async def test_blocks_requests_exceeding_limit(rate_limiter: RateLimiter) -> None:
    for _ in range(3):
        await rate_limiter.check("payments:create", "42")

    with pytest.raises(RateLimitExceeded) as exc_info:
        await rate_limiter.check("payments:create", "42")

    assert exc_info.value.status_code == 429
    retry_after = int(exc_info.value.headers["Retry-After"])
    assert 1 <= retry_after <= 61


@pytest.mark.asyncio
async def test_limits_are_tracked_per_identifier(rate_limiter: RateLimiter) -> None:
    for _ in range(3):
        await rate_limiter.check("payments:create", "42")

    await rate_limiter.check("payments:create", "43")
    await rate_limiter.check("payments:refresh", "42")


@pytest.mark.asyncio
async def test_explicit_limit_overrides_default(rate_limiter: RateLimiter) -> None:
    await rate_limiter.check("payments:create", "42", limit=1)

    with pytest.raises(RateLimitExceeded):
        await rate_limiter.check("payments:create", "42", limit=1)


@pytest.mark.asyncio
async def test_reset_clears_the_window(rate_limiter: RateLimiter) -> None:
    for _ in range(3):
        await rate_limiter.check("payments:create", "42")

    await rate_limiter.reset("payments:create", "42")

    await rate_limiter.check("payments:create", "42")


@pytest.mark.asyncio
async def test_expired_entries_leave_the_window(redis_client: redis.Redis) -> None:
    limiter = RateLimiter(redis_client, limit=1, window_seconds=60)
    key = "rate:payments:create:42"
    await redis_client.zadd(key, {"old": 1.0})

    await limiter.check("payments:create", "42")

    assert await redis_client.zcard(key) == 1


@pytest.mark.asyncio
async def test_concurrent_requests_never_exceed_limit(rate_limiter: RateLimiter) -> None:
    results = await asyncio.gather(
        *(rate_limiter.check("payments:create", "42") for _ in range(10)),
        return_exceptions=True,
    )

    accepted = [result for result in results if result is None]
    rejected = [result for result in results if isinstance(result, RateLimitExceeded)]
    assert len(accepted) == 3
    assert len(rejected) == 7


@pytest.mark.asyncio
async def test_rejected_requests_do_not_fill_the_window(
    rate_limiter: RateLimiter, redis_client: redis.Redis
) -> None:
    for _ in range(3):
        await rate_limiter.check("payments:create", "42")
    for _ in range(2):
        with pytest.raises(RateLimitExceeded):
            await rate_limiter.check("payments:create", "42")

    assert await redis_client.zcard("rate:payments:create:42") == 3
