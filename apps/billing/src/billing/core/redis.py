from __future__ import annotations

from urllib.parse import urlparse

from redis.asyncio import Redis

from billing.core.config import Settings, get_settings

_REDIS: Redis | None = None

_IN_MEMORY_SCHEMES = frozenset({"fakeredis", "memory"})


def _create_client(url: str) -> Redis:
    scheme = (urlparse(url).scheme or "").lower()
    if scheme in _IN_MEMORY_SCHEMES:
        # In-process server for tests and local runs without Redis.
        from fakeredis import FakeAsyncRedis

        return FakeAsyncRedis(decode_responses=True)
    return Redis.from_url(url, encoding="utf-8", decode_responses=True)


async def init_redis(settings: Settings | None = None) -> Redis:
    """Initialise and cache the Redis client."""

    global _REDIS
    if _REDIS is not None:
        return _REDIS

    settings = settings or get_settings()
    client = _create_client(settings.redis.url)
    await client.ping()
    _REDIS = client
    return _REDIS


async def close_redis() -> None:
    global _REDIS
    if _REDIS is None:
        return

    await _REDIS.aclose()
    _REDIS = None
