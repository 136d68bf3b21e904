from typing import Any

import redis.asyncio as redis

from core.config import settings

_redis_client: redis.Redis | None = None


async def get_redis() -> redis.Redis:
    """Get Redis client instance."""
    global _redis_client
    if _redis_client is None:
        _redis_client = redis.from_url(
            settings.redis_url,
            encoding="utf-8",
            decode_responses=True,
        )
    return _redis_client


async def close_redis() -> None:
    """Close Redis connection."""
    global _redis_client
    if _redis_client:
        await _redis_client.aclose()
        _redis_client = None


async def append_to_stream(client: redis.Redis, stream: str, fields: dict[str, Any]) -> str:
    """XADD a flat string mapping to a capped stream and return the entry id."""
    payload = {key: "" if value is None else str(value) for key, value in fields.items()}
    return await client.xadd(stream, payload, maxlen=settings.feed_stream_maxlen, approximate=True)
