"""
Redis access. Redis holds only revoked-token markers, so every caller must
tolerate it being unreachable.
"""

import redis.asyncio as redis
from fastapi import Request
from healthpal.app.core.config import Settings


def create_redis(settings: Settings):
    """One client per application; connections open lazily on first use."""
    return redis.from_url(settings.redis_url, decode_responses=settings.redis_decode_responses)


async def get_redis(request: Request):
    return request.app.state.redis


async def ping_redis(client) -> bool:
    try:
        return bool(await client.ping())
    except Exception:
        return False
