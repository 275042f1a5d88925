"""
Logout support: revoked tokens are remembered in Redis by their `jti` until
they would have expired anyway.
"""

import logging
import time
from typing import Any, Dict

logger = logging.getLogger(__name__)

REVOKED_PREFIX = "healthpal:revoked:"


def _key(claims: Dict[str, Any]) -> str:
    return f"{REVOKED_PREFIX}{claims['jti']}"


async def revoke_token(redis_client, claims: Dict[str, Any]) -> bool:
    """Returns False when Redis could not record the revocation."""
    remaining = max(int(claims["exp"] - time.time()), 1)
    try:
        return bool(await redis_client.set(_key(claims), str(claims["user_id"]), ex=remaining))
    except Exception as e:
        logger.error("Could not revoke token for user %s: %s", claims.get("user_id"), e)
        return False


async def is_token_revoked(redis_client, claims: Dict[str, Any]) -> bool:
    try:
        return await redis_client.exists(_key(claims)) > 0
    except Exception as e:
        # Fail open: a Redis outage must not lock every user out
        logger.warning("Revocation check unavailable: %s", e)
        return False
