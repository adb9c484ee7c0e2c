"""Redis throttle for the periodic ticks.

A tick that starts while another one holds the lock is skipped. The
lock is never released explicitly; it expires after its TTL, which
makes it "at most one tick per TTL window". Dispatch and claims are
safe without it, so an unreachable Redis lets the tick run.
"""

from typing import Optional
from uuid import uuid4

import redis.asyncio as aioredis
import structlog
from redis.exceptions import RedisError

from app.config import get_settings

logger = structlog.get_logger(__name__)

LOCK_PREFIX = "cadence:tick-lock:"


async def acquire_tick_lock(
    name: str,
    ttl_seconds: int,
    client: Optional[aioredis.Redis] = None,
) -> bool:
    """Try to take the tick lock for ``name``.

    Returns:
        True when the tick should run, False when another tick holds it.
    """
    owns_client = client is None
    if owns_client:
        client = aioredis.from_url(get_settings().REDIS_URL, socket_timeout=3)

    try:
        acquired = await client.set(
            f"{LOCK_PREFIX}{name}", uuid4().hex, nx=True, ex=ttl_seconds
        )
    except RedisError as exc:
        logger.warning("tick_lock_unavailable", tick=name, error=str(exc))
        return True
    finally:
        if owns_client:
            await client.aclose()

    if not acquired:
        logger.info("tick_skipped_locked", tick=name, ttl_seconds=ttl_seconds)
        return False
    return True
