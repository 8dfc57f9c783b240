"""Redis clients backing the task queue"""
import asyncio
import logging

import redis
import redis.asyncio as aioredis

from app.core.config import settings

logger = logging.getLogger(__name__)

# Lazy initialization - no connection at import time
_client = None
_async_client = None


def get_redis_client():
    """Get or create Redis client (lazy initialization)

    This prevents connection attempts during import, allowing mocks to be applied first.
    """
    global _client
    if _client is None:
        _client = redis.from_url(settings.REDIS_URL, decode_responses=True)
    return _client


def get_async_redis_client():
    """Get or create async Redis client bound to the running event loop

    The client is recreated when the loop changes (tests create a loop per test).
    """
    global _async_client

    try:
        current_loop = asyncio.get_running_loop()
    except RuntimeError:
        return None

    if _async_client is not None:
        client_loop = getattr(_async_client.connection_pool, '_loop', None)
        if client_loop is not current_loop:
            _async_client = None

    if _async_client is None:
        _async_client = aioredis.from_url(
            settings.REDIS_URL,
            decode_responses=True,
            max_connections=20
        )
        _async_client.connection_pool._loop = current_loop

    return _async_client


def ping_redis() -> bool:
    """Check the Redis connection (raises on failure)"""
    return get_redis_client().ping()
