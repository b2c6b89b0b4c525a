"""
Redis client utilities for the connector.

Provides a lazy-initialized Redis client to avoid import-time connections.
"""

import functools

import redis

from connector_core.settings import get_settings


@functools.lru_cache()
def get_redis_client() -> redis.Redis:
    """
    Get Redis client (cached).

    This function lazily initializes the Redis client to avoid import-time connections.
    """
    return redis.from_url(get_settings().REDIS_URL, decode_responses=True)


def incr_window(client: redis.Redis, key: str, window_seconds: int) -> tuple[int, int]:
    """
    Increment a fixed-window counter.

    The expiry is set only when the key is created, so the window starts
    at the first hit and is not extended by later ones.

    Args:
        client: Redis client
        key: Counter key
        window_seconds: Window length in seconds

    Returns:
        Tuple of (hits in the current window, seconds until the window resets)
    """
    pipe = client.pipeline()
    pipe.incr(key)
    pipe.ttl(key)
    count, ttl = pipe.execute()

    if ttl is None or ttl < 0:
        client.expire(key, window_seconds)
        ttl = window_seconds

    return int(count), int(ttl)
