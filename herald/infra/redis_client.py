"""Shared Redis client used for rate-limit and usage counters."""

from __future__ import annotations

from functools import lru_cache

import redis

from herald.config import get_settings


@lru_cache(maxsize=1)
def get_redis_client() -> redis.Redis:
    """Build the process-wide Redis client from settings.

    The connection is opened lazily by redis-py on first command, so building
    the client never fails while Redis is down; callers see the error when a
    command runs.
    """
    settings = get_settings()
    return redis.Redis(
        host=settings.redis_host,
        port=settings.redis_port,
        db=settings.redis_db,
        password=settings.redis_password,
        socket_timeout=settings.redis_socket_timeout,
        socket_connect_timeout=settings.redis_socket_timeout,
        decode_responses=True,
    )
