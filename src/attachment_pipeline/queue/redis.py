"""
Redis-клиент для очереди и pub/sub.

Назначение:
- Единая точка подключения к Redis для entrypoint'ов
- В сам RedisJobQueue / RedisResultSink клиент передаётся явно
"""

from __future__ import annotations

import redis

from attachment_pipeline.common.config import get_settings

_client: redis.Redis | None = None


def redis_client() -> redis.Redis:
    """
    Singleton Redis client.
    """
    global _client
    if _client is None:
        _client = redis.Redis.from_url(get_settings().redis_url, decode_responses=True)
    return _client
