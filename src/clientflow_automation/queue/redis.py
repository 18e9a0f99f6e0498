"""
Redis-клиент для очередей.

Назначение:
- Единая точка подключения к Redis
- Используется бэкендом очередей, воркерами и health-репортером
"""

from __future__ import annotations

import redis

from clientflow_automation.common.config import get_settings

_client: redis.Redis | None = None


def redis_client() -> redis.Redis:
    """
    Singleton Redis client.
    """
    global _client
    if _client is None:
        _client = redis.Redis.from_url(get_settings().redis_url, decode_responses=True)
    return _client
