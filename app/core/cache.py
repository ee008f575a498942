"""Кэширование через Redis."""
import json
import logging
from typing import Any, Optional

import redis.asyncio as redis
from redis.exceptions import RedisError

from app.config import settings

logger = logging.getLogger(__name__)


class CacheService:
    """
    Сервис для работы с кэшем Redis.

    Кэш необязателен: если Redis выключен или недоступен, все операции
    тихо возвращают промах.
    """

    def __init__(self):
        self._redis: Optional[redis.Redis] = None

    async def connect(self):
        """Подключение к Redis."""
        if not settings.cache_enabled or self._redis:
            return
        try:
            self._redis = redis.from_url(
                settings.redis_url,
                encoding="utf-8",
                decode_responses=True,
            )
            await self._redis.ping()
        except (RedisError, OSError) as e:
            logger.warning(f"Redis недоступен, работаем без кэша: {e}")
            self._redis = None

    async def disconnect(self):
        """Отключение от Redis."""
        if self._redis:
            await self._redis.aclose()
            self._redis = None

    async def _client(self) -> Optional[redis.Redis]:
        if not self._redis:
            await self.connect()
        return self._redis

    async def get(self, key: str) -> Any | None:
        """Получить значение из кэша."""
        client = await self._client()
        if not client:
            return None
        try:
            value = await client.get(key)
            return json.loads(value) if value else None
        except (RedisError, OSError, ValueError):
            return None

    async def set(self, key: str, value: Any, ttl: int = 300) -> bool:
        """Установить значение в кэш."""
        client = await self._client()
        if not client:
            return False
        try:
            await client.setex(key, ttl, json.dumps(value, default=str))
            return True
        except (RedisError, OSError, TypeError):
            return False

    async def delete(self, key: str) -> bool:
        """Удалить значение из кэша."""
        client = await self._client()
        if not client:
            return False
        try:
            await client.delete(key)
            return True
        except (RedisError, OSError):
            return False


# Глобальный экземпляр
cache_service = CacheService()


def get_cache_key_payment_methods() -> str:
    """Генерация ключа кэша для активных способов оплаты."""
    return "payment_methods:active"


def get_cache_key_payment_stats() -> str:
    """Генерация ключа кэша для дашборда платежей."""
    return "payments:stats:dashboard"
