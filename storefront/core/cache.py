"""Кэширование через Redis."""
import json
from typing import Any, Optional

import redis.asyncio as redis

from storefront.config import settings


class CacheService:
    """Сервис для работы с кэшем Redis."""

    def __init__(self, url: str | None = None):
        self._url = url or settings.redis_url
        self._redis: Optional[redis.Redis] = None

    async def connect(self):
        """Подключение к Redis."""
        if not self._redis:
            try:
                self._redis = await redis.from_url(
                    self._url,
                    encoding="utf-8",
                    decode_responses=True,
                )
                # Проверяем подключение
                await self._redis.ping()
            except Exception:
                # Если Redis недоступен, продолжаем без кэша
                self._redis = None

    async def disconnect(self):
        """Отключение от Redis."""
        if self._redis:
            await self._redis.close()
            self._redis = None

    async def get(self, key: str) -> Any | None:
        """Получить значение из кэша."""
        if not self._redis:
            await self.connect()

        if not self._redis:
            return None

        try:
            value = await self._redis.get(key)
            if value:
                return json.loads(value)
            return None
        except Exception:
            return None

    async def set(self, key: str, value: Any, ttl: int = 300) -> bool:
        """Установить значение в кэш."""
        if not self._redis:
            await self.connect()

        if not self._redis:
            return False

        try:
            serialized = json.dumps(value, default=str)
            await self._redis.setex(key, ttl, serialized)
            return True
        except Exception:
            return False


# Глобальный экземпляр
cache_service = CacheService()


def get_cache_key_exchange_rate(base: str, quote: str) -> str:
    """Генерация ключа кэша для последнего известного курса."""
    return f"exchange_rate:{base}:{quote}"
