# src/infra/cache.py
"""
Подключаемый key-value кэш.

Две реализации выбираются при старте по `cache.BACKEND`:
- RedisCache: общий кэш поверх RedisClient;
- MemoryCache: локальный словарь процесса с вытеснением по TTL.
"""

from __future__ import annotations

import time
from abc import ABC, abstractmethod
from collections import OrderedDict
from typing import Any, Callable

from src.common.constants import TypeMsg
from src.common.logger import log_info
from src.infra.redis_client import RedisClient


class KeyValueCache(ABC):
    """Интерфейс кэша JSON-значений."""

    @abstractmethod
    async def get_json(self, key: str) -> Any:
        """Возвращает значение или None, если ключа нет или он истёк."""

    @abstractmethod
    async def set_json(self, key: str, value: Any, ttl: int | None = None) -> None:
        """Сохраняет значение с опциональным TTL (секунды)."""

    @abstractmethod
    async def delete(self, key: str) -> None:
        """Удаляет ключ."""


class RedisCache(KeyValueCache):
    """Кэш в Redis."""

    def __init__(self, client: RedisClient) -> None:
        self._client = client

    async def get_json(self, key: str) -> Any:
        return await self._client.get_json(key)

    async def set_json(self, key: str, value: Any, ttl: int | None = None) -> None:
        await self._client.set_json(key, value, ttl=ttl)

    async def delete(self, key: str) -> None:
        await self._client.delete(key)


class MemoryCache(KeyValueCache):
    """
    Кэш в памяти процесса.
    Истёкшие ключи удаляются при чтении; при переполнении вытесняются самые старые.
    """

    def __init__(
        self,
        max_items: int = 10000,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._items: OrderedDict[str, tuple[Any, float | None]] = OrderedDict()
        self._max_items = max_items
        self._clock = clock

    def __len__(self) -> int:
        return len(self._items)

    async def get_json(self, key: str) -> Any:
        entry = self._items.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if expires_at is not None and self._clock() >= expires_at:
            del self._items[key]
            return None
        return value

    async def set_json(self, key: str, value: Any, ttl: int | None = None) -> None:
        expires_at = self._clock() + ttl if ttl else None
        self._items[key] = (value, expires_at)
        self._items.move_to_end(key)
        self._evict()

    async def delete(self, key: str) -> None:
        self._items.pop(key, None)

    def _evict(self) -> None:
        now = self._clock()
        expired = [k for k, (_, exp) in self._items.items() if exp is not None and now >= exp]
        for key in expired:
            del self._items[key]
        while len(self._items) > self._max_items:
            self._items.popitem(last=False)


async def create_cache(backend: str | None = None) -> KeyValueCache:
    """
    Создаёт кэш по настройкам.

    Args:
        backend: "redis" или "memory" (если None, берётся из конфига)
    """
    from src.config import settings

    backend = backend or settings.cache.BACKEND

    if backend == "redis":
        from src.infra.redis_client import init_redis

        client = await init_redis()
        await log_info("Кэш: Redis", type_msg=TypeMsg.INFO)
        return RedisCache(client)

    await log_info("Кэш: память процесса", type_msg=TypeMsg.INFO)
    return MemoryCache(max_items=settings.cache.MEMORY_MAX_ITEMS)
