# libs/infra/central_redis_client.py
from __future__ import annotations

import datetime
import json
import logging
import uuid
from typing import Any, Optional

import redis.asyncio as redis_asyncio
from redis.exceptions import RedisError


class CentralRedisClient:
    """
    Клиент для короткоживущих данных сервиса: MFA-challenge, одноразовые коды,
    OAuth state, окна rate limiter. Работает поверх redis-py (redis.asyncio)
    со строковыми ответами (decode_responses=True); структуры хранятся в JSON.
    """

    def __init__(
        self,
        redis_url: str,
        password: Optional[str] = None,
        max_connections: int = 10,
    ):
        self.logger = logging.getLogger("central_redis_client")
        self._redis_url = redis_url
        self._password = password
        self._max_connections = max_connections
        self.redis: Optional[redis_asyncio.Redis] = None

    @classmethod
    def from_client(cls, client: redis_asyncio.Redis) -> "CentralRedisClient":
        """Оборачивает уже созданный клиент (например, fakeredis в тестах)."""
        instance = cls(redis_url="redis://attached")
        instance.redis = client
        return instance

    async def connect(self):
        """Асинхронно инициализирует пул подключений к Redis."""
        if self.redis is None:
            self.logger.info(f"Подключение к Redis: {self._redis_url}...")
            try:
                self.redis = redis_asyncio.from_url(
                    self._redis_url,
                    password=self._password,
                    decode_responses=True,
                    max_connections=self._max_connections,
                    socket_timeout=5,
                    socket_connect_timeout=5,
                )
                await self.redis.ping()
                self.logger.info("Подключение к Redis успешно установлено.")
            except RedisError as e:
                self.logger.critical(f"Критическая ошибка при подключении к Redis: {e}", exc_info=True)
                self.redis = None
                raise

    async def close(self):
        """Закрывает подключения Redis."""
        if self.redis:
            await self.redis.aclose()
        self.redis = None
        self.logger.info("Соединения с Redis закрыты.")

    def _client(self) -> redis_asyncio.Redis:
        if self.redis is None:
            raise RedisError("Redis client not connected.")
        return self.redis

    # --- Вспомогательная функция для JSON ---
    @staticmethod
    def _json_serializer(obj):
        if isinstance(obj, (datetime.datetime, datetime.date)):
            return obj.isoformat()
        if isinstance(obj, uuid.UUID):
            return str(obj)
        raise TypeError(f"Object of type {type(obj).__name__} is not JSON serializable")

    # --- Методы для работы с JSON (ключ-значение) ---

    async def get_json(self, key: str) -> Optional[dict]:
        raw = await self._client().get(key)
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except json.JSONDecodeError:
            self.logger.error(f"Повреждённый JSON по ключу '{key}'")
            return None

    async def set_json(self, key: str, value: dict, ex: Optional[int] = None) -> None:
        payload = json.dumps(value, default=self._json_serializer)
        await self._client().set(key, payload, ex=ex)

    # --- Стандартные Redis команды ---

    async def get(self, key: str) -> Optional[str]:
        return await self._client().get(key)

    async def set(self, key: str, value: Any, ex: Optional[int] = None):
        return await self._client().set(key, value, ex=ex)

    async def delete(self, *keys: str) -> int:
        """Возвращает количество удалённых ключей; 1 означает, что удалили именно мы."""
        return await self._client().delete(*keys)

    async def exists(self, *keys: str) -> int:
        return await self._client().exists(*keys)

    async def incr_with_ttl(self, key: str, ttl: int) -> int:
        """INCR + EXPIRE одной транзакцией."""
        pipe = self._client().pipeline(transaction=True)
        pipe.incr(key)
        pipe.expire(key, ttl)
        count, _ = await pipe.execute()
        return int(count)

    async def get_many(self, *keys: str) -> list[Optional[str]]:
        return await self._client().mget(keys)

    async def ping(self) -> bool:
        try:
            return bool(await self._client().ping())
        except RedisError:
            return False
