# src/infra/redis_client.py
"""
Клиент Redis для хранения позиций и треков.
Поддерживает типизированные операции с Pydantic моделями,
отсортированные множества (индексы по времени) и распределённые блокировки.
"""

from __future__ import annotations

from typing import TypeVar, Type

import redis.asyncio as redis
from pydantic import BaseModel
from redis.asyncio.client import Pipeline, PubSub
from redis.asyncio.lock import Lock

from src.common.logger import log_error, log_info
from src.common.constants import TypeMsg

T = TypeVar("T", bound=BaseModel)


class RedisClient:
    """
    Асинхронный клиент Redis.
    Поддерживает:
    - Типизированные get/set с Pydantic моделями
    - Sorted set операции (индексы по времени обновления)
    - Set операции
    - Пайплайны и блокировки по ключу
    """

    _instance: RedisClient | None = None
    _client: redis.Redis | None = None

    def __new__(cls) -> RedisClient:
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __init__(self) -> None:
        """Инициализация (вызывается только один раз благодаря Singleton)."""
        if hasattr(self, "_initialized"):
            return
        self._initialized = True
        self._client = None
        self._namespace = "tracker"

    @property
    def client(self) -> redis.Redis:
        """Возвращает клиент Redis."""
        if self._client is None:
            raise RuntimeError("Redis клиент не инициализирован. Вызовите connect() сначала.")
        return self._client

    @property
    def is_connected(self) -> bool:
        """Установлено ли подключение."""
        return self._client is not None

    def make_key(self, key: str) -> str:
        """Добавляет namespace к ключу."""
        return f"{self._namespace}:{key}"

    async def connect(
        self,
        url: str | None = None,
        max_connections: int = 50,
        namespace: str | None = None,
    ) -> None:
        """
        Подключается к Redis.

        Args:
            url: URL Redis (если None, берётся из конфига)
            max_connections: Максимальное количество соединений
            namespace: Префикс ключей (если None, берётся из конфига)
        """
        if self._client is not None:
            return

        if url is None:
            from src.config import settings
            url = settings.redis.url
            max_connections = settings.redis.REDIS_MAX_CONNECTIONS
            namespace = namespace or settings.redis.REDIS_NAMESPACE

        if namespace:
            self._namespace = namespace

        await log_info("Подключение к Redis...", type_msg=TypeMsg.INFO)

        self._client = redis.from_url(
            url,
            max_connections=max_connections,
            decode_responses=True,
        )

        await self._client.ping()

        await log_info("Подключение к Redis установлено", type_msg=TypeMsg.INFO)

    async def disconnect(self) -> None:
        """Закрывает соединение с Redis."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None
            await log_info("Соединение с Redis закрыто", type_msg=TypeMsg.INFO)

    # =========================================================================
    # БАЗОВЫЕ ОПЕРАЦИИ
    # =========================================================================

    async def get(self, key: str) -> str | None:
        """Получает значение по ключу."""
        return await self.client.get(self.make_key(key))

    async def set(
        self,
        key: str,
        value: str,
        ttl: int | None = None,
    ) -> bool:
        """Устанавливает значение (ttl — время жизни в секундах)."""
        return await self.client.set(
            self.make_key(key),
            value,
            ex=ttl,
        )

    async def delete(self, *keys: str) -> int:
        """Удаляет ключи."""
        return await self.client.delete(*(self.make_key(key) for key in keys))

    async def exists(self, key: str) -> bool:
        """Проверяет существование ключа."""
        return await self.client.exists(self.make_key(key)) > 0

    # =========================================================================
    # ТИПИЗИРОВАННЫЕ ОПЕРАЦИИ (PYDANTIC)
    # =========================================================================

    async def get_model(self, key: str, model_class: Type[T]) -> T | None:
        """
        Получает и десериализует Pydantic модель.

        Returns:
            Экземпляр модели или None (нет ключа или повреждённые данные)
        """
        data = await self.get(key)
        if data is None:
            return None

        try:
            return model_class.model_validate_json(data)
        except Exception as e:
            await log_error(f"Ошибка десериализации модели {model_class.__name__}: {e}")
            return None

    async def set_model(
        self,
        key: str,
        model: BaseModel,
        ttl: int | None = None,
    ) -> bool:
        """Сериализует и сохраняет Pydantic модель."""
        return await self.set(key, model.model_dump_json(), ttl=ttl)

    # =========================================================================
    # SORTED SET ОПЕРАЦИИ (индексы по времени)
    # =========================================================================

    async def zscore(self, key: str, member: str) -> float | None:
        """Возвращает score участника или None."""
        return await self.client.zscore(self.make_key(key), member)

    async def zrangebyscore(
        self,
        key: str,
        min_score: float | str,
        max_score: float | str,
    ) -> list[str]:
        """
        Участники со score в диапазоне.

        Границы передаются как есть: "-inf", "(123.0" — исключающая граница.
        """
        return await self.client.zrangebyscore(self.make_key(key), min_score, max_score)

    async def zrem(self, key: str, *members: str) -> int:
        """Удаляет участников из sorted set."""
        return await self.client.zrem(self.make_key(key), *members)

    async def zcard(self, key: str) -> int:
        """Количество участников sorted set."""
        return await self.client.zcard(self.make_key(key))

    # =========================================================================
    # SET ОПЕРАЦИИ
    # =========================================================================

    async def sadd(self, key: str, *members: str) -> int:
        """Добавляет элементы в множество."""
        return await self.client.sadd(self.make_key(key), *members)

    async def srem(self, key: str, *members: str) -> int:
        """Удаляет элементы из множества."""
        return await self.client.srem(self.make_key(key), *members)

    async def scard(self, key: str) -> int:
        """Размер множества."""
        return await self.client.scard(self.make_key(key))

    # =========================================================================
    # PUB/SUB
    # =========================================================================

    async def publish(self, channel: str, message: str) -> int:
        """Опубликовать сообщение. Возвращает число подписчиков-получателей."""
        return await self.client.publish(self.make_key(channel), message)

    def pubsub(self) -> PubSub:
        """
        Новый объект Pub/Sub.

        Имена каналов при подписке нужно оборачивать в make_key() вручную.
        """
        return self.client.pubsub()

    # =========================================================================
    # ПАЙПЛАЙНЫ И БЛОКИРОВКИ
    # =========================================================================

    def pipeline(self, transaction: bool = True) -> Pipeline:
        """
        Возвращает пайплайн (MULTI/EXEC при transaction=True).

        Ключи в пайплайне нужно оборачивать в make_key() вручную.
        """
        return self.client.pipeline(transaction=transaction)

    def lock(
        self,
        name: str,
        timeout: float | None = None,
        blocking_timeout: float | None = None,
    ) -> Lock:
        """
        Распределённая блокировка по ключу.

        Args:
            name: Имя блокировки (без namespace)
            timeout: Через сколько секунд блокировка снимается автоматически
            blocking_timeout: Сколько секунд ждать захвата
        """
        return self.client.lock(
            self.make_key(name),
            timeout=timeout,
            blocking_timeout=blocking_timeout,
        )

    # =========================================================================
    # HEALTH CHECK
    # =========================================================================

    async def health_check(self) -> bool:
        """Проверяет здоровье подключения к Redis."""
        try:
            return bool(await self.client.ping())
        except Exception as e:
            await log_error(f"Health check Redis failed: {e}")
            return False


def get_redis() -> RedisClient:
    """Возвращает глобальный экземпляр RedisClient."""
    return RedisClient()


async def init_redis() -> RedisClient:
    """
    Инициализирует подключение к Redis.
    Использует настройки из конфигурации.
    """
    from src.config import settings

    redis_client = get_redis()
    await redis_client.connect(
        url=settings.redis.url,
        max_connections=settings.redis.REDIS_MAX_CONNECTIONS,
        namespace=settings.redis.REDIS_NAMESPACE,
    )
    await log_info(
        f"Redis подключён: {settings.redis.REDIS_HOST}:{settings.redis.REDIS_PORT}/{settings.redis.REDIS_DB}",
        type_msg=TypeMsg.INFO,
    )
    return redis_client


async def close_redis() -> None:
    """Закрывает подключение к Redis."""
    redis_client = get_redis()
    await redis_client.disconnect()
    await log_info("Redis отключён", type_msg=TypeMsg.INFO)
