# src/services/location_tracker/relay.py
"""
Пересылка событий location_updated между воркерами через Redis Pub/Sub.

Каждый воркер публикует принятые обновления в общий канал и слушает его же:
подписчик воркера раздаёт событие своим WebSocket-клиентам. Отправитель
получает своё событие тем же путём, поэтому каждый клиент видит его один раз.
"""

from __future__ import annotations

import asyncio
from typing import Any

from pydantic import ValidationError
from redis.asyncio.client import PubSub

from src.common.constants import TypeMsg
from src.common.logger import log_error, log_info, log_warning
from src.infra.redis_client import RedisClient
from src.services.location_tracker.broadcaster import Broadcaster
from src.shared.models.location_dto import LocationUpdatedEvent


class RedisEventRelay:
    """
    Канал событий между процессами.

    publish() отправляет событие в Redis, фоновая задача принимает
    события из канала и передаёт их в локальный Broadcaster.
    """

    CHANNEL = "events:location"

    def __init__(self, redis: RedisClient, broadcaster: Broadcaster) -> None:
        self._redis = redis
        self._broadcaster = broadcaster
        self._pubsub: PubSub | None = None
        self._task: asyncio.Task | None = None
        self._running = False

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def channel(self) -> str:
        """Полное имя канала (с namespace)."""
        return self._redis.make_key(self.CHANNEL)

    async def start(self) -> None:
        """Подписаться на канал и начать приём событий."""
        if self._running:
            return

        self._pubsub = self._redis.pubsub()
        await self._pubsub.subscribe(self.channel)

        self._running = True
        self._task = asyncio.create_task(self._listen())
        await log_info(f"Подписка на канал {self.channel}", type_msg=TypeMsg.DEBUG)

    async def stop(self) -> None:
        """Остановить приём и закрыть подписку."""
        if not self._running:
            return

        self._running = False

        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

        if self._pubsub:
            await self._pubsub.unsubscribe()
            await self._pubsub.aclose()
            self._pubsub = None

        await log_info("Подписка на события остановлена", type_msg=TypeMsg.DEBUG)

    async def publish(self, event: LocationUpdatedEvent) -> int:
        """
        Опубликовать событие для всех воркеров.

        Returns:
            Количество воркеров, получивших событие
        """
        return await self._redis.publish(self.CHANNEL, event.model_dump_json())

    async def _listen(self) -> None:
        """Принимать события, пока relay запущен."""
        while self._running:
            try:
                message = await self._pubsub.get_message(
                    ignore_subscribe_messages=True,
                    timeout=1.0,
                )
                if message is None:
                    continue
                await self._process_message(message)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                await log_error(f"Ошибка подписчика Redis: {e}", exc_info=True)
                await asyncio.sleep(1)

    async def _process_message(self, message: dict[str, Any]) -> int:
        """Передать событие из канала локальным клиентам."""
        if message.get("type") != "message":
            return 0

        try:
            event = LocationUpdatedEvent.model_validate_json(message.get("data") or "")
        except ValidationError as e:
            await log_warning(
                f"Некорректное событие в канале {self.channel}: {e}",
                extra={"channel": self.channel},
            )
            return 0

        return await self._broadcaster.publish(event)
