# src/services/location_tracker/broadcaster.py
"""
Менеджер WebSocket соединений.
Управляет подписками на треки и рассылкой обновлений позиций.
"""

from __future__ import annotations

import asyncio
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from fastapi import WebSocket

from src.common.constants import GLOBAL_CHANNEL, ServerMessage, track_topic
from src.common.logger import log_debug, log_info
from src.shared.models.location_dto import LocationUpdatedEvent


@dataclass
class ConnectionInfo:
    """Информация о соединении."""
    websocket: WebSocket
    connection_id: str
    connected_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    subscriptions: set[str] = field(default_factory=set)  # track:{id}
    # Сообщения в одно соединение уходят строго по очереди
    send_lock: asyncio.Lock = field(default_factory=asyncio.Lock)


class Broadcaster:
    """
    Менеджер WebSocket соединений.

    Поддерживает:
    - Подключение/отключение клиентов
    - Подписка на топики трека (track:{id})
    - Рассылку событий location_updated подписчикам трека
      и (опционально) всем подключённым клиентам
    - Персональные сообщения

    Соединение, в которое не удалось отправить сообщение за send_timeout,
    отключается. Повторных попыток нет.
    """

    def __init__(self, global_broadcast: bool = True, send_timeout: float = 5.0) -> None:
        self._global_broadcast = global_broadcast
        self._send_timeout = send_timeout

        # connection_id -> ConnectionInfo
        self._connections: dict[str, ConnectionInfo] = {}

        # topic -> set of connection_ids
        self._subscriptions: dict[str, set[str]] = {}

    @property
    def active_connections(self) -> int:
        """Количество активных соединений."""
        return len(self._connections)

    # =========================================================================
    # ПОДКЛЮЧЕНИЕ
    # =========================================================================

    async def connect(self, websocket: WebSocket, connection_id: str | None = None) -> str:
        """
        Принять соединение и зарегистрировать его.

        Returns:
            Идентификатор соединения
        """
        await websocket.accept()

        connection_id = connection_id or uuid.uuid4().hex
        self._connections[connection_id] = ConnectionInfo(
            websocket=websocket,
            connection_id=connection_id,
        )

        await log_info(
            f"WebSocket подключён: {connection_id}",
            extra={"connection_id": connection_id},
        )
        return connection_id

    async def disconnect(self, connection_id: str, reason: str | None = None) -> bool:
        """
        Отключить клиента и удалить все его подписки.

        Повторный вызов для уже отключённого клиента ничего не делает.
        """
        conn = self._connections.pop(connection_id, None)
        if conn is None:
            return False

        for topic in list(conn.subscriptions):
            self._unsubscribe_from_topic(connection_id, topic)

        await log_info(
            f"WebSocket отключён: {connection_id}",
            extra={"connection_id": connection_id, "reason": reason or "client closed"},
        )
        return True

    # =========================================================================
    # ПОДПИСКИ
    # =========================================================================

    async def subscribe(self, connection_id: str, track_id: str) -> bool:
        """
        Подписать соединение на обновления трека и отправить подтверждение.

        Повторная подписка не создаёт второй записи.
        """
        conn = self._connections.get(connection_id)
        if conn is None:
            return False

        topic = track_topic(track_id)
        conn.subscriptions.add(topic)
        self._subscriptions.setdefault(topic, set()).add(connection_id)

        await log_debug(
            f"{connection_id} подписан на {topic}",
            extra={"connection_id": connection_id, "track_id": track_id},
        )
        await self.send_personal(connection_id, {
            "type": ServerMessage.SUBSCRIBED.value,
            "trackId": track_id,
            "success": True,
        })
        return True

    async def unsubscribe(self, connection_id: str, track_id: str) -> bool:
        """Отписать соединение от трека (без подписки — просто подтверждение)."""
        if connection_id not in self._connections:
            return False

        self._unsubscribe_from_topic(connection_id, track_topic(track_id))

        await self.send_personal(connection_id, {
            "type": ServerMessage.UNSUBSCRIBED.value,
            "trackId": track_id,
            "success": True,
        })
        return True

    def _unsubscribe_from_topic(self, connection_id: str, topic: str) -> None:
        """Внутренний метод отписки."""
        if connection_id in self._connections:
            self._connections[connection_id].subscriptions.discard(topic)

        if topic in self._subscriptions:
            self._subscriptions[topic].discard(connection_id)
            if not self._subscriptions[topic]:
                del self._subscriptions[topic]

    def get_subscriptions(self, connection_id: str) -> set[str]:
        """Получить все подписки соединения."""
        if connection_id in self._connections:
            return self._connections[connection_id].subscriptions.copy()
        return set()

    def get_topic_subscribers(self, track_id: str) -> set[str]:
        """Получить всех подписчиков трека."""
        return self._subscriptions.get(track_topic(track_id), set()).copy()

    # =========================================================================
    # ОТПРАВКА
    # =========================================================================

    async def send_personal(self, connection_id: str, message: dict[str, Any]) -> bool:
        """
        Отправить сообщение конкретному соединению.

        Returns:
            True если сообщение отправлено, False если соединения нет
            или отправка не удалась (тогда соединение отключается)
        """
        conn = self._connections.get(connection_id)
        if conn is None:
            return False

        if await self._deliver(conn, [message]):
            return True

        await self._drop(conn)
        return False

    async def publish(self, event: LocationUpdatedEvent) -> int:
        """
        Разослать событие обновления позиции.

        Получатели фиксируются один раз в момент вызова. Каждое соединение
        получает сначала сообщение глобального канала (если включён),
        затем сообщение топика трека (если подписано).

        Returns:
            Количество доставленных сообщений
        """
        data = event.to_wire()
        topic = track_topic(event.track_id)

        deliveries: dict[str, list[dict[str, Any]]] = {}
        if self._global_broadcast:
            for connection_id in self._connections:
                deliveries.setdefault(connection_id, []).append(
                    self._event_message(GLOBAL_CHANNEL, data)
                )
        for connection_id in self._subscriptions.get(topic, ()):
            if connection_id in self._connections:
                deliveries.setdefault(connection_id, []).append(
                    self._event_message(topic, data)
                )

        if not deliveries:
            return 0

        targets = [
            (self._connections[connection_id], messages)
            for connection_id, messages in deliveries.items()
        ]
        results = await asyncio.gather(
            *(self._deliver(conn, messages) for conn, messages in targets)
        )

        sent_count = 0
        for (conn, messages), ok in zip(targets, results):
            if ok:
                sent_count += len(messages)
            else:
                await self._drop(conn)

        return sent_count

    @staticmethod
    def _event_message(channel: str, data: dict[str, Any]) -> dict[str, Any]:
        return {
            "type": ServerMessage.LOCATION_UPDATED.value,
            "channel": channel,
            "data": data,
        }

    async def _deliver(self, conn: ConnectionInfo, messages: list[dict[str, Any]]) -> bool:
        """Отправить сообщения по порядку. False — соединение не приняло данные вовремя."""
        try:
            await asyncio.wait_for(self._send_in_order(conn, messages), self._send_timeout)
        except Exception as e:
            await log_debug(
                f"Не удалось отправить сообщение в {conn.connection_id}: {e!r}",
                extra={"connection_id": conn.connection_id},
            )
            return False
        return True

    async def _send_in_order(self, conn: ConnectionInfo, messages: list[dict[str, Any]]) -> None:
        async with conn.send_lock:
            for message in messages:
                await conn.websocket.send_json(message)

    async def _drop(self, conn: ConnectionInfo) -> None:
        """Отключить соединение после неудачной отправки."""
        if await self.disconnect(conn.connection_id, reason="delivery failed"):
            await self._close_connection(conn)

    # =========================================================================
    # ЗАВЕРШЕНИЕ
    # =========================================================================

    async def close_all(self) -> None:
        """Закрыть все соединения (при остановке сервиса)."""
        for conn in list(self._connections.values()):
            await self.disconnect(conn.connection_id, reason="server shutdown")
            await self._close_connection(conn)

    async def _close_connection(self, conn: ConnectionInfo) -> None:
        """Закрыть соединение."""
        try:
            await conn.websocket.close()
        except Exception:
            # Соединение уже разорвано
            pass
