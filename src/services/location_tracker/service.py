# src/services/location_tracker/service.py
"""
Бизнес-логика отслеживания: приём координат, чтение позиции и трека,
деактивация, генерация идентификаторов, статистика.
"""

from __future__ import annotations

import math
import secrets
import string
from datetime import timedelta
from typing import Any, TYPE_CHECKING

from src.common.constants import TRACK_ID_LENGTH, TRACK_ID_PREFIX
from src.common.logger import log_error, log_info
from src.core.tracking.exceptions import (
    InvalidInputError,
    OutOfRangeError,
    StoreFailureError,
    TrackNotFoundError,
)
from src.core.tracking.store import LocationStore
from src.services.location_tracker.broadcaster import Broadcaster
from src.shared.models.location_dto import (
    CleanupResult,
    LocationUpdatedEvent,
    LocationUpdateRequest,
    PositionRecord,
    PositionView,
    TrackStats,
    TrailPoint,
)

if TYPE_CHECKING:
    from src.services.location_tracker.relay import RedisEventRelay


_TRACK_ID_ALPHABET = string.ascii_uppercase + string.digits


class LocationTrackingService:
    """
    Сервис отслеживания треков.

    Ответственности:
    - Валидация входящих координат (одинаково для HTTP и WebSocket)
    - Запись позиции, затем точки трека, затем рассылка события
    - Чтение текущей позиции и истории перемещений
    - Деактивация и удаление трека
    """

    MAX_ID_ATTEMPTS = 20

    def __init__(
        self,
        store: LocationStore,
        broadcaster: Broadcaster | None = None,
        recent_window: timedelta = timedelta(seconds=30),
        default_trail_window: timedelta = timedelta(hours=2),
        publisher: RedisEventRelay | None = None,
    ) -> None:
        """
        Args:
            store: Хранилище позиций и треков
            broadcaster: Локальные WebSocket-клиенты (для статистики и рассылки)
            publisher: Канал между воркерами; если задан, события уходят в него,
                а не напрямую в broadcaster
        """
        self._store = store
        self._broadcaster = broadcaster
        self._publisher = publisher
        self._recent_window = recent_window
        self._default_trail_window = default_trail_window

    @property
    def store(self) -> LocationStore:
        return self._store

    # =========================================================================
    # ВАЛИДАЦИЯ
    # =========================================================================

    @staticmethod
    def _parse_number(value: Any, field_name: str) -> float:
        """Число (bool числом не считается)."""
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise InvalidInputError(f"Field {field_name} must be a number")
        return float(value)

    @classmethod
    def validate_update(
        cls,
        track_id: Any,
        lat: Any,
        lng: Any,
        speed: Any = None,
        accuracy: Any = None,
    ) -> tuple[str, float, float, float, float]:
        """
        Проверяет обновление и приводит значения к нужным типам.

        Raises:
            InvalidInputError: нет обязательного поля или значение не число
            OutOfRangeError: координаты вне диапазона, отрицательные speed/accuracy
        """
        if not isinstance(track_id, str) or not track_id.strip() or lat is None or lng is None:
            raise InvalidInputError("Missing required fields: trackId, lat, lng")

        lat_value = cls._parse_number(lat, "lat")
        lng_value = cls._parse_number(lng, "lng")
        speed_value = 0.0 if speed is None else cls._parse_number(speed, "speed")
        accuracy_value = 0.0 if accuracy is None else cls._parse_number(accuracy, "accuracy")

        # NaN и бесконечность не проходят сравнения ниже
        if not (-90.0 <= lat_value <= 90.0) or not (-180.0 <= lng_value <= 180.0):
            raise OutOfRangeError("Invalid coordinates")
        if not (0.0 <= speed_value < math.inf) or not (0.0 <= accuracy_value < math.inf):
            raise OutOfRangeError("Speed and accuracy must be non-negative numbers")

        return track_id, lat_value, lng_value, speed_value, accuracy_value

    # =========================================================================
    # КОНВЕЙЕР ОБНОВЛЕНИЙ
    # =========================================================================

    async def submit_update(
        self,
        track_id: Any,
        lat: Any,
        lng: Any,
        speed: Any = None,
        accuracy: Any = None,
    ) -> PositionRecord:
        """
        Принять обновление координат.

        1. Валидация (при ошибке ничего не меняется)
        2. Запись позиции и точки трека под блокировкой трека
           (метка времени ставится там же, поэтому трек упорядочен по времени)
        3. Рассылка события подписчикам

        Returns:
            Сохранённая позиция
        """
        track_id, lat, lng, speed, accuracy = self.validate_update(
            track_id, lat, lng, speed, accuracy
        )

        record = await self._store.record_update(track_id, lat, lng, speed, accuracy)

        await self._broadcast(LocationUpdatedEvent.from_record(record))

        await log_info(
            f"Позиция обновлена: {track_id}",
            extra={"track_id": track_id, "lat": lat, "lng": lng},
        )
        return record

    async def submit(self, request: LocationUpdateRequest) -> PositionRecord:
        """То же, что submit_update, но из DTO запроса."""
        return await self.submit_update(
            request.track_id,
            request.lat,
            request.lng,
            speed=request.speed,
            accuracy=request.accuracy,
        )

    async def _broadcast(self, event: LocationUpdatedEvent) -> None:
        """Рассылка не влияет на результат обновления."""
        target = self._publisher or self._broadcaster
        if target is None:
            return
        try:
            await target.publish(event)
        except Exception as e:
            await log_error(
                f"Ошибка рассылки обновления {event.track_id}: {e}",
                extra={"track_id": event.track_id},
                exc_info=True,
            )

    # =========================================================================
    # ЧТЕНИЕ
    # =========================================================================

    async def get_position(self, track_id: str) -> PositionView:
        """
        Текущая позиция трека с признаком свежести.

        Raises:
            TrackNotFoundError: позиции нет
        """
        self._require_track_id(track_id)
        record = await self._store.get_position(track_id)
        if record is None:
            raise TrackNotFoundError(track_id)

        is_recent = record.timestamp > self._store.now() - self._recent_window
        return PositionView(**record.model_dump(), is_recent=is_recent)

    async def get_trail(self, track_id: str, hours: float | None = None) -> list[TrailPoint]:
        """
        Точки трека за последние hours часов (по умолчанию 2).

        Неизвестный трек — пустой список.
        """
        self._require_track_id(track_id)
        if hours is None:
            window = self._default_trail_window
        else:
            if isinstance(hours, bool) or not hours > 0 or math.isinf(hours):
                raise InvalidInputError("hours must be a positive number")
            window = timedelta(hours=hours)
        return await self._store.get_trail(track_id, since=window)

    # =========================================================================
    # УПРАВЛЕНИЕ ТРЕКОМ
    # =========================================================================

    async def deactivate(self, track_id: str) -> PositionRecord:
        """
        Пометить трек как неактивный. Позиция и трек сохраняются.

        Raises:
            TrackNotFoundError: позиции нет
        """
        self._require_track_id(track_id)
        record = await self._store.set_active(track_id, False)
        if record is None:
            raise TrackNotFoundError(track_id)

        await log_info(f"Трек деактивирован: {track_id}", extra={"track_id": track_id})
        return record

    async def purge_track(self, track_id: str) -> CleanupResult:
        """Удалить позицию и трек сразу."""
        self._require_track_id(track_id)
        result = await self._store.delete_track(track_id)
        await log_info(
            f"Трек удалён: {track_id}",
            extra={"track_id": track_id, **result.model_dump()},
        )
        return result

    async def generate_track_id(self) -> str:
        """
        Сгенерировать свободный идентификатор вида TRK-XXXXXXXXX.

        При совпадении с существующим треком идентификатор генерируется заново.
        """
        for _ in range(self.MAX_ID_ATTEMPTS):
            suffix = "".join(secrets.choice(_TRACK_ID_ALPHABET) for _ in range(TRACK_ID_LENGTH))
            track_id = f"{TRACK_ID_PREFIX}{suffix}"
            if not await self._store.exists(track_id):
                await log_info(f"Сгенерирован идентификатор трека: {track_id}")
                return track_id

        raise StoreFailureError("Не удалось сгенерировать уникальный идентификатор трека")

    @staticmethod
    def _require_track_id(track_id: str) -> None:
        if not isinstance(track_id, str) or not track_id.strip():
            raise InvalidInputError("Track ID is required")

    # =========================================================================
    # СТАТИСТИКА
    # =========================================================================

    async def get_stats(self) -> TrackStats:
        """Сводная статистика хранилища и соединений."""
        total = await self._store.count_positions()
        active = await self._store.count_positions(is_active=True)
        return TrackStats(
            total_locations=total,
            active_locations=active,
            inactive_locations=total - active,
            total_paths=await self._store.count_trails(),
            active_connections=self._broadcaster.active_connections if self._broadcaster else 0,
            timestamp=self._store.now(),
        )
