# src/core/tracking/store.py
"""
Хранилище позиций и треков.

LocationStore — общий интерфейс, MemoryLocationStore — реализация в памяти
процесса. Операции над одним трек-идентификатором выполняются строго
последовательно, над разными — независимо.
"""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from bisect import insort
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone
from typing import AsyncIterator, Callable

from src.core.tracking.retention import RetentionPolicy, points_since
from src.shared.models.location_dto import (
    CleanupResult,
    PositionRecord,
    TrailPoint,
    TrailRecord,
)


Clock = Callable[[], datetime]


def _point_time(point: TrailPoint) -> datetime:
    return point.timestamp


def utc_now() -> datetime:
    """Текущее время в UTC."""
    return datetime.now(timezone.utc)


class KeyedLock:
    """
    Набор asyncio-блокировок по ключу.

    Блокировка создаётся при первом обращении и удаляется,
    когда её больше никто не ждёт.
    """

    def __init__(self) -> None:
        self._locks: dict[str, asyncio.Lock] = {}
        self._waiters: dict[str, int] = {}

    @asynccontextmanager
    async def acquire(self, key: str) -> AsyncIterator[None]:
        """Захватить блокировку ключа."""
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._waiters[key] = self._waiters.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._waiters[key] -= 1
            if self._waiters[key] == 0:
                del self._waiters[key]
                del self._locks[key]

    def __len__(self) -> int:
        return len(self._locks)


class LocationStore(ABC):
    """Интерфейс хранилища позиций и треков."""

    DEFAULT_TRAIL_WINDOW = timedelta(hours=2)

    def __init__(self, policy: RetentionPolicy | None = None, clock: Clock = utc_now) -> None:
        self._policy = policy or RetentionPolicy()
        self._clock = clock

    @property
    def policy(self) -> RetentionPolicy:
        """Политика хранения."""
        return self._policy

    def now(self) -> datetime:
        """Текущее время хранилища."""
        return self._clock()

    def _new_position(
        self,
        track_id: str,
        lat: float,
        lng: float,
        speed: float,
        accuracy: float,
    ) -> PositionRecord:
        return PositionRecord(
            track_id=track_id,
            lat=lat,
            lng=lng,
            speed=speed,
            accuracy=accuracy,
            timestamp=self.now(),
            is_active=True,
        )

    def _extend_trail(
        self,
        track_id: str,
        current: TrailRecord | None,
        point: TrailPoint,
    ) -> TrailRecord:
        """
        Трек с добавленной точкой, обрезанный политикой хранения.

        Точка встаёт на своё место по времени: точки с одинаковой
        меткой остаются в порядке поступления.
        """
        points = list(current.points) if current else []
        insort(points, point, key=_point_time)
        last_updated = max(point.timestamp, current.last_updated) if current else point.timestamp
        return TrailRecord(
            track_id=track_id,
            points=self._policy.trim_points(points, self.now()),
            last_updated=last_updated,
        )

    # === ОБНОВЛЕНИЕ ===

    @abstractmethod
    async def record_update(
        self,
        track_id: str,
        lat: float,
        lng: float,
        speed: float = 0.0,
        accuracy: float = 0.0,
    ) -> PositionRecord:
        """
        Принять координаты под блокировкой трека.

        Метка времени ставится уже под блокировкой, затем записываются
        позиция (isActive=True) и точка трека. Возвращает сохранённую позицию.
        """

    # === ПОЗИЦИИ ===

    @abstractmethod
    async def upsert_position(self, record: PositionRecord) -> PositionRecord:
        """Атомарно заменить или создать позицию по track_id."""

    @abstractmethod
    async def get_position(self, track_id: str) -> PositionRecord | None:
        """Последняя позиция трека."""

    @abstractmethod
    async def set_active(self, track_id: str, is_active: bool) -> PositionRecord | None:
        """Изменить признак активности. None — трек не найден."""

    # === ТРЕКИ ===

    @abstractmethod
    async def append_trail_point(self, track_id: str, point: TrailPoint) -> TrailRecord:
        """
        Атомарно: создать трек при отсутствии, вставить точку по времени,
        обрезать по количеству и возрасту, обновить last_updated.
        """

    @abstractmethod
    async def get_trail_record(self, track_id: str) -> TrailRecord | None:
        """Трек целиком."""

    async def get_trail(
        self,
        track_id: str,
        since: timedelta | None = DEFAULT_TRAIL_WINDOW,
    ) -> list[TrailPoint]:
        """
        Точки трека с меткой времени позже now - since.

        since=None — все сохранённые точки. Неизвестный трек — пустой список.
        """
        trail = await self.get_trail_record(track_id)
        if trail is None:
            return []
        return points_since(trail.points, since, self.now())

    # === УДАЛЕНИЕ ===

    @abstractmethod
    async def delete_stale_before(
        self,
        cutoff_position: datetime,
        cutoff_trail: datetime,
    ) -> CleanupResult:
        """
        Удалить позиции с timestamp < cutoff_position
        и треки с last_updated < cutoff_trail.

        Запись, обновлённая во время прохода, остаётся.
        """

    @abstractmethod
    async def trim_expired_points(self) -> int:
        """Удалить устаревшие точки из оставшихся треков. Возвращает число точек."""

    @abstractmethod
    async def delete_track(self, track_id: str) -> CleanupResult:
        """Удалить позицию и трек одного идентификатора."""

    # === СТАТИСТИКА ===

    @abstractmethod
    async def count_positions(self, is_active: bool | None = None) -> int:
        """Количество позиций (всех, активных или неактивных)."""

    @abstractmethod
    async def count_trails(self) -> int:
        """Количество треков."""

    @abstractmethod
    async def exists(self, track_id: str) -> bool:
        """Есть ли позиция с таким идентификатором."""

    @abstractmethod
    async def ping(self) -> bool:
        """Доступно ли хранилище."""

    async def close(self) -> None:
        """Освободить ресурсы."""


class MemoryLocationStore(LocationStore):
    """Хранилище в памяти процесса."""

    def __init__(self, policy: RetentionPolicy | None = None, clock: Clock = utc_now) -> None:
        super().__init__(policy, clock)
        self._positions: dict[str, PositionRecord] = {}
        self._trails: dict[str, TrailRecord] = {}
        self._locks = KeyedLock()

    async def record_update(
        self,
        track_id: str,
        lat: float,
        lng: float,
        speed: float = 0.0,
        accuracy: float = 0.0,
    ) -> PositionRecord:
        async with self._locks.acquire(track_id):
            record = self._new_position(track_id, lat, lng, speed, accuracy)
            self._put_position(record)
            self._put_trail_point(track_id, TrailPoint(lat=lat, lng=lng, timestamp=record.timestamp))
        return record.model_copy()

    def _put_position(self, record: PositionRecord) -> None:
        self._positions[record.track_id] = record.model_copy()

    def _put_trail_point(self, track_id: str, point: TrailPoint) -> TrailRecord:
        trail = self._extend_trail(track_id, self._trails.get(track_id), point)
        self._trails[track_id] = trail
        return trail

    async def upsert_position(self, record: PositionRecord) -> PositionRecord:
        async with self._locks.acquire(record.track_id):
            self._put_position(record)
        return record

    async def get_position(self, track_id: str) -> PositionRecord | None:
        record = self._positions.get(track_id)
        return record.model_copy() if record else None

    async def set_active(self, track_id: str, is_active: bool) -> PositionRecord | None:
        async with self._locks.acquire(track_id):
            record = self._positions.get(track_id)
            if record is None:
                return None
            record = record.model_copy(update={"is_active": is_active})
            self._positions[track_id] = record
        return record.model_copy()

    async def append_trail_point(self, track_id: str, point: TrailPoint) -> TrailRecord:
        async with self._locks.acquire(track_id):
            trail = self._put_trail_point(track_id, point)
        return trail.model_copy(deep=True)

    async def get_trail_record(self, track_id: str) -> TrailRecord | None:
        trail = self._trails.get(track_id)
        return trail.model_copy(deep=True) if trail else None

    async def delete_stale_before(
        self,
        cutoff_position: datetime,
        cutoff_trail: datetime,
    ) -> CleanupResult:
        result = CleanupResult()

        stale_positions = [
            track_id for track_id, record in list(self._positions.items())
            if record.timestamp < cutoff_position
        ]
        for track_id in stale_positions:
            async with self._locks.acquire(track_id):
                record = self._positions.get(track_id)
                if record is not None and record.timestamp < cutoff_position:
                    del self._positions[track_id]
                    result.deleted_locations += 1

        stale_trails = [
            track_id for track_id, trail in list(self._trails.items())
            if trail.last_updated < cutoff_trail
        ]
        for track_id in stale_trails:
            async with self._locks.acquire(track_id):
                trail = self._trails.get(track_id)
                if trail is not None and trail.last_updated < cutoff_trail:
                    del self._trails[track_id]
                    result.deleted_paths += 1

        return result

    async def trim_expired_points(self) -> int:
        cutoff = self._policy.point_cutoff(self.now())
        removed = 0
        candidates = [
            track_id for track_id, trail in list(self._trails.items())
            if trail.points and trail.points[0].timestamp <= cutoff
        ]
        for track_id in candidates:
            async with self._locks.acquire(track_id):
                trail = self._trails.get(track_id)
                if trail is None:
                    continue
                kept = self._policy.trim_points(trail.points, self.now())
                removed += len(trail.points) - len(kept)
                self._trails[track_id] = trail.model_copy(update={"points": kept})
        return removed

    async def delete_track(self, track_id: str) -> CleanupResult:
        async with self._locks.acquire(track_id):
            return CleanupResult(
                deleted_locations=int(self._positions.pop(track_id, None) is not None),
                deleted_paths=int(self._trails.pop(track_id, None) is not None),
            )

    async def count_positions(self, is_active: bool | None = None) -> int:
        if is_active is None:
            return len(self._positions)
        return sum(1 for record in self._positions.values() if record.is_active is is_active)

    async def count_trails(self) -> int:
        return len(self._trails)

    async def exists(self, track_id: str) -> bool:
        return track_id in self._positions

    async def ping(self) -> bool:
        return True
