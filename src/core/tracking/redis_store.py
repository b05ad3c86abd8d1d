# src/core/tracking/redis_store.py
"""
Хранилище позиций и треков в Redis.

Ключи (внутри namespace):
- location:{track_id} — JSON PositionRecord
- trail:{track_id} — JSON TrailRecord
- locations:updated — ZSET, score = timestamp позиции
- locations:active — SET активных треков
- trails:updated — ZSET, score = last_updated трека
- trails:oldest — ZSET, score = метка самой старой точки трека
- lock:track:{track_id} — блокировка трека
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from datetime import datetime
from typing import AsyncIterator

from redis.asyncio.client import Pipeline
from redis.exceptions import LockError, RedisError

from src.common.logger import log_error, log_warning
from src.core.tracking.exceptions import StoreFailureError
from src.core.tracking.retention import RetentionPolicy
from src.core.tracking.store import Clock, LocationStore, utc_now
from src.infra.redis_client import RedisClient
from src.shared.models.location_dto import (
    CleanupResult,
    PositionRecord,
    TrailPoint,
    TrailRecord,
)


class RedisLocationStore(LocationStore):
    """
    Хранилище на Redis.

    Запись в один трек сериализуется блокировкой Redis, поэтому
    несколько процессов могут работать с одним хранилищем.
    """

    POSITION_KEY = "location:{track_id}"
    TRAIL_KEY = "trail:{track_id}"
    LOCK_KEY = "lock:track:{track_id}"
    POSITIONS_INDEX = "locations:updated"
    ACTIVE_SET = "locations:active"
    TRAILS_INDEX = "trails:updated"
    TRAILS_OLDEST = "trails:oldest"

    def __init__(
        self,
        redis: RedisClient,
        policy: RetentionPolicy | None = None,
        clock: Clock = utc_now,
        lock_timeout: float = 5.0,
        lock_wait: float = 5.0,
    ) -> None:
        super().__init__(policy, clock)
        self._redis = redis
        self._lock_timeout = lock_timeout
        self._lock_wait = lock_wait

    # =========================================================================
    # ВСПОМОГАТЕЛЬНОЕ
    # =========================================================================

    def _position_key(self, track_id: str) -> str:
        return self.POSITION_KEY.format(track_id=track_id)

    def _trail_key(self, track_id: str) -> str:
        return self.TRAIL_KEY.format(track_id=track_id)

    @asynccontextmanager
    async def _guard(self, operation: str) -> AsyncIterator[None]:
        """Переводит ошибки Redis в StoreFailureError."""
        try:
            yield
        except RedisError as e:
            await log_error(
                f"Ошибка Redis в операции {operation}: {e}",
                extra={"operation": operation},
            )
            raise StoreFailureError(str(e)) from e

    @asynccontextmanager
    async def _track_lock(self, track_id: str) -> AsyncIterator[None]:
        """Блокировка трека с ограниченным ожиданием."""
        lock = self._redis.lock(
            self.LOCK_KEY.format(track_id=track_id),
            timeout=self._lock_timeout,
            blocking_timeout=self._lock_wait,
        )
        if not await lock.acquire():
            raise StoreFailureError(f"Не удалось захватить блокировку трека {track_id}")
        try:
            yield
        finally:
            try:
                await lock.release()
            except LockError:
                # Блокировка истекла раньше, чем закончилась операция
                await log_warning(
                    f"Блокировка трека {track_id} истекла до освобождения",
                    extra={"track_id": track_id},
                )

    def _queue_position(self, pipe: Pipeline, record: PositionRecord) -> None:
        """Позиция и её индексы (в пайплайн, под блокировкой трека)."""
        track_id = record.track_id
        pipe.set(self._redis.make_key(self._position_key(track_id)), record.model_dump_json())
        pipe.zadd(
            self._redis.make_key(self.POSITIONS_INDEX),
            {track_id: record.timestamp.timestamp()},
        )
        if record.is_active:
            pipe.sadd(self._redis.make_key(self.ACTIVE_SET), track_id)
        else:
            pipe.srem(self._redis.make_key(self.ACTIVE_SET), track_id)

    def _queue_trail(self, pipe: Pipeline, trail: TrailRecord) -> None:
        """Трек и его индексы (в пайплайн, под блокировкой трека)."""
        pipe.set(self._redis.make_key(self._trail_key(trail.track_id)), trail.model_dump_json())
        pipe.zadd(
            self._redis.make_key(self.TRAILS_INDEX),
            {trail.track_id: trail.last_updated.timestamp()},
        )
        if trail.points:
            pipe.zadd(
                self._redis.make_key(self.TRAILS_OLDEST),
                {trail.track_id: trail.points[0].timestamp.timestamp()},
            )
        else:
            pipe.zrem(self._redis.make_key(self.TRAILS_OLDEST), trail.track_id)

    # =========================================================================
    # ОБНОВЛЕНИЕ
    # =========================================================================

    async def record_update(
        self,
        track_id: str,
        lat: float,
        lng: float,
        speed: float = 0.0,
        accuracy: float = 0.0,
    ) -> PositionRecord:
        async with self._guard("record_update"), self._track_lock(track_id):
            record = self._new_position(track_id, lat, lng, speed, accuracy)
            current = await self._redis.get_model(self._trail_key(track_id), TrailRecord)
            trail = self._extend_trail(
                track_id, current, TrailPoint(lat=lat, lng=lng, timestamp=record.timestamp)
            )

            pipe = self._redis.pipeline()
            self._queue_position(pipe, record)
            self._queue_trail(pipe, trail)
            await pipe.execute()
        return record

    # =========================================================================
    # ПОЗИЦИИ
    # =========================================================================

    async def upsert_position(self, record: PositionRecord) -> PositionRecord:
        async with self._guard("upsert_position"), self._track_lock(record.track_id):
            pipe = self._redis.pipeline()
            self._queue_position(pipe, record)
            await pipe.execute()
        return record

    async def get_position(self, track_id: str) -> PositionRecord | None:
        async with self._guard("get_position"):
            return await self._redis.get_model(self._position_key(track_id), PositionRecord)

    async def set_active(self, track_id: str, is_active: bool) -> PositionRecord | None:
        async with self._guard("set_active"), self._track_lock(track_id):
            record = await self._redis.get_model(self._position_key(track_id), PositionRecord)
            if record is None:
                return None
            record = record.model_copy(update={"is_active": is_active})

            pipe = self._redis.pipeline()
            self._queue_position(pipe, record)
            await pipe.execute()
        return record

    # =========================================================================
    # ТРЕКИ
    # =========================================================================

    async def append_trail_point(self, track_id: str, point: TrailPoint) -> TrailRecord:
        async with self._guard("append_trail_point"), self._track_lock(track_id):
            current = await self._redis.get_model(self._trail_key(track_id), TrailRecord)
            trail = self._extend_trail(track_id, current, point)
            await self._save_trail(trail)
        return trail

    async def _save_trail(self, trail: TrailRecord) -> None:
        pipe = self._redis.pipeline()
        self._queue_trail(pipe, trail)
        await pipe.execute()

    async def get_trail_record(self, track_id: str) -> TrailRecord | None:
        async with self._guard("get_trail"):
            return await self._redis.get_model(self._trail_key(track_id), TrailRecord)

    # =========================================================================
    # УДАЛЕНИЕ
    # =========================================================================

    async def delete_stale_before(
        self,
        cutoff_position: datetime,
        cutoff_trail: datetime,
    ) -> CleanupResult:
        result = CleanupResult()

        async with self._guard("delete_stale_before"):
            position_cutoff = cutoff_position.timestamp()
            candidates = await self._redis.zrangebyscore(
                self.POSITIONS_INDEX, "-inf", f"({position_cutoff}"
            )
            for track_id in candidates:
                async with self._track_lock(track_id):
                    # Перепроверяем: запись могла обновиться во время прохода
                    score = await self._redis.zscore(self.POSITIONS_INDEX, track_id)
                    if score is None or score >= position_cutoff:
                        continue
                    pipe = self._redis.pipeline()
                    pipe.delete(self._redis.make_key(self._position_key(track_id)))
                    pipe.zrem(self._redis.make_key(self.POSITIONS_INDEX), track_id)
                    pipe.srem(self._redis.make_key(self.ACTIVE_SET), track_id)
                    deleted, _, _ = await pipe.execute()
                    result.deleted_locations += int(deleted > 0)

            trail_cutoff = cutoff_trail.timestamp()
            candidates = await self._redis.zrangebyscore(
                self.TRAILS_INDEX, "-inf", f"({trail_cutoff}"
            )
            for track_id in candidates:
                async with self._track_lock(track_id):
                    score = await self._redis.zscore(self.TRAILS_INDEX, track_id)
                    if score is None or score >= trail_cutoff:
                        continue
                    pipe = self._redis.pipeline()
                    pipe.delete(self._redis.make_key(self._trail_key(track_id)))
                    pipe.zrem(self._redis.make_key(self.TRAILS_INDEX), track_id)
                    pipe.zrem(self._redis.make_key(self.TRAILS_OLDEST), track_id)
                    deleted, _, _ = await pipe.execute()
                    result.deleted_paths += int(deleted > 0)

        return result

    async def trim_expired_points(self) -> int:
        removed = 0
        async with self._guard("trim_expired_points"):
            cutoff = self._policy.point_cutoff(self.now()).timestamp()
            candidates = await self._redis.zrangebyscore(self.TRAILS_OLDEST, "-inf", cutoff)
            for track_id in candidates:
                async with self._track_lock(track_id):
                    trail = await self._redis.get_model(self._trail_key(track_id), TrailRecord)
                    if trail is None:
                        await self._redis.zrem(self.TRAILS_OLDEST, track_id)
                        continue
                    kept = self._policy.trim_points(trail.points, self.now())
                    removed += len(trail.points) - len(kept)
                    await self._save_trail(trail.model_copy(update={"points": kept}))
        return removed

    async def delete_track(self, track_id: str) -> CleanupResult:
        async with self._guard("delete_track"), self._track_lock(track_id):
            pipe = self._redis.pipeline()
            pipe.delete(self._redis.make_key(self._position_key(track_id)))
            pipe.delete(self._redis.make_key(self._trail_key(track_id)))
            pipe.zrem(self._redis.make_key(self.POSITIONS_INDEX), track_id)
            pipe.srem(self._redis.make_key(self.ACTIVE_SET), track_id)
            pipe.zrem(self._redis.make_key(self.TRAILS_INDEX), track_id)
            pipe.zrem(self._redis.make_key(self.TRAILS_OLDEST), track_id)
            deleted_position, deleted_trail, *_ = await pipe.execute()
        return CleanupResult(
            deleted_locations=int(deleted_position > 0),
            deleted_paths=int(deleted_trail > 0),
        )

    # =========================================================================
    # СТАТИСТИКА
    # =========================================================================

    async def count_positions(self, is_active: bool | None = None) -> int:
        async with self._guard("count_positions"):
            if is_active is None:
                return await self._redis.zcard(self.POSITIONS_INDEX)
            active = await self._redis.scard(self.ACTIVE_SET)
            if is_active:
                return active
            return await self._redis.zcard(self.POSITIONS_INDEX) - active

    async def count_trails(self) -> int:
        async with self._guard("count_trails"):
            return await self._redis.zcard(self.TRAILS_INDEX)

    async def exists(self, track_id: str) -> bool:
        async with self._guard("exists"):
            return await self._redis.exists(self._position_key(track_id))

    async def ping(self) -> bool:
        if not self._redis.is_connected:
            return False
        return await self._redis.health_check()
