# src/services/location_tracker/dependencies.py
"""
Зависимости сервиса отслеживания.
Инициализация и управление ресурсами.
"""

from __future__ import annotations

import time
from datetime import timedelta
from typing import Optional

from src.core.tracking.retention import RetentionPolicy
from src.core.tracking.store import LocationStore
from src.infra.redis_client import RedisClient
from src.services.location_tracker.broadcaster import Broadcaster
from src.services.location_tracker.janitor import Janitor
from src.services.location_tracker.relay import RedisEventRelay
from src.services.location_tracker.service import LocationTrackingService


# Глобальные экземпляры ресурсов
_redis: Optional[RedisClient] = None
_store: Optional[LocationStore] = None
_broadcaster: Optional[Broadcaster] = None
_janitor: Optional[Janitor] = None
_relay: Optional[RedisEventRelay] = None

# Сервисы
_tracking_service: Optional[LocationTrackingService] = None

_started_at: float | None = None


async def _create_store(policy: RetentionPolicy) -> LocationStore:
    """Создаёт хранилище по настройке STORAGE_BACKEND."""
    global _redis

    from src.common.constants import StorageBackend
    from src.config import settings

    if settings.storage.STORAGE_BACKEND == StorageBackend.MEMORY.value:
        from src.core.tracking.store import MemoryLocationStore
        return MemoryLocationStore(policy)

    from src.core.tracking.redis_store import RedisLocationStore
    from src.infra.redis_client import init_redis

    _redis = await init_redis()
    return RedisLocationStore(
        _redis,
        policy,
        lock_timeout=settings.storage.TRACK_LOCK_TIMEOUT,
        lock_wait=settings.storage.TRACK_LOCK_WAIT,
    )


async def init_dependencies(store: LocationStore | None = None) -> None:
    """
    Инициализация всех зависимостей сервиса.

    Args:
        store: Готовое хранилище (если None, создаётся по конфигурации)
    """
    global _store, _broadcaster, _janitor, _relay, _tracking_service, _started_at

    from src.common.logger import log_info
    from src.common.constants import TypeMsg
    from src.config import settings

    retention = settings.retention
    _store = store or await _create_store(RetentionPolicy.from_settings(retention))
    await log_info(
        f"Хранилище: {type(_store).__name__}",
        type_msg=TypeMsg.DEBUG,
    )

    _broadcaster = Broadcaster(
        global_broadcast=settings.broadcast.GLOBAL_BROADCAST,
        send_timeout=settings.broadcast.SEND_TIMEOUT,
    )

    # С Redis события идут через Pub/Sub, чтобы их получили клиенты всех воркеров
    if _redis is not None:
        _relay = RedisEventRelay(_redis, _broadcaster)
        await _relay.start()

    _tracking_service = LocationTrackingService(
        _store,
        _broadcaster,
        recent_window=timedelta(seconds=retention.RECENT_POSITION_SECONDS),
        default_trail_window=timedelta(hours=retention.DEFAULT_TRAIL_HOURS),
        publisher=_relay,
    )

    _janitor = Janitor(_store, interval_seconds=retention.CLEANUP_INTERVAL_SECONDS)
    await _janitor.start()

    _started_at = time.monotonic()
    await log_info("Location Tracker инициализирован", type_msg=TypeMsg.INFO)


async def close_dependencies() -> None:
    """Закрытие всех ресурсов."""
    global _redis, _store, _broadcaster, _janitor, _relay, _tracking_service, _started_at

    from src.common.logger import log_info
    from src.common.constants import TypeMsg

    if _janitor:
        await _janitor.stop()

    if _relay:
        await _relay.stop()

    if _broadcaster:
        await _broadcaster.close_all()

    if _store:
        await _store.close()

    if _redis:
        from src.infra.redis_client import close_redis
        await close_redis()
        await log_info("Redis отключён", type_msg=TypeMsg.DEBUG)

    _redis = _store = _broadcaster = _janitor = _relay = _tracking_service = None
    _started_at = None


def get_uptime() -> float:
    """Сколько секунд сервис работает."""
    if _started_at is None:
        return 0.0
    return time.monotonic() - _started_at


async def get_store() -> LocationStore:
    """Получение экземпляра хранилища."""
    if _store is None:
        raise RuntimeError("LocationStore не инициализирован")
    return _store


async def get_broadcaster() -> Broadcaster:
    """Получение экземпляра Broadcaster."""
    if _broadcaster is None:
        raise RuntimeError("Broadcaster не инициализирован")
    return _broadcaster


async def get_janitor() -> Janitor:
    """Получение экземпляра Janitor."""
    if _janitor is None:
        raise RuntimeError("Janitor не инициализирован")
    return _janitor


async def get_tracking_service() -> LocationTrackingService:
    """Получение экземпляра LocationTrackingService."""
    if _tracking_service is None:
        raise RuntimeError("LocationTrackingService не инициализирован")
    return _tracking_service
