# tests/conftest.py
"""
Общие фикстуры и настройки для тестов.
"""

from __future__ import annotations

import asyncio
import json
import os
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest

# Устанавливаем переменные окружения перед импортом модулей
os.environ["STORAGE_BACKEND"] = "memory"
os.environ.setdefault("REDIS_PASSWORD", "")
os.environ.setdefault("ENVIRONMENT", "test")
os.environ["GLOBAL_BROADCAST"] = "true"


# =============================================================================
# ФИКСТУРЫ КОНФИГУРАЦИИ
# =============================================================================

@pytest.fixture(scope="session")
def project_root() -> Path:
    """Корневая директория проекта."""
    return Path(__file__).parent.parent


@pytest.fixture(scope="session")
def config_path(project_root: Path) -> Path:
    """Путь к файлу конфигурации."""
    return project_root / "config" / "config.json"


@pytest.fixture
def mock_config() -> dict[str, Any]:
    """Мок конфигурации для тестов."""
    return {
        "_comment_system": "Системные настройки",
        "PROJECT_NAME": "location_tracker_test",
        "VERSION": "1.0.0-test",
        "DEBUG": True,
        "LOG_LEVEL": "DEBUG",
        "ENVIRONMENT": "test",
        "HOST": "127.0.0.1",
        "PORT": 5050,
        "API_PREFIX": "/api",
        "WS_PATH": "/ws",
        "LOG_TO_FILE": False,
        "LOG_FILE_PATH": "logs/test.log",
        "LOG_FORMAT": "colored",
        "REDIS_HOST": "localhost",
        "REDIS_PORT": 6379,
        "REDIS_DB": 1,
        "REDIS_PASSWORD": "",
        "REDIS_NAMESPACE": "tracker_test",
        "REDIS_MAX_CONNECTIONS": 10,
        "STORAGE_BACKEND": "memory",
        "TRACK_LOCK_TIMEOUT": 2.0,
        "TRACK_LOCK_WAIT": 1.0,
        "MAX_TRAIL_POINTS": 500,
        "TRAIL_MAX_AGE_HOURS": 12,
        "RECORD_MAX_AGE_HOURS": 48,
        "DEFAULT_TRAIL_HOURS": 1,
        "RECENT_POSITION_SECONDS": 10,
        "CLEANUP_INTERVAL_SECONDS": 60,
        "GLOBAL_BROADCAST": False,
        "SEND_TIMEOUT": 1.5,
        "ALLOWED_ORIGINS": ["http://localhost:3000"],
        "ALLOWED_ORIGIN_REGEX": "https://.*\\.vercel\\.app",
    }


@pytest.fixture
def temp_config_file(tmp_path: Path, mock_config: dict[str, Any]) -> Path:
    """Создаёт временный файл конфигурации."""
    config_file = tmp_path / "config.json"
    config_file.write_text(json.dumps(mock_config, ensure_ascii=False, indent=2))
    return config_file


# =============================================================================
# ВРЕМЯ
# =============================================================================

class FakeClock:
    """Управляемые часы для хранилища и уборщика."""

    def __init__(self, start: datetime | None = None) -> None:
        self.current = start or datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.current

    def advance(self, **kwargs: float) -> datetime:
        self.current += timedelta(**kwargs)
        return self.current


@pytest.fixture
def clock() -> FakeClock:
    """Часы, которые двигаются только вручную."""
    return FakeClock()


# =============================================================================
# ФИКСТУРЫ ХРАНИЛИЩА И СЕРВИСОВ
# =============================================================================

@pytest.fixture
def memory_store(clock: FakeClock):
    """Хранилище в памяти с управляемыми часами."""
    from src.core.tracking.store import MemoryLocationStore
    return MemoryLocationStore(clock=clock)


@pytest.fixture
def broadcaster():
    """Broadcaster с глобальным каналом и коротким таймаутом."""
    from src.services.location_tracker.broadcaster import Broadcaster
    return Broadcaster(global_broadcast=True, send_timeout=0.2)


@pytest.fixture
def tracking_service(memory_store, broadcaster):
    """Сервис отслеживания поверх хранилища в памяти."""
    from src.services.location_tracker.service import LocationTrackingService
    return LocationTrackingService(memory_store, broadcaster)


# =============================================================================
# WEBSOCKET
# =============================================================================

class FakeWebSocket:
    """Заглушка WebSocket: копит отправленные сообщения."""

    def __init__(self, fail: bool = False, delay: float = 0.0) -> None:
        self.sent: list[dict[str, Any]] = []
        self.accepted = False
        self.closed = False
        self.fail = fail
        self.delay = delay

    async def accept(self) -> None:
        self.accepted = True

    async def send_json(self, message: dict[str, Any]) -> None:
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail:
            raise RuntimeError("connection lost")
        self.sent.append(message)

    async def close(self, code: int = 1000) -> None:
        self.closed = True

    def of_type(self, message_type: str) -> list[dict[str, Any]]:
        return [m for m in self.sent if m.get("type") == message_type]


@pytest.fixture
def make_websocket():
    """Фабрика заглушек WebSocket."""
    return FakeWebSocket


# =============================================================================
# ФИКСТУРЫ ИНФРАСТРУКТУРЫ (МОКИ)
# =============================================================================

@pytest.fixture
def mock_pipeline() -> MagicMock:
    """Мок пайплайна Redis: команды копятся синхронно, execute асинхронный."""
    pipe = MagicMock()
    pipe.execute = AsyncMock(return_value=[1, 1, 1, 1, 1, 1])
    return pipe


@pytest.fixture
def mock_lock() -> MagicMock:
    """Мок блокировки Redis."""
    lock = MagicMock()
    lock.acquire = AsyncMock(return_value=True)
    lock.release = AsyncMock(return_value=None)
    return lock


@pytest.fixture
def mock_pubsub() -> MagicMock:
    """Мок Pub/Sub: сообщения берутся из очереди inbox."""
    pubsub = MagicMock()
    pubsub.inbox = []

    async def get_message(ignore_subscribe_messages: bool = False, timeout: float = 0.0):
        await asyncio.sleep(0.01)
        return pubsub.inbox.pop(0) if pubsub.inbox else None

    pubsub.get_message = AsyncMock(side_effect=get_message)
    pubsub.subscribe = AsyncMock()
    pubsub.unsubscribe = AsyncMock()
    pubsub.aclose = AsyncMock()
    return pubsub


@pytest.fixture
def mock_redis(mock_pipeline: MagicMock, mock_lock: MagicMock, mock_pubsub: MagicMock) -> MagicMock:
    """Мок RedisClient."""
    redis = MagicMock()
    redis.is_connected = True
    redis.make_key = MagicMock(side_effect=lambda key: f"tracker:{key}")
    redis.pipeline = MagicMock(return_value=mock_pipeline)
    redis.lock = MagicMock(return_value=mock_lock)
    redis.get = AsyncMock(return_value=None)
    redis.exists = AsyncMock(return_value=False)
    redis.get_model = AsyncMock(return_value=None)
    redis.zscore = AsyncMock(return_value=None)
    redis.zrangebyscore = AsyncMock(return_value=[])
    redis.zrem = AsyncMock(return_value=1)
    redis.zcard = AsyncMock(return_value=0)
    redis.scard = AsyncMock(return_value=0)
    redis.health_check = AsyncMock(return_value=True)
    redis.publish = AsyncMock(return_value=1)
    redis.pubsub = MagicMock(return_value=mock_pubsub)
    return redis
