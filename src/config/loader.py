# src/config/loader.py
"""
Загрузчик конфигурации проекта.
Единственный источник истины — config/config.json.
Адреса инфраструктуры и секреты переопределяются из переменных окружения.
"""

from __future__ import annotations

import json
import os
from functools import lru_cache
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings


# =============================================================================
# ОПРЕДЕЛЕНИЕ ПУТЕЙ
# =============================================================================

def get_project_root() -> Path:
    """Возвращает корневую директорию проекта."""
    return Path(__file__).parent.parent.parent


def get_config_path() -> Path:
    """Возвращает путь к файлу конфигурации."""
    return get_project_root() / "config" / "config.json"


def load_config_json() -> dict[str, Any]:
    """Загружает config.json и возвращает словарь."""
    config_path = get_config_path()
    if not config_path.exists():
        raise FileNotFoundError(f"Файл конфигурации не найден: {config_path}")

    with open(config_path, "r", encoding="utf-8") as f:
        return json.load(f)


def _env_bool(name: str, default: bool) -> bool:
    """Читает булев флаг из окружения."""
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


# =============================================================================
# PYDANTIC МОДЕЛИ КОНФИГУРАЦИИ
# =============================================================================

class SystemSettings(BaseModel):
    """Системные настройки."""
    PROJECT_NAME: str = "location_tracker"
    VERSION: str = "1.0.0"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"
    ENVIRONMENT: str = "development"


class ServerSettings(BaseModel):
    """Настройки HTTP/WebSocket сервера."""
    HOST: str = "0.0.0.0"
    PORT: int = 5000
    WORKERS: int = 1
    API_PREFIX: str = "/api"
    WS_PATH: str = "/ws"


class LoggingSettings(BaseModel):
    """Настройки логирования."""
    LOG_LEVEL: str = "DEBUG"
    LOG_TO_FILE: bool = False
    LOG_FILE_PATH: str = "logs/app.log"
    LOG_FORMAT: str = "colored"
    LOG_MAX_BYTES: int = 10485760

    @field_validator("LOG_FORMAT")
    @classmethod
    def check_format(cls, v: str) -> str:
        """Допустимы только json и colored."""
        if v not in ("json", "colored"):
            raise ValueError(f"Неизвестный формат логов: {v}")
        return v


class RedisSettings(BaseModel):
    """Настройки Redis."""
    REDIS_HOST: str = "localhost"
    REDIS_PORT: int = 6379
    REDIS_DB: int = 0
    REDIS_PASSWORD: str = ""
    REDIS_NAMESPACE: str = "tracker"
    REDIS_MAX_CONNECTIONS: int = 50

    @field_validator("REDIS_PASSWORD", mode="before")
    @classmethod
    def get_from_env(cls, v: str) -> str:
        """Получает пароль из переменных окружения."""
        if not v:
            return os.getenv("REDIS_PASSWORD", "")
        return v

    @property
    def url(self) -> str:
        """Возвращает URL для подключения к Redis."""
        auth = f":{self.REDIS_PASSWORD}@" if self.REDIS_PASSWORD else ""
        return f"redis://{auth}{self.REDIS_HOST}:{self.REDIS_PORT}/{self.REDIS_DB}"


class StorageSettings(BaseModel):
    """Настройки хранилища позиций и треков."""
    STORAGE_BACKEND: str = "redis"
    # Блокировка трека в Redis: время жизни и ожидание захвата (секунды)
    TRACK_LOCK_TIMEOUT: float = 5.0
    TRACK_LOCK_WAIT: float = 5.0

    @field_validator("STORAGE_BACKEND")
    @classmethod
    def check_backend(cls, v: str) -> str:
        """Проверяет, что хранилище известно."""
        v = v.lower()
        if v not in ("redis", "memory"):
            raise ValueError(f"Неизвестное хранилище: {v}")
        return v


class RetentionSettings(BaseModel):
    """Политика хранения истории перемещений."""
    MAX_TRAIL_POINTS: int = Field(default=1000, ge=1)
    TRAIL_MAX_AGE_HOURS: float = Field(default=24.0, gt=0)
    RECORD_MAX_AGE_HOURS: float = Field(default=24.0, gt=0)
    DEFAULT_TRAIL_HOURS: float = Field(default=2.0, gt=0)
    RECENT_POSITION_SECONDS: int = Field(default=30, ge=0)
    CLEANUP_INTERVAL_SECONDS: int = Field(default=3600, ge=1)


class BroadcastSettings(BaseModel):
    """Настройки рассылки обновлений."""
    GLOBAL_BROADCAST: bool = True
    SEND_TIMEOUT: float = Field(default=5.0, gt=0)


class CorsSettings(BaseModel):
    """Настройки CORS."""
    ALLOWED_ORIGINS: list[str] = Field(
        default_factory=lambda: ["http://localhost:3000", "http://localhost:5173"]
    )
    ALLOWED_ORIGIN_REGEX: str | None = None
    ALLOW_CREDENTIALS: bool = True
    ALLOWED_METHODS: list[str] = Field(
        default_factory=lambda: ["GET", "POST", "PUT", "DELETE", "OPTIONS"]
    )
    ALLOWED_HEADERS: list[str] = Field(
        default_factory=lambda: ["Content-Type", "Authorization"]
    )


# =============================================================================
# ГЛАВНЫЙ КЛАСС НАСТРОЕК
# =============================================================================

class Settings(BaseSettings):
    """
    Главный класс настроек приложения.
    Агрегирует все секции конфигурации.
    """
    system: SystemSettings = Field(default_factory=SystemSettings)
    server: ServerSettings = Field(default_factory=ServerSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)
    redis: RedisSettings = Field(default_factory=RedisSettings)
    storage: StorageSettings = Field(default_factory=StorageSettings)
    retention: RetentionSettings = Field(default_factory=RetentionSettings)
    broadcast: BroadcastSettings = Field(default_factory=BroadcastSettings)
    cors: CorsSettings = Field(default_factory=CorsSettings)

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Settings":
        """
        Создаёт объект Settings из плоского словаря config.json.
        Адреса и секреты переопределяются из переменных окружения.
        """
        # Фильтруем комментарии (ключи, начинающиеся с _comment_)
        filtered_data = {k: v for k, v in data.items() if not k.startswith("_comment_")}

        def pick(section: type[BaseModel], overrides: dict[str, Any] | None = None) -> dict[str, Any]:
            values = {
                name: filtered_data[name]
                for name in section.model_fields
                if name in filtered_data
            }
            values.update(overrides or {})
            return values

        return cls(
            system=SystemSettings(**pick(SystemSettings, {
                "ENVIRONMENT": os.getenv("ENVIRONMENT", filtered_data.get("ENVIRONMENT", "development")),
            })),
            server=ServerSettings(**pick(ServerSettings, {
                "HOST": os.getenv("HOST", filtered_data.get("HOST", "0.0.0.0")),
                "PORT": int(os.getenv("PORT", filtered_data.get("PORT", 5000))),
            })),
            logging=LoggingSettings(**pick(LoggingSettings)),
            redis=RedisSettings(**pick(RedisSettings, {
                "REDIS_HOST": os.getenv("REDIS_HOST", filtered_data.get("REDIS_HOST", "localhost")),
                "REDIS_PORT": int(os.getenv("REDIS_PORT", filtered_data.get("REDIS_PORT", 6379))),
                "REDIS_DB": int(os.getenv("REDIS_DB", filtered_data.get("REDIS_DB", 0))),
                "REDIS_PASSWORD": os.getenv("REDIS_PASSWORD", filtered_data.get("REDIS_PASSWORD", "")),
            })),
            storage=StorageSettings(**pick(StorageSettings, {
                "STORAGE_BACKEND": os.getenv(
                    "STORAGE_BACKEND", filtered_data.get("STORAGE_BACKEND", "redis")
                ),
            })),
            retention=RetentionSettings(**pick(RetentionSettings)),
            broadcast=BroadcastSettings(**pick(BroadcastSettings, {
                "GLOBAL_BROADCAST": _env_bool(
                    "GLOBAL_BROADCAST", filtered_data.get("GLOBAL_BROADCAST", True)
                ),
            })),
            cors=CorsSettings(**pick(CorsSettings)),
        )

    @classmethod
    def from_config_json(cls) -> "Settings":
        """Создаёт объект Settings из config.json."""
        return cls.from_dict(load_config_json())


@lru_cache()
def get_settings() -> Settings:
    """
    Возвращает синглтон настроек приложения.
    Использует кэширование для производительности.
    """
    from dotenv import load_dotenv

    env_path = get_project_root() / ".env"
    if env_path.exists():
        load_dotenv(env_path)

    return Settings.from_config_json()


# Экспорт синглтона для удобного импорта
settings = get_settings()
