# src/common/constants.py
"""
Общие константы и перечисления.
"""

from enum import Enum


class TypeMsg(str, Enum):
    """Типы сообщений для логирования."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class ClientAction(str, Enum):
    """Действия, которые клиент отправляет по WebSocket."""
    SUBSCRIBE = "subscribe"
    UNSUBSCRIBE = "unsubscribe"
    LOCATION_UPDATE = "location_update"
    PING = "ping"


class ServerMessage(str, Enum):
    """Типы сообщений, которые сервер отправляет по WebSocket."""
    CONNECTED = "connected"
    SUBSCRIBED = "subscribed"
    UNSUBSCRIBED = "unsubscribed"
    LOCATION_UPDATED = "location_updated"
    PONG = "pong"
    ERROR = "error"


class StorageBackend(str, Enum):
    """Доступные хранилища позиций и треков."""
    MEMORY = "memory"
    REDIS = "redis"


# Префикс топика подписки на конкретный трек
TRACK_TOPIC_PREFIX = "track:"

# Имя глобального канала (все подключённые клиенты)
GLOBAL_CHANNEL = "global"

# Префикс генерируемых идентификаторов
TRACK_ID_PREFIX = "TRK-"
TRACK_ID_LENGTH = 9


def track_topic(track_id: str) -> str:
    """Возвращает имя топика для трека."""
    return f"{TRACK_TOPIC_PREFIX}{track_id}"
