# src/shared/models/location_dto.py
"""
DTO геолокации: текущая позиция, трек, событие обновления.

Во внешнем JSON поля называются в camelCase (trackId, isActive),
внутри кода — в snake_case.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import Field

from src.shared.models.common import CamelModel


class TrailPoint(CamelModel):
    """Точка трека."""
    lat: float
    lng: float
    timestamp: datetime


class PositionRecord(CamelModel):
    """Последняя известная позиция трека."""
    track_id: str
    lat: float
    lng: float
    speed: float = 0.0
    accuracy: float = 0.0
    timestamp: datetime
    is_active: bool = True


class PositionView(PositionRecord):
    """Позиция с признаком свежести (для GET /location/{trackId})."""
    is_recent: bool = False


class TrailRecord(CamelModel):
    """История перемещений трека (от старых точек к новым)."""
    track_id: str
    points: list[TrailPoint] = Field(default_factory=list)
    last_updated: datetime


class LocationUpdateRequest(CamelModel):
    """
    Входящее обновление геолокации.

    Поля не типизированы строго: проверку делает конвейер обновлений,
    одинаково для HTTP и WebSocket.
    """
    track_id: Any = None
    lat: Any = None
    lng: Any = None
    speed: Any = None
    accuracy: Any = None


class LocationUpdatedEvent(CamelModel):
    """Событие, рассылаемое подписчикам после принятого обновления."""
    track_id: str
    lat: float
    lng: float
    speed: float
    accuracy: float
    timestamp: datetime

    @classmethod
    def from_record(cls, record: PositionRecord) -> "LocationUpdatedEvent":
        """Собирает событие из сохранённой позиции."""
        return cls(
            track_id=record.track_id,
            lat=record.lat,
            lng=record.lng,
            speed=record.speed,
            accuracy=record.accuracy,
            timestamp=record.timestamp,
        )


class CleanupResult(CamelModel):
    """Результат удаления устаревших записей."""
    deleted_locations: int = 0
    deleted_paths: int = 0
    trimmed_points: int = 0

    @property
    def is_empty(self) -> bool:
        """Ничего не удалено."""
        return not (self.deleted_locations or self.deleted_paths or self.trimmed_points)


class TrackStats(CamelModel):
    """Сводная статистика хранилища."""
    total_locations: int
    active_locations: int
    inactive_locations: int
    total_paths: int
    active_connections: int = 0
    timestamp: datetime
