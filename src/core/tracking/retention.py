# src/core/tracking/retention.py
"""
Политика хранения истории перемещений.

Чистые функции от текущего времени и сохранённых меток времени.
Используется и при записи точки (ленивая обрезка), и уборщиком (активная).
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Iterable, TYPE_CHECKING

from src.shared.models.location_dto import TrailPoint

if TYPE_CHECKING:
    from src.config.loader import RetentionSettings


@dataclass(frozen=True)
class RetentionPolicy:
    """
    Два независимых ограничения трека: по количеству точек и по возрасту.
    Действует более строгое из них.

    Записи (позиция и трек целиком), не обновлявшиеся дольше
    record_max_age, удаляются полностью.
    """

    max_points: int = 1000
    point_max_age: timedelta = timedelta(hours=24)
    record_max_age: timedelta = timedelta(hours=24)

    def __post_init__(self) -> None:
        if self.max_points < 1:
            raise ValueError("max_points должен быть положительным")

    @classmethod
    def from_settings(cls, retention: "RetentionSettings") -> "RetentionPolicy":
        """Создаёт политику из секции конфигурации."""
        return cls(
            max_points=retention.MAX_TRAIL_POINTS,
            point_max_age=timedelta(hours=retention.TRAIL_MAX_AGE_HOURS),
            record_max_age=timedelta(hours=retention.RECORD_MAX_AGE_HOURS),
        )

    def point_cutoff(self, now: datetime) -> datetime:
        """Точки не новее этой метки считаются устаревшими."""
        return now - self.point_max_age

    def record_cutoff(self, now: datetime) -> datetime:
        """Записи, обновлённые раньше этой метки, подлежат удалению."""
        return now - self.record_max_age

    def trim_points(self, points: Iterable[TrailPoint], now: datetime) -> list[TrailPoint]:
        """
        Оставляет не более max_points самых свежих точек моложе point_max_age.

        Порядок точек сохраняется (от старых к новым).
        """
        cutoff = self.point_cutoff(now)
        fresh = [point for point in points if point.timestamp > cutoff]
        if len(fresh) > self.max_points:
            fresh = fresh[-self.max_points:]
        return fresh


def points_since(
    points: Iterable[TrailPoint],
    since: timedelta | None,
    now: datetime,
) -> list[TrailPoint]:
    """Точки с меткой времени строго позже now - since (None — все точки)."""
    if since is None:
        return list(points)
    threshold = now - since
    return [point for point in points if point.timestamp > threshold]
