# src/shared/models/common.py
"""
Общие модели для всех сервисов.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Базовая модель с camelCase алиасами."""

    class Config:
        alias_generator = to_camel
        populate_by_name = True
        from_attributes = True

    def to_wire(self) -> dict[str, Any]:
        """Словарь для отправки клиенту (JSON-совместимый, camelCase)."""
        return self.model_dump(mode="json", by_alias=True)


class ErrorResponse(CamelModel):
    """Стандартный ответ с ошибкой."""

    error: str
    error_code: str | None = None
    path: str | None = None
    method: str | None = None

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class HealthStatus(BaseModel):
    """Статус здоровья сервиса."""

    service: str
    status: str = "healthy"  # healthy, degraded, unhealthy
    version: str | None = None
    uptime_seconds: float | None = None
    dependencies: dict[str, str] = Field(default_factory=dict)
    # dependencies: {"store": "healthy"}
    timestamp: datetime | None = None
