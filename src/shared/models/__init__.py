# src/shared/models/__init__.py
"""
Общие DTO и Pydantic-модели.
"""

from src.shared.models.common import (
    CamelModel,
    ErrorResponse,
    HealthStatus,
)
from src.shared.models.location_dto import (
    CleanupResult,
    LocationUpdatedEvent,
    LocationUpdateRequest,
    PositionRecord,
    PositionView,
    TrackStats,
    TrailPoint,
    TrailRecord,
)

__all__ = [
    # Common
    "CamelModel",
    "ErrorResponse",
    "HealthStatus",
    # Location
    "CleanupResult",
    "LocationUpdatedEvent",
    "LocationUpdateRequest",
    "PositionRecord",
    "PositionView",
    "TrackStats",
    "TrailPoint",
    "TrailRecord",
]
