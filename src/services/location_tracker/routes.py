# src/services/location_tracker/routes.py
"""
HTTP API сервиса отслеживания (монтируется с префиксом /api).
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from fastapi import APIRouter, Depends, Query

from src.config import settings
from src.services.location_tracker.dependencies import (
    get_janitor,
    get_store,
    get_tracking_service,
    get_uptime,
)
from src.services.location_tracker.janitor import Janitor
from src.services.location_tracker.service import LocationTrackingService
from src.core.tracking.store import LocationStore
from src.shared.models.common import HealthStatus
from src.shared.models.location_dto import (
    LocationUpdateRequest,
    PositionView,
    TrackStats,
)

router = APIRouter(tags=["Tracking"])


# =============================================================================
# HEALTH CHECK
# =============================================================================

@router.get("/health", response_model=HealthStatus, tags=["Health"])
async def health_check(store: LocationStore = Depends(get_store)) -> HealthStatus:
    """Проверка здоровья сервиса."""
    deps = {}

    try:
        deps["store"] = "healthy" if await store.ping() else "unhealthy"
    except Exception:
        deps["store"] = "unhealthy"

    overall = "healthy" if all(v == "healthy" for v in deps.values()) else "degraded"

    return HealthStatus(
        service="location_tracker",
        status=overall,
        version=settings.system.VERSION,
        uptime_seconds=round(get_uptime(), 3),
        dependencies=deps,
        timestamp=datetime.now(timezone.utc),
    )


# =============================================================================
# ТРЕКИ
# =============================================================================

@router.post("/track/generate")
async def generate_track_id(
    service: LocationTrackingService = Depends(get_tracking_service),
) -> dict[str, str]:
    """Сгенерировать новый идентификатор трека."""
    return {"trackId": await service.generate_track_id()}


@router.post("/location/update")
async def update_location(
    request: LocationUpdateRequest,
    service: LocationTrackingService = Depends(get_tracking_service),
) -> dict[str, Any]:
    """
    Принять координаты (альтернатива WebSocket).

    lat, lng, speed и accuracy принимаются только как JSON-числа:
    строки вида "37.7" отклоняются с errorCode=invalid_input.
    """
    record = await service.submit(request)
    return {"success": True, "location": record.to_wire()}


@router.get("/location/{track_id}", response_model=PositionView, response_model_by_alias=True)
async def get_location(
    track_id: str,
    service: LocationTrackingService = Depends(get_tracking_service),
) -> PositionView:
    """Текущая позиция трека и признак isRecent."""
    return await service.get_position(track_id)


@router.get("/path/{track_id}")
async def get_path(
    track_id: str,
    hours: float | None = Query(default=None, gt=0, description="Окно истории в часах"),
    service: LocationTrackingService = Depends(get_tracking_service),
) -> dict[str, Any]:
    """История перемещений за последние hours часов."""
    points = await service.get_trail(track_id, hours)
    return {"points": [point.to_wire() for point in points]}


@router.post("/location/deactivate/{track_id}")
async def deactivate_location(
    track_id: str,
    service: LocationTrackingService = Depends(get_tracking_service),
) -> dict[str, Any]:
    """Остановить трансляцию (позиция и трек сохраняются)."""
    await service.deactivate(track_id)
    return {"success": True, "message": "Location sharing deactivated"}


@router.delete("/location/{track_id}")
async def delete_location(
    track_id: str,
    service: LocationTrackingService = Depends(get_tracking_service),
) -> dict[str, Any]:
    """Удалить позицию и трек."""
    result = await service.purge_track(track_id)
    return {"success": True, **result.to_wire()}


# =============================================================================
# ОБСЛУЖИВАНИЕ
# =============================================================================

@router.post("/cleanup")
async def cleanup(janitor: Janitor = Depends(get_janitor)) -> dict[str, Any]:
    """Немедленная уборка устаревших данных."""
    result = await janitor.run_cleanup_now()
    return {"success": True, **result.to_wire()}


@router.get("/stats", response_model=TrackStats, response_model_by_alias=True)
async def get_stats(
    service: LocationTrackingService = Depends(get_tracking_service),
) -> TrackStats:
    """Сводная статистика."""
    return await service.get_stats()
