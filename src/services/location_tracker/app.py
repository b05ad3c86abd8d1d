# src/services/location_tracker/app.py
"""
FastAPI приложение сервиса отслеживания.

REST endpoints (префикс /api):
- POST /track/generate — новый идентификатор трека
- POST /location/update — приём координат
- GET /location/{trackId} — текущая позиция
- GET /path/{trackId} — история перемещений
- POST /location/deactivate/{trackId} — остановка трансляции
- DELETE /location/{trackId} — удаление трека
- POST /cleanup — уборка устаревших данных
- GET /stats, GET /health

WebSocket endpoint: /ws
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator

from fastapi import FastAPI, Request
from fastapi.exception_handlers import request_validation_exception_handler
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from src.common.logger import log_error, log_info, setup_logging
from src.common.constants import TypeMsg
from src.config import settings
from src.core.tracking.exceptions import TrackingError
from src.services.location_tracker.routes import router
from src.services.location_tracker.websocket import websocket_endpoint
from src.shared.models.common import ErrorResponse


# =============================================================================
# LIFESPAN
# =============================================================================

@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Жизненный цикл приложения."""
    setup_logging()
    await log_info(
        "Location Tracker запускается...",
        type_msg=TypeMsg.INFO,
    )

    # Инициализация зависимостей
    from src.services.location_tracker.dependencies import init_dependencies, close_dependencies
    await init_dependencies()

    yield

    # Закрытие ресурсов
    await close_dependencies()
    await log_info(
        "Location Tracker остановлен",
        type_msg=TypeMsg.INFO,
    )


# =============================================================================
# ПРИЛОЖЕНИЕ
# =============================================================================

app = FastAPI(
    title="Location Tracker",
    description="Приём координат, история перемещений и live-tracking по WebSocket",
    version=settings.system.VERSION,
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors.ALLOWED_ORIGINS,
    allow_origin_regex=settings.cors.ALLOWED_ORIGIN_REGEX,
    allow_credentials=settings.cors.ALLOW_CREDENTIALS,
    allow_methods=settings.cors.ALLOWED_METHODS,
    allow_headers=settings.cors.ALLOWED_HEADERS,
)

app.include_router(router, prefix=settings.server.API_PREFIX)
app.add_api_websocket_route(settings.server.WS_PATH, websocket_endpoint)


# =============================================================================
# ОБРАБОТЧИКИ ОШИБОК
# =============================================================================

@app.exception_handler(TrackingError)
async def tracking_error_handler(request: Request, exc: TrackingError) -> JSONResponse:
    """Ошибки подсистемы отслеживания → JSON с кодом ошибки."""
    if exc.status_code >= 500:
        await log_error(
            f"{request.method} {request.url.path}: {exc.message}",
            extra={"error_code": exc.error_code},
        )
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(error=exc.message, error_code=exc.error_code).to_wire(),
    )


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """
    Ошибки тела запроса → 400 invalid_input (как у остальных ошибок ввода).

    Ошибки параметров пути и запроса (например, hours) остаются 422.
    """
    body_errors = [err for err in exc.errors() if tuple(err.get("loc", ()))[:1] == ("body",)]
    if not body_errors:
        return await request_validation_exception_handler(request, exc)

    if any(err.get("type") == "json_invalid" for err in body_errors):
        message = "Malformed JSON body"
    else:
        message = "Missing required fields: trackId, lat, lng"
    return JSONResponse(
        status_code=400,
        content=ErrorResponse(error=message, error_code="invalid_input").to_wire(),
    )


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """404 на неизвестный путь и прочие HTTP-ошибки маршрутизации."""
    if exc.status_code == 404:
        body = ErrorResponse(
            error="Endpoint not found",
            error_code="not_found",
            path=request.url.path,
            method=request.method,
        )
    else:
        body = ErrorResponse(error=str(exc.detail))
    return JSONResponse(
        status_code=exc.status_code,
        content=body.to_wire(),
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    """Непредвиденная ошибка."""
    await log_error(
        f"Необработанная ошибка {request.method} {request.url.path}: {exc}",
        exc_info=True,
    )
    return JSONResponse(
        status_code=500,
        content=ErrorResponse(error="Internal server error", error_code="internal_error").to_wire(),
    )


# =============================================================================
# ROOT
# =============================================================================

@app.get("/", tags=["Root"])
async def root() -> dict[str, Any]:
    """Информация о сервисе."""
    prefix = settings.server.API_PREFIX
    return {
        "status": "OK",
        "service": settings.system.PROJECT_NAME,
        "version": settings.system.VERSION,
        "endpoints": {
            "health": f"{prefix}/health",
            "generateTrackId": f"POST {prefix}/track/generate",
            "updateLocation": f"POST {prefix}/location/update",
            "getLocation": f"GET {prefix}/location/:trackId",
            "getPath": f"GET {prefix}/path/:trackId?hours=2",
            "deactivate": f"POST {prefix}/location/deactivate/:trackId",
            "deleteTrack": f"DELETE {prefix}/location/:trackId",
            "cleanup": f"POST {prefix}/cleanup",
            "stats": f"GET {prefix}/stats",
            "websocket": settings.server.WS_PATH,
        },
    }


# === STARTUP ===

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host=settings.server.HOST, port=settings.server.PORT)
