# src/services/location_tracker/websocket.py
"""
WebSocket endpoint сервиса отслеживания.

Входящие сообщения (поле action):
- {"action": "subscribe", "trackId": "TRK-..."}
- {"action": "unsubscribe", "trackId": "TRK-..."}
- {"action": "location_update", "trackId": "...", "lat": 55.7, "lng": 37.6, "speed": 0, "accuracy": 5}
- {"action": "ping"}

Исходящие сообщения (поле type): connected, subscribed, unsubscribed,
location_updated, pong, error.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from fastapi import WebSocket, WebSocketDisconnect

from src.common.constants import ClientAction, ServerMessage
from src.common.logger import log_debug, log_error, log_info
from src.core.tracking.exceptions import TrackingError
from src.services.location_tracker.broadcaster import Broadcaster
from src.services.location_tracker.dependencies import get_broadcaster, get_tracking_service
from src.services.location_tracker.service import LocationTrackingService
from src.shared.models.location_dto import LocationUpdateRequest


def _error(message: str, error_code: str | None = None) -> dict[str, Any]:
    payload: dict[str, Any] = {"type": ServerMessage.ERROR.value, "message": message}
    if error_code:
        payload["errorCode"] = error_code
    return payload


async def websocket_endpoint(websocket: WebSocket) -> None:
    """
    Двунаправленный канал клиента.

    Ошибки обработки сообщения отправляются только этому клиенту,
    соединение при этом не закрывается.
    """
    broadcaster = await get_broadcaster()
    service = await get_tracking_service()

    connection_id = await broadcaster.connect(websocket)
    await broadcaster.send_personal(connection_id, {
        "type": ServerMessage.CONNECTED.value,
        "connectionId": connection_id,
    })

    reason = "client closed"
    try:
        while True:
            try:
                data = await websocket.receive_json()
            except (ValueError, KeyError):
                # Не JSON или бинарный кадр
                await broadcaster.send_personal(connection_id, _error("Malformed message", "invalid_input"))
                continue

            await handle_client_message(connection_id, data, service, broadcaster)

    except WebSocketDisconnect as e:
        reason = f"client closed (code {e.code})"
    except Exception as e:
        reason = f"error: {e!r}"
        await log_error(
            f"Ошибка WebSocket {connection_id}: {e}",
            extra={"connection_id": connection_id},
        )
    finally:
        await broadcaster.disconnect(connection_id, reason=reason)


async def handle_client_message(
    connection_id: str,
    data: Any,
    service: LocationTrackingService,
    broadcaster: Broadcaster,
) -> None:
    """Обработать сообщение от клиента."""
    if not isinstance(data, dict):
        await broadcaster.send_personal(connection_id, _error("Message must be a JSON object", "invalid_input"))
        return

    action = data.get("action")
    await log_debug(
        f"WebSocket {connection_id}: {action}",
        extra={"connection_id": connection_id},
    )

    if action in (ClientAction.SUBSCRIBE.value, ClientAction.UNSUBSCRIBE.value):
        track_id = data.get("trackId")
        if not isinstance(track_id, str) or not track_id.strip():
            await broadcaster.send_personal(connection_id, _error("Track ID is required", "invalid_input"))
            return

        if action == ClientAction.SUBSCRIBE.value:
            await broadcaster.subscribe(connection_id, track_id)
            await log_info(
                f"{connection_id} отслеживает {track_id}",
                extra={"connection_id": connection_id, "track_id": track_id},
            )
        else:
            await broadcaster.unsubscribe(connection_id, track_id)

    elif action == ClientAction.LOCATION_UPDATE.value:
        try:
            await service.submit(LocationUpdateRequest.model_validate(data))
        except TrackingError as e:
            await broadcaster.send_personal(connection_id, _error(e.message, e.error_code))

    elif action == ClientAction.PING.value:
        await broadcaster.send_personal(connection_id, {
            "type": ServerMessage.PONG.value,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        })

    else:
        await broadcaster.send_personal(connection_id, _error(f"Unknown action: {action}", "invalid_input"))
