# tests/services/test_app.py
"""
Тесты HTTP и WebSocket API (приложение целиком, хранилище в памяти).
"""

from __future__ import annotations

from typing import Any, Generator

import pytest
from fastapi.testclient import TestClient

from src.services.location_tracker.app import app


@pytest.fixture
def client() -> Generator[TestClient, None, None]:
    """Клиент с запущенным lifespan."""
    with TestClient(app) as test_client:
        yield test_client


def post_update(client: TestClient, **body: Any):
    return client.post("/api/location/update", json=body)


# =============================================================================
# HTTP
# =============================================================================

class TestHttpApi:
    """Тесты REST endpoints."""

    def test_root(self, client: TestClient) -> None:
        response = client.get("/")

        assert response.status_code == 200
        assert response.json()["status"] == "OK"
        assert "websocket" in response.json()["endpoints"]

    def test_health(self, client: TestClient) -> None:
        response = client.get("/api/health")

        data = response.json()
        assert response.status_code == 200
        assert data["status"] == "healthy"
        assert data["dependencies"] == {"store": "healthy"}
        assert data["uptime_seconds"] >= 0

    def test_generate_track_id(self, client: TestClient) -> None:
        response = client.post("/api/track/generate")

        track_id = response.json()["trackId"]
        assert response.status_code == 200
        assert track_id.startswith("TRK-") and len(track_id) == 13

    def test_update_then_get(self, client: TestClient) -> None:
        response = post_update(client, trackId="TRK-ABC", lat=10, lng=20)

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["location"]["trackId"] == "TRK-ABC"
        assert body["location"]["isActive"] is True
        assert body["location"]["speed"] == 0

        position = client.get("/api/location/TRK-ABC").json()
        assert (position["lat"], position["lng"]) == (10, 20)
        assert position["isActive"] is True
        assert position["isRecent"] is True

    def test_out_of_range_rejected_without_changes(self, client: TestClient) -> None:
        post_update(client, trackId="TRK-ABC", lat=10, lng=20)

        response = post_update(client, trackId="TRK-ABC", lat=95, lng=0)

        assert response.status_code == 400
        assert response.json()["errorCode"] == "out_of_range"
        assert client.get("/api/location/TRK-ABC").json()["lat"] == 10
        assert len(client.get("/api/path/TRK-ABC").json()["points"]) == 1

    def test_missing_fields(self, client: TestClient) -> None:
        response = post_update(client, lat=10, lng=20)

        assert response.status_code == 400
        assert response.json() == {
            "error": "Missing required fields: trackId, lat, lng",
            "errorCode": "invalid_input",
        }

    def test_empty_body(self, client: TestClient) -> None:
        response = client.post("/api/location/update")

        assert response.status_code == 400
        assert response.json() == {
            "error": "Missing required fields: trackId, lat, lng",
            "errorCode": "invalid_input",
        }

    def test_malformed_json_body(self, client: TestClient) -> None:
        response = client.post(
            "/api/location/update",
            content=b"not json",
            headers={"Content-Type": "application/json"},
        )

        assert response.status_code == 400
        assert response.json() == {"error": "Malformed JSON body", "errorCode": "invalid_input"}

    def test_non_object_body(self, client: TestClient) -> None:
        response = client.post("/api/location/update", json=[1, 2])

        assert response.status_code == 400
        assert response.json()["errorCode"] == "invalid_input"

    def test_numeric_strings_rejected(self, client: TestClient) -> None:
        response = post_update(client, trackId="TRK-ABC", lat="37.7", lng="-122.4")

        assert response.status_code == 400
        assert response.json()["errorCode"] == "invalid_input"
        assert client.get("/api/location/TRK-ABC").status_code == 404

    def test_unknown_track(self, client: TestClient) -> None:
        response = client.get("/api/location/TRK-NOPE")

        assert response.status_code == 404
        assert response.json()["error"] == "Track ID not found"

    def test_path(self, client: TestClient) -> None:
        post_update(client, trackId="TRK-ABC", lat=1, lng=2)
        post_update(client, trackId="TRK-ABC", lat=3, lng=4)

        points = client.get("/api/path/TRK-ABC", params={"hours": 1.5}).json()["points"]

        assert [(p["lat"], p["lng"]) for p in points] == [(1, 2), (3, 4)]
        assert set(points[0]) == {"lat", "lng", "timestamp"}

    def test_path_unknown_is_empty(self, client: TestClient) -> None:
        assert client.get("/api/path/TRK-NOPE").json() == {"points": []}

    @pytest.mark.parametrize("hours", ["0", "-2", "abc"])
    def test_path_bad_hours(self, client: TestClient, hours: str) -> None:
        assert client.get("/api/path/TRK-ABC", params={"hours": hours}).status_code == 422

    def test_deactivate(self, client: TestClient) -> None:
        post_update(client, trackId="TRK-ABC", lat=1, lng=2)

        response = client.post("/api/location/deactivate/TRK-ABC")

        assert response.json() == {"success": True, "message": "Location sharing deactivated"}
        assert client.get("/api/location/TRK-ABC").json()["isActive"] is False
        assert len(client.get("/api/path/TRK-ABC").json()["points"]) == 1

    def test_deactivate_unknown(self, client: TestClient) -> None:
        assert client.post("/api/location/deactivate/TRK-NOPE").status_code == 404

    def test_delete_track(self, client: TestClient) -> None:
        post_update(client, trackId="TRK-ABC", lat=1, lng=2)

        response = client.delete("/api/location/TRK-ABC")

        assert response.json()["success"] is True
        assert response.json()["deletedLocations"] == 1
        assert response.json()["deletedPaths"] == 1
        assert client.get("/api/location/TRK-ABC").status_code == 404

    def test_cleanup(self, client: TestClient) -> None:
        post_update(client, trackId="TRK-ABC", lat=1, lng=2)

        response = client.post("/api/cleanup")

        assert response.status_code == 200
        assert response.json() == {
            "success": True,
            "deletedLocations": 0,
            "deletedPaths": 0,
            "trimmedPoints": 0,
        }

    def test_stats(self, client: TestClient) -> None:
        post_update(client, trackId="A", lat=1, lng=2)
        post_update(client, trackId="B", lat=1, lng=2)
        client.post("/api/location/deactivate/B")

        stats = client.get("/api/stats").json()

        assert stats["totalLocations"] == 2
        assert stats["activeLocations"] == 1
        assert stats["inactiveLocations"] == 1
        assert stats["totalPaths"] == 2
        assert stats["activeConnections"] == 0

    def test_unknown_path(self, client: TestClient) -> None:
        response = client.get("/api/nothing-here")

        assert response.status_code == 404
        assert response.json() == {
            "error": "Endpoint not found",
            "errorCode": "not_found",
            "path": "/api/nothing-here",
            "method": "GET",
        }

    def test_cors_origin_regex(self, client: TestClient) -> None:
        response = client.options(
            "/api/location/update",
            headers={
                "Origin": "https://my-app.vercel.app",
                "Access-Control-Request-Method": "POST",
            },
        )

        assert response.status_code == 200
        assert response.headers["access-control-allow-origin"] == "https://my-app.vercel.app"


# =============================================================================
# WEBSOCKET
# =============================================================================

class TestWebSocket:
    """Тесты WebSocket endpoint."""

    def test_connected_message(self, client: TestClient) -> None:
        with client.websocket_connect("/ws") as ws:
            message = ws.receive_json()

        assert message["type"] == "connected"
        assert message["connectionId"]

    def test_ping(self, client: TestClient) -> None:
        with client.websocket_connect("/ws") as ws:
            ws.receive_json()
            ws.send_json({"action": "ping"})
            message = ws.receive_json()

        assert message["type"] == "pong"
        assert "timestamp" in message

    def test_subscribe_and_receive_http_update(self, client: TestClient) -> None:
        with client.websocket_connect("/ws") as ws:
            ws.receive_json()
            ws.send_json({"action": "subscribe", "trackId": "TRK-ABC"})
            assert ws.receive_json() == {"type": "subscribed", "trackId": "TRK-ABC", "success": True}

            post_update(client, trackId="TRK-ABC", lat=10, lng=20)

            first, second = ws.receive_json(), ws.receive_json()

        assert (first["type"], first["channel"]) == ("location_updated", "global")
        assert (second["type"], second["channel"]) == ("location_updated", "track:TRK-ABC")
        assert second["data"]["trackId"] == "TRK-ABC"
        assert (second["data"]["lat"], second["data"]["lng"]) == (10, 20)

    def test_location_update_over_websocket(self, client: TestClient) -> None:
        with client.websocket_connect("/ws") as ws:
            ws.receive_json()
            ws.send_json({"action": "location_update", "trackId": "TRK-WS", "lat": 1.5, "lng": 2.5, "speed": 4})
            broadcast = ws.receive_json()

        assert broadcast["channel"] == "global"
        assert broadcast["data"]["speed"] == 4
        assert client.get("/api/location/TRK-WS").json()["lat"] == 1.5

    def test_invalid_update_error_goes_to_sender_only(self, client: TestClient) -> None:
        with client.websocket_connect("/ws") as sender, client.websocket_connect("/ws") as other:
            sender.receive_json()
            other.receive_json()

            sender.send_json({"action": "location_update", "trackId": "TRK-ABC", "lat": 95, "lng": 0})
            error = sender.receive_json()

            other.send_json({"action": "ping"})
            next_for_other = other.receive_json()

        assert error["type"] == "error"
        assert error["errorCode"] == "out_of_range"
        assert next_for_other["type"] == "pong"
        assert client.get("/api/location/TRK-ABC").status_code == 404

    def test_unknown_action(self, client: TestClient) -> None:
        with client.websocket_connect("/ws") as ws:
            ws.receive_json()
            ws.send_json({"action": "dance"})
            message = ws.receive_json()

        assert message["type"] == "error"
        assert "dance" in message["message"]

    def test_malformed_json(self, client: TestClient) -> None:
        with client.websocket_connect("/ws") as ws:
            ws.receive_json()
            ws.send_text("{not json")
            error = ws.receive_json()
            ws.send_json({"action": "ping"})
            pong = ws.receive_json()

        assert error["type"] == "error"
        assert pong["type"] == "pong"

    def test_subscribe_without_track_id(self, client: TestClient) -> None:
        with client.websocket_connect("/ws") as ws:
            ws.receive_json()
            ws.send_json({"action": "subscribe"})
            message = ws.receive_json()

        assert message["type"] == "error"

    def test_connections_counted_in_stats(self, client: TestClient) -> None:
        with client.websocket_connect("/ws") as ws:
            ws.receive_json()
            assert client.get("/api/stats").json()["activeConnections"] == 1
