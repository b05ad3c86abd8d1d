# src/core/tracking/exceptions.py
"""
Ошибки подсистемы отслеживания.

Каждая ошибка знает свой HTTP-статус и код, чтобы транспортный слой
(HTTP и WebSocket) отдавал их одинаково.
"""

from __future__ import annotations


class TrackingError(Exception):
    """Базовая ошибка подсистемы отслеживания."""

    status_code: int = 500
    error_code: str = "tracking_error"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class InvalidInputError(TrackingError, ValueError):
    """Не передано обязательное поле или значение не является числом."""

    status_code = 400
    error_code = "invalid_input"


class OutOfRangeError(TrackingError, ValueError):
    """Координаты (или скорость/точность) вне допустимого диапазона."""

    status_code = 400
    error_code = "out_of_range"


class TrackNotFoundError(TrackingError, LookupError):
    """Трек с таким идентификатором не найден."""

    status_code = 404
    error_code = "not_found"

    def __init__(self, track_id: str) -> None:
        super().__init__("Track ID not found")
        self.track_id = track_id


class StoreFailureError(TrackingError):
    """Хранилище недоступно или вернуло ошибку."""

    status_code = 500
    error_code = "store_failure"
