# src/core/tracking/__init__.py
"""
Доменный слой отслеживания: хранилище позиций и треков, политика хранения, ошибки.
"""

from src.core.tracking.exceptions import (
    InvalidInputError,
    OutOfRangeError,
    StoreFailureError,
    TrackingError,
    TrackNotFoundError,
)
from src.core.tracking.retention import RetentionPolicy, points_since
from src.core.tracking.store import KeyedLock, LocationStore, MemoryLocationStore, utc_now

__all__ = [
    "InvalidInputError",
    "OutOfRangeError",
    "StoreFailureError",
    "TrackingError",
    "TrackNotFoundError",
    "RetentionPolicy",
    "points_since",
    "KeyedLock",
    "LocationStore",
    "MemoryLocationStore",
    "utc_now",
]
