#!/usr/bin/env python3
"""
Entrypoint для Location Tracker.

Запуск:
    python entrypoints/entrypoint_location_tracker.py

Порт по умолчанию: 5000 (PORT в окружении или config.json)
"""

import sys
from pathlib import Path

# Добавляем корневую директорию проекта в путь
project_root = Path(__file__).parent.parent.resolve()
sys.path.insert(0, str(project_root))

import uvicorn

from src.config import settings


def main() -> None:
    """Запустить Location Tracker."""
    uvicorn.run(
        "src.services.location_tracker.app:app",
        host=settings.server.HOST,
        port=settings.server.PORT,
        workers=settings.server.WORKERS,
        reload=settings.system.DEBUG,
        log_level=settings.system.LOG_LEVEL.lower(),
    )


if __name__ == "__main__":
    main()
