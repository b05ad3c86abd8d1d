# src/services/__init__.py
"""
Сервисы приложения.

Сервисы:
- location_tracker: приём координат, история перемещений, WebSocket-рассылка
"""

__all__: list[str] = []
