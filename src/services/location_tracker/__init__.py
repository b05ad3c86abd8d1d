# src/services/location_tracker/__init__.py
"""
Location Tracker — приём координат и live-tracking.

Обеспечивает:
- Приём координат по HTTP и WebSocket
- Хранение последней позиции и истории перемещений
- Рассылку обновлений подписчикам трека
- Периодическую уборку устаревших данных
"""
