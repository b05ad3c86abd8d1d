# src/core/__init__.py
"""
Доменный слой (Core Domain).
Логика хранения позиций и треков, независимая от транспорта.
"""
