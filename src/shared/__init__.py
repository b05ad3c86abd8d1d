# src/shared/__init__.py
"""
Общий код сервиса.

Модули:
- models: DTO позиций и треков, общие Pydantic-модели
"""

__all__: list[str] = []
