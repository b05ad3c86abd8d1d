# src/services/location_tracker/janitor.py
"""
Периодическая уборка устаревших позиций и треков.
"""

from __future__ import annotations

import asyncio

from src.common.constants import TypeMsg
from src.common.logger import log_error, log_info, log_warning
from src.core.tracking.store import LocationStore
from src.shared.models.location_dto import CleanupResult


class Janitor:
    """
    Фоновая задача уборки.

    Каждый проход:
    - удаляет позиции и треки, не обновлявшиеся дольше record_max_age
    - вырезает устаревшие точки из оставшихся треков

    Ошибка прохода логируется, следующий проход выполняется по расписанию.
    """

    name = "janitor"

    def __init__(self, store: LocationStore, interval_seconds: float = 3600) -> None:
        self._store = store
        self._interval = interval_seconds
        self._running = False
        self._task: asyncio.Task | None = None

    @property
    def is_running(self) -> bool:
        return self._running

    async def start(self) -> None:
        """Запустить периодическую уборку."""
        if self._running:
            return

        self._running = True
        self._task = asyncio.create_task(self._loop())
        await log_info(
            f"Уборщик запущен (интервал {self._interval} с)",
            type_msg=TypeMsg.DEBUG,
        )

    async def stop(self) -> None:
        """Остановить уборку и дождаться завершения задачи."""
        if not self._running:
            return

        self._running = False

        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

        await log_info("Уборщик остановлен", type_msg=TypeMsg.DEBUG)

    async def run_cleanup_now(self) -> CleanupResult:
        """
        Выполнить один проход уборки.

        Raises:
            StoreFailureError: хранилище недоступно
        """
        policy = self._store.policy
        cutoff = policy.record_cutoff(self._store.now())

        result = await self._store.delete_stale_before(cutoff, cutoff)
        try:
            result.trimmed_points = await self._store.trim_expired_points()
        except Exception:
            # Удаление уже выполнено: фиксируем его в логе до выхода с ошибкой
            if not result.is_empty:
                await log_warning(
                    f"Уборка прервана после удаления: позиций {result.deleted_locations}, "
                    f"треков {result.deleted_paths}",
                    extra=result.model_dump(),
                )
            raise

        if not result.is_empty:
            await log_info(
                f"Уборка: удалено позиций {result.deleted_locations}, "
                f"треков {result.deleted_paths}, точек {result.trimmed_points}",
                extra=result.model_dump(),
            )
        return result

    async def _loop(self) -> None:
        """Проходы уборки с заданным интервалом."""
        while self._running:
            await asyncio.sleep(self._interval)
            try:
                await self.run_cleanup_now()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                await log_error(f"Ошибка уборки: {e}", exc_info=True)
