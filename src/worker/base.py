# src/worker/base.py
"""
Базовый класс для периодических воркеров.
"""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from typing import Any, Optional

from src.common.logger import log_info, log_error
from src.common.constants import TypeMsg


class BaseWorker(ABC):
    """
    Базовый класс для всех воркеров.
    Вызывает run_once() каждые `interval` секунд до остановки.
    Ошибка прохода логируется, следующий проход идёт по расписанию.
    """

    def __init__(self, interval: float) -> None:
        """
        Инициализирует воркер.

        Args:
            interval: Пауза между проходами (секунды)
        """
        self.interval = interval
        self._running = False
        self._task: Optional[asyncio.Task] = None
        self._stop_event = asyncio.Event()
        self.runs = 0

    @property
    @abstractmethod
    def name(self) -> str:
        """Имя воркера."""
        pass

    @abstractmethod
    async def run_once(self) -> Any:
        """Один проход воркера."""
        pass

    @property
    def is_running(self) -> bool:
        return self._running

    async def start(self) -> None:
        """Запускает цикл воркера в фоновой задаче."""
        if self._running:
            return

        self._running = True
        self._stop_event.clear()
        self._task = asyncio.create_task(self._loop(), name=self.name)
        await log_info(
            f"Воркер {self.name} запущен (интервал {self.interval} с)",
            type_msg=TypeMsg.INFO,
        )

    async def stop(self) -> None:
        """Останавливает воркер, дожидаясь текущего прохода."""
        if not self._running:
            return

        self._running = False
        self._stop_event.set()
        if self._task:
            await asyncio.gather(self._task, return_exceptions=True)
            self._task = None
        await log_info(f"Воркер {self.name} остановлен", type_msg=TypeMsg.INFO)

    async def _loop(self) -> None:
        while self._running:
            await self._run_safely()
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self.interval)
            except asyncio.TimeoutError:
                continue

    async def _run_safely(self) -> None:
        self.runs += 1
        try:
            await log_info(f"Воркер {self.name}: проход #{self.runs}", type_msg=TypeMsg.DEBUG)
            await self.run_once()
        except Exception as e:
            await log_error(
                f"Ошибка в воркере {self.name}: {e}",
                extra={"run": self.runs},
                exc_info=True,
            )
