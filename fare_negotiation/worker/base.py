# fare_negotiation/worker/base.py
"""
Базовый класс для периодических воркеров.
"""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from typing import List

from fare_negotiation.common.logger import log_error, log_info
from fare_negotiation.common.constants import TypeMsg


class BaseWorker(ABC):
    """
    Базовый класс для всех воркеров.
    Вызывает run_once() каждые interval секунд в отдельной задаче;
    ошибка тика логируется и не останавливает воркер.
    """

    def __init__(self) -> None:
        self._running = False
        self._tasks: List[asyncio.Task] = []
        self._ticks = 0
        self._failures = 0

    @property
    @abstractmethod
    def name(self) -> str:
        """Имя воркера."""
        pass

    @property
    @abstractmethod
    def interval(self) -> float:
        """Пауза между тиками (секунды)."""
        pass

    @abstractmethod
    async def run_once(self) -> int:
        """
        Один тик работы.

        Returns:
            Количество обработанных объектов
        """
        pass

    @property
    def is_running(self) -> bool:
        return self._running

    async def start(self) -> None:
        """Запускает воркер."""
        if self._running:
            return

        self._running = True
        self._tasks.append(asyncio.create_task(self._loop(), name=self.name))
        await log_info(f"Воркер {self.name} запущен (интервал {self.interval} с)", type_msg=TypeMsg.INFO)

    async def stop(self) -> None:
        """Останавливает воркер."""
        if not self._running:
            return

        self._running = False

        # Отменяем все задачи
        for task in self._tasks:
            task.cancel()

        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)

        self._tasks.clear()
        await log_info(f"Воркер {self.name} остановлен", type_msg=TypeMsg.INFO)

    async def tick(self) -> int:
        """Выполняет run_once() с перехватом ошибок."""
        self._ticks += 1
        try:
            return await self.run_once()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self._failures += 1
            await log_error(f"Ошибка в воркере {self.name}: {e}", exc_info=True)
            return 0

    def get_stats(self) -> dict[str, int]:
        return {"ticks": self._ticks, "failures": self._failures}

    async def _loop(self) -> None:
        while self._running:
            await self.tick()
            await asyncio.sleep(self.interval)
