# ride_dispatch/worker/base.py
"""
Базовый класс для периодических воркеров.
"""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Awaitable, Callable, List

from ride_dispatch.common.constants import TypeMsg
from ride_dispatch.common.logger import log_error, log_info


@dataclass(frozen=True)
class PeriodicJob:
    """Задача воркера: что и как часто выполнять."""
    name: str
    interval: float
    func: Callable[[], Awaitable[object]]


class BaseWorker(ABC):
    """
    Базовый класс для воркеров.
    Запускает каждую задачу в своём цикле; ошибка задачи логируется,
    цикл продолжается.
    """

    def __init__(self) -> None:
        self._running = False
        self._tasks: List[asyncio.Task] = []

    @property
    @abstractmethod
    def name(self) -> str:
        """Имя воркера."""

    @property
    @abstractmethod
    def jobs(self) -> List[PeriodicJob]:
        """Периодические задачи воркера."""

    @property
    def is_running(self) -> bool:
        return self._running

    async def start(self) -> None:
        """Запускает воркер."""
        if self._running:
            return

        self._running = True
        for job in self.jobs:
            self._tasks.append(asyncio.create_task(self._loop(job), name=f"{self.name}:{job.name}"))
            await log_info(
                f"Воркер {self.name}: задача {job.name} каждые {job.interval} с",
                type_msg=TypeMsg.DEBUG,
            )

        await log_info(f"Воркер {self.name} запущен", type_msg=TypeMsg.INFO)

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

    async def run_job(self, job: PeriodicJob) -> bool:
        """
        Выполняет задачу один раз.

        Returns:
            True, если задача завершилась без ошибки
        """
        try:
            await job.func()
            return True
        except Exception as e:
            await log_error(f"Ошибка задачи {job.name} в воркере {self.name}: {e}", exc_info=True)
            return False

    async def _loop(self, job: PeriodicJob) -> None:
        while self._running:
            await asyncio.sleep(job.interval)
            await self.run_job(job)
