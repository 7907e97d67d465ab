# ride_dispatch/worker/maintenance.py
"""
Воркер обслуживания: очистка старых поездок и периодическая статистика.
"""

from __future__ import annotations

from typing import Any, List, Optional

from ride_dispatch.common.constants import TypeMsg
from ride_dispatch.common.logger import log_info
from ride_dispatch.core.rides.lifecycle import RideLifecycle
from ride_dispatch.worker.base import BaseWorker, PeriodicJob


class MaintenanceWorker(BaseWorker):
    """
    Периодические задачи диспетчерской.

    - sweep: удаляет завершённые и отменённые поездки старше срока хранения
    - stats: пишет в лог счётчики поездок, водителей и соединений
    """

    def __init__(
        self,
        lifecycle: RideLifecycle,
        connection_stats: Optional[Any] = None,
        retention_seconds: float | None = None,
        sweep_interval: float | None = None,
        stats_interval: float | None = None,
    ) -> None:
        """
        Args:
            lifecycle: Сервис поездок
            connection_stats: Источник статистики соединений (объект с get_stats())
            retention_seconds: Срок хранения завершённых поездок
            sweep_interval: Период очистки (секунды)
            stats_interval: Период записи статистики (секунды)
        """
        super().__init__()
        if retention_seconds is None or sweep_interval is None or stats_interval is None:
            from ride_dispatch.config import settings
            m = settings.maintenance
            retention_seconds = m.COMPLETED_RIDE_RETENTION if retention_seconds is None else retention_seconds
            sweep_interval = m.SWEEP_INTERVAL if sweep_interval is None else sweep_interval
            stats_interval = m.STATS_INTERVAL if stats_interval is None else stats_interval

        self._lifecycle = lifecycle
        self._connection_stats = connection_stats
        self.retention_seconds = retention_seconds
        self.sweep_interval = sweep_interval
        self.stats_interval = stats_interval

    @property
    def name(self) -> str:
        return "maintenance"

    @property
    def jobs(self) -> List[PeriodicJob]:
        return [
            PeriodicJob("sweep", self.sweep_interval, self.sweep),
            PeriodicJob("stats", self.stats_interval, self.report_stats),
        ]

    async def sweep(self) -> int:
        """Удаляет поездки старше срока хранения."""
        evicted = self._lifecycle.evict_expired(self.retention_seconds)
        if evicted:
            await log_info(f"Удалено старых поездок: {evicted}", type_msg=TypeMsg.INFO)
        return evicted

    async def report_stats(self) -> dict[str, Any]:
        """Пишет в лог текущие счётчики."""
        stats = self._lifecycle.stats()
        if self._connection_stats is not None:
            stats["active_connections"] = self._connection_stats.get_stats()["active_connections"]
        await log_info(
            "Статистика: " + ", ".join(f"{k}={v}" for k, v in stats.items()),
            type_msg=TypeMsg.INFO,
        )
        return stats
