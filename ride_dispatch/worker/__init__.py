# ride_dispatch/worker/__init__.py
"""
Фоновые периодические воркеры.
"""

from ride_dispatch.worker.base import BaseWorker, PeriodicJob
from ride_dispatch.worker.maintenance import MaintenanceWorker

__all__ = ["BaseWorker", "MaintenanceWorker", "PeriodicJob"]
