# ride_dispatch/core/dispatch/engine.py
"""
Диспетчеризация: оценка и создание поездки, рассылка ближайшим водителям,
повторная рассылка после отказа.
"""

from __future__ import annotations

from typing import Any, Optional

from ride_dispatch.common.constants import TypeMsg
from ride_dispatch.common.logger import log_info
from ride_dispatch.core.geo.models import Coordinate
from ride_dispatch.core.geo.service import GeoEstimator
from ride_dispatch.core.notifications.fanout import NotificationFanout
from ride_dispatch.core.presence.models import DriverCandidate
from ride_dispatch.core.presence.registry import PresenceRegistry
from ride_dispatch.core.pricing.service import FareCalculator
from ride_dispatch.core.rides.lifecycle import RideLifecycle
from ride_dispatch.core.rides.models import Ride, RideRequest


class DispatchEngine:
    """
    Движок подбора водителей.

    Кандидаты: доступные водители в радиусе от точки посадки по
    возрастанию расстояния. Каждому отправляется предложение с оценкой
    подачи 2 минуты на километр. Таймаут ожидания ставится при создании
    поездки и не переставляется при повторной рассылке.
    """

    def __init__(
        self,
        registry: PresenceRegistry,
        lifecycle: RideLifecycle,
        geo: GeoEstimator,
        fares: FareCalculator,
        fanout: NotificationFanout,
        search_radius_km: float | None = None,
        nearby_limit: int | None = None,
    ) -> None:
        if search_radius_km is None or nearby_limit is None:
            from ride_dispatch.config import settings
            search_radius_km = settings.dispatch.SEARCH_RADIUS_KM if search_radius_km is None else search_radius_km
            nearby_limit = settings.dispatch.NEARBY_DRIVERS_LIMIT if nearby_limit is None else nearby_limit

        self._registry = registry
        self._lifecycle = lifecycle
        self._geo = geo
        self._fares = fares
        self._fanout = fanout
        self.search_radius_km = search_radius_km
        self.nearby_limit = nearby_limit

    async def submit(self, request: RideRequest) -> Ride:
        """
        Оценивает маршрут и стоимость, создаёт поездку в статусе requested.

        Args:
            request: Проверенный запрос пассажира

        Returns:
            Созданная поездка
        """
        estimate = await self._geo.distance_and_duration(request.pickup, request.destination)
        route = await self._geo.route_polyline(request.pickup, request.destination)
        quote = self._fares.calculate(estimate.distance_km, estimate.duration_minutes)
        return await self._lifecycle.create(request, estimate, quote, route=route)

    async def dispatch(
        self,
        ride: Ride,
        exclude: tuple[str, ...] | list[str] = (),
        notify_empty: bool = True,
    ) -> int:
        """
        Рассылает предложение поездки доступным водителям рядом.

        Если кандидатов нет, пассажир получает no_drivers_available,
        поездка остаётся в статусе requested до таймаута.

        Returns:
            Количество водителей, получивших предложение
        """
        candidates = self._registry.find_available(ride.pickup, self.search_radius_km, exclude=exclude)
        if not candidates:
            if not notify_empty:
                return 0
            await self._fanout.notify_passenger(ride.passenger_id, "no_drivers_available", {
                "ride_id": ride.ride_id,
                "message": "No drivers available in your area",
            })
            await log_info(
                "Нет доступных водителей в радиусе",
                type_msg=TypeMsg.INFO,
                extra={"ride_id": ride.ride_id},
            )
            return 0

        delivered = await self._fanout.offer_ride(ride, candidates)
        await log_info(
            f"Запрос поездки отправлен {delivered} из {len(candidates)} водителей",
            extra={"ride_id": ride.ride_id},
        )
        return delivered

    async def request_ride(self, request: RideRequest) -> tuple[Ride, int]:
        """Создаёт поездку и сразу рассылает предложения."""
        ride = await self.submit(request)
        return ride, await self.dispatch(ride)

    async def reject(self, ride_id: str, driver_id: str) -> int:
        """
        Обрабатывает отказ водителя и повторно рассылает предложение
        всем кандидатам, кроме уже отказавшихся.

        Returns:
            Количество повторно отправленных предложений (0, если поездка уже не ждёт)
        """
        ride = await self._lifecycle.reject(ride_id, driver_id)
        if ride is None:
            return 0
        return await self.dispatch(ride, exclude=ride.rejected_by, notify_empty=False)

    def nearby_drivers(self, origin: Coordinate, radius_km: Optional[float] = None) -> list[dict[str, Any]]:
        """Доступные водители рядом для показа пассажиру."""
        candidates: list[DriverCandidate] = self._registry.find_available(
            origin,
            self.search_radius_km if radius_km is None else radius_km,
            limit=self.nearby_limit,
        )
        return [
            {
                **candidate.to_dict(),
                "distance_km": round(candidate.distance_km, 2),
                "estimated_arrival": GeoEstimator.estimated_arrival_minutes(candidate.distance_km),
            }
            for candidate in candidates
        ]
