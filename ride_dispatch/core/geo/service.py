# ride_dispatch/core/geo/service.py
"""
Оценка расстояний и маршрутов.
Внешний сервис маршрутизации с детерминированным откатом на Haversine.
"""

from __future__ import annotations

import re
from typing import Any, Optional, Protocol

from ride_dispatch.common.constants import ETA_MINUTES_PER_KM, TypeMsg
from ride_dispatch.common.exceptions import UpstreamUnavailableError
from ride_dispatch.common.logger import log_error, log_info
from ride_dispatch.core.geo.models import Coordinate, DistanceEstimate, RouteInfo, RouteStep
from ride_dispatch.core.geo.utils import haversine_km, round_half_up


_HTML_TAG_RE = re.compile(r"<[^>]*>")


class RoutingClient(Protocol):
    """Коллаборатор маршрутизации (см. infra.maps_client.GoogleMapsClient)."""

    async def distance_matrix(self, origin: Coordinate, destination: Coordinate) -> Optional[dict[str, Any]]:
        ...

    async def directions(self, origin: Coordinate, destination: Coordinate) -> Optional[dict[str, Any]]:
        ...


class GeoEstimator:
    """
    Сервис оценки расстояния, времени и маршрута.

    Реализует:
    - Расстояние/время через сервис маршрутизации с откатом на Haversine
    - Полилинию маршрута с пошаговыми инструкциями (или None)
    - Маршрут водителя до точки посадки с оценкой прибытия
    """

    def __init__(self, client: RoutingClient | None = None) -> None:
        """
        Args:
            client: Клиент маршрутизации; без клиента всегда используется откат
        """
        self._client = client

    # =========================================================================
    # РАССТОЯНИЕ И ВРЕМЯ
    # =========================================================================

    @staticmethod
    def fallback_estimate(origin: Coordinate, destination: Coordinate) -> DistanceEstimate:
        """
        Детерминированная оценка: расстояние по Haversine, 2 минуты на километр.
        """
        distance_km = haversine_km(
            origin.latitude, origin.longitude,
            destination.latitude, destination.longitude,
        )
        duration_minutes = distance_km * ETA_MINUTES_PER_KM
        return DistanceEstimate(
            distance_km=distance_km,
            duration_minutes=duration_minutes,
            distance_text=f"{distance_km:.1f} km",
            duration_text=f"{round_half_up(duration_minutes)} mins",
            is_fallback=True,
        )

    async def distance_and_duration(self, origin: Coordinate, destination: Coordinate) -> DistanceEstimate:
        """
        Оценивает расстояние и время поездки. Никогда не падает.

        Args:
            origin: Точка отправления
            destination: Точка назначения

        Returns:
            Оценка от сервиса маршрутизации или детерминированный откат
        """
        if self._client is None:
            return self.fallback_estimate(origin, destination)

        try:
            element = await self._client.distance_matrix(origin, destination)
        except UpstreamUnavailableError as e:
            await log_info(
                f"Сервис маршрутизации недоступен, используем Haversine: {e.message}",
                type_msg=TypeMsg.WARNING,
            )
            return self.fallback_estimate(origin, destination)

        if element is None:
            await log_info("Маршрут не найден, используем Haversine", type_msg=TypeMsg.DEBUG)
            return self.fallback_estimate(origin, destination)

        try:
            distance = element["distance"]
            duration = element["duration"]
            return DistanceEstimate(
                distance_km=distance["value"] / 1000,
                duration_minutes=duration["value"] / 60,
                distance_text=distance.get("text", ""),
                duration_text=duration.get("text", ""),
            )
        except (KeyError, TypeError) as e:
            await log_error(f"Некорректный ответ Distance Matrix: {e}")
            return self.fallback_estimate(origin, destination)

    # =========================================================================
    # МАРШРУТЫ
    # =========================================================================

    @staticmethod
    def _parse_route(route: dict[str, Any]) -> RouteInfo:
        leg = route["legs"][0]
        steps = [
            RouteStep(
                instruction=_HTML_TAG_RE.sub("", step.get("html_instructions", "")),
                distance=step.get("distance", {}).get("text", ""),
                duration=step.get("duration", {}).get("text", ""),
                start_location=dict(step.get("start_location", {})),
                end_location=dict(step.get("end_location", {})),
            )
            for step in leg.get("steps", [])
        ]
        return RouteInfo(
            polyline=route["overview_polyline"]["points"],
            distance_km=leg["distance"]["value"] / 1000,
            duration_minutes=leg["duration"]["value"] / 60,
            distance_text=leg["distance"].get("text", ""),
            duration_text=leg["duration"].get("text", ""),
            steps=steps,
        )

    async def route_polyline(self, origin: Coordinate, destination: Coordinate) -> Optional[RouteInfo]:
        """
        Строит маршрут между точками.

        Returns:
            Маршрут с полилинией и шагами или None при любой ошибке
        """
        if self._client is None:
            return None

        try:
            route = await self._client.directions(origin, destination)
        except UpstreamUnavailableError as e:
            await log_info(f"Не удалось построить маршрут: {e.message}", type_msg=TypeMsg.WARNING)
            return None

        if route is None:
            return None

        try:
            return self._parse_route(route)
        except (KeyError, IndexError, TypeError) as e:
            await log_error(f"Некорректный ответ Directions: {e}")
            return None

    async def driver_to_pickup(self, driver_location: Coordinate, pickup: Coordinate) -> Optional[RouteInfo]:
        """Маршрут водителя до точки посадки (None при любой ошибке)."""
        return await self.route_polyline(driver_location, pickup)

    @staticmethod
    def estimated_arrival_minutes(distance_km: float) -> int:
        """Оценка времени подачи по прямой: 2 минуты на километр."""
        return round_half_up(distance_km * ETA_MINUTES_PER_KM)
