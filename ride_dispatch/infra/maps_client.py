# ride_dispatch/infra/maps_client.py
"""
HTTP клиент Google Maps (Distance Matrix и Directions).
Возвращает сырые элементы ответа; интерпретация в GeoEstimator.
"""

from __future__ import annotations

from typing import Any, Optional

import httpx

from ride_dispatch.common.exceptions import UpstreamUnavailableError
from ride_dispatch.core.geo.models import Coordinate


# Статусы, означающие «маршрута нет», а не сбой сервиса
NO_ROUTE_STATUSES = frozenset({"ZERO_RESULTS", "NOT_FOUND"})


class GoogleMapsClient:
    """
    Клиент маршрутизации поверх Google Maps Web Services.

    Любая сетевая ошибка, HTTP-ошибка или статус ответа, отличный от
    OK/ZERO_RESULTS/NOT_FOUND, поднимается как UpstreamUnavailableError.
    Отсутствие маршрута возвращается как None.
    """

    DISTANCE_MATRIX_URL = "https://maps.googleapis.com/maps/api/distancematrix/json"
    DIRECTIONS_URL = "https://maps.googleapis.com/maps/api/directions/json"

    def __init__(
        self,
        api_key: str | None = None,
        language: str | None = None,
        timeout: float | None = None,
    ) -> None:
        """
        Args:
            api_key: API ключ Google Maps (берётся из конфига если None)
            language: Язык текстовых полей ответа
            timeout: Таймаут HTTP запроса в секундах
        """
        if api_key is None or language is None or timeout is None:
            from ride_dispatch.config import settings
            api_key = settings.google_maps.GOOGLE_MAPS_API_KEY if api_key is None else api_key
            language = settings.google_maps.MAPS_LANGUAGE if language is None else language
            timeout = settings.google_maps.MAPS_TIMEOUT if timeout is None else timeout

        self._api_key = api_key
        self._language = language
        self._client = httpx.AsyncClient(timeout=timeout)

    @property
    def is_configured(self) -> bool:
        return bool(self._api_key)

    async def close(self) -> None:
        """Закрывает HTTP клиент."""
        await self._client.aclose()

    async def _get(self, url: str, params: dict[str, Any]) -> dict[str, Any]:
        if not self._api_key:
            raise UpstreamUnavailableError("Google Maps API key is not configured")

        try:
            response = await self._client.get(
                url,
                params={**params, "key": self._api_key, "language": self._language},
            )
            response.raise_for_status()
            data = response.json()
        except (httpx.HTTPError, ValueError) as e:
            raise UpstreamUnavailableError(f"Google Maps request failed: {e}") from e

        status = data.get("status")
        if status != "OK" and status not in NO_ROUTE_STATUSES:
            raise UpstreamUnavailableError(
                f"Google Maps returned {status}",
                status=status,
                error_message=data.get("error_message"),
            )
        return data

    async def distance_matrix(self, origin: Coordinate, destination: Coordinate) -> Optional[dict[str, Any]]:
        """
        Запрашивает расстояние и время в пути на автомобиле.

        Returns:
            Элемент матрицы с ключами distance/duration или None, если маршрута нет
        """
        data = await self._get(
            self.DISTANCE_MATRIX_URL,
            {
                "origins": origin.as_param(),
                "destinations": destination.as_param(),
                "units": "metric",
                "mode": "driving",
            },
        )
        try:
            element = data["rows"][0]["elements"][0]
        except (KeyError, IndexError, TypeError):
            return None

        if element.get("status") != "OK":
            return None
        return element

    async def directions(self, origin: Coordinate, destination: Coordinate) -> Optional[dict[str, Any]]:
        """
        Запрашивает маршрут на автомобиле.

        Returns:
            Первый маршрут из ответа Directions API или None
        """
        data = await self._get(
            self.DIRECTIONS_URL,
            {
                "origin": origin.as_param(),
                "destination": destination.as_param(),
                "mode": "driving",
            },
        )
        routes = data.get("routes") or []
        if data.get("status") != "OK" or not routes:
            return None
        return routes[0]
