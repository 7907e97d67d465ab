# ride_dispatch/core/notifications/fanout.py
"""
Рассылка событий жизненного цикла по сессиям транспорта.
Адресаты: один участник, кандидаты-водители, канал поездки или все сессии.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Iterable, Optional, Protocol

from ride_dispatch.common.constants import RIDE_CHANNEL_PREFIX
from ride_dispatch.common.logger import log_debug, log_warning
from ride_dispatch.core.geo.service import GeoEstimator
from ride_dispatch.core.presence.models import DriverCandidate
from ride_dispatch.core.presence.registry import PresenceRegistry
from ride_dispatch.core.rides.models import Ride


class Transport(Protocol):
    """Транспорт сообщений, адресуемый по идентификатору сессии."""

    async def send(self, session_id: str, message: dict[str, Any]) -> bool:
        ...

    async def broadcast(self, message: dict[str, Any], exclude: Optional[set[str]] = None) -> int:
        ...


def server_message(event: str, payload: Optional[dict[str, Any]] = None) -> dict[str, Any]:
    """Формирует исходящее сообщение {"type": event, ...payload}."""
    return {**(payload or {}), "type": event}


def ride_channel_name(ride_id: str) -> str:
    return f"{RIDE_CHANNEL_PREFIX}{ride_id}"


@dataclass(frozen=True)
class RideChannel:
    """Группа подписчиков поездки: пассажир и назначенный водитель."""
    name: str
    ride_id: str
    passenger_id: str
    driver_id: str


class NotificationFanout:
    """
    Доставка уведомлений участникам.

    Сессии разрешаются через реестр в момент отправки, поэтому
    переподключившийся участник получает события канала поездки.
    Доставка в отсутствующую сессию молча отбрасывается.
    """

    def __init__(self, registry: PresenceRegistry, transport: Transport) -> None:
        self._registry = registry
        self._transport = transport
        self._channels: dict[str, RideChannel] = {}

    async def _deliver(self, session_id: Optional[str], event: str, payload: dict[str, Any]) -> bool:
        if session_id is None:
            await log_debug(f"Нет активной сессии для события {event}, сообщение отброшено")
            return False
        try:
            return await self._transport.send(session_id, server_message(event, payload))
        except Exception as e:
            await log_warning(f"Не удалось доставить {event} в сессию {session_id}: {e}")
            return False

    # =========================================================================
    # ПРЯМАЯ ДОСТАВКА
    # =========================================================================

    async def notify_session(self, session_id: str, event: str, payload: Optional[dict[str, Any]] = None) -> bool:
        return await self._deliver(session_id, event, payload or {})

    async def notify_driver(self, driver_id: str, event: str, payload: Optional[dict[str, Any]] = None) -> bool:
        return await self._deliver(self._registry.driver_session(driver_id), event, payload or {})

    async def notify_passenger(
        self, passenger_id: str, event: str, payload: Optional[dict[str, Any]] = None,
    ) -> bool:
        return await self._deliver(self._registry.passenger_session(passenger_id), event, payload or {})

    async def broadcast(
        self, event: str, payload: Optional[dict[str, Any]] = None, exclude: Optional[set[str]] = None,
    ) -> int:
        """Рассылка всем подключенным сессиям."""
        try:
            return await self._transport.broadcast(server_message(event, payload), exclude=exclude)
        except Exception as e:
            await log_warning(f"Не удалось разослать {event}: {e}")
            return 0

    # =========================================================================
    # ПРЕДЛОЖЕНИЕ ПОЕЗДКИ КАНДИДАТАМ
    # =========================================================================

    async def offer_ride(self, ride: Ride, candidates: Iterable[DriverCandidate]) -> int:
        """
        Отправляет запрос поездки каждому кандидату с его оценкой подачи.

        Returns:
            Количество доставленных предложений
        """
        snapshot = ride.snapshot()
        delivered = 0
        for candidate in candidates:
            arrival = GeoEstimator.estimated_arrival_minutes(candidate.distance_km)
            payload = {
                **snapshot,
                "estimated_arrival": f"{arrival} minutes",
                "driver_distance": f"{candidate.distance_km:.2f}",
            }
            if await self._deliver(self._registry.driver_session(candidate.driver_id), "ride_request", payload):
                delivered += 1
        return delivered

    # =========================================================================
    # КАНАЛ ПОЕЗДКИ
    # =========================================================================

    def open_ride_channel(self, ride_id: str, passenger_id: str, driver_id: str) -> RideChannel:
        channel = RideChannel(
            name=ride_channel_name(ride_id),
            ride_id=ride_id,
            passenger_id=passenger_id,
            driver_id=driver_id,
        )
        self._channels[ride_id] = channel
        return channel

    def close_ride_channel(self, ride_id: str) -> Optional[RideChannel]:
        return self._channels.pop(ride_id, None)

    def channel(self, ride_id: str) -> Optional[RideChannel]:
        return self._channels.get(ride_id)

    def channel_count(self) -> int:
        return len(self._channels)

    async def notify_ride(self, ride_id: str, event: str, payload: Optional[dict[str, Any]] = None) -> int:
        """
        Доставка только участникам канала поездки.

        Returns:
            Количество доставленных сообщений (0, если канал не открыт)
        """
        channel = self._channels.get(ride_id)
        if channel is None:
            return 0
        delivered = 0
        if await self.notify_passenger(channel.passenger_id, event, payload):
            delivered += 1
        if await self.notify_driver(channel.driver_id, event, payload):
            delivered += 1
        return delivered
