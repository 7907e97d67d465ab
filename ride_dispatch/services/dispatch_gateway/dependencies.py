# ride_dispatch/services/dispatch_gateway/dependencies.py
"""
Сборка компонентов диспетчерской и доступ к ним из обработчиков FastAPI.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from starlette.requests import HTTPConnection

from ride_dispatch.core.audit.trail import AuditTrail
from ride_dispatch.core.dispatch.engine import DispatchEngine
from ride_dispatch.core.geo.service import GeoEstimator
from ride_dispatch.core.notifications.fanout import NotificationFanout, Transport
from ride_dispatch.core.presence.registry import PresenceRegistry
from ride_dispatch.core.pricing.service import FareCalculator
from ride_dispatch.core.rides.lifecycle import RideLifecycle
from ride_dispatch.infra.database import DatabaseManager, get_db
from ride_dispatch.infra.event_bus import EventBus, get_event_bus
from ride_dispatch.infra.maps_client import GoogleMapsClient
from ride_dispatch.infra.persistence import RidePersistence
from ride_dispatch.services.dispatch_gateway.connection_manager import ConnectionManager


@dataclass
class DispatchContainer:
    """Все компоненты одного процесса диспетчерской."""
    connections: ConnectionManager
    registry: PresenceRegistry
    geo: GeoEstimator
    fares: FareCalculator
    fanout: NotificationFanout
    audit: AuditTrail
    lifecycle: RideLifecycle
    engine: DispatchEngine
    persistence: Optional[RidePersistence] = None
    maps_client: Optional[GoogleMapsClient] = None

    @classmethod
    def build(
        cls,
        *,
        transport: Optional[Transport] = None,
        maps_client: Optional[GoogleMapsClient] = None,
        db: Optional[DatabaseManager] = None,
        event_bus: Optional[EventBus] = None,
        use_infra: bool = True,
        request_timeout: float | None = None,
    ) -> DispatchContainer:
        """
        Собирает граф зависимостей.

        Args:
            transport: Транспорт уведомлений (по умолчанию ConnectionManager)
            maps_client: Клиент карт (если None, создаётся при наличии API ключа)
            db: Менеджер БД
            event_bus: Шина событий
            use_infra: Подключать ли БД и шину событий
            request_timeout: Таймаут ожидания водителя (секунды)
        """
        connections = ConnectionManager()
        if maps_client is None:
            from ride_dispatch.config import settings
            if settings.google_maps.GOOGLE_MAPS_API_KEY:
                maps_client = GoogleMapsClient()

        persistence = RidePersistence(db or get_db()) if use_infra else None
        bus = (event_bus or get_event_bus()) if use_infra else None

        registry = PresenceRegistry()
        geo = GeoEstimator(maps_client)
        fares = FareCalculator()
        fanout = NotificationFanout(registry, transport or connections)
        audit = AuditTrail(persistence=persistence, event_bus=bus)
        lifecycle = RideLifecycle(
            registry, geo, fares, fanout, audit,
            persistence=persistence,
            request_timeout=request_timeout,
        )
        engine = DispatchEngine(registry, lifecycle, geo, fares, fanout)

        return cls(
            connections=connections,
            registry=registry,
            geo=geo,
            fares=fares,
            fanout=fanout,
            audit=audit,
            lifecycle=lifecycle,
            engine=engine,
            persistence=persistence,
            maps_client=maps_client,
        )

    async def close(self) -> None:
        """Останавливает таймауты и закрывает HTTP клиент карт."""
        await self.lifecycle.shutdown()
        if self.maps_client is not None:
            await self.maps_client.close()


def get_container(connection: HTTPConnection) -> DispatchContainer:
    """Контейнер приложения (для HTTP запросов и WebSocket)."""
    return connection.app.state.container
