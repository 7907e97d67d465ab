# tests/conftest.py
"""
Общие фикстуры и настройки для тестов.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any, AsyncGenerator, Optional
from unittest.mock import AsyncMock, MagicMock

import pytest
import pytest_asyncio

# Устанавливаем переменные окружения перед импортом модулей
os.environ.setdefault("DB_PASSWORD", "test_password")
os.environ.setdefault("LOG_LEVEL", "WARNING")
os.environ["GOOGLE_MAPS_API_KEY"] = ""

from ride_dispatch.core.audit.trail import AuditTrail
from ride_dispatch.core.dispatch.engine import DispatchEngine
from ride_dispatch.core.geo.models import Coordinate
from ride_dispatch.core.geo.service import GeoEstimator
from ride_dispatch.core.notifications.fanout import NotificationFanout
from ride_dispatch.core.presence.models import DriverProfile, PassengerProfile
from ride_dispatch.core.presence.registry import PresenceRegistry
from ride_dispatch.core.pricing.service import FareCalculator
from ride_dispatch.core.rides.lifecycle import RideLifecycle
from ride_dispatch.core.rides.models import RideRequest


# =============================================================================
# ФИКСТУРЫ КОНФИГУРАЦИИ
# =============================================================================

@pytest.fixture(scope="session")
def project_root() -> Path:
    """Корневая директория проекта."""
    return Path(__file__).parent.parent


@pytest.fixture(scope="session")
def config_path(project_root: Path) -> Path:
    """Путь к файлу конфигурации."""
    return project_root / "config" / "config.json"


# =============================================================================
# ТРАНСПОРТ
# =============================================================================

class RecordingTransport:
    """Транспорт, запоминающий все отправленные сообщения."""

    def __init__(self) -> None:
        self.sent: list[tuple[str, dict[str, Any]]] = []
        self.broadcasts: list[tuple[dict[str, Any], set[str]]] = []
        self.closed: set[str] = set()

    async def send(self, session_id: str, message: dict[str, Any]) -> bool:
        if session_id in self.closed:
            return False
        self.sent.append((session_id, message))
        return True

    async def broadcast(self, message: dict[str, Any], exclude: Optional[set[str]] = None) -> int:
        self.broadcasts.append((message, set(exclude or ())))
        return 0

    def messages(self, session_id: str, event: Optional[str] = None) -> list[dict[str, Any]]:
        return [
            m for sid, m in self.sent
            if sid == session_id and (event is None or m.get("type") == event)
        ]

    def events(self, session_id: str) -> list[str]:
        return [m["type"] for sid, m in self.sent if sid == session_id]


# =============================================================================
# ФИКСТУРЫ ДВИЖКА
# =============================================================================

@pytest.fixture
def transport() -> RecordingTransport:
    return RecordingTransport()


@pytest.fixture
def registry() -> PresenceRegistry:
    return PresenceRegistry()


@pytest.fixture
def fanout(registry: PresenceRegistry, transport: RecordingTransport) -> NotificationFanout:
    return NotificationFanout(registry, transport)


@pytest.fixture
def audit() -> AuditTrail:
    return AuditTrail(capacity=100)


@pytest.fixture
def geo() -> GeoEstimator:
    """Оценщик без клиента карт: всегда Haversine."""
    return GeoEstimator()


@pytest.fixture
def fares() -> FareCalculator:
    return FareCalculator(
        base_fare=3.0,
        per_km_rate=1.8,
        per_minute_rate=0.3,
        minimum_fare=8.0,
        commission_rate=0.15,
        currency="USD",
    )


@pytest_asyncio.fixture
async def lifecycle(
    registry: PresenceRegistry,
    geo: GeoEstimator,
    fares: FareCalculator,
    fanout: NotificationFanout,
    audit: AuditTrail,
) -> AsyncGenerator[RideLifecycle, None]:
    service = RideLifecycle(registry, geo, fares, fanout, audit, request_timeout=300)
    yield service
    await service.shutdown()


@pytest_asyncio.fixture
async def engine(
    registry: PresenceRegistry,
    lifecycle: RideLifecycle,
    geo: GeoEstimator,
    fares: FareCalculator,
    fanout: NotificationFanout,
) -> DispatchEngine:
    return DispatchEngine(registry, lifecycle, geo, fares, fanout, search_radius_km=5.0, nearby_limit=20)


# =============================================================================
# ФИКСТУРЫ ИНФРАСТРУКТУРЫ (МОКИ)
# =============================================================================

@pytest.fixture
def mock_db() -> MagicMock:
    """Мок менеджера базы данных."""
    db = MagicMock()
    db.is_connected = True
    db.fetch = AsyncMock(return_value=[])
    db.execute = AsyncMock(return_value="INSERT 0 1")
    db.fetchval = AsyncMock(return_value=None)
    return db


@pytest.fixture
def mock_event_bus() -> AsyncMock:
    """Мок шины событий."""
    event_bus = AsyncMock()
    event_bus.publish = AsyncMock(return_value=True)
    event_bus.is_connected = True
    return event_bus


# =============================================================================
# ФИКСТУРЫ МОДЕЛЕЙ
# =============================================================================

# Центр Мюнхена и точки в пределах нескольких километров
PICKUP = Coordinate(latitude=48.1374, longitude=11.5755)
DESTINATION = Coordinate(latitude=48.1500, longitude=11.5800)


def _driver_profile(driver_id: str, **overrides: Any) -> DriverProfile:
    data: dict[str, Any] = {
        "driver_id": driver_id,
        "name": f"Driver {driver_id}",
        "phone": "+49 170 0000000",
        "vehicle_type": "Sedan",
        "vehicle_number": "M-AB 123",
    }
    data.update(overrides)
    return DriverProfile(**data)


def _passenger_profile(passenger_id: str, **overrides: Any) -> PassengerProfile:
    data: dict[str, Any] = {"passenger_id": passenger_id, "name": f"Passenger {passenger_id}"}
    data.update(overrides)
    return PassengerProfile(**data)


def _ride_request_data(passenger_id: str = "p1", **overrides: Any) -> dict[str, Any]:
    data: dict[str, Any] = {
        "passenger_id": passenger_id,
        "passenger_name": "Anna",
        "passenger_phone": "+49 171 1111111",
        "pickup_latitude": PICKUP.latitude,
        "pickup_longitude": PICKUP.longitude,
        "pickup_address": "Marienplatz 1",
        "destination_latitude": DESTINATION.latitude,
        "destination_longitude": DESTINATION.longitude,
        "destination_address": "Odeonsplatz",
    }
    data.update(overrides)
    return data


def _ride_request(passenger_id: str = "p1", **overrides: Any) -> RideRequest:
    return RideRequest(**_ride_request_data(passenger_id, **overrides))


@pytest.fixture
def pickup() -> Coordinate:
    return PICKUP


@pytest.fixture
def destination() -> Coordinate:
    return DESTINATION


@pytest.fixture
def make_driver_profile():
    """Фабрика профилей водителя: make_driver_profile("d1", rating=4.9)."""
    return _driver_profile


@pytest.fixture
def make_passenger_profile():
    return _passenger_profile


@pytest.fixture
def make_request_data():
    """Фабрика сырых данных запроса поездки (словарь)."""
    return _ride_request_data


@pytest.fixture
def make_request():
    """Фабрика проверенных запросов поездки."""
    return _ride_request
