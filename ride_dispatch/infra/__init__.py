# ride_dispatch/infra/__init__.py
"""
Инфраструктурный слой.
Работа с внешними сервисами: PostgreSQL, RabbitMQ, Google Maps.
"""

from ride_dispatch.infra.database import DatabaseManager, get_db
from ride_dispatch.infra.event_bus import DomainEvent, EventBus, get_event_bus
from ride_dispatch.infra.maps_client import GoogleMapsClient

__all__ = [
    "DatabaseManager",
    "DomainEvent",
    "EventBus",
    "GoogleMapsClient",
    "get_db",
    "get_event_bus",
]
