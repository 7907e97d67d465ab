# ride_dispatch/core/presence/__init__.py
from ride_dispatch.core.presence.models import (
    Driver,
    DriverCandidate,
    DriverProfile,
    Passenger,
    PassengerProfile,
    SessionBinding,
)
from ride_dispatch.core.presence.registry import PresenceRegistry

__all__ = [
    "Driver",
    "DriverCandidate",
    "DriverProfile",
    "Passenger",
    "PassengerProfile",
    "PresenceRegistry",
    "SessionBinding",
]
