# ride_dispatch/core/presence/models.py
"""
Модели присутствия: водители, пассажиры, привязки сессий.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, Field

from ride_dispatch.common.constants import ParticipantRole
from ride_dispatch.core.geo.models import Coordinate


class DriverProfile(BaseModel):
    """Профиль водителя, присылаемый при подключении."""
    driver_id: str = Field(..., min_length=1)
    name: Optional[str] = None
    phone: Optional[str] = None
    vehicle_type: Optional[str] = None
    vehicle_number: Optional[str] = None
    image: Optional[str] = None
    rating: Optional[float] = Field(None, ge=0, le=5)
    total_rides: Optional[int] = Field(None, ge=0)
    total_earnings: Optional[float] = Field(None, ge=0)


class Driver(BaseModel):
    """Запись водителя в реестре присутствия."""
    driver_id: str
    session_id: Optional[str] = None
    name: str
    phone: str = ""
    vehicle_type: str
    vehicle_number: str = ""
    image: Optional[str] = None
    rating: float
    latitude: float
    longitude: float
    is_online: bool = True
    is_available: bool = True
    current_ride: Optional[str] = None
    total_rides: int = 0
    total_earnings: float = 0.0
    connected_at: datetime
    last_location_update: datetime
    registration_seq: int = Field(0, exclude=True)

    @property
    def location(self) -> Coordinate:
        return Coordinate(latitude=self.latitude, longitude=self.longitude)


class PassengerProfile(BaseModel):
    """Профиль пассажира, присылаемый при подключении."""
    passenger_id: str = Field(..., min_length=1)
    name: Optional[str] = None
    phone: Optional[str] = None
    image: Optional[str] = None


class Passenger(BaseModel):
    """Запись пассажира в реестре присутствия."""
    passenger_id: str
    session_id: Optional[str] = None
    name: str = ""
    phone: str = ""
    image: Optional[str] = None
    connected_at: datetime


@dataclass
class DriverCandidate:
    """Доступный водитель рядом с точкой посадки."""
    driver_id: str
    distance_km: float
    name: str
    phone: str
    vehicle_type: str
    vehicle_number: str
    rating: float
    latitude: float
    longitude: float
    session_id: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data.pop("session_id")
        return data


@dataclass(frozen=True)
class SessionBinding:
    """Обратная ссылка: сессия транспорта -> участник."""
    session_id: str
    role: ParticipantRole
    participant_id: str
