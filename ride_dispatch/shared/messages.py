# ride_dispatch/shared/messages.py
"""
Входящие сообщения WebSocket.
Каждое событие является отдельной моделью с полем type; разбор через
дискриминированное объединение до того, как затрагивается состояние.
"""

from __future__ import annotations

from datetime import datetime
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from ride_dispatch.common.exceptions import ValidationError
from ride_dispatch.core.geo.models import Coordinate
from ride_dispatch.core.presence.models import DriverProfile, PassengerProfile
from ride_dispatch.core.rides.models import RideRequest, validation_error_from


class ClientMessage(BaseModel):
    """Базовое входящее сообщение."""
    model_config = ConfigDict(extra="ignore")


# =============================================================================
# СООБЩЕНИЯ ВОДИТЕЛЯ
# =============================================================================

class ConnectDriver(ClientMessage, DriverProfile):
    type: Literal["connect_driver"]
    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)

    def profile(self) -> DriverProfile:
        return DriverProfile.model_validate(self.model_dump(exclude={"type", "latitude", "longitude"}))

    @property
    def location(self) -> Coordinate:
        return Coordinate(latitude=self.latitude, longitude=self.longitude)


class LocationUpdate(ClientMessage):
    type: Literal["location_update"]
    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)
    timestamp: Optional[datetime] = None

    @property
    def location(self) -> Coordinate:
        return Coordinate(latitude=self.latitude, longitude=self.longitude)


class DriverAvailable(ClientMessage):
    type: Literal["driver_available"]
    available: bool = True


class DriverOffline(ClientMessage):
    type: Literal["driver_offline"]


class RideAccept(ClientMessage):
    type: Literal["ride_accept"]
    ride_id: str = Field(..., min_length=1)


class RideReject(ClientMessage):
    type: Literal["ride_reject"]
    ride_id: str = Field(..., min_length=1)


class RideStart(ClientMessage):
    type: Literal["ride_start"]
    ride_id: str = Field(..., min_length=1)


class RideComplete(ClientMessage):
    type: Literal["ride_complete"]
    ride_id: str = Field(..., min_length=1)
    fare: Optional[float] = Field(None, ge=0)


class DriverChatMessage(ClientMessage):
    type: Literal["driver_message"]
    ride_id: str = Field(..., min_length=1)
    message: str = Field(..., min_length=1, max_length=1000)


# =============================================================================
# СООБЩЕНИЯ ПАССАЖИРА
# =============================================================================

class ConnectPassenger(ClientMessage, PassengerProfile):
    type: Literal["connect_passenger"]

    def profile(self) -> PassengerProfile:
        return PassengerProfile.model_validate(self.model_dump(exclude={"type"}))


class RideRequestMessage(ClientMessage, RideRequest):
    type: Literal["ride_request"]

    def request(self) -> RideRequest:
        return RideRequest.model_validate(self.model_dump(exclude={"type"}))


class RideCancel(ClientMessage):
    type: Literal["ride_cancel"]
    ride_id: str = Field(..., min_length=1)
    reason: Optional[str] = Field(None, max_length=500)


class RideRating(ClientMessage):
    type: Literal["ride_rating"]
    ride_id: str = Field(..., min_length=1)
    rating: int = Field(..., ge=1, le=5)
    feedback: Optional[str] = Field(None, max_length=1000)


class GetRideHistory(ClientMessage):
    type: Literal["get_ride_history"]
    limit: int = Field(20, ge=1, le=100)


class GetNearbyDrivers(ClientMessage):
    type: Literal["get_nearby_drivers"]
    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)
    radius_km: Optional[float] = Field(None, gt=0, le=50)

    @property
    def location(self) -> Coordinate:
        return Coordinate(latitude=self.latitude, longitude=self.longitude)


class PassengerChatMessage(ClientMessage):
    type: Literal["passenger_message"]
    ride_id: str = Field(..., min_length=1)
    message: str = Field(..., min_length=1, max_length=1000)


class Ping(ClientMessage):
    type: Literal["ping"]


InboundMessage = Annotated[
    Union[
        ConnectDriver,
        LocationUpdate,
        DriverAvailable,
        DriverOffline,
        RideAccept,
        RideReject,
        RideStart,
        RideComplete,
        DriverChatMessage,
        ConnectPassenger,
        RideRequestMessage,
        RideCancel,
        RideRating,
        GetRideHistory,
        GetNearbyDrivers,
        PassengerChatMessage,
        Ping,
    ],
    Field(discriminator="type"),
]

_inbound_adapter: TypeAdapter[InboundMessage] = TypeAdapter(InboundMessage)


def parse_client_message(data: Any) -> InboundMessage:
    """
    Разбирает входящий кадр.

    Raises:
        ValidationError: Неизвестный type, отсутствующие поля или неверные значения
    """
    if not isinstance(data, dict):
        raise ValidationError("Message must be a JSON object")
    try:
        return _inbound_adapter.validate_python(data)
    except PydanticValidationError as e:
        raise validation_error_from(e) from e
