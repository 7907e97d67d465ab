# ride_dispatch/core/rides/models.py
"""
Модели данных поездок.
"""

from __future__ import annotations

import time
from datetime import datetime, timezone
from typing import Any, Optional
from uuid import uuid4

from pydantic import BaseModel, Field
from pydantic import ValidationError as PydanticValidationError

from ride_dispatch.common.constants import RideStatus
from ride_dispatch.common.exceptions import ValidationError
from ride_dispatch.core.geo.models import Coordinate


def generate_ride_id() -> str:
    """Уникальный идентификатор поездки, производный от времени создания."""
    return f"ride_{int(time.time() * 1000)}_{uuid4().hex[:8]}"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def validation_error_from(exc: PydanticValidationError) -> ValidationError:
    """Преобразует ошибку pydantic в доменную ValidationError."""
    fields = [".".join(str(part) for part in err["loc"]) for err in exc.errors()]
    first = exc.errors()[0] if exc.errors() else {"msg": "invalid input"}
    return ValidationError(f"Invalid request: {', '.join(fields) or first['msg']}", fields=fields)


class RideRequest(BaseModel):
    """Запрос поездки от пассажира."""
    passenger_id: str = Field(..., min_length=1, description="ID пассажира")
    passenger_name: str = Field("", description="Имя пассажира")
    passenger_phone: str = Field("", description="Телефон пассажира")
    passenger_image: Optional[str] = None

    pickup_latitude: float = Field(..., ge=-90, le=90)
    pickup_longitude: float = Field(..., ge=-180, le=180)
    pickup_address: str = Field(..., min_length=1)

    destination_latitude: float = Field(..., ge=-90, le=90)
    destination_longitude: float = Field(..., ge=-180, le=180)
    destination_address: str = Field(..., min_length=1)

    notes: Optional[str] = Field(None, max_length=500)

    @classmethod
    def parse(cls, data: dict[str, Any]) -> "RideRequest":
        """
        Валидирует входные данные запроса.

        Raises:
            ValidationError: Нет обязательного поля или значение вне диапазона
        """
        try:
            return cls.model_validate(data)
        except PydanticValidationError as e:
            raise validation_error_from(e) from e

    @property
    def pickup(self) -> Coordinate:
        return Coordinate(latitude=self.pickup_latitude, longitude=self.pickup_longitude)

    @property
    def destination(self) -> Coordinate:
        return Coordinate(latitude=self.destination_latitude, longitude=self.destination_longitude)


class Ride(BaseModel):
    """Модель поездки."""

    ride_id: str = Field(default_factory=generate_ride_id, description="ID поездки")
    status: RideStatus = Field(RideStatus.REQUESTED, description="Статус поездки")

    # Пассажир
    passenger_id: str
    passenger_name: str = ""
    passenger_phone: str = ""
    passenger_image: Optional[str] = None

    # Маршрут
    pickup_latitude: float
    pickup_longitude: float
    pickup_address: str
    destination_latitude: float
    destination_longitude: float
    destination_address: str
    notes: Optional[str] = None

    # Оценки
    distance_km: float = Field(0.0, ge=0.0, description="Расстояние в км")
    distance_text: str = ""
    duration_minutes: float = Field(0.0, ge=0.0, description="Время поездки в минутах")
    duration_text: str = ""
    route_polyline: Optional[str] = None
    route_steps: list[dict[str, Any]] = Field(default_factory=list)
    fare: float = Field(..., ge=0.0, description="Расчётная стоимость")
    currency: str = "USD"

    # Водитель
    driver_id: Optional[str] = None
    driver_name: Optional[str] = None
    driver_phone: Optional[str] = None
    driver_vehicle_type: Optional[str] = None
    driver_vehicle_number: Optional[str] = None
    driver_rating: Optional[float] = None
    driver_latitude: Optional[float] = None
    driver_longitude: Optional[float] = None
    driver_location_updated_at: Optional[datetime] = None
    driver_to_pickup_polyline: Optional[str] = None
    driver_to_pickup_distance: Optional[str] = None
    driver_to_pickup_duration: Optional[str] = None
    estimated_arrival: Optional[int] = Field(None, description="Минут до подачи")

    # Итоги
    actual_fare: Optional[float] = None
    commission: Optional[float] = None
    driver_earnings: Optional[float] = None
    rating: Optional[int] = Field(None, ge=1, le=5)
    feedback: Optional[str] = None
    cancellation_reason: Optional[str] = None
    cancelled_by: Optional[str] = None

    # Временные метки
    requested_at: datetime = Field(default_factory=utcnow)
    accepted_at: Optional[datetime] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    rated_at: Optional[datetime] = None

    # Водители, отклонившие запрос
    rejected_by: list[str] = Field(default_factory=list, exclude=True)

    @property
    def pickup(self) -> Coordinate:
        return Coordinate(latitude=self.pickup_latitude, longitude=self.pickup_longitude)

    @property
    def destination(self) -> Coordinate:
        return Coordinate(latitude=self.destination_latitude, longitude=self.destination_longitude)

    @property
    def is_live(self) -> bool:
        return self.status in (RideStatus.REQUESTED, RideStatus.ACCEPTED, RideStatus.STARTED)

    @property
    def finished_at(self) -> Optional[datetime]:
        """Момент перехода в терминальный статус."""
        if self.status == RideStatus.COMPLETED:
            return self.completed_at
        if self.status == RideStatus.CANCELLED:
            return self.cancelled_at
        return None

    def snapshot(self) -> dict[str, Any]:
        """Сериализация для отправки клиенту."""
        return self.model_dump(mode="json")
