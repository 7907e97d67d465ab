# ride_dispatch/core/geo/models.py
"""
Модели геоданных: координаты, оценки расстояния, маршруты.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from pydantic import BaseModel, Field


class Coordinate(BaseModel):
    """Точка на карте в градусах WGS84."""
    latitude: float = Field(..., ge=-90.0, le=90.0, description="Широта")
    longitude: float = Field(..., ge=-180.0, le=180.0, description="Долгота")

    def as_param(self) -> str:
        """Формат параметра origin/destination для Google Maps."""
        return f"{self.latitude},{self.longitude}"


@dataclass
class DistanceEstimate:
    """Оценка расстояния и времени в пути."""
    distance_km: float
    duration_minutes: float
    distance_text: str
    duration_text: str
    is_fallback: bool = False


@dataclass
class RouteStep:
    """Шаг маршрута для навигации."""
    instruction: str
    distance: str
    duration: str
    start_location: dict[str, float] = field(default_factory=dict)
    end_location: dict[str, float] = field(default_factory=dict)


@dataclass
class RouteInfo:
    """Маршрут с кодированной полилинией."""
    polyline: str
    distance_km: float
    duration_minutes: float
    distance_text: str = ""
    duration_text: str = ""
    steps: list[RouteStep] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "polyline": self.polyline,
            "distance_km": self.distance_km,
            "duration_minutes": self.duration_minutes,
            "distance_text": self.distance_text,
            "duration_text": self.duration_text,
            "steps": [step.__dict__ for step in self.steps],
        }
