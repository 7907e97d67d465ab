# ride_dispatch/core/geo/__init__.py
from ride_dispatch.core.geo.models import Coordinate, DistanceEstimate, RouteInfo, RouteStep
from ride_dispatch.core.geo.service import GeoEstimator
from ride_dispatch.core.geo.utils import haversine_km, round_half_up

__all__ = [
    "Coordinate",
    "DistanceEstimate",
    "GeoEstimator",
    "RouteInfo",
    "RouteStep",
    "haversine_km",
    "round_half_up",
]
