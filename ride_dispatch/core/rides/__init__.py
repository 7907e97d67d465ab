# ride_dispatch/core/rides/__init__.py
from ride_dispatch.core.rides.models import Ride, RideRequest, generate_ride_id
from ride_dispatch.core.rides.state_machine import RideStateMachine

__all__ = ["Ride", "RideRequest", "RideStateMachine", "generate_ride_id"]
