# ride_dispatch/core/notifications/__init__.py
from ride_dispatch.core.notifications.fanout import (
    NotificationFanout,
    RideChannel,
    Transport,
    ride_channel_name,
    server_message,
)

__all__ = ["NotificationFanout", "RideChannel", "Transport", "ride_channel_name", "server_message"]
