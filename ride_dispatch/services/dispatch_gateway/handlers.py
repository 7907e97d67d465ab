# ride_dispatch/services/dispatch_gateway/handlers.py
"""
Обработка входящих WebSocket сообщений.
Сессия сопоставляется с участником через реестр присутствия,
сообщение разбирается в модель и передаётся движку.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from ride_dispatch.common.constants import (
    Actor,
    ParticipantRole,
    REASON_DRIVER_DISCONNECTED,
    REASON_DRIVER_WENT_OFFLINE,
    TypeMsg,
)
from ride_dispatch.common.exceptions import (
    DispatchError,
    InvalidTransitionError,
    NotAuthorizedError,
)
from ride_dispatch.common.logger import log_error, log_info
from ride_dispatch.core.presence.models import SessionBinding
from ride_dispatch.services.dispatch_gateway.dependencies import DispatchContainer
from ride_dispatch.shared.messages import (
    ConnectDriver,
    ConnectPassenger,
    DriverAvailable,
    DriverChatMessage,
    DriverOffline,
    GetNearbyDrivers,
    GetRideHistory,
    LocationUpdate,
    PassengerChatMessage,
    Ping,
    RideAccept,
    RideCancel,
    RideComplete,
    RideRating,
    RideReject,
    RideRequestMessage,
    RideStart,
    parse_client_message,
)


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class SessionHandler:
    """
    Обработчик сообщений всех сессий шлюза.

    Ошибки движка возвращаются отправителю как {"type": "error", "code", "message"},
    непредвиденные ошибки логируются и возвращаются как internal_error.
    """

    def __init__(self, container: DispatchContainer) -> None:
        self._c = container

    # =========================================================================
    # ВХОД
    # =========================================================================

    async def handle(self, session_id: str, data: Any) -> None:
        """Разбирает и обрабатывает один входящий кадр."""
        try:
            message = parse_client_message(data)
            await self._route(session_id, message)
        except DispatchError as e:
            await self._reply(session_id, "error", e.to_payload())
        except Exception as e:
            await log_error(
                f"Ошибка обработки сообщения: {e}",
                extra={"session_id": session_id},
                exc_info=True,
            )
            await self._reply(session_id, "error", {
                "code": "internal_error",
                "message": "Internal server error",
            })

    async def invalid_frame(self, session_id: str) -> None:
        """Ответ на кадр, который не удалось разобрать как JSON."""
        await self._reply(session_id, "error", {"code": "validation_error", "message": "Invalid JSON"})

    async def on_disconnect(self, session_id: str) -> None:
        """
        Закрытие соединения.

        Водитель уходит офлайн, его текущая поездка отменяется системой.
        Пассажир удаляется из реестра, его поездки не трогаются.
        """
        binding = self._c.registry.unbind_session(session_id)
        if binding is None:
            return

        if binding.role == ParticipantRole.DRIVER:
            await self._c.lifecycle.driver_offline(binding.participant_id, REASON_DRIVER_DISCONNECTED)
            await self._c.fanout.broadcast("driver_offline", {"driver_id": binding.participant_id})
        else:
            self._c.registry.remove_passenger(binding.participant_id)
            await log_info(
                "Пассажир отключился",
                type_msg=TypeMsg.DEBUG,
                extra={"passenger_id": binding.participant_id},
            )

    async def _route(self, session_id: str, message: Any) -> None:
        match message:
            case Ping():
                await self._reply(session_id, "pong", {"timestamp": _now_iso()})
            case ConnectDriver():
                await self._connect_driver(session_id, message)
            case LocationUpdate():
                await self._location_update(session_id, message)
            case DriverAvailable():
                await self._driver_available(session_id, message)
            case DriverOffline():
                await self._driver_offline(session_id)
            case RideAccept():
                await self._ride_accept(session_id, message)
            case RideReject():
                await self._ride_reject(session_id, message)
            case RideStart():
                await self._ride_start(session_id, message)
            case RideComplete():
                await self._ride_complete(session_id, message)
            case ConnectPassenger():
                await self._connect_passenger(session_id, message)
            case RideRequestMessage():
                await self._ride_request(session_id, message)
            case RideCancel():
                await self._ride_cancel(session_id, message)
            case RideRating():
                await self._ride_rating(session_id, message)
            case GetRideHistory():
                await self._ride_history(session_id, message)
            case GetNearbyDrivers():
                await self._nearby_drivers(session_id, message)
            case DriverChatMessage() | PassengerChatMessage():
                await self._chat(session_id, message)

    # =========================================================================
    # СЕССИИ
    # =========================================================================

    async def _reply(self, session_id: str, event: str, payload: dict[str, Any] | None = None) -> bool:
        return await self._c.fanout.notify_session(session_id, event, payload)

    def _binding(self, session_id: str) -> SessionBinding:
        binding = self._c.registry.resolve_session(session_id)
        if binding is None:
            raise NotAuthorizedError("Session is not connected as a driver or passenger")
        return binding

    def _driver_id(self, session_id: str) -> str:
        binding = self._binding(session_id)
        if binding.role != ParticipantRole.DRIVER:
            raise NotAuthorizedError("Only drivers can perform this action")
        return binding.participant_id

    def _passenger_id(self, session_id: str) -> str:
        binding = self._binding(session_id)
        if binding.role != ParticipantRole.PASSENGER:
            raise NotAuthorizedError("Only passengers can perform this action")
        return binding.participant_id

    # =========================================================================
    # ВОДИТЕЛЬ
    # =========================================================================

    async def _connect_driver(self, session_id: str, message: ConnectDriver) -> None:
        driver = await self._c.lifecycle.driver_online(message.profile(), message.location, session_id)
        await self._reply(session_id, "driver_connected", {
            "driver": driver.model_dump(mode="json", exclude={"session_id"}),
            "message": "Connected as driver",
        })
        await self._c.fanout.broadcast("driver_online", {
            "driver_id": driver.driver_id,
            "name": driver.name,
            "vehicle_type": driver.vehicle_type,
            "latitude": driver.latitude,
            "longitude": driver.longitude,
        }, exclude={session_id})

    async def _location_update(self, session_id: str, message: LocationUpdate) -> None:
        driver = await self._c.lifecycle.track_driver(
            self._driver_id(session_id), message.location, message.timestamp,
        )
        if driver is None:
            return
        await self._c.fanout.broadcast("driver_location_update", {
            "driver_id": driver.driver_id,
            "latitude": driver.latitude,
            "longitude": driver.longitude,
            "timestamp": driver.last_location_update.isoformat(),
        }, exclude={session_id})

    async def _driver_available(self, session_id: str, message: DriverAvailable) -> None:
        driver = self._c.registry.set_availability(self._driver_id(session_id), message.available)
        await self._reply(session_id, "driver_available_confirmation", {
            "driver_id": driver.driver_id,
            "is_available": driver.is_available,
        })

    async def _driver_offline(self, session_id: str) -> None:
        driver_id = self._driver_id(session_id)
        cancelled = await self._c.lifecycle.driver_offline(driver_id, REASON_DRIVER_WENT_OFFLINE)
        await self._reply(session_id, "driver_offline_confirmation", {
            "driver_id": driver_id,
            "cancelled_ride_id": cancelled.ride_id if cancelled else None,
        })
        await self._c.fanout.broadcast("driver_offline", {"driver_id": driver_id}, exclude={session_id})

    async def _ride_accept(self, session_id: str, message: RideAccept) -> None:
        ride = await self._c.lifecycle.accept(message.ride_id, self._driver_id(session_id))
        await self._reply(session_id, "ride_accepted_confirmation", {
            **ride.snapshot(),
            "message": "Ride accepted",
        })

    async def _ride_reject(self, session_id: str, message: RideReject) -> None:
        offered = await self._c.engine.reject(message.ride_id, self._driver_id(session_id))
        await self._reply(session_id, "ride_rejected_confirmation", {
            "ride_id": message.ride_id,
            "redispatched_to": offered,
        })

    async def _ride_start(self, session_id: str, message: RideStart) -> None:
        ride = await self._c.lifecycle.start(message.ride_id, self._driver_id(session_id))
        await self._reply(session_id, "ride_started_confirmation", {
            **ride.snapshot(),
            "message": "Ride started",
        })

    async def _ride_complete(self, session_id: str, message: RideComplete) -> None:
        driver_id = self._driver_id(session_id)
        ride = await self._c.lifecycle.complete(message.ride_id, driver_id, message.fare)
        driver = self._c.registry.get_driver(driver_id)
        await self._reply(session_id, "ride_completed_confirmation", {
            **ride.snapshot(),
            "message": "Ride completed",
            "total_rides": driver.total_rides if driver else None,
            "total_earnings": driver.total_earnings if driver else None,
        })

    # =========================================================================
    # ПАССАЖИР
    # =========================================================================

    async def _connect_passenger(self, session_id: str, message: ConnectPassenger) -> None:
        passenger = self._c.registry.register_passenger(message.profile(), session_id)
        await self._reply(session_id, "passenger_connected", {
            "passenger": passenger.model_dump(mode="json", exclude={"session_id"}),
            "message": "Connected as passenger",
        })
        await log_info("Пассажир подключился", extra={"passenger_id": passenger.passenger_id})

    async def _ride_request(self, session_id: str, message: RideRequestMessage) -> None:
        passenger_id = self._passenger_id(session_id)
        request = message.request()
        if request.passenger_id != passenger_id:
            raise NotAuthorizedError("Ride can only be requested for the connected passenger")

        ride = await self._c.engine.submit(request)
        await self._reply(session_id, "ride_request_submitted", {
            **ride.snapshot(),
            "message": "Looking for nearby drivers",
        })
        await self._c.engine.dispatch(ride)

    async def _ride_cancel(self, session_id: str, message: RideCancel) -> None:
        binding = self._binding(session_id)
        actor = Actor.DRIVER if binding.role == ParticipantRole.DRIVER else Actor.PASSENGER
        ride = await self._c.lifecycle.cancel(
            message.ride_id, actor, message.reason, actor_id=binding.participant_id,
        )
        await self._reply(session_id, "ride_cancelled_confirmation", {
            "ride_id": ride.ride_id,
            "reason": ride.cancellation_reason,
            "cancelled_by": ride.cancelled_by,
        })

    async def _ride_rating(self, session_id: str, message: RideRating) -> None:
        ride = await self._c.lifecycle.rate(
            message.ride_id, self._passenger_id(session_id), message.rating, message.feedback,
        )
        await self._reply(session_id, "rating_submitted", {
            "ride_id": ride.ride_id,
            "rating": ride.rating,
            "message": "Thank you for your feedback",
        })

    async def _ride_history(self, session_id: str, message: GetRideHistory) -> None:
        rides = self._c.lifecycle.history(self._passenger_id(session_id), message.limit)
        await self._reply(session_id, "ride_history", {
            "rides": [ride.snapshot() for ride in rides],
            "count": len(rides),
        })

    async def _nearby_drivers(self, session_id: str, message: GetNearbyDrivers) -> None:
        drivers = self._c.engine.nearby_drivers(message.location, message.radius_km)
        await self._reply(session_id, "nearby_drivers", {"drivers": drivers, "count": len(drivers)})

    # =========================================================================
    # ЧАТ ПОЕЗДКИ
    # =========================================================================

    async def _chat(self, session_id: str, message: DriverChatMessage | PassengerChatMessage) -> None:
        """Пересылка сообщения второму участнику открытого канала поездки."""
        binding = self._binding(session_id)
        channel = self._c.fanout.channel(message.ride_id)
        if channel is None:
            raise InvalidTransitionError("Ride chat is not open", ride_id=message.ride_id)

        payload = {
            "ride_id": message.ride_id,
            "message": message.message,
            "timestamp": _now_iso(),
        }
        if isinstance(message, DriverChatMessage):
            if binding.role != ParticipantRole.DRIVER or channel.driver_id != binding.participant_id:
                raise NotAuthorizedError("Not a participant of this ride", ride_id=message.ride_id)
            await self._c.fanout.notify_passenger(channel.passenger_id, "driver_message", {
                **payload, "driver_id": channel.driver_id,
            })
        else:
            if binding.role != ParticipantRole.PASSENGER or channel.passenger_id != binding.participant_id:
                raise NotAuthorizedError("Not a participant of this ride", ride_id=message.ride_id)
            await self._c.fanout.notify_driver(channel.driver_id, "passenger_message", {
                **payload, "passenger_id": channel.passenger_id,
            })
