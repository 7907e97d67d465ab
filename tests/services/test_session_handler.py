# tests/services/test_session_handler.py
"""
Тесты для SessionHandler: маршрутизация сообщений, права сессий, ответы об ошибках.
"""

from __future__ import annotations

from typing import Any, AsyncGenerator
from unittest.mock import AsyncMock, patch

import pytest
import pytest_asyncio

from ride_dispatch.common.constants import RideStatus
from ride_dispatch.services.dispatch_gateway.dependencies import DispatchContainer
from ride_dispatch.services.dispatch_gateway.handlers import SessionHandler


DRIVER_SESSION = "s-driver"
PASSENGER_SESSION = "s-passenger"


@pytest_asyncio.fixture
async def container(transport) -> AsyncGenerator[DispatchContainer, None]:
    c = DispatchContainer.build(transport=transport, use_infra=False, request_timeout=300)
    yield c
    await c.close()


@pytest.fixture
def handler(container: DispatchContainer) -> SessionHandler:
    return SessionHandler(container)


def _connect_driver(driver_id: str = "d1", **overrides: Any) -> dict[str, Any]:
    data = {
        "type": "connect_driver",
        "driver_id": driver_id,
        "name": "Max",
        "vehicle_type": "Sedan",
        "latitude": 48.1374,
        "longitude": 11.5755,
    }
    data.update(overrides)
    return data


async def _requested_ride(handler: SessionHandler, transport, make_request_data) -> str:
    """Подключает водителя и пассажира, создаёт поездку; возвращает ride_id."""
    await handler.handle(DRIVER_SESSION, _connect_driver())
    await handler.handle(PASSENGER_SESSION, {"type": "connect_passenger", "passenger_id": "p1", "name": "Anna"})
    await handler.handle(PASSENGER_SESSION, {"type": "ride_request", **make_request_data("p1")})
    return transport.messages(PASSENGER_SESSION, "ride_request_submitted")[0]["ride_id"]


def _last_error(transport, session_id: str) -> dict[str, Any]:
    return transport.messages(session_id, "error")[-1]


class TestConnect:
    """Тесты подключения участников."""

    @pytest.mark.asyncio
    async def test_ping(self, handler: SessionHandler, transport) -> None:
        await handler.handle("s1", {"type": "ping"})

        assert "timestamp" in transport.messages("s1", "pong")[0]

    @pytest.mark.asyncio
    async def test_connect_driver(self, handler: SessionHandler, container: DispatchContainer, transport) -> None:
        await handler.handle(DRIVER_SESSION, _connect_driver())

        reply = transport.messages(DRIVER_SESSION, "driver_connected")[0]
        assert reply["driver"]["driver_id"] == "d1"
        assert "session_id" not in reply["driver"]
        assert container.registry.driver_session("d1") == DRIVER_SESSION

        message, excluded = transport.broadcasts[0]
        assert message["type"] == "driver_online"
        assert excluded == {DRIVER_SESSION}

    @pytest.mark.asyncio
    async def test_connect_passenger(self, handler: SessionHandler, transport) -> None:
        await handler.handle(PASSENGER_SESSION, {"type": "connect_passenger", "passenger_id": "p1"})

        reply = transport.messages(PASSENGER_SESSION, "passenger_connected")[0]
        assert reply["passenger"]["passenger_id"] == "p1"


class TestErrors:
    """Тесты ответов об ошибках."""

    @pytest.mark.asyncio
    async def test_unknown_type(self, handler: SessionHandler, transport) -> None:
        await handler.handle("s1", {"type": "teleport"})

        assert _last_error(transport, "s1")["code"] == "validation_error"

    @pytest.mark.asyncio
    async def test_invalid_frame(self, handler: SessionHandler, transport) -> None:
        await handler.invalid_frame("s1")

        assert _last_error(transport, "s1") == {
            "code": "validation_error", "message": "Invalid JSON", "type": "error",
        }

    @pytest.mark.asyncio
    async def test_unbound_session(self, handler: SessionHandler, transport) -> None:
        await handler.handle("s1", {"type": "ride_accept", "ride_id": "ride_1"})

        assert _last_error(transport, "s1")["code"] == "not_authorized"

    @pytest.mark.asyncio
    async def test_passenger_cannot_accept(self, handler: SessionHandler, transport) -> None:
        await handler.handle(PASSENGER_SESSION, {"type": "connect_passenger", "passenger_id": "p1"})
        await handler.handle(PASSENGER_SESSION, {"type": "ride_accept", "ride_id": "ride_1"})

        error = _last_error(transport, PASSENGER_SESSION)
        assert error["code"] == "not_authorized"
        assert error["message"] == "Only drivers can perform this action"

    @pytest.mark.asyncio
    async def test_unknown_ride(self, handler: SessionHandler, transport) -> None:
        await handler.handle(DRIVER_SESSION, _connect_driver())
        await handler.handle(DRIVER_SESSION, {"type": "ride_accept", "ride_id": "ride_missing"})

        error = _last_error(transport, DRIVER_SESSION)
        assert error["code"] == "ride_not_found"
        assert error["details"] == {"ride_id": "ride_missing"}

    @pytest.mark.asyncio
    async def test_request_for_other_passenger(self, handler: SessionHandler, transport, make_request_data) -> None:
        await handler.handle(PASSENGER_SESSION, {"type": "connect_passenger", "passenger_id": "p1"})
        await handler.handle(PASSENGER_SESSION, {"type": "ride_request", **make_request_data("p2")})

        assert _last_error(transport, PASSENGER_SESSION)["code"] == "not_authorized"

    @pytest.mark.asyncio
    async def test_unexpected_error(self, handler: SessionHandler, container: DispatchContainer, transport) -> None:
        """Непредвиденная ошибка возвращается как internal_error."""
        await handler.handle(DRIVER_SESSION, _connect_driver())

        with patch.object(container.lifecycle, "track_driver", new_callable=AsyncMock, side_effect=RuntimeError("boom")):
            await handler.handle(DRIVER_SESSION, {"type": "location_update", "latitude": 48.0, "longitude": 11.0})

        assert _last_error(transport, DRIVER_SESSION) == {
            "code": "internal_error", "message": "Internal server error", "type": "error",
        }


class TestRideFlow:
    """Тесты сценария поездки через сообщения."""

    @pytest.mark.asyncio
    async def test_request_dispatched_to_driver(self, handler: SessionHandler, transport, make_request_data) -> None:
        ride_id = await _requested_ride(handler, transport, make_request_data)

        submitted = transport.messages(PASSENGER_SESSION, "ride_request_submitted")[0]
        assert submitted["status"] == "requested"
        assert submitted["fare"] == 8.0
        offer = transport.messages(DRIVER_SESSION, "ride_request")[0]
        assert offer["ride_id"] == ride_id

    @pytest.mark.asyncio
    async def test_full_ride(self, handler: SessionHandler, container: DispatchContainer, transport, make_request_data) -> None:
        ride_id = await _requested_ride(handler, transport, make_request_data)

        await handler.handle(DRIVER_SESSION, {"type": "ride_accept", "ride_id": ride_id})
        await handler.handle(DRIVER_SESSION, {"type": "ride_start", "ride_id": ride_id})
        await handler.handle(DRIVER_SESSION, {"type": "ride_complete", "ride_id": ride_id})
        await handler.handle(PASSENGER_SESSION, {"type": "ride_rating", "ride_id": ride_id, "rating": 5})
        await handler.handle(PASSENGER_SESSION, {"type": "get_ride_history"})

        assert transport.events(DRIVER_SESSION) == [
            "driver_connected",
            "ride_request",
            "ride_room_joined",
            "ride_accepted_confirmation",
            "ride_started_confirmation",
            "ride_completed_confirmation",
            "new_rating",
        ]
        completed = transport.messages(DRIVER_SESSION, "ride_completed_confirmation")[0]
        assert completed["total_rides"] == 1
        assert completed["total_earnings"] == pytest.approx(6.8)
        assert transport.messages(PASSENGER_SESSION, "rating_submitted")[0]["rating"] == 5
        history = transport.messages(PASSENGER_SESSION, "ride_history")[0]
        assert history["count"] == 1
        assert container.lifecycle.get_ride(ride_id).status == RideStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_reject(self, handler: SessionHandler, transport, make_request_data) -> None:
        ride_id = await _requested_ride(handler, transport, make_request_data)

        await handler.handle(DRIVER_SESSION, {"type": "ride_reject", "ride_id": ride_id})

        reply = transport.messages(DRIVER_SESSION, "ride_rejected_confirmation")[0]
        assert reply == {"ride_id": ride_id, "redispatched_to": 0, "type": "ride_rejected_confirmation"}

    @pytest.mark.asyncio
    async def test_passenger_cancel(self, handler: SessionHandler, transport, make_request_data) -> None:
        ride_id = await _requested_ride(handler, transport, make_request_data)

        await handler.handle(PASSENGER_SESSION, {"type": "ride_cancel", "ride_id": ride_id, "reason": "too long"})

        reply = transport.messages(PASSENGER_SESSION, "ride_cancelled_confirmation")[0]
        assert reply["cancelled_by"] == "passenger"
        assert reply["reason"] == "too long"

    @pytest.mark.asyncio
    async def test_driver_offline_cancels_ride(
        self, handler: SessionHandler, container: DispatchContainer, transport, make_request_data,
    ) -> None:
        ride_id = await _requested_ride(handler, transport, make_request_data)
        await handler.handle(DRIVER_SESSION, {"type": "ride_accept", "ride_id": ride_id})

        await handler.handle(DRIVER_SESSION, {"type": "driver_offline"})

        reply = transport.messages(DRIVER_SESSION, "driver_offline_confirmation")[0]
        assert reply["cancelled_ride_id"] == ride_id
        cancelled = transport.messages(PASSENGER_SESSION, "ride_cancelled")[0]
        assert cancelled["reason"] == "driver went offline"
        assert container.registry.get_driver("d1").is_online is False

    @pytest.mark.asyncio
    async def test_availability_toggle(self, handler: SessionHandler, transport) -> None:
        await handler.handle(DRIVER_SESSION, _connect_driver())

        await handler.handle(DRIVER_SESSION, {"type": "driver_available", "available": False})

        reply = transport.messages(DRIVER_SESSION, "driver_available_confirmation")[0]
        assert reply["is_available"] is False

    @pytest.mark.asyncio
    async def test_nearby_drivers(self, handler: SessionHandler, transport) -> None:
        await handler.handle(DRIVER_SESSION, _connect_driver())

        await handler.handle("s-any", {"type": "get_nearby_drivers", "latitude": 48.1374, "longitude": 11.5755})

        reply = transport.messages("s-any", "nearby_drivers")[0]
        assert reply["count"] == 1
        assert reply["drivers"][0]["driver_id"] == "d1"

    @pytest.mark.asyncio
    async def test_location_update_during_ride(self, handler: SessionHandler, transport, make_request_data) -> None:
        ride_id = await _requested_ride(handler, transport, make_request_data)
        await handler.handle(DRIVER_SESSION, {"type": "ride_accept", "ride_id": ride_id})

        await handler.handle(DRIVER_SESSION, {"type": "location_update", "latitude": 48.14, "longitude": 11.576})

        update = transport.messages(PASSENGER_SESSION, "ride_driver_location")[0]
        assert update["latitude"] == 48.14
        broadcast, excluded = transport.broadcasts[-1]
        assert broadcast["type"] == "driver_location_update"
        assert excluded == {DRIVER_SESSION}


class TestChat:
    """Тесты чата поездки."""

    @pytest.mark.asyncio
    async def test_relay_both_ways(self, handler: SessionHandler, transport, make_request_data) -> None:
        ride_id = await _requested_ride(handler, transport, make_request_data)
        await handler.handle(DRIVER_SESSION, {"type": "ride_accept", "ride_id": ride_id})

        await handler.handle(DRIVER_SESSION, {"type": "driver_message", "ride_id": ride_id, "message": "Outside"})
        await handler.handle(PASSENGER_SESSION, {"type": "passenger_message", "ride_id": ride_id, "message": "Coming"})

        to_passenger = transport.messages(PASSENGER_SESSION, "driver_message")[0]
        assert to_passenger["message"] == "Outside"
        assert to_passenger["driver_id"] == "d1"
        to_driver = transport.messages(DRIVER_SESSION, "passenger_message")[0]
        assert to_driver["passenger_id"] == "p1"

    @pytest.mark.asyncio
    async def test_chat_before_accept(self, handler: SessionHandler, transport, make_request_data) -> None:
        ride_id = await _requested_ride(handler, transport, make_request_data)

        await handler.handle(PASSENGER_SESSION, {"type": "passenger_message", "ride_id": ride_id, "message": "Hi"})

        assert _last_error(transport, PASSENGER_SESSION)["code"] == "invalid_transition"

    @pytest.mark.asyncio
    async def test_outsider_rejected(self, handler: SessionHandler, transport, make_request_data) -> None:
        ride_id = await _requested_ride(handler, transport, make_request_data)
        await handler.handle(DRIVER_SESSION, {"type": "ride_accept", "ride_id": ride_id})
        await handler.handle("s-other", _connect_driver("d2"))

        await handler.handle("s-other", {"type": "driver_message", "ride_id": ride_id, "message": "Hi"})

        assert _last_error(transport, "s-other")["code"] == "not_authorized"


class TestDisconnect:
    """Тесты закрытия соединения."""

    @pytest.mark.asyncio
    async def test_driver_disconnect(
        self, handler: SessionHandler, container: DispatchContainer, transport, make_request_data,
    ) -> None:
        ride_id = await _requested_ride(handler, transport, make_request_data)
        await handler.handle(DRIVER_SESSION, {"type": "ride_accept", "ride_id": ride_id})

        await handler.on_disconnect(DRIVER_SESSION)

        ride = container.lifecycle.get_ride(ride_id)
        assert ride.status == RideStatus.CANCELLED
        assert ride.cancellation_reason == "driver disconnected"
        assert transport.broadcasts[-1][0] == {"driver_id": "d1", "type": "driver_offline"}
        assert container.registry.resolve_session(DRIVER_SESSION) is None

    @pytest.mark.asyncio
    async def test_passenger_disconnect_keeps_ride(
        self, handler: SessionHandler, container: DispatchContainer, transport, make_request_data,
    ) -> None:
        ride_id = await _requested_ride(handler, transport, make_request_data)

        await handler.on_disconnect(PASSENGER_SESSION)

        assert container.registry.get_passenger("p1") is None
        assert container.lifecycle.get_ride(ride_id).status == RideStatus.REQUESTED

    @pytest.mark.asyncio
    async def test_unknown_session(self, handler: SessionHandler, transport) -> None:
        await handler.on_disconnect("s-unknown")

        assert transport.sent == []
