# tests/core/test_ride_lifecycle.py
"""
Тесты для RideLifecycle: переходы статусов, гонка принятия,
таймаут ожидания, отмена, оценка и очистка.
"""

from __future__ import annotations

import asyncio
from datetime import timedelta
from unittest.mock import AsyncMock

import pytest
import pytest_asyncio

from ride_dispatch.common.constants import (
    Actor,
    REASON_DRIVER_DISCONNECTED,
    REASON_NO_DRIVER_ACCEPTED,
    RideStatus,
)
from ride_dispatch.common.exceptions import (
    DriverUnavailableError,
    InvalidTransitionError,
    NotAuthorizedError,
    RideAlreadyProcessedError,
    RideNotFoundError,
    RideNotPendingError,
    ValidationError,
)
from ride_dispatch.core.audit.trail import AuditTrail
from ride_dispatch.core.geo.models import Coordinate
from ride_dispatch.core.geo.service import GeoEstimator
from ride_dispatch.core.notifications.fanout import NotificationFanout
from ride_dispatch.core.presence.registry import PresenceRegistry
from ride_dispatch.core.pricing.service import FareCalculator
from ride_dispatch.core.rides.lifecycle import RideLifecycle
from ride_dispatch.core.rides.models import Ride, RideRequest, utcnow


async def _create(lifecycle: RideLifecycle, geo: GeoEstimator, fares: FareCalculator, request: RideRequest) -> Ride:
    estimate = geo.fallback_estimate(request.pickup, request.destination)
    quote = fares.calculate(estimate.distance_km, estimate.duration_minutes)
    return await lifecycle.create(request, estimate, quote)


@pytest.fixture
def participants(registry: PresenceRegistry, pickup: Coordinate, make_driver_profile, make_passenger_profile) -> None:
    """Пассажир p1 (сессия s-p1) и водитель d1 (сессия s-d1) с рейтингом 4.5 после двух поездок."""
    registry.register_passenger(make_passenger_profile("p1"), "s-p1")
    registry.register_driver(make_driver_profile("d1", rating=4.5, total_rides=2), pickup, "s-d1")


@pytest_asyncio.fixture
async def ride(participants, lifecycle: RideLifecycle, geo: GeoEstimator, fares: FareCalculator, make_request) -> Ride:
    return await _create(lifecycle, geo, fares, make_request("p1"))


class TestCreate:
    """Тесты создания поездки."""

    @pytest.mark.asyncio
    async def test_created_requested(self, ride: Ride, lifecycle: RideLifecycle) -> None:
        assert ride.status == RideStatus.REQUESTED
        assert ride.ride_id.startswith("ride_")
        assert ride.driver_id is None
        assert lifecycle.has_pending_timeout(ride.ride_id)
        assert [r.ride_id for r in lifecycle.list_live()] == [ride.ride_id]

    @pytest.mark.asyncio
    async def test_short_trip_minimum_fare(self, ride: Ride) -> None:
        """Около 1.4 км по Haversine: стоимость равна минимальной."""
        assert ride.distance_km == pytest.approx(1.44, abs=0.02)
        assert ride.fare == 8.0
        assert ride.currency == "USD"

    @pytest.mark.asyncio
    async def test_blank_address_rejected(
        self, lifecycle: RideLifecycle, geo: GeoEstimator, fares: FareCalculator, make_request,
    ) -> None:
        request = make_request("p1", pickup_address="   ")

        with pytest.raises(ValidationError):
            await _create(lifecycle, geo, fares, request)

    @pytest.mark.asyncio
    async def test_audited(self, ride: Ride, audit: AuditTrail) -> None:
        events = audit.recent(event_types=["ride:requested"])

        assert len(events) == 1
        assert events[0].ride_id == ride.ride_id
        assert events[0].actor == Actor.PASSENGER

    @pytest.mark.asyncio
    async def test_unknown_ride(self, lifecycle: RideLifecycle) -> None:
        with pytest.raises(RideNotFoundError):
            lifecycle.get_ride("ride_missing")
        with pytest.raises(RideNotFoundError):
            await lifecycle.accept("ride_missing", "d1")


class TestAccept:
    """Тесты принятия поездки."""

    @pytest.mark.asyncio
    async def test_accept(self, ride: Ride, lifecycle: RideLifecycle, registry: PresenceRegistry) -> None:
        accepted = await lifecycle.accept(ride.ride_id, "d1")

        assert accepted.status == RideStatus.ACCEPTED
        assert accepted.driver_id == "d1"
        assert accepted.driver_rating == 4.5
        assert accepted.accepted_at is not None
        assert accepted.estimated_arrival == 0
        driver = registry.get_driver("d1")
        assert driver.current_ride == ride.ride_id
        assert driver.is_available is False

    @pytest.mark.asyncio
    async def test_defuses_timeout(self, ride: Ride, lifecycle: RideLifecycle) -> None:
        await lifecycle.accept(ride.ride_id, "d1")

        assert not lifecycle.has_pending_timeout(ride.ride_id)

    @pytest.mark.asyncio
    async def test_notifies_ride_channel(self, ride: Ride, lifecycle: RideLifecycle, fanout: NotificationFanout, transport) -> None:
        """Пассажир получает ride_room_joined и затем ride_accepted."""
        await lifecycle.accept(ride.ride_id, "d1")

        assert transport.events("s-p1") == ["ride_room_joined", "ride_accepted"]
        assert transport.events("s-d1") == ["ride_room_joined"]
        assert transport.messages("s-p1", "ride_accepted")[0]["driver_id"] == "d1"
        assert fanout.channel(ride.ride_id) is not None

    @pytest.mark.asyncio
    async def test_second_accept_already_processed(
        self, ride: Ride, lifecycle: RideLifecycle, registry: PresenceRegistry, pickup: Coordinate, make_driver_profile,
    ) -> None:
        registry.register_driver(make_driver_profile("d2"), pickup, "s-d2")
        await lifecycle.accept(ride.ride_id, "d1")

        with pytest.raises(RideAlreadyProcessedError):
            await lifecycle.accept(ride.ride_id, "d2")

        assert registry.get_driver("d2").is_available is True

    @pytest.mark.asyncio
    async def test_accept_cancelled_ride(self, ride: Ride, lifecycle: RideLifecycle) -> None:
        await lifecycle.cancel(ride.ride_id, Actor.PASSENGER, actor_id="p1")

        with pytest.raises(RideNotPendingError) as exc_info:
            await lifecycle.accept(ride.ride_id, "d1")

        assert not isinstance(exc_info.value, RideAlreadyProcessedError)

    @pytest.mark.asyncio
    async def test_cancel_while_route_is_built(
        self,
        registry: PresenceRegistry,
        fares: FareCalculator,
        fanout: NotificationFanout,
        audit: AuditTrail,
        participants,
        make_request,
        transport,
    ) -> None:
        """Пассажир отменяет поездку, пока водителю строится маршрут до точки посадки."""
        route_requested = asyncio.Event()
        release_route = asyncio.Event()

        async def blocked_directions(origin, destination):
            route_requested.set()
            await release_route.wait()
            return None

        client = AsyncMock()
        client.directions.side_effect = blocked_directions
        lifecycle = RideLifecycle(registry, GeoEstimator(client), fares, fanout, audit, request_timeout=300)
        try:
            ride = await _create(lifecycle, GeoEstimator(), fares, make_request("p1"))

            accepting = asyncio.create_task(lifecycle.accept(ride.ride_id, "d1"))
            await asyncio.wait_for(route_requested.wait(), timeout=1)
            await lifecycle.cancel(ride.ride_id, Actor.PASSENGER, actor_id="p1")
            release_route.set()

            with pytest.raises(RideNotPendingError):
                await accepting

            current = lifecycle.get_ride(ride.ride_id)
            assert current.status == RideStatus.CANCELLED
            assert current.driver_id is None
            assert registry.get_driver("d1").current_ride is None
            assert registry.get_driver("d1").is_available is True
            assert fanout.channel(ride.ride_id) is None
            assert transport.messages("s-p1", "ride_accepted") == []
            assert audit.recent(event_types=["ride:accepted"]) == []
        finally:
            await lifecycle.shutdown()

    @pytest.mark.asyncio
    async def test_busy_driver_cannot_accept(
        self, participants, lifecycle: RideLifecycle, geo: GeoEstimator, fares: FareCalculator, make_request,
        registry: PresenceRegistry, make_passenger_profile,
    ) -> None:
        registry.register_passenger(make_passenger_profile("p2"), "s-p2")
        first = await _create(lifecycle, geo, fares, make_request("p1"))
        second = await _create(lifecycle, geo, fares, make_request("p2"))
        await lifecycle.accept(first.ride_id, "d1")

        with pytest.raises(DriverUnavailableError):
            await lifecycle.accept(second.ride_id, "d1")

        assert lifecycle.get_ride(second.ride_id).status == RideStatus.REQUESTED

    @pytest.mark.asyncio
    async def test_concurrent_accepts_single_winner(
        self,
        registry: PresenceRegistry,
        fares: FareCalculator,
        fanout: NotificationFanout,
        audit: AuditTrail,
        pickup: Coordinate,
        make_driver_profile,
        make_passenger_profile,
        make_request,
    ) -> None:
        """Пять водителей принимают одну поездку одновременно: успешно ровно одно принятие."""

        async def slow_directions(origin, destination):
            await asyncio.sleep(0.01)
            return None

        client = AsyncMock()
        client.directions.side_effect = slow_directions
        geo = GeoEstimator(client)
        lifecycle = RideLifecycle(registry, geo, fares, fanout, audit, request_timeout=300)
        try:
            registry.register_passenger(make_passenger_profile("p1"), "s-p1")
            driver_ids = [f"d{i}" for i in range(5)]
            for driver_id in driver_ids:
                registry.register_driver(make_driver_profile(driver_id), pickup, f"s-{driver_id}")
            ride = await _create(lifecycle, GeoEstimator(), fares, make_request("p1"))

            results = await asyncio.gather(
                *(lifecycle.accept(ride.ride_id, driver_id) for driver_id in driver_ids),
                return_exceptions=True,
            )

            winners = [r for r in results if isinstance(r, Ride)]
            losers = [r for r in results if isinstance(r, Exception)]
            assert len(winners) == 1
            assert len(losers) == 4
            assert all(isinstance(e, RideAlreadyProcessedError) for e in losers)

            winner_id = winners[0].driver_id
            assert lifecycle.get_ride(ride.ride_id).driver_id == winner_id
            busy = [d.driver_id for d in registry.list_drivers() if d.current_ride == ride.ride_id]
            assert busy == [winner_id]
            assert registry.counts()["available_drivers"] == 4
        finally:
            await lifecycle.shutdown()


class TestReject:
    """Тесты отказа водителя."""

    @pytest.mark.asyncio
    async def test_reject_keeps_requested(self, ride: Ride, lifecycle: RideLifecycle) -> None:
        result = await lifecycle.reject(ride.ride_id, "d1")
        await lifecycle.reject(ride.ride_id, "d1")

        assert result.status == RideStatus.REQUESTED
        assert lifecycle.get_ride(ride.ride_id).rejected_by == ["d1"]

    @pytest.mark.asyncio
    async def test_reject_after_accept(self, ride: Ride, lifecycle: RideLifecycle) -> None:
        await lifecycle.accept(ride.ride_id, "d1")

        assert await lifecycle.reject(ride.ride_id, "d2") is None


class TestTimeout:
    """Тесты таймаута ожидания водителя."""

    @pytest.mark.asyncio
    async def test_unaccepted_ride_times_out(
        self, participants, registry: PresenceRegistry, fares: FareCalculator, fanout: NotificationFanout,
        audit: AuditTrail, transport, make_request,
    ) -> None:
        geo = GeoEstimator()
        lifecycle = RideLifecycle(registry, geo, fares, fanout, audit, request_timeout=0.05)
        try:
            ride = await _create(lifecycle, geo, fares, make_request("p1"))

            await asyncio.sleep(0.3)

            expired = lifecycle.get_ride(ride.ride_id)
            assert expired.status == RideStatus.CANCELLED
            assert expired.cancellation_reason == REASON_NO_DRIVER_ACCEPTED
            assert expired.cancelled_by == Actor.SYSTEM.value
            assert transport.events("s-p1") == ["ride_timeout"]
            assert not lifecycle.has_pending_timeout(ride.ride_id)
        finally:
            await lifecycle.shutdown()

    @pytest.mark.asyncio
    async def test_timeout_after_accept_is_noop(self, ride: Ride, lifecycle: RideLifecycle) -> None:
        await lifecycle.accept(ride.ride_id, "d1")

        assert await lifecycle.timeout(ride.ride_id) is None
        assert lifecycle.get_ride(ride.ride_id).status == RideStatus.ACCEPTED

    @pytest.mark.asyncio
    async def test_timeout_unknown_ride(self, lifecycle: RideLifecycle) -> None:
        assert await lifecycle.timeout("ride_missing") is None


class TestStartAndComplete:
    """Тесты начала и завершения поездки."""

    @pytest.mark.asyncio
    async def test_full_ride(
        self, ride: Ride, lifecycle: RideLifecycle, registry: PresenceRegistry, fanout: NotificationFanout, transport,
    ) -> None:
        await lifecycle.accept(ride.ride_id, "d1")
        started = await lifecycle.start(ride.ride_id, "d1")
        completed = await lifecycle.complete(ride.ride_id, "d1")

        assert started.status == RideStatus.STARTED
        assert completed.status == RideStatus.COMPLETED
        assert completed.actual_fare == 8.0
        assert completed.commission == pytest.approx(1.2)
        assert completed.driver_earnings == pytest.approx(6.8)

        driver = registry.get_driver("d1")
        assert driver.total_rides == 3
        assert driver.total_earnings == pytest.approx(6.8)
        assert driver.is_available is True
        assert driver.current_ride is None

        assert fanout.channel(ride.ride_id) is None
        assert [r.ride_id for r in lifecycle.list_completed()] == [ride.ride_id]
        assert lifecycle.list_live() == []
        assert transport.messages("s-p1", "ride_completed")[0]["rating_request"] is True

    @pytest.mark.asyncio
    async def test_actual_fare_overrides(self, ride: Ride, lifecycle: RideLifecycle) -> None:
        await lifecycle.accept(ride.ride_id, "d1")
        await lifecycle.start(ride.ride_id, "d1")

        completed = await lifecycle.complete(ride.ride_id, "d1", actual_fare=12.5)

        assert completed.actual_fare == 12.5
        assert completed.driver_earnings == pytest.approx(12.5 * 0.85)

    @pytest.mark.asyncio
    async def test_negative_fare_rejected(self, ride: Ride, lifecycle: RideLifecycle) -> None:
        await lifecycle.accept(ride.ride_id, "d1")
        await lifecycle.start(ride.ride_id, "d1")

        with pytest.raises(ValidationError):
            await lifecycle.complete(ride.ride_id, "d1", actual_fare=-1.0)

    @pytest.mark.asyncio
    async def test_start_before_accept(self, ride: Ride, lifecycle: RideLifecycle) -> None:
        with pytest.raises(InvalidTransitionError):
            await lifecycle.start(ride.ride_id, "d1")

    @pytest.mark.asyncio
    async def test_complete_before_start(self, ride: Ride, lifecycle: RideLifecycle) -> None:
        await lifecycle.accept(ride.ride_id, "d1")

        with pytest.raises(InvalidTransitionError):
            await lifecycle.complete(ride.ride_id, "d1")

    @pytest.mark.asyncio
    async def test_other_driver_cannot_complete(self, ride: Ride, lifecycle: RideLifecycle) -> None:
        await lifecycle.accept(ride.ride_id, "d1")
        await lifecycle.start(ride.ride_id, "d1")

        with pytest.raises(NotAuthorizedError):
            await lifecycle.complete(ride.ride_id, "d2")

        assert lifecycle.get_ride(ride.ride_id).status == RideStatus.STARTED

    @pytest.mark.asyncio
    async def test_driver_location_follows_ride(
        self, ride: Ride, lifecycle: RideLifecycle, transport, destination: Coordinate,
    ) -> None:
        await lifecycle.accept(ride.ride_id, "d1")

        await lifecycle.track_driver("d1", destination)

        current = lifecycle.get_ride(ride.ride_id)
        assert current.driver_latitude == destination.latitude
        updates = transport.messages("s-p1", "ride_driver_location")
        assert updates[0]["latitude"] == destination.latitude
        assert updates[0]["ride_id"] == ride.ride_id


class TestCancel:
    """Тесты отмены поездки."""

    @pytest.mark.asyncio
    async def test_passenger_cancels_requested(self, ride: Ride, lifecycle: RideLifecycle, transport) -> None:
        cancelled = await lifecycle.cancel(ride.ride_id, Actor.PASSENGER, "changed plans", actor_id="p1")

        assert cancelled.status == RideStatus.CANCELLED
        assert cancelled.cancellation_reason == "changed plans"
        assert cancelled.cancelled_by == "passenger"
        assert not lifecycle.has_pending_timeout(ride.ride_id)
        assert transport.events("s-p1") == []

    @pytest.mark.asyncio
    async def test_default_reason(self, ride: Ride, lifecycle: RideLifecycle) -> None:
        cancelled = await lifecycle.cancel(ride.ride_id, Actor.PASSENGER)

        assert cancelled.cancellation_reason == "Cancelled by passenger"

    @pytest.mark.asyncio
    async def test_cancel_is_idempotent(self, ride: Ride, lifecycle: RideLifecycle, audit: AuditTrail) -> None:
        first = await lifecycle.cancel(ride.ride_id, Actor.PASSENGER, "first", actor_id="p1")
        second = await lifecycle.cancel(ride.ride_id, Actor.PASSENGER, "second", actor_id="p1")

        assert second.status == RideStatus.CANCELLED
        assert second.cancellation_reason == first.cancellation_reason == "first"
        assert len(audit.recent(event_types=["ride:cancelled"])) == 1

    @pytest.mark.asyncio
    async def test_cancel_accepted_releases_driver(
        self, ride: Ride, lifecycle: RideLifecycle, registry: PresenceRegistry, transport,
    ) -> None:
        await lifecycle.accept(ride.ride_id, "d1")

        await lifecycle.cancel(ride.ride_id, Actor.PASSENGER, actor_id="p1")

        driver = registry.get_driver("d1")
        assert driver.current_ride is None
        assert driver.is_available is True
        assert transport.events("s-d1")[-1] == "ride_cancelled"

    @pytest.mark.asyncio
    async def test_other_passenger_cannot_cancel(self, ride: Ride, lifecycle: RideLifecycle) -> None:
        with pytest.raises(NotAuthorizedError):
            await lifecycle.cancel(ride.ride_id, Actor.PASSENGER, actor_id="p2")

    @pytest.mark.asyncio
    async def test_cancel_completed_is_noop(
        self, ride: Ride, lifecycle: RideLifecycle, audit: AuditTrail, transport,
    ) -> None:
        await lifecycle.accept(ride.ride_id, "d1")
        await lifecycle.start(ride.ride_id, "d1")
        completed = await lifecycle.complete(ride.ride_id, "d1")
        sent_before = len(transport.sent)

        result = await lifecycle.cancel(ride.ride_id, Actor.PASSENGER, actor_id="p1")

        assert result.status == RideStatus.COMPLETED
        assert result.driver_id == "d1"
        assert result.cancellation_reason is None
        assert result.completed_at == completed.completed_at
        assert lifecycle.get_ride(ride.ride_id).status == RideStatus.COMPLETED
        assert len(transport.sent) == sent_before
        assert audit.recent(event_types=["ride:cancelled"]) == []

    @pytest.mark.asyncio
    async def test_cancel_clears_driver_reference(
        self, ride: Ride, lifecycle: RideLifecycle, transport,
    ) -> None:
        await lifecycle.accept(ride.ride_id, "d1")

        cancelled = await lifecycle.cancel(ride.ride_id, Actor.PASSENGER, actor_id="p1")

        assert cancelled.driver_id is None
        assert cancelled.driver_name is None
        assert cancelled.estimated_arrival is None
        assert lifecycle.get_ride(ride.ride_id).driver_id is None
        assert transport.messages("s-d1", "ride_cancelled")[0]["ride_id"] == ride.ride_id

    @pytest.mark.asyncio
    async def test_driver_disconnect_cancels_ride(
        self, ride: Ride, lifecycle: RideLifecycle, registry: PresenceRegistry, transport,
    ) -> None:
        await lifecycle.accept(ride.ride_id, "d1")
        await lifecycle.start(ride.ride_id, "d1")

        cancelled = await lifecycle.driver_offline("d1")

        assert cancelled.status == RideStatus.CANCELLED
        assert cancelled.cancellation_reason == REASON_DRIVER_DISCONNECTED
        assert cancelled.cancelled_by == Actor.SYSTEM.value
        assert cancelled.driver_id is None
        assert lifecycle.get_ride(ride.ride_id).driver_id is None
        driver = registry.get_driver("d1")
        assert driver.is_online is False
        assert driver.is_available is False
        assert driver.current_ride is None
        assert transport.messages("s-p1", "ride_cancelled")[0]["reason"] == REASON_DRIVER_DISCONNECTED

    @pytest.mark.asyncio
    async def test_idle_driver_offline(self, participants, lifecycle: RideLifecycle, audit: AuditTrail) -> None:
        assert await lifecycle.driver_offline("d1") is None
        assert audit.recent(event_types=["driver:offline"])[0].driver_id == "d1"


class TestRate:
    """Тесты оценки поездки."""

    @pytest_asyncio.fixture
    async def completed(self, ride: Ride, lifecycle: RideLifecycle) -> Ride:
        await lifecycle.accept(ride.ride_id, "d1")
        await lifecycle.start(ride.ride_id, "d1")
        return await lifecycle.complete(ride.ride_id, "d1")

    @pytest.mark.asyncio
    async def test_rating_updates_average(
        self, completed: Ride, lifecycle: RideLifecycle, registry: PresenceRegistry, transport,
    ) -> None:
        rated = await lifecycle.rate(completed.ride_id, "p1", 5, "great")

        assert rated.rating == 5
        assert rated.feedback == "great"
        assert registry.get_driver("d1").rating == pytest.approx(14 / 3)
        notice = transport.messages("s-d1", "new_rating")[0]
        assert notice["new_average_rating"] == pytest.approx(14 / 3)

    @pytest.mark.asyncio
    async def test_rating_twice(self, completed: Ride, lifecycle: RideLifecycle) -> None:
        await lifecycle.rate(completed.ride_id, "p1", 4)

        with pytest.raises(InvalidTransitionError):
            await lifecycle.rate(completed.ride_id, "p1", 5)

    @pytest.mark.parametrize("score", [0, 6])
    @pytest.mark.asyncio
    async def test_rating_out_of_range(self, completed: Ride, lifecycle: RideLifecycle, score: int) -> None:
        with pytest.raises(ValidationError):
            await lifecycle.rate(completed.ride_id, "p1", score)

    @pytest.mark.asyncio
    async def test_rating_other_passenger(self, completed: Ride, lifecycle: RideLifecycle) -> None:
        with pytest.raises(NotAuthorizedError):
            await lifecycle.rate(completed.ride_id, "p2", 5)

    @pytest.mark.asyncio
    async def test_rating_live_ride(self, ride: Ride, lifecycle: RideLifecycle) -> None:
        with pytest.raises(RideNotFoundError):
            await lifecycle.rate(ride.ride_id, "p1", 5)

    @pytest.mark.asyncio
    async def test_history(self, completed: Ride, lifecycle: RideLifecycle) -> None:
        assert [r.ride_id for r in lifecycle.history("p1")] == [completed.ride_id]
        assert lifecycle.history("p2") == []


class TestMaintenance:
    """Тесты очистки и статистики."""

    @pytest.mark.asyncio
    async def test_evict_expired(self, ride: Ride, lifecycle: RideLifecycle) -> None:
        await lifecycle.accept(ride.ride_id, "d1")
        await lifecycle.start(ride.ride_id, "d1")
        await lifecycle.complete(ride.ride_id, "d1")

        assert lifecycle.evict_expired(3600) == 0
        assert lifecycle.evict_expired(3600, now=utcnow() + timedelta(hours=2)) == 1
        with pytest.raises(RideNotFoundError):
            lifecycle.get_ride(ride.ride_id)

    @pytest.mark.asyncio
    async def test_evict_keeps_live(self, ride: Ride, lifecycle: RideLifecycle) -> None:
        assert lifecycle.evict_expired(0, now=utcnow() + timedelta(days=2)) == 0
        assert lifecycle.get_ride(ride.ride_id).status == RideStatus.REQUESTED

    @pytest.mark.asyncio
    async def test_stats(self, ride: Ride, lifecycle: RideLifecycle) -> None:
        stats = lifecycle.stats()

        assert stats["live_rides"] == 1
        assert stats["pending_timeouts"] == 1
        assert stats["online_drivers"] == 1
        assert stats["ride_channels"] == 0

    @pytest.mark.asyncio
    async def test_shutdown_cancels_timeouts(self, ride: Ride, lifecycle: RideLifecycle) -> None:
        await lifecycle.shutdown()

        assert not lifecycle.has_pending_timeout(ride.ride_id)
        assert lifecycle.get_ride(ride.ride_id).status == RideStatus.REQUESTED
