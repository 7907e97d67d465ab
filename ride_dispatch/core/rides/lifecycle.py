# ride_dispatch/core/rides/lifecycle.py
"""
Жизненный цикл поездки.
Единственный владелец записей поездок: создание, принятие, начало,
завершение, отмена, таймаут, оценка и очистка по сроку хранения.
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING, Any, Optional

from ride_dispatch.common.constants import (
    Actor,
    REASON_DRIVER_DISCONNECTED,
    REASON_NO_DRIVER_ACCEPTED,
    RideStatus,
    TypeMsg,
)
from ride_dispatch.common.exceptions import (
    InvalidTransitionError,
    NotAuthorizedError,
    RideAlreadyProcessedError,
    RideNotFoundError,
    RideNotPendingError,
    ValidationError,
)
from ride_dispatch.common.logger import log_error, log_info
from ride_dispatch.core.audit.trail import AuditTrail
from ride_dispatch.core.geo.models import Coordinate, DistanceEstimate, RouteInfo
from ride_dispatch.core.geo.service import GeoEstimator
from ride_dispatch.core.geo.utils import haversine_km, round_half_up
from ride_dispatch.core.notifications.fanout import NotificationFanout
from ride_dispatch.core.presence.models import Driver, DriverProfile
from ride_dispatch.core.presence.registry import PresenceRegistry
from ride_dispatch.core.pricing.service import FareCalculator, FareQuote
from ride_dispatch.core.rides.models import Ride, RideRequest, utcnow
from ride_dispatch.core.rides.state_machine import RideStateMachine

if TYPE_CHECKING:
    from ride_dispatch.infra.persistence import RidePersistence

# Поля водителя в записи поездки; очищаются при отмене
DRIVER_FIELDS = (
    "driver_id",
    "driver_name",
    "driver_phone",
    "driver_vehicle_type",
    "driver_vehicle_number",
    "driver_rating",
    "driver_latitude",
    "driver_longitude",
    "driver_location_updated_at",
    "driver_to_pickup_polyline",
    "driver_to_pickup_distance",
    "driver_to_pickup_duration",
    "estimated_arrival",
)


class RideLifecycle:
    """
    Сервис жизненного цикла поездок.

    Поездки хранятся в трёх наборах: активные, завершённые и архив отменённых.
    Каждая поездка защищена своим asyncio.Lock: проверка статуса и переход
    выполняются под ним без ожидания внешних сервисов. Маршруты, запись в БД
    и уведомления выполняются после освобождения блокировки.
    """

    def __init__(
        self,
        registry: PresenceRegistry,
        geo: GeoEstimator,
        fares: FareCalculator,
        fanout: NotificationFanout,
        audit: AuditTrail,
        persistence: Optional["RidePersistence"] = None,
        request_timeout: float | None = None,
    ) -> None:
        """
        Args:
            registry: Реестр присутствия
            geo: Оценка маршрутов
            fares: Калькулятор стоимости и комиссии
            fanout: Рассылка уведомлений
            audit: Журнал событий
            persistence: Хранилище (необязательно)
            request_timeout: Сколько секунд поездка ждёт водителя
        """
        if request_timeout is None:
            from ride_dispatch.config import settings
            request_timeout = settings.dispatch.RIDE_REQUEST_TIMEOUT

        self._registry = registry
        self._geo = geo
        self._fares = fares
        self._fanout = fanout
        self._audit = audit
        self._persistence = persistence
        self._request_timeout = request_timeout

        self._live: dict[str, Ride] = {}
        self._completed: dict[str, Ride] = {}
        self._cancelled: dict[str, Ride] = {}
        self._locks: dict[str, asyncio.Lock] = {}
        self._timeouts: dict[str, asyncio.Task] = {}

    # =========================================================================
    # ЧТЕНИЕ
    # =========================================================================

    def _find(self, ride_id: str) -> Optional[Ride]:
        return self._live.get(ride_id) or self._completed.get(ride_id) or self._cancelled.get(ride_id)

    def _require(self, ride_id: str) -> Ride:
        ride = self._find(ride_id)
        if ride is None:
            raise RideNotFoundError(ride_id)
        return ride

    def _lock_for(self, ride_id: str) -> asyncio.Lock:
        lock = self._locks.get(ride_id)
        if lock is None:
            raise RideNotFoundError(ride_id)
        return lock

    def get_ride(self, ride_id: str) -> Ride:
        """Копия поездки из любого набора."""
        return self._require(ride_id).model_copy(deep=True)

    def find_ride(self, ride_id: str) -> Optional[Ride]:
        ride = self._find(ride_id)
        return ride.model_copy(deep=True) if ride else None

    def list_live(self) -> list[Ride]:
        return [r.model_copy(deep=True) for r in self._live.values()]

    def list_completed(self) -> list[Ride]:
        return [r.model_copy(deep=True) for r in self._completed.values()]

    def list_cancelled(self) -> list[Ride]:
        return [r.model_copy(deep=True) for r in self._cancelled.values()]

    def history(self, passenger_id: str, limit: int = 20) -> list[Ride]:
        """Завершённые поездки пассажира, новые первыми."""
        rides = [r for r in self._completed.values() if r.passenger_id == passenger_id]
        rides.sort(key=lambda r: r.completed_at or r.requested_at, reverse=True)
        return [r.model_copy(deep=True) for r in rides[:limit]]

    def has_pending_timeout(self, ride_id: str) -> bool:
        return ride_id in self._timeouts

    def counts(self) -> dict[str, int]:
        return {
            "live_rides": len(self._live),
            "completed_rides": len(self._completed),
            "cancelled_rides": len(self._cancelled),
            "pending_timeouts": len(self._timeouts),
        }

    # =========================================================================
    # ТАЙМАУТ ОЖИДАНИЯ ВОДИТЕЛЯ
    # =========================================================================

    def _schedule_timeout(self, ride_id: str) -> None:
        if ride_id in self._timeouts:
            return
        self._timeouts[ride_id] = asyncio.get_running_loop().create_task(
            self._expire_after(ride_id, self._request_timeout),
            name=f"ride-timeout-{ride_id}",
        )

    def _defuse_timeout(self, ride_id: str) -> None:
        task = self._timeouts.pop(ride_id, None)
        if task is not None and task is not asyncio.current_task():
            task.cancel()

    async def _expire_after(self, ride_id: str, delay: float) -> None:
        await asyncio.sleep(delay)
        self._timeouts.pop(ride_id, None)
        try:
            await self.timeout(ride_id)
        except Exception as e:
            await log_error(f"Ошибка обработки таймаута поездки {ride_id}: {e}", exc_info=True)

    async def timeout(self, ride_id: str) -> Optional[Ride]:
        """
        Отменяет поездку, если её так и не принял ни один водитель.

        Returns:
            Отменённая поездка или None, если статус уже изменился
        """
        if ride_id not in self._locks:
            return None
        cancelled = await self._cancel(
            ride_id,
            Actor.SYSTEM,
            REASON_NO_DRIVER_ACCEPTED,
            only_if=(RideStatus.REQUESTED,),
            notify=False,
        )
        if cancelled is None:
            return None

        await self._fanout.notify_passenger(cancelled.passenger_id, "ride_timeout", {
            "ride_id": ride_id,
            "message": "No driver accepted your ride request",
        })
        await log_info(
            f"Поездка {ride_id} отменена по таймауту",
            type_msg=TypeMsg.INFO,
            extra={"ride_id": ride_id},
        )
        return cancelled

    # =========================================================================
    # СОЗДАНИЕ
    # =========================================================================

    async def create(
        self,
        request: RideRequest,
        estimate: DistanceEstimate,
        fare: FareQuote,
        route: Optional[RouteInfo] = None,
    ) -> Ride:
        """
        Создаёт поездку в статусе requested и ставит таймаут ожидания.

        Args:
            request: Проверенный запрос пассажира
            estimate: Оценка расстояния и времени
            fare: Расчёт стоимости
            route: Маршрут (если удалось построить)

        Raises:
            ValidationError: Пустой пассажир или адрес
        """
        for field_name in ("passenger_id", "pickup_address", "destination_address"):
            if not str(getattr(request, field_name)).strip():
                raise ValidationError(f"Missing required field: {field_name}", fields=[field_name])

        ride = Ride(
            passenger_id=request.passenger_id,
            passenger_name=request.passenger_name,
            passenger_phone=request.passenger_phone,
            passenger_image=request.passenger_image,
            pickup_latitude=request.pickup_latitude,
            pickup_longitude=request.pickup_longitude,
            pickup_address=request.pickup_address,
            destination_latitude=request.destination_latitude,
            destination_longitude=request.destination_longitude,
            destination_address=request.destination_address,
            notes=request.notes,
            distance_km=estimate.distance_km,
            distance_text=estimate.distance_text,
            duration_minutes=estimate.duration_minutes,
            duration_text=estimate.duration_text,
            route_polyline=route.polyline if route else None,
            route_steps=[step.__dict__ for step in route.steps] if route else [],
            fare=fare.total_fare,
            currency=fare.currency,
        )
        self._live[ride.ride_id] = ride
        self._locks[ride.ride_id] = asyncio.Lock()
        self._schedule_timeout(ride.ride_id)
        snapshot = ride.model_copy(deep=True)

        if self._persistence is not None:
            await self._persistence.insert_ride(snapshot)
        await self._audit.record(
            "ride:requested",
            Actor.PASSENGER,
            ride_id=ride.ride_id,
            passenger_id=ride.passenger_id,
            payload={"fare": ride.fare, "distance_km": ride.distance_km},
        )
        await log_info(
            f"Поездка создана: {ride.pickup_address} -> {ride.destination_address}, {ride.fare} {ride.currency}",
            extra={"ride_id": ride.ride_id, "passenger_id": ride.passenger_id},
        )
        return snapshot

    # =========================================================================
    # ПРИНЯТИЕ И ОТКЛОНЕНИЕ
    # =========================================================================

    async def accept(self, ride_id: str, driver_id: str) -> Ride:
        """
        Атомарно закрепляет поездку за водителем.

        Из нескольких одновременных принятий успешно ровно одно,
        остальные получают RideAlreadyProcessedError.

        Raises:
            RideNotFoundError: Поездка неизвестна
            RideAlreadyProcessedError: Поездку уже принял водитель
            RideNotPendingError: Поездка отменена
            DriverNotFoundError: Водитель не зарегистрирован
            DriverUnavailableError: Водитель офлайн или занят
        """
        lock = self._lock_for(ride_id)
        async with lock:
            ride = self._require(ride_id)
            if ride.status != RideStatus.REQUESTED:
                if ride.status in (RideStatus.ACCEPTED, RideStatus.STARTED, RideStatus.COMPLETED):
                    raise RideAlreadyProcessedError(
                        "Ride already accepted by another driver", ride_id=ride_id, status=ride.status.value,
                    )
                raise RideNotPendingError("Ride is no longer available", ride_id=ride_id, status=ride.status.value)

            driver = self._registry.assign_ride(driver_id, ride_id)
            self._apply_driver(ride, driver)
            ride.status = RideStatus.ACCEPTED
            ride.accepted_at = utcnow()
            self._defuse_timeout(ride_id)

        route = await self._geo.driver_to_pickup(driver.location, ride.pickup)

        async with lock:
            if ride.status != RideStatus.ACCEPTED:
                # Поездку отменили, пока строился маршрут
                raise RideNotPendingError("Ride is no longer available", ride_id=ride_id, status=ride.status.value)
            if route is not None:
                ride.driver_to_pickup_polyline = route.polyline
                ride.driver_to_pickup_distance = route.distance_text
                ride.driver_to_pickup_duration = route.duration_text
                ride.estimated_arrival = round_half_up(route.duration_minutes)
            else:
                distance = haversine_km(driver.latitude, driver.longitude, ride.pickup_latitude, ride.pickup_longitude)
                ride.estimated_arrival = GeoEstimator.estimated_arrival_minutes(distance)
            snapshot = ride.model_copy(deep=True)

        self._fanout.open_ride_channel(ride_id, snapshot.passenger_id, driver_id)
        await self._fanout.notify_ride(ride_id, "ride_room_joined", {"ride_id": ride_id})
        await self._fanout.notify_passenger(snapshot.passenger_id, "ride_accepted", {
            **snapshot.snapshot(),
            "message": "Driver accepted your ride",
        })

        if self._persistence is not None:
            await self._persistence.update_ride_status(
                ride_id, RideStatus.ACCEPTED, {"driver_id": driver_id, "accepted_at": snapshot.accepted_at},
            )
        await self._audit.record(
            "ride:accepted",
            Actor.DRIVER,
            ride_id=ride_id,
            driver_id=driver_id,
            passenger_id=snapshot.passenger_id,
            payload={"estimated_arrival": snapshot.estimated_arrival},
        )
        await log_info(f"Поездка принята водителем {driver_id}", extra={"ride_id": ride_id, "driver_id": driver_id})
        return snapshot

    @staticmethod
    def _apply_driver(ride: Ride, driver: Driver) -> None:
        ride.driver_id = driver.driver_id
        ride.driver_name = driver.name
        ride.driver_phone = driver.phone
        ride.driver_vehicle_type = driver.vehicle_type
        ride.driver_vehicle_number = driver.vehicle_number
        ride.driver_rating = driver.rating
        ride.driver_latitude = driver.latitude
        ride.driver_longitude = driver.longitude
        ride.driver_location_updated_at = driver.last_location_update

    @staticmethod
    def _clear_driver(ride: Ride) -> None:
        for field_name in DRIVER_FIELDS:
            setattr(ride, field_name, None)

    async def reject(self, ride_id: str, driver_id: str) -> Optional[Ride]:
        """
        Фиксирует отказ водителя. Статус поездки не меняется.

        Returns:
            Поездка, если она всё ещё ждёт водителя (нужна повторная рассылка), иначе None
        """
        async with self._lock_for(ride_id):
            ride = self._require(ride_id)
            if ride.status != RideStatus.REQUESTED:
                return None
            if driver_id not in ride.rejected_by:
                ride.rejected_by.append(driver_id)
            snapshot = ride.model_copy(deep=True)

        await self._audit.record("ride:rejected", Actor.DRIVER, ride_id=ride_id, driver_id=driver_id)
        return snapshot

    # =========================================================================
    # ПОЕЗДКА
    # =========================================================================

    def _check_driver_transition(self, ride: Ride, driver_id: str, target: RideStatus) -> None:
        if ride.driver_id is not None and ride.driver_id != driver_id:
            raise NotAuthorizedError("Ride is assigned to another driver", ride_id=ride.ride_id)
        if not RideStateMachine.can_transition(ride.status, target) or ride.driver_id is None:
            raise InvalidTransitionError(
                f"Cannot change ride status from {ride.status.value} to {target.value}",
                ride_id=ride.ride_id,
                status=ride.status.value,
            )

    async def start(self, ride_id: str, driver_id: str) -> Ride:
        """
        Водитель забрал пассажира: accepted -> started.

        Raises:
            NotAuthorizedError: Поездка назначена другому водителю
            InvalidTransitionError: Поездка не в статусе accepted
        """
        async with self._lock_for(ride_id):
            ride = self._require(ride_id)
            self._check_driver_transition(ride, driver_id, RideStatus.STARTED)
            ride.status = RideStatus.STARTED
            ride.started_at = utcnow()
            snapshot = ride.model_copy(deep=True)

        await self._fanout.notify_passenger(snapshot.passenger_id, "ride_started", {
            **snapshot.snapshot(),
            "message": "Your ride has started",
        })
        if self._persistence is not None:
            await self._persistence.update_ride_status(ride_id, RideStatus.STARTED, {"started_at": snapshot.started_at})
        await self._audit.record(
            "ride:started", Actor.DRIVER, ride_id=ride_id, driver_id=driver_id, passenger_id=snapshot.passenger_id,
        )
        await log_info("Поездка началась", extra={"ride_id": ride_id, "driver_id": driver_id})
        return snapshot

    async def complete(self, ride_id: str, driver_id: str, actual_fare: Optional[float] = None) -> Ride:
        """
        Завершает поездку: started -> completed.

        Стоимость берётся из actual_fare или расчётной. Водитель освобождается,
        получает +1 поездку и заработок fare * (1 - commission_rate).

        Raises:
            ValidationError: Отрицательная стоимость
            NotAuthorizedError: Поездка назначена другому водителю
            InvalidTransitionError: Поездка не в статусе started
        """
        if actual_fare is not None and actual_fare < 0:
            raise ValidationError("Fare must be non-negative", fields=["fare"])

        async with self._lock_for(ride_id):
            ride = self._require(ride_id)
            self._check_driver_transition(ride, driver_id, RideStatus.COMPLETED)

            fare = ride.fare if actual_fare is None else actual_fare
            split = self._fares.split(fare)
            ride.status = RideStatus.COMPLETED
            ride.completed_at = utcnow()
            ride.actual_fare = fare
            ride.commission = split.commission
            ride.driver_earnings = split.net_amount

            self._live.pop(ride_id, None)
            self._completed[ride_id] = ride
            self._registry.release_driver(driver_id, ride_id)
            driver = self._registry.record_completed_ride(driver_id, split.net_amount)
            snapshot = ride.model_copy(deep=True)

        await self._fanout.notify_passenger(snapshot.passenger_id, "ride_completed", {
            **snapshot.snapshot(),
            "message": "Ride completed",
            "rating_request": True,
        })
        self._fanout.close_ride_channel(ride_id)

        if self._persistence is not None:
            await self._persistence.update_ride_status(
                ride_id, RideStatus.COMPLETED, {"actual_fare": fare, "completed_at": snapshot.completed_at},
            )
            await self._persistence.insert_earnings(driver_id, ride_id, fare, split.commission)
            if driver is not None:
                await self._persistence.upsert_driver(driver)
        await self._audit.record(
            "ride:completed",
            Actor.DRIVER,
            ride_id=ride_id,
            driver_id=driver_id,
            passenger_id=snapshot.passenger_id,
            payload={"fare": fare, "commission": split.commission, "net_amount": split.net_amount},
        )
        await log_info(
            f"Поездка завершена, стоимость {fare}, водителю {split.net_amount:.2f}",
            extra={"ride_id": ride_id, "driver_id": driver_id},
        )
        return snapshot

    # =========================================================================
    # ОТМЕНА
    # =========================================================================

    async def cancel(
        self,
        ride_id: str,
        actor: Actor,
        reason: Optional[str] = None,
        actor_id: Optional[str] = None,
    ) -> Ride:
        """
        Отменяет поездку. Для завершённой или уже отменённой поездки ничего
        не делает и возвращает её текущую копию.

        Args:
            ride_id: Поездка
            actor: Инициатор (passenger, driver, system)
            reason: Причина
            actor_id: Идентификатор пассажира или водителя для проверки прав

        Raises:
            RideNotFoundError: Поездка неизвестна
            NotAuthorizedError: Участник не связан с поездкой
        """
        cancelled = await self._cancel(ride_id, actor, reason, actor_id=actor_id)
        if cancelled is None:
            raise InvalidTransitionError("Ride cannot be cancelled", ride_id=ride_id)
        return cancelled

    async def _cancel(
        self,
        ride_id: str,
        actor: Actor,
        reason: Optional[str],
        actor_id: Optional[str] = None,
        only_if: Optional[tuple[RideStatus, ...]] = None,
        notify: bool = True,
    ) -> Optional[Ride]:
        async with self._lock_for(ride_id):
            ride = self._require(ride_id)
            if actor == Actor.PASSENGER and actor_id is not None and ride.passenger_id != actor_id:
                raise NotAuthorizedError("Ride belongs to another passenger", ride_id=ride_id)

            if only_if is not None and ride.status not in only_if:
                return None
            # Завершённая или отменённая поездка не меняется
            if ride.status in (RideStatus.CANCELLED, RideStatus.COMPLETED):
                return ride.model_copy(deep=True)

            if actor == Actor.DRIVER and actor_id is not None and ride.driver_id != actor_id:
                raise NotAuthorizedError("Ride is not assigned to this driver", ride_id=ride_id)

            driver_id = ride.driver_id
            ride.status = RideStatus.CANCELLED
            ride.cancelled_at = utcnow()
            ride.cancellation_reason = reason or f"Cancelled by {actor.value}"
            ride.cancelled_by = actor.value
            self._clear_driver(ride)
            self._defuse_timeout(ride_id)
            self._live.pop(ride_id, None)
            self._cancelled[ride_id] = ride
            if driver_id is not None:
                self._registry.release_driver(driver_id, ride_id)
            snapshot = ride.model_copy(deep=True)

        if notify:
            payload = {
                "ride_id": ride_id,
                "reason": snapshot.cancellation_reason,
                "cancelled_by": snapshot.cancelled_by,
                "message": "Ride has been cancelled",
            }
            if actor != Actor.PASSENGER:
                await self._fanout.notify_passenger(snapshot.passenger_id, "ride_cancelled", payload)
            if actor != Actor.DRIVER and driver_id is not None:
                await self._fanout.notify_driver(driver_id, "ride_cancelled", payload)
        self._fanout.close_ride_channel(ride_id)

        if self._persistence is not None:
            await self._persistence.update_ride_status(ride_id, RideStatus.CANCELLED, {
                "driver_id": None,
                "cancellation_reason": snapshot.cancellation_reason,
                "cancelled_by": snapshot.cancelled_by,
                "cancelled_at": snapshot.cancelled_at,
            })
        await self._audit.record(
            "ride:cancelled",
            actor,
            ride_id=ride_id,
            driver_id=driver_id,
            passenger_id=snapshot.passenger_id,
            payload={"reason": snapshot.cancellation_reason},
        )
        await log_info(
            f"Поездка отменена ({actor.value}): {snapshot.cancellation_reason}",
            extra={"ride_id": ride_id},
        )
        return snapshot

    # =========================================================================
    # ОЦЕНКА
    # =========================================================================

    async def rate(
        self,
        ride_id: str,
        passenger_id: str,
        score: int,
        feedback: Optional[str] = None,
    ) -> Ride:
        """
        Пассажир оценивает завершённую поездку; рейтинг водителя пересчитывается.

        Raises:
            ValidationError: Оценка вне диапазона 1..5
            RideNotFoundError: Нет завершённой поездки с таким id
            NotAuthorizedError: Поездка принадлежит другому пассажиру
            InvalidTransitionError: Поездка уже оценена
        """
        if not 1 <= score <= 5:
            raise ValidationError("Rating must be between 1 and 5", fields=["rating"])

        ride = self._completed.get(ride_id)
        if ride is None:
            raise RideNotFoundError(ride_id, "Completed ride not found")

        async with self._lock_for(ride_id):
            if ride.passenger_id != passenger_id:
                raise NotAuthorizedError("Ride belongs to another passenger", ride_id=ride_id)
            if ride.rating is not None:
                raise InvalidTransitionError("Ride already rated", ride_id=ride_id)
            ride.rating = score
            ride.feedback = feedback
            ride.rated_at = utcnow()
            new_rating = self._registry.apply_rating(ride.driver_id, score) if ride.driver_id else None
            snapshot = ride.model_copy(deep=True)

        if snapshot.driver_id is not None:
            await self._fanout.notify_driver(snapshot.driver_id, "new_rating", {
                "ride_id": ride_id,
                "rating": score,
                "feedback": feedback,
                "new_average_rating": new_rating,
            })
        if self._persistence is not None:
            await self._persistence.update_ride_status(
                ride_id, RideStatus.COMPLETED, {"rating": score, "feedback": feedback},
            )
            driver = self._registry.get_driver(snapshot.driver_id) if snapshot.driver_id else None
            if driver is not None:
                await self._persistence.upsert_driver(driver)
        await self._audit.record(
            "ride:rated",
            Actor.PASSENGER,
            ride_id=ride_id,
            driver_id=snapshot.driver_id,
            passenger_id=passenger_id,
            payload={"rating": score},
        )
        return snapshot

    # =========================================================================
    # ПРИСУТСТВИЕ ВОДИТЕЛЕЙ
    # =========================================================================

    async def driver_online(
        self, profile: DriverProfile, location: Coordinate, session_id: Optional[str] = None,
    ) -> Driver:
        """Регистрирует водителя онлайн, сохраняет профиль и пишет событие."""
        driver = self._registry.register_driver(profile, location, session_id)
        if self._persistence is not None:
            await self._persistence.upsert_driver(driver)
        await self._audit.record(
            "driver:online",
            Actor.DRIVER,
            driver_id=driver.driver_id,
            payload={"latitude": driver.latitude, "longitude": driver.longitude},
        )
        await log_info(f"Водитель онлайн: {driver.name}", extra={"driver_id": driver.driver_id})
        return driver

    async def track_driver(
        self, driver_id: str, location: Coordinate, at: Optional[datetime] = None,
    ) -> Optional[Driver]:
        """
        Обновляет координаты водителя и переносит их в текущую поездку.

        Returns:
            Копия водителя или None, если водитель не зарегистрирован
        """
        driver = self._registry.update_driver_location(driver_id, location, at)
        if driver is None:
            return None
        if driver.current_ride is not None:
            ride = self._live.get(driver.current_ride)
            if ride is not None:
                ride.driver_latitude = driver.latitude
                ride.driver_longitude = driver.longitude
                ride.driver_location_updated_at = driver.last_location_update
                await self._fanout.notify_ride(ride.ride_id, "ride_driver_location", {
                    "ride_id": ride.ride_id,
                    "driver_id": driver_id,
                    "latitude": driver.latitude,
                    "longitude": driver.longitude,
                    "timestamp": driver.last_location_update.isoformat(),
                })
        if self._persistence is not None:
            await self._persistence.insert_driver_location(
                driver_id, driver.latitude, driver.longitude, driver.last_location_update,
            )
        return driver

    async def driver_offline(self, driver_id: str, reason: str = REASON_DRIVER_DISCONNECTED) -> Optional[Ride]:
        """
        Переводит водителя офлайн и отменяет его текущую поездку.

        Returns:
            Отменённая поездка или None
        """
        ride_id = self._registry.mark_offline(driver_id)
        cancelled: Optional[Ride] = None
        if ride_id is not None:
            try:
                cancelled = await self._cancel(ride_id, Actor.SYSTEM, reason)
            except RideNotFoundError:
                self._registry.release_driver(driver_id, ride_id)

        driver = self._registry.get_driver(driver_id)
        if driver is not None:
            if self._persistence is not None:
                await self._persistence.upsert_driver(driver)
            await self._audit.record(
                "driver:offline",
                Actor.DRIVER,
                driver_id=driver_id,
                ride_id=ride_id,
                payload={"reason": reason},
            )
            await log_info(f"Водитель офлайн: {reason}", extra={"driver_id": driver_id})
        return cancelled

    # =========================================================================
    # ОБСЛУЖИВАНИЕ
    # =========================================================================

    def evict_expired(self, retention_seconds: float, now: Optional[datetime] = None) -> int:
        """
        Удаляет завершённые и отменённые поездки старше срока хранения.

        Returns:
            Количество удалённых поездок
        """
        threshold = (now or datetime.now(timezone.utc)) - timedelta(seconds=retention_seconds)
        evicted = 0
        for store in (self._completed, self._cancelled):
            expired = [
                ride_id for ride_id, ride in store.items()
                if ride.finished_at is not None and ride.finished_at < threshold
            ]
            for ride_id in expired:
                store.pop(ride_id, None)
                self._locks.pop(ride_id, None)
                evicted += 1
        return evicted

    async def shutdown(self) -> None:
        """Отменяет все ожидающие таймауты."""
        tasks = list(self._timeouts.values())
        self._timeouts.clear()
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    def stats(self) -> dict[str, Any]:
        return {**self.counts(), **self._registry.counts(), "ride_channels": self._fanout.channel_count()}
