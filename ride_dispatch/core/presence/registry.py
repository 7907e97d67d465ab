# ride_dispatch/core/presence/registry.py
"""
Реестр присутствия водителей и пассажиров.
Хранит состояние в памяти, не выполняет I/O.
Все изменения под одним мьютексом, наружу отдаются копии записей.
"""

from __future__ import annotations

import itertools
import threading
from datetime import datetime, timezone
from typing import Iterable, Optional

from ride_dispatch.common.constants import (
    DEFAULT_DRIVER_NAME,
    DEFAULT_DRIVER_RATING,
    DEFAULT_VEHICLE_TYPE,
    ParticipantRole,
)
from ride_dispatch.common.exceptions import DriverNotFoundError, DriverUnavailableError
from ride_dispatch.core.geo.models import Coordinate
from ride_dispatch.core.geo.utils import haversine_km
from ride_dispatch.core.presence.models import (
    Driver,
    DriverCandidate,
    DriverProfile,
    Passenger,
    PassengerProfile,
    SessionBinding,
)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class PresenceRegistry:
    """
    Реестр подключенных участников.

    Инвариант для водителя онлайн: is_available == (current_ride is None),
    кроме водителя, который сам поставил себя на паузу.
    """

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._drivers: dict[str, Driver] = {}
        self._passengers: dict[str, Passenger] = {}
        self._sessions: dict[str, SessionBinding] = {}
        self._seq = itertools.count()

    # =========================================================================
    # СЕССИИ
    # =========================================================================

    def _bind(self, session_id: Optional[str], role: ParticipantRole, participant_id: str) -> None:
        if session_id is None:
            return
        self._sessions[session_id] = SessionBinding(
            session_id=session_id, role=role, participant_id=participant_id,
        )

    def _drop_session(self, session_id: Optional[str]) -> None:
        if session_id is not None:
            self._sessions.pop(session_id, None)

    def resolve_session(self, session_id: str) -> Optional[SessionBinding]:
        """Возвращает участника, привязанного к сессии."""
        with self._lock:
            return self._sessions.get(session_id)

    def unbind_session(self, session_id: str) -> Optional[SessionBinding]:
        """Удаляет привязку сессии (при закрытии соединения)."""
        with self._lock:
            binding = self._sessions.pop(session_id, None)
            if binding is None:
                return None
            if binding.role == ParticipantRole.DRIVER:
                driver = self._drivers.get(binding.participant_id)
                if driver is not None and driver.session_id == session_id:
                    driver.session_id = None
            else:
                passenger = self._passengers.get(binding.participant_id)
                if passenger is not None and passenger.session_id == session_id:
                    passenger.session_id = None
            return binding

    def driver_session(self, driver_id: str) -> Optional[str]:
        with self._lock:
            driver = self._drivers.get(driver_id)
            return driver.session_id if driver else None

    def passenger_session(self, passenger_id: str) -> Optional[str]:
        with self._lock:
            passenger = self._passengers.get(passenger_id)
            return passenger.session_id if passenger else None

    # =========================================================================
    # ВОДИТЕЛИ
    # =========================================================================

    def register_driver(
        self,
        profile: DriverProfile,
        location: Coordinate,
        session_id: Optional[str] = None,
    ) -> Driver:
        """
        Регистрирует водителя или заменяет существующую запись.

        Водитель становится онлайн и доступен. Если у водителя есть текущая
        поездка, она сохраняется и водитель остаётся занятым. Не заданные
        в профиле поля берутся из прежней записи или значений по умолчанию.

        Args:
            profile: Профиль водителя
            location: Текущие координаты
            session_id: Сессия транспорта

        Returns:
            Копия записи водителя
        """
        now = _utcnow()
        with self._lock:
            previous = self._drivers.get(profile.driver_id)
            if previous is not None and previous.session_id != session_id:
                self._drop_session(previous.session_id)
            if session_id is not None:
                stale = self._sessions.get(session_id)
                if stale is not None and stale.participant_id != profile.driver_id:
                    self._drop_session(session_id)

            def keep(value, field: str, default):
                if value is not None:
                    return value
                if previous is not None:
                    return getattr(previous, field)
                return default

            current_ride = previous.current_ride if previous is not None else None
            driver = Driver(
                driver_id=profile.driver_id,
                session_id=session_id,
                name=keep(profile.name, "name", DEFAULT_DRIVER_NAME),
                phone=keep(profile.phone, "phone", ""),
                vehicle_type=keep(profile.vehicle_type, "vehicle_type", DEFAULT_VEHICLE_TYPE),
                vehicle_number=keep(profile.vehicle_number, "vehicle_number", ""),
                image=keep(profile.image, "image", None),
                rating=keep(profile.rating, "rating", DEFAULT_DRIVER_RATING),
                latitude=location.latitude,
                longitude=location.longitude,
                is_online=True,
                is_available=current_ride is None,
                current_ride=current_ride,
                total_rides=keep(profile.total_rides, "total_rides", 0),
                total_earnings=keep(profile.total_earnings, "total_earnings", 0.0),
                connected_at=now,
                last_location_update=now,
                registration_seq=previous.registration_seq if previous is not None else next(self._seq),
            )
            self._drivers[driver.driver_id] = driver
            self._bind(session_id, ParticipantRole.DRIVER, driver.driver_id)
            return driver.model_copy()

    def _require_driver(self, driver_id: str) -> Driver:
        driver = self._drivers.get(driver_id)
        if driver is None:
            raise DriverNotFoundError(driver_id)
        return driver

    def update_driver_location(
        self,
        driver_id: str,
        location: Coordinate,
        at: Optional[datetime] = None,
    ) -> Optional[Driver]:
        """
        Обновляет координаты водителя. Устаревшие отметки времени принимаются.

        Returns:
            Копия записи (current_ride указывает, нужно ли обновить поездку)
            или None, если водитель не зарегистрирован
        """
        with self._lock:
            driver = self._drivers.get(driver_id)
            if driver is None:
                return None
            driver.latitude = location.latitude
            driver.longitude = location.longitude
            driver.last_location_update = at or _utcnow()
            return driver.model_copy()

    def set_availability(self, driver_id: str, available: bool) -> Driver:
        """
        Водитель сам меняет доступность. Для офлайн водителя ничего не меняет.

        Raises:
            DriverNotFoundError: Водитель не зарегистрирован
            DriverUnavailableError: Водитель выполняет поездку
        """
        with self._lock:
            driver = self._require_driver(driver_id)
            if not driver.is_online:
                return driver.model_copy()
            if available and driver.current_ride is not None:
                raise DriverUnavailableError(
                    "Driver is on a ride", driver_id=driver_id, ride_id=driver.current_ride,
                )
            driver.is_available = available
            return driver.model_copy()

    def mark_offline(self, driver_id: str) -> Optional[str]:
        """
        Переводит водителя в офлайн.

        Returns:
            Идентификатор текущей поездки (её нужно отменить) или None
        """
        with self._lock:
            driver = self._drivers.get(driver_id)
            if driver is None:
                return None
            driver.is_online = False
            driver.is_available = False
            return driver.current_ride

    def assign_ride(self, driver_id: str, ride_id: str) -> Driver:
        """
        Атомарно закрепляет поездку за доступным водителем.

        Raises:
            DriverNotFoundError: Водитель не зарегистрирован
            DriverUnavailableError: Водитель офлайн, на паузе или занят
        """
        with self._lock:
            driver = self._require_driver(driver_id)
            if not driver.is_online or not driver.is_available or driver.current_ride is not None:
                raise DriverUnavailableError("Driver is not available", driver_id=driver_id)
            driver.current_ride = ride_id
            driver.is_available = False
            return driver.model_copy()

    def release_driver(self, driver_id: str, ride_id: Optional[str] = None) -> Optional[Driver]:
        """
        Освобождает водителя от поездки. Доступность восстанавливается, если он онлайн.

        Args:
            driver_id: Водитель
            ride_id: Если задан, освобождает только от этой поездки
        """
        with self._lock:
            driver = self._drivers.get(driver_id)
            if driver is None:
                return None
            if ride_id is not None and driver.current_ride != ride_id:
                return driver.model_copy()
            driver.current_ride = None
            driver.is_available = driver.is_online
            return driver.model_copy()

    def record_completed_ride(self, driver_id: str, net_amount: float) -> Optional[Driver]:
        """Увеличивает счётчик поездок и заработок водителя."""
        with self._lock:
            driver = self._drivers.get(driver_id)
            if driver is None:
                return None
            driver.total_rides += 1
            driver.total_earnings += net_amount
            return driver.model_copy()

    def apply_rating(self, driver_id: str, score: float) -> Optional[float]:
        """
        Пересчитывает средний рейтинг: (old * (n - 1) + score) / n,
        где n: число завершённых поездок водителя.

        Returns:
            Новый рейтинг или None, если водитель неизвестен
        """
        with self._lock:
            driver = self._drivers.get(driver_id)
            if driver is None:
                return None
            total = driver.total_rides
            if total <= 0:
                driver.rating = float(score)
            else:
                driver.rating = (driver.rating * (total - 1) + score) / total
            return driver.rating

    def find_available(
        self,
        origin: Coordinate,
        radius_km: float,
        exclude: Iterable[str] = (),
        limit: Optional[int] = None,
    ) -> list[DriverCandidate]:
        """
        Ищет доступных водителей в радиусе.

        Args:
            origin: Точка посадки
            radius_km: Радиус поиска (включительно)
            exclude: Водители, которых не нужно возвращать
            limit: Ограничение размера результата

        Returns:
            Кандидаты по возрастанию расстояния, при равенстве в порядке регистрации
        """
        excluded = set(exclude)
        with self._lock:
            found: list[tuple[float, int, DriverCandidate]] = []
            for driver in self._drivers.values():
                if not driver.is_online or not driver.is_available or driver.driver_id in excluded:
                    continue
                distance = haversine_km(
                    origin.latitude, origin.longitude, driver.latitude, driver.longitude,
                )
                if distance > radius_km:
                    continue
                found.append((distance, driver.registration_seq, DriverCandidate(
                    driver_id=driver.driver_id,
                    distance_km=distance,
                    name=driver.name,
                    phone=driver.phone,
                    vehicle_type=driver.vehicle_type,
                    vehicle_number=driver.vehicle_number,
                    rating=driver.rating,
                    latitude=driver.latitude,
                    longitude=driver.longitude,
                    session_id=driver.session_id,
                )))

        found.sort(key=lambda item: (item[0], item[1]))
        candidates = [item[2] for item in found]
        return candidates[:limit] if limit is not None else candidates

    def get_driver(self, driver_id: str) -> Optional[Driver]:
        with self._lock:
            driver = self._drivers.get(driver_id)
            return driver.model_copy() if driver else None

    def list_drivers(self, online_only: bool = False) -> list[Driver]:
        with self._lock:
            return [
                d.model_copy() for d in self._drivers.values()
                if d.is_online or not online_only
            ]

    # =========================================================================
    # ПАССАЖИРЫ
    # =========================================================================

    def register_passenger(self, profile: PassengerProfile, session_id: Optional[str] = None) -> Passenger:
        """Регистрирует пассажира или перепривязывает его к новой сессии."""
        with self._lock:
            previous = self._passengers.get(profile.passenger_id)
            if previous is not None and previous.session_id != session_id:
                self._drop_session(previous.session_id)
            passenger = Passenger(
                passenger_id=profile.passenger_id,
                session_id=session_id,
                name=profile.name if profile.name is not None else (previous.name if previous else ""),
                phone=profile.phone if profile.phone is not None else (previous.phone if previous else ""),
                image=profile.image if profile.image is not None else (previous.image if previous else None),
                connected_at=_utcnow(),
            )
            self._passengers[passenger.passenger_id] = passenger
            self._bind(session_id, ParticipantRole.PASSENGER, passenger.passenger_id)
            return passenger.model_copy()

    def remove_passenger(self, passenger_id: str) -> Optional[Passenger]:
        with self._lock:
            passenger = self._passengers.pop(passenger_id, None)
            if passenger is not None:
                binding = self._sessions.get(passenger.session_id) if passenger.session_id else None
                if binding is not None and binding.participant_id == passenger_id:
                    self._drop_session(passenger.session_id)
            return passenger

    def get_passenger(self, passenger_id: str) -> Optional[Passenger]:
        with self._lock:
            passenger = self._passengers.get(passenger_id)
            return passenger.model_copy() if passenger else None

    def list_passengers(self) -> list[Passenger]:
        with self._lock:
            return [p.model_copy() for p in self._passengers.values()]

    # =========================================================================
    # СТАТИСТИКА
    # =========================================================================

    def counts(self) -> dict[str, int]:
        with self._lock:
            online = [d for d in self._drivers.values() if d.is_online]
            return {
                "drivers": len(self._drivers),
                "online_drivers": len(online),
                "available_drivers": sum(1 for d in online if d.is_available),
                "passengers": len(self._passengers),
                "sessions": len(self._sessions),
            }
