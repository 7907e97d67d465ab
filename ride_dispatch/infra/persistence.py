# ride_dispatch/infra/persistence.py
"""
Хранение водителей, поездок, заработка и журнала событий в PostgreSQL.
Все записи выполняются по принципу «best effort»: ошибка логируется,
вызывающий код получает False и продолжает работу.
"""

from __future__ import annotations

import json
from datetime import datetime
from typing import Any, Optional

from ride_dispatch.common.constants import PaymentStatus, RideStatus, TypeMsg
from ride_dispatch.common.logger import log_error, log_info
from ride_dispatch.core.presence.models import Driver
from ride_dispatch.core.rides.models import Ride
from ride_dispatch.infra.database import DatabaseManager


# Колонки rides, которые можно обновлять вместе со статусом
RIDE_PATCH_COLUMNS = frozenset({
    "driver_id",
    "actual_fare",
    "rating",
    "feedback",
    "cancellation_reason",
    "cancelled_by",
    "accepted_at",
    "started_at",
    "completed_at",
    "cancelled_at",
})


class RidePersistence:
    """Репозиторий диспетчерского сервиса поверх DatabaseManager."""

    def __init__(self, db: DatabaseManager) -> None:
        self._db = db

    @property
    def is_available(self) -> bool:
        return self._db.is_connected

    async def _write(self, operation: str, query: str, *args: Any) -> bool:
        if not self._db.is_connected:
            await log_info(f"БД не подключена, пропуск записи: {operation}", type_msg=TypeMsg.DEBUG)
            return False
        try:
            await self._db.execute(query, *args)
            return True
        except Exception as e:
            await log_error(f"Ошибка записи в БД ({operation}): {e}")
            return False

    # =========================================================================
    # ВОДИТЕЛИ
    # =========================================================================

    async def upsert_driver(self, driver: Driver) -> bool:
        return await self._write(
            "upsert_driver",
            """
            INSERT INTO drivers (
                id, name, phone, vehicle_type, vehicle_number, rating,
                total_rides, total_earnings, is_online, last_seen_at
            )
            VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, NOW())
            ON CONFLICT (id) DO UPDATE SET
                name = EXCLUDED.name,
                phone = EXCLUDED.phone,
                vehicle_type = EXCLUDED.vehicle_type,
                vehicle_number = EXCLUDED.vehicle_number,
                rating = EXCLUDED.rating,
                total_rides = EXCLUDED.total_rides,
                total_earnings = EXCLUDED.total_earnings,
                is_online = EXCLUDED.is_online,
                last_seen_at = NOW()
            """,
            driver.driver_id,
            driver.name,
            driver.phone,
            driver.vehicle_type,
            driver.vehicle_number,
            driver.rating,
            driver.total_rides,
            driver.total_earnings,
            driver.is_online,
        )

    async def insert_driver_location(
        self, driver_id: str, latitude: float, longitude: float, recorded_at: datetime,
    ) -> bool:
        return await self._write(
            "insert_driver_location",
            """
            INSERT INTO driver_locations (driver_id, latitude, longitude, recorded_at)
            VALUES ($1, $2, $3, $4)
            ON CONFLICT (driver_id, recorded_at) DO NOTHING
            """,
            driver_id, latitude, longitude, recorded_at,
        )

    # =========================================================================
    # ПОЕЗДКИ
    # =========================================================================

    async def insert_ride(self, ride: Ride) -> bool:
        return await self._write(
            "insert_ride",
            """
            INSERT INTO rides (
                id, passenger_id, driver_id, status,
                pickup_latitude, pickup_longitude, pickup_address,
                destination_latitude, destination_longitude, destination_address,
                distance_km, duration_minutes, fare, requested_at
            )
            VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11, $12, $13, $14)
            ON CONFLICT (id) DO UPDATE SET
                status = EXCLUDED.status,
                driver_id = EXCLUDED.driver_id,
                updated_at = NOW()
            """,
            ride.ride_id,
            ride.passenger_id,
            ride.driver_id,
            ride.status.value,
            ride.pickup_latitude,
            ride.pickup_longitude,
            ride.pickup_address,
            ride.destination_latitude,
            ride.destination_longitude,
            ride.destination_address,
            ride.distance_km,
            ride.duration_minutes,
            ride.fare,
            ride.requested_at,
        )

    async def update_ride_status(
        self, ride_id: str, status: RideStatus, patch: Optional[dict[str, Any]] = None,
    ) -> bool:
        """
        Обновляет статус поездки и разрешённые колонки.

        Args:
            ride_id: Поездка
            status: Новый статус
            patch: Дополнительные колонки (только из RIDE_PATCH_COLUMNS)
        """
        columns = {k: v for k, v in (patch or {}).items() if k in RIDE_PATCH_COLUMNS}
        assignments = ["status = $2", "updated_at = NOW()"]
        args: list[Any] = [ride_id, status.value]
        for column, value in columns.items():
            args.append(value)
            assignments.append(f"{column} = ${len(args)}")

        return await self._write(
            "update_ride_status",
            f"UPDATE rides SET {', '.join(assignments)} WHERE id = $1",
            *args,
        )

    async def insert_earnings(
        self, driver_id: str, ride_id: str, amount: float, commission: float,
    ) -> bool:
        return await self._write(
            "insert_earnings",
            """
            INSERT INTO earnings (ride_id, driver_id, amount, commission, net_amount, payment_status)
            VALUES ($1, $2, $3, $4, $5, $6)
            ON CONFLICT (ride_id) DO NOTHING
            """,
            ride_id, driver_id, amount, commission, amount - commission, PaymentStatus.PENDING.value,
        )

    # =========================================================================
    # ЖУРНАЛ СОБЫТИЙ
    # =========================================================================

    async def insert_ride_event(
        self,
        event_id: str,
        event_type: str,
        actor: str,
        created_at: datetime,
        ride_id: Optional[str] = None,
        driver_id: Optional[str] = None,
        payload: Optional[dict[str, Any]] = None,
    ) -> bool:
        return await self._write(
            "insert_ride_event",
            """
            INSERT INTO ride_events (id, ride_id, driver_id, actor, event_type, payload, created_at)
            VALUES ($1, $2, $3, $4, $5, $6::jsonb, $7)
            ON CONFLICT (id) DO NOTHING
            """,
            event_id,
            ride_id,
            driver_id,
            actor,
            event_type,
            json.dumps(payload or {}, ensure_ascii=False, default=str),
            created_at,
        )

    async def fetch_ride_events(
        self,
        limit: int = 50,
        actor: Optional[str] = None,
        event_types: Optional[list[str]] = None,
        driver_id: Optional[str] = None,
        since: Optional[datetime] = None,
        until: Optional[datetime] = None,
    ) -> list[dict[str, Any]]:
        """
        Читает журнал событий, новые первыми.

        Returns:
            Список событий или пустой список при недоступной БД
        """
        if not self._db.is_connected:
            return []

        conditions: list[str] = []
        args: list[Any] = []

        def add(condition: str, value: Any) -> None:
            args.append(value)
            conditions.append(condition.format(n=len(args)))

        if actor:
            add("actor = ${n}", actor)
        if event_types:
            add("event_type = ANY(${n}::text[])", event_types)
        if driver_id:
            add("driver_id = ${n}", driver_id)
        if since:
            add("created_at >= ${n}", since)
        if until:
            add("created_at <= ${n}", until)

        where = f"WHERE {' AND '.join(conditions)}" if conditions else ""
        args.append(limit)
        query = (
            "SELECT id, ride_id, driver_id, actor, event_type, payload, created_at "
            f"FROM ride_events {where} ORDER BY created_at DESC LIMIT ${len(args)}"
        )

        try:
            rows = await self._db.fetch(query, *args)
        except Exception as e:
            await log_error(f"Ошибка чтения журнала событий: {e}")
            return []

        events = []
        for row in rows:
            event = dict(row)
            if isinstance(event.get("payload"), str):
                event["payload"] = json.loads(event["payload"])
            events.append(event)
        return events
