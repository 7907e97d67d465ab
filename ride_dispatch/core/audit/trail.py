# ride_dispatch/core/audit/trail.py
"""
Журнал событий жизненного цикла.
Хранит последние события в памяти, дублирует их в БД и шину событий.
"""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Iterable, Optional
from uuid import uuid4

from ride_dispatch.common.constants import Actor, DEFAULT_AUDIT_EVENTS_LIMIT, MAX_AUDIT_EVENTS_LIMIT
from ride_dispatch.common.logger import log_error
from ride_dispatch.infra.event_bus import DomainEvent

if TYPE_CHECKING:
    from ride_dispatch.infra.event_bus import EventBus
    from ride_dispatch.infra.persistence import RidePersistence


@dataclass
class AuditEvent:
    """Запись журнала: кто, что и с какой поездкой сделал."""
    event_type: str
    actor: Actor
    ride_id: Optional[str] = None
    driver_id: Optional[str] = None
    passenger_id: Optional[str] = None
    payload: dict[str, Any] = field(default_factory=dict)
    event_id: str = field(default_factory=lambda: str(uuid4()))
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def routing_key(self) -> str:
        """Routing key для шины: ride:accepted -> ride.accepted."""
        return self.event_type.replace(":", ".")

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.event_id,
            "event_type": self.event_type,
            "actor": self.actor.value,
            "ride_id": self.ride_id,
            "driver_id": self.driver_id,
            "passenger_id": self.passenger_id,
            "payload": self.payload,
            "created_at": self.created_at.isoformat(),
        }


class AuditTrail:
    """
    Журнал аудита.

    Запись в память синхронна и всегда успешна; запись в БД и публикация
    в шину выполняются после и не прерывают вызывающий код.
    """

    def __init__(
        self,
        persistence: Optional["RidePersistence"] = None,
        event_bus: Optional["EventBus"] = None,
        capacity: int | None = None,
    ) -> None:
        if capacity is None:
            from ride_dispatch.config import settings
            capacity = settings.maintenance.AUDIT_LOG_CAPACITY
        self._events: deque[AuditEvent] = deque(maxlen=capacity)
        self._persistence = persistence
        self._event_bus = event_bus

    async def record(
        self,
        event_type: str,
        actor: Actor,
        *,
        ride_id: Optional[str] = None,
        driver_id: Optional[str] = None,
        passenger_id: Optional[str] = None,
        payload: Optional[dict[str, Any]] = None,
    ) -> AuditEvent:
        """
        Записывает событие.

        Args:
            event_type: Тип события (ride:accepted, driver:online и т.д.)
            actor: Инициатор
            ride_id: Поездка
            driver_id: Водитель
            passenger_id: Пассажир
            payload: Детали события
        """
        event = AuditEvent(
            event_type=event_type,
            actor=actor,
            ride_id=ride_id,
            driver_id=driver_id,
            passenger_id=passenger_id,
            payload=dict(payload or {}),
        )
        self._events.append(event)

        if self._persistence is not None:
            await self._persistence.insert_ride_event(
                event_id=event.event_id,
                event_type=event.event_type,
                actor=event.actor.value,
                created_at=event.created_at,
                ride_id=ride_id,
                driver_id=driver_id,
                payload=event.payload,
            )

        if self._event_bus is not None:
            try:
                await self._event_bus.publish(DomainEvent(
                    event_id=event.event_id,
                    event_type=event.routing_key,
                    payload=event.to_dict(),
                ))
            except Exception as e:
                await log_error(f"Не удалось опубликовать {event.routing_key}: {e}")

        return event

    def recent(
        self,
        limit: int = DEFAULT_AUDIT_EVENTS_LIMIT,
        actor: Optional[str] = None,
        event_types: Optional[Iterable[str]] = None,
        driver_id: Optional[str] = None,
        since: Optional[datetime] = None,
        until: Optional[datetime] = None,
    ) -> list[AuditEvent]:
        """
        Последние события по фильтрам, новые первыми.

        Args:
            limit: Максимум событий (не больше 200)
            actor: Инициатор
            event_types: Допустимые типы событий
            driver_id: Водитель
            since: Не раньше
            until: Не позже
        """
        limit = max(1, min(limit, MAX_AUDIT_EVENTS_LIMIT))
        types = set(event_types) if event_types else None
        result: list[AuditEvent] = []
        for event in reversed(self._events):
            if actor and event.actor.value != actor:
                continue
            if types and event.event_type not in types:
                continue
            if driver_id and event.driver_id != driver_id:
                continue
            if since and event.created_at < since:
                continue
            if until and event.created_at > until:
                continue
            result.append(event)
            if len(result) >= limit:
                break
        return result

    def __len__(self) -> int:
        return len(self._events)
