# ride_dispatch/services/dispatch_gateway/routes.py
"""
REST запросы состояния диспетчерской (только чтение).
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Literal, Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from ride_dispatch.common.constants import DEFAULT_AUDIT_EVENTS_LIMIT, MAX_AUDIT_EVENTS_LIMIT
from ride_dispatch.common.exceptions import DispatchError, NotFoundError
from ride_dispatch.services.dispatch_gateway.dependencies import DispatchContainer, get_container

router = APIRouter(prefix="/api", tags=["Dispatch"])


def http_error(error: DispatchError) -> HTTPException:
    """Ошибка движка -> HTTP ответ (404 для ненайденных, иначе 400)."""
    status_code = 404 if isinstance(error, NotFoundError) else 400
    return HTTPException(status_code=status_code, detail=error.to_payload())


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


# =============================================================================
# УЧАСТНИКИ
# =============================================================================

@router.get("/drivers")
async def list_drivers(
    online_only: bool = False,
    container: DispatchContainer = Depends(get_container),
) -> dict[str, Any]:
    drivers = container.registry.list_drivers(online_only=online_only)
    return {
        "drivers": [d.model_dump(mode="json", exclude={"session_id"}) for d in drivers],
        "count": len(drivers),
    }


@router.get("/driver/{driver_id}")
async def get_driver(
    driver_id: str,
    container: DispatchContainer = Depends(get_container),
) -> dict[str, Any]:
    driver = container.registry.get_driver(driver_id)
    if driver is None:
        raise HTTPException(status_code=404, detail="Driver not found")
    return driver.model_dump(mode="json", exclude={"session_id"})


@router.get("/passengers")
async def list_passengers(container: DispatchContainer = Depends(get_container)) -> dict[str, Any]:
    passengers = container.registry.list_passengers()
    return {
        "passengers": [p.model_dump(mode="json", exclude={"session_id"}) for p in passengers],
        "count": len(passengers),
    }


@router.get("/passenger/{passenger_id}")
async def get_passenger(
    passenger_id: str,
    container: DispatchContainer = Depends(get_container),
) -> dict[str, Any]:
    passenger = container.registry.get_passenger(passenger_id)
    if passenger is None:
        raise HTTPException(status_code=404, detail="Passenger not found")
    return passenger.model_dump(mode="json", exclude={"session_id"})


# =============================================================================
# ПОЕЗДКИ
# =============================================================================

@router.get("/rides")
async def list_rides(container: DispatchContainer = Depends(get_container)) -> dict[str, Any]:
    """Активные поездки (requested, accepted, started)."""
    rides = container.lifecycle.list_live()
    return {"rides": [r.snapshot() for r in rides], "count": len(rides)}


@router.get("/completed-rides")
async def list_completed_rides(container: DispatchContainer = Depends(get_container)) -> dict[str, Any]:
    rides = container.lifecycle.list_completed()
    return {"rides": [r.snapshot() for r in rides], "count": len(rides)}


@router.get("/ride/{ride_id}")
async def get_ride(
    ride_id: str,
    container: DispatchContainer = Depends(get_container),
) -> dict[str, Any]:
    try:
        return container.lifecycle.get_ride(ride_id).snapshot()
    except DispatchError as e:
        raise http_error(e) from e


# =============================================================================
# ЖУРНАЛ СОБЫТИЙ
# =============================================================================

@router.get("/ride-events")
async def list_ride_events(
    limit: int = Query(DEFAULT_AUDIT_EVENTS_LIMIT, ge=1, le=MAX_AUDIT_EVENTS_LIMIT),
    actor: Optional[str] = None,
    event_type: Optional[str] = Query(None, description="Типы событий через запятую"),
    driver_id: Optional[str] = None,
    since: Optional[datetime] = None,
    until: Optional[datetime] = None,
    source: Literal["memory", "db"] = "memory",
    container: DispatchContainer = Depends(get_container),
) -> dict[str, Any]:
    """
    Последние события жизненного цикла, новые первыми.

    - `source=memory` — кольцевой буфер процесса
    - `source=db` — таблица ride_events (пусто, если БД недоступна)
    """
    event_types = [t.strip() for t in event_type.split(",") if t.strip()] if event_type else None
    since, until = _as_utc(since), _as_utc(until)

    if source == "db":
        if container.persistence is None:
            events: list[dict[str, Any]] = []
        else:
            events = await container.persistence.fetch_ride_events(
                limit=limit,
                actor=actor,
                event_types=event_types,
                driver_id=driver_id,
                since=since,
                until=until,
            )
    else:
        events = [
            event.to_dict()
            for event in container.audit.recent(
                limit=limit,
                actor=actor,
                event_types=event_types,
                driver_id=driver_id,
                since=since,
                until=until,
            )
        ]

    return {"events": events, "count": len(events), "source": source}
