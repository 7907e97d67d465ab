# ride_dispatch/services/dispatch_gateway/app.py
"""
FastAPI приложение Dispatch Gateway.

WebSocket endpoints:
- /ws — единая сессия для водителей и пассажиров (роль задаёт первое сообщение)

REST endpoints:
- GET /health — проверка здоровья
- GET /status — счётчики поездок, водителей и соединений
- GET /api/... — запросы состояния (routes.py)
"""

from __future__ import annotations

import time
from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field

from ride_dispatch import __version__
from ride_dispatch.common.constants import TypeMsg
from ride_dispatch.common.logger import log_error, log_info, log_warning, setup_logging
from ride_dispatch.infra.database import close_db, get_db, init_db
from ride_dispatch.infra.event_bus import close_event_bus, get_event_bus, init_event_bus
from ride_dispatch.services.dispatch_gateway.dependencies import DispatchContainer, get_container
from ride_dispatch.services.dispatch_gateway.handlers import SessionHandler
from ride_dispatch.services.dispatch_gateway.routes import router
from ride_dispatch.worker.maintenance import MaintenanceWorker

SERVICE_NAME = "dispatch_gateway"


# === MODELS ===

class HealthStatus(BaseModel):
    """Статус здоровья сервиса."""
    service: str
    status: str = "healthy"  # healthy, degraded
    version: str | None = None
    uptime_seconds: float | None = None
    dependencies: dict[str, str] = Field(default_factory=dict)


# === LIFESPAN ===

async def _start_infra() -> None:
    """Подключает БД и шину событий; без них сервис работает только в памяти."""
    try:
        await init_db()
    except Exception as e:
        await log_warning(f"PostgreSQL недоступен, журнал и история только в памяти: {e}")
    try:
        await init_event_bus()
    except Exception as e:
        await log_warning(f"RabbitMQ недоступен, события не публикуются: {e}")


async def _stop_infra() -> None:
    await close_event_bus()
    if get_db().is_connected:
        await close_db()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Жизненный цикл приложения."""
    setup_logging()
    container: DispatchContainer = app.state.container
    init_infra: bool = app.state.init_infra

    # Startup
    if init_infra:
        await _start_infra()

    worker = MaintenanceWorker(container.lifecycle, connection_stats=container.connections)
    await worker.start()
    app.state.started_at = time.monotonic()
    await log_info(f"Dispatch Gateway запущен, версия {__version__}", type_msg=TypeMsg.INFO)

    yield

    # Shutdown
    await worker.stop()
    await container.close()
    if init_infra:
        await _stop_infra()
    await log_info("Dispatch Gateway остановлен", type_msg=TypeMsg.INFO)


# === APP ===

def create_app(init_infra: bool = True, container: DispatchContainer | None = None) -> FastAPI:
    """
    Создаёт приложение шлюза.

    Args:
        init_infra: Подключать ли PostgreSQL и RabbitMQ при старте
        container: Готовый контейнер компонентов (для тестов)
    """
    from ride_dispatch.config import settings

    app = FastAPI(
        title="Ride Dispatch Gateway",
        description="Диспетчеризация поездок в реальном времени: водители, пассажиры, жизненный цикл поездки.",
        version=__version__,
        lifespan=lifespan,
        docs_url="/docs",
        redoc_url="/redoc",
    )
    app.state.init_infra = init_infra
    app.state.container = container or DispatchContainer.build(use_infra=init_infra)
    app.state.handler = SessionHandler(app.state.container)
    app.state.started_at = time.monotonic()

    origins = [o.strip() for o in settings.server.CORS_ORIGIN.split(",") if o.strip()] or ["*"]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=origins != ["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.include_router(router)

    # === HEALTH CHECK ===

    @app.get("/health", response_model=HealthStatus, tags=["Health"])
    async def health_check() -> HealthStatus:
        """Проверка здоровья сервиса. Недоступные БД и брокер не делают сервис нездоровым."""
        db_ok = await get_db().health_check()
        bus_ok = await get_event_bus().health_check()
        return HealthStatus(
            service=SERVICE_NAME,
            status="healthy",
            version=__version__,
            uptime_seconds=round(time.monotonic() - app.state.started_at, 1),
            dependencies={
                "postgres": "healthy" if db_ok else "unavailable",
                "rabbitmq": "healthy" if bus_ok else "unavailable",
            },
        )

    # === STATUS ===

    @app.get("/status", tags=["Health"])
    async def status() -> dict[str, Any]:
        """Счётчики поездок, участников и соединений."""
        c: DispatchContainer = app.state.container
        return {
            "service": SERVICE_NAME,
            **c.lifecycle.stats(),
            **c.connections.get_stats(),
            "audit_events": len(c.audit),
        }

    # === WEBSOCKET ===

    @app.websocket("/ws")
    async def websocket_endpoint(websocket: WebSocket) -> None:
        """
        Сессия участника.

        Первое сообщение connect_driver или connect_passenger привязывает сессию
        к участнику. Остальные сообщения описаны в shared/messages.py.
        """
        c = get_container(websocket)
        handler: SessionHandler = websocket.app.state.handler
        session_id = await c.connections.connect(websocket)
        await c.fanout.notify_session(session_id, "connected", {"session_id": session_id})

        try:
            while True:
                try:
                    data = await websocket.receive_json()
                except ValueError:
                    await handler.invalid_frame(session_id)
                    continue
                await handler.handle(session_id, data)

        except WebSocketDisconnect:
            pass
        except Exception as e:
            await log_error(f"Ошибка WebSocket сессии: {e}", extra={"session_id": session_id})
        finally:
            c.connections.disconnect(session_id)
            await handler.on_disconnect(session_id)

    return app


app = create_app()
