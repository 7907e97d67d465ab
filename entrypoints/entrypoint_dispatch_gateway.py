#!/usr/bin/env python3
"""
Entrypoint для Dispatch Gateway.

Запуск:
    python entrypoints/entrypoint_dispatch_gateway.py

Порт по умолчанию: 10000 (SERVER_PORT или PORT)
"""

import sys
from pathlib import Path

# Добавляем корневую директорию проекта в путь
project_root = Path(__file__).parent.parent.resolve()
sys.path.insert(0, str(project_root))

import uvicorn

from ride_dispatch.config import settings


def main() -> None:
    """Запустить Dispatch Gateway."""
    uvicorn.run(
        "ride_dispatch.services.dispatch_gateway.app:app",
        host=settings.server.SERVER_HOST,
        port=settings.server.SERVER_PORT,
        reload=settings.system.DEBUG and settings.system.ENVIRONMENT == "development",
        log_level=settings.logging.LOG_LEVEL.lower(),
    )


if __name__ == "__main__":
    main()
