# ride_dispatch/services/dispatch_gateway/connection_manager.py
"""
Менеджер WebSocket соединений.
Каждое соединение получает идентификатор сессии; кто стоит за сессией,
знает только реестр присутствия.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional
from uuid import uuid4

from fastapi import WebSocket

from ride_dispatch.common.logger import log_debug


@dataclass
class ConnectionInfo:
    """Информация о соединении."""
    websocket: WebSocket
    session_id: str
    connected_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    # Отправки в один сокет из разных задач идут по очереди
    send_lock: asyncio.Lock = field(default_factory=asyncio.Lock)


class ConnectionManager:
    """
    Транспорт уведомлений поверх WebSocket.

    Поддерживает:
    - Подключение/отключение сессий
    - Персональные сообщения по session_id
    - Рассылку всем сессиям с исключениями
    """

    def __init__(self) -> None:
        # session_id -> ConnectionInfo
        self._connections: dict[str, ConnectionInfo] = {}

        # Для статистики
        self._total_connections: int = 0
        self._total_messages_sent: int = 0

    @property
    def active_connections(self) -> int:
        """Количество активных соединений."""
        return len(self._connections)

    def is_connected(self, session_id: str) -> bool:
        return session_id in self._connections

    async def connect(self, websocket: WebSocket) -> str:
        """
        Принимает соединение и выдаёт новый идентификатор сессии.

        Returns:
            session_id
        """
        await websocket.accept()
        session_id = uuid4().hex
        self._connections[session_id] = ConnectionInfo(websocket=websocket, session_id=session_id)
        self._total_connections += 1
        return session_id

    def disconnect(self, session_id: str) -> None:
        """Забывает соединение."""
        self._connections.pop(session_id, None)

    async def send(self, session_id: str, message: dict[str, Any]) -> bool:
        """
        Отправить сообщение в сессию.

        Returns:
            True если сообщение отправлено, False если сессии нет или сокет закрыт
        """
        conn = self._connections.get(session_id)
        if conn is None:
            return False

        try:
            async with conn.send_lock:
                await conn.websocket.send_json(message)
            self._total_messages_sent += 1
            return True
        except Exception as e:
            # Соединение разорвано; закрытие обработает цикл приёма
            await log_debug(f"Отправка в сессию {session_id} не удалась: {e}", extra={"session_id": session_id})
            self.disconnect(session_id)
            return False

    async def broadcast(self, message: dict[str, Any], exclude: Optional[set[str]] = None) -> int:
        """
        Отправить сообщение всем подключенным сессиям.

        Returns:
            Количество успешно отправленных сообщений
        """
        excluded = exclude or set()
        sent_count = 0
        for session_id in list(self._connections):
            if session_id in excluded:
                continue
            if await self.send(session_id, message):
                sent_count += 1
        return sent_count

    def get_stats(self) -> dict[str, Any]:
        """Получить статистику."""
        return {
            "active_connections": len(self._connections),
            "total_connections_ever": self._total_connections,
            "total_messages_sent": self._total_messages_sent,
        }
