# ride_dispatch/infra/database.py
"""
PostgreSQL для диспетчерской: пул asyncpg, повтор запросов при обрыве
соединения и применение migrations/init.sql при старте.

Сервис работает и без БД: RidePersistence проверяет is_connected
перед каждым запросом.
"""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Any, Awaitable, Callable, Optional, TypeVar

import asyncpg
from asyncpg import Pool, Record

from ride_dispatch.common.constants import TypeMsg
from ride_dispatch.common.logger import log_error, log_info, log_warning

T = TypeVar("T")

# Ключ advisory lock: схему применяет один процесс за раз
SCHEMA_LOCK_ID = 424242

# Ошибки соединения, после которых запрос повторяется
TRANSIENT_ERRORS: tuple[type[BaseException], ...] = (
    asyncpg.PostgresConnectionError,
    asyncpg.InterfaceError,
    ConnectionRefusedError,
    OSError,
)


class DatabaseManager:
    """
    Пул соединений PostgreSQL.

    execute/fetch/fetchval повторяются при обрыве соединения:
    retry_attempts попыток, пауза retry_delay * номер попытки.
    Ошибки SQL не повторяются.
    """

    def __init__(self, retry_attempts: int | None = None, retry_delay: float | None = None) -> None:
        if retry_attempts is None or retry_delay is None:
            from ride_dispatch.config import settings
            db = settings.database
            retry_attempts = db.DB_RETRY_ATTEMPTS if retry_attempts is None else retry_attempts
            retry_delay = db.DB_RETRY_DELAY if retry_delay is None else retry_delay

        self.retry_attempts = max(1, retry_attempts)
        self.retry_delay = retry_delay
        self._pool: Pool | None = None

    @property
    def is_connected(self) -> bool:
        return self._pool is not None

    @property
    def pool(self) -> Pool:
        if self._pool is None:
            raise RuntimeError("Пул соединений не инициализирован. Вызовите connect() сначала.")
        return self._pool

    async def _with_retry(self, operation: str, call: Callable[[], Awaitable[T]]) -> T:
        attempt = 1
        while True:
            try:
                return await call()
            except TRANSIENT_ERRORS as e:
                if attempt >= self.retry_attempts:
                    await log_error(f"PostgreSQL: {operation} не выполнен за {attempt} попыток: {e}")
                    raise
                await log_warning(f"PostgreSQL: {operation}, попытка {attempt}/{self.retry_attempts}: {e}")
                await asyncio.sleep(self.retry_delay * attempt)
                attempt += 1

    # =========================================================================
    # ПОДКЛЮЧЕНИЕ
    # =========================================================================

    async def connect(self, dsn: str | None = None) -> None:
        """
        Создаёт пул по секции database настроек.

        Args:
            dsn: Строка подключения вместо собранной из настроек
        """
        if self._pool is not None:
            return

        from ride_dispatch.config import settings
        db = settings.database

        await log_info("Подключение к PostgreSQL...", type_msg=TypeMsg.INFO)
        self._pool = await self._with_retry("connect", lambda: asyncpg.create_pool(
            dsn=dsn or db.dsn,
            min_size=db.DB_MIN_POOL_SIZE,
            max_size=db.DB_MAX_POOL_SIZE,
            command_timeout=db.DB_COMMAND_TIMEOUT,
        ))
        await log_info("Подключение к PostgreSQL установлено", type_msg=TypeMsg.INFO)

    async def disconnect(self) -> None:
        if self._pool is None:
            return
        pool, self._pool = self._pool, None
        await pool.close()
        await log_info("Соединение с PostgreSQL закрыто", type_msg=TypeMsg.INFO)

    async def apply_schema(self, schema_path: Path) -> bool:
        """
        Выполняет SQL схемы в транзакции под advisory lock.

        Returns:
            False, если файла схемы нет
        """
        if not schema_path.exists():
            await log_error(f"Файл схемы БД не найден: {schema_path}")
            return False

        schema_sql = schema_path.read_text(encoding="utf-8")
        async with self.pool.acquire() as conn:
            async with conn.transaction():
                await conn.execute("SELECT pg_advisory_xact_lock($1)", SCHEMA_LOCK_ID)
                await conn.execute(schema_sql)

        await log_info(f"Схема БД применена: {schema_path.name}", type_msg=TypeMsg.INFO)
        return True

    # =========================================================================
    # ЗАПРОСЫ
    # =========================================================================

    async def execute(self, query: str, *args: Any) -> str:
        return await self._with_retry("execute", lambda: self.pool.execute(query, *args))

    async def fetch(self, query: str, *args: Any) -> list[Record]:
        return await self._with_retry("fetch", lambda: self.pool.fetch(query, *args))

    async def fetchval(self, query: str, *args: Any) -> Any:
        return await self._with_retry("fetchval", lambda: self.pool.fetchval(query, *args))

    async def health_check(self) -> bool:
        """Один SELECT 1 без повторов."""
        if self._pool is None:
            return False
        try:
            return await self._pool.fetchval("SELECT 1") == 1
        except Exception as e:
            await log_warning(f"Health check PostgreSQL failed: {e}")
            return False


# Глобальный экземпляр
_db_manager: Optional[DatabaseManager] = None


def get_db() -> DatabaseManager:
    global _db_manager
    if _db_manager is None:
        _db_manager = DatabaseManager()
    return _db_manager


async def init_db() -> DatabaseManager:
    """Подключается по настройкам и применяет migrations/init.sql."""
    from ride_dispatch.config.loader import get_project_root

    db = get_db()
    await db.connect()
    await db.apply_schema(get_project_root() / "migrations" / "init.sql")
    return db


async def close_db() -> None:
    await get_db().disconnect()
