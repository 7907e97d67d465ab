# ride_dispatch/common/logger.py
"""
Модуль структурированного логирования.
Поддерживает JSON и цветной текстовый формат, ротацию файлов по размеру
и контекст поездки (ride_id, driver_id, passenger_id) в каждой записи.
"""

from __future__ import annotations

import inspect
import json
import logging
import os
import sys
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any

from ride_dispatch.common.constants import TypeMsg


DEFAULT_LOGGER_NAME = "ride_dispatch"

# Поля контекста, которые выводятся в цветном формате рядом с сообщением
CONTEXT_FIELDS: tuple[str, ...] = ("ride_id", "driver_id", "passenger_id", "session_id")

# Общие файловые хендлеры (один набор на процесс)
_GLOBAL_FILE_HANDLER: logging.Handler | None = None
_GLOBAL_ERROR_HANDLER: logging.Handler | None = None

_LOGGING_INITIALIZED: bool = False


# =============================================================================
# ФОРМАТТЕРЫ
# =============================================================================

class JsonFormatter(logging.Formatter):
    """Форматтер для JSON логов (production)."""

    def format(self, record: logging.LogRecord) -> str:
        log_data: dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        extra_data = getattr(record, "extra_data", None)
        if extra_data:
            log_data["extra"] = extra_data

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, ensure_ascii=False, default=str)


class ColoredFormatter(logging.Formatter):
    """Цветной форматтер для консоли (разработка)."""

    COLORS = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[35m",
    }
    RESET = "\033[0m"
    GRAY = "\033[90m"

    def format(self, record: logging.LogRecord) -> str:
        color = self.COLORS.get(record.levelname, self.GRAY)
        timestamp = datetime.now().strftime("%Y-%m-%d %H:%M:%S")
        extra_data: dict[str, Any] = getattr(record, "extra_data", None) or {}

        caller_info = ""
        if extra_data.get("caller_function"):
            caller_info = (
                f" {self.GRAY}[{extra_data.get('caller_module')}."
                f"{extra_data.get('caller_function')}() "
                f"{extra_data.get('caller_file')}:{extra_data.get('caller_line')}]{self.RESET}"
            )

        context = " ".join(
            f"{key}={extra_data[key]}" for key in CONTEXT_FIELDS if extra_data.get(key)
        )
        if context:
            context = f" {self.GRAY}({context}){self.RESET}"

        message = (
            f"{timestamp} {color}[{record.levelname}]{self.RESET}{caller_info} "
            f"{record.getMessage()}{context}"
        )

        if record.exc_info:
            message += "\n" + self.formatException(record.exc_info)

        return message


# =============================================================================
# ФАЙЛОВЫЙ ХЕНДЛЕР
# =============================================================================

class DateBasedRotatingFileHandler(RotatingFileHandler):
    """
    Хендлер с ротацией по размеру.
    Пишет в фиксированный файл <name>.log, при переполнении
    переименовывает его в <name>_<дата-время>.log.
    """

    def __init__(self, log_dir: str, max_bytes: int, logger_name: str = "app", encoding: str = "utf-8"):
        """
        Args:
            log_dir: Директория для логов
            max_bytes: Максимальный размер файла в байтах
            logger_name: Имя файла без расширения
            encoding: Кодировка файла
        """
        self.log_dir = Path(log_dir)
        self.log_dir.mkdir(parents=True, exist_ok=True)
        self.logger_name = logger_name

        super().__init__(
            filename=str(self.log_dir / f"{logger_name}.log"),
            maxBytes=max_bytes,
            backupCount=0,
            encoding=encoding,
        )

    def doRollover(self) -> None:
        if self.stream:
            self.stream.close()
            self.stream = None

        timestamp = datetime.now().strftime("%Y-%m-%d_%H-%M-%S")
        archive = self.log_dir / f"{self.logger_name}_{timestamp}.log"
        if os.path.exists(self.baseFilename):
            try:
                os.rename(self.baseFilename, archive)
            except OSError:
                # Файл занят другим процессом: продолжаем писать в текущий
                pass

        self.stream = self._open()


# =============================================================================
# ЛОГГЕР
# =============================================================================

_loggers: dict[str, logging.Logger] = {}


def _read_logging_settings() -> dict[str, Any]:
    """Читает настройки логирования, при ошибке возвращает значения разработки."""
    try:
        from ride_dispatch.config import settings
        return {
            "level": str(settings.logging.LOG_LEVEL),
            "format": str(settings.logging.LOG_FORMAT),
            "to_file": bool(settings.logging.LOG_TO_FILE),
            "file_path": str(settings.logging.LOG_FILE_PATH),
            "max_bytes": int(settings.logging.LOG_MAX_BYTES),
        }
    except Exception:
        return {
            "level": "DEBUG",
            "format": "colored",
            "to_file": False,
            "file_path": "logs/ride_dispatch.log",
            "max_bytes": 10485760,
        }


def _build_formatter(log_format: str) -> logging.Formatter:
    return JsonFormatter() if log_format == "json" else ColoredFormatter()


def setup_logging() -> None:
    """
    Инициализирует систему логирования.
    Может безопасно вызываться многократно.
    """
    global _LOGGING_INITIALIZED
    if _LOGGING_INITIALIZED:
        return
    _LOGGING_INITIALIZED = True

    get_logger(DEFAULT_LOGGER_NAME)

    for noisy in ("asyncpg", "aio_pika", "aiormq", "httpx", "httpcore"):
        logging.getLogger(noisy).setLevel(logging.WARNING)
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)


def get_logger(name: str = DEFAULT_LOGGER_NAME) -> logging.Logger:
    """
    Возвращает настроенный логгер.
    Кэширует логгеры, чтобы не дублировать хендлеры.

    Args:
        name: Имя логгера

    Returns:
        Настроенный логгер
    """
    if name in _loggers:
        return _loggers[name]

    cfg = _read_logging_settings()

    logger = logging.getLogger(name)
    logger.setLevel(getattr(logging, cfg["level"].upper(), logging.DEBUG))

    if logger.handlers:
        _loggers[name] = logger
        return logger

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(_build_formatter(cfg["format"]))
    logger.addHandler(console_handler)

    if cfg["to_file"]:
        global _GLOBAL_FILE_HANDLER, _GLOBAL_ERROR_HANDLER
        log_path = Path(cfg["file_path"])
        if _GLOBAL_FILE_HANDLER is None:
            log_name = log_path.stem
            service_name = os.getenv("SERVICE_NAME")
            if service_name:
                log_name = f"{log_name}_{service_name}"
            _GLOBAL_FILE_HANDLER = DateBasedRotatingFileHandler(
                log_dir=str(log_path.parent),
                max_bytes=cfg["max_bytes"],
                logger_name=log_name,
            )
            _GLOBAL_FILE_HANDLER.setFormatter(_build_formatter(cfg["format"]))

        if _GLOBAL_ERROR_HANDLER is None:
            _GLOBAL_ERROR_HANDLER = DateBasedRotatingFileHandler(
                log_dir=str(log_path.parent),
                max_bytes=cfg["max_bytes"],
                logger_name="error",
            )
            _GLOBAL_ERROR_HANDLER.setLevel(logging.ERROR)
            _GLOBAL_ERROR_HANDLER.setFormatter(_build_formatter(cfg["format"]))

        logger.addHandler(_GLOBAL_FILE_HANDLER)
        logger.addHandler(_GLOBAL_ERROR_HANDLER)

    logger.propagate = False
    _loggers[name] = logger
    return logger


# =============================================================================
# ВСПОМОГАТЕЛЬНЫЕ ФУНКЦИИ ЛОГИРОВАНИЯ
# =============================================================================

def _get_caller_info(depth: int = 2) -> dict[str, Any]:
    """
    Возвращает функцию, модуль, файл и строку кода, вызвавшего логирование.

    Args:
        depth: Сколько кадров стека пропустить (сама функция и обертка log_*)
    """
    frame = inspect.currentframe()
    try:
        caller = frame
        for _ in range(depth):
            caller = caller.f_back if caller is not None else None
        if caller is None:
            return {}
        module = inspect.getmodule(caller)
        return {
            "caller_function": caller.f_code.co_name,
            "caller_module": module.__name__ if module else "unknown",
            "caller_file": Path(caller.f_code.co_filename).name,
            "caller_line": caller.f_lineno,
        }
    finally:
        # Разрываем ссылки на кадры стека
        del frame


def _emit(
    level: int,
    message: str,
    *,
    logger_name: str,
    extra: dict[str, Any] | None,
    exc_info: bool = False,
) -> None:
    logger = get_logger(logger_name)
    caller_info = _get_caller_info(depth=3)
    logger.log(level, message, extra={"extra_data": {**caller_info, **(extra or {})}}, exc_info=exc_info)


_LEVELS: dict[TypeMsg, int] = {
    TypeMsg.DEBUG: logging.DEBUG,
    TypeMsg.INFO: logging.INFO,
    TypeMsg.WARNING: logging.WARNING,
    TypeMsg.ERROR: logging.ERROR,
    TypeMsg.CRITICAL: logging.CRITICAL,
}


async def log_info(
    message: str,
    *,
    type_msg: TypeMsg = TypeMsg.INFO,
    logger_name: str = DEFAULT_LOGGER_NAME,
    extra: dict[str, Any] | None = None,
) -> None:
    """
    Асинхронное логирование с уровнем, заданным типом сообщения.

    Args:
        message: Сообщение для логирования
        type_msg: Тип сообщения (определяет уровень)
        logger_name: Имя логгера
        extra: Контекст записи (ride_id, driver_id и т.д.)
    """
    _emit(_LEVELS.get(type_msg, logging.INFO), message, logger_name=logger_name, extra=extra)


async def log_debug(
    message: str,
    logger_name: str = DEFAULT_LOGGER_NAME,
    extra: dict[str, Any] | None = None,
) -> None:
    """Логирование DEBUG уровня."""
    _emit(logging.DEBUG, message, logger_name=logger_name, extra=extra)


async def log_warning(
    message: str,
    logger_name: str = DEFAULT_LOGGER_NAME,
    extra: dict[str, Any] | None = None,
) -> None:
    """Логирование WARNING уровня."""
    _emit(logging.WARNING, message, logger_name=logger_name, extra=extra)


async def log_error(
    message: str,
    logger_name: str = DEFAULT_LOGGER_NAME,
    extra: dict[str, Any] | None = None,
    exc_info: bool = False,
) -> None:
    """
    Логирование ERROR уровня.

    Args:
        message: Сообщение об ошибке
        logger_name: Имя логгера
        extra: Контекст записи
        exc_info: Включать ли трейсбек текущего исключения
    """
    _emit(logging.ERROR, message, logger_name=logger_name, extra=extra, exc_info=exc_info)
