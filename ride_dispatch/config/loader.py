# ride_dispatch/config/loader.py
"""
Загрузчик конфигурации проекта.
Единственный источник истины — config/config.json.
Секретные и зависящие от окружения значения переопределяются из переменных окружения.
"""

from __future__ import annotations

import json
import os
from functools import lru_cache
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


# =============================================================================
# ОПРЕДЕЛЕНИЕ ПУТЕЙ
# =============================================================================

def get_project_root() -> Path:
    """Возвращает корневую директорию проекта."""
    return Path(__file__).parent.parent.parent


def get_config_path() -> Path:
    """Возвращает путь к файлу конфигурации (можно переопределить через CONFIG_PATH)."""
    override = os.getenv("CONFIG_PATH")
    if override:
        return Path(override)
    return get_project_root() / "config" / "config.json"


def load_config_json() -> dict[str, Any]:
    """Загружает config.json и возвращает словарь без ключей-комментариев."""
    config_path = get_config_path()
    if not config_path.exists():
        raise FileNotFoundError(f"Файл конфигурации не найден: {config_path}")

    with open(config_path, "r", encoding="utf-8") as f:
        data = json.load(f)

    return {k: v for k, v in data.items() if not k.startswith("_comment_")}


# =============================================================================
# PYDANTIC МОДЕЛИ КОНФИГУРАЦИИ
# =============================================================================

class SystemSettings(BaseModel):
    """Системные настройки."""
    PROJECT_NAME: str = "ride_dispatch"
    VERSION: str = "1.0.0"
    DEBUG: bool = True
    ENVIRONMENT: str = "development"


class LoggingSettings(BaseModel):
    """Настройки логирования."""
    LOG_LEVEL: str = "INFO"
    LOG_FORMAT: str = "colored"
    LOG_TO_FILE: bool = False
    LOG_FILE_PATH: str = "logs/ride_dispatch.log"
    LOG_MAX_BYTES: int = 10485760


class ServerSettings(BaseModel):
    """Настройки HTTP/WebSocket шлюза."""
    SERVER_HOST: str = "0.0.0.0"
    SERVER_PORT: int = 10000
    CORS_ORIGIN: str = "*"


class GoogleMapsSettings(BaseModel):
    """Настройки Google Maps API."""
    GOOGLE_MAPS_API_KEY: str = ""
    MAPS_LANGUAGE: str = "en"
    MAPS_TIMEOUT: float = 10.0

    @field_validator("GOOGLE_MAPS_API_KEY", mode="before")
    @classmethod
    def get_from_env(cls, v: str) -> str:
        """Получает API ключ из переменных окружения."""
        if not v:
            return os.getenv("GOOGLE_MAPS_API_KEY", "")
        return v


class DatabaseSettings(BaseModel):
    """Настройки PostgreSQL."""
    DB_HOST: str = "localhost"
    DB_PORT: int = 5432
    DB_NAME: str = "ride_dispatch"
    DB_USER: str = "postgres"
    DB_PASSWORD: str = ""
    DB_MIN_POOL_SIZE: int = 2
    DB_MAX_POOL_SIZE: int = 10
    DB_COMMAND_TIMEOUT: int = 30
    DB_RETRY_ATTEMPTS: int = 3
    DB_RETRY_DELAY: float = 1.0

    @field_validator("DB_PASSWORD", mode="before")
    @classmethod
    def get_from_env(cls, v: str) -> str:
        """Получает пароль из переменных окружения."""
        if not v:
            return os.getenv("DB_PASSWORD", "")
        return v

    @property
    def dsn(self) -> str:
        """Возвращает DSN для подключения к PostgreSQL."""
        return (
            f"postgresql://{self.DB_USER}:{self.DB_PASSWORD}"
            f"@{self.DB_HOST}:{self.DB_PORT}/{self.DB_NAME}"
        )


class RabbitMQSettings(BaseModel):
    """Настройки RabbitMQ."""
    RABBITMQ_HOST: str = "localhost"
    RABBITMQ_PORT: int = 5672
    RABBITMQ_USER: str = "guest"
    RABBITMQ_PASSWORD: str = "guest"
    RABBITMQ_VHOST: str = "/"
    RABBITMQ_EXCHANGE: str = "ride_dispatch.events"
    RABBITMQ_PREFETCH_COUNT: int = 10

    @property
    def url(self) -> str:
        """Возвращает URL для подключения к RabbitMQ."""
        return (
            f"amqp://{self.RABBITMQ_USER}:{self.RABBITMQ_PASSWORD}"
            f"@{self.RABBITMQ_HOST}:{self.RABBITMQ_PORT}{self.RABBITMQ_VHOST}"
        )


class FareSettings(BaseModel):
    """Настройки тарифов и комиссии платформы."""
    BASE_FARE: float = 3.0
    PER_KM_RATE: float = 1.8
    PER_MINUTE_RATE: float = 0.3
    MINIMUM_FARE: float = 8.0
    COMMISSION_RATE: float = Field(default=0.15, ge=0.0, le=1.0)
    CURRENCY: str = "USD"


class DispatchSettings(BaseModel):
    """Настройки подбора водителей."""
    SEARCH_RADIUS_KM: float = Field(default=5.0, gt=0)
    RIDE_REQUEST_TIMEOUT: float = Field(default=300, gt=0)
    NEARBY_DRIVERS_LIMIT: int = 20


class MaintenanceSettings(BaseModel):
    """Настройки фоновых задач."""
    COMPLETED_RIDE_RETENTION: int = 86400
    SWEEP_INTERVAL: int = 3600
    STATS_INTERVAL: int = 300
    AUDIT_LOG_CAPACITY: int = 1000


# =============================================================================
# ГЛАВНЫЙ КЛАСС НАСТРОЕК
# =============================================================================

class Settings(BaseSettings):
    """
    Главный класс настроек приложения.
    Агрегирует все секции конфигурации.
    """
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    system: SystemSettings = Field(default_factory=SystemSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)
    server: ServerSettings = Field(default_factory=ServerSettings)
    google_maps: GoogleMapsSettings = Field(default_factory=GoogleMapsSettings)
    database: DatabaseSettings = Field(default_factory=DatabaseSettings)
    rabbitmq: RabbitMQSettings = Field(default_factory=RabbitMQSettings)
    fares: FareSettings = Field(default_factory=FareSettings)
    dispatch: DispatchSettings = Field(default_factory=DispatchSettings)
    maintenance: MaintenanceSettings = Field(default_factory=MaintenanceSettings)

    @classmethod
    def from_config_json(cls) -> "Settings":
        """
        Создаёт объект Settings из config.json.
        Значения, зависящие от окружения, переопределяются переменными окружения.
        """
        data = load_config_json()

        def pick(key: str, default: Any, env: bool = False) -> Any:
            if env and os.getenv(key) is not None:
                return os.getenv(key)
            return data.get(key, default)

        return cls(
            system=SystemSettings(
                PROJECT_NAME=pick("PROJECT_NAME", "ride_dispatch"),
                VERSION=pick("VERSION", "1.0.0"),
                DEBUG=pick("DEBUG", True),
                ENVIRONMENT=pick("ENVIRONMENT", "development", env=True),
            ),
            logging=LoggingSettings(
                LOG_LEVEL=pick("LOG_LEVEL", "INFO", env=True),
                LOG_FORMAT=pick("LOG_FORMAT", "colored", env=True),
                LOG_TO_FILE=pick("LOG_TO_FILE", False, env=True),
                LOG_FILE_PATH=pick("LOG_FILE_PATH", "logs/ride_dispatch.log"),
                LOG_MAX_BYTES=pick("LOG_MAX_BYTES", 10485760),
            ),
            server=ServerSettings(
                SERVER_HOST=pick("SERVER_HOST", "0.0.0.0", env=True),
                SERVER_PORT=int(pick("SERVER_PORT", os.getenv("PORT", 10000), env=True)),
                CORS_ORIGIN=pick("CORS_ORIGIN", "*", env=True),
            ),
            google_maps=GoogleMapsSettings(
                GOOGLE_MAPS_API_KEY=pick("GOOGLE_MAPS_API_KEY", "", env=True),
                MAPS_LANGUAGE=pick("MAPS_LANGUAGE", "en"),
                MAPS_TIMEOUT=pick("MAPS_TIMEOUT", 10.0),
            ),
            database=DatabaseSettings(
                DB_HOST=pick("DB_HOST", "localhost", env=True),
                DB_PORT=int(pick("DB_PORT", 5432, env=True)),
                DB_NAME=pick("DB_NAME", "ride_dispatch", env=True),
                DB_USER=pick("DB_USER", "postgres", env=True),
                DB_PASSWORD=pick("DB_PASSWORD", "", env=True),
                DB_MIN_POOL_SIZE=pick("DB_MIN_POOL_SIZE", 2),
                DB_MAX_POOL_SIZE=pick("DB_MAX_POOL_SIZE", 10),
                DB_COMMAND_TIMEOUT=pick("DB_COMMAND_TIMEOUT", 30),
                DB_RETRY_ATTEMPTS=pick("DB_RETRY_ATTEMPTS", 3),
                DB_RETRY_DELAY=pick("DB_RETRY_DELAY", 1.0),
            ),
            rabbitmq=RabbitMQSettings(
                RABBITMQ_HOST=pick("RABBITMQ_HOST", "localhost", env=True),
                RABBITMQ_PORT=int(pick("RABBITMQ_PORT", 5672, env=True)),
                RABBITMQ_USER=pick("RABBITMQ_USER", "guest", env=True),
                RABBITMQ_PASSWORD=pick("RABBITMQ_PASSWORD", "guest", env=True),
                RABBITMQ_VHOST=pick("RABBITMQ_VHOST", "/"),
                RABBITMQ_EXCHANGE=pick("RABBITMQ_EXCHANGE", "ride_dispatch.events"),
                RABBITMQ_PREFETCH_COUNT=pick("RABBITMQ_PREFETCH_COUNT", 10),
            ),
            fares=FareSettings(
                BASE_FARE=pick("BASE_FARE", 3.0),
                PER_KM_RATE=pick("PER_KM_RATE", 1.8),
                PER_MINUTE_RATE=pick("PER_MINUTE_RATE", 0.3),
                MINIMUM_FARE=pick("MINIMUM_FARE", 8.0),
                COMMISSION_RATE=float(pick("COMMISSION_RATE", 0.15, env=True)),
                CURRENCY=pick("CURRENCY", "USD"),
            ),
            dispatch=DispatchSettings(
                SEARCH_RADIUS_KM=float(pick("SEARCH_RADIUS_KM", 5.0, env=True)),
                RIDE_REQUEST_TIMEOUT=float(pick("RIDE_REQUEST_TIMEOUT", 300, env=True)),
                NEARBY_DRIVERS_LIMIT=pick("NEARBY_DRIVERS_LIMIT", 20),
            ),
            maintenance=MaintenanceSettings(
                COMPLETED_RIDE_RETENTION=int(pick("COMPLETED_RIDE_RETENTION", 86400, env=True)),
                SWEEP_INTERVAL=pick("SWEEP_INTERVAL", 3600),
                STATS_INTERVAL=pick("STATS_INTERVAL", 300),
                AUDIT_LOG_CAPACITY=pick("AUDIT_LOG_CAPACITY", 1000),
            ),
        )


@lru_cache()
def get_settings() -> Settings:
    """
    Возвращает синглтон настроек приложения.
    Перед чтением config.json загружает .env из корня проекта.
    """
    from dotenv import load_dotenv

    env_path = get_project_root() / ".env"
    if env_path.exists():
        load_dotenv(env_path)

    return Settings.from_config_json()


# Экспорт синглтона для удобного импорта
settings = get_settings()
