# ride_dispatch/common/constants.py
"""
Общие константы и перечисления.
"""

from enum import Enum


class TypeMsg(str, Enum):
    """Типы сообщений для логирования."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class ParticipantRole(str, Enum):
    """Роль участника, привязанного к сессии."""
    PASSENGER = "passenger"
    DRIVER = "driver"


class Actor(str, Enum):
    """Инициатор события жизненного цикла."""
    PASSENGER = "passenger"
    DRIVER = "driver"
    SYSTEM = "system"


class RideStatus(str, Enum):
    """Статусы поездки."""
    REQUESTED = "requested"
    ACCEPTED = "accepted"
    STARTED = "started"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class PaymentStatus(str, Enum):
    """Статусы выплаты водителю."""
    PENDING = "pending"
    PAID = "paid"


# Причины отмены, выставляемые системой
REASON_NO_DRIVER_ACCEPTED = "no driver accepted"
REASON_DRIVER_DISCONNECTED = "driver disconnected"
REASON_DRIVER_WENT_OFFLINE = "driver went offline"

# Значения по умолчанию для профиля водителя
DEFAULT_DRIVER_NAME = "Driver"
DEFAULT_VEHICLE_TYPE = "Sedan"
DEFAULT_DRIVER_RATING = 4.5

# Эвристика времени подачи: минут на километр
ETA_MINUTES_PER_KM = 2.0

# Префикс канала поездки
RIDE_CHANNEL_PREFIX = "ride:"

# Максимум событий аудита в одном ответе
MAX_AUDIT_EVENTS_LIMIT = 200
DEFAULT_AUDIT_EVENTS_LIMIT = 50
