# ride_dispatch/common/exceptions.py
"""
Иерархия исключений диспетчерского движка.
Каждое исключение несет стабильный код для ответа клиенту.
"""

from __future__ import annotations

from typing import Any


class DispatchError(Exception):
    """Базовое исключение движка."""
    code: str = "dispatch_error"

    def __init__(self, message: str, **details: Any) -> None:
        super().__init__(message)
        self.message = message
        self.details = details

    def to_payload(self) -> dict[str, Any]:
        """Сериализует ошибку в тело сообщения для клиента."""
        payload: dict[str, Any] = {"code": self.code, "message": self.message}
        if self.details:
            payload["details"] = self.details
        return payload


# =============================================================================
# ОШИБКИ ВХОДНЫХ ДАННЫХ
# =============================================================================

class ValidationError(DispatchError):
    """Отсутствует обязательное поле или значение вне допустимого диапазона."""
    code = "validation_error"


# =============================================================================
# ОШИБКИ ПОИСКА
# =============================================================================

class NotFoundError(DispatchError):
    """Сущность не найдена."""
    code = "not_found"


class RideNotFoundError(NotFoundError):
    code = "ride_not_found"

    def __init__(self, ride_id: str, message: str = "Ride not found") -> None:
        super().__init__(message, ride_id=ride_id)


class DriverNotFoundError(NotFoundError):
    code = "driver_not_found"

    def __init__(self, driver_id: str) -> None:
        super().__init__("Driver not found", driver_id=driver_id)


class PassengerNotFoundError(NotFoundError):
    code = "passenger_not_found"

    def __init__(self, passenger_id: str) -> None:
        super().__init__("Passenger not found", passenger_id=passenger_id)


# =============================================================================
# ОШИБКИ ПЕРЕХОДОВ СОСТОЯНИЯ
# =============================================================================

class InvalidTransitionError(DispatchError):
    """Операция недопустима в текущем статусе поездки или водителя."""
    code = "invalid_transition"


class RideNotPendingError(InvalidTransitionError):
    """Поездка уже не ожидает водителя."""
    code = "ride_not_pending"


class RideAlreadyProcessedError(RideNotPendingError):
    """Поездку уже принял другой водитель."""
    code = "ride_already_processed"


class DriverUnavailableError(InvalidTransitionError):
    """Водитель офлайн или занят другой поездкой."""
    code = "driver_unavailable"


# =============================================================================
# ПРОЧИЕ ОШИБКИ
# =============================================================================

class NotAuthorizedError(DispatchError):
    """Участник не имеет права на операцию с поездкой."""
    code = "not_authorized"


class UpstreamUnavailableError(DispatchError):
    """Внешний сервис (карты, БД, брокер) недоступен."""
    code = "upstream_unavailable"
