# ride_dispatch/core/pricing/service.py
"""
Расчёт стоимости поездки и комиссии платформы.
"""

from __future__ import annotations

from dataclasses import dataclass

from pydantic import BaseModel, Field


class FareQuote(BaseModel):
    """Результат расчёта стоимости."""
    distance_km: float = Field(..., ge=0)
    duration_minutes: float = Field(..., ge=0)
    base_fare: float
    distance_fare: float
    time_fare: float
    total_fare: float = Field(..., description="Итог с учётом минимальной стоимости")
    currency: str


@dataclass(frozen=True)
class CommissionSplit:
    """Разделение оплаты между платформой и водителем."""
    amount: float
    commission: float
    net_amount: float


class FareCalculator:
    """
    Калькулятор стоимости поездки.

    fare = max(minimum_fare, base_fare + distance_km * per_km_rate
               + duration_minutes * per_minute_rate)
    """

    def __init__(
        self,
        base_fare: float | None = None,
        per_km_rate: float | None = None,
        per_minute_rate: float | None = None,
        minimum_fare: float | None = None,
        commission_rate: float | None = None,
        currency: str | None = None,
    ) -> None:
        """Незаданные параметры берутся из секции fares конфига."""
        from ride_dispatch.config import settings

        fares = settings.fares
        self.base_fare = fares.BASE_FARE if base_fare is None else base_fare
        self.per_km_rate = fares.PER_KM_RATE if per_km_rate is None else per_km_rate
        self.per_minute_rate = fares.PER_MINUTE_RATE if per_minute_rate is None else per_minute_rate
        self.minimum_fare = fares.MINIMUM_FARE if minimum_fare is None else minimum_fare
        self.commission_rate = fares.COMMISSION_RATE if commission_rate is None else commission_rate
        self.currency = fares.CURRENCY if currency is None else currency

    def calculate(self, distance_km: float, duration_minutes: float) -> FareQuote:
        """
        Рассчитывает стоимость поездки.

        Args:
            distance_km: Расстояние в километрах
            duration_minutes: Время поездки в минутах

        Returns:
            Расчёт с компонентами и итоговой стоимостью (2 знака)
        """
        distance_km = max(distance_km, 0.0)
        duration_minutes = max(duration_minutes, 0.0)

        distance_fare = distance_km * self.per_km_rate
        time_fare = duration_minutes * self.per_minute_rate
        total = max(self.minimum_fare, self.base_fare + distance_fare + time_fare)

        return FareQuote(
            distance_km=distance_km,
            duration_minutes=duration_minutes,
            base_fare=self.base_fare,
            distance_fare=round(distance_fare, 2),
            time_fare=round(time_fare, 2),
            total_fare=round(total, 2),
            currency=self.currency,
        )

    def fare(self, distance_km: float, duration_minutes: float) -> float:
        """Итоговая стоимость поездки."""
        return self.calculate(distance_km, duration_minutes).total_fare

    def split(self, amount: float) -> CommissionSplit:
        """Делит сумму: комиссия amount * rate, водителю остаток."""
        commission = amount * self.commission_rate
        return CommissionSplit(amount=amount, commission=commission, net_amount=amount - commission)
