# ride_dispatch/core/pricing/__init__.py
from ride_dispatch.core.pricing.service import CommissionSplit, FareCalculator, FareQuote

__all__ = ["CommissionSplit", "FareCalculator", "FareQuote"]
