# backend/lib/token_core/estimator.py
from decimal import Decimal, ROUND_HALF_UP
from typing import Dict

from .settings import DEFAULT_TARIFF_PER_KWH


class BillingEstimator:
    def __init__(self, tariff_rate_per_kwh: float = DEFAULT_TARIFF_PER_KWH):
        """
        tariff_rate_per_kwh: rate in Rupiah per kWh
        """
        self.rate = float(tariff_rate_per_kwh)

    def cost_of(self, kwh: float) -> float:
        """Cost of `kwh` at this rate, rounded half-up to 2 decimals."""
        cost = float(kwh) * self.rate
        return float(Decimal(str(cost)).quantize(Decimal('0.01'), rounding=ROUND_HALF_UP))

    def estimate_cost(self, usage_by_period: Dict[str, float]) -> float:
        """
        usage_by_period: dict like {'2025-11-01': 3.4, ...}
        returns total cost rounded to 2 decimals
        """
        total_kwh = sum(float(v) for v in usage_by_period.values())
        return self.cost_of(total_kwh)
