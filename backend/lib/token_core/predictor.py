# backend/lib/token_core/predictor.py
"""
Token depletion prediction.

The burn rate is the mean of the non-zero daily usages over the trailing
window. Remaining kWh is always the latest physical meter reading, never
the nominal of the last purchase, and the depletion date is plain local
calendar arithmetic on today's date.
"""
import logging
import math
from datetime import date, timedelta
from typing import Iterable, NamedTuple, Optional, Union

from .dates import add_days, local_today, month_key
from .estimator import BillingEstimator
from .models import BurnRatePoint, BurnRateProjection, Prediction, Reading
from .processor import EnergyAnalyzer
from .settings import EngineSettings

logger = logging.getLogger(__name__)


class BurnRate(NamedTuple):
    analyzer: EnergyAnalyzer
    remaining_kwh: float
    avg_daily_usage: float
    days_until_depletion: Optional[int]


def _ceil_div(numerator: float, denominator: float) -> int:
    # round first so 30.000000001 kWh of float noise does not add a day
    return math.ceil(round(numerator / denominator, 9))


def average_daily_usage(analyzer: EnergyAnalyzer, today: date,
                        window_days: int = 30) -> float:
    """Mean usage of days in the trailing window that had real consumption."""
    window_start = today - timedelta(days=window_days)
    usages = [
        d.usage_kwh for d in analyzer.daily_usage()
        if d.date >= window_start and d.usage_kwh > 0
    ]
    return sum(usages) / len(usages) if usages else 0.0


def burn_rate(readings: Iterable[Union[Reading, dict]],
              settings: EngineSettings = EngineSettings(),
              today: Optional[date] = None) -> Optional[BurnRate]:
    """Shared inputs of the prediction and the projection; None without readings."""
    analyzer = EnergyAnalyzer(readings or [], settings)
    latest = analyzer.latest_reading()
    if latest is None:
        return None
    if today is None:
        today = local_today(settings.timezone)

    remaining = latest.kwh_value
    avg = average_daily_usage(analyzer, today, settings.prediction_window_days)
    days = _ceil_div(remaining, avg) if avg > 0 else None
    return BurnRate(analyzer, remaining, avg, days)


def _days_to_threshold(remaining: float, threshold_kwh: float, avg: float) -> Optional[int]:
    if avg <= 0:
        return None
    if remaining <= threshold_kwh:
        return 0
    return _ceil_div(remaining - threshold_kwh, avg)


def predict_depletion(readings: Iterable[Union[Reading, dict]],
                      settings: EngineSettings = EngineSettings(),
                      today: Optional[date] = None) -> Prediction:
    if today is None:
        today = local_today(settings.timezone)
    rate = burn_rate(readings, settings, today)
    if rate is None:
        return Prediction(has_data=False)

    remaining, avg, days = rate.remaining_kwh, rate.avg_daily_usage, rate.days_until_depletion
    critical_kwh = avg * settings.critical_days
    warning_kwh = avg * settings.warning_days

    prediction = Prediction(
        has_data=True,
        remaining_kwh=round(remaining, 2),
        avg_daily_usage=round(avg, 2),
        days_until_depletion=days,
        predicted_depletion_date=add_days(today, days) if days is not None else None,
        critical_kwh=round(critical_kwh, 2),
        warning_kwh=round(warning_kwh, 2),
        is_critical=days is not None and days <= settings.critical_days,
        is_warning=days is not None and settings.critical_days < days <= settings.warning_days,
        days_to_critical=_days_to_threshold(remaining, critical_kwh, avg),
        days_to_warning=_days_to_threshold(remaining, warning_kwh, avg),
    )

    last_top_up = next((r for r in reversed(rate.analyzer.readings) if r.is_top_up), None)
    cost_per_kwh = settings.tariff_per_kwh
    if last_top_up is not None:
        prediction.current_token_kwh = last_top_up.token_kwh
        prediction.token_cost = last_top_up.token_amount
        if last_top_up.effective_tariff:
            cost_per_kwh = last_top_up.effective_tariff
        elif last_top_up.token_amount and last_top_up.token_kwh:
            cost_per_kwh = last_top_up.token_amount / last_top_up.token_kwh
    prediction.cost_per_kwh = round(cost_per_kwh, 4)

    this_month = month_key(today)
    current = next((m for m in rate.analyzer.monthly_usage(None) if m.month == this_month), None)
    prediction.current_month_usage = round(current.usage_kwh, 2) if current else 0.0
    prediction.estimated_monthly_cost = BillingEstimator(cost_per_kwh).cost_of(
        prediction.current_month_usage
    )

    if prediction.is_critical or prediction.is_warning:
        logger.info("Depletion in %s day(s): remaining %.2f kWh at %.2f kWh/day",
                    days, remaining, avg)
    return prediction


def project_burn_rate(readings: Iterable[Union[Reading, dict]],
                      settings: EngineSettings = EngineSettings(),
                      today: Optional[date] = None) -> BurnRateProjection:
    """
    Daily remaining-kWh points from today (the one actual point, index 0)
    up to depletion, with at most `projection_horizon_days` projected points.
    """
    if today is None:
        today = local_today(settings.timezone)
    rate = burn_rate(readings, settings, today)
    if rate is None:
        return BurnRateProjection(has_data=False)

    remaining, avg, days = rate.remaining_kwh, rate.avg_daily_usage, rate.days_until_depletion
    horizon = min(days, settings.projection_horizon_days) if days is not None else 0
    points = [
        BurnRatePoint(
            date=add_days(today, i),
            day_index=i,
            remaining_kwh=round(max(0.0, remaining - avg * i), 2),
            is_projected=i > 0,
        )
        for i in range(horizon + 1)
    ]
    return BurnRateProjection(
        has_data=True,
        points=points,
        remaining_kwh=round(remaining, 2),
        avg_daily_usage=round(avg, 2),
        days_until_depletion=days,
        critical_kwh=round(avg * settings.critical_days, 2),
        warning_kwh=round(avg * settings.warning_days, 2),
    )
