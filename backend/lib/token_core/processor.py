# backend/lib/token_core/processor.py
import logging
from collections import OrderedDict
from datetime import date
from typing import Dict, Iterable, List, Optional, Union

from .dates import format_local_date, iso_week_key, month_bounds, month_key, month_name, to_local_date, week_bounds
from .io import coerce_readings
from .models import DailyUsage, MonthlyUsage, Reading, WeeklyUsage
from .settings import EngineSettings

logger = logging.getLogger(__name__)

KWH_PRECISION = 4


def sort_readings(readings: Iterable[Reading]) -> List[Reading]:
    """Chronological order; same-timestamp readings keep insertion order."""
    return sorted(readings, key=lambda r: r.sort_key())


def derive_daily_usage(readings: Iterable[Union[Reading, dict]],
                       settings: EngineSettings = EngineSettings()) -> List[DailyUsage]:
    """
    Turn remaining-kWh meter readings into one DailyUsage per reading day.

    The meter counts down with consumption and jumps up on a top-up, so
    usage is the sum of the drops between consecutive readings. A top-up
    reading, or any unflagged increase, resets the baseline instead of
    counting as negative usage; consumption is never measured across it.
    The very first reading only establishes a baseline (usage 0).

    Days without readings are not synthesised. Output is ascending by date.
    """
    ordered = sort_readings(coerce_readings(readings))

    days: "OrderedDict[date, List[Reading]]" = OrderedDict()
    for r in ordered:
        days.setdefault(to_local_date(r.timestamp, settings.timezone), []).append(r)

    result = []
    baseline: Optional[float] = None
    for day, day_readings in days.items():
        usage = 0.0
        is_top_up = False
        for r in day_readings:
            value = r.kwh_value
            if r.is_top_up:
                is_top_up = True
            elif baseline is not None and value <= baseline:
                usage += baseline - value
            elif baseline is not None:
                logger.warning(
                    "Reading %s increased %.2f -> %.2f without a top-up flag; "
                    "treating it as a reset", r.id, baseline, value,
                )
            baseline = value
        result.append(DailyUsage(
            date=day,
            usage_kwh=round(usage, KWH_PRECISION),
            meter_value=day_readings[-1].kwh_value,
            is_top_up=is_top_up,
            reading_count=len(day_readings),
        ))
    return result


def aggregate_weekly(daily: Iterable[DailyUsage], limit: Optional[int] = 12) -> List[WeeklyUsage]:
    """
    Sum daily usage into ISO weeks (Monday start), newest week first,
    keeping only the `limit` most recent weeks (None keeps all).
    """
    weeks: Dict[str, WeeklyUsage] = {}
    for day in daily or []:
        key = iso_week_key(day.date)
        if key not in weeks:
            start, end = week_bounds(day.date)
            weeks[key] = WeeklyUsage(week=key, start_date=start, end_date=end)
        bucket = weeks[key]
        bucket.usage_kwh += day.usage_kwh
        bucket.days.append(day.date)

    result = sorted(weeks.values(), key=lambda w: w.start_date, reverse=True)
    for bucket in result:
        bucket.usage_kwh = round(bucket.usage_kwh, KWH_PRECISION)
        bucket.days.sort()
    return result if limit is None else result[:max(limit, 0)]


def aggregate_monthly(daily: Iterable[DailyUsage], limit: Optional[int] = 12) -> List[MonthlyUsage]:
    """
    Sum daily usage into calendar months of the readings' local dates,
    newest month first, keeping only the `limit` most recent months.
    """
    months: Dict[str, MonthlyUsage] = {}
    for day in daily or []:
        key = month_key(day.date)
        if key not in months:
            start, end = month_bounds(day.date.year, day.date.month)
            months[key] = MonthlyUsage(
                month=key,
                year=day.date.year,
                month_number=day.date.month,
                month_name=month_name(day.date.month),
                start_date=start,
                end_date=end,
            )
        bucket = months[key]
        bucket.usage_kwh += day.usage_kwh
        bucket.days.append(day.date)

    result = sorted(months.values(), key=lambda m: m.start_date, reverse=True)
    for bucket in result:
        bucket.usage_kwh = round(bucket.usage_kwh, KWH_PRECISION)
        bucket.days.sort()
    return result if limit is None else result[:max(limit, 0)]


class EnergyAnalyzer:
    def __init__(self, readings: Iterable[Union[Reading, dict]],
                 settings: EngineSettings = EngineSettings()):
        self.settings = settings
        self.readings = sort_readings(coerce_readings(readings))
        self._daily: Optional[List[DailyUsage]] = None

    def daily_usage(self) -> List[DailyUsage]:
        if self._daily is None:
            self._daily = derive_daily_usage(self.readings, self.settings)
        return self._daily

    def weekly_usage(self, limit: Optional[int] = 12) -> List[WeeklyUsage]:
        return aggregate_weekly(self.daily_usage(), limit)

    def monthly_usage(self, limit: Optional[int] = 12) -> List[MonthlyUsage]:
        return aggregate_monthly(self.daily_usage(), limit)

    def usage_by_period(self, period: str = "day") -> Dict[str, float]:
        """
        Returns a dict keyed by 'YYYY-MM-DD', 'YYYY-Www' or 'YYYY-MM' -> kWh,
        the shape BillingEstimator.estimate_cost takes.
        """
        if period == "week":
            return {w.week: w.usage_kwh for w in self.weekly_usage(None)}
        if period == "month":
            return {m.month: m.usage_kwh for m in self.monthly_usage(None)}
        return {format_local_date(d.date): d.usage_kwh for d in self.daily_usage()}

    def latest_reading(self) -> Optional[Reading]:
        return self.readings[-1] if self.readings else None
