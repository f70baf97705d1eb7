# backend/lib/token_core/pipeline.py
"""
Presentation-facing entry points.

Everything here is a pure function of the readings it is given, plus an
explicit snapshot cache keyed by a fingerprint of those readings, so a
cached snapshot can always be thrown away and recomputed.
"""
import hashlib
import threading
from collections import OrderedDict
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Dict, Iterable, List, Optional, Union

from .dates import local_today
from .io import coerce_readings
from .models import (
    BurnRateProjection,
    DailyUsage,
    MonthlyUsage,
    Prediction,
    Reading,
    TariffTier,
    WeeklyUsage,
)
from .predictor import predict_depletion, project_burn_rate
from .processor import aggregate_monthly, aggregate_weekly, derive_daily_usage, sort_readings
from .settings import EngineSettings
from .tariff import resolve_tariff_tier as _resolve_tariff_tier


def compute_daily_usage(readings: Iterable[Union[Reading, dict]],
                        settings: EngineSettings = EngineSettings()) -> List[DailyUsage]:
    return derive_daily_usage(readings, settings)


def calculate_token_prediction(readings: Iterable[Union[Reading, dict]],
                               settings: EngineSettings = EngineSettings(),
                               today: Optional[date] = None) -> Prediction:
    return predict_depletion(readings, settings, today)


def calculate_burn_rate_projection(readings: Iterable[Union[Reading, dict]],
                                   settings: EngineSettings = EngineSettings(),
                                   today: Optional[date] = None) -> BurnRateProjection:
    return project_burn_rate(readings, settings, today)


def resolve_tariff_tier(tiers: Iterable[TariffTier], nominal) -> Optional[TariffTier]:
    return _resolve_tariff_tier(tiers, nominal)


def rollback_recalculation(ledger, batch_id: str, reason: str, user_id: str):
    """Undo a recalculation batch; raises RollbackExpired or RollbackNotFound."""
    return ledger.rollback(batch_id, reason, user_id)


__all__ = [
    "aggregate_monthly",
    "aggregate_weekly",
    "calculate_burn_rate_projection",
    "calculate_token_prediction",
    "compute_daily_usage",
    "compute_snapshot",
    "reading_fingerprint",
    "resolve_tariff_tier",
    "rollback_recalculation",
    "SnapshotCache",
    "UsageSnapshot",
]


# -----------------------------------------------------------------------------
# Snapshots
# -----------------------------------------------------------------------------

@dataclass
class UsageSnapshot:
    fingerprint: str
    today: date
    daily: List[DailyUsage] = field(default_factory=list)
    weekly: List[WeeklyUsage] = field(default_factory=list)
    monthly: List[MonthlyUsage] = field(default_factory=list)
    prediction: Prediction = field(default_factory=Prediction)
    projection: BurnRateProjection = field(default_factory=BurnRateProjection)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "fingerprint": self.fingerprint,
            "daily": [d.to_dict() for d in self.daily],
            "weekly": [w.to_dict() for w in self.weekly],
            "monthly": [m.to_dict() for m in self.monthly],
            "prediction": self.prediction.to_dict(),
            "projection": self.projection.to_dict(),
        }


def reading_fingerprint(user_id: str, readings: Iterable[Reading]) -> str:
    """SHA-256 over every reading's identity and value, in timeline order."""
    digest = hashlib.sha256(str(user_id).encode("utf-8"))
    for r in sort_readings(readings):
        digest.update(
            f"|{r.id}|{r.timestamp.isoformat()}|{r.sequence}|{r.kwh_value!r}|{int(r.is_top_up)}".encode("utf-8")
        )
    return digest.hexdigest()


def compute_snapshot(user_id: str, readings: Iterable[Union[Reading, dict]],
                     settings: EngineSettings = EngineSettings(),
                     today: Optional[date] = None,
                     week_limit: Optional[int] = 12,
                     month_limit: Optional[int] = 12) -> UsageSnapshot:
    """Run the whole derivation pipeline from scratch."""
    readings = coerce_readings(readings, user_id=user_id)
    if today is None:
        today = local_today(settings.timezone)
    daily = derive_daily_usage(readings, settings)
    return UsageSnapshot(
        fingerprint=reading_fingerprint(user_id, readings),
        today=today,
        daily=daily,
        weekly=aggregate_weekly(daily, week_limit),
        monthly=aggregate_monthly(daily, month_limit),
        prediction=predict_depletion(readings, settings, today),
        projection=project_burn_rate(readings, settings, today),
    )


class SnapshotCache:
    """
    Bounded LRU of snapshots keyed by (reading fingerprint, today).

    Any change to a user's readings changes the fingerprint, so entries
    never need explicit invalidation.
    """

    def __init__(self, max_entries: int = 128):
        self.max_entries = max_entries
        self._entries: "OrderedDict[tuple, UsageSnapshot]" = OrderedDict()
        self._lock = threading.Lock()
        self.hits = 0
        self.misses = 0

    def get_or_compute(self, user_id: str, readings: Iterable[Union[Reading, dict]],
                       settings: EngineSettings = EngineSettings(),
                       today: Optional[date] = None) -> UsageSnapshot:
        readings = coerce_readings(readings, user_id=user_id)
        if today is None:
            today = local_today(settings.timezone)
        key = (reading_fingerprint(user_id, readings), today)
        with self._lock:
            if key in self._entries:
                self._entries.move_to_end(key)
                self.hits += 1
                return self._entries[key]
        snapshot = compute_snapshot(user_id, readings, settings, today)
        with self._lock:
            self.misses += 1
            self._entries[key] = snapshot
            self._entries.move_to_end(key)
            while len(self._entries) > self.max_entries:
                self._entries.popitem(last=False)
        return snapshot

    def __len__(self):
        return len(self._entries)
