# backend/lib/token_core/models.py
from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from .dates import comparable_instant, format_local_date, parse_local_date, parse_timestamp


class EventType(str, Enum):
    TOPUP = "TOPUP"
    METER_READING = "METER_READING"


class TriggerType(str, Enum):
    BACKDATE_TOPUP = "BACKDATE_TOPUP"
    EDIT_TOPUP = "EDIT_TOPUP"
    DELETE_TOPUP = "DELETE_TOPUP"
    MANUAL_CORRECTION = "MANUAL_CORRECTION"


class BatchStatus(str, Enum):
    PENDING_ROLLBACK = "PENDING_ROLLBACK"
    ROLLED_BACK = "ROLLED_BACK"
    EXPIRED = "EXPIRED"


def _opt_float(value) -> Optional[float]:
    return None if value is None else float(value)


@dataclass
class Reading:
    """
    One observation of the meter's remaining prepaid kWh.

    token_amount is the Rp spent on a top-up, effective_tariff its Rp/kWh
    rate and token_kwh the kWh it bought. sequence is the insertion order
    used to break timestamp ties.
    """
    id: str
    user_id: str
    timestamp: datetime
    kwh_value: float
    is_top_up: bool = False
    token_amount: Optional[float] = None
    effective_tariff: Optional[float] = None
    token_kwh: Optional[float] = None
    notes: Optional[str] = None
    sequence: int = 0

    def sort_key(self):
        return (comparable_instant(self.timestamp), self.sequence)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "timestamp": self.timestamp.isoformat(),
            "kwh_value": self.kwh_value,
            "is_top_up": self.is_top_up,
            "token_amount": self.token_amount,
            "effective_tariff": self.effective_tariff,
            "token_kwh": self.token_kwh,
            "notes": self.notes,
            "sequence": self.sequence,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Reading":
        """Strict inverse of to_dict, for records this package wrote itself."""
        ts = data["timestamp"]
        return cls(
            id=str(data["id"]),
            user_id=str(data["user_id"]),
            timestamp=ts if isinstance(ts, datetime) else parse_timestamp(ts),
            kwh_value=float(data["kwh_value"]),
            is_top_up=bool(data.get("is_top_up", False)),
            token_amount=_opt_float(data.get("token_amount")),
            effective_tariff=_opt_float(data.get("effective_tariff")),
            token_kwh=_opt_float(data.get("token_kwh")),
            notes=data.get("notes"),
            sequence=int(data.get("sequence", 0)),
        )


@dataclass
class DailyUsage:
    date: date
    usage_kwh: float
    meter_value: Optional[float] = None
    is_top_up: bool = False
    reading_count: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "date": format_local_date(self.date),
            "usage_kwh": self.usage_kwh,
            "meter_value": self.meter_value,
            "is_top_up": self.is_top_up,
            "reading_count": self.reading_count,
        }


@dataclass
class WeeklyUsage:
    week: str
    start_date: date
    end_date: date
    usage_kwh: float = 0.0
    days: List[date] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "week": self.week,
            "start_date": format_local_date(self.start_date),
            "end_date": format_local_date(self.end_date),
            "usage_kwh": self.usage_kwh,
            "days": [format_local_date(d) for d in self.days],
        }


@dataclass
class MonthlyUsage:
    month: str
    year: int
    month_number: int
    month_name: str
    start_date: date
    end_date: date
    usage_kwh: float = 0.0
    days: List[date] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "month": self.month,
            "year": self.year,
            "month_number": self.month_number,
            "month_name": self.month_name,
            "start_date": format_local_date(self.start_date),
            "end_date": format_local_date(self.end_date),
            "usage_kwh": self.usage_kwh,
            "days": [format_local_date(d) for d in self.days],
        }


@dataclass
class TariffTier:
    """A nominal range (Rp) mapped to an effective Rp/kWh rate."""
    id: str
    min_nominal: float
    max_nominal: Optional[float]
    effective_tariff: float
    label: Optional[str] = None
    active: bool = True
    metadata: Dict[str, Any] = field(default_factory=dict)

    def covers(self, nominal: float) -> bool:
        return self.min_nominal <= nominal and (
            self.max_nominal is None or nominal <= self.max_nominal
        )

    def overlaps(self, other: "TariffTier") -> bool:
        # Closed ranges; None is an open upper bound.
        self_max = float("inf") if self.max_nominal is None else self.max_nominal
        other_max = float("inf") if other.max_nominal is None else other.max_nominal
        return self.min_nominal <= other_max and other.min_nominal <= self_max

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "min_nominal": self.min_nominal,
            "max_nominal": self.max_nominal,
            "effective_tariff": self.effective_tariff,
            "label": self.label,
            "active": self.active,
            "metadata": dict(self.metadata),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TariffTier":
        return cls(
            id=str(data["id"]),
            min_nominal=float(data["min_nominal"]),
            max_nominal=_opt_float(data.get("max_nominal")),
            effective_tariff=float(data["effective_tariff"]),
            label=data.get("label"),
            active=bool(data.get("active", True)),
            metadata=dict(data.get("metadata") or {}),
        )


@dataclass
class Prediction:
    has_data: bool = False
    remaining_kwh: float = 0.0
    avg_daily_usage: float = 0.0
    days_until_depletion: Optional[int] = None
    predicted_depletion_date: Optional[date] = None
    critical_kwh: float = 0.0
    warning_kwh: float = 0.0
    is_critical: bool = False
    is_warning: bool = False
    days_to_critical: Optional[int] = None
    days_to_warning: Optional[int] = None
    current_token_kwh: Optional[float] = None
    token_cost: Optional[float] = None
    cost_per_kwh: Optional[float] = None
    current_month_usage: float = 0.0
    estimated_monthly_cost: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "has_data": self.has_data,
            "remaining_kwh": self.remaining_kwh,
            "avg_daily_usage": self.avg_daily_usage,
            "days_until_depletion": self.days_until_depletion,
            "predicted_depletion_date": (
                format_local_date(self.predicted_depletion_date)
                if self.predicted_depletion_date else None
            ),
            "critical_kwh": self.critical_kwh,
            "warning_kwh": self.warning_kwh,
            "is_critical": self.is_critical,
            "is_warning": self.is_warning,
            "days_to_critical": self.days_to_critical,
            "days_to_warning": self.days_to_warning,
            "current_token_kwh": self.current_token_kwh,
            "token_cost": self.token_cost,
            "cost_per_kwh": self.cost_per_kwh,
            "current_month_usage": self.current_month_usage,
            "estimated_monthly_cost": self.estimated_monthly_cost,
        }


@dataclass
class BurnRatePoint:
    date: date
    day_index: int
    remaining_kwh: float
    is_projected: bool

    def to_dict(self) -> Dict[str, Any]:
        return {
            "date": format_local_date(self.date),
            "day_index": self.day_index,
            "remaining_kwh": self.remaining_kwh,
            "is_projected": self.is_projected,
        }


@dataclass
class BurnRateProjection:
    has_data: bool = False
    points: List[BurnRatePoint] = field(default_factory=list)
    remaining_kwh: float = 0.0
    avg_daily_usage: float = 0.0
    days_until_depletion: Optional[int] = None
    critical_kwh: float = 0.0
    warning_kwh: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "has_data": self.has_data,
            "points": [p.to_dict() for p in self.points],
            "remaining_kwh": self.remaining_kwh,
            "avg_daily_usage": self.avg_daily_usage,
            "days_until_depletion": self.days_until_depletion,
            "critical_kwh": self.critical_kwh,
            "warning_kwh": self.warning_kwh,
        }


@dataclass
class AffectedEvent:
    """One day whose derived usage changed because of a mutation."""
    event_date: date
    event_type: EventType
    old_kwh: float
    new_kwh: float
    old_meter_value: Optional[float] = None
    new_meter_value: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "event_date": format_local_date(self.event_date),
            "event_type": self.event_type.value,
            "old_kwh": self.old_kwh,
            "new_kwh": self.new_kwh,
            "old_meter_value": self.old_meter_value,
            "new_meter_value": self.new_meter_value,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AffectedEvent":
        return cls(
            event_date=parse_local_date(data["event_date"]),
            event_type=EventType(data["event_type"]),
            old_kwh=float(data["old_kwh"]),
            new_kwh=float(data["new_kwh"]),
            old_meter_value=_opt_float(data.get("old_meter_value")),
            new_meter_value=_opt_float(data.get("new_meter_value")),
        )


@dataclass
class RecalculationBatch:
    """
    Audit record of a historical mutation.

    reading_before / reading_after are the images of the mutated reading
    (None before an insert, None after a delete); rollback restores
    reading_before.
    """
    id: str
    user_id: str
    trigger_type: TriggerType
    affected_events: List[AffectedEvent]
    created_at: datetime
    can_rollback_until: datetime
    reading_before: Optional[Reading] = None
    reading_after: Optional[Reading] = None
    created_by: Optional[str] = None
    rolled_back_at: Optional[datetime] = None
    rolled_back_by: Optional[str] = None
    rollback_reason: Optional[str] = None

    def status(self, now: datetime) -> BatchStatus:
        if self.rolled_back_at is not None:
            return BatchStatus.ROLLED_BACK
        if now > self.can_rollback_until:
            return BatchStatus.EXPIRED
        return BatchStatus.PENDING_ROLLBACK

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "trigger_type": self.trigger_type.value,
            "affected_events": [e.to_dict() for e in self.affected_events],
            "created_at": self.created_at.isoformat(),
            "can_rollback_until": self.can_rollback_until.isoformat(),
            "reading_before": self.reading_before.to_dict() if self.reading_before else None,
            "reading_after": self.reading_after.to_dict() if self.reading_after else None,
            "created_by": self.created_by,
            "rolled_back_at": self.rolled_back_at.isoformat() if self.rolled_back_at else None,
            "rolled_back_by": self.rolled_back_by,
            "rollback_reason": self.rollback_reason,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RecalculationBatch":
        rolled_back_at = data.get("rolled_back_at")
        return cls(
            id=str(data["id"]),
            user_id=str(data["user_id"]),
            trigger_type=TriggerType(data["trigger_type"]),
            affected_events=[AffectedEvent.from_dict(e) for e in data.get("affected_events", [])],
            created_at=parse_timestamp(data["created_at"]),
            can_rollback_until=parse_timestamp(data["can_rollback_until"]),
            reading_before=Reading.from_dict(data["reading_before"]) if data.get("reading_before") else None,
            reading_after=Reading.from_dict(data["reading_after"]) if data.get("reading_after") else None,
            created_by=data.get("created_by"),
            rolled_back_at=parse_timestamp(rolled_back_at) if rolled_back_at else None,
            rolled_back_by=data.get("rolled_back_by"),
            rollback_reason=data.get("rollback_reason"),
        )
