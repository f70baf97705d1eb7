# backend/lib/token_core/settings.py
"""
Explicit configuration for the computation core.

Computations never read the environment directly; the app builds one
EngineSettings at start-up (after load_dotenv) and passes it down.
"""
import os
from dataclasses import dataclass
from typing import Optional

DEFAULT_TARIFF_PER_KWH = 1444.70  # PLN R1 household rate, Rp/kWh


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


@dataclass(frozen=True)
class EngineSettings:
    timezone: Optional[str] = None
    tariff_per_kwh: float = DEFAULT_TARIFF_PER_KWH
    admin_fee: float = 0.0
    tariff_tiers_enabled: bool = True
    rollback_window_hours: float = 24.0
    prediction_window_days: int = 30
    projection_horizon_days: int = 60
    critical_days: int = 3
    warning_days: int = 7
    lock_timeout_seconds: float = 5.0

    @classmethod
    def from_env(cls) -> "EngineSettings":
        """
        Build settings from environment variables, falling back to the
        defaults above for anything unset.
        """
        return cls(
            timezone=os.getenv("TIMEZONE") or None,
            tariff_per_kwh=float(os.getenv("TARIFF_PER_KWH", DEFAULT_TARIFF_PER_KWH)),
            admin_fee=float(os.getenv("ADMIN_FEE", "0")),
            tariff_tiers_enabled=_env_bool("FEATURE_TARIFF_TIERS", True),
            rollback_window_hours=float(os.getenv("ROLLBACK_WINDOW_HOURS", "24")),
            prediction_window_days=int(os.getenv("PREDICTION_WINDOW_DAYS", "30")),
            projection_horizon_days=int(os.getenv("PROJECTION_HORIZON_DAYS", "60")),
            critical_days=int(os.getenv("CRITICAL_DAYS", "3")),
            warning_days=int(os.getenv("WARNING_DAYS", "7")),
            lock_timeout_seconds=float(os.getenv("RECALC_LOCK_TIMEOUT_SECONDS", "5")),
        )
