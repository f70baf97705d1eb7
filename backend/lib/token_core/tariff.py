# backend/lib/token_core/tariff.py
"""
Tiered tariff resolution.

A token purchase of N Rp is converted to kWh with the effective rate of
the tier whose [min_nominal, max_nominal] range contains N. Tier writes
are validated here, before they reach storage, so active ranges never
overlap; the descending scan in resolve_tariff_tier is only a safety net.
"""
import logging
import uuid
from typing import Any, Dict, Iterable, List, Optional

from .errors import (
    InvalidTariffTier,
    OverlappingTierRange,
    TariffNotFound,
    TariffTierNotFound,
)
from .models import TariffTier
from .settings import EngineSettings

logger = logging.getLogger(__name__)


def resolve_tariff_tier(tiers: Iterable[TariffTier], nominal) -> Optional[TariffTier]:
    """
    Return the active tier covering `nominal`, or None when no tier does.

    Candidates are scanned by min_nominal descending, so if ranges ever
    overlap the tier with the highest minimum wins (ties by id).
    """
    try:
        nominal = float(nominal)
    except (TypeError, ValueError):
        return None
    candidates = sorted(
        (t for t in tiers or [] if t.active),
        key=lambda t: (-t.min_nominal, t.id),
    )
    for tier in candidates:
        if tier.covers(nominal):
            return tier
    return None


def require_tariff_tier(tiers: Iterable[TariffTier], nominal) -> TariffTier:
    tier = resolve_tariff_tier(tiers, nominal)
    if tier is None:
        raise TariffNotFound(nominal)
    return tier


def effective_rate(token_cost: float, tiers: Iterable[TariffTier],
                   settings: EngineSettings = EngineSettings()) -> float:
    """Rp/kWh for a purchase: the tier rate, or the flat rate when tiers are off."""
    if not settings.tariff_tiers_enabled:
        return settings.tariff_per_kwh
    return require_tariff_tier(tiers, token_cost).effective_tariff


def calculate_token_kwh(token_cost, tiers: Iterable[TariffTier],
                        settings: EngineSettings = EngineSettings()) -> Optional[float]:
    """
    kWh bought with `token_cost` Rp:
        kWh = (token_cost - admin_fee) / rate
    Returns None for a missing or non-positive cost.
    """
    try:
        token_cost = float(token_cost)
    except (TypeError, ValueError):
        return None
    if token_cost <= 0:
        return None
    rate = effective_rate(token_cost, tiers, settings)
    return max(0.0, (token_cost - settings.admin_fee) / rate)


# -----------------------------------------------------------------------------
# Validation and CRUD pass-through
# -----------------------------------------------------------------------------

def find_overlap(candidate: TariffTier, tiers: Iterable[TariffTier]) -> Optional[TariffTier]:
    if not candidate.active:
        return None
    for tier in tiers:
        if tier.id != candidate.id and tier.active and tier.overlaps(candidate):
            return tier
    return None


def validate_tier(candidate: TariffTier, existing: Iterable[TariffTier]) -> None:
    if candidate.min_nominal < 0:
        raise InvalidTariffTier(candidate.id, "min_nominal must be >= 0")
    if candidate.max_nominal is not None and candidate.max_nominal < candidate.min_nominal:
        raise InvalidTariffTier(candidate.id, "max_nominal must be >= min_nominal")
    if candidate.effective_tariff <= 0:
        raise InvalidTariffTier(candidate.id, "effective_tariff must be > 0")
    conflict = find_overlap(candidate, existing)
    if conflict is not None:
        raise OverlappingTierRange(candidate.id, conflict.id)


def _tier_from_payload(tier_id: str, data: Dict[str, Any]) -> TariffTier:
    try:
        return TariffTier.from_dict({**data, "id": tier_id})
    except (KeyError, TypeError, ValueError) as e:
        raise InvalidTariffTier(tier_id, f"bad field {e}")


def create_tariff_tier(store, data: Dict[str, Any]) -> TariffTier:
    tier = _tier_from_payload(str(data.get("id") or uuid.uuid4().hex), data)
    validate_tier(tier, store.list_all_tariff_tiers())
    store.put_tariff_tier(tier)
    logger.info("Created tariff tier %s [%s, %s] @ %s", tier.id,
                tier.min_nominal, tier.max_nominal, tier.effective_tariff)
    return tier


def update_tariff_tier(store, tier_id: str, updates: Dict[str, Any]) -> TariffTier:
    existing = store.get_tariff_tier(tier_id)
    if existing is None:
        raise TariffTierNotFound(tier_id)
    merged = {**existing.to_dict(), **updates}
    tier = _tier_from_payload(tier_id, merged)
    validate_tier(tier, store.list_all_tariff_tiers())
    store.put_tariff_tier(tier)
    logger.info("Updated tariff tier %s", tier_id)
    return tier


def delete_tariff_tier(store, tier_id: str) -> None:
    if store.get_tariff_tier(tier_id) is None:
        raise TariffTierNotFound(tier_id)
    store.delete_tariff_tier(tier_id)
    logger.info("Deleted tariff tier %s", tier_id)


def active_tiers(tiers: Iterable[TariffTier]) -> List[TariffTier]:
    return sorted((t for t in tiers if t.active), key=lambda t: t.min_nominal)
