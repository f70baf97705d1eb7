# backend/lib/token_core/io.py
import csv
import logging
import math
import uuid
from dataclasses import replace
from datetime import datetime
from io import StringIO
from typing import Any, Dict, Iterable, List, Optional, Union

from .dates import parse_timestamp
from .errors import MalformedRecord
from .models import Reading

logger = logging.getLogger(__name__)

TRUE_STRINGS = ("1", "true", "yes", "y", "on")


def _to_bool(value) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in TRUE_STRINGS
    return bool(value)


def _to_float(value) -> Optional[float]:
    """float(value), or None for anything blank, non-numeric, NaN or infinite."""
    if value is None or (isinstance(value, str) and not value.strip()):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if math.isfinite(number) else None


def _first(raw: Dict[str, Any], *keys):
    for key in keys:
        if raw.get(key) is not None:
            return raw[key]
    return None


def _clean_kwh(record_id, value) -> float:
    kwh = _to_float(value)
    if kwh is None:
        logger.warning("Reading %s has no usable kWh value (%r), using 0", record_id, value)
        return 0.0
    if kwh < 0:
        logger.warning("Reading %s has negative kWh %s, clamped to 0", record_id, kwh)
        return 0.0
    return kwh


def reading_from_dict(raw: Dict[str, Any], user_id: Optional[str] = None,
                      sequence: int = 0) -> Reading:
    """
    Build a Reading from a loosely shaped record (API payload, CSV row,
    legacy export). Numeric problems are zeroed and logged; only a missing
    or unparseable timestamp raises MalformedRecord, because such a record
    cannot be placed on the timeline.
    """
    record_id = str(_first(raw, "id", "reading_id") or uuid.uuid4().hex)

    ts = _first(raw, "timestamp", "created_at", "event_date")
    if isinstance(ts, str):
        try:
            ts = parse_timestamp(ts)
        except ValueError:
            raise MalformedRecord(record_id, "timestamp", f"is not a timestamp: {ts!r}")
    if not isinstance(ts, datetime):
        raise MalformedRecord(record_id, "timestamp", "is missing")

    top_up_flag = _first(raw, "is_top_up", "isTopUp")
    is_top_up = _to_bool(top_up_flag or False)
    token_amount = _to_float(_first(raw, "token_amount", "tokenAmount"))
    if top_up_flag is None and token_amount:
        # Legacy rows without the flag marked top-ups only by a purchase amount.
        is_top_up = True

    raw_sequence = _to_float(raw.get("sequence"))
    return Reading(
        id=record_id,
        user_id=str(_first(raw, "user_id", "userId") or user_id or ""),
        timestamp=ts,
        kwh_value=_clean_kwh(record_id, _first(raw, "kwh_value", "kwhValue", "kwh", "reading_kwh")),
        is_top_up=is_top_up,
        token_amount=token_amount if is_top_up else None,
        effective_tariff=_to_float(_first(raw, "effective_tariff", "effectiveTariff", "token_cost")) if is_top_up else None,
        token_kwh=_to_float(_first(raw, "token_kwh", "tokenKwh")) if is_top_up else None,
        notes=raw.get("notes"),
        sequence=int(raw_sequence) if raw_sequence is not None else sequence,
    )


def coerce_readings(records: Iterable[Union[Reading, Dict[str, Any]]],
                    user_id: Optional[str] = None) -> List[Reading]:
    """
    Normalise a mixed list of Reading objects and raw dicts.

    Bad records are skipped or zeroed and logged so one bad row never
    poisons the whole series. The input objects are not modified.
    """
    readings = []
    for index, record in enumerate(records or []):
        if isinstance(record, Reading):
            if not isinstance(record.timestamp, datetime):
                logger.warning("Skipping reading %s without a timestamp", record.id)
                continue
            kwh = _clean_kwh(record.id, record.kwh_value)
            if kwh != record.kwh_value:
                record = replace(record, kwh_value=kwh)
            readings.append(record)
            continue
        if not isinstance(record, dict):
            logger.warning("Skipping record #%s of unsupported type %s", index, type(record).__name__)
            continue
        try:
            readings.append(reading_from_dict(record, user_id=user_id, sequence=index))
        except MalformedRecord as e:
            logger.warning("Skipping malformed record: %s", e)
    return readings


def parse_csv_string(csv_text: str, user_id: Optional[str] = None) -> List[Reading]:
    """
    Parse CSV text with header: user_id,timestamp,kwh[,is_top_up,token_amount,notes]
    Timestamp should be ISO8601, e.g. 2025-11-01T07:30:00
    The user_id column may be omitted when user_id is passed in.
    """
    f = StringIO(csv_text.strip())
    reader = csv.DictReader(f)
    readings = []
    for row_number, row in enumerate(reader, start=2):
        owner = row.get("user_id") or user_id
        if not owner or not row.get("timestamp") or not row.get("kwh"):
            raise MalformedRecord(f"row {row_number}", "user_id/timestamp/kwh", f"missing in {row}")
        kwh = _to_float(row["kwh"])
        if kwh is None:
            raise MalformedRecord(f"row {row_number}", "kwh", f"is not a number: {row['kwh']!r}")
        if kwh < 0:
            raise MalformedRecord(f"row {row_number}", "kwh", "must be >= 0")
        try:
            timestamp = parse_timestamp(row["timestamp"])
        except ValueError:
            raise MalformedRecord(f"row {row_number}", "timestamp", f"is not a timestamp: {row['timestamp']!r}")
        is_top_up = _to_bool(row.get("is_top_up") or False)
        readings.append(Reading(
            id=uuid.uuid4().hex,
            user_id=owner,
            timestamp=timestamp,
            kwh_value=kwh,
            is_top_up=is_top_up,
            token_amount=_to_float(row.get("token_amount")) if is_top_up else None,
            notes=row.get("notes") or None,
        ))
    return readings
