"""
=============================================================================
PREPAID TOKEN TRACKER - MAIN FLASK APPLICATION
=============================================================================

REST API over the token_core library for a prepaid electricity meter that
shows remaining kWh:
- Recording meter readings and token top-ups (single or CSV upload)
- Daily / weekly / monthly usage derived from the readings
- Depletion prediction and burn-rate projection
- Tiered tariff management (token Rp -> kWh)
- Audited historical corrections with a rollback window
- Depletion alerts via email (SNS)

Storage:
- Local JSON Lines files under DATA_DIR (default)
- DynamoDB when USE_DYNAMODB=true (falls back to local on failure)

How to run:
    python -m backend.app

Then visit: http://127.0.0.1:5000
=============================================================================
"""

# =============================================================================
# IMPORTS
# =============================================================================

import logging
import os
from dataclasses import replace
from typing import Any, Dict, List, Optional

# Flask - request gives us form data, JSON bodies and uploaded files;
# jsonify turns dicts into JSON responses
from flask import Flask, jsonify, request

# dotenv - load settings (AWS keys, feature flags) from a .env file.
# This must be called before accessing any environment variables
from dotenv import load_dotenv
load_dotenv()

# One log format for the app and every library module
logging.basicConfig(
    level=os.getenv('LOG_LEVEL', 'INFO').upper(),
    format='%(asctime)s %(levelname)s %(name)s: %(message)s',
)
logger = logging.getLogger(__name__)

# =============================================================================
# CUSTOM LIBRARY IMPORTS - the token_core computation library
# =============================================================================

# LocalJsonStore: file storage used whenever DynamoDB is off
from backend.lib.local_store import LocalJsonStore

# depletion_level: CRITICAL / WARNING / None for a prediction
from backend.lib.sns_service import depletion_level

# Date helpers: every timestamp -> local date conversion goes through here
from backend.lib.token_core.dates import comparable_instant, local_now

# Errors the library raises on purpose; mapped to HTTP codes below
from backend.lib.token_core.errors import (
    ConcurrentRecalculationConflict,
    InvalidReading,
    InvalidTariffTier,
    MalformedRecord,
    OverlappingTierRange,
    ReadingNotFound,
    RollbackExpired,
    RollbackNotFound,
    StorageError,
    TariffNotFound,
    TariffTierNotFound,
    TokenCoreError,
)

# BillingEstimator: Rp cost of a kWh usage mapping
from backend.lib.token_core.estimator import BillingEstimator

# parse_csv_string: CSV upload -> Reading objects
from backend.lib.token_core.io import parse_csv_string, reading_from_dict

# RecalculationLedger: audited edits of past readings, with rollback
from backend.lib.token_core.ledger import MutationOp, ReadingMutation, RecalculationLedger
from backend.lib.token_core.models import Reading

# SnapshotCache: derived usage / prediction memoized per reading set
from backend.lib.token_core.pipeline import SnapshotCache

# EnergyAnalyzer: daily / weekly / monthly usage from remaining-kWh readings
from backend.lib.token_core.processor import EnergyAnalyzer
from backend.lib.token_core.settings import EngineSettings

# Tariff tiers: token purchase amount (Rp) -> Rp/kWh rate -> kWh
from backend.lib.token_core.tariff import (
    calculate_token_kwh,
    create_tariff_tier,
    delete_tariff_tier,
    effective_rate,
    require_tariff_tier,
    update_tariff_tier,
)
from backend.lib.token_core.validation import validate_reading

# =============================================================================
# CONFIGURATION
# =============================================================================

# All computation knobs (timezone, tariff, thresholds) in one value
settings = EngineSettings.from_env()
DATA_DIR = os.getenv('DATA_DIR', 'backend/data')

# =============================================================================
# AWS SERVICE INITIALIZATION
# =============================================================================
# Each AWS service is switched on by an environment variable, so the app
# also works without AWS (local files, no alerts)

# -----------------------------------------------------------------------------
# STORAGE - DynamoDB when enabled, local JSONL files otherwise
# -----------------------------------------------------------------------------
# DynamoDB keeps readings, tariff tiers and recalculation batches

# Check if DynamoDB is enabled via environment variable
USE_DYNAMODB = os.getenv('USE_DYNAMODB', 'false').lower() == 'true'
store = None  # DynamoDBService or LocalJsonStore, same methods

if USE_DYNAMODB:
    try:
        from backend.lib.dynamodb_service import DynamoDBService
        store = DynamoDBService()
        # Create the three tables if they don't exist
        store.create_tables_if_not_exist()
        logger.info("DynamoDB storage enabled")
    except Exception as e:
        # If DynamoDB fails, fall back to local storage
        logger.warning("DynamoDB initialization failed: %s. Using local storage.", e)
        USE_DYNAMODB = False
        store = None

if store is None:
    store = LocalJsonStore(DATA_DIR)

# -----------------------------------------------------------------------------
# SNS SERVICE - depletion alerts by email
# -----------------------------------------------------------------------------
# Subscribers get an email when a token is about to run out

# Check if SNS is enabled via environment variable
USE_SNS = os.getenv('USE_SNS', 'false').lower() == 'true'
sns_service = None  # Will hold our SNS service instance

if USE_SNS:
    try:
        from backend.lib.sns_service import SNSService
        sns_service = SNSService()
        # Use SNS_TOPIC_ARN if given, else create the topic
        if not sns_service.topic_arn:
            sns_service.create_topic_if_not_exists()
        logger.info("SNS notifications enabled")
    except Exception as e:
        # Alerts are optional; the API keeps working without them
        logger.warning("SNS initialization failed: %s. Notifications disabled.", e)
        USE_SNS = False
        sns_service = None

# One ledger per process; it owns the per-user recalculation locks
snapshot_cache = SnapshotCache()
ledger = RecalculationLedger(store, settings, cache=snapshot_cache)

# Create the Flask application
app = Flask(__name__)


def use_store(new_store, new_settings: EngineSettings = None, new_sns=None):
    """
    Swap the storage collaborator (and optionally settings / SNS) at runtime.
    Tests point the app at a temporary LocalJsonStore this way.
    """
    global store, settings, ledger, snapshot_cache, sns_service, USE_SNS
    store = new_store
    if new_settings is not None:
        settings = new_settings
    snapshot_cache = SnapshotCache()
    ledger = RecalculationLedger(store, settings, cache=snapshot_cache)
    sns_service = new_sns
    USE_SNS = new_sns is not None
    return ledger


# =============================================================================
# ERROR HANDLING
# =============================================================================

ERROR_STATUS = [
    (InvalidReading, 400),
    (MalformedRecord, 400),
    (InvalidTariffTier, 400),
    (TariffNotFound, 404),
    (TariffTierNotFound, 404),
    (ReadingNotFound, 404),
    (RollbackNotFound, 404),
    (OverlappingTierRange, 409),
    (RollbackExpired, 409),
    (ConcurrentRecalculationConflict, 409),
    (StorageError, 503),
]


@app.errorhandler(TokenCoreError)
def handle_core_error(e):
    status = next((code for cls, code in ERROR_STATUS if isinstance(e, cls)), 500)
    body = {"error": str(e), "type": type(e).__name__}
    if isinstance(e, InvalidReading):
        body["status"] = e.status
    response = jsonify(body)
    response.status_code = status
    if isinstance(e, ConcurrentRecalculationConflict):
        response.headers["Retry-After"] = str(e.retry_after)
    return response


# =============================================================================
# HELPER FUNCTIONS
# =============================================================================

def _json_body() -> Dict[str, Any]:
    return request.get_json(silent=True) or {}


def _normalise_payload(payload: Dict[str, Any]) -> Dict[str, Any]:
    """API field names -> Reading field names; ids are never client-set."""
    data = {k: v for k, v in payload.items() if k not in ("id", "user_id", "sequence", "op", "reading_id")}
    if "kwh" in data and "kwh_value" not in data:
        data["kwh_value"] = data.pop("kwh")
    if "is_top_up" in data and str(data["is_top_up"]).lower() not in ("1", "true", "yes", "on"):
        # a plain reading carries no purchase
        data.update(token_amount=None, effective_tariff=None, token_kwh=None)
    elif data.get("token_amount") is not None and data.get("effective_tariff") is None:
        # a new purchase amount invalidates a previously resolved rate
        data["effective_tariff"] = None
        data["token_kwh"] = None
    return data


def _previous_reading(readings: List[Reading], timestamp, exclude_id: Optional[str] = None) -> Optional[Reading]:
    at = comparable_instant(timestamp)
    earlier = [r for r in readings if r.id != exclude_id and comparable_instant(r.timestamp) <= at]
    return earlier[-1] if earlier else None


def _price_top_up(reading: Reading) -> Reading:
    """
    Store the tier rate and kWh on a top-up bought with a known amount.

    An amount no tier covers leaves the top-up unpriced: the meter value
    is still recorded, the tariff is simply unknown.
    """
    if not reading.is_top_up or not reading.token_amount or reading.effective_tariff:
        return reading
    tiers = store.list_active_tariff_tiers()
    try:
        return replace(
            reading,
            effective_tariff=effective_rate(reading.token_amount, tiers, settings),
            token_kwh=calculate_token_kwh(reading.token_amount, tiers, settings),
        )
    except TariffNotFound as e:
        logger.warning("Top-up %s left unpriced: %s", reading.id, e)
        return reading


def build_reading(user_id: str, payload: Dict[str, Any], readings: List[Reading],
                  existing: Optional[Reading] = None) -> Reading:
    """
    Validate and build a new or edited reading from a request payload.

    Raises InvalidReading when the value is unusable, or when a plain
    reading is higher than the reading before it (it must be a top-up).
    """
    data = dict(existing.to_dict()) if existing else {}
    data.update(_normalise_payload(payload))
    if data.get("timestamp") is None:
        data["timestamp"] = local_now(settings.timezone)
    if data.get("kwh_value") is None:
        raise InvalidReading("ERROR_INVALID_VALUE", "kwh_value is required")

    is_top_up = str(data.get("is_top_up", False)).lower() in ("1", "true", "yes", "on")
    try:
        reading = reading_from_dict(data, user_id=user_id)
    except MalformedRecord as e:
        raise InvalidReading("ERROR_INVALID_VALUE", str(e))

    previous = _previous_reading(readings, reading.timestamp, exclude_id=existing.id if existing else None)
    result = validate_reading(data["kwh_value"], previous.kwh_value if previous else None, is_top_up)
    if result.is_blocking:
        raise InvalidReading(result.status, result.message)

    reading = replace(reading, user_id=user_id)
    return _price_top_up(reading)


def _mutation_from_request(user_id: str, payload: Dict[str, Any]) -> ReadingMutation:
    op = MutationOp(str(payload.get("op", "ADD")).upper())
    readings = store.list_readings(user_id)
    if op == MutationOp.ADD:
        return ReadingMutation(op, reading=build_reading(user_id, payload, readings))
    reading_id = payload.get("reading_id")
    existing = next((r for r in readings if r.id == reading_id), None)
    if existing is None:
        raise ReadingNotFound(user_id, reading_id)
    if op == MutationOp.DELETE:
        return ReadingMutation(op, reading_id=reading_id)
    return ReadingMutation(op, reading=build_reading(user_id, payload, readings, existing),
                           reading_id=reading_id)


def _mutation_response(result, status=200):
    return jsonify({
        "reading": result.reading.to_dict() if result.reading else None,
        "batch": result.batch.to_dict() if result.batch else None,
        "snapshot": result.snapshot.to_dict(),
    }), status


def _snapshot_for(user_id: str):
    return snapshot_cache.get_or_compute(user_id, store.list_readings(user_id), settings)


def _batch_dict(batch, now) -> Dict[str, Any]:
    body = batch.to_dict()
    body["status"] = batch.status(now).value
    return body


# =============================================================================
# API ROUTES - READINGS
# =============================================================================

@app.route("/upload", methods=["POST"])
def upload():
    """
    Import a CSV of readings.

    Expected CSV format:
        user_id,timestamp,kwh,is_top_up,token_amount,notes
        user-1,2025-11-01T07:00:00,50,false,,
        user-1,2025-11-02T07:00:00,140,true,150000,bought token

    The user_id column may be left out when a user_id form field is sent.
    Rows newer than the user's latest reading are appended; older rows go
    through the recalculation ledger and their batch ids are returned.
    """
    if "file" not in request.files:
        return jsonify({"error": "No file uploaded"}), 400

    file = request.files["file"]
    content = file.read().decode("utf-8")
    readings = parse_csv_string(content, user_id=request.form.get("user_id"))

    by_user: Dict[str, List[Reading]] = {}
    for r in readings:
        by_user.setdefault(r.user_id, []).append(r)

    alerts = {}
    batch_ids = []
    for user_id, rows in by_user.items():
        # Rows at or after the latest stored reading only extend the
        # timeline and are saved in one go
        with ledger.user_lock(user_id):
            existing = store.list_readings(user_id)
            latest = max((comparable_instant(r.timestamp) for r in existing), default=None)
            forward = [r for r in rows if latest is None or comparable_instant(r.timestamp) >= latest]
            next_sequence = max((r.sequence for r in existing), default=-1) + 1
            store.save_readings([
                _price_top_up(replace(r, sequence=next_sequence + offset))
                for offset, r in enumerate(forward)
            ])

        # Rows dated before it rewrite history: one rollback-able batch each
        forward_ids = {r.id for r in forward}
        for r in rows:
            if r.id in forward_ids:
                continue
            result = ledger.add_reading(user_id, _price_top_up(r), actor_id=request.form.get("actor_id"))
            if result.batch is not None:
                batch_ids.append(result.batch.id)

        if USE_SNS and sns_service:
            prediction = _snapshot_for(user_id).prediction
            if sns_service.send_depletion_alert(user_id, prediction):
                alerts[user_id] = depletion_level(prediction)

    response = {
        "upload_id": file.filename,
        "processed_count": len(readings),
        "users": sorted(by_user),
    }
    if batch_ids:
        response["recalculation_batches"] = batch_ids
    if alerts:
        response["alerts_sent"] = alerts
    return jsonify(response), 202


@app.route("/readings", methods=["GET"])
def get_readings():
    """Raw readings of a user, oldest first. Optional ?limit= keeps the newest N."""
    user_id = request.args.get("user_id")
    if not user_id:
        return jsonify({"error": "user_id required"}), 400
    try:
        limit = int(request.args["limit"]) if request.args.get("limit") else None
    except ValueError:
        return jsonify({"error": "limit must be an integer"}), 400
    if limit is not None and limit < 0:
        return jsonify({"error": "limit must not be negative"}), 400

    readings = store.list_readings(user_id, limit=limit) if limit != 0 else []
    return jsonify({
        "user_id": user_id,
        "readings": [r.to_dict() for r in readings],
    })


@app.route("/readings", methods=["POST"])
def add_reading():
    """
    Record a reading or a top-up.

    Request Body (JSON):
        {"user_id": "user-1", "timestamp": "2025-11-05T07:00:00",
         "kwh_value": 42.5, "is_top_up": false}

    A reading dated before the user's latest reading rewrites history and
    returns the recalculation batch that can undo it.
    """
    data = _json_body()
    user_id = data.get("user_id")
    if not user_id:
        return jsonify({"error": "user_id required"}), 400

    reading = build_reading(user_id, data, store.list_readings(user_id))
    result = ledger.add_reading(user_id, reading, actor_id=data.get("actor_id"))
    return _mutation_response(result, 201)


@app.route("/readings/<reading_id>", methods=["PUT"])
def edit_reading(reading_id):
    data = _json_body()
    user_id = data.get("user_id")
    if not user_id:
        return jsonify({"error": "user_id required"}), 400

    readings = store.list_readings(user_id)
    existing = next((r for r in readings if r.id == reading_id), None)
    if existing is None:
        raise ReadingNotFound(user_id, reading_id)
    reading = build_reading(user_id, data, readings, existing)
    result = ledger.edit_reading(user_id, reading_id, reading, actor_id=data.get("actor_id"))
    return _mutation_response(result)


@app.route("/readings/<reading_id>", methods=["DELETE"])
def delete_reading(reading_id):
    user_id = request.args.get("user_id")
    if not user_id:
        return jsonify({"error": "user_id required"}), 400
    result = ledger.delete_reading(user_id, reading_id, actor_id=request.args.get("actor_id"))
    return _mutation_response(result)


@app.route("/readings/preview", methods=["POST"])
def preview_reading():
    """
    Days a mutation would change, without saving anything.

    Request Body (JSON):
        {"user_id": "user-1", "op": "ADD", "timestamp": "...", "kwh_value": 120,
         "is_top_up": true}
        {"user_id": "user-1", "op": "DELETE", "reading_id": "..."}
    """
    data = _json_body()
    user_id = data.get("user_id")
    if not user_id:
        return jsonify({"error": "user_id required"}), 400
    try:
        mutation = _mutation_from_request(user_id, data)
    except ValueError:
        return jsonify({"error": "op must be ADD, EDIT or DELETE"}), 400

    affected = ledger.preview(user_id, mutation)
    return jsonify({
        "user_id": user_id,
        "op": mutation.op.value,
        "affected_events": [e.to_dict() for e in affected],
    })


# =============================================================================
# API ROUTES - USAGE, PREDICTION, ESTIMATE
# =============================================================================

@app.route("/usage", methods=["GET"])
def usage():
    """
    Derived usage of a user.

    Query Parameters:
        user_id (required)
        period (optional): 'day', 'week' or 'month' (default: 'day')
        limit (optional): most recent N periods (default 12 for week/month,
                          all days for day)

    Example Response:
        {"user_id": "user-1", "period": "week",
         "data": [{"week": "2025-W45", "usage_kwh": 61.2, ...}]}
    """
    user_id = request.args.get("user_id")
    period = request.args.get("period", "day").lower()
    if not user_id:
        return jsonify({"error": "user_id required"}), 400
    if period not in ("day", "week", "month"):
        return jsonify({"error": "period must be 'day', 'week' or 'month'"}), 400
    try:
        limit = int(request.args["limit"]) if request.args.get("limit") else None
    except ValueError:
        return jsonify({"error": "limit must be an integer"}), 400

    analyzer = EnergyAnalyzer(store.list_readings(user_id), settings)
    if period == "day":
        data = analyzer.daily_usage()
        if limit is not None:
            data = data[-limit:] if limit > 0 else []
    elif period == "week":
        data = analyzer.weekly_usage(12 if limit is None else limit)
    else:
        data = analyzer.monthly_usage(12 if limit is None else limit)

    return jsonify({
        "user_id": user_id,
        "period": period,
        "data": [item.to_dict() for item in data],
    })


@app.route("/prediction", methods=["GET"])
def prediction():
    user_id = request.args.get("user_id")
    if not user_id:
        return jsonify({"error": "user_id required"}), 400
    return jsonify({"user_id": user_id, "prediction": _snapshot_for(user_id).prediction.to_dict()})


@app.route("/projection", methods=["GET"])
def projection():
    user_id = request.args.get("user_id")
    if not user_id:
        return jsonify({"error": "user_id required"}), 400
    return jsonify({"user_id": user_id, "projection": _snapshot_for(user_id).projection.to_dict()})


@app.route("/estimate", methods=["GET"])
def estimate():
    """
    Cost of all derived usage at a rate.

    Query Parameters:
        user_id (required)
        rate (optional): Rp per kWh (default: TARIFF_PER_KWH)
        period (optional): 'day', 'week' or 'month' (default: 'day')
    """
    user_id = request.args.get("user_id")
    if not user_id:
        return jsonify({"error": "user_id required"}), 400
    try:
        rate = float(request.args.get("rate", settings.tariff_per_kwh))
    except ValueError:
        return jsonify({"error": "rate must be a number"}), 400
    period = request.args.get("period", "day").lower()
    if period not in ("day", "week", "month"):
        return jsonify({"error": "period must be 'day', 'week' or 'month'"}), 400

    analyzer = EnergyAnalyzer(store.list_readings(user_id), settings)
    usage_by_period = analyzer.usage_by_period(period)
    return jsonify({
        "user_id": user_id,
        "period": period,
        "total_kwh": round(sum(usage_by_period.values()), 4),
        "estimated_cost": BillingEstimator(rate).estimate_cost(usage_by_period),
        "rate_per_kwh": rate,
        "currency": "IDR",
    })


# =============================================================================
# API ROUTES - TARIFF TIERS
# =============================================================================

@app.route("/tariff-tiers", methods=["GET"])
def list_tariff_tiers():
    """Active tiers; ?all=true includes inactive ones."""
    if request.args.get("all", "false").lower() == "true":
        tiers = store.list_all_tariff_tiers()
    else:
        tiers = store.list_active_tariff_tiers()
    return jsonify({"tiers": [t.to_dict() for t in tiers]})


@app.route("/tariff-tiers", methods=["POST"])
def create_tier():
    """
    Request Body (JSON):
        {"min_nominal": 20000, "max_nominal": 50000,
         "effective_tariff": 1444.70, "label": "R1 small"}
    """
    tier = create_tariff_tier(store, _json_body())
    return jsonify(tier.to_dict()), 201


@app.route("/tariff-tiers/<tier_id>", methods=["PUT"])
def update_tier(tier_id):
    return jsonify(update_tariff_tier(store, tier_id, _json_body()).to_dict())


@app.route("/tariff-tiers/<tier_id>", methods=["DELETE"])
def delete_tier(tier_id):
    delete_tariff_tier(store, tier_id)
    return jsonify({"deleted": tier_id})


@app.route("/tariff-tiers/resolve", methods=["GET"])
def resolve_tier():
    """
    Tier and kWh for a token purchase.

    Example:
        GET /tariff-tiers/resolve?nominal=100000
        {"nominal": 100000.0, "tier": {...}, "effective_tariff": 1444.7,
         "token_kwh": 69.22}
    """
    try:
        nominal = float(request.args.get("nominal", ""))
    except ValueError:
        return jsonify({"error": "nominal must be a number"}), 400

    tiers = store.list_active_tariff_tiers()
    tier = require_tariff_tier(tiers, nominal) if settings.tariff_tiers_enabled else None
    token_kwh = calculate_token_kwh(nominal, tiers, settings)
    return jsonify({
        "nominal": nominal,
        "tier": tier.to_dict() if tier else None,
        "effective_tariff": tier.effective_tariff if tier else settings.tariff_per_kwh,
        "token_kwh": round(token_kwh, 2) if token_kwh is not None else None,
    })


# =============================================================================
# API ROUTES - RECALCULATIONS
# =============================================================================

@app.route("/recalculations/pending", methods=["GET"])
def pending_recalculations():
    user_id = request.args.get("user_id")
    if not user_id:
        return jsonify({"error": "user_id required"}), 400
    now = ledger.clock()
    batches = ledger.get_pending_rollbacks(user_id, now)
    return jsonify({"user_id": user_id, "batches": [_batch_dict(b, now) for b in batches]})


@app.route("/recalculations", methods=["GET"])
def list_recalculations():
    user_id = request.args.get("user_id")
    if not user_id:
        return jsonify({"error": "user_id required"}), 400
    now = ledger.clock()
    return jsonify({
        "user_id": user_id,
        "batches": [_batch_dict(b, now) for b in ledger.list_batches(user_id)],
    })


@app.route("/recalculations/<batch_id>/rollback", methods=["POST"])
def rollback_recalculation(batch_id):
    """
    Request Body (JSON):
        {"user_id": "user-1", "reason": "entered the wrong date"}
    """
    data = _json_body()
    user_id = data.get("user_id")
    if not user_id:
        return jsonify({"error": "user_id required"}), 400

    result = ledger.rollback(batch_id, data.get("reason") or "rolled back by user", user_id)
    return jsonify({
        "batch": _batch_dict(result.batch, result.batch.rolled_back_at),
        "restored": result.restored.to_dict() if result.restored else None,
        "affected_events": [e.to_dict() for e in result.affected_events],
        "snapshot": result.snapshot.to_dict(),
    })


# =============================================================================
# API ROUTES - ALERTS AND SERVICE STATUS
# =============================================================================

@app.route("/alerts/depletion", methods=["POST"])
def depletion_alert():
    """
    Send a depletion alert for a user when the token is CRITICAL or WARNING.

    Request Body (JSON):
        {"user_id": "user-1"}
    """
    if not USE_SNS or not sns_service:
        return jsonify({"error": "SNS not enabled"}), 400
    user_id = _json_body().get("user_id")
    if not user_id:
        return jsonify({"error": "user_id required"}), 400

    prediction = _snapshot_for(user_id).prediction
    sent = sns_service.send_depletion_alert(user_id, prediction)
    return jsonify({
        "user_id": user_id,
        "level": depletion_level(prediction),
        "alert_sent": sent,
        "days_until_depletion": prediction.days_until_depletion,
    })


@app.route("/dynamodb/status", methods=["GET"])
def dynamodb_status():
    return jsonify({
        "dynamodb_enabled": USE_DYNAMODB,
        "tables": getattr(store, "table_names", None) if USE_DYNAMODB else None,
    })


@app.route("/sns/status", methods=["GET"])
def sns_status():
    return jsonify({
        "sns_enabled": USE_SNS,
        "topic_arn": sns_service.topic_arn if sns_service else None,
    })


@app.route("/sns/subscribe", methods=["POST"])
def sns_subscribe():
    """
    Subscribe an email address to depletion alerts. AWS sends a
    confirmation link that must be clicked before alerts arrive.
    """
    if not USE_SNS or not sns_service:
        return jsonify({"error": "SNS not enabled"}), 400
    email = _json_body().get("email")
    if not email:
        return jsonify({"error": "email required"}), 400

    subscription_arn = sns_service.subscribe_email(email)
    if subscription_arn:
        return jsonify({
            "message": f"Subscription pending. Check {email} for confirmation link.",
            "subscription_arn": subscription_arn,
        })
    return jsonify({"error": "Failed to subscribe"}), 500


if __name__ == "__main__":
    # Development server only
    app.run(debug=True)
