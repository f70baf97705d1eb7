"""
=============================================================================
LOCAL STORE - JSON Lines file storage (no AWS needed)
=============================================================================

The default storage collaborator when DynamoDB is not enabled. Each
collection is one append-only JSONL file under DATA_DIR:

    readings.jsonl               one line per write of a reading
    tariff_tiers.jsonl           one line per write of a tariff tier
    recalculation_batches.jsonl  one line per write of a batch

A delete is written as a tombstone line ({"id": ..., "_deleted": true}).
Loading replays the file so the last line for an id wins, which keeps
every write a single append.

Implements the same methods as DynamoDBService, so the Flask app and the
recalculation ledger can use either one.
=============================================================================
"""
import json
import logging
import threading
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional

from backend.lib.token_core.errors import RollbackNotFound, StorageError
from backend.lib.token_core.models import BatchStatus, Reading, RecalculationBatch, TariffTier
from backend.lib.token_core.processor import sort_readings

logger = logging.getLogger(__name__)


class LocalJsonStore:
    """
    Usage:
        store = LocalJsonStore("backend/data")
        store.save_reading(reading)
        store.list_readings("user-1")
    """

    def __init__(self, data_dir="backend/data"):
        self.data_dir = Path(data_dir)
        self.data_dir.mkdir(parents=True, exist_ok=True)
        self.readings_file = self.data_dir / "readings.jsonl"
        self.tiers_file = self.data_dir / "tariff_tiers.jsonl"
        self.batches_file = self.data_dir / "recalculation_batches.jsonl"
        self._lock = threading.Lock()
        # read-check-append of a batch void must not interleave
        self._void_lock = threading.Lock()

    # -------------------------------------------------------------------------
    # File helpers
    # -------------------------------------------------------------------------

    def _replay(self, path: Path) -> Dict[str, dict]:
        """Latest record per id; tombstoned ids are dropped."""
        records: Dict[str, dict] = {}
        if not path.exists():
            return records
        with path.open("r", encoding="utf-8") as f:
            for line_number, line in enumerate(f, start=1):
                line = line.strip()
                if not line:
                    continue
                try:
                    obj = json.loads(line)
                except json.JSONDecodeError:
                    logger.warning("Skipping corrupt line %d in %s", line_number, path.name)
                    continue
                if obj.get("_deleted"):
                    records.pop(obj.get("id"), None)
                else:
                    records[obj["id"]] = obj
        return records

    def _append(self, path: Path, obj: dict) -> None:
        try:
            with self._lock, path.open("a", encoding="utf-8") as f:
                f.write(json.dumps(obj) + "\n")
        except OSError as e:
            logger.error("Failed to write %s: %s", path.name, e)
            raise StorageError(f"Could not write {path.name}: {e}") from e

    # -------------------------------------------------------------------------
    # Readings
    # -------------------------------------------------------------------------

    def list_readings(self, user_id: str, limit: Optional[int] = None) -> List[Reading]:
        readings = []
        for obj in self._replay(self.readings_file).values():
            if obj.get("user_id") != user_id:
                continue
            try:
                readings.append(Reading.from_dict(obj))
            except (KeyError, TypeError, ValueError) as e:
                logger.warning("Skipping stored reading %s: %s", obj.get("id"), e)
        readings = sort_readings(readings)
        return readings[-limit:] if limit and limit > 0 else readings

    def get_reading(self, user_id: str, reading_id: str) -> Optional[Reading]:
        obj = self._replay(self.readings_file).get(reading_id)
        if obj is None or obj.get("user_id") != user_id:
            return None
        return Reading.from_dict(obj)

    def save_reading(self, reading: Reading) -> Reading:
        self._append(self.readings_file, reading.to_dict())
        return reading

    def save_readings(self, readings: List[Reading]) -> int:
        for r in readings:
            self.save_reading(r)
        return len(readings)

    def delete_reading(self, user_id: str, reading_id: str) -> None:
        self._append(self.readings_file, {"id": reading_id, "user_id": user_id, "_deleted": True})

    def get_all_users(self) -> List[str]:
        return sorted({obj["user_id"] for obj in self._replay(self.readings_file).values() if obj.get("user_id")})

    # -------------------------------------------------------------------------
    # Tariff tiers
    # -------------------------------------------------------------------------

    def list_all_tariff_tiers(self) -> List[TariffTier]:
        tiers = [TariffTier.from_dict(obj) for obj in self._replay(self.tiers_file).values()]
        return sorted(tiers, key=lambda t: (t.min_nominal, t.id))

    def list_active_tariff_tiers(self) -> List[TariffTier]:
        return [t for t in self.list_all_tariff_tiers() if t.active]

    def get_tariff_tier(self, tier_id: str) -> Optional[TariffTier]:
        obj = self._replay(self.tiers_file).get(tier_id)
        return TariffTier.from_dict(obj) if obj else None

    def put_tariff_tier(self, tier: TariffTier) -> TariffTier:
        self._append(self.tiers_file, tier.to_dict())
        return tier

    def delete_tariff_tier(self, tier_id: str) -> None:
        self._append(self.tiers_file, {"id": tier_id, "_deleted": True})

    # -------------------------------------------------------------------------
    # Recalculation batches
    # -------------------------------------------------------------------------

    def record_recalculation_batch(self, batch: RecalculationBatch) -> RecalculationBatch:
        self._append(self.batches_file, batch.to_dict())
        return batch

    def get_recalculation_batch(self, batch_id: str) -> Optional[RecalculationBatch]:
        obj = self._replay(self.batches_file).get(batch_id)
        return RecalculationBatch.from_dict(obj) if obj else None

    def list_recalculation_batches(self, user_id: str) -> List[RecalculationBatch]:
        return [
            RecalculationBatch.from_dict(obj)
            for obj in self._replay(self.batches_file).values()
            if obj.get("user_id") == user_id
        ]

    def get_pending_rollbacks(self, user_id: str, now: datetime) -> List[RecalculationBatch]:
        pending = [
            b for b in self.list_recalculation_batches(user_id)
            if b.status(now) == BatchStatus.PENDING_ROLLBACK
        ]
        return sorted(pending, key=lambda b: b.created_at, reverse=True)

    def void_recalculation_batch(self, batch_id: str, reason: str,
                                 actor_id: Optional[str], at: datetime) -> None:
        with self._void_lock:
            obj = self._replay(self.batches_file).get(batch_id)
            if obj is None or obj.get("rolled_back_at"):
                raise RollbackNotFound(batch_id)
            obj.update({
                "rolled_back_at": at.isoformat(),
                "rolled_back_by": actor_id,
                "rollback_reason": reason,
            })
            self._append(self.batches_file, obj)

    def reopen_recalculation_batch(self, batch_id: str) -> None:
        obj = self._replay(self.batches_file).get(batch_id)
        if obj is None:
            raise StorageError(f"Batch {batch_id} does not exist")
        obj.update({"rolled_back_at": None, "rolled_back_by": None, "rollback_reason": None})
        self._append(self.batches_file, obj)
