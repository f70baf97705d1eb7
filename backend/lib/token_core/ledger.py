# backend/lib/token_core/ledger.py
"""
Recalculation ledger.

Readings are the only source of truth; every derived series is rebuilt
from scratch. When a mutation rewrites history (edit, delete, or an
insert dated before the latest reading) the ledger records one
RecalculationBatch describing every day whose derived usage changed,
together with the before/after images of the reading, so the change can
be undone until the batch's rollback window closes.

Batch states are derived passively from timestamps:

    PENDING_ROLLBACK --rollback()--> ROLLED_BACK
           |
           +-- now > can_rollback_until --> EXPIRED

Mutations and rollbacks for one user are serialised by a per-user lock.
"""
import logging
import threading
import uuid
from contextlib import contextmanager
from dataclasses import dataclass, replace
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Callable, Dict, List, Optional

from .dates import comparable_instant
from .errors import (
    ConcurrentRecalculationConflict,
    ReadingNotFound,
    RollbackExpired,
    RollbackNotFound,
    StorageError,
)
from .models import (
    AffectedEvent,
    BatchStatus,
    DailyUsage,
    EventType,
    Reading,
    RecalculationBatch,
    TriggerType,
)
from .pipeline import SnapshotCache, UsageSnapshot, compute_snapshot
from .processor import derive_daily_usage
from .settings import EngineSettings

logger = logging.getLogger(__name__)

KWH_TOLERANCE = 1e-9


class MutationOp(str, Enum):
    ADD = "ADD"
    EDIT = "EDIT"
    DELETE = "DELETE"


@dataclass
class ReadingMutation:
    op: MutationOp
    reading: Optional[Reading] = None
    reading_id: Optional[str] = None


@dataclass
class MutationResult:
    reading: Optional[Reading]
    batch: Optional[RecalculationBatch]
    snapshot: UsageSnapshot


@dataclass
class RollbackResult:
    batch: RecalculationBatch
    restored: Optional[Reading]
    affected_events: List[AffectedEvent]
    snapshot: UsageSnapshot


@dataclass
class _Plan:
    readings: List[Reading]
    before: Optional[Reading]
    after: Optional[Reading]
    is_append: bool


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def diff_daily(before: List[DailyUsage], after: List[DailyUsage]) -> List[AffectedEvent]:
    """Days whose usage, end-of-day meter value or top-up flag differ."""
    old_by_date = {d.date: d for d in before}
    new_by_date = {d.date: d for d in after}
    affected = []
    for day in sorted(set(old_by_date) | set(new_by_date)):
        old, new = old_by_date.get(day), new_by_date.get(day)
        if old is not None and new is not None:
            same = (
                abs(old.usage_kwh - new.usage_kwh) <= KWH_TOLERANCE
                and old.meter_value == new.meter_value
                and old.is_top_up == new.is_top_up
            )
            if same:
                continue
        top_up = (new or old).is_top_up
        affected.append(AffectedEvent(
            event_date=day,
            event_type=EventType.TOPUP if top_up else EventType.METER_READING,
            old_kwh=old.usage_kwh if old else 0.0,
            new_kwh=new.usage_kwh if new else 0.0,
            old_meter_value=old.meter_value if old else None,
            new_meter_value=new.meter_value if new else None,
        ))
    return affected


def trigger_type_for(op: MutationOp, before: Optional[Reading],
                     after: Optional[Reading]) -> TriggerType:
    if op == MutationOp.ADD and after is not None and after.is_top_up:
        return TriggerType.BACKDATE_TOPUP
    if op == MutationOp.EDIT and ((before and before.is_top_up) or (after and after.is_top_up)):
        return TriggerType.EDIT_TOPUP
    if op == MutationOp.DELETE and before is not None and before.is_top_up:
        return TriggerType.DELETE_TOPUP
    return TriggerType.MANUAL_CORRECTION


class RecalculationLedger:
    """
    Applies reading mutations through a storage collaborator and keeps the
    rollback-able audit trail.

    The store must provide list_readings, save_reading, delete_reading,
    record_recalculation_batch, get_recalculation_batch,
    list_recalculation_batches, get_pending_rollbacks and
    void_recalculation_batch (see backend/lib/local_store.py).
    """

    def __init__(self, store, settings: EngineSettings = EngineSettings(),
                 clock: Callable[[], datetime] = utc_now,
                 cache: Optional[SnapshotCache] = None):
        self.store = store
        self.settings = settings
        self.clock = clock
        self.cache = cache
        self._locks: Dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    # -------------------------------------------------------------------------
    # Locking
    # -------------------------------------------------------------------------

    def _lock_for(self, user_id: str) -> threading.Lock:
        with self._locks_guard:
            return self._locks.setdefault(user_id, threading.Lock())

    @contextmanager
    def user_lock(self, user_id: str):
        """At most one recalculation in flight per user."""
        lock = self._lock_for(user_id)
        if not lock.acquire(timeout=self.settings.lock_timeout_seconds):
            logger.warning("Recalculation conflict for user %s", user_id)
            raise ConcurrentRecalculationConflict(user_id)
        try:
            yield
        finally:
            lock.release()

    # -------------------------------------------------------------------------
    # Mutations
    # -------------------------------------------------------------------------

    def _plan(self, user_id: str, mutation: ReadingMutation,
              readings: List[Reading]) -> _Plan:
        if mutation.op == MutationOp.ADD:
            next_sequence = max((r.sequence for r in readings), default=-1) + 1
            new = replace(
                mutation.reading,
                id=mutation.reading.id or uuid.uuid4().hex,
                user_id=user_id,
                sequence=next_sequence,
            )
            latest = max((comparable_instant(r.timestamp) for r in readings), default=None)
            return _Plan(
                readings=readings + [new],
                before=None,
                after=new,
                is_append=latest is None or comparable_instant(new.timestamp) >= latest,
            )

        target_id = mutation.reading_id or (mutation.reading.id if mutation.reading else None)
        existing = next((r for r in readings if r.id == target_id), None)
        if existing is None:
            raise ReadingNotFound(user_id, target_id)
        others = [r for r in readings if r.id != target_id]

        if mutation.op == MutationOp.DELETE:
            return _Plan(readings=others, before=existing, after=None, is_append=False)

        new = replace(mutation.reading, id=existing.id, user_id=user_id,
                      sequence=existing.sequence)
        return _Plan(readings=others + [new], before=existing, after=new, is_append=False)

    def _snapshot(self, user_id: str, readings: List[Reading]) -> UsageSnapshot:
        if self.cache is not None:
            return self.cache.get_or_compute(user_id, readings, self.settings)
        return compute_snapshot(user_id, readings, self.settings)

    def preview(self, user_id: str, mutation: ReadingMutation) -> List[AffectedEvent]:
        """Days a mutation would change, without writing anything."""
        readings = self.store.list_readings(user_id)
        plan = self._plan(user_id, mutation, readings)
        return diff_daily(
            derive_daily_usage(readings, self.settings),
            derive_daily_usage(plan.readings, self.settings),
        )

    def apply(self, user_id: str, mutation: ReadingMutation,
              actor_id: Optional[str] = None) -> MutationResult:
        with self.user_lock(user_id):
            readings = self.store.list_readings(user_id)
            plan = self._plan(user_id, mutation, readings)

            if plan.is_append:
                self.store.save_reading(plan.after)
                return MutationResult(plan.after, None, self._snapshot(user_id, plan.readings))

            affected = diff_daily(
                derive_daily_usage(readings, self.settings),
                derive_daily_usage(plan.readings, self.settings),
            )
            now = self.clock()
            batch = RecalculationBatch(
                id=uuid.uuid4().hex,
                user_id=user_id,
                trigger_type=trigger_type_for(mutation.op, plan.before, plan.after),
                affected_events=affected,
                created_at=now,
                can_rollback_until=now + timedelta(hours=self.settings.rollback_window_hours),
                reading_before=plan.before,
                reading_after=plan.after,
                created_by=actor_id or user_id,
            )
            self.store.record_recalculation_batch(batch)
            try:
                if plan.after is not None:
                    self.store.save_reading(plan.after)
                else:
                    self.store.delete_reading(user_id, plan.before.id)
            except Exception as e:
                logger.error("Reading write failed for batch %s, voiding it: %s", batch.id, e)
                self.store.void_recalculation_batch(batch.id, "write failed", actor_id, now)
                raise StorageError(f"Mutation of reading failed: {e}") from e

            logger.info("Recorded %s batch %s for user %s (%d day(s) affected)",
                        batch.trigger_type.value, batch.id, user_id, len(affected))
            return MutationResult(plan.after, batch, self._snapshot(user_id, plan.readings))

    def add_reading(self, user_id: str, reading: Reading,
                    actor_id: Optional[str] = None) -> MutationResult:
        return self.apply(user_id, ReadingMutation(MutationOp.ADD, reading=reading), actor_id)

    def edit_reading(self, user_id: str, reading_id: str, reading: Reading,
                     actor_id: Optional[str] = None) -> MutationResult:
        return self.apply(user_id, ReadingMutation(MutationOp.EDIT, reading=reading,
                                                   reading_id=reading_id), actor_id)

    def delete_reading(self, user_id: str, reading_id: str,
                       actor_id: Optional[str] = None) -> MutationResult:
        return self.apply(user_id, ReadingMutation(MutationOp.DELETE, reading_id=reading_id),
                          actor_id)

    # -------------------------------------------------------------------------
    # Rollback
    # -------------------------------------------------------------------------

    def rollback(self, batch_id: str, reason: str, actor_id: str,
                 now: Optional[datetime] = None) -> RollbackResult:
        """
        Restore the pre-mutation image of the batch's reading, mark the batch
        ROLLED_BACK and return a freshly recomputed snapshot.
        """
        batch = self.store.get_recalculation_batch(batch_id)
        if batch is None or batch.user_id != actor_id:
            raise RollbackNotFound(batch_id)

        with self.user_lock(batch.user_id):
            # Re-read under the lock; a concurrent rollback may have won.
            batch = self.store.get_recalculation_batch(batch_id)
            now = now or self.clock()
            status = batch.status(now) if batch else BatchStatus.ROLLED_BACK
            if status == BatchStatus.ROLLED_BACK:
                raise RollbackNotFound(batch_id)
            if status == BatchStatus.EXPIRED:
                raise RollbackExpired(batch_id, batch.can_rollback_until)

            user_id = batch.user_id
            readings = self.store.list_readings(user_id)
            current = {r.id: r for r in readings}
            mutated_id = (batch.reading_after or batch.reading_before).id
            if batch.reading_after is not None and current.get(mutated_id) != batch.reading_after:
                logger.warning("Reading %s changed again after batch %s; restoring the "
                               "pre-batch image anyway", mutated_id, batch_id)

            restored = [r for r in readings if r.id != mutated_id]
            if batch.reading_before is not None:
                restored.append(batch.reading_before)

            # Voiding first claims the batch; a second worker on another
            # process fails here with RollbackNotFound before touching readings.
            self.store.void_recalculation_batch(batch_id, reason, actor_id, now)
            try:
                self._write_image(user_id, mutated_id, batch.reading_before)
            except Exception as e:
                logger.error("Could not restore reading for batch %s, reopening it: %s", batch_id, e)
                self.store.reopen_recalculation_batch(batch_id)
                raise StorageError(f"Rollback of batch {batch_id} failed: {e}") from e

            affected = diff_daily(
                derive_daily_usage(readings, self.settings),
                derive_daily_usage(restored, self.settings),
            )
            logger.info("Rolled back batch %s for user %s by %s: %s",
                        batch_id, user_id, actor_id, reason)
            batch = replace(batch, rolled_back_at=now, rolled_back_by=actor_id,
                            rollback_reason=reason)
            return RollbackResult(batch, batch.reading_before, affected,
                                  self._snapshot(user_id, restored))

    def _write_image(self, user_id: str, reading_id: str, image: Optional[Reading]) -> None:
        if image is None:
            self.store.delete_reading(user_id, reading_id)
        else:
            self.store.save_reading(image)

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def get_pending_rollbacks(self, user_id: str,
                              now: Optional[datetime] = None) -> List[RecalculationBatch]:
        return self.store.get_pending_rollbacks(user_id, now or self.clock())

    def list_batches(self, user_id: str) -> List[RecalculationBatch]:
        return sorted(self.store.list_recalculation_batches(user_id),
                      key=lambda b: b.created_at, reverse=True)
