# backend/lib/token_core/errors.py
"""Exceptions raised by the token tracking core."""


class TokenCoreError(Exception):
    """Base class for every error the core raises on purpose."""


class MalformedRecord(TokenCoreError):
    """A raw reading record could not be used as-is."""

    def __init__(self, record_id, field, reason):
        self.record_id = record_id
        self.field = field
        self.reason = reason
        super().__init__(f"Record {record_id}: field '{field}' {reason}")


class InvalidReading(TokenCoreError):
    """Raised when a new reading fails validation against the previous one."""

    def __init__(self, status, message):
        self.status = status
        super().__init__(message)


class TariffNotFound(TokenCoreError):
    """No active tariff tier covers the nominal amount."""

    def __init__(self, nominal):
        self.nominal = nominal
        super().__init__(f"No active tariff tier for nominal {nominal}")


class OverlappingTierRange(TokenCoreError):
    """A tier write would make two active tier ranges intersect."""

    def __init__(self, tier_id, conflicting_id):
        self.tier_id = tier_id
        self.conflicting_id = conflicting_id
        super().__init__(
            f"Tariff tier {tier_id} overlaps active tier {conflicting_id}"
        )


class TariffTierNotFound(TokenCoreError):
    """Update or delete of a tier id the store does not know."""

    def __init__(self, tier_id):
        self.tier_id = tier_id
        super().__init__(f"Tariff tier {tier_id} not found")


class ReadingNotFound(TokenCoreError):
    def __init__(self, user_id, reading_id):
        self.user_id = user_id
        self.reading_id = reading_id
        super().__init__(f"Reading {reading_id} not found for user {user_id}")


class RollbackExpired(TokenCoreError):
    """The rollback window of a recalculation batch has elapsed."""

    def __init__(self, batch_id, can_rollback_until):
        self.batch_id = batch_id
        self.can_rollback_until = can_rollback_until
        super().__init__(
            f"Rollback window for batch {batch_id} expired at {can_rollback_until.isoformat()}"
        )


class RollbackNotFound(TokenCoreError):
    """The batch does not exist, is someone else's, or was already rolled back."""

    def __init__(self, batch_id):
        self.batch_id = batch_id
        super().__init__(f"No pending recalculation batch {batch_id}")


class ConcurrentRecalculationConflict(TokenCoreError):
    """Another recalculation for the same user is in flight; retry later."""

    def __init__(self, user_id, retry_after=1):
        self.user_id = user_id
        self.retry_after = retry_after
        super().__init__(f"Recalculation already in progress for user {user_id}")


class StorageError(TokenCoreError):
    """A storage collaborator failed to persist a write."""


class InvalidTariffTier(TokenCoreError):
    """Tier fields that can never describe a usable range or rate."""

    def __init__(self, tier_id, reason):
        self.tier_id = tier_id
        self.reason = reason
        super().__init__(f"Tariff tier {tier_id}: {reason}")
