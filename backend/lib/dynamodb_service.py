"""
=============================================================================
DYNAMODB SERVICE - Amazon DynamoDB storage for the token tracker
=============================================================================

Three tables, all on-demand (PAY_PER_REQUEST):

Table: TokenReadings
- user_id (String)    - Partition Key - groups one household's meter readings
- reading_id (String) - Sort Key      - the reading's id
- timestamp, kwh_value, is_top_up, token_amount, effective_tariff,
  token_kwh, notes, sequence

Table: TariffTiers
- id (String) - Partition Key
- min_nominal, max_nominal, effective_tariff, label, active, metadata

Table: RecalculationBatches
- id (String) - Partition Key
- user_id, trigger_type, affected_events (list of maps), created_at,
  can_rollback_until, reading_before / reading_after (maps),
  rolled_back_at, rolled_back_by, rollback_reason

Example reading item:
{
    "user_id": "user-1",
    "reading_id": "9f0c...",
    "timestamp": "2025-11-01T07:30:00+07:00",
    "kwh_value": 35.2,
    "is_top_up": false,
    "sequence": 4
}

DynamoDB stores numbers as Decimal, never float, so every item passes
through _to_dynamo / _from_dynamo on its way in and out.

Same methods as LocalJsonStore; failed calls raise StorageError so the
recalculation ledger can keep a mutation all-or-nothing.
=============================================================================
"""
import logging
import os
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

import boto3
from boto3.dynamodb.conditions import Attr, Key
from botocore.exceptions import ClientError

from backend.lib.token_core.errors import RollbackNotFound, StorageError
from backend.lib.token_core.models import BatchStatus, Reading, RecalculationBatch, TariffTier
from backend.lib.token_core.processor import sort_readings

logger = logging.getLogger(__name__)


def _to_dynamo(value: Any) -> Any:
    """Recursively convert floats to Decimal (via str, to keep the digits)."""
    if isinstance(value, float):
        return Decimal(str(value))
    if isinstance(value, dict):
        return {k: _to_dynamo(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_to_dynamo(v) for v in value]
    return value


def _from_dynamo(value: Any) -> Any:
    if isinstance(value, Decimal):
        return int(value) if value == value.to_integral_value() else float(value)
    if isinstance(value, dict):
        return {k: _from_dynamo(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_from_dynamo(v) for v in value]
    return value


class DynamoDBService:
    """
    Storage collaborator backed by DynamoDB.

    Usage:
        db = DynamoDBService()
        db.create_tables_if_not_exist()
        db.save_reading(reading)
        db.list_readings("user-1")
    """

    def __init__(self, readings_table: str = None, tiers_table: str = None,
                 batches_table: str = None, resource=None, client=None):
        """
        Args:
            readings_table / tiers_table / batches_table: table names, else
                DYNAMODB_READINGS_TABLE / DYNAMODB_TIERS_TABLE /
                DYNAMODB_BATCHES_TABLE from the environment.
            resource / client: pre-built boto3 objects (tests pass stubs).

        Resource is the high-level interface (Table objects); the client is
        needed for describe_table.
        """
        self.readings_table_name = readings_table or os.getenv('DYNAMODB_READINGS_TABLE', 'TokenReadings')
        self.tiers_table_name = tiers_table or os.getenv('DYNAMODB_TIERS_TABLE', 'TariffTiers')
        self.batches_table_name = batches_table or os.getenv('DYNAMODB_BATCHES_TABLE', 'RecalculationBatches')
        self.region = os.getenv('AWS_REGION', 'us-east-1')

        # Session token for temporary (lab / STS) credentials
        session_token = os.getenv('AWS_SESSION_TOKEN')
        credentials = dict(
            region_name=self.region,
            aws_access_key_id=os.getenv('AWS_ACCESS_KEY_ID'),
            aws_secret_access_key=os.getenv('AWS_SECRET_ACCESS_KEY'),
            aws_session_token=session_token if session_token else None,
        )
        self.dynamodb = resource or boto3.resource('dynamodb', **credentials)
        self.client = client or boto3.client('dynamodb', **credentials)

        self.readings_table = self.dynamodb.Table(self.readings_table_name)
        self.tiers_table = self.dynamodb.Table(self.tiers_table_name)
        self.batches_table = self.dynamodb.Table(self.batches_table_name)

    @property
    def table_names(self) -> List[str]:
        return [self.readings_table_name, self.tiers_table_name, self.batches_table_name]

    # -------------------------------------------------------------------------
    # Table setup
    # -------------------------------------------------------------------------

    def _create_table_if_not_exists(self, name: str, key_schema: List[Dict]) -> bool:
        try:
            self.client.describe_table(TableName=name)
            logger.info("DynamoDB table '%s' exists", name)
            return True
        except ClientError as e:
            if e.response['Error']['Code'] != 'ResourceNotFoundException':
                logger.error("Error checking table %s: %s", name, e)
                return False

        try:
            table = self.dynamodb.create_table(
                TableName=name,
                KeySchema=[{'AttributeName': attr, 'KeyType': kind} for attr, kind in key_schema],
                AttributeDefinitions=[{'AttributeName': attr, 'AttributeType': 'S'} for attr, _ in key_schema],
                BillingMode='PAY_PER_REQUEST',
            )
            table.wait_until_exists()
            logger.info("Created DynamoDB table '%s'", name)
            return True
        except ClientError as e:
            logger.error("Failed to create table %s: %s", name, e)
            return False

    def create_tables_if_not_exist(self) -> bool:
        results = [
            self._create_table_if_not_exists(self.readings_table_name,
                                             [('user_id', 'HASH'), ('reading_id', 'RANGE')]),
            self._create_table_if_not_exists(self.tiers_table_name, [('id', 'HASH')]),
            self._create_table_if_not_exists(self.batches_table_name, [('id', 'HASH')]),
        ]
        return all(results)

    # -------------------------------------------------------------------------
    # Paginated reads
    # -------------------------------------------------------------------------

    def _query_all(self, table, **kwargs) -> List[Dict]:
        # DynamoDB returns at most 1MB per call; follow LastEvaluatedKey.
        items = []
        response = table.query(**kwargs)
        items.extend(response.get('Items', []))
        while 'LastEvaluatedKey' in response:
            response = table.query(ExclusiveStartKey=response['LastEvaluatedKey'], **kwargs)
            items.extend(response.get('Items', []))
        return [_from_dynamo(i) for i in items]

    def _scan_all(self, table, **kwargs) -> List[Dict]:
        items = []
        response = table.scan(**kwargs)
        items.extend(response.get('Items', []))
        while 'LastEvaluatedKey' in response:
            response = table.scan(ExclusiveStartKey=response['LastEvaluatedKey'], **kwargs)
            items.extend(response.get('Items', []))
        return [_from_dynamo(i) for i in items]

    # -------------------------------------------------------------------------
    # Readings
    # -------------------------------------------------------------------------

    @staticmethod
    def _reading_item(reading: Reading) -> Dict:
        item = reading.to_dict()
        item['reading_id'] = item.pop('id')
        return _to_dynamo(item)

    @staticmethod
    def _reading_from_item(item: Dict) -> Reading:
        data = dict(item)
        data['id'] = data.pop('reading_id')
        return Reading.from_dict(data)

    def list_readings(self, user_id: str, limit: Optional[int] = None) -> List[Reading]:
        try:
            items = self._query_all(self.readings_table,
                                    KeyConditionExpression=Key('user_id').eq(user_id))
        except ClientError as e:
            logger.error("Failed to get readings for %s: %s", user_id, e)
            raise StorageError(f"Could not read readings for {user_id}: {e}") from e
        readings = sort_readings(self._reading_from_item(i) for i in items)
        return readings[-limit:] if limit and limit > 0 else readings

    def get_reading(self, user_id: str, reading_id: str) -> Optional[Reading]:
        try:
            response = self.readings_table.get_item(Key={'user_id': user_id, 'reading_id': reading_id})
        except ClientError as e:
            raise StorageError(f"Could not read reading {reading_id}: {e}") from e
        item = response.get('Item')
        return self._reading_from_item(_from_dynamo(item)) if item else None

    def save_reading(self, reading: Reading) -> Reading:
        try:
            self.readings_table.put_item(Item=self._reading_item(reading))
        except ClientError as e:
            logger.error("Failed to put reading %s: %s", reading.id, e)
            raise StorageError(f"Could not save reading {reading.id}: {e}") from e
        return reading

    def save_readings(self, readings: List[Reading]) -> int:
        """Batch write; batch_writer splits into 25-item requests and retries."""
        try:
            with self.readings_table.batch_writer() as writer:
                for r in readings:
                    writer.put_item(Item=self._reading_item(r))
        except ClientError as e:
            logger.error("Batch write error: %s", e)
            raise StorageError(f"Batch write of readings failed: {e}") from e
        return len(readings)

    def delete_reading(self, user_id: str, reading_id: str) -> None:
        try:
            self.readings_table.delete_item(Key={'user_id': user_id, 'reading_id': reading_id})
        except ClientError as e:
            logger.error("Failed to delete reading %s: %s", reading_id, e)
            raise StorageError(f"Could not delete reading {reading_id}: {e}") from e

    def get_all_users(self) -> List[str]:
        """
        Unique user ids in the readings table.

        Scan reads the whole table; fine for the scheduled alert check on a
        small deployment.
        """
        try:
            items = self._scan_all(self.readings_table, ProjectionExpression='user_id')
        except ClientError as e:
            raise StorageError(f"Could not scan users: {e}") from e
        return sorted({i['user_id'] for i in items})

    # -------------------------------------------------------------------------
    # Tariff tiers
    # -------------------------------------------------------------------------

    def list_all_tariff_tiers(self) -> List[TariffTier]:
        try:
            items = self._scan_all(self.tiers_table)
        except ClientError as e:
            raise StorageError(f"Could not read tariff tiers: {e}") from e
        return sorted((TariffTier.from_dict(i) for i in items), key=lambda t: (t.min_nominal, t.id))

    def list_active_tariff_tiers(self) -> List[TariffTier]:
        return [t for t in self.list_all_tariff_tiers() if t.active]

    def get_tariff_tier(self, tier_id: str) -> Optional[TariffTier]:
        try:
            item = self.tiers_table.get_item(Key={'id': tier_id}).get('Item')
        except ClientError as e:
            raise StorageError(f"Could not read tariff tier {tier_id}: {e}") from e
        return TariffTier.from_dict(_from_dynamo(item)) if item else None

    def put_tariff_tier(self, tier: TariffTier) -> TariffTier:
        try:
            self.tiers_table.put_item(Item=_to_dynamo(tier.to_dict()))
        except ClientError as e:
            logger.error("Failed to put tariff tier %s: %s", tier.id, e)
            raise StorageError(f"Could not save tariff tier {tier.id}: {e}") from e
        return tier

    def delete_tariff_tier(self, tier_id: str) -> None:
        try:
            self.tiers_table.delete_item(Key={'id': tier_id})
        except ClientError as e:
            raise StorageError(f"Could not delete tariff tier {tier_id}: {e}") from e

    # -------------------------------------------------------------------------
    # Recalculation batches
    # -------------------------------------------------------------------------

    def record_recalculation_batch(self, batch: RecalculationBatch) -> RecalculationBatch:
        try:
            # Unset attributes stay absent so the void condition can test for them
            item = {k: v for k, v in batch.to_dict().items() if v is not None}
            self.batches_table.put_item(Item=_to_dynamo(item))
        except ClientError as e:
            logger.error("Failed to record batch %s: %s", batch.id, e)
            raise StorageError(f"Could not record batch {batch.id}: {e}") from e
        return batch

    def get_recalculation_batch(self, batch_id: str) -> Optional[RecalculationBatch]:
        try:
            item = self.batches_table.get_item(Key={'id': batch_id}).get('Item')
        except ClientError as e:
            raise StorageError(f"Could not read batch {batch_id}: {e}") from e
        return RecalculationBatch.from_dict(_from_dynamo(item)) if item else None

    def list_recalculation_batches(self, user_id: str) -> List[RecalculationBatch]:
        try:
            items = self._scan_all(self.batches_table, FilterExpression=Attr('user_id').eq(user_id))
        except ClientError as e:
            raise StorageError(f"Could not list batches for {user_id}: {e}") from e
        return [RecalculationBatch.from_dict(i) for i in items]

    def get_pending_rollbacks(self, user_id: str, now: datetime) -> List[RecalculationBatch]:
        pending = [
            b for b in self.list_recalculation_batches(user_id)
            if b.status(now) == BatchStatus.PENDING_ROLLBACK
        ]
        return sorted(pending, key=lambda b: b.created_at, reverse=True)

    def void_recalculation_batch(self, batch_id: str, reason: str,
                                 actor_id: Optional[str], at: datetime) -> None:
        """
        Mark a batch rolled back. The conditional update is the claim: when
        two workers roll back the same batch only the first one succeeds,
        the other gets RollbackNotFound.
        """
        try:
            self.batches_table.update_item(
                Key={'id': batch_id},
                UpdateExpression='SET rolled_back_at = :at, rolled_back_by = :by, rollback_reason = :reason',
                ConditionExpression=Attr('id').exists() & Attr('rolled_back_at').not_exists(),
                ExpressionAttributeValues={':at': at.isoformat(), ':by': actor_id, ':reason': reason},
            )
        except ClientError as e:
            if e.response['Error']['Code'] == 'ConditionalCheckFailedException':
                raise RollbackNotFound(batch_id) from e
            logger.error("Failed to void batch %s: %s", batch_id, e)
            raise StorageError(f"Could not void batch {batch_id}: {e}") from e

    def reopen_recalculation_batch(self, batch_id: str) -> None:
        """Undo a void whose reading restore failed."""
        try:
            self.batches_table.update_item(
                Key={'id': batch_id},
                UpdateExpression='REMOVE rolled_back_at, rolled_back_by, rollback_reason',
            )
        except ClientError as e:
            logger.error("Failed to reopen batch %s: %s", batch_id, e)
            raise StorageError(f"Could not reopen batch {batch_id}: {e}") from e
