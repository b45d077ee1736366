"""DynamoDB table used as the optional secondary presence store."""
import logging
from typing import List, Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from processor.models import Event, WriteResult
from storage.upsert_writer import CONFLICT_MODES, dedupe_events

logger = logging.getLogger(__name__)


class DynamoDBPresenceStore:
    """
    Secondary store keyed by ``badgeId`` (HASH) and ``timestamp`` (RANGE).

    The composite key is the uniqueness constraint; ``endpoint_url`` allows
    pointing at a DynamoDB Local instance.
    """

    BATCH_SIZE = 25  # DynamoDB batch operation limit

    def __init__(
        self,
        table_name: str,
        conflict_mode: str = 'ignore',
        endpoint_url: Optional[str] = None,
        region_name: Optional[str] = None
    ):
        """
        Initialize DynamoDB resource and table reference.

        Args:
            table_name: Name of the DynamoDB table
            conflict_mode: 'ignore' keeps existing items, 'merge' overwrites them
            endpoint_url: Custom endpoint (DynamoDB Local)
            region_name: AWS region

        Raises:
            ValueError: If conflict_mode is unknown
        """
        if conflict_mode not in CONFLICT_MODES:
            raise ValueError(f"Unknown conflict mode '{conflict_mode}'")
        self.table_name = table_name
        self.conflict_mode = conflict_mode
        self.dynamodb = boto3.resource(
            'dynamodb',
            endpoint_url=endpoint_url,
            region_name=region_name
        )
        self.table = self.dynamodb.Table(table_name)
        logger.info(f"Initialized DynamoDBPresenceStore for table: {table_name}")

    def table_exists(self) -> bool:
        """Check that the destination table exists."""
        try:
            self.dynamodb.meta.client.describe_table(TableName=self.table_name)
            return True
        except ClientError as e:
            if e.response['Error']['Code'] == 'ResourceNotFoundException':
                return False
            raise

    def write(self, events: List[Event]) -> WriteResult:
        """
        Insert events, skipping the write if the table is missing.

        Connection, credential and service errors are reported in the result
        rather than raised.

        Args:
            events: Events to store

        Returns:
            WriteResult with inserted and error counts
        """
        if not events:
            return WriteResult()

        try:
            exists = self.table_exists()
        except (BotoCoreError, ClientError) as e:
            logger.error(f"Error describing table {self.table_name}: {e}")
            return WriteResult(errors=len(events), note=str(e))

        if not exists:
            note = f"table {self.table_name} does not exist"
            logger.warning(f"Local store skipped: {note}")
            return WriteResult(skipped=True, note=note)

        events = dedupe_events(events)
        if self.conflict_mode == 'merge':
            result = self._batch_put(events)
        else:
            result = self._put_if_absent(events)

        logger.info(
            f"Local store write complete: {result.inserted} inserted, "
            f"{result.errors} errors"
        )
        return result

    def _put_if_absent(self, events: List[Event]) -> WriteResult:
        result = WriteResult()
        for event in events:
            try:
                self.table.put_item(
                    Item=self._event_to_item(event),
                    ConditionExpression='attribute_not_exists(badgeId)'
                )
                result.inserted += 1
            except ClientError as e:
                if e.response['Error']['Code'] == 'ConditionalCheckFailedException':
                    continue
                logger.error(f"Error inserting {event.key}: {e}")
                result.errors += 1
                result.note = str(e)
            except BotoCoreError as e:
                logger.error(f"Error inserting {event.key}: {e}")
                result.errors += 1
                result.note = str(e)
        return result

    def _batch_put(self, events: List[Event]) -> WriteResult:
        result = WriteResult()

        for i in range(0, len(events), self.BATCH_SIZE):
            batch = events[i:i + self.BATCH_SIZE]

            try:
                with self.table.batch_writer() as writer:
                    for event in batch:
                        writer.put_item(Item=self._event_to_item(event))
                result.inserted += len(batch)
            except (BotoCoreError, ClientError) as e:
                logger.error(
                    f"Error writing batch {i // self.BATCH_SIZE + 1}: {e}"
                )
                result.errors += len(batch)
                result.note = str(e)
                continue

        return result

    def _event_to_item(self, event: Event) -> dict:
        item = event.to_record()
        if event.name:
            item['name'] = event.name
        return item
