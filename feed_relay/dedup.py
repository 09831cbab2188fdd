"""Deduplication store for the RSS Arabic relay, backed by DynamoDB."""

import asyncio
import hashlib
import json
import time
from datetime import UTC, datetime

import boto3
from boto3.dynamodb.conditions import Attr
from botocore.exceptions import BotoCoreError, ClientError

from .config import RelayLimits
from .errors import StorageError
from .logging_config import create_execution_logger
from .models import DedupCheck, FeedItem, ProcessedRecord

KEY_PREFIX = "processed_item_"
LAST_CHECK_KEY = "meta_last_check"

_STORE_ERRORS = (ClientError, BotoCoreError)


def storage_key(item_id: str) -> str:
    """Key under which an item's processed marker is stored."""
    return f"{KEY_PREFIX}{item_id}"


class Deduplicator:
    """Check-and-mark store of processed item ids with a fixed TTL.

    The table's partition key is the string attribute ``item_key``; DynamoDB TTL
    must be enabled on the numeric ``ttl`` attribute.
    """

    def __init__(
        self,
        table_name: str,
        aws_region: str = "us-east-1",
        limits: RelayLimits | None = None,
        execution_id: str | None = None,
    ):
        """Initialize the Deduplicator with DynamoDB configuration.

        Args:
            table_name: Name of the DynamoDB table for deduplication
            aws_region: AWS region for DynamoDB client
            limits: Shared limits (item TTL)
            execution_id: Execution ID for logging context
        """
        self.table_name = table_name
        self.aws_region = aws_region
        self.limits = limits or RelayLimits()
        self.logger = create_execution_logger("deduplicator", execution_id)
        self.dynamodb = boto3.resource("dynamodb", region_name=aws_region)
        self.table = self.dynamodb.Table(table_name)

        self.logger.info(
            "Deduplicator initialized", table_name=table_name, aws_region=aws_region
        )

    def generate_item_id(self, item: FeedItem) -> str:
        """Identity of an item: guid, else link, else a content fingerprint.

        Two link-less, guid-less items sharing the first 100 characters of
        title + description collide; that is accepted.
        """
        if item.guid:
            return item.guid
        if item.link:
            return item.link

        content = ((item.title or "") + (item.description or ""))[:100]
        item_id = hashlib.sha256(content.encode("utf-8")).hexdigest()
        self.logger.debug(
            "Generated fingerprint item ID",
            item_title=item.title,
            item_id=item_id[:16] + "...",
        )
        return item_id

    async def is_new(self, item_id: str) -> DedupCheck:
        """Check whether an item has not been processed yet.

        Fails open: any storage error reports the item as new.
        """
        key = storage_key(item_id)
        try:
            response = await asyncio.to_thread(
                self.table.get_item, Key={"item_key": key}
            )
        except _STORE_ERRORS as e:
            self.logger.error(
                f"Error checking item status {item_id}: {e}",
                item_id=item_id,
                error=str(e),
            )
            return DedupCheck(is_new=True)

        record = response.get("Item")
        if not record or self._expired(record):
            return DedupCheck(is_new=True)

        return DedupCheck(is_new=False, prior_output=self._prior_output(record))

    async def mark_processed(self, item_id: str, output: str) -> None:
        """Persist the processed marker; failures are logged and swallowed."""
        now = datetime.now(UTC)
        record = ProcessedRecord(
            item_id=item_id,
            processed_at=now.isoformat(),
            generated_content=output,
        )
        ttl_timestamp = int(time.time()) + self.limits.item_ttl
        try:
            await asyncio.to_thread(
                self.table.put_item,
                Item={
                    "item_key": storage_key(item_id),
                    "item_id": item_id,
                    "processed_at": record.processed_at,
                    "value": json.dumps(record.to_dict(), ensure_ascii=False),
                    "ttl": ttl_timestamp,
                },
            )
            self.logger.info(
                "Marked item as processed",
                item_id=item_id,
                ttl_timestamp=ttl_timestamp,
            )
        except _STORE_ERRORS as e:
            self.logger.error(
                f"Error marking item as processed {item_id}: {e}",
                item_id=item_id,
                error=str(e),
            )

    async def record_last_check(self) -> None:
        """Store the time of the latest cycle; failures are logged only."""
        try:
            await asyncio.to_thread(
                self.table.put_item,
                Item={
                    "item_key": LAST_CHECK_KEY,
                    "value": datetime.now(UTC).isoformat(),
                },
            )
        except _STORE_ERRORS as e:
            self.logger.warning(f"Could not record last check: {e}", error=str(e))

    async def get_last_check(self) -> str | None:
        try:
            response = await asyncio.to_thread(
                self.table.get_item, Key={"item_key": LAST_CHECK_KEY}
            )
        except _STORE_ERRORS as e:
            raise StorageError(f"Could not read last check: {e}") from e
        record = response.get("Item")
        return record.get("value") if record else None

    async def count_processed(self) -> int:
        """Count live processed-item records."""
        return await asyncio.to_thread(self._count_processed)

    def _count_processed(self) -> int:
        now = int(time.time())
        scan_kwargs = {
            "Select": "COUNT",
            "FilterExpression": Attr("item_key").begins_with(KEY_PREFIX)
            & Attr("ttl").gt(now),
        }
        total = 0
        try:
            while True:
                response = self.table.scan(**scan_kwargs)
                total += response.get("Count", 0)
                last_key = response.get("LastEvaluatedKey")
                if not last_key:
                    return total
                scan_kwargs["ExclusiveStartKey"] = last_key
        except _STORE_ERRORS as e:
            raise StorageError(f"Could not count processed items: {e}") from e

    @staticmethod
    def _expired(record: dict) -> bool:
        # DynamoDB deletes expired items lazily, so check ttl on read
        ttl = record.get("ttl")
        return ttl is not None and int(ttl) <= int(time.time())

    @staticmethod
    def _prior_output(record: dict) -> str | None:
        try:
            value = json.loads(record.get("value", "{}"))
        except (TypeError, ValueError):
            return None
        return value.get("generatedContent") if isinstance(value, dict) else None
