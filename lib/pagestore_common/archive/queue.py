"""
Scan queue tracking.

Queued URLs are DynamoDB items keyed by tenant_id / "{batch_id}#{item_id}".
Every status transition is a single conditional write on the current
status, so two workers can never both claim an item and cancel never
removes an item a worker already holds.

    pending -> processing -> completed
                          -> failed -> pending   (while retry_count < max_retries)
"""

import logging
import uuid
from datetime import timedelta
from typing import Any

from boto3.dynamodb.conditions import Attr, Key
from botocore.exceptions import ClientError

from pagestore_common.archive.canonical import with_default_scheme
from pagestore_common.archive.models import (
    EnqueueResult,
    QueueItem,
    QueueItemStatus,
    QueueStatus,
    to_iso,
    utc_now,
)
from pagestore_common.constants import (
    MAX_ERROR_LENGTH,
    MAX_QUEUE_RETRIES,
    PERMANENT_FAILURE_SAMPLE_SIZE,
    QUEUE_WORKER_BATCH_SIZE,
)
from pagestore_common.exceptions import StorageError

logger = logging.getLogger(__name__)

CONDITIONAL_CHECK_FAILED = "ConditionalCheckFailedException"


class QueueTracker:
    """Persists and transitions queued URL captures for each tenant."""

    def __init__(self, table, max_retries: int = MAX_QUEUE_RETRIES):
        """
        Args:
            table: DynamoDB Table resource for queue items
            max_retries: Failures after which an item is permanently failed
        """
        self.table = table
        self.max_retries = max_retries

    # =========================================================================
    # Submission and status
    # =========================================================================

    def enqueue(
        self,
        tenant_id: str,
        urls: list[str],
        *,
        submitted_by: str,
        clear_existing: bool = False,
    ) -> EnqueueResult:
        """
        Add URLs to the tenant's queue as one batch.

        URLs are stored as submitted, with https:// added when no scheme
        is present. Blank entries are skipped.

        Args:
            tenant_id: Owning tenant
            urls: URLs to queue
            submitted_by: Actor enqueuing the URLs
            clear_existing: Delete all of the tenant's queue items first

        Returns:
            EnqueueResult with the new batch id and queued count
        """
        if clear_existing:
            removed = self._delete_items(self._query(tenant_id))
            logger.info(f"Cleared {removed} existing queue items for {tenant_id}")

        batch_id = str(uuid.uuid4())
        now = utc_now()
        queued = 0

        try:
            with self.table.batch_writer() as batch:
                for position, url in enumerate(u.strip() for u in urls):
                    if not url:
                        continue
                    item = QueueItem(
                        tenant_id=tenant_id,
                        item_id=str(uuid.uuid4()),
                        batch_id=batch_id,
                        url=with_default_scheme(url),
                        submitted_by=submitted_by,
                        # Offsets keep submission order within a batch
                        submitted_at=now + timedelta(microseconds=position),
                    )
                    batch.put_item(Item=item.to_dict())
                    queued += 1
        except ClientError as e:
            logger.error(f"Failed to enqueue batch {batch_id}: {e.response['Error']['Code']}")
            raise StorageError(f"Failed to enqueue URLs for {tenant_id}: {e}") from e

        logger.info(f"Queued {queued} URLs for {tenant_id} in batch {batch_id}")
        return EnqueueResult(batch_id=batch_id, queued=queued)

    def status(self, tenant_id: str, batch_id: str | None = None) -> QueueStatus:
        """
        Summarize the tenant's queue, optionally for one batch.

        active_batches is only filled in when no batch_id is given.
        """
        result = QueueStatus()
        active = []

        for item in self._query(tenant_id, batch_id):
            if item.status == QueueItemStatus.PENDING:
                result.pending += 1
            elif item.status == QueueItemStatus.PROCESSING:
                result.processing += 1
            elif item.status == QueueItemStatus.COMPLETED:
                result.completed += 1
            elif item.is_permanently_failed(self.max_retries):
                result.permanently_failed += 1
                if len(result.failed_urls) < PERMANENT_FAILURE_SAMPLE_SIZE:
                    result.failed_urls.append(
                        {
                            "url": item.url,
                            "error": item.error,
                            "retry_count": item.retry_count,
                            "batch_id": item.batch_id,
                        }
                    )
            else:
                result.failed += 1

            if (
                batch_id is None
                and item.status in (QueueItemStatus.PENDING, QueueItemStatus.PROCESSING)
                and item.batch_id not in active
            ):
                active.append(item.batch_id)

        result.active_batches = active
        return result

    def cancel(self, tenant_id: str, batch_id: str | None = None, clear_all: bool = False) -> int:
        """
        Remove queued items.

        By default only pending items are removed, each delete conditional on
        the item still being pending. clear_all removes items in every status.

        Returns:
            Number of items removed
        """
        items = self._query(tenant_id, batch_id)
        if clear_all:
            removed = self._delete_items(items)
        else:
            removed = 0
            for item in items:
                if item.status != QueueItemStatus.PENDING:
                    continue
                try:
                    self.table.delete_item(
                        Key=self._key(item),
                        ConditionExpression="#status = :pending",
                        ExpressionAttributeNames={"#status": "status"},
                        ExpressionAttributeValues={":pending": QueueItemStatus.PENDING.value},
                    )
                    removed += 1
                except ClientError as e:
                    error_code = e.response["Error"]["Code"]
                    if error_code != CONDITIONAL_CHECK_FAILED:
                        logger.error(f"Failed to cancel {item.item_key}: {error_code}")
                        raise StorageError(f"Failed to cancel queue item: {e}") from e
                    logger.debug(f"Queue item {item.item_key} was claimed before cancel")

        logger.info(
            f"Cancelled {removed} queue items for {tenant_id} "
            f"(batch={batch_id or 'all'}, clear_all={clear_all})"
        )
        return removed

    def reset_failed(self, tenant_id: str, batch_id: str | None = None) -> int:
        """
        Return every failed item, permanently failed included, to pending
        with a fresh retry budget.

        Returns:
            Number of items reset
        """
        reset = 0
        for item in self._query(tenant_id, batch_id):
            if item.status != QueueItemStatus.FAILED:
                continue
            updated = self._transition(
                item,
                expected=QueueItemStatus.FAILED,
                update="SET #status = :new, retry_count = :zero REMOVE #error, claimed_at",
                values={":new": QueueItemStatus.PENDING.value, ":zero": 0},
            )
            if updated:
                reset += 1

        logger.info(f"Reset {reset} failed queue items for {tenant_id}")
        return reset

    # =========================================================================
    # Worker transitions
    # =========================================================================

    def next_batch(self, tenant_id: str, limit: int = QUEUE_WORKER_BATCH_SIZE) -> list[QueueItem]:
        """
        Return up to limit items ready for work: pending, or failed with
        retries left. Oldest submissions come first.
        """
        items = self._query(
            tenant_id,
            filter_expression=(
                Attr("status").eq(QueueItemStatus.PENDING.value)
                | (
                    Attr("status").eq(QueueItemStatus.FAILED.value)
                    & Attr("retry_count").lt(self.max_retries)
                )
            ),
        )
        items.sort(key=lambda i: i.submitted_at)
        return items[:limit]

    def claim(self, item: QueueItem) -> QueueItem | None:
        """
        Move an item from pending to processing.

        Returns:
            The claimed item, or None when another worker claimed it first
            (or it was cancelled)
        """
        return self._transition(
            item,
            expected=QueueItemStatus.PENDING,
            update="SET #status = :new, claimed_at = :now",
            values={":new": QueueItemStatus.PROCESSING.value, ":now": to_iso(utc_now())},
        )

    def complete(self, item: QueueItem, snapshot_id: str | None = None) -> QueueItem | None:
        """Move an item from processing to completed."""
        update = "SET #status = :new, processed_at = :now REMOVE #error"
        values = {":new": QueueItemStatus.COMPLETED.value, ":now": to_iso(utc_now())}
        if snapshot_id:
            update = (
                "SET #status = :new, processed_at = :now, snapshot_id = :sid REMOVE #error"
            )
            values[":sid"] = snapshot_id
        return self._transition(
            item, expected=QueueItemStatus.PROCESSING, update=update, values=values
        )

    def fail(self, item: QueueItem, error: str) -> QueueItem | None:
        """Move an item from processing to failed and count the attempt."""
        return self._transition(
            item,
            expected=QueueItemStatus.PROCESSING,
            update="SET #status = :new, #error = :error, processed_at = :now ADD retry_count :one",
            values={
                ":new": QueueItemStatus.FAILED.value,
                ":error": (error or "unknown error")[:MAX_ERROR_LENGTH],
                ":now": to_iso(utc_now()),
                ":one": 1,
            },
        )

    def requeue(self, item: QueueItem) -> QueueItem | None:
        """Move a failed item back to pending while it has retries left."""
        return self._transition(
            item,
            expected=QueueItemStatus.FAILED,
            update="SET #status = :new REMOVE claimed_at",
            values={":new": QueueItemStatus.PENDING.value, ":max": self.max_retries},
            extra_condition="retry_count < :max",
        )

    # =========================================================================
    # Helpers
    # =========================================================================

    @staticmethod
    def _key(item: QueueItem) -> dict[str, str]:
        return {"tenant_id": item.tenant_id, "item_key": item.item_key}

    def _transition(
        self,
        item: QueueItem,
        *,
        expected: QueueItemStatus,
        update: str,
        values: dict[str, Any],
        extra_condition: str | None = None,
    ) -> QueueItem | None:
        """Apply an update only if the item is still in the expected status."""
        condition = "#status = :expected"
        if extra_condition:
            condition = f"{condition} AND {extra_condition}"

        names = {"#status": "status"}
        if "#error" in update:
            names["#error"] = "error"

        try:
            response = self.table.update_item(
                Key=self._key(item),
                UpdateExpression=update,
                ConditionExpression=condition,
                ExpressionAttributeNames=names,
                ExpressionAttributeValues={":expected": expected.value, **values},
                ReturnValues="ALL_NEW",
            )
        except ClientError as e:
            error_code = e.response["Error"]["Code"]
            if error_code == CONDITIONAL_CHECK_FAILED:
                logger.info(f"Queue item {item.item_key} is no longer {expected.value}")
                return None
            logger.error(f"Failed to update queue item {item.item_key}: {error_code}")
            raise StorageError(f"Failed to update queue item {item.item_key}: {e}") from e

        return QueueItem.from_dict(response["Attributes"])

    def _query(
        self, tenant_id: str, batch_id: str | None = None, filter_expression=None
    ) -> list[QueueItem]:
        key_condition = Key("tenant_id").eq(tenant_id)
        if batch_id:
            key_condition = key_condition & Key("item_key").begins_with(f"{batch_id}#")

        query_kwargs: dict[str, Any] = {"KeyConditionExpression": key_condition}
        if filter_expression is not None:
            query_kwargs["FilterExpression"] = filter_expression

        items = []
        try:
            while True:
                response = self.table.query(**query_kwargs)
                items.extend(response.get("Items", []))
                if "LastEvaluatedKey" not in response:
                    break
                query_kwargs["ExclusiveStartKey"] = response["LastEvaluatedKey"]
        except ClientError as e:
            logger.error(f"Failed to query queue for {tenant_id}: {e.response['Error']['Code']}")
            raise StorageError(f"Failed to read queue for {tenant_id}: {e}") from e

        return [QueueItem.from_dict(item) for item in items]

    def _delete_items(self, items: list[QueueItem]) -> int:
        try:
            with self.table.batch_writer() as batch:
                for item in items:
                    batch.delete_item(Key=self._key(item))
        except ClientError as e:
            logger.error(f"Failed to delete queue items: {e.response['Error']['Code']}")
            raise StorageError(f"Failed to delete queue items: {e}") from e
        return len(items)
