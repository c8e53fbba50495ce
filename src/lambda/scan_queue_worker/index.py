"""
Scan Queue Worker Lambda

Drains a tenant's scan queue a few items at a time. Invoked on a schedule
or directly after an enqueue.

Input event:
{
    "tenant_id": "acme",
    "limit": 10      # optional, defaults to QUEUE_WORKER_BATCH_SIZE
}

Output:
{
    "tenant_id": "acme",
    "processed": 10,
    "completed": 8,
    "failed": 1,
    "skipped": 1,
    "unrecorded": 0,   # captured, but the completion could not be written
    "remaining": 42
}
"""

import logging
import os
import time

import boto3

from pagestore_common.archive.models import QueueItemStatus
from pagestore_common.archive.queue import QueueTracker
from pagestore_common.archive.snapshots import build_snapshot_service
from pagestore_common.constants import QUEUE_REQUEST_DELAY_MS, QUEUE_WORKER_BATCH_SIZE
from pagestore_common.exceptions import StorageError
from pagestore_common.logging_utils import log_summary

logger = logging.getLogger()
logger.setLevel(os.environ.get("LOG_LEVEL", "INFO"))

WORKER_ACTOR_ID = "scan-queue-worker"
WORKER_TOOL_ID = "scan-queue"


def lambda_handler(event, context):
    """
    Main Lambda handler - processes one slice of the queue.
    """
    queue_table = os.environ.get("SCAN_QUEUE_TABLE")
    snapshots_table = os.environ.get("PAGE_SNAPSHOTS_TABLE")
    page_index_table = os.environ.get("PAGE_INDEX_TABLE")
    bucket = os.environ.get("PAGE_BUCKET")

    if not queue_table:
        raise ValueError("SCAN_QUEUE_TABLE environment variable required")
    if not snapshots_table:
        raise ValueError("PAGE_SNAPSHOTS_TABLE environment variable required")
    if not page_index_table:
        raise ValueError("PAGE_INDEX_TABLE environment variable required")
    if not bucket:
        raise ValueError("PAGE_BUCKET environment variable required")

    tenant_id = event.get("tenant_id")
    if not tenant_id:
        raise ValueError("tenant_id is required")

    limit = int(
        event.get("limit") or os.environ.get("QUEUE_WORKER_BATCH_SIZE", QUEUE_WORKER_BATCH_SIZE)
    )
    delay_ms = int(os.environ.get("REQUEST_DELAY_MS", QUEUE_REQUEST_DELAY_MS))

    dynamodb = boto3.resource("dynamodb")
    tracker = QueueTracker(dynamodb.Table(queue_table))
    service = build_snapshot_service(tenant_id, snapshots_table, page_index_table, bucket)

    started = time.monotonic()
    counts = {"processed": 0, "completed": 0, "failed": 0, "skipped": 0, "unrecorded": 0}

    for index, item in enumerate(tracker.next_batch(tenant_id, limit=limit)):
        if index > 0 and delay_ms > 0:
            time.sleep(delay_ms / 1000.0)

        if item.status == QueueItemStatus.FAILED:
            item = tracker.requeue(item)
            if item is None:
                counts["skipped"] += 1
                continue

        claimed = tracker.claim(item)
        if claimed is None:
            # Another worker got it, or it was cancelled
            counts["skipped"] += 1
            continue

        counts["processed"] += 1
        try:
            result = service.get_or_capture(
                tenant_id,
                claimed.url,
                actor_id=claimed.submitted_by or WORKER_ACTOR_ID,
                tool_id=WORKER_TOOL_ID,
            )
        except Exception as e:
            logger.warning(f"Capture failed for {claimed.url}: {e}")
            counts["failed"] += 1
            _record_failure(tracker, claimed, str(e))
            continue

        try:
            tracker.complete(claimed, snapshot_id=result.snapshot.snapshot_id)
        except StorageError as e:
            logger.error(f"Could not mark {claimed.item_key} completed: {e}")
            counts["unrecorded"] += 1
            continue
        counts["completed"] += 1

    status = tracker.status(tenant_id)
    summary = {"tenant_id": tenant_id, **counts, "remaining": status.remaining_to_process}

    logger.info(
        log_summary(
            "scan_queue_worker",
            success=counts["failed"] == 0 and counts["unrecorded"] == 0,
            duration_ms=(time.monotonic() - started) * 1000,
            item_count=counts["processed"],
            **summary,
        )
    )
    return summary


def _record_failure(tracker: QueueTracker, item, error: str) -> None:
    try:
        updated = tracker.fail(item, error)
    except StorageError as e:
        logger.error(f"Could not record failure of {item.item_key}: {e}")
        return

    if updated is not None and updated.is_permanently_failed(tracker.max_retries):
        logger.warning(f"Giving up on {item.url} after {updated.retry_count} attempts")
