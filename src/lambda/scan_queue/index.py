"""
Scan Queue Lambda

Accepts large URL sets for asynchronous capture and reports queue progress.
The scan_queue_worker Lambda drains the queue.

Routes (API Gateway proxy):
    POST   /queue          enqueue {tenant_id, urls, clear_existing}
    GET    /queue/status   ?tenant_id=...&batch_id=...
    DELETE /queue          {tenant_id, batch_id?, clear_all?}
    POST   /queue/retry    {tenant_id, batch_id?}  reset failed items

Status output:
{
    "total": 120, "pending": 80, "processing": 10, "completed": 25,
    "failed": 3, "permanently_failed": 2, "remaining_to_process": 83,
    "failed_urls": [{"url", "error", "retry_count", "batch_id"}],
    "active_batches": ["..."], "has_queued_urls": true
}
"""

import logging
import os

import boto3

from pagestore_common.api import error_response, parse_body, parse_bool, response
from pagestore_common.archive.queue import QueueTracker
from pagestore_common.auth import get_request_identity
from pagestore_common.logging_utils import safe_log_event

logger = logging.getLogger()
logger.setLevel(os.environ.get("LOG_LEVEL", "INFO"))


def lambda_handler(event, context):
    """
    Main Lambda handler - routes queue requests.
    """
    queue_table = os.environ.get("SCAN_QUEUE_TABLE")
    if not queue_table:
        raise ValueError("SCAN_QUEUE_TABLE environment variable required")

    logger.info(f"Received event: {safe_log_event(event)}")

    try:
        http_method = event.get("httpMethod", "GET")
        resource = event.get("resource", "")
        query_params = event.get("queryStringParameters") or {}
        body = parse_body(event)

        tenant_id = body.get("tenant_id") or query_params.get("tenant_id")
        identity = get_request_identity(event, tenant_id)

        dynamodb = boto3.resource("dynamodb")
        tracker = QueueTracker(dynamodb.Table(queue_table))

        if http_method == "POST" and resource.endswith("/retry"):
            reset = tracker.reset_failed(identity.tenant_id, body.get("batch_id"))
            return response(200, {"reset": reset})

        if http_method == "POST":
            return _enqueue(tracker, identity, body)

        if http_method == "GET":
            status = tracker.status(identity.tenant_id, query_params.get("batch_id"))
            return response(200, status.to_dict())

        if http_method == "DELETE":
            cancelled = tracker.cancel(
                identity.tenant_id,
                batch_id=body.get("batch_id") or query_params.get("batch_id"),
                clear_all=parse_bool(body.get("clear_all") or query_params.get("clear_all")),
            )
            return response(200, {"cancelled": cancelled})

        return response(405, {"error": f"Method {http_method} not allowed"})

    except Exception as e:
        return error_response(e)


def _enqueue(tracker: QueueTracker, identity, body: dict) -> dict:
    urls = body.get("urls")
    if not urls or not isinstance(urls, list):
        return response(400, {"error": "urls must be a non-empty list"})

    result = tracker.enqueue(
        identity.tenant_id,
        [str(u) for u in urls],
        submitted_by=identity.actor_id,
        clear_existing=parse_bool(body.get("clear_existing")),
    )
    if result.queued == 0:
        return response(400, {"error": "No valid URLs to queue"})

    return response(
        200,
        {
            "batch_id": result.batch_id,
            "queued": result.queued,
            "message": f"Queued {result.queued} URLs for processing",
        },
    )
