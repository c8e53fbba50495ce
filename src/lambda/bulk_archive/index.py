"""
Bulk Archive Lambda

Captures up to 100 pages in one synchronous request, from an explicit URL
list or from a sitemap. Callers resubmit the remainder when has_more is set.

Input (API Gateway POST body):
{
    "tenant_id": "acme",
    "mode": "urls" | "sitemap",
    "urls": ["https://example.com/a", ...],        # mode=urls
    "sitemap_url": "https://example.com/sitemap.xml",  # mode=sitemap
    "force_refresh": false,
    "tool_id": "page-library"
}

Output:
{
    "total": 150,
    "processed": 100,
    "succeeded": 98,
    "failed": 2,
    "results": [{"url": "...", "success": true, "was_cached": false}, ...],
    "has_more": true,
    "remaining_count": 50
}
"""

import logging
import os

from pagestore_common.api import error_response, parse_body, parse_bool, response
from pagestore_common.archive.batch import BatchProcessor
from pagestore_common.archive.snapshots import build_snapshot_service
from pagestore_common.auth import get_request_identity
from pagestore_common.logging_utils import safe_log_event

logger = logging.getLogger()
logger.setLevel(os.environ.get("LOG_LEVEL", "INFO"))

BULK_MODES = ("urls", "sitemap")


def lambda_handler(event, context):
    """
    Main Lambda handler - runs one bounded capture batch.
    """
    snapshots_table = os.environ.get("PAGE_SNAPSHOTS_TABLE")
    page_index_table = os.environ.get("PAGE_INDEX_TABLE")
    bucket = os.environ.get("PAGE_BUCKET")

    if not snapshots_table:
        raise ValueError("PAGE_SNAPSHOTS_TABLE environment variable required")
    if not page_index_table:
        raise ValueError("PAGE_INDEX_TABLE environment variable required")
    if not bucket:
        raise ValueError("PAGE_BUCKET environment variable required")

    logger.info(f"Received event: {safe_log_event(event)}")

    try:
        body = parse_body(event)
        identity = get_request_identity(event, body.get("tenant_id"))

        mode = body.get("mode", "urls")
        if mode not in BULK_MODES:
            return response(400, {"error": f"mode must be one of {', '.join(BULK_MODES)}"})

        processor = BatchProcessor(
            build_snapshot_service(identity.tenant_id, snapshots_table, page_index_table, bucket)
        )
        options = {
            "actor_id": identity.actor_id,
            "force_refresh": parse_bool(body.get("force_refresh")),
            "tool_id": body.get("tool_id") or "page-library",
            "deadline_seconds": _deadline_seconds(context),
        }

        if mode == "sitemap":
            sitemap_url = (body.get("sitemap_url") or "").strip()
            if not sitemap_url:
                return response(400, {"error": "sitemap_url is required"})
            run = processor.run_sitemap_batch(identity.tenant_id, sitemap_url, **options)
        else:
            urls = body.get("urls")
            if not urls or not isinstance(urls, list):
                return response(400, {"error": "urls must be a non-empty list"})
            run = processor.run_batch(
                identity.tenant_id, [str(u).strip() for u in urls], **options
            )

        return response(200, run.to_dict(), methods="POST,OPTIONS")

    except Exception as e:
        return error_response(e)


def _deadline_seconds(context) -> float | None:
    """Remaining invocation time, used only to warn about slow batches."""
    if context is None or not hasattr(context, "get_remaining_time_in_millis"):
        return None
    return float(context.get_remaining_time_in_millis()) / 1000.0
