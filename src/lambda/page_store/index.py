"""
Page Store Lambda

Serves cached page snapshots to internal tools, capturing pages that have
no stored snapshot yet.

Routes (API Gateway proxy):
    POST   /pages                          capture or return cached snapshot
    POST   /pages/rescan                   capture even if cached
    GET    /pages/snapshots?url=...        snapshot history of a page
    GET    /pages/snapshots/{snapshot_id}  snapshot record and HTML
    GET    /pages/urls                     archived pages of a tenant
    DELETE /pages/urls                     delete pages by fingerprint

POST body:
{
    "tenant_id": "acme",
    "url": "example.com/pricing",
    "force_refresh": false,
    "tool_id": "meta-tags",
    "render_mode": "auto",
    "capture_screenshots": false,
    "max_age_hours": 24,
    "include_html": true
}
"""

import logging
import os

from pagestore_common.api import error_response, parse_body, parse_bool, response
from pagestore_common.archive.snapshots import build_snapshot_service
from pagestore_common.auth import get_request_identity
from pagestore_common.constants import DEFAULT_SNAPSHOT_HISTORY_LIMIT
from pagestore_common.logging_utils import safe_log_event

logger = logging.getLogger()
logger.setLevel(os.environ.get("LOG_LEVEL", "INFO"))

MAX_HISTORY_LIMIT = 100


def lambda_handler(event, context):
    """
    Main Lambda handler - routes page store requests.
    """
    # Get environment variables (read here for testability)
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
        http_method = event.get("httpMethod", "GET")
        resource = event.get("resource", "")
        path_params = event.get("pathParameters") or {}
        query_params = event.get("queryStringParameters") or {}
        body = parse_body(event)

        tenant_id = body.get("tenant_id") or query_params.get("tenant_id")
        identity = get_request_identity(event, tenant_id)
        service = build_snapshot_service(
            identity.tenant_id, snapshots_table, page_index_table, bucket
        )

        if http_method == "POST":
            force_refresh = resource.endswith("/rescan") or parse_bool(body.get("force_refresh"))
            return _capture(service, identity, body, force_refresh)

        if http_method == "GET":
            if path_params.get("snapshot_id"):
                return _get_snapshot(service, identity.tenant_id, path_params["snapshot_id"])
            if "/snapshots" in resource:
                return _list_snapshots(service, identity.tenant_id, query_params)
            if "/urls" in resource:
                return _list_pages(service, identity.tenant_id)

        if http_method == "DELETE" and "/urls" in resource:
            return _delete_pages(service, identity.tenant_id, body)

        return response(405, {"error": f"Method {http_method} not allowed on {resource}"})

    except Exception as e:
        return error_response(e)


def _capture(service, identity, body: dict, force_refresh: bool) -> dict:
    url = body.get("url")
    if not url:
        return response(400, {"error": "url is required"})

    max_age_hours = body.get("max_age_hours")
    capture_screenshots = body.get("capture_screenshots")

    result = service.get_or_capture(
        identity.tenant_id,
        url,
        actor_id=identity.actor_id,
        force_refresh=force_refresh,
        tool_id=body.get("tool_id") or "page-library",
        render_mode=body.get("render_mode"),
        capture_screenshots=(
            None if capture_screenshots is None else parse_bool(capture_screenshots)
        ),
        max_age_hours=float(max_age_hours) if max_age_hours is not None else None,
    )

    payload = {
        "snapshot": result.snapshot.to_api(),
        "was_cached": result.was_cached,
    }
    if parse_bool(body.get("include_html")):
        payload["html"] = (
            result.html if result.html is not None else service.read_snapshot_html(result.snapshot)
        )

    logger.info(
        f"{'Cached' if result.was_cached else 'Captured'} {result.snapshot.url} "
        f"for {identity.tenant_id}"
    )
    return response(200, payload)


def _get_snapshot(service, tenant_id: str, snapshot_id: str) -> dict:
    snapshot = service.get_snapshot(tenant_id, snapshot_id)
    if not snapshot:
        return response(404, {"error": f"Snapshot not found: {snapshot_id}"})

    return response(
        200,
        {"snapshot": snapshot.to_api(), "html": service.read_snapshot_html(snapshot)},
    )


def _list_snapshots(service, tenant_id: str, query_params: dict) -> dict:
    url = query_params.get("url")
    if not url:
        return response(400, {"error": "url is required"})

    limit = min(int(query_params.get("limit", DEFAULT_SNAPSHOT_HISTORY_LIMIT)), MAX_HISTORY_LIMIT)
    snapshots = service.list_snapshots(tenant_id, url, limit=limit)
    return response(
        200,
        {"url": url, "snapshots": [s.to_api() for s in snapshots], "count": len(snapshots)},
    )


def _list_pages(service, tenant_id: str) -> dict:
    pages = service.list_pages(tenant_id)
    return response(200, {"pages": [p.to_api() for p in pages], "count": len(pages)})


def _delete_pages(service, tenant_id: str, body: dict) -> dict:
    fingerprints = body.get("fingerprints")
    if not fingerprints or not isinstance(fingerprints, list):
        return response(400, {"error": "fingerprints must be a non-empty list"})

    result = service.delete_pages(tenant_id, [str(fp) for fp in fingerprints])
    return response(200, result)
