"""
Sitemap Parse Lambda

Expands a sitemap (or sitemap index) into page URLs so the caller can
review them before archiving.

Input (API Gateway POST body):
{
    "sitemap_url": "https://example.com/sitemap.xml"
}

Output:
{
    "urls": ["https://example.com/", ...],
    "total_urls": 42,
    "filtered_urls": {"nested_sitemaps": 3, "duplicates": 1, "total": 4}
}
"""

import logging
import os

from pagestore_common.api import error_response, parse_body, response
from pagestore_common.archive.fetcher import HttpFetcher
from pagestore_common.archive.sitemap import SitemapExpander
from pagestore_common.auth import get_actor_id
from pagestore_common.constants import REQUEST_TIMEOUT
from pagestore_common.logging_utils import log_summary, safe_log_event

logger = logging.getLogger()
logger.setLevel(os.environ.get("LOG_LEVEL", "INFO"))


def lambda_handler(event, context):
    """
    Main Lambda handler - expands a sitemap.
    """
    logger.info(f"Received event: {safe_log_event(event)}")

    try:
        if event.get("httpMethod", "POST") != "POST":
            return response(405, {"error": f"Method {event.get('httpMethod')} not allowed"})

        actor_id = get_actor_id(event)
        body = parse_body(event)

        sitemap_url = (body.get("sitemap_url") or "").strip()
        if not sitemap_url:
            return response(400, {"error": "sitemap_url is required"})

        timeout = float(os.environ.get("REQUEST_TIMEOUT_S", REQUEST_TIMEOUT))
        expander = SitemapExpander(HttpFetcher(timeout=timeout))
        expansion = expander.expand(sitemap_url)

        logger.info(
            log_summary(
                "sitemap_parse",
                item_count=len(expansion.urls),
                actor_id=actor_id,
                filtered=expansion.filtered,
            )
        )

        return response(
            200,
            {
                "urls": expansion.urls,
                "total_urls": len(expansion.urls),
                "filtered_urls": expansion.summary(),
            },
            methods="POST,OPTIONS",
        )

    except Exception as e:
        return error_response(e)
