"""
Synchronous batch capture.

Drives up to MAX_BATCH_URLS pages through the snapshot cache within one
invocation, one at a time, in input order. Per-URL failures are recorded
in the results and never abort the batch.
"""

import logging
import time

from pagestore_common.archive.models import BatchRun, UrlResult
from pagestore_common.archive.sitemap import SitemapExpander
from pagestore_common.archive.snapshots import DEFAULT_TOOL_ID, SnapshotService
from pagestore_common.constants import MAX_BATCH_URLS
from pagestore_common.exceptions import PageStoreError
from pagestore_common.logging_utils import log_summary

logger = logging.getLogger(__name__)


class BatchProcessor:
    """Captures a bounded list of URLs sequentially."""

    def __init__(
        self,
        snapshot_service: SnapshotService,
        expander: SitemapExpander | None = None,
        max_urls: int = MAX_BATCH_URLS,
    ):
        self.snapshot_service = snapshot_service
        self.expander = expander
        self.max_urls = max_urls

    def run_batch(
        self,
        tenant_id: str,
        urls: list[str],
        *,
        actor_id: str,
        force_refresh: bool = False,
        tool_id: str = DEFAULT_TOOL_ID,
        deadline_seconds: float | None = None,
    ) -> BatchRun:
        """
        Capture the first max_urls URLs of a list.

        Args:
            tenant_id: Tenant owning the captures
            urls: URLs in submission order
            actor_id: Actor triggering the batch
            force_refresh: Recapture pages that already have a snapshot
            tool_id: Tool requesting the batch
            deadline_seconds: Wall-clock budget; exceeding it is logged only

        Returns:
            BatchRun with one result per processed URL
        """
        accepted = urls[: self.max_urls]
        run = BatchRun(total=len(urls), processed=len(accepted))
        if run.has_more:
            logger.info(
                f"Batch of {run.total} URLs truncated to {run.processed}, "
                f"{run.remaining_count} remaining"
            )

        started = time.monotonic()
        for url in accepted:
            result = self._capture_one(tenant_id, url, actor_id, force_refresh, tool_id)
            run.results.append(result)
            if result.success:
                run.succeeded += 1
            else:
                run.failed += 1

        duration_ms = (time.monotonic() - started) * 1000
        if deadline_seconds is not None and duration_ms > deadline_seconds * 1000:
            logger.warning(
                f"Batch for {tenant_id} took {duration_ms / 1000:.1f}s, "
                f"over its {deadline_seconds}s budget"
            )

        logger.info(
            log_summary(
                "run_batch",
                success=run.failed == 0,
                duration_ms=duration_ms,
                item_count=run.processed,
                tenant_id=tenant_id,
                succeeded=run.succeeded,
                failed=run.failed,
                remaining=run.remaining_count,
            )
        )
        return run

    def run_sitemap_batch(
        self,
        tenant_id: str,
        sitemap_url: str,
        *,
        actor_id: str,
        force_refresh: bool = False,
        tool_id: str = DEFAULT_TOOL_ID,
        deadline_seconds: float | None = None,
    ) -> BatchRun:
        """
        Expand a sitemap and capture the first max_urls of its pages.

        Raises:
            FetchError: Root sitemap could not be fetched
            ValueError: Sitemap contained no page URLs
        """
        expander = self.expander or SitemapExpander(self.snapshot_service.fetcher)
        expansion = expander.expand(sitemap_url)
        if not expansion.urls:
            raise ValueError(f"No URLs found in sitemap {sitemap_url}")

        return self.run_batch(
            tenant_id,
            expansion.urls,
            actor_id=actor_id,
            force_refresh=force_refresh,
            tool_id=tool_id,
            deadline_seconds=deadline_seconds,
        )

    def _capture_one(
        self, tenant_id: str, url: str, actor_id: str, force_refresh: bool, tool_id: str
    ) -> UrlResult:
        try:
            capture = self.snapshot_service.get_or_capture(
                tenant_id,
                url,
                actor_id=actor_id,
                force_refresh=force_refresh,
                tool_id=tool_id,
            )
        except PageStoreError as e:
            logger.warning(f"Batch capture failed for {url}: {e}")
            return UrlResult(url=url, success=False, error=str(e))
        except Exception as e:
            logger.exception(f"Unexpected error capturing {url}")
            return UrlResult(url=url, success=False, error=str(e))

        return UrlResult(
            url=url,
            success=True,
            was_cached=capture.was_cached,
            snapshot_id=capture.snapshot.snapshot_id,
        )
