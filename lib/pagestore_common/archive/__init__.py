"""
Page archive module for PageStore.

This module canonicalizes URLs, expands sitemaps, and captures pages into
per-tenant snapshot history, either synchronously in bounded batches or
through a retry-bounded scan queue.

Architecture:
- Canonical: URL normalization and fingerprints (cache keys)
- Sitemap: Depth- and fan-out-bounded sitemap expansion
- Snapshots: Cache-or-capture with a latest-snapshot pointer per page
- Batch: Sequential capture of up to 100 URLs per call
- Queue: Conditional-write state machine for queued URLs
"""

from pagestore_common.archive.canonical import canonicalize, fingerprint, with_default_scheme
from pagestore_common.archive.models import (
    BatchRun,
    CaptureMethod,
    CaptureResult,
    PageIndexEntry,
    QueueItem,
    QueueItemStatus,
    QueueStatus,
    SitemapExpansion,
    Snapshot,
)

__all__ = [
    "BatchRun",
    "CaptureMethod",
    "CaptureResult",
    "PageIndexEntry",
    "QueueItem",
    "QueueItemStatus",
    "QueueStatus",
    "SitemapExpansion",
    "Snapshot",
    "canonicalize",
    "fingerprint",
    "with_default_scheme",
]
