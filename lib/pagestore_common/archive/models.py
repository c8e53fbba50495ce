"""
Data models for the page archive.

These models represent captures and queue work as they flow through the
system: submit -> (sitemap expansion) -> batch or queue -> snapshot.
"""

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from pagestore_common.constants import MAX_QUEUE_RETRIES


def utc_now() -> datetime:
    return datetime.now(UTC)


def to_iso(value: datetime) -> str:
    """Fixed-width ISO-8601 timestamp, so stored values sort chronologically."""
    return value.astimezone(UTC).isoformat(timespec="microseconds")


def from_iso(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


def _int(value: Any, default: int = 0) -> int:
    # DynamoDB returns numbers as Decimal
    return int(value) if value is not None else default


class QueueItemStatus(str, Enum):
    """Processing status for queued URLs."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class CaptureMethod(str, Enum):
    """How a snapshot's HTML was obtained."""

    FETCH = "fetch"  # Plain HTTP GET
    RENDERED = "rendered"  # Headless browser, JavaScript executed


class FilterReason(str, Enum):
    """Why a sitemap <loc> entry was not returned as a page URL."""

    NESTED_SITEMAP = "nested_sitemap"
    DUPLICATE = "duplicate"


@dataclass
class Snapshot:
    """
    One immutable capture of a page.

    Attributes:
        snapshot_id: Unique identifier (UUID)
        tenant_id: Owning tenant
        url: Canonical URL that was fetched
        fingerprint: Cache key derived from the canonical URL
        captured_at: Capture timestamp
        captured_by: Actor that triggered the capture
        tool_id: Tool that requested the capture
        content_uri: S3 URI of the stored HTML
        content_size: Size of the stored HTML in bytes
        http_status: Origin response status
        headers: Selected origin response headers
        capture_method: Plain fetch or rendered fetch
        resolved_url: Final URL after redirects
        render_time_ms: Render duration for rendered captures
        screenshot_desktop_uri: Optional desktop screenshot
        screenshot_mobile_uri: Optional mobile screenshot
    """

    snapshot_id: str
    tenant_id: str
    url: str
    fingerprint: str
    content_uri: str
    content_size: int
    http_status: int
    captured_by: str
    captured_at: datetime = field(default_factory=utc_now)
    tool_id: str | None = None
    headers: dict[str, str] = field(default_factory=dict)
    capture_method: CaptureMethod = CaptureMethod.FETCH
    resolved_url: str | None = None
    render_time_ms: int | None = None
    screenshot_desktop_uri: str | None = None
    screenshot_desktop_size: int | None = None
    screenshot_mobile_uri: str | None = None
    screenshot_mobile_size: int | None = None

    @property
    def tenant_fingerprint(self) -> str:
        return f"{self.tenant_id}#{self.fingerprint}"

    @property
    def snapshot_key(self) -> str:
        """Sort key: newest-first ordering falls out of a descending query."""
        return f"{to_iso(self.captured_at)}#{self.snapshot_id}"

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for DynamoDB storage."""
        data = {
            "tenant_fingerprint": self.tenant_fingerprint,
            "snapshot_key": self.snapshot_key,
            "snapshot_id": self.snapshot_id,
            "tenant_id": self.tenant_id,
            "url": self.url,
            "fingerprint": self.fingerprint,
            "captured_at": to_iso(self.captured_at),
            "captured_by": self.captured_by,
            "content_uri": self.content_uri,
            "content_size": self.content_size,
            "http_status": self.http_status,
            "headers": self.headers,
            "capture_method": self.capture_method.value,
        }

        optional = {
            "tool_id": self.tool_id,
            "resolved_url": self.resolved_url,
            "render_time_ms": self.render_time_ms,
            "screenshot_desktop_uri": self.screenshot_desktop_uri,
            "screenshot_desktop_size": self.screenshot_desktop_size,
            "screenshot_mobile_uri": self.screenshot_mobile_uri,
            "screenshot_mobile_size": self.screenshot_mobile_size,
        }
        data.update({k: v for k, v in optional.items() if v is not None})
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Snapshot":
        """Create Snapshot from DynamoDB record."""
        return cls(
            snapshot_id=data["snapshot_id"],
            tenant_id=data["tenant_id"],
            url=data["url"],
            fingerprint=data["fingerprint"],
            content_uri=data["content_uri"],
            content_size=_int(data.get("content_size")),
            http_status=_int(data.get("http_status")),
            captured_by=data.get("captured_by", ""),
            captured_at=from_iso(data.get("captured_at")) or utc_now(),
            tool_id=data.get("tool_id"),
            headers=dict(data.get("headers") or {}),
            capture_method=CaptureMethod(data.get("capture_method", "fetch")),
            resolved_url=data.get("resolved_url"),
            render_time_ms=_int(data["render_time_ms"]) if "render_time_ms" in data else None,
            screenshot_desktop_uri=data.get("screenshot_desktop_uri"),
            screenshot_desktop_size=(
                _int(data["screenshot_desktop_size"]) if "screenshot_desktop_size" in data else None
            ),
            screenshot_mobile_uri=data.get("screenshot_mobile_uri"),
            screenshot_mobile_size=(
                _int(data["screenshot_mobile_size"]) if "screenshot_mobile_size" in data else None
            ),
        )

    def to_api(self) -> dict[str, Any]:
        """Public representation (no storage keys)."""
        data = self.to_dict()
        data.pop("tenant_fingerprint", None)
        data.pop("snapshot_key", None)
        return data


@dataclass
class PageIndexEntry:
    """Latest-snapshot pointer for one page of one tenant."""

    tenant_id: str
    fingerprint: str
    url: str
    latest_snapshot_id: str | None = None
    latest_snapshot_key: str | None = None
    latest_captured_at: datetime | None = None
    snapshot_count: int = 0
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "PageIndexEntry":
        """Create PageIndexEntry from DynamoDB record."""
        return cls(
            tenant_id=data["tenant_id"],
            fingerprint=data["fingerprint"],
            url=data.get("url", ""),
            latest_snapshot_id=data.get("latest_snapshot_id"),
            latest_snapshot_key=data.get("latest_snapshot_key"),
            latest_captured_at=from_iso(data.get("latest_captured_at")),
            snapshot_count=_int(data.get("snapshot_count")),
            created_at=from_iso(data.get("created_at")),
            updated_at=from_iso(data.get("updated_at")),
        )

    def to_api(self) -> dict[str, Any]:
        return {
            "fingerprint": self.fingerprint,
            "url": self.url,
            "latest_snapshot_id": self.latest_snapshot_id,
            "latest_captured_at": (
                to_iso(self.latest_captured_at) if self.latest_captured_at else None
            ),
            "snapshot_count": self.snapshot_count,
        }


@dataclass
class CaptureResult:
    """Outcome of a cache lookup or capture."""

    snapshot: Snapshot
    was_cached: bool
    html: str | None = None


@dataclass
class QueueItem:
    """
    One URL waiting for capture within a queued batch.

    Attributes:
        tenant_id: Owning tenant
        item_id: Unique identifier (UUID)
        batch_id: Batch the item was enqueued with
        url: URL as submitted (default scheme added, not canonicalized)
        status: Processing status
        submitted_by: Actor that enqueued the URL
        submitted_at: Enqueue timestamp
        retry_count: Number of failed attempts
        error: Last error message
    """

    tenant_id: str
    item_id: str
    batch_id: str
    url: str
    submitted_by: str
    status: QueueItemStatus = QueueItemStatus.PENDING
    submitted_at: datetime = field(default_factory=utc_now)
    retry_count: int = 0
    error: str | None = None
    claimed_at: datetime | None = None
    processed_at: datetime | None = None
    snapshot_id: str | None = None

    @property
    def item_key(self) -> str:
        return f"{self.batch_id}#{self.item_id}"

    def is_permanently_failed(self, max_retries: int = MAX_QUEUE_RETRIES) -> bool:
        return self.status == QueueItemStatus.FAILED and self.retry_count >= max_retries

    @property
    def permanent(self) -> bool:
        return self.is_permanently_failed()

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for DynamoDB storage."""
        data = {
            "tenant_id": self.tenant_id,
            "item_key": self.item_key,
            "item_id": self.item_id,
            "batch_id": self.batch_id,
            "url": self.url,
            "status": self.status.value,
            "submitted_by": self.submitted_by,
            "submitted_at": to_iso(self.submitted_at),
            "retry_count": self.retry_count,
        }

        if self.error:
            data["error"] = self.error
        if self.claimed_at:
            data["claimed_at"] = to_iso(self.claimed_at)
        if self.processed_at:
            data["processed_at"] = to_iso(self.processed_at)
        if self.snapshot_id:
            data["snapshot_id"] = self.snapshot_id

        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "QueueItem":
        """Create QueueItem from DynamoDB record."""
        return cls(
            tenant_id=data["tenant_id"],
            item_id=data["item_id"],
            batch_id=data["batch_id"],
            url=data["url"],
            submitted_by=data.get("submitted_by", ""),
            status=QueueItemStatus(data.get("status", "pending")),
            submitted_at=from_iso(data.get("submitted_at")) or utc_now(),
            retry_count=_int(data.get("retry_count")),
            error=data.get("error"),
            claimed_at=from_iso(data.get("claimed_at")),
            processed_at=from_iso(data.get("processed_at")),
            snapshot_id=data.get("snapshot_id"),
        )


@dataclass
class QueueStatus:
    """Aggregate view of a tenant's queue, optionally narrowed to one batch."""

    pending: int = 0
    processing: int = 0
    completed: int = 0
    failed: int = 0
    permanently_failed: int = 0
    failed_urls: list[dict[str, Any]] = field(default_factory=list)
    active_batches: list[str] = field(default_factory=list)

    @property
    def total(self) -> int:
        return (
            self.pending
            + self.processing
            + self.completed
            + self.failed
            + self.permanently_failed
        )

    @property
    def remaining_to_process(self) -> int:
        return self.pending + self.failed

    @property
    def has_queued_urls(self) -> bool:
        return self.remaining_to_process > 0 or self.processing > 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "total": self.total,
            "pending": self.pending,
            "processing": self.processing,
            "completed": self.completed,
            "failed": self.failed,
            "permanently_failed": self.permanently_failed,
            "remaining_to_process": self.remaining_to_process,
            "failed_urls": self.failed_urls,
            "active_batches": self.active_batches,
            "has_queued_urls": self.has_queued_urls,
        }


@dataclass
class EnqueueResult:
    batch_id: str
    queued: int


@dataclass
class UrlResult:
    """Per-URL outcome within a batch run."""

    url: str
    success: bool
    error: str | None = None
    was_cached: bool | None = None
    snapshot_id: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"url": self.url, "success": self.success}
        if self.error is not None:
            data["error"] = self.error
        if self.was_cached is not None:
            data["was_cached"] = self.was_cached
        if self.snapshot_id is not None:
            data["snapshot_id"] = self.snapshot_id
        return data


@dataclass
class BatchRun:
    """Result of one synchronous batch invocation."""

    total: int
    processed: int
    succeeded: int = 0
    failed: int = 0
    results: list[UrlResult] = field(default_factory=list)

    @property
    def remaining_count(self) -> int:
        return max(0, self.total - self.processed)

    @property
    def has_more(self) -> bool:
        return self.remaining_count > 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "total": self.total,
            "processed": self.processed,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "results": [r.to_dict() for r in self.results],
            "has_more": self.has_more,
            "remaining_count": self.remaining_count,
        }


@dataclass
class FilteredUrl:
    url: str
    reason: FilterReason

    def to_dict(self) -> dict[str, str]:
        return {"url": self.url, "reason": self.reason.value}


@dataclass
class SitemapExpansion:
    """Flat, deduplicated page URLs discovered from a sitemap tree."""

    urls: list[str] = field(default_factory=list)
    filtered: list[FilteredUrl] = field(default_factory=list)

    def summary(self) -> dict[str, int]:
        nested = sum(1 for f in self.filtered if f.reason == FilterReason.NESTED_SITEMAP)
        duplicates = sum(1 for f in self.filtered if f.reason == FilterReason.DUPLICATE)
        return {"nested_sitemaps": nested, "duplicates": duplicates, "total": len(self.filtered)}
