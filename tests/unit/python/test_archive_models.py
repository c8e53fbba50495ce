"""Unit tests for archive data models."""

from datetime import UTC, datetime, timedelta, timezone
from decimal import Decimal

from pagestore_common.archive.models import (
    BatchRun,
    CaptureMethod,
    FilteredUrl,
    FilterReason,
    PageIndexEntry,
    QueueItem,
    QueueItemStatus,
    QueueStatus,
    SitemapExpansion,
    Snapshot,
    UrlResult,
    to_iso,
)


def _snapshot(**overrides):
    values = {
        "snapshot_id": "snap-1",
        "tenant_id": "acme",
        "url": "https://example.com/",
        "fingerprint": "0123456789abcdef",
        "content_uri": "s3://bucket/pages/acme/0123456789abcdef/page.html",
        "content_size": 120,
        "http_status": 200,
        "captured_by": "user-1",
        "captured_at": datetime(2024, 5, 1, 12, 0, tzinfo=UTC),
    }
    values.update(overrides)
    return Snapshot(**values)


class TestToIso:
    def test_fixed_width_utc(self):
        value = datetime(2024, 5, 1, 14, 0, tzinfo=timezone(timedelta(hours=2)))
        assert to_iso(value) == "2024-05-01T12:00:00.000000+00:00"

    def test_sorts_chronologically(self):
        earlier = datetime(2024, 5, 1, 12, 0, 0, 999999, tzinfo=UTC)
        later = datetime(2024, 5, 1, 12, 0, 1, tzinfo=UTC)
        assert to_iso(earlier) < to_iso(later)


class TestSnapshot:
    def test_keys(self):
        snapshot = _snapshot()

        assert snapshot.tenant_fingerprint == "acme#0123456789abcdef"
        assert snapshot.snapshot_key == "2024-05-01T12:00:00.000000+00:00#snap-1"

    def test_to_dict_omits_missing_optionals(self):
        data = _snapshot().to_dict()

        assert data["capture_method"] == "fetch"
        assert "tool_id" not in data
        assert "screenshot_desktop_uri" not in data

    def test_from_dynamo_record(self):
        data = _snapshot(
            tool_id="ppc", capture_method=CaptureMethod.RENDERED, render_time_ms=900
        ).to_dict()
        # DynamoDB hands numbers back as Decimal
        data["content_size"] = Decimal("120")
        data["render_time_ms"] = Decimal("900")

        snapshot = Snapshot.from_dict(data)

        assert snapshot == _snapshot(
            tool_id="ppc", capture_method=CaptureMethod.RENDERED, render_time_ms=900
        )
        assert isinstance(snapshot.content_size, int)

    def test_to_api_hides_storage_keys(self):
        data = _snapshot().to_api()

        assert "tenant_fingerprint" not in data
        assert "snapshot_key" not in data
        assert data["snapshot_id"] == "snap-1"


class TestPageIndexEntry:
    def test_from_dict_and_api(self):
        entry = PageIndexEntry.from_dict(
            {
                "tenant_id": "acme",
                "fingerprint": "0123456789abcdef",
                "url": "https://example.com/",
                "latest_snapshot_id": "snap-1",
                "latest_captured_at": "2024-05-01T12:00:00.000000+00:00",
                "snapshot_count": Decimal("2"),
            }
        )

        assert entry.snapshot_count == 2
        assert entry.to_api() == {
            "fingerprint": "0123456789abcdef",
            "url": "https://example.com/",
            "latest_snapshot_id": "snap-1",
            "latest_captured_at": "2024-05-01T12:00:00.000000+00:00",
            "snapshot_count": 2,
        }


class TestQueueItem:
    def _item(self, **overrides):
        values = {
            "tenant_id": "acme",
            "item_id": "item-1",
            "batch_id": "batch-1",
            "url": "https://example.com/",
            "submitted_by": "user-1",
        }
        values.update(overrides)
        return QueueItem(**values)

    def test_item_key(self):
        assert self._item().item_key == "batch-1#item-1"

    def test_permanent_failure_threshold(self):
        assert not self._item(status=QueueItemStatus.FAILED, retry_count=2).permanent
        assert self._item(status=QueueItemStatus.FAILED, retry_count=3).permanent
        assert not self._item(status=QueueItemStatus.PENDING, retry_count=3).permanent
        assert self._item(status=QueueItemStatus.FAILED, retry_count=1).is_permanently_failed(1)

    def test_dict_round_trip(self):
        item = self._item(
            status=QueueItemStatus.FAILED,
            retry_count=1,
            error="HTTP 500",
            processed_at=datetime(2024, 5, 1, tzinfo=UTC),
        )

        data = item.to_dict()

        assert data["item_key"] == "batch-1#item-1"
        assert "snapshot_id" not in data
        assert QueueItem.from_dict(data) == item


class TestQueueStatus:
    def test_derived_counts(self):
        status = QueueStatus(pending=2, processing=1, completed=4, failed=1, permanently_failed=3)

        assert status.total == 11
        assert status.remaining_to_process == 3
        assert status.has_queued_urls is True

    def test_only_permanent_failures_left(self):
        status = QueueStatus(completed=4, permanently_failed=1)

        assert status.remaining_to_process == 0
        assert status.has_queued_urls is False


class TestBatchRun:
    def test_remaining(self):
        run = BatchRun(total=150, processed=100)

        assert run.remaining_count == 50
        assert run.has_more is True

    def test_url_result_to_dict(self):
        assert UrlResult(url="u", success=False, error="boom").to_dict() == {
            "url": "u",
            "success": False,
            "error": "boom",
        }


def test_sitemap_expansion_summary():
    expansion = SitemapExpansion(
        urls=["https://example.com/a"],
        filtered=[
            FilteredUrl("https://example.com/s.xml", FilterReason.NESTED_SITEMAP),
            FilteredUrl("https://example.com/a", FilterReason.DUPLICATE),
            FilteredUrl("https://example.com/a", FilterReason.DUPLICATE),
        ],
    )

    assert expansion.summary() == {"nested_sitemaps": 1, "duplicates": 2, "total": 3}
