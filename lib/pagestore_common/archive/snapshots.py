"""
Snapshot cache.

Returns the stored capture of a page when one exists (and is fresh enough),
otherwise fetches the page, stores the HTML in S3 and records an immutable
snapshot. A per-page index item points at the latest snapshot.

Tables:
    snapshots:  PK tenant_fingerprint ("{tenant}#{fingerprint}"),
                SK snapshot_key ("{captured_at}#{snapshot_id}"),
                GSI SnapshotIdIndex on snapshot_id
    page index: PK tenant_id, SK fingerprint
"""

import logging
import uuid
from datetime import timedelta
from typing import Any

import boto3
from boto3.dynamodb.conditions import Key
from botocore.exceptions import ClientError

from pagestore_common.archive.canonical import canonicalize, fingerprint
from pagestore_common.archive.fetcher import HttpFetcher, PlaywrightRenderer, capture_page
from pagestore_common.archive.models import (
    CaptureResult,
    PageIndexEntry,
    Snapshot,
    to_iso,
    utc_now,
)
from pagestore_common.config import PageStoreSettings, load_settings
from pagestore_common.constants import CAPTURE_MAX_ATTEMPTS, DEFAULT_SNAPSHOT_HISTORY_LIMIT
from pagestore_common.exceptions import StorageError
from pagestore_common.storage import BlobStore

logger = logging.getLogger(__name__)

SNAPSHOT_ID_INDEX = "SnapshotIdIndex"
DEFAULT_TOOL_ID = "page-library"


def _query_all(table, **kwargs) -> list[dict[str, Any]]:
    """Run a DynamoDB query and follow pagination."""
    items = []
    while True:
        response = table.query(**kwargs)
        items.extend(response.get("Items", []))
        if "LastEvaluatedKey" not in response:
            return items
        kwargs["ExclusiveStartKey"] = response["LastEvaluatedKey"]


def _error_code(error: ClientError) -> str:
    return error.response.get("Error", {}).get("Code", "")


class SnapshotService:
    """
    Cache-or-capture access to page snapshots, scoped per tenant.

    Usage:
        service = SnapshotService(snapshots_table, page_index_table, BlobStore(bucket))
        result = service.get_or_capture("acme", "example.com/pricing", actor_id="user-1")
        result.was_cached  # False on first call, True afterwards
    """

    def __init__(
        self,
        snapshots_table,
        page_index_table,
        blob_store: BlobStore,
        fetcher: HttpFetcher | None = None,
        settings: PageStoreSettings | None = None,
        renderer: PlaywrightRenderer | None = None,
    ):
        """
        Args:
            snapshots_table: DynamoDB Table resource for snapshot records
            page_index_table: DynamoDB Table resource for latest pointers
            blob_store: S3 blob store for HTML and screenshots
            fetcher: HTTP fetcher (built from settings when omitted)
            settings: Tenant capture policy (defaults when omitted)
            renderer: Optional headless renderer for rendered captures
        """
        self.settings = settings or PageStoreSettings()
        self.snapshots_table = snapshots_table
        self.page_index_table = page_index_table
        self.blob_store = blob_store
        self.fetcher = fetcher or HttpFetcher(
            timeout=self.settings.request_timeout_seconds,
            max_retries=CAPTURE_MAX_ATTEMPTS,
            user_agent=self.settings.user_agent,
        )
        self.renderer = renderer

    # =========================================================================
    # Cache-or-capture
    # =========================================================================

    def get_or_capture(
        self,
        tenant_id: str,
        url: str,
        *,
        actor_id: str,
        force_refresh: bool = False,
        tool_id: str = DEFAULT_TOOL_ID,
        render_mode: str | None = None,
        capture_screenshots: bool | None = None,
        max_age_hours: float | None = None,
    ) -> CaptureResult:
        """
        Return the latest snapshot of a page, capturing it when needed.

        Args:
            tenant_id: Tenant the page belongs to
            url: Page URL in any spelling
            actor_id: Actor triggering the capture
            force_refresh: Capture even when a snapshot exists
            tool_id: Tool requesting the page
            render_mode: Override of the tenant's render mode
            capture_screenshots: Override of the tenant's screenshot policy
            max_age_hours: Reuse window override (None uses tenant policy)

        Returns:
            CaptureResult; was_cached is True when no fetch happened

        Raises:
            InvalidUrlError: URL cannot be canonicalized
            FetchError: Page could not be fetched
            StorageError: Blob or record write failed
        """
        canonical = canonicalize(url)
        fp = fingerprint(canonical)

        if max_age_hours is None:
            max_age_hours = self.settings.snapshot_max_age_hours

        if not force_refresh:
            entry = self.get_page(tenant_id, fp)
            if entry and entry.latest_snapshot_key and self._is_fresh(entry, max_age_hours):
                snapshot = self._get_by_key(tenant_id, fp, entry.latest_snapshot_key)
                if snapshot:
                    logger.info(f"Cache hit for {canonical} ({tenant_id}/{fp})")
                    return CaptureResult(snapshot=snapshot, was_cached=True)
                logger.warning(f"Latest pointer for {tenant_id}/{fp} has no snapshot, recapturing")

        return self._capture(
            tenant_id,
            canonical,
            fp,
            actor_id=actor_id,
            tool_id=tool_id,
            render_mode=render_mode or self.settings.render_mode,
            screenshots=(
                self.settings.capture_screenshots
                if capture_screenshots is None
                else capture_screenshots
            ),
        )

    @staticmethod
    def _is_fresh(entry: PageIndexEntry, max_age_hours: float | None) -> bool:
        # No TTL: a stored snapshot is reused until a forced refresh
        if max_age_hours is None:
            return True
        if entry.latest_captured_at is None:
            return False
        return utc_now() - entry.latest_captured_at <= timedelta(hours=max_age_hours)

    def _capture(
        self,
        tenant_id: str,
        canonical: str,
        fp: str,
        *,
        actor_id: str,
        tool_id: str,
        render_mode: str,
        screenshots: bool,
    ) -> CaptureResult:
        """Fetch, store blob(s), record snapshot, move the latest pointer."""
        page = capture_page(
            canonical,
            self.fetcher,
            renderer=self.renderer,
            render_mode=render_mode,
            screenshots=screenshots,
        )

        snapshot_id = str(uuid.uuid4())
        captured_at = utc_now()
        stamp = captured_at.strftime("%Y%m%dT%H%M%S%fZ")
        prefix = f"{tenant_id}/{fp}"

        html_bytes = page.html.encode("utf-8")
        content_uri = self.blob_store.put(
            f"pages/{prefix}/{stamp}-{snapshot_id}.html",
            html_bytes,
            "text/html; charset=utf-8",
        )
        written = [content_uri]

        snapshot = Snapshot(
            snapshot_id=snapshot_id,
            tenant_id=tenant_id,
            url=canonical,
            fingerprint=fp,
            content_uri=content_uri,
            content_size=len(html_bytes),
            http_status=page.http_status,
            captured_by=actor_id,
            captured_at=captured_at,
            tool_id=tool_id,
            headers=page.headers,
            capture_method=page.capture_method,
            resolved_url=page.resolved_url,
            render_time_ms=page.render_time_ms,
        )

        try:
            for view, image in (
                ("desktop", page.screenshot_desktop),
                ("mobile", page.screenshot_mobile),
            ):
                if not image:
                    continue
                uri = self.blob_store.put(
                    f"screenshots/{prefix}/{stamp}-{snapshot_id}/{view}.png", image, "image/png"
                )
                written.append(uri)
                setattr(snapshot, f"screenshot_{view}_uri", uri)
                setattr(snapshot, f"screenshot_{view}_size", len(image))

            self.snapshots_table.put_item(Item=snapshot.to_dict())
        except (StorageError, ClientError) as e:
            self._discard_blobs(written)
            if isinstance(e, ClientError):
                logger.error(f"Failed to record snapshot {snapshot_id}: {_error_code(e)}")
                raise StorageError(f"Failed to record snapshot for {canonical}: {e}") from e
            raise

        self._update_latest(snapshot)
        self._enforce_retention(tenant_id, fp)

        logger.info(
            f"Captured {canonical} for {tenant_id} as {snapshot_id} "
            f"({snapshot.capture_method.value}, {snapshot.content_size} bytes)"
        )
        return CaptureResult(snapshot=snapshot, was_cached=False, html=page.html)

    def _discard_blobs(self, uris: list[str]) -> None:
        for uri in uris:
            try:
                self.blob_store.delete(uri)
            except StorageError as e:
                logger.warning(f"Could not delete orphaned blob {uri}: {e}")

    def _update_latest(self, snapshot: Snapshot) -> None:
        """
        Point the page index at a snapshot unless a newer one is already
        recorded (last writer wins on captured_at). The count always grows.
        """
        now = to_iso(utc_now())
        key = {"tenant_id": snapshot.tenant_id, "fingerprint": snapshot.fingerprint}
        captured_at = to_iso(snapshot.captured_at)

        try:
            self.page_index_table.update_item(
                Key=key,
                UpdateExpression=(
                    "SET #url = :url, latest_snapshot_id = :sid, latest_snapshot_key = :skey, "
                    "latest_captured_at = :cat, updated_at = :now, "
                    "created_at = if_not_exists(created_at, :now) "
                    "ADD snapshot_count :one"
                ),
                ConditionExpression=(
                    "attribute_not_exists(latest_captured_at) OR latest_captured_at <= :cat"
                ),
                ExpressionAttributeNames={"#url": "url"},
                ExpressionAttributeValues={
                    ":url": snapshot.url,
                    ":sid": snapshot.snapshot_id,
                    ":skey": snapshot.snapshot_key,
                    ":cat": captured_at,
                    ":now": now,
                    ":one": 1,
                },
            )
            return
        except ClientError as e:
            if _error_code(e) != "ConditionalCheckFailedException":
                logger.error(f"Failed to update page index: {_error_code(e)}")
                raise StorageError(f"Failed to update page index for {snapshot.url}: {e}") from e

        logger.info(f"Newer snapshot already recorded for {snapshot.url}, keeping pointer")
        try:
            self.page_index_table.update_item(
                Key=key,
                UpdateExpression="SET updated_at = :now ADD snapshot_count :one",
                ExpressionAttributeValues={":now": now, ":one": 1},
            )
        except ClientError as e:
            logger.error(f"Failed to update snapshot count: {_error_code(e)}")
            raise StorageError(f"Failed to update page index for {snapshot.url}: {e}") from e

    def _enforce_retention(self, tenant_id: str, fp: str) -> None:
        """Delete snapshots beyond max_snapshots_per_url, oldest first."""
        limit = self.settings.max_snapshots_per_url
        if not limit or limit <= 0:
            return

        try:
            items = _query_all(
                self.snapshots_table,
                KeyConditionExpression=Key("tenant_fingerprint").eq(f"{tenant_id}#{fp}"),
                ScanIndexForward=False,
            )
            excess = [Snapshot.from_dict(item) for item in items[limit:]]
            if not excess:
                return

            with self.snapshots_table.batch_writer() as batch:
                for old in excess:
                    batch.delete_item(
                        Key={
                            "tenant_fingerprint": old.tenant_fingerprint,
                            "snapshot_key": old.snapshot_key,
                        }
                    )

            self.page_index_table.update_item(
                Key={"tenant_id": tenant_id, "fingerprint": fp},
                UpdateExpression="ADD snapshot_count :removed",
                ExpressionAttributeValues={":removed": -len(excess)},
            )
        except ClientError as e:
            # Captured snapshot is already recorded; pruning runs again next capture
            logger.warning(f"Retention pass failed for {tenant_id}/{fp}: {_error_code(e)}")
            return

        for old in excess:
            self._discard_blobs(_blob_uris(old))
        logger.info(f"Pruned {len(excess)} snapshots of {tenant_id}/{fp} (limit {limit})")

    # =========================================================================
    # Reads
    # =========================================================================

    def get_page(self, tenant_id: str, fp: str) -> PageIndexEntry | None:
        """Read the page index entry of a fingerprint."""
        try:
            response = self.page_index_table.get_item(
                Key={"tenant_id": tenant_id, "fingerprint": fp}
            )
        except ClientError as e:
            logger.error(f"Failed to read page index: {_error_code(e)}")
            raise StorageError(f"Failed to read page index for {tenant_id}/{fp}: {e}") from e

        item = response.get("Item")
        return PageIndexEntry.from_dict(item) if item else None

    def _get_by_key(self, tenant_id: str, fp: str, snapshot_key: str) -> Snapshot | None:
        try:
            response = self.snapshots_table.get_item(
                Key={"tenant_fingerprint": f"{tenant_id}#{fp}", "snapshot_key": snapshot_key}
            )
        except ClientError as e:
            logger.error(f"Failed to read snapshot: {_error_code(e)}")
            raise StorageError(f"Failed to read snapshot {snapshot_key}: {e}") from e

        item = response.get("Item")
        return Snapshot.from_dict(item) if item else None

    def list_snapshots(
        self, tenant_id: str, url: str, limit: int = DEFAULT_SNAPSHOT_HISTORY_LIMIT
    ) -> list[Snapshot]:
        """
        Return snapshot history of a page, newest first.

        Raises:
            InvalidUrlError: URL cannot be canonicalized
        """
        fp = fingerprint(url)
        try:
            response = self.snapshots_table.query(
                KeyConditionExpression=Key("tenant_fingerprint").eq(f"{tenant_id}#{fp}"),
                ScanIndexForward=False,
                Limit=max(1, limit),
            )
        except ClientError as e:
            logger.error(f"Failed to list snapshots: {_error_code(e)}")
            raise StorageError(f"Failed to list snapshots for {url}: {e}") from e

        return [Snapshot.from_dict(item) for item in response.get("Items", [])]

    def get_snapshot(self, tenant_id: str, snapshot_id: str) -> Snapshot | None:
        """Look up a snapshot by id; snapshots of other tenants are not visible."""
        try:
            response = self.snapshots_table.query(
                IndexName=SNAPSHOT_ID_INDEX,
                KeyConditionExpression=Key("snapshot_id").eq(snapshot_id),
            )
        except ClientError as e:
            logger.error(f"Failed to query snapshot index: {_error_code(e)}")
            raise StorageError(f"Failed to read snapshot {snapshot_id}: {e}") from e

        for item in response.get("Items", []):
            if item.get("tenant_id") == tenant_id:
                return Snapshot.from_dict(item)
        return None

    def read_snapshot_html(self, snapshot: Snapshot) -> str:
        """Load the stored HTML of a snapshot."""
        return self.blob_store.get_text(snapshot.content_uri)

    def list_pages(self, tenant_id: str) -> list[PageIndexEntry]:
        """Return every archived page of a tenant, most recently captured first."""
        try:
            items = _query_all(
                self.page_index_table,
                KeyConditionExpression=Key("tenant_id").eq(tenant_id),
            )
        except ClientError as e:
            logger.error(f"Failed to list pages: {_error_code(e)}")
            raise StorageError(f"Failed to list pages for {tenant_id}: {e}") from e

        pages = [PageIndexEntry.from_dict(item) for item in items]
        pages.sort(
            key=lambda p: to_iso(p.latest_captured_at) if p.latest_captured_at else "",
            reverse=True,
        )
        return pages

    # =========================================================================
    # Deletes
    # =========================================================================

    def delete_pages(self, tenant_id: str, fingerprints: list[str]) -> dict[str, Any]:
        """
        Delete pages with all their snapshots and blobs.

        Returns:
            {"deleted": <pages deleted>, "errors": [{"fingerprint", "error"}]}
        """
        deleted = 0
        errors = []

        for fp in fingerprints:
            try:
                items = _query_all(
                    self.snapshots_table,
                    KeyConditionExpression=Key("tenant_fingerprint").eq(f"{tenant_id}#{fp}"),
                )
                snapshots = [Snapshot.from_dict(item) for item in items]

                with self.snapshots_table.batch_writer() as batch:
                    for snapshot in snapshots:
                        batch.delete_item(
                            Key={
                                "tenant_fingerprint": snapshot.tenant_fingerprint,
                                "snapshot_key": snapshot.snapshot_key,
                            }
                        )
                self.page_index_table.delete_item(Key={"tenant_id": tenant_id, "fingerprint": fp})
            except ClientError as e:
                logger.error(f"Failed to delete page {tenant_id}/{fp}: {_error_code(e)}")
                errors.append({"fingerprint": fp, "error": str(e)})
                continue

            for snapshot in snapshots:
                self._discard_blobs(_blob_uris(snapshot))
            deleted += 1
            logger.info(f"Deleted page {tenant_id}/{fp} ({len(snapshots)} snapshots)")

        return {"deleted": deleted, "errors": errors}


def _blob_uris(snapshot: Snapshot) -> list[str]:
    uris = [snapshot.content_uri]
    for uri in (snapshot.screenshot_desktop_uri, snapshot.screenshot_mobile_uri):
        if uri:
            uris.append(uri)
    return uris


def build_snapshot_service(
    tenant_id: str,
    snapshots_table_name: str,
    page_index_table_name: str,
    bucket: str,
    settings: PageStoreSettings | None = None,
) -> SnapshotService:
    """
    Wire a SnapshotService for one tenant from table and bucket names.

    A renderer is attached only when the tenant's policy can use one.
    """
    settings = settings or load_settings(tenant_id)

    dynamodb = boto3.resource("dynamodb")
    renderer = None
    if settings.render_mode != "fetch" or settings.capture_screenshots:
        renderer = PlaywrightRenderer(user_agent=settings.user_agent)

    return SnapshotService(
        snapshots_table=dynamodb.Table(snapshots_table_name),
        page_index_table=dynamodb.Table(page_index_table_name),
        blob_store=BlobStore(bucket),
        settings=settings,
        renderer=renderer,
    )
