"""Shared fixtures for page store unit tests."""

from types import SimpleNamespace

import boto3
import httpx
import pytest
from moto import mock_aws

from pagestore_common.archive.fetcher import HttpFetcher

SNAPSHOTS_TABLE = "test-page-snapshots"
PAGE_INDEX_TABLE = "test-page-index"
QUEUE_TABLE = "test-scan-queue"
BUCKET = "test-page-bucket"


def create_tables(dynamodb):
    """Create the page store tables with their production key schemas."""
    snapshots = dynamodb.create_table(
        TableName=SNAPSHOTS_TABLE,
        KeySchema=[
            {"AttributeName": "tenant_fingerprint", "KeyType": "HASH"},
            {"AttributeName": "snapshot_key", "KeyType": "RANGE"},
        ],
        AttributeDefinitions=[
            {"AttributeName": "tenant_fingerprint", "AttributeType": "S"},
            {"AttributeName": "snapshot_key", "AttributeType": "S"},
            {"AttributeName": "snapshot_id", "AttributeType": "S"},
        ],
        GlobalSecondaryIndexes=[
            {
                "IndexName": "SnapshotIdIndex",
                "KeySchema": [{"AttributeName": "snapshot_id", "KeyType": "HASH"}],
                "Projection": {"ProjectionType": "ALL"},
            }
        ],
        BillingMode="PAY_PER_REQUEST",
    )
    page_index = dynamodb.create_table(
        TableName=PAGE_INDEX_TABLE,
        KeySchema=[
            {"AttributeName": "tenant_id", "KeyType": "HASH"},
            {"AttributeName": "fingerprint", "KeyType": "RANGE"},
        ],
        AttributeDefinitions=[
            {"AttributeName": "tenant_id", "AttributeType": "S"},
            {"AttributeName": "fingerprint", "AttributeType": "S"},
        ],
        BillingMode="PAY_PER_REQUEST",
    )
    queue = dynamodb.create_table(
        TableName=QUEUE_TABLE,
        KeySchema=[
            {"AttributeName": "tenant_id", "KeyType": "HASH"},
            {"AttributeName": "item_key", "KeyType": "RANGE"},
        ],
        AttributeDefinitions=[
            {"AttributeName": "tenant_id", "AttributeType": "S"},
            {"AttributeName": "item_key", "AttributeType": "S"},
        ],
        BillingMode="PAY_PER_REQUEST",
    )
    return snapshots, page_index, queue


@pytest.fixture
def aws():
    """Mocked DynamoDB tables and S3 bucket."""
    with mock_aws():
        dynamodb = boto3.resource("dynamodb", region_name="us-east-1")
        snapshots, page_index, queue = create_tables(dynamodb)

        s3 = boto3.client("s3", region_name="us-east-1")
        s3.create_bucket(Bucket=BUCKET)

        yield SimpleNamespace(
            dynamodb=dynamodb,
            snapshots=snapshots,
            page_index=page_index,
            queue=queue,
            s3=s3,
            bucket=BUCKET,
        )


@pytest.fixture
def lambda_env(monkeypatch):
    """Environment variables read by the page store Lambdas."""
    monkeypatch.setenv("PAGE_SNAPSHOTS_TABLE", SNAPSHOTS_TABLE)
    monkeypatch.setenv("PAGE_INDEX_TABLE", PAGE_INDEX_TABLE)
    monkeypatch.setenv("SCAN_QUEUE_TABLE", QUEUE_TABLE)
    monkeypatch.setenv("PAGE_BUCKET", BUCKET)
    monkeypatch.setenv("REQUEST_DELAY_MS", "0")
    monkeypatch.setenv("LOG_LEVEL", "DEBUG")
    monkeypatch.delenv("CONFIGURATION_TABLE_NAME", raising=False)


class SiteStub:
    """
    In-memory website served through httpx.MockTransport.

    Unknown URLs answer 404; `requests` records every URL fetched.
    """

    def __init__(self, pages: dict[str, str] | None = None):
        self.pages = dict(pages or {})
        self.status_overrides: dict[str, int] = {}
        self.requests: list[str] = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        url = str(request.url)
        self.requests.append(url)
        if url in self.status_overrides:
            return httpx.Response(self.status_overrides[url], text="error")
        if url not in self.pages:
            return httpx.Response(404, text="not found")

        content_type = "application/xml" if url.endswith(".xml") else "text/html; charset=utf-8"
        return httpx.Response(
            200,
            text=self.pages[url],
            headers={
                "content-type": content_type,
                "etag": '"abc123"',
                "set-cookie": "session=secret",
            },
        )

    def fetcher(self) -> HttpFetcher:
        return HttpFetcher(
            max_retries=1, backoff_seconds=0, transport=httpx.MockTransport(self.handler)
        )


def auth_event(
    tenant_ids: str = "acme",
    sub: str = "user-123",
    groups: str | None = None,
    **fields,
) -> dict:
    """API Gateway proxy event with Cognito authorizer claims."""
    claims = {"sub": sub, "custom:tenant_ids": tenant_ids}
    if groups is not None:
        claims["cognito:groups"] = groups
    event = {"requestContext": {"authorizer": {"claims": claims}}}
    event.update(fields)
    return event


@pytest.fixture
def site():
    """Empty SiteStub; tests add pages by URL."""
    return SiteStub()


@pytest.fixture
def make_event():
    """Factory for authenticated API Gateway events."""
    return auth_event
