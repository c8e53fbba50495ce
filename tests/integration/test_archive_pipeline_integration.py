"""Integration test for the archive pipeline with mocked AWS services.

sitemap_parse -> scan_queue (enqueue) -> scan_queue_worker -> page_store
"""

import importlib.util
import json
import sys
from pathlib import Path

import boto3
import httpx
import pytest
from moto import mock_aws

from pagestore_common.archive.fetcher import HttpFetcher

SITE = {
    "https://shop.example.com/sitemap.xml": (
        "<sitemapindex>"
        "<sitemap><loc>https://shop.example.com/sitemap-products.xml</loc></sitemap>"
        "</sitemapindex>"
    ),
    "https://shop.example.com/sitemap-products.xml": (
        "<urlset>"
        "<url><loc>https://shop.example.com/products/kettle</loc></url>"
        "<url><loc>https://shop.example.com/products/toaster</loc></url>"
        "</urlset>"
    ),
    "https://shop.example.com/products/kettle": "<html><body>Kettle</body></html>",
    "https://shop.example.com/products/toaster": "<html><body>Toaster</body></html>",
}


def _load_lambda(name):
    """Load a Lambda module using importlib (avoids 'lambda' keyword issue)."""
    module_path = Path(__file__).parent.parent.parent / f"src/lambda/{name}/index.py"
    spec = importlib.util.spec_from_file_location(f"{name}_index", module_path)
    module = importlib.util.module_from_spec(spec)
    sys.modules[f"{name}_index"] = module
    spec.loader.exec_module(module)
    return module


def _create_tables(dynamodb):
    dynamodb.create_table(
        TableName="int-page-snapshots",
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
    for name, sort_key in (("int-page-index", "fingerprint"), ("int-scan-queue", "item_key")):
        dynamodb.create_table(
            TableName=name,
            KeySchema=[
                {"AttributeName": "tenant_id", "KeyType": "HASH"},
                {"AttributeName": sort_key, "KeyType": "RANGE"},
            ],
            AttributeDefinitions=[
                {"AttributeName": "tenant_id", "AttributeType": "S"},
                {"AttributeName": sort_key, "AttributeType": "S"},
            ],
            BillingMode="PAY_PER_REQUEST",
        )


@pytest.fixture
def requests_seen():
    return []


@pytest.fixture
def fetcher_factory(requests_seen):
    def handler(request):
        url = str(request.url)
        requests_seen.append(url)
        if url not in SITE:
            return httpx.Response(404, text="not found")
        return httpx.Response(200, text=SITE[url], headers={"content-type": "text/html"})

    return lambda **kwargs: HttpFetcher(
        max_retries=1, backoff_seconds=0, transport=httpx.MockTransport(handler)
    )


@pytest.fixture
def lambdas(monkeypatch, fetcher_factory):
    monkeypatch.setenv("PAGE_SNAPSHOTS_TABLE", "int-page-snapshots")
    monkeypatch.setenv("PAGE_INDEX_TABLE", "int-page-index")
    monkeypatch.setenv("SCAN_QUEUE_TABLE", "int-scan-queue")
    monkeypatch.setenv("PAGE_BUCKET", "int-page-bucket")
    monkeypatch.setenv("REQUEST_DELAY_MS", "0")
    monkeypatch.delenv("CONFIGURATION_TABLE_NAME", raising=False)

    with mock_aws():
        _create_tables(boto3.resource("dynamodb", region_name="us-east-1"))
        boto3.client("s3", region_name="us-east-1").create_bucket(Bucket="int-page-bucket")

        modules = {
            name: _load_lambda(name)
            for name in ("sitemap_parse", "scan_queue", "scan_queue_worker", "page_store")
        }
        monkeypatch.setattr(modules["sitemap_parse"], "HttpFetcher", fetcher_factory)
        for name in ("scan_queue_worker", "page_store"):
            module = modules[name]
            build = module.build_snapshot_service

            def build_with_stub_fetcher(*args, _build=build, **kwargs):
                service = _build(*args, **kwargs)
                service.fetcher = fetcher_factory()
                return service

            monkeypatch.setattr(module, "build_snapshot_service", build_with_stub_fetcher)

        yield modules


def _api_event(method, resource, body=None, query=None):
    return {
        "httpMethod": method,
        "resource": resource,
        "queryStringParameters": query,
        "body": json.dumps(body) if body is not None else None,
        "requestContext": {
            "authorizer": {"claims": {"sub": "analyst-1", "custom:tenant_ids": "acme"}}
        },
    }


def test_sitemap_to_cached_pages(lambdas, requests_seen):
    parsed = lambdas["sitemap_parse"].lambda_handler(
        _api_event("POST", "/sitemap", {"sitemap_url": "shop.example.com/sitemap.xml"}), None
    )
    urls = json.loads(parsed["body"])["urls"]
    assert len(urls) == 2

    queued = lambdas["scan_queue"].lambda_handler(
        _api_event("POST", "/queue", {"tenant_id": "acme", "urls": urls}), None
    )
    assert json.loads(queued["body"])["queued"] == 2

    summary = lambdas["scan_queue_worker"].lambda_handler({"tenant_id": "acme"}, None)
    assert summary["completed"] == 2
    assert summary["remaining"] == 0

    status = lambdas["scan_queue"].lambda_handler(
        _api_event("GET", "/queue/status", query={"tenant_id": "acme"}), None
    )
    assert json.loads(status["body"])["has_queued_urls"] is False

    fetches_before = len(requests_seen)
    page = lambdas["page_store"].lambda_handler(
        _api_event(
            "POST",
            "/pages",
            {"tenant_id": "acme", "url": "https://SHOP.example.com/products/kettle/"},
        ),
        None,
    )
    body = json.loads(page["body"])

    assert body["was_cached"] is True
    assert body["snapshot"]["tool_id"] == "scan-queue"
    assert len(requests_seen) == fetches_before

    pages = lambdas["page_store"].lambda_handler(
        _api_event("GET", "/pages/urls", query={"tenant_id": "acme"}), None
    )
    assert json.loads(pages["body"])["count"] == 2
