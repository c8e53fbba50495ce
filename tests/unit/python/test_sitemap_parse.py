"""Unit tests for sitemap_parse Lambda handler."""

import importlib.util
import json
import sys
from pathlib import Path

import pytest


def _load_sitemap_parse_module():
    """Load sitemap_parse module using importlib (avoids 'lambda' keyword issue)."""
    module_path = Path(__file__).parent.parent.parent.parent / "src/lambda/sitemap_parse/index.py"
    spec = importlib.util.spec_from_file_location("sitemap_parse_index", module_path)
    module = importlib.util.module_from_spec(spec)
    sys.modules["sitemap_parse_index"] = module
    spec.loader.exec_module(module)
    return module


@pytest.fixture
def sitemap_parse(site, monkeypatch):
    module = _load_sitemap_parse_module()
    monkeypatch.setattr(module, "HttpFetcher", lambda **kwargs: site.fetcher())
    return module


def _event(make_event, **body):
    return make_event(httpMethod="POST", body=json.dumps(body))


class TestSitemapParseHandler:
    """Tests for sitemap_parse lambda_handler."""

    def test_expands_sitemap_index(self, sitemap_parse, make_event, site):
        site.pages["https://example.com/sitemap.xml"] = (
            "<sitemapindex><sitemap><loc>https://example.com/sitemap-pages.xml</loc></sitemap>"
            "</sitemapindex>"
        )
        site.pages["https://example.com/sitemap-pages.xml"] = (
            "<urlset><url><loc>https://example.com/</loc></url>"
            "<url><loc>https://example.com/about</loc></url>"
            "<url><loc>https://example.com/</loc></url></urlset>"
        )

        result = sitemap_parse.lambda_handler(
            _event(make_event, sitemap_url="https://example.com/sitemap.xml"), None
        )

        assert result["statusCode"] == 200
        assert json.loads(result["body"]) == {
            "urls": ["https://example.com/", "https://example.com/about"],
            "total_urls": 2,
            "filtered_urls": {"nested_sitemaps": 1, "duplicates": 1, "total": 2},
        }

    def test_missing_sitemap_url(self, sitemap_parse, make_event):
        result = sitemap_parse.lambda_handler(_event(make_event, sitemap_url="  "), None)

        assert result["statusCode"] == 400
        assert json.loads(result["body"])["error"] == "sitemap_url is required"

    def test_unreachable_sitemap(self, sitemap_parse, make_event):
        result = sitemap_parse.lambda_handler(
            _event(make_event, sitemap_url="https://example.com/sitemap.xml"), None
        )

        assert result["statusCode"] == 502

    def test_requires_authentication(self, sitemap_parse):
        event = {
            "httpMethod": "POST",
            "body": json.dumps({"sitemap_url": "https://example.com/sitemap.xml"}),
        }

        assert sitemap_parse.lambda_handler(event, None)["statusCode"] == 401

    def test_get_not_allowed(self, sitemap_parse, make_event):
        result = sitemap_parse.lambda_handler(make_event(httpMethod="GET"), None)

        assert result["statusCode"] == 405
