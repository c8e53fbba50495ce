"""Unit tests for URL canonicalization and fingerprints."""

import hashlib

import pytest

from pagestore_common.archive.canonical import canonicalize, fingerprint, with_default_scheme
from pagestore_common.exceptions import InvalidUrlError


class TestCanonicalize:
    """Tests for canonicalize function."""

    def test_equivalent_spellings_match(self):
        assert canonicalize("HTTPS://Example.com:443/a?b=2&a=1/") == canonicalize(
            "https://example.com/a?a=1&b=2"
        )
        assert canonicalize("https://example.com/a?a=1&b=2") == "https://example.com/a?a=1&b=2"

    def test_adds_https_scheme(self):
        assert canonicalize("example.com/pricing") == "https://example.com/pricing"

    def test_keeps_http_scheme(self):
        assert canonicalize("http://example.com/x") == "http://example.com/x"

    def test_scheme_check_is_case_insensitive(self):
        assert canonicalize("HTTP://example.com/x") == "http://example.com/x"

    def test_lowercases_host_not_path(self):
        assert canonicalize("https://EXAMPLE.COM/Docs/Page") == "https://example.com/Docs/Page"

    def test_strips_default_ports(self):
        assert canonicalize("https://example.com:443/") == "https://example.com/"
        assert canonicalize("http://example.com:80/a") == "http://example.com/a"

    def test_keeps_non_default_port(self):
        assert canonicalize("http://example.com:8080/a/") == "http://example.com:8080/a"
        # 443 is only the default for https
        assert canonicalize("http://example.com:443/a") == "http://example.com:443/a"

    def test_sorts_query_by_key_then_value(self):
        assert (
            canonicalize("https://example.com/s?z=1&a=2&a=1")
            == "https://example.com/s?a=1&a=2&z=1"
        )

    def test_keeps_blank_query_values(self):
        assert canonicalize("https://example.com/s?b=&a=1") == "https://example.com/s?a=1&b="

    def test_drops_fragment(self):
        assert canonicalize("https://example.com/page#section") == "https://example.com/page"

    def test_root_keeps_slash(self):
        assert canonicalize("https://example.com/") == "https://example.com/"
        assert canonicalize("https://example.com") == "https://example.com/"

    def test_strips_trailing_slashes(self):
        assert canonicalize("https://example.com/docs/") == "https://example.com/docs"
        assert canonicalize("https://example.com/docs//") == "https://example.com/docs"
        assert canonicalize("https://example.com/docs/?q=1") == "https://example.com/docs?q=1"

    def test_strips_one_slash_ending_the_query(self):
        assert canonicalize("https://example.com/s?a=1/") == "https://example.com/s?a=1"
        assert canonicalize("https://example.com/s?a=1//") == "https://example.com/s?a=1%2F"

    def test_slash_query_value_is_kept(self):
        assert canonicalize("https://example.com/login?next=/") == (
            "https://example.com/login?next=%2F"
        )
        assert canonicalize("https://example.com/login?next=/") != canonicalize(
            "https://example.com/login?next="
        )

    def test_strips_surrounding_whitespace(self):
        assert canonicalize("  example.com/a  ") == "https://example.com/a"

    @pytest.mark.parametrize(
        "url",
        [
            "HTTPS://Example.com:443/a?b=2&a=1/",
            "https://example.com/s?a=1//",
            "https://example.com/login?next=/",
            "Example.COM/b/?z=1&a=2#x",
            "https://example.com/a//",
            "http://example.com:8080",
            "https://example.com/search?q=a+b&next=%2F",
            "https://user:pw@Example.com/private/",
        ],
    )
    def test_idempotent(self, url):
        once = canonicalize(url)
        assert canonicalize(once) == once

    @pytest.mark.parametrize(
        "url",
        ["", "   ", "https://", "ftp://example.com/file", "https://example.com:99999/"],
    )
    def test_invalid_urls(self, url):
        with pytest.raises(InvalidUrlError):
            canonicalize(url)


class TestFingerprint:
    """Tests for fingerprint function."""

    def test_is_sha256_prefix_of_canonical_url(self):
        expected = hashlib.sha256(b"https://example.com/a?a=1&b=2").hexdigest()[:16]
        assert fingerprint("https://example.com/a?a=1&b=2") == expected

    def test_length_and_alphabet(self):
        value = fingerprint("example.com")
        assert len(value) == 16
        assert all(c in "0123456789abcdef" for c in value)

    def test_equivalent_urls_share_fingerprint(self):
        assert fingerprint("HTTPS://Example.com:443/a?b=2&a=1/") == fingerprint(
            "example.com/a?a=1&b=2"
        )

    def test_different_pages_differ(self):
        assert fingerprint("https://example.com/a") != fingerprint("https://example.com/b")

    def test_invalid_url_raises(self):
        with pytest.raises(InvalidUrlError):
            fingerprint("mailto://someone")


class TestWithDefaultScheme:
    """Tests for with_default_scheme function."""

    def test_adds_https(self):
        assert with_default_scheme("example.com/a") == "https://example.com/a"

    def test_leaves_existing_scheme(self):
        assert with_default_scheme("http://Example.com/A/") == "http://Example.com/A/"

    def test_does_not_canonicalize(self):
        assert with_default_scheme("Example.com/A/?b=1&a=2") == "https://Example.com/A/?b=1&a=2"
