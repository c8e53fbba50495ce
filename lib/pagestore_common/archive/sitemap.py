"""
Sitemap expansion.

Turns a sitemap (or sitemap index) URL into a flat list of page URLs.
Nested sitemaps are followed depth-first with a bounded depth and fan-out;
duplicate page URLs and nested sitemap entries are reported as filtered.
"""

import html
import logging
import re
from urllib.parse import urlsplit

from pagestore_common.archive.canonical import with_default_scheme
from pagestore_common.archive.fetcher import XML_ACCEPT, HttpFetcher
from pagestore_common.archive.models import FilteredUrl, FilterReason, SitemapExpansion
from pagestore_common.constants import SITEMAP_MAX_DEPTH, SITEMAP_MAX_NESTED_PER_LEVEL
from pagestore_common.exceptions import FetchError

logger = logging.getLogger(__name__)

# Regex rather than an XML parser: real-world sitemaps are often malformed
LOC_PATTERN = re.compile(r"<loc>\s*([^<]+?)\s*</loc>", re.IGNORECASE)


def extract_locs(document: str) -> list[str]:
    """Return every <loc> value of a sitemap document, in document order."""
    locs = []
    for match in LOC_PATTERN.finditer(document or ""):
        value = html.unescape(match.group(1)).strip()
        if value:
            locs.append(value)
    return locs


def is_nested_sitemap(url: str) -> bool:
    """
    Check whether a <loc> value points at another sitemap document.

    A URL is nested when its path ends in .xml (or .xml.gz) or when the
    last path segment starts with "sitemap" (e.g. /sitemap?page=2).
    Hosts, query strings and page slugs that merely mention "sitemap" do
    not count.
    """
    path = urlsplit(url).path.lower()
    if path.endswith(".xml") or path.endswith(".xml.gz"):
        return True
    return path.rstrip("/").rsplit("/", 1)[-1].startswith("sitemap")


class SitemapExpander:
    """
    Expands sitemap documents into page URLs.

    Usage:
        expander = SitemapExpander(HttpFetcher())
        expansion = expander.expand("https://example.com/sitemap.xml")
        expansion.urls       # page URLs, first occurrence order
        expansion.summary()  # {"nested_sitemaps": ..., "duplicates": ..., "total": ...}
    """

    def __init__(
        self,
        fetcher: HttpFetcher | None = None,
        max_depth: int = SITEMAP_MAX_DEPTH,
        max_nested_per_level: int = SITEMAP_MAX_NESTED_PER_LEVEL,
    ):
        """
        Args:
            fetcher: HTTP fetcher for sitemap documents
            max_depth: Deepest nesting level expanded (the root is level 0)
            max_nested_per_level: Nested sitemaps followed per document
        """
        self.fetcher = fetcher or HttpFetcher()
        self.max_depth = max_depth
        self.max_nested_per_level = max_nested_per_level

    def expand(self, sitemap_url: str) -> SitemapExpansion:
        """
        Expand a sitemap into its page URLs.

        Args:
            sitemap_url: Root sitemap URL

        Returns:
            SitemapExpansion with deduplicated URLs and filtered entries

        Raises:
            FetchError: If the root document cannot be fetched
        """
        root = with_default_scheme(sitemap_url)
        expansion = SitemapExpansion()
        seen: set[str] = set()
        expanded: set[str] = set()

        # Worklist of (sitemap_url, depth); a stack keeps expansion depth-first
        stack: list[tuple[str, int]] = [(root, 0)]

        while stack:
            current, depth = stack.pop()
            if current in expanded:
                logger.debug(f"Skipping already expanded sitemap {current}")
                continue
            expanded.add(current)

            try:
                document = self._fetch_document(current)
            except FetchError as e:
                if depth == 0:
                    raise
                logger.warning(f"Skipping nested sitemap {current}: {e}")
                continue

            nested = []
            for loc in extract_locs(document):
                if is_nested_sitemap(loc):
                    expansion.filtered.append(FilteredUrl(loc, FilterReason.NESTED_SITEMAP))
                    nested.append(loc)
                elif loc in seen:
                    expansion.filtered.append(FilteredUrl(loc, FilterReason.DUPLICATE))
                else:
                    seen.add(loc)
                    expansion.urls.append(loc)

            if nested and depth + 1 > self.max_depth:
                logger.info(
                    f"Depth limit reached at {current}, not following {len(nested)} sitemaps"
                )
                continue

            followed = nested[: self.max_nested_per_level]
            if len(nested) > len(followed):
                logger.info(
                    f"Following {len(followed)} of {len(nested)} nested sitemaps in {current}"
                )
            # Reversed so the first nested sitemap is expanded first
            for child in reversed(followed):
                stack.append((child, depth + 1))

        logger.info(
            f"Expanded {root}: {len(expansion.urls)} URLs from {len(expanded)} documents, "
            f"{len(expansion.filtered)} filtered"
        )
        return expansion

    def _fetch_document(self, url: str) -> str:
        result = self.fetcher.fetch(url, headers={"Accept": XML_ACCEPT})
        return result.content
