"""
HTTP and Playwright fetching for page capture.

Implements HTTP-first fetching with an optional headless-browser path for
pages that need JavaScript rendering. Both paths raise FetchError; the
caller decides whether a failure is fatal.
"""

import logging
import time
from dataclasses import dataclass, field

import httpx
from bs4 import BeautifulSoup

from pagestore_common.archive.models import CaptureMethod
from pagestore_common.constants import (
    DESKTOP_VIEWPORT,
    MOBILE_VIEWPORT,
    RENDER_TIMEOUT,
    REQUEST_TIMEOUT,
    SNAPSHOT_HEADER_NAMES,
)
from pagestore_common.exceptions import FetchError

logger = logging.getLogger(__name__)

DEFAULT_USER_AGENT = "PageStore/1.0 (+page-archive)"

HTML_ACCEPT = "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8"
XML_ACCEPT = "application/xml, text/xml, */*"


@dataclass
class FetchResult:
    """Result of a successful HTTP fetch."""

    url: str
    status_code: int
    content: str
    content_type: str
    headers: dict[str, str] = field(default_factory=dict)
    is_html: bool = False


@dataclass
class RenderResult:
    """Result of a headless-browser render."""

    url: str
    status_code: int
    content: str
    render_time_ms: int
    screenshot_desktop: bytes | None = None
    screenshot_mobile: bytes | None = None


@dataclass
class PageCapture:
    """HTML and metadata of one page capture, before persistence."""

    html: str
    http_status: int
    resolved_url: str
    headers: dict[str, str]
    capture_method: CaptureMethod = CaptureMethod.FETCH
    render_time_ms: int | None = None
    screenshot_desktop: bytes | None = None
    screenshot_mobile: bytes | None = None


def select_headers(headers) -> dict[str, str]:
    """Keep the response headers recorded on a snapshot."""
    selected = {}
    for name in SNAPSHOT_HEADER_NAMES:
        value = headers.get(name)
        if value:
            selected[name] = value
    return selected


class HttpFetcher:
    """HTTP fetcher with retry logic for transient origin failures."""

    # Retryable status codes
    RETRYABLE_STATUS_CODES = {429, 500, 502, 503, 504}

    def __init__(
        self,
        timeout: float = REQUEST_TIMEOUT,
        max_retries: int = 2,
        user_agent: str = DEFAULT_USER_AGENT,
        headers: dict[str, str] | None = None,
        backoff_seconds: float = 1.0,
        transport: httpx.BaseTransport | None = None,
    ):
        """
        Initialize HTTP fetcher.

        Args:
            timeout: Request timeout in seconds
            max_retries: Maximum attempts for retryable errors
            user_agent: User-Agent header sent to origins
            headers: Optional headers added to every request
            backoff_seconds: Base delay of the exponential backoff
            transport: Optional httpx transport (tests use httpx.MockTransport)
        """
        self.timeout = timeout
        self.max_retries = max(1, max_retries)
        self.user_agent = user_agent
        self.headers = headers or {}
        self.backoff_seconds = backoff_seconds
        self.transport = transport

    def fetch(self, url: str, headers: dict[str, str] | None = None) -> FetchResult:
        """
        Fetch URL, retrying 429/5xx responses and network errors.

        Args:
            url: URL to fetch
            headers: Optional per-request headers

        Returns:
            FetchResult for a 2xx response

        Raises:
            FetchError: Non-2xx response or network failure after retries
        """
        last_error = None
        last_status = None

        for attempt in range(self.max_retries):
            try:
                return self._do_fetch(url, headers)
            except httpx.HTTPStatusError as e:
                last_status = e.response.status_code
                last_error = f"HTTP {last_status}: {e.response.reason_phrase}"

                if last_status not in self.RETRYABLE_STATUS_CODES:
                    raise FetchError(url, last_error, last_status) from e

                backoff = (2**attempt) * self.backoff_seconds
                if last_status == 429:
                    # Longer backoff for rate limiting
                    backoff *= 2
                logger.warning(
                    f"Retry {attempt + 1}/{self.max_retries} for {url} "
                    f"(status={last_status}, backoff={backoff}s)"
                )
            except httpx.TimeoutException as e:
                last_error = f"Timeout: {e}"
                backoff = (2**attempt) * self.backoff_seconds
                logger.warning(f"Retry {attempt + 1}/{self.max_retries} for {url} (timeout)")
            except httpx.RequestError as e:
                last_error = f"Request error: {e}"
                backoff = (2**attempt) * self.backoff_seconds
                logger.warning(f"Retry {attempt + 1}/{self.max_retries} for {url} (error={e})")

            if attempt + 1 < self.max_retries and backoff > 0:
                time.sleep(backoff)

        raise FetchError(url, last_error or "unknown error", last_status)

    def _do_fetch(self, url: str, headers: dict[str, str] | None) -> FetchResult:
        """Perform the actual HTTP fetch."""
        request_headers = {
            "User-Agent": self.user_agent,
            "Accept": HTML_ACCEPT,
            "Accept-Language": "en-US,en;q=0.5",
            **self.headers,
            **(headers or {}),
        }

        with httpx.Client(
            timeout=self.timeout,
            follow_redirects=True,
            transport=self.transport,
        ) as client:
            response = client.get(url, headers=request_headers)
            response.raise_for_status()

            content_type = response.headers.get("content-type", "")
            is_html = "text/html" in content_type or "application/xhtml" in content_type

            return FetchResult(
                url=str(response.url),  # May differ from request URL due to redirects
                status_code=response.status_code,
                content=response.text,
                content_type=content_type,
                headers=select_headers(response.headers),
                is_html=is_html,
            )


def is_spa(html: str) -> bool:
    """
    Detect if HTML indicates a Single Page Application.

    Heuristics:
    - Content length < 500 chars after removing scripts and styles
    - Script tag count > 5
    - Presence of framework indicators (__NEXT_DATA__, window.__NUXT__, ng-app)

    Returns:
        True when at least two indicators match
    """
    soup = BeautifulSoup(html, "lxml")

    script_count = len(soup.find_all("script"))

    for tag in soup(["script", "style", "noscript"]):
        tag.decompose()

    text_content = soup.get_text(strip=True)

    indicators = [
        len(text_content) < 500,
        script_count > 5,
        "__NEXT_DATA__" in html,
        "window.__NUXT__" in html,
        "ng-app" in html,
        "data-reactroot" in html and len(text_content) < 1000,
        'id="__next"' in html and len(text_content) < 1000,
    ]

    return sum(indicators) >= 2


class PlaywrightRenderer:
    """Headless Chromium renderer for JavaScript pages and screenshots."""

    def __init__(self, user_agent: str = DEFAULT_USER_AGENT, timeout: float = RENDER_TIMEOUT):
        self.user_agent = user_agent
        self.timeout = timeout

    def render(self, url: str, screenshots: bool = False) -> RenderResult:
        """
        Load a page in a headless browser and return the rendered DOM.

        Args:
            url: URL to render
            screenshots: Also capture full-page desktop and mobile screenshots

        Returns:
            RenderResult with rendered HTML

        Raises:
            FetchError: Playwright unavailable, navigation failed or non-2xx
        """
        try:
            # Import only when needed (Playwright layer may not be deployed)
            from playwright.sync_api import Error as PlaywrightError
            from playwright.sync_api import sync_playwright
        except ImportError as e:
            raise FetchError(url, "Playwright not available - install playwright package") from e

        started = time.monotonic()
        try:
            with sync_playwright() as p:
                browser = p.chromium.launch(headless=True)
                try:
                    context = browser.new_context(
                        user_agent=self.user_agent, viewport=DESKTOP_VIEWPORT
                    )
                    page = context.new_page()
                    response = page.goto(
                        url, wait_until="networkidle", timeout=int(self.timeout * 1000)
                    )
                    status_code = response.status if response else 200
                    if status_code >= 400:
                        raise FetchError(url, f"HTTP {status_code}", status_code)

                    content = page.content()
                    resolved_url = page.url
                    render_time_ms = int((time.monotonic() - started) * 1000)

                    desktop = mobile = None
                    if screenshots:
                        desktop = page.screenshot(full_page=True, type="png")
                        page.set_viewport_size(MOBILE_VIEWPORT)
                        mobile = page.screenshot(full_page=True, type="png")
                finally:
                    browser.close()
        except PlaywrightError as e:
            logger.error(f"Playwright render failed for {url}: {e}")
            raise FetchError(url, f"Playwright error: {e}") from e

        return RenderResult(
            url=resolved_url,
            status_code=status_code,
            content=content,
            render_time_ms=render_time_ms,
            screenshot_desktop=desktop,
            screenshot_mobile=mobile,
        )


def capture_page(
    url: str,
    fetcher: HttpFetcher,
    renderer: PlaywrightRenderer | None = None,
    render_mode: str = "fetch",
    screenshots: bool = False,
) -> PageCapture:
    """
    Fetch a page for archiving.

    Args:
        url: Canonical URL to capture
        fetcher: HTTP fetcher
        renderer: Optional headless renderer
        render_mode: 'fetch', 'render', or 'auto' (render when the HTTP
            response looks like an SPA)
        screenshots: Capture screenshots (needs a renderer)

    Returns:
        PageCapture with HTML and response metadata

    Raises:
        FetchError: If the page cannot be fetched
    """
    if render_mode == "render" and renderer is not None:
        rendered = renderer.render(url, screenshots=screenshots)
        return _from_render(rendered, headers={})
    if render_mode != "fetch" and renderer is None:
        logger.warning(f"No renderer configured, fetching {url} over HTTP")

    result = fetcher.fetch(url)

    use_renderer = renderer is not None and (
        screenshots or (render_mode == "auto" and result.is_html and is_spa(result.content))
    )
    if use_renderer:
        logger.info(f"Rendering {url} (mode={render_mode}, screenshots={screenshots})")
        try:
            rendered = renderer.render(url, screenshots=screenshots)
            return _from_render(rendered, headers=result.headers)
        except FetchError as e:
            # HTTP content is still a valid capture
            logger.warning(f"Render failed for {url}, using HTTP result: {e}")

    return PageCapture(
        html=result.content,
        http_status=result.status_code,
        resolved_url=result.url,
        headers=result.headers,
    )


def _from_render(rendered: RenderResult, headers: dict[str, str]) -> PageCapture:
    return PageCapture(
        html=rendered.content,
        http_status=rendered.status_code,
        resolved_url=rendered.url,
        headers=headers or {"content-type": "text/html"},
        capture_method=CaptureMethod.RENDERED,
        render_time_ms=rendered.render_time_ms,
        screenshot_desktop=rendered.screenshot_desktop,
        screenshot_mobile=rendered.screenshot_mobile,
    )
