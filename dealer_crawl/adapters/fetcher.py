"""
Page fetch adapters for the dealer inventory crawler.

The crawl core only needs raw page HTML for one URL per call. A failed or
timed-out fetch is reported as an unsuccessful FetchResult, never raised,
so the orchestrator records it as the run's error.
"""
from dataclasses import dataclass
from typing import Optional, Protocol

import httpx

from dealer_crawl.config import config
from dealer_crawl.utils.logger import LayerLogger


@dataclass
class FetchResult:
    """Outcome of fetching one page."""
    success: bool
    html: Optional[str] = None
    error: Optional[str] = None
    status_code: Optional[int] = None


class PageFetcher(Protocol):
    async def fetch(self, url: str) -> FetchResult: ...


class FirecrawlFetcher:
    """
    Managed scrape service adapter.

    Requests rendered HTML and waits for client-side inventory widgets.
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        api_url: Optional[str] = None,
        timeout: Optional[int] = None,
        wait_ms: Optional[int] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_key = api_key or config.FIRECRAWL_API_KEY
        self.api_url = api_url or config.FIRECRAWL_API_URL
        self.timeout = timeout or config.REQUEST_TIMEOUT
        self.wait_ms = config.FIRECRAWL_WAIT_MS if wait_ms is None else wait_ms
        self.transport = transport
        self.logger = LayerLogger("fetcher.firecrawl")

    def is_configured(self) -> bool:
        return bool(self.api_key)

    async def fetch(self, url: str) -> FetchResult:
        if not self.is_configured():
            self.logger.log_error("FIRECRAWL_API_KEY not configured", error_type="config_error", url=url)
            return FetchResult(success=False, error="FIRECRAWL_API_KEY not configured")

        self.logger.log_action("fetch_page", "started", url=url)

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                response = await client.post(
                    self.api_url,
                    headers={
                        "Authorization": f"Bearer {self.api_key}",
                        "Content-Type": "application/json",
                    },
                    json={
                        "url": url,
                        "formats": ["html"],
                        "onlyMainContent": False,
                        "waitFor": self.wait_ms,
                    },
                )
        except httpx.TimeoutException as e:
            self.logger.log_fetch(url=url, status_code=None, result="timeout", error=str(e))
            return FetchResult(success=False, error=f"timeout: {e}")
        except httpx.HTTPError as e:
            self.logger.log_fetch(url=url, status_code=None, result="transport_error", error=str(e))
            return FetchResult(success=False, error=f"transport_error: {e}")

        if response.status_code >= 400:
            error = f"HTTP {response.status_code}: {response.text[:200]}"
            self.logger.log_fetch(url=url, status_code=response.status_code, result="http_error")
            return FetchResult(success=False, error=error, status_code=response.status_code)

        try:
            payload = response.json()
        except ValueError:
            self.logger.log_fetch(url=url, status_code=response.status_code, result="invalid_json")
            return FetchResult(success=False, error="invalid JSON from scrape service", status_code=response.status_code)

        data = payload.get("data") or {}
        html = data.get("html") or payload.get("html")
        if not payload.get("success", True) or not html:
            error = payload.get("error") or "no html returned"
            self.logger.log_fetch(url=url, status_code=response.status_code, result="empty")
            return FetchResult(success=False, error=error, status_code=response.status_code)

        self.logger.log_fetch(
            url=url,
            status_code=response.status_code,
            result="ok",
            content_length=len(html),
        )
        return FetchResult(success=True, html=html, status_code=response.status_code)


class DirectFetcher:
    """Plain GET with browser-like headers, for sites that do not need rendering."""

    def __init__(
        self,
        timeout: Optional[int] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.timeout = timeout or config.REQUEST_TIMEOUT
        self.transport = transport
        self.logger = LayerLogger("fetcher.direct")

    def _get_headers(self) -> dict:
        """Get request headers mimicking a browser."""
        return {
            "User-Agent": "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36",
            "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,image/webp,*/*;q=0.8",
            "Accept-Language": "en-AU,en;q=0.5",
        }

    async def fetch(self, url: str) -> FetchResult:
        self.logger.log_action("fetch_page", "started", url=url)

        try:
            async with httpx.AsyncClient(
                timeout=self.timeout,
                follow_redirects=True,
                transport=self.transport,
            ) as client:
                response = await client.get(url, headers=self._get_headers())
        except httpx.TimeoutException as e:
            self.logger.log_fetch(url=url, status_code=None, result="timeout", error=str(e))
            return FetchResult(success=False, error=f"timeout: {e}")
        except httpx.HTTPError as e:
            self.logger.log_fetch(url=url, status_code=None, result="transport_error", error=str(e))
            return FetchResult(success=False, error=f"transport_error: {e}")

        if response.status_code >= 400:
            self.logger.log_fetch(url=url, status_code=response.status_code, result="http_error")
            return FetchResult(
                success=False,
                error=f"http_{response.status_code}",
                status_code=response.status_code,
            )

        html = response.text
        self.logger.log_fetch(
            url=url,
            status_code=response.status_code,
            result="ok",
            content_length=len(html),
        )
        return FetchResult(success=True, html=html, status_code=response.status_code)


def build_fetcher(mode: Optional[str] = None) -> PageFetcher:
    """Create the fetcher selected by FETCH_MODE."""
    mode = (mode or config.FETCH_MODE).lower()
    if mode == "direct":
        return DirectFetcher()
    if mode == "firecrawl":
        return FirecrawlFetcher()
    raise ValueError(f"Unknown FETCH_MODE: {mode}")
