"""
Fetch capability.

The crawler only depends on the Fetcher protocol: one call, one outcome.
HttpFetcher is the default transport; it can try several provider endpoints
(a direct request and/or relay URL templates) before giving up.
"""

from __future__ import annotations

import time
from typing import Protocol, runtime_checkable
from urllib.parse import quote

import httpx
import structlog
from pydantic import BaseModel

from sitescan.core.config import get_settings

logger = structlog.get_logger(__name__)


class FetchResult(BaseModel):
    content: str
    status_code: int
    elapsed_ms: float
    final_url: str | None = None
    content_type: str = ""


class FetchError(Exception):
    """Every provider endpoint failed for a URL."""

    def __init__(self, url: str, message: str):
        self.url = url
        self.message = message
        super().__init__(f"{url}: {message}")


def describe_fetch_failure(exc: Exception) -> str:
    """Short reason for a failed fetch, whatever the Fetcher raised."""
    if isinstance(exc, FetchError):
        return exc.message
    return str(exc) or exc.__class__.__name__


@runtime_checkable
class Fetcher(Protocol):
    async def fetch(self, url: str) -> FetchResult:
        """Return page content or raise FetchError."""
        ...


class HttpFetcher:
    """
    httpx-based fetcher.

    Endpoints are templates where "{url}" is the target URL; "{url}" alone is
    a direct request, anything else is treated as a relay and receives the
    URL percent-encoded. A relay answering with a non-2xx status, or any
    endpoint answering 5xx while more endpoints remain, counts as a failed
    attempt and the next endpoint is tried.
    """

    def __init__(
        self,
        client: httpx.AsyncClient | None = None,
        endpoints: list[str] | None = None,
        timeout: float | None = None,
    ):
        settings = get_settings()
        self.endpoints = endpoints or list(settings.CRAWLER_FETCH_ENDPOINTS)
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            headers={
                "User-Agent": settings.CRAWLER_USER_AGENT,
                "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
                "Accept-Language": "en-US,en;q=0.9",
            },
            follow_redirects=True,
            timeout=timeout or settings.CRAWLER_REQUEST_TIMEOUT,
            verify=settings.CRAWLER_VERIFY_SSL,
        )

    async def __aenter__(self) -> HttpFetcher:
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    @staticmethod
    def endpoint_url(template: str, url: str) -> str:
        if template == "{url}":
            return url
        return template.replace("{url}", quote(url, safe=""))

    async def fetch(self, url: str) -> FetchResult:
        last_error = "no endpoints configured"
        for index, template in enumerate(self.endpoints):
            is_direct = template == "{url}"
            is_last = index == len(self.endpoints) - 1
            request_url = self.endpoint_url(template, url)

            start = time.perf_counter()
            try:
                response = await self._client.get(request_url)
            except httpx.TimeoutException:
                last_error = "request timed out"
                logger.debug("Fetch endpoint timed out", url=url, endpoint=template)
                continue
            except httpx.HTTPError as exc:
                last_error = str(exc) or exc.__class__.__name__
                logger.debug("Fetch endpoint failed", url=url, endpoint=template, error=last_error)
                continue
            elapsed = (time.perf_counter() - start) * 1000

            if not is_direct and not response.is_success:
                last_error = f"relay returned HTTP {response.status_code}"
                continue
            if response.status_code >= 500 and not is_last:
                last_error = f"HTTP {response.status_code}"
                continue

            return FetchResult(
                content=response.text,
                status_code=response.status_code,
                elapsed_ms=elapsed,
                final_url=str(response.url) if is_direct else url,
                content_type=response.headers.get("content-type", ""),
            )

        raise FetchError(url, last_error)
