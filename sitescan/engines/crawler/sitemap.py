"""
Sitemap discovery and recursive expansion.

Candidates (robots-declared first, then conventional paths) are processed
from a growing list: sitemap indexes append their children, and a URL is
never processed twice, so index cycles terminate on their own.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable, Iterable

import structlog
from bs4 import BeautifulSoup

from sitescan.core.urls import URLNormalizer
from sitescan.engines.crawler.fetcher import Fetcher, describe_fetch_failure

logger = structlog.get_logger(__name__)

SITEMAP_CANDIDATE_PATHS = (
    "/sitemap.xml",
    "/sitemap_index.xml",
    "/sitemap-index.xml",
    "/sitemaps.xml",
    "/wp-sitemap.xml",
    "/sitemap1.xml",
    "/post-sitemap.xml",
    "/page-sitemap.xml",
    "/news-sitemap.xml",
)


@dataclass
class ParsedSitemap:
    child_sitemaps: list[str] = field(default_factory=list)
    page_urls: list[str] = field(default_factory=list)

    @property
    def is_index(self) -> bool:
        return bool(self.child_sitemaps)


@dataclass
class SitemapResolution:
    page_urls: list[str] = field(default_factory=list)
    sitemap_sources: list[str] = field(default_factory=list)   # sitemaps that yielded entries
    processed: list[str] = field(default_factory=list)
    bytes_processed: int = 0
    requests: int = 0

    @property
    def found(self) -> bool:
        return bool(self.sitemap_sources)


def _is_http_url(value: str) -> bool:
    return value.startswith(("http://", "https://")) and not any(ch.isspace() for ch in value)


def parse_sitemap(content: str) -> ParsedSitemap:
    """Classify a sitemap document and pull out its <loc> entries."""
    text = content.lstrip("\ufeff \t\r\n")
    if not text:
        return ParsedSitemap()

    if not text.startswith("<"):
        # Plain-text sitemap: one absolute URL per line
        lines = [line.strip() for line in text.splitlines()]
        return ParsedSitemap(page_urls=[line for line in lines if _is_http_url(line)])

    soup = BeautifulSoup(text, "xml")

    children = []
    for entry in soup.find_all("sitemap"):
        loc = entry.find("loc")
        if loc and loc.get_text(strip=True):
            children.append(loc.get_text(strip=True))
    if children:
        return ParsedSitemap(child_sitemaps=children)

    pages = []
    for entry in soup.find_all("url"):
        loc = entry.find("loc")
        if loc and loc.get_text(strip=True):
            pages.append(loc.get_text(strip=True))
    return ParsedSitemap(page_urls=pages)


class SitemapResolver:
    """Discover and flatten sitemaps into a list of page URLs."""

    def __init__(
        self,
        fetcher: Fetcher,
        *,
        follow_external: bool = False,
        max_urls: int | None = None,
    ):
        self.fetcher = fetcher
        self.follow_external = follow_external
        self.max_urls = max_urls

    @staticmethod
    def candidates(origin: str, declared: Iterable[str] = ()) -> list[str]:
        base = origin.rstrip("/")
        ordered: list[str] = []
        for url in [*declared, *(f"{base}{path}" for path in SITEMAP_CANDIDATE_PATHS)]:
            if url not in ordered:
                ordered.append(url)
        return ordered

    async def resolve(
        self,
        origin: str,
        declared: Iterable[str] = (),
        *,
        is_stopped: Callable[[], bool] = lambda: False,
    ) -> SitemapResolution:
        root_host = URLNormalizer.host_of(origin)
        resolution = SitemapResolution()
        candidates = self.candidates(origin, declared)
        processed: set[str] = set()
        seen_pages: set[str] = set()

        index = 0
        while index < len(candidates):
            sitemap_url = candidates[index]
            index += 1

            if is_stopped() or self._budget_reached(resolution):
                break
            if sitemap_url in processed:
                continue
            processed.add(sitemap_url)
            resolution.processed.append(sitemap_url)

            content = await self._fetch(sitemap_url, resolution)
            if content is None:
                continue

            parsed = parse_sitemap(content)
            if parsed.is_index:
                for child in parsed.child_sitemaps:
                    if _is_http_url(child) and child not in processed and child not in candidates:
                        candidates.append(child)
                logger.debug("Sitemap index expanded", url=sitemap_url, children=len(parsed.child_sitemaps))
                continue

            yielded = 0
            for page_url in parsed.page_urls:
                if self._budget_reached(resolution):
                    break
                if not _is_http_url(page_url) or page_url in seen_pages:
                    continue
                if not self.follow_external and not URLNormalizer.is_same_host(page_url, root_host):
                    continue
                seen_pages.add(page_url)
                resolution.page_urls.append(page_url)
                yielded += 1

            if yielded:
                resolution.sitemap_sources.append(sitemap_url)
                logger.info("Sitemap parsed", url=sitemap_url, urls=yielded)

        return resolution

    def _budget_reached(self, resolution: SitemapResolution) -> bool:
        return self.max_urls is not None and len(resolution.page_urls) >= self.max_urls

    async def _fetch(self, url: str, resolution: SitemapResolution) -> str | None:
        resolution.requests += 1
        try:
            result = await self.fetcher.fetch(url)
        except Exception as e:
            logger.debug("Sitemap fetch failed", url=url, error=describe_fetch_failure(e))
            return None
        if result.status_code != 200:
            return None
        resolution.bytes_processed += len(result.content)
        return result.content
