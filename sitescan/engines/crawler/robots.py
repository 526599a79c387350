"""robots.txt reader. Only Sitemap directives are used; Disallow is not enforced."""

from __future__ import annotations

from dataclasses import dataclass, field

import structlog

from sitescan.engines.crawler.fetcher import Fetcher, describe_fetch_failure

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class RobotsPolicy:
    text: str = ""
    sitemaps: list[str] = field(default_factory=list)
    found: bool = False

    @property
    def size(self) -> int:
        return len(self.text.encode("utf-8"))


def parse_sitemap_directives(text: str) -> list[str]:
    """Sitemap URLs declared in robots.txt, in order, without repeats."""
    sitemaps: list[str] = []
    for line in text.splitlines():
        stripped = line.strip()
        if not stripped.lower().startswith("sitemap:"):
            continue
        value = stripped[len("sitemap:"):].split("#", 1)[0].strip()
        if value and value not in sitemaps:
            sitemaps.append(value)
    return sitemaps


class RobotsPolicyReader:

    def __init__(self, fetcher: Fetcher):
        self.fetcher = fetcher
        self.requests = 0
        self.bytes_processed = 0

    async def read(self, origin: str) -> RobotsPolicy:
        """Fetch {origin}/robots.txt once. Any failure means "no policy"."""
        robots_url = f"{origin.rstrip('/')}/robots.txt"
        self.requests += 1
        try:
            result = await self.fetcher.fetch(robots_url)
        except Exception as e:
            logger.warning("Could not fetch robots.txt", url=robots_url, error=describe_fetch_failure(e))
            return RobotsPolicy()

        if result.status_code != 200:
            logger.info("robots.txt not available", url=robots_url, status=result.status_code)
            return RobotsPolicy()

        self.bytes_processed += len(result.content)
        sitemaps = parse_sitemap_directives(result.content)
        logger.info("robots.txt parsed", url=robots_url, sitemaps=len(sitemaps))
        return RobotsPolicy(text=result.content, sitemaps=sitemaps, found=True)
