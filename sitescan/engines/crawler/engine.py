"""
Crawl Scheduler - single-worker, priority-ordered site crawler.

Flow:
1. Seed the frontier with the start URL (priority 10, depth 0)
2. Read robots.txt for Sitemap directives, resolve sitemaps, seed their entries
3. Loop: pop highest priority → skip duplicates → fetch → analyze → discover links
4. Re-sort the unprocessed tail, wait out the politeness delay, repeat
5. Stop when the frontier is empty, the page budget is spent or stop() is called

Pause gates new dequeues through an asyncio.Event; stop is observed at the top
of every iteration, during the pause wait and during the politeness delay.
Per-URL failures become degraded PageAnalysis records, never exceptions.
"""

from __future__ import annotations

import asyncio

import structlog

from sitescan.core.exceptions import (
    CrawlStopped,
    InvalidStartURLError,
    InvalidStateTransition,
)
from sitescan.core.urls import URLNormalizer
from sitescan.engines.base import (
    CrawlOptions,
    DiscoveredURL,
    DiscoverySource,
    ErrorLogEntry,
    PageAnalysis,
    ProgressPhase,
    ProgressSnapshot,
    RunState,
)
from sitescan.engines.crawler.fetcher import Fetcher, describe_fetch_failure
from sitescan.engines.crawler.frontier import CrawlFrontier
from sitescan.engines.crawler.priority import START_PRIORITY, link_priority, sitemap_priority
from sitescan.engines.crawler.progress import (
    CrawlMetrics,
    ProgressCallback,
    ProgressReporter,
    build_snapshot,
)
from sitescan.engines.crawler.robots import RobotsPolicy, RobotsPolicyReader
from sitescan.engines.crawler.sitemap import SitemapResolution, SitemapResolver
from sitescan.engines.markup.engine import MarkupAnalyzer

logger = structlog.get_logger(__name__)


ALLOWED_TRANSITIONS: dict[RunState, frozenset[RunState]] = {
    RunState.IDLE: frozenset({RunState.INITIALIZING, RunState.STOPPED, RunState.FAILED}),
    RunState.INITIALIZING: frozenset({
        RunState.DISCOVERING_ROBOTS,
        RunState.RESOLVING_SITEMAPS,
        RunState.STOPPED,
        RunState.FAILED,
    }),
    RunState.DISCOVERING_ROBOTS: frozenset({RunState.RESOLVING_SITEMAPS, RunState.STOPPED, RunState.FAILED}),
    RunState.RESOLVING_SITEMAPS: frozenset({RunState.CRAWLING, RunState.STOPPED, RunState.FAILED}),
    RunState.CRAWLING: frozenset({RunState.SCORING, RunState.STOPPED, RunState.FAILED}),
    RunState.SCORING: frozenset({RunState.COMPLETE, RunState.FAILED}),
    RunState.COMPLETE: frozenset(),
    RunState.FAILED: frozenset(),
    RunState.STOPPED: frozenset(),
}

PAUSABLE_STATES = frozenset({
    RunState.INITIALIZING,
    RunState.DISCOVERING_ROBOTS,
    RunState.RESOLVING_SITEMAPS,
    RunState.CRAWLING,
})


class CrawlScheduler:
    """
    Owns all state of one crawl: frontier, visited set, results, run state.
    A scheduler runs once; create a new one per analysis.
    """

    def __init__(
        self,
        fetcher: Fetcher,
        options: CrawlOptions | None = None,
        analyzer: MarkupAnalyzer | None = None,
        on_progress: ProgressCallback | None = None,
    ):
        self.fetcher = fetcher
        self.options = options or CrawlOptions()
        self.analyzer = analyzer or MarkupAnalyzer()
        self.reporter = ProgressReporter(on_progress)

        self.state = RunState.IDLE
        self.frontier = CrawlFrontier()
        self.visited: set[str] = set()
        self.pages: list[PageAnalysis] = []
        self.error_log: list[ErrorLogEntry] = []
        self.metrics = CrawlMetrics()
        self.robots = RobotsPolicy()
        self.sitemaps = SitemapResolution()
        self.start_url: str | None = None
        self.current_url = ""

        self._root_host = ""
        self._resume_event = asyncio.Event()
        self._resume_event.set()
        self._stop_event = asyncio.Event()

    # ─────────────────────────────────────────
    # State machine & control
    # ─────────────────────────────────────────

    def transition(self, target: RunState) -> None:
        if target not in ALLOWED_TRANSITIONS[self.state]:
            raise InvalidStateTransition(self.state.value, target.value)
        logger.debug("Run state changed", previous=self.state.value, state=target.value)
        self.state = target

    @property
    def is_paused(self) -> bool:
        return not self._resume_event.is_set()

    @property
    def stop_requested(self) -> bool:
        return self._stop_event.is_set()

    def pause(self) -> bool:
        if self.state not in PAUSABLE_STATES or self.is_paused or self.stop_requested:
            return False
        self._resume_event.clear()
        logger.info("Crawl paused", url=self.start_url, pages=self.metrics.pages_analyzed)
        self.publish(self._phase())
        return True

    def resume(self) -> bool:
        if not self.is_paused or self.state.is_terminal:
            return False
        self._resume_event.set()
        logger.info("Crawl resumed", url=self.start_url)
        self.publish(self._phase())
        return True

    def stop(self) -> bool:
        if self.state.is_terminal or self.state == RunState.SCORING or self.stop_requested:
            return False
        self._stop_event.set()
        self._resume_event.set()  # wake a paused loop so it can observe the stop
        if self.state == RunState.IDLE:
            self.transition(RunState.STOPPED)
        logger.info("Crawl stop requested", url=self.start_url, state=self.state.value)
        return True

    # ─────────────────────────────────────────
    # Progress
    # ─────────────────────────────────────────

    def snapshot(self, phase: ProgressPhase | None = None) -> ProgressSnapshot:
        return build_snapshot(
            self.metrics,
            phase=phase or self._phase(),
            state=self.state,
            is_paused=self.is_paused,
            current_url=self.current_url,
            discovered=self.frontier.discovered_count,
            queue_size=len(self.frontier),
            page_budget=self.options.max_pages,
            max_depth=self.options.max_depth,
        )

    def publish(self, phase: ProgressPhase) -> ProgressSnapshot:
        snapshot = self.snapshot(phase)
        self.reporter.publish(snapshot)
        return snapshot

    def _phase(self) -> ProgressPhase:
        return {
            RunState.IDLE: ProgressPhase.INITIALIZING,
            RunState.INITIALIZING: ProgressPhase.INITIALIZING,
            RunState.DISCOVERING_ROBOTS: ProgressPhase.SITEMAP_DISCOVERY,
            RunState.RESOLVING_SITEMAPS: ProgressPhase.SITEMAP_DISCOVERY,
            RunState.CRAWLING: ProgressPhase.CRAWLING,
            RunState.SCORING: ProgressPhase.ANALYZING,
            RunState.COMPLETE: ProgressPhase.COMPLETE,
        }.get(self.state, ProgressPhase.COMPLETE)

    # ─────────────────────────────────────────
    # Run
    # ─────────────────────────────────────────

    async def run(self, start_url: str) -> list[PageAnalysis]:
        """
        Crawl from start_url and return every PageAnalysis collected.

        Raises InvalidStartURLError for a malformed start URL and CrawlStopped
        (carrying the pages collected so far) when stop() ends the run.
        On success the run is left in `crawling`; the caller moves it to
        `scoring`.
        """
        if self.state == RunState.STOPPED:
            raise CrawlStopped([])
        self.transition(RunState.INITIALIZING)
        self.metrics = CrawlMetrics()
        self.publish(ProgressPhase.INITIALIZING)

        try:
            self.start_url = URLNormalizer.normalize_start_url(start_url)
        except InvalidStartURLError:
            self.transition(RunState.FAILED)
            raise

        self._root_host = URLNormalizer.host_of(self.start_url)
        origin = URLNormalizer.origin_of(self.start_url)
        logger.info("Crawl started", url=self.start_url, options=self.options.model_dump())

        try:
            self.frontier.push(DiscoveredURL(
                url=self.start_url,
                depth=0,
                source=DiscoverySource.START,
                priority=START_PRIORITY,
            ))

            await self._seed_from_robots_and_sitemaps(origin)
            self._raise_if_stopped()

            self.transition(RunState.CRAWLING)
            self.frontier.resort()
            self.publish(ProgressPhase.CRAWLING)
            await self._crawl_loop()
            self._raise_if_stopped()
        except CrawlStopped:
            raise
        except Exception as e:
            logger.error("Crawl failed", url=self.start_url, error=str(e), exc_info=True)
            if not self.state.is_terminal:
                self.transition(RunState.FAILED)
            raise

        logger.info(
            "Crawl finished",
            url=self.start_url,
            pages=self.metrics.pages_analyzed,
            errors=self.metrics.errored,
            duplicates=self.metrics.duplicates,
            discovered=self.frontier.discovered_count,
            elapsed_s=round(self.metrics.elapsed_seconds, 2),
        )
        return self.pages

    async def _seed_from_robots_and_sitemaps(self, origin: str) -> None:
        declared: list[str] = []

        if self.options.respect_robots:
            self.transition(RunState.DISCOVERING_ROBOTS)
            self.publish(ProgressPhase.SITEMAP_DISCOVERY)
            reader = RobotsPolicyReader(self.fetcher)
            self.robots = await reader.read(origin)
            self.metrics.network_requests += reader.requests
            self.metrics.bytes_processed += reader.bytes_processed
            self.metrics.robots_found = self.robots.found
            declared = self.robots.sitemaps
            self._raise_if_stopped()

        self.transition(RunState.RESOLVING_SITEMAPS)
        self.publish(ProgressPhase.SITEMAP_DISCOVERY)
        resolver = SitemapResolver(
            self.fetcher,
            follow_external=self.options.follow_external_links,
            max_urls=self.options.sitemap_budget,
        )
        self.sitemaps = await resolver.resolve(origin, declared, is_stopped=lambda: self.stop_requested)
        self.metrics.network_requests += self.sitemaps.requests
        self.metrics.bytes_processed += self.sitemaps.bytes_processed
        self.metrics.sitemap_found = self.sitemaps.found
        self.metrics.sitemap_count = len(self.sitemaps.sitemap_sources)

        seeded = 0
        for index, entry in enumerate(self.sitemaps.page_urls):
            url = self._filter(entry, origin)
            if url is None:
                continue
            self.frontier.push(DiscoveredURL(
                url=url,
                depth=0,
                source=DiscoverySource.SITEMAP,
                priority=sitemap_priority(index),
            ))
            seeded += 1

        logger.info(
            "Frontier seeded",
            url=self.start_url,
            robots_txt=self.robots.found,
            sitemaps=self.metrics.sitemap_count,
            sitemap_urls=seeded,
        )
        self.publish(ProgressPhase.SITEMAP_DISCOVERY)

    async def _crawl_loop(self) -> None:
        while self.frontier and not self._budget_reached() and not self.stop_requested:
            if self.is_paused:
                await self._resume_event.wait()
                if self.stop_requested:
                    break

            item = self.frontier.pop()
            if item.url in self.visited:
                self.metrics.duplicates += 1
                continue

            self.visited.add(item.url)
            self.current_url = item.url
            page = await self._process(item)
            self.pages.append(page)

            if page.is_success and self._can_expand(item.depth) and not self._budget_reached():
                added = self._discover_links(page, item)
                if added:
                    logger.debug("Links discovered", url=item.url, added=added)

            self.frontier.resort()
            self.publish(ProgressPhase.CRAWLING)

            if self.frontier and not self._budget_reached():
                await self._politeness_delay()

    async def _process(self, item: DiscoveredURL) -> PageAnalysis:
        """Fetch and analyze one URL. Never raises for per-URL problems."""
        self.metrics.network_requests += 1
        try:
            result = await self.fetcher.fetch(item.url)
        except Exception as e:
            message = describe_fetch_failure(e)
            page = self.analyzer.failed(item.url, depth=item.depth)
            self._log_error(item.url, message, stage="fetch")
            self.metrics.record_page(success=False, elapsed_ms=0.0, size=0, depth=item.depth)
            return page

        size = len(result.content.encode("utf-8"))
        if result.status_code != 200:
            page = self.analyzer.failed(
                item.url,
                status_code=result.status_code,
                elapsed_ms=result.elapsed_ms,
                depth=item.depth,
            )
            self._log_error(item.url, page.error or f"HTTP {result.status_code} error", stage="fetch")
        else:
            try:
                page = self.analyzer.analyze(
                    result.content,
                    item.url,
                    result.elapsed_ms,
                    status_code=result.status_code,
                    depth=item.depth,
                    base_url=result.final_url,
                )
            except Exception as e:
                message = f"Failed to analyze page: {e}"
                page = self.analyzer.failed(
                    item.url,
                    status_code=result.status_code,
                    elapsed_ms=result.elapsed_ms,
                    depth=item.depth,
                    message=message,
                )
                self._log_error(item.url, message, stage="parse")

        self.metrics.record_page(
            success=page.is_success,
            elapsed_ms=result.elapsed_ms,
            size=size,
            depth=item.depth,
        )
        return page

    def _discover_links(self, page: PageAnalysis, parent: DiscoveredURL) -> int:
        added = 0
        for link in page.outbound_links:
            url = self._filter(link, page.url)
            if url is None:
                continue
            if self.frontier.discover(DiscoveredURL(
                url=url,
                depth=parent.depth + 1,
                source=DiscoverySource.INTERNAL_LINK,
                priority=link_priority(url),
                parent_url=parent.url,
            )):
                added += 1
        return added

    def _filter(self, href: str, base_url: str) -> str | None:
        return URLNormalizer.filter_link(
            href,
            base_url,
            self._root_host,
            include_images=self.options.include_images,
            follow_external=self.options.follow_external_links,
        )

    async def _politeness_delay(self) -> None:
        delay = self.options.crawl_delay_seconds
        if delay <= 0:
            return
        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout=delay)
        except asyncio.TimeoutError:
            pass

    # ─────────────────────────────────────────
    # Helpers
    # ─────────────────────────────────────────

    def _budget_reached(self) -> bool:
        budget = self.options.max_pages
        return budget is not None and self.metrics.pages_analyzed >= budget

    def _can_expand(self, depth: int) -> bool:
        max_depth = self.options.max_depth
        return max_depth is None or depth < max_depth

    def _log_error(self, url: str, message: str, stage: str) -> None:
        logger.warning("Page failed", url=url, error=message, stage=stage)
        self.error_log.append(ErrorLogEntry(url=url, message=message, stage=stage))

    def _raise_if_stopped(self) -> None:
        if not self.stop_requested:
            return
        if self.state != RunState.STOPPED:
            self.transition(RunState.STOPPED)
        self.current_url = ""
        self.publish(ProgressPhase.COMPLETE)
        logger.info("Crawl stopped", url=self.start_url, pages=len(self.pages))
        raise CrawlStopped(list(self.pages))
