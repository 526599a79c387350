"""
Site Analyzer - run entrypoint and control surface for one analysis.

Flow:
1. analyze_site()   → validates the start URL, builds a fresh CrawlScheduler
2. scheduler.run()  → robots.txt, sitemaps, prioritized crawl
3. scoring          → IssueScoringEngine over every PageAnalysis
4. result           → AnalysisResult with crawl stats and technical insights

Error handling:
- InvalidStartURLError aborts before any fetch
- stop() ends the crawl early; CrawlStopped is re-raised with `.result`
  holding the partial report (scored over the pages collected so far)
"""

from __future__ import annotations

from datetime import datetime, timezone

import structlog

from sitescan.core.exceptions import CrawlStopped
from sitescan.core.urls import URLNormalizer
from sitescan.engines.base import (
    AnalysisResult,
    CrawlOptions,
    CrawlStats,
    PageAnalysis,
    ProgressPhase,
    ProgressSnapshot,
    RunState,
)
from sitescan.engines.crawler.engine import CrawlScheduler
from sitescan.engines.crawler.fetcher import Fetcher, HttpFetcher
from sitescan.engines.crawler.progress import ProgressCallback
from sitescan.engines.markup.engine import MarkupAnalyzer
from sitescan.engines.scoring.engine import IssueScoringEngine

logger = structlog.get_logger(__name__)


def build_crawl_stats(scheduler: CrawlScheduler) -> CrawlStats:
    pages = scheduler.pages
    successful = [page for page in pages if page.is_success]
    count = len(successful)

    def average(values: list[float]) -> float:
        return round(sum(values) / count, 3) if count else 0.0

    return CrawlStats(
        total_pages=len(pages),
        crawled_pages=count,
        error_pages=len(pages) - count,
        unique_urls=len(scheduler.visited),
        discovered_urls=scheduler.frontier.discovered_count,
        duplicates_found=scheduler.metrics.duplicates,
        avg_load_time=average([p.load_time for p in successful]),
        avg_page_size=average([float(p.page_size) for p in successful]),
        avg_word_count=average([float(p.word_count) for p in successful]),
        bytes_processed=scheduler.metrics.bytes_processed,
        network_requests=scheduler.metrics.network_requests,
    )


class SiteAnalyzer:
    """
    Runs analyses one at a time. pause/resume/stop act on the run in progress
    and return whether the call took effect.
    """

    def __init__(
        self,
        fetcher: Fetcher | None = None,
        markup_analyzer: MarkupAnalyzer | None = None,
        scoring_engine: IssueScoringEngine | None = None,
    ):
        self.fetcher = fetcher
        self.markup_analyzer = markup_analyzer or MarkupAnalyzer()
        self.scoring_engine = scoring_engine or IssueScoringEngine()
        self._scheduler: CrawlScheduler | None = None

    # ── Control surface ──────────────────────────

    @property
    def state(self) -> RunState:
        return self._scheduler.state if self._scheduler else RunState.IDLE

    @property
    def progress(self) -> ProgressSnapshot | None:
        if self._scheduler is None:
            return None
        return self._scheduler.reporter.latest or self._scheduler.snapshot()

    def pause(self) -> bool:
        return self._scheduler.pause() if self._scheduler else False

    def resume(self) -> bool:
        return self._scheduler.resume() if self._scheduler else False

    def stop(self) -> bool:
        return self._scheduler.stop() if self._scheduler else False

    # ── Run ──────────────────────────────────────

    async def analyze_site(
        self,
        url: str,
        options: CrawlOptions | None = None,
        on_progress: ProgressCallback | None = None,
    ) -> AnalysisResult:
        start_url = URLNormalizer.normalize_start_url(url)
        options = options or CrawlOptions()

        if self.fetcher is not None:
            return await self._run(start_url, options, on_progress, self.fetcher)

        async with HttpFetcher() as fetcher:
            return await self._run(start_url, options, on_progress, fetcher)

    async def _run(
        self,
        start_url: str,
        options: CrawlOptions,
        on_progress: ProgressCallback | None,
        fetcher: Fetcher,
    ) -> AnalysisResult:
        scheduler = CrawlScheduler(
            fetcher,
            options,
            analyzer=self.markup_analyzer,
            on_progress=on_progress,
        )
        self._scheduler = scheduler
        started = datetime.now(timezone.utc)

        try:
            pages = await scheduler.run(start_url)
        except CrawlStopped as stopped:
            stopped.result = self._build_result(scheduler, stopped.pages, started, RunState.STOPPED)
            logger.info(
                "Analysis stopped",
                url=start_url,
                pages=len(stopped.pages),
                overall=stopped.result.overall_score,
            )
            raise

        scheduler.transition(RunState.SCORING)
        scheduler.publish(ProgressPhase.ANALYZING)
        try:
            result = self._build_result(scheduler, pages, started, RunState.COMPLETE)
        except Exception:
            scheduler.transition(RunState.FAILED)
            logger.error("Scoring failed", url=start_url, exc_info=True)
            raise

        scheduler.transition(RunState.COMPLETE)
        scheduler.publish(ProgressPhase.COMPLETE)
        logger.info(
            "Analysis complete",
            url=start_url,
            pages=len(pages),
            overall=result.overall_score,
            issues=len(result.issues),
            duration_s=result.crawl_duration_seconds,
        )
        return result

    def _build_result(
        self,
        scheduler: CrawlScheduler,
        pages: list[PageAnalysis],
        started: datetime,
        state: RunState,
    ) -> AnalysisResult:
        start_url = scheduler.start_url or ""
        outcome = self.scoring_engine.score(
            pages,
            start_url=start_url,
            robots_found=scheduler.robots.found,
            sitemap_found=scheduler.sitemaps.found,
            sitemap_count=len(scheduler.sitemaps.sitemap_sources),
            robots_txt_size=scheduler.robots.size,
        )
        return AnalysisResult(
            url=start_url,
            state=state,
            overall_score=outcome.overall_score,
            scores=outcome.scores,
            issues=outcome.issues,
            pages=pages,
            crawl_stats=build_crawl_stats(scheduler),
            technical_insights=outcome.technical_insights,
            scan_time=started,
            robots_txt=scheduler.robots.text,
            sitemap_urls=list(scheduler.sitemaps.sitemap_sources),
            error_log=list(scheduler.error_log),
            crawl_duration_seconds=round((datetime.now(timezone.utc) - started).total_seconds(), 3),
        )


async def analyze_site(
    url: str,
    options: CrawlOptions | None = None,
    on_progress: ProgressCallback | None = None,
    *,
    fetcher: Fetcher | None = None,
) -> AnalysisResult:
    """Run one analysis with a throwaway SiteAnalyzer."""
    return await SiteAnalyzer(fetcher=fetcher).analyze_site(url, options, on_progress)
