"""
In-memory analysis registry.

Each submitted analysis runs as an asyncio task inside the API process and is
kept here until the process exits. Nothing is persisted.
"""

from __future__ import annotations

import asyncio
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from functools import lru_cache
from typing import Callable

import structlog

from sitescan.core.config import get_settings
from sitescan.core.exceptions import AnalysisNotFound, CrawlStopped, TooManyActiveRuns
from sitescan.core.urls import URLNormalizer
from sitescan.engines.base import AnalysisResult, CrawlOptions, ProgressSnapshot, RunState
from sitescan.engines.crawler.fetcher import Fetcher
from sitescan.services.analyzer import SiteAnalyzer

logger = structlog.get_logger(__name__)

FetcherFactory = Callable[[], Fetcher]


@dataclass
class AnalysisRun:
    id: str
    url: str
    options: CrawlOptions
    analyzer: SiteAnalyzer
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    task: asyncio.Task | None = None
    finished_at: datetime | None = None
    result: AnalysisResult | None = None
    error: str | None = None

    @property
    def state(self) -> RunState:
        if self.error is not None:
            return RunState.FAILED
        return self.analyzer.state

    @property
    def progress(self) -> ProgressSnapshot | None:
        return self.analyzer.progress

    @property
    def is_active(self) -> bool:
        return self.task is not None and not self.task.done()


class AnalysisRegistry:

    def __init__(
        self,
        fetcher_factory: FetcherFactory | None = None,
        max_active_runs: int | None = None,
        max_retained_runs: int | None = None,
    ):
        settings = get_settings()
        self.fetcher_factory = fetcher_factory
        self.max_active_runs = max_active_runs or settings.ANALYSIS_MAX_ACTIVE_RUNS
        self.max_retained_runs = max_retained_runs or settings.ANALYSIS_MAX_RETAINED_RUNS
        self._runs: dict[str, AnalysisRun] = {}

    def start(self, url: str, options: CrawlOptions) -> AnalysisRun:
        """Validate the start URL and launch the analysis as a background task."""
        start_url = URLNormalizer.normalize_start_url(url)
        active = sum(1 for run in self._runs.values() if run.is_active)
        if active >= self.max_active_runs:
            raise TooManyActiveRuns(self.max_active_runs)

        fetcher = self.fetcher_factory() if self.fetcher_factory else None
        run = AnalysisRun(
            id=str(uuid.uuid4()),
            url=start_url,
            options=options,
            analyzer=SiteAnalyzer(fetcher=fetcher),
        )
        self._runs[run.id] = run
        run.task = asyncio.create_task(self._execute(run), name=f"analysis-{run.id}")
        logger.info("Analysis created", analysis_id=run.id, url=start_url)
        return run

    async def _execute(self, run: AnalysisRun) -> None:
        # Bound in the task's own context copy
        structlog.contextvars.bind_contextvars(analysis_id=run.id)
        try:
            run.result = await run.analyzer.analyze_site(run.url, run.options)
        except CrawlStopped as e:
            run.result = e.result
        except Exception as e:
            run.error = str(e) or e.__class__.__name__
            logger.error("Analysis failed", url=run.url, error=run.error, exc_info=True)
        finally:
            run.finished_at = datetime.now(timezone.utc)
            self._evict_finished()

    def _evict_finished(self) -> None:
        """Keep at most max_retained_runs finished runs, dropping the oldest."""
        finished = sorted(
            (run for run in self._runs.values() if run.finished_at is not None),
            key=lambda run: run.finished_at,
        )
        excess = len(finished) - self.max_retained_runs
        for run in finished[:max(excess, 0)]:
            del self._runs[run.id]
            logger.debug("Finished analysis evicted", analysis_id=run.id, url=run.url)

    def get(self, analysis_id: str) -> AnalysisRun:
        run = self._runs.get(analysis_id)
        if run is None:
            raise AnalysisNotFound(analysis_id)
        return run

    def runs(self) -> list[AnalysisRun]:
        return sorted(self._runs.values(), key=lambda run: run.created_at, reverse=True)

    async def stop_all(self) -> None:
        """Stop every active run and wait for the tasks to settle."""
        tasks = []
        for run in self._runs.values():
            if run.is_active:
                if not run.analyzer.stop():
                    run.task.cancel()
                tasks.append(run.task)
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
            logger.info("Active analyses stopped", count=len(tasks))


@lru_cache
def get_registry() -> AnalysisRegistry:
    return AnalysisRegistry()
