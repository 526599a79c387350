"""Tests for the in-memory analysis registry."""

import asyncio

import pytest

from sitescan.core.exceptions import AnalysisNotFound
from sitescan.engines.base import CrawlOptions, RunState
from sitescan.services.registry import AnalysisRegistry
from tests.fakes import FakeFetcher, html_page

NO_DELAY = CrawlOptions(crawl_delay_ms=0)


def one_page_site() -> FakeFetcher:
    return FakeFetcher({"https://example.com/": html_page()})


class TestRetention:

    async def test_oldest_finished_run_is_evicted(self):
        registry = AnalysisRegistry(fetcher_factory=one_page_site, max_retained_runs=1)

        first = registry.start("https://example.com", NO_DELAY)
        await first.task
        second = registry.start("https://example.com", NO_DELAY)
        await second.task

        with pytest.raises(AnalysisNotFound):
            registry.get(first.id)
        assert registry.get(second.id).state == RunState.COMPLETE
        assert [run.id for run in registry.runs()] == [second.id]

    async def test_finished_runs_within_limit_are_kept(self):
        registry = AnalysisRegistry(fetcher_factory=one_page_site, max_retained_runs=3)

        runs = [registry.start("https://example.com", NO_DELAY) for _ in range(2)]
        for run in runs:
            await run.task

        assert all(registry.get(run.id).result is not None for run in runs)
        assert all(run.finished_at is not None for run in runs)

    async def test_active_runs_are_never_evicted(self):
        gate = asyncio.Event()

        class GatedFetcher(FakeFetcher):
            async def fetch(self, url):
                await gate.wait()
                return await super().fetch(url)

        fetchers = iter([GatedFetcher({"https://example.com/": html_page()}), one_page_site(), one_page_site()])
        registry = AnalysisRegistry(fetcher_factory=lambda: next(fetchers), max_active_runs=3, max_retained_runs=1)

        running = registry.start("https://example.com", NO_DELAY)
        done = []
        for _ in range(2):
            done.append(registry.start("https://example.com", NO_DELAY))
            await done[-1].task

        assert registry.get(running.id) is running
        assert running.is_active
        assert registry.get(done[1].id) is done[1]
        with pytest.raises(AnalysisNotFound):
            registry.get(done[0].id)

        gate.set()
        await running.task
        with pytest.raises(AnalysisNotFound):
            registry.get(done[1].id)
        assert registry.get(running.id).state == RunState.COMPLETE
