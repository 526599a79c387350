"""Tests for crawl metrics and progress snapshot derivation."""

import pytest

from sitescan.engines.base import ProgressPhase, RunState
from sitescan.engines.crawler.progress import CrawlMetrics, ProgressReporter, build_snapshot


def metrics_after(elapsed: float, **fields) -> CrawlMetrics:
    metrics = CrawlMetrics(**fields)
    metrics.started_at -= elapsed
    return metrics


class TestBuildSnapshot:

    def test_defaults_before_any_page(self):
        snapshot = build_snapshot(CrawlMetrics(), phase=ProgressPhase.INITIALIZING, state=RunState.INITIALIZING)

        assert snapshot.success_rate == 100.0
        assert snapshot.estimated_time_remaining is None
        assert snapshot.avg_response_time_ms == 0.0
        assert snapshot.is_active

    def test_derived_rates(self):
        metrics = metrics_after(10.0)
        for success, ms in [(True, 100.0), (True, 300.0), (False, 200.0), (True, 400.0)]:
            metrics.record_page(success=success, elapsed_ms=ms, size=1000, depth=1)

        snapshot = build_snapshot(
            metrics,
            phase=ProgressPhase.CRAWLING,
            state=RunState.CRAWLING,
            discovered=40,
            queue_size=30,
            page_budget=10,
        )

        assert snapshot.pages_crawled == 4
        assert snapshot.error_count == 1
        assert snapshot.success_rate == 75.0
        assert snapshot.avg_response_time_ms == 250.0
        assert snapshot.crawl_speed == pytest.approx(0.4, rel=0.05)
        assert snapshot.discovery_rate == pytest.approx(4.0, rel=0.05)
        # 6 pages left in the budget at ~0.4 pages/s
        assert snapshot.estimated_time_remaining == pytest.approx(15.0, rel=0.05)
        assert snapshot.memory_estimate_mb == pytest.approx(4 * 0.1 + 40 * 0.05)
        assert snapshot.bytes_processed == 4000
        assert snapshot.max_depth_seen == 1

    def test_terminal_state_is_inactive(self):
        snapshot = build_snapshot(CrawlMetrics(), phase=ProgressPhase.COMPLETE, state=RunState.STOPPED)
        assert not snapshot.is_active


class TestProgressReporter:

    def test_keeps_latest_and_swallows_consumer_errors(self):
        def broken(snapshot):
            raise ValueError("nope")

        reporter = ProgressReporter(broken)
        snapshot = build_snapshot(CrawlMetrics(), phase=ProgressPhase.CRAWLING, state=RunState.CRAWLING)

        reporter.publish(snapshot)

        assert reporter.latest is snapshot

    def test_snapshot_is_frozen(self):
        snapshot = build_snapshot(CrawlMetrics(), phase=ProgressPhase.CRAWLING, state=RunState.CRAWLING)
        with pytest.raises(Exception):
            snapshot.pages_crawled = 3
