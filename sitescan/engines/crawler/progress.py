"""Crawl metrics and progress snapshots."""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Callable

import structlog

from sitescan.engines.base import ProgressPhase, ProgressSnapshot, RunState

logger = structlog.get_logger(__name__)

ProgressCallback = Callable[[ProgressSnapshot], None]

# Rough per-item footprint used for the memory estimate (MB)
MB_PER_PAGE = 0.1
MB_PER_DISCOVERED_URL = 0.05


@dataclass
class CrawlMetrics:
    """Mutable counters owned by the scheduler loop."""
    started_at: float = field(default_factory=time.monotonic)
    pages_analyzed: int = 0
    successful: int = 0
    errored: int = 0
    duplicates: int = 0
    response_times_ms: list[float] = field(default_factory=list)
    bytes_processed: int = 0
    network_requests: int = 0
    current_depth: int = 0
    max_depth_seen: int = 0
    robots_found: bool = False
    sitemap_found: bool = False
    sitemap_count: int = 0

    @property
    def elapsed_seconds(self) -> float:
        return max(time.monotonic() - self.started_at, 0.0)

    def record_page(self, *, success: bool, elapsed_ms: float, size: int, depth: int) -> None:
        self.pages_analyzed += 1
        if success:
            self.successful += 1
        else:
            self.errored += 1
        self.response_times_ms.append(elapsed_ms)
        self.bytes_processed += size
        self.current_depth = depth
        self.max_depth_seen = max(self.max_depth_seen, depth)


def build_snapshot(
    metrics: CrawlMetrics,
    *,
    phase: ProgressPhase,
    state: RunState,
    is_paused: bool = False,
    current_url: str = "",
    discovered: int = 0,
    queue_size: int = 0,
    page_budget: int | None = None,
    max_depth: int | None = None,
) -> ProgressSnapshot:
    elapsed = metrics.elapsed_seconds
    pages = metrics.pages_analyzed

    crawl_speed = pages / elapsed if elapsed > 0 else 0.0
    discovery_rate = discovered / elapsed if elapsed > 0 else 0.0

    attempts = metrics.successful + metrics.errored
    success_rate = metrics.successful / attempts * 100 if attempts else 100.0

    times = metrics.response_times_ms
    avg_response = sum(times) / len(times) if times else 0.0

    eta = None
    if pages and crawl_speed > 0:
        remaining = queue_size
        if page_budget is not None:
            remaining = min(remaining, max(page_budget - pages, 0))
        eta = remaining / crawl_speed

    return ProgressSnapshot(
        phase=phase,
        state=state,
        is_active=not state.is_terminal and state != RunState.IDLE,
        is_paused=is_paused,
        current_url=current_url,
        pages_found=discovered,
        pages_crawled=pages,
        queue_size=queue_size,
        error_count=metrics.errored,
        duplicates_found=metrics.duplicates,
        current_depth=metrics.current_depth,
        max_depth_seen=metrics.max_depth_seen,
        max_depth=max_depth,
        robots_txt_found=metrics.robots_found,
        sitemap_found=metrics.sitemap_found,
        sitemap_count=metrics.sitemap_count,
        bytes_processed=metrics.bytes_processed,
        network_requests=metrics.network_requests,
        elapsed_seconds=round(elapsed, 3),
        crawl_speed=round(crawl_speed, 3),
        discovery_rate=round(discovery_rate, 3),
        success_rate=round(success_rate, 2),
        avg_response_time_ms=round(avg_response, 2),
        estimated_time_remaining=round(eta, 1) if eta is not None else None,
        memory_estimate_mb=round(pages * MB_PER_PAGE + discovered * MB_PER_DISCOVERED_URL, 2),
    )


class ProgressReporter:
    """Pushes snapshots to an optional consumer and keeps the latest one."""

    def __init__(self, callback: ProgressCallback | None = None):
        self.callback = callback
        self.latest: ProgressSnapshot | None = None

    def publish(self, snapshot: ProgressSnapshot) -> None:
        self.latest = snapshot
        if self.callback is None:
            return
        try:
            self.callback(snapshot)
        except Exception as e:
            logger.warning("Progress callback failed", error=str(e), phase=snapshot.phase.value)
