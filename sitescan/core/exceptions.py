"""
Exception hierarchy for site analysis runs.

Setup failures abort a run, a user stop ends it early with partial results,
everything per-URL is recovered inside the crawler and never surfaces here.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from sitescan.engines.base import AnalysisResult, PageAnalysis


class SiteAnalysisError(Exception):
    """Base class for every error raised out of an analysis run."""


class InvalidStartURLError(SiteAnalysisError, ValueError):
    """The start URL cannot be crawled (bad scheme, no host, unparsable)."""

    def __init__(self, url: Any, reason: str):
        self.url = url
        self.reason = reason
        super().__init__(f"Invalid start URL {url!r}: {reason}")


class InvalidStateTransition(SiteAnalysisError):
    def __init__(self, current: str, target: str):
        self.current = current
        self.target = target
        super().__init__(f"Cannot transition run from '{current}' to '{target}'")


class CrawlStopped(SiteAnalysisError):
    """
    Raised when stop() ends a run before completion.

    Not a failure: `pages` holds every PageAnalysis collected before the stop
    and `result` is filled in with the partial report by the site analyzer.
    """

    def __init__(self, pages: list[PageAnalysis], result: AnalysisResult | None = None):
        self.pages = pages
        self.result = result
        super().__init__(f"Crawl stopped by request after {len(pages)} pages")


class AnalysisNotFound(SiteAnalysisError):
    def __init__(self, analysis_id: str):
        self.analysis_id = analysis_id
        super().__init__(f"Analysis {analysis_id} not found")


class TooManyActiveRuns(SiteAnalysisError):
    def __init__(self, limit: int):
        self.limit = limit
        super().__init__(f"At most {limit} analyses may run at the same time")
