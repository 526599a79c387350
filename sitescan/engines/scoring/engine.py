"""
Scoring Engine - Turns the crawled page set into site-wide issues and scores.

Scoring Model:
- Declarative per-page rules (JSON) aggregate into one SEOIssue each
- Cross-page checks (duplicates, orphans) and site checks (robots.txt,
  sitemap, HTTPS) are coded here
- Each category starts at 100 and loses impact_weight × min(count × 0.1, 1.5)
  per error/warning issue
- Overall score is the rounded mean of the six categories
- Runs once after crawling; pure and deterministic
"""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass
from urllib.parse import urlparse

import structlog

from sitescan.core.rule_engine import (
    RuleEvaluator,
    RuleRegistry,
    calculate_category_score,
    get_rule_registry,
)
from sitescan.core.urls import URLNormalizer
from sitescan.engines.base import (
    CategoryScores,
    Impact,
    IssueType,
    PageAnalysis,
    ScoreCategory,
    SEOIssue,
    TechnicalInsights,
)

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class ScoringOutcome:
    issues: list[SEOIssue]
    scores: CategoryScores
    overall_score: int
    technical_insights: TechnicalInsights


# ─────────────────────────────────────────────
# Cross-page checks
# ─────────────────────────────────────────────

def _duplicate_groups(values: list[tuple[str, str | None]]) -> list[str]:
    """URLs whose (case-insensitive, stripped) value is shared with another page."""
    keys = {url: value.strip().lower() for url, value in values if value and value.strip()}
    counts = Counter(keys.values())
    return [url for url, key in keys.items() if counts[key] > 1]


def find_duplicate_titles(pages: list[PageAnalysis]) -> list[str]:
    return _duplicate_groups([(p.url, p.title) for p in pages])


def find_duplicate_metas(pages: list[PageAnalysis]) -> list[str]:
    return _duplicate_groups([(p.url, p.meta_description) for p in pages])


def find_orphan_pages(pages: list[PageAnalysis], start_url: str) -> list[str]:
    """Successful pages, other than the start URL, no other crawled page links to."""
    linked: set[str] = set()
    for page in pages:
        for target in page.outbound_links:
            if target != page.url:
                linked.add(target)
    return [
        page.url
        for page in pages
        if page.is_success and page.url != start_url and page.url not in linked
    ]


def count_broken_internal_links(pages: list[PageAnalysis]) -> int:
    """Internal link targets that were crawled and failed."""
    failed = {page.url for page in pages if not page.is_success}
    if not failed:
        return 0
    broken = 0
    for page in pages:
        host = URLNormalizer.host_of(page.url)
        for target in page.outbound_links:
            if target in failed and URLNormalizer.is_same_host(target, host):
                broken += 1
    return broken


# ─────────────────────────────────────────────
# Scoring Engine
# ─────────────────────────────────────────────

class IssueScoringEngine:
    """
    Aggregates the crawl output into issues, category scores and insights.
    This engine runs AFTER the crawl completes.
    """

    def __init__(self, registry: RuleRegistry | None = None):
        self.registry = registry or get_rule_registry()
        self.evaluator = RuleEvaluator()

    def score(
        self,
        pages: list[PageAnalysis],
        *,
        start_url: str,
        robots_found: bool = False,
        sitemap_found: bool = False,
        sitemap_count: int = 0,
        robots_txt_size: int = 0,
    ) -> ScoringOutcome:
        successful = [page for page in pages if page.is_success]

        # ── Declarative rules ────────────────────────────
        issues: list[SEOIssue] = []
        for rule in self.registry.get_all():
            issue = self.evaluator.aggregate(rule, pages)
            if issue is not None:
                issues.append(issue)

        # ── Coded cross-page and site rules ──────────────
        duplicate_titles = find_duplicate_titles(successful)
        duplicate_metas = find_duplicate_metas(successful)
        orphans = find_orphan_pages(successful, start_url)

        if successful:
            issues.extend(self._cross_page_issues(duplicate_titles, duplicate_metas, orphans))
            issues.extend(self._site_issues(start_url, robots_found, sitemap_found))

        # ── Category scores ──────────────────────────────
        if successful:
            scores = CategoryScores(**{
                category.value: calculate_category_score(issues, category)
                for category in ScoreCategory
            })
        else:
            scores = CategoryScores()

        insights = TechnicalInsights(
            structured_data=sum(1 for p in successful if p.schema_markup),
            mobile_viewport=sum(1 for p in successful if p.viewport),
            duplicate_titles=len(duplicate_titles),
            duplicate_metas=len(duplicate_metas),
            orphan_pages=len(orphans),
            has_robots_txt=robots_found,
            has_sitemap=sitemap_found,
            sitemap_count=sitemap_count,
            ssl_enabled=urlparse(start_url).scheme == "https",
            pages_with_favicon=sum(1 for p in successful if p.favicon),
            pages_with_hreflang=sum(1 for p in successful if p.hreflang),
            pages_with_meta_keywords=sum(1 for p in successful if p.meta_keywords),
            broken_internal_links=count_broken_internal_links(pages),
            max_crawl_depth=max((p.depth for p in successful), default=0),
            robots_txt_size=robots_txt_size,
            avg_lcp_ms=round(
                sum(p.core_web_vitals.lcp_ms for p in successful) / len(successful), 2
            ) if successful else 0.0,
        )

        logger.info(
            "Scoring complete",
            url=start_url,
            pages=len(pages),
            successful=len(successful),
            issues=len(issues),
            overall=scores.overall,
        )

        return ScoringOutcome(
            issues=issues,
            scores=scores,
            overall_score=scores.overall,
            technical_insights=insights,
        )

    @staticmethod
    def _cross_page_issues(
        duplicate_titles: list[str],
        duplicate_metas: list[str],
        orphans: list[str],
    ) -> list[SEOIssue]:
        issues = []
        if duplicate_titles:
            issues.append(SEOIssue(
                rule_id="tech-duplicate-titles",
                type=IssueType.ERROR,
                category=ScoreCategory.TECHNICAL,
                impact=Impact.HIGH,
                issue="Duplicate Page Titles",
                suggestion=f"{len(duplicate_titles)} pages have duplicate titles. Create unique, descriptive titles for each page.",
                count=len(duplicate_titles),
                affected_urls=duplicate_titles,
            ))
        if duplicate_metas:
            issues.append(SEOIssue(
                rule_id="tech-duplicate-meta-descriptions",
                type=IssueType.WARNING,
                category=ScoreCategory.TECHNICAL,
                impact=Impact.MEDIUM,
                issue="Duplicate Meta Descriptions",
                suggestion=f"{len(duplicate_metas)} pages share a meta description. Write a distinct description for each page.",
                count=len(duplicate_metas),
                affected_urls=duplicate_metas,
            ))
        if orphans:
            issues.append(SEOIssue(
                rule_id="tech-orphan-pages",
                type=IssueType.WARNING,
                category=ScoreCategory.TECHNICAL,
                impact=Impact.MEDIUM,
                issue="Orphan Pages",
                suggestion=f"{len(orphans)} pages are not linked from any other crawled page. Link to them from relevant content.",
                count=len(orphans),
                affected_urls=orphans,
            ))
        return issues

    @staticmethod
    def _site_issues(start_url: str, robots_found: bool, sitemap_found: bool) -> list[SEOIssue]:
        issues = []
        if not robots_found:
            issues.append(SEOIssue(
                rule_id="tech-missing-robots-txt",
                type=IssueType.WARNING,
                category=ScoreCategory.TECHNICAL,
                impact=Impact.LOW,
                issue="Missing robots.txt",
                suggestion="No robots.txt was found. Add one to guide crawlers and declare your sitemap.",
                count=1,
                affected_urls=[start_url],
            ))
        if not sitemap_found:
            issues.append(SEOIssue(
                rule_id="tech-missing-sitemap",
                type=IssueType.WARNING,
                category=ScoreCategory.TECHNICAL,
                impact=Impact.MEDIUM,
                issue="Missing XML Sitemap",
                suggestion="No XML sitemap was found. Publish one and reference it from robots.txt.",
                count=1,
                affected_urls=[start_url],
            ))
        if urlparse(start_url).scheme != "https":
            issues.append(SEOIssue(
                rule_id="tech-no-https",
                type=IssueType.ERROR,
                category=ScoreCategory.TECHNICAL,
                impact=Impact.CRITICAL,
                issue="Site Not Served Over HTTPS",
                suggestion="The site is served over plain HTTP. Install a TLS certificate and redirect all traffic to HTTPS.",
                count=1,
                affected_urls=[start_url],
            ))
        return issues
