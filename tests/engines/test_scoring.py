"""Tests for the Issue & Scoring Engine."""

import pytest

from sitescan.engines.base import IssueType, PageAnalysis, ScoreCategory
from sitescan.engines.markup.engine import MarkupAnalyzer
from sitescan.engines.scoring.engine import (
    IssueScoringEngine,
    count_broken_internal_links,
    find_duplicate_titles,
    find_orphan_pages,
)

START = "https://example.com/"


def page(url: str, **fields) -> PageAnalysis:
    title = fields.pop("title", f"Page title for {url}")
    meta = fields.pop("meta_description", f"Description of {url} ".ljust(140, "x"))
    defaults = dict(
        status_code=200,
        title=title,
        title_length=len(title),
        meta_description=meta,
        meta_description_length=len(meta or ""),
        h1_count=1,
        h2_count=1,
        word_count=400,
        canonical_url=url,
        viewport="width=device-width, initial-scale=1",
        lang="en",
        charset="utf-8",
        og_title="t",
        og_description="d",
        og_image="i",
        twitter_card="summary",
        schema_markup=["WebPage"],
        load_time=0.3,
    )
    defaults.update(fields)
    return PageAnalysis(url=url, **defaults)


@pytest.fixture
def engine():
    return IssueScoringEngine()


def score(engine, pages, **kwargs):
    kwargs.setdefault("robots_found", True)
    kwargs.setdefault("sitemap_found", True)
    return engine.score(pages, start_url=START, **kwargs)


class TestScoring:

    def test_clean_site_scores_100(self, engine):
        pages = [
            page(START, title="Home page of the example website", outbound_links=["https://example.com/a"]),
            page("https://example.com/a", outbound_links=[START]),
        ]

        outcome = score(engine, pages)

        assert outcome.issues == []
        assert outcome.overall_score == 100
        assert outcome.scores.values() == [100.0] * 6

    def test_overall_is_rounded_mean(self, engine):
        pages = [page(START, meta_description=None, meta_description_length=0, h1_count=0, viewport=None)]

        outcome = score(engine, pages)

        values = outcome.scores.values()
        assert outcome.overall_score == round(sum(values) / 6)
        assert all(0 <= v <= 100 for v in values)

    def test_deduction_formula(self, engine):
        # 3 pages missing meta description: error/high → 15 × min(0.3, 1.5) = 4.5
        pages = [
            page(START, title="Home page of the example website", meta_description=None, meta_description_length=0,
                 outbound_links=["https://example.com/a", "https://example.com/b"]),
            page("https://example.com/a", title="Second page of the example website",
                 meta_description=None, meta_description_length=0),
            page("https://example.com/b", title="Third page of the example website",
                 meta_description=None, meta_description_length=0),
        ]

        outcome = score(engine, pages)

        missing = next(i for i in outcome.issues if i.rule_id == "tech-missing-meta-description")
        assert missing.type == IssueType.ERROR
        assert missing.count == 3
        assert missing.suggestion.startswith("3 pages")
        assert outcome.scores.technical == pytest.approx(95.5)

    def test_deduction_factor_is_capped(self, engine):
        pages = [page(START, h1_count=0, outbound_links=[f"https://example.com/{i}" for i in range(30)])]
        pages += [page(f"https://example.com/{i}", title=f"Unique page title number {i:02d} here", h1_count=0)
                  for i in range(30)]

        outcome = score(engine, pages)

        # 31 pages → factor capped at 1.5 → 15 × 1.5
        assert outcome.scores.content == pytest.approx(100 - 22.5)

    def test_info_findings_do_not_deduct(self, engine):
        outcome = score(engine, [page(START, twitter_card=None)])

        twitter = next(i for i in outcome.issues if i.rule_id == "social-missing-twitter-card")
        assert twitter.type == IssueType.INFO
        assert outcome.scores.social == 100.0

    def test_scoring_is_deterministic(self, engine):
        pages = [
            page(START, title="dup title", h1_count=2, outbound_links=["https://example.com/a"]),
            page("https://example.com/a", title="Dup Title", images_without_alt=4, image_count=4),
            page("https://example.com/orphan", viewport=None),
        ]

        first = score(engine, pages, robots_found=False, sitemap_found=False)
        second = score(engine, pages, robots_found=False, sitemap_found=False)

        assert first == second

    def test_no_successful_pages(self, engine):
        failed = MarkupAnalyzer.failed("https://unreachable.example/")

        outcome = engine.score([failed], start_url="https://unreachable.example/")

        assert outcome.overall_score == 0
        assert outcome.scores.values() == [0.0] * 6
        assert outcome.issues
        assert all(issue.type == IssueType.ERROR for issue in outcome.issues)

    def test_site_level_issues(self, engine):
        outcome = engine.score([page("http://example.com/")], start_url="http://example.com/")

        rule_ids = {issue.rule_id for issue in outcome.issues}
        assert {"tech-missing-robots-txt", "tech-missing-sitemap", "tech-no-https"} <= rule_ids
        assert not outcome.technical_insights.ssl_enabled

    def test_images_missing_alt_counts_images(self, engine):
        pages = [
            page(START, images_without_alt=3, image_count=5, outbound_links=["https://example.com/a"]),
            page("https://example.com/a", title="Another page with a decent title", images_without_alt=2),
        ]

        outcome = score(engine, pages)

        alt = next(i for i in outcome.issues if i.rule_id == "a11y-images-missing-alt")
        assert alt.category == ScoreCategory.ACCESSIBILITY
        assert alt.count == 5


class TestCrossPageChecks:

    def test_duplicate_titles_case_insensitive(self):
        pages = [
            page("https://example.com/1", title="Hello World"),
            page("https://example.com/2", title="hello world "),
            page("https://example.com/3", title="Unique"),
        ]
        assert find_duplicate_titles(pages) == ["https://example.com/1", "https://example.com/2"]

    def test_orphans_exclude_start_and_self_links(self):
        pages = [
            page(START, outbound_links=["https://example.com/linked"]),
            page("https://example.com/linked"),
            page("https://example.com/self", outbound_links=["https://example.com/self"]),
        ]
        assert find_orphan_pages(pages, START) == ["https://example.com/self"]

    def test_broken_internal_links(self):
        pages = [
            page(START, outbound_links=["https://example.com/gone", "https://other.org/gone"]),
            page("https://example.com/a", outbound_links=["https://example.com/gone"]),
            MarkupAnalyzer.failed("https://example.com/gone", status_code=404),
        ]
        assert count_broken_internal_links(pages) == 2

    def test_insights(self):
        pages = [
            page(START, favicon=True, hreflang=["de"], meta_keywords="a", depth=0,
                 outbound_links=["https://example.com/a"]),
            page("https://example.com/a", title="Second page of the example website", depth=2,
                 schema_markup=[], viewport=None),
        ]

        insights = IssueScoringEngine().score(
            pages, start_url=START, robots_found=True, sitemap_found=True, sitemap_count=2, robots_txt_size=42,
        ).technical_insights

        assert insights.structured_data == 1
        assert insights.mobile_viewport == 1
        assert insights.pages_with_favicon == 1
        assert insights.pages_with_hreflang == 1
        assert insights.pages_with_meta_keywords == 1
        assert insights.max_crawl_depth == 2
        assert insights.sitemap_count == 2
        assert insights.robots_txt_size == 42
        assert insights.ssl_enabled
