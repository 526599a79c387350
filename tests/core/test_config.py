"""Tests for environment-driven settings."""

import pytest
from pydantic import ValidationError

from sitescan.core.config import Settings, get_settings
from sitescan.engines.base import CrawlOptions


class TestSettings:

    def test_defaults(self):
        settings = Settings()
        assert settings.CRAWLER_FETCH_ENDPOINTS == ["{url}"]
        assert settings.CRAWLER_DEFAULT_MAX_PAGES == 50
        assert settings.ANALYSIS_MAX_ACTIVE_RUNS >= 1
        assert settings.ANALYSIS_MAX_RETAINED_RUNS == 50

    def test_comma_separated_lists(self):
        settings = Settings(
            CORS_ORIGINS="http://a.test, http://b.test",
            CRAWLER_FETCH_ENDPOINTS="{url}, https://relay.test/?u={url}",
        )
        assert settings.CORS_ORIGINS == ["http://a.test", "http://b.test"]
        assert settings.CRAWLER_FETCH_ENDPOINTS == ["{url}", "https://relay.test/?u={url}"]

    def test_endpoint_without_placeholder_rejected(self):
        with pytest.raises(ValidationError):
            Settings(CRAWLER_FETCH_ENDPOINTS=["https://relay.test/"])

    def test_cached(self):
        assert get_settings() is get_settings()


class TestCrawlOptions:

    def test_zero_means_unlimited(self):
        options = CrawlOptions(max_pages=0, max_depth=0)
        assert options.max_pages is None
        assert options.max_depth is None
        assert options.sitemap_budget is None

    def test_sitemap_budget_is_twice_page_budget(self):
        assert CrawlOptions(max_pages=25).sitemap_budget == 50

    def test_negative_budget_rejected(self):
        with pytest.raises(ValidationError):
            CrawlOptions(max_pages=-1)

    def test_delay_in_seconds(self):
        assert CrawlOptions(crawl_delay_ms=1500).crawl_delay_seconds == 1.5
