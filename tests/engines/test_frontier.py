"""Tests for the crawl frontier and the priority table."""

import pytest

from sitescan.engines.base import DiscoveredURL, DiscoverySource
from sitescan.engines.crawler.frontier import CrawlFrontier
from sitescan.engines.crawler.priority import link_priority, sitemap_priority


def item(url: str, priority: int) -> DiscoveredURL:
    return DiscoveredURL(url=url, depth=0, source=DiscoverySource.INTERNAL_LINK, priority=priority)


class TestCrawlFrontier:

    def test_resort_is_stable_and_descending(self):
        frontier = CrawlFrontier()
        for url, priority in [("a", 4), ("b", 6), ("c", 4), ("d", 6)]:
            frontier.push(item(url, priority))

        frontier.resort()

        assert [frontier.pop().url for _ in range(4)] == ["b", "d", "a", "c"]

    def test_resort_never_touches_processed_items(self):
        frontier = CrawlFrontier()
        frontier.push(item("low", 1))
        assert frontier.pop().url == "low"

        frontier.push(item("high", 9))
        frontier.resort()

        assert frontier.processed_count == 1
        assert frontier.pop().url == "high"
        assert not frontier

    def test_discover_ignores_known_urls(self):
        frontier = CrawlFrontier()
        assert frontier.discover(item("x", 4))
        assert not frontier.discover(item("x", 9))
        assert len(frontier) == 1

    def test_push_allows_repeats(self):
        frontier = CrawlFrontier()
        frontier.push(item("x", 10))
        frontier.push(item("x", 9))
        assert len(frontier) == 2
        assert frontier.discovered_count == 1

    def test_pop_empty_raises(self):
        with pytest.raises(IndexError):
            CrawlFrontier().pop()


class TestPriority:

    @pytest.mark.parametrize("index,expected", [(0, 9), (999, 9), (1000, 8), (5000, 4), (20_000, 1)])
    def test_sitemap_priority_decays(self, index, expected):
        assert sitemap_priority(index) == expected

    @pytest.mark.parametrize("url,expected", [
        ("https://example.com/", 10),
        ("https://example.com/products/widget", 7),
        ("https://example.com/services", 7),
        ("https://example.com/blog/first-post", 6),
        ("https://example.com/category/shoes", 5),
        ("https://example.com/about", 4),
        ("https://example.com/a/b/c/d", 3),
        ("https://example.com/a/b/c/d/e/f", 2),
        ("https://example.com/products/a/b/c/d/e", 5),
    ])
    def test_link_priority(self, url, expected):
        assert link_priority(url) == expected
