"""
Crawl priority heuristic.

Higher priority is crawled sooner. Kept as plain tables so the values can be
tuned without touching the scheduler.
"""

from __future__ import annotations

import re
from urllib.parse import urlparse

START_PRIORITY = 10
HOMEPAGE_PRIORITY = 10
SITEMAP_BASE_PRIORITY = 9
SITEMAP_DECAY_STEP = 1000       # sitemap entries lose one point per 1000 positions
DEFAULT_LINK_PRIORITY = 4
MIN_PRIORITY = 1

# First match wins.
PATH_PRIORITY_RULES: tuple[tuple[re.Pattern[str], int], ...] = (
    (re.compile(r"/(products?|services?|shop)(/|$)"), 7),
    (re.compile(r"/(blog|articles?|news|posts?)(/|$)"), 6),
    (re.compile(r"/(categor(y|ies)|tags?)(/|$)"), 5),
)

# (path depth strictly greater than, penalty); deepest threshold first.
DEPTH_PENALTIES: tuple[tuple[int, int], ...] = (
    (5, 2),
    (3, 1),
)


def path_depth(url: str) -> int:
    return len([segment for segment in urlparse(url).path.split("/") if segment])


def depth_penalty(depth: int) -> int:
    for threshold, penalty in DEPTH_PENALTIES:
        if depth > threshold:
            return penalty
    return 0


def sitemap_priority(index: int) -> int:
    """Priority of the index-th sitemap entry."""
    return max(MIN_PRIORITY, SITEMAP_BASE_PRIORITY - index // SITEMAP_DECAY_STEP)


def link_priority(url: str) -> int:
    """Priority of a URL discovered through an internal link."""
    path = urlparse(url).path.lower() or "/"
    if path == "/":
        return HOMEPAGE_PRIORITY

    base = DEFAULT_LINK_PRIORITY
    for pattern, priority in PATH_PRIORITY_RULES:
        if pattern.search(path):
            base = priority
            break

    return max(MIN_PRIORITY, base - depth_penalty(path_depth(url)))
