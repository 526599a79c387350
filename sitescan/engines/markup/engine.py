"""
Markup Analyzer

Turns fetched page markup into a PageAnalysis:
- Title, meta description/keywords, robots meta
- Heading counts (H1 texts kept)
- Image alt coverage
- Internal vs external links (hostname comparison)
- Visible word count
- Canonical, viewport, lang, charset, favicon, hreflang
- Open Graph / Twitter Card
- JSON-LD structured data types

and scores each page on technical, content and performance signals.
Only static markup is analyzed; nothing is rendered.
"""

from __future__ import annotations

import json
import re
from typing import Any, Protocol
from urllib.parse import urlparse

import structlog
from bs4 import BeautifulSoup, Tag

from sitescan.core.urls import URLNormalizer
from sitescan.engines.base import (
    CoreWebVitals,
    IssueType,
    PageAnalysis,
    PageFeatures,
    PageIssue,
)

logger = structlog.get_logger(__name__)

INVALID_JSON_LD = "Invalid JSON-LD"
UNKNOWN_SCHEMA_TYPE = "Unknown"

# Thresholds
TITLE_MIN_LENGTH = 30
TITLE_MAX_LENGTH = 60
META_DESC_MIN_LENGTH = 120
META_DESC_MAX_LENGTH = 160
MIN_WORD_COUNT = 300
LONG_CONTENT_WORD_COUNT = 500
MIN_WORD_LENGTH = 3

_CHARSET_RE = re.compile(r"charset\s*=\s*[\"']?([\w.:-]+)", re.IGNORECASE)


class MarkupParser(Protocol):
    def parse(self, content: str, url: str) -> PageFeatures:
        ...


# ─────────────────────────────────────────────
# BeautifulSoup extraction
# ─────────────────────────────────────────────

def _attr_equals(value: str):
    """Case-insensitive attribute matcher for find()/find_all()."""
    expected = value.lower()
    return lambda attr: attr is not None and attr.strip().lower() == expected


def _content(tag: Tag | None) -> str | None:
    if tag is None:
        return None
    value = (tag.get("content") or "").strip()
    return value or None


def _rel_tokens(tag: Tag) -> list[str]:
    rel = tag.get("rel") or []
    if isinstance(rel, str):
        rel = rel.split()
    return [token.lower() for token in rel]


def _schema_types(data: Any) -> list[str]:
    """@type values of a JSON-LD payload, expanding lists and @graph."""
    if isinstance(data, list):
        return [t for item in data for t in _schema_types(item)]
    if not isinstance(data, dict):
        return [UNKNOWN_SCHEMA_TYPE]
    if "@graph" in data and "@type" not in data:
        return _schema_types(data["@graph"])
    schema_type = data.get("@type")
    if isinstance(schema_type, list):
        return [str(t) for t in schema_type] or [UNKNOWN_SCHEMA_TYPE]
    return [str(schema_type)] if schema_type else [UNKNOWN_SCHEMA_TYPE]


class SoupMarkupParser:
    """Default MarkupParser backed by BeautifulSoup with the lxml parser."""

    def __init__(self, features: str = "lxml"):
        self.features = features

    def parse(self, content: str, url: str) -> PageFeatures:
        soup = BeautifulSoup(content, self.features)
        page_host = (urlparse(url).hostname or "").lower()

        title_tag = soup.find("title")
        title = title_tag.get_text(strip=True) if title_tag else ""

        meta_description = _content(soup.find("meta", attrs={"name": _attr_equals("description")}))
        meta_keywords = _content(soup.find("meta", attrs={"name": _attr_equals("keywords")}))
        robots_meta = _content(soup.find("meta", attrs={"name": _attr_equals("robots")}))
        viewport = _content(soup.find("meta", attrs={"name": _attr_equals("viewport")}))
        og_title = _content(soup.find("meta", attrs={"property": _attr_equals("og:title")}))
        og_description = _content(soup.find("meta", attrs={"property": _attr_equals("og:description")}))
        og_image = _content(soup.find("meta", attrs={"property": _attr_equals("og:image")}))
        twitter_card = _content(
            soup.find("meta", attrs={"name": _attr_equals("twitter:card")})
            or soup.find("meta", attrs={"property": _attr_equals("twitter:card")})
        )

        # ── Headings ──────────────────────────────
        h1_tags = soup.find_all("h1")
        h1_text = [text for text in (h.get_text(" ", strip=True) for h in h1_tags) if text]

        # ── Images ────────────────────────────────
        images = soup.find_all("img")
        images_without_alt = sum(1 for img in images if not (img.get("alt") or "").strip())

        # ── Links ─────────────────────────────────
        internal = external = 0
        outbound: list[str] = []
        seen: set[str] = set()
        for a in soup.find_all("a", href=True):
            normalized = URLNormalizer.normalize(a["href"], url)
            if normalized is None:
                continue
            if (urlparse(normalized).hostname or "") == page_host:
                internal += 1
            else:
                external += 1
            if normalized not in seen:
                seen.add(normalized)
                outbound.append(normalized)

        # ── Link elements ─────────────────────────
        canonical_url = None
        favicon = False
        hreflang: list[str] = []
        for link in soup.find_all("link"):
            rel = _rel_tokens(link)
            href = (link.get("href") or "").strip()
            if "canonical" in rel and href and canonical_url is None:
                canonical_url = href
            if "icon" in rel:
                favicon = True
            if "alternate" in rel and link.get("hreflang"):
                hreflang.append(link["hreflang"].strip())

        # ── Document attributes ───────────────────
        html_tag = soup.find("html")
        lang = (html_tag.get("lang") or "").strip() or None if html_tag else None
        charset = self._charset(soup)

        # ── Structured data ───────────────────────
        schema_markup: list[str] = []
        for script in soup.find_all("script", attrs={"type": _attr_equals("application/ld+json")}):
            try:
                schema_markup.extend(_schema_types(json.loads(script.string or script.get_text() or "")))
            except (json.JSONDecodeError, TypeError):
                schema_markup.append(INVALID_JSON_LD)

        # ── Visible text ──────────────────────────
        body = soup.body or soup
        for tag in body(["script", "style", "noscript", "template"]):
            tag.decompose()
        words = [token for token in body.get_text(separator=" ").split() if len(token) >= MIN_WORD_LENGTH]

        return PageFeatures(
            title=title,
            title_length=len(title),
            meta_description=meta_description,
            meta_description_length=len(meta_description or ""),
            meta_keywords=meta_keywords,
            h1_count=len(h1_tags),
            h1_text=h1_text,
            h2_count=len(soup.find_all("h2")),
            h3_count=len(soup.find_all("h3")),
            word_count=len(words),
            image_count=len(images),
            images_without_alt=images_without_alt,
            internal_links=internal,
            external_links=external,
            outbound_links=outbound,
            canonical_url=canonical_url,
            viewport=viewport,
            lang=lang,
            charset=charset,
            robots_meta=robots_meta,
            og_title=og_title,
            og_description=og_description,
            og_image=og_image,
            twitter_card=twitter_card,
            schema_markup=schema_markup,
            hreflang=hreflang,
            favicon=favicon,
            page_size=len(content.encode("utf-8")),
        )

    @staticmethod
    def _charset(soup: BeautifulSoup) -> str | None:
        meta = soup.find("meta", charset=True)
        if meta and meta.get("charset", "").strip():
            return meta["charset"].strip()
        http_equiv = soup.find("meta", attrs={"http-equiv": _attr_equals("content-type")})
        if http_equiv:
            match = _CHARSET_RE.search(http_equiv.get("content") or "")
            if match:
                return match.group(1)
        return None


# ─────────────────────────────────────────────
# Sub-scores
# ─────────────────────────────────────────────

def calculate_technical_score(features: PageFeatures) -> int:
    score = 100
    if not TITLE_MIN_LENGTH <= features.title_length <= TITLE_MAX_LENGTH:
        score -= 10
    if not META_DESC_MIN_LENGTH <= features.meta_description_length <= META_DESC_MAX_LENGTH:
        score -= 10
    if features.h1_count != 1:
        score -= 15
    if not features.canonical_url:
        score -= 5
    if not features.viewport:
        score -= 15
    if not features.charset:
        score -= 5
    if not features.schema_markup:
        score -= 10
    return max(0, score)


def calculate_content_score(features: PageFeatures) -> int:
    score = 100
    if features.word_count < MIN_WORD_COUNT:
        score -= 20
    if features.h1_count == 0:
        score -= 15
    if features.h2_count == 0 and features.word_count > LONG_CONTENT_WORD_COUNT:
        score -= 10
    score -= min(features.images_without_alt * 5, 25)
    return max(0, score)


def calculate_performance_score(load_time: float, page_size: int) -> int:
    """load_time in seconds, page_size in bytes."""
    score = 100
    if load_time > 3:
        score -= 30
    elif load_time > 2:
        score -= 20
    elif load_time > 1:
        score -= 10

    if page_size > 2_000_000:
        score -= 20
    elif page_size > 1_000_000:
        score -= 10
    return max(0, score)


# ─────────────────────────────────────────────
# Per-page findings
# ─────────────────────────────────────────────

def page_issues(features: PageFeatures, load_time: float) -> list[PageIssue]:
    issues: list[PageIssue] = []

    if not features.title:
        issues.append(PageIssue(type=IssueType.ERROR, message="Missing page title", element="title"))
    elif features.title_length < TITLE_MIN_LENGTH:
        issues.append(PageIssue(
            type=IssueType.WARNING,
            message=f"Title too short ({features.title_length} chars) - should be {TITLE_MIN_LENGTH}-{TITLE_MAX_LENGTH} characters",
            element="title",
        ))
    elif features.title_length > TITLE_MAX_LENGTH:
        issues.append(PageIssue(
            type=IssueType.WARNING,
            message=f"Title too long ({features.title_length} chars) - should be {TITLE_MIN_LENGTH}-{TITLE_MAX_LENGTH} characters",
            element="title",
        ))

    if not features.meta_description:
        issues.append(PageIssue(type=IssueType.ERROR, message="Missing meta description", element='meta[name="description"]'))
    elif not META_DESC_MIN_LENGTH <= features.meta_description_length <= META_DESC_MAX_LENGTH:
        issues.append(PageIssue(
            type=IssueType.WARNING,
            message=f"Meta description length ({features.meta_description_length} chars) - should be {META_DESC_MIN_LENGTH}-{META_DESC_MAX_LENGTH} characters",
            element='meta[name="description"]',
        ))

    if features.h1_count == 0:
        issues.append(PageIssue(type=IssueType.ERROR, message="Missing H1 tag", element="h1"))
    elif features.h1_count > 1:
        issues.append(PageIssue(
            type=IssueType.WARNING,
            message=f"Multiple H1 tags found ({features.h1_count}) - should be only one",
            element="h1",
        ))

    if features.images_without_alt:
        issues.append(PageIssue(
            type=IssueType.WARNING,
            message=f"{features.images_without_alt} of {features.image_count} images missing alt text",
            element="img",
        ))

    if not features.viewport:
        issues.append(PageIssue(type=IssueType.WARNING, message="Missing viewport meta tag", element='meta[name="viewport"]'))
    if not features.canonical_url:
        issues.append(PageIssue(type=IssueType.INFO, message="Consider adding a canonical URL", element='link[rel="canonical"]'))
    if not features.og_title or not features.og_description:
        issues.append(PageIssue(type=IssueType.INFO, message="Missing Open Graph title or description", element='meta[property^="og:"]'))
    if not features.twitter_card:
        issues.append(PageIssue(type=IssueType.INFO, message="Missing Twitter Card meta tag", element='meta[name="twitter:card"]'))
    if not features.schema_markup:
        issues.append(PageIssue(type=IssueType.INFO, message="No structured data (JSON-LD) found", element='script[type="application/ld+json"]'))
    elif "Invalid JSON-LD" in features.schema_markup:
        issues.append(PageIssue(type=IssueType.WARNING, message="Structured data block is not valid JSON", element='script[type="application/ld+json"]'))

    if load_time > 3:
        issues.append(PageIssue(
            type=IssueType.WARNING,
            message=f"Page load time is slow ({round(load_time * 1000)}ms) - should be under 3 seconds",
            element="performance",
        ))
    elif load_time > 1:
        issues.append(PageIssue(
            type=IssueType.INFO,
            message=f"Page load time could be improved ({round(load_time * 1000)}ms) - aim for under 1 second",
            element="performance",
        ))

    return issues


# ─────────────────────────────────────────────
# Analyzer
# ─────────────────────────────────────────────

class MarkupAnalyzer:
    """Builds PageAnalysis records from fetched markup."""

    def __init__(self, parser: MarkupParser | None = None):
        self.parser = parser or SoupMarkupParser()

    def analyze(
        self,
        content: str,
        url: str,
        elapsed_ms: float,
        status_code: int = 200,
        depth: int = 0,
        base_url: str | None = None,
    ) -> PageAnalysis:
        """
        Analyze a successfully fetched page. Parse errors propagate to the caller.
        Links resolve against base_url (the post-redirect URL) when given; the
        record keeps url.
        """
        if status_code != 200:
            return self.failed(url, status_code=status_code, elapsed_ms=elapsed_ms, depth=depth)

        features = self.parser.parse(content, base_url or url)
        load_time = elapsed_ms / 1000.0

        return PageAnalysis(
            **features.model_dump(),
            url=url,
            status_code=status_code,
            load_time=load_time,
            depth=depth,
            technical_score=calculate_technical_score(features),
            content_score=calculate_content_score(features),
            performance_score=calculate_performance_score(load_time, features.page_size),
            core_web_vitals=CoreWebVitals(lcp_ms=round(elapsed_ms, 2)),
            issues=page_issues(features, load_time),
        )

    @staticmethod
    def failed(
        url: str,
        *,
        status_code: int = 0,
        elapsed_ms: float = 0.0,
        depth: int = 0,
        message: str | None = None,
    ) -> PageAnalysis:
        """Degraded record for a URL whose fetch or parse failed."""
        if message is None:
            message = "Failed to fetch page content" if status_code == 0 else f"HTTP {status_code} error"
        return PageAnalysis(
            url=url,
            status_code=status_code,
            load_time=elapsed_ms / 1000.0,
            depth=depth,
            issues=[PageIssue(type=IssueType.ERROR, message=message, element="page")],
            error=message,
        )
