"""
Type contracts shared by the crawler, markup analyzer and scoring engine.

Design principles:
- Records produced by the crawl (PageAnalysis, SEOIssue, AnalysisResult) are
  frozen once created
- Engines are independent: they exchange these records, never each other's
  internals
- Per-URL failures are data (degraded PageAnalysis), not exceptions
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, field_validator


# ─────────────────────────────────────────────
# Enums
# ─────────────────────────────────────────────

class Impact(str, Enum):
    CRITICAL = "critical"   # Blocking issue - fix immediately
    HIGH = "high"           # Significant impact - fix soon
    MEDIUM = "medium"       # Moderate impact - fix this sprint
    LOW = "low"             # Minor - fix when convenient


class IssueType(str, Enum):
    ERROR = "error"
    WARNING = "warning"
    INFO = "info"
    SUCCESS = "success"


class ScoreCategory(str, Enum):
    TECHNICAL = "technical"
    CONTENT = "content"
    PERFORMANCE = "performance"
    MOBILE = "mobile"
    ACCESSIBILITY = "accessibility"
    SOCIAL = "social"


class DiscoverySource(str, Enum):
    START = "start"
    SITEMAP = "sitemap"
    INTERNAL_LINK = "internal_link"


class RunState(str, Enum):
    IDLE = "idle"
    INITIALIZING = "initializing"
    DISCOVERING_ROBOTS = "discovering_robots"
    RESOLVING_SITEMAPS = "resolving_sitemaps"
    CRAWLING = "crawling"
    SCORING = "scoring"
    COMPLETE = "complete"
    FAILED = "failed"
    STOPPED = "stopped"

    @property
    def is_terminal(self) -> bool:
        return self in (RunState.COMPLETE, RunState.FAILED, RunState.STOPPED)


class ProgressPhase(str, Enum):
    INITIALIZING = "initializing"
    SITEMAP_DISCOVERY = "sitemap_discovery"
    CRAWLING = "crawling"
    ANALYZING = "analyzing"
    COMPLETE = "complete"


# ─────────────────────────────────────────────
# Crawl inputs
# ─────────────────────────────────────────────

@dataclass(frozen=True)
class DiscoveredURL:
    """URL in the crawl frontier with discovery metadata."""
    url: str
    depth: int
    source: DiscoverySource
    priority: int
    parent_url: str | None = None


class CrawlOptions(BaseModel):
    """Per-run crawl configuration. 0 or None means unlimited for budgets."""
    model_config = ConfigDict(frozen=True)

    max_pages: int | None = 50
    crawl_delay_ms: int = Field(default=500, ge=0)
    follow_external_links: bool = False
    include_images: bool = False
    respect_robots: bool = True
    max_depth: int | None = 3

    @field_validator("max_pages", "max_depth")
    @classmethod
    def zero_means_unlimited(cls, v: int | None) -> int | None:
        if v is None:
            return None
        if v < 0:
            raise ValueError("budgets must be >= 0 (0 means unlimited)")
        return v or None

    @property
    def crawl_delay_seconds(self) -> float:
        return self.crawl_delay_ms / 1000.0

    @property
    def sitemap_budget(self) -> int | None:
        """Sitemap entries kept for seeding: roughly twice the page budget."""
        return None if self.max_pages is None else self.max_pages * 2


# ─────────────────────────────────────────────
# Page-level records
# ─────────────────────────────────────────────

class PageIssue(BaseModel):
    """A single finding on one page."""
    model_config = ConfigDict(frozen=True)

    type: IssueType
    message: str
    element: str


class CoreWebVitals(BaseModel):
    """
    Rough Core Web Vitals estimate. LCP is derived from fetch latency; FID and
    CLS cannot be observed without rendering and stay None.
    """
    model_config = ConfigDict(frozen=True)

    lcp_ms: float = 0.0
    fid_ms: float | None = None
    cls: float | None = None


class PageFeatures(BaseModel):
    """Fixed extraction schema filled in by the markup analyzer."""
    model_config = ConfigDict(frozen=True)

    title: str = ""
    title_length: int = 0
    meta_description: str | None = None
    meta_description_length: int = 0
    meta_keywords: str | None = None
    h1_count: int = 0
    h1_text: list[str] = Field(default_factory=list)
    h2_count: int = 0
    h3_count: int = 0
    word_count: int = 0
    image_count: int = 0
    images_without_alt: int = 0
    internal_links: int = 0
    external_links: int = 0
    outbound_links: list[str] = Field(default_factory=list)
    canonical_url: str | None = None
    viewport: str | None = None
    lang: str | None = None
    charset: str | None = None
    robots_meta: str | None = None
    og_title: str | None = None
    og_description: str | None = None
    og_image: str | None = None
    twitter_card: str | None = None
    schema_markup: list[str] = Field(default_factory=list)
    hreflang: list[str] = Field(default_factory=list)
    favicon: bool = False
    page_size: int = 0


class PageAnalysis(PageFeatures):
    """Unit of crawl output: one per dequeued URL, success or failure."""
    url: str
    status_code: int = 0
    load_time: float = 0.0          # seconds
    depth: int = 0
    technical_score: int = 0
    content_score: int = 0
    performance_score: int = 0
    core_web_vitals: CoreWebVitals = Field(default_factory=CoreWebVitals)
    issues: list[PageIssue] = Field(default_factory=list)
    error: str | None = None

    @property
    def is_success(self) -> bool:
        return self.status_code == 200 and self.error is None


# ─────────────────────────────────────────────
# Site-level records
# ─────────────────────────────────────────────

class SEOIssue(BaseModel):
    """A site-wide aggregate finding produced after crawling completes."""
    model_config = ConfigDict(frozen=True)

    rule_id: str
    type: IssueType
    category: ScoreCategory
    issue: str
    suggestion: str
    impact: Impact
    count: int = 0
    affected_urls: list[str] = Field(default_factory=list)


class CategoryScores(BaseModel):
    model_config = ConfigDict(frozen=True)

    technical: float = Field(ge=0.0, le=100.0, default=0.0)
    content: float = Field(ge=0.0, le=100.0, default=0.0)
    performance: float = Field(ge=0.0, le=100.0, default=0.0)
    mobile: float = Field(ge=0.0, le=100.0, default=0.0)
    accessibility: float = Field(ge=0.0, le=100.0, default=0.0)
    social: float = Field(ge=0.0, le=100.0, default=0.0)

    def values(self) -> list[float]:
        return [getattr(self, category.value) for category in ScoreCategory]

    @property
    def overall(self) -> int:
        """Unweighted mean of the six categories, rounded."""
        values = self.values()
        return round(sum(values) / len(values))


class ErrorLogEntry(BaseModel):
    model_config = ConfigDict(frozen=True)

    url: str
    message: str
    stage: str = "fetch"
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class CrawlStats(BaseModel):
    model_config = ConfigDict(frozen=True)

    total_pages: int = 0
    crawled_pages: int = 0
    error_pages: int = 0
    unique_urls: int = 0
    discovered_urls: int = 0
    duplicates_found: int = 0
    avg_load_time: float = 0.0
    avg_page_size: float = 0.0
    avg_word_count: float = 0.0
    bytes_processed: int = 0
    network_requests: int = 0


class TechnicalInsights(BaseModel):
    model_config = ConfigDict(frozen=True)

    structured_data: int = 0
    mobile_viewport: int = 0
    duplicate_titles: int = 0
    duplicate_metas: int = 0
    orphan_pages: int = 0
    has_robots_txt: bool = False
    has_sitemap: bool = False
    sitemap_count: int = 0
    ssl_enabled: bool = False
    pages_with_favicon: int = 0
    pages_with_hreflang: int = 0
    pages_with_meta_keywords: int = 0
    broken_internal_links: int = 0
    max_crawl_depth: int = 0
    robots_txt_size: int = 0
    avg_lcp_ms: float = 0.0


class AnalysisResult(BaseModel):
    """Final (or, for stopped runs, partial) report of one analysis run."""
    model_config = ConfigDict(frozen=True)

    url: str
    state: RunState
    overall_score: int = Field(ge=0, le=100, default=0)
    scores: CategoryScores = Field(default_factory=CategoryScores)
    issues: list[SEOIssue] = Field(default_factory=list)
    pages: list[PageAnalysis] = Field(default_factory=list)
    crawl_stats: CrawlStats = Field(default_factory=CrawlStats)
    technical_insights: TechnicalInsights = Field(default_factory=TechnicalInsights)
    scan_time: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    robots_txt: str = ""
    sitemap_urls: list[str] = Field(default_factory=list)
    error_log: list[ErrorLogEntry] = Field(default_factory=list)
    crawl_duration_seconds: float = 0.0


class ProgressSnapshot(BaseModel):
    """Immutable view of a run pushed to the progress consumer."""
    model_config = ConfigDict(frozen=True)

    phase: ProgressPhase
    state: RunState
    is_active: bool
    is_paused: bool = False
    current_url: str = ""
    pages_found: int = 0
    pages_crawled: int = 0
    queue_size: int = 0
    error_count: int = 0
    duplicates_found: int = 0
    current_depth: int = 0
    max_depth_seen: int = 0
    max_depth: int | None = None
    robots_txt_found: bool = False
    sitemap_found: bool = False
    sitemap_count: int = 0
    bytes_processed: int = 0
    network_requests: int = 0
    elapsed_seconds: float = 0.0
    crawl_speed: float = 0.0
    discovery_rate: float = 0.0
    success_rate: float = 100.0
    avg_response_time_ms: float = 0.0
    estimated_time_remaining: float | None = None
    memory_estimate_mb: float = 0.0
