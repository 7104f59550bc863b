"""
Type contracts shared by the crawler, the findings rule engine and the
report aggregator.

Design principles:
- Findings and crawled pages are immutable once produced
- FindingContext is a read-only projection built once per page
- Every report field is declared explicitly (no ad-hoc dict shapes)
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from seo_crawler.core.config import get_settings


# ─────────────────────────────────────────────
# Enums
# ─────────────────────────────────────────────

class Severity(str, Enum):
    CRITICAL = "critical"   # Blocking issue - fix immediately
    HIGH = "high"           # Significant impact - fix soon
    MEDIUM = "medium"       # Moderate impact - fix this sprint
    LOW = "low"             # Minor - fix when convenient


class FindingCategory(str, Enum):
    RESPONSE_CODES = "response_codes"
    CANONICALS = "canonicals"
    TITLES = "titles"
    HEADINGS = "headings"
    CONTENT = "content"
    LINKS = "links"
    IMAGES = "images"
    SECURITY = "security"


class Indexability(str, Enum):
    NON_HTML = "non_html"
    BLOCKED_BY_ROBOTS = "blocked_by_robots"
    NOINDEX = "noindex"
    CANONICALIZED_AWAY = "canonicalized_away"
    INDEXABLE = "indexable"
    ERROR = "error"         # Degraded record only, never produced by the classifier


class QueueSource(str, Enum):
    SEED = "seed"
    SITEMAP = "sitemap"
    LINK = "link"


# ─────────────────────────────────────────────
# Crawl frontier
# ─────────────────────────────────────────────

@dataclass(frozen=True)
class QueueItem:
    """URL in the crawl frontier."""
    url: str
    normalized_url: str
    depth: int
    source: QueueSource


# ─────────────────────────────────────────────
# Run configuration
# ─────────────────────────────────────────────

def _setting(name: str) -> Any:
    return lambda: getattr(get_settings(), name)


class CrawlConfig(BaseModel):
    """Per-run crawl options. Accepts snake_case or camelCase keys."""
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
        extra="ignore",
    )

    max_pages: int = Field(default_factory=_setting("CRAWLER_DEFAULT_MAX_PAGES"), ge=1)
    max_depth: int = Field(default_factory=_setting("CRAWLER_DEFAULT_MAX_DEPTH"), ge=0)
    concurrency: int = Field(default_factory=_setting("CRAWLER_DEFAULT_CONCURRENCY"), ge=1)
    respect_robots: bool = Field(default_factory=_setting("CRAWLER_RESPECT_ROBOTS"))
    request_timeout: float = Field(default_factory=_setting("CRAWLER_REQUEST_TIMEOUT"), gt=0)
    user_agent: str = Field(default_factory=_setting("CRAWLER_USER_AGENT"), min_length=1)
    check_resources: bool = Field(default_factory=_setting("CRAWLER_RESOURCE_CHECKS"))
    max_resource_checks: int = Field(default_factory=_setting("CRAWLER_MAX_RESOURCE_CHECKS"), ge=0)
    large_image_bytes: int = Field(default_factory=_setting("CRAWLER_LARGE_IMAGE_BYTES"), ge=1)

    @field_validator("max_pages")
    @classmethod
    def cap_max_pages(cls, v: int) -> int:
        limit = get_settings().CRAWLER_MAX_PAGES_LIMIT
        if v > limit:
            raise ValueError(f"max_pages must be <= {limit}")
        return v

    @field_validator("concurrency")
    @classmethod
    def cap_concurrency(cls, v: int) -> int:
        limit = get_settings().CRAWLER_MAX_CONCURRENCY
        if v > limit:
            raise ValueError(f"concurrency must be <= {limit}")
        return v

    @property
    def robots_token(self) -> str:
        """Product token matched against robots.txt User-agent lines."""
        return self.user_agent.split("/", 1)[0].strip().lower()


# ─────────────────────────────────────────────
# Findings
# ─────────────────────────────────────────────

class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)


class ActionTarget(_CamelModel):
    url: str
    selector: str | None = None


class SuggestedAction(_CamelModel):
    """Machine-actionable remediation attached to every finding."""
    action_type: str
    target: ActionTarget
    proposed_value: str | None = None
    notes: str = ""


class CrawlFinding(_CamelModel):
    """A single SEO issue detected on a single page."""
    url: str
    category: FindingCategory
    rule_id: str
    severity: Severity
    summary: str
    evidence: dict[str, Any] = Field(default_factory=dict)
    suggested_action: SuggestedAction


class FindingContext(BaseModel):
    """Read-only evidence for one page, passed to every finding rule."""
    model_config = ConfigDict(frozen=True)

    url: str
    status_code: int | None = None
    redirect_chain: list[str] = Field(default_factory=list)
    canonical_url: str | None = None
    robots_meta: str | None = None
    x_robots_tag: str | None = None
    indexability: Indexability
    title: str | None = None
    title_len: int = 0
    meta_description: str | None = None
    meta_description_len: int = 0
    h1_count: int = 0
    h1_texts: list[str] = Field(default_factory=list)
    h2_count: int = 0
    h2_texts: list[str] = Field(default_factory=list)
    h2_duplicates: list[str] = Field(default_factory=list)
    word_count: int = 0
    visible_text_len: int = 0
    flesch_reading_ease: float | None = None
    avg_words_per_sentence: float = 0.0
    avg_syllables_per_word: float = 0.0
    inlinks_count: int | None = None   # None until the crawl has completed
    outlinks_count: int = 0
    external_links_count: int = 0
    external_links_followed: int = 0
    internal_links_no_anchor: int = 0
    broken_external_links: list[dict[str, Any]] = Field(default_factory=list)
    images_count: int = 0
    images_missing_alt: int = 0
    images_missing_size: int = 0
    oversized_images: list[dict[str, Any]] = Field(default_factory=list)
    is_in_sitemap: bool = False
    response_headers: dict[str, str] = Field(default_factory=dict)


# ─────────────────────────────────────────────
# Crawl results
# ─────────────────────────────────────────────

class CrawledPage(BaseModel):
    """Per-URL record kept for the lifetime of the report."""
    model_config = ConfigDict(frozen=True)

    url: str
    status_code: int = 0
    title: str | None = None
    meta_description: str | None = None
    canonical_url: str | None = None
    indexability: Indexability
    h1_count: int = 0
    word_count: int = 0
    internal_links_out: int = 0
    images_missing_alt: int = 0
    images_missing_size: int = 0
    html: str | None = None   # Seed page only

    @classmethod
    def error_record(cls, url: str) -> CrawledPage:
        return cls(url=url, status_code=0, indexability=Indexability.ERROR)


class SeverityCounts(BaseModel):
    critical: int = 0
    high: int = 0
    medium: int = 0
    low: int = 0


class PageSummary(BaseModel):
    url: str
    status: int
    indexability: Indexability
    title: str | None = None
    word_count: int = 0


class ReportSummary(BaseModel):
    health_score: int = Field(ge=0, le=100)
    pages_crawled: int
    indexable: int
    errors: int
    findings: int
    critical: int
    high: int
    medium: int
    low: int


class CrawlReport(BaseModel):
    """JSON document consumed by dashboards and fix automation."""
    ok: bool = True
    service: str = "crawl_render"
    pages_crawled: int
    indexable_pages: int
    error_pages: int
    sitemap_urls_found: int
    duration_ms: int
    findings_count: int
    findings_by_severity: SeverityCounts
    findings_by_category: dict[str, int] = Field(default_factory=dict)
    findings: list[CrawlFinding] = Field(default_factory=list)
    pages_summary: list[PageSummary] = Field(default_factory=list)
    homepage_html: str = ""
    cancelled: bool = False
    summary: ReportSummary

    def to_dict(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)
