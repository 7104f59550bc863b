"""
Post-crawl analysis: orphan-page detection and report aggregation.

Both run only after the crawl has terminated, since inbound-link counts
are final only once every page's outbound links have been observed.
"""

from __future__ import annotations

from collections import Counter

import structlog

from seo_crawler.core.config import get_settings
from seo_crawler.core.rule_engine import calculate_health_score
from seo_crawler.engines.base import (
    CrawledPage,
    CrawlFinding,
    CrawlReport,
    FindingContext,
    Indexability,
    PageSummary,
    ReportSummary,
    Severity,
    SeverityCounts,
)
from seo_crawler.engines.crawler.urls import URLNormalizer
from seo_crawler.engines.findings.rules import registry

logger = structlog.get_logger(__name__)

ORPHAN_RULE_ID = "RULE_ORPHAN_PAGE"


# ─────────────────────────────────────────────
# Orphan Pages
# ─────────────────────────────────────────────

def detect_orphan_pages(
    pages: list[CrawledPage],
    sitemap_urls: set[str],
    inlink_counts: dict[str, int],
    findings: list[CrawlFinding],
) -> list[CrawlFinding]:
    """
    Flag sitemap-listed pages that no crawled page links to.
    Returns only the new findings; pages already flagged are skipped.
    """
    orphan_rule = registry.get_by_id(ORPHAN_RULE_ID)
    flagged = {f.url for f in findings if f.rule_id == ORPHAN_RULE_ID}
    new_findings: list[CrawlFinding] = []

    for page in pages:
        normalized = URLNormalizer.normalize(page.url)
        if not normalized or normalized not in sitemap_urls or inlink_counts.get(normalized):
            continue
        if page.url in flagged:
            continue

        ctx = FindingContext(
            url=page.url,
            status_code=page.status_code,
            indexability=page.indexability,
            is_in_sitemap=True,
            inlinks_count=0,
        )
        finding = orphan_rule.evaluate(ctx)
        if finding is not None:
            new_findings.append(finding)
            flagged.add(page.url)

    if new_findings:
        logger.info("Orphan pages detected", count=len(new_findings))
    return new_findings


# ─────────────────────────────────────────────
# Report Aggregator
# ─────────────────────────────────────────────

class ReportAggregator:
    """Assembles counts, breakdowns and the health score into a CrawlReport."""

    def __init__(self, max_findings: int | None = None):
        self.max_findings = max_findings or get_settings().REPORT_MAX_FINDINGS

    def build(
        self,
        pages: list[CrawledPage],
        findings: list[CrawlFinding],
        sitemap_urls_found: int,
        duration_ms: int,
        cancelled: bool = False,
    ) -> CrawlReport:
        by_severity = Counter(f.severity for f in findings)
        by_category = Counter(f.category.value for f in findings)

        indexable = len([p for p in pages if p.indexability == Indexability.INDEXABLE])
        errors = len([p for p in pages if p.status_code >= 400 or p.status_code == 0])

        severity_counts = SeverityCounts(
            critical=by_severity[Severity.CRITICAL],
            high=by_severity[Severity.HIGH],
            medium=by_severity[Severity.MEDIUM],
            low=by_severity[Severity.LOW],
        )

        return CrawlReport(
            pages_crawled=len(pages),
            indexable_pages=indexable,
            error_pages=errors,
            sitemap_urls_found=sitemap_urls_found,
            duration_ms=duration_ms,
            findings_count=len(findings),
            findings_by_severity=severity_counts,
            findings_by_category=dict(by_category),
            findings=findings[:self.max_findings],
            pages_summary=[
                PageSummary(
                    url=p.url,
                    status=p.status_code,
                    indexability=p.indexability,
                    title=p.title,
                    word_count=p.word_count,
                )
                for p in pages
            ],
            homepage_html=next((p.html for p in pages if p.html), ""),
            cancelled=cancelled,
            summary=ReportSummary(
                health_score=calculate_health_score(len(pages), findings),
                pages_crawled=len(pages),
                indexable=indexable,
                errors=errors,
                findings=len(findings),
                critical=severity_counts.critical,
                high=severity_counts.high,
                medium=severity_counts.medium,
                low=severity_counts.low,
            ),
        )
