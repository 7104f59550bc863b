"""
Tests for the finding rule catalogue and registry.
"""

import pytest

from seo_crawler.core.rule_engine import RuleMatch, RuleRegistry
from seo_crawler.engines.base import FindingCategory, FindingContext, Indexability, Severity
from seo_crawler.engines.findings.rules import FINDING_RULES, format_bytes, run_finding_rules

CATALOGUE = [
    "RULE_STATUS_4XX",
    "RULE_STATUS_5XX",
    "RULE_REDIRECT_CHAIN_LONG",
    "RULE_CANONICAL_MISSING",
    "RULE_CANONICALIZED_AWAY",
    "RULE_META_NOINDEX",
    "RULE_TITLE_MISSING",
    "RULE_TITLE_TOO_LONG",
    "RULE_TITLE_TOO_SHORT",
    "RULE_META_DESC_MISSING",
    "RULE_META_DESC_TOO_LONG",
    "RULE_H1_MISSING",
    "RULE_H1_MULTIPLE",
    "RULE_H2_TOO_MANY",
    "RULE_H2_DUPLICATE",
    "RULE_THIN_CONTENT",
    "RULE_LOW_READABILITY",
    "RULE_ORPHAN_PAGE",
    "RULE_NO_OUTLINKS",
    "RULE_EXTERNAL_LINKS_EXCESSIVE",
    "RULE_INTERNAL_LINK_NO_ANCHOR",
    "RULE_BROKEN_EXTERNAL_LINKS",
    "RULE_IMG_MISSING_ALT",
    "RULE_IMG_MISSING_SIZE",
    "RULE_IMG_OVERSIZED",
    "RULE_MISSING_REFERRER_POLICY",
    "RULE_MISSING_X_CONTENT_TYPE_OPTIONS",
    "RULE_MISSING_CSP",
    "RULE_MISSING_X_FRAME_OPTIONS",
]

SECURE_HEADERS = {
    "referrer-policy": "strict-origin-when-cross-origin",
    "x-content-type-options": "nosniff",
    "content-security-policy": "default-src 'self'",
    "x-frame-options": "SAMEORIGIN",
}


def clean_context(**overrides) -> FindingContext:
    """An indexable page that trips no rule."""
    fields = {
        "url": "https://example.com/guide",
        "status_code": 200,
        "canonical_url": "https://example.com/guide",
        "indexability": Indexability.INDEXABLE,
        "title": "A complete guide to choosing the right widget",
        "title_len": 45,
        "meta_description": "Everything you need to know before buying a widget.",
        "meta_description_len": 51,
        "h1_count": 1,
        "h1_texts": ["Choosing a widget"],
        "h2_count": 3,
        "word_count": 800,
        "visible_text_len": 4800,
        "flesch_reading_ease": 62.0,
        "outlinks_count": 5,
        "external_links_count": 2,
        "external_links_followed": 2,
        "images_count": 2,
        "response_headers": dict(SECURE_HEADERS),
    }
    fields.update(overrides)
    return FindingContext(**fields)


def rule_ids(ctx: FindingContext) -> list[str]:
    return [f.rule_id for f in run_finding_rules(ctx)]


class TestCatalogue:

    def test_catalogue_order(self):
        assert [r.id for r in FINDING_RULES] == CATALOGUE

    def test_clean_page_has_no_findings(self):
        assert run_finding_rules(clean_context()) == []

    def test_deterministic(self):
        ctx = clean_context(title=None, title_len=0, h1_count=3, word_count=20)
        assert run_finding_rules(ctx) == run_finding_rules(ctx)

    def test_findings_follow_catalogue_order(self):
        ctx = clean_context(
            title=None,
            title_len=0,
            h1_count=0,
            word_count=50,
            response_headers={},
        )
        ids = rule_ids(ctx)
        assert ids == sorted(ids, key=CATALOGUE.index)
        assert ids[:3] == ["RULE_TITLE_MISSING", "RULE_H1_MISSING", "RULE_THIN_CONTENT"]

    def test_finding_shape(self):
        finding = run_finding_rules(clean_context(canonical_url=None))[0]
        data = finding.model_dump(mode="json", by_alias=True)
        assert data["ruleId"] == "RULE_CANONICAL_MISSING"
        assert data["category"] == "canonicals"
        assert data["severity"] == "medium"
        assert data["suggestedAction"]["actionType"] == "add_canonical"
        assert data["suggestedAction"]["target"]["url"] == "https://example.com/guide"
        assert data["suggestedAction"]["proposedValue"] == "https://example.com/guide"


class TestRules:

    def test_long_title_yields_single_low_finding(self):
        title = "x" * 80
        findings = run_finding_rules(clean_context(title=title, title_len=80))
        assert len(findings) == 1
        assert findings[0].rule_id == "RULE_TITLE_TOO_LONG"
        assert findings[0].severity == Severity.LOW

    def test_short_title(self):
        assert rule_ids(clean_context(title="Widgets", title_len=7)) == ["RULE_TITLE_TOO_SHORT"]

    def test_404_is_high(self):
        ctx = clean_context(status_code=404, indexability=Indexability.NON_HTML)
        findings = run_finding_rules(ctx)
        assert [f.rule_id for f in findings] == ["RULE_STATUS_4XX"]
        assert findings[0].severity == Severity.HIGH

    def test_other_4xx_is_medium(self):
        findings = run_finding_rules(clean_context(status_code=410, indexability=Indexability.NON_HTML))
        assert findings[0].severity == Severity.MEDIUM

    def test_5xx_is_critical(self):
        findings = run_finding_rules(clean_context(status_code=503, indexability=Indexability.NON_HTML))
        assert [f.rule_id for f in findings] == ["RULE_STATUS_5XX"]
        assert findings[0].severity == Severity.CRITICAL

    def test_blocked_page_has_no_content_findings(self):
        ctx = FindingContext(
            url="https://example.com/private",
            status_code=None,
            indexability=Indexability.BLOCKED_BY_ROBOTS,
        )
        assert run_finding_rules(ctx) == []

    def test_redirect_chain(self):
        chain = ["https://example.com/old", "https://example.com/new"]
        findings = run_finding_rules(clean_context(redirect_chain=chain))
        assert [f.rule_id for f in findings] == ["RULE_REDIRECT_CHAIN_LONG"]
        assert findings[0].suggested_action.proposed_value == "https://example.com/new"

    def test_canonicalized_away_skips_indexable_rules(self):
        ctx = clean_context(
            indexability=Indexability.CANONICALIZED_AWAY,
            canonical_url="https://example.com/other",
            h1_count=0,
        )
        assert rule_ids(ctx) == ["RULE_CANONICALIZED_AWAY"]

    def test_noindex_only_flagged_when_in_sitemap(self):
        ctx = clean_context(robots_meta="noindex", indexability=Indexability.NOINDEX)
        assert rule_ids(ctx) == []
        assert rule_ids(ctx.model_copy(update={"is_in_sitemap": True})) == ["RULE_META_NOINDEX"]

    def test_headings(self):
        ctx = clean_context(h1_count=2, h1_texts=["A", "B"], h2_count=12, h2_duplicates=["Specs"])
        assert rule_ids(ctx) == ["RULE_H1_MULTIPLE", "RULE_H2_TOO_MANY", "RULE_H2_DUPLICATE"]

    def test_low_readability_needs_enough_words(self):
        assert rule_ids(clean_context(flesch_reading_ease=20.0)) == ["RULE_LOW_READABILITY"]
        assert "RULE_LOW_READABILITY" not in rule_ids(clean_context(flesch_reading_ease=20.0, word_count=90))

    def test_readability_evidence(self):
        ctx = clean_context(flesch_reading_ease=20.0, avg_words_per_sentence=31.25, avg_syllables_per_word=1.876)
        evidence = run_finding_rules(ctx)[0].evidence
        assert evidence["avgWordsPerSentence"] == 31.2
        assert evidence["avgSyllablesPerWord"] == 1.88

    def test_orphan_needs_known_inlink_count(self):
        assert rule_ids(clean_context(is_in_sitemap=True)) == []
        findings = run_finding_rules(clean_context(is_in_sitemap=True, inlinks_count=0))
        assert [f.rule_id for f in findings] == ["RULE_ORPHAN_PAGE"]
        assert findings[0].severity == Severity.MEDIUM

    def test_links(self):
        ctx = clean_context(
            outlinks_count=0,
            external_links_followed=30,
            internal_links_no_anchor=2,
            broken_external_links=[{"url": "https://gone.test/", "statusCode": 404}],
        )
        assert rule_ids(ctx) == [
            "RULE_NO_OUTLINKS",
            "RULE_EXTERNAL_LINKS_EXCESSIVE",
            "RULE_INTERNAL_LINK_NO_ANCHOR",
            "RULE_BROKEN_EXTERNAL_LINKS",
        ]

    def test_images(self):
        ctx = clean_context(
            images_missing_alt=1,
            images_missing_size=2,
            oversized_images=[{"src": "https://example.com/hero.jpg", "bytes": 512_000}],
        )
        findings = run_finding_rules(ctx)
        assert [f.rule_id for f in findings] == [
            "RULE_IMG_MISSING_ALT",
            "RULE_IMG_MISSING_SIZE",
            "RULE_IMG_OVERSIZED",
        ]
        assert findings[2].evidence["totalBytes"] == 512_000
        assert "500.0 KB" in findings[2].summary

    def test_missing_security_headers(self):
        headers = dict(SECURE_HEADERS)
        del headers["content-security-policy"]
        findings = run_finding_rules(clean_context(response_headers=headers))
        assert [f.rule_id for f in findings] == ["RULE_MISSING_CSP"]
        assert findings[0].category == FindingCategory.SECURITY
        assert findings[0].severity == Severity.LOW

    def test_security_headers_only_for_indexable_pages(self):
        ctx = clean_context(response_headers={}, indexability=Indexability.NOINDEX)
        assert rule_ids(ctx) == []


class TestRuleRegistry:

    def test_duplicate_rule_id_rejected(self):
        registry = RuleRegistry()
        registry.rule("RULE_X", FindingCategory.CONTENT)(lambda ctx: None)
        with pytest.raises(ValueError):
            registry.rule("RULE_X", FindingCategory.CONTENT)(lambda ctx: None)

    def test_failing_rule_is_skipped(self):
        registry = RuleRegistry()

        @registry.rule("RULE_BROKEN", FindingCategory.CONTENT)
        def broken(ctx):
            raise TypeError("boom")

        @registry.rule("RULE_OK", FindingCategory.CONTENT)
        def ok(ctx):
            return RuleMatch(severity=Severity.LOW, summary="ok", action_type="noop", notes="")

        findings = registry.evaluate(clean_context())
        assert [f.rule_id for f in findings] == ["RULE_OK"]

    def test_get_by_category(self):
        registry = RuleRegistry()
        registry.rule("RULE_A", FindingCategory.CONTENT)(lambda ctx: None)
        registry.rule("RULE_B", FindingCategory.LINKS)(lambda ctx: None)
        assert [r.id for r in registry.get_by_category(FindingCategory.LINKS)] == ["RULE_B"]


class TestFormatBytes:

    def test_units(self):
        assert format_bytes(512) == "512 B"
        assert format_bytes(2048) == "2.0 KB"
        assert format_bytes(3 * 1024 * 1024) == "3.0 MB"
