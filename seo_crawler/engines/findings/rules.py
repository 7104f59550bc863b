"""
SEO finding rules for the technical crawler.

Catalogue order is evaluation order and therefore the order findings appear
in for a page. Rules read only the FindingContext they are given.
"""

from __future__ import annotations

from seo_crawler.core.rule_engine import RuleMatch, RuleRegistry
from seo_crawler.engines.base import (
    CrawlFinding,
    FindingCategory,
    FindingContext,
    Indexability,
    Severity,
)

registry = RuleRegistry()
rule = registry.rule

# Thresholds
TITLE_MIN_LENGTH = 30
TITLE_MAX_LENGTH = 60
META_DESC_MAX_LENGTH = 160
H2_MAX_COUNT = 10
THIN_CONTENT_WORDS = 200
READABILITY_MAX_SCORE = 30
READABILITY_MIN_WORDS = 100
EXTERNAL_LINKS_MAX = 25

SECURITY_HEADERS = (
    ("RULE_MISSING_REFERRER_POLICY", "Referrer-Policy", "strict-origin-when-cross-origin"),
    ("RULE_MISSING_X_CONTENT_TYPE_OPTIONS", "X-Content-Type-Options", "nosniff"),
    ("RULE_MISSING_CSP", "Content-Security-Policy", "default-src 'self'"),
    ("RULE_MISSING_X_FRAME_OPTIONS", "X-Frame-Options", "SAMEORIGIN"),
)


def format_bytes(size: int) -> str:
    """Human-readable byte count: 512 B, 245.3 KB, 1.4 MB."""
    if size < 1024:
        return f"{size} B"
    if size < 1024 * 1024:
        return f"{size / 1024:.1f} KB"
    return f"{size / (1024 * 1024):.1f} MB"


def _indexable(ctx: FindingContext) -> bool:
    return ctx.indexability == Indexability.INDEXABLE


# ── Response codes ─────────────────────────────

@rule("RULE_STATUS_4XX", FindingCategory.RESPONSE_CODES)
def status_4xx(ctx: FindingContext) -> RuleMatch | None:
    if ctx.status_code and 400 <= ctx.status_code < 500:
        not_found = ctx.status_code == 404
        return RuleMatch(
            severity=Severity.HIGH if not_found else Severity.MEDIUM,
            summary=f"Page returns {ctx.status_code} error",
            evidence={"statusCode": ctx.status_code},
            action_type="fix_link",
            notes="Page not found - update or remove links" if not_found else f"Fix {ctx.status_code} error",
        )
    return None


@rule("RULE_STATUS_5XX", FindingCategory.RESPONSE_CODES)
def status_5xx(ctx: FindingContext) -> RuleMatch | None:
    if ctx.status_code and ctx.status_code >= 500:
        return RuleMatch(
            severity=Severity.CRITICAL,
            summary=f"Server error {ctx.status_code}",
            evidence={"statusCode": ctx.status_code},
            action_type="investigate_rendering",
            notes="Server error - investigate server logs",
        )
    return None


@rule("RULE_REDIRECT_CHAIN_LONG", FindingCategory.RESPONSE_CODES)
def redirect_chain_long(ctx: FindingContext) -> RuleMatch | None:
    if len(ctx.redirect_chain) > 1:
        hops = len(ctx.redirect_chain) - 1
        return RuleMatch(
            severity=Severity.LOW,
            summary=f"Redirect chain has {hops} hop{'s' if hops != 1 else ''}",
            evidence={"redirectChain": list(ctx.redirect_chain)},
            action_type="fix_link",
            proposed_value=ctx.redirect_chain[-1],
            notes="Link directly to the final URL to avoid redirects",
        )
    return None


# ── Canonicals & indexing ──────────────────────

@rule("RULE_CANONICAL_MISSING", FindingCategory.CANONICALS)
def canonical_missing(ctx: FindingContext) -> RuleMatch | None:
    if _indexable(ctx) and not ctx.canonical_url:
        return RuleMatch(
            severity=Severity.MEDIUM,
            summary="Missing canonical tag",
            action_type="add_canonical",
            selector='link[rel="canonical"]',
            proposed_value=ctx.url,
            notes="Add self-referencing canonical",
        )
    return None


@rule("RULE_CANONICALIZED_AWAY", FindingCategory.CANONICALS)
def canonicalized_away(ctx: FindingContext) -> RuleMatch | None:
    if ctx.indexability == Indexability.CANONICALIZED_AWAY:
        return RuleMatch(
            severity=Severity.HIGH,
            summary="Page canonicalizes to a different URL",
            evidence={"canonicalUrl": ctx.canonical_url},
            action_type="fix_canonical",
            selector='link[rel="canonical"]',
            proposed_value=ctx.url,
            notes="Point the canonical at this URL or link to the canonical version instead",
        )
    return None


@rule("RULE_META_NOINDEX", FindingCategory.CANONICALS)
def meta_noindex_in_sitemap(ctx: FindingContext) -> RuleMatch | None:
    directives = " ".join(d for d in (ctx.robots_meta, ctx.x_robots_tag) if d).lower()
    if "noindex" in directives and ctx.is_in_sitemap:
        return RuleMatch(
            severity=Severity.HIGH,
            summary="Page has noindex but is in sitemap",
            evidence={"robotsMeta": ctx.robots_meta, "xRobotsTag": ctx.x_robots_tag},
            action_type="remove_noindex",
            selector='meta[name="robots"]',
            notes="Remove noindex or remove from sitemap",
        )
    return None


# ── Titles & meta descriptions ─────────────────

@rule("RULE_TITLE_MISSING", FindingCategory.TITLES)
def title_missing(ctx: FindingContext) -> RuleMatch | None:
    if _indexable(ctx) and not (ctx.title or "").strip():
        return RuleMatch(
            severity=Severity.HIGH,
            summary="Missing title tag",
            action_type="set_title",
            selector="title",
            notes="Add a descriptive title tag",
        )
    return None


@rule("RULE_TITLE_TOO_LONG", FindingCategory.TITLES)
def title_too_long(ctx: FindingContext) -> RuleMatch | None:
    if ctx.title_len > TITLE_MAX_LENGTH:
        return RuleMatch(
            severity=Severity.LOW,
            summary=f"Title too long ({ctx.title_len} chars)",
            evidence={"titleLen": ctx.title_len, "title": ctx.title},
            action_type="set_title",
            selector="title",
            notes=f"Shorten title to under {TITLE_MAX_LENGTH} characters",
        )
    return None


@rule("RULE_TITLE_TOO_SHORT", FindingCategory.TITLES)
def title_too_short(ctx: FindingContext) -> RuleMatch | None:
    if ctx.title and 0 < ctx.title_len < TITLE_MIN_LENGTH:
        return RuleMatch(
            severity=Severity.LOW,
            summary=f"Title too short ({ctx.title_len} chars)",
            evidence={"titleLen": ctx.title_len, "title": ctx.title},
            action_type="set_title",
            selector="title",
            notes="Expand title to be more descriptive",
        )
    return None


@rule("RULE_META_DESC_MISSING", FindingCategory.TITLES)
def meta_description_missing(ctx: FindingContext) -> RuleMatch | None:
    if _indexable(ctx) and not (ctx.meta_description or "").strip():
        return RuleMatch(
            severity=Severity.MEDIUM,
            summary="Missing meta description",
            action_type="set_meta_description",
            selector='meta[name="description"]',
            notes="Add a compelling meta description",
        )
    return None


@rule("RULE_META_DESC_TOO_LONG", FindingCategory.TITLES)
def meta_description_too_long(ctx: FindingContext) -> RuleMatch | None:
    if ctx.meta_description_len > META_DESC_MAX_LENGTH:
        return RuleMatch(
            severity=Severity.LOW,
            summary=f"Meta description too long ({ctx.meta_description_len} chars)",
            evidence={"metaDescriptionLen": ctx.meta_description_len},
            action_type="set_meta_description",
            selector='meta[name="description"]',
            notes=f"Shorten to under {META_DESC_MAX_LENGTH} characters",
        )
    return None


# ── Headings ───────────────────────────────────

@rule("RULE_H1_MISSING", FindingCategory.HEADINGS)
def h1_missing(ctx: FindingContext) -> RuleMatch | None:
    if _indexable(ctx) and ctx.h1_count == 0:
        return RuleMatch(
            severity=Severity.HIGH,
            summary="Missing H1 heading",
            action_type="set_h1",
            selector="h1",
            notes="Add a single H1 heading",
        )
    return None


@rule("RULE_H1_MULTIPLE", FindingCategory.HEADINGS)
def h1_multiple(ctx: FindingContext) -> RuleMatch | None:
    if ctx.h1_count > 1:
        return RuleMatch(
            severity=Severity.MEDIUM,
            summary=f"Multiple H1 headings ({ctx.h1_count})",
            evidence={"h1Count": ctx.h1_count, "h1Texts": list(ctx.h1_texts)},
            action_type="set_h1",
            selector="h1",
            notes="Use only one H1 heading per page",
        )
    return None


@rule("RULE_H2_TOO_MANY", FindingCategory.HEADINGS)
def h2_too_many(ctx: FindingContext) -> RuleMatch | None:
    if ctx.h2_count > H2_MAX_COUNT:
        return RuleMatch(
            severity=Severity.LOW,
            summary=f"Many H2 headings ({ctx.h2_count})",
            evidence={"h2Count": ctx.h2_count, "h2Texts": list(ctx.h2_texts)},
            action_type="restructure_headings",
            selector="h2",
            notes="Consider grouping sections under fewer H2 headings",
        )
    return None


@rule("RULE_H2_DUPLICATE", FindingCategory.HEADINGS)
def h2_duplicate(ctx: FindingContext) -> RuleMatch | None:
    if ctx.h2_duplicates:
        return RuleMatch(
            severity=Severity.LOW,
            summary=f"Duplicate H2 headings ({len(ctx.h2_duplicates)})",
            evidence={"h2Duplicates": list(ctx.h2_duplicates)},
            action_type="restructure_headings",
            selector="h2",
            notes="Give each H2 heading a distinct label",
        )
    return None


# ── Content ────────────────────────────────────

@rule("RULE_THIN_CONTENT", FindingCategory.CONTENT)
def thin_content(ctx: FindingContext) -> RuleMatch | None:
    if _indexable(ctx) and ctx.word_count < THIN_CONTENT_WORDS:
        return RuleMatch(
            severity=Severity.MEDIUM,
            summary=f"Thin content ({ctx.word_count} words)",
            evidence={"wordCount": ctx.word_count, "visibleTextLen": ctx.visible_text_len},
            action_type="expand_content",
            notes="Add more valuable content",
        )
    return None


@rule("RULE_LOW_READABILITY", FindingCategory.CONTENT)
def low_readability(ctx: FindingContext) -> RuleMatch | None:
    score = ctx.flesch_reading_ease
    if score is not None and score <= READABILITY_MAX_SCORE and ctx.word_count > READABILITY_MIN_WORDS:
        return RuleMatch(
            severity=Severity.LOW,
            summary=f"Content is hard to read (Flesch {score:.0f})",
            evidence={
                "fleschReadingEase": score,
                "wordCount": ctx.word_count,
                "avgWordsPerSentence": round(ctx.avg_words_per_sentence, 1),
                "avgSyllablesPerWord": round(ctx.avg_syllables_per_word, 2),
            },
            action_type="simplify_content",
            notes="Use shorter sentences and simpler words",
        )
    return None


# ── Links ──────────────────────────────────────

@rule("RULE_ORPHAN_PAGE", FindingCategory.LINKS)
def orphan_page(ctx: FindingContext) -> RuleMatch | None:
    if ctx.is_in_sitemap and ctx.inlinks_count == 0:
        return RuleMatch(
            severity=Severity.MEDIUM,
            summary="Orphan page - in sitemap but no internal links",
            evidence={"inlinksCount": 0, "isInSitemap": True},
            action_type="add_internal_link",
            notes="Add internal links to this page",
        )
    return None


@rule("RULE_NO_OUTLINKS", FindingCategory.LINKS)
def no_outlinks(ctx: FindingContext) -> RuleMatch | None:
    if _indexable(ctx) and ctx.outlinks_count == 0:
        return RuleMatch(
            severity=Severity.LOW,
            summary="Page has no outgoing links",
            evidence={"outlinksCount": 0},
            action_type="add_internal_link",
            notes="Add relevant internal links",
        )
    return None


@rule("RULE_EXTERNAL_LINKS_EXCESSIVE", FindingCategory.LINKS)
def external_links_excessive(ctx: FindingContext) -> RuleMatch | None:
    if ctx.external_links_followed > EXTERNAL_LINKS_MAX:
        return RuleMatch(
            severity=Severity.LOW,
            summary=f"{ctx.external_links_followed} followed external links",
            evidence={
                "externalLinksFollowed": ctx.external_links_followed,
                "externalLinksCount": ctx.external_links_count,
            },
            action_type="add_nofollow",
            selector="a[href^='http']",
            notes='Add rel="nofollow" to links you do not vouch for',
        )
    return None


@rule("RULE_INTERNAL_LINK_NO_ANCHOR", FindingCategory.LINKS)
def internal_link_no_anchor(ctx: FindingContext) -> RuleMatch | None:
    if ctx.internal_links_no_anchor > 0:
        return RuleMatch(
            severity=Severity.LOW,
            summary=f"{ctx.internal_links_no_anchor} internal links without anchor text",
            evidence={"internalLinksNoAnchor": ctx.internal_links_no_anchor},
            action_type="set_anchor_text",
            selector="a",
            notes="Give internal links descriptive anchor text",
        )
    return None


@rule("RULE_BROKEN_EXTERNAL_LINKS", FindingCategory.LINKS)
def broken_external_links(ctx: FindingContext) -> RuleMatch | None:
    if ctx.broken_external_links:
        return RuleMatch(
            severity=Severity.MEDIUM,
            summary=f"{len(ctx.broken_external_links)} broken external links",
            evidence={"brokenLinks": list(ctx.broken_external_links)},
            action_type="fix_link",
            notes="Update or remove links to unreachable pages",
        )
    return None


# ── Images ─────────────────────────────────────

@rule("RULE_IMG_MISSING_ALT", FindingCategory.IMAGES)
def images_missing_alt(ctx: FindingContext) -> RuleMatch | None:
    if ctx.images_missing_alt > 0:
        return RuleMatch(
            severity=Severity.MEDIUM,
            summary=f"{ctx.images_missing_alt} images missing alt text",
            evidence={"imagesMissingAlt": ctx.images_missing_alt},
            action_type="add_alt_text",
            selector="img:not([alt])",
            notes="Add descriptive alt text to images",
        )
    return None


@rule("RULE_IMG_MISSING_SIZE", FindingCategory.IMAGES)
def images_missing_size(ctx: FindingContext) -> RuleMatch | None:
    if ctx.images_missing_size > 0:
        return RuleMatch(
            severity=Severity.LOW,
            summary=f"{ctx.images_missing_size} images missing width/height",
            evidence={"imagesMissingSize": ctx.images_missing_size},
            action_type="set_image_dimensions",
            selector="img",
            notes="Add width/height to prevent layout shifts",
        )
    return None


@rule("RULE_IMG_OVERSIZED", FindingCategory.IMAGES)
def images_oversized(ctx: FindingContext) -> RuleMatch | None:
    if ctx.oversized_images:
        total = sum(img.get("bytes", 0) for img in ctx.oversized_images)
        return RuleMatch(
            severity=Severity.MEDIUM,
            summary=f"{len(ctx.oversized_images)} large images ({format_bytes(total)} total)",
            evidence={"images": list(ctx.oversized_images), "totalBytes": total},
            action_type="compress_image",
            selector="img",
            notes="Compress or resize images and serve modern formats",
        )
    return None


# ── Security headers ───────────────────────────

def _register_security_header_rule(rule_id: str, header: str, recommended: str) -> None:
    key = header.lower()

    @rule(rule_id, FindingCategory.SECURITY)
    def missing_header(ctx: FindingContext) -> RuleMatch | None:
        if _indexable(ctx) and key not in ctx.response_headers:
            return RuleMatch(
                severity=Severity.LOW,
                summary=f"Missing {header} header",
                evidence={"header": header},
                action_type="set_response_header",
                selector=header,
                proposed_value=recommended,
                notes=f"Send `{header}: {recommended}`",
            )
        return None


for _rule_id, _header, _recommended in SECURITY_HEADERS:
    _register_security_header_rule(_rule_id, _header, _recommended)


FINDING_RULES = registry.get_all()


def run_finding_rules(ctx: FindingContext) -> list[CrawlFinding]:
    """Evaluate the full catalogue against one page."""
    return registry.evaluate(ctx)
