"""
HTML signal extraction and indexability classification.

parse_html() turns a fetched page into the SEO-relevant fields the finding
rules inspect. classify_indexability() is a pure decision function; its
evaluation order is policy:

    status -> content type -> robots.txt -> noindex -> canonical -> indexable
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from urllib.parse import urlparse, urlunparse

import structlog
from bs4 import BeautifulSoup

from seo_crawler.engines.base import Indexability
from seo_crawler.engines.crawler.urls import URLNormalizer

logger = structlog.get_logger(__name__)

EXCLUDED_LINK_SCHEMES = ("javascript:", "mailto:", "tel:")
INVISIBLE_TAGS = ["script", "style", "noscript", "nav", "footer", "header", "aside"]
TRACKING_PIXEL_PREFIX = "data:image/gif;base64,R0lGOD"
H2_EVIDENCE_LIMIT = 20

_SENTENCE_SPLIT = re.compile(r"[.!?]+")
_NON_ALPHA = re.compile(r"[^a-z]")
_SILENT_SUFFIX = re.compile(r"(?:[^laeiouy]es|ed|[^laeiouy]e)$")
_VOWEL_GROUP = re.compile(r"[aeiouy]{1,2}")


@dataclass
class LinkInfo:
    href: str
    text: str | None
    is_internal: bool
    is_followed: bool


@dataclass
class ImageInfo:
    src: str | None
    resolved_src: str | None
    alt: str | None
    has_width: bool
    has_height: bool
    is_broken: bool


@dataclass
class ParsedPage:
    """SEO signals of one HTML document. Discarded once findings are built."""
    title: str | None = None
    title_len: int = 0
    meta_description: str | None = None
    meta_description_len: int = 0
    canonical_url: str | None = None
    robots_meta: str | None = None
    h1_texts: list[str] = field(default_factory=list)
    h2_texts: list[str] = field(default_factory=list)
    h2_count: int = 0
    h2_duplicates: list[str] = field(default_factory=list)
    visible_text_len: int = 0
    word_count: int = 0
    avg_words_per_sentence: float = 0.0
    avg_syllables_per_word: float = 0.0
    flesch_reading_ease: float | None = None
    links: list[LinkInfo] = field(default_factory=list)
    internal_links_no_anchor: int = 0
    external_links_count: int = 0
    external_links_followed: int = 0
    images: list[ImageInfo] = field(default_factory=list)

    @property
    def h1_count(self) -> int:
        return len(self.h1_texts)

    @property
    def internal_links(self) -> list[LinkInfo]:
        return [link for link in self.links if link.is_internal]

    @property
    def images_missing_alt(self) -> int:
        return len([img for img in self.images if not img.alt])

    @property
    def images_missing_size(self) -> int:
        return len([img for img in self.images if not img.has_width or not img.has_height])


# ─────────────────────────────────────────────
# Readability
# ─────────────────────────────────────────────

def count_syllables(word: str) -> int:
    """Rough English syllable count, good enough for Flesch scoring."""
    word = _NON_ALPHA.sub("", word.lower())
    if len(word) <= 3:
        return 1
    word = _SILENT_SUFFIX.sub("", word)
    if word.startswith("y"):
        word = word[1:]
    groups = _VOWEL_GROUP.findall(word)
    return len(groups) if groups else 1


def flesch_reading_ease(text: str) -> tuple[float | None, float, float]:
    """
    Flesch Reading Ease: 206.835 - 1.015*(words/sentences) - 84.6*(syllables/words).

    Returns (score, avg_words_per_sentence, avg_syllables_per_word);
    score is None for text without words.
    """
    words = text.split()
    if not words:
        return None, 0.0, 0.0

    sentences = [s for s in _SENTENCE_SPLIT.split(text) if s.strip()]
    avg_words = len(words) / max(len(sentences), 1)
    avg_syllables = sum(count_syllables(w) for w in words) / len(words)
    score = round(206.835 - 1.015 * avg_words - 84.6 * avg_syllables)
    return float(score), avg_words, avg_syllables


# ─────────────────────────────────────────────
# Extraction
# ─────────────────────────────────────────────

def _meta_content(soup: BeautifulSoup, name: str) -> str | None:
    tag = soup.find("meta", attrs={"name": re.compile(f"^{name}$", re.IGNORECASE)})
    if tag is None:
        return None
    content = (tag.get("content") or "").strip()
    return content or None


def _is_tracking_pixel(src: str, width: str | None, height: str | None) -> bool:
    if src.startswith(TRACKING_PIXEL_PREFIX):
        return True
    return (width or "").strip() == "1" and (height or "").strip() == "1"


def parse_html(html: str, page_url: str, base_domain: str) -> ParsedPage:
    """Extract SEO-relevant structured fields from raw HTML."""
    soup = BeautifulSoup(html, "lxml")
    page = ParsedPage()

    # Title
    title_tag = soup.find("title")
    if title_tag:
        page.title = title_tag.get_text(strip=True) or None
    page.title_len = len(page.title or "")

    # Meta tags
    page.meta_description = _meta_content(soup, "description")
    page.meta_description_len = len(page.meta_description or "")
    page.robots_meta = _meta_content(soup, "robots")

    # Canonical
    canonical = soup.find("link", rel="canonical")
    if canonical and canonical.get("href"):
        page.canonical_url = URLNormalizer.resolve(canonical["href"], page_url)
        if page.canonical_url is None:
            logger.debug("Unresolvable canonical skipped", url=page_url, href=canonical["href"])

    # Headings
    page.h1_texts = [t for t in (h.get_text(strip=True) for h in soup.find_all("h1")) if t]
    h2_tags = soup.find_all("h2")
    page.h2_count = len(h2_tags)
    seen_h2: set[str] = set()
    for h2 in h2_tags[:H2_EVIDENCE_LIMIT]:
        text = h2.get_text(strip=True)
        if not text:
            continue
        page.h2_texts.append(text)
        if text.lower() in seen_h2:
            page.h2_duplicates.append(text)
        seen_h2.add(text.lower())

    # Links
    for a in soup.find_all("a", href=True):
        resolved = URLNormalizer.resolve(a["href"], page_url)
        if not resolved or resolved.lower().startswith(EXCLUDED_LINK_SCHEMES):
            continue

        rel = a.get("rel") or []
        rel_values = rel if isinstance(rel, list) else rel.split()
        is_followed = "nofollow" not in {r.lower() for r in rel_values}
        anchor_text = a.get_text(" ", strip=True)
        img = a.find("img")
        img_alt = (img.get("alt") or "").strip() if img else ""
        is_internal = URLNormalizer.is_internal(resolved, base_domain)

        if is_internal and not (anchor_text or img_alt):
            page.internal_links_no_anchor += 1
        if not is_internal:
            page.external_links_count += 1
            if is_followed:
                page.external_links_followed += 1

        page.links.append(LinkInfo(
            href=resolved,
            text=anchor_text or None,
            is_internal=is_internal,
            is_followed=is_followed,
        ))

    # Images
    for img in soup.find_all("img"):
        src = (img.get("src") or "").strip()
        width, height = img.get("width"), img.get("height")
        page.images.append(ImageInfo(
            src=src or None,
            resolved_src=URLNormalizer.resolve(src, page_url) if src and not src.startswith("data:") else None,
            alt=img.get("alt") or None,
            has_width=bool(width),
            has_height=bool(height),
            is_broken=not src or _is_tracking_pixel(src, width, height),
        ))

    # Visible text
    for tag in soup(INVISIBLE_TAGS):
        tag.decompose()
    root = soup.body or soup
    visible_text = " ".join(root.get_text(separator=" ").split())
    page.visible_text_len = len(visible_text)
    page.word_count = len(visible_text.split())
    (
        page.flesch_reading_ease,
        page.avg_words_per_sentence,
        page.avg_syllables_per_word,
    ) = flesch_reading_ease(visible_text)

    return page


# ─────────────────────────────────────────────
# Indexability
# ─────────────────────────────────────────────

def _comparable_url(url: str) -> str | None:
    """Fragment-free URL with lower-cased scheme/host, or None if not a valid URL."""
    try:
        parsed = urlparse(URLNormalizer.strip_fragment(url.strip()))
    except ValueError:
        return None
    if not parsed.scheme or not parsed.netloc:
        return None
    return urlunparse((
        parsed.scheme.lower(),
        parsed.netloc.lower(),
        parsed.path or "/",
        parsed.params,
        parsed.query,
        "",
    ))


def classify_indexability(
    status_code: int | None,
    robots_meta: str | None,
    x_robots_tag: str | None,
    content_type: str | None,
    canonical_url: str | None,
    page_url: str,
    blocked_by_robots: bool,
) -> Indexability:
    """
    Map HTTP, meta and robots signals to exactly one indexability state.
    status_code is None when the page was never fetched.
    """
    if status_code is not None and not 200 <= status_code < 300:
        return Indexability.NON_HTML
    if content_type and "text/html" not in content_type.lower():
        return Indexability.NON_HTML
    if blocked_by_robots:
        return Indexability.BLOCKED_BY_ROBOTS

    for directive in (robots_meta, x_robots_tag):
        if directive and "noindex" in directive.lower():
            return Indexability.NOINDEX

    if canonical_url:
        canonical = _comparable_url(canonical_url)
        own = _comparable_url(page_url)
        if canonical and own and canonical != own:
            return Indexability.CANONICALIZED_AWAY

    return Indexability.INDEXABLE
