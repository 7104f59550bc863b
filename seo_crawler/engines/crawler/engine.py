"""
Crawler Engine - HTTP BFS crawler for technical SEO audits.

Architecture:
- robots.txt and sitemap discovery run once, upfront
- BFS traversal with depth and page caps
- Batches drained by a bounded pool of asyncio workers
- Per page: fetch -> parse -> classify -> finding rules
- Orphan detection and report aggregation after the crawl
- No JS rendering, no retries: one GET per page
"""

from __future__ import annotations

import asyncio
import time
from collections import deque
from dataclasses import dataclass, field
from typing import Any

import httpx
import structlog
from bs4 import BeautifulSoup

from seo_crawler.core.logging import crawl_log_context
from seo_crawler.engines.base import (
    CrawlConfig,
    CrawledPage,
    CrawlFinding,
    CrawlReport,
    FindingContext,
    QueueItem,
    QueueSource,
)
from seo_crawler.engines.crawler.parser import ParsedPage, classify_indexability, parse_html
from seo_crawler.engines.crawler.urls import URLNormalizer, base_domain_of
from seo_crawler.engines.findings.rules import run_finding_rules
from seo_crawler.engines.scoring.engine import ReportAggregator, detect_orphan_pages

logger = structlog.get_logger(__name__)

PROBE_FALLBACK_STATUSES = {405, 501}
RESOURCE_CHECK_CONNECTIONS = 5

# InvalidURL is not an HTTPError subclass
FETCH_ERRORS = (httpx.HTTPError, httpx.InvalidURL)


# ─────────────────────────────────────────────
# Robots.txt Handler
# ─────────────────────────────────────────────

@dataclass
class RobotsRuleSet:
    """One User-agent block of robots.txt."""
    user_agent: str
    disallow: list[str] = field(default_factory=list)
    allow: list[str] = field(default_factory=list)
    sitemaps: list[str] = field(default_factory=list)


def parse_robots_txt(content: str) -> list[RobotsRuleSet]:
    """
    Parse robots.txt into per-agent rule sets.
    Sitemap lines are global and attached to every block.
    Lines without a colon or with unknown directives are skipped.
    """
    rules: list[RobotsRuleSet] = []
    sitemaps: list[str] = []
    current: RobotsRuleSet | None = None

    for raw_line in content.splitlines():
        line = raw_line.split("#", 1)[0].strip()
        if ":" not in line:
            continue

        directive, _, value = line.partition(":")
        directive = directive.strip().lower()
        value = value.strip()

        if directive == "user-agent":
            current = RobotsRuleSet(user_agent=value.lower())
            rules.append(current)
        elif directive == "disallow" and current is not None and value:
            current.disallow.append(value)
        elif directive == "allow" and current is not None and value:
            current.allow.append(value)
        elif directive == "sitemap" and value:
            sitemaps.append(value)

    for rule_set in rules:
        rule_set.sitemaps = list(sitemaps)
    return rules


class RobotsHandler:
    """Robots-compliance oracle shared read-only by every fetch decision."""

    def __init__(self, rules: list[RobotsRuleSet] | None = None, agent_token: str = "*"):
        self.rules = rules or []
        self.agent_token = agent_token.lower()

    @property
    def sitemaps(self) -> list[str]:
        return list(dict.fromkeys(s for r in self.rules for s in r.sitemaps))

    def select(self) -> RobotsRuleSet | None:
        """Own agent's block, else the '*' block, else None."""
        for token in (self.agent_token, "*"):
            for rule_set in self.rules:
                if rule_set.user_agent == token:
                    return rule_set
        return None

    def can_fetch(self, url: str) -> bool:
        """Allow prefixes win over Disallow prefixes regardless of order."""
        rule_set = self.select()
        if rule_set is None:
            return True
        try:
            parsed = httpx.URL(url)
        except httpx.InvalidURL:
            return True

        path = parsed.raw_path.decode("ascii", errors="ignore") or "/"
        if any(path.startswith(prefix) for prefix in rule_set.allow):
            return True
        if any(path.startswith(prefix) for prefix in rule_set.disallow):
            return False
        return True

    @classmethod
    async def load(cls, base_url: str, fetcher: PageFetcher, agent_token: str) -> RobotsHandler:
        """Fetch robots.txt. Missing or unreachable means allow all."""
        robots_url = f"{base_url}/robots.txt"
        try:
            status, text = await fetcher.get_text(robots_url)
        except FETCH_ERRORS as e:
            logger.info("No robots.txt found", url=robots_url, error=str(e))
            return cls(agent_token=agent_token)

        if not 200 <= status < 300:
            logger.info("No robots.txt found", url=robots_url, status=status)
            return cls(agent_token=agent_token)

        rules = parse_robots_txt(text)
        logger.debug("robots.txt parsed", url=robots_url, blocks=len(rules))
        return cls(rules, agent_token=agent_token)


# ─────────────────────────────────────────────
# Sitemap Parser
# ─────────────────────────────────────────────

class SitemapParser:
    """Expand sitemap indexes into a capped, ordered list of page URLs."""

    def __init__(self, fetcher: PageFetcher):
        self.fetcher = fetcher

    @staticmethod
    def parse(xml: str) -> tuple[str | None, list[str]]:
        """
        Classify a sitemap document and return its <loc> values.
        Returns ("index", child sitemaps), ("urlset", page URLs) or (None, []).
        """
        soup = BeautifulSoup(xml, "xml")

        index = soup.find("sitemapindex")
        if index is not None:
            locs = [sm.find("loc") for sm in index.find_all("sitemap")]
            return "index", [loc.get_text(strip=True) for loc in locs if loc and loc.get_text(strip=True)]

        urlset = soup.find("urlset")
        if urlset is not None:
            locs = [u.find("loc") for u in urlset.find_all("url")]
            return "urlset", [loc.get_text(strip=True) for loc in locs if loc and loc.get_text(strip=True)]

        return None, []

    async def resolve(self, sitemap_urls: list[str], max_urls: int) -> list[str]:
        """Fetch each sitemap once, following indexes, until max_urls page URLs are found."""
        urls: list[str] = []
        processed: set[str] = set()
        queue: deque[str] = deque(sitemap_urls)

        while queue and len(urls) < max_urls:
            sitemap_url = queue.popleft()
            if sitemap_url in processed:
                continue
            processed.add(sitemap_url)

            try:
                status, xml = await self.fetcher.get_text(sitemap_url)
            except FETCH_ERRORS as e:
                logger.info("Sitemap fetch failed", url=sitemap_url, error=str(e))
                continue
            if not 200 <= status < 300:
                logger.info("Sitemap fetch failed", url=sitemap_url, status=status)
                continue

            kind, locs = self.parse(xml)
            if kind == "index":
                queue.extend(loc for loc in locs if loc not in processed)
            elif kind == "urlset":
                urls.extend(locs[:max_urls - len(urls)])
            else:
                logger.info("Unrecognised sitemap document skipped", url=sitemap_url)

        return urls


# ─────────────────────────────────────────────
# Page Fetcher
# ─────────────────────────────────────────────

@dataclass
class FetchResult:
    url: str
    status_code: int
    content_type: str = ""
    headers: dict[str, str] = field(default_factory=dict)   # Lower-cased names
    html: str = ""
    redirect_chain: list[str] = field(default_factory=list)

    @property
    def x_robots_tag(self) -> str | None:
        return self.headers.get("x-robots-tag") or None


class PageFetcher:
    """
    Single-attempt HTTP access for pages, robots.txt, sitemaps and HEAD probes.
    Network and URL errors propagate as FETCH_ERRORS.
    Resource checks share at most RESOURCE_CHECK_CONNECTIONS connections so page GETs keep
    their own slots in the pool.
    """

    def __init__(self, client: httpx.AsyncClient, user_agent: str, timeout: float):
        self.client = client
        self.headers = {
            "User-Agent": user_agent,
            "Accept": "text/html,application/xhtml+xml,*/*;q=0.8",
            "Accept-Language": "en-US,en;q=0.9",
        }
        self.timeout = timeout
        self._check_slots = asyncio.Semaphore(RESOURCE_CHECK_CONNECTIONS)

    async def get_text(self, url: str) -> tuple[int, str]:
        response = await self.client.get(
            url, headers=self.headers, timeout=self.timeout, follow_redirects=True,
        )
        return response.status_code, response.text

    async def fetch(self, url: str) -> FetchResult:
        """GET a page; the body is read only for successful HTML responses."""
        async with self.client.stream(
            "GET", url, headers=self.headers, timeout=self.timeout, follow_redirects=True,
        ) as response:
            content_type = response.headers.get("content-type", "")
            result = FetchResult(
                url=url,
                status_code=response.status_code,
                content_type=content_type,
                headers={k.lower(): v for k, v in response.headers.items()},
            )

            # Final URL differs from the requested one
            if response.history:
                result.redirect_chain = [str(r.url) for r in response.history] + [str(response.url)]

            if response.is_success and "text/html" in content_type.lower():
                await response.aread()
                result.html = response.text

        return result

    async def probe(self, url: str) -> tuple[int, int | None]:
        """
        HEAD a resource. Returns (status, content length); status is 0
        when the request itself failed.
        """
        try:
            async with self._check_slots:
                response = await self.client.head(
                    url, headers=self.headers, timeout=self.timeout, follow_redirects=True,
                )
                if response.status_code in PROBE_FALLBACK_STATUSES:
                    async with self.client.stream(
                        "GET", url, headers=self.headers, timeout=self.timeout, follow_redirects=True,
                    ) as response:
                        pass
        except FETCH_ERRORS as e:
            logger.debug("Resource probe failed", url=url, error=str(e))
            return 0, None

        length = response.headers.get("content-length")
        return response.status_code, int(length) if length and length.isdigit() else None


# ─────────────────────────────────────────────
# Crawl State
# ─────────────────────────────────────────────

@dataclass
class CrawlState:
    """
    Run-scoped frontier and accumulators.
    Mutated by workers only between awaits on a single event loop.
    """
    base_domain: str
    robots: RobotsHandler = field(default_factory=RobotsHandler)
    cancel_event: asyncio.Event | None = None
    sitemap_urls: set[str] = field(default_factory=set)
    frontier: deque[QueueItem] = field(default_factory=deque)
    seen: set[str] = field(default_factory=set)
    visited: set[str] = field(default_factory=set)
    processed_count: int = 0
    pages: list[CrawledPage] = field(default_factory=list)
    findings: list[CrawlFinding] = field(default_factory=list)
    inlink_counts: dict[str, int] = field(default_factory=dict)
    cancelled: bool = False

    def is_cancelled(self) -> bool:
        return self.cancel_event is not None and self.cancel_event.is_set()

    def enqueue(self, url: str, source: QueueSource, depth: int) -> bool:
        """Add an internal URL to the frontier unless its normalized form was seen."""
        if not URLNormalizer.is_internal(url, self.base_domain):
            return False
        normalized = URLNormalizer.normalize(url)
        if not normalized or normalized in self.seen:
            return False
        self.seen.add(normalized)
        self.frontier.append(QueueItem(url=url, normalized_url=normalized, depth=depth, source=source))
        return True

    def count_inlink(self, url: str) -> None:
        normalized = URLNormalizer.normalize(url)
        if normalized:
            self.inlink_counts[normalized] = self.inlink_counts.get(normalized, 0) + 1


# ─────────────────────────────────────────────
# Main Crawler
# ─────────────────────────────────────────────

class CrawlerEngine:
    """
    BFS technical SEO crawler.

    Flow:
    1. Fetch robots.txt, resolve sitemaps
    2. Seed frontier with homepage + sitemap URLs
    3. Drain frontier in batches of 2x concurrency through a worker pool
    4. Per page: robots check -> fetch -> parse -> classify -> rules
    5. Internal links feed inlink counts and the frontier (depth-capped)
    6. Orphan post-pass, then aggregation into a CrawlReport
    """

    ENGINE_NAME = "crawler"

    def __init__(self, config: CrawlConfig | None = None):
        self.config = config or CrawlConfig()
        self.logger = structlog.get_logger(self.__class__.__name__)

    async def run(
        self,
        domain: str,
        client: httpx.AsyncClient | None = None,
        cancel_event: asyncio.Event | None = None,
    ) -> CrawlReport:
        """Crawl domain and build the report. Pass client to reuse or mock transport."""
        with crawl_log_context(domain):
            if client is None:
                limits = httpx.Limits(
                    max_connections=self.config.concurrency + RESOURCE_CHECK_CONNECTIONS,
                    max_keepalive_connections=20,
                )
                async with httpx.AsyncClient(follow_redirects=True, limits=limits) as own_client:
                    return await self._crawl(domain, own_client, cancel_event)
            return await self._crawl(domain, client, cancel_event)

    async def _crawl(
        self,
        domain: str,
        client: httpx.AsyncClient,
        cancel_event: asyncio.Event | None,
    ) -> CrawlReport:
        cfg = self.config
        start = time.perf_counter()

        host = domain.strip()
        if "://" in host:
            host = httpx.URL(host).host
        host = host.strip("/").lower()
        base_url = f"https://{host}"
        state = CrawlState(base_domain=base_domain_of(host), cancel_event=cancel_event)
        fetcher = PageFetcher(client, user_agent=cfg.user_agent, timeout=cfg.request_timeout)

        self.logger.info("Crawl starting", max_pages=cfg.max_pages, max_depth=cfg.max_depth)

        # Step 1: robots.txt
        state.robots = await RobotsHandler.load(base_url, fetcher, cfg.robots_token)

        # Step 2: sitemaps
        sitemap_sources = state.robots.sitemaps or [f"{base_url}/sitemap.xml"]
        sitemap_locs = await SitemapParser(fetcher).resolve(sitemap_sources, cfg.max_pages)
        for loc in sitemap_locs:
            normalized = URLNormalizer.normalize(loc)
            if normalized and URLNormalizer.is_internal(loc, state.base_domain):
                state.sitemap_urls.add(normalized)
        self.logger.info("Sitemap URLs discovered", count=len(state.sitemap_urls))

        # Step 3: seed frontier
        state.enqueue(f"{base_url}/", QueueSource.SEED, 0)
        for loc in sitemap_locs:
            state.enqueue(loc, QueueSource.SITEMAP, 0)

        # Step 4: BFS in batches
        while state.frontier and state.processed_count < cfg.max_pages:
            if state.is_cancelled():
                state.cancelled = True
                break

            batch_size = min(
                cfg.concurrency * 2,
                cfg.max_pages - state.processed_count,
                len(state.frontier),
            )
            batch = [state.frontier.popleft() for _ in range(batch_size)]
            await self._run_batch(batch, state, fetcher)

            if state.processed_count % 10 == 0:
                self.logger.info(
                    "Crawl progress",
                    crawled=state.processed_count,
                    max_pages=cfg.max_pages,
                    queued=len(state.frontier),
                )

        if state.is_cancelled():
            state.cancelled = True
            self.logger.warning("Crawl cancelled", crawled=state.processed_count)

        # Step 5: orphan pages
        state.findings.extend(detect_orphan_pages(
            state.pages, state.sitemap_urls, state.inlink_counts, state.findings,
        ))

        # Step 6: report
        duration_ms = int((time.perf_counter() - start) * 1000)
        report = ReportAggregator().build(
            state.pages,
            state.findings,
            sitemap_urls_found=len(state.sitemap_urls),
            duration_ms=duration_ms,
            cancelled=state.cancelled,
        )
        self.logger.info(
            "Crawl complete",
            pages=report.pages_crawled,
            findings=report.findings_count,
            health_score=report.summary.health_score,
            elapsed_ms=duration_ms,
        )
        return report

    async def _run_batch(self, batch: list[QueueItem], state: CrawlState, fetcher: PageFetcher) -> None:
        """Drain batch with at most `concurrency` pages in flight."""
        pending = deque(batch)

        async def worker() -> None:
            while pending and not state.is_cancelled():
                await self._process(pending.popleft(), state, fetcher)

        workers = min(self.config.concurrency, len(batch))
        await asyncio.gather(*(worker() for _ in range(workers)))

    async def _process(self, item: QueueItem, state: CrawlState, fetcher: PageFetcher) -> None:
        # Visited is marked here, not at enqueue time
        if item.normalized_url in state.visited or state.processed_count >= self.config.max_pages:
            return
        state.visited.add(item.normalized_url)
        state.processed_count += 1

        blocked = self.config.respect_robots and not state.robots.can_fetch(item.url)
        try:
            page, findings, parsed = await self._analyze(item, state, fetcher, blocked)
        except Exception as e:
            self.logger.warning("Page processing failed", url=item.url, error=str(e) or type(e).__name__)
            state.pages.append(CrawledPage.error_record(item.url))
            return

        state.pages.append(page)
        state.findings.extend(findings)

        if parsed is None:
            return
        for link in parsed.internal_links:
            state.count_inlink(link.href)
            if item.depth < self.config.max_depth:
                state.enqueue(link.href, QueueSource.LINK, item.depth + 1)

    async def _analyze(
        self,
        item: QueueItem,
        state: CrawlState,
        fetcher: PageFetcher,
        blocked: bool,
    ) -> tuple[CrawledPage, list[CrawlFinding], ParsedPage | None]:
        """Fetch, parse, classify and evaluate one page."""
        result: FetchResult | None = None
        if blocked:
            self.logger.debug("Blocked by robots.txt", url=item.url)
        else:
            result = await fetcher.fetch(item.url)

        parsed = parse_html(result.html, item.url, state.base_domain) if result and result.html else None

        indexability = classify_indexability(
            status_code=result.status_code if result else None,
            robots_meta=parsed.robots_meta if parsed else None,
            x_robots_tag=result.x_robots_tag if result else None,
            content_type=result.content_type if result else None,
            canonical_url=parsed.canonical_url if parsed else None,
            page_url=item.url,
            blocked_by_robots=blocked,
        )

        broken_links: list[dict[str, Any]] = []
        oversized_images: list[dict[str, Any]] = []
        if parsed and self.config.check_resources and self.config.max_resource_checks:
            broken_links, oversized_images = await self._probe_resources(parsed, fetcher)

        internal_out = len(parsed.internal_links) if parsed else 0
        ctx = FindingContext(
            url=item.url,
            status_code=result.status_code if result else None,
            redirect_chain=result.redirect_chain if result else [],
            canonical_url=parsed.canonical_url if parsed else None,
            robots_meta=parsed.robots_meta if parsed else None,
            x_robots_tag=result.x_robots_tag if result else None,
            indexability=indexability,
            title=parsed.title if parsed else None,
            title_len=parsed.title_len if parsed else 0,
            meta_description=parsed.meta_description if parsed else None,
            meta_description_len=parsed.meta_description_len if parsed else 0,
            h1_count=parsed.h1_count if parsed else 0,
            h1_texts=parsed.h1_texts if parsed else [],
            h2_count=parsed.h2_count if parsed else 0,
            h2_texts=parsed.h2_texts if parsed else [],
            h2_duplicates=parsed.h2_duplicates if parsed else [],
            word_count=parsed.word_count if parsed else 0,
            visible_text_len=parsed.visible_text_len if parsed else 0,
            flesch_reading_ease=parsed.flesch_reading_ease if parsed else None,
            avg_words_per_sentence=parsed.avg_words_per_sentence if parsed else 0.0,
            avg_syllables_per_word=parsed.avg_syllables_per_word if parsed else 0.0,
            outlinks_count=internal_out,
            external_links_count=parsed.external_links_count if parsed else 0,
            external_links_followed=parsed.external_links_followed if parsed else 0,
            internal_links_no_anchor=parsed.internal_links_no_anchor if parsed else 0,
            broken_external_links=broken_links,
            images_count=len(parsed.images) if parsed else 0,
            images_missing_alt=parsed.images_missing_alt if parsed else 0,
            images_missing_size=parsed.images_missing_size if parsed else 0,
            oversized_images=oversized_images,
            is_in_sitemap=item.normalized_url in state.sitemap_urls,
            response_headers=result.headers if result else {},
        )

        page = CrawledPage(
            url=item.url,
            status_code=result.status_code if result else 0,
            title=ctx.title,
            meta_description=ctx.meta_description,
            canonical_url=ctx.canonical_url,
            indexability=indexability,
            h1_count=ctx.h1_count,
            word_count=ctx.word_count,
            internal_links_out=internal_out,
            images_missing_alt=ctx.images_missing_alt,
            images_missing_size=ctx.images_missing_size,
            html=result.html if result and item.source == QueueSource.SEED and item.depth == 0 and result.html else None,
        )

        return page, run_finding_rules(ctx), parsed

    async def _probe_resources(
        self,
        parsed: ParsedPage,
        fetcher: PageFetcher,
    ) -> tuple[list[dict[str, Any]], list[dict[str, Any]]]:
        """HEAD a capped sample of followed external links and images."""
        limit = self.config.max_resource_checks
        external = list(dict.fromkeys(
            link.href for link in parsed.links if not link.is_internal and link.is_followed
        ))[:limit]
        images = list(dict.fromkeys(
            img.resolved_src for img in parsed.images if img.resolved_src and not img.is_broken
        ))[:limit]

        results = await asyncio.gather(*(fetcher.probe(url) for url in external + images))
        link_results, image_results = results[:len(external)], results[len(external):]

        broken = [
            {"url": url, "statusCode": status}
            for url, (status, _) in zip(external, link_results)
            if status == 0 or status >= 400
        ]
        oversized = [
            {"src": src, "bytes": size}
            for src, (status, size) in zip(images, image_results)
            if status and status < 400 and size is not None and size > self.config.large_image_bytes
        ]
        return broken, oversized


async def run_technical_crawl(
    domain: str,
    config: CrawlConfig | dict[str, Any] | None = None,
    *,
    client: httpx.AsyncClient | None = None,
    cancel_event: asyncio.Event | None = None,
) -> dict[str, Any]:
    """
    Crawl domain and return the JSON-serializable report.

    config accepts a CrawlConfig or a partial mapping such as
    {"maxPages": 20, "respectRobots": False}.
    """
    if not isinstance(config, CrawlConfig):
        config = CrawlConfig.model_validate(config or {})
    report = await CrawlerEngine(config).run(domain, client=client, cancel_event=cancel_event)
    return report.to_dict()
