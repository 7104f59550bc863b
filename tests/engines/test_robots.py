"""
Tests for robots.txt parsing and the allow/disallow oracle.
"""

import httpx
import pytest

from seo_crawler.engines.crawler.engine import PageFetcher, RobotsHandler, parse_robots_txt


def handler_for(content: str, agent: str = "seocrawlerbot") -> RobotsHandler:
    return RobotsHandler(parse_robots_txt(content), agent_token=agent)


class TestParseRobotsTxt:

    def test_groups_by_user_agent(self):
        rules = parse_robots_txt(
            "User-agent: *\nDisallow: /admin\n\nUser-agent: GoodBot\nAllow: /\nDisallow: /tmp\n"
        )
        assert [r.user_agent for r in rules] == ["*", "goodbot"]
        assert rules[0].disallow == ["/admin"]
        assert rules[1].allow == ["/"]
        assert rules[1].disallow == ["/tmp"]

    def test_strips_inline_comments(self):
        rules = parse_robots_txt("User-agent: * # everyone\nDisallow: /tmp # scratch space\n")
        assert rules[0].user_agent == "*"
        assert rules[0].disallow == ["/tmp"]

    def test_empty_values_ignored(self):
        rules = parse_robots_txt("User-agent: *\nDisallow:\nAllow:\n")
        assert rules[0].disallow == []
        assert rules[0].allow == []

    def test_sitemaps_are_global(self):
        rules = parse_robots_txt(
            "Sitemap: https://example.com/a.xml\n"
            "User-agent: *\nDisallow: /x\n"
            "User-agent: OtherBot\nDisallow: /y\n"
            "Sitemap: https://example.com/b.xml\n"
        )
        for rule_set in rules:
            assert rule_set.sitemaps == ["https://example.com/a.xml", "https://example.com/b.xml"]

    def test_malformed_lines_skipped(self):
        rules = parse_robots_txt("this is not a directive\nUser-agent: *\nCrawl-delay: 10\nDisallow: /x\n")
        assert len(rules) == 1
        assert rules[0].disallow == ["/x"]


class TestRobotsHandler:

    def test_no_rules_allows_everything(self):
        assert RobotsHandler().can_fetch("https://example.com/anything")

    def test_disallow_prefix(self):
        robots = handler_for("User-agent: *\nDisallow: /private\n")
        assert not robots.can_fetch("https://example.com/private/page")
        assert robots.can_fetch("https://example.com/public")

    def test_allow_takes_precedence_over_disallow(self):
        robots = handler_for("User-agent: *\nDisallow: /private\nAllow: /private/open\n")
        assert robots.can_fetch("https://example.com/private/open/page")
        assert not robots.can_fetch("https://example.com/private/closed")

    def test_allow_wins_regardless_of_order(self):
        robots = handler_for("User-agent: *\nAllow: /\nDisallow: /private\n")
        assert robots.can_fetch("https://example.com/private/page")

    def test_own_agent_block_preferred_over_wildcard(self):
        content = "User-agent: SEOCrawlerBot\nDisallow: /\n\nUser-agent: *\nDisallow: /nothing\n"
        assert not handler_for(content, "seocrawlerbot").can_fetch("https://example.com/page")
        assert handler_for(content, "otherbot").can_fetch("https://example.com/page")

    def test_unmatched_agent_without_wildcard_is_allowed(self):
        robots = handler_for("User-agent: OtherBot\nDisallow: /\n")
        assert robots.can_fetch("https://example.com/page")

    def test_query_string_is_part_of_path(self):
        robots = handler_for("User-agent: *\nDisallow: /search?q=\n")
        assert not robots.can_fetch("https://example.com/search?q=shoes")
        assert robots.can_fetch("https://example.com/search")

    def test_sitemaps_deduplicated(self):
        robots = handler_for(
            "User-agent: *\nUser-agent: other\nSitemap: https://example.com/sitemap.xml\n"
        )
        assert robots.sitemaps == ["https://example.com/sitemap.xml"]

    @pytest.mark.asyncio
    async def test_missing_robots_allows_all(self):
        transport = httpx.MockTransport(lambda request: httpx.Response(404))
        async with httpx.AsyncClient(transport=transport) as client:
            fetcher = PageFetcher(client, user_agent="SEOCrawlerBot/1.0", timeout=5.0)
            robots = await RobotsHandler.load("https://example.com", fetcher, "seocrawlerbot")

        assert robots.rules == []
        assert robots.can_fetch("https://example.com/private")

    @pytest.mark.asyncio
    async def test_unreachable_robots_allows_all(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectTimeout("timed out", request=request)

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            fetcher = PageFetcher(client, user_agent="SEOCrawlerBot/1.0", timeout=5.0)
            robots = await RobotsHandler.load("https://example.com", fetcher, "seocrawlerbot")

        assert robots.can_fetch("https://example.com/anything")

    @pytest.mark.asyncio
    async def test_malformed_base_url_allows_all(self):
        transport = httpx.MockTransport(lambda request: httpx.Response(200, text="User-agent: *\nDisallow: /\n"))
        async with httpx.AsyncClient(transport=transport) as client:
            fetcher = PageFetcher(client, user_agent="SEOCrawlerBot/1.0", timeout=5.0)
            robots = await RobotsHandler.load("https://example.com:abc", fetcher, "seocrawlerbot")

        assert robots.rules == []

    @pytest.mark.asyncio
    async def test_user_agent_sent(self):
        seen: list[str] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request.headers["user-agent"])
            return httpx.Response(200, text="User-agent: *\nDisallow: /x\n")

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            fetcher = PageFetcher(client, user_agent="SEOCrawlerBot/1.0", timeout=5.0)
            robots = await RobotsHandler.load("https://example.com", fetcher, "seocrawlerbot")

        assert seen == ["SEOCrawlerBot/1.0"]
        assert not robots.can_fetch("https://example.com/x/y")
