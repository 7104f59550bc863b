"""
Crawl API Routes

No business logic lives here.
Routes validate input, call the crawler, return the report.
"""

from __future__ import annotations

from typing import Any

import structlog
from fastapi import APIRouter
from pydantic import BaseModel, field_validator

from seo_crawler.engines.base import CrawlConfig
from seo_crawler.engines.crawler import engine as crawler_engine

logger = structlog.get_logger(__name__)
router = APIRouter()


# ─────────────────────────────────────────────
# Request Schemas
# ─────────────────────────────────────────────

class CrawlRequest(BaseModel):
    domain: str
    config: CrawlConfig | None = None

    @field_validator("domain")
    @classmethod
    def validate_domain(cls, v: str) -> str:
        host = v.strip().split("://", 1)[-1].split("/", 1)[0].lower()
        if not host or " " in host:
            raise ValueError("domain must be a bare host name such as example.com")
        return host


# ─────────────────────────────────────────────
# Routes
# ─────────────────────────────────────────────

@router.post("")
async def run_crawl(request: CrawlRequest) -> dict[str, Any]:
    """Crawl a domain synchronously and return the full report."""
    logger.info("Crawl requested", domain=request.domain)
    return await crawler_engine.run_technical_crawl(request.domain, request.config)
