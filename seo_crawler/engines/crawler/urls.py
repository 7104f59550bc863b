"""
URL utilities for the crawler: normalization for deduplication, resolution
of relative hrefs and same-site membership.
"""

from __future__ import annotations

from urllib.parse import parse_qsl, urldefrag, urlencode, urljoin, urlparse, urlunparse

TRACKING_PARAMS = {"gclid", "fbclid", "ref"}
DEFAULT_PORTS = {"http": 80, "https": 443}


class URLNormalizer:
    """Normalizes URLs for deduplication and comparison."""

    @classmethod
    def normalize(cls, url: str) -> str | None:
        """
        Canonical form of an absolute http(s) URL.
        Returns None if the URL is invalid or uses another scheme.
        """
        try:
            parsed = urlparse(url.strip())
            scheme = parsed.scheme.lower()
            if scheme not in DEFAULT_PORTS or not parsed.hostname:
                return None

            host = parsed.hostname.lower()
            port = parsed.port
            netloc = host if port is None or port == DEFAULT_PORTS[scheme] else f"{host}:{port}"

            # Strip tracking params, sort the rest
            params = [
                (k, v) for k, v in parse_qsl(parsed.query, keep_blank_values=True)
                if not k.startswith("utm_") and k not in TRACKING_PARAMS
            ]
            query = urlencode(sorted(params))

            # Normalize trailing slash (remove for non-root paths)
            path = parsed.path or "/"
            if path != "/" and path.endswith("/"):
                path = path.rstrip("/") or "/"

            return urlunparse((scheme, netloc, path, parsed.params, query, ""))

        except ValueError:
            # Malformed port or IPv6 literal
            return None

    @staticmethod
    def resolve(href: str, base_url: str) -> str | None:
        """Resolve href against base_url. Returns None on malformed input."""
        try:
            return urljoin(base_url, href.strip())
        except ValueError:
            return None

    @staticmethod
    def strip_fragment(url: str) -> str:
        return urldefrag(url)[0]

    @staticmethod
    def get_domain(url: str) -> str | None:
        try:
            host = urlparse(url).hostname
        except ValueError:
            return None
        return host.lower() if host else None

    @classmethod
    def is_internal(cls, url: str, base_domain: str) -> bool:
        """Check if URL belongs to base_domain, its www. host or a subdomain."""
        host = cls.get_domain(url)
        if not host:
            return False
        base = base_domain.lower()
        return host == base or host == f"www.{base}" or host.endswith(f".{base}")


def base_domain_of(domain: str) -> str:
    """Bare host for a user-supplied domain ("https://www.Example.com/" -> "example.com")."""
    host = domain.strip()
    if "://" not in host:
        host = f"//{host}"
    # hostname drops port and userinfo and lower-cases
    hostname = urlparse(host).hostname or ""
    return hostname[4:] if hostname.startswith("www.") else hostname
