"""Default page scraper: HTTP fetch plus generic metadata extraction.

Site-specific extraction rules do not live here; any callable with the
``scrape(url) -> dict`` shape can replace :class:`HttpScraper`.
"""

from __future__ import annotations

import re
from typing import Any
from urllib.parse import urljoin

import httpx
import structlog
from selectolax.lexbor import LexborHTMLParser

from ..config import ScraperConfig

_WHITESPACE = re.compile(r"\s+")
DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/124.0 Safari/537.36"
)


def normalize_text(text: str | None) -> str:
    """Collapse line breaks, tabs and repeated spaces into single spaces."""

    if not text:
        return ""
    return _WHITESPACE.sub(" ", text.replace("\r", "")).strip()


class HttpScraper:
    """Fetch a page and return a flat record of what it says about itself."""

    def __init__(
        self,
        config: ScraperConfig | None = None,
        client: httpx.Client | None = None,
        logger: structlog.BoundLogger | None = None,
    ) -> None:
        self.config = config or ScraperConfig()
        headers = {"User-Agent": self.config.user_agent or DEFAULT_USER_AGENT}
        headers.update(self.config.extra_headers)
        self._client = client or httpx.Client(
            follow_redirects=self.config.follow_redirects,
            timeout=self.config.timeout,
            headers=headers,
        )
        self.logger = logger or structlog.get_logger("leadledger.scraper")

    def __call__(self, url: str) -> dict[str, Any]:
        return self.scrape(url)

    def scrape(self, url: str) -> dict[str, Any]:
        response = self._client.get(url)
        response.raise_for_status()
        record = self.extract(response.text, str(response.url))
        record["url"] = url
        self.logger.debug("page_scraped", url=url, status_code=response.status_code)
        return record

    def extract(self, html: str, base_url: str) -> dict[str, Any]:
        tree = LexborHTMLParser(html)
        title = self._meta(tree, "og:title") or normalize_text(
            tree.css_first("title").text() if tree.css_first("title") else ""
        )
        heading = tree.css_first("h1")
        record: dict[str, Any] = {
            "name": self._meta(tree, "og:site_name")
            or (normalize_text(heading.text()) if heading else "")
            or title,
            "title": title,
            "description": self._meta(tree, "og:description") or self._meta(tree, "description"),
        }
        canonical = tree.css_first('link[rel="canonical"]')
        if canonical is not None and canonical.attributes.get("href"):
            record["canonical_url"] = urljoin(base_url, canonical.attributes["href"].strip())

        phones: list[str] = []
        for node in tree.css('a[href^="tel:"]'):
            number = (node.attributes.get("href") or "")[4:].strip()
            if number and number not in phones:
                phones.append(number)
        if phones:
            record["phone"] = phones[0]
            record["phones"] = phones

        address_node = tree.css_first('[itemprop="address"]') or tree.css_first("address")
        if address_node is not None:
            address = normalize_text(address_node.text())
            if address:
                record["address"] = address
        return {key: value for key, value in record.items() if value not in (None, "")}

    @staticmethod
    def _meta(tree: LexborHTMLParser, name: str) -> str:
        node = tree.css_first(f'meta[property="{name}"]') or tree.css_first(f'meta[name="{name}"]')
        if node is None:
            return ""
        return normalize_text(node.attributes.get("content"))

    def close(self) -> None:
        self._client.close()


__all__ = ["HttpScraper", "normalize_text"]
