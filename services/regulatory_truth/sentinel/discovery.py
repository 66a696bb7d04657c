"""
Hub Link Discovery
==================

Extracts same-host document links from HUB pages so they can be monitored
as individual DiscoveredItems.

Version: 0.1.0
"""

import re
from urllib.parse import urldefrag, urljoin, urlsplit

from bs4 import BeautifulSoup


_SKIP_SCHEMES = ("mailto:", "javascript:", "tel:", "#")
_ASSET_RE = re.compile(r"\.(css|js|png|jpe?g|gif|svg|ico|woff2?|ttf|mp4|zip)$", re.IGNORECASE)


def discover_links(html: str, base_url: str, limit: int = 200) -> list[str]:
    """
    Find candidate document links on a hub page.

    Args:
        html: Page HTML
        base_url: URL the page was fetched from
        limit: Maximum links returned

    Returns:
        Absolute, de-duplicated, same-host URLs in document order
    """
    base_host = (urlsplit(base_url).hostname or "").lower()
    soup = BeautifulSoup(html, "lxml")

    seen: set[str] = set()
    links: list[str] = []

    for anchor in soup.find_all("a", href=True):
        href = anchor["href"].strip()
        if not href or href.lower().startswith(_SKIP_SCHEMES):
            continue

        absolute, _fragment = urldefrag(urljoin(base_url, href))
        parts = urlsplit(absolute)
        if parts.scheme not in ("http", "https"):
            continue
        if (parts.hostname or "").lower() != base_host:
            continue
        if _ASSET_RE.search(parts.path):
            continue
        if absolute == base_url or absolute in seen:
            continue

        seen.add(absolute)
        links.append(absolute)
        if len(links) >= limit:
            break

    return links
