"""
Seller page fetcher.

Downloads seller web pages and reduces them to visible text: no JS
execution, no authentication. Best effort only. Any network, status or
parse failure becomes "" for that URL and never aborts the batch.
"""

import asyncio
import logging
import re

import httpx
from bs4 import BeautifulSoup

from config import Settings

logger = logging.getLogger(__name__)

_NOISE_TAGS = ("script", "style", "noscript", "svg", "iframe", "template")
_INLINE_WHITESPACE = re.compile(r"[ \t\r\f\v\u00a0]+")

_HEADERS = {
    "User-Agent": "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/124.0 Safari/537.36",
    "Accept": "text/html,application/xhtml+xml;q=0.9,*/*;q=0.8",
}


def html_to_text(html: str) -> str:
    """Extract visible text, one line per block, whitespace collapsed within lines."""
    soup = BeautifulSoup(html, "lxml")
    body = soup.find("body") or soup

    for tag_name in _NOISE_TAGS:
        for el in body.find_all(tag_name):
            el.decompose()

    text = body.get_text(separator="\n")
    lines = (_INLINE_WHITESPACE.sub(" ", line).strip() for line in text.splitlines())
    return "\n".join(line for line in lines if line)


async def fetch_page_text(client: httpx.AsyncClient, url: str, timeout: float = 20.0) -> str:
    """Fetch one URL and return its visible text, or "" on any failure."""
    try:
        resp = await client.get(url, follow_redirects=True, timeout=timeout, headers=_HEADERS)
    except (httpx.HTTPError, httpx.InvalidURL) as e:
        logger.warning(f"  Fetch failed for {url}: {e!r}")
        return ""

    if not resp.is_success:
        logger.warning(f"  Fetch failed for {url}: HTTP {resp.status_code}")
        return ""

    try:
        text = html_to_text(resp.text)
    except Exception as e:  # bs4/lxml raise assorted errors on hostile markup
        logger.warning(f"  Could not parse {url}: {e!r}")
        return ""

    logger.info(f"  Fetched {url} ({len(text)} chars of text)")
    return text


async def fetch_all_pages(
    urls: list[str],
    settings: Settings,
    client: httpx.AsyncClient | None = None,
) -> list[str]:
    """Fetch every URL concurrently. Results are in input order."""
    if not urls:
        return []

    if client is not None:
        return list(await asyncio.gather(*[fetch_page_text(client, u, settings.fetch_timeout) for u in urls]))

    async with httpx.AsyncClient() as own_client:
        return list(
            await asyncio.gather(*[fetch_page_text(own_client, u, settings.fetch_timeout) for u in urls])
        )
