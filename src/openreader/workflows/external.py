"""Resolve OAPEN/DOAB landing pages to a downloadable EPUB or PDF."""

from __future__ import annotations

import asyncio
import logging
from typing import Optional, Tuple
from urllib.parse import urljoin, urlparse

import aiohttp
from bs4 import BeautifulSoup

from .records import BookFormat
from .resolver_config import PROXY_ALLOWED_DOMAINS, PROXY_ALLOWED_SUFFIXES, ResolverConfig
from .resolver_utils import is_allowed_url

logger = logging.getLogger(__name__)

Resolved = Tuple[str, str]


def file_format(url: str) -> Optional[str]:
    path = urlparse(url or "").path.lower()
    if path.endswith(".epub"):
        return BookFormat.EPUB
    if path.endswith(".pdf"):
        return BookFormat.PDF
    return None


def extract_file_links(html: str, base_url: str) -> Optional[Resolved]:
    """Pick the best file link from a landing page; EPUB beats PDF."""

    soup = BeautifulSoup(html or "", "lxml")
    epub: Optional[str] = None
    pdf: Optional[str] = None

    for meta in soup.find_all("meta", attrs={"name": "citation_pdf_url"}):
        content = (meta.get("content") or "").strip()
        if content:
            pdf = pdf or urljoin(base_url, content)

    for anchor in soup.find_all("a", href=True):
        href = urljoin(base_url, anchor["href"].strip())
        kind = file_format(href)
        if kind is None and "/bitstream/" in href:
            label = anchor.get_text(" ", strip=True).lower()
            kind = BookFormat.EPUB if "epub" in label else BookFormat.PDF if "pdf" in label else None
        if kind == BookFormat.EPUB and not epub:
            epub = href
        elif kind == BookFormat.PDF and not pdf:
            pdf = href

    if epub:
        return epub, BookFormat.EPUB
    if pdf:
        return pdf, BookFormat.PDF
    return None


class LandingResolver:
    def __init__(self, session: aiohttp.ClientSession, config: ResolverConfig) -> None:
        self.session = session
        self.config = config

    async def resolve_landing(self, url: str) -> Optional[Resolved]:
        """Return ``(direct_url, format)`` for an allowlisted landing page, else None."""

        url = (url or "").strip()
        if not is_allowed_url(url, PROXY_ALLOWED_DOMAINS, PROXY_ALLOWED_SUFFIXES):
            logger.info("landing url not allowlisted: %s", url)
            return None
        direct = file_format(url)
        if direct:
            return url, direct

        timeout = aiohttp.ClientTimeout(total=self.config.metadata_timeout)
        try:
            async with self.session.get(url, timeout=timeout, headers={"Accept": "text/html"}) as resp:
                if resp.status != 200:
                    logger.info("landing page %s returned HTTP %s", url, resp.status)
                    return None
                final_url = str(resp.url)
                html = await resp.text(errors="replace")
        except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
            logger.warning("landing page fetch failed for %s: %s", url, exc or type(exc).__name__)
            return None

        found = extract_file_links(html, final_url)
        if found and not is_allowed_url(found[0], PROXY_ALLOWED_DOMAINS, PROXY_ALLOWED_SUFFIXES):
            logger.info("landing %s links off-allowlist file %s", url, found[0])
            return None
        return found


__all__ = ["LandingResolver", "extract_file_links", "file_format"]
