"""Live HEAD probe that classifies an archive.org download as TRUE / FALSE / MAYBE."""

from __future__ import annotations

import asyncio
import logging
from typing import Optional, Tuple
from urllib.parse import urljoin

import aiohttp

from .archive_metadata import download_url
from .cache import TTLCache, cache_key
from .records import Readable
from .resolver_config import (
    BORROW_REDIRECT_MARKERS,
    HDR_ACCEPT,
    HDR_RANGE,
    PROBE_FILE_CONTENT_TYPES,
    ResolverConfig,
)

logger = logging.getLogger(__name__)


def is_borrow_redirect(location: str) -> bool:
    return any(marker in location for marker in BORROW_REDIRECT_MARKERS)


def classify_response(status: int, content_type: str) -> Readable:
    """Map a final (non-redirect) HEAD response to a readability verdict."""

    if status in (401, 403, 404):
        return Readable.FALSE
    if status in (200, 206):
        ctype = (content_type or "").lower()
        if any(token in ctype for token in PROBE_FILE_CONTENT_TYPES):
            return Readable.TRUE
        if "text/html" in ctype:
            return Readable.FALSE
        return Readable.TRUE
    return Readable.MAYBE


class LiveProbe:
    """HEAD ``Range: bytes=0-0`` prober with manual redirect handling.

    Safe to call concurrently: the only shared state is the injected cache.
    """

    def __init__(self, config: ResolverConfig, cache: Optional[TTLCache] = None) -> None:
        self.config = config
        self.cache = cache if cache is not None else TTLCache(config.cache_ttl, config.cache_max_entries)

    async def probe(self, session: aiohttp.ClientSession, identifier: str, filename: str) -> Readable:
        key = cache_key(identifier, filename)
        hit, cached = self.cache.lookup(key)
        if hit:
            return cached
        verdict, cacheable = await self._walk(session, download_url(identifier, filename))
        if cacheable:
            self.cache.set(key, verdict)
        return verdict

    async def probe_url(self, session: aiohttp.ClientSession, url: str) -> Readable:
        verdict, _ = await self._walk(session, url)
        return verdict

    async def _walk(self, session: aiohttp.ClientSession, url: str) -> Tuple[Readable, bool]:
        timeout = aiohttp.ClientTimeout(total=self.config.probe_timeout)
        headers = {HDR_ACCEPT: "*/*", HDR_RANGE: "bytes=0-0"}
        current = url
        try:
            for _ in range(self.config.max_redirects + 1):
                async with session.head(current, headers=headers, timeout=timeout, allow_redirects=False) as resp:
                    status = resp.status
                    location = resp.headers.get("Location", "")
                    content_type = resp.headers.get("Content-Type", "")
                if 300 <= status < 400 and location:
                    if is_borrow_redirect(location):
                        logger.debug("probe %s redirected to lending flow %s", url, location)
                        return Readable.FALSE, True
                    current = urljoin(current, location)
                    continue
                return classify_response(status, content_type), True
        except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
            logger.warning("probe failed for %s: %s", url, exc or type(exc).__name__)
            return Readable.MAYBE, False
        logger.info("probe %s exceeded %d redirects", url, self.config.max_redirects)
        return Readable.MAYBE, True


__all__ = ["LiveProbe", "classify_response", "is_borrow_redirect"]
