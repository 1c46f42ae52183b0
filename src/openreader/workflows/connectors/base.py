"""Connector contract shared by every catalog source."""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

import aiohttp

from ..records import CandidateRecord
from ..resolver_config import ResolverConfig

logger = logging.getLogger(__name__)

TRANSIENT_ERRORS = (aiohttp.ClientError, asyncio.TimeoutError)


class UpstreamStatusError(aiohttp.ClientError):
    def __init__(self, url: str, status: int) -> None:
        super().__init__(f"HTTP {status} for {url}")
        self.url = url
        self.status = status


class Connector(ABC):
    """One external catalog.

    ``search`` never raises: transient failures get one retry with the longer
    ``retry_timeout`` and anything left over is logged and turned into ``[]``.
    Subclasses implement ``_search`` and a module-level ``map_<source>_item``.
    """

    name: str = ""

    def __init__(self, session: aiohttp.ClientSession, config: Optional[ResolverConfig] = None) -> None:
        self.session = session
        self.config = config or ResolverConfig()

    async def search(self, query: str, page: int = 1) -> List[CandidateRecord]:
        query = (query or "").strip()
        if not query:
            return []
        page = max(1, int(page or 1))
        try:
            records = await self._search(query, page)
        except asyncio.CancelledError:
            raise
        except Exception as exc:  # noqa: BLE001 - a failing source contributes nothing
            logger.warning("[%s] search failed for %r: %s", self.name, query, exc or type(exc).__name__)
            return []
        logger.debug("[%s] %d results for %r page=%d", self.name, len(records), query, page)
        return records

    @abstractmethod
    async def _search(self, query: str, page: int) -> List[CandidateRecord]:
        raise NotImplementedError

    async def fetch_json(self, url: str, params: Optional[Dict[str, Any]] = None) -> Any:
        return await self._fetch_with_retry(url, params, as_json=True)

    async def fetch_text(self, url: str, params: Optional[Dict[str, Any]] = None) -> str:
        return await self._fetch_with_retry(url, params, as_json=False)

    async def _fetch_with_retry(self, url: str, params: Optional[Dict[str, Any]], *, as_json: bool) -> Any:
        timeouts = (self.config.source_timeout, self.config.retry_timeout)
        for attempt, total in enumerate(timeouts, start=1):
            try:
                return await self._fetch_once(url, params, total, as_json=as_json)
            except TRANSIENT_ERRORS as exc:
                if isinstance(exc, UpstreamStatusError) or attempt == len(timeouts):
                    raise
                logger.info("[%s] transient failure on attempt %d (%s), retrying", self.name, attempt, exc or type(exc).__name__)
        raise RuntimeError("unexpected retry state")

    async def _fetch_once(self, url: str, params: Optional[Dict[str, Any]], total: float, *, as_json: bool) -> Any:
        timeout = aiohttp.ClientTimeout(total=total)
        headers = {"Accept": "application/json" if as_json else "*/*"}
        async with self.session.get(url, params=params, timeout=timeout, headers=headers) as resp:
            if resp.status != 200:
                raise UpstreamStatusError(url, resp.status)
            if as_json:
                return await resp.json(content_type=None)
            return await resp.text()


__all__ = ["Connector", "UpstreamStatusError", "TRANSIENT_ERRORS"]
