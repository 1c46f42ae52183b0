"""Fan a query out to every connector, merge, dedup, rank and readability-check."""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Dict, List, Optional, Sequence, Tuple

import aiohttp

from .availability import ReadabilityChecker
from .cache import TTLCache, cache_key
from .connectors import Connector, build_connectors
from .identity import canonical_key
from .records import CandidateRecord
from .relevance import rank
from .resolver_config import ResolverConfig

logger = logging.getLogger(__name__)


def dedup_records(records: Sequence[CandidateRecord]) -> List[CandidateRecord]:
    """Keep the first record seen for each canonical key."""

    seen = set()
    unique: List[CandidateRecord] = []
    for record in records:
        key = canonical_key(record)
        if key in seen:
            continue
        seen.add(key)
        unique.append(record)
    return unique


class Aggregator:
    """Multi-source search over a shared ``aiohttp.ClientSession``."""

    def __init__(
        self,
        session: aiohttp.ClientSession,
        config: Optional[ResolverConfig] = None,
        *,
        connectors: Optional[Sequence[Connector]] = None,
        checker: Optional[ReadabilityChecker] = None,
        search_cache: Optional[TTLCache] = None,
    ) -> None:
        self.session = session
        self.config = config or ResolverConfig()
        self.connectors = list(connectors) if connectors is not None else build_connectors(session, self.config)
        self.checker = checker or ReadabilityChecker(self.config)
        self.search_cache = search_cache or TTLCache(self.config.search_cache_ttl, self.config.cache_max_entries)

    async def _run_connector(self, connector: Connector, query: str, page: int) -> List[CandidateRecord]:
        # first attempt plus the connector's one retry
        deadline = self.config.source_timeout + self.config.retry_timeout
        try:
            return await asyncio.wait_for(connector.search(query, page), timeout=deadline)
        except asyncio.TimeoutError:
            logger.warning("[%s] exceeded %.1fs source deadline", connector.name, deadline)
        except Exception as exc:  # noqa: BLE001 - one source never fails the search
            logger.warning("[%s] raised during search: %s", connector.name, exc)
        return []

    async def gather_sources(self, query: str, page: int = 1) -> List[Tuple[str, List[CandidateRecord]]]:
        batches = await asyncio.gather(*(self._run_connector(c, query, page) for c in self.connectors))
        return [(c.name, batch) for c, batch in zip(self.connectors, batches)]

    async def search(
        self,
        query: str,
        page: int = 1,
        ranked: bool = False,
        probe: bool = True,
    ) -> List[CandidateRecord]:
        query = (query or "").strip()
        if not query:
            return []
        page = max(1, int(page or 1))
        key = cache_key(query.lower(), page, ranked, probe)
        hit, cached = self.search_cache.lookup(key)
        if hit:
            logger.debug("search cache hit for %r page=%d", query, page)
            return list(cached)

        started = time.perf_counter()
        per_source = await self.gather_sources(query, page)
        merged: List[CandidateRecord] = [r for _, batch in per_source for r in batch]
        records = dedup_records(merged)
        if ranked:
            records = rank(records, query)
        if probe and self.config.probe_enabled:
            records = await self.checker.batch_check_readability(self.session, records)

        counts: Dict[str, int] = {name: len(batch) for name, batch in per_source}
        logger.info(
            "search %r page=%d sources=%s merged=%d unique=%d elapsed_ms=%d",
            query,
            page,
            counts,
            len(merged),
            len(records),
            int((time.perf_counter() - started) * 1000),
        )
        self.search_cache.set(key, list(records))
        return records


__all__ = ["Aggregator", "dedup_records"]
