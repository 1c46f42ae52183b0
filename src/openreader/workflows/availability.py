"""Readability checks for archive.org-backed records (metadata + analysis + probe)."""

from __future__ import annotations

import asyncio
import logging
from collections import Counter
from typing import List, Optional, Sequence

import aiohttp

from .archive_metadata import ArchiveMetadataClient, analyze_files, check_borrow_required, download_url
from .identity import archive_id_from_url, is_numeric_only, strip_prefixes
from .probe import LiveProbe
from .records import CandidateRecord, Readable, ReadabilityResult, Reason
from .resolver_config import ResolverConfig

logger = logging.getLogger(__name__)


def is_archive_backed(record: CandidateRecord) -> bool:
    return bool(record.archive_id) or "archive.org" in (record.direct_url or "")


def record_archive_id(record: CandidateRecord) -> Optional[str]:
    ident = strip_prefixes(record.archive_id) if record.archive_id else None
    if ident and not is_numeric_only(ident):
        return ident
    return archive_id_from_url(record.direct_url)


class ReadabilityChecker:
    def __init__(
        self,
        config: ResolverConfig,
        metadata_client: Optional[ArchiveMetadataClient] = None,
        prober: Optional[LiveProbe] = None,
    ) -> None:
        self.config = config
        self.metadata_client = metadata_client or ArchiveMetadataClient(config)
        self.prober = prober or LiveProbe(config)

    async def check_readability(
        self,
        session: aiohttp.ClientSession,
        identifier: Optional[str],
        *,
        skip_probe: bool = False,
    ) -> ReadabilityResult:
        """Full check for one archive item: lending gates, file choice, then a live probe."""

        if not identifier or is_numeric_only(identifier):
            return ReadabilityResult(readable=Readable.FALSE, reason=Reason.NO_IDENTIFIER)

        metadata = await self.metadata_client.get_metadata(session, identifier)
        if metadata is None:
            return ReadabilityResult(readable=Readable.MAYBE, reason=Reason.METADATA_UNAVAILABLE)

        access = check_borrow_required(metadata)
        if access.borrow_required:
            return ReadabilityResult(readable=Readable.FALSE, reason=Reason.BORROW_REQUIRED, borrow_required=True)
        if access.encrypted_only:
            return ReadabilityResult(readable=Readable.FALSE, reason=Reason.ENCRYPTED_ONLY, encrypted_only=True)

        analysis = analyze_files(metadata, self.config.max_epub_bytes, self.config.max_pdf_bytes)
        if analysis.readable is Readable.FALSE or analysis.best_file is None:
            return analysis

        analysis.direct_url = download_url(identifier, analysis.best_file.name)
        if skip_probe:
            return analysis
        analysis.readable = await self.prober.probe(session, identifier, analysis.best_file.name)
        return analysis

    async def batch_check_readability(
        self,
        session: aiohttp.ClientSession,
        records: Sequence[CandidateRecord],
        *,
        max_probes: Optional[int] = None,
        probe: bool = True,
    ) -> List[CandidateRecord]:
        """Annotate records in place order.

        The first ``max_probes`` archive-backed records are checked under a
        semaphore; later ones become ``maybe / not_probed``. Other records keep
        their connector verdict (TRUE unless the connector said otherwise).
        """

        limit = self.config.max_probes if max_probes is None else max_probes
        semaphore = asyncio.Semaphore(max(1, self.config.probe_concurrency))
        tally: Counter = Counter()

        async def _check(record: CandidateRecord) -> CandidateRecord:
            identifier = record_archive_id(record)
            if not identifier:
                tally["maybe"] += 1
                return record.with_readability(ReadabilityResult(readable=Readable.MAYBE, reason=Reason.NO_IDENTIFIER))
            async with semaphore:
                result = await self.check_readability(session, identifier, skip_probe=not probe)
            tally[result.readable.value] += 1
            return record.with_readability(result)

        results: List[Optional[CandidateRecord]] = [None] * len(records)
        pending = []
        archive_seen = 0
        unchecked = 0
        for index, record in enumerate(records):
            if not is_archive_backed(record):
                results[index] = record
                continue
            archive_seen += 1
            if archive_seen > limit:
                results[index] = record.with_readability(
                    ReadabilityResult(readable=Readable.MAYBE, reason=Reason.NOT_PROBED)
                )
                unchecked += 1
                continue
            pending.append((index, record))

        checked = await asyncio.gather(*(_check(record) for _, record in pending))
        for (index, _), annotated in zip(pending, checked):
            results[index] = annotated

        logger.info(
            "batch check: probed=%d readable_true=%d readable_false=%d readable_maybe=%d unchecked=%d",
            len(pending),
            tally["true"],
            tally["false"],
            tally["maybe"],
            unchecked,
        )
        return [r for r in results if r is not None]


__all__ = ["ReadabilityChecker", "is_archive_backed", "record_archive_id"]
