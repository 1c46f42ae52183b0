"""Internet Archive advanced search over freely downloadable EPUB texts."""

from __future__ import annotations

import logging
from typing import Any, List, Mapping, Optional

from ..archive_metadata import check_borrow_required
from ..records import BookFormat, CandidateRecord
from ..resolver_config import ARCHIVE_COVER_BASE, ARCHIVE_DETAILS_BASE, ARCHIVE_DOWNLOAD_BASE, ARCHIVE_SEARCH_ENDPOINT
from ..resolver_utils import as_text, first_of, parse_year
from .base import Connector

logger = logging.getLogger(__name__)

ROWS = 20
FIELDS = (
    "identifier,title,creator,year,language,format,subject,description,"
    "access-restricted-item,collection,lending___status,loans__loaned__,downloads"
)


def build_query(query: str) -> str:
    return (
        f"({query}) AND mediatype:texts AND format:EPUB "
        "AND -collection:inlibrary AND -collection:printdisabled"
    )


def _has_epub(doc: Mapping[str, Any]) -> bool:
    formats = doc.get("format") or []
    if isinstance(formats, str):
        formats = [formats]
    return any("epub" in str(f).lower() for f in formats)


def is_lending_only(doc: Mapping[str, Any]) -> bool:
    if check_borrow_required(doc).borrow_required:
        return True
    try:
        loaned = int(doc.get("loans__loaned__") or 0)
    except (TypeError, ValueError):
        loaned = 0
    return loaned > 0 and not doc.get("downloads")


def map_archive_item(doc: Mapping[str, Any]) -> Optional[CandidateRecord]:
    """advancedsearch ``docs[]`` entry -> record; None unless it is an open EPUB text."""

    identifier = doc.get("identifier")
    if not identifier or not _has_epub(doc) or is_lending_only(doc):
        return None
    identifier = str(identifier)
    description = as_text(doc.get("description"))
    return CandidateRecord(
        provider="archive",
        provider_id=identifier,
        title=as_text(doc.get("title")) or "Untitled",
        author=as_text(doc.get("creator")),
        cover_url=f"{ARCHIVE_COVER_BASE}/{identifier}",
        format=BookFormat.EPUB,
        direct_url=f"{ARCHIVE_DOWNLOAD_BASE}/{identifier}/{identifier}.epub",
        source_url=f"{ARCHIVE_DETAILS_BASE}/{identifier}",
        year=parse_year(doc.get("year")),
        language=first_of(doc.get("language"), "en") or "en",
        archive_id=identifier,
        subjects=as_text(doc.get("subject")) or None,
        description=description[:2000] or None,
    )


class ArchiveConnector(Connector):
    name = "archive"

    async def _search(self, query: str, page: int) -> List[CandidateRecord]:
        params = {
            "q": build_query(query),
            "fl": FIELDS,
            "rows": ROWS,
            "page": page,
            "output": "json",
        }
        data = await self.fetch_json(ARCHIVE_SEARCH_ENDPOINT, params)
        docs = ((data or {}).get("response") or {}).get("docs") or []
        records = []
        for doc in docs:
            record = map_archive_item(doc)
            if record is not None:
                records.append(record)
        dropped = len(docs) - len(records)
        if dropped:
            logger.info("[archive] filtered restricted_or_non_epub=%d kept=%d", dropped, len(records))
        return records
