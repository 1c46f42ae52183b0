"""Open Library search, restricted to public scans backed by an archive.org item."""

from __future__ import annotations

from typing import Any, List, Mapping, Optional

from ..records import BookFormat, CandidateRecord
from ..resolver_config import ARCHIVE_DETAILS_BASE, ARCHIVE_DOWNLOAD_BASE, OPENLIBRARY_ENDPOINT
from ..resolver_utils import as_text, first_of, parse_year
from .base import Connector

PAGE_SIZE = 40
COVER_TEMPLATE = "https://covers.openlibrary.org/b/id/{cover_id}-M.jpg"


def _access(doc: Mapping[str, Any]) -> str:
    availability = doc.get("availability") or {}
    ebook_access = doc.get("ebook_access") or availability.get("status") or ""
    is_open = (
        availability.get("status") == "open"
        or doc.get("public_scan_b") is True
        or doc.get("has_fulltext") is True
        or ebook_access == "public"
    )
    return "public" if is_open else "restricted"


def map_openlibrary_item(doc: Mapping[str, Any]) -> Optional[CandidateRecord]:
    """``docs[]`` entry -> record keyed on the work; None without an ``ia`` id."""

    ia_ids = doc.get("ia") or []
    if not ia_ids:
        return None
    ia_id = str(ia_ids[0])
    work_key = str(doc.get("key") or "")
    provider_id = work_key.replace("/works/", "") or ia_id
    cover_id = doc.get("cover_i")
    return CandidateRecord(
        provider="openlibrary",
        provider_id=provider_id,
        title=as_text(doc.get("title")) or "Untitled",
        author=as_text(doc.get("author_name")),
        cover_url=COVER_TEMPLATE.format(cover_id=cover_id) if cover_id else None,
        format=BookFormat.EPUB,
        direct_url=f"{ARCHIVE_DOWNLOAD_BASE}/{ia_id}/{ia_id}.epub",
        source_url=f"{ARCHIVE_DETAILS_BASE}/{ia_id}",
        year=parse_year(doc.get("first_publish_year")),
        language=first_of(doc.get("language"), "en") or "en",
        archive_id=ia_id,
        subjects=as_text((doc.get("subject") or [])[:10]) or None,
        access=_access(doc),
    )


class OpenLibraryConnector(Connector):
    name = "openlibrary"

    async def _search(self, query: str, page: int) -> List[CandidateRecord]:
        params = {
            "q": query,
            "has_fulltext": "true",
            "public_scan_b": "true",
            "limit": PAGE_SIZE,
            "offset": (page - 1) * PAGE_SIZE,
        }
        data = await self.fetch_json(OPENLIBRARY_ENDPOINT, params)
        records = []
        for doc in (data or {}).get("docs") or []:
            record = map_openlibrary_item(doc)
            if record is not None:
                records.append(record)
        return records
