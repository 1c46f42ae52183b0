"""OAPEN Library REST search; every item is open access with direct bitstreams."""

from __future__ import annotations

from typing import Any, List, Mapping, Optional

from ..records import BookFormat, CandidateRecord, Readable
from ..resolver_config import OAPEN_BASE, OAPEN_ENDPOINT
from ..resolver_utils import as_text, parse_year
from .base import Connector

PAGE_SIZE = 30


def _meta_value(item: Mapping[str, Any], key: str) -> str:
    for entry in item.get("metadata") or []:
        if isinstance(entry, Mapping) and entry.get("key") == key:
            return str(entry.get("value") or "")
    return ""


def _absolute(link: str) -> str:
    return link if link.startswith("http") else f"{OAPEN_BASE}{link}"


def map_oapen_item(item: Mapping[str, Any], max_epub_bytes: int) -> Optional[CandidateRecord]:
    """REST item with expanded metadata/bitstreams -> record; None without a PDF or EPUB."""

    pdf_url = epub_url = None
    epub_size = 0
    for bs in item.get("bitstreams") or []:
        mime = str(bs.get("mimeType") or "").lower()
        name = str(bs.get("name") or "").lower()
        link = str(bs.get("retrieveLink") or "")
        if not link:
            continue
        if mime == "application/pdf" or name.endswith(".pdf"):
            pdf_url = pdf_url or _absolute(link)
        elif mime == "application/epub+zip" or name.endswith(".epub"):
            if not epub_url:
                epub_url = _absolute(link)
                epub_size = int(bs.get("sizeBytes") or 0)
    if not pdf_url and not epub_url:
        return None

    use_epub = bool(epub_url) and (epub_size <= max_epub_bytes or not pdf_url)
    handle = str(item.get("handle") or "")
    provider_id = str(item.get("uuid") or item.get("id") or handle.replace("/", "-"))
    direct_url = epub_url if use_epub else pdf_url
    return CandidateRecord(
        provider="oapen",
        provider_id=provider_id,
        title=as_text(_meta_value(item, "dc.title") or item.get("name")) or "Untitled",
        author=as_text(_meta_value(item, "dc.contributor.author") or _meta_value(item, "dc.creator")),
        cover_url=f"{OAPEN_BASE}/bitstream/handle/{handle}/cover.jpg?sequence=1" if handle else None,
        format=BookFormat.EPUB if use_epub else BookFormat.PDF,
        direct_url=direct_url,
        source_url=f"{OAPEN_BASE}/handle/{handle}" if handle else direct_url,
        year=parse_year(_meta_value(item, "dc.date.issued")),
        language=_meta_value(item, "dc.language.iso") or "en",
        subjects=as_text(_meta_value(item, "dc.subject.other")) or None,
        description=as_text(_meta_value(item, "dc.description.abstract"))[:2000] or None,
        access="open",
        readable=Readable.TRUE,
    )


class OapenConnector(Connector):
    name = "oapen"

    async def _search(self, query: str, page: int) -> List[CandidateRecord]:
        params = {
            "query": query,
            "expand": "metadata,bitstreams",
            "limit": PAGE_SIZE,
            "offset": (page - 1) * PAGE_SIZE,
        }
        data = await self.fetch_json(OAPEN_ENDPOINT, params)
        if not isinstance(data, list):
            return []
        records = []
        for item in data:
            record = map_oapen_item(item, self.config.max_epub_bytes)
            if record is not None:
                records.append(record)
        return records
