"""Library of Congress books search (JSON output), digitized and unrestricted only."""

from __future__ import annotations

import hashlib
from typing import Any, List, Mapping, Optional, Tuple

from ..records import BookFormat, CandidateRecord
from ..resolver_config import LOC_ENDPOINT
from ..resolver_utils import as_text, parse_year
from .base import Connector

PAGE_SIZE = 40


def _pick_file(item: Mapping[str, Any]) -> Tuple[Optional[str], Optional[str]]:
    """Return ``(url, format)``; the first EPUB wins, else the last PDF seen."""

    pdf_url = None
    for res in item.get("resources") or []:
        if not isinstance(res, Mapping):
            continue
        for entry in res.get("files") or []:
            # files are [url, mimetype, ...] lists or dicts depending on the item
            if isinstance(entry, Mapping):
                file_url, mime = str(entry.get("url") or ""), str(entry.get("mimetype") or "")
            elif isinstance(entry, (list, tuple)) and entry:
                file_url = str(entry[0] or "")
                mime = str(entry[1] or "") if len(entry) > 1 else ""
            else:
                continue
            if "epub" in mime or file_url.endswith(".epub"):
                return file_url, BookFormat.EPUB
            if "pdf" in mime or file_url.endswith(".pdf"):
                pdf_url = file_url
    if pdf_url:
        return pdf_url, BookFormat.PDF
    return None, None


def map_loc_item(item: Mapping[str, Any]) -> Optional[CandidateRecord]:
    if item.get("access_restricted") is not False or item.get("digitized") is not True:
        return None
    direct_url, fmt = _pick_file(item)
    if not direct_url:
        return None
    title = as_text(item.get("title")) or "Untitled"
    author = as_text(item.get("contributor_names") or item.get("creator"))
    provider_id = str(item.get("id") or hashlib.md5(f"{title}{author}".encode("utf-8")).hexdigest())
    images = item.get("image_url") or []
    cover = images[0] if isinstance(images, list) and images else None
    if cover and cover.startswith("/"):
        cover = f"https://www.loc.gov{cover}"
    return CandidateRecord(
        provider="loc",
        provider_id=provider_id,
        title=title,
        author=author,
        cover_url=cover,
        format=fmt or BookFormat.UNKNOWN,
        direct_url=direct_url,
        source_url=item.get("url") or item.get("id"),
        year=parse_year(item.get("date")),
        language="en",
        subjects=as_text(item.get("subject")) or None,
    )


class LocConnector(Connector):
    name = "loc"

    async def _search(self, query: str, page: int) -> List[CandidateRecord]:
        params = {"q": query, "fo": "json", "c": PAGE_SIZE, "sp": page}
        data = await self.fetch_json(LOC_ENDPOINT, params)
        records = []
        for item in (data or {}).get("results") or []:
            record = map_loc_item(item)
            if record is not None:
                records.append(record)
        return records
