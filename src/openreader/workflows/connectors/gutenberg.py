"""Project Gutenberg via the Gutendex JSON API."""

from __future__ import annotations

from typing import Any, Dict, List, Mapping, Optional

from ..records import BookFormat, CandidateRecord
from ..resolver_config import GUTENDEX_ENDPOINT
from ..resolver_utils import as_text, first_of
from .base import Connector

EPUB_MIME_KEYS = ("application/epub+zip", "application/epub")


def map_gutenberg_item(item: Mapping[str, Any]) -> Optional[CandidateRecord]:
    """Gutendex ``results[]`` entry -> record; None when no EPUB link is offered."""

    formats: Dict[str, str] = item.get("formats") or {}
    epub_url = next((formats[k] for k in EPUB_MIME_KEYS if formats.get(k)), None)
    if not epub_url or item.get("id") is None:
        return None
    provider_id = str(item["id"])
    return CandidateRecord(
        provider="gutenberg",
        provider_id=provider_id,
        title=as_text(item.get("title")) or "Untitled",
        author=as_text(item.get("authors")),
        cover_url=formats.get("image/jpeg"),
        format=BookFormat.EPUB,
        direct_url=epub_url,
        source_url=f"https://www.gutenberg.org/ebooks/{provider_id}",
        language=first_of(item.get("languages"), "en") or "en",
        subjects=as_text(item.get("subjects")) or None,
    )


class GutenbergConnector(Connector):
    name = "gutenberg"

    async def _search(self, query: str, page: int) -> List[CandidateRecord]:
        data = await self.fetch_json(GUTENDEX_ENDPOINT, {"search": query, "page": page})
        records = []
        for item in (data or {}).get("results") or []:
            record = map_gutenberg_item(item)
            if record is not None:
                records.append(record)
        return records
