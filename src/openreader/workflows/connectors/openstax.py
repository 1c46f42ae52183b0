"""OpenStax textbooks.

The pages API has no search, so the full book list (about fifty titles) is
fetched and filtered locally. When the API is unreachable or empty a small
curated catalog is used instead.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Mapping, Optional, Sequence

from ..records import BookFormat, CandidateRecord, Readable
from ..resolver_config import OPENSTAX_ENDPOINT
from ..resolver_utils import as_text, parse_year
from .base import Connector

logger = logging.getLogger(__name__)

PAGE_SIZE = 10
API_FIELDS = (
    "title,slug,cover_url,book_subjects,high_resolution_pdf_url,"
    "low_resolution_pdf_url,webview_rex_link,publish_date,authors"
)
_CDN = "https://assets.openstax.org/oscms-prodcms/media/documents"

CURATED_BOOKS: Sequence[Dict[str, Any]] = (
    {
        "title": "Principles of Economics 3e",
        "slug": "principles-economics-3e",
        "book_subjects": [{"name": "Business"}, {"name": "Social Sciences"}],
        "high_resolution_pdf_url": f"{_CDN}/Principles_of_Economics_3e_-_WEB.pdf",
        "publish_date": "2022-12-14",
        "authors": [{"name": "Steven A. Greenlaw"}, {"name": "David Shapiro"}],
    },
    {
        "title": "Biology 2e",
        "slug": "biology-2e",
        "book_subjects": [{"name": "Science"}],
        "high_resolution_pdf_url": f"{_CDN}/Biology2e-WEB.pdf",
        "publish_date": "2018-03-28",
        "authors": [{"name": "Mary Ann Clark"}, {"name": "Matthew Douglas"}, {"name": "Jung Choi"}],
    },
    {
        "title": "Calculus Volume 1",
        "slug": "calculus-volume-1",
        "book_subjects": [{"name": "Math"}],
        "high_resolution_pdf_url": f"{_CDN}/CalculusVolume1-WEB.pdf",
        "publish_date": "2016-03-30",
        "authors": [{"name": "Gilbert Strang"}, {"name": "Edwin Herman"}],
    },
    {
        "title": "Introduction to Sociology 3e",
        "slug": "introduction-sociology-3e",
        "book_subjects": [{"name": "Social Sciences"}],
        "high_resolution_pdf_url": f"{_CDN}/IntroductiontoSociology3e-WEB.pdf",
        "publish_date": "2021-06-03",
        "authors": [{"name": "Tonja R. Conerly"}, {"name": "Kathleen Holmes"}],
    },
    {
        "title": "U.S. History",
        "slug": "us-history",
        "book_subjects": [{"name": "Humanities"}, {"name": "Social Sciences"}],
        "high_resolution_pdf_url": f"{_CDN}/USHistory-WEB.pdf",
        "publish_date": "2014-12-30",
        "authors": [{"name": "P. Scott Corbett"}, {"name": "Volker Janssen"}],
    },
    {
        "title": "Psychology 2e",
        "slug": "psychology-2e",
        "book_subjects": [{"name": "Social Sciences"}],
        "high_resolution_pdf_url": f"{_CDN}/Psychology2e_WEB.pdf",
        "publish_date": "2020-04-22",
        "authors": [{"name": "Rose M. Spielman"}, {"name": "William J. Jenkins"}],
    },
)


def _author(book: Mapping[str, Any]) -> str:
    names = []
    for a in book.get("authors") or []:
        if not isinstance(a, Mapping):
            continue
        name = a.get("name") or f"{a.get('first_name') or ''} {a.get('last_name') or ''}".strip()
        if name:
            names.append(name)
    return ", ".join(names)


def map_openstax_item(book: Mapping[str, Any]) -> Optional[CandidateRecord]:
    """Pages API book -> PDF record; None when no PDF link is published."""

    pdf_url = book.get("high_resolution_pdf_url") or book.get("low_resolution_pdf_url")
    slug = book.get("slug") or book.get("id")
    if not pdf_url or not slug:
        return None
    return CandidateRecord(
        provider="openstax",
        provider_id=f"openstax-{slug}",
        title=as_text(book.get("title")) or "Untitled",
        author=_author(book),
        cover_url=book.get("cover_url") or None,
        format=BookFormat.PDF,
        direct_url=str(pdf_url),
        source_url=book.get("webview_rex_link") or f"https://openstax.org/details/books/{slug}",
        year=parse_year(book.get("publish_date")),
        language="en",
        subjects=as_text(book.get("book_subjects")) or None,
        access="open",
        readable=Readable.TRUE,
    )


def filter_books(books: Sequence[Mapping[str, Any]], query: str) -> List[Mapping[str, Any]]:
    terms = [t for t in query.lower().split() if len(t) > 2]
    if not terms:
        return []
    matched = []
    for book in books:
        subjects = " ".join(str((s or {}).get("name") or "") for s in book.get("book_subjects") or [])
        text = f"{book.get('title') or ''} {subjects}".lower()
        if any(term in text for term in terms):
            matched.append(book)
    return matched


class OpenStaxConnector(Connector):
    name = "openstax"

    async def _load_books(self) -> Sequence[Mapping[str, Any]]:
        params = {"type": "books.Book", "fields": API_FIELDS, "limit": 100}
        try:
            data = await self.fetch_json(OPENSTAX_ENDPOINT, params)
        except Exception as exc:  # noqa: BLE001 - curated list keeps the source useful
            logger.warning("[openstax] API unavailable (%s); using curated catalog", exc or type(exc).__name__)
            return CURATED_BOOKS
        items = (data or {}).get("items") if isinstance(data, dict) else None
        if not isinstance(items, list) or not items:
            logger.info("[openstax] empty API response; using curated catalog")
            return CURATED_BOOKS
        return items

    async def _search(self, query: str, page: int) -> List[CandidateRecord]:
        matched = filter_books(await self._load_books(), query)
        offset = (page - 1) * PAGE_SIZE
        records = []
        for book in matched[offset: offset + PAGE_SIZE]:
            record = map_openstax_item(book)
            if record is not None:
                records.append(record)
        return records
