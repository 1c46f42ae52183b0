"""DOAB (Directory of Open Access Books) via OAI-PMH ``ListRecords``.

OAI-PMH has no query parameter, so a harvested page is filtered locally by
query terms. Records carry only a landing page; the file itself is resolved
later through the external landing resolver.
"""

from __future__ import annotations

from typing import Any, Dict, List, Mapping, Optional, Tuple

from bs4 import BeautifulSoup

from ..records import BookFormat, CandidateRecord, Readable
from ..resolver_config import DOAB_OAI_ENDPOINT
from ..resolver_utils import clean_text, parse_year, query_terms
from .base import Connector

METADATA_PREFIX = "oai_dc"
MAX_DESCRIPTION = 2000


def _texts(node: Any, tag: str) -> List[str]:
    return [clean_text(el.get_text()) for el in node.find_all(tag) if el.get_text(strip=True)]


def parse_oai_records(xml: str) -> Tuple[List[Dict[str, Any]], Optional[str]]:
    """Parse one ``ListRecords`` response into flat dicts plus the resumption token.

    Deleted records and records without a header identifier are skipped.
    """

    soup = BeautifulSoup(xml or "", "xml")
    rows: List[Dict[str, Any]] = []
    for record in soup.find_all("record"):
        header = record.find("header")
        if header is None or header.get("status") == "deleted":
            continue
        ident = header.find("identifier")
        source_id = ident.get_text(strip=True) if ident else ""
        if not source_id:
            continue
        dc = record.find("metadata") or record
        identifiers = [el.get_text(strip=True) for el in dc.find_all("identifier")]
        source_url = next((i for i in identifiers if i.startswith("https://")), None) or next(
            (i for i in identifiers if i.startswith("http://")), None
        )
        titles = _texts(dc, "title")
        languages = _texts(dc, "language")
        descriptions = _texts(dc, "description")
        description = descriptions[0] if descriptions else None
        if description and len(description) > MAX_DESCRIPTION:
            description = description[:MAX_DESCRIPTION] + "..."
        dates = _texts(dc, "date")
        rows.append(
            {
                "source_id": source_id,
                "title": titles[0] if titles else None,
                "authors": "; ".join(_texts(dc, "creator")),
                "subjects": "; ".join(_texts(dc, "subject")),
                "language": languages[0].lower() if languages else None,
                "description": description,
                "published_year": parse_year(dates[0]) if dates else None,
                "source_url": source_url,
                "open_access": True,
            }
        )
    token_el = soup.find("resumptionToken")
    token = token_el.get_text(strip=True) if token_el else ""
    return rows, token or None


def map_doab_item(row: Mapping[str, Any]) -> Optional[CandidateRecord]:
    """Harvested row -> external-only record pointing at its landing page."""

    if not row.get("source_id") or not row.get("title"):
        return None
    return CandidateRecord(
        provider="doab",
        provider_id=str(row["source_id"]),
        title=str(row["title"]),
        author=str(row.get("authors") or ""),
        format=BookFormat.UNKNOWN,
        source_url=row.get("source_url"),
        year=row.get("published_year"),
        language=row.get("language") or "en",
        subjects=row.get("subjects") or None,
        description=row.get("description"),
        access="open",
        external_only=True,
        readable=Readable.MAYBE,
    )


def matches_terms(row: Mapping[str, Any], terms: List[str]) -> bool:
    haystack = " ".join(str(row.get(k) or "") for k in ("title", "authors", "subjects")).lower()
    return any(term in haystack for term in terms)


class DoabConnector(Connector):
    name = "doab"
    max_pages = 5

    async def _search(self, query: str, page: int) -> List[CandidateRecord]:
        terms = query_terms(query)
        if not terms or page > self.max_pages:
            return []
        # OAI-PMH pages are only reachable by walking resumption tokens
        params: Dict[str, Any] = {"verb": "ListRecords", "metadataPrefix": METADATA_PREFIX}
        rows: List[Dict[str, Any]] = []
        for current in range(1, page + 1):
            xml = await self.fetch_text(DOAB_OAI_ENDPOINT, params)
            rows, token = parse_oai_records(xml)
            if current == page:
                break
            if not token:
                return []
            params = {"verb": "ListRecords", "resumptionToken": token}
        records = []
        for row in rows:
            if not matches_terms(row, terms):
                continue
            record = map_doab_item(row)
            if record is not None:
                records.append(record)
        return records
