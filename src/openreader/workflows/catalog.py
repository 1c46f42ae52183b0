"""Local catalog of harvested DOAB records stored as JSON lines.

Rows are written by ``openreader.tools.harvest_doab``. Every match is an
external reference: it points at a landing page, never at a file.
"""

from __future__ import annotations

import json
import logging
import threading
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from .records import BookFormat, CandidateRecord, Readable, Reason

logger = logging.getLogger(__name__)

DEFAULT_LIMIT = 25
MAX_LIMIT = 50
SEARCH_FIELDS = ("title", "authors", "subjects")


def clamp_limit(value: Any) -> int:
    try:
        limit = int(value)
    except (TypeError, ValueError):
        return DEFAULT_LIMIT
    if limit == 0:
        return DEFAULT_LIMIT
    return max(1, min(limit, MAX_LIMIT))


def map_catalog_row(row: Dict[str, Any]) -> CandidateRecord:
    source = row.get("source") or "doab"
    return CandidateRecord(
        provider="catalog",
        provider_id=f"{source}:{row.get('source_id') or row.get('id')}",
        title=row.get("title") or "Untitled",
        author=row.get("authors") or "",
        format=BookFormat.UNKNOWN,
        source_url=row.get("source_url"),
        year=row.get("published_year"),
        language=row.get("language") or "en",
        subjects=row.get("subjects") or None,
        description=row.get("description") or None,
        access="open",
        external_only=True,
        readable=Readable.FALSE,
        reason=Reason.CATALOG_REFERENCE,
    )


class LocalCatalog:
    """Substring search over the JSONL catalog; reloaded when the file changes."""

    def __init__(self, path: Path) -> None:
        self.path = Path(path)
        self._rows: List[Dict[str, Any]] = []
        self._stamp: Optional[Tuple[float, int]] = None
        self._lock = threading.Lock()

    def _load(self) -> List[Dict[str, Any]]:
        try:
            stat = self.path.stat()
        except FileNotFoundError:
            return []
        stamp = (stat.st_mtime, stat.st_size)
        with self._lock:
            if stamp == self._stamp:
                return self._rows
            rows: List[Dict[str, Any]] = []
            with self.path.open("r", encoding="utf-8") as handle:
                for lineno, line in enumerate(handle, start=1):
                    line = line.strip()
                    if not line:
                        continue
                    try:
                        row = json.loads(line)
                    except json.JSONDecodeError:
                        logger.warning("catalog %s:%d is not valid JSON; skipped", self.path, lineno)
                        continue
                    if isinstance(row, dict):
                        rows.append(row)
            self._rows = rows
            self._stamp = stamp
            logger.info("catalog loaded %d rows from %s", len(rows), self.path)
            return rows

    def __len__(self) -> int:
        return len(self._load())

    def search(self, query: str, limit: Any = DEFAULT_LIMIT) -> List[CandidateRecord]:
        needle = (query or "").strip().lower()
        if not needle:
            return []
        limit = clamp_limit(limit)
        hits: List[CandidateRecord] = []
        for row in self._load():
            if row.get("open_access") is False:
                continue
            if any(needle in str(row.get(field) or "").lower() for field in SEARCH_FIELDS):
                hits.append(map_catalog_row(row))
                if len(hits) >= limit:
                    break
        return hits


__all__ = ["LocalCatalog", "clamp_limit", "map_catalog_row", "DEFAULT_LIMIT", "MAX_LIMIT"]
