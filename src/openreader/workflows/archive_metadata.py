"""Archive.org item metadata: cached fetch, file classification and access heuristics.

The protected-file and borrow-required checks are substring heuristics over
file names, formats and collection tags. They are best-effort and can
misclassify malformed upstream metadata in either direction.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Mapping, Optional
from urllib.parse import quote

import aiohttp

from .cache import TTLCache
from .records import ArchiveFile, BookFormat, Readable, ReadabilityResult, Reason
from .resolver_config import (
    ARCHIVE_DOWNLOAD_BASE,
    ARCHIVE_METADATA_ENDPOINT,
    BORROW_COLLECTIONS,
    LENDING_STATUS_HINTS,
    OPEN_COLLECTIONS,
    PROTECTED_FILE_MARKERS,
    ResolverConfig,
)

logger = logging.getLogger(__name__)

_TRUTHY_RESTRICTED = (True, "true", 1, "1")


@dataclass
class AccessCheck:
    borrow_required: bool = False
    encrypted_only: bool = False
    reason: Optional[str] = None


def download_url(identifier: str, filename: str) -> str:
    return f"{ARCHIVE_DOWNLOAD_BASE}/{quote(identifier, safe='')}/{quote(filename, safe='/')}"


def is_protected_file(entry: Mapping[str, Any]) -> bool:
    """True when the file name or format carries a DRM/LCP/ACSM marker."""

    name = str(entry.get("name") or "").lower()
    fmt = str(entry.get("format") or "").lower()
    return any(marker in name or marker in fmt for marker in PROTECTED_FILE_MARKERS)


def _classify(entry: Mapping[str, Any]) -> Optional[str]:
    name = str(entry.get("name") or "").lower()
    fmt = str(entry.get("format") or "").lower()
    if "epub" in fmt or name.endswith(".epub"):
        return BookFormat.EPUB
    if "text pdf" in fmt or fmt == "pdf" or name.endswith(".pdf"):
        return BookFormat.PDF
    return None


def _mentions_book_format(entry: Mapping[str, Any]) -> bool:
    name = str(entry.get("name") or "").lower()
    fmt = str(entry.get("format") or "").lower()
    return _classify(entry) is not None or "epub" in fmt or "pdf" in fmt or name.endswith(".acsm")


def _size(entry: Mapping[str, Any]) -> int:
    try:
        return int(float(entry.get("size") or 0))
    except (TypeError, ValueError):
        return 0


def _as_list(value: Any) -> List[str]:
    if value is None:
        return []
    if isinstance(value, (list, tuple)):
        return [str(v) for v in value]
    return [str(value)]


def _split(metadata: Mapping[str, Any]) -> tuple:
    if "metadata" in metadata or "files" in metadata:
        return metadata.get("metadata") or {}, metadata.get("files") or []
    return metadata, []


def check_borrow_required(metadata: Optional[Mapping[str, Any]]) -> AccessCheck:
    """Classify lending restrictions for a metadata response or a flat search doc."""

    if not metadata:
        return AccessCheck()
    item, files = _split(metadata)

    if item.get("access-restricted-item") in _TRUTHY_RESTRICTED:
        return AccessCheck(borrow_required=True, reason="access_restricted")

    collections = {c.lower() for c in _as_list(item.get("collection"))}
    if collections & BORROW_COLLECTIONS and not collections & OPEN_COLLECTIONS:
        return AccessCheck(borrow_required=True, reason="borrow_collection")

    status = str(item.get("lending___status") or "").lower()
    if any(hint in status for hint in LENDING_STATUS_HINTS):
        return AccessCheck(borrow_required=True, reason="lending_status")

    if files:
        usable = [f for f in files if f.get("name") and _classify(f) and not is_protected_file(f)]
        if not usable and any(_mentions_book_format(f) for f in files if f.get("name")):
            return AccessCheck(encrypted_only=True, reason="all_files_encrypted")
    return AccessCheck()


def analyze_files(
    metadata: Optional[Mapping[str, Any]],
    max_epub_bytes: int,
    max_pdf_bytes: int,
) -> ReadabilityResult:
    """Pick the best openly readable file from an item's file listing.

    Order: smallest EPUB within the limit, then the first PDF within the limit
    (Text PDF preferred), then the smallest EPUB flagged ``too_large``.
    Results other than ``no_usable_files`` stay MAYBE until a probe confirms them.
    """

    if not metadata or not isinstance(metadata.get("files"), list):
        return ReadabilityResult(readable=Readable.MAYBE, reason=Reason.METADATA_UNAVAILABLE)

    epubs: List[ArchiveFile] = []
    pdfs: List[ArchiveFile] = []
    for entry in metadata["files"]:
        if not isinstance(entry, Mapping) or not entry.get("name") or is_protected_file(entry):
            continue
        kind = _classify(entry)
        if kind == BookFormat.EPUB:
            epubs.append(ArchiveFile(name=str(entry["name"]), format=kind, size_bytes=_size(entry)))
        elif kind == BookFormat.PDF:
            text_pdf = "text pdf" in str(entry.get("format") or "").lower()
            pdfs.append(ArchiveFile(name=str(entry["name"]), format=kind, size_bytes=_size(entry), is_text_pdf=text_pdf))

    epubs.sort(key=lambda f: f.size_bytes)
    pdfs.sort(key=lambda f: (not f.is_text_pdf, f.size_bytes))
    all_files: Dict[str, List[ArchiveFile]] = {"epubs": epubs, "pdfs": pdfs}

    good_pdf = _first(pdfs, max_pdf_bytes)
    good_epub = _first(epubs, max_epub_bytes)
    if good_epub:
        return ReadabilityResult(readable=Readable.MAYBE, best_file=good_epub, best_pdf=good_pdf, all_files=all_files)
    if good_pdf:
        return ReadabilityResult(
            readable=Readable.MAYBE, best_file=good_pdf, best_pdf=good_pdf, prefer_pdf=True, all_files=all_files
        )
    if epubs:
        oversized = ArchiveFile(name=epubs[0].name, format=epubs[0].format, size_bytes=epubs[0].size_bytes, too_large=True)
        return ReadabilityResult(
            readable=Readable.MAYBE,
            best_file=oversized,
            best_pdf=pdfs[0] if pdfs else None,
            all_files=all_files,
        )
    return ReadabilityResult(readable=Readable.FALSE, reason=Reason.NO_USABLE_FILES, all_files=all_files)


def _first(files: Iterable[ArchiveFile], limit: int) -> Optional[ArchiveFile]:
    for candidate in files:
        if candidate.size_bytes <= limit:
            return candidate
    return None


class ArchiveMetadataClient:
    """Fetches ``archive.org/metadata/<id>`` through a TTL cache.

    Non-2xx responses are cached as ``None``; network failures are not cached.
    """

    def __init__(self, config: ResolverConfig, cache: Optional[TTLCache] = None) -> None:
        self.config = config
        self.cache = cache if cache is not None else TTLCache(config.cache_ttl, config.cache_max_entries)

    async def get_metadata(self, session: aiohttp.ClientSession, identifier: str) -> Optional[Dict[str, Any]]:
        if not identifier:
            return None
        hit, cached = self.cache.lookup(identifier)
        if hit:
            return cached

        url = f"{ARCHIVE_METADATA_ENDPOINT}/{quote(identifier, safe='')}"
        timeout = aiohttp.ClientTimeout(total=self.config.metadata_timeout)
        try:
            async with session.get(url, timeout=timeout, headers={"Accept": "application/json"}) as resp:
                if resp.status < 200 or resp.status >= 300:
                    logger.info("archive metadata %s returned HTTP %s", identifier, resp.status)
                    self.cache.set(identifier, None)
                    return None
                data = await resp.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as exc:
            logger.warning("archive metadata fetch failed for %s: %s", identifier, exc)
            return None

        if not isinstance(data, dict) or not data:
            # archive.org answers unknown identifiers with an empty object
            self.cache.set(identifier, None)
            return None
        self.cache.set(identifier, data)
        return data


__all__ = [
    "AccessCheck",
    "ArchiveMetadataClient",
    "analyze_files",
    "check_borrow_required",
    "download_url",
    "is_protected_file",
]
