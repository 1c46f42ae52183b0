"""Canonical book identity: archive id extraction, dedup keys and /open links.

Archive-backed items always collapse to ``bl-book-<archive_id>`` no matter
which prefix or URL shape they arrived with; other items key on
``<provider>-<provider_id>``; anything else falls back to a hash of
title+author. Purely numeric ids (ISBNs, OCLC numbers) are never treated as
archive.org identifiers.
"""

from __future__ import annotations

import base64
import hashlib
import json
import re
from typing import Any, Dict, Mapping, Optional, Union
from urllib.parse import unquote, urlencode

from .records import CandidateRecord
from .resolver_config import ARCHIVE_DETAILS_BASE

CANONICAL_PREFIX = "bl-book-"
ARCHIVE_PREFIX = "archive-"

_DETAILS_RE = re.compile(r"archive\.org/details/([^/?#]+)")
_DOWNLOAD_RE = re.compile(r"archive\.org/download/([^/?#]+)")
_ANY_ARCHIVE_RE = re.compile(r"archive\.org/(?:details|download)/([^/?#]+)")
_COVER_RE = re.compile(r"archive\.org/services/img/([^/?#]+)")
_TOKEN_RE = re.compile(r"[?&]token=([^&]+)")

MetaLike = Union[CandidateRecord, Mapping[str, Any]]


def _field(meta: Any, name: str) -> str:
    if meta is None:
        return ""
    if isinstance(meta, Mapping):
        value = meta.get(name)
    else:
        value = getattr(meta, name, None)
    if value is None:
        return ""
    return str(value)


def is_numeric_only(value: Optional[str]) -> bool:
    return bool(value) and str(value).isdigit() and str(value).isascii()


def strip_prefixes(key: Optional[str]) -> Optional[str]:
    """Remove every leading ``bl-book-`` and then a single ``archive-``."""

    if not key or not isinstance(key, str):
        return None
    ident = key
    while ident.startswith(CANONICAL_PREFIX):
        ident = ident[len(CANONICAL_PREFIX):]
    if ident.startswith(ARCHIVE_PREFIX):
        ident = ident[len(ARCHIVE_PREFIX):]
    return ident or None


def _match_id(pattern: re.Pattern, text: str) -> Optional[str]:
    if not text:
        return None
    m = pattern.search(text)
    if m and not is_numeric_only(m.group(1)):
        return m.group(1)
    return None


def archive_id_from_url(url: Optional[str]) -> Optional[str]:
    """Identifier from an archive.org ``/details/`` or ``/download/`` URL."""

    return _match_id(_ANY_ARCHIVE_RE, url or "")


def extract_archive_id(meta: MetaLike) -> Optional[str]:
    """Return the bare archive.org identifier carried by ``meta`` or None."""

    if meta is None:
        return None

    explicit = strip_prefixes(_field(meta, "archive_id"))
    if explicit and not is_numeric_only(explicit):
        return explicit

    source = _field(meta, "source_url")
    found = _match_id(_DETAILS_RE, source) or _match_id(_DOWNLOAD_RE, source)
    if found:
        return found

    pid = _field(meta, "provider_id")
    if "archive.org" in pid:
        found = _match_id(_ANY_ARCHIVE_RE, pid)
        if found:
            return found

    stripped = strip_prefixes(pid)
    if stripped and stripped != pid and not is_numeric_only(stripped):
        return stripped

    if _field(meta, "provider").lower() == "archive" and stripped and not is_numeric_only(stripped):
        return stripped

    return _match_id(_COVER_RE, _field(meta, "cover_url"))


def _innermost_id(key: str) -> str:
    ident = key
    while True:
        stripped = strip_prefixes(ident)
        if not stripped or stripped == ident:
            return ident
        ident = stripped


def _title_hash(title: str, author: str) -> str:
    digest = hashlib.sha1(f"{title}{author}".encode("utf-8")).hexdigest()
    return f"book-{digest[:12]}"


def canonical_key(meta: Union[MetaLike, str]) -> str:
    """Stable dedup key for a record, a metadata dict, or an existing key.

    Feeding a key back in returns it unchanged.
    """

    if isinstance(meta, str):
        inner = _innermost_id(meta)
        if inner != meta and not is_numeric_only(inner):
            return CANONICAL_PREFIX + inner
        return meta

    archive_id = extract_archive_id(meta)
    if archive_id:
        return CANONICAL_PREFIX + archive_id

    provider = (_field(meta, "provider") or "unknown").lower()
    pid = _field(meta, "provider_id")
    pid = _innermost_id(pid) if pid else pid
    if provider != "unknown" and pid:
        return f"{provider}-{pid}"

    return _title_hash(_field(meta, "title"), _field(meta, "author"))


def _decode_token_fields(source_url: str) -> Dict[str, Any]:
    m = _TOKEN_RE.search(source_url or "")
    if not m:
        return {}
    token = unquote(m.group(1))
    encoded = token.split(".", 1)[0]
    try:
        padded = encoded + "=" * (-len(encoded) % 4)
        payload = json.loads(base64.urlsafe_b64decode(padded.encode("ascii")).decode("utf-8"))
    except (ValueError, UnicodeError):
        return {}
    if not isinstance(payload, dict):
        return {}
    nested = payload.get("data")
    return nested if isinstance(nested, dict) else payload


def _replaceable_pid(pid: Any) -> bool:
    text = str(pid or "")
    return not text or is_numeric_only(text) or text.startswith("book-")


def normalize_meta(meta: Mapping[str, Any]) -> Dict[str, Any]:
    """Backfill provider/provider_id/archive_id from embedded tokens and archive URLs."""

    result: Dict[str, Any] = dict(meta or {})
    source_url = str(result.get("source_url") or "")
    token_source = ""

    fields = _decode_token_fields(source_url) if "token=" in source_url else {}
    if fields:
        if fields.get("provider") and result.get("provider") in (None, "", "unknown"):
            result["provider"] = fields["provider"]
        if fields.get("provider_id") and _replaceable_pid(result.get("provider_id")):
            result["provider_id"] = fields["provider_id"]
        for name in ("archive_id", "direct_url", "title", "author", "format"):
            if fields.get(name) and not result.get(name):
                result[name] = fields[name]
        cover = fields.get("cover_url") or fields.get("cover")
        if cover and not result.get("cover_url"):
            result["cover_url"] = cover
        if "archive.org" in str(fields.get("source_url") or ""):
            token_source = str(fields["source_url"])

    for text, pattern in ((str(result.get("direct_url") or ""), _DOWNLOAD_RE), (token_source or source_url, _DETAILS_RE)):
        m = pattern.search(text)
        if m:
            if not result.get("archive_id"):
                result["archive_id"] = m.group(1)
            if result.get("provider") in (None, "", "unknown"):
                result["provider"] = "archive"

    if result.get("provider") == "archive" and result.get("archive_id"):
        if _replaceable_pid(result.get("provider_id")):
            result["provider_id"] = result["archive_id"]
    return result


def build_open_url(meta: Mapping[str, Any], ref: Optional[str] = None) -> Optional[str]:
    """Return an ``/open?...`` link for ``meta``, or None when it cannot resolve."""

    n = normalize_meta(meta)
    archive_id = extract_archive_id(n)
    params: Dict[str, str] = {}
    if archive_id:
        params["provider"] = "archive"
        params["provider_id"] = archive_id
        params["archive_id"] = archive_id
        if not n.get("source_url"):
            params["source_url"] = f"{ARCHIVE_DETAILS_BASE}/{archive_id}"
    else:
        provider = str(n.get("provider") or "unknown")
        pid = str(n.get("provider_id") or "")
        stripped = strip_prefixes(pid) or pid
        if provider == "unknown" and not pid:
            return None
        if provider == "archive" and (not stripped or is_numeric_only(stripped)):
            return None
        if provider == "unknown" and is_numeric_only(stripped):
            return None
        params["provider"] = provider
        params["provider_id"] = pid

    for name, key in (("title", "title"), ("author", "author"), ("cover_url", "cover"), ("format", "format"), ("direct_url", "direct_url"), ("source_url", "source_url")):
        if n.get(name):
            params[key] = str(n[name])
    if ref:
        params["ref"] = ref
    return "/open?" + urlencode(params)


__all__ = [
    "canonical_key",
    "extract_archive_id",
    "archive_id_from_url",
    "strip_prefixes",
    "is_numeric_only",
    "normalize_meta",
    "build_open_url",
]
