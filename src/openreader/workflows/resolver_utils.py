"""Shared helper functions used across connectors, the analyzer and the proxy."""

from __future__ import annotations

import re
from typing import Any, Iterable, Optional
from urllib.parse import urlparse

import ftfy

_YEAR_RE = re.compile(r"(\d{4})")


def idna_normalize(host: str) -> str:
    """Return a lowercase, IDNA-normalized host name."""

    h = (host or "").strip().rstrip(".").lower()
    if not h:
        return ""
    try:
        h = h.encode("idna").decode("ascii")
    except UnicodeError:
        pass
    return h


def domain_matches_allowlist(
    host: str,
    allowed_domains: Iterable[str],
    allowed_suffixes: Iterable[str] = (),
) -> Optional[str]:
    """Return the allowlist entry matching ``host`` (exact or suffix), else None."""

    normalized = idna_normalize(host)
    if not normalized:
        return None
    for entry in allowed_domains:
        token = (entry or "").strip().lower().lstrip(".")
        if token and normalized == token:
            return token
    for suffix in allowed_suffixes:
        token = (suffix or "").strip().lower()
        if not token:
            continue
        if not token.startswith("."):
            token = f".{token}"
        if normalized.endswith(token):
            return token
    return None


def is_allowed_url(
    url: str,
    allowed_domains: Iterable[str],
    allowed_suffixes: Iterable[str] = (),
) -> bool:
    """True when ``url`` is http(s) and its host passes the allowlist."""

    try:
        parsed = urlparse((url or "").strip())
    except ValueError:
        return False
    if parsed.scheme not in {"http", "https"}:
        return False
    return domain_matches_allowlist(parsed.hostname or "", allowed_domains, allowed_suffixes) is not None


def as_text(value: Any) -> str:
    """Flatten heterogeneous upstream values (lists, name dicts) into a clean string."""

    if value is None:
        return ""
    if isinstance(value, str):
        return clean_text(value)
    if isinstance(value, (list, tuple)):
        return ", ".join(part for part in (as_text(v) for v in value) if part)
    if isinstance(value, dict):
        name = value.get("name")
        return clean_text(name) if isinstance(name, str) else ""
    return clean_text(str(value))


def clean_text(text: str) -> str:
    """Repair mojibake and collapse whitespace in catalog strings."""

    if not text:
        return ""
    fixed = ftfy.fix_text(text)
    return " ".join(fixed.split())


def parse_year(value: Any) -> Optional[int]:
    """Extract a four-digit year from ints, ISO dates or free text."""

    if value is None or value == "":
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, (list, tuple)):
        return parse_year(value[0]) if value else None
    match = _YEAR_RE.search(str(value))
    return int(match.group(1)) if match else None


def first_of(value: Any, default: str = "") -> str:
    if isinstance(value, (list, tuple)):
        return str(value[0]) if value else default
    if value is None:
        return default
    return str(value)


def query_terms(query: str, min_len: int = 3) -> list[str]:
    """Lowercased whitespace-split terms used for local catalog filtering."""

    return [t for t in (query or "").lower().split() if len(t) >= min_len]


def sanity_check() -> None:
    assert idna_normalize("ExAmple.COM.") == "example.com"
    assert domain_matches_allowlist("ia800.us.archive.org", {"archive.org"}, (".archive.org",)) == ".archive.org"
    assert domain_matches_allowlist("evil-archive.org", {"archive.org"}, (".archive.org",)) is None
    assert is_allowed_url("https://archive.org/download/x/y.epub", {"archive.org"})
    assert not is_allowed_url("file:///etc/passwd", {"archive.org"})
    assert parse_year("2011-05-01") == 2011


sanity_check()

__all__ = [
    "idna_normalize",
    "domain_matches_allowlist",
    "is_allowed_url",
    "as_text",
    "clean_text",
    "parse_year",
    "first_of",
    "query_terms",
    "sanity_check",
]
