"""Resolver defaults (endpoints, headers, domains, collection tags, limits).

Centralizes static defaults so the connectors, analyzer and proxy have no
embedded magic strings. ``ResolverConfig.from_env()`` builds the runtime
configuration; callers (tests, the CLI) can construct their own instance to
override any field.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, Tuple

# Endpoints
GUTENDEX_ENDPOINT = "https://gutendex.com/books"
OPENLIBRARY_ENDPOINT = "https://openlibrary.org/search.json"
ARCHIVE_SEARCH_ENDPOINT = "https://archive.org/advancedsearch.php"
ARCHIVE_METADATA_ENDPOINT = "https://archive.org/metadata"
ARCHIVE_DOWNLOAD_BASE = "https://archive.org/download"
ARCHIVE_DETAILS_BASE = "https://archive.org/details"
ARCHIVE_COVER_BASE = "https://archive.org/services/img"
OAPEN_ENDPOINT = "https://library.oapen.org/rest/search"
OAPEN_BASE = "https://library.oapen.org"
DOAB_OAI_ENDPOINT = "https://directory.doabooks.org/oai/request"
OPENSTAX_ENDPOINT = "https://openstax.org/api/v2/pages/"
LOC_ENDPOINT = "https://www.loc.gov/books/"
GUTENBERG_EPUB_TEMPLATE = "https://www.gutenberg.org/ebooks/{id}.epub3.images"

# Headers
USER_AGENT = (
    "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/124.0 Safari/537.36 openreader/1.0"
)
HDR_ACCEPT = "Accept"
HDR_RANGE = "Range"

# Paths (project-relative)
_ROOT = Path(__file__).resolve().parents[1]
CATALOG_PATH = _ROOT / "data" / "catalog.jsonl"

# Archive.org lending heuristics
BORROW_COLLECTIONS = frozenset(
    {
        "inlibrary",
        "printdisabled",
        "lending",
        "borrowable",
        "lendingebooks",
        "internetarchivebooks",
    }
)
OPEN_COLLECTIONS = frozenset({"opensource", "gutenberg", "millionbooks", "americana", "fedlink"})
LENDING_STATUS_HINTS = ("borrow", "lending", "waitlist")
PROTECTED_FILE_MARKERS = ("lcp", "drm", "protected", "acsm", "adobe", "encrypted")
BORROW_REDIRECT_MARKERS = ("/borrow", "/loan", "lending")

# Probe content types that mean "this is the file"
PROBE_FILE_CONTENT_TYPES = ("epub", "pdf", "octet-stream", "zip")

# Proxy allowlist: exact hosts and suffixes (subdomains, CDN nodes)
PROXY_ALLOWED_DOMAINS = frozenset(
    {
        "www.gutenberg.org",
        "gutenberg.org",
        "archive.org",
        "openlibrary.org",
        "covers.openlibrary.org",
        "loc.gov",
        "tile.loc.gov",
        "download.loc.gov",
        "library.oapen.org",
        "directory.doabooks.org",
        "openstax.org",
        "assets.openstax.org",
        "d3bxy9euw4e147.cloudfront.net",
    }
)
PROXY_ALLOWED_SUFFIXES = (".archive.org", ".loc.gov", ".gutenberg.org", ".openstax.org")

MEDIA_TYPES = {
    "epub": "application/epub+zip",
    "pdf": "application/pdf",
}

DEFAULT_CONNECTORS = ("gutenberg", "openlibrary", "archive", "loc", "oapen", "doab", "openstax")

# Tie-break order when relevance scores are equal
SOURCE_PRIORITY = {
    "gutenberg": 6,
    "archive": 5,
    "openlibrary": 4,
    "oapen": 3,
    "openstax": 3,
    "loc": 2,
    "doab": 1,
}


def _env_int(name: str, default: int) -> int:
    try:
        raw = os.getenv(name, "")
        return int(raw) if raw.strip() else default
    except (TypeError, ValueError):
        return default


def _env_float(name: str, default: float) -> float:
    try:
        raw = os.getenv(name, "")
        return float(raw) if raw.strip() else default
    except (TypeError, ValueError):
        return default


def _env_bool(name: str, default: str = "0") -> bool:
    raw = os.getenv(name, default)
    return str(raw).strip().lower() not in {"0", "false", "no", "off", ""}


def _env_list(name: str, default: Tuple[str, ...]) -> Tuple[str, ...]:
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    return tuple(token.strip().lower() for token in raw.split(",") if token.strip())


@dataclass
class ResolverConfig:
    """Runtime knobs for connectors, probing, caching, tokens and the proxy."""

    max_epub_mb: int = 50
    max_pdf_mb: int = 200
    source_timeout: float = 12.0
    retry_timeout: float = 15.0
    metadata_timeout: float = 10.0
    probe_timeout: float = 4.0
    proxy_timeout: float = 30.0
    max_probes: int = 20
    probe_concurrency: int = 6
    max_redirects: int = 5
    probe_enabled: bool = True
    cache_ttl: float = 15 * 60
    search_cache_ttl: float = 10 * 60
    cache_max_entries: int = 1000
    token_ttl_days: int = 30
    user_agent: str = USER_AGENT
    connectors: Tuple[str, ...] = DEFAULT_CONNECTORS
    catalog_path: Path = field(default_factory=lambda: CATALOG_PATH)
    signing_secret: Optional[str] = None
    production: bool = False

    @property
    def max_epub_bytes(self) -> int:
        return self.max_epub_mb * 1024 * 1024

    @property
    def max_pdf_bytes(self) -> int:
        return self.max_pdf_mb * 1024 * 1024

    @property
    def token_ttl_seconds(self) -> int:
        return self.token_ttl_days * 24 * 60 * 60

    @classmethod
    def from_env(cls) -> "ResolverConfig":
        secret = (
            os.getenv("APP_SIGNING_SECRET")
            or os.getenv("READER_TOKEN_SECRET")
            or os.getenv("JWT_SECRET")
            or os.getenv("SESSION_SECRET")
        )
        catalog_env = os.getenv("OPENREADER_CATALOG_PATH")
        return cls(
            max_epub_mb=_env_int("MAX_EPUB_MB", 50),
            max_pdf_mb=_env_int("MAX_PDF_MB", 200),
            source_timeout=_env_float("OPENREADER_SOURCE_TIMEOUT", 12.0),
            retry_timeout=_env_float("OPENREADER_RETRY_TIMEOUT", 15.0),
            metadata_timeout=_env_float("OPENREADER_METADATA_TIMEOUT", 10.0),
            probe_timeout=_env_float("OPENREADER_PROBE_TIMEOUT", 4.0),
            proxy_timeout=_env_float("OPENREADER_PROXY_TIMEOUT", 30.0),
            max_probes=_env_int("OPENREADER_MAX_PROBES", 20),
            probe_enabled=_env_bool("OPENREADER_PROBE_ENABLE", "1"),
            probe_concurrency=max(1, _env_int("OPENREADER_PROBE_CONCURRENCY", 6)),
            cache_ttl=_env_float("OPENREADER_CACHE_TTL", 15 * 60),
            search_cache_ttl=_env_float("OPENREADER_SEARCH_CACHE_TTL", 10 * 60),
            cache_max_entries=_env_int("OPENREADER_CACHE_MAX_ENTRIES", 1000),
            token_ttl_days=_env_int("OPENREADER_TOKEN_TTL_DAYS", 30),
            connectors=_env_list("OPENREADER_CONNECTORS", DEFAULT_CONNECTORS),
            catalog_path=Path(catalog_env) if catalog_env else CATALOG_PATH,
            signing_secret=secret or None,
            production=os.getenv("OPENREADER_ENV", "development").strip().lower() == "production",
        )
