"""High-level exports for the openreader workflows."""

from .aggregator import Aggregator, dedup_records
from .availability import ReadabilityChecker
from .catalog import LocalCatalog
from .errors import ConfigError, OpenReaderError, ProxyError, TokenError
from .external import LandingResolver
from .identity import build_open_url, canonical_key, extract_archive_id, normalize_meta
from .proxy import StreamingProxy
from .records import ArchiveFile, BookFormat, CandidateRecord, Readable, ReadabilityResult, Reason
from .resolver_config import ResolverConfig
from .tokens import ReaderTokenSigner

__all__ = [
    "Aggregator",
    "ArchiveFile",
    "BookFormat",
    "CandidateRecord",
    "ConfigError",
    "LandingResolver",
    "LocalCatalog",
    "OpenReaderError",
    "ProxyError",
    "Readable",
    "ReadabilityChecker",
    "ReadabilityResult",
    "ReaderTokenSigner",
    "Reason",
    "ResolverConfig",
    "StreamingProxy",
    "TokenError",
    "build_open_url",
    "canonical_key",
    "dedup_records",
    "extract_archive_id",
    "normalize_meta",
]
