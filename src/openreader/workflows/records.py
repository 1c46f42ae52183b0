"""Record types shared by connectors, the analyzer, the aggregator and the server."""

from __future__ import annotations

import enum
import json
from dataclasses import dataclass, field, replace
from typing import Any, Dict, List, Optional

from ..core.keys import (
    K_ARCHIVE_ID,
    K_AUTHOR,
    K_COVER_URL,
    K_DIRECT_URL,
    K_FORMAT,
    K_LANGUAGE,
    K_PROVIDER,
    K_PROVIDER_ID,
    K_READABLE,
    K_REASON,
    K_SOURCE_URL,
    K_TITLE,
    K_YEAR,
)


class Readable(str, enum.Enum):
    """Tri-state readability. MAYBE means not probed or inconclusive."""

    TRUE = "true"
    FALSE = "false"
    MAYBE = "maybe"

    @classmethod
    def coerce(cls, value: Any) -> "Readable":
        if isinstance(value, Readable):
            return value
        if value is True:
            return cls.TRUE
        if value is False:
            return cls.FALSE
        token = str(value or "").strip().lower()
        for member in cls:
            if member.value == token:
                return member
        return cls.MAYBE


class Reason:
    METADATA_UNAVAILABLE = "metadata_unavailable"
    NO_USABLE_FILES = "no_usable_files"
    ENCRYPTED_ONLY = "encrypted_only"
    BORROW_REQUIRED = "borrow_required"
    NOT_PROBED = "not_probed"
    TIMEOUT = "timeout"
    DOMAIN_NOT_ALLOWED = "domain_not_allowed"
    REDIRECT_NOT_ALLOWED = "redirect_not_allowed"
    UPSTREAM_ERROR = "upstream_error"
    INVALID_TOKEN = "invalid_token"
    TOKEN_EXPIRED = "token_expired"
    NO_IDENTIFIER = "no_identifier"
    CATALOG_REFERENCE = "catalog_reference"


class BookFormat:
    EPUB = "epub"
    PDF = "pdf"
    UNKNOWN = "unknown"

    @staticmethod
    def normalize(value: Optional[str]) -> str:
        token = (value or "").strip().lower()
        if token in {"epub", "pdf"}:
            return token
        return BookFormat.UNKNOWN


@dataclass
class ArchiveFile:
    name: str
    format: str
    size_bytes: int = 0
    is_text_pdf: bool = False
    too_large: bool = False

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"name": self.name, "format": self.format, "size": self.size_bytes}
        if self.too_large:
            payload["too_large"] = True
        return payload


@dataclass
class ReadabilityResult:
    readable: Readable
    reason: Optional[str] = None
    best_file: Optional[ArchiveFile] = None
    best_pdf: Optional[ArchiveFile] = None
    direct_url: Optional[str] = None
    prefer_pdf: bool = False
    borrow_required: bool = False
    encrypted_only: bool = False
    all_files: Dict[str, List[ArchiveFile]] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "readable": self.readable.value,
            "reason": self.reason,
            "bestFile": self.best_file.to_dict() if self.best_file else None,
            "bestPdf": self.best_pdf.to_dict() if self.best_pdf else None,
            "directUrl": self.direct_url,
            "preferPdf": self.prefer_pdf,
            "borrowRequired": self.borrow_required,
            "encryptedOnly": self.encrypted_only,
            "allFiles": {k: [f.to_dict() for f in v] for k, v in self.all_files.items()},
        }


@dataclass
class CandidateRecord:
    """A normalized book/file description produced by a connector."""

    provider: str
    provider_id: str
    title: str = "Untitled"
    author: str = ""
    cover_url: Optional[str] = None
    format: str = BookFormat.UNKNOWN
    direct_url: Optional[str] = None
    source_url: Optional[str] = None
    year: Optional[int] = None
    language: str = "en"
    archive_id: Optional[str] = None
    subjects: Optional[str] = None
    description: Optional[str] = None
    access: str = "public"
    external_only: bool = False
    readable: Readable = Readable.TRUE
    reason: Optional[str] = None
    best_file: Optional[ArchiveFile] = None
    best_pdf: Optional[ArchiveFile] = None
    prefer_pdf: bool = False
    relevance_score: Optional[float] = None

    @property
    def book_id(self) -> str:
        return f"{self.provider}:{self.provider_id}"

    def with_readability(self, result: ReadabilityResult) -> "CandidateRecord":
        return replace(
            self,
            readable=result.readable,
            reason=result.reason,
            best_file=result.best_file,
            best_pdf=result.best_pdf,
            prefer_pdf=result.prefer_pdf,
            direct_url=result.direct_url or self.direct_url,
        )

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            K_PROVIDER: self.provider,
            K_PROVIDER_ID: self.provider_id,
            "book_id": self.book_id,
            K_TITLE: self.title,
            K_AUTHOR: self.author,
            K_COVER_URL: self.cover_url,
            K_FORMAT: self.format,
            K_DIRECT_URL: self.direct_url,
            K_SOURCE_URL: self.source_url,
            K_YEAR: self.year,
            K_LANGUAGE: self.language,
            "access": self.access,
            K_READABLE: self.readable.value,
        }
        if self.archive_id:
            payload[K_ARCHIVE_ID] = self.archive_id
        if self.reason:
            payload[K_REASON] = self.reason
        if self.external_only:
            payload["external_only"] = True
        if self.subjects:
            payload["subjects"] = self.subjects
        if self.description:
            payload["description"] = self.description
        if self.best_file:
            payload["bestFile"] = self.best_file.to_dict()
        if self.best_pdf:
            payload["bestPdf"] = self.best_pdf.to_dict()
        if self.prefer_pdf:
            payload["preferPdf"] = True
        if self.relevance_score is not None:
            payload["relevanceScore"] = self.relevance_score
        return payload

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), ensure_ascii=False)
