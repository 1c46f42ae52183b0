"""Exception types raised inside the engine and mapped at its boundaries."""

from __future__ import annotations

from typing import Optional


class OpenReaderError(Exception):
    """Base class for openreader errors."""


class ConfigError(OpenReaderError):
    """Required configuration is missing or invalid."""


class TokenError(OpenReaderError):
    """A reader token could not be built."""


class ProxyError(OpenReaderError):
    """A proxy request was rejected or the upstream failed.

    ``status`` is the client-facing HTTP status; ``upstream_status`` carries
    the source's own status when one was received.
    """

    def __init__(self, status: int, reason: str, *, upstream_status: Optional[int] = None, detail: str = "") -> None:
        super().__init__(detail or reason)
        self.status = status
        self.reason = reason
        self.upstream_status = upstream_status
        self.detail = detail

    def to_dict(self) -> dict:
        payload = {"error": self.reason}
        if self.upstream_status is not None:
            payload["upstream_status"] = self.upstream_status
        if self.detail:
            payload["detail"] = self.detail
        return payload
