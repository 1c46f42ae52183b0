"""Allowlisted, Range-aware streaming proxy for EPUB/PDF files.

Two request shapes reach the proxy:

* token mode: a signed reader token names the upstream URL (or an archive id
  whose best file is looked up);
* direct mode: a raw ``url`` (or ``archive`` id) that must pass the host
  allowlist.

Redirects are followed by hand so every hop can be checked. Upstream failures
surface as ``ProxyError`` with the client-facing status.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Mapping, Optional
from urllib.parse import urljoin, urlparse

import aiohttp
from aiohttp import web

from .archive_metadata import download_url
from .availability import ReadabilityChecker
from .errors import ProxyError
from .identity import is_numeric_only, strip_prefixes
from .records import Readable, Reason
from .resolver_config import (
    HDR_ACCEPT,
    HDR_RANGE,
    MEDIA_TYPES,
    PROXY_ALLOWED_DOMAINS,
    PROXY_ALLOWED_SUFFIXES,
    ResolverConfig,
)
from .resolver_utils import idna_normalize, is_allowed_url
from .tokens import ReaderTokenSigner

logger = logging.getLogger(__name__)

CHUNK_SIZE = 64 * 1024
OCTET_STREAM = "application/octet-stream"
FORWARDED_HEADERS = ("Content-Range", "Content-Length", "Last-Modified", "ETag")


@dataclass
class UpstreamTarget:
    url: str
    media_type: str
    token_mode: bool = False


def host_family(url: str) -> str:
    """Last two labels of the host (``ia800.us.archive.org`` -> ``archive.org``)."""

    host = idna_normalize(urlparse(url).hostname or "")
    labels = [p for p in host.split(".") if p]
    return ".".join(labels[-2:])


def media_type_for(kind: str, fmt: Optional[str] = None, url: str = "") -> str:
    if kind in MEDIA_TYPES:
        return MEDIA_TYPES[kind]
    fmt = (fmt or "").lower()
    if fmt in MEDIA_TYPES:
        return MEDIA_TYPES[fmt]
    path = urlparse(url).path.lower()
    for ext, media in MEDIA_TYPES.items():
        if path.endswith(f".{ext}"):
            return media
    return OCTET_STREAM


def _is_http(url: str) -> bool:
    return urlparse(url or "").scheme in {"http", "https"}


class StreamingProxy:
    def __init__(
        self,
        session: aiohttp.ClientSession,
        config: ResolverConfig,
        signer: ReaderTokenSigner,
        checker: Optional[ReadabilityChecker] = None,
    ) -> None:
        self.session = session
        self.config = config
        self.signer = signer
        self.checker = checker or ReadabilityChecker(config)

    def is_allowed(self, url: str) -> bool:
        return is_allowed_url(url, PROXY_ALLOWED_DOMAINS, PROXY_ALLOWED_SUFFIXES)

    def redirect_allowed(self, next_url: str, target: UpstreamTarget) -> bool:
        if not _is_http(next_url):
            return False
        if self.is_allowed(next_url):
            return True
        return target.token_mode and host_family(next_url) == host_family(target.url)

    async def archive_file_url(self, identifier: str, *, prefer_pdf: bool) -> str:
        ident = strip_prefixes(identifier) or ""
        if not ident or is_numeric_only(ident):
            raise ProxyError(400, Reason.NO_IDENTIFIER)
        result = await self.checker.check_readability(self.session, ident, skip_probe=True)
        if result.borrow_required or result.encrypted_only:
            raise ProxyError(403, result.reason or Reason.BORROW_REQUIRED)
        if result.reason == Reason.METADATA_UNAVAILABLE:
            raise ProxyError(502, Reason.METADATA_UNAVAILABLE)
        chosen = result.best_file
        if prefer_pdf:
            chosen = result.best_pdf or (chosen if chosen and chosen.format == "pdf" else None)
        if result.readable is Readable.FALSE or chosen is None:
            raise ProxyError(404, Reason.NO_USABLE_FILES)
        return download_url(ident, chosen.name)

    async def resolve_target(self, params: Mapping[str, str], kind: str) -> UpstreamTarget:
        token = (params.get("token") or "").strip()
        if token:
            payload, reason = self.signer.verify_detailed(token)
            if payload is None:
                raise ProxyError(401, reason or Reason.INVALID_TOKEN)
            url = str(payload.get("direct_url") or "")
            if not url and payload.get("archive_id"):
                url = await self.archive_file_url(str(payload["archive_id"]), prefer_pdf=kind == "pdf")
            if not _is_http(url):
                raise ProxyError(403, Reason.DOMAIN_NOT_ALLOWED)
            return UpstreamTarget(url, media_type_for(kind, payload.get("format"), url), token_mode=True)

        if kind == "file":
            raise ProxyError(400, "missing_token")
        url = (params.get("url") or "").strip()
        archive = (params.get("archive") or "").strip()
        if not url and archive:
            url = await self.archive_file_url(archive, prefer_pdf=kind == "pdf")
        if not url:
            raise ProxyError(400, "missing_url")
        if not self.is_allowed(url):
            logger.warning("[proxy] blocked non-allowlisted url %s", url)
            raise ProxyError(403, Reason.DOMAIN_NOT_ALLOWED)
        return UpstreamTarget(url, media_type_for(kind, None, url))

    async def open_upstream(self, target: UpstreamTarget, range_header: Optional[str] = None) -> aiohttp.ClientResponse:
        """GET the target following allowed redirects; returns a 200/206 response the caller must release."""

        headers = {HDR_ACCEPT: f"{target.media_type}, {OCTET_STREAM}, */*", "Accept-Encoding": "identity"}
        if range_header:
            headers[HDR_RANGE] = range_header
        timeout = aiohttp.ClientTimeout(
            total=None, sock_connect=self.config.proxy_timeout, sock_read=self.config.proxy_timeout
        )
        url = target.url
        for _ in range(self.config.max_redirects + 1):
            try:
                resp = await self.session.get(url, headers=headers, timeout=timeout, allow_redirects=False)
            except asyncio.TimeoutError:
                logger.warning("[proxy] upstream timeout for %s", url)
                raise ProxyError(504, Reason.TIMEOUT)
            except aiohttp.ClientError as exc:
                logger.warning("[proxy] upstream request failed for %s: %s", url, exc)
                raise ProxyError(502, Reason.UPSTREAM_ERROR, detail=str(exc) or type(exc).__name__)

            status = resp.status
            if 300 <= status < 400 and resp.headers.get("Location"):
                next_url = urljoin(url, resp.headers["Location"])
                resp.release()
                if not self.redirect_allowed(next_url, target):
                    logger.warning("[proxy] redirect to %s blocked", next_url)
                    raise ProxyError(403, Reason.REDIRECT_NOT_ALLOWED)
                url = next_url
                continue
            if status in (200, 206):
                return resp
            resp.release()
            logger.info("[proxy] upstream HTTP %s for %s", status, url)
            if status == 404:
                raise ProxyError(404, "not_found", upstream_status=status)
            if status == 416:
                raise ProxyError(416, "range_not_satisfiable", upstream_status=status)
            raise ProxyError(502, Reason.UPSTREAM_ERROR, upstream_status=status)
        raise ProxyError(502, Reason.UPSTREAM_ERROR, detail="too many redirects")

    async def stream(self, request: web.Request, kind: str) -> web.StreamResponse:
        """Serve one proxy request. Raises ProxyError before any byte is sent."""

        target = await self.resolve_target(request.query, kind)
        upstream = await self.open_upstream(target, request.headers.get(HDR_RANGE))
        try:
            response = web.StreamResponse(status=upstream.status)
            response.content_type = target.media_type
            response.headers["Accept-Ranges"] = "bytes"
            for name in FORWARDED_HEADERS:
                value = upstream.headers.get(name)
                if value:
                    response.headers[name] = value
            response.headers["Cache-Control"] = "private, no-transform"
            await response.prepare(request)
            try:
                async for chunk in upstream.content.iter_chunked(CHUNK_SIZE):
                    await response.write(chunk)
            except (aiohttp.ClientError, asyncio.TimeoutError, ConnectionResetError) as exc:
                # headers are already sent; all we can do is cut the body short
                logger.warning("[proxy] stream interrupted for %s: %s", target.url, exc or type(exc).__name__)
                return response
            await response.write_eof()
            return response
        finally:
            upstream.release()


__all__ = ["StreamingProxy", "UpstreamTarget", "host_family", "media_type_for"]
