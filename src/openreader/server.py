"""aiohttp.web surface: search, catalog, token minting and the streaming proxy.

One ``aiohttp.ClientSession`` is opened per application in a cleanup context
and shared by the aggregator, the readability checker, the landing resolver
and the proxy. Direct upstream URLs never appear in search responses; clients
get a signed token and an ``href`` into the reader instead.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import time
from dataclasses import dataclass
from typing import Any, Dict, Optional

import aiohttp
from aiohttp import web
from dotenv import load_dotenv

from .workflows.aggregator import Aggregator
from .workflows.availability import ReadabilityChecker
from .workflows.catalog import LocalCatalog
from .workflows.errors import ProxyError, TokenError
from .workflows.external import LandingResolver
from .workflows.identity import build_open_url, canonical_key, extract_archive_id, normalize_meta
from .workflows.proxy import StreamingProxy
from .workflows.records import BookFormat, CandidateRecord, Readable, Reason
from .workflows.resolver_config import ResolverConfig
from .workflows.tokens import ReaderTokenSigner, derive_direct_url

logger = logging.getLogger(__name__)

NO_STORE = {"Cache-Control": "no-store"}
READER_PATH = "/unified-reader"
TOKEN_FIELDS = ("provider", "provider_id", "title", "author", "cover_url", "source_url", "archive_id")


@dataclass
class Services:
    session: aiohttp.ClientSession
    config: ResolverConfig
    signer: ReaderTokenSigner
    checker: ReadabilityChecker
    aggregator: Aggregator
    catalog: LocalCatalog
    landing: LandingResolver
    proxy: StreamingProxy


CONFIG_KEY = web.AppKey("config", ResolverConfig)
SIGNER_KEY = web.AppKey("signer", ReaderTokenSigner)
SERVICES_KEY = web.AppKey("services", Services)


def build_services(session: aiohttp.ClientSession, config: ResolverConfig, signer: ReaderTokenSigner) -> Services:
    checker = ReadabilityChecker(config)
    return Services(
        session=session,
        config=config,
        signer=signer,
        checker=checker,
        aggregator=Aggregator(session, config, checker=checker),
        catalog=LocalCatalog(config.catalog_path),
        landing=LandingResolver(session, config),
        proxy=StreamingProxy(session, config, signer, checker=checker),
    )


def _int_param(raw: Optional[str], default: int) -> int:
    try:
        return int(raw) if raw not in (None, "") else default
    except (TypeError, ValueError):
        return default


def _flag(raw: Optional[str]) -> bool:
    return str(raw or "").strip().lower() in {"1", "true", "yes", "on"}


def token_payload(record: CandidateRecord) -> Dict[str, Any]:
    payload: Dict[str, Any] = {name: getattr(record, name) for name in TOKEN_FIELDS if getattr(record, name)}
    payload["direct_url"] = record.direct_url
    fmt = record.format
    if record.prefer_pdf and record.best_pdf:
        fmt = BookFormat.PDF
    elif record.best_file:
        fmt = record.best_file.format
    payload["format"] = fmt
    return payload


def public_item(signer: ReaderTokenSigner, record: CandidateRecord) -> Dict[str, Any]:
    """Client view of a record: signed token and reader href, upstream URL removed."""

    item = record.to_dict()
    item.pop("direct_url", None)
    item["key"] = canonical_key(record)
    if record.external_only or record.readable is Readable.FALSE:
        item["open_url"] = record.source_url or build_open_url({k: v for k, v in item.items() if k != "direct_url"})
        return item
    try:
        token = signer.build(token_payload(record))
    except TokenError as exc:
        logger.debug("no token for %s: %s", record.book_id, exc)
        return item
    item["token"] = token
    item["href"] = f"{READER_PATH}?token={token}"
    return item


async def _json_body(request: web.Request) -> Dict[str, Any]:
    try:
        body = await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        raise web.HTTPBadRequest(
            text=json.dumps({"ok": False, "error": "invalid_json"}), content_type="application/json"
        )
    if not isinstance(body, dict):
        raise web.HTTPBadRequest(
            text=json.dumps({"ok": False, "error": "invalid_json"}), content_type="application/json"
        )
    return body


async def handle_search(request: web.Request) -> web.Response:
    services = request.app[SERVICES_KEY]
    query = (request.query.get("q") or "").strip()
    if not query:
        return web.json_response({"items": []}, headers=NO_STORE)
    page = max(1, _int_param(request.query.get("page"), 1))
    ranked = _flag(request.query.get("ranked"))
    records = await services.aggregator.search(query, page=page, ranked=ranked)
    items = [public_item(services.signer, record) for record in records]
    return web.json_response({"items": items}, headers=NO_STORE)


async def handle_catalog_search(request: web.Request) -> web.Response:
    services = request.app[SERVICES_KEY]
    started = time.perf_counter()
    query = (request.query.get("q") or "").strip()
    # file reload and scan run off the event loop
    records = await asyncio.to_thread(services.catalog.search, query, request.query.get("limit"))
    items = [record.to_dict() for record in records]
    return web.json_response(
        {"items": items, "total": len(items), "elapsed_ms": int((time.perf_counter() - started) * 1000)},
        headers=NO_STORE,
    )


async def handle_external_token(request: web.Request) -> web.Response:
    services = request.app[SERVICES_KEY]
    body = await _json_body(request)
    landing_url = str(body.get("landing_url") or body.get("source_url") or "").strip()
    if not landing_url:
        if body.get("provider") and body.get("provider_id"):
            return _provider_token(services.signer, body)
        return web.json_response({"ok": False, "error": "missing_url"}, status=400)

    resolved = await services.landing.resolve_landing(landing_url)
    if resolved is None:
        return web.json_response({"ok": False, "open_url": landing_url})

    direct_url, fmt = resolved
    payload = {name: body[name] for name in ("provider", "provider_id", "title", "author", "cover_url") if body.get(name)}
    payload.update({"direct_url": direct_url, "format": fmt, "source_url": landing_url})
    token = services.signer.build(payload)
    return web.json_response({"ok": True, "token": token, "format": fmt, "direct_url": direct_url})


def _provider_token(signer: ReaderTokenSigner, body: Dict[str, Any]) -> web.Response:
    """Token for providers whose file URL follows from the id alone (gutenberg, archive)."""

    payload = {name: body[name] for name in ("provider", "provider_id", "title", "author", "cover_url") if body.get(name)}
    fmt = BookFormat.normalize(body.get("format")) if body.get("format") else BookFormat.EPUB
    payload["format"] = fmt
    derive_direct_url(payload)
    try:
        token = signer.build(payload)
    except TokenError as exc:
        logger.info("external token refused: %s", exc)
        return web.json_response({"ok": False, "open_url": build_open_url(body)})
    return web.json_response({"ok": True, "token": token, "format": fmt, "direct_url": payload.get("direct_url")})


async def handle_archive_token(request: web.Request) -> web.Response:
    services = request.app[SERVICES_KEY]
    body = await _json_body(request)
    meta = normalize_meta(body)
    identifier = extract_archive_id(meta)
    if not identifier:
        return web.json_response({"ok": False, "error": Reason.NO_IDENTIFIER}, status=400)

    result = await services.checker.check_readability(services.session, identifier, skip_probe=True)
    if result.borrow_required or result.encrypted_only or result.readable is Readable.FALSE:
        logger.info("archive token refused for %s: %s", identifier, result.reason)
        return web.json_response(
            {"ok": False, "open_url": build_open_url(meta), "reason": result.reason or Reason.NO_USABLE_FILES}
        )

    fmt = result.best_file.format if result.best_file else BookFormat.EPUB
    payload = {name: meta[name] for name in ("title", "author", "cover_url") if meta.get(name)}
    payload.update(
        {
            "provider": "archive",
            "provider_id": identifier,
            "archive_id": identifier,
            "format": fmt,
        }
    )
    if result.direct_url:
        payload["direct_url"] = result.direct_url
    token = services.signer.build(payload)
    return web.json_response({"ok": True, "token": token, "format": fmt})


def _proxy_handler(kind: str):
    async def handler(request: web.Request) -> web.StreamResponse:
        services = request.app[SERVICES_KEY]
        try:
            return await services.proxy.stream(request, kind)
        except ProxyError as exc:
            return web.json_response(exc.to_dict(), status=exc.status)

    return handler


async def handle_healthz(request: web.Request) -> web.Response:
    return web.json_response({"ok": True})


def create_app(config: Optional[ResolverConfig] = None) -> web.Application:
    """Build the application; raises ConfigError when production has no secret."""

    config = config or ResolverConfig.from_env()
    app = web.Application()
    app[CONFIG_KEY] = config
    app[SIGNER_KEY] = ReaderTokenSigner.from_config(config)

    async def services_ctx(app: web.Application):
        async with aiohttp.ClientSession(headers={"User-Agent": config.user_agent}) as session:
            app[SERVICES_KEY] = build_services(session, config, app[SIGNER_KEY])
            logger.info("openreader ready: connectors=%s", ", ".join(c.name for c in app[SERVICES_KEY].aggregator.connectors))
            yield

    app.cleanup_ctx.append(services_ctx)
    app.router.add_get("/api/search", handle_search)
    app.router.add_get("/api/catalog/search", handle_catalog_search)
    app.router.add_post("/api/external/token", handle_external_token)
    app.router.add_post("/api/archive/token", handle_archive_token)
    app.router.add_get("/api/proxy/epub", _proxy_handler("epub"))
    app.router.add_get("/api/proxy/pdf", _proxy_handler("pdf"))
    app.router.add_get("/api/proxy/file", _proxy_handler("file"))
    app.router.add_get("/healthz", handle_healthz)
    return app


def run(host: Optional[str] = None, port: Optional[int] = None, config: Optional[ResolverConfig] = None) -> None:
    host = host or os.getenv("OPENREADER_HOST", "127.0.0.1")
    port = port or int(os.getenv("OPENREADER_PORT", "8080"))
    web.run_app(create_app(config), host=host, port=port)


def main() -> None:
    load_dotenv()
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    run()


if __name__ == "__main__":
    main()
