import asyncio

import aiohttp
from aiohttp import web
from aiohttp.test_utils import TestServer

from openreader.workflows import probe as probe_module
from openreader.workflows.probe import LiveProbe, classify_response, is_borrow_redirect
from openreader.workflows.records import Readable
from openreader.workflows.resolver_config import ResolverConfig


def _upstream(calls):
    async def ok(request):
        calls.append(request.path)
        return web.Response(status=206, body=b"P", content_type="application/epub+zip")

    async def lent(request):
        calls.append(request.path)
        raise web.HTTPFound("https://archive.org/services/borrow/lent?token=1")

    async def hop(request):
        calls.append(request.path)
        raise web.HTTPFound("/download/ok/book.epub")

    async def html(request):
        calls.append(request.path)
        return web.Response(text="<html>sign in</html>", content_type="text/html")

    async def missing(request):
        calls.append(request.path)
        return web.Response(status=404)

    async def slow(request):
        calls.append(request.path)
        await asyncio.sleep(1.0)
        return web.Response(status=200, content_type="application/epub+zip")

    async def loop(request):
        calls.append(request.path)
        raise web.HTTPFound("/download/loop/book.epub")

    app = web.Application()
    app.router.add_get("/download/ok/book.epub", ok)
    app.router.add_get("/download/lent/book.epub", lent)
    app.router.add_get("/download/hop/book.epub", hop)
    app.router.add_get("/download/html/book.epub", html)
    app.router.add_get("/download/missing/book.epub", missing)
    app.router.add_get("/download/slow/book.epub", slow)
    app.router.add_get("/download/loop/book.epub", loop)
    return app


def _run_probes(monkeypatch, identifiers, config=None):
    calls = []
    prober = LiveProbe(config or ResolverConfig(probe_timeout=0.3))

    async def run():
        async with TestServer(_upstream(calls)) as server:
            base = str(server.make_url("/download"))
            monkeypatch.setattr(probe_module, "download_url", lambda ident, name: f"{base}/{ident}/{name}")
            async with aiohttp.ClientSession() as session:
                return [await prober.probe(session, ident, "book.epub") for ident in identifiers]

    return asyncio.run(run()), calls, prober


def test_probe_classifies_responses(monkeypatch):
    verdicts, _, _ = _run_probes(monkeypatch, ["ok", "hop", "html", "missing"])
    assert verdicts == [Readable.TRUE, Readable.TRUE, Readable.FALSE, Readable.FALSE]


def test_borrow_redirect_is_false_without_following(monkeypatch):
    verdicts, calls, _ = _run_probes(monkeypatch, ["lent"])
    assert verdicts == [Readable.FALSE]
    assert calls == ["/download/lent/book.epub"]


def test_timeout_is_maybe_and_not_cached(monkeypatch):
    verdicts, _, prober = _run_probes(monkeypatch, ["slow"])
    assert verdicts == [Readable.MAYBE]
    assert len(prober.cache) == 0


def test_definitive_results_are_cached(monkeypatch):
    verdicts, calls, prober = _run_probes(monkeypatch, ["ok", "ok"])
    assert verdicts == [Readable.TRUE, Readable.TRUE]
    assert calls == ["/download/ok/book.epub"]
    assert len(prober.cache) == 1


def test_redirect_loop_gives_up_as_maybe(monkeypatch):
    verdicts, calls, _ = _run_probes(monkeypatch, ["loop"], ResolverConfig(probe_timeout=1.0, max_redirects=3))
    assert verdicts == [Readable.MAYBE]
    assert len(calls) == 4


def test_classify_response_table():
    assert classify_response(200, "application/pdf") is Readable.TRUE
    assert classify_response(200, "") is Readable.TRUE
    assert classify_response(200, "text/html; charset=utf-8") is Readable.FALSE
    assert classify_response(403, "text/html") is Readable.FALSE
    assert classify_response(500, "text/html") is Readable.MAYBE
    assert is_borrow_redirect("https://archive.org/details/x/loans")
    assert not is_borrow_redirect("https://ia800.us.archive.org/1/items/x/x.epub")
