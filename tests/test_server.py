import asyncio
import json

from aiohttp.test_utils import TestClient, TestServer

from openreader.server import create_app
from openreader.workflows.aggregator import Aggregator
from openreader.workflows.availability import ReadabilityChecker
from openreader.workflows.external import LandingResolver
from openreader.workflows.records import ArchiveFile, CandidateRecord, Readable, ReadabilityResult
from openreader.workflows.resolver_config import ResolverConfig
from openreader.workflows.tokens import ReaderTokenSigner

SECRET = "server-test-secret"


def _config(tmp_path):
    return ResolverConfig(signing_secret=SECRET, connectors=(), catalog_path=tmp_path / "catalog.jsonl")


def _call(config, scenario):
    async def run():
        async with TestClient(TestServer(create_app(config))) as client:
            return await scenario(client)

    return asyncio.run(run())


def test_healthz(tmp_path):
    async def scenario(client):
        resp = await client.get("/healthz")
        return resp.status, await resp.json()

    assert _call(_config(tmp_path), scenario) == (200, {"ok": True})


def test_search_returns_tokens_not_upstream_urls(tmp_path, monkeypatch):
    async def fake_search(self, query, page=1, ranked=False, probe=True):
        assert (query, page, ranked) == ("austen", 2, True)
        return [
            CandidateRecord(
                provider="gutenberg",
                provider_id="1342",
                title="Pride and Prejudice",
                format="epub",
                direct_url="https://www.gutenberg.org/ebooks/1342.epub3.images",
            ),
            CandidateRecord(
                provider="archive",
                provider_id="lentbook",
                archive_id="lentbook",
                source_url="https://archive.org/details/lentbook",
                readable=Readable.FALSE,
                reason="borrow_required",
            ),
        ]

    monkeypatch.setattr(Aggregator, "search", fake_search)

    async def scenario(client):
        resp = await client.get("/api/search", params={"q": "austen", "page": "2", "ranked": "true"})
        empty = await client.get("/api/search", params={"q": " "})
        return resp.status, resp.headers.get("Cache-Control"), await resp.json(), await empty.json()

    status, cache_control, body, empty = _call(_config(tmp_path), scenario)
    assert status == 200
    assert cache_control == "no-store"
    assert empty == {"items": []}

    readable, lent = body["items"]
    assert "direct_url" not in readable
    assert readable["href"] == f"/unified-reader?token={readable['token']}"
    assert readable["key"] == "gutenberg-1342"
    payload = ReaderTokenSigner(SECRET).verify(readable["token"])
    assert payload["direct_url"] == "https://www.gutenberg.org/ebooks/1342.epub3.images"
    assert payload["format"] == "epub"

    assert "token" not in lent
    assert lent["open_url"] == "https://archive.org/details/lentbook"
    assert lent["key"] == "bl-book-lentbook"


def test_catalog_search_endpoint(tmp_path):
    config = _config(tmp_path)
    row = {"source": "doab", "source_id": "9", "title": "Economics in Africa", "open_access": True}
    config.catalog_path.write_text(json.dumps(row) + "\n", encoding="utf-8")

    async def scenario(client):
        resp = await client.get("/api/catalog/search", params={"q": "africa", "limit": "5"})
        return await resp.json()

    body = _call(config, scenario)
    assert body["total"] == 1
    assert body["items"][0]["provider_id"] == "doab:9"
    assert body["items"][0]["external_only"] is True
    assert isinstance(body["elapsed_ms"], int)


def test_archive_token_refuses_borrow_only_items(tmp_path, monkeypatch):
    async def fake_check(self, session, identifier, *, skip_probe=False):
        if identifier == "lentbook":
            return ReadabilityResult(readable=Readable.FALSE, reason="borrow_required", borrow_required=True)
        return ReadabilityResult(
            readable=Readable.MAYBE,
            best_file=ArchiveFile(name="openbook.epub", format="epub", size_bytes=100),
            direct_url="https://archive.org/download/openbook/openbook.epub",
        )

    monkeypatch.setattr(ReadabilityChecker, "check_readability", fake_check)

    async def scenario(client):
        lent = await client.post("/api/archive/token", json={"source_url": "https://archive.org/details/lentbook"})
        ok = await client.post("/api/archive/token", json={"archive_id": "bl-book-openbook", "title": "Open"})
        numeric = await client.post("/api/archive/token", json={"archive_id": "9780262033848"})
        bad = await client.post("/api/archive/token", data="not json", headers={"Content-Type": "application/json"})
        return await lent.json(), await ok.json(), (numeric.status, await numeric.json()), bad.status

    lent, ok, numeric, bad_status = _call(_config(tmp_path), scenario)
    assert lent["ok"] is False
    assert lent["reason"] == "borrow_required"
    assert lent["open_url"].startswith("/open?")
    assert "archive_id=lentbook" in lent["open_url"]

    assert ok["ok"] is True
    assert ok["format"] == "epub"
    payload = ReaderTokenSigner(SECRET).verify(ok["token"])
    assert payload["archive_id"] == "openbook"
    assert payload["direct_url"] == "https://archive.org/download/openbook/openbook.epub"
    assert payload["title"] == "Open"

    assert numeric == (400, {"ok": False, "error": "no_identifier"})
    assert bad_status == 400


def test_external_token(tmp_path, monkeypatch):
    async def fake_resolve(self, url):
        if url.endswith("/handle/20.500.12657/1"):
            return "https://library.oapen.org/bitstream/handle/20.500.12657/1/book.pdf", "pdf"
        return None

    monkeypatch.setattr(LandingResolver, "resolve_landing", fake_resolve)

    async def scenario(client):
        ok = await client.post(
            "/api/external/token",
            json={"landing_url": "https://library.oapen.org/handle/20.500.12657/1", "title": "Open Book", "provider": "oapen"},
        )
        miss = await client.post("/api/external/token", json={"landing_url": "https://directory.doabooks.org/handle/2"})
        missing = await client.post("/api/external/token", json={"title": "no url"})
        return await ok.json(), await miss.json(), missing.status

    ok, miss, missing_status = _call(_config(tmp_path), scenario)
    assert ok["ok"] is True
    assert ok["format"] == "pdf"
    assert ok["direct_url"].endswith("/book.pdf")
    assert ReaderTokenSigner(SECRET).verify(ok["token"])["title"] == "Open Book"
    assert miss == {"ok": False, "open_url": "https://directory.doabooks.org/handle/2"}
    assert missing_status == 400


def test_external_token_from_provider_and_id(tmp_path):
    async def scenario(client):
        gutenberg = await client.post("/api/external/token", json={"provider": "gutenberg", "provider_id": "1342", "title": "Pride"})
        isbn = await client.post("/api/external/token", json={"provider": "archive", "provider_id": "9780262033848"})
        loc = await client.post("/api/external/token", json={"provider": "loc", "provider_id": "2001012345", "title": "Maps"})
        return await gutenberg.json(), await isbn.json(), await loc.json()

    gutenberg, isbn, loc = _call(_config(tmp_path), scenario)
    assert gutenberg["ok"] is True
    assert gutenberg["format"] == "epub"
    assert gutenberg["direct_url"] == "https://www.gutenberg.org/ebooks/1342.epub3.images"
    payload = ReaderTokenSigner(SECRET).verify(gutenberg["token"])
    assert payload["direct_url"] == gutenberg["direct_url"]
    assert payload["title"] == "Pride"

    assert isbn == {"ok": False, "open_url": None}
    assert loc["ok"] is False
    assert loc["open_url"].startswith("/open?")
    assert "provider=loc" in loc["open_url"]
