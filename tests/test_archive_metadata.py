import asyncio

import aiohttp
from aiohttp import web
from aiohttp.test_utils import TestServer

from openreader.workflows import archive_metadata
from openreader.workflows.archive_metadata import (
    ArchiveMetadataClient,
    analyze_files,
    check_borrow_required,
    download_url,
)
from openreader.workflows.records import Readable
from openreader.workflows.resolver_config import ResolverConfig

MB = 1024 * 1024
EPUB_LIMIT = 50 * MB
PDF_LIMIT = 200 * MB


def test_encrypted_only_files_are_not_borrow():
    metadata = {
        "metadata": {"identifier": "locked", "collection": ["opensource"]},
        "files": [
            {"name": "locked_lcp.epub", "format": "LCP Encrypted EPUB", "size": "1000"},
            {"name": "locked.acsm", "format": "ACS Encrypted EPUB"},
            {"name": "locked_meta.xml", "format": "Metadata"},
        ],
    }
    check = check_borrow_required(metadata)
    assert check.encrypted_only is True
    assert check.borrow_required is False

    result = analyze_files(metadata, EPUB_LIMIT, PDF_LIMIT)
    assert result.readable is Readable.FALSE
    assert result.reason == "no_usable_files"


def test_access_restricted_item_requires_borrow():
    check = check_borrow_required({"metadata": {"access-restricted-item": "true"}, "files": []})
    assert check.borrow_required is True
    assert check.reason == "access_restricted"

    flat_doc = {"identifier": "x", "collection": ["inlibrary", "printdisabled"]}
    assert check_borrow_required(flat_doc).borrow_required is True

    open_doc = {"identifier": "x", "collection": ["inlibrary", "gutenberg"]}
    assert check_borrow_required(open_doc).borrow_required is False

    lending = {"identifier": "x", "lending___status": "is_lendable_waitlist"}
    assert check_borrow_required(lending).reason == "lending_status"


def test_size_limits_pick_epub_and_keep_pdf():
    metadata = {
        "files": [
            {"name": "book.pdf", "format": "Text PDF", "size": str(80 * MB)},
            {"name": "book.epub", "format": "EPUB", "size": str(45 * MB)},
            {"name": "book_lcp.epub", "format": "LCP Encrypted EPUB", "size": "10"},
        ]
    }
    result = analyze_files(metadata, EPUB_LIMIT, PDF_LIMIT)
    assert result.readable is Readable.MAYBE
    assert result.best_file.name == "book.epub"
    assert result.best_file.format == "epub"
    assert result.best_pdf.name == "book.pdf"
    assert result.prefer_pdf is False


def test_oversized_epub_falls_back_to_pdf():
    metadata = {
        "files": [
            {"name": "big.epub", "format": "EPUB", "size": str(60 * MB)},
            {"name": "scan.pdf", "format": "Image Container PDF", "size": str(20 * MB)},
            {"name": "text.pdf", "format": "Text PDF", "size": str(30 * MB)},
        ]
    }
    result = analyze_files(metadata, EPUB_LIMIT, PDF_LIMIT)
    assert result.prefer_pdf is True
    assert result.best_file.name == "text.pdf"
    assert result.best_file.is_text_pdf is True


def test_oversized_epub_without_pdf_is_flagged():
    metadata = {"files": [{"name": "huge.epub", "format": "EPUB", "size": str(70 * MB)}]}
    result = analyze_files(metadata, EPUB_LIMIT, PDF_LIMIT)
    assert result.best_file.too_large is True
    assert result.best_file.to_dict()["too_large"] is True


def test_missing_files_listing_is_metadata_unavailable():
    result = analyze_files({"metadata": {}}, EPUB_LIMIT, PDF_LIMIT)
    assert result.readable is Readable.MAYBE
    assert result.reason == "metadata_unavailable"


def test_download_url_quotes_identifier():
    assert download_url("a b", "dir/c d.epub") == "https://archive.org/download/a%20b/dir/c%20d.epub"


def test_metadata_client_caches_misses_but_not_errors(monkeypatch):
    hits = {"known": 0, "gone": 0, "empty": 0}

    async def known(request):
        hits["known"] += 1
        return web.json_response({"metadata": {"identifier": "known"}, "files": []})

    async def gone(request):
        hits["gone"] += 1
        return web.Response(status=404)

    async def empty(request):
        hits["empty"] += 1
        return web.json_response({})

    app = web.Application()
    app.router.add_get("/metadata/known", known)
    app.router.add_get("/metadata/gone", gone)
    app.router.add_get("/metadata/empty", empty)

    async def run():
        async with TestServer(app) as server:
            monkeypatch.setattr(archive_metadata, "ARCHIVE_METADATA_ENDPOINT", str(server.make_url("/metadata")))
            client = ArchiveMetadataClient(ResolverConfig())
            async with aiohttp.ClientSession() as session:
                first = await client.get_metadata(session, "known")
                second = await client.get_metadata(session, "known")
                missing = [await client.get_metadata(session, "gone") for _ in range(2)]
                blank = [await client.get_metadata(session, "empty") for _ in range(2)]
            return first, second, missing, blank

    first, second, missing, blank = asyncio.run(run())
    assert first == second
    assert first["metadata"]["identifier"] == "known"
    assert missing == [None, None]
    assert blank == [None, None]
    assert hits == {"known": 1, "gone": 1, "empty": 1}


def test_metadata_client_does_not_cache_network_failures():
    client = ArchiveMetadataClient(ResolverConfig(metadata_timeout=0.5))

    class BrokenSession:
        def get(self, *args, **kwargs):
            raise aiohttp.ClientConnectionError("refused")

    assert asyncio.run(client.get_metadata(BrokenSession(), "flaky")) is None
    assert "flaky" not in client.cache
