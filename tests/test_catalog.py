import json

from openreader.workflows.catalog import LocalCatalog, clamp_limit


def _write_catalog(path, rows):
    path.write_text("\n".join(json.dumps(row) for row in rows) + "\n", encoding="utf-8")


ROWS = [
    {"source": "doab", "source_id": "1", "title": "Economics in Africa", "authors": "Doe, Jane", "subjects": "Economics", "source_url": "https://directory.doabooks.org/handle/1", "published_year": 2019, "open_access": True},
    {"source": "doab", "source_id": "2", "title": "Closed Book", "authors": "Roe", "subjects": "Africa", "open_access": False},
    {"source": "doab", "source_id": "3", "title": "Rivers", "authors": "Smith", "subjects": "African geography", "open_access": True},
]


def test_catalog_search_matches_title_author_subject(tmp_path):
    path = tmp_path / "catalog.jsonl"
    _write_catalog(path, ROWS)
    catalog = LocalCatalog(path)

    hits = catalog.search("AFRICA")
    assert [h.provider_id for h in hits] == ["doab:1", "doab:3"]
    first = hits[0].to_dict()
    assert first["provider"] == "catalog"
    assert first["external_only"] is True
    assert first["readable"] == "false"
    assert first["reason"] == "catalog_reference"
    assert first["source_url"] == "https://directory.doabooks.org/handle/1"
    assert catalog.search("africa", limit=1)[0].provider_id == "doab:1"
    assert catalog.search("") == []


def test_catalog_reloads_when_file_changes(tmp_path):
    path = tmp_path / "catalog.jsonl"
    _write_catalog(path, ROWS[:1])
    catalog = LocalCatalog(path)
    assert len(catalog) == 1
    _write_catalog(path, ROWS + [{"source_id": "4", "title": "More Rivers of Africa", "open_access": True}])
    assert len(catalog) == 4


def test_catalog_skips_bad_lines_and_missing_file(tmp_path):
    path = tmp_path / "catalog.jsonl"
    path.write_text('{"source_id": "1", "title": "Ok Africa"}\nnot json\n\n', encoding="utf-8")
    assert len(LocalCatalog(path).search("africa")) == 1
    assert LocalCatalog(tmp_path / "missing.jsonl").search("africa") == []


def test_clamp_limit():
    assert clamp_limit(None) == 25
    assert clamp_limit("abc") == 25
    assert clamp_limit(0) == 25
    assert clamp_limit("10") == 10
    assert clamp_limit(500) == 50
    assert clamp_limit(-3) == 1
