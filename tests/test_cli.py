import json

from typer.testing import CliRunner

from openreader.cli import app
from openreader.workflows.aggregator import Aggregator
from openreader.workflows.availability import ReadabilityChecker
from openreader.workflows.records import CandidateRecord, Readable, ReadabilityResult

runner = CliRunner()
ENV = {"APP_SIGNING_SECRET": "cli-test-secret", "OPENREADER_ENV": "development"}


def test_token_then_verify_round_trip():
    minted = runner.invoke(app, ["token", "gutenberg", "1342", "--title", "Pride and Prejudice"], env=ENV)
    assert minted.exit_code == 0
    token = minted.stdout.strip().splitlines()[-1]

    verified = runner.invoke(app, ["verify", token], env=ENV)
    assert verified.exit_code == 0
    payload = json.loads(verified.stdout)
    assert payload["provider_id"] == "1342"
    assert payload["direct_url"] == "https://www.gutenberg.org/ebooks/1342.epub3.images"

    rejected = runner.invoke(app, ["verify", token + "x"], env=ENV)
    assert rejected.exit_code == 2


def test_token_without_url_is_a_usage_error():
    result = runner.invoke(app, ["token", "loc", "abc"], env=ENV)
    assert result.exit_code == 2


def test_search_prints_json(monkeypatch):
    async def fake_search(self, query, page=1, ranked=False, probe=True):
        assert probe is False
        return [CandidateRecord(provider="gutenberg", provider_id="1", title="Economics", readable=Readable.TRUE)]

    monkeypatch.setattr(Aggregator, "search", fake_search)
    result = runner.invoke(app, ["search", "economics", "--no-probe", "--json"], env=ENV)
    assert result.exit_code == 0
    assert json.loads(result.stdout)[0]["book_id"] == "gutenberg:1"


def test_search_failure_is_fatal(monkeypatch):
    async def exploding(self, query, page=1, ranked=False, probe=True):
        raise RuntimeError("event loop on fire")

    monkeypatch.setattr(Aggregator, "search", exploding)
    result = runner.invoke(app, ["search", "economics"], env=ENV)
    assert result.exit_code == 3


def test_readability_command(monkeypatch):
    seen = []

    async def fake_check(self, session, identifier, *, skip_probe=False):
        seen.append((identifier, skip_probe))
        return ReadabilityResult(readable=Readable.FALSE, reason="encrypted_only", encrypted_only=True)

    monkeypatch.setattr(ReadabilityChecker, "check_readability", fake_check)
    result = runner.invoke(app, ["readability", "bl-book-drmbook", "--skip-probe"], env=ENV)
    assert result.exit_code == 0
    assert json.loads(result.stdout)["reason"] == "encrypted_only"
    assert seen == [("drmbook", True)]


def test_doctor_runs(tmp_path):
    env = dict(ENV, OPENREADER_CATALOG_PATH=str(tmp_path / "none.jsonl"))
    result = runner.invoke(app, ["doctor"], env=env)
    assert result.exit_code == 0
    assert "openreader doctor" in result.stdout
    assert "cli-test-secret" not in result.stdout
