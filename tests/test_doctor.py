import json

from openreader.workflows.doctor import (
    build_doctor_report,
    collect_environment_warnings,
    format_doctor_report,
    redact_value,
)
from openreader.workflows.resolver_config import ResolverConfig


def _checks(report):
    return {check["name"]: check for check in report["checks"]}


def test_redact_value():
    assert redact_value("abcdefghijklmnop") == "abcd...mnop"
    assert redact_value("short") == "*****"
    assert redact_value("") == ""


def test_report_redacts_secret_and_counts_catalog(monkeypatch, tmp_path):
    monkeypatch.setenv("APP_SIGNING_SECRET", "abcdefghijklmnop")
    catalog = tmp_path / "catalog.jsonl"
    catalog.write_text(json.dumps({"title": "x"}) + "\n\n" + json.dumps({"title": "y"}) + "\n", encoding="utf-8")
    report = build_doctor_report(ResolverConfig(signing_secret="abcdefghijklmnop", catalog_path=catalog))

    checks = _checks(report)
    assert checks["APP_SIGNING_SECRET"]["value"] == "abcd...mnop"
    assert checks["OPENREADER_CATALOG_PATH"]["status"] == "ok"
    assert "(2 rows)" in checks["OPENREADER_CATALOG_PATH"]["detail"]
    assert report["ok"] is True
    assert "abcdefghijklmnop" not in format_doctor_report(report)


def test_missing_secret_fails_only_in_production(monkeypatch, tmp_path):
    for name in ("APP_SIGNING_SECRET", "READER_TOKEN_SECRET", "JWT_SECRET", "SESSION_SECRET"):
        monkeypatch.delenv(name, raising=False)
    dev = build_doctor_report(ResolverConfig(catalog_path=tmp_path / "none.jsonl"))
    prod = build_doctor_report(ResolverConfig(production=True, catalog_path=tmp_path / "none.jsonl"))
    assert dev["ok"] is True
    assert prod["ok"] is False
    assert _checks(prod)["APP_SIGNING_SECRET"]["status"] == "missing"


def test_no_connectors_is_not_ok(tmp_path):
    report = build_doctor_report(ResolverConfig(signing_secret="s", connectors=("nope",), catalog_path=tmp_path / "c"))
    assert report["ok"] is False
    codes = {w["code"] for w in report["environment_warnings"]}
    assert "unknown_connectors" in codes


def test_environment_warnings():
    codes = {w["code"] for w in collect_environment_warnings(ResolverConfig(probe_enabled=False))}
    assert codes == {"signing_secret_missing", "probe_disabled"}
