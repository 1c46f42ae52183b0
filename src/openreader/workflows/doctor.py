from __future__ import annotations

import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

from .connectors import CONNECTOR_CLASSES
from .resolver_config import ResolverConfig


_SECRET_TOKENS = ("key", "token", "secret", "password", "pass")
_SECRET_ENV_NAMES = ("APP_SIGNING_SECRET", "READER_TOKEN_SECRET", "JWT_SECRET", "SESSION_SECRET")


def _is_secret_name(name: str) -> bool:
    lowered = (name or "").lower()
    return any(token in lowered for token in _SECRET_TOKENS)


def redact_value(value: str, keep: int = 4) -> str:
    raw = (value or "").strip()
    if not raw:
        return ""
    if len(raw) <= keep * 2:
        return "*" * len(raw)
    return f"{raw[:keep]}...{raw[-keep:]}"


def _redacted_env_value(name: str, value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    return redact_value(value) if _is_secret_name(name) else value


def _env_present(*names: str) -> Optional[str]:
    for name in names:
        value = os.getenv(name)
        if value:
            return value
    return None


def _catalog_rows(path: Path) -> int:
    try:
        with path.open("r", encoding="utf-8") as handle:
            return sum(1 for line in handle if line.strip())
    except OSError:
        return 0


def collect_environment_warnings(config: Optional[ResolverConfig] = None) -> List[Dict[str, str]]:
    """Configuration problems that degrade the service without stopping it."""

    config = config or ResolverConfig.from_env()
    warnings: List[Dict[str, str]] = []
    if not config.signing_secret:
        warnings.append(
            {
                "code": "signing_secret_missing",
                "message": "Reader tokens use a random per-process secret and expire on restart.",
                "remedy": "Set APP_SIGNING_SECRET to a long random value.",
            }
        )
    if not config.probe_enabled:
        warnings.append(
            {
                "code": "probe_disabled",
                "message": "Archive.org items are returned unverified (readable=maybe).",
                "remedy": "Unset OPENREADER_PROBE_ENABLE or set it to 1.",
            }
        )
    unknown = [name for name in config.connectors if name not in CONNECTOR_CLASSES]
    if unknown:
        warnings.append(
            {
                "code": "unknown_connectors",
                "message": f"Ignored connector names: {', '.join(unknown)}",
                "remedy": f"Choose from: {', '.join(CONNECTOR_CLASSES)}",
            }
        )
    return warnings


def build_doctor_report(config: Optional[ResolverConfig] = None) -> Dict[str, Any]:
    config = config or ResolverConfig.from_env()
    report: Dict[str, Any] = {
        "generated_at": datetime.now(timezone.utc).replace(microsecond=0).isoformat().replace("+00:00", "Z"),
        "ok": True,
        "checks": [],
        "environment_warnings": collect_environment_warnings(config),
    }

    def add_check(
        name: str,
        status: bool,
        *,
        detail: Optional[str] = None,
        remedy: Optional[str] = None,
        level: str = "warn",
        value: Optional[str] = None,
    ) -> None:
        entry = {
            "name": name,
            "status": "ok" if status else "missing",
            "level": level,
            "detail": detail,
        }
        if remedy:
            entry["remedy"] = remedy
        if value is not None:
            entry["value"] = _redacted_env_value(name, value)
        report["checks"].append(entry)
        if not status and level == "warn":
            report["ok"] = False

    secret = _env_present(*_SECRET_ENV_NAMES)
    add_check(
        "APP_SIGNING_SECRET",
        bool(secret),
        detail="Stable token secret configured" if secret else "Random per-process secret in use",
        remedy="Set APP_SIGNING_SECRET (or READER_TOKEN_SECRET / JWT_SECRET / SESSION_SECRET).",
        level="warn" if config.production else "info",
        value=secret,
    )

    enabled = [name for name in config.connectors if name in CONNECTOR_CLASSES]
    add_check(
        "OPENREADER_CONNECTORS",
        bool(enabled),
        detail=", ".join(enabled) if enabled else "No known connectors enabled",
        remedy=f"Set OPENREADER_CONNECTORS to a subset of: {', '.join(CONNECTOR_CLASSES)}",
        level="warn",
    )

    catalog = Path(config.catalog_path)
    rows = _catalog_rows(catalog) if catalog.exists() else 0
    add_check(
        "OPENREADER_CATALOG_PATH",
        rows > 0,
        detail=f"{catalog} ({rows} rows)" if catalog.exists() else f"{catalog} (missing)",
        remedy="Run `openreader-harvest-doab --output <path>` to build the local catalog.",
        level="info",
    )

    add_check(
        "OPENREADER_PROBE_ENABLE",
        config.probe_enabled,
        detail=(
            f"max_probes={config.max_probes} concurrency={config.probe_concurrency} timeout={config.probe_timeout}s"
            if config.probe_enabled
            else "Live probing disabled"
        ),
        level="info",
    )

    add_check(
        "size_limits",
        True,
        detail=f"MAX_EPUB_MB={config.max_epub_mb} MAX_PDF_MB={config.max_pdf_mb}",
        level="info",
    )

    return report


def format_doctor_report(report: Dict[str, Any]) -> str:
    lines: List[str] = []
    lines.append("openreader doctor")
    lines.append(f"Generated: {report.get('generated_at')}")
    lines.append("Values are redacted where applicable.")
    lines.append("")
    for check in report.get("checks", []):
        name = check.get("name", "check")
        status = check.get("status", "unknown")
        level = check.get("level", "info")
        detail = check.get("detail")
        value = check.get("value")
        label = f"{name}: {status}"
        if value:
            label = f"{label} ({value})"
        lines.append(f"- [{level}] {label}")
        if detail:
            lines.append(f"  detail: {detail}")
        remedy = check.get("remedy")
        if remedy:
            lines.append(f"  remedy: {remedy}")
    warnings = report.get("environment_warnings") or []
    if warnings:
        lines.append("")
        lines.append("Environment warnings:")
        for warning in warnings:
            code = warning.get("code", "warning")
            message = warning.get("message", "")
            remedy = warning.get("remedy", "")
            lines.append(f"- {code}: {message}")
            if remedy:
                lines.append(f"  remedy: {remedy}")
    return "\n".join(lines).rstrip() + "\n"
