from __future__ import annotations

import asyncio
import json
import logging
import sys
from typing import Any, Awaitable, Callable, Optional, TypeVar

import aiohttp
import typer
from dotenv import load_dotenv

from .workflows.aggregator import Aggregator
from .workflows.availability import ReadabilityChecker
from .workflows.doctor import build_doctor_report, format_doctor_report
from .workflows.errors import ConfigError, TokenError
from .workflows.identity import strip_prefixes
from .workflows.probe import LiveProbe
from .workflows.records import BookFormat
from .workflows.resolver_config import ResolverConfig
from .workflows.tokens import ReaderTokenSigner

app = typer.Typer(no_args_is_help=True, add_completion=False, help="Open-access book resolver.")

T = TypeVar("T")


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _with_session(config: ResolverConfig, work: Callable[[aiohttp.ClientSession], Awaitable[T]]) -> T:
    async def runner() -> T:
        async with aiohttp.ClientSession(headers={"User-Agent": config.user_agent}) as session:
            return await work(session)

    return asyncio.run(runner())


def _emit(payload: Any) -> None:
    sys.stdout.write(json.dumps(payload, ensure_ascii=False, indent=2) + "\n")


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log debug output to stderr."),
) -> None:
    load_dotenv()
    _configure_logging(verbose)


@app.command("search")
def search_cmd(
    query: str = typer.Argument(..., help="Free-text query."),
    page: int = typer.Option(1, "--page", min=1, help="Result page (1-based)."),
    ranked: bool = typer.Option(False, "--ranked", help="Sort by relevance score."),
    no_probe: bool = typer.Option(False, "--no-probe", help="Skip archive.org readability checks."),
    json_out: bool = typer.Option(False, "--json", help="Print records as JSON."),
) -> None:
    """Search every enabled source and print the merged results."""
    config = ResolverConfig.from_env()
    try:
        records = _with_session(
            config, lambda session: Aggregator(session, config).search(query, page=page, ranked=ranked, probe=not no_probe)
        )
    except Exception as exc:
        typer.echo(f"fatal: {exc}", err=True)
        raise typer.Exit(code=3)
    if json_out:
        _emit([record.to_dict() for record in records])
        return
    for record in records:
        score = f" score={record.relevance_score:.0f}" if record.relevance_score is not None else ""
        typer.echo(f"[{record.readable.value:5}] {record.provider:11} {record.title} / {record.author or '-'}{score}")
    typer.echo(f"{len(records)} result(s)")


@app.command("probe")
def probe_cmd(
    identifier: str = typer.Argument(..., help="archive.org identifier."),
    filename: str = typer.Argument(..., help="File name inside the item."),
) -> None:
    """HEAD-probe one archive.org download and print true/false/maybe."""
    config = ResolverConfig.from_env()
    ident = strip_prefixes(identifier) or identifier
    try:
        verdict = _with_session(config, lambda session: LiveProbe(config).probe(session, ident, filename))
    except Exception as exc:
        typer.echo(f"fatal: {exc}", err=True)
        raise typer.Exit(code=3)
    typer.echo(verdict.value)


@app.command("readability")
def readability_cmd(
    identifier: str = typer.Argument(..., help="archive.org identifier (prefixes are stripped)."),
    skip_probe: bool = typer.Option(False, "--skip-probe", help="Stop after metadata analysis."),
) -> None:
    """Run the full readability check for one archive.org item."""
    config = ResolverConfig.from_env()
    ident = strip_prefixes(identifier) or identifier
    try:
        result = _with_session(
            config, lambda session: ReadabilityChecker(config).check_readability(session, ident, skip_probe=skip_probe)
        )
    except Exception as exc:
        typer.echo(f"fatal: {exc}", err=True)
        raise typer.Exit(code=3)
    _emit(result.to_dict())


@app.command("token")
def token_cmd(
    provider: str = typer.Argument(..., help="Provider name, e.g. gutenberg or archive."),
    provider_id: str = typer.Argument(..., help="Provider-specific id."),
    url: Optional[str] = typer.Option(None, "--url", help="Direct file URL to embed."),
    fmt: str = typer.Option(BookFormat.EPUB, "--format", help="epub or pdf."),
    title: Optional[str] = typer.Option(None, "--title"),
) -> None:
    """Mint a reader token."""
    config = ResolverConfig.from_env()
    payload = {"provider": provider, "provider_id": provider_id, "format": BookFormat.normalize(fmt)}
    if url:
        payload["direct_url"] = url
    if title:
        payload["title"] = title
    try:
        token = ReaderTokenSigner.from_config(config).build(payload)
    except (TokenError, ConfigError) as exc:
        typer.echo(f"error: {exc}", err=True)
        raise typer.Exit(code=2)
    typer.echo(token)


@app.command("verify")
def verify_cmd(token: str = typer.Argument(..., help="Token to verify.")) -> None:
    """Verify a token with the configured secret and print its payload."""
    config = ResolverConfig.from_env()
    if not config.signing_secret:
        typer.echo("error: no signing secret configured; cannot verify", err=True)
        raise typer.Exit(code=2)
    payload, reason = ReaderTokenSigner.from_config(config).verify_detailed(token)
    if payload is None:
        typer.echo(f"invalid: {reason}", err=True)
        raise typer.Exit(code=2)
    _emit(payload)


@app.command("serve")
def serve_cmd(
    host: Optional[str] = typer.Option(None, "--host", help="Bind address (default OPENREADER_HOST or 127.0.0.1)."),
    port: Optional[int] = typer.Option(None, "--port", help="Port (default OPENREADER_PORT or 8080)."),
) -> None:
    """Run the HTTP API."""
    from .server import run

    logging.getLogger().setLevel(min(logging.getLogger().level, logging.INFO))
    try:
        run(host=host, port=port)
    except ConfigError as exc:
        typer.echo(f"fatal: {exc}", err=True)
        raise typer.Exit(code=3)


@app.command("doctor")
def doctor_cmd() -> None:
    """Print environment diagnostics."""
    report = build_doctor_report()
    typer.echo(format_doctor_report(report))
    raise typer.Exit(code=0 if report.get("ok", True) else 2)
