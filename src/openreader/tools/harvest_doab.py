"""Harvest DOAB OAI-PMH records into the local JSON-lines catalog."""

from __future__ import annotations

import argparse
import json
import logging
import time
from pathlib import Path
from typing import Callable, Dict, List, Mapping, Optional, Sequence

import requests

from ..workflows.connectors.doab import METADATA_PREFIX, parse_oai_records
from ..workflows.resolver_config import CATALOG_PATH, DOAB_OAI_ENDPOINT, USER_AGENT

logger = logging.getLogger(__name__)

FetchFunc = Callable[[Mapping[str, str]], str]


def _default_fetch(params: Mapping[str, str], *, timeout: int = 60) -> str:
    resp = requests.get(DOAB_OAI_ENDPOINT, params=dict(params), headers={"User-Agent": USER_AGENT}, timeout=timeout)
    resp.raise_for_status()
    return resp.text


def harvest(
    output: Path,
    *,
    fetch: Optional[FetchFunc] = None,
    max_pages: int = 0,
    delay: float = 1.0,
    set_spec: Optional[str] = None,
    timeout: int = 60,
    sleep: Callable[[float], None] = time.sleep,
) -> Dict[str, int]:
    """Walk ``ListRecords`` pages via resumption tokens and write one JSON row per book.

    ``max_pages`` of 0 means no page limit. Rows are de-duplicated on
    ``source_id``; the output file is replaced atomically at the end.
    """

    fetch_page = fetch or (lambda params: _default_fetch(params, timeout=timeout))
    params: Dict[str, str] = {"verb": "ListRecords", "metadataPrefix": METADATA_PREFIX}
    if set_spec:
        params["set"] = set_spec

    seen = set()
    rows: List[Dict[str, object]] = []
    pages = 0
    while True:
        xml = fetch_page(params)
        pages += 1
        batch, token = parse_oai_records(xml)
        for row in batch:
            if row["source_id"] in seen:
                continue
            seen.add(row["source_id"])
            row["source"] = "doab"
            rows.append(row)
        logger.info("page %d: %d records (total %d)", pages, len(batch), len(rows))
        if not token:
            break
        if max_pages and pages >= max_pages:
            logger.info("stopping at --max-pages=%d; resumption token %s", max_pages, token)
            break
        params = {"verb": "ListRecords", "resumptionToken": token}
        if delay > 0:
            sleep(delay)

    output.parent.mkdir(parents=True, exist_ok=True)
    tmp = output.with_suffix(output.suffix + ".tmp")
    with tmp.open("w", encoding="utf-8") as handle:
        for row in rows:
            handle.write(json.dumps(row, ensure_ascii=False) + "\n")
    tmp.replace(output)
    logger.info("wrote %d records to %s", len(rows), output)
    return {"pages": pages, "records": len(rows)}


def main(argv: Optional[Sequence[str]] = None) -> None:
    parser = argparse.ArgumentParser(description="Harvest DOAB records into the openreader local catalog")
    parser.add_argument(
        "--output",
        default=CATALOG_PATH,
        type=Path,
        help=f"JSONL file to write (default: {CATALOG_PATH})",
    )
    parser.add_argument("--max-pages", type=int, default=0, help="Stop after N pages (0 = all)")
    parser.add_argument("--delay", type=float, default=1.0, help="Seconds to wait between requests")
    parser.add_argument("--set", dest="set_spec", default=None, help="Restrict to an OAI set")
    parser.add_argument("--timeout", type=int, default=60, help="HTTP timeout per request (seconds)")
    args = parser.parse_args(argv)

    logging.basicConfig(level=logging.INFO, format="%(message)s")
    harvest(
        args.output,
        max_pages=args.max_pages,
        delay=args.delay,
        set_spec=args.set_spec,
        timeout=args.timeout,
    )


if __name__ == "__main__":
    main()
