"""Catalog connectors and the name -> class registry used by the aggregator."""

from __future__ import annotations

import logging
from typing import Dict, Iterable, List, Optional, Type

import aiohttp

from ..resolver_config import ResolverConfig
from .archive import ArchiveConnector, map_archive_item
from .base import Connector
from .doab import DoabConnector, map_doab_item, parse_oai_records
from .gutenberg import GutenbergConnector, map_gutenberg_item
from .loc import LocConnector, map_loc_item
from .oapen import OapenConnector, map_oapen_item
from .openlibrary import OpenLibraryConnector, map_openlibrary_item
from .openstax import OpenStaxConnector, map_openstax_item

logger = logging.getLogger(__name__)

CONNECTOR_CLASSES: Dict[str, Type[Connector]] = {
    cls.name: cls
    for cls in (
        GutenbergConnector,
        OpenLibraryConnector,
        ArchiveConnector,
        LocConnector,
        OapenConnector,
        DoabConnector,
        OpenStaxConnector,
    )
}


def build_connectors(
    session: aiohttp.ClientSession,
    config: ResolverConfig,
    names: Optional[Iterable[str]] = None,
) -> List[Connector]:
    """Instantiate connectors in the configured order, skipping unknown names."""

    connectors: List[Connector] = []
    for name in names if names is not None else config.connectors:
        cls = CONNECTOR_CLASSES.get(name)
        if cls is None:
            logger.warning("unknown connector %r ignored (known: %s)", name, ", ".join(CONNECTOR_CLASSES))
            continue
        connectors.append(cls(session, config))
    return connectors


__all__ = [
    "Connector",
    "CONNECTOR_CLASSES",
    "build_connectors",
    "ArchiveConnector",
    "DoabConnector",
    "GutenbergConnector",
    "LocConnector",
    "OapenConnector",
    "OpenLibraryConnector",
    "OpenStaxConnector",
    "map_archive_item",
    "map_doab_item",
    "map_gutenberg_item",
    "map_loc_item",
    "map_oapen_item",
    "map_openlibrary_item",
    "map_openstax_item",
    "parse_oai_records",
]
