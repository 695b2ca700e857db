"""Retrieval orchestration and cache layer between the REST surface and the archive."""

from dicomgate.services.gateway.cache import CacheStore
from dicomgate.services.gateway.cleanup import CacheSweepService
from dicomgate.services.gateway.metadata import assemble_metadata, read_pixel_geometry
from dicomgate.services.gateway.query import QueryTranslator
from dicomgate.services.gateway.retrieve import (
    RetrieveCoordinator,
    RetrieveHandle,
    RetrieveOutcome,
)
from dicomgate.services.gateway.service import GatewayService
from dicomgate.services.gateway.tags import keyword_for, resolve_tag

__all__ = [
    "CacheStore",
    "CacheSweepService",
    "GatewayService",
    "QueryTranslator",
    "RetrieveCoordinator",
    "RetrieveHandle",
    "RetrieveOutcome",
    "assemble_metadata",
    "keyword_for",
    "read_pixel_geometry",
    "resolve_tag",
]
