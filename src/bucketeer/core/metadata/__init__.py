"""
Metadata store for bucketeer.

Document collections with equality/``$or``/regex queries, atomic
single-document increments, and no transactions. ``open_metadata_store``
builds the four collections the storage core uses.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from ..exceptions import ConfigurationError
from .base import Collection, Document, Query, UpdateResult, matches
from .local import JsonFileCollection
from .memory import MemoryCollection

# name -> unique keys
COLLECTIONS: dict[str, tuple[tuple[str, ...], ...]] = {
    "buckets": (("identifier",), ("user", "name")),
    "files": (("identifier",),),
    "stats": (("user",),),
    "operations": (("id",),),
}


@dataclass
class MetadataStore:
    buckets: Collection
    files: Collection
    stats: Collection
    operations: Collection


def open_metadata_store(backend: str = "memory", directory: str | Path | None = None, timeout: float | None = None) -> MetadataStore:
    """Build the storage core's collections for the given backend (``memory`` or ``json``)."""
    collections: dict[str, Collection] = {}
    for name, unique in COLLECTIONS.items():
        if backend == "memory":
            collections[name] = MemoryCollection(name, unique=unique, timeout=timeout)
        elif backend == "json":
            if directory is None:
                raise ConfigurationError("The json metadata backend needs a directory")
            collections[name] = JsonFileCollection(name, directory, unique=unique, timeout=timeout)
        else:
            raise ConfigurationError(f"Unknown metadata backend: {backend}")
    return MetadataStore(**collections)


__all__ = [
    "COLLECTIONS",
    "Collection",
    "Document",
    "JsonFileCollection",
    "MemoryCollection",
    "MetadataStore",
    "Query",
    "UpdateResult",
    "matches",
    "open_metadata_store",
]
