"""In-process document collection.

Mutations are applied without yielding to the event loop, so a single
increment can never interleave with another and lose an update.
"""

from __future__ import annotations

import copy
import uuid
from collections.abc import Sequence

from ..exceptions import DuplicateKeyError
from .base import Collection, Document, Query, UpdateResult, matches


class MemoryCollection(Collection):
    def __init__(self, name: str, unique: Sequence[tuple[str, ...]] = (), timeout: float | None = None):
        super().__init__(name, unique=unique, timeout=timeout)
        self._docs: list[Document] = []

    async def _ensure_loaded(self) -> None:
        """Hook for persistent subclasses."""

    async def _persist(self) -> None:
        """Hook for persistent subclasses."""

    def _check_unique(self, doc: Document, ignore: Document | None = None) -> None:
        for fields in self.unique:
            key = {f: doc.get(f) for f in fields}
            for existing in self._docs:
                if existing is not ignore and matches(existing, key):
                    raise DuplicateKeyError(f"Duplicate key in '{self.name}': {key}")

    async def _insert_one(self, doc: Document) -> Document:
        await self._ensure_loaded()
        stored = copy.deepcopy(doc)
        stored.setdefault("id", uuid.uuid4().hex)
        self._check_unique(stored)
        self._docs.append(stored)
        await self._persist()
        return copy.deepcopy(stored)

    async def _find(self, query: Query, skip: int, limit: int | None) -> list[Document]:
        await self._ensure_loaded()
        found = [doc for doc in self._docs if matches(doc, query)]
        found = found[skip:] if skip else found
        if limit is not None and limit >= 0:
            found = found[:limit]
        return copy.deepcopy(found)

    async def _count(self, query: Query) -> int:
        await self._ensure_loaded()
        return sum(1 for doc in self._docs if matches(doc, query))

    async def _update(self, query: Query, values: Document, increments: dict[str, int], many: bool) -> UpdateResult:
        await self._ensure_loaded()
        matched = modified = 0
        for doc in self._docs:
            if not matches(doc, query):
                continue
            matched += 1
            before = copy.deepcopy(doc)
            candidate = {**doc, **copy.deepcopy(values)}
            for field_name, delta in increments.items():
                candidate[field_name] = candidate.get(field_name, 0) + delta
            if values:
                self._check_unique(candidate, ignore=doc)
            doc.clear()
            doc.update(candidate)
            if doc != before:
                modified += 1
            if not many:
                break
        if modified:
            await self._persist()
        return UpdateResult(matched=matched, modified=modified)

    async def _delete(self, query: Query, many: bool) -> int:
        await self._ensure_loaded()
        removed = 0
        kept: list[Document] = []
        for doc in self._docs:
            if matches(doc, query) and (many or removed == 0):
                removed += 1
            else:
                kept.append(doc)
        if removed:
            self._docs[:] = kept
            await self._persist()
        return removed
