"""
Abstract document collection for the metadata store.

The storage core keeps its metadata in a handful of logical collections
(``buckets``, ``files``, ``stats``, ``operations``) accessed with equality
queries, ``$or`` alternatives and regex matches. There are no transactions
and no joins: consistency across collections comes from the ordering of steps
in each operation. Single-document increments are atomic.

Query syntax::

    {"user": "alice"}                                  # equality
    {"user": "alice", "name": re.compile("^pic")}      # regex search on a string field
    {"$or": [{"bucket_id": "b1"}, {"bucket_name": "b1"}]}
"""

from __future__ import annotations

import re
from abc import ABC, abstractmethod
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any

from ..exceptions import DeadlineExceededError, PersistenceError
from ..utils.async_helpers import with_deadline

Document = dict[str, Any]
Query = dict[str, Any]


@dataclass(frozen=True)
class UpdateResult:
    matched: int
    modified: int


def matches(doc: Document, query: Query) -> bool:
    """Return True when *doc* satisfies every clause of *query*."""
    for key, expected in query.items():
        if key == "$or":
            if not any(matches(doc, alternative) for alternative in expected):
                return False
            continue
        value = doc.get(key)
        if isinstance(expected, re.Pattern):
            if not isinstance(value, str) or not expected.search(value):
                return False
        elif value != expected:
            return False
    return True


class Collection(ABC):
    """A named set of documents. Every call runs under the metadata deadline.

    Backend failures are translated to PersistenceError at this seam.
    """

    def __init__(self, name: str, unique: Sequence[tuple[str, ...]] = (), timeout: float | None = None):
        self.name = name
        self.unique = [tuple(fields) for fields in unique]
        self.timeout = timeout

    async def _call(self, coro, operation: str):
        try:
            return await with_deadline(coro, self.timeout, f"metadata.{self.name}.{operation}")
        except DeadlineExceededError:
            raise
        except OSError as e:
            raise PersistenceError(f"{self.name}.{operation} failed: {e}") from e

    async def insert_one(self, doc: Document) -> Document:
        """Insert a document and return the stored copy (with its ``id``)."""
        return await self._call(self._insert_one(doc), "insert_one")

    async def find(self, query: Query, skip: int = 0, limit: int | None = None) -> list[Document]:
        return await self._call(self._find(query, skip, limit), "find")

    async def find_one(self, query: Query) -> Document | None:
        found = await self.find(query, limit=1)
        return found[0] if found else None

    async def count(self, query: Query) -> int:
        return await self._call(self._count(query), "count")

    async def update_one(
        self, query: Query, values: Document | None = None, increments: dict[str, int] | None = None
    ) -> UpdateResult:
        """Set *values* and atomically add *increments* on the first matching document."""
        return await self._call(self._update(query, values or {}, increments or {}, many=False), "update_one")

    async def update_many(
        self, query: Query, values: Document | None = None, increments: dict[str, int] | None = None
    ) -> UpdateResult:
        return await self._call(self._update(query, values or {}, increments or {}, many=True), "update_many")

    async def delete_one(self, query: Query) -> int:
        return await self._call(self._delete(query, many=False), "delete_one")

    async def delete_many(self, query: Query) -> int:
        return await self._call(self._delete(query, many=True), "delete_many")

    @abstractmethod
    async def _insert_one(self, doc: Document) -> Document: ...

    @abstractmethod
    async def _find(self, query: Query, skip: int, limit: int | None) -> list[Document]: ...

    @abstractmethod
    async def _count(self, query: Query) -> int: ...

    @abstractmethod
    async def _update(self, query: Query, values: Document, increments: dict[str, int], many: bool) -> UpdateResult: ...

    @abstractmethod
    async def _delete(self, query: Query, many: bool) -> int: ...
