"""Operation journal for multi-step storage mutations.

Creating a bucket, uploading a file and deleting a file or a bucket each span
the remote store and several metadata collections with no transaction between
them. Each such operation writes a record to the ``operations`` collection
before its first remote side effect and appends a step marker as every step
completes. The record is deleted when the operation finishes and kept, with the
error, when it fails.

Step markers double as idempotency keys (``<operation id>:<step>``): a replay
skips any step whose marker is already present. ``BucketManager.recover``
reads ``pending()`` and hands each record back to the component that owns its
kind.
"""

from __future__ import annotations

import time
from dataclasses import asdict, dataclass, field
from enum import StrEnum
from typing import Any

from loguru import logger

from ..core.metadata import Collection
from ..core.utils.ids import random_token


class OperationStatus(StrEnum):
    PENDING = "pending"
    FAILED = "failed"


class OperationKind(StrEnum):
    CREATE_BUCKET = "create_bucket"
    UPLOAD = "upload"
    DELETE_FILE = "delete_file"
    DELETE_BUCKET = "delete_bucket"


@dataclass
class Operation:
    id: str
    kind: str
    payload: dict[str, Any]
    steps: list[str] = field(default_factory=list)
    status: str = OperationStatus.PENDING
    error: str = ""
    created: float = field(default_factory=time.time)
    updated: float = field(default_factory=time.time)

    def key(self, step: str) -> str:
        return f"{self.id}:{step}"

    def done(self, step: str) -> bool:
        return self.key(step) in self.steps

    def to_doc(self) -> dict[str, Any]:
        doc = asdict(self)
        doc["status"] = str(self.status)
        return doc

    @classmethod
    def from_doc(cls, doc: dict[str, Any]) -> Operation:
        return cls(
            id=doc["id"],
            kind=doc["kind"],
            payload=dict(doc.get("payload") or {}),
            steps=list(doc.get("steps") or []),
            status=doc.get("status", OperationStatus.PENDING),
            error=doc.get("error", ""),
            created=doc.get("created", 0.0),
            updated=doc.get("updated", 0.0),
        )


class OperationJournal:
    def __init__(self, operations: Collection):
        self._operations = operations

    async def begin(self, kind: str, payload: dict[str, Any]) -> Operation:
        op = Operation(id=random_token(20), kind=str(kind), payload=dict(payload))
        await self._operations.insert_one(op.to_doc())
        logger.debug(f"Operation {op.id} ({op.kind}) started")
        return op

    async def mark(self, op: Operation, step: str) -> None:
        """Record *step* as complete. Marking the same step twice is a no-op."""
        if op.done(step):
            return
        op.steps.append(op.key(step))
        op.updated = time.time()
        await self._operations.update_one({"id": op.id}, values={"steps": op.steps, "updated": op.updated})

    async def update_payload(self, op: Operation, **values: Any) -> None:
        op.payload.update(values)
        op.updated = time.time()
        await self._operations.update_one({"id": op.id}, values={"payload": op.payload, "updated": op.updated})

    async def complete(self, op: Operation) -> None:
        await self._operations.delete_one({"id": op.id})
        logger.debug(f"Operation {op.id} ({op.kind}) completed")

    async def fail(self, op: Operation, error: BaseException | str) -> None:
        """Keep the record for recovery, stamped with the failure."""
        op.status = OperationStatus.FAILED
        op.error = str(error)
        op.updated = time.time()
        await self._operations.update_one(
            {"id": op.id}, values={"status": str(op.status), "error": op.error, "updated": op.updated}
        )
        logger.warning(f"Operation {op.id} ({op.kind}) failed after steps {op.steps}: {op.error}")

    async def get(self, op_id: str) -> Operation | None:
        doc = await self._operations.find_one({"id": op_id})
        return Operation.from_doc(doc) if doc else None

    async def pending(self, kind: str | None = None) -> list[Operation]:
        """All unfinished records, oldest first. Both pending and failed ones are returned."""
        query = {"kind": str(kind)} if kind else {}
        docs = await self._operations.find(query)
        ops = [Operation.from_doc(doc) for doc in docs]
        return sorted(ops, key=lambda op: op.created)
